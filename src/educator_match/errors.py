"""Actionable error hierarchy for the educator matching service.

Errors are classified by **recovery path**, not by origin.
Each error type carries structured guidance for three audiences:
  - The calling code (typed ``error_type`` for routing)
  - The human operator (``suggestion`` + ``troubleshooting`` steps)
  - An AI agent (``ai_guidance`` with concrete next actions)

Two failure modes get their own subclasses so callers can ``except`` them
directly: :class:`EmbeddingProviderError` (operational, surfaced with retry
guidance) and :class:`DimensionMismatchError` (a data-integrity bug that must
never be coerced).
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import StrEnum
from typing import Any


# ---------------------------------------------------------------------------
# Error classification
# ---------------------------------------------------------------------------


class ErrorType(StrEnum):
    """Recovery-path categories — what to *do*, not where it came from."""

    CONFIG = "config"
    CONNECTION = "connection"
    EMBEDDING = "embedding"
    DIMENSION = "dimension"
    INDEX = "index"
    PARSE = "parse"
    UNAVAILABLE = "unavailable"
    VALIDATION = "validation"


# ---------------------------------------------------------------------------
# Guidance dataclasses
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class AIGuidance:
    """Machine-readable guidance for an AI agent consuming this error."""

    action_required: str
    command: str | None = None
    discovery_tool: str | None = None
    checks: list[str] | None = None
    steps: list[str] | None = None

    def to_dict(self) -> dict[str, Any]:
        result: dict[str, Any] = {"action_required": self.action_required}
        if self.command is not None:
            result["command"] = self.command
        if self.discovery_tool is not None:
            result["discovery_tool"] = self.discovery_tool
        if self.checks is not None:
            result["checks"] = self.checks
        if self.steps is not None:
            result["steps"] = self.steps
        return result


@dataclass(frozen=True)
class Troubleshooting:
    """Sequential, human-readable recovery steps for the operator."""

    steps: list[str]

    def to_dict(self) -> dict[str, Any]:
        return {"steps": self.steps}


# ---------------------------------------------------------------------------
# Base actionable error
# ---------------------------------------------------------------------------


@dataclass
class ActionableError(Exception):
    """Structured error with embedded recovery guidance.

    Use the factory classmethods rather than constructing directly —
    they encode domain knowledge so callers don't have to.
    """

    error: str
    error_type: ErrorType
    service: str

    success: bool = field(default=False, init=False)
    suggestion: str | None = None
    ai_guidance: AIGuidance | None = None
    troubleshooting: Troubleshooting | None = None
    context: dict[str, Any] | None = None
    timestamp: str = field(
        default_factory=lambda: datetime.now(timezone.utc).isoformat()
    )

    # Make it work as a real exception
    def __post_init__(self) -> None:
        super().__init__(self.error)

    # -- serialisation -------------------------------------------------------

    def to_dict(self) -> dict[str, Any]:
        """Compact JSON-ready dict — ``None`` values are excluded."""
        result: dict[str, Any] = {
            "success": self.success,
            "error": self.error,
            "error_type": self.error_type.value,
            "service": self.service,
            "timestamp": self.timestamp,
        }
        if self.suggestion is not None:
            result["suggestion"] = self.suggestion
        if self.ai_guidance is not None:
            result["ai_guidance"] = self.ai_guidance.to_dict()
        if self.troubleshooting is not None:
            result["troubleshooting"] = self.troubleshooting.to_dict()
        if self.context is not None:
            result["context"] = self.context
        return result

    # -- factory methods -----------------------------------------------------

    @classmethod
    def config(
        cls,
        field_name: str,
        reason: str,
        *,
        suggestion: str | None = None,
    ) -> ActionableError:
        """A settings section or value the service cannot start with."""
        return cls(
            error=f"Invalid setting {field_name}: {reason}",
            error_type=ErrorType.CONFIG,
            service="settings",
            suggestion=suggestion or f"Set '{field_name}' in the settings file passed via --config",
            ai_guidance=AIGuidance(
                action_required=f"Edit '{field_name}' in the active settings file",
                checks=[
                    "Is --config pointing at the intended settings file?",
                    f"Does the [{field_name.split('.')[0]}] section exist?",
                ],
            ),
            troubleshooting=Troubleshooting(
                steps=[
                    f"1. Find '{field_name}' in the settings file",
                    f"2. Resolve: {reason}",
                    "3. Start the command again",
                ]
            ),
        )

    @classmethod
    def connection(
        cls,
        service: str,
        url: str,
        raw_error: str,
        *,
        suggestion: str | None = None,
    ) -> ActionableError:
        """Service unreachable (Ollama, Redis, ChromaDB)."""
        return cls(
            error=f"{service} unreachable at {url}: {raw_error}",
            error_type=ErrorType.CONNECTION,
            service=service,
            suggestion=suggestion or f"Start {service} or correct its URL ({url})",
            ai_guidance=AIGuidance(
                action_required=f"Restore connectivity to {service}",
                checks=[
                    f"Is {service} listening at {url}?",
                    "Does the settings file name the same host and port?",
                ],
            ),
            troubleshooting=Troubleshooting(
                steps=[
                    f"1. Verify {service} is running",
                    f"2. Confirm {url} matches the running instance",
                    "3. Retry the request",
                ]
            ),
        )

    @classmethod
    def embedding(
        cls,
        model: str,
        raw_error: str,
        *,
        suggestion: str | None = None,
    ) -> EmbeddingProviderError:
        """Embedding provider call failed or timed out."""
        return EmbeddingProviderError(
            error=f"Embedding call failed for model '{model}': {raw_error}",
            error_type=ErrorType.EMBEDDING,
            service="Ollama",
            suggestion=suggestion
            or f"Verify model '{model}' is pulled and Ollama is responsive, then retry",
            ai_guidance=AIGuidance(
                action_required="Verify Ollama model availability and retry the request",
                command=f"ollama list | grep {model}",
                checks=[
                    "Is Ollama running?",
                    f"Is model '{model}' pulled? Run: ollama pull {model}",
                    "Did the caller's timeout expire before the provider answered?",
                ],
            ),
            troubleshooting=Troubleshooting(
                steps=[
                    "1. Check Ollama is running: ollama list",
                    f"2. If model missing: ollama pull {model}",
                    "3. If the call timed out, retry with a longer timeout",
                    "4. Re-run the command",
                ]
            ),
        )

    @classmethod
    def dimension_mismatch(
        cls,
        left: int,
        right: int,
        *,
        suggestion: str | None = None,
    ) -> DimensionMismatchError:
        """Two vectors of unequal length were compared."""
        return DimensionMismatchError(
            error=f"Vector dimensions differ: {left} != {right}",
            error_type=ErrorType.DIMENSION,
            service="similarity",
            suggestion=suggestion
            or "Embeddings were produced by different models — re-index the corpus",
            ai_guidance=AIGuidance(
                action_required="Re-embed every record with the configured embed_model",
                command="python -m educator_match index --reset --jobs jobs.json --teachers teachers.json",
                checks=[
                    "Has [ollama].embed_model changed since the corpus was indexed?",
                    "Were some records embedded by a different provider?",
                ],
            ),
            context={"left_dimension": left, "right_dimension": right},
        )

    @classmethod
    def index(
        cls,
        collection: str,
        *,
        suggestion: str | None = None,
    ) -> ActionableError:
        """ChromaDB collection missing or empty when ranking needs it."""
        return cls(
            error=f"Collection '{collection}' is empty or missing — run indexing first",
            error_type=ErrorType.INDEX,
            service="ChromaDB",
            suggestion=suggestion
            or f"Run 'python -m educator_match index' to populate '{collection}'",
            ai_guidance=AIGuidance(
                action_required=f"Index the '{collection}' collection before matching",
                command="python -m educator_match index",
                checks=[
                    f"Does the chroma persist_dir contain the '{collection}' collection?",
                    "Were the job and teacher files passed to the index command?",
                ],
            ),
            troubleshooting=Troubleshooting(
                steps=[
                    "1. Run: python -m educator_match index --jobs jobs.json --teachers teachers.json",
                    f"2. Verify the '{collection}' collection was created",
                    "3. Re-run the match",
                ]
            ),
        )

    @classmethod
    def parse(
        cls,
        source: str,
        location: str,
        raw_error: str,
        *,
        suggestion: str | None = None,
    ) -> ActionableError:
        """Malformed input file (TOML settings, visa rules, JSON records)."""
        return cls(
            error=f"Parse failure in {source} at {location}: {raw_error}",
            error_type=ErrorType.PARSE,
            service=source,
            suggestion=suggestion or f"Fix the syntax of {source}",
            ai_guidance=AIGuidance(
                action_required=f"Repair {source} so it parses",
                checks=[
                    f"Open {source} and inspect {location}",
                    "Validate the file with a TOML/JSON linter",
                ],
            ),
        )

    @classmethod
    def matching_unavailable(
        cls,
        reason: str,
        *,
        suggestion: str | None = None,
    ) -> ActionableError:
        """Ranking could not complete — not the same thing as "no matches"."""
        return cls(
            error=f"Matching temporarily unavailable: {reason}",
            error_type=ErrorType.UNAVAILABLE,
            service="matching",
            suggestion=suggestion or "Show 'matching temporarily unavailable' and retry later",
            ai_guidance=AIGuidance(
                action_required="Do not report zero matches; retry once the provider recovers",
                checks=[
                    "Is the embedding provider healthy?",
                    "Is the corpus indexed?",
                ],
            ),
        )

    @classmethod
    def validation(
        cls,
        field_name: str,
        reason: str,
        *,
        suggestion: str | None = None,
    ) -> ActionableError:
        """Input validation failure (TOML, CLI args, weights, etc.)."""
        return cls(
            error=f"Validation error — {field_name}: {reason}",
            error_type=ErrorType.VALIDATION,
            service="validation",
            suggestion=suggestion or f"Pass a valid '{field_name}': {reason}",
            ai_guidance=AIGuidance(
                action_required=f"Supply an acceptable value for '{field_name}'",
            ),
        )


class EmbeddingProviderError(ActionableError):
    """The upstream embedding call failed or timed out.

    Propagated to the caller as-is; retry policy belongs to the caller.
    """


class DimensionMismatchError(ActionableError):
    """Similarity was asked to compare vectors of different lengths."""
