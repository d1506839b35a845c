"""Configuration loading and validation.

Loads ``settings.toml`` and validates all fields at startup, before any
embedding calls or corpus reads happen.  Weights that do not sum to 1.0 or a
cache backend that does not exist should stop the process immediately, not
surface as odd rankings an hour later.

The validated config is exposed as a :class:`Settings` dataclass with
typed fields for each section: ``scoring``, ``matching``, ``ollama``,
``embedding``, ``cache`` and ``chroma``.
"""

from __future__ import annotations

import tomllib
from dataclasses import dataclass, field
from pathlib import Path

from educator_match.errors import ActionableError
from educator_match.matching.fusion import MatchWeights

# ---------------------------------------------------------------------------
# Config dataclasses
# ---------------------------------------------------------------------------


@dataclass
class ScoringConfig:
    """Fusion weights from ``[scoring]``."""

    resume_weight: float = 0.5
    video_weight: float = 0.3
    constraint_weight: float = 0.2

    def to_weights(self) -> MatchWeights:
        return MatchWeights(
            resume=self.resume_weight,
            video=self.video_weight,
            constraints=self.constraint_weight,
        )


@dataclass
class MatchingConfig:
    """Ranking defaults from ``[matching]``."""

    default_top_n: int = 20
    min_similarity: float = 0.0
    rrf_k: int = 60
    hybrid_search_limit: int = 50


@dataclass
class OllamaConfig:
    """Ollama connection settings from ``[ollama]``."""

    base_url: str = "http://localhost:11434"
    embed_model: str = "nomic-embed-text"
    timeout_seconds: float | None = 30.0


@dataclass
class EmbeddingConfig:
    """Batch embedding settings from ``[embedding]``."""

    batch_size: int = 10
    batch_delay_seconds: float = 0.1


@dataclass
class CacheConfig:
    """Match cache settings from ``[cache]``."""

    backend: str = "memory"
    redis_url: str = "redis://localhost:6379/0"
    match_ttl_seconds: int = 3600
    key_prefix: str = "matches"


@dataclass
class ChromaConfig:
    """ChromaDB settings from ``[chroma]``."""

    persist_dir: str = "./data/chroma_db"


@dataclass
class Settings:
    """Top-level validated configuration."""

    scoring: ScoringConfig = field(default_factory=ScoringConfig)
    matching: MatchingConfig = field(default_factory=MatchingConfig)
    ollama: OllamaConfig = field(default_factory=OllamaConfig)
    embedding: EmbeddingConfig = field(default_factory=EmbeddingConfig)
    cache: CacheConfig = field(default_factory=CacheConfig)
    chroma: ChromaConfig = field(default_factory=ChromaConfig)
    visa_rules_path: str = "config/visa_rules.toml"


# ---------------------------------------------------------------------------
# Default settings path
# ---------------------------------------------------------------------------

DEFAULT_SETTINGS_PATH = Path("config/settings.toml")

_CACHE_BACKENDS = ("memory", "redis")


# ---------------------------------------------------------------------------
# Loading and validation
# ---------------------------------------------------------------------------


def load_settings(path: str | Path = DEFAULT_SETTINGS_PATH) -> Settings:
    """Load and validate settings from a TOML file.

    Raises :class:`~educator_match.errors.ActionableError`:
      - CONFIG if the file is missing
      - PARSE if the TOML is malformed
      - VALIDATION if field values are out of range

    Returns a fully validated :class:`Settings` instance.
    """
    filepath = Path(path)
    if not filepath.exists():
        raise ActionableError.config(
            field_name="settings_path",
            reason=f"Settings file not found: {filepath}",
            suggestion=f"Create {filepath} or copy it from the repository's config/ directory",
        )

    raw_text = filepath.read_text(encoding="utf-8")
    try:
        data = tomllib.loads(raw_text)
    except tomllib.TOMLDecodeError as exc:
        raise ActionableError.parse(
            source=str(filepath),
            location="TOML syntax",
            raw_error=str(exc),
            suggestion=f"Fix TOML syntax in {filepath}",
        ) from None

    return _validate(data)


def _validate(data: dict[str, object]) -> Settings:
    """Validate raw TOML data and return a Settings instance."""

    # -- scoring section -----------------------------------------------------
    scoring_data = _section(data, "scoring")
    scoring = ScoringConfig(
        resume_weight=float(scoring_data.get("resume_weight", 0.5)),
        video_weight=float(scoring_data.get("video_weight", 0.3)),
        constraint_weight=float(scoring_data.get("constraint_weight", 0.2)),
    )

    # Validate weight ranges
    for weight_name in ("resume_weight", "video_weight", "constraint_weight"):
        value = getattr(scoring, weight_name)
        if value < 0.0:
            raise ActionableError.validation(
                field_name=f"scoring.{weight_name}",
                reason=f"is {value} — must be >= 0.0",
                suggestion=f"Set [scoring].{weight_name} to a value between 0.0 and 1.0",
            )
        if value > 1.0:
            raise ActionableError.validation(
                field_name=f"scoring.{weight_name}",
                reason=f"is {value} — must be <= 1.0",
                suggestion=f"Set [scoring].{weight_name} to a value between 0.0 and 1.0",
            )
    # Sum check lives on MatchWeights
    scoring.to_weights()

    # -- matching section ----------------------------------------------------
    matching_data = _section(data, "matching")
    matching = MatchingConfig(
        default_top_n=int(matching_data.get("default_top_n", 20)),
        min_similarity=float(matching_data.get("min_similarity", 0.0)),
        rrf_k=int(matching_data.get("rrf_k", 60)),
        hybrid_search_limit=int(matching_data.get("hybrid_search_limit", 50)),
    )
    if matching.default_top_n < 1:
        raise ActionableError.validation(
            field_name="matching.default_top_n",
            reason=f"is {matching.default_top_n} — must be >= 1",
        )
    if not 0.0 <= matching.min_similarity <= 100.0:
        raise ActionableError.validation(
            field_name="matching.min_similarity",
            reason=f"is {matching.min_similarity} — must be between 0 and 100",
            suggestion="min_similarity uses the same 0–100 scale as match scores",
        )
    if matching.rrf_k < 0:
        raise ActionableError.validation(
            field_name="matching.rrf_k",
            reason=f"is {matching.rrf_k} — must be >= 0",
        )

    # -- ollama section ------------------------------------------------------
    ollama_data = _section(data, "ollama")
    base_url = str(ollama_data.get("base_url", "http://localhost:11434"))
    if not base_url.startswith(("http://", "https://")):
        raise ActionableError.validation(
            field_name="ollama.base_url",
            reason=f"'{base_url}' is missing a scheme (http:// or https://)",
            suggestion="Set [ollama].base_url to a URL starting with http:// or https://",
        )
    timeout = ollama_data.get("timeout_seconds", 30.0)
    ollama = OllamaConfig(
        base_url=base_url,
        embed_model=str(ollama_data.get("embed_model", "nomic-embed-text")),
        timeout_seconds=float(timeout) if timeout else None,  # type: ignore[arg-type]
    )

    # -- embedding section ---------------------------------------------------
    embedding_data = _section(data, "embedding")
    embedding = EmbeddingConfig(
        batch_size=int(embedding_data.get("batch_size", 10)),
        batch_delay_seconds=float(embedding_data.get("batch_delay_seconds", 0.1)),
    )
    if embedding.batch_size < 1:
        raise ActionableError.validation(
            field_name="embedding.batch_size",
            reason=f"is {embedding.batch_size} — must be >= 1",
        )
    if embedding.batch_delay_seconds < 0:
        raise ActionableError.validation(
            field_name="embedding.batch_delay_seconds",
            reason=f"is {embedding.batch_delay_seconds} — must be >= 0",
        )

    # -- cache section -------------------------------------------------------
    cache_data = _section(data, "cache")
    cache = CacheConfig(
        backend=str(cache_data.get("backend", "memory")),
        redis_url=str(cache_data.get("redis_url", "redis://localhost:6379/0")),
        match_ttl_seconds=int(cache_data.get("match_ttl_seconds", 3600)),
        key_prefix=str(cache_data.get("key_prefix", "matches")),
    )
    if cache.backend not in _CACHE_BACKENDS:
        raise ActionableError.validation(
            field_name="cache.backend",
            reason=f"'{cache.backend}' must be one of {', '.join(_CACHE_BACKENDS)}",
        )
    if cache.match_ttl_seconds <= 0:
        raise ActionableError.validation(
            field_name="cache.match_ttl_seconds",
            reason=f"is {cache.match_ttl_seconds} — must be > 0",
        )

    # -- chroma section ------------------------------------------------------
    chroma_data = _section(data, "chroma")
    chroma = ChromaConfig(
        persist_dir=str(chroma_data.get("persist_dir", "./data/chroma_db")),
    )

    return Settings(
        scoring=scoring,
        matching=matching,
        ollama=ollama,
        embedding=embedding,
        cache=cache,
        chroma=chroma,
        visa_rules_path=str(data.get("visa_rules_path", "config/visa_rules.toml")),
    )


# ---------------------------------------------------------------------------
# Internal helpers
# ---------------------------------------------------------------------------


def _section(data: dict[str, object], name: str) -> dict[str, object]:
    """Return an optional top-level section, or an empty dict."""
    section = data.get(name, {})
    if not isinstance(section, dict):
        raise ActionableError.config(
            field_name=name,
            reason=f"[{name}] must be a table, not {type(section).__name__}",
            suggestion=f"Define [{name}] as a TOML table",
        )
    return section
