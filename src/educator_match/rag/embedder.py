"""Ollama embedding adapter.

Wraps the ``ollama`` Python SDK's :class:`AsyncClient` to provide:

- **Embedding**: text → float vector via ``nomic-embed-text``
- **Record embedding**: job postings and teacher profiles flattened with
  :mod:`educator_match.text` before embedding
- **Batch embedding**: bounded concurrency with a courtesy delay between
  batches; individual failures are logged and dropped
- **Health check**: verify Ollama + the embed model are available at startup

The adapter makes exactly one provider call per text.  It does not retry —
retry policy belongs to the caller, who knows whether a request is
interactive or a background re-index.  Every failure surfaces as
:class:`~educator_match.errors.EmbeddingProviderError`.
"""

from __future__ import annotations

import asyncio
from typing import TYPE_CHECKING

import ollama as ollama_sdk

from educator_match.errors import ActionableError, ErrorType
from educator_match.logging import logger
from educator_match.text import job_to_text, teacher_to_text

if TYPE_CHECKING:
    from collections.abc import Sequence

    from educator_match.models import JobPosting, TeacherProfile

DEFAULT_BATCH_SIZE = 10
DEFAULT_BATCH_DELAY = 0.1

# nomic-embed-text has an 8192-token window; bios and video transcripts
# with bullet lists tokenise close to 1 char/token
_MAX_EMBED_CHARS = 8_000

# Keep head (title, subjects, certifications) and tail (bio, transcript
# ending); the middle is the first thing to go.  60/40 split.
_HEAD_RATIO = 0.6
_TRUNCATION_MARKER = "\n[…]\n"


class Embedder:
    """Single-call embedding adapter over Ollama.

    Usage::

        embedder = Embedder(
            base_url="http://localhost:11434",
            embed_model="nomic-embed-text",
        )
        await embedder.health_check()               # fail fast if Ollama is down
        vec = await embedder.embed("some text")      # → list[float]
        vec = await embedder.embed_job(job, timeout=5.0)
    """

    def __init__(self, base_url: str, embed_model: str) -> None:
        self.base_url = base_url
        self.embed_model = embed_model
        self._client = ollama_sdk.AsyncClient(host=base_url)

    # -- Public API ----------------------------------------------------------

    async def embed(self, text: str, *, timeout: float | None = None) -> list[float]:
        """Return the embedding vector for *text*.

        Strips whitespace before embedding and raises VALIDATION for empty
        input.  Text longer than ``_MAX_EMBED_CHARS`` is truncated head +
        tail so the model's context window is never exceeded.

        Args:
            text: Text to embed.
            timeout: Seconds to wait for the provider; ``None`` waits
                indefinitely.

        Raises:
            EmbeddingProviderError: the provider failed, was unreachable, or
                did not answer within *timeout*.
        """
        cleaned = text.strip()
        if not cleaned:
            raise ActionableError(
                error="Cannot embed empty text",
                error_type=ErrorType.VALIDATION,
                service="Ollama",
                suggestion="Provide non-empty text to embed",
            )

        if len(cleaned) > _MAX_EMBED_CHARS:
            logger.debug(
                "Truncating embed input from %d to %d chars (head+tail)",
                len(cleaned),
                _MAX_EMBED_CHARS,
            )
            budget = _MAX_EMBED_CHARS - len(_TRUNCATION_MARKER)
            head_len = int(budget * _HEAD_RATIO)
            tail_len = budget - head_len
            cleaned = cleaned[:head_len] + _TRUNCATION_MARKER + cleaned[-tail_len:]

        try:
            response = await asyncio.wait_for(
                self._client.embed(model=self.embed_model, input=cleaned),
                timeout=timeout,
            )
        except TimeoutError:
            raise ActionableError.embedding(
                model=self.embed_model,
                raw_error=f"No response within {timeout}s",
            ) from None
        except ollama_sdk.ResponseError as exc:
            raise ActionableError.embedding(
                model=self.embed_model,
                raw_error=f"status {exc.status_code}: {exc}",
            ) from None
        except (ConnectionError, OSError) as exc:
            raise ActionableError.embedding(
                model=self.embed_model,
                raw_error=f"Ollama unreachable at {self.base_url}: {exc}",
                suggestion="Start Ollama (ollama serve) and retry",
            ) from None

        if not response.embeddings:
            raise ActionableError.embedding(
                model=self.embed_model,
                raw_error="Provider returned no embeddings",
            )
        return list(response.embeddings[0])

    async def embed_job(self, job: JobPosting, *, timeout: float | None = None) -> list[float]:
        """Embed a job posting's descriptive text block."""
        return await self.embed(job_to_text(job), timeout=timeout)

    async def embed_teacher(
        self, teacher: TeacherProfile, *, timeout: float | None = None
    ) -> list[float]:
        """Embed a teacher profile's descriptive text block."""
        return await self.embed(teacher_to_text(teacher), timeout=timeout)

    async def embed_batch(
        self,
        items: Sequence[tuple[str, str]],
        *,
        batch_size: int = DEFAULT_BATCH_SIZE,
        delay: float = DEFAULT_BATCH_DELAY,
        timeout: float | None = None,
    ) -> list[tuple[str, list[float]]]:
        """Embed ``(id, text)`` pairs in fixed-size concurrent batches.

        Calls within a batch run concurrently; batches run one after
        another with *delay* seconds between them (none after the last) to
        stay gentle on the provider.  A failed item is logged at WARNING
        and left out of the result, so a partial batch never aborts a
        re-index.

        Returns:
            ``(id, vector)`` pairs for the successful items, in input order.
        """
        if batch_size < 1:
            raise ActionableError.validation(
                field_name="batch_size",
                reason=f"is {batch_size} — must be >= 1",
            )

        results: list[tuple[str, list[float]]] = []
        failures = 0
        batches = [items[i : i + batch_size] for i in range(0, len(items), batch_size)]

        for index, batch in enumerate(batches):
            outcomes = await asyncio.gather(
                *(self.embed(text, timeout=timeout) for _, text in batch),
                return_exceptions=True,
            )
            for (item_id, _), outcome in zip(batch, outcomes, strict=True):
                if isinstance(outcome, ActionableError):
                    failures += 1
                    logger.warning("Dropping '%s' from batch: %s", item_id, outcome.error)
                elif isinstance(outcome, BaseException):
                    raise outcome
                else:
                    results.append((item_id, outcome))

            if index < len(batches) - 1 and delay > 0:
                await asyncio.sleep(delay)

        logger.info(
            "Embedded %d of %d items in %d batches (%d failed)",
            len(results),
            len(items),
            len(batches),
            failures,
        )
        return results

    async def health_check(self) -> None:
        """Verify Ollama is reachable and the embed model is available.

        Raises :class:`~educator_match.errors.ActionableError`:
          - CONNECTION if Ollama is unreachable
          - EMBEDDING if the model is not pulled
        """
        try:
            response = await self._client.list()
        except (ConnectionError, OSError) as exc:
            raise ActionableError.connection(
                service="Ollama",
                url=self.base_url,
                raw_error=str(exc),
            ) from None

        available = {m.model for m in response.models if m.model}
        # Ollama model names may include :latest suffix — normalise
        available_all = available | {name.split(":")[0] for name in available}

        model_base = self.embed_model.split(":")[0]
        if self.embed_model not in available_all and model_base not in available_all:
            raise ActionableError.embedding(
                model=self.embed_model,
                raw_error=f"Model '{self.embed_model}' is not pulled in Ollama",
                suggestion=f"Run: ollama pull {self.embed_model}",
            )

        logger.info("Ollama health check passed — %s available", self.embed_model)
