"""Job and teacher ingestion pipeline.

The Indexer coordinates :class:`CorpusStore`, :class:`Embedder` and
:class:`MatchCache` to (re)build the pre-embedded corpus:

1. **Load** — read records from a JSON array file (one object per record).

2. **Embed** — flatten each record with :mod:`educator_match.text` and
   embed in concurrent batches.  Teachers with a video transcript get a
   second, video embedding.  Records whose embedding fails are logged and
   left out; the rest are still indexed.

3. **Store** — upsert into ChromaDB, replacing earlier vectors for the
   same ids.

4. **Invalidate** — a bulk regeneration changes every candidate's vector,
   so all cached match lists are dropped.
"""

from __future__ import annotations

import json
from pathlib import Path
from typing import TYPE_CHECKING

from educator_match.errors import ActionableError
from educator_match.logging import logger
from educator_match.models import CorpusEntry, EntityKind, TeacherProfile, record_from_dict
from educator_match.rag.embedder import DEFAULT_BATCH_DELAY, DEFAULT_BATCH_SIZE
from educator_match.rag.store import COLLECTIONS, VIDEO_COLLECTION
from educator_match.text import job_to_text, teacher_to_text

if TYPE_CHECKING:
    from educator_match.cache.match_cache import MatchCache
    from educator_match.models import Record
    from educator_match.rag.embedder import Embedder
    from educator_match.rag.store import CorpusStore


def record_text(record: Record) -> str:
    """The descriptive text block embedded for *record*."""
    if isinstance(record, TeacherProfile):
        return teacher_to_text(record)
    return job_to_text(record)


def load_records(path: str | Path, kind: EntityKind) -> list[Record]:
    """Read a JSON array of *kind* records from *path*.

    Raises :class:`~educator_match.errors.ActionableError`:
      - CONFIG if the file doesn't exist
      - PARSE if the JSON is malformed
      - VALIDATION if the top level is not an array or a record is invalid
    """
    filepath = Path(path)
    if not filepath.exists():
        raise ActionableError.config(
            field_name=f"{kind.value}s_path",
            reason=f"Records file not found: {filepath}",
            suggestion=f"Check the path passed for {kind.value} records",
        )
    try:
        data = json.loads(filepath.read_text(encoding="utf-8"))
    except json.JSONDecodeError as exc:
        raise ActionableError.parse(
            source=str(filepath),
            location=f"line {exc.lineno}, column {exc.colno}",
            raw_error=exc.msg,
        ) from None

    if not isinstance(data, list):
        raise ActionableError.validation(
            field_name=str(filepath),
            reason=f"must contain a JSON array of {kind.value} records",
        )
    return [record_from_dict(kind, item) for item in data]


class Indexer:
    """Embeds records and writes them to the corpus store.

    Usage::

        indexer = Indexer(store=corpus_store, embedder=embedder, cache=match_cache)
        n_jobs = await indexer.index_file("data/jobs.json", EntityKind.JOB)
    """

    def __init__(
        self,
        store: CorpusStore,
        embedder: Embedder,
        cache: MatchCache,
        *,
        batch_size: int = DEFAULT_BATCH_SIZE,
        batch_delay: float = DEFAULT_BATCH_DELAY,
        timeout: float | None = None,
    ) -> None:
        self._store = store
        self._embedder = embedder
        self._cache = cache
        self._batch_size = batch_size
        self._batch_delay = batch_delay
        self._timeout = timeout

    async def index_file(self, path: str | Path, kind: EntityKind, *, reset: bool = False) -> int:
        """Load and index every *kind* record in *path*.  Returns count indexed."""
        records = load_records(path, kind)
        count = await self.index_records(records, reset=reset)
        logger.info("Indexed %d of %d %s records from %s", count, len(records), kind.value, path)
        return count

    async def index_records(self, records: list[Record], *, reset: bool = False) -> int:
        """Embed and upsert *records*, then drop every cached match list.

        With ``reset=True`` the affected collections are emptied first so
        records missing from *records* disappear from the corpus.

        Returns the number of records stored (failures excluded).
        """
        if reset:
            for kind in {r.kind for r in records}:
                self._store.reset_collection(COLLECTIONS[kind])
                if kind is EntityKind.TEACHER:
                    self._store.reset_collection(VIDEO_COLLECTION)

        if not records:
            return 0

        # Jobs and teachers may share ids; a repeated id keeps the last record
        keyed = {f"{r.kind.value}:{r.id}": r for r in records}
        documents = {key: record_text(r) for key, r in keyed.items()}
        vectors = dict(await self._embed(list(documents.items())))

        transcripts = [
            (key, r.video_transcript)
            for key, r in keyed.items()
            if isinstance(r, TeacherProfile) and r.video_transcript and key in vectors
        ]
        video_vectors = dict(await self._embed(transcripts)) if transcripts else {}

        entries = [
            CorpusEntry(
                record=r,
                embedding=vectors[key],
                document=documents[key],
                video_embedding=video_vectors.get(key),
            )
            for key, r in keyed.items()
            if key in vectors
        ]
        if entries:
            self._store.upsert_entries(entries)

        skipped = len(keyed) - len(entries)
        if skipped:
            logger.warning("%d records were not indexed (embedding failed)", skipped)

        await self._cache.invalidate_all_match_caches()
        return len(entries)

    async def _embed(self, items: list[tuple[str, str]]) -> list[tuple[str, list[float]]]:
        return await self._embedder.embed_batch(
            items,
            batch_size=self._batch_size,
            delay=self._batch_delay,
            timeout=self._timeout,
        )
