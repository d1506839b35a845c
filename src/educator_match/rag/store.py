"""ChromaDB-backed corpus of pre-embedded jobs and teachers.

ChromaDB is an **embedded** vector database — like SQLite for vectors.  Here
it is the system of record for embeddings: each document keeps its vector,
the descriptive text that was embedded, and the full record serialised as
JSON in metadata so ranking can rebuild :class:`CorpusEntry` objects without
a second data source.

Three collections:

  - ``jobs``            — job posting embeddings
  - ``teachers``        — teacher profile embeddings
  - ``teacher_videos``  — video-introduction embeddings, keyed by teacher id

Embeddings are replaced wholesale on re-index (upsert), never edited in place.
"""

from __future__ import annotations

import json
from typing import TYPE_CHECKING, Any

import chromadb
from chromadb.api.types import IncludeEnum

from educator_match.errors import ActionableError
from educator_match.logging import logger
from educator_match.models import CorpusEntry, EntityKind, record_from_dict

if TYPE_CHECKING:
    from educator_match.models import Record

COLLECTIONS = {
    EntityKind.JOB: "jobs",
    EntityKind.TEACHER: "teachers",
}
VIDEO_COLLECTION = "teacher_videos"


class CorpusStore:
    """Reads and writes corpus entries in ChromaDB.

    Usage::

        store = CorpusStore(persist_dir="./data/chroma_db")
        store.upsert_entry(job, embedding=[...], document="Position: ...")
        corpus = store.load_corpus(EntityKind.JOB)
    """

    def __init__(self, persist_dir: str) -> None:
        self.persist_dir = persist_dir
        self._client = chromadb.PersistentClient(path=persist_dir)
        logger.debug("ChromaDB client initialized at %s", persist_dir)

    # -- Collection lifecycle ------------------------------------------------

    def get_or_create_collection(self, name: str) -> chromadb.Collection:
        """Return the named collection, creating it with cosine distance."""
        return self._client.get_or_create_collection(
            name=name,
            metadata={"hnsw:space": "cosine"},
        )

    def count(self, kind: EntityKind) -> int:
        """Number of indexed entries of *kind*; INDEX error if never indexed."""
        return self._get_existing_collection(COLLECTIONS[kind]).count()

    def reset_collection(self, name: str) -> None:
        """Drop and recreate the named collection empty."""
        try:
            self._client.delete_collection(name)
            logger.info("Collection '%s' deleted", name)
        except (ValueError, chromadb.errors.InvalidCollectionException):
            logger.debug("Collection '%s' does not exist — nothing to reset", name)
        self.get_or_create_collection(name)

    # -- Writes --------------------------------------------------------------

    def upsert_entries(self, entries: list[CorpusEntry]) -> None:
        """Insert or replace *entries*, grouped by kind.

        Video embeddings, when present, go to ``teacher_videos`` under the
        same id.
        """
        for kind, collection_name in COLLECTIONS.items():
            batch = [e for e in entries if e.kind is kind]
            if not batch:
                continue
            collection = self.get_or_create_collection(collection_name)
            collection.upsert(
                ids=[e.id for e in batch],
                documents=[e.document for e in batch],
                embeddings=[e.embedding for e in batch],  # type: ignore[arg-type]
                metadatas=[_metadata(e.record) for e in batch],  # type: ignore[arg-type]
            )
            logger.info(
                "Upserted %d %s entries (total: %d)",
                len(batch),
                kind.value,
                collection.count(),
            )

        with_video = [e for e in entries if e.video_embedding is not None]
        if with_video:
            self.get_or_create_collection(VIDEO_COLLECTION).upsert(
                ids=[e.id for e in with_video],
                embeddings=[e.video_embedding for e in with_video],  # type: ignore[arg-type,misc]
            )

    def upsert_entry(
        self,
        record: Record,
        *,
        embedding: list[float],
        document: str,
        video_embedding: list[float] | None = None,
    ) -> None:
        """Insert or replace a single record's embedding."""
        self.upsert_entries(
            [
                CorpusEntry(
                    record=record,
                    embedding=embedding,
                    document=document,
                    video_embedding=video_embedding,
                )
            ]
        )

    def delete_entry(self, kind: EntityKind, entry_id: str) -> None:
        """Remove an entry (and its video embedding); missing ids are a no-op."""
        self.get_or_create_collection(COLLECTIONS[kind]).delete(ids=[entry_id])
        if kind is EntityKind.TEACHER:
            self.get_or_create_collection(VIDEO_COLLECTION).delete(ids=[entry_id])
        logger.info("Deleted %s '%s' from corpus", kind.value, entry_id)

    # -- Reads ---------------------------------------------------------------

    def get_entry(self, kind: EntityKind, entry_id: str) -> CorpusEntry | None:
        """Return one stored entry, or ``None`` if it is not indexed."""
        entries = self._read(kind, ids=[entry_id])
        return entries[0] if entries else None

    def load_corpus(self, kind: EntityKind) -> list[CorpusEntry]:
        """Return every stored entry of *kind*.

        Raises :class:`~educator_match.errors.ActionableError` (INDEX) if the
        collection has never been created.  An existing but empty collection
        returns an empty list.
        """
        entries = self._read(kind, ids=None)
        logger.debug("Loaded %d %s entries from corpus", len(entries), kind.value)
        return entries

    # -- Internal helpers ----------------------------------------------------

    def _read(self, kind: EntityKind, ids: list[str] | None) -> list[CorpusEntry]:
        collection = self._get_existing_collection(COLLECTIONS[kind])
        result = collection.get(
            ids=ids,
            include=[IncludeEnum.embeddings, IncludeEnum.documents, IncludeEnum.metadatas],
        )
        found_ids = list(result["ids"])
        if not found_ids:
            return []

        videos: dict[str, list[float]] = {}
        if kind is EntityKind.TEACHER:
            video_result = self.get_or_create_collection(VIDEO_COLLECTION).get(
                ids=found_ids,
                include=[IncludeEnum.embeddings],
            )
            embeddings = video_result["embeddings"]
            if embeddings is not None:
                videos = {
                    vid: [float(v) for v in vec]
                    for vid, vec in zip(video_result["ids"], embeddings, strict=True)
                }

        documents = result["documents"] or [""] * len(found_ids)
        metadatas = result["metadatas"] or [{}] * len(found_ids)
        embeddings = result["embeddings"]
        if embeddings is None:
            raise ActionableError.index(COLLECTIONS[kind])

        entries: list[CorpusEntry] = []
        for entry_id, document, metadata, vector in zip(
            found_ids, documents, metadatas, embeddings, strict=True
        ):
            entries.append(
                CorpusEntry(
                    record=_record(kind, entry_id, metadata),
                    embedding=[float(v) for v in vector],
                    document=document or "",
                    video_embedding=videos.get(entry_id),
                )
            )
        return entries

    def _get_existing_collection(self, name: str) -> chromadb.Collection:
        """Retrieve a collection that must already exist.

        Raises :class:`~educator_match.errors.ActionableError` (INDEX)
        if the collection has not been created.
        """
        try:
            return self._client.get_collection(name)
        except (ValueError, chromadb.errors.InvalidCollectionException):
            raise ActionableError.index(name) from None


def _metadata(record: Record) -> dict[str, Any]:
    return {
        "kind": record.kind.value,
        "created_at": record.created_at.isoformat(),
        "record": json.dumps(record.to_dict()),
    }


def _record(kind: EntityKind, entry_id: str, metadata: Any) -> Record:
    raw = (metadata or {}).get("record")
    if not raw:
        raise ActionableError.parse(
            source=COLLECTIONS[kind],
            location=f"metadata of '{entry_id}'",
            raw_error="stored entry has no serialised record",
            suggestion="Re-index the corpus",
        )
    try:
        return record_from_dict(kind, json.loads(raw))
    except json.JSONDecodeError as exc:
        raise ActionableError.parse(
            source=COLLECTIONS[kind],
            location=f"metadata of '{entry_id}'",
            raw_error=str(exc),
            suggestion="Re-index the corpus",
        ) from None
