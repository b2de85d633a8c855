"""
Index Writer — dual-store chunk writes
═══════════════════════════════════════

Each chunk lands in two stores that share no transaction:

  Phase 1  vector index     write WITHOUT an id → backend assigns one
  Phase 2  metadata store   write (document_id, CHUNK#nnnnn) → vector id

Phase 2 is the commit: a chunk counts as indexed only once its metadata
record exists. Everything that can go wrong between the phases is raised
as IndexCorrelationError and logged as a reconciliation candidate:

  Reconciliation candidate | doc=<id> chunk=<n> vector_id=<id|None> reason=<...>

Operators grep for that line to find vectors without metadata. Nothing in
this module retries a phase-2 failure: a blind retry would write a second
vector for the same chunk.

Phase-1 failures (transport errors from the vector store) propagate
unchanged; the worker's retry policy owns those.

Reprocessing: find_reusable() lets the pipeline skip chunks that an earlier
attempt already finalized with identical text, and retire_superseded()
drops the rows past the new chunk count when the document shrank.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from datetime import date, datetime, timezone
from typing import Callable

from docpipeline.core.errors import IndexCorrelationError
from docpipeline.db.metadata_store import MetadataStore
from docpipeline.models.documents import ChunkRecord
from docpipeline.observability.tracing import traced
from docpipeline.processing.chunking import estimate_tokens
from docpipeline.vectorstore.base import IndexSchema, VectorDocument, VectorIndexBase

logger = logging.getLogger(__name__)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass
class ChunkWrite:
    """Everything needed to index one chunk of one document."""
    document_id:     str
    chunk_index:     int
    text:            str
    s3_key:          str
    tenant_id:       str
    expiration_date: date | None = None


class IndexWriter:
    """
    Shared by every chunk coroutine of a pipeline; the index-exists check
    runs once per writer instance.
    """

    def __init__(
        self,
        vector_index:   VectorIndexBase,
        metadata_store: MetadataStore,
        dimension:      int,
        clock:          Callable[[], datetime] = _utcnow,
    ) -> None:
        self._vector_index = vector_index
        self._metadata_store = metadata_store
        self._schema = IndexSchema.for_chunks(dimension)
        self._clock = clock
        self._index_ready = False
        self._index_lock = asyncio.Lock()

    # ------------------------------------------------------------------
    # Index bootstrap
    # ------------------------------------------------------------------

    async def ensure_index(self) -> None:
        if self._index_ready:
            return
        async with self._index_lock:
            if self._index_ready:
                return
            name = self._vector_index.index_name
            if not await self._vector_index.index_exists(name):
                created = await self._vector_index.create_index(name, self._schema)
                logger.info("Vector index bootstrap | name=%s created=%s", name, created)
            self._index_ready = True

    # ------------------------------------------------------------------
    # Reprocessing support
    # ------------------------------------------------------------------

    async def find_reusable(self, chunk: ChunkWrite) -> ChunkRecord | None:
        """
        Return the finalized record for this chunk if an earlier attempt
        already indexed exactly this text. A record with different text is
        superseded: its vector id is logged for reconciliation and None is
        returned so the chunk is rewritten.
        """
        # Lookup errors propagate before any vector is written
        existing = await self._metadata_store.get_chunk(chunk.document_id, chunk.chunk_index)
        if existing is None:
            return None

        if existing.text == chunk.text and existing.vector_index_id:
            logger.info(
                "Chunk already indexed, reusing | doc=%s chunk=%d vector_id=%s",
                chunk.document_id, chunk.chunk_index, existing.vector_index_id,
            )
            return existing

        logger.warning(
            "Reconciliation candidate | doc=%s chunk=%d vector_id=%s reason=superseded",
            chunk.document_id, chunk.chunk_index, existing.vector_index_id,
        )
        return None

    async def retire_superseded(self, document_id: str, chunk_count: int) -> list[ChunkRecord]:
        """
        Drop metadata rows left by an earlier run that produced more chunks.

        Each dropped row's vector id is logged as a reconciliation candidate;
        the vector itself stays until an operator removes it.
        """
        stale = [
            record for record in await self._metadata_store.list_chunks(document_id)
            if record.chunk_index >= chunk_count
        ]
        for record in stale:
            logger.warning(
                "Reconciliation candidate | doc=%s chunk=%d vector_id=%s reason=superseded",
                document_id, record.chunk_index, record.vector_index_id,
            )
            await self._metadata_store.delete_chunk(document_id, record.chunk_index)
        return stale

    # ------------------------------------------------------------------
    # Two-phase write
    # ------------------------------------------------------------------

    @traced("index_write")
    async def write(self, chunk: ChunkWrite, vector: list[float]) -> ChunkRecord:
        await self.ensure_index()

        created_at = self._clock()

        # Phase 1: errors propagate to the caller's retry policy
        vector_id = await self._vector_index.index(VectorDocument(
            document_id=chunk.document_id,
            chunk_index=chunk.chunk_index,
            text=chunk.text,
            vector=vector,
            s3_key=chunk.s3_key,
            tenant_id=chunk.tenant_id,
            created_at=created_at,
            expiration_date=chunk.expiration_date,
        ))

        if not vector_id:
            logger.error(
                "Reconciliation candidate | doc=%s chunk=%d vector_id=%s reason=missing_id",
                chunk.document_id, chunk.chunk_index, vector_id,
            )
            raise IndexCorrelationError(
                f"Vector store returned no id for chunk {chunk.chunk_index}",
                document_id=chunk.document_id,
                chunk_index=chunk.chunk_index,
            )

        record = ChunkRecord(
            document_id=chunk.document_id,
            chunk_index=chunk.chunk_index,
            text=chunk.text,
            tenant_id=chunk.tenant_id,
            s3_key=chunk.s3_key,
            vector_index_id=vector_id,
            token_count=estimate_tokens(chunk.text),
            created_at=created_at,
            expiration_date=chunk.expiration_date,
        )

        # Phase 2: commit
        try:
            await self._metadata_store.put_chunk(record)
        except Exception as exc:
            logger.error(
                "Reconciliation candidate | doc=%s chunk=%d vector_id=%s reason=metadata_write_failed",
                chunk.document_id, chunk.chunk_index, vector_id,
                exc_info=True,
            )
            raise IndexCorrelationError(
                f"Metadata write failed for chunk {chunk.chunk_index}: {exc}",
                document_id=chunk.document_id,
                chunk_index=chunk.chunk_index,
                vector_index_id=vector_id,
            ) from exc

        logger.info(
            "Chunk indexed | doc=%s chunk=%s vector_id=%s tokens=%d",
            chunk.document_id, record.chunk_key, vector_id, record.token_count,
        )
        return record
