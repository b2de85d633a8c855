"""
Metadata Store — documents and chunk records (SQLAlchemy Core, async)

Tables are named per environment and built at construction:

  <documents_table>   id → file_name, s3_key, extraction_status, file_size,
                           expiration_date, uploaded_at, processed_at
  <chunks_table>      (document_id, chunk_key) → chunk_index, extracted_text,
                           vector_index_id, tenant_id, s3_key, token_count,
                           created_at, expiration_date

Writes are upserts, so a re-run of the same document overwrites its own
rows instead of failing on the primary key.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Any

from sqlalchemy import MetaData, delete, insert, select, update
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker

from docpipeline.db.session import requires_serial_sessions, session_scope
from docpipeline.models.documents import (
    ChunkRecord,
    DocumentRecord,
    ExtractionStatus,
    build_chunks_table,
    build_documents_table,
    chunk_sort_key,
)

logger = logging.getLogger(__name__)


class MetadataStore:
    """
    Usage:
        store = MetadataStore(session_factory, "practice_tools_dev_documentation",
                              "practice_tools_dev_document_chunks")
        await store.put_chunk(record)
        chunks = await store.list_chunks("7f3a")
    """

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        documents_table: str,
        chunks_table:    str,
    ) -> None:
        self._session_factory = session_factory
        self._metadata = MetaData()
        self.documents = build_documents_table(self._metadata, documents_table)
        self.chunks = build_chunks_table(self._metadata, chunks_table)
        # one session at a time when every session shares a single connection
        self._session_lock = asyncio.Lock() if requires_serial_sessions(session_factory) else None

    async def create_tables(self, engine: AsyncEngine) -> None:
        """Provision both tables (idempotent). Production uses migrations."""
        async with engine.begin() as conn:
            await conn.run_sync(self._metadata.create_all)

    # ------------------------------------------------------------------
    # Documents
    # ------------------------------------------------------------------

    async def get_document(self, document_id: str) -> DocumentRecord | None:
        async with self._session() as session:
            row = (await session.execute(
                select(self.documents).where(self.documents.c.id == document_id)
            )).mappings().first()

        if row is None:
            return None
        return DocumentRecord(
            document_id=row["id"],
            s3_key=row["s3_key"],
            file_name=row["file_name"],
            extraction_status=ExtractionStatus(row["extraction_status"]),
            file_size=row["file_size"],
            expiration_date=row["expiration_date"],
            processed_at=row["processed_at"],
        )

    async def update_document(self, document_id: str, fields: dict[str, Any]) -> None:
        """Set the given columns; creates the row if it does not exist yet."""
        values = {
            k: (v.value if isinstance(v, ExtractionStatus) else v)
            for k, v in fields.items()
        }
        async with self._session() as session:
            result = await session.execute(
                update(self.documents)
                .where(self.documents.c.id == document_id)
                .values(**values)
            )
            if result.rowcount == 0:
                await session.execute(insert(self.documents).values(id=document_id, **values))
                logger.info("Document row created on update | doc=%s", document_id)

        logger.debug("Document updated | doc=%s fields=%s", document_id, sorted(values))

    # ------------------------------------------------------------------
    # Chunks
    # ------------------------------------------------------------------

    async def put_chunk(self, record: ChunkRecord) -> None:
        values = {
            "chunk_index":     record.chunk_index,
            "s3_key":          record.s3_key,
            "tenant_id":       record.tenant_id,
            "extracted_text":  record.text,
            "vector_index_id": record.vector_index_id,
            "token_count":     record.token_count,
            "created_at":      record.created_at,
            "expiration_date": record.expiration_date,
        }
        key = self._chunk_key_clause(record.document_id, record.chunk_index)

        async with self._session() as session:
            result = await session.execute(update(self.chunks).where(*key).values(**values))
            if result.rowcount == 0:
                await session.execute(insert(self.chunks).values(
                    document_id=record.document_id,
                    chunk_key=record.chunk_key,
                    **values,
                ))

        logger.debug(
            "Chunk stored | doc=%s chunk=%s vector_id=%s",
            record.document_id, record.chunk_key, record.vector_index_id,
        )

    async def get_chunk(self, document_id: str, chunk_index: int) -> ChunkRecord | None:
        async with self._session() as session:
            row = (await session.execute(
                select(self.chunks).where(*self._chunk_key_clause(document_id, chunk_index))
            )).mappings().first()
        return self._to_chunk(row) if row is not None else None

    async def list_chunks(self, document_id: str) -> list[ChunkRecord]:
        """All chunk records of a document, in chunk order."""
        async with self._session() as session:
            rows = (await session.execute(
                select(self.chunks)
                .where(self.chunks.c.document_id == document_id)
                .order_by(self.chunks.c.chunk_key)
            )).mappings().all()
        return [self._to_chunk(row) for row in rows]

    async def delete_chunk(self, document_id: str, chunk_index: int) -> bool:
        async with self._session() as session:
            result = await session.execute(
                delete(self.chunks).where(*self._chunk_key_clause(document_id, chunk_index))
            )
            deleted = result.rowcount > 0

        logger.debug("Chunk deleted | doc=%s chunk=%s deleted=%s", document_id, chunk_index, deleted)
        return deleted

    def _session(self):
        return session_scope(self._session_factory, self._session_lock)

    def _chunk_key_clause(self, document_id: str, chunk_index: int) -> tuple:
        return (
            self.chunks.c.document_id == document_id,
            self.chunks.c.chunk_key == chunk_sort_key(chunk_index),
        )

    @staticmethod
    def _to_chunk(row) -> ChunkRecord:
        return ChunkRecord(
            document_id=row["document_id"],
            chunk_index=row["chunk_index"],
            text=row["extracted_text"],
            tenant_id=row["tenant_id"],
            s3_key=row["s3_key"],
            vector_index_id=row["vector_index_id"],
            token_count=row["token_count"],
            created_at=row["created_at"],
            expiration_date=row["expiration_date"],
        )
