"""
Document & Chunk records — domain types and metadata-store tables.

Two stores hold a document's state:

  Metadata store (SQL)    documentation table  — one row per uploaded file
                          document_chunks table — one row per chunk
  Vector store (Weaviate) one object per chunk, id assigned by the store

The chunk row carries the vector store's assigned id (vector_index_id);
that column is the only link between the two stores.

Table names are environment-specific ("practice_tools_dev_documentation"),
so tables are built per name instead of declared as fixed ORM classes.
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from datetime import date, datetime
from enum import Enum

from sqlalchemy import (
    BigInteger,
    Column,
    Date,
    DateTime,
    Index,
    Integer,
    MetaData,
    String,
    Table,
    Text,
)

# Width of the zero-padded chunk position in the chunk sort key
CHUNK_INDEX_WIDTH = 5

# Tenant used when the storage key has no directory component
DEFAULT_TENANT = "default"


# ---------------------------------------------------------------------------
# Status state machine
# ---------------------------------------------------------------------------

class ExtractionStatus(str, Enum):
    """
    Maps to documentation.extraction_status.
    Transitions: pending → processing → completed | failed
    processing is implicit for the lifetime of one invocation and not persisted.
    """
    PENDING    = "pending"
    PROCESSING = "processing"
    COMPLETED  = "completed"
    FAILED     = "failed"

    @property
    def is_terminal(self) -> bool:
        return self in (ExtractionStatus.COMPLETED, ExtractionStatus.FAILED)


# ---------------------------------------------------------------------------
# Storage key convention: {tenant}/{document_id}/{filename}
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class StorageKey:
    key:         str
    tenant_id:   str
    document_id: str
    filename:    str
    extension:   str   # lower-cased, without the dot; "" if the name has none

    @classmethod
    def parse(cls, key: str) -> "StorageKey":
        """
        Split an object key into its conventional parts.

        Example:
            StorageKey.parse("acme/7f3a/Report.PDF")
            → tenant_id="acme", document_id="7f3a", extension="pdf"
        """
        parts = key.split("/")
        filename = parts[-1]
        extension = filename.rsplit(".", 1)[-1].lower() if "." in filename else ""
        return cls(
            key=key,
            tenant_id=parts[0] if len(parts) > 1 else DEFAULT_TENANT,
            document_id=parts[1] if len(parts) >= 2 else _document_id_from_key(key),
            filename=filename,
            extension=extension,
        )


def _document_id_from_key(key: str) -> str:
    """Deterministic id for keys that do not follow the path convention."""
    return re.sub(r"[^a-zA-Z0-9]", "-", key).lower()


# ---------------------------------------------------------------------------
# Records
# ---------------------------------------------------------------------------

@dataclass
class DocumentRecord:
    """One uploaded file as seen by the metadata store."""
    document_id:       str
    s3_key:            str | None = None
    file_name:         str | None = None
    extraction_status: ExtractionStatus = ExtractionStatus.PENDING
    file_size:         int | None = None
    expiration_date:   date | None = None
    processed_at:      datetime | None = None


@dataclass
class ChunkRecord:
    """
    One finalized chunk. Only written after the vector store has accepted
    the chunk and returned vector_index_id.
    """
    document_id:     str
    chunk_index:     int
    text:            str
    tenant_id:       str
    s3_key:          str
    vector_index_id: str
    token_count:     int
    created_at:      datetime
    expiration_date: date | None = None

    @property
    def chunk_key(self) -> str:
        return chunk_sort_key(self.chunk_index)


def chunk_sort_key(chunk_index: int) -> str:
    """CHUNK#00007 — sorts lexically in chunk order."""
    return f"CHUNK#{chunk_index:0{CHUNK_INDEX_WIDTH}d}"


@dataclass
class PipelineResult:
    """Outcome of one processing attempt, returned to the worker entry point."""
    document_id:    str
    status:         ExtractionStatus
    chunk_count:    int = 0
    file_size:      int | None = None
    reused_chunks:  int = 0
    retired_chunks: int = 0

    def as_dict(self) -> dict:
        return {
            "document_id":    self.document_id,
            "status":         self.status.value,
            "chunk_count":    self.chunk_count,
            "file_size":      self.file_size,
            "reused_chunks":  self.reused_chunks,
            "retired_chunks": self.retired_chunks,
        }


# ---------------------------------------------------------------------------
# Table builders
# ---------------------------------------------------------------------------

def build_documents_table(metadata: MetaData, name: str) -> Table:
    """documentation — one row per uploaded file, keyed by document id."""
    return Table(
        name,
        metadata,
        Column("id",                String(255), primary_key=True),
        Column("file_name",         Text,        nullable=True),
        Column("s3_key",            Text,        nullable=True),
        Column("extraction_status", String(32),  nullable=False, default=ExtractionStatus.PENDING.value),
        Column("file_size",         BigInteger,  nullable=True),
        Column("expiration_date",   Date,        nullable=True),
        Column("uploaded_at",       DateTime(timezone=True), nullable=True),
        Column("processed_at",      DateTime(timezone=True), nullable=True),
    )


def build_chunks_table(metadata: MetaData, name: str) -> Table:
    """document_chunks — composite key (document_id, chunk_key)."""
    return Table(
        name,
        metadata,
        Column("document_id",     String(255), primary_key=True),
        Column("chunk_key",       String(32),  primary_key=True),   # CHUNK#00000
        Column("chunk_index",     Integer,     nullable=False),
        Column("s3_key",          Text,        nullable=False),
        Column("tenant_id",       String(255), nullable=False),
        Column("extracted_text",  Text,        nullable=False),
        Column("vector_index_id", String(255), nullable=False),
        Column("token_count",     Integer,     nullable=False, default=0),
        Column("created_at",      DateTime(timezone=True), nullable=False),
        Column("expiration_date", Date,        nullable=True),
        Index(f"idx_{name}_vector_index_id", "vector_index_id"),
        Index(f"idx_{name}_tenant_id",       "tenant_id"),
    )
