"""
Vector Index — Abstract Base

Every concrete vector backend implements this interface. The Index Writer
and the read path only speak this protocol.

Identity contract (enforced by ALL implementations):
  - index() never takes a client-supplied id. The backend assigns one and
    returns it; that id is the correlation key stored in the metadata store.
  - An empty or missing assigned id is reported as "" / None, never invented.

Tenant contract:
  - search() is always filtered by tenant_id. There is no unfiltered query.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import date, datetime
from enum import Enum


# ---------------------------------------------------------------------------
# Schema
# ---------------------------------------------------------------------------

class FieldKind(str, Enum):
    KEYWORD = "keyword"    # exact-match, filterable
    INTEGER = "integer"
    TEXT    = "text"       # full-text searchable
    DATE    = "date"


@dataclass(frozen=True)
class IndexField:
    name: str
    kind: FieldKind


@dataclass(frozen=True)
class IndexSchema:
    """Backend-neutral description of the chunk index."""
    dimension: int
    fields:    tuple[IndexField, ...]
    distance:  str = "cosine"

    @classmethod
    def for_chunks(cls, dimension: int) -> "IndexSchema":
        return cls(
            dimension=dimension,
            fields=(
                IndexField("documentId",     FieldKind.KEYWORD),
                IndexField("tenantId",       FieldKind.KEYWORD),
                IndexField("s3Key",          FieldKind.KEYWORD),
                IndexField("chunkIndex",     FieldKind.INTEGER),
                IndexField("text",           FieldKind.TEXT),
                IndexField("createdAt",      FieldKind.DATE),
                IndexField("expirationDate", FieldKind.DATE),
            ),
        )


# ---------------------------------------------------------------------------
# Shared data types
# ---------------------------------------------------------------------------

@dataclass
class VectorDocument:
    """One chunk as written to the vector index (no id: the backend assigns it)."""
    document_id:     str
    chunk_index:     int
    text:            str
    vector:          list[float]
    s3_key:          str
    tenant_id:       str
    created_at:      datetime
    expiration_date: date | None = None

    def properties(self) -> dict:
        """Stored payload, keyed by the schema's field names."""
        props: dict = {
            "documentId": self.document_id,
            "chunkIndex": self.chunk_index,
            "text":       self.text,
            "s3Key":      self.s3_key,
            "tenantId":   self.tenant_id,
            "createdAt":  self.created_at,
        }
        if self.expiration_date is not None:
            props["expirationDate"] = self.expiration_date
        return props


@dataclass
class SearchHit:
    """One result of a tenant-filtered similarity search."""
    vector_index_id: str
    document_id:     str
    chunk_index:     int
    text:            str
    s3_key:          str
    tenant_id:       str
    score:           float                 # cosine similarity
    extra:           dict = field(default_factory=dict)


# ---------------------------------------------------------------------------
# Abstract interface
# ---------------------------------------------------------------------------

class VectorIndexBase(ABC):
    """
    A named vector index (one collection per environment).

    index_name is fixed at construction; index_exists / create_index take
    the name explicitly so provisioning can target any index.
    """

    def __init__(self, index_name: str) -> None:
        self._index_name = index_name

    @property
    def index_name(self) -> str:
        return self._index_name

    @abstractmethod
    async def index_exists(self, name: str) -> bool:
        """True if the named index is already provisioned."""

    @abstractmethod
    async def create_index(self, name: str, schema: IndexSchema) -> bool:
        """
        Create the named index. Returns False if it already existed
        (including losing a creation race). Any other failure raises.
        """

    @abstractmethod
    async def index(self, document: VectorDocument) -> str | None:
        """Write one vector record and return the backend-assigned id."""

    @abstractmethod
    async def search(
        self,
        vector:    list[float],
        tenant_id: str,
        top_k:     int = 5,
    ) -> list[SearchHit]:
        """Nearest-neighbour search restricted to one tenant's chunks."""
