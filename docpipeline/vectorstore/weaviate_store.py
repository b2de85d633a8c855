"""
Weaviate Vector Index — one collection per environment

Collection: DocumentVectors_<env>  (e.g. DocumentVectors_dev)

Identity:
  Objects are inserted WITHOUT a uuid. Weaviate generates one and
  returns it from data.insert(); that uuid is the chunk's vector_index_id.
  The mapping (document_id, chunk_index) → vector id lives only in the
  metadata store.

Schema mapping (IndexSchema → Weaviate properties):
  KEYWORD → TEXT with FIELD tokenization (whole-value match, filterable)
  INTEGER → INT
  TEXT    → TEXT with WORD tokenization (BM25 searchable)
  DATE    → DATE (RFC 3339; plain dates are stored as midnight UTC)
  vectors → bring-your-own, HNSW with cosine distance

The v4 client is synchronous; every call runs in the default thread
executor so chunk coroutines do not block each other.
"""

from __future__ import annotations

import asyncio
import logging
from datetime import date, datetime, time, timezone

import weaviate
import weaviate.classes as wvc
from weaviate.auth import AuthApiKey
from weaviate.classes.config import Configure, DataType, Property, Tokenization
from weaviate.classes.query import Filter, MetadataQuery
from weaviate.exceptions import UnexpectedStatusCodeError

from docpipeline.core.config import Settings
from docpipeline.vectorstore.base import (
    FieldKind,
    IndexSchema,
    SearchHit,
    VectorDocument,
    VectorIndexBase,
)

logger = logging.getLogger(__name__)

_RETURN_PROPERTIES = ["documentId", "chunkIndex", "text", "s3Key", "tenantId"]


def _to_property(name: str, kind: FieldKind) -> Property:
    if kind is FieldKind.KEYWORD:
        return Property(
            name=name, data_type=DataType.TEXT,
            tokenization=Tokenization.FIELD, index_filterable=True, index_searchable=False,
        )
    if kind is FieldKind.INTEGER:
        return Property(name=name, data_type=DataType.INT, index_filterable=True)
    if kind is FieldKind.DATE:
        return Property(name=name, data_type=DataType.DATE, index_filterable=True)
    return Property(
        name=name, data_type=DataType.TEXT,
        tokenization=Tokenization.WORD, index_searchable=True,
    )


def _to_weaviate_value(value):
    """Weaviate DATE needs a timezone-aware datetime."""
    if isinstance(value, datetime):
        return value if value.tzinfo else value.replace(tzinfo=timezone.utc)
    if isinstance(value, date):
        return datetime.combine(value, time.min, tzinfo=timezone.utc)
    return value


class WeaviateVectorIndex(VectorIndexBase):
    """Vector index backed by a single Weaviate collection."""

    def __init__(self, index_name: str, client: weaviate.WeaviateClient) -> None:
        super().__init__(index_name)
        self._client = client

    async def _run(self, fn, *args, **kwargs):
        loop = asyncio.get_event_loop()
        return await loop.run_in_executor(None, lambda: fn(*args, **kwargs))

    def _collection(self):
        return self._client.collections.get(self._index_name)

    # ------------------------------------------------------------------
    # Provisioning
    # ------------------------------------------------------------------

    async def index_exists(self, name: str) -> bool:
        return await self._run(self._client.collections.exists, name)

    async def create_index(self, name: str, schema: IndexSchema) -> bool:
        if schema.distance != "cosine":
            raise ValueError(f"Unsupported distance metric: {schema.distance}")

        try:
            await self._run(
                self._client.collections.create,
                name=name,
                description="Document chunks with caller-supplied embeddings",
                vectorizer_config=Configure.Vectorizer.none(),   # we supply our own vectors
                vector_index_config=Configure.VectorIndex.hnsw(
                    distance_metric=wvc.config.VectorDistances.COSINE,
                ),
                properties=[_to_property(f.name, f.kind) for f in schema.fields],
            )
        except UnexpectedStatusCodeError as exc:
            # Another worker created it between our exists check and create
            if "already exists" in str(exc).lower():
                logger.info("Weaviate collection already exists | name=%s", name)
                return False
            raise

        logger.info("Weaviate collection created | name=%s dim=%d", name, schema.dimension)
        return True

    # ------------------------------------------------------------------
    # Core operations
    # ------------------------------------------------------------------

    async def index(self, document: VectorDocument) -> str | None:
        properties = {k: _to_weaviate_value(v) for k, v in document.properties().items()}

        assigned = await self._run(
            self._collection().data.insert,
            properties=properties,
            vector=document.vector,
        )

        vector_id = str(assigned) if assigned else None
        logger.debug(
            "Weaviate insert | doc=%s chunk=%d id=%s",
            document.document_id, document.chunk_index, vector_id,
        )
        return vector_id

    async def search(
        self,
        vector:    list[float],
        tenant_id: str,
        top_k:     int = 5,
    ) -> list[SearchHit]:
        response = await self._run(
            self._collection().query.near_vector,
            near_vector=vector,
            limit=top_k,
            filters=Filter.by_property("tenantId").equal(tenant_id),
            return_metadata=MetadataQuery(distance=True),
            return_properties=_RETURN_PROPERTIES,
        )

        hits = []
        for obj in response.objects:
            props = obj.properties
            score = 1.0 - (obj.metadata.distance or 0.0)  # convert distance → similarity
            hits.append(SearchHit(
                vector_index_id=str(obj.uuid),
                document_id=props.get("documentId", ""),
                chunk_index=int(props.get("chunkIndex", 0)),
                text=props.get("text", ""),
                s3_key=props.get("s3Key", ""),
                tenant_id=props.get("tenantId", ""),
                score=round(score, 4),
            ))

        logger.debug(
            "Weaviate search | tenant=%s top_k=%d results=%d", tenant_id, top_k, len(hits),
        )
        return hits


# ---------------------------------------------------------------------------
# Client factory (one per worker invocation)
# ---------------------------------------------------------------------------

def create_weaviate_client(settings: Settings) -> weaviate.WeaviateClient:
    """
    Create and return a connected Weaviate client.
    An API key switches on authentication (managed clusters); without one
    the client talks to a local / Docker instance.
    """
    if settings.weaviate_api_key:
        return weaviate.connect_to_custom(
            http_host=settings.weaviate_host,
            http_port=settings.weaviate_port,
            http_secure=True,
            grpc_host=settings.weaviate_host,
            grpc_port=settings.weaviate_grpc_port,
            grpc_secure=True,
            auth_credentials=AuthApiKey(settings.weaviate_api_key),
        )
    return weaviate.connect_to_local(
        host=settings.weaviate_host,
        port=settings.weaviate_port,
        grpc_port=settings.weaviate_grpc_port,
    )
