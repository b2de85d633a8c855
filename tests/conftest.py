"""
Root conftest.py — Shared fixtures for ALL tests (unit + integration)

Fixture hierarchy:
  function-scoped : metadata_store (aiosqlite in-memory), vector_index,
                    textract, object_store, embedder, notifier, make_pipeline

Environment strategy:
  - The metadata store is a real MetadataStore over sqlite+aiosqlite:///:memory:
  - S3, Textract, OpenAI and Weaviate are replaced by in-memory fakes that
    implement the same async interfaces — no network, no credentials.
  - Every sleep is injected, so OCR polling and retry back-off run instantly.

How to run:
  pytest                          # all tests
  pytest -m unit                  # unit tests only
  pytest -m integration           # end-to-end pipeline scenarios
  pytest tests/unit/test_chunking.py
"""

from __future__ import annotations

import json
import os
import uuid
from datetime import datetime, timezone
from typing import AsyncGenerator
from unittest.mock import AsyncMock, MagicMock

import httpx
import pytest
import pytest_asyncio

# ─────────────────────────────────────────────────────────────────────────────
# Settings BEFORE any package imports so modules read test config
# ─────────────────────────────────────────────────────────────────────────────

os.environ.setdefault("ENVIRONMENT",           "dev")
os.environ.setdefault("DATABASE_URL",          "sqlite+aiosqlite:///:memory:")
os.environ.setdefault("AWS_REGION",            "us-east-1")
os.environ.setdefault("AWS_ACCESS_KEY_ID",     "test")
os.environ.setdefault("AWS_SECRET_ACCESS_KEY", "test")
os.environ.setdefault("OPENAI_API_KEY",        "sk-test-key")
os.environ.setdefault("CELERY_BROKER_URL",     "memory://")
os.environ.setdefault("CELERY_RESULT_BACKEND", "cache+memory://")

from docpipeline.core.config import PipelineConfig  # noqa: E402
from docpipeline.core.errors import EmbeddingError  # noqa: E402
from docpipeline.db.metadata_store import MetadataStore  # noqa: E402
from docpipeline.db.session import create_engine, create_session_factory  # noqa: E402
from docpipeline.processing.ocr import TextractPage  # noqa: E402
from docpipeline.services.notifier import CompletionNotifier  # noqa: E402
from docpipeline.services.pipeline import DocumentPipeline  # noqa: E402
from docpipeline.storage.s3 import ObjectStore  # noqa: E402
from docpipeline.vectorstore.base import (  # noqa: E402
    IndexSchema,
    SearchHit,
    VectorDocument,
    VectorIndexBase,
)

TEST_BUCKET = "test-uploads"
TEST_DIMENSIONS = 8
NOTIFY_URL = "http://notify.test/api/events"
FIXED_NOW = datetime(2026, 3, 1, 12, 0, tzinfo=timezone.utc)


# ─────────────────────────────────────────────────────────────────────────────
# Sample text builders
# ─────────────────────────────────────────────────────────────────────────────

def make_sentence(i: int) -> str:
    """101-char, 20-word sentence body (no terminator): 'Row007 data data …'."""
    return f"Row{i:03d} " + " ".join(["data"] * 19)


def make_ocr_lines(count: int) -> list[str]:
    """One terminated sentence per OCR line."""
    return [f"{make_sentence(i)}." for i in range(count)]


def line_blocks(lines: list[str], page: int = 1) -> list[dict]:
    blocks: list[dict] = [{"BlockType": "PAGE", "Page": page}]
    for text in lines:
        blocks.append({"BlockType": "LINE", "Text": text, "Page": page})
        blocks.append({"BlockType": "WORD", "Text": text.split()[0], "Page": page})
    return blocks


# ─────────────────────────────────────────────────────────────────────────────
# In-memory fakes
# ─────────────────────────────────────────────────────────────────────────────

class ScriptedTextract:
    """
    Textract stand-in.

    statuses : responses for successive status polls (no NextToken);
               the last one repeats once the script runs out
    pages    : NextToken → TextractPage for result pagination
    """

    def __init__(
        self,
        statuses: list[TextractPage] | None = None,
        pages: dict[str, TextractPage] | None = None,
        analyze_text: str = "",
    ) -> None:
        self._statuses = statuses or [TextractPage(status="SUCCEEDED")]
        self._pages = pages or {}
        self.analyze_text = analyze_text
        self.started: list[tuple[str, str]] = []
        self.status_calls = 0
        self.page_calls: list[str] = []
        self.analyze_calls: list[tuple[str, str]] = []

    async def start_job(self, bucket: str, key: str) -> str:
        self.started.append((bucket, key))
        return f"job-{len(self.started)}"

    async def get_job_status(self, job_id: str, next_token: str | None = None) -> TextractPage:
        if next_token:
            self.page_calls.append(next_token)
            return self._pages[next_token]
        response = self._statuses[min(self.status_calls, len(self._statuses) - 1)]
        self.status_calls += 1
        return response

    async def analyze_sync(self, bucket: str, key: str) -> str:
        self.analyze_calls.append((bucket, key))
        return self.analyze_text


class InMemoryVectorIndex(VectorIndexBase):
    """Vector index that assigns uuid4 ids and keeps records in a dict."""

    def __init__(self, index_name: str = "DocumentVectors_dev", exists: bool = False) -> None:
        super().__init__(index_name)
        self.exists = exists
        self.create_calls: list[tuple[str, IndexSchema]] = []
        self.records: dict[str, VectorDocument] = {}
        self.missing_id_for: set[int] = set()
        self.fail_for: set[int] = set()

    async def index_exists(self, name: str) -> bool:
        return self.exists

    async def create_index(self, name: str, schema: IndexSchema) -> bool:
        self.create_calls.append((name, schema))
        created = not self.exists
        self.exists = True
        return created

    async def index(self, document: VectorDocument) -> str | None:
        if document.chunk_index in self.fail_for:
            raise ConnectionError("vector store unavailable")
        vector_id = str(uuid.uuid4())
        self.records[vector_id] = document
        if document.chunk_index in self.missing_id_for:
            return None
        return vector_id

    async def search(self, vector: list[float], tenant_id: str, top_k: int = 5) -> list[SearchHit]:
        hits = [
            SearchHit(
                vector_index_id=vid,
                document_id=doc.document_id,
                chunk_index=doc.chunk_index,
                text=doc.text,
                s3_key=doc.s3_key,
                tenant_id=doc.tenant_id,
                score=1.0,
            )
            for vid, doc in self.records.items()
            if doc.tenant_id == tenant_id
        ]
        return hits[:top_k]

    def chunk_indexes(self, document_id: str) -> list[int]:
        return sorted(d.chunk_index for d in self.records.values() if d.document_id == document_id)


class FakeEmbedder:
    """Deterministic embedder; chunks listed in fail_for raise EmbeddingError."""

    def __init__(self, dimensions: int = TEST_DIMENSIONS, fail_for: set[int] | None = None) -> None:
        self.dimensions = dimensions
        self.fail_for = fail_for or set()
        self.calls: list[int | None] = []

    async def embed(self, text: str, *, chunk_index: int | None = None, document_id: str | None = None) -> list[float]:
        self.calls.append(chunk_index)
        if chunk_index in self.fail_for:
            raise EmbeddingError(
                f"Embedding failed for chunk {chunk_index}",
                chunk_index=chunk_index, document_id=document_id,
            )
        return [round(0.1 * (i + 1), 3) for i in range(self.dimensions)]


# ─────────────────────────────────────────────────────────────────────────────
# Fixtures
# ─────────────────────────────────────────────────────────────────────────────

@pytest.fixture
def no_sleep() -> AsyncMock:
    """Injected in place of asyncio.sleep; records requested delays."""
    return AsyncMock(return_value=None)


@pytest.fixture
def fixed_clock():
    return lambda: FIXED_NOW


@pytest.fixture
def pipeline_config() -> PipelineConfig:
    return PipelineConfig.for_environment(
        "dev",
        embedding_dimensions=TEST_DIMENSIONS,
        notification_url=NOTIFY_URL,
    )


@pytest_asyncio.fixture
async def metadata_store(pipeline_config) -> AsyncGenerator[MetadataStore, None]:
    engine = create_engine("sqlite+aiosqlite:///:memory:")
    store = MetadataStore(
        create_session_factory(engine),
        documents_table=pipeline_config.documents_table,
        chunks_table=pipeline_config.chunks_table,
    )
    await store.create_tables(engine)
    yield store
    await engine.dispose()


@pytest.fixture
def vector_index(pipeline_config) -> InMemoryVectorIndex:
    return InMemoryVectorIndex(pipeline_config.vector_index_name)


@pytest.fixture
def textract() -> ScriptedTextract:
    return ScriptedTextract()


@pytest.fixture
def embedder() -> FakeEmbedder:
    return FakeEmbedder()


@pytest.fixture
def object_store():
    """
    Mocked ObjectStore. head_object → 4096 bytes, get_object → b"".
    Override per test: object_store.get_object.return_value = b"..."
    """
    store = MagicMock(spec=ObjectStore)
    store.head_object = AsyncMock(return_value=4096)
    store.get_object  = AsyncMock(return_value=b"")
    return store


@pytest.fixture
def notifications() -> list[dict]:
    """Every JSON body POSTed to the notification endpoint."""
    return []


@pytest.fixture
def notify_status_code() -> int:
    return 204


@pytest_asyncio.fixture
async def notifier(notifications, notify_status_code, no_sleep) -> AsyncGenerator[CompletionNotifier, None]:
    def _handler(request: httpx.Request) -> httpx.Response:
        notifications.append(json.loads(request.content))
        return httpx.Response(notify_status_code)

    async with httpx.AsyncClient(transport=httpx.MockTransport(_handler)) as client:
        yield CompletionNotifier(NOTIFY_URL, attempts=2, client=client, sleep=no_sleep)


@pytest.fixture
def make_pipeline(
    pipeline_config, object_store, textract, embedder, vector_index,
    metadata_store, notifier, no_sleep, fixed_clock,
):
    """Factory: DocumentPipeline over the fakes; keyword overrides replace any part."""
    def _build(**overrides) -> DocumentPipeline:
        parts = {
            "config":         pipeline_config,
            "object_store":   object_store,
            "textract":       textract,
            "embedder":       embedder,
            "vector_index":   vector_index,
            "metadata_store": metadata_store,
            "notifier":       notifier,
            "sleep":          no_sleep,
            "clock":          fixed_clock,
        }
        parts.update(overrides)
        return DocumentPipeline(**parts)
    return _build
