"""
Document Pipeline — one storage event, one document
════════════════════════════════════════════════════

  head_object ──► extract ──► chunk ──► [embed ──► index writer] × N ──► status ──► notify
  (file size)     (router)              (concurrent, bounded)

Failure policy:
  - Any error before or during chunk writes fails the document. The
    failed status is written with whatever file size is already known,
    a notification is scheduled, then the ORIGINAL exception is re-raised
    so the worker runtime applies its own retry / dead-letter policy.
  - Chunk writes are not cancelled when a sibling fails: every in-flight
    chunk finishes (or fails) before the terminal status is decided.
    The first failure by chunk index is the one re-raised.
  - Chunks finalized before the failure stay in both stores. The next
    attempt reuses them (same text, same vector id) instead of writing
    duplicate vectors.
  - After every chunk is written, metadata rows left past the new chunk
    count by an earlier, longer version are retired (logged, then deleted).
  - Status and notification failures never change the outcome.

Every collaborator is injected; the pipeline never reads the environment.
"""

from __future__ import annotations

import asyncio
import logging
import time
from datetime import date, datetime, timezone
from typing import Awaitable, Callable

from docpipeline.core.config import PipelineConfig
from docpipeline.db.metadata_store import MetadataStore
from docpipeline.models.documents import (
    ChunkRecord,
    ExtractionStatus,
    PipelineResult,
    StorageKey,
)
from docpipeline.processing.chunking import chunk_text
from docpipeline.processing.embeddings import EmbeddingGenerator
from docpipeline.processing.extractor import ExtractionRouter
from docpipeline.processing.ocr import TextractService
from docpipeline.services.index_writer import ChunkWrite, IndexWriter
from docpipeline.services.notifier import CompletionNotifier
from docpipeline.services.status import StatusTracker
from docpipeline.storage.s3 import ObjectStore
from docpipeline.vectorstore.base import VectorIndexBase

logger = logging.getLogger(__name__)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class DocumentPipeline:
    """
    Usage:
        pipeline = DocumentPipeline(config, object_store, textract, embedder,
                                    vector_index, metadata_store)
        result = await pipeline.process_document("uploads", "acme/7f3a/report.pdf")
    """

    def __init__(
        self,
        config:         PipelineConfig,
        object_store:   ObjectStore,
        textract:       TextractService,
        embedder:       EmbeddingGenerator,
        vector_index:   VectorIndexBase,
        metadata_store: MetadataStore,
        notifier:       CompletionNotifier | None = None,
        sleep:          Callable[[float], Awaitable[None]] = asyncio.sleep,
        clock:          Callable[[], datetime] = _utcnow,
    ) -> None:
        self._config = config
        self._object_store = object_store
        self._embedder = embedder
        self._metadata_store = metadata_store
        self._clock = clock

        self._router = ExtractionRouter(
            object_store,
            textract,
            poll_interval=config.poll_interval_seconds,
            max_polls=config.max_polls,
            sleep=sleep,
        )
        self._writer = IndexWriter(
            vector_index,
            metadata_store,
            dimension=config.embedding_dimensions,
            clock=clock,
        )
        self._notifier = notifier or CompletionNotifier(
            config.notification_url,
            attempts=config.notification_attempts,
            timeout=config.notification_timeout_seconds,
        )

    # ------------------------------------------------------------------
    # Public entry point
    # ------------------------------------------------------------------

    async def process_document(self, bucket: str, key: str) -> PipelineResult:
        storage_key = StorageKey.parse(key)
        document_id = storage_key.document_id
        tracker = StatusTracker(self._metadata_store, document_id, clock=self._clock)
        tracker.start()

        t0 = time.monotonic()
        logger.info(
            "Processing | doc=%s tenant=%s key=s3://%s/%s",
            document_id, storage_key.tenant_id, bucket, key,
        )

        try:
            try:
                result = await self._run(bucket, storage_key, tracker)
            except Exception as exc:
                logger.error(
                    "Processing failed | doc=%s error=%s: %s",
                    document_id, type(exc).__name__, exc,
                )
                await tracker.fail()
                self._notifier.notify(document_id, ExtractionStatus.FAILED.value)
                raise

            await tracker.complete()
            self._notifier.notify(document_id, ExtractionStatus.COMPLETED.value)
        finally:
            await self._notifier.drain()

        logger.info(
            "Processing complete | doc=%s chunks=%d reused=%d retired=%d elapsed_ms=%.0f",
            document_id, result.chunk_count, result.reused_chunks, result.retired_chunks,
            (time.monotonic() - t0) * 1000,
        )
        return result

    # ------------------------------------------------------------------
    # Steps
    # ------------------------------------------------------------------

    async def _run(
        self,
        bucket:      str,
        storage_key: StorageKey,
        tracker:     StatusTracker,
    ) -> PipelineResult:
        document_id = storage_key.document_id

        # --- Phase 1: file size (known before extraction can fail) -------
        file_size = await self._object_store.head_object(bucket, storage_key.key)
        tracker.record_file_size(file_size)

        expiration_date = await self._load_expiration_date(document_id)

        # --- Phase 2: extraction -----------------------------------------
        extraction = await self._router.extract(
            bucket, storage_key.key, storage_key.extension, document_id=document_id,
        )

        # --- Phase 3: chunking -------------------------------------------
        chunks = chunk_text(
            extraction.text,
            max_tokens=self._config.max_tokens,
            overlap_words=self._config.overlap_words,
        )
        logger.info("Chunked | doc=%s chunks=%d", document_id, len(chunks))

        if not chunks:
            logger.warning("No text extracted, nothing to index | doc=%s", document_id)
            retired = await self._writer.retire_superseded(document_id, 0)
            return PipelineResult(
                document_id=document_id,
                status=ExtractionStatus.COMPLETED,
                file_size=file_size,
                retired_chunks=len(retired),
            )

        # --- Phase 4: embed + index, bounded fan-out ---------------------
        await self._writer.ensure_index()

        semaphore = asyncio.Semaphore(self._config.max_concurrent_chunks)
        writes = [
            ChunkWrite(
                document_id=document_id,
                chunk_index=index,
                text=text,
                s3_key=storage_key.key,
                tenant_id=storage_key.tenant_id,
                expiration_date=expiration_date,
            )
            for index, text in enumerate(chunks)
        ]
        outcomes = await asyncio.gather(
            *(self._process_chunk(write, semaphore) for write in writes),
            return_exceptions=True,
        )

        failures = [
            (index, outcome)
            for index, outcome in enumerate(outcomes)
            if isinstance(outcome, BaseException)
        ]
        if failures:
            for index, error in failures:
                logger.error(
                    "Chunk failed | doc=%s chunk=%d error=%s: %s",
                    document_id, index, type(error).__name__, error,
                )
            logger.error(
                "Chunk writes failed | doc=%s failed=%d of %d",
                document_id, len(failures), len(chunks),
            )
            raise failures[0][1]

        # --- Phase 5: retire rows past the new chunk count --------------
        retired = await self._writer.retire_superseded(document_id, len(chunks))

        reused = sum(1 for _, was_reused in outcomes if was_reused)
        return PipelineResult(
            document_id=document_id,
            status=ExtractionStatus.COMPLETED,
            chunk_count=len(chunks),
            file_size=file_size,
            reused_chunks=reused,
            retired_chunks=len(retired),
        )

    async def _process_chunk(
        self,
        write:     ChunkWrite,
        semaphore: asyncio.Semaphore,
    ) -> tuple[ChunkRecord, bool]:
        """embed → vector write → metadata write, sequential within one chunk."""
        async with semaphore:
            existing = await self._writer.find_reusable(write)
            if existing is not None:
                return existing, True

            vector = await self._embedder.embed(
                write.text, chunk_index=write.chunk_index, document_id=write.document_id,
            )
            record = await self._writer.write(write, vector)
            return record, False

    async def _load_expiration_date(self, document_id: str) -> date | None:
        """A missing or unreadable document record means no expiration date."""
        try:
            document = await self._metadata_store.get_document(document_id)
        except Exception as exc:
            logger.warning("Document lookup failed | doc=%s error=%s", document_id, exc)
            return None

        if document is None:
            logger.info("Document record not found | doc=%s", document_id)
            return None
        return document.expiration_date
