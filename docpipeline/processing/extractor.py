"""
Extraction Router
═════════════════

Selects the text-extraction strategy from the file extension:

  pdf, png, jpg, jpeg  →  async Textract text detection (OcrJobOrchestrator)
  docx, doc            →  sync Textract document analysis (TABLES + FORMS)
  txt                  →  direct S3 read, decoded as UTF-8
  anything else        →  UnsupportedFileType

This module is the only place that knows the extension table.
The pipeline only sees ExtractionResult.
"""

from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import dataclass
from enum import Enum
from typing import Awaitable, Callable

from docpipeline.core.errors import UnsupportedFileType
from docpipeline.observability.tracing import traced
from docpipeline.processing.ocr import (
    DEFAULT_MAX_POLLS,
    DEFAULT_POLL_INTERVAL_SECONDS,
    OcrJobOrchestrator,
    TextractService,
)
from docpipeline.storage.s3 import ObjectStore

logger = logging.getLogger(__name__)


class ExtractionStrategy(str, Enum):
    OCR_JOB      = "ocr_job"
    ANALYZE_SYNC = "analyze_sync"
    DIRECT_READ  = "direct_read"


_STRATEGY_BY_EXTENSION: dict[str, ExtractionStrategy] = {
    "pdf":  ExtractionStrategy.OCR_JOB,
    "png":  ExtractionStrategy.OCR_JOB,
    "jpg":  ExtractionStrategy.OCR_JOB,
    "jpeg": ExtractionStrategy.OCR_JOB,
    "docx": ExtractionStrategy.ANALYZE_SYNC,
    "doc":  ExtractionStrategy.ANALYZE_SYNC,
    "txt":  ExtractionStrategy.DIRECT_READ,
}

SUPPORTED_EXTENSIONS = frozenset(_STRATEGY_BY_EXTENSION)


def strategy_for(extension: str) -> ExtractionStrategy | None:
    return _STRATEGY_BY_EXTENSION.get(extension.lower())


# ---------------------------------------------------------------------------
# Result dataclass
# ---------------------------------------------------------------------------

@dataclass
class ExtractionResult:
    """
    text        : extracted text (may be empty: a valid zero-chunk document)
    strategy    : which path produced it
    job_id      : Textract job id for OCR_JOB, else None
    polls       : status calls made for OCR_JOB, else 0
    elapsed_ms  : wall time of the extraction
    """
    text:       str
    strategy:   ExtractionStrategy
    job_id:     str | None = None
    polls:      int = 0
    elapsed_ms: float = 0.0


# ---------------------------------------------------------------------------
# Router
# ---------------------------------------------------------------------------

class ExtractionRouter:
    """
    Usage:
        router = ExtractionRouter(object_store, textract, poll_interval=5.0, max_polls=60)
        result = await router.extract(bucket, key, extension="pdf", document_id="7f3a")
    """

    def __init__(
        self,
        object_store:  ObjectStore,
        textract:      TextractService,
        poll_interval: float = DEFAULT_POLL_INTERVAL_SECONDS,
        max_polls:     int   = DEFAULT_MAX_POLLS,
        sleep:         Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        self._object_store = object_store
        self._textract = textract
        self._poll_interval = poll_interval
        self._max_polls = max_polls
        self._sleep = sleep

    @traced("extract")
    async def extract(
        self,
        bucket:      str,
        key:         str,
        extension:   str,
        document_id: str | None = None,
    ) -> ExtractionResult:
        strategy = strategy_for(extension)
        if strategy is None:
            logger.error("Unsupported file type | doc=%s ext=%r", document_id, extension)
            raise UnsupportedFileType(extension, document_id=document_id)

        t0 = time.monotonic()
        logger.info("Extraction | doc=%s strategy=%s ext=%s", document_id, strategy.value, extension)

        if strategy is ExtractionStrategy.OCR_JOB:
            orchestrator = OcrJobOrchestrator(
                self._textract,
                poll_interval=self._poll_interval,
                max_polls=self._max_polls,
                sleep=self._sleep,
            )
            text = await orchestrator.run(bucket, key, document_id=document_id)
            result = ExtractionResult(
                text=text, strategy=strategy,
                job_id=orchestrator.job_id, polls=orchestrator.polls,
            )
        elif strategy is ExtractionStrategy.ANALYZE_SYNC:
            text = await self._textract.analyze_sync(bucket, key)
            result = ExtractionResult(text=text, strategy=strategy)
        else:
            raw = await self._object_store.get_object(bucket, key)
            result = ExtractionResult(text=_decode_text(raw, key), strategy=strategy)

        result.elapsed_ms = (time.monotonic() - t0) * 1000
        logger.info(
            "Extraction done | doc=%s strategy=%s chars=%d elapsed_ms=%.0f",
            document_id, strategy.value, len(result.text), result.elapsed_ms,
        )
        return result


def _decode_text(raw: bytes, key: str) -> str:
    try:
        return raw.decode("utf-8")
    except UnicodeDecodeError:
        logger.warning("Text file is not valid UTF-8, decoding as latin-1 | key=%s", key)
        return raw.decode("latin-1")
