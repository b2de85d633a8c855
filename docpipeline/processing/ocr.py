"""
OCR Job Orchestration  —  AWS Textract
═══════════════════════════════════════

Two Textract modes are used by the pipeline:

  Async text detection  (PDF and scanned images)
    start_document_text_detection → JobId
    get_document_text_detection   → IN_PROGRESS | SUCCEEDED | FAILED
    Results are paginated via NextToken once the job has succeeded.

  Sync document analysis  (word-processor documents)
    analyze_document with FeatureTypes=[TABLES, FORMS]
    One call, no polling.

Only LINE blocks are kept; each line is emitted followed by "\n", in the
order Textract returns them.

Job state machine (OcrJobOrchestrator.state):

  NOT_STARTED ──start──► IN_PROGRESS ──poll──► SUCCEEDED
                              │                FAILED
                              └── poll cap ──► TIMED_OUT

Polling policy:
  sleep(poll_interval) before every status call, at most max_polls calls
  (defaults 5 s × 60 = 5 minutes). The sleep function is injected so tests
  run without real delays. A timed-out job is not restarted in-process;
  the worker's retry policy decides what happens next.

boto3 is synchronous, so every Textract call runs in the default thread
executor to keep the event loop free.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Awaitable, Callable

import boto3

from docpipeline.core.errors import ExtractionFailed, ExtractionTimeout

logger = logging.getLogger(__name__)

# Defaults mirror PipelineConfig
DEFAULT_POLL_INTERVAL_SECONDS = 5.0
DEFAULT_MAX_POLLS = 60

# Feature set for synchronous document analysis
ANALYZE_FEATURE_TYPES = ["TABLES", "FORMS"]


# ---------------------------------------------------------------------------
# Shared data types
# ---------------------------------------------------------------------------

class JobState(str, Enum):
    NOT_STARTED = "NOT_STARTED"
    IN_PROGRESS = "IN_PROGRESS"
    SUCCEEDED   = "SUCCEEDED"
    FAILED      = "FAILED"
    TIMED_OUT   = "TIMED_OUT"


@dataclass
class TextractPage:
    """
    One page of a get_document_text_detection response.

    status         : Textract JobStatus (IN_PROGRESS | SUCCEEDED | FAILED | PARTIAL_SUCCESS)
    blocks         : raw Block dicts on this result page
    next_token     : pagination token; None on the last page
    status_message : Textract's StatusMessage (set on failures)
    """
    status:         str
    blocks:         list[dict] = field(default_factory=list)
    next_token:     str | None = None
    status_message: str | None = None


def lines_from_blocks(blocks: list[dict]) -> str:
    """Join LINE block texts, each followed by a newline, in service order."""
    return "".join(
        f"{block.get('Text', '')}\n"
        for block in blocks
        if block.get("BlockType") == "LINE"
    )


# ---------------------------------------------------------------------------
# Textract client wrapper
# ---------------------------------------------------------------------------

class TextractService:
    """
    Thin async facade over the boto3 Textract client.

    IAM permissions required on the worker role:
      textract:StartDocumentTextDetection
      textract:GetDocumentTextDetection
      textract:AnalyzeDocument
      s3:GetObject   (Textract reads the object with the caller's credentials)
    """

    def __init__(self, region: str = "us-east-1", client=None) -> None:
        self._region = region
        self._client = client

    def _textract(self):
        # boto3 clients are thread-safe; one per service instance is enough
        if self._client is None:
            self._client = boto3.client("textract", region_name=self._region)
        return self._client

    async def _run(self, fn, **kwargs):
        loop = asyncio.get_event_loop()
        return await loop.run_in_executor(None, lambda: fn(**kwargs))

    async def start_job(self, bucket: str, key: str) -> str:
        client = self._textract()
        resp = await self._run(
            client.start_document_text_detection,
            DocumentLocation={"S3Object": {"Bucket": bucket, "Name": key}},
        )
        return resp["JobId"]

    async def get_job_status(self, job_id: str, next_token: str | None = None) -> TextractPage:
        client = self._textract()
        kwargs: dict = {"JobId": job_id}
        if next_token:
            kwargs["NextToken"] = next_token

        resp = await self._run(client.get_document_text_detection, **kwargs)
        return TextractPage(
            status=resp["JobStatus"],
            blocks=resp.get("Blocks", []),
            next_token=resp.get("NextToken"),
            status_message=resp.get("StatusMessage"),
        )

    async def analyze_sync(self, bucket: str, key: str) -> str:
        """Synchronous document analysis; returns LINE text directly."""
        client = self._textract()
        resp = await self._run(
            client.analyze_document,
            Document={"S3Object": {"Bucket": bucket, "Name": key}},
            FeatureTypes=ANALYZE_FEATURE_TYPES,
        )
        text = lines_from_blocks(resp.get("Blocks", []))
        logger.info("Textract analyze | key=%s chars=%d", key, len(text))
        return text


# ---------------------------------------------------------------------------
# Async job orchestrator
# ---------------------------------------------------------------------------

class OcrJobOrchestrator:
    """
    Drives one asynchronous text-detection job to completion.

    Usage:
        orchestrator = OcrJobOrchestrator(textract, poll_interval=5.0, max_polls=60)
        text = await orchestrator.run(bucket, key)
        orchestrator.state   # JobState.SUCCEEDED

    One instance per document: the state and poll counter describe a single job.
    """

    def __init__(
        self,
        textract:      TextractService,
        poll_interval: float = DEFAULT_POLL_INTERVAL_SECONDS,
        max_polls:     int   = DEFAULT_MAX_POLLS,
        sleep:         Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        self._textract = textract
        self._poll_interval = poll_interval
        self._max_polls = max_polls
        self._sleep = sleep

        self.state: JobState = JobState.NOT_STARTED
        self.job_id: str | None = None
        self.polls: int = 0

    async def run(self, bucket: str, key: str, document_id: str | None = None) -> str:
        """
        Start the job, poll until terminal, and return the LINE text.

        Raises:
            ExtractionFailed   — Textract reported FAILED
            ExtractionTimeout  — still running after max_polls status calls
        """
        self.job_id = await self._textract.start_job(bucket, key)
        self.state = JobState.IN_PROGRESS
        logger.info("Textract job started | job=%s key=s3://%s/%s", self.job_id, bucket, key)

        first_page = await self._wait_for_completion(document_id)

        text = await self._collect_lines(first_page)
        logger.info(
            "Textract job done | job=%s polls=%d chars=%d",
            self.job_id, self.polls, len(text),
        )
        return text

    async def _wait_for_completion(self, document_id: str | None) -> TextractPage:
        while self.polls < self._max_polls:
            await self._sleep(self._poll_interval)
            self.polls += 1

            page = await self._textract.get_job_status(self.job_id)
            logger.debug(
                "Textract poll | job=%s attempt=%d status=%s",
                self.job_id, self.polls, page.status,
            )

            if page.status == "SUCCEEDED":
                self.state = JobState.SUCCEEDED
                return page

            if page.status == "PARTIAL_SUCCESS":
                logger.warning(
                    "Textract partial success — using available pages | job=%s msg=%s",
                    self.job_id, page.status_message,
                )
                self.state = JobState.SUCCEEDED
                return page

            if page.status == "FAILED":
                self.state = JobState.FAILED
                logger.error(
                    "Textract job failed | job=%s msg=%s", self.job_id, page.status_message,
                )
                raise ExtractionFailed(self.job_id, page.status_message, document_id=document_id)

        self.state = JobState.TIMED_OUT
        logger.error("Textract job timed out | job=%s polls=%d", self.job_id, self.polls)
        raise ExtractionTimeout(self.job_id, self.polls, document_id=document_id)

    async def _collect_lines(self, first_page: TextractPage) -> str:
        """Follow NextToken from the succeeded status response until exhausted."""
        parts = [lines_from_blocks(first_page.blocks)]
        next_token = first_page.next_token
        pages = 1

        while next_token:
            page = await self._textract.get_job_status(self.job_id, next_token)
            parts.append(lines_from_blocks(page.blocks))
            next_token = page.next_token
            pages += 1

        logger.debug("Textract results | job=%s result_pages=%d", self.job_id, pages)
        return "".join(parts)
