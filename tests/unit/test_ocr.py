"""
Unit Tests — Textract OCR orchestration
═══════════════════════════════════════

Coverage targets:
  ✅ Job succeeds on the second poll, results follow NextToken
  ✅ FAILED → ExtractionFailed carrying the status message
  ✅ Poll cap reached → ExtractionTimeout, state TIMED_OUT, exactly max_polls sleeps
  ✅ PARTIAL_SUCCESS is treated as success
  ✅ Only LINE blocks contribute text
  ✅ TextractService maps boto3 responses (client mocked, no AWS)
"""

from __future__ import annotations

from unittest.mock import MagicMock

import pytest

from docpipeline.core.errors import ExtractionFailed, ExtractionTimeout
from docpipeline.processing.ocr import (
    ANALYZE_FEATURE_TYPES,
    JobState,
    OcrJobOrchestrator,
    TextractPage,
    TextractService,
    lines_from_blocks,
)
from tests.conftest import ScriptedTextract, line_blocks


@pytest.mark.unit
@pytest.mark.ingestion
class TestLinesFromBlocks:

    def test_keeps_only_line_blocks_in_order(self):
        blocks = line_blocks(["First line", "Second line"])
        assert lines_from_blocks(blocks) == "First line\nSecond line\n"

    def test_no_lines_yields_empty_string(self):
        assert lines_from_blocks([{"BlockType": "PAGE"}, {"BlockType": "WORD", "Text": "x"}]) == ""


@pytest.mark.unit
@pytest.mark.ingestion
class TestOcrJobOrchestrator:

    async def test_success_on_second_poll_with_pagination(self, no_sleep):
        textract = ScriptedTextract(
            statuses=[
                TextractPage(status="IN_PROGRESS"),
                TextractPage(status="SUCCEEDED", blocks=line_blocks(["Page one."]), next_token="t2"),
            ],
            pages={"t2": TextractPage(status="SUCCEEDED", blocks=line_blocks(["Page two."], page=2))},
        )
        orchestrator = OcrJobOrchestrator(textract, poll_interval=5.0, max_polls=60, sleep=no_sleep)

        text = await orchestrator.run("bucket", "t1/doc/scan.pdf")

        assert text == "Page one.\nPage two.\n"
        assert orchestrator.state == JobState.SUCCEEDED
        assert orchestrator.polls == 2
        assert orchestrator.job_id == "job-1"
        assert textract.page_calls == ["t2"]
        assert no_sleep.await_count == 2
        no_sleep.assert_awaited_with(5.0)

    async def test_failed_job_raises(self, no_sleep):
        textract = ScriptedTextract(
            statuses=[TextractPage(status="FAILED", status_message="Unsupported document format")],
        )
        orchestrator = OcrJobOrchestrator(textract, sleep=no_sleep)

        with pytest.raises(ExtractionFailed) as exc_info:
            await orchestrator.run("bucket", "t1/doc/scan.pdf", document_id="doc")

        assert orchestrator.state == JobState.FAILED
        assert exc_info.value.status_message == "Unsupported document format"
        assert exc_info.value.job_id == "job-1"
        assert exc_info.value.document_id == "doc"

    async def test_poll_cap_raises_timeout(self, no_sleep):
        textract = ScriptedTextract(statuses=[TextractPage(status="IN_PROGRESS")])
        orchestrator = OcrJobOrchestrator(textract, poll_interval=5.0, max_polls=60, sleep=no_sleep)

        with pytest.raises(ExtractionTimeout) as exc_info:
            await orchestrator.run("bucket", "t1/doc/scan.pdf")

        assert orchestrator.state == JobState.TIMED_OUT
        assert exc_info.value.polls == 60
        assert textract.status_calls == 60
        assert no_sleep.await_count == 60

    async def test_custom_poll_cap(self, no_sleep):
        textract = ScriptedTextract(statuses=[TextractPage(status="IN_PROGRESS")])
        orchestrator = OcrJobOrchestrator(textract, max_polls=3, sleep=no_sleep)

        with pytest.raises(ExtractionTimeout):
            await orchestrator.run("bucket", "key.pdf")
        assert textract.status_calls == 3

    async def test_partial_success_is_accepted(self, no_sleep):
        textract = ScriptedTextract(
            statuses=[TextractPage(
                status="PARTIAL_SUCCESS",
                blocks=line_blocks(["Readable part."]),
                status_message="Some pages could not be read",
            )],
        )
        orchestrator = OcrJobOrchestrator(textract, sleep=no_sleep)

        assert await orchestrator.run("bucket", "key.pdf") == "Readable part.\n"
        assert orchestrator.state == JobState.SUCCEEDED

    async def test_succeeded_without_lines_returns_empty_text(self, no_sleep):
        textract = ScriptedTextract(statuses=[TextractPage(status="SUCCEEDED", blocks=[{"BlockType": "PAGE"}])])
        orchestrator = OcrJobOrchestrator(textract, sleep=no_sleep)

        assert await orchestrator.run("bucket", "blank.png") == ""

    def test_initial_state(self):
        orchestrator = OcrJobOrchestrator(ScriptedTextract())
        assert orchestrator.state == JobState.NOT_STARTED
        assert orchestrator.polls == 0
        assert orchestrator.job_id is None


@pytest.mark.unit
@pytest.mark.ingestion
class TestTextractService:

    async def test_start_job_passes_document_location(self):
        client = MagicMock()
        client.start_document_text_detection.return_value = {"JobId": "abc123"}
        service = TextractService(client=client)

        assert await service.start_job("bucket", "t1/doc/scan.pdf") == "abc123"
        client.start_document_text_detection.assert_called_once_with(
            DocumentLocation={"S3Object": {"Bucket": "bucket", "Name": "t1/doc/scan.pdf"}},
        )

    async def test_get_job_status_forwards_next_token(self):
        client = MagicMock()
        client.get_document_text_detection.return_value = {
            "JobStatus": "SUCCEEDED",
            "Blocks":    line_blocks(["Hello."]),
            "NextToken": "t3",
        }
        service = TextractService(client=client)

        page = await service.get_job_status("abc123", "t2")

        client.get_document_text_detection.assert_called_once_with(JobId="abc123", NextToken="t2")
        assert page.status == "SUCCEEDED"
        assert page.next_token == "t3"
        assert lines_from_blocks(page.blocks) == "Hello.\n"

    async def test_first_status_call_omits_next_token(self):
        client = MagicMock()
        client.get_document_text_detection.return_value = {"JobStatus": "IN_PROGRESS"}
        service = TextractService(client=client)

        page = await service.get_job_status("abc123")

        client.get_document_text_detection.assert_called_once_with(JobId="abc123")
        assert page.blocks == []
        assert page.next_token is None

    async def test_analyze_sync_requests_tables_and_forms(self):
        client = MagicMock()
        client.analyze_document.return_value = {"Blocks": line_blocks(["Heading", "Body text."])}
        service = TextractService(client=client)

        text = await service.analyze_sync("bucket", "t1/doc/report.docx")

        assert text == "Heading\nBody text.\n"
        client.analyze_document.assert_called_once_with(
            Document={"S3Object": {"Bucket": "bucket", "Name": "t1/doc/report.docx"}},
            FeatureTypes=ANALYZE_FEATURE_TYPES,
        )
