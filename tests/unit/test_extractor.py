"""
Unit Tests — Extraction routing by file extension
"""

from __future__ import annotations

import pytest

from docpipeline.core.errors import UnsupportedFileType
from docpipeline.processing.extractor import (
    SUPPORTED_EXTENSIONS,
    ExtractionRouter,
    ExtractionStrategy,
    strategy_for,
)
from docpipeline.processing.ocr import TextractPage
from tests.conftest import ScriptedTextract, line_blocks


@pytest.mark.unit
@pytest.mark.ingestion
class TestStrategyTable:

    @pytest.mark.parametrize("ext", ["pdf", "png", "jpg", "jpeg", "PDF"])
    def test_ocr_extensions(self, ext):
        assert strategy_for(ext) == ExtractionStrategy.OCR_JOB

    @pytest.mark.parametrize("ext", ["docx", "doc"])
    def test_word_processor_extensions(self, ext):
        assert strategy_for(ext) == ExtractionStrategy.ANALYZE_SYNC

    def test_plain_text(self):
        assert strategy_for("txt") == ExtractionStrategy.DIRECT_READ

    @pytest.mark.parametrize("ext", ["bmp", "xlsx", "", "tiff"])
    def test_unknown_extensions(self, ext):
        assert strategy_for(ext) is None

    def test_supported_set(self):
        assert SUPPORTED_EXTENSIONS == {"pdf", "png", "jpg", "jpeg", "docx", "doc", "txt"}


@pytest.mark.unit
@pytest.mark.ingestion
class TestExtractionRouter:

    async def test_pdf_runs_ocr_job(self, object_store, no_sleep):
        textract = ScriptedTextract(
            statuses=[TextractPage(status="SUCCEEDED", blocks=line_blocks(["Scanned text."]))],
        )
        router = ExtractionRouter(object_store, textract, sleep=no_sleep)

        result = await router.extract("bucket", "t1/doc/scan.pdf", "pdf", document_id="doc")

        assert result.strategy == ExtractionStrategy.OCR_JOB
        assert result.text == "Scanned text.\n"
        assert result.job_id == "job-1"
        assert result.polls == 1
        assert textract.started == [("bucket", "t1/doc/scan.pdf")]
        object_store.get_object.assert_not_awaited()

    async def test_each_ocr_document_gets_a_fresh_job(self, object_store, no_sleep):
        textract = ScriptedTextract()
        router = ExtractionRouter(object_store, textract, sleep=no_sleep)

        first = await router.extract("bucket", "a.png", "png")
        second = await router.extract("bucket", "b.jpg", "jpg")

        assert (first.job_id, second.job_id) == ("job-1", "job-2")
        assert first.polls == 1

    async def test_docx_uses_sync_analysis(self, object_store):
        textract = ScriptedTextract(analyze_text="Heading\nBody.\n")
        router = ExtractionRouter(object_store, textract)

        result = await router.extract("bucket", "t1/doc/report.docx", "docx")

        assert result.strategy == ExtractionStrategy.ANALYZE_SYNC
        assert result.text == "Heading\nBody.\n"
        assert textract.analyze_calls == [("bucket", "t1/doc/report.docx")]
        assert textract.started == []

    async def test_txt_reads_object_directly(self, object_store):
        object_store.get_object.return_value = "Café menu. Prices below.".encode("utf-8")
        textract = ScriptedTextract()
        router = ExtractionRouter(object_store, textract)

        result = await router.extract("bucket", "t1/doc/menu.txt", "txt")

        assert result.strategy == ExtractionStrategy.DIRECT_READ
        assert result.text == "Café menu. Prices below."
        object_store.get_object.assert_awaited_once_with("bucket", "t1/doc/menu.txt")
        assert textract.started == [] and textract.analyze_calls == []

    async def test_txt_falls_back_to_latin1(self, object_store):
        object_store.get_object.return_value = "Café".encode("latin-1")
        router = ExtractionRouter(object_store, ScriptedTextract())

        result = await router.extract("bucket", "legacy.txt", "txt")

        assert result.text == "Café"

    async def test_unsupported_extension_raises_before_any_call(self, object_store):
        textract = ScriptedTextract()
        router = ExtractionRouter(object_store, textract)

        with pytest.raises(UnsupportedFileType) as exc_info:
            await router.extract("bucket", "t1/doc/image.bmp", "bmp", document_id="doc")

        assert exc_info.value.extension == "bmp"
        assert exc_info.value.document_id == "doc"
        assert textract.started == []
        object_store.get_object.assert_not_awaited()
