"""
Document Processing Package
════════════════════════════

Turns one stored object into embedded chunks:

  Extraction Router → (OCR job | document analysis | direct read)
                    → Sentence Chunker → Embedding Generator

Modules
───────
  ocr.py        Textract wrapper and the async OCR job state machine
  extractor.py  Extension → extraction strategy routing
  chunking.py   Token-bounded sentence chunker with word overlap
  embeddings.py Per-chunk OpenAI embeddings with retry
"""

from docpipeline.processing.chunking import chunk_text, estimate_tokens
from docpipeline.processing.embeddings import EmbeddingGenerator
from docpipeline.processing.extractor import ExtractionResult, ExtractionRouter
from docpipeline.processing.ocr import JobState, OcrJobOrchestrator, TextractService

__all__ = [
    "chunk_text",
    "estimate_tokens",
    "EmbeddingGenerator",
    "ExtractionResult",
    "ExtractionRouter",
    "JobState",
    "OcrJobOrchestrator",
    "TextractService",
]
