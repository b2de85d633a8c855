"""
Pipeline exception hierarchy.

Every error that can decide a document's terminal status derives from
PipelineError and carries enough context for an operator to find the
failing document, job, or chunk in the logs.

  PipelineError
  ├── InvalidEventError        storage event record cannot be parsed
  ├── UnsupportedFileType      extension has no extraction strategy
  ├── ExtractionError
  │   ├── ExtractionFailed     OCR job reached FAILED
  │   └── ExtractionTimeout    OCR job still running after the poll cap
  ├── EmbeddingError           embedding call failed after retries
  └── IndexCorrelationError    vector record without a usable metadata pair
"""

from __future__ import annotations


class PipelineError(Exception):
    """Base class for all document-pipeline errors. Never retried by the worker."""

    def __init__(self, message: str, *, document_id: str | None = None) -> None:
        super().__init__(message)
        self.document_id = document_id


class InvalidEventError(PipelineError):
    """Raised when an object-storage event record is malformed."""


class UnsupportedFileType(PipelineError):
    def __init__(self, extension: str, *, document_id: str | None = None) -> None:
        super().__init__(f"Unsupported file type: {extension or '<none>'}", document_id=document_id)
        self.extension = extension


class ExtractionError(PipelineError):
    """Text extraction did not produce a usable result."""

    def __init__(self, message: str, *, job_id: str | None = None, document_id: str | None = None) -> None:
        super().__init__(message, document_id=document_id)
        self.job_id = job_id


class ExtractionFailed(ExtractionError):
    def __init__(self, job_id: str, status_message: str | None = None, *, document_id: str | None = None) -> None:
        detail = f": {status_message}" if status_message else ""
        super().__init__(f"Textract job {job_id} failed{detail}", job_id=job_id, document_id=document_id)
        self.status_message = status_message


class ExtractionTimeout(ExtractionError):
    def __init__(self, job_id: str, polls: int, *, document_id: str | None = None) -> None:
        super().__init__(
            f"Textract job {job_id} timed out after {polls} polls",
            job_id=job_id, document_id=document_id,
        )
        self.polls = polls


class EmbeddingError(PipelineError):
    """Embedding generation failed for one chunk (after retries, or non-retryable)."""

    def __init__(self, message: str, *, chunk_index: int | None = None, document_id: str | None = None) -> None:
        super().__init__(message, document_id=document_id)
        self.chunk_index = chunk_index


class IndexCorrelationError(PipelineError):
    """
    The vector store and the metadata store disagree about a chunk.

    Raised when the vector write returned no identifier, or when the metadata
    write failed after a successful vector write. vector_index_id is whatever
    partial identifier is known (None if the store returned nothing).
    """

    def __init__(
        self,
        message: str,
        *,
        document_id: str,
        chunk_index: int,
        vector_index_id: str | None = None,
    ) -> None:
        super().__init__(message, document_id=document_id)
        self.chunk_index = chunk_index
        self.vector_index_id = vector_index_id
