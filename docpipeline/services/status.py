"""
Status Tracker — one document, one processing attempt.

  pending ──► processing ──► completed
                         └─► failed

processing is held in memory only. The terminal transition is persisted
once per attempt with processed_at and, when known, file_size; a second
terminal call is ignored with a warning.

The metadata store is the source of truth the UI polls, but a failed
status write must never change the pipeline's outcome: write errors are
logged and swallowed.
"""

from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Callable

from docpipeline.db.metadata_store import MetadataStore
from docpipeline.models.documents import ExtractionStatus

logger = logging.getLogger(__name__)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class StatusTracker:

    def __init__(
        self,
        metadata_store: MetadataStore,
        document_id:    str,
        clock:          Callable[[], datetime] = _utcnow,
    ) -> None:
        self._store = metadata_store
        self._document_id = document_id
        self._clock = clock

        self.status: ExtractionStatus = ExtractionStatus.PENDING
        self.file_size: int | None = None
        self.processed_at: datetime | None = None

    def start(self) -> None:
        self.status = ExtractionStatus.PROCESSING
        logger.info("Document processing | doc=%s", self._document_id)

    def record_file_size(self, size: int) -> None:
        self.file_size = size

    async def complete(self) -> bool:
        return await self._finish(ExtractionStatus.COMPLETED)

    async def fail(self) -> bool:
        return await self._finish(ExtractionStatus.FAILED)

    async def _finish(self, status: ExtractionStatus) -> bool:
        """Returns True if this call performed the terminal transition."""
        if self.status.is_terminal:
            logger.warning(
                "Ignoring second terminal status | doc=%s current=%s requested=%s",
                self._document_id, self.status.value, status.value,
            )
            return False

        self.status = status
        self.processed_at = self._clock()

        fields: dict = {"extraction_status": status, "processed_at": self.processed_at}
        if self.file_size is not None:
            fields["file_size"] = self.file_size

        try:
            await self._store.update_document(self._document_id, fields)
        except Exception as exc:
            logger.error(
                "Status write failed | doc=%s status=%s error=%s",
                self._document_id, status.value, exc,
                exc_info=True,
            )
        else:
            logger.info(
                "Document status | doc=%s status=%s file_size=%s",
                self._document_id, status.value, self.file_size,
            )
        return True
