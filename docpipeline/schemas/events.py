"""
Storage Event — Pydantic Schemas

Parses S3 ObjectCreated notification records into the pipeline's input:

    {
        "Records": [{
            "eventSource": "aws:s3",
            "eventName":   "ObjectCreated:Put",
            "s3": {
                "bucket": {"name": "uploads"},
                "object": {"key": "acme/7f3a/Quarterly+Report.pdf", "size": 1024}
            }
        }]
    }

Object keys arrive URL-encoded with "+" for spaces; they are decoded
before anything else sees them ("Quarterly Report.pdf").
"""

from __future__ import annotations

import logging
from typing import Any
from urllib.parse import unquote_plus

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator

from docpipeline.core.errors import InvalidEventError

logger = logging.getLogger(__name__)


class ObjectCreatedEvent(BaseModel):
    """One object to process: the pipeline's only input."""
    model_config = ConfigDict(frozen=True)

    bucket: str = Field(..., min_length=1)
    key:    str = Field(..., min_length=1)

    @field_validator("key")
    @classmethod
    def key_has_filename(cls, v: str) -> str:
        if v.endswith("/"):
            raise ValueError(f"Key names a folder, not an object: {v}")
        return v


# ---------------------------------------------------------------------------
# Raw notification shape (only the fields the pipeline reads)
# ---------------------------------------------------------------------------

class _S3Bucket(BaseModel):
    name: str


class _S3Object(BaseModel):
    key:  str
    size: int | None = None


class _S3Entity(BaseModel):
    bucket:   _S3Bucket
    object_:  _S3Object = Field(..., alias="object")


class _S3Record(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    event_source: str | None = Field(None, alias="eventSource")
    event_name:   str | None = Field(None, alias="eventName")
    s3:           _S3Entity


def parse_s3_record(record: dict[str, Any]) -> ObjectCreatedEvent:
    """
    Convert one notification record into an ObjectCreatedEvent.

    Raises:
        InvalidEventError: missing fields, wrong event source, or empty key
    """
    try:
        raw = _S3Record.model_validate(record)
    except ValidationError as exc:
        logger.error("Invalid S3 record | errors=%d", exc.error_count())
        raise InvalidEventError(f"Invalid S3 event record: {exc}") from exc

    if raw.event_source is not None and raw.event_source != "aws:s3":
        raise InvalidEventError(f"Invalid event source: {raw.event_source}")

    try:
        return ObjectCreatedEvent(
            bucket=raw.s3.bucket.name,
            key=unquote_plus(raw.s3.object_.key),
        )
    except ValidationError as exc:
        raise InvalidEventError(f"Invalid S3 object reference: {exc}") from exc


def parse_s3_event(event: dict[str, Any]) -> list[ObjectCreatedEvent]:
    """Parse every record of a notification; an event with no records is invalid."""
    records = event.get("Records")
    if not records:
        raise InvalidEventError("Event contains no Records")
    return [parse_s3_record(record) for record in records]
