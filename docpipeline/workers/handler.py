"""
Storage-event handler — S3 ObjectCreated notifications → DocumentPipeline

Deployed as a function handler: handler(event, context).

Records are processed in order. The first failing document re-raises its
original exception after its failed status has been written, so the
invoking runtime applies its own retry / dead-letter policy to the event.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Any

from docpipeline.core.config import Settings, get_settings
from docpipeline.models.documents import PipelineResult
from docpipeline.schemas.events import ObjectCreatedEvent, parse_s3_event
from docpipeline.workers.runtime import open_pipeline

logging.basicConfig(
    level=get_settings().log_level,
    format="%(asctime)s %(levelname)s %(name)s %(message)s",
)
logger = logging.getLogger(__name__)


def handler(event: dict[str, Any], context: Any = None) -> dict[str, Any]:
    events = parse_s3_event(event)
    logger.info("Storage event | records=%d", len(events))

    results = asyncio.run(process_events(events, get_settings()))

    return {
        "statusCode": 200,
        "body":       "Documents processed successfully",
        "documents":  [r.as_dict() for r in results],
    }


async def process_events(events: list[ObjectCreatedEvent], settings: Settings) -> list[PipelineResult]:
    results: list[PipelineResult] = []
    async with open_pipeline(settings) as pipeline:
        for ev in events:
            try:
                results.append(await pipeline.process_document(ev.bucket, ev.key))
            except Exception:
                logger.exception("Document processing error | key=s3://%s/%s", ev.bucket, ev.key)
                raise
    return results
