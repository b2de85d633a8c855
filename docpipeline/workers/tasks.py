"""
Celery Tasks — Document Processing Pipeline

Task: process_document(bucket, key)
  Runs DocumentPipeline.process_document for one stored object.
  The pipeline writes the terminal status itself; the task only decides
  whether Celery should try again.

Retry policy:
  PipelineError (unsupported type, extraction failure/timeout, embedding
  failure, index correlation error) → not retried. Correlation errors are
  left for offline reconciliation.
  Anything else (S3 ClientError, vector-store transport errors, DB
  outages) → retried up to max_retries with Celery's back-off.

Task: health_check
  Liveness probe routed to system.health; also pings the metadata store.
"""

from __future__ import annotations

import asyncio
import concurrent.futures
import logging
from typing import Any

from celery import Task

from docpipeline.core.config import get_settings
from docpipeline.core.errors import PipelineError
from docpipeline.db.session import check_db_health, create_engine
from docpipeline.workers.celery_app import celery_app
from docpipeline.workers.runtime import open_pipeline

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Async task helper
# Run async coroutines inside Celery's synchronous task context.
# ---------------------------------------------------------------------------

def run_async(coro):
    """Execute an async coroutine from a synchronous Celery task."""
    try:
        asyncio.get_running_loop()
    except RuntimeError:
        return asyncio.run(coro)

    with concurrent.futures.ThreadPoolExecutor(max_workers=1) as pool:
        return pool.submit(asyncio.run, coro).result()


# ---------------------------------------------------------------------------
# Main processing task
# ---------------------------------------------------------------------------

@celery_app.task(
    name="docpipeline.workers.tasks.process_document",
    bind=True,
    max_retries=3,
    default_retry_delay=30,
    acks_late=True,
    reject_on_worker_lost=True,
)
def process_document(self: Task, *, bucket: str, key: str) -> dict[str, Any]:
    try:
        return run_async(_process_document_async(bucket, key))
    except PipelineError as exc:
        logger.error(
            "Not retrying | key=s3://%s/%s error=%s: %s",
            bucket, key, type(exc).__name__, exc,
        )
        raise
    except Exception as exc:
        logger.warning(
            "Retrying | key=s3://%s/%s attempt=%d error=%s: %s",
            bucket, key, self.request.retries + 1, type(exc).__name__, exc,
        )
        raise self.retry(exc=exc)


async def _process_document_async(bucket: str, key: str) -> dict[str, Any]:
    async with open_pipeline(get_settings()) as pipeline:
        result = await pipeline.process_document(bucket, key)
    return result.as_dict()


# ---------------------------------------------------------------------------
# Health check task
# ---------------------------------------------------------------------------

@celery_app.task(name="docpipeline.workers.tasks.health_check")
def health_check() -> dict[str, Any]:
    return {"status": "ok", "worker": "healthy", "database": run_async(_database_health())}


async def _database_health() -> dict:
    settings = get_settings()
    engine = create_engine(settings.database_url, pool_size=1)
    try:
        return await check_db_health(engine)
    finally:
        await engine.dispose()
