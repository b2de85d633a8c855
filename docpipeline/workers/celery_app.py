"""
Celery Application Factory

Queue-driven alternative to the storage-event handler: an upstream
consumer enqueues process_document(bucket=..., key=...) for each new object.

Broker: RabbitMQ (amqp://) in production, memory:// in the test-suite.
Result backend: Redis. Optional; the metadata store is where a document's
status actually lives.

Queue topology:
  documents.ingest   one message per stored object
  system.health      worker liveness probe

Task arguments appear in Celery's logs, so messages carry the object
location only. Workers load the bytes themselves.
"""

from __future__ import annotations

import logging

from celery import Celery
from celery.signals import task_failure, task_postrun, task_prerun
from kombu import Exchange, Queue

from docpipeline.core.config import Settings, get_settings

logger = logging.getLogger(__name__)

# OCR polling can take poll_interval × max_polls on its own (5 min by default)
SOFT_TIME_LIMIT_SECONDS = 540
HARD_TIME_LIMIT_SECONDS = 600

# ---------------------------------------------------------------------------
# Queues
# ---------------------------------------------------------------------------

DOCUMENTS_EXCHANGE = Exchange("documents", type="direct", durable=True)
SYSTEM_EXCHANGE = Exchange("system", type="direct", durable=True)

TASK_QUEUES = (
    Queue("documents.ingest", DOCUMENTS_EXCHANGE, routing_key="documents.ingest", durable=True),
    Queue("system.health",    SYSTEM_EXCHANGE,    routing_key="system.health",    durable=True),
)

TASK_ROUTES = {
    "docpipeline.workers.tasks.process_document": {"queue": "documents.ingest"},
    "docpipeline.workers.tasks.health_check":     {"queue": "system.health"},
}


def celery_config(settings: Settings) -> dict:
    """Celery settings for one worker deployment."""
    return {
        "broker_url":     settings.celery_broker_url,
        "result_backend": settings.celery_result_backend,

        # JSON only: a message is {bucket, key}, nothing else
        "task_serializer":   "json",
        "result_serializer": "json",
        "accept_content":    ["json"],

        "task_queues":              TASK_QUEUES,
        "task_routes":              TASK_ROUTES,
        "task_default_queue":       "documents.ingest",
        "task_default_exchange":    "documents",
        "task_default_routing_key": "documents.ingest",

        # A document is acked only once its terminal status is written
        "task_acks_late":             True,
        "task_reject_on_worker_lost": True,
        "worker_prefetch_multiplier": 1,

        "task_soft_time_limit": SOFT_TIME_LIMIT_SECONDS,
        "task_time_limit":      HARD_TIME_LIMIT_SECONDS,

        "result_expires": 3600,
        "timezone":       "UTC",
        "enable_utc":     True,

        # Each task opens its own engine and Weaviate client; recycle anyway
        "worker_max_tasks_per_child": 200,
    }


def create_celery_app(settings: Settings | None = None) -> Celery:
    app = Celery("docpipeline")
    app.conf.update(celery_config(settings or get_settings()))
    app.autodiscover_tasks(["docpipeline.workers"])
    return app


celery_app = create_celery_app()


# ---------------------------------------------------------------------------
# Task lifecycle logging
# ---------------------------------------------------------------------------

@task_prerun.connect
def on_task_prerun(task_id, task, args, kwargs, **_):
    logger.info(
        "Task start | task_id=%s task=%s key=s3://%s/%s",
        task_id, task.name, kwargs.get("bucket", "?"), kwargs.get("key", "?"),
    )


@task_postrun.connect
def on_task_postrun(task_id, task, args, kwargs, retval, state, **_):
    logger.info(
        "Task end | task_id=%s task=%s state=%s key=%s",
        task_id, task.name, state, kwargs.get("key", "?"),
    )


@task_failure.connect
def on_task_failure(task_id, exception, args, kwargs, traceback, einfo, **_):
    logger.error(
        "Task failed | task_id=%s key=%s error=%s: %s",
        task_id, (kwargs or {}).get("key", "?"), type(exception).__name__, exception,
        exc_info=exception,
    )
