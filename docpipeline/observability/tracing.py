"""
Stage tracing for the ingestion pipeline.

  @traced("extract")
  async def extract(...): ...

Each decorated coroutine logs one line per call:

  trace | span=extract elapsed_ms=812.4 ok
  trace | span=index_write elapsed_ms=35.0 error=ConnectionError

Successful spans log at DEBUG, failed spans at WARNING. The exception is
re-raised untouched; the caller's own error log carries the traceback.
"""

from __future__ import annotations

import functools
import logging
import time
from typing import Any, Callable, Coroutine, TypeVar

logger = logging.getLogger(__name__)

F = TypeVar("F", bound=Callable[..., Coroutine[Any, Any, Any]])


def traced(name: str | None = None) -> Callable[[F], F]:
    """Time an async function; span name defaults to its qualified name."""
    def decorator(func: F) -> F:
        span_name = name or func.__qualname__

        @functools.wraps(func)
        async def wrapper(*args: Any, **kwargs: Any) -> Any:
            t0 = time.perf_counter()
            try:
                result = await func(*args, **kwargs)
            except Exception as exc:
                logger.warning(
                    "trace | span=%s elapsed_ms=%.1f error=%s",
                    span_name, (time.perf_counter() - t0) * 1000, type(exc).__name__,
                )
                raise
            logger.debug("trace | span=%s elapsed_ms=%.1f ok", span_name, (time.perf_counter() - t0) * 1000)
            return result

        return wrapper  # type: ignore[return-value]
    return decorator
