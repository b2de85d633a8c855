"""
Embedding Generator  —  One Vector per Chunk, with Retry
══════════════════════════════════════════════════════════

Design goals:
  • One API call per chunk: a failure is isolated to that chunk
  • Retry logic: exponential back-off on rate limits and transient errors
  • Dimension check: every vector must match the index's dimension

OpenAI embedding model selection:
  text-embedding-3-small  → 1536 dims  (default)
  text-embedding-3-large  → 3072 dims

Retry policy:
  On RateLimitError (429)        → wait RETRY_BASE_DELAY × 2^attempt
  On 5xx APIStatusError          → wait RETRY_BASE_DELAY × 2^attempt
  On APITimeoutError / APIConnectionError → same back-off
  On other 4xx (auth, bad request) → fail immediately (not transient)
  Any non-OpenAI exception       → fail immediately
  Wrong vector length            → fail immediately

Exhausted or non-retryable failures surface as EmbeddingError carrying the
chunk index, so the pipeline can report exactly which chunk failed.
"""

from __future__ import annotations

import asyncio
import logging
import time
from typing import Awaitable, Callable

from openai import (
    APIConnectionError,
    APIStatusError,
    APITimeoutError,
    AsyncOpenAI,
    RateLimitError,
)

from docpipeline.core.errors import EmbeddingError
from docpipeline.observability.tracing import traced

logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# Configuration
# ---------------------------------------------------------------------------

DEFAULT_MODEL       = "text-embedding-3-small"
DEFAULT_DIMENSIONS  = 1536
MAX_RETRIES         = 3      # retries after the first attempt
RETRY_BASE_DELAY    = 2.0    # seconds, doubles each retry
RETRY_MAX_DELAY     = 60.0   # cap


def is_retryable(exc: Exception) -> bool:
    """Transient OpenAI failures worth another attempt."""
    if isinstance(exc, (RateLimitError, APITimeoutError, APIConnectionError)):
        return True
    if isinstance(exc, APIStatusError):
        return exc.status_code >= 500
    return False


class EmbeddingGenerator:
    """
    Stateless per-text embedder over openai.AsyncOpenAI.

    One instance per worker process; the underlying HTTP client pools
    connections across concurrent chunk coroutines.

    Usage:
        embedder = EmbeddingGenerator(api_key=..., dimensions=1536)
        vector = await embedder.embed("chunk text", chunk_index=3, document_id="7f3a")
    """

    def __init__(
        self,
        api_key:          str   = "",
        model:            str   = DEFAULT_MODEL,
        dimensions:       int   = DEFAULT_DIMENSIONS,
        max_retries:      int   = MAX_RETRIES,
        retry_base_delay: float = RETRY_BASE_DELAY,
        client:           AsyncOpenAI | None = None,
        sleep:            Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        self._model = model
        self._dimensions = dimensions
        self._max_retries = max_retries
        self._retry_base_delay = retry_base_delay
        # SDK-level retries are disabled; back-off is owned here
        self._client = client or AsyncOpenAI(api_key=api_key, max_retries=0)
        self._sleep = sleep

    @property
    def dimensions(self) -> int:
        return self._dimensions

    @traced("embed")
    async def embed(
        self,
        text:        str,
        *,
        chunk_index: int | None = None,
        document_id: str | None = None,
    ) -> list[float]:
        last_error: Exception | None = None

        for attempt in range(self._max_retries + 1):
            if attempt > 0:
                delay = min(self._retry_base_delay * (2 ** (attempt - 1)), RETRY_MAX_DELAY)
                logger.warning(
                    "Embedding retry | doc=%s chunk=%s attempt=%d delay=%.1fs error=%s",
                    document_id, chunk_index, attempt, delay, last_error,
                )
                await self._sleep(delay)

            try:
                vector = await self._call_openai(text)
            except Exception as exc:
                last_error = exc
                if not is_retryable(exc):
                    logger.error(
                        "Non-retryable embedding error | doc=%s chunk=%s: %s",
                        document_id, chunk_index, exc,
                    )
                    raise EmbeddingError(
                        f"Embedding failed for chunk {chunk_index}: {exc}",
                        chunk_index=chunk_index, document_id=document_id,
                    ) from exc
                logger.warning(
                    "Retryable embedding error | doc=%s chunk=%s attempt=%d: %s %s",
                    document_id, chunk_index, attempt, type(exc).__name__, exc,
                )
                continue

            if len(vector) != self._dimensions:
                raise EmbeddingError(
                    f"Embedding for chunk {chunk_index} has {len(vector)} dimensions, "
                    f"expected {self._dimensions}",
                    chunk_index=chunk_index, document_id=document_id,
                )
            return vector

        raise EmbeddingError(
            f"Embedding failed for chunk {chunk_index} after {self._max_retries} retries: {last_error}",
            chunk_index=chunk_index, document_id=document_id,
        ) from last_error

    async def _call_openai(self, text: str) -> list[float]:
        t_api = time.monotonic()

        kwargs: dict = {"model": self._model, "input": [text]}
        # dimensions param only works for text-embedding-3-* models
        if self._dimensions != DEFAULT_DIMENSIONS:
            kwargs["dimensions"] = self._dimensions

        response = await self._client.embeddings.create(**kwargs)

        logger.debug(
            "OpenAI embeddings | chars=%d api_ms=%.0f",
            len(text), (time.monotonic() - t_api) * 1000,
        )
        return list(response.data[0].embedding)
