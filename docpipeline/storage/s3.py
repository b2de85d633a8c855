"""
S3 Object Store — Content Reader

The pipeline reads each uploaded object exactly twice:

  head_object(bucket, key) → size in bytes (recorded as the document's file_size)
  get_object(bucket, key)  → raw bytes     (plain-text documents only)

OCR and document analysis never download the bytes here; Textract is
handed the (bucket, key) location and reads S3 itself.

Errors:
  A missing object surfaces as FileNotFoundError. Every other ClientError
  is re-raised untouched so the worker's retry policy can inspect it.
"""

from __future__ import annotations

import logging

import aioboto3
from botocore.exceptions import ClientError

logger = logging.getLogger(__name__)

_NOT_FOUND_CODES = ("NoSuchKey", "404", "NotFound")


class ObjectStore:
    """
    Async S3 reads over a shared aioboto3 session.

    One instance per worker process; each call opens a short-lived client
    context, so the object is safe to share across concurrent documents.
    """

    def __init__(self, region: str = "us-east-1", session: aioboto3.Session | None = None) -> None:
        self._region = region
        self._session = session or aioboto3.Session()

    def _client(self):
        """Return a scoped async S3 client context manager."""
        return self._session.client("s3", region_name=self._region)

    async def head_object(self, bucket: str, key: str) -> int:
        """Return the object's size in bytes without downloading it."""
        async with self._client() as s3:
            try:
                resp = await s3.head_object(Bucket=bucket, Key=key)
            except ClientError as exc:
                if exc.response["Error"]["Code"] in _NOT_FOUND_CODES:
                    raise FileNotFoundError(f"Object not found: s3://{bucket}/{key}") from exc
                raise

        size = int(resp.get("ContentLength", 0))
        logger.debug("S3 head ok | bucket=%s key=%s size=%d", bucket, key, size)
        return size

    async def get_object(self, bucket: str, key: str) -> bytes:
        """Download the full object body."""
        async with self._client() as s3:
            try:
                resp = await s3.get_object(Bucket=bucket, Key=key)
                body = await resp["Body"].read()
            except ClientError as exc:
                if exc.response["Error"]["Code"] in _NOT_FOUND_CODES:
                    raise FileNotFoundError(f"Object not found: s3://{bucket}/{key}") from exc
                raise

        logger.info("S3 download ok | bucket=%s key=%s size=%d", bucket, key, len(body))
        return body
