"""
Unit Tests — S3 ObjectStore (aioboto3 session mocked)
"""

from __future__ import annotations

from unittest.mock import AsyncMock, MagicMock

import pytest
from botocore.exceptions import ClientError

from docpipeline.storage.s3 import ObjectStore


def _store_with(s3: AsyncMock) -> ObjectStore:
    session = MagicMock()
    session.client.return_value.__aenter__.return_value = s3
    return ObjectStore(region="eu-west-1", session=session)


def _client_error(code: str, operation: str) -> ClientError:
    return ClientError({"Error": {"Code": code, "Message": code}}, operation)


@pytest.mark.unit
class TestObjectStore:

    async def test_head_object_returns_size(self):
        s3 = AsyncMock()
        s3.head_object.return_value = {"ContentLength": 123456}
        store = _store_with(s3)

        assert await store.head_object("uploads", "acme/7f3a/a.pdf") == 123456
        s3.head_object.assert_awaited_once_with(Bucket="uploads", Key="acme/7f3a/a.pdf")

    async def test_get_object_reads_body(self):
        body = AsyncMock()
        body.read.return_value = b"hello"
        s3 = AsyncMock()
        s3.get_object.return_value = {"Body": body}

        assert await _store_with(s3).get_object("uploads", "acme/7f3a/a.txt") == b"hello"

    @pytest.mark.parametrize("code", ["404", "NoSuchKey", "NotFound"])
    async def test_missing_object_is_file_not_found(self, code):
        s3 = AsyncMock()
        s3.head_object.side_effect = _client_error(code, "HeadObject")

        with pytest.raises(FileNotFoundError):
            await _store_with(s3).head_object("uploads", "missing.pdf")

    async def test_other_client_errors_propagate(self):
        s3 = AsyncMock()
        s3.get_object.side_effect = _client_error("AccessDenied", "GetObject")

        with pytest.raises(ClientError):
            await _store_with(s3).get_object("uploads", "secret.txt")
