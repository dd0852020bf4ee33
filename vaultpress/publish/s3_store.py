"""ObjectStore backed by S3 or an S3-compatible service such as R2."""

from __future__ import annotations

import asyncio
import logging

import boto3
from botocore.exceptions import BotoCoreError, ClientError, ParamValidationError

from vaultpress.interfaces.storage import ObjectInfo

from .errors import MetadataRejectedError, UploadError

logger = logging.getLogger(__name__)

# S3 error codes that point at the user metadata rather than the object.
_METADATA_ERROR_CODES = {"MetadataTooLarge", "InvalidArgument", "InvalidRequest"}


class S3ObjectStore:
    """boto3 client wrapped in threads so it can be awaited.

    The client is created once and shared by every job in the process.
    """

    def __init__(
        self,
        bucket: str,
        endpoint_url: str | None = None,
        region: str | None = None,
        client=None,
        **boto_kwargs,
    ) -> None:
        self.bucket = bucket
        self._client = client or boto3.client(
            "s3", endpoint_url=endpoint_url, region_name=region, **boto_kwargs
        )

    async def list_keys(self, prefix: str, max_keys: int = 1000) -> list[ObjectInfo]:
        return await asyncio.to_thread(self._list_sync, prefix, max_keys)

    def _list_sync(self, prefix: str, max_keys: int) -> list[ObjectInfo]:
        results: list[ObjectInfo] = []
        kwargs = {"Bucket": self.bucket, "Prefix": prefix, "MaxKeys": min(max_keys, 1000)}
        while len(results) < max_keys:
            resp = self._client.list_objects_v2(**kwargs)
            for obj in resp.get("Contents", []):
                results.append(ObjectInfo(
                    key=obj["Key"],
                    size=obj.get("Size", 0),
                    etag=(obj.get("ETag") or "").strip('"') or None,
                ))
            if not resp.get("IsTruncated"):
                break
            kwargs["ContinuationToken"] = resp["NextContinuationToken"]
        return results[:max_keys]

    async def put_object(
        self,
        key: str,
        body: bytes,
        content_type: str | None = None,
        metadata: dict[str, str] | None = None,
    ) -> None:
        kwargs = {"Bucket": self.bucket, "Key": key, "Body": body}
        if content_type:
            kwargs["ContentType"] = content_type
        if metadata:
            kwargs["Metadata"] = metadata
        try:
            await asyncio.to_thread(self._client.put_object, **kwargs)
        except ParamValidationError as e:
            raise MetadataRejectedError(key, e) from e
        except ClientError as e:
            code = e.response.get("Error", {}).get("Code", "")
            if metadata and code in _METADATA_ERROR_CODES:
                raise MetadataRejectedError(key, e) from e
            raise UploadError(key, e) from e
        except UnicodeEncodeError as e:
            if metadata:
                raise MetadataRejectedError(key, e) from e
            raise UploadError(key, e) from e
        except BotoCoreError as e:
            raise UploadError(key, e) from e

    async def get_object(self, key: str) -> bytes | None:
        try:
            resp = await asyncio.to_thread(self._client.get_object, Bucket=self.bucket, Key=key)
        except ClientError as e:
            if e.response.get("Error", {}).get("Code") in ("NoSuchKey", "404"):
                return None
            raise
        return resp["Body"].read()
