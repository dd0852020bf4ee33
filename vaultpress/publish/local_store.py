"""ObjectStore backed by a local directory tree."""

from __future__ import annotations

import asyncio
import hashlib
import logging
from pathlib import Path

from vaultpress.interfaces.storage import ObjectInfo

from .errors import MetadataRejectedError, UploadError

logger = logging.getLogger(__name__)


class LocalObjectStore:
    """Keys map to files under ``root``. ETags are the md5 of the content.

    Metadata is validated with the same rules as S3 user metadata
    (ASCII string values) and kept in memory for inspection.
    """

    def __init__(self, root: str | Path) -> None:
        self.root = Path(root)
        self.root.mkdir(parents=True, exist_ok=True)
        self.metadata: dict[str, dict[str, str]] = {}

    def _path(self, key: str) -> Path:
        path = (self.root / key).resolve()
        if not path.is_relative_to(self.root.resolve()):
            raise ValueError(f"Key escapes storage root: {key}")
        return path

    async def list_keys(self, prefix: str, max_keys: int = 1000) -> list[ObjectInfo]:
        return await asyncio.to_thread(self._list_sync, prefix, max_keys)

    def _list_sync(self, prefix: str, max_keys: int) -> list[ObjectInfo]:
        results: list[ObjectInfo] = []
        for path in sorted(self.root.rglob("*")):
            if not path.is_file():
                continue
            key = path.relative_to(self.root).as_posix()
            if not key.startswith(prefix):
                continue
            data = path.read_bytes()
            results.append(ObjectInfo(key=key, size=len(data), etag=hashlib.md5(data).hexdigest()))
            if len(results) >= max_keys:
                break
        return results

    async def put_object(
        self,
        key: str,
        body: bytes,
        content_type: str | None = None,
        metadata: dict[str, str] | None = None,
    ) -> None:
        for k, v in (metadata or {}).items():
            if not isinstance(v, str) or not (k + v).isascii():
                raise MetadataRejectedError(key, f"metadata {k!r} is not an ASCII string")
        try:
            path = self._path(key)
            path.parent.mkdir(parents=True, exist_ok=True)
            await asyncio.to_thread(path.write_bytes, body)
        except (OSError, ValueError) as e:
            raise UploadError(key, e) from e
        self.metadata[key] = dict(metadata or {})

    async def get_object(self, key: str) -> bytes | None:
        path = self._path(key)
        if not path.is_file():
            return None
        return await asyncio.to_thread(path.read_bytes)
