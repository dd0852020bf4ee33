"""Object storage interface and models."""

from __future__ import annotations

from typing import Protocol, runtime_checkable

from pydantic import BaseModel, ConfigDict


class ObjectInfo(BaseModel):
    """A single key returned by a storage listing."""

    model_config = ConfigDict(frozen=True)

    key: str
    size: int = 0
    etag: str | None = None


@runtime_checkable
class ObjectStore(Protocol):
    """Durable destination for published bundles (local tree, S3, R2)."""

    async def list_keys(self, prefix: str, max_keys: int = 1000) -> list[ObjectInfo]: ...

    async def put_object(
        self,
        key: str,
        body: bytes,
        content_type: str | None = None,
        metadata: dict[str, str] | None = None,
    ) -> None: ...

    async def get_object(self, key: str) -> bytes | None: ...
