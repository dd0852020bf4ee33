"""Text and image embedder capabilities."""

from __future__ import annotations

from abc import abstractmethod
from enum import Enum
from pathlib import Path

from pydantic import BaseModel, ConfigDict, Field

from .plugin import CapabilityKind, Plugin


class EmbeddingOwner(str, Enum):
    post = "post"
    media = "media"


class EmbeddingVector(BaseModel):
    """One vector per (owner, model). Length always equals ``dimensions``."""

    model_config = ConfigDict(frozen=True)

    owner_hash: str
    model: str
    dimensions: int
    values: list[float] = Field(default_factory=list)
    owner: EmbeddingOwner = EmbeddingOwner.post


class Embedder(Plugin):
    """Shared surface: every embedder declares its model and dimensionality."""

    @property
    @abstractmethod
    def model(self) -> str: ...

    @property
    @abstractmethod
    def dimensions(self) -> int: ...


class TextEmbedder(Embedder):
    kind = CapabilityKind.text_embedder

    @abstractmethod
    async def embed(self, text: str) -> list[float]: ...

    async def batch_embed(self, texts: list[str]) -> list[list[float]]:
        return [await self.embed(t) for t in texts]


class ImageEmbedder(Embedder):
    kind = CapabilityKind.image_embedder

    @abstractmethod
    async def embed(self, image_path: Path) -> list[float]: ...

    async def batch_embed(self, image_paths: list[Path]) -> list[list[float]]:
        return [await self.embed(p) for p in image_paths]
