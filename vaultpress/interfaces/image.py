"""Image processor capability and models."""

from __future__ import annotations

from abc import abstractmethod
from pathlib import Path

from pydantic import BaseModel, ConfigDict

from .plugin import CapabilityKind, Plugin


class ImageMetadata(BaseModel):
    model_config = ConfigDict(frozen=True)

    width: int
    height: int
    format: str


class ImageProcessOptions(BaseModel):
    """Resize/format request. Width or height of None keeps the source size."""

    model_config = ConfigDict(frozen=True)

    width: int | None = None
    height: int | None = None
    format: str = "webp"
    quality: int = 80


class ImageProcessResult(BaseModel):
    model_config = ConfigDict(frozen=True)

    output_path: str
    width: int
    height: int
    format: str
    size_bytes: int


class ImageProcessor(Plugin):
    kind = CapabilityKind.image_processor

    @abstractmethod
    def can_process(self, path: Path) -> bool: ...

    @abstractmethod
    async def get_metadata(self, path: Path) -> ImageMetadata: ...

    @abstractmethod
    async def process(
        self, input_path: Path, output_path: Path, options: ImageProcessOptions
    ) -> ImageProcessResult: ...

    @abstractmethod
    async def copy(self, input_path: Path, output_path: Path) -> None: ...

    def output_format(self, requested: str) -> str:
        """Format (and file extension) that ``process`` writes for ``requested``."""
        return requested
