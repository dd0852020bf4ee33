"""Canonical no-op implementation for every capability kind.

These are used whenever a capability is not configured, so that every stage
of the pipeline can run without special-casing missing plugins.
"""

from __future__ import annotations

import asyncio
import html
import shutil
from collections.abc import Sequence
from pathlib import Path

from vaultpress.interfaces.database import Database, DatabaseInput, DatabaseResult
from vaultpress.interfaces.embedding import EmbeddingVector, ImageEmbedder, TextEmbedder
from vaultpress.interfaces.image import (
    ImageMetadata,
    ImageProcessOptions,
    ImageProcessResult,
    ImageProcessor,
)
from vaultpress.interfaces.plugin import CapabilityKind, Plugin
from vaultpress.interfaces.renderer import (
    MermaidRenderer,
    MermaidRenderOptions,
    MermaidResult,
    MermaidStrategy,
)
from vaultpress.interfaces.similarity import Similarity, SimilarityResult


class CopyOnlyImageProcessor(ImageProcessor):
    """Copies files verbatim. No resizing, no re-encoding."""

    implementation = "copy"

    def can_process(self, path: Path) -> bool:
        return False

    async def get_metadata(self, path: Path) -> ImageMetadata:
        return ImageMetadata(width=0, height=0, format=path.suffix.lstrip(".").lower())

    async def process(
        self, input_path: Path, output_path: Path, options: ImageProcessOptions
    ) -> ImageProcessResult:
        await self.copy(input_path, output_path)
        return ImageProcessResult(
            output_path=str(output_path),
            width=0,
            height=0,
            format=input_path.suffix.lstrip(".").lower(),
            size_bytes=output_path.stat().st_size,
        )

    async def copy(self, input_path: Path, output_path: Path) -> None:
        output_path.parent.mkdir(parents=True, exist_ok=True)
        await asyncio.to_thread(shutil.copyfile, input_path, output_path)


class NoOpTextEmbedder(TextEmbedder):
    implementation = "none"

    @property
    def model(self) -> str:
        return "none"

    @property
    def dimensions(self) -> int:
        return 0

    async def embed(self, text: str) -> list[float]:
        return []

    async def batch_embed(self, texts: list[str]) -> list[list[float]]:
        return [[] for _ in texts]


class NoOpImageEmbedder(ImageEmbedder):
    implementation = "none"

    @property
    def model(self) -> str:
        return "none"

    @property
    def dimensions(self) -> int:
        return 0

    async def embed(self, image_path: Path) -> list[float]:
        return []

    async def batch_embed(self, image_paths: list[Path]) -> list[list[float]]:
        return [[] for _ in image_paths]


class NoOpSimilarity(Similarity):
    implementation = "none"

    def compute_similarity(self, a: Sequence[float], b: Sequence[float]) -> float:
        return 0.0

    def generate_similarity_map(
        self, vectors: list[EmbeddingVector], top_n: int = 10
    ) -> SimilarityResult:
        return SimilarityResult()


class NoOpDatabase(Database):
    implementation = "none"

    async def build(self, data: DatabaseInput) -> DatabaseResult:
        return DatabaseResult()


class PassthroughMermaidRenderer(MermaidRenderer):
    """Emits <pre class="mermaid"> for client-side rendering."""

    implementation = "passthrough"

    async def render(self, code: str, options: MermaidRenderOptions) -> MermaidResult:
        return MermaidResult(
            output=pre_mermaid(code),
            strategy=MermaidStrategy.pre_mermaid,
        )

    async def is_available(self) -> bool:
        return True


def pre_mermaid(code: str) -> str:
    return f'<pre class="mermaid">{html.escape(code.strip())}</pre>'


DEFAULT_PLUGINS: dict[CapabilityKind, type[Plugin]] = {
    CapabilityKind.image_processor: CopyOnlyImageProcessor,
    CapabilityKind.text_embedder: NoOpTextEmbedder,
    CapabilityKind.image_embedder: NoOpImageEmbedder,
    CapabilityKind.similarity: NoOpSimilarity,
    CapabilityKind.database: NoOpDatabase,
    CapabilityKind.mermaid_renderer: PassthroughMermaidRenderer,
}


def default_plugin(kind: CapabilityKind) -> Plugin:
    """Build a fresh no-op plugin for ``kind``."""
    return DEFAULT_PLUGINS[kind]()
