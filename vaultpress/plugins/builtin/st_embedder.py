"""Text and image embedders backed by sentence-transformers."""

from __future__ import annotations

import asyncio
import logging
from pathlib import Path
from typing import Any

from PIL import Image

from vaultpress.interfaces.embedding import ImageEmbedder, TextEmbedder
from vaultpress.interfaces.plugin import PluginContext, SharedResources

logger = logging.getLogger(__name__)

DEFAULT_TEXT_MODEL = "all-MiniLM-L6-v2"
DEFAULT_IMAGE_MODEL = "clip-ViT-B-32"


def load_model(resources: SharedResources, name: str) -> Any:
    """Load a SentenceTransformer once per process and reuse it."""

    def _factory() -> Any:
        from sentence_transformers import SentenceTransformer

        logger.info("Loading embedding model %s", name)
        return SentenceTransformer(name)

    return resources.get_or_create(f"sentence-transformers:{name}", _factory)


class _SentenceTransformerMixin:
    options: dict[str, Any]
    resources: SharedResources
    _default_model: str
    _model: Any = None
    _dimensions: int = 0

    @property
    def model(self) -> str:
        return self.options.get("model", self._default_model)

    @property
    def dimensions(self) -> int:
        return self._dimensions

    async def setup(self, context: PluginContext) -> None:
        self._model = await asyncio.to_thread(load_model, self.resources, self.model)
        dims = self._model.get_sentence_embedding_dimension()
        if not dims:
            sample = await asyncio.to_thread(self._model.encode, ["dimensions"], convert_to_numpy=True)
            dims = int(sample.shape[1])
        self._dimensions = int(dims)
        logger.info("Embedder %s ready (%d dimensions)", self.model, self._dimensions)

    async def teardown(self) -> None:
        # The model itself stays in the shared resources.
        self._model = None

    def _encode(self, inputs: list) -> list[list[float]]:
        if not inputs:
            return []
        if self._model is None:
            raise RuntimeError(f"Embedder {self.model} used before initialization")
        arr = self._model.encode(
            inputs,
            convert_to_numpy=True,
            normalize_embeddings=bool(self.options.get("normalize", True)),
            batch_size=int(self.options.get("batch_size", 32)),
        )
        return arr.tolist()


class SentenceTransformerTextEmbedder(_SentenceTransformerMixin, TextEmbedder):
    implementation = "sentence-transformers"
    _default_model = DEFAULT_TEXT_MODEL

    async def embed(self, text: str) -> list[float]:
        vectors = await self.batch_embed([text])
        return vectors[0]

    async def batch_embed(self, texts: list[str]) -> list[list[float]]:
        return await asyncio.to_thread(self._encode, texts)


class SentenceTransformerImageEmbedder(_SentenceTransformerMixin, ImageEmbedder):
    implementation = "sentence-transformers"
    _default_model = DEFAULT_IMAGE_MODEL

    async def embed(self, image_path: Path) -> list[float]:
        vectors = await self.batch_embed([image_path])
        return vectors[0]

    async def batch_embed(self, image_paths: list[Path]) -> list[list[float]]:
        return await asyncio.to_thread(self._encode_images, image_paths)

    def _encode_images(self, image_paths: list[Path]) -> list[list[float]]:
        images = []
        try:
            for p in image_paths:
                with Image.open(p) as img:
                    images.append(img.convert("RGB"))
            return self._encode(images)
        finally:
            for img in images:
                img.close()
