"""EmbeddingPipeline: posts and media through the embedder plugins."""

from __future__ import annotations

import asyncio
import json
import logging
from pathlib import Path

from pydantic import BaseModel, Field

from vaultpress.config.models import EmbeddingConfig
from vaultpress.content.models import MediaKind, ProcessedMedia, ProcessedPost
from vaultpress.interfaces.embedding import (
    EmbeddingOwner,
    EmbeddingVector,
    ImageEmbedder,
    TextEmbedder,
)
from vaultpress.interfaces.similarity import Similarity, SimilarityResult
from vaultpress.interfaces.storage import ObjectStore
from vaultpress.issues import IssueCategory, IssueCollector

logger = logging.getLogger(__name__)

POST_EMBEDDING_MAP = "posts-embedding-hash-map.json"
MEDIA_EMBEDDING_MAP = "media-embedding-hash-map.json"


class EmbeddingResult(BaseModel):
    post_vectors: list[EmbeddingVector] = Field(default_factory=list)
    media_vectors: list[EmbeddingVector] = Field(default_factory=list)
    similarity: SimilarityResult = Field(default_factory=SimilarityResult)
    text_model: str = "none"
    image_model: str = "none"
    posts_reused: int = 0
    media_reused: int = 0

    @property
    def vectors(self) -> list[EmbeddingVector]:
        return self.post_vectors + self.media_vectors

    @property
    def reused(self) -> int:
        return self.posts_reused + self.media_reused

    def post_hash_map(self) -> dict[str, list[float]]:
        return {v.owner_hash: v.values for v in self.post_vectors}

    def media_hash_map(self) -> dict[str, list[float]]:
        return {v.owner_hash: v.values for v in self.media_vectors}


class PreviousEmbeddings(BaseModel):
    """Hash maps published by an earlier build, keyed by content hash."""

    posts: dict[str, list[float]] = Field(default_factory=dict)
    media: dict[str, list[float]] = Field(default_factory=dict)
    source: str | None = None


async def _load_map(store: ObjectStore, key: str) -> dict[str, list[float]]:
    try:
        body = await store.get_object(key)
    except Exception as e:
        logger.warning("Cannot fetch %s, embeddings will be recomputed: %s", key, e)
        return {}
    if body is None:
        logger.info("No previous embeddings at %s", key)
        return {}
    try:
        data = json.loads(body)
    except ValueError as e:
        logger.warning("Ignoring unreadable %s: %s", key, e)
        return {}
    if not isinstance(data, dict):
        logger.warning("Ignoring %s: expected a JSON object", key)
        return {}
    return {h: v for h, v in data.items() if isinstance(v, list)}


async def load_previous_embeddings(store: ObjectStore, prefix: str) -> PreviousEmbeddings:
    """Read the post and media hash maps stored under ``prefix``.

    A missing or unreadable map only means those vectors are recomputed.
    """
    prefix = prefix.rstrip("/")
    posts, media = await asyncio.gather(
        _load_map(store, f"{prefix}/{POST_EMBEDDING_MAP}"),
        _load_map(store, f"{prefix}/{MEDIA_EMBEDDING_MAP}"),
    )
    logger.info("Loaded %d post and %d media embeddings from %s", len(posts), len(media), prefix)
    return PreviousEmbeddings(posts=posts, media=media, source=prefix)


def embedding_text(post: ProcessedPost, max_chars: int) -> str:
    text = f"{post.title}\n\n{post.plain_text}".strip()
    return text[:max_chars]


def _batches(items: list, size: int) -> list[list]:
    return [items[i:i + size] for i in range(0, len(items), size)]


class EmbeddingPipeline:
    """Batches inputs through the configured embedders, then ranks similarity.

    Dimensionality always comes from the active plugin. Batches to one
    plugin run with at most ``max_concurrency`` in flight. Vectors found in
    ``previous`` with the active dimensionality are reused without calling
    the embedder.
    """

    def __init__(
        self,
        config: EmbeddingConfig,
        text_embedder: TextEmbedder,
        image_embedder: ImageEmbedder,
        similarity: Similarity,
        issues: IssueCollector | None = None,
        previous: PreviousEmbeddings | None = None,
    ) -> None:
        self.config = config
        self.text_embedder = text_embedder
        self.image_embedder = image_embedder
        self.similarity = similarity
        self.issues = issues or IssueCollector()
        self.previous = previous or PreviousEmbeddings()
        self._reused: dict[EmbeddingOwner, int] = {EmbeddingOwner.post: 0, EmbeddingOwner.media: 0}

    async def run(
        self,
        posts: list[ProcessedPost],
        media: list[ProcessedMedia],
        media_paths: dict[str, Path] | None = None,
    ) -> EmbeddingResult:
        """``media_paths`` maps media hash to a readable local file."""
        post_vectors, media_vectors = await asyncio.gather(
            self.embed_posts(posts),
            self.embed_media(media, media_paths or {}),
        )
        similarity = await asyncio.to_thread(
            self.similarity.generate_similarity_map, post_vectors, self.config.similarity_top_n
        )
        return EmbeddingResult(
            post_vectors=post_vectors,
            media_vectors=media_vectors,
            similarity=similarity,
            text_model=self.text_embedder.model,
            image_model=self.image_embedder.model,
            posts_reused=self._reused[EmbeddingOwner.post],
            media_reused=self._reused[EmbeddingOwner.media],
        )

    async def embed_posts(self, posts: list[ProcessedPost]) -> list[EmbeddingVector]:
        if not posts or self.text_embedder.dimensions == 0:
            return []
        texts = [embedding_text(p, self.config.max_chars) for p in posts]
        hashes = [p.hash for p in posts]
        return await self._embed(
            self.text_embedder, texts, hashes, EmbeddingOwner.post, self.previous.posts,
        )

    async def embed_media(
        self, media: list[ProcessedMedia], media_paths: dict[str, Path]
    ) -> list[EmbeddingVector]:
        if self.image_embedder.dimensions == 0:
            return []
        qualifying = [
            m for m in media
            if m.kind == MediaKind.image and m.hash in media_paths
        ]
        if not qualifying:
            return []
        paths = [media_paths[m.hash] for m in qualifying]
        hashes = [m.hash for m in qualifying]
        return await self._embed(
            self.image_embedder, paths, hashes, EmbeddingOwner.media, self.previous.media,
        )

    async def _embed(
        self,
        embedder: TextEmbedder | ImageEmbedder,
        inputs: list,
        hashes: list[str],
        owner: EmbeddingOwner,
        previous: dict[str, list[float]],
    ) -> list[EmbeddingVector]:
        """Reuse previous vectors where possible, embed the rest, keep input order."""
        model, dims = embedder.model, embedder.dimensions
        found: dict[str, EmbeddingVector] = {}
        todo_inputs, todo_hashes = [], []
        for item, h in zip(inputs, hashes):
            values = previous.get(h)
            if values is not None and len(values) == dims:
                found[h] = EmbeddingVector(
                    owner_hash=h, model=model, dimensions=dims, values=list(values), owner=owner,
                )
            else:
                todo_inputs.append(item)
                todo_hashes.append(h)

        self._reused[owner] = len(found)
        if found:
            logger.info("Reusing %d previous %s embeddings", len(found), owner.value)
        if todo_inputs:
            for v in await self._run_batches(embedder, todo_inputs, todo_hashes, owner):
                found[v.owner_hash] = v
        return [found[h] for h in hashes if h in found]

    async def _run_batches(
        self,
        embedder: TextEmbedder | ImageEmbedder,
        inputs: list,
        hashes: list[str],
        owner: EmbeddingOwner,
    ) -> list[EmbeddingVector]:
        semaphore = asyncio.Semaphore(self.config.max_concurrency)
        model, dims = embedder.model, embedder.dimensions

        async def _one(batch_inputs: list, batch_hashes: list[str]) -> list[EmbeddingVector]:
            async with semaphore:
                try:
                    values = await embedder.batch_embed(batch_inputs)
                except Exception as e:
                    logger.error("Embedding batch failed (%s): %s", model, e)
                    self.issues.add(
                        IssueCategory.embedding_error,
                        f"{owner.value} embedding batch of {len(batch_inputs)} failed: {e}",
                        module="embedding",
                    )
                    return []
            if len(values) != len(batch_inputs):
                self.issues.add(
                    IssueCategory.embedding_error,
                    f"Embedder returned {len(values)} vectors for {len(batch_inputs)} inputs",
                    module="embedding",
                )
            vectors = []
            for h, vec in zip(batch_hashes, values):
                if len(vec) != dims:
                    self.issues.add(
                        IssueCategory.embedding_error,
                        f"Vector for {h} has {len(vec)} dimensions, expected {dims}",
                        module="embedding",
                    )
                    continue
                vectors.append(EmbeddingVector(
                    owner_hash=h, model=model, dimensions=dims, values=list(vec), owner=owner,
                ))
            return vectors

        size = self.config.batch_size
        results = await asyncio.gather(*(
            _one(b_in, b_h) for b_in, b_h in zip(_batches(inputs, size), _batches(hashes, size))
        ))
        vectors = [v for batch in results for v in batch]
        logger.info("Embedded %d/%d %s items with %s", len(vectors), len(inputs), owner.value, model)
        return vectors
