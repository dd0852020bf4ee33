"""Similarity capability and result models."""

from __future__ import annotations

from abc import abstractmethod
from collections.abc import Sequence

from pydantic import BaseModel, ConfigDict, Field

from .embedding import EmbeddingVector
from .plugin import CapabilityKind, Plugin


class SimilarPost(BaseModel):
    model_config = ConfigDict(frozen=True)

    hash: str
    score: float


class SimilarityResult(BaseModel):
    """pairwise_scores is keyed "<hashA>:<hashB>" with hashA < hashB."""

    pairwise_scores: dict[str, float] = Field(default_factory=dict)
    similar_posts: dict[str, list[SimilarPost]] = Field(default_factory=dict)

    def to_json_dict(self) -> dict:
        return {
            "pairwiseScores": self.pairwise_scores,
            "similarPosts": {
                h: [p.hash for p in posts] for h, posts in self.similar_posts.items()
            },
            "similarScores": {
                h: [p.model_dump() for p in posts] for h, posts in self.similar_posts.items()
            },
        }


def pair_key(a: str, b: str) -> str:
    return f"{a}:{b}" if a < b else f"{b}:{a}"


def rank_similar(candidates: list[SimilarPost], top_n: int) -> list[SimilarPost]:
    """Highest score first; equal scores ordered by ascending hash."""
    return sorted(candidates, key=lambda p: (-p.score, p.hash))[:top_n]


class Similarity(Plugin):
    kind = CapabilityKind.similarity
    default_requires = (CapabilityKind.text_embedder,)

    @abstractmethod
    def compute_similarity(self, a: Sequence[float], b: Sequence[float]) -> float: ...

    @abstractmethod
    def generate_similarity_map(
        self, vectors: list[EmbeddingVector], top_n: int = 10
    ) -> SimilarityResult: ...
