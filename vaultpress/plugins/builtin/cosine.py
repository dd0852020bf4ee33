"""Cosine similarity over post embeddings, computed with numpy."""

from __future__ import annotations

import logging
from collections.abc import Sequence

import numpy as np

from vaultpress.interfaces.embedding import EmbeddingVector
from vaultpress.interfaces.similarity import (
    SimilarPost,
    Similarity,
    SimilarityResult,
    pair_key,
    rank_similar,
)

logger = logging.getLogger(__name__)

# Scores are rounded so that float noise cannot reorder genuine ties.
SCORE_PRECISION = 6


class CosineSimilarity(Similarity):
    implementation = "cosine"

    def compute_similarity(self, a: Sequence[float], b: Sequence[float]) -> float:
        va = np.asarray(a, dtype=np.float64)
        vb = np.asarray(b, dtype=np.float64)
        if va.size == 0 or va.shape != vb.shape:
            return 0.0
        denom = np.linalg.norm(va) * np.linalg.norm(vb)
        if denom == 0:
            return 0.0
        return round(float(np.dot(va, vb) / denom), SCORE_PRECISION)

    def generate_similarity_map(
        self, vectors: list[EmbeddingVector], top_n: int = 10
    ) -> SimilarityResult:
        usable = [v for v in vectors if v.values]
        if len(usable) < 2:
            return SimilarityResult(similar_posts={v.owner_hash: [] for v in usable})

        dims = {len(v.values) for v in usable}
        if len(dims) > 1:
            raise ValueError(f"Mixed embedding dimensions: {sorted(dims)}")

        # Sort by hash so matrix layout, and therefore float results, never
        # depend on input order.
        usable.sort(key=lambda v: v.owner_hash)
        hashes = [v.owner_hash for v in usable]
        matrix = np.asarray([v.values for v in usable], dtype=np.float64)
        norms = np.linalg.norm(matrix, axis=1, keepdims=True)
        norms[norms == 0] = 1.0
        normalized = matrix / norms
        scores = np.round(normalized @ normalized.T, SCORE_PRECISION)

        result = SimilarityResult()
        for i, h in enumerate(hashes):
            candidates = []
            for j, other in enumerate(hashes):
                if i == j:
                    continue
                score = float(scores[i, j])
                if i < j:
                    result.pairwise_scores[pair_key(h, other)] = score
                candidates.append(SimilarPost(hash=other, score=score))
            result.similar_posts[h] = rank_similar(candidates, top_n)

        logger.debug("Computed similarity for %d posts", len(hashes))
        return result
