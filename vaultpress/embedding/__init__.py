from .pipeline import EmbeddingPipeline, EmbeddingResult, PreviousEmbeddings, load_previous_embeddings

__all__ = ["EmbeddingPipeline", "EmbeddingResult", "PreviousEmbeddings", "load_previous_embeddings"]
