from .database import Database, DatabaseBuildError, DatabaseInput, DatabaseResult
from .embedding import EmbeddingOwner, EmbeddingVector, ImageEmbedder, TextEmbedder
from .image import ImageMetadata, ImageProcessOptions, ImageProcessResult, ImageProcessor
from .plugin import CapabilityKind, Plugin, PluginContext, PluginState, SharedResources
from .renderer import MermaidRenderer, MermaidRenderOptions, MermaidResult, MermaidStrategy
from .similarity import SimilarPost, Similarity, SimilarityResult
from .storage import ObjectInfo, ObjectStore

__all__ = [
    "CapabilityKind",
    "Database",
    "DatabaseBuildError",
    "DatabaseInput",
    "DatabaseResult",
    "EmbeddingOwner",
    "EmbeddingVector",
    "ImageEmbedder",
    "ImageMetadata",
    "ImageProcessOptions",
    "ImageProcessResult",
    "ImageProcessor",
    "MermaidRenderOptions",
    "MermaidRenderer",
    "MermaidResult",
    "MermaidStrategy",
    "ObjectInfo",
    "ObjectStore",
    "Plugin",
    "PluginContext",
    "PluginState",
    "SharedResources",
    "SimilarPost",
    "Similarity",
    "SimilarityResult",
    "TextEmbedder",
]
