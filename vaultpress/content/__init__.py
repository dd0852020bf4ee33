from .models import MediaKind, ProcessedMedia, ProcessedPost, TocEntry
from .pipeline import ContentResult, ContentTransformPipeline

__all__ = [
    "ContentResult",
    "ContentTransformPipeline",
    "MediaKind",
    "ProcessedMedia",
    "ProcessedPost",
    "TocEntry",
]
