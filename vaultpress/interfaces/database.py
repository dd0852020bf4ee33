"""Database builder capability."""

from __future__ import annotations

from abc import abstractmethod

from pydantic import BaseModel, Field

from vaultpress.content.models import ProcessedMedia, ProcessedPost
from vaultpress.schema.models import InferredSchema

from .embedding import EmbeddingVector
from .plugin import CapabilityKind, Plugin
from .similarity import SimilarityResult


class DatabaseInput(BaseModel):
    posts: list[ProcessedPost] = Field(default_factory=list)
    media: list[ProcessedMedia] = Field(default_factory=list)
    embeddings: list[EmbeddingVector] = Field(default_factory=list)
    frontmatter_schema: InferredSchema = Field(default_factory=InferredSchema)
    similarity: SimilarityResult = Field(default_factory=SimilarityResult)


class DatabaseBuildError(Exception):
    """The database could not be written. Aborts the build."""


class DatabaseResult(BaseModel):
    database_path: str = ""
    tables: list[str] = Field(default_factory=list)
    row_counts: dict[str, int] = Field(default_factory=dict)


class Database(Plugin):
    kind = CapabilityKind.database

    @abstractmethod
    async def build(self, data: DatabaseInput) -> DatabaseResult: ...
