"""Normalized content records produced by the transform pipeline."""

from __future__ import annotations

from enum import Enum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field


class TocEntry(BaseModel):
    model_config = ConfigDict(frozen=True)

    level: int
    text: str
    anchor: str


class ProcessedPost(BaseModel):
    """One markdown document, immutable once produced."""

    model_config = ConfigDict(frozen=True)

    id: str
    hash: str
    slug: str
    title: str
    file_name: str
    path: str
    frontmatter: dict[str, Any] = Field(default_factory=dict)
    markdown: str = ""
    html: str = ""
    plain_text: str = ""
    excerpt: str = ""
    word_count: int = 0
    toc: list[TocEntry] = Field(default_factory=list)
    cover: str | None = None
    links: list[str] = Field(default_factory=list)
    media_refs: list[str] = Field(default_factory=list)

    def to_json_dict(self) -> dict[str, Any]:
        """Serialize with the bundle's camelCase field names."""
        return {
            "id": self.id,
            "hash": self.hash,
            "slug": self.slug,
            "title": self.title,
            "fileName": self.file_name,
            "originalPath": self.path,
            "frontmatter": self.frontmatter,
            "markdown": self.markdown,
            "content": self.html,
            "plainText": self.plain_text,
            "excerpt": self.excerpt,
            "wordCount": self.word_count,
            "toc": [t.model_dump() for t in self.toc],
            "cover": self.cover,
            "links": self.links,
            "media": self.media_refs,
        }


class MediaKind(str, Enum):
    image = "image"
    svg = "svg"
    other = "other"


class ProcessedMedia(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: str
    hash: str
    original_path: str
    file_name: str
    format: str
    kind: MediaKind = MediaKind.image
    width: int | None = None
    height: int | None = None
    size_bytes: int = 0
    # variant name -> path relative to the bundle root
    sizes: dict[str, str] = Field(default_factory=dict)

    def to_json_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "hash": self.hash,
            "originalPath": self.original_path,
            "fileName": self.file_name,
            "format": self.format,
            "kind": self.kind.value,
            "width": self.width,
            "height": self.height,
            "sizeBytes": self.size_bytes,
            "sizes": self.sizes,
        }
