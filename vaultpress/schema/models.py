"""Inferred relational shape of post frontmatter."""

from __future__ import annotations

from enum import Enum

from pydantic import BaseModel, ConfigDict, Field


class ValueShape(str, Enum):
    """Shape of a single observed frontmatter value."""

    boolean = "boolean"
    integer = "integer"
    number = "number"
    string = "string"
    date = "date"
    array = "array"
    object = "object"
    null = "null"


class ColumnType(str, Enum):
    text = "text"
    integer = "integer"
    real = "real"
    boolean = "boolean"
    json = "json"


class SchemaColumn(BaseModel):
    model_config = ConfigDict(frozen=True)

    name: str
    source_key: str
    inferred_type: ColumnType
    is_reserved_word: bool = False
    observed: list[ValueShape] = Field(default_factory=list)
    occurrences: int = 0


class SchemaWarning(BaseModel):
    model_config = ConfigDict(frozen=True)

    key: str
    kind: str  # reserved-word | type-conflict | rare-property | renamed
    message: str


class InferredSchema(BaseModel):
    columns: list[SchemaColumn] = Field(default_factory=list)
    warnings: list[SchemaWarning] = Field(default_factory=list)
    total_posts: int = 0

    def column(self, source_key: str) -> SchemaColumn | None:
        for c in self.columns:
            if c.source_key == source_key:
                return c
        return None
