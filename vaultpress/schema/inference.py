"""Derive a unified column schema from heterogeneous post frontmatter."""

from __future__ import annotations

import json
import logging
import re
from collections import Counter, defaultdict
from collections.abc import Iterable, Mapping
from datetime import date, datetime
from typing import Any

from .models import ColumnType, InferredSchema, SchemaColumn, SchemaWarning, ValueShape
from .quoting import is_reserved_word

logger = logging.getLogger(__name__)

# Keys seen in fewer than this share of posts get a rare-property warning.
RARE_THRESHOLD = 0.1

# Columns the posts table always has; frontmatter keys that sanitize to one
# of these are renamed with the fm_ prefix.
FIXED_POST_COLUMNS = frozenset({
    "id", "hash", "slug", "title", "file_name", "path", "excerpt",
    "plain_text", "html", "markdown", "word_count", "cover", "frontmatter",
})

_DATE_RE = re.compile(
    r"^\d{4}-\d{2}-\d{2}"
    r"(?:[T ]\d{2}:\d{2}(?::\d{2}(?:\.\d+)?)?(?:Z|[+-]\d{2}:?\d{2})?)?$"
)
_INVALID_CHARS_RE = re.compile(r"[^a-zA-Z0-9_]")


def detect_shape(value: Any) -> ValueShape:
    """Classify a single frontmatter value."""
    if value is None:
        return ValueShape.null
    # bool before int: bool is an int subclass
    if isinstance(value, bool):
        return ValueShape.boolean
    if isinstance(value, int):
        return ValueShape.integer
    if isinstance(value, float):
        return ValueShape.number
    if isinstance(value, (date, datetime)):
        return ValueShape.date
    if isinstance(value, str):
        return ValueShape.date if _DATE_RE.match(value.strip()) else ValueShape.string
    if isinstance(value, (list, tuple, set)):
        return ValueShape.array
    if isinstance(value, Mapping):
        return ValueShape.object
    return ValueShape.string


def widen(shapes: Iterable[ValueShape]) -> ColumnType:
    """Resolve every observed shape of one key to a single column type."""
    observed = {s for s in shapes if s != ValueShape.null}
    if not observed:
        return ColumnType.text
    if len(observed) == 1:
        (only,) = observed
        return {
            ValueShape.boolean: ColumnType.boolean,
            ValueShape.integer: ColumnType.integer,
            ValueShape.number: ColumnType.real,
            ValueShape.string: ColumnType.text,
            ValueShape.date: ColumnType.text,
            ValueShape.array: ColumnType.json,
            ValueShape.object: ColumnType.json,
        }[only]
    if observed <= {ValueShape.integer, ValueShape.number}:
        return ColumnType.real
    if observed & {ValueShape.array, ValueShape.object}:
        return ColumnType.json
    return ColumnType.text


def sanitize_column_name(key: str) -> str:
    name = _INVALID_CHARS_RE.sub("_", key.strip()).lower()
    name = re.sub(r"_+", "_", name).strip("_") or "field"
    if name[0].isdigit():
        name = f"fm_{name}"
    if name in FIXED_POST_COLUMNS:
        name = f"fm_{name}"
    return name


class SchemaInferenceEngine:
    """Scans frontmatter maps and produces an :class:`InferredSchema`."""

    def __init__(self, rare_threshold: float = RARE_THRESHOLD) -> None:
        self.rare_threshold = rare_threshold

    def infer(self, frontmatters: Iterable[Mapping[str, Any]]) -> InferredSchema:
        shapes: dict[str, Counter[ValueShape]] = defaultdict(Counter)
        occurrences: Counter[str] = Counter()
        order: list[str] = []
        total = 0

        for fm in frontmatters:
            total += 1
            for key, value in fm.items():
                key = str(key)
                if key not in shapes:
                    order.append(key)
                shapes[key][detect_shape(value)] += 1
                occurrences[key] += 1

        columns: list[SchemaColumn] = []
        warnings: list[SchemaWarning] = []
        used_names: set[str] = set()

        for key in order:
            name = sanitize_column_name(key)
            if name in used_names:
                suffix = 2
                while f"{name}_{suffix}" in used_names:
                    suffix += 1
                name = f"{name}_{suffix}"
            used_names.add(name)

            if name != key:
                warnings.append(SchemaWarning(
                    key=key, kind="renamed", message=f"Key '{key}' stored as column '{name}'",
                ))

            observed = shapes[key]
            col_type = widen(observed)
            non_null = [s for s in observed if s != ValueShape.null]
            if len(non_null) > 1:
                summary = ", ".join(f"{s.value}({observed[s]})" for s in sorted(non_null, key=lambda s: s.value))
                warnings.append(SchemaWarning(
                    key=key,
                    kind="type-conflict",
                    message=f"Key '{key}' has mixed types [{summary}]; stored as {col_type.value}",
                ))

            reserved = is_reserved_word(name)
            if reserved:
                warnings.append(SchemaWarning(
                    key=key,
                    kind="reserved-word",
                    message=f"Column '{name}' is a reserved word and will be quoted",
                ))

            if total and occurrences[key] / total < self.rare_threshold:
                warnings.append(SchemaWarning(
                    key=key,
                    kind="rare-property",
                    message=f"Key '{key}' appears in {occurrences[key]} of {total} posts",
                ))

            columns.append(SchemaColumn(
                name=name,
                source_key=key,
                inferred_type=col_type,
                is_reserved_word=reserved,
                observed=sorted(observed, key=lambda s: s.value),
                occurrences=occurrences[key],
            ))

        logger.info("Inferred %d frontmatter columns from %d posts", len(columns), total)
        return InferredSchema(columns=columns, warnings=warnings, total_posts=total)


def coerce_value(value: Any, column: SchemaColumn) -> Any:
    """Convert a frontmatter value into something sqlite3 can bind for ``column``."""
    if value is None:
        return None
    col_type = column.inferred_type
    if col_type == ColumnType.boolean:
        return 1 if value else 0
    if col_type == ColumnType.integer:
        return int(value)
    if col_type == ColumnType.real:
        return float(value)
    if col_type == ColumnType.json:
        return json.dumps(value, default=str, ensure_ascii=False)
    if isinstance(value, (date, datetime)):
        return value.isoformat()
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, (list, dict)):
        return json.dumps(value, default=str, ensure_ascii=False)
    return str(value)
