"""Identifier quoting decisions for generated SQL.

Pure functions from column names to SQL fragments. The same decision is used
for DDL and for every query, so a reserved-word column is always quoted.
"""

from __future__ import annotations

import re

from .models import ColumnType, SchemaColumn

SQLITE_RESERVED_WORDS = frozenset({
    "abort", "action", "add", "after", "all", "alter", "analyze", "and", "as",
    "asc", "attach", "autoincrement", "before", "begin", "between", "by",
    "cascade", "case", "cast", "check", "collate", "column", "commit",
    "conflict", "constraint", "create", "cross", "current", "current_date",
    "current_time", "current_timestamp", "database", "default", "deferrable",
    "deferred", "delete", "desc", "detach", "distinct", "do", "drop", "each",
    "else", "end", "escape", "except", "exclusive", "exists", "explain",
    "filter", "following", "for", "foreign", "from", "full", "glob", "group",
    "having", "if", "ignore", "immediate", "in", "index", "indexed",
    "initially", "inner", "insert", "instead", "intersect", "into", "is",
    "isnull", "join", "key", "left", "like", "limit", "match", "natural", "no",
    "not", "nothing", "notnull", "null", "of", "offset", "on", "or", "order",
    "outer", "over", "partition", "plan", "pragma", "preceding", "primary",
    "query", "raise", "range", "recursive", "references", "regexp", "reindex",
    "release", "rename", "replace", "restrict", "right", "rollback", "row",
    "rows", "savepoint", "select", "set", "table", "temp", "temporary", "then",
    "to", "transaction", "trigger", "unbounded", "union", "unique", "update",
    "using", "vacuum", "values", "view", "virtual", "when", "where", "window",
    "with", "without",
})

_SAFE_IDENTIFIER_RE = re.compile(r"^[a-z_][a-z0-9_]*$")

SQL_TYPES = {
    ColumnType.text: "TEXT",
    ColumnType.integer: "INTEGER",
    ColumnType.real: "REAL",
    ColumnType.boolean: "INTEGER",
    ColumnType.json: "TEXT",
}


def is_reserved_word(name: str) -> bool:
    return name.lower() in SQLITE_RESERVED_WORDS


def needs_quoting(name: str) -> bool:
    return is_reserved_word(name) or not _SAFE_IDENTIFIER_RE.match(name)


def quote_identifier(name: str) -> str:
    """Return ``name`` ready to splice into SQL, quoted only when needed."""
    if needs_quoting(name):
        return '"' + name.replace('"', '""') + '"'
    return name


def column_sql(column: SchemaColumn) -> str:
    return f"{quote_identifier(column.name)} {SQL_TYPES[column.inferred_type]}"


def create_table_sql(
    table: str, fixed_columns: list[str], columns: list[SchemaColumn]
) -> str:
    """CREATE TABLE with raw fixed column definitions followed by inferred ones."""
    parts = list(fixed_columns) + [column_sql(c) for c in columns]
    return f"CREATE TABLE {quote_identifier(table)} (\n  " + ",\n  ".join(parts) + "\n)"


def insert_sql(table: str, names: list[str]) -> str:
    cols = ", ".join(quote_identifier(n) for n in names)
    marks = ", ".join("?" for _ in names)
    return f"INSERT INTO {quote_identifier(table)} ({cols}) VALUES ({marks})"


def select_sql(
    table: str, names: list[str], where: str | None = None, order_by: str | None = None
) -> str:
    """SELECT the given columns. ``where``/``order_by`` name a single column."""
    cols = ", ".join(quote_identifier(n) for n in names)
    sql = f"SELECT {cols} FROM {quote_identifier(table)}"
    if where:
        sql += f" WHERE {quote_identifier(where)} = ?"
    if order_by:
        sql += f" ORDER BY {quote_identifier(order_by)}"
    return sql
