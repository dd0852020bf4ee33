"""Database plugin that writes the content bundle into a SQLite file."""

from __future__ import annotations

import asyncio
import json
import logging
import sqlite3
from pathlib import Path

import numpy as np

from vaultpress.interfaces.database import (
    Database,
    DatabaseBuildError,
    DatabaseInput,
    DatabaseResult,
)
from vaultpress.interfaces.plugin import PluginContext, SharedResources
from vaultpress.issues import IssueCategory, IssueCollector
from vaultpress.schema.inference import coerce_value
from vaultpress.schema.quoting import create_table_sql, insert_sql, quote_identifier

logger = logging.getLogger(__name__)


_POST_FIXED_COLUMNS = [
    "id TEXT PRIMARY KEY",
    "hash TEXT NOT NULL",
    "slug TEXT NOT NULL UNIQUE",
    "title TEXT",
    "file_name TEXT",
    "path TEXT",
    "excerpt TEXT",
    "plain_text TEXT",
    "html TEXT",
    "markdown TEXT",
    "word_count INTEGER",
    "cover TEXT",
    "frontmatter TEXT",
]
_POST_FIXED_NAMES = [c.split(" ", 1)[0] for c in _POST_FIXED_COLUMNS]

_STATIC_SCHEMA = """\
CREATE TABLE media (
    id TEXT PRIMARY KEY,
    hash TEXT NOT NULL,
    original_path TEXT,
    file_name TEXT,
    format TEXT,
    kind TEXT,
    width INTEGER,
    height INTEGER,
    size_bytes INTEGER,
    sizes TEXT
);
CREATE TABLE embeddings (
    owner_hash TEXT NOT NULL,
    owner TEXT NOT NULL,
    model TEXT NOT NULL,
    dimensions INTEGER NOT NULL,
    vector BLOB NOT NULL,
    PRIMARY KEY (owner_hash, model)
);
CREATE TABLE similarity (
    post_hash TEXT NOT NULL,
    similar_hash TEXT NOT NULL,
    score REAL NOT NULL,
    rank INTEGER NOT NULL,
    PRIMARY KEY (post_hash, similar_hash)
);
CREATE INDEX idx_posts_hash ON posts(hash);
CREATE INDEX idx_similarity_post ON similarity(post_hash, rank);
"""


class SQLiteDatabase(Database):
    """Builds ``<output_dir>/<file_name>`` from posts, media and embeddings.

    Options: ``file_name`` (default content.sqlite), ``fts`` (default True).
    """

    implementation = "sqlite"

    def __init__(
        self, options: dict | None = None, resources: SharedResources | None = None
    ) -> None:
        super().__init__(options, resources)
        self._output_dir: Path | None = None
        self._issues: IssueCollector | None = None

    async def setup(self, context: PluginContext) -> None:
        self._output_dir = context.output_dir
        self._issues = context.issues
        if context.config is not None:
            self.options.setdefault("file_name", context.config.database.file_name)
            self.options.setdefault("fts", context.config.database.fts)

    @property
    def database_path(self) -> Path:
        if self._output_dir is None:
            raise RuntimeError("SQLiteDatabase used before initialization")
        return self._output_dir / self.options.get("file_name", "content.sqlite")

    async def build(self, data: DatabaseInput) -> DatabaseResult:
        try:
            return await asyncio.to_thread(self._build_sync, data)
        except sqlite3.Error as e:
            raise DatabaseBuildError(f"SQLite build failed: {e}") from e

    def _build_sync(self, data: DatabaseInput) -> DatabaseResult:
        path = self.database_path
        path.parent.mkdir(parents=True, exist_ok=True)
        if path.exists():
            path.unlink()

        conn = sqlite3.connect(str(path))
        try:
            columns = data.frontmatter_schema.columns
            conn.execute(create_table_sql("posts", _POST_FIXED_COLUMNS, columns))
            conn.executescript(_STATIC_SCHEMA)
            tables = ["posts", "media", "embeddings", "similarity"]

            post_names = _POST_FIXED_NAMES + [c.name for c in columns]
            post_sql = insert_sql("posts", post_names)
            for post in data.posts:
                row = [
                    post.id,
                    post.hash,
                    post.slug,
                    post.title,
                    post.file_name,
                    post.path,
                    post.excerpt,
                    post.plain_text,
                    post.html,
                    post.markdown,
                    post.word_count,
                    post.cover,
                    json.dumps(post.frontmatter, default=str, ensure_ascii=False),
                ]
                row.extend(coerce_value(post.frontmatter.get(c.source_key), c) for c in columns)
                conn.execute(post_sql, row)

            media_sql = insert_sql("media", [
                "id", "hash", "original_path", "file_name", "format",
                "kind", "width", "height", "size_bytes", "sizes",
            ])
            conn.executemany(media_sql, [
                (
                    m.id, m.hash, m.original_path, m.file_name, m.format,
                    m.kind.value, m.width, m.height, m.size_bytes, json.dumps(m.sizes),
                )
                for m in data.media
            ])

            emb_sql = insert_sql("embeddings", ["owner_hash", "owner", "model", "dimensions", "vector"])
            conn.executemany(emb_sql, [
                (
                    v.owner_hash,
                    v.owner.value,
                    v.model,
                    v.dimensions,
                    np.asarray(v.values, dtype=np.float32).tobytes(),
                )
                for v in data.embeddings
                if v.values
            ])

            sim_sql = insert_sql("similarity", ["post_hash", "similar_hash", "score", "rank"])
            conn.executemany(sim_sql, [
                (post_hash, sp.hash, sp.score, rank)
                for post_hash, similar in data.similarity.similar_posts.items()
                for rank, sp in enumerate(similar, start=1)
            ])

            if self.options.get("fts", True) and self._create_fts(conn):
                tables.append("posts_fts")

            conn.commit()
            row_counts = {
                t: conn.execute(f"SELECT COUNT(*) FROM {quote_identifier(t)}").fetchone()[0]
                for t in tables
            }
        finally:
            conn.close()

        logger.info("Database written to %s (%s)", path, row_counts)
        return DatabaseResult(database_path=str(path), tables=tables, row_counts=row_counts)

    def _create_fts(self, conn: sqlite3.Connection) -> bool:
        try:
            conn.execute(
                "CREATE VIRTUAL TABLE posts_fts USING fts5(slug UNINDEXED, title, plain_text)"
            )
        except sqlite3.OperationalError as e:
            logger.warning("FTS5 unavailable, skipping full-text index: %s", e)
            if self._issues is not None:
                self._issues.add(
                    IssueCategory.database_error,
                    f"Full-text index skipped: {e}",
                    module="database",
                )
            return False
        conn.execute("INSERT INTO posts_fts (slug, title, plain_text) SELECT slug, title, plain_text FROM posts")
        return True
