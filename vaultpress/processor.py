"""BuildProcessor: one full build from a source tree to a bundle directory."""

from __future__ import annotations

import asyncio
import json
import logging
import time
from pathlib import Path
from typing import Any

from pydantic import BaseModel, Field

from vaultpress.config.models import VaultpressConfig
from vaultpress.content.pipeline import ContentResult, ContentTransformPipeline
from vaultpress.embedding.pipeline import (
    MEDIA_EMBEDDING_MAP,
    POST_EMBEDDING_MAP,
    EmbeddingPipeline,
    EmbeddingResult,
    PreviousEmbeddings,
)
from vaultpress.interfaces.database import DatabaseInput, DatabaseResult
from vaultpress.interfaces.plugin import Plugin, PluginContext, SharedResources
from vaultpress.issues import IssueCategory, IssueCollector, IssueReport, IssueSeverity
from vaultpress.plugins.loader import PluginLoader
from vaultpress.plugins.manager import PluginManager
from vaultpress.schema.inference import SchemaInferenceEngine
from vaultpress.schema.models import InferredSchema

logger = logging.getLogger(__name__)

_WARNING_SEVERITY = {
    "reserved-word": IssueSeverity.warning,
    "type-conflict": IssueSeverity.warning,
    "rare-property": IssueSeverity.info,
    "renamed": IssueSeverity.info,
}


class BuildResult(BaseModel):
    output_dir: str
    posts: int = 0
    media: int = 0
    skipped: int = 0
    duplicates: int = 0
    media_reused: int = 0
    embeddings: int = 0
    embeddings_reused: int = 0
    similarity_posts: int = 0
    schema_columns: int = 0
    plugins: list[str] = Field(default_factory=list)
    database: DatabaseResult = Field(default_factory=DatabaseResult)
    issues: IssueReport = Field(default_factory=IssueReport)
    duration: float = 0.0

    def summary(self) -> dict[str, Any]:
        """Compact camelCase form used in callbacks."""
        return {
            "outputDir": self.output_dir,
            "posts": self.posts,
            "media": self.media,
            "skipped": self.skipped,
            "duplicates": self.duplicates,
            "mediaReused": self.media_reused,
            "embeddings": self.embeddings,
            "embeddingsReused": self.embeddings_reused,
            "similarityPosts": self.similarity_posts,
            "schemaColumns": self.schema_columns,
            "plugins": self.plugins,
            "database": {
                "path": self.database.database_path,
                "tables": self.database.tables,
                "rowCounts": self.database.row_counts,
            },
            "issues": self.issues.summary.model_dump(),
            "duration": round(self.duration, 3),
        }


class IncrementalInputs(BaseModel):
    """What an earlier published build lets this one skip."""

    # short hashes of media already in the object store
    published_media: set[str] = Field(default_factory=set)
    previous_embeddings: PreviousEmbeddings | None = None


def _write_json(path: Path, data: Any) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(json.dumps(data, indent=2, default=str, ensure_ascii=False))


class BuildProcessor:
    """Runs every stage in order with plugins owned by a PluginManager.

    Plugins are constructed fresh for each build; anything expensive they
    load lives in the shared resources passed to the loader.
    """

    def __init__(
        self,
        config: VaultpressConfig,
        loader: PluginLoader | None = None,
        plugins: list[Plugin] | None = None,
        resources: SharedResources | None = None,
    ) -> None:
        self.config = config
        self.loader = loader or PluginLoader(config, resources)
        self._plugins = plugins

    def _plugins_for_run(self) -> list[Plugin]:
        if self._plugins is not None:
            return list(self._plugins)
        return self.loader.load_enabled()

    async def run(
        self,
        source_dir: Path,
        output_dir: Path,
        incremental: IncrementalInputs | None = None,
    ) -> BuildResult:
        start = time.monotonic()
        incremental = incremental or IncrementalInputs()
        source_dir = Path(source_dir)
        output_dir = Path(output_dir)
        output_dir.mkdir(parents=True, exist_ok=True)
        logger.info("Building %s -> %s", source_dir, output_dir)

        issues = IssueCollector()
        manager = PluginManager(issues)
        for plugin in self._plugins_for_run():
            manager.register(plugin)

        context = PluginContext(output_dir=output_dir, source_dir=source_dir, config=self.config)
        try:
            await manager.initialize(context)
            plugin_order = [k.value for k in manager.initialization_order]

            content = await ContentTransformPipeline(
                self.config,
                manager.image_processor(),
                manager.mermaid_renderer(),
                issues,
                published_media=incremental.published_media,
            ).run(source_dir, output_dir)

            media_paths = {m.hash: source_dir / m.original_path for m in content.media}
            embeddings = await EmbeddingPipeline(
                self.config.embedding,
                manager.text_embedder(),
                manager.image_embedder(),
                manager.similarity(),
                issues,
                previous=incremental.previous_embeddings,
            ).run(content.posts, content.media, media_paths)

            schema = self.infer_schema(content, issues)
            database = await manager.database().build(DatabaseInput(
                posts=content.posts,
                media=content.media,
                embeddings=embeddings.vectors,
                frontmatter_schema=schema,
                similarity=embeddings.similarity,
            ))

            await asyncio.to_thread(
                self._write_bundle, output_dir, content, embeddings, schema
            )
        finally:
            await manager.dispose()

        report = issues.report()
        _write_json(output_dir / "processor-issues.json", report.model_dump(mode="json"))

        result = BuildResult(
            output_dir=str(output_dir),
            posts=len(content.posts),
            media=len(content.media),
            skipped=len(content.skipped),
            duplicates=len(content.duplicates),
            media_reused=content.media_reused,
            embeddings=len(embeddings.vectors),
            embeddings_reused=embeddings.reused,
            similarity_posts=sum(1 for v in embeddings.similarity.similar_posts.values() if v),
            schema_columns=len(schema.columns),
            plugins=plugin_order,
            database=database,
            issues=report,
            duration=time.monotonic() - start,
        )
        logger.info(
            "Build finished: %d posts, %d media, %d issues in %.2fs",
            result.posts, result.media, report.summary.total, result.duration,
        )
        return result

    def infer_schema(self, content: ContentResult, issues: IssueCollector) -> InferredSchema:
        schema = SchemaInferenceEngine().infer(p.frontmatter for p in content.posts)
        for w in schema.warnings:
            issues.add(
                IssueCategory.schema_warning,
                w.message,
                severity=_WARNING_SEVERITY.get(w.kind, IssueSeverity.info),
                module="schema",
                key=w.key,
                kind=w.kind,
            )
        return schema

    def _write_bundle(
        self,
        output_dir: Path,
        content: ContentResult,
        embeddings: EmbeddingResult,
        schema: InferredSchema,
    ) -> None:
        posts = [p.to_json_dict() for p in content.posts]
        _write_json(output_dir / "posts.json", posts)
        for post in posts:
            _write_json(output_dir / "posts" / f"{post['hash']}.json", post)
        _write_json(output_dir / "medias.json", [m.to_json_dict() for m in content.media])
        _write_json(output_dir / "posts-slug-map.json", content.slug_map())
        _write_json(output_dir / "posts-path-map.json", content.path_map())
        _write_json(output_dir / "similarity.json", embeddings.similarity.to_json_dict())
        _write_json(output_dir / POST_EMBEDDING_MAP, embeddings.post_hash_map())
        _write_json(output_dir / MEDIA_EMBEDDING_MAP, embeddings.media_hash_map())
        _write_json(output_dir / "schema.json", schema.model_dump(mode="json"))
