"""ContentTransformPipeline: source tree -> ProcessedPost / ProcessedMedia."""

from __future__ import annotations

import asyncio
import logging
import os
import time
from dataclasses import dataclass
from pathlib import Path, PurePosixPath

from pydantic import BaseModel, Field

from vaultpress.config.models import VaultpressConfig
from vaultpress.hashing import compute_hash, short_hash
from vaultpress.interfaces.image import ImageProcessor
from vaultpress.interfaces.renderer import MermaidRenderer, MermaidRenderOptions, MermaidStrategy
from vaultpress.issues import IssueCategory, IssueCollector, IssueSeverity

from .frontmatter import FrontmatterError, is_unpublished, parse_frontmatter
from .markdown import create_markdown, make_excerpt, render_markdown, word_count
from .media import MediaProcessor, is_media_file
from .models import ProcessedMedia, ProcessedPost
from .slug import SlugRegistry, base_slug
from .transforms import (
    DocumentContext,
    LinkIndex,
    MarkdownLinkTransform,
    MediaEmbedTransform,
    MermaidTransform,
    TransformPipeline,
    WikiLinkTransform,
    is_external,
    restore_fragments,
)

logger = logging.getLogger(__name__)


class ContentResult(BaseModel):
    posts: list[ProcessedPost] = Field(default_factory=list)
    media: list[ProcessedMedia] = Field(default_factory=list)
    skipped: list[str] = Field(default_factory=list)
    # duplicate source path -> path of the post kept for that content hash
    duplicates: dict[str, str] = Field(default_factory=dict)
    media_reused: int = 0
    duration: float = 0.0

    def slug_map(self) -> dict[str, str]:
        return {p.slug: p.hash for p in self.posts}

    def path_map(self) -> dict[str, str]:
        mapping = {p.path: p.slug for p in self.posts}
        for dup, kept in self.duplicates.items():
            mapping[dup] = mapping[kept]
        return mapping


@dataclass
class _SourceDoc:
    rel_path: PurePosixPath
    digest: str
    frontmatter: dict
    body: str
    slug: str = ""
    title: str = ""


def _first_heading(body: str) -> str | None:
    for line in body.splitlines():
        stripped = line.strip()
        if stripped.startswith("# "):
            return stripped[2:].strip()
    return None


class ContentTransformPipeline:
    """Walks the source tree and normalizes every markdown document.

    Non-fatal anomalies become issues; only unexpected errors propagate.
    """

    def __init__(
        self,
        config: VaultpressConfig,
        image_processor: ImageProcessor,
        mermaid_renderer: MermaidRenderer,
        issues: IssueCollector | None = None,
        published_media: set[str] | None = None,
    ) -> None:
        self.config = config
        self.image_processor = image_processor
        self.mermaid_renderer = mermaid_renderer
        self.issues = issues or IssueCollector()
        self.published_media = published_media or set()
        self._md = create_markdown()

    # -- discovery -------------------------------------------------------------

    def _walk(self, source_dir: Path) -> tuple[list[Path], list[Path]]:
        """Return (markdown files, media files), sorted by relative path."""
        ignore = set(self.config.content.ignore_dirs) | {self.config.media.output_dir}
        markdown: list[Path] = []
        media: list[Path] = []
        for root, dirs, files in os.walk(source_dir):
            dirs[:] = sorted(d for d in dirs if d not in ignore and not d.startswith("."))
            for name in sorted(files):
                path = Path(root) / name
                if name.lower().endswith(".md"):
                    markdown.append(path)
                elif is_media_file(path):
                    media.append(path)
        return markdown, media

    def _read(self, path: Path, source_dir: Path) -> _SourceDoc | None:
        rel = PurePosixPath(path.relative_to(source_dir).as_posix())
        try:
            raw = path.read_bytes()
        except OSError as e:
            self.issues.add(IssueCategory.file_access, f"Cannot read file: {e}", module="content", file=str(rel))
            return None
        try:
            text = raw.decode("utf-8-sig")
        except UnicodeDecodeError as e:
            self.issues.add(IssueCategory.parse_error, f"Not valid UTF-8: {e}", module="content", file=str(rel))
            return None

        try:
            frontmatter, body = parse_frontmatter(text)
        except FrontmatterError as e:
            self.issues.add(
                IssueCategory.frontmatter_error, str(e), module="frontmatter", file=str(rel)
            )
            frontmatter, body = {}, e.body
        return _SourceDoc(rel_path=rel, digest=compute_hash(raw), frontmatter=frontmatter, body=body)

    def _dedupe(
        self, docs: list[_SourceDoc]
    ) -> tuple[list[_SourceDoc], list[tuple[_SourceDoc, _SourceDoc]]]:
        """Keep the first document per content hash.

        The hash is a post's identity in every output, so byte-identical
        files cannot both be published.
        """
        kept: dict[str, _SourceDoc] = {}
        duplicates: list[tuple[_SourceDoc, _SourceDoc]] = []
        for doc in docs:
            first = kept.setdefault(doc.digest, doc)
            if first is doc:
                continue
            duplicates.append((doc, first))
            self.issues.add(
                IssueCategory.duplicate_content,
                f"Same content as {first.rel_path.as_posix()}; only that file is published",
                module="content",
                file=doc.rel_path.as_posix(),
                duplicate_of=first.rel_path.as_posix(),
            )
        return list(kept.values()), duplicates

    # -- public API ------------------------------------------------------------

    async def run(self, source_dir: Path, output_dir: Path) -> ContentResult:
        start = time.monotonic()
        source_dir = source_dir.resolve()
        output_dir.mkdir(parents=True, exist_ok=True)
        result = ContentResult()

        md_files, media_files = self._walk(source_dir)
        docs: list[_SourceDoc] = []
        for path in md_files:
            doc = self._read(path, source_dir)
            if doc is None:
                continue
            if is_unpublished(doc.frontmatter) and not self.config.content.process_all_files:
                logger.debug("Skipping unpublished %s", doc.rel_path)
                result.skipped.append(doc.rel_path.as_posix())
                continue
            docs.append(doc)
        docs, duplicates = self._dedupe(docs)
        result.duplicates = {
            dup.rel_path.as_posix(): kept.rel_path.as_posix() for dup, kept in duplicates
        }

        slugs = SlugRegistry(self.issues)
        index = LinkIndex()
        for doc in docs:
            doc.slug = slugs.claim(base_slug(doc.rel_path, doc.frontmatter), doc.rel_path.as_posix())
            doc.title = str(
                doc.frontmatter.get("title") or _first_heading(doc.body) or doc.rel_path.stem
            )
            index.add(doc.rel_path, doc.slug, doc.title)
        # links to a dropped copy resolve to the post that was kept
        for dup, kept in duplicates:
            index.add(dup.rel_path, kept.slug)

        media = MediaProcessor(
            self.image_processor,
            self.config.media,
            source_dir,
            output_dir,
            self.issues,
            published=self.published_media,
        )
        media.index_basenames(media_files)

        pre_render = TransformPipeline([
            WikiLinkTransform(index, self.issues),
            MarkdownLinkTransform(index, self.issues),
            MediaEmbedTransform(media, self.issues),
        ])
        mermaid = MermaidTransform(self.mermaid_renderer, self._mermaid_options(), self.issues)

        posts = await asyncio.gather(*(self._build_post(doc, pre_render, mermaid, media) for doc in docs))
        result.posts = list(posts)
        result.media = media.processed()
        result.media_reused = media.reused

        self._report_orphans(media_files, media, source_dir)
        result.duration = time.monotonic() - start
        logger.info(
            "Transformed %d posts and %d media files in %.2fs (%d skipped)",
            len(result.posts), len(result.media), result.duration, len(result.skipped),
        )
        return result

    def _mermaid_options(self) -> MermaidRenderOptions:
        opts = dict(self.config.plugins.mermaid_renderer.options)
        strategy = opts.get("strategy", MermaidStrategy.inline_svg.value)
        return MermaidRenderOptions(
            strategy=MermaidStrategy(strategy),
            theme=opts.get("theme", "default"),
            background=opts.get("background", "transparent"),
        )

    async def _build_post(
        self,
        doc: _SourceDoc,
        pre_render: TransformPipeline,
        mermaid: MermaidTransform,
        media: MediaProcessor,
    ) -> ProcessedPost:
        ctx = DocumentContext(rel_path=doc.rel_path, slug=doc.slug, frontmatter=doc.frontmatter)
        markdown = await pre_render.apply(doc.body, ctx)
        with_diagrams = await mermaid.apply(markdown, ctx)
        rendered = render_markdown(self._md, with_diagrams)
        html = restore_fragments(rendered.html, ctx)

        words = word_count(rendered.plain_text)
        self._check_quality(doc, words)
        cover = await self._resolve_cover(doc, ctx, media)

        return ProcessedPost(
            id=short_hash(doc.digest),
            hash=doc.digest,
            slug=doc.slug,
            title=doc.title,
            file_name=doc.rel_path.name,
            path=doc.rel_path.as_posix(),
            frontmatter=doc.frontmatter,
            markdown=markdown,
            html=html,
            plain_text=rendered.plain_text,
            excerpt=str(doc.frontmatter.get("excerpt") or doc.frontmatter.get("description") or "")
            or make_excerpt(rendered.plain_text),
            word_count=words,
            toc=rendered.toc,
            cover=cover,
            links=sorted(set(ctx.links)),
            media_refs=list(dict.fromkeys(ctx.media_refs)),
        )

    def _check_quality(self, doc: _SourceDoc, words: int) -> None:
        file = doc.rel_path.as_posix()
        for name in self.config.content.required_fields:
            if name not in doc.frontmatter or doc.frontmatter[name] in (None, ""):
                self.issues.add(
                    IssueCategory.missing_field,
                    f"Frontmatter is missing '{name}'",
                    module="frontmatter",
                    file=file,
                    field=name,
                )
        if words < self.config.content.min_word_count:
            self.issues.add(
                IssueCategory.thin_content,
                f"Only {words} words (minimum {self.config.content.min_word_count})",
                module="content",
                file=file,
                word_count=words,
            )

    async def _resolve_cover(
        self, doc: _SourceDoc, ctx: DocumentContext, media: MediaProcessor
    ) -> str | None:
        for name in self.config.content.cover_fields:
            value = doc.frontmatter.get(name)
            if not value or not isinstance(value, str):
                continue
            if is_external(value):
                return value
            path = media.locate(value, doc.rel_path)
            if path is None:
                self.issues.add_missing_media(doc.rel_path.as_posix(), value)
                return None
            processed = await media.ensure(path)
            return media.public_path(processed) if processed else None

        if ctx.media_refs:
            first = ctx.media_refs[0]
            for m in media.processed():
                if m.hash == first:
                    return media.public_path(m)
        return None

    def _report_orphans(self, media_files: list[Path], media: MediaProcessor, source_dir: Path) -> None:
        referenced = media.referenced_paths()
        for path in media_files:
            if path.resolve() not in referenced:
                self.issues.add(
                    IssueCategory.orphaned_media,
                    "Media file is not referenced by any post",
                    severity=IssueSeverity.info,
                    module="media",
                    file=path.relative_to(source_dir).as_posix(),
                )
