"""Ordered markdown transforms applied to each document before rendering."""

from __future__ import annotations

import posixpath
import re
from abc import ABC, abstractmethod
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from pathlib import PurePosixPath
from urllib.parse import unquote

from vaultpress.interfaces.renderer import MermaidRenderer, MermaidRenderOptions
from vaultpress.issues import IssueCategory, IssueCollector

from .media import MEDIA_EXTENSIONS, MediaProcessor
from .slug import make_slug


@dataclass
class DocumentContext:
    """Per-document state threaded through the transforms."""

    rel_path: PurePosixPath
    slug: str
    frontmatter: dict
    links: list[str] = field(default_factory=list)
    media_refs: list[str] = field(default_factory=list)
    # placeholder -> html, substituted after rendering
    fragments: dict[str, str] = field(default_factory=dict)

    @property
    def file(self) -> str:
        return self.rel_path.as_posix()


class Transform(ABC):
    @abstractmethod
    async def apply(self, content: str, doc: DocumentContext) -> str:
        """Transform markdown content for one document."""
        ...


class TransformPipeline:
    def __init__(self, transforms: list[Transform]):
        self.transforms = transforms

    async def apply(self, content: str, doc: DocumentContext) -> str:
        for t in self.transforms:
            content = await t.apply(content, doc)
        return content


async def async_sub(
    pattern: re.Pattern, repl: Callable[[re.Match], Awaitable[str]], text: str
) -> str:
    """re.sub with an async replacement callback. Matches resolve in order."""
    parts: list[str] = []
    last = 0
    for m in pattern.finditer(text):
        parts.append(text[last:m.start()])
        parts.append(await repl(m))
        last = m.end()
    parts.append(text[last:])
    return "".join(parts)


_FENCE_RE = re.compile(r"^(```|~~~)[^\n]*\n.*?^\1[ \t]*$", re.MULTILINE | re.DOTALL)
_EXTERNAL_RE = re.compile(r"^(?:[a-zA-Z][a-zA-Z0-9+.-]*:|//)")


def _protect_code(text: str) -> tuple[str, dict[str, str]]:
    """Swap fenced code blocks for markers so link patterns skip them."""
    saved: dict[str, str] = {}

    def _stash(m: re.Match) -> str:
        key = f"\x00code{len(saved)}\x00"
        saved[key] = m.group(0)
        return key

    return _FENCE_RE.sub(_stash, text), saved


def _restore_code(text: str, saved: dict[str, str]) -> str:
    for key, block in saved.items():
        text = text.replace(key, block)
    return text


def is_external(target: str) -> bool:
    return bool(_EXTERNAL_RE.match(target))


class LinkIndex:
    """Lookup tables for resolving note-to-note references to slugs."""

    def __init__(self) -> None:
        self.by_path: dict[str, str] = {}
        self.by_slug: set[str] = set()
        self.by_stem: dict[str, str] = {}
        self.by_title: dict[str, str] = {}

    def add(self, rel_path: PurePosixPath, slug: str, title: str | None = None) -> None:
        self.by_path[rel_path.as_posix().lower()] = slug
        self.by_slug.add(slug)
        self.by_stem.setdefault(rel_path.stem.lower(), slug)
        if title:
            self.by_title.setdefault(title.strip().lower(), slug)

    def resolve(self, target: str, from_path: PurePosixPath) -> str | None:
        target = unquote(target.strip())
        if not target:
            return None

        if target.lower().endswith(".md"):
            if target.startswith("/"):
                candidate = target.lstrip("/")
            else:
                candidate = posixpath.normpath(posixpath.join(from_path.parent.as_posix(), target))
            slug = self.by_path.get(candidate.lower())
            if slug:
                return slug
            return self.by_path.get(target.lstrip("./").lower()) or self.by_stem.get(
                PurePosixPath(target).stem.lower()
            )

        bare = target.strip("/")
        if bare in self.by_slug:
            return bare
        lowered = bare.lower()
        if lowered in self.by_stem:
            return self.by_stem[lowered]
        if lowered in self.by_title:
            return self.by_title[lowered]
        slugged = make_slug(bare)
        return slugged if slugged in self.by_slug else None


_WIKILINK_RE = re.compile(r"(?<!!)\[\[([^\]|#]*)(#[^\]|]*)?(?:\|([^\]]+))?\]\]")


class WikiLinkTransform(Transform):
    """[[target]], [[target#heading]] and [[target|label]] to markdown links."""

    def __init__(self, index: LinkIndex, issues: IssueCollector) -> None:
        self.index = index
        self.issues = issues

    async def apply(self, content: str, doc: DocumentContext) -> str:
        text, saved = _protect_code(content)

        def _rewrite(m: re.Match) -> str:
            target, heading, label = m.group(1).strip(), m.group(2), m.group(3)
            display = (label or target or (heading or "").lstrip("#")).strip()
            anchor = f"#{make_slug(heading[1:])}" if heading and len(heading) > 1 else ""
            if not target:
                return f"[{display}]({anchor})" if anchor else display
            slug = self.index.resolve(target, doc.rel_path)
            if slug is None:
                self.issues.add_broken_link(doc.file, target)
                return display
            doc.links.append(slug)
            return f"[{display}](/{slug}{anchor})"

        return _restore_code(_WIKILINK_RE.sub(_rewrite, text), saved)


_MD_LINK_RE = re.compile(r"(?<!!)\[([^\]]*)\]\(\s*<?([^)\s>]+)>?(\s+\"[^\"]*\")?\s*\)")


class MarkdownLinkTransform(Transform):
    """Relative [label](target) links to other notes become /<slug> links."""

    def __init__(self, index: LinkIndex, issues: IssueCollector) -> None:
        self.index = index
        self.issues = issues

    async def apply(self, content: str, doc: DocumentContext) -> str:
        text, saved = _protect_code(content)

        def _rewrite(m: re.Match) -> str:
            label, target, title = m.group(1), m.group(2), m.group(3) or ""
            if is_external(target) or target.startswith("#"):
                return m.group(0)
            path_part, _, anchor = target.partition("#")
            suffix = PurePosixPath(path_part).suffix.lower()
            if suffix and suffix != ".md":
                # a file download or asset, not a note
                return m.group(0)
            slug = self.index.resolve(path_part, doc.rel_path)
            if slug is None:
                self.issues.add_broken_link(doc.file, target)
                return m.group(0)
            doc.links.append(slug)
            new_target = f"/{slug}" + (f"#{anchor}" if anchor else "")
            return f"[{label}]({new_target}{title})"

        return _restore_code(_MD_LINK_RE.sub(_rewrite, text), saved)


_WIKI_EMBED_RE = re.compile(r"!\[\[([^\]|]+)(?:\|([^\]]*))?\]\]")
_MD_IMAGE_RE = re.compile(r"!\[([^\]]*)\]\(\s*<?([^)\s>]+)>?(?:\s+\"([^\"]*)\")?\s*\)")


class MediaEmbedTransform(Transform):
    """Resolves ![[file]] and ![alt](path) to optimized, content-addressed media."""

    def __init__(self, media: MediaProcessor, issues: IssueCollector) -> None:
        self.media = media
        self.issues = issues

    async def _resolve(self, reference: str, doc: DocumentContext) -> str | None:
        path = self.media.locate(reference, doc.rel_path)
        if path is None:
            self.issues.add_missing_media(doc.file, reference)
            return None
        processed = await self.media.ensure(path)
        if processed is None:
            return None
        public = self.media.public_path(processed)
        doc.media_refs.append(processed.hash)
        return public

    async def apply(self, content: str, doc: DocumentContext) -> str:
        text, saved = _protect_code(content)

        async def _wiki(m: re.Match) -> str:
            reference, alt = m.group(1), m.group(2) or ""
            if PurePosixPath(reference).suffix.lower() not in MEDIA_EXTENSIONS:
                # note transclusion, not media
                return m.group(0)
            public = await self._resolve(reference.split("#", 1)[0], doc)
            if public is None:
                return m.group(0)
            return f"![{alt or PurePosixPath(reference).stem}]({public})"

        async def _image(m: re.Match) -> str:
            alt, target, title = m.group(1), m.group(2), m.group(3)
            if is_external(target):
                return m.group(0)
            public = await self._resolve(target, doc)
            if public is None:
                return m.group(0)
            title_part = f' "{title}"' if title else ""
            return f"![{alt}]({public}{title_part})"

        # markdown images first; rewritten wiki embeds must not be resolved twice
        text = await async_sub(_MD_IMAGE_RE, _image, text)
        text = await async_sub(_WIKI_EMBED_RE, _wiki, text)
        return _restore_code(text, saved)


_MERMAID_RE = re.compile(r"^```mermaid[ \t]*\n(.*?)^```[ \t]*$", re.MULTILINE | re.DOTALL)


class MermaidTransform(Transform):
    """Hands ```mermaid blocks to the renderer; output lands after rendering."""

    def __init__(
        self, renderer: MermaidRenderer, options: MermaidRenderOptions, issues: IssueCollector
    ) -> None:
        self.renderer = renderer
        self.options = options
        self.issues = issues

    async def apply(self, content: str, doc: DocumentContext) -> str:
        async def _render(m: re.Match) -> str:
            result = await self.renderer.render(m.group(1), self.options)
            if result.error:
                self.issues.add(
                    IssueCategory.mermaid_error,
                    f"Diagram fell back to client-side rendering: {result.error}",
                    module="mermaid",
                    file=doc.file,
                )
            key = f"<!--vaultpress-fragment-{len(doc.fragments)}-->"
            doc.fragments[key] = result.output
            return f"\n{key}\n"

        return await async_sub(_MERMAID_RE, _render, content)


def restore_fragments(html: str, doc: DocumentContext) -> str:
    for key, fragment in doc.fragments.items():
        html = html.replace(key, fragment)
    return html
