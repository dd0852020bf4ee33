"""Markdown rendering and text extraction on markdown-it-py."""

from __future__ import annotations

from typing import NamedTuple

from markdown_it import MarkdownIt
from markdown_it.token import Token

from .models import TocEntry
from .slug import make_slug

EXCERPT_LENGTH = 200

_TEXT_CHILDREN = {"text", "code_inline"}


class RenderedMarkdown(NamedTuple):
    html: str
    plain_text: str
    toc: list[TocEntry]


def create_markdown() -> MarkdownIt:
    """CommonMark with raw HTML, tables and strikethrough."""
    return MarkdownIt("commonmark", {"html": True}).enable(["table", "strikethrough"])


def _inline_text(token: Token) -> str:
    parts = []
    for child in token.children or []:
        if child.type in _TEXT_CHILDREN:
            parts.append(child.content)
        elif child.type in ("softbreak", "hardbreak"):
            parts.append(" ")
    return "".join(parts)


def render_markdown(md: MarkdownIt, text: str) -> RenderedMarkdown:
    tokens = md.parse(text)
    toc: list[TocEntry] = []
    anchors: set[str] = set()
    blocks: list[str] = []

    for i, tok in enumerate(tokens):
        if tok.type == "heading_open":
            heading = _inline_text(tokens[i + 1])
            anchor = make_slug(heading)
            n = 2
            unique = anchor
            while unique in anchors:
                unique = f"{anchor}-{n}"
                n += 1
            anchors.add(unique)
            tok.attrSet("id", unique)
            toc.append(TocEntry(level=int(tok.tag[1]), text=heading, anchor=unique))
        elif tok.type == "inline":
            content = _inline_text(tok).strip()
            if content:
                blocks.append(content)

    html = md.renderer.render(tokens, md.options, {})
    return RenderedMarkdown(html=html, plain_text="\n".join(blocks), toc=toc)


def make_excerpt(plain_text: str, limit: int = EXCERPT_LENGTH) -> str:
    """First ``limit`` characters, cut back to a word boundary."""
    text = " ".join(plain_text.split())
    if len(text) <= limit:
        return text
    cut = text[:limit].rsplit(" ", 1)[0]
    return cut.rstrip(",.;:!?") + "..."


def word_count(plain_text: str) -> int:
    return len(plain_text.split())
