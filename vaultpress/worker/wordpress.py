"""WordPress WXR export to a markdown source tree."""

from __future__ import annotations

import base64
import binascii
import logging
import xml.etree.ElementTree as ET
from datetime import datetime
from pathlib import Path

import yaml
from pydantic import BaseModel, Field

from vaultpress.content.slug import SlugRegistry, make_slug

logger = logging.getLogger(__name__)

CONTENT_NS = "http://purl.org/rss/1.0/modules/content/"
DC_NS = "http://purl.org/dc/elements/1.1/"

_IMPORTED_TYPES = {"post": "posts", "page": "pages"}
_NULL_DATE = "0000-00-00 00:00:00"


class WordPressImportError(Exception):
    """The export could not be read or parsed."""


class ImportedPost(BaseModel):
    title: str
    slug: str
    post_type: str
    status: str
    date: str | None = None
    author: str | None = None
    tags: list[str] = Field(default_factory=list)
    categories: list[str] = Field(default_factory=list)
    excerpt: str = ""
    body: str = ""

    def frontmatter(self) -> dict:
        data: dict = {"title": self.title, "slug": self.slug}
        if self.date:
            data["date"] = self.date
        if self.author:
            data["author"] = self.author
        if self.tags:
            data["tags"] = self.tags
        if self.categories:
            data["categories"] = self.categories
        if self.excerpt:
            data["excerpt"] = self.excerpt
        data["status"] = self.status
        if self.status != "publish":
            data["draft"] = True
        return data

    def to_markdown(self) -> str:
        fm = yaml.safe_dump(self.frontmatter(), sort_keys=False, allow_unicode=True)
        return f"---\n{fm}---\n\n{self.body.strip()}\n"


class ImportResult(BaseModel):
    site_title: str = ""
    posts: int = 0
    pages: int = 0
    skipped: int = 0
    files: list[str] = Field(default_factory=list)


def _wp_namespace(root: ET.Element) -> str:
    """WXR versions 1.0 to 1.2 use different wp namespace URIs."""
    for el in root.iter():
        if el.tag.startswith("{http://wordpress.org/export/") and "/excerpt/" not in el.tag:
            return el.tag[1:].split("}", 1)[0]
    return "http://wordpress.org/export/1.2/"


def _text(item: ET.Element, tag: str) -> str:
    el = item.find(tag)
    return (el.text or "").strip() if el is not None and el.text else ""


def _parse_date(raw: str) -> str | None:
    if not raw or raw == _NULL_DATE:
        return None
    try:
        return datetime.strptime(raw, "%Y-%m-%d %H:%M:%S").isoformat()
    except ValueError:
        return raw


def parse_wxr(xml_bytes: bytes) -> tuple[str, list[ImportedPost], int]:
    """Parse an export into (site title, posts and pages, skipped item count)."""
    try:
        root = ET.fromstring(xml_bytes)
    except ET.ParseError as e:
        raise WordPressImportError(f"Invalid WordPress export: {e}") from e

    channel = root.find("channel")
    if channel is None:
        raise WordPressImportError("Invalid WordPress export: no <channel> element")

    wp = _wp_namespace(root)
    excerpt_tag = f"{{{wp.rstrip('/')}/excerpt/}}encoded"
    posts: list[ImportedPost] = []
    skipped = 0
    for item in channel.findall("item"):
        post_type = _text(item, f"{{{wp}}}post_type")
        status = _text(item, f"{{{wp}}}status") or "publish"
        if post_type not in _IMPORTED_TYPES or status in ("trash", "auto-draft", "inherit"):
            skipped += 1
            continue

        title = _text(item, "title") or "Untitled"
        tags, categories = [], []
        for cat in item.findall("category"):
            name = (cat.text or "").strip()
            if not name:
                continue
            if cat.get("domain") == "post_tag":
                tags.append(name)
            elif cat.get("domain") == "category":
                categories.append(name)

        posts.append(ImportedPost(
            title=title,
            slug=_text(item, f"{{{wp}}}post_name") or make_slug(title),
            post_type=post_type,
            status=status,
            date=_parse_date(_text(item, f"{{{wp}}}post_date_gmt"))
            or _parse_date(_text(item, f"{{{wp}}}post_date")),
            author=_text(item, f"{{{DC_NS}}}creator") or None,
            tags=tags,
            categories=categories,
            excerpt=_text(item, excerpt_tag),
            body=_text(item, f"{{{CONTENT_NS}}}encoded"),
        ))

    return _text(channel, "title"), posts, skipped


def decode_export(data: dict) -> bytes:
    """Read the export from ``wpXml`` (base64) or ``xmlFilePath``."""
    if data.get("wpXml"):
        try:
            return base64.b64decode(data["wpXml"], validate=True)
        except (binascii.Error, ValueError) as e:
            raise WordPressImportError(f"wpXml is not valid base64: {e}") from e
    if data.get("xmlFilePath"):
        path = Path(data["xmlFilePath"])
        if not path.is_file():
            raise WordPressImportError(f"WordPress export XML file not found at: {path}")
        raw = path.read_bytes()
        if not raw:
            raise WordPressImportError("WordPress export XML file is empty")
        return raw
    raise WordPressImportError("Job data needs either 'wpXml' or 'xmlFilePath'")


def import_wordpress(xml_bytes: bytes, output_dir: Path) -> ImportResult:
    """Write each post and page as ``<posts|pages>/<slug>.md`` under ``output_dir``."""
    site_title, items, skipped = parse_wxr(xml_bytes)
    result = ImportResult(site_title=site_title, skipped=skipped)
    slugs = SlugRegistry()
    for post in items:
        folder = _IMPORTED_TYPES[post.post_type]
        post.slug = slugs.claim(make_slug(post.slug), f"{folder}/{post.slug}")
        path = output_dir / folder / f"{post.slug}.md"
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(post.to_markdown(), encoding="utf-8")
        result.files.append(path.relative_to(output_dir).as_posix())
        if post.post_type == "post":
            result.posts += 1
        else:
            result.pages += 1
    logger.info(
        "Imported %d posts and %d pages from WordPress (%d items skipped)",
        result.posts, result.pages, result.skipped,
    )
    return result
