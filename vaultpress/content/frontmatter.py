"""YAML frontmatter extraction."""

from __future__ import annotations

import yaml


class FrontmatterError(ValueError):
    """Frontmatter exists but is not a valid YAML mapping."""

    def __init__(self, message: str, body: str = ""):
        super().__init__(message)
        self.body = body


def split_frontmatter(content: str) -> tuple[str | None, str]:
    """Return (raw frontmatter text or None, body)."""
    if not content.startswith("---"):
        return None, content
    first_newline = content.find("\n")
    if first_newline == -1 or content[3:first_newline].strip():
        return None, content
    end = content.find("\n---", first_newline)
    if end == -1:
        return None, content
    fm_text = content[first_newline + 1:end]
    close_end = content.find("\n", end + 4)
    body = "" if close_end == -1 else content[close_end + 1:]
    return fm_text, body.lstrip("\n")


def parse_frontmatter(content: str) -> tuple[dict, str]:
    """Extract YAML frontmatter and body from markdown content.

    Raises FrontmatterError when the fenced block is not a YAML mapping;
    the body is still available on the exception.
    """
    fm_text, body = split_frontmatter(content)
    if fm_text is None:
        return {}, content
    try:
        metadata = yaml.safe_load(fm_text)
    except yaml.YAMLError as e:
        raise FrontmatterError(f"Invalid YAML frontmatter: {e}", body) from e
    if metadata is None:
        return {}, body
    if not isinstance(metadata, dict):
        raise FrontmatterError(
            f"Frontmatter must be a mapping, got {type(metadata).__name__}", body
        )
    return {str(k): v for k, v in metadata.items()}, body


def is_unpublished(frontmatter: dict) -> bool:
    """draft: true or published: false."""
    return frontmatter.get("draft") is True or frontmatter.get("published") is False
