"""Slug derivation and conflict resolution."""

from __future__ import annotations

from pathlib import PurePosixPath

from slugify import slugify

from vaultpress.issues import IssueCategory, IssueCollector, IssueSeverity

INDEX_FILE_NAMES = {"index.md", "readme.md"}


def make_slug(text: str) -> str:
    return slugify(str(text), lowercase=True) or "untitled"


def base_slug(rel_path: PurePosixPath, frontmatter: dict) -> str:
    """frontmatter slug > parent folder for index files > file stem."""
    explicit = frontmatter.get("slug")
    if explicit:
        return make_slug(str(explicit))
    if rel_path.name.lower() in INDEX_FILE_NAMES and rel_path.parent.name:
        return make_slug(rel_path.parent.name)
    return make_slug(rel_path.stem)


class SlugRegistry:
    """Hands out unique slugs in call order. Later claimants get -2, -3, ..."""

    def __init__(self, issues: IssueCollector | None = None) -> None:
        self._issues = issues
        self._owners: dict[str, str] = {}

    def claim(self, slug: str, path: str) -> str:
        if slug not in self._owners:
            self._owners[slug] = path
            return slug
        n = 2
        while f"{slug}-{n}" in self._owners:
            n += 1
        unique = f"{slug}-{n}"
        self._owners[unique] = path
        if self._issues is not None:
            self._issues.add(
                IssueCategory.slug_conflict,
                f"Slug '{slug}' already used by {self._owners[slug]}; using '{unique}'",
                severity=IssueSeverity.info,
                module="slug",
                file=path,
                slug=slug,
                resolved=unique,
            )
        return unique

    def __contains__(self, slug: str) -> bool:
        return slug in self._owners

    def owner(self, slug: str) -> str | None:
        return self._owners.get(slug)
