"""Non-fatal build issues and their aggregated report."""

from __future__ import annotations

import logging
from collections import Counter
from datetime import UTC, datetime
from enum import Enum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field

logger = logging.getLogger(__name__)


class IssueSeverity(str, Enum):
    error = "error"
    warning = "warning"
    info = "info"


class IssueCategory(str, Enum):
    broken_link = "broken-link"
    missing_media = "missing-media"
    media_processing = "media-processing"
    slug_conflict = "slug-conflict"
    duplicate_content = "duplicate-content"
    mermaid_error = "mermaid-error"
    frontmatter_error = "frontmatter-error"
    parse_error = "parse-error"
    file_access = "file-access"
    embedding_error = "embedding-error"
    database_error = "database-error"
    plugin_error = "plugin-error"
    thin_content = "thin-content"
    missing_field = "missing-field"
    orphaned_media = "orphaned-media"
    schema_warning = "schema-warning"
    configuration = "configuration"
    other = "other"


class Issue(BaseModel):
    """A single recoverable anomaly recorded during a build."""

    model_config = ConfigDict(frozen=True)

    category: IssueCategory
    severity: IssueSeverity
    message: str
    module: str = "processor"
    file: str | None = None
    context: dict[str, Any] = Field(default_factory=dict)
    timestamp: datetime = Field(default_factory=lambda: datetime.now(UTC))


class IssueSummary(BaseModel):
    total: int = 0
    by_severity: dict[str, int] = Field(default_factory=dict)
    by_category: dict[str, int] = Field(default_factory=dict)
    by_module: dict[str, int] = Field(default_factory=dict)


class IssueReport(BaseModel):
    issues: list[Issue] = Field(default_factory=list)
    summary: IssueSummary = Field(default_factory=IssueSummary)


_LOG_LEVELS = {
    IssueSeverity.error: logging.ERROR,
    IssueSeverity.warning: logging.WARNING,
    IssueSeverity.info: logging.INFO,
}


class IssueCollector:
    """Accumulates issues from every stage of a single build."""

    def __init__(self) -> None:
        self._issues: list[Issue] = []

    def add(
        self,
        category: IssueCategory,
        message: str,
        *,
        severity: IssueSeverity = IssueSeverity.warning,
        module: str = "processor",
        file: str | None = None,
        **context: Any,
    ) -> Issue:
        issue = Issue(
            category=category,
            severity=severity,
            message=message,
            module=module,
            file=file,
            context=context,
        )
        self._issues.append(issue)
        logger.log(_LOG_LEVELS[severity], "[%s] %s%s", category.value, message, f" ({file})" if file else "")
        return issue

    def add_broken_link(self, file: str, link: str) -> Issue:
        return self.add(
            IssueCategory.broken_link,
            f"Broken link: {link}",
            module="links",
            file=file,
            link=link,
        )

    def add_missing_media(self, file: str, reference: str) -> Issue:
        return self.add(
            IssueCategory.missing_media,
            f"Referenced media not found: {reference}",
            module="media",
            file=file,
            reference=reference,
        )

    def add_plugin_error(self, plugin: str, message: str) -> Issue:
        return self.add(
            IssueCategory.plugin_error,
            message,
            severity=IssueSeverity.error,
            module="plugins",
            plugin=plugin,
        )

    @property
    def issues(self) -> list[Issue]:
        return list(self._issues)

    def by_category(self, category: IssueCategory) -> list[Issue]:
        return [i for i in self._issues if i.category == category]

    def has_errors(self) -> bool:
        return any(i.severity == IssueSeverity.error for i in self._issues)

    def clear(self) -> None:
        self._issues.clear()

    def report(self) -> IssueReport:
        severities = Counter(i.severity.value for i in self._issues)
        categories = Counter(i.category.value for i in self._issues)
        modules = Counter(i.module for i in self._issues)
        summary = IssueSummary(
            total=len(self._issues),
            by_severity={s.value: severities.get(s.value, 0) for s in IssueSeverity},
            by_category=dict(categories),
            by_module=dict(modules),
        )
        return IssueReport(issues=list(self._issues), summary=summary)
