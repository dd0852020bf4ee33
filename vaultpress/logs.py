"""Logging setup, per-job log capture and secret masking."""

from __future__ import annotations

import json
import logging
from collections.abc import Iterator
from contextlib import contextmanager
from contextvars import ContextVar
from datetime import UTC, datetime
from typing import Any

current_job_id: ContextVar[str | None] = ContextVar("current_job_id", default=None)

_LEVELS = {
    "debug": logging.DEBUG,
    "info": logging.INFO,
    "warn": logging.WARNING,
    "error": logging.ERROR,
}

SENSITIVE_KEY_PARTS = ("token", "key", "secret", "password", "auth", "credential")


class JobContextFilter(logging.Filter):
    """Stamps every record with the job id of the task that emitted it."""

    def filter(self, record: logging.LogRecord) -> bool:
        record.job_id = current_job_id.get()
        return True


class JsonFormatter(logging.Formatter):
    def format(self, record: logging.LogRecord) -> str:
        entry = {
            "ts": datetime.fromtimestamp(record.created, UTC).isoformat(),
            "level": record.levelname.lower(),
            "logger": record.name,
            "message": record.getMessage(),
        }
        job_id = getattr(record, "job_id", None)
        if job_id:
            entry["job_id"] = job_id
        if record.exc_info:
            entry["exc"] = self.formatException(record.exc_info)
        return json.dumps(entry, ensure_ascii=False)


def configure_logging(level: str = "info", fmt: str = "text") -> None:
    handler = logging.StreamHandler()
    handler.addFilter(JobContextFilter())
    if fmt == "json":
        handler.setFormatter(JsonFormatter())
    else:
        handler.setFormatter(logging.Formatter("%(asctime)s %(levelname)-7s %(name)s: %(message)s"))
    root = logging.getLogger()
    for existing in list(root.handlers):
        root.removeHandler(existing)
    root.addHandler(handler)
    root.setLevel(_LEVELS.get(level, logging.INFO))


class JobLogCollector(logging.Handler):
    """Buffers the formatted log lines emitted on behalf of one job."""

    def __init__(self, job_id: str, level: int = logging.INFO) -> None:
        super().__init__(level)
        self.job_id = job_id
        self.lines: list[str] = []
        self.addFilter(JobContextFilter())
        self.setFormatter(logging.Formatter("%(asctime)s [%(levelname)s] %(message)s"))

    def filter(self, record: logging.LogRecord) -> bool:
        super().filter(record)
        return getattr(record, "job_id", None) == self.job_id

    def emit(self, record: logging.LogRecord) -> None:
        try:
            self.lines.append(self.format(record))
        except Exception:
            self.handleError(record)


@contextmanager
def capture_job_logs(job_id: str) -> Iterator[JobLogCollector]:
    """Bind ``job_id`` to the current context and collect its log lines."""
    collector = JobLogCollector(job_id)
    root = logging.getLogger()
    root.addHandler(collector)
    token = current_job_id.set(job_id)
    try:
        yield collector
    finally:
        current_job_id.reset(token)
        root.removeHandler(collector)


def mask_value(value: str) -> str:
    if len(value) <= 8:
        return "***"
    return f"{value[:3]}...{value[-3:]}"


def is_sensitive(key: str) -> bool:
    lowered = key.lower()
    return any(part in lowered for part in SENSITIVE_KEY_PARTS)


def mask_sensitive(data: Any) -> Any:
    """Copy of ``data`` with secret-looking values masked, for logging."""
    if isinstance(data, dict):
        return {
            k: mask_value(str(v)) if is_sensitive(str(k)) and isinstance(v, (str, int)) else mask_sensitive(v)
            for k, v in data.items()
        }
    if isinstance(data, list):
        return [mask_sensitive(v) for v in data]
    return data
