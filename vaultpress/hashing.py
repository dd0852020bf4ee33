"""Content hashing used for identity, dedup and content-addressed names."""

from __future__ import annotations

import hashlib
from pathlib import Path

SHORT_HASH_LENGTH = 32


def compute_hash(data: bytes | str) -> str:
    """Return the sha256 hex digest of ``data``."""
    if isinstance(data, str):
        data = data.encode("utf-8")
    return hashlib.sha256(data).hexdigest()


def compute_file_hash(path: Path, chunk_size: int = 65536) -> str:
    h = hashlib.sha256()
    with open(path, "rb") as f:
        while chunk := f.read(chunk_size):
            h.update(chunk)
    return h.hexdigest()


def short_hash(digest: str) -> str:
    """Prefix used in content-addressed file names."""
    return digest[:SHORT_HASH_LENGTH]
