"""Shared test fixtures for vaultpress."""

from __future__ import annotations

import io
from pathlib import Path

import pytest
from PIL import Image

from vaultpress.config.models import VaultpressConfig
from vaultpress.interfaces.embedding import TextEmbedder


class KeywordEmbedder(TextEmbedder):
    """Deterministic text embedder: one dimension per keyword count."""

    implementation = "keyword"
    VOCAB = ("alpha", "beta", "gamma", "delta")

    @property
    def model(self) -> str:
        return "keyword-test"

    @property
    def dimensions(self) -> int:
        return len(self.VOCAB)

    async def embed(self, text: str) -> list[float]:
        lowered = text.lower()
        return [float(lowered.count(word)) for word in self.VOCAB]


def write_files(root: Path, files: dict[str, str | bytes]) -> Path:
    for rel, content in files.items():
        path = root / rel
        path.parent.mkdir(parents=True, exist_ok=True)
        if isinstance(content, bytes):
            path.write_bytes(content)
        else:
            path.write_text(content, encoding="utf-8")
    return root


def make_png(width: int = 40, height: int = 30, color: str = "red") -> bytes:
    buf = io.BytesIO()
    Image.new("RGB", (width, height), color).save(buf, format="PNG")
    return buf.getvalue()


@pytest.fixture
def config(tmp_path) -> VaultpressConfig:
    cfg = VaultpressConfig()
    cfg.content.min_word_count = 0
    cfg.worker.tmp_root = str(tmp_path / "work")
    cfg.worker.audit_db_path = str(tmp_path / "callbacks.db")
    cfg.storage.local_root = str(tmp_path / "storage")
    return cfg


@pytest.fixture
def two_post_vault(tmp_path) -> Path:
    """Two notes: one links to the other by slug and has one broken link."""
    return write_files(tmp_path / "vault", {
        "hello-world.md": (
            "---\ntitle: Hello World\n---\n\n"
            "# Hello World\n\nAlpha alpha beta. See [[second-post]] and [[does-not-exist]].\n"
        ),
        "second-post.md": (
            "---\ntitle: Second Post\n---\n\nGamma beta words about the second post.\n"
        ),
    })
