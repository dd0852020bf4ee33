"""End-to-end tests for BuildProcessor and publishing its bundle."""

from __future__ import annotations

import json
import sqlite3

import pytest

from vaultpress.interfaces.plugin import CapabilityKind
from vaultpress.plugins.builtin.cosine import CosineSimilarity
from vaultpress.plugins.builtin.sqlite_db import SQLiteDatabase
from vaultpress.plugins.defaults import CopyOnlyImageProcessor, NoOpTextEmbedder
from vaultpress.plugins.manager import PluginCycleError
from vaultpress.embedding.pipeline import PreviousEmbeddings
from vaultpress.processor import BuildProcessor, IncrementalInputs
from vaultpress.publish import LocalObjectStore, UploadOptimizer

from .conftest import KeywordEmbedder, make_png, write_files


def _read(path):
    return json.loads(path.read_text())


@pytest.fixture
def vault(two_post_vault):
    write_files(two_post_vault, {
        "third.md": "---\ntitle: Third\norder: 3\ndraft: maybe\n---\n\nDelta delta gamma ![[pic.png]]\n",
        "pic.png": make_png(),
    })
    (two_post_vault / "hello-world.md").write_text(
        "---\ntitle: Hello World\norder: 1\ndraft: false\n---\n\n"
        "Alpha alpha beta. See [[second-post]] and [[does-not-exist]].\n"
    )
    return two_post_vault


def _plugins(text_embedder=None):
    return [
        CopyOnlyImageProcessor(),
        text_embedder or KeywordEmbedder(),
        CosineSimilarity(),
        SQLiteDatabase(),
    ]


class TestBuildProcessor:
    @pytest.mark.asyncio
    async def test_bundle_files_written(self, config, vault, tmp_path):
        out = tmp_path / "dist"
        result = await BuildProcessor(config, plugins=_plugins()).run(vault, out)

        assert result.posts == 3
        assert result.media == 1
        for name in (
            "posts.json", "medias.json", "posts-slug-map.json", "posts-path-map.json",
            "similarity.json", "posts-embedding-hash-map.json", "media-embedding-hash-map.json",
            "schema.json", "processor-issues.json", "content.sqlite",
        ):
            assert (out / name).is_file(), name

        posts = _read(out / "posts.json")
        assert [p["slug"] for p in posts] == ["hello-world", "second-post", "third"]
        for post in posts:
            assert _read(out / "posts" / f"{post['hash']}.json") == post
        slug_map = _read(out / "posts-slug-map.json")
        assert slug_map == {p["slug"]: p["hash"] for p in posts}

    @pytest.mark.asyncio
    async def test_plugins_initialized_in_dependency_order(self, config, vault, tmp_path):
        result = await BuildProcessor(config, plugins=_plugins()).run(vault, tmp_path / "dist")
        order = result.plugins
        assert order.index("text-embedder") < order.index("similarity")
        assert set(order) == {"image-processor", "text-embedder", "similarity", "database"}

    @pytest.mark.asyncio
    async def test_similarity_and_embeddings(self, config, vault, tmp_path):
        out = tmp_path / "dist"
        result = await BuildProcessor(config, plugins=_plugins()).run(vault, out)

        assert result.embeddings == 3
        embeddings = _read(out / "posts-embedding-hash-map.json")
        assert all(len(v) == 4 for v in embeddings.values())
        similarity = _read(out / "similarity.json")
        assert len(similarity["pairwiseScores"]) == 3
        assert all(len(v) == 2 for v in similarity["similarPosts"].values())

    @pytest.mark.asyncio
    async def test_noop_embedder_gives_empty_similarity(self, config, vault, tmp_path):
        out = tmp_path / "dist"
        result = await BuildProcessor(config, plugins=_plugins(NoOpTextEmbedder())).run(vault, out)

        assert result.embeddings == 0
        assert result.similarity_posts == 0
        assert _read(out / "similarity.json") == {
            "pairwiseScores": {}, "similarPosts": {}, "similarScores": {},
        }
        assert _read(out / "posts-embedding-hash-map.json") == {}

    @pytest.mark.asyncio
    async def test_schema_and_database_agree(self, config, vault, tmp_path):
        out = tmp_path / "dist"
        result = await BuildProcessor(config, plugins=_plugins()).run(vault, out)

        schema = _read(out / "schema.json")
        types = {c["source_key"]: c["inferred_type"] for c in schema["columns"]}
        assert types["order"] == "integer"
        assert types["draft"] == "text"
        assert result.database.row_counts["posts"] == 3

        conn = sqlite3.connect(out / "content.sqlite")
        try:
            rows = conn.execute('SELECT slug, "order", draft FROM posts ORDER BY "order"').fetchall()
        finally:
            conn.close()
        assert rows[-2:] == [("hello-world", 1, "false"), ("third", 3, "maybe")]

    @pytest.mark.asyncio
    async def test_issues_reported(self, config, vault, tmp_path):
        out = tmp_path / "dist"
        result = await BuildProcessor(config, plugins=_plugins()).run(vault, out)

        by_category = result.issues.summary.by_category
        assert by_category["broken-link"] == 1
        assert by_category["schema-warning"] >= 2
        written = _read(out / "processor-issues.json")
        assert written["summary"]["total"] == result.issues.summary.total
        assert result.summary()["issues"]["total"] == result.issues.summary.total

    @pytest.mark.asyncio
    async def test_plugins_disposed_after_build(self, config, vault, tmp_path):
        plugins = _plugins()
        await BuildProcessor(config, plugins=plugins).run(vault, tmp_path / "dist")
        assert all(p.state.value == "disposed" for p in plugins)

    @pytest.mark.asyncio
    async def test_plugin_cycle_aborts_build(self, config, vault, tmp_path):
        similarity = CosineSimilarity()
        embedder = KeywordEmbedder()
        embedder.requires = (CapabilityKind.similarity,)
        with pytest.raises(PluginCycleError):
            await BuildProcessor(config, plugins=[embedder, similarity]).run(vault, tmp_path / "dist")
        assert not (tmp_path / "dist" / "posts.json").exists()

    @pytest.mark.asyncio
    async def test_builds_from_config_via_loader(self, config, vault, tmp_path):
        config.plugins.image_processor.name = "copy"
        result = await BuildProcessor(config).run(vault, tmp_path / "dist")
        assert result.plugins == ["image-processor", "database"]
        assert (tmp_path / "dist" / "content.sqlite").is_file()


class TestBuildThenPublish:
    @pytest.mark.asyncio
    async def test_second_publish_skips_uploads(self, config, vault, tmp_path):
        out = tmp_path / "dist"
        await BuildProcessor(config, plugins=_plugins()).run(vault, out)
        optimizer = UploadOptimizer(LocalObjectStore(tmp_path / "storage"))

        first = await optimizer.publish(out, "site", "job-1")
        second = await optimizer.publish(out, "site", "job-2")

        assert first.skipped_uploads == 0
        assert first.failed == []
        # media plus one shared JSON per post
        assert second.skipped_uploads == 1 + 3
        assert second.summary()["skippedUploads"] > 0


class TestSmallVaults:
    @pytest.mark.asyncio
    async def test_two_post_vault_counts(self, config, two_post_vault, tmp_path):
        result = await BuildProcessor(config, plugins=_plugins()).run(two_post_vault, tmp_path / "dist")

        broken = [i for i in result.issues.issues if i.category.value == "broken-link"]
        assert len(broken) == 1
        assert broken[0].file == "hello-world.md"
        assert result.database.row_counts["posts"] == 2
        assert result.posts == 2

    @pytest.mark.asyncio
    async def test_identical_files_build_one_post(self, config, tmp_path):
        body = "---\ntitle: Same\n---\n\nAlpha beta, the same words twice.\n"
        vault = write_files(tmp_path / "v", {"a.md": body, "notes/b.md": body})
        out = tmp_path / "dist"
        result = await BuildProcessor(config, plugins=_plugins()).run(vault, out)

        assert result.posts == 1
        assert result.duplicates == 1
        assert result.database.row_counts["posts"] == 1
        assert result.summary()["duplicates"] == 1
        assert len(_read(out / "posts.json")) == 1
        assert len(list((out / "posts").glob("*.json"))) == 1
        assert _read(out / "posts-path-map.json") == {"a.md": "a", "notes/b.md": "a"}
        assert result.issues.summary.by_category["duplicate-content"] == 1


class CountingEmbedder(KeywordEmbedder):
    def __init__(self, *args, **kwargs):
        super().__init__(*args, **kwargs)
        self.batches: list[int] = []

    async def batch_embed(self, texts: list[str]) -> list[list[float]]:
        self.batches.append(len(texts))
        return await super().batch_embed(texts)


class TestIncrementalInputs:
    @pytest.mark.asyncio
    async def test_previous_embeddings_reused(self, config, vault, tmp_path):
        first = tmp_path / "first"
        await BuildProcessor(config, plugins=_plugins()).run(vault, first)
        previous = PreviousEmbeddings(posts=_read(first / "posts-embedding-hash-map.json"))

        embedder = CountingEmbedder()
        second = tmp_path / "second"
        result = await BuildProcessor(config, plugins=_plugins(embedder)).run(
            vault, second, IncrementalInputs(previous_embeddings=previous)
        )

        assert embedder.batches == []
        assert result.embeddings_reused == 3
        assert result.summary()["embeddingsReused"] == 3
        assert _read(second / "posts-embedding-hash-map.json") == previous.posts
        assert _read(second / "similarity.json") == _read(first / "similarity.json")

    @pytest.mark.asyncio
    async def test_published_media_counted(self, config, vault, tmp_path):
        first = await BuildProcessor(config, plugins=_plugins()).run(vault, tmp_path / "first")
        medias = _read(tmp_path / "first" / "medias.json")
        published = {m["sizes"]["original"].rsplit("/", 1)[1].split(".")[0] for m in medias}

        second = await BuildProcessor(config, plugins=_plugins()).run(
            vault, tmp_path / "second", IncrementalInputs(published_media=published)
        )

        assert first.media_reused == 0
        assert second.media_reused == 1
        assert second.summary()["mediaReused"] == 1
        assert _read(tmp_path / "second" / "medias.json") == medias
