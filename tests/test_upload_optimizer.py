"""Tests for UploadOptimizer and the object stores it writes to."""

from __future__ import annotations

import hashlib
from unittest.mock import MagicMock

import pytest
from botocore.exceptions import ClientError, ParamValidationError

from vaultpress.interfaces.storage import ObjectInfo
from vaultpress.publish import (
    AssetKind,
    LocalObjectStore,
    MetadataRejectedError,
    SkipReason,
    UploadError,
    UploadOptimizer,
    extract_hash,
    sanitize_metadata,
)
from vaultpress.publish.s3_store import S3ObjectStore

from .conftest import write_files

H32 = "0123456789abcdef0123456789abcdef"
H64 = "ab" * 32


def _build_dir(root):
    return write_files(root, {
        f"_media/{H32}.webp": b"image-bytes",
        f"_media/{H32}-sm.webp": b"small-bytes",
        f"posts/{H64}.json": '{"title": "x"}',
        "data.json": '{"posts": []}',
        "index.html": "<html></html>",
    })


class RecordingStore(LocalObjectStore):
    """Local store that rejects metadata a set number of times."""

    def __init__(self, root, reject_metadata: int = 0, fail_listing: bool = False):
        super().__init__(root)
        self.reject_metadata = reject_metadata
        self.fail_listing = fail_listing
        self.put_calls: list[tuple[str, dict | None]] = []

    async def list_keys(self, prefix, max_keys=1000):
        if self.fail_listing:
            raise ConnectionError("listing unavailable")
        return await super().list_keys(prefix, max_keys)

    async def put_object(self, key, body, content_type=None, metadata=None):
        self.put_calls.append((key, metadata))
        if metadata and self.reject_metadata:
            self.reject_metadata -= 1
            raise MetadataRejectedError(key, "bad header")
        await super().put_object(key, body, content_type, metadata)


# ── Key planning and hash extraction ─────────────────────────────


class TestKeys:
    def test_plan_key(self):
        opt = UploadOptimizer(MagicMock(), prefix="projects")
        assert opt.plan_key(f"_media/{H32}.webp", "p1", "job-1") == f"projects/p1/_shared/medias/{H32}.webp"
        assert opt.plan_key(f"posts/{H64}.json", "p1", "job-1") == f"projects/p1/_shared/posts/{H64}.json"
        assert opt.plan_key("data.json", "p1", "job-1") == "projects/p1/job-1/data.json"
        assert opt.plan_key("posts/readme.json", "p1", "job-1") == "projects/p1/job-1/posts/readme.json"

    def test_empty_prefix(self):
        opt = UploadOptimizer(MagicMock(), prefix="")
        assert opt.project_root("p1") == "p1"

    @pytest.mark.parametrize("key,expected", [
        (f"p/_shared/medias/{H32}.webp", (H32, AssetKind.media)),
        (f"p/_shared/medias/{H32}-sm.webp", (H32, AssetKind.media)),
        (f"p/_shared/medias/{H64.upper()}.png", (H64, AssetKind.media)),
        (f"p/_shared/posts/{H64}.json", (H64, AssetKind.post)),
        ("p/job/data.json", (None, AssetKind.other)),
        ("p/job/abc.webp", (None, AssetKind.other)),
    ])
    def test_extract_hash(self, key, expected):
        assert extract_hash(key) == expected

    def test_sanitize_metadata(self):
        assert sanitize_metadata({"source path": "a/b.md", "n": 3, "skip": None}) == {
            "source_path": "a/b.md",
            "n": "3",
        }


# ── Publishing ───────────────────────────────────────────────────


class TestPublish:
    @pytest.mark.asyncio
    async def test_first_publish_uploads_everything(self, tmp_path):
        store = LocalObjectStore(tmp_path / "store")
        report = await UploadOptimizer(store).publish(_build_dir(tmp_path / "dist"), "p1", "job-1")

        assert len(report.uploaded) == 5
        assert report.skipped == []
        assert (tmp_path / "store" / f"projects/p1/_shared/medias/{H32}.webp").read_bytes() == b"image-bytes"
        meta = store.metadata["projects/p1/job-1/data.json"]
        assert meta["project-id"] == "p1"
        assert meta["job-id"] == "job-1"
        assert meta["content-hash"] == hashlib.sha256(b'{"posts": []}').hexdigest()

    @pytest.mark.asyncio
    async def test_second_publish_skips_content_addressed_files(self, tmp_path):
        store = LocalObjectStore(tmp_path / "store")
        build = _build_dir(tmp_path / "dist")
        optimizer = UploadOptimizer(store)
        await optimizer.publish(build, "p1", "job-1")

        report = await optimizer.publish(build, "p1", "job-2")

        assert report.skipped_uploads == 3
        assert {s.reason for s in report.skipped} == {SkipReason.already_exists}
        assert report.uploaded == ["projects/p1/job-2/data.json", "projects/p1/job-2/index.html"]
        assert report.summary()["skippedUploads"] == 3

    @pytest.mark.asyncio
    async def test_same_job_rerun_skips_unchanged_files_by_etag(self, tmp_path):
        store = LocalObjectStore(tmp_path / "store")
        build = _build_dir(tmp_path / "dist")
        optimizer = UploadOptimizer(store)
        await optimizer.publish(build, "p1", "job-1")
        (build / "index.html").write_text("<html>changed</html>")

        report = await optimizer.publish(build, "p1", "job-1")

        assert report.uploaded == ["projects/p1/job-1/index.html"]
        reasons = {s.key: s.reason for s in report.skipped}
        assert reasons["projects/p1/job-1/data.json"] == SkipReason.identical_content

    @pytest.mark.asyncio
    async def test_hash_named_file_elsewhere_is_identical_content(self, tmp_path):
        store = LocalObjectStore(tmp_path / "store")
        write_files(tmp_path / "store", {f"projects/p1/old-job/_media/{H32}.webp": b"image-bytes"})
        build = write_files(tmp_path / "dist", {f"_media/{H32}.webp": b"image-bytes"})

        report = await UploadOptimizer(store).publish(build, "p1", "job-1")

        assert report.uploaded == []
        assert report.skipped[0].reason == SkipReason.identical_content

    @pytest.mark.asyncio
    async def test_projects_do_not_share_assets(self, tmp_path):
        store = LocalObjectStore(tmp_path / "store")
        build = _build_dir(tmp_path / "dist")
        optimizer = UploadOptimizer(store)
        await optimizer.publish(build, "p1", "job-1")
        report = await optimizer.publish(build, "p2", "job-1")
        assert report.skipped == []

    @pytest.mark.asyncio
    async def test_metadata_rejection_retried_once_without_metadata(self, tmp_path):
        store = RecordingStore(tmp_path / "store", reject_metadata=1)
        build = write_files(tmp_path / "dist", {"data.json": "{}"})

        report = await UploadOptimizer(store).publish(build, "p1", "job-1")

        assert report.uploaded == ["projects/p1/job-1/data.json"]
        assert report.metadata_retries == 1
        assert [m is None for _, m in store.put_calls] == [False, True]

    @pytest.mark.asyncio
    async def test_other_upload_errors_not_retried(self, tmp_path):
        class BrokenStore(RecordingStore):
            async def put_object(self, key, body, content_type=None, metadata=None):
                self.put_calls.append((key, metadata))
                raise UploadError(key, "disk full")

        store = BrokenStore(tmp_path / "store")
        build = write_files(tmp_path / "dist", {"data.json": "{}"})
        report = await UploadOptimizer(store).publish(build, "p1", "job-1")

        assert len(store.put_calls) == 1
        assert report.failed[0].key == "projects/p1/job-1/data.json"
        assert "disk full" in report.failed[0].error

    @pytest.mark.asyncio
    @pytest.mark.parametrize("project_id,job_id", [("..", "job-1"), ("p1", "../x"), ("p1", "a/b")])
    async def test_unsafe_ids_rejected_before_listing(self, tmp_path, project_id, job_id):
        store = MagicMock()
        with pytest.raises(ValueError, match="Invalid"):
            await UploadOptimizer(store).publish(_build_dir(tmp_path / "dist"), project_id, job_id)
        store.list_keys.assert_not_called()

    @pytest.mark.asyncio
    async def test_existing_listing_reused(self, tmp_path):
        store = LocalObjectStore(tmp_path / "store")
        optimizer = UploadOptimizer(store)
        build = _build_dir(tmp_path / "dist")
        await optimizer.publish(build, "p1", "job-1")

        existing = await optimizer.fetch_existing("p1")
        assert existing.hashes(AssetKind.media) == {H32}
        assert existing.hashes(AssetKind.post) == {H64}

        report = await optimizer.publish(build, "p1", "job-2", existing)
        assert report.skipped_uploads == 3

    @pytest.mark.asyncio
    async def test_listing_failure_degrades_to_full_upload(self, tmp_path):
        store = RecordingStore(tmp_path / "store", fail_listing=True)
        report = await UploadOptimizer(store).publish(_build_dir(tmp_path / "dist"), "p1", "job-1")
        assert len(report.uploaded) == 5
        assert report.skipped == []


class TestLocalObjectStore:
    @pytest.mark.asyncio
    async def test_non_ascii_metadata_rejected(self, tmp_path):
        store = LocalObjectStore(tmp_path)
        with pytest.raises(MetadataRejectedError):
            await store.put_object("k.txt", b"x", metadata={"title": "café"})

    @pytest.mark.asyncio
    async def test_key_cannot_escape_root(self, tmp_path):
        store = LocalObjectStore(tmp_path / "root")
        with pytest.raises(UploadError):
            await store.put_object("../outside.txt", b"x")

    @pytest.mark.asyncio
    async def test_listing_respects_prefix_and_limit(self, tmp_path):
        store = LocalObjectStore(tmp_path)
        for name in ("a/1", "a/2", "a/3", "b/1"):
            await store.put_object(name, b"x")
        keys = [i.key for i in await store.list_keys("a/", max_keys=2)]
        assert keys == ["a/1", "a/2"]
        assert await store.get_object("missing") is None


class TestS3ObjectStore:
    def _client_error(self, code: str) -> ClientError:
        return ClientError({"Error": {"Code": code, "Message": "nope"}}, "PutObject")

    @pytest.mark.asyncio
    async def test_listing_follows_continuation(self):
        client = MagicMock()
        client.list_objects_v2.side_effect = [
            {"Contents": [{"Key": "a", "Size": 1, "ETag": '"e1"'}], "IsTruncated": True,
             "NextContinuationToken": "t"},
            {"Contents": [{"Key": "b", "Size": 2, "ETag": '"e2"'}], "IsTruncated": False},
        ]
        store = S3ObjectStore("bucket", client=client)
        assert await store.list_keys("") == [
            ObjectInfo(key="a", size=1, etag="e1"),
            ObjectInfo(key="b", size=2, etag="e2"),
        ]
        assert client.list_objects_v2.call_args_list[1].kwargs["ContinuationToken"] == "t"

    @pytest.mark.asyncio
    async def test_metadata_error_codes_map_to_metadata_rejected(self):
        client = MagicMock()
        client.put_object.side_effect = self._client_error("MetadataTooLarge")
        store = S3ObjectStore("bucket", client=client)
        with pytest.raises(MetadataRejectedError):
            await store.put_object("k", b"x", "text/plain", {"a": "b"})

    @pytest.mark.asyncio
    async def test_param_validation_is_metadata_rejected(self):
        client = MagicMock()
        client.put_object.side_effect = ParamValidationError(report="bad metadata")
        store = S3ObjectStore("bucket", client=client)
        with pytest.raises(MetadataRejectedError):
            await store.put_object("k", b"x", None, {"a": "b"})

    @pytest.mark.asyncio
    async def test_other_client_errors_are_upload_errors(self):
        client = MagicMock()
        client.put_object.side_effect = self._client_error("AccessDenied")
        store = S3ObjectStore("bucket", client=client)
        with pytest.raises(UploadError) as exc_info:
            await store.put_object("k", b"x", None, {"a": "b"})
        assert not isinstance(exc_info.value, MetadataRejectedError)

    @pytest.mark.asyncio
    async def test_put_passes_content_type_and_metadata(self):
        client = MagicMock()
        store = S3ObjectStore("bucket", client=client)
        await store.put_object("k.json", b"{}", "application/json", {"job-id": "1"})
        client.put_object.assert_called_once_with(
            Bucket="bucket", Key="k.json", Body=b"{}", ContentType="application/json",
            Metadata={"job-id": "1"},
        )
