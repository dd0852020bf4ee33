"""UploadOptimizer: skip writes whose content already exists in storage."""

from __future__ import annotations

import asyncio
import hashlib
import logging
import mimetypes
import re
import time
from enum import Enum
from pathlib import Path, PurePosixPath

from pydantic import BaseModel, ConfigDict, Field

from vaultpress.interfaces.storage import ObjectInfo, ObjectStore

from .errors import MetadataRejectedError, UploadError

logger = logging.getLogger(__name__)

# Load-bearing naming convention: <hex digest>[-<variant>].<ext>
MEDIA_HASH_RE = re.compile(r"^([a-f0-9]{32,64})(?:-\w+)?\.", re.IGNORECASE)
POST_HASH_RE = re.compile(r"^([a-f0-9]{32,64})\.json$", re.IGNORECASE)

_METADATA_KEY_RE = re.compile(r"[^\w-]")

SHARED_MEDIA = "_shared/medias"
SHARED_POSTS = "_shared/posts"

# project, job and revision ids become path segments and storage key parts
SAFE_ID_PATTERN = r"^[A-Za-z0-9][A-Za-z0-9_.-]*$"


class AssetKind(str, Enum):
    media = "media"
    post = "post"
    other = "other"


class SkipReason(str, Enum):
    identical_content = "identical-content"
    already_exists = "already-exists"


class AssetRecord(BaseModel):
    """A previously published object, read-only for one job."""

    model_config = ConfigDict(frozen=True)

    content_hash: str | None
    storage_key: str
    kind: AssetKind
    etag: str | None = None


class SkippedUpload(BaseModel):
    key: str
    reason: SkipReason


class FailedUpload(BaseModel):
    key: str
    error: str


class PublishReport(BaseModel):
    uploaded: list[str] = Field(default_factory=list)
    skipped: list[SkippedUpload] = Field(default_factory=list)
    failed: list[FailedUpload] = Field(default_factory=list)
    bytes_uploaded: int = 0
    metadata_retries: int = 0
    duration: float = 0.0

    @property
    def skipped_uploads(self) -> int:
        return len(self.skipped)

    def summary(self) -> dict:
        return {
            "uploaded": len(self.uploaded),
            "skippedUploads": len(self.skipped),
            "failed": len(self.failed),
            "bytesUploaded": self.bytes_uploaded,
            "metadataRetries": self.metadata_retries,
            "skipReasons": {
                r.value: sum(1 for s in self.skipped if s.reason == r) for r in SkipReason
            },
        }


def extract_hash(key: str) -> tuple[str | None, AssetKind]:
    """Pull the content hash out of a storage key's file name."""
    name = PurePosixPath(key).name
    m = POST_HASH_RE.match(name)
    if m and f"/{SHARED_POSTS}/" in f"/{key}":
        return m.group(1).lower(), AssetKind.post
    m = MEDIA_HASH_RE.match(name)
    if m:
        return m.group(1).lower(), AssetKind.media
    return None, AssetKind.other


def check_safe_id(value: str, label: str = "id") -> str:
    if not re.fullmatch(SAFE_ID_PATTERN, value or ""):
        raise ValueError(
            f"Invalid {label} {value!r}: use letters, digits, '.', '_' or '-', "
            "starting with a letter or digit"
        )
    return value


def to_record(info: ObjectInfo) -> AssetRecord:
    content_hash, kind = extract_hash(info.key)
    return AssetRecord(content_hash=content_hash, storage_key=info.key, kind=kind, etag=info.etag)


def sanitize_metadata(metadata: dict) -> dict[str, str]:
    """Stringify values and restrict keys to word characters and dashes."""
    clean: dict[str, str] = {}
    for k, v in metadata.items():
        if v is None:
            continue
        clean[_METADATA_KEY_RE.sub("_", str(k))] = str(v)
    return clean


class ExistingAssets:
    """Index over the records fetched at job start."""

    def __init__(self, records: list[AssetRecord]) -> None:
        self.by_key = {r.storage_key: r for r in records}
        self._names_by_hash: dict[str, set[str]] = {}
        for r in records:
            if r.content_hash:
                self._names_by_hash.setdefault(r.content_hash, set()).add(
                    PurePosixPath(r.storage_key).name
                )

    def __len__(self) -> int:
        return len(self.by_key)

    def has_content(self, content_hash: str, name: str) -> bool:
        return name in self._names_by_hash.get(content_hash, set())

    def hashes(self, kind: AssetKind) -> set[str]:
        return {
            r.content_hash for r in self.by_key.values() if r.kind == kind and r.content_hash
        }


class UploadOptimizer:
    """Publishes a build directory, skipping objects already in storage.

    Content-addressed files (hash in the name) are skipped when their key
    already exists (``already-exists``) or the same hash-named file exists
    elsewhere for the project (``identical-content``). Other files are
    compared by md5 against the stored ETag.
    """

    def __init__(
        self,
        store: ObjectStore,
        prefix: str = "projects",
        max_keys: int = 1000,
        concurrency: int = 8,
    ) -> None:
        self.store = store
        self.prefix = prefix.strip("/")
        self.max_keys = max_keys
        self.concurrency = concurrency

    def project_root(self, project_id: str) -> str:
        return f"{self.prefix}/{project_id}" if self.prefix else project_id

    async def fetch_existing(self, project_id: str) -> ExistingAssets:
        """List shared media, shared posts and the project tree.

        A listing failure degrades to "nothing exists" so the publish still
        goes ahead, just without dedup.
        """
        root = self.project_root(project_id)
        prefixes = [f"{root}/{SHARED_MEDIA}/", f"{root}/{SHARED_POSTS}/", f"{root}/"]
        records: dict[str, AssetRecord] = {}
        for prefix in prefixes:
            try:
                infos = await self.store.list_keys(prefix, self.max_keys)
            except Exception as e:
                logger.warning("Could not list existing assets under %s: %s", prefix, e)
                return ExistingAssets([])
            for info in infos:
                records.setdefault(info.key, to_record(info))
        logger.info("Found %d existing assets for project %s", len(records), project_id)
        return ExistingAssets(list(records.values()))

    def plan_key(self, rel_path: str, project_id: str, job_id: str) -> str:
        root = self.project_root(project_id)
        parts = PurePosixPath(rel_path).parts
        if parts and parts[0] == "_media":
            return f"{root}/{SHARED_MEDIA}/" + "/".join(parts[1:])
        if len(parts) == 2 and parts[0] == "posts" and POST_HASH_RE.match(parts[1]):
            return f"{root}/{SHARED_POSTS}/{parts[1]}"
        return f"{root}/{job_id}/{rel_path}"

    def skip_reason(self, key: str, body: bytes, existing: ExistingAssets) -> SkipReason | None:
        content_hash, kind = extract_hash(key)
        record = existing.by_key.get(key)
        if content_hash is not None and kind != AssetKind.other:
            if record is not None:
                return SkipReason.already_exists
            if existing.has_content(content_hash, PurePosixPath(key).name):
                return SkipReason.identical_content
            return None
        if record is not None and record.etag and record.etag == hashlib.md5(body).hexdigest():
            return SkipReason.identical_content
        return None

    async def upload(
        self,
        key: str,
        body: bytes,
        metadata: dict | None,
        report: PublishReport,
    ) -> None:
        content_type = mimetypes.guess_type(key)[0] or "application/octet-stream"
        clean = sanitize_metadata(metadata or {})
        try:
            await self.store.put_object(key, body, content_type, clean)
        except MetadataRejectedError as e:
            logger.warning("Metadata rejected for %s, retrying once without metadata: %s", key, e.cause)
            report.metadata_retries += 1
            await self.store.put_object(key, body, content_type, None)

    async def publish(
        self,
        build_dir: Path,
        project_id: str,
        job_id: str,
        existing: ExistingAssets | None = None,
    ) -> PublishReport:
        """Upload ``build_dir``; ``existing`` saves a second listing when the caller has one."""
        check_safe_id(project_id, "project id")
        check_safe_id(job_id, "job id")
        start = time.monotonic()
        report = PublishReport()
        if existing is None:
            existing = await self.fetch_existing(project_id)
        semaphore = asyncio.Semaphore(self.concurrency)

        files = sorted(p for p in build_dir.rglob("*") if p.is_file())

        async def _one(path: Path) -> None:
            rel = path.relative_to(build_dir).as_posix()
            key = self.plan_key(rel, project_id, job_id)
            body = await asyncio.to_thread(path.read_bytes)
            reason = self.skip_reason(key, body, existing)
            if reason is not None:
                report.skipped.append(SkippedUpload(key=key, reason=reason))
                logger.debug("Skip %s (%s)", key, reason.value)
                return
            metadata = {
                "content-hash": hashlib.sha256(body).hexdigest(),
                "project-id": project_id,
                "job-id": job_id,
                "source-path": rel,
            }
            async with semaphore:
                try:
                    await self.upload(key, body, metadata, report)
                except UploadError as e:
                    logger.error("Upload failed for %s: %s", key, e.cause)
                    report.failed.append(FailedUpload(key=key, error=str(e.cause)))
                    return
            report.uploaded.append(key)
            report.bytes_uploaded += len(body)

        await asyncio.gather(*(_one(p) for p in files))
        report.uploaded.sort()
        report.skipped.sort(key=lambda s: s.key)
        report.duration = time.monotonic() - start
        logger.info(
            "Published %s: %d uploaded, %d skipped, %d failed",
            project_id, len(report.uploaded), len(report.skipped), len(report.failed),
        )
        return report
