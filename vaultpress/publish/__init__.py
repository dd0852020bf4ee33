from vaultpress.config.models import StorageConfig
from vaultpress.interfaces.storage import ObjectStore

from .errors import MetadataRejectedError, UploadError
from .local_store import LocalObjectStore
from .optimizer import (
    AssetKind,
    AssetRecord,
    ExistingAssets,
    PublishReport,
    SkipReason,
    UploadOptimizer,
    check_safe_id,
    extract_hash,
    sanitize_metadata,
)


def create_store(config: StorageConfig) -> ObjectStore:
    """Build the configured store. Called once per process."""
    if config.provider == "s3":
        from .s3_store import S3ObjectStore

        if not config.bucket:
            raise ValueError("storage.bucket is required for the s3 provider")
        return S3ObjectStore(config.bucket, endpoint_url=config.endpoint_url, region=config.region)
    return LocalObjectStore(config.local_root)


__all__ = [
    "AssetKind",
    "AssetRecord",
    "ExistingAssets",
    "LocalObjectStore",
    "MetadataRejectedError",
    "PublishReport",
    "SkipReason",
    "UploadError",
    "UploadOptimizer",
    "check_safe_id",
    "create_store",
    "extract_hash",
    "sanitize_metadata",
]
