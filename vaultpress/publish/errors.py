"""Upload failures raised by object stores."""

from __future__ import annotations


class UploadError(Exception):
    """An object could not be written to storage."""

    def __init__(self, key: str, cause: Exception | str, retryable: bool = False):
        self.key = key
        self.cause = cause
        self.retryable = retryable
        super().__init__(f"Upload of {key} failed: {cause}")


class MetadataRejectedError(UploadError):
    """The store refused the object's metadata (encoding, size, characters)."""

    def __init__(self, key: str, cause: Exception | str):
        super().__init__(key, cause, retryable=True)
