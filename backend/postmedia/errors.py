"""Errors raised by the transcoder, reference resolver, storage and upload flows.

Each error message is safe to show to the user as-is.
"""
from typing import Optional


class MediaError(Exception):
    """Base class for all media pipeline errors."""


class UnsupportedFormatError(MediaError):
    def __init__(self, content_type: str):
        self.content_type = content_type
        super().__init__(
            f"Unsupported image type '{content_type or 'unknown'}'. "
            "Please select a valid image file (JPEG, PNG, WebP, or GIF)"
        )


class OversizeInputError(MediaError):
    def __init__(self, size: int, limit: int):
        self.size = size
        self.limit = limit
        super().__init__(f"Image size must be less than {limit // (1024 * 1024)}MB")


class DecodeError(MediaError):
    """Bytes could not be decoded into a bitmap."""


class DereferenceError(MediaError):
    """A blob:/data: reference could not be turned into bytes."""


class DereferenceTimeoutError(DereferenceError):
    pass


class UploadError(MediaError):
    """Transcoded bytes could not be stored remotely."""


class UploadTimeoutError(UploadError):
    pass


class StorageError(MediaError):
    """Raised by storage clients when the backend rejects a request."""

    def __init__(self, message: str, status_code: Optional[int] = None):
        self.status_code = status_code
        super().__init__(message)


class InvalidOwnerError(MediaError):
    """Missing or malformed owner identity; fails the call before any work."""
