"""
Error taxonomy for chunk storage and assembly.

Idempotent races (chunk already stored, directory already removed) are not
errors and never surface as one of these.
"""

from pathlib import Path
from typing import Optional


class UploadError(Exception):
    """Base class for all upload errors"""


class UploadValidationError(UploadError, ValueError):
    """Malformed or missing request fields; raised before any state is created."""


class StorageIOError(UploadError):
    """A filesystem operation failed while storing, merging or cleaning up."""

    def __init__(self, message: str, path: Optional[Path] = None):
        super().__init__(message)
        self.path = path


class DisallowedContentTypeError(UploadError):
    """The merged artifact sniffed to a content type outside the allow-list."""

    def __init__(self, mime_type: str, path: Optional[Path] = None):
        super().__init__(f"Uploaded file mime type '{mime_type}' is not allowed")
        self.mime_type = mime_type
        self.path = path


class ConfigurationError(UploadError):
    """Startup-time misconfiguration: missing libmagic, unusable roots, bad rules."""
