"""Exceptions raised while importing albums and photos into OneDrive."""

from __future__ import annotations


class PhotoImportError(Exception):
    """Base class for every import failure."""


class AuthenticationError(PhotoImportError):
    """A token could not be acquired or refreshed."""


class RemoteRejectionError(PhotoImportError):
    """Graph answered with a non-2xx status that is not recovered inline."""

    def __init__(self, status_code: int, reason: str, body: str, url: str = ""):
        self.status_code = status_code
        self.reason = reason
        self.body = body
        self.url = url
        super().__init__(
            f"Got error code: {status_code} message: {reason} body: {body}"
        )


class AuthExpiredError(RemoteRejectionError):
    """Still unauthorized after refreshing the token once."""


class ProtocolViolationError(PhotoImportError):
    """A success response is missing a field the Graph contract guarantees."""


class ContentSourceError(PhotoImportError):
    """The bytes of a photo cannot be located."""


class MissingFolderError(PhotoImportError):
    """A photo references an album whose folder was never created."""


class ManifestError(PhotoImportError):
    """The job manifest could not be read."""
