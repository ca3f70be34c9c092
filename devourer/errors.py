"""Error taxonomy for Devourer.

Core modules raise these; the API layer maps them to HTTP responses through
`status_code`. Scan-time failures are caught per issue and logged instead.
"""

from __future__ import annotations


class DevourerError(Exception):
    status_code = 500

    def __init__(self, message: str = ""):
        super().__init__(message)
        self.message = message or self.__class__.__name__


class NotFoundError(DevourerError):
    status_code = 404


class ConflictError(DevourerError):
    """Scan already running, or a unique key is already taken."""

    status_code = 409


class InvalidInputError(DevourerError):
    status_code = 400


class PathViolationError(DevourerError):
    """A catalogued path resolves outside its library root."""

    status_code = 403


class ArchiveCorruptError(DevourerError):
    status_code = 422


class MetadataUnavailableError(DevourerError):
    status_code = 502


class IOFailureError(DevourerError):
    status_code = 500
