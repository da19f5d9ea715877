# pvptracker/errors.py

from typing import Optional


class TrackerError(Exception):
    """Base class for recoverable tracker failures."""


class ConfigError(TrackerError):
    """Required configuration is missing or malformed."""


class AuthError(TrackerError):
    """The token endpoint rejected the credentials or could not be reached."""


class FetchError(TrackerError):
    """A bracket request failed with something other than 404."""

    def __init__(self, message: str, status: Optional[int] = None):
        super().__init__(message)
        self.status = status


class PayloadError(TrackerError):
    """The API answered, but the body is missing required numeric fields."""


class StorageError(RuntimeError):
    """A read or write against the local database failed. Not recoverable."""
