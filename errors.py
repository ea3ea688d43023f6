"""
Exception types shared by the release-kit stages.
"""
from typing import Iterable, Optional


class ReleaseKitError(Exception):
    """Base class for all release-kit failures."""


class ConfigError(ReleaseKitError):
    """Raised when the configuration file or environment is invalid."""


class FetchError(ReleaseKitError):
    """Raised by the HTTP adapters when a request cannot be completed."""

    def __init__(self, message: str, status: Optional[int] = None, url: Optional[str] = None):
        super().__init__(message)
        self.status = status
        self.url = url


class MissingInputError(ReleaseKitError):
    """A stage was run before the stages it depends on produced their data."""

    def __init__(self, message: str, missing_keys: Iterable[str] = ()):
        self.missing_keys = list(missing_keys)
        if self.missing_keys:
            message = f"{message} Missing store keys: {', '.join(self.missing_keys)}"
        super().__init__(message)
