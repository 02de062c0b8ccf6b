"""Exception hierarchy for sweet.

Per-device failures derive from :class:`CollectionError` and are converted into
a status entry by the scheduler. :class:`FatalError` subclasses stop the whole
run.
"""

from __future__ import annotations


class CollectionError(RuntimeError):
    """Base exception for a failed collection attempt on one device."""

    def __init__(self, reason: str, hostname: str | None = None) -> None:
        super().__init__(reason)
        self.reason = reason
        self.hostname = hostname

    def __str__(self) -> str:
        if self.hostname:
            return f"{self.hostname}: {self.reason}"
        return self.reason


class ConnectivityError(CollectionError):
    """Raised when the session cannot be opened or ends unexpectedly."""


class SessionWriteError(ConnectivityError):
    """Raised when writing to the session terminal fails."""


class AuthenticationError(CollectionError):
    """Raised when a login or privilege escalation password is rejected."""


class CollectionTimeout(CollectionError):
    """Raised when a device or step exceeded its time bound."""


class ExpectTimeout(CollectionTimeout):
    """Raised when an expected pattern did not show up within its bound."""


class StalledCaptureError(CollectionError):
    """Raised when a device keeps emitting output past the capture ceiling."""


class CaptureOverflowError(CollectionError):
    """Raised when captured output grows past the configured size cap."""


class ExternalProcessError(CollectionError):
    """Raised when an external collection script fails."""


class UnknownMethodError(CollectionError):
    """Raised when a device asks for an access method with no driver."""


class AttemptCancelled(CollectionError):
    """Raised inside a driver once its attempt has been abandoned."""


class FatalError(RuntimeError):
    """Base exception for conditions that make the whole run untrustworthy."""


class ConfigurationError(FatalError):
    """Raised when required settings are missing or invalid."""


class StorageError(FatalError):
    """Raised when collected text cannot be persisted."""
