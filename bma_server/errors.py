"""
Error taxonomy for the BMA Music Server.

Scan errors are recovered inside the library engine (only ScanFatalError ends a
scan); auth errors are reported to clients as a uniform 401 and NotFoundError
as a 404. None of them is fatal to the service.
"""


class BMAError(Exception):
    """Base class for all server errors."""


# ---------------------------------------------------------------------------
# Library scanning
# ---------------------------------------------------------------------------

class ScanIOError(BMAError):
    """A subdirectory could not be read; the scan skips it and continues."""


class ScanFatalError(BMAError):
    """The scan root could not be read; the scan is aborted."""


class RecordBuildError(BMAError):
    """A single audio file could not be opened or read."""


# ---------------------------------------------------------------------------
# Authentication
# ---------------------------------------------------------------------------

class AuthError(BMAError):
    """Bearer-token authentication failed."""

    message = "Authentication failed"

    def __init__(self, message: str = ""):
        super().__init__(message or self.message)
        if message:
            self.message = message


class MissingTokenError(AuthError):
    message = "Missing authorization token"


class MalformedTokenError(AuthError):
    message = "Invalid authorization format"


class EmptyTokenError(AuthError):
    message = "Empty authorization token"


class InvalidTokenError(AuthError):
    message = "Invalid or expired token"


class ExpiredTokenError(InvalidTokenError):
    message = "Invalid or expired token"


# ---------------------------------------------------------------------------
# Lookups
# ---------------------------------------------------------------------------

class NotFoundError(BMAError):
    """Unknown song id, missing artwork or a file gone from disk."""
