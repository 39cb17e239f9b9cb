class LedgerError(Exception):
    """
    Base class for every failure reported by the escrow ledger API.

    Carries the HTTP status code (if a response was received) and the
    server-provided message so callers can log the original cause.
    """

    retryable = False

    def __init__(self, message="", status_code=None, payload=None):
        super().__init__(message)
        self.message = message
        self.status_code = status_code
        self.payload = payload or {}

    @property
    def error_type(self):
        return type(self).__name__


class NetworkError(LedgerError):
    """Transport failure or timeout. Nothing was committed, safe to retry."""

    retryable = True


class Unauthorized(LedgerError):
    """Credential or payment signature rejected."""


class NotFound(LedgerError):
    """Stale project/milestone identifier."""


class Conflict(LedgerError):
    """An active escrow already exists for the project."""


class ServerError(LedgerError):
    """5xx from the ledger. Retry with backoff is left to the caller."""

    retryable = True
