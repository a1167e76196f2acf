"""Error taxonomy for the SBOM cleanup worker.

Recovery granularity:

- ``ConfigurationError``: fatal at startup.
- ``DataAccessError`` / ``SerializationError`` from the store: the cycle is
  aborted and retried after the wait interval.
- ``RemoteQueryError`` / ``SerializationError`` from the release API: the
  record is skipped for this cycle and re-evaluated next cycle.
"""

from typing import Any, Dict, Optional


class SbomCleanupError(Exception):
    """Base exception for the SBOM cleanup worker."""

    def __init__(
        self,
        message: str,
        code: str = "INTERNAL",
        details: Optional[Dict[str, Any]] = None,
    ):
        self.message = message
        self.code = code
        self.details = details or {}
        super().__init__(message)

    def __str__(self) -> str:
        return self.message


class ConfigurationError(SbomCleanupError):
    """A required setting is missing or invalid."""

    def __init__(self, message: str, errors: Optional[list[str]] = None):
        super().__init__(message, code="CONFIG", details={"errors": list(errors or [])})
        self.errors = list(errors or [])


class DataAccessError(SbomCleanupError):
    """The record store is unreachable or a statement failed."""

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        super().__init__(message, code="DATA_ACCESS", details=details)


class SerializationError(DataAccessError):
    """A payload could not be parsed into the expected structure."""

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        super().__init__(message, details=details)
        self.code = "SERIALIZATION"


class RemoteQueryError(SbomCleanupError):
    """The release API returned a non-success status or could not be reached.

    ``status_code`` is ``None`` for transport failures (timeouts, refused
    connections) where no HTTP response was received.
    """

    MAX_BODY_CHARS = 2000

    def __init__(self, message: str, status_code: Optional[int] = None, body: str = ""):
        body = body or ""
        if len(body) > self.MAX_BODY_CHARS:
            body = body[: self.MAX_BODY_CHARS] + "...[truncated]"
        super().__init__(
            message,
            code="REMOTE_QUERY",
            details={"status_code": status_code, "body": body},
        )
        self.status_code = status_code
        self.body = body
