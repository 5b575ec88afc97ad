"""Exception taxonomy shared by the storage, sync, and workflow layers."""

from __future__ import annotations


class QuikimError(Exception):
    """Base class for every error raised by quikim."""


class StorageError(QuikimError):
    """Raised for filesystem failures other than "file not found"."""


class ProjectRootError(QuikimError):
    """Raised when no usable .quikim/ project root can be established."""


class ProjectConfigError(QuikimError):
    """Raised when .quikim/project.json is missing, unreadable, or incomplete."""


class ConversionError(QuikimError):
    """Raised when content-format translation fails. Callers fall back to raw content."""


class StateConflictError(QuikimError):
    """Raised when a progress report does not match the pending instruction."""

    def __init__(self, message: str, *, expected: str | None, received: str | None) -> None:
        super().__init__(message)
        self.expected = expected
        self.received = received


class TransientNetworkError(QuikimError):
    """A retryable network failure (reset, timeout, DNS, transport error)."""


class RemoteAPIError(QuikimError):
    """A non-retryable error response from the remote API."""

    def __init__(
        self,
        message: str,
        status_code: int | None = None,
        details: dict | None = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        self.status_code = status_code
        self.details = details

    def to_dict(self) -> dict:
        """Return the structured ``{message, statusCode, details?}`` form."""
        result: dict = {"message": self.message, "statusCode": self.status_code}
        if self.details is not None:
            result["details"] = self.details
        return result


class AuthenticationError(RemoteAPIError):
    """401/403 from the remote API."""


class ValidationError(RemoteAPIError):
    """400/422 from the remote API, or a response that fails schema validation."""


class NotFoundError(RemoteAPIError):
    """404 from the remote API. Signals absence; never fatal on its own."""
