"""Exception hierarchy for the file storage client."""

from typing import Any, Dict, Optional


class FileStoreError(Exception):
    """
    Base exception for filestore_s3.

    Attributes:
        details: Optional structured context (operation, status code, path, id).
        cause: Optional original exception that triggered this error.
    """

    def __init__(
        self,
        message: str,
        *,
        details: Optional[Dict[str, Any]] = None,
        cause: Optional[BaseException] = None,
    ) -> None:
        super().__init__(message)
        self.details = details or {}
        self.cause = cause


class NotFoundError(FileStoreError):
    """Raised when a file or folder does not exist."""


class NoFileError(NotFoundError):
    """Raised when no file (or folder) matches a path."""


class NoFolderError(NotFoundError):
    """Raised when the backend reports an unknown folder."""


class AuthError(FileStoreError):
    """Raised when credentials are rejected."""


class AuthFailedError(AuthError):
    """Raised when authenticate-user does not succeed."""


class UnauthorizedError(AuthError):
    """Raised when the backend answers 401 to a bearer-authorized call."""


class TokenError(FileStoreError):
    """Raised when no usable bearer token can be produced."""


class NoTokenError(TokenError):
    """Raised when no credential has been stored for the user."""


class RefreshExpiredError(TokenError):
    """Raised when the refresh token has expired. Re-authentication is required."""


class UnexpectedStatusError(FileStoreError):
    """Raised for a non-success HTTP status not otherwise classified."""

    def __init__(
        self,
        message: str,
        status_code: int,
        *,
        details: Optional[Dict[str, Any]] = None,
        cause: Optional[BaseException] = None,
    ) -> None:
        merged = {"status_code": status_code}
        if details:
            merged.update(details)
        super().__init__(message, details=merged, cause=cause)
        self.status_code = status_code


class ApiError(FileStoreError):
    """Raised when the backend answers 200 with success=false."""


class ProtocolViolationError(FileStoreError):
    """Raised when an upload ends without the backend returning the finished file."""


class EmptyPayloadError(FileStoreError):
    """Raised when a zero-byte upload is attempted."""


class NetworkError(FileStoreError):
    """Raised when the transport fails (connect, timeout, broken stream)."""


class NotSupportedError(FileStoreError):
    """Raised for filesystem calls the backend cannot express."""


def status_error(operation: str, status_code: int, **details: Any) -> FileStoreError:
    """Map a non-200 status to an exception carrying the operation context."""
    message = f"{operation}: unexpected status {status_code}"
    context = {"operation": operation}
    context.update(details)
    if status_code == 401:
        return UnauthorizedError(message, details=dict(context, status_code=status_code))
    return UnexpectedStatusError(message, status_code, details=context)
