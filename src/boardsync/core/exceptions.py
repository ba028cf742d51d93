"""
Centralized exception hierarchy for boardsync.

All errors raised by adapters derive from BoardSyncError so that the sync
engines can classify them at a single boundary.

Hierarchy:
    BoardSyncError
    ├── TrackerError (remote work item tracker)
    │   ├── AuthenticationError
    │   ├── AuthorizationError
    │   ├── RemoteNotFoundError
    │   ├── RateLimitError
    │   ├── ValidationError
    │   └── RemoteServerError
    ├── StoreError (local SQLite store)
    └── ConfigError
        └── ConfigFileError
"""

from __future__ import annotations

from pathlib import Path


__all__ = [
    "AuthenticationError",
    "AuthorizationError",
    "BoardSyncError",
    "ConfigError",
    "ConfigFileError",
    "RateLimitError",
    "RemoteNotFoundError",
    "RemoteServerError",
    "StoreError",
    "TrackerError",
    "ValidationError",
]


# =============================================================================
# Base
# =============================================================================


class BoardSyncError(Exception):
    """
    Base exception for all boardsync errors.

    Attributes:
        message: Human-readable error message.
        cause: Optional underlying exception.
    """

    def __init__(self, message: str, cause: Exception | None = None):
        self.message = message
        self.cause = cause
        super().__init__(message)

    def __str__(self) -> str:
        if self.cause:
            return f"{self.message} (caused by: {self.cause})"
        return self.message


# =============================================================================
# Remote tracker errors
# =============================================================================


class TrackerError(BoardSyncError):
    """
    Error talking to the remote work item tracker.

    Attributes:
        issue_key: Remote identifier (work item id or endpoint) involved, if any.
    """

    def __init__(
        self,
        message: str,
        issue_key: str | int | None = None,
        cause: Exception | None = None,
    ):
        super().__init__(message, cause)
        self.issue_key = issue_key


class AuthenticationError(TrackerError):
    """Credentials were rejected (HTTP 401)."""


class AuthorizationError(TrackerError):
    """Credentials are valid but lack permission (HTTP 403)."""


class RemoteNotFoundError(TrackerError):
    """The requested work item or resource does not exist (HTTP 404)."""


class RateLimitError(TrackerError):
    """
    The remote throttled the request (HTTP 429).

    Attributes:
        retry_after: Seconds the server asked us to wait, if provided.
    """

    def __init__(
        self,
        message: str,
        retry_after: float | None = None,
        issue_key: str | int | None = None,
        cause: Exception | None = None,
    ):
        super().__init__(message, issue_key=issue_key, cause=cause)
        self.retry_after = retry_after


class ValidationError(TrackerError):
    """The remote rejected the request payload, or the caller passed bad input."""

    def __init__(
        self,
        message: str,
        details: str | None = None,
        issue_key: str | int | None = None,
        cause: Exception | None = None,
    ):
        super().__init__(message, issue_key=issue_key, cause=cause)
        self.details = details


class RemoteServerError(TrackerError):
    """Any other remote failure: 5xx, connection loss, unexpected payload."""

    def __init__(
        self,
        message: str,
        status_code: int | None = None,
        issue_key: str | int | None = None,
        cause: Exception | None = None,
    ):
        super().__init__(message, issue_key=issue_key, cause=cause)
        self.status_code = status_code


# =============================================================================
# Local store errors
# =============================================================================


class StoreError(BoardSyncError):
    """Failure reading or writing the local story store."""


# =============================================================================
# Configuration errors
# =============================================================================


class ConfigError(BoardSyncError):
    """Invalid or missing configuration."""


class ConfigFileError(ConfigError):
    """A configuration file could not be read or parsed."""

    def __init__(
        self,
        message: str,
        file_path: str | Path | None = None,
        cause: Exception | None = None,
    ):
        super().__init__(message, cause)
        self.file_path = file_path
