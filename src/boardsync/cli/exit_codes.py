"""
Exit Codes - Process exit codes for the boardsync CLI.

Scripts and service managers can branch on these values.
"""

from __future__ import annotations

from enum import IntEnum

from boardsync.core.exceptions import (
    AuthenticationError,
    AuthorizationError,
    ConfigError,
    RemoteServerError,
    TrackerError,
    ValidationError,
)


class ExitCode(IntEnum):
    """CLI exit codes."""

    SUCCESS = 0
    ERROR = 1
    CONFIG_ERROR = 2
    CONNECTION_ERROR = 3
    AUTH_ERROR = 4
    VALIDATION_ERROR = 5
    SYNC_ERROR = 6
    PARTIAL_SUCCESS = 7
    SIGINT = 130

    @classmethod
    def from_exception(cls, error: BaseException) -> ExitCode:
        """Pick the exit code for an exception that reached the top level."""
        if isinstance(error, KeyboardInterrupt):
            return cls.SIGINT
        if isinstance(error, ConfigError):
            return cls.CONFIG_ERROR
        if isinstance(error, (AuthenticationError, AuthorizationError)):
            return cls.AUTH_ERROR
        if isinstance(error, ValidationError):
            return cls.VALIDATION_ERROR
        if isinstance(error, (RemoteServerError, ConnectionError)):
            return cls.CONNECTION_ERROR
        if isinstance(error, TrackerError):
            return cls.SYNC_ERROR
        return cls.ERROR
