"""
Sync results, status records and the shared error classifier.

Every object here serializes with ``to_dict()`` using camelCase keys so a
caller can hand it straight to ``json.dumps``.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any

from boardsync.core.domain.entities import utc_timestamp
from boardsync.core.domain.enums import ErrorCode, SyncDirection
from boardsync.core.exceptions import (
    AuthenticationError,
    AuthorizationError,
    RateLimitError,
    RemoteNotFoundError,
    TrackerError,
    ValidationError,
)


def classify_error(error: BaseException) -> tuple[ErrorCode, str]:
    """
    Map an exception to an error code and a human-readable message.

    Shared by the inbound and outbound engines so both report the same
    codes for the same failures.
    """
    message = str(error) or error.__class__.__name__

    if isinstance(error, RemoteNotFoundError):
        return ErrorCode.REMOTE_NOT_FOUND, message
    if isinstance(error, AuthenticationError):
        return ErrorCode.AUTHENTICATION_FAILED, message
    if isinstance(error, AuthorizationError):
        return ErrorCode.AUTHORIZATION_FAILED, message
    if isinstance(error, RateLimitError):
        return ErrorCode.RATE_LIMITED, message
    if isinstance(error, ValidationError):
        if error.details:
            message = f"{error.message}: {error.details}"
        return ErrorCode.VALIDATION_ERROR, message
    if isinstance(error, TrackerError):
        return ErrorCode.REMOTE_SERVER_ERROR, message
    return ErrorCode.INTERNAL_ERROR, message


# =============================================================================
# Run results
# =============================================================================


@dataclass
class SyncItemError:
    """Failure of one item inside a batch run."""

    remote_id: int
    error: str
    code: ErrorCode = ErrorCode.INTERNAL_ERROR

    def to_dict(self) -> dict[str, Any]:
        return {"remoteId": self.remote_id, "error": self.error, "code": self.code.value}


@dataclass
class SyncResult:
    """
    Result of a batch sync run.

    ``success`` is False only when the run could not start or its top-level
    fetch/scan failed; per-item failures land in ``errors`` and leave
    ``success`` untouched.
    """

    direction: SyncDirection
    success: bool = True
    items_processed: int = 0
    items_created: int = 0
    items_updated: int = 0
    items_skipped: int = 0
    errors: list[SyncItemError] = field(default_factory=list)
    started_at: str = field(default_factory=utc_timestamp)
    completed_at: str | None = None

    def add_error(
        self, remote_id: int, message: str, code: ErrorCode = ErrorCode.INTERNAL_ERROR
    ) -> None:
        self.errors.append(SyncItemError(remote_id=remote_id, error=message, code=code))

    def complete(self) -> SyncResult:
        self.completed_at = utc_timestamp()
        return self

    @property
    def has_errors(self) -> bool:
        return bool(self.errors)

    def to_dict(self) -> dict[str, Any]:
        return {
            "success": self.success,
            "direction": self.direction.value,
            "itemsProcessed": self.items_processed,
            "itemsCreated": self.items_created,
            "itemsUpdated": self.items_updated,
            "itemsSkipped": self.items_skipped,
            "errors": [e.to_dict() for e in self.errors],
            "startedAt": self.started_at,
            "completedAt": self.completed_at,
        }


@dataclass
class OutboundSyncResult:
    """Result of pushing one state change."""

    success: bool
    work_item_id: int | None = None
    story_id: str | None = None
    previous_state: str | None = None
    new_state: str | None = None
    error: str | None = None
    error_code: ErrorCode | None = None

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {
            "success": self.success,
            "workItemId": self.work_item_id,
            "storyId": self.story_id,
            "previousState": self.previous_state,
            "newState": self.new_state,
        }
        if self.error is not None:
            data["error"] = self.error
        if self.error_code is not None:
            data["errorCode"] = self.error_code.value
        return data


@dataclass
class CreateWorkItemResult:
    """Result of creating a remote work item from a local story."""

    success: bool
    story_id: str
    remote_work_item_id: int | None = None
    url: str | None = None
    error: str | None = None
    error_code: ErrorCode | None = None

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {
            "success": self.success,
            "storyId": self.story_id,
            "adoWorkItemId": self.remote_work_item_id,
            "url": self.url,
        }
        if self.error is not None:
            data["error"] = self.error
        if self.error_code is not None:
            data["errorCode"] = self.error_code.value
        return data


# =============================================================================
# Engine status
# =============================================================================


@dataclass
class InboundSyncStatus:
    """In-memory counters owned by the inbound engine."""

    last_run: str | None = None
    next_run: str | None = None
    items_synced: int = 0
    items_created: int = 0
    items_updated: int = 0
    errors: int = 0
    last_error: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "lastRun": self.last_run,
            "nextRun": self.next_run,
            "itemsSynced": self.items_synced,
            "itemsCreated": self.items_created,
            "itemsUpdated": self.items_updated,
            "errors": self.errors,
            "lastError": self.last_error,
        }


@dataclass
class OutboundSyncStatus:
    """In-memory counters owned by the outbound engine."""

    last_push: str | None = None
    items_pushed: int = 0
    errors: int = 0
    last_error: str | None = None
    pending_changes: int = 0

    def to_dict(self) -> dict[str, Any]:
        return {
            "lastPush": self.last_push,
            "itemsPushed": self.items_pushed,
            "errors": self.errors,
            "lastError": self.last_error,
            "pendingChanges": self.pending_changes,
        }
