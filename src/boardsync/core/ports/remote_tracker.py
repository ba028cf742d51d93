"""
Remote Tracker Port - Abstract interface for the remote work item tracker.

Implementations:
- AzureDevOpsClient: Azure DevOps Boards REST API

All methods raise subclasses of ``boardsync.core.exceptions.TrackerError``:
RemoteNotFoundError, AuthenticationError, AuthorizationError,
RateLimitError, ValidationError or RemoteServerError.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any

from boardsync.core.domain.entities import RemoteWorkItem


@dataclass(frozen=True)
class PatchOperation:
    """A single JSON Patch operation against a work item."""

    op: str
    path: str
    value: Any = None

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {"op": self.op, "path": self.path}
        if self.op != "remove":
            data["value"] = self.value
        return data

    @classmethod
    def field_path(cls, field_name: str) -> str:
        return f"/fields/{field_name}"


class RemoteTrackerPort(ABC):
    """Operations the sync engines need from the remote tracker."""

    # Upper bound on ids accepted by get_work_items
    MAX_BATCH_SIZE = 200

    @abstractmethod
    def get_work_item(self, work_item_id: int, expand: str | None = None) -> RemoteWorkItem:
        """
        Fetch one work item.

        Args:
            work_item_id: Remote id.
            expand: Optional expansion ("relations", "links", "all").

        Raises:
            RemoteNotFoundError: If the item does not exist.
        """
        ...

    @abstractmethod
    def get_work_items(self, work_item_ids: list[int]) -> list[RemoteWorkItem]:
        """
        Fetch up to MAX_BATCH_SIZE work items.

        Returns an empty list for empty input without contacting the remote.

        Raises:
            ValidationError: If more than MAX_BATCH_SIZE ids are given.
        """
        ...

    @abstractmethod
    def query_by_filter(
        self,
        work_item_types: list[str],
        area_path: str | None = None,
        iteration_path: str | None = None,
    ) -> list[RemoteWorkItem]:
        """Fetch every non-removed item of the given types, newest change first."""
        ...

    @abstractmethod
    def update_state(
        self, work_item_id: int, state: str, reason: str | None = None
    ) -> RemoteWorkItem:
        """Move a work item to another state."""
        ...

    @abstractmethod
    def create_item(self, work_item_type: str, fields: dict[str, Any]) -> RemoteWorkItem:
        """Create a work item of the given type with the given field values."""
        ...

    @abstractmethod
    def test_connection(self) -> bool:
        """Check that credentials and project are valid. Never raises."""
        ...

    def close(self) -> None:
        """Release network resources. Default is a no-op."""
        return None
