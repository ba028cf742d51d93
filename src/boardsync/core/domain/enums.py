"""
Domain enums - Status, Priority, and other enumerated types.
"""

from __future__ import annotations

from enum import Enum


class StoryStatus(Enum):
    """Lifecycle status of a local story."""

    DRAFT = "draft"
    PLANNED = "planned"
    IN_PROGRESS = "in_progress"
    REVIEW = "review"
    COMPLETED = "completed"
    CANCELLED = "cancelled"

    @classmethod
    def from_string(cls, value: str) -> StoryStatus:
        """
        Parse status from its stored form.

        Accepts the stored value ("in_progress") as well as spaced or
        hyphenated spellings ("In Progress", "in-progress").

        Raises:
            ValueError: If the value names no known status.
        """
        normalized = value.strip().lower().replace("-", "_").replace(" ", "_")
        return cls(normalized)

    @property
    def display_name(self) -> str:
        """Human-readable name."""
        return self.value.replace("_", " ").title()

    def is_local_only(self) -> bool:
        """Drafts are never touched by inbound sync."""
        return self is StoryStatus.DRAFT


class Priority(Enum):
    """Priority level for stories. P0 is the most urgent."""

    P0 = "P0"
    P1 = "P1"
    P2 = "P2"
    P3 = "P3"

    @classmethod
    def from_string(cls, value: str) -> Priority:
        """Parse priority from string ("p1", "P1")."""
        return cls(value.strip().upper())


class SyncDirection(Enum):
    """Direction of a sync run."""

    INBOUND = "inbound"
    OUTBOUND = "outbound"


class ErrorCode(Enum):
    """
    Stable error codes reported to callers of the sync engines.

    The values are the wire strings exposed in serialized results.
    """

    STORY_NOT_FOUND = "STORY_NOT_FOUND"
    NO_REMOTE_LINK = "NO_ADO_LINK"
    ALREADY_LINKED = "ALREADY_LINKED"
    REMOTE_NOT_FOUND = "WORK_ITEM_NOT_FOUND"
    AUTHENTICATION_FAILED = "AUTHENTICATION_FAILED"
    AUTHORIZATION_FAILED = "AUTHORIZATION_FAILED"
    VALIDATION_ERROR = "VALIDATION_ERROR"
    RATE_LIMITED = "RATE_LIMITED"
    REMOTE_SERVER_ERROR = "ADO_ERROR"
    INTERNAL_ERROR = "INTERNAL_ERROR"


class Transform(Enum):
    """
    Closed set of value transforms applied by declarative field mappings.

    Configuration refers to transforms by their string key; see
    ``Transform.from_key``.
    """

    EXTRACT_DISPLAY_NAME = "extractDisplayName"
    STRIP_HTML = "stripHtml"
    KEEP_HTML = "keepHtml"
    PASSTHROUGH = "passthrough"

    @classmethod
    def from_key(cls, key: str | None) -> Transform | None:
        """
        Resolve a configured transform key.

        Returns:
            The matching Transform, PASSTHROUGH when no key is given,
            or None when the key is not recognised.
        """
        if not key:
            return cls.PASSTHROUGH
        for member in cls:
            if member.value == key:
                return member
        return None


class ProcessTemplate(Enum):
    """Azure DevOps process templates with built-in state tables."""

    AGILE = "agile"
    SCRUM = "scrum"
    BASIC = "basic"

    @classmethod
    def from_string(cls, value: str) -> ProcessTemplate:
        """Parse template name, defaulting to AGILE for unknown values."""
        try:
            return cls(value.strip().lower())
        except ValueError:
            return cls.AGILE
