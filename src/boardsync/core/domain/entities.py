"""
Domain Entities - Objects with identity that persist over time.

Feature and Story mirror the rows of the local board database.
RemoteLink is the typed view of a story's ``extensions`` blob, and
RemoteWorkItem is an Azure DevOps work item as returned by the REST API.
"""

from __future__ import annotations

from dataclasses import dataclass, field, replace
from datetime import datetime, timezone
from typing import Any
from uuid import uuid4

from .enums import Priority, StoryStatus


def utc_timestamp(moment: datetime | None = None) -> str:
    """
    Format a moment as ``YYYY-MM-DDTHH:MM:SS.mmmZ`` in UTC.

    Every timestamp written by boardsync goes through this helper so that
    string comparison orders timestamps chronologically.
    """
    moment = moment or datetime.now(timezone.utc)
    if moment.tzinfo is not None:
        moment = moment.astimezone(timezone.utc)
    return moment.strftime("%Y-%m-%dT%H:%M:%S.") + f"{moment.microsecond // 1000:03d}Z"


def new_id() -> str:
    """Generate a new entity identifier."""
    return str(uuid4())


# =============================================================================
# Remote linkage
# =============================================================================


@dataclass(frozen=True)
class RemoteLink:
    """
    Typed record stored in a story's ``extensions`` JSON blob.

    Known keys are exposed as attributes; every other key found in storage is
    kept verbatim in ``extra`` and written back untouched.
    """

    remote_id: int | None = None
    remote_url: str | None = None
    remote_last_sync_at: str | None = None
    remote_revision: int | None = None
    remote_work_item_type: str | None = None
    last_pushed_at: str | None = None
    last_pushed_status: str | None = None
    extra: dict[str, Any] = field(default_factory=dict)

    # Attribute name -> stored key
    STORAGE_KEYS = {
        "remote_id": "remoteId",
        "remote_url": "remoteUrl",
        "remote_last_sync_at": "remoteLastSyncAt",
        "remote_revision": "remoteRevision",
        "remote_work_item_type": "remoteWorkItemType",
        "last_pushed_at": "lastPushedAt",
        "last_pushed_status": "lastPushedStatus",
    }

    # Older databases wrote ADO-specific key names
    LEGACY_KEYS = {
        "adoWorkItemId": "remote_id",
        "adoWorkItemUrl": "remote_url",
        "adoLastSyncAt": "remote_last_sync_at",
        "adoRevision": "remote_revision",
        "adoWorkItemType": "remote_work_item_type",
    }

    @property
    def is_linked(self) -> bool:
        return self.remote_id is not None

    @classmethod
    def from_dict(cls, data: dict[str, Any] | None) -> RemoteLink:
        """Build from the stored JSON object, keeping unknown keys in ``extra``."""
        if not data:
            return cls()

        values: dict[str, Any] = {}
        extra: dict[str, Any] = {}
        by_key = {key: attr for attr, key in cls.STORAGE_KEYS.items()}

        for key, value in data.items():
            if key in by_key:
                values[by_key[key]] = value
            elif key in cls.LEGACY_KEYS:
                values.setdefault(cls.LEGACY_KEYS[key], value)
            else:
                extra[key] = value

        for int_attr in ("remote_id", "remote_revision"):
            if values.get(int_attr) is not None:
                values[int_attr] = int(values[int_attr])

        return cls(extra=extra, **values)

    def to_dict(self) -> dict[str, Any]:
        """Serialize for storage. Unset fields are omitted."""
        data = dict(self.extra)
        for attr, key in self.STORAGE_KEYS.items():
            value = getattr(self, attr)
            if value is not None:
                data[key] = value
        return data

    def merge(self, update: RemoteLink) -> RemoteLink:
        """
        Overlay ``update`` onto this record.

        Fields set on ``update`` win; unset fields keep their current value.
        Extra keys from both sides are preserved.
        """
        changes = {
            attr: getattr(update, attr)
            for attr in self.STORAGE_KEYS
            if getattr(update, attr) is not None
        }
        return replace(self, extra={**self.extra, **update.extra}, **changes)

    def with_push(self, pushed_at: str, status: StoryStatus | str) -> RemoteLink:
        """Record a successful outbound push."""
        value = status.value if isinstance(status, StoryStatus) else status
        return replace(self, last_pushed_at=pushed_at, last_pushed_status=value)


# =============================================================================
# Local board entities
# =============================================================================


@dataclass
class Feature:
    """
    A feature groups stories and mints their codes.

    ``story_counter`` only ever increases; story ``n`` of feature ``AUTH`` is
    coded ``AUTH-00n``.
    """

    code: str
    name: str
    id: str = field(default_factory=new_id)
    description: str = ""
    story_counter: int = 0
    extensions: dict[str, Any] = field(default_factory=dict)
    created_at: str = field(default_factory=utc_timestamp)
    updated_at: str = field(default_factory=utc_timestamp)

    @staticmethod
    def story_code(feature_code: str, number: int) -> str:
        """Format a story code, e.g. ``story_code("AUTH", 7) == "AUTH-007"``."""
        return f"{feature_code}-{number:03d}"


@dataclass
class Story:
    """A user story on the local board."""

    code: str
    feature_id: str
    title: str
    id: str = field(default_factory=new_id)
    description: str = ""
    why: str = ""
    status: StoryStatus = StoryStatus.DRAFT
    priority: Priority = Priority.P2
    assigned_to: str | None = None
    estimated_complexity: str | None = None
    extensions: RemoteLink = field(default_factory=RemoteLink)
    created_at: str = field(default_factory=utc_timestamp)
    updated_at: str = field(default_factory=utc_timestamp)

    @property
    def remote_id(self) -> int | None:
        return self.extensions.remote_id

    def has_pending_push(self) -> bool:
        """Linked and edited since the last successful push (or never pushed)."""
        if not self.extensions.is_linked:
            return False
        last_pushed = self.extensions.last_pushed_at
        return last_pushed is None or self.updated_at > last_pushed

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for serialization."""
        return {
            "id": self.id,
            "code": self.code,
            "featureId": self.feature_id,
            "title": self.title,
            "description": self.description,
            "why": self.why,
            "status": self.status.value,
            "priority": self.priority.value,
            "assignedTo": self.assigned_to,
            "estimatedComplexity": self.estimated_complexity,
            "extensions": self.extensions.to_dict(),
            "createdAt": self.created_at,
            "updatedAt": self.updated_at,
        }


# =============================================================================
# Remote entities
# =============================================================================


@dataclass
class RemoteWorkItem:
    """
    An Azure DevOps work item.

    ``fields`` is keyed by ADO reference names such as ``System.State``.
    """

    id: int
    rev: int = 0
    url: str = ""
    fields: dict[str, Any] = field(default_factory=dict)
    html_url: str | None = None

    @classmethod
    def from_api(cls, data: dict[str, Any]) -> RemoteWorkItem:
        """Build from a REST API work item payload."""
        links = data.get("_links") or {}
        html = links.get("html") or {}
        return cls(
            id=int(data["id"]),
            rev=int(data.get("rev", 0)),
            url=data.get("url", ""),
            fields=dict(data.get("fields") or {}),
            html_url=html.get("href"),
        )

    @property
    def work_item_type(self) -> str:
        return str(self.fields.get("System.WorkItemType", ""))

    @property
    def state(self) -> str:
        return str(self.fields.get("System.State", ""))

    @property
    def area_path(self) -> str:
        return str(self.fields.get("System.AreaPath", ""))

    @property
    def browse_url(self) -> str:
        """URL to store as the link back to ADO."""
        return self.url or self.html_url or ""
