"""
Field Mapper - Translates between local stories and ADO work items.

Handles:
- State mapping (ADO states <-> local statuses)
- Priority mapping (ADO 1-4 <-> local P0-P3)
- Rich text (ADO HTML <-> local plain text)
- Identity fields (ADO IdentityRef -> display name)
- Declarative field mappings with a closed set of transforms

Nothing here raises on unknown input: unknown states, statuses and
priorities fall back to a default and log a warning so sync keeps going.
"""

from __future__ import annotations

import html
import logging
import re
from collections.abc import Callable
from dataclasses import dataclass, field
from typing import Any

from boardsync.core.domain.entities import RemoteLink, RemoteWorkItem, Story, utc_timestamp
from boardsync.core.domain.enums import Priority, StoryStatus, Transform
from boardsync.core.ports.config_provider import (
    FieldMapping,
    MappingConfig,
    default_field_mappings,
)
from boardsync.core.ports.remote_tracker import PatchOperation


logger = logging.getLogger("FieldMapper")


# ADO reference names
STATE_FIELD = "System.State"
TITLE_FIELD = "System.Title"
DESCRIPTION_FIELD = "System.Description"
ACCEPTANCE_CRITERIA_FIELD = "Microsoft.VSTS.Common.AcceptanceCriteria"
PRIORITY_FIELD = "Microsoft.VSTS.Common.Priority"
ASSIGNED_TO_FIELD = "System.AssignedTo"
AREA_PATH_FIELD = "System.AreaPath"
WORK_ITEM_TYPE_FIELD = "System.WorkItemType"

DEFAULT_REMOTE_STATE = "New"
DEFAULT_REMOTE_PRIORITY = 3
DEFAULT_TITLE = "Untitled"


# =============================================================================
# Transforms
# =============================================================================


_BR_RE = re.compile(r"<br\s*/?>", re.IGNORECASE)
_P_CLOSE_RE = re.compile(r"</p>", re.IGNORECASE)
_BLOCK_CLOSE_RE = re.compile(r"</(?:div|li)>", re.IGNORECASE)
_TAG_RE = re.compile(r"<[^>]+>")


def strip_html(value: Any) -> str:
    """
    Convert ADO rich text to plain text.

    Line-breaking tags become newlines, all other tags are dropped and
    entities are decoded.

    >>> strip_html("<p>Hello <strong>World</strong></p>")
    'Hello World'
    """
    if not value or not isinstance(value, str):
        return ""
    text = _BR_RE.sub("\n", value)
    text = _P_CLOSE_RE.sub("\n\n", text)
    text = _BLOCK_CLOSE_RE.sub("\n", text)
    text = _TAG_RE.sub("", text)
    text = text.replace("&nbsp;", " ")
    return html.unescape(text).strip()


def keep_html(value: Any) -> str:
    if not value or not isinstance(value, str):
        return ""
    return value


def extract_display_name(value: Any) -> str | None:
    """Pull a readable name out of an ADO IdentityRef (or a plain string)."""
    if not value:
        return None
    if isinstance(value, str):
        return value
    if isinstance(value, dict):
        return value.get("displayName") or value.get("uniqueName") or None
    return None


def wrap_html(text: str | None) -> str:
    """
    Wrap plain text for an ADO rich text field.

    >>> wrap_html("Line 1\\nLine 2")
    '<div>Line 1<br>Line 2</div>'
    """
    if not text:
        return ""
    escaped = html.escape(text, quote=True).replace("&#x27;", "&#39;")
    return "<div>" + escaped.replace("\n", "<br>") + "</div>"


TRANSFORMS: dict[Transform, Callable[[Any], Any]] = {
    Transform.EXTRACT_DISPLAY_NAME: extract_display_name,
    Transform.STRIP_HTML: strip_html,
    Transform.KEEP_HTML: keep_html,
    Transform.PASSTHROUGH: lambda value: value,
}


def apply_transform(transform: Transform | str | None, value: Any) -> Any:
    """
    Apply a transform by enum member or configured key.

    Unknown keys return ``value`` unchanged and log a warning.
    """
    if not isinstance(transform, Transform):
        resolved = Transform.from_key(transform)
        if resolved is None:
            logger.warning(f"Unknown transform function: {transform}")
            return value
        transform = resolved
    return TRANSFORMS[transform](value)


# =============================================================================
# Mapper
# =============================================================================


@dataclass
class MappedStory:
    """Local story fields derived from a remote work item."""

    title: str
    description: str
    why: str
    status: StoryStatus
    priority: Priority
    assigned_to: str | None
    extensions: RemoteLink = field(default_factory=RemoteLink)


class FieldMapper:
    """
    Configurable field mapper for ADO <-> local bidirectional sync.

    Stateless apart from its configuration; safe to share between engines.
    """

    # Local attributes with fixed remote counterparts
    CORE_FIELDS = ("title", "description", "why", "assigned_to")

    def __init__(self, config: MappingConfig | None = None):
        self.config = config or MappingConfig()
        self.logger = logger

        defaults = {m.local_field: m for m in default_field_mappings()}
        configured = {m.local_field: m for m in self.config.fields if not m.is_extension}
        self._core: dict[str, FieldMapping] = {
            name: configured.get(name, defaults[name]) for name in self.CORE_FIELDS
        }
        self._extensions = [m for m in self.config.fields if m.is_extension]

    @property
    def supported_work_item_types(self) -> list[str]:
        return list(self.config.work_item_types)

    def is_type_supported(self, work_item_type: str) -> bool:
        return work_item_type in self.config.work_item_types

    # -------------------------------------------------------------------------
    # ADO -> local
    # -------------------------------------------------------------------------

    def map_remote_to_local(self, item: RemoteWorkItem) -> MappedStory:
        """
        Map an ADO work item to local story fields.

        The returned extensions carry the remote linkage plus any configured
        ``extensions.*`` custom fields.
        """
        fields = item.fields

        title = self._read_core(fields, "title") or DEFAULT_TITLE
        description = self._read_core(fields, "description") or ""
        why = self._read_core(fields, "why") or ""
        assigned_to = self._read_core(fields, "assigned_to") or None

        return MappedStory(
            title=str(title),
            description=str(description),
            why=str(why),
            status=self.remote_state_to_status(fields.get(STATE_FIELD)),
            priority=self.remote_to_local_priority(fields.get(PRIORITY_FIELD)),
            assigned_to=assigned_to,
            extensions=RemoteLink(
                remote_id=item.id,
                remote_url=item.browse_url or None,
                remote_last_sync_at=utc_timestamp(),
                remote_revision=item.rev,
                remote_work_item_type=item.work_item_type or None,
                extra=self._read_extensions(fields),
            ),
        )

    def _read_core(self, fields: dict[str, Any], local_field: str) -> Any:
        mapping = self._core[local_field]
        return apply_transform(mapping.inbound_transform, fields.get(mapping.remote_field))

    def _read_extensions(self, fields: dict[str, Any]) -> dict[str, Any]:
        reserved = set(RemoteLink.STORAGE_KEYS.values()) | set(RemoteLink.LEGACY_KEYS)
        extra: dict[str, Any] = {}
        for mapping in self._extensions:
            key = mapping.extension_key
            if key in reserved:
                continue
            value = fields.get(mapping.remote_field)
            if value is not None:
                extra[key] = apply_transform(mapping.inbound_transform, value)
        return extra

    def remote_state_to_status(self, state: str | None) -> StoryStatus:
        mapped = self.config.states.inbound.get(state or "")
        if mapped:
            try:
                return StoryStatus(mapped)
            except ValueError:
                self.logger.warning(f"State mapping for '{state}' names unknown status '{mapped}'")
        self.logger.warning(f"Unknown ADO state '{state}', defaulting to 'draft'")
        return StoryStatus.DRAFT

    def remote_to_local_priority(self, value: Any) -> Priority:
        """Map ADO priority (1 = critical) to P0..P3."""
        if value is None or value == "":
            return Priority.P2

        try:
            number = int(value)
        except (TypeError, ValueError):
            self.logger.warning(f"Non-numeric ADO priority '{value}', defaulting to P2")
            return Priority.P2

        mapped = self.config.priorities.inbound.get(number)
        if mapped:
            try:
                return Priority(mapped)
            except ValueError:
                self.logger.warning(f"Priority mapping for {number} names unknown '{mapped}'")

        if number <= 1:
            return Priority.P0
        if number >= 4:
            return Priority.P3
        return Priority.P2

    # -------------------------------------------------------------------------
    # local -> ADO
    # -------------------------------------------------------------------------

    def map_local_to_remote_fields(self, story: Story) -> dict[str, Any]:
        """
        Build the field map for creating a new work item.

        New items always start in the initial remote state; later transitions
        are pushed by the outbound engine.
        """
        fields: dict[str, Any] = {
            self._core["title"].remote_field: story.title or DEFAULT_TITLE,
            STATE_FIELD: self.initial_remote_state(),
        }

        if story.description:
            fields[self._core["description"].remote_field] = wrap_html(story.description)

        fields[PRIORITY_FIELD] = self.local_to_remote_priority(story.priority)

        if story.why:
            fields[self._core["why"].remote_field] = wrap_html(story.why)

        if story.assigned_to:
            fields[self._core["assigned_to"].remote_field] = story.assigned_to

        for mapping in self._extensions:
            if mapping.read_only:
                continue
            value = story.extensions.extra.get(mapping.extension_key)
            if value is not None:
                fields[mapping.remote_field] = apply_transform(mapping.outbound_transform, value)

        return fields

    def initial_remote_state(self) -> str:
        return self.status_to_remote_state(StoryStatus.DRAFT)

    def status_to_remote_state(self, status: StoryStatus | str) -> str:
        key = status.value if isinstance(status, StoryStatus) else str(status)
        mapped = self.config.states.outbound.get(key)
        if mapped:
            return mapped
        self.logger.warning(f"Unknown status '{key}', defaulting to '{DEFAULT_REMOTE_STATE}'")
        return DEFAULT_REMOTE_STATE

    def local_to_remote_priority(self, priority: Priority | str) -> int:
        key = priority.value if isinstance(priority, Priority) else str(priority)
        mapped = self.config.priorities.outbound.get(key)
        if mapped is not None:
            return mapped
        self.logger.warning(
            f"Unknown priority '{key}', defaulting to {DEFAULT_REMOTE_PRIORITY}"
        )
        return DEFAULT_REMOTE_PRIORITY

    def diff(self, before: Story, after: Story) -> list[PatchOperation]:
        """
        Patch operations turning the remote copy of ``before`` into ``after``.

        Emitted in a fixed order: status, priority, title, description, why,
        assignee. Identical stories produce no operations.
        """
        ops: list[PatchOperation] = []
        path = PatchOperation.field_path

        if before.status != after.status:
            ops.append(
                PatchOperation("replace", path(STATE_FIELD), self.status_to_remote_state(after.status))
            )
            if after.status is StoryStatus.CANCELLED:
                ops.extend(self.blocked_signal_operations(after))

        if before.priority != after.priority:
            ops.append(
                PatchOperation(
                    "replace", path(PRIORITY_FIELD), self.local_to_remote_priority(after.priority)
                )
            )

        if before.title != after.title:
            ops.append(
                PatchOperation("replace", path(self._core["title"].remote_field), after.title)
            )

        if before.description != after.description:
            ops.append(
                PatchOperation(
                    "replace",
                    path(self._core["description"].remote_field),
                    wrap_html(after.description),
                )
            )

        if before.why != after.why:
            ops.append(
                PatchOperation("replace", path(self._core["why"].remote_field), wrap_html(after.why))
            )

        if before.assigned_to != after.assigned_to:
            assignee_path = path(self._core["assigned_to"].remote_field)
            if after.assigned_to:
                ops.append(PatchOperation("replace", assignee_path, after.assigned_to))
            else:
                ops.append(PatchOperation("remove", assignee_path))

        return ops

    def blocked_signal_operations(self, story: Story) -> list[PatchOperation]:
        """
        Extra operations for a story moving to ``cancelled``.

        Hook for signalling "blocked" on the remote (a tag, for instance).
        Currently emits nothing.
        """
        return []

    def state_update_patch(self, state: str) -> list[PatchOperation]:
        return [PatchOperation("replace", PatchOperation.field_path(STATE_FIELD), state)]
