"""
Configuration Provider Port - Abstract interface for configuration.

Implementations:
- FileConfigProvider: Load from YAML/TOML config files
- EnvironmentConfigProvider: Layer .env, environment variables and CLI
  overrides on top of the config file
"""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any

from boardsync.core.domain.enums import ProcessTemplate, Transform


logger = logging.getLogger("FieldMapping")


DEFAULT_WORK_ITEM_TYPES = [
    "User Story",
    "Product Backlog Item",
    "Bug",
    "Issue",
    "Task",
    "Epic",
    "Feature",
]

# The agile table also accepts scrum and basic state names inbound
AGILE_STATES = {
    "inbound": {
        "New": "draft",
        "Active": "in_progress",
        "Resolved": "review",
        "Closed": "completed",
        "Removed": "cancelled",
        "Approved": "planned",
        "Committed": "in_progress",
        "Done": "completed",
        "To Do": "draft",
        "Doing": "in_progress",
    },
    "outbound": {
        "draft": "New",
        "planned": "Approved",
        "in_progress": "Active",
        "review": "Resolved",
        "completed": "Closed",
        "cancelled": "Removed",
    },
}

SCRUM_STATES = {
    "inbound": {
        "New": "draft",
        "Approved": "planned",
        "Committed": "in_progress",
        "Done": "completed",
        "Removed": "cancelled",
    },
    "outbound": {
        "draft": "New",
        "planned": "Approved",
        "in_progress": "Committed",
        "review": "Committed",
        "completed": "Done",
        "cancelled": "Removed",
    },
}

BASIC_STATES = {
    "inbound": {
        "To Do": "draft",
        "Doing": "in_progress",
        "Done": "completed",
    },
    "outbound": {
        "draft": "To Do",
        "planned": "To Do",
        "in_progress": "Doing",
        "review": "Doing",
        "completed": "Done",
        "cancelled": "Done",
    },
}

TEMPLATE_STATES = {
    ProcessTemplate.AGILE: AGILE_STATES,
    ProcessTemplate.SCRUM: SCRUM_STATES,
    ProcessTemplate.BASIC: BASIC_STATES,
}


@dataclass
class ConnectionConfig:
    """Where the remote board lives."""

    organization: str
    project: str
    board: str | None = None
    area_path: str | None = None
    iteration_path: str | None = None
    base_url: str = "https://dev.azure.com"

    def is_valid(self) -> bool:
        """Check if configuration is valid."""
        return bool(self.organization and self.project)


@dataclass
class SyncConfig:
    """Configuration for sync operations."""

    poll_interval: float = 30.0  # seconds between inbound runs
    batch_size: int = 100  # ids per work item batch request
    inbound_enabled: bool = True
    outbound_enabled: bool = True
    db_path: str = "~/.board/data.db"
    default_work_item_type: str = "Issue"
    process_template: str = "agile"


@dataclass
class StateMapping:
    """Remote state name <-> local status value."""

    inbound: dict[str, str] = field(default_factory=lambda: dict(AGILE_STATES["inbound"]))
    outbound: dict[str, str] = field(default_factory=lambda: dict(AGILE_STATES["outbound"]))

    @classmethod
    def for_template(cls, template: ProcessTemplate) -> StateMapping:
        states = TEMPLATE_STATES[template]
        return cls(inbound=dict(states["inbound"]), outbound=dict(states["outbound"]))


@dataclass
class PriorityMapping:
    """Remote numeric priority (1 = most urgent) <-> local P0..P3."""

    inbound: dict[int, str] = field(
        default_factory=lambda: {1: "P0", 2: "P1", 3: "P2", 4: "P3"}
    )
    outbound: dict[str, int] = field(
        default_factory=lambda: {"P0": 1, "P1": 2, "P2": 3, "P3": 4}
    )


@dataclass
class FieldMapping:
    """
    Declarative mapping between a local field and a remote field.

    ``local_field`` is a story attribute (``title``, ``why``...) or a
    custom extension key written as ``extensions.<key>``.
    """

    local_field: str
    remote_field: str
    inbound_transform: Transform = Transform.PASSTHROUGH
    outbound_transform: Transform = Transform.PASSTHROUGH
    read_only: bool = False

    @property
    def is_extension(self) -> bool:
        return self.local_field.startswith("extensions.")

    @property
    def extension_key(self) -> str:
        return self.local_field.split(".", 1)[1]

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> FieldMapping:
        """
        Build from configuration, resolving transform keys.

        Unknown transform keys resolve to PASSTHROUGH and log a warning.
        """
        local_field = data.get("local_field") or data.get("localField") or ""
        remote_field = data.get("remote_field") or data.get("remoteField") or ""
        return cls(
            local_field=local_field,
            remote_field=remote_field,
            inbound_transform=_resolve_transform(
                data.get("inbound_transform", data.get("inboundTransform")), local_field
            ),
            outbound_transform=_resolve_transform(
                data.get("outbound_transform", data.get("outboundTransform")), local_field
            ),
            read_only=bool(data.get("read_only", data.get("readOnly", False))),
        )


def _resolve_transform(key: str | None, local_field: str) -> Transform:
    transform = Transform.from_key(key)
    if transform is None:
        logger.warning(f"Unknown transform '{key}' for field '{local_field}', using passthrough")
        return Transform.PASSTHROUGH
    return transform


def default_field_mappings() -> list[FieldMapping]:
    return [
        FieldMapping("title", "System.Title"),
        FieldMapping("description", "System.Description", inbound_transform=Transform.STRIP_HTML),
        FieldMapping(
            "why",
            "Microsoft.VSTS.Common.AcceptanceCriteria",
            inbound_transform=Transform.STRIP_HTML,
        ),
        FieldMapping(
            "assigned_to",
            "System.AssignedTo",
            inbound_transform=Transform.EXTRACT_DISPLAY_NAME,
        ),
    ]


@dataclass
class MappingConfig:
    """Everything the FieldMapper needs."""

    states: StateMapping = field(default_factory=StateMapping)
    priorities: PriorityMapping = field(default_factory=PriorityMapping)
    fields: list[FieldMapping] = field(default_factory=default_field_mappings)
    work_item_types: list[str] = field(default_factory=lambda: list(DEFAULT_WORK_ITEM_TYPES))

    @classmethod
    def for_template(cls, template: str | ProcessTemplate) -> MappingConfig:
        if isinstance(template, str):
            template = ProcessTemplate.from_string(template)
        return cls(states=StateMapping.for_template(template))


@dataclass
class AppConfig:
    """Complete application configuration."""

    connection: ConnectionConfig
    sync: SyncConfig = field(default_factory=SyncConfig)
    mapping: MappingConfig = field(default_factory=MappingConfig)

    def validate(self) -> list[str]:
        """
        Validate configuration.

        Returns:
            List of validation errors (empty if valid)
        """
        errors = []

        if not self.connection.organization:
            errors.append("Missing Azure DevOps organization (ADO_ORG)")
        if not self.connection.project:
            errors.append("Missing Azure DevOps project (ADO_PROJECT)")
        if self.sync.poll_interval < 1:
            errors.append("Poll interval must be at least 1 second")
        if not 1 <= self.sync.batch_size <= 200:
            errors.append("Batch size must be between 1 and 200")
        if not self.mapping.work_item_types:
            errors.append("At least one work item type must be configured")

        return errors


class ConfigProviderPort(ABC):
    """
    Abstract interface for configuration providers.

    Configuration can come from various sources:
    - YAML/TOML config files
    - .env files and environment variables
    - Command line arguments
    """

    @property
    @abstractmethod
    def name(self) -> str:
        """Get the provider name."""
        ...

    @abstractmethod
    def load(self) -> AppConfig:
        """
        Load configuration from source.

        Returns:
            Complete application configuration
        """
        ...

    @abstractmethod
    def get(self, key: str, default: Any = None) -> Any:
        """
        Get a specific configuration value.

        Args:
            key: Configuration key (dot notation supported)
            default: Default value if not found
        """
        ...

    @abstractmethod
    def validate(self) -> list[str]:
        """
        Validate loaded configuration.

        Returns:
            List of validation errors
        """
        ...
