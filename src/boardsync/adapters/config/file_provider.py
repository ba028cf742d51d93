"""
File Configuration Provider - Load configuration from YAML or TOML files.

Supports:
- .boardsync.yaml / .boardsync.yml (YAML format)
- .boardsync.toml (TOML format)
- pyproject.toml under [tool.boardsync]

Example .boardsync.yaml:

    ado:
      organization: acme
      project: Web
      area_path: Web\\Payments

    sync:
      poll_interval: 60
      db_path: ~/.board/data.db
      process_template: scrum

    mapping:
      workItemTypes: [User Story, Bug]
      states:
        inbound:
          Resolved: review
"""

from __future__ import annotations

import logging
import tomllib
from pathlib import Path
from typing import Any

import yaml

from boardsync.core.domain.enums import ProcessTemplate
from boardsync.core.exceptions import ConfigError, ConfigFileError
from boardsync.core.ports.config_provider import (
    AppConfig,
    ConfigProviderPort,
    ConnectionConfig,
    FieldMapping,
    MappingConfig,
    SyncConfig,
)


# Config file names searched in order
CONFIG_FILE_NAMES = [
    ".boardsync.yaml",
    ".boardsync.yml",
    ".boardsync.toml",
]

# Flat CLI argument name -> dotted config key
CLI_KEYS = {
    "organization": "ado.organization",
    "project": "ado.project",
    "board": "ado.board",
    "area_path": "ado.area_path",
    "iteration_path": "ado.iteration_path",
    "base_url": "ado.base_url",
    "poll_interval": "sync.poll_interval",
    "batch_size": "sync.batch_size",
    "db_path": "sync.db_path",
    "process_template": "sync.process_template",
    "work_item_type": "sync.default_work_item_type",
}

_TRUE_VALUES = {"1", "true", "yes", "on"}


def find_config_file(start: Path | None = None) -> Path | None:
    """Return the first known config file in ``start`` (default: cwd)."""
    directory = start or Path.cwd()
    for name in CONFIG_FILE_NAMES:
        candidate = directory / name
        if candidate.is_file():
            return candidate

    pyproject = directory / "pyproject.toml"
    if pyproject.is_file():
        try:
            with pyproject.open("rb") as f:
                if "boardsync" in tomllib.load(f).get("tool", {}):
                    return pyproject
        except (OSError, tomllib.TOMLDecodeError):
            return None
    return None


def read_config_file(path: Path) -> dict[str, Any]:
    """
    Parse a YAML or TOML config file into a dict.

    Raises:
        ConfigFileError: If the file is missing or cannot be parsed.
    """
    if not path.is_file():
        raise ConfigFileError(f"Config file not found: {path}", file_path=path)

    try:
        if path.suffix == ".toml":
            with path.open("rb") as f:
                data = tomllib.load(f)
            if path.name == "pyproject.toml":
                data = data.get("tool", {}).get("boardsync", {})
        else:
            with path.open(encoding="utf-8") as f:
                data = yaml.safe_load(f) or {}
    except yaml.YAMLError as e:
        raise ConfigFileError(f"Invalid YAML syntax in {path}: {e}", file_path=path, cause=e) from e
    except tomllib.TOMLDecodeError as e:
        raise ConfigFileError(f"Invalid TOML syntax in {path}: {e}", file_path=path, cause=e) from e
    except OSError as e:
        raise ConfigFileError(f"Cannot read {path}: {e}", file_path=path, cause=e) from e

    if not isinstance(data, dict):
        raise ConfigFileError(f"Config file {path} must contain a mapping", file_path=path)
    return data


def set_dotted(data: dict[str, Any], key: str, value: Any) -> None:
    """Set ``a.b.c`` in a nested dict, creating intermediate sections."""
    *sections, leaf = key.split(".")
    target = data
    for section in sections:
        child = target.get(section)
        if not isinstance(child, dict):
            child = {}
            target[section] = child
        target = child
    target[leaf] = value


def get_dotted(data: dict[str, Any], key: str, default: Any = None) -> Any:
    value: Any = data
    for part in key.split("."):
        if not isinstance(value, dict) or part not in value:
            return default
        value = value[part]
    return value


def apply_cli_overrides(data: dict[str, Any], overrides: dict[str, Any] | None) -> None:
    """Apply flat CLI arguments on top of ``data``. ``None`` means not given."""
    for name, value in (overrides or {}).items():
        if value is None or name not in CLI_KEYS:
            continue
        set_dotted(data, CLI_KEYS[name], value)


# -------------------------------------------------------------------------
# Building AppConfig from raw data
# -------------------------------------------------------------------------


def _as_bool(value: Any, default: bool) -> bool:
    if value is None:
        return default
    if isinstance(value, bool):
        return value
    return str(value).strip().lower() in _TRUE_VALUES


def _as_number(value: Any, kind: type, key: str, default: Any) -> Any:
    if value is None or value == "":
        return default
    try:
        return kind(value)
    except (TypeError, ValueError) as e:
        raise ConfigError(f"Invalid value for {key}: {value!r}", cause=e) from e


def build_mapping_config(template: str, section: dict[str, Any] | None) -> MappingConfig:
    """
    Build the mapping for a process template, overlaid with the ``mapping``
    section of the config file.

    State and priority overrides are merged into the template defaults;
    ``fields`` and ``workItemTypes`` replace them.
    """
    mapping = MappingConfig.for_template(ProcessTemplate.from_string(template))
    if not section:
        return mapping

    states = section.get("states") or {}
    mapping.states.inbound.update({str(k): str(v) for k, v in (states.get("inbound") or {}).items()})
    mapping.states.outbound.update(
        {str(k): str(v) for k, v in (states.get("outbound") or {}).items()}
    )

    priorities = section.get("priorities") or {}
    mapping.priorities.inbound.update(
        {int(k): str(v) for k, v in (priorities.get("inbound") or {}).items()}
    )
    mapping.priorities.outbound.update(
        {str(k): int(v) for k, v in (priorities.get("outbound") or {}).items()}
    )

    fields = section.get("fields")
    if fields:
        mapping.fields = [FieldMapping.from_dict(entry) for entry in fields]

    types = section.get("workItemTypes", section.get("work_item_types"))
    if types:
        mapping.work_item_types = [str(t) for t in types]

    return mapping


def build_app_config(data: dict[str, Any]) -> AppConfig:
    """
    Build an AppConfig from merged raw configuration.

    Raises:
        ConfigError: If a numeric setting cannot be parsed.
    """
    ado = data.get("ado") or {}
    sync = data.get("sync") or {}
    defaults = SyncConfig()

    connection = ConnectionConfig(
        organization=str(ado.get("organization") or ""),
        project=str(ado.get("project") or ""),
        board=ado.get("board"),
        area_path=ado.get("area_path"),
        iteration_path=ado.get("iteration_path"),
        base_url=ado.get("base_url") or ConnectionConfig.base_url,
    )

    sync_config = SyncConfig(
        poll_interval=_as_number(
            sync.get("poll_interval"), float, "sync.poll_interval", defaults.poll_interval
        ),
        batch_size=_as_number(sync.get("batch_size"), int, "sync.batch_size", defaults.batch_size),
        inbound_enabled=_as_bool(sync.get("inbound"), defaults.inbound_enabled),
        outbound_enabled=_as_bool(sync.get("outbound"), defaults.outbound_enabled),
        db_path=str(sync.get("db_path") or defaults.db_path),
        default_work_item_type=str(
            sync.get("default_work_item_type") or defaults.default_work_item_type
        ),
        process_template=str(sync.get("process_template") or defaults.process_template),
    )

    mapping = build_mapping_config(sync_config.process_template, data.get("mapping"))
    return AppConfig(connection=connection, sync=sync_config, mapping=mapping)


class FileConfigProvider(ConfigProviderPort):
    """
    Configuration provider that loads from YAML or TOML files.

    When no path is given the current directory is searched for one of
    CONFIG_FILE_NAMES, then for a pyproject.toml with [tool.boardsync].
    """

    def __init__(
        self,
        config_path: Path | str | None = None,
        cli_overrides: dict[str, Any] | None = None,
    ):
        self._explicit_path = Path(config_path) if config_path else None
        self.config_file_path: Path | None = self._explicit_path or find_config_file()
        self._cli_overrides = cli_overrides or {}
        self._data: dict[str, Any] | None = None
        self.logger = logging.getLogger("FileConfigProvider")

    @property
    def name(self) -> str:
        if self.config_file_path:
            return f"File ({self.config_file_path.name})"
        return "File (none)"

    def raw(self) -> dict[str, Any]:
        """File contents without CLI overrides. Empty when no file was found."""
        if self._data is None:
            if self.config_file_path is None:
                self._data = {}
            else:
                self._data = read_config_file(self.config_file_path)
                self.logger.debug(f"Loaded config from {self.config_file_path}")
        return self._data

    def _merged(self) -> dict[str, Any]:
        data = _deep_copy(self.raw())
        apply_cli_overrides(data, self._cli_overrides)
        return data

    def load(self) -> AppConfig:
        return build_app_config(self._merged())

    def get(self, key: str, default: Any = None) -> Any:
        return get_dotted(self._merged(), key, default)

    def validate(self) -> list[str]:
        try:
            return self.load().validate()
        except ConfigError as e:
            return [e.message]


def _deep_copy(data: dict[str, Any]) -> dict[str, Any]:
    return {k: _deep_copy(v) if isinstance(v, dict) else v for k, v in data.items()}
