"""
Environment Configuration Provider - Layered configuration loading.

Precedence, lowest to highest:
1. Config file (.boardsync.yaml / .boardsync.toml / pyproject.toml)
2. .env file
3. Environment variables
4. CLI arguments

The PAT is deliberately not read from any of these sources; the daemon
receives it on stdin.
"""

from __future__ import annotations

import logging
import os
from pathlib import Path
from typing import Any

from dotenv import dotenv_values

from boardsync.core.exceptions import ConfigError
from boardsync.core.ports.config_provider import AppConfig, ConfigProviderPort

from .file_provider import (
    FileConfigProvider,
    apply_cli_overrides,
    build_app_config,
    get_dotted,
    set_dotted,
)


# Environment variable -> dotted config key. Later entries win, so the
# short ADO_ORG beats the long AZURE_DEVOPS_ORG when both are set.
ENV_KEYS = [
    ("AZURE_DEVOPS_ORG", "ado.organization"),
    ("ADO_ORG", "ado.organization"),
    ("ADO_PROJECT", "ado.project"),
    ("ADO_BOARD", "ado.board"),
    ("ADO_AREA_PATH", "ado.area_path"),
    ("ADO_ITERATION_PATH", "ado.iteration_path"),
    ("ADO_BASE_URL", "ado.base_url"),
    ("ADO_POLL_INTERVAL", "sync.poll_interval"),
    ("ADO_BATCH_SIZE", "sync.batch_size"),
    ("ADO_PROCESS_TEMPLATE", "sync.process_template"),
    ("ADO_WORK_ITEM_TYPE", "sync.default_work_item_type"),
    ("BOARD_DB_PATH", "sync.db_path"),
]


class EnvironmentConfigProvider(ConfigProviderPort):
    """
    Configuration provider that layers file, .env, environment and CLI sources.
    """

    def __init__(
        self,
        config_file: Path | str | None = None,
        env_file: Path | str | None = None,
        cli_overrides: dict[str, Any] | None = None,
        environ: dict[str, str] | None = None,
    ):
        """
        Initialize the provider.

        Args:
            config_file: Explicit config file (auto-detected in cwd when omitted)
            env_file: Path to a .env file (default: ./.env when present)
            cli_overrides: Flat CLI arguments, ``None`` values are ignored
            environ: Environment mapping (default: ``os.environ``)
        """
        self._file_provider = FileConfigProvider(config_path=config_file)
        self.env_file = Path(env_file) if env_file else Path.cwd() / ".env"
        self._cli_overrides = cli_overrides or {}
        self._environ = environ if environ is not None else os.environ
        self.logger = logging.getLogger("EnvironmentConfigProvider")

    @property
    def name(self) -> str:
        path = self._file_provider.config_file_path
        if path:
            return f"Environment + {path.name}"
        return "Environment"

    @property
    def config_file_path(self) -> Path | None:
        return self._file_provider.config_file_path

    def _dotenv(self) -> dict[str, str]:
        if not self.env_file.is_file():
            return {}
        self.logger.debug(f"Loading {self.env_file}")
        return {k: v for k, v in dotenv_values(self.env_file).items() if v is not None}

    def _merged(self) -> dict[str, Any]:
        data = build_layers(
            self._file_provider.raw(),
            self._dotenv(),
            dict(self._environ),
        )
        apply_cli_overrides(data, self._cli_overrides)
        return data

    def load(self) -> AppConfig:
        return build_app_config(self._merged())

    def get(self, key: str, default: Any = None) -> Any:
        return get_dotted(self._merged(), key, default)

    def validate(self) -> list[str]:
        try:
            config = self.load()
        except ConfigError as e:
            return [e.message]

        errors = []
        for error in config.validate():
            if error.startswith("Missing"):
                error += " - set it in the config file, the environment or on the command line"
            errors.append(error)
        return errors


def build_layers(
    file_data: dict[str, Any],
    dotenv: dict[str, str],
    environ: dict[str, str],
) -> dict[str, Any]:
    """Merge file data with .env values and then environment variables."""
    data = {k: dict(v) if isinstance(v, dict) else v for k, v in file_data.items()}
    for source in (dotenv, environ):
        for env_name, key in ENV_KEYS:
            value = source.get(env_name)
            if value:
                set_dotted(data, key, value)
    return data
