"""
Sync Runtime - The process-wide sync state as one explicit object.

A runtime is built once from configuration and a PAT, started, and
stopped. Stopping releases the client and the engines; a stopped runtime
cannot be restarted, build a new one instead.
"""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass
from typing import Any

from boardsync import __version__
from boardsync.core.domain.entities import utc_timestamp
from boardsync.core.exceptions import AuthenticationError, BoardSyncError, ConfigError
from boardsync.core.ports.config_provider import AppConfig
from boardsync.core.ports.local_store import LocalStorePort
from boardsync.core.ports.remote_tracker import RemoteTrackerPort

from .sync import FieldMapper, InboundSyncEngine, OutboundSyncEngine


@dataclass
class RuntimeHealth:
    """Health summary of a running runtime."""

    status: str  # healthy | degraded | unhealthy
    uptime: int  # seconds
    remote_connected: bool
    version: str
    started_at: str | None

    def to_dict(self) -> dict[str, Any]:
        return {
            "status": self.status,
            "uptime": self.uptime,
            "adoConnected": self.remote_connected,
            "version": self.version,
            "startedAt": self.started_at,
        }


class SyncRuntime:
    """
    Owns the tracker, the store, the mapper and both engines.

    Engines receive their collaborators through the constructor; nothing
    here is module-level state.
    """

    # More errors than this on either engine reports the runtime as degraded
    DEGRADED_ERROR_THRESHOLD = 5

    def __init__(
        self,
        config: AppConfig,
        tracker: RemoteTrackerPort,
        store: LocalStorePort,
        mapper: FieldMapper | None = None,
    ):
        self.config = config
        self.tracker: RemoteTrackerPort | None = tracker
        self.store: LocalStorePort | None = store
        self.mapper: FieldMapper | None = mapper or FieldMapper(config.mapping)
        self.inbound: InboundSyncEngine | None = InboundSyncEngine(
            tracker, store, self.mapper, config.sync, config.connection
        )
        self.outbound: OutboundSyncEngine | None = OutboundSyncEngine(
            tracker, store, self.mapper, config.sync
        )
        self.logger = logging.getLogger("SyncRuntime")

        self._running = False
        self._stopped = False
        self._started_monotonic: float | None = None
        self.started_at: str | None = None

    @classmethod
    def build(
        cls,
        config: AppConfig,
        pat: str,
        tracker: RemoteTrackerPort | None = None,
        store: LocalStorePort | None = None,
    ) -> SyncRuntime:
        """
        Build a runtime from configuration.

        Args:
            config: Validated application configuration
            pat: Azure DevOps Personal Access Token (kept in memory only)
            tracker: Tracker to use instead of the Azure DevOps client
            store: Store to use instead of the SQLite database at ``db_path``

        Raises:
            ConfigError: If the configuration is invalid.
        """
        errors = config.validate()
        if errors:
            raise ConfigError("Invalid configuration: " + "; ".join(errors))

        if tracker is None:
            from boardsync.adapters.azure_devops import AzureDevOpsClient

            tracker = AzureDevOpsClient(
                organization=config.connection.organization,
                project=config.connection.project,
                pat=pat,
                base_url=config.connection.base_url,
                batch_size=config.sync.batch_size,
            )

        if store is None:
            from boardsync.adapters.sqlite import SqliteStore

            store = SqliteStore(config.sync.db_path)

        return cls(config, tracker, store)

    # -------------------------------------------------------------------------
    # Lifecycle
    # -------------------------------------------------------------------------

    @property
    def is_running(self) -> bool:
        return self._running

    def start(self) -> None:
        """
        Verify the connection and start inbound polling.

        Raises:
            AuthenticationError: If the connection test fails.
            BoardSyncError: If the runtime was already stopped.
        """
        if self._running:
            self.logger.info("Runtime already running")
            return
        if self._stopped or self.tracker is None or self.inbound is None:
            raise BoardSyncError("Runtime has been stopped, build a new one")

        conn = self.config.connection
        self.logger.info(f"Starting boardsync v{__version__} for {conn.organization}/{conn.project}")

        if not self.tracker.test_connection():
            raise AuthenticationError(
                "Failed to connect to Azure DevOps. "
                "Verify your PAT is valid and has appropriate permissions."
            )
        self.logger.info("ADO connection successful")

        if self.config.sync.inbound_enabled:
            self.inbound.start_polling()
        else:
            self.logger.info("Inbound sync disabled")

        self._running = True
        self._started_monotonic = time.monotonic()
        self.started_at = utc_timestamp()

    def stop(self, timeout: float | None = 10.0) -> None:
        """Stop polling and release the client and engines."""
        if self._stopped:
            return

        self.logger.info("Shutting down")
        if self.inbound is not None:
            self.inbound.stop_polling(timeout)
        if self.tracker is not None:
            self.tracker.close()

        self.tracker = None
        self.store = None
        self.mapper = None
        self.inbound = None
        self.outbound = None
        self._running = False
        self._stopped = True
        self.logger.info("Stopped")

    def __enter__(self) -> SyncRuntime:
        return self

    def __exit__(self, exc_type: type | None, exc_val: Exception | None, exc_tb: Any) -> None:
        self.stop()

    # -------------------------------------------------------------------------
    # Status
    # -------------------------------------------------------------------------

    def health(self) -> RuntimeHealth:
        uptime = 0
        if self._running and self._started_monotonic is not None:
            uptime = int(time.monotonic() - self._started_monotonic)

        if not self._running:
            status = "unhealthy"
        elif self._error_count() > self.DEGRADED_ERROR_THRESHOLD:
            status = "degraded"
        else:
            status = "healthy"

        return RuntimeHealth(
            status=status,
            uptime=uptime,
            remote_connected=self.tracker is not None,
            version=__version__,
            started_at=self.started_at,
        )

    def _error_count(self) -> int:
        inbound = self.inbound.get_status().errors if self.inbound else 0
        outbound = self.outbound.get_outbound_status().errors if self.outbound else 0
        return max(inbound, outbound)

    def get_state(self) -> dict[str, Any]:
        """Health plus both engines' status, ready for JSON."""
        return {
            "health": self.health().to_dict(),
            "inboundSync": self.inbound.get_status().to_dict() if self.inbound else None,
            "outboundSync": (
                self.outbound.get_outbound_status().to_dict() if self.outbound else None
            ),
        }
