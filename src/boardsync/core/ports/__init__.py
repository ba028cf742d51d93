"""
Ports - Abstract interfaces implemented by adapters.
"""

from .config_provider import (
    DEFAULT_WORK_ITEM_TYPES,
    AppConfig,
    ConfigProviderPort,
    ConnectionConfig,
    FieldMapping,
    MappingConfig,
    PriorityMapping,
    StateMapping,
    SyncConfig,
)
from .local_store import LocalStorePort, StoreSession
from .remote_tracker import PatchOperation, RemoteTrackerPort


__all__ = [
    "DEFAULT_WORK_ITEM_TYPES",
    "AppConfig",
    "ConfigProviderPort",
    "ConnectionConfig",
    "FieldMapping",
    "LocalStorePort",
    "MappingConfig",
    "PatchOperation",
    "PriorityMapping",
    "RemoteTrackerPort",
    "StateMapping",
    "StoreSession",
    "SyncConfig",
]
