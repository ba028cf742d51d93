"""
Application layer - sync engines and the runtime that wires them together.
"""

from .runtime import SyncRuntime
from .sync import FieldMapper, InboundSyncEngine, OutboundSyncEngine


__all__ = [
    "FieldMapper",
    "InboundSyncEngine",
    "OutboundSyncEngine",
    "SyncRuntime",
]
