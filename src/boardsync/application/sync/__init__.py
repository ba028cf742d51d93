"""
Sync engines - field mapping, inbound polling and outbound pushing.
"""

from .field_mapper import FieldMapper, MappedStory, apply_transform, strip_html, wrap_html
from .inbound import InboundSyncEngine, ItemOutcome
from .outbound import OutboundSyncEngine
from .results import (
    CreateWorkItemResult,
    InboundSyncStatus,
    OutboundSyncResult,
    OutboundSyncStatus,
    SyncItemError,
    SyncResult,
    classify_error,
)


__all__ = [
    "CreateWorkItemResult",
    "FieldMapper",
    "InboundSyncEngine",
    "InboundSyncStatus",
    "ItemOutcome",
    "MappedStory",
    "OutboundSyncEngine",
    "OutboundSyncResult",
    "OutboundSyncStatus",
    "SyncItemError",
    "SyncResult",
    "apply_transform",
    "classify_error",
    "strip_html",
    "wrap_html",
]
