"""
Domain layer - entities and enums shared by every other layer.
"""

from .entities import Feature, RemoteLink, RemoteWorkItem, Story, new_id, utc_timestamp
from .enums import (
    ErrorCode,
    Priority,
    ProcessTemplate,
    StoryStatus,
    SyncDirection,
    Transform,
)


__all__ = [
    "ErrorCode",
    "Feature",
    "Priority",
    "ProcessTemplate",
    "RemoteLink",
    "RemoteWorkItem",
    "Story",
    "StoryStatus",
    "SyncDirection",
    "Transform",
    "new_id",
    "utc_timestamp",
]
