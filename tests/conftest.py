"""
Shared pytest fixtures for the boardsync test suite.

Fixture Categories:
- Domain: sample features, stories and work items
- Adapters: a temporary SQLite store
- Mocks: a RemoteTrackerPort double
- CLI: console
"""

from __future__ import annotations

from pathlib import Path
from typing import Any
from unittest.mock import Mock

import pytest

from boardsync.adapters.sqlite import SqliteStore
from boardsync.application.sync import FieldMapper, InboundSyncEngine, OutboundSyncEngine
from boardsync.cli.output import Console
from boardsync.core.domain import Feature, Priority, RemoteLink, RemoteWorkItem, Story, StoryStatus
from boardsync.core.ports.config_provider import ConnectionConfig, SyncConfig
from boardsync.core.ports.remote_tracker import RemoteTrackerPort


# =============================================================================
# Domain helpers
# =============================================================================


def make_work_item(
    work_item_id: int = 101,
    state: str = "Active",
    work_item_type: str = "User Story",
    area_path: str = "Project\\Payments",
    rev: int = 3,
    **fields: Any,
) -> RemoteWorkItem:
    """Build a RemoteWorkItem with sensible default fields."""
    data = {
        "System.Title": f"Work item {work_item_id}",
        "System.State": state,
        "System.WorkItemType": work_item_type,
        "System.AreaPath": area_path,
        "Microsoft.VSTS.Common.Priority": 2,
    }
    data.update(fields)
    return RemoteWorkItem(
        id=work_item_id,
        rev=rev,
        url=f"https://dev.azure.com/acme/Web/_apis/wit/workItems/{work_item_id}",
        fields=data,
    )


def make_story(feature: Feature, number: int = 1, **overrides: Any) -> Story:
    values: dict[str, Any] = {
        "code": Feature.story_code(feature.code, number),
        "feature_id": feature.id,
        "title": f"Story {number}",
        "description": "As a user I want things",
        "why": "Because",
        "status": StoryStatus.PLANNED,
        "priority": Priority.P1,
    }
    values.update(overrides)
    return Story(**values)


@pytest.fixture
def work_item_factory():
    """Factory for RemoteWorkItem instances."""
    return make_work_item


# =============================================================================
# Store
# =============================================================================


@pytest.fixture
def db_path(tmp_path: Path) -> Path:
    return tmp_path / "board" / "data.db"


@pytest.fixture
def store(db_path: Path) -> SqliteStore:
    """A fresh SQLite store in a temporary directory."""
    return SqliteStore(db_path)


@pytest.fixture
def feature(store: SqliteStore) -> Feature:
    """A persisted feature with code PAY."""
    feature = Feature(code="PAY", name="Payments")
    with store.session() as db:
        db.insert_feature(feature)
    return feature


@pytest.fixture
def add_story(store: SqliteStore, feature: Feature):
    """Insert a story under ``feature`` and return it."""
    counter = {"n": 0}

    def _add(**overrides: Any) -> Story:
        counter["n"] += 1
        story = make_story(feature, counter["n"], **overrides)
        with store.session() as db:
            db.insert_story(story)
        return story

    return _add


@pytest.fixture
def linked_story(add_story) -> Story:
    """A planned story linked to work item 101."""
    return add_story(extensions=RemoteLink(remote_id=101, remote_url="https://ado/101"))


# =============================================================================
# Engines
# =============================================================================


@pytest.fixture
def tracker() -> Mock:
    """A RemoteTrackerPort double."""
    mock = Mock(spec=RemoteTrackerPort)
    mock.test_connection.return_value = True
    mock.query_by_filter.return_value = []
    return mock


@pytest.fixture
def mapper() -> FieldMapper:
    return FieldMapper()


@pytest.fixture
def sync_config() -> SyncConfig:
    return SyncConfig(poll_interval=30.0)


@pytest.fixture
def connection() -> ConnectionConfig:
    return ConnectionConfig(organization="acme", project="Web", area_path="Web\\Payments")


@pytest.fixture
def inbound(tracker, store, mapper, sync_config, connection) -> InboundSyncEngine:
    return InboundSyncEngine(tracker, store, mapper, sync_config, connection)


@pytest.fixture
def outbound(tracker, store, mapper, sync_config) -> OutboundSyncEngine:
    return OutboundSyncEngine(tracker, store, mapper, sync_config)


# =============================================================================
# CLI
# =============================================================================


@pytest.fixture
def console() -> Console:
    """Console without colors."""
    return Console(color=False)
