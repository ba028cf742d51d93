"""
Local Store Port - Abstract interface for the local story board database.

Implementations:
- SqliteStore: the board's SQLite database

Engines open one session per operation:

    with store.session() as db:
        story = db.find_story_by_id(story_id)

The session is released on every exit path, including exceptions.
Adapters raise ``boardsync.core.exceptions.StoreError`` on failure.
"""

from abc import ABC, abstractmethod
from contextlib import AbstractContextManager

from boardsync.core.domain.entities import Feature, RemoteLink, Story


class StoreSession(ABC):
    """Queries and writes available within one store session."""

    # -------------------------------------------------------------------------
    # Stories
    # -------------------------------------------------------------------------

    @abstractmethod
    def find_story_by_id(self, story_id: str) -> Story | None: ...

    @abstractmethod
    def find_story_by_remote_id(self, remote_id: int) -> Story | None: ...

    @abstractmethod
    def find_stories_pending_push(self) -> list[Story]:
        """Linked stories whose ``updated_at`` is later than their last push."""
        ...

    @abstractmethod
    def insert_story(self, story: Story) -> None: ...

    @abstractmethod
    def update_story(self, story: Story) -> None:
        """Persist every mutable column of ``story``."""
        ...

    @abstractmethod
    def update_story_extensions(
        self, story_id: str, extensions: RemoteLink, touch: bool = False
    ) -> None:
        """
        Replace the extensions blob of a story.

        Args:
            story_id: Story to update.
            extensions: New extensions record.
            touch: Also set ``updated_at`` to now.
        """
        ...

    # -------------------------------------------------------------------------
    # Features
    # -------------------------------------------------------------------------

    @abstractmethod
    def find_feature_by_code(self, code: str) -> Feature | None: ...

    @abstractmethod
    def insert_feature(self, feature: Feature) -> None: ...

    @abstractmethod
    def increment_feature_counter(self, feature_id: str) -> int:
        """Atomically bump the story counter and return the new value."""
        ...


class LocalStorePort(ABC):
    """Factory for store sessions."""

    @abstractmethod
    def session(self) -> AbstractContextManager[StoreSession]:
        """Open a session scoped to a ``with`` block."""
        ...
