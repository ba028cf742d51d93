"""
Outbound Sync - Push local story changes to Azure DevOps.

Supports:
- Pushing a story's status to its linked work item
- Creating a work item from an unlinked story (at most once per story)
- Pushing every story edited since its last push

Public methods never raise: every failure becomes an error code on the
returned result and bumps the engine's error counter.
"""

from __future__ import annotations

import logging
from dataclasses import replace

from boardsync.core.domain.entities import RemoteLink, Story, utc_timestamp
from boardsync.core.domain.enums import ErrorCode, StoryStatus, SyncDirection
from boardsync.core.ports.config_provider import SyncConfig
from boardsync.core.ports.local_store import LocalStorePort, StoreSession
from boardsync.core.ports.remote_tracker import RemoteTrackerPort

from .field_mapper import FieldMapper
from .results import (
    CreateWorkItemResult,
    OutboundSyncResult,
    OutboundSyncStatus,
    SyncResult,
    classify_error,
)


class OutboundSyncEngine:
    """Request-driven pusher from the local board to ADO."""

    def __init__(
        self,
        tracker: RemoteTrackerPort,
        store: LocalStorePort,
        mapper: FieldMapper,
        config: SyncConfig | None = None,
    ):
        self.tracker = tracker
        self.store = store
        self.mapper = mapper
        self.config = config or SyncConfig()
        self.logger = logging.getLogger("OutboundSync")
        self._status = OutboundSyncStatus()

    # -------------------------------------------------------------------------
    # State changes
    # -------------------------------------------------------------------------

    def push_state_change(
        self, story_id: str, new_status: StoryStatus | str
    ) -> OutboundSyncResult:
        """
        Push a story's status to its linked work item.

        If the work item is already in the target state nothing is written
        remotely and the result is still successful.
        """
        self.logger.info(f"Pushing state change for story {story_id} to '{_status_value(new_status)}'")
        try:
            with self.store.session() as db:
                story = db.find_story_by_id(story_id)
                if story is None:
                    return self._state_failure(
                        ErrorCode.STORY_NOT_FOUND, f"Story {story_id} not found", story_id=story_id
                    )
                if story.remote_id is None:
                    return self._state_failure(
                        ErrorCode.NO_REMOTE_LINK,
                        f"Story {story_id} is not linked to an ADO work item",
                        story_id=story_id,
                    )
                return self._push(db, story.remote_id, new_status, story)

        except Exception as e:
            return self._state_error(e, story_id=story_id)

    def push_state_change_by_remote_id(
        self, remote_id: int, new_status: StoryStatus | str
    ) -> OutboundSyncResult:
        """
        Push a status to a work item by its remote id.

        The local story is optional; when one is linked its push metadata is
        stamped.
        """
        self.logger.info(f"Pushing state change for work item {remote_id} to '{_status_value(new_status)}'")
        try:
            with self.store.session() as db:
                story = db.find_story_by_remote_id(remote_id)
                return self._push(db, remote_id, new_status, story)

        except Exception as e:
            return self._state_error(e, work_item_id=remote_id)

    def _push(
        self,
        db: StoreSession,
        remote_id: int,
        new_status: StoryStatus | str,
        story: Story | None,
    ) -> OutboundSyncResult:
        story_id = story.id if story else None
        new_state = self.mapper.status_to_remote_state(new_status)

        try:
            previous_state = self.tracker.get_work_item(remote_id).state
        except Exception as e:
            return self._state_error(e, work_item_id=remote_id, story_id=story_id)

        if previous_state == new_state:
            self.logger.info(f"Work item {remote_id} already in state '{new_state}', skipping")
            if story is not None:
                self._stamp_push(db, story, new_status)
            return OutboundSyncResult(
                success=True,
                work_item_id=remote_id,
                story_id=story_id,
                previous_state=previous_state,
                new_state=new_state,
            )

        try:
            self.tracker.update_state(remote_id, new_state)
        except Exception as e:
            return self._state_error(e, work_item_id=remote_id, story_id=story_id)

        if story is not None:
            self._stamp_push(db, story, new_status)

        self._status.last_push = utc_timestamp()
        self._status.items_pushed += 1
        self.logger.info(f"Pushed work item {remote_id} from '{previous_state}' to '{new_state}'")

        return OutboundSyncResult(
            success=True,
            work_item_id=remote_id,
            story_id=story_id,
            previous_state=previous_state,
            new_state=new_state,
        )

    def _stamp_push(self, db: StoreSession, story: Story, status: StoryStatus | str) -> None:
        db.update_story_extensions(story.id, story.extensions.with_push(utc_timestamp(), status))

    # -------------------------------------------------------------------------
    # Work item creation
    # -------------------------------------------------------------------------

    def create_work_item_from_story(
        self, story_id: str, work_item_type: str | None = None
    ) -> CreateWorkItemResult:
        """
        Create an ADO work item for an unlinked story and link them.

        A story that already carries a remote id is refused with
        ALREADY_LINKED before any remote call.
        """
        work_item_type = work_item_type or self.config.default_work_item_type
        self.logger.info(f"Creating {work_item_type} work item from story {story_id}")

        try:
            with self.store.session() as db:
                story = db.find_story_by_id(story_id)
                if story is None:
                    return self._create_failure(
                        story_id, ErrorCode.STORY_NOT_FOUND, f"Story {story_id} not found"
                    )
                if story.remote_id is not None:
                    return self._create_failure(
                        story_id,
                        ErrorCode.ALREADY_LINKED,
                        f"Story {story.code} is already linked to ADO work item "
                        f"{story.remote_id}. Use update instead.",
                    )

                fields = self.mapper.map_local_to_remote_fields(story)
                item = self.tracker.create_item(work_item_type, fields)

                link = RemoteLink(
                    remote_id=item.id,
                    remote_url=item.browse_url or None,
                    remote_last_sync_at=utc_timestamp(),
                    remote_revision=item.rev or None,
                    remote_work_item_type=work_item_type,
                )
                db.update_story_extensions(story.id, story.extensions.merge(link), touch=True)

        except Exception as e:
            code, message = classify_error(e)
            self.logger.error(f"Failed to create work item from story {story_id}: {message}")
            return self._create_failure(story_id, code, message)

        self._status.last_push = utc_timestamp()
        self._status.items_pushed += 1
        self.logger.info(f"Created work item {item.id} from story {story.code}")

        return CreateWorkItemResult(
            success=True,
            story_id=story_id,
            remote_work_item_id=item.id,
            url=item.browse_url or None,
        )

    # -------------------------------------------------------------------------
    # Batch push
    # -------------------------------------------------------------------------

    def push_pending_changes(self) -> SyncResult:
        """
        Push the status of every linked story edited since its last push.

        Per-story failures are collected in the result; only a failed scan
        marks the run as failed.
        """
        result = SyncResult(direction=SyncDirection.OUTBOUND)
        self.logger.info("Starting push of pending changes")

        try:
            with self.store.session() as db:
                pending = db.find_stories_pending_push()
        except Exception as e:
            code, message = classify_error(e)
            result.success = False
            result.add_error(0, message, code)
            self._record_failure(message)
            self.logger.error(f"Push of pending changes failed: {message}")
            return result.complete()

        self.logger.info(f"Found {len(pending)} stories with pending changes")

        for story in pending:
            if story.remote_id is None:
                continue
            result.items_processed += 1
            outcome = self.push_state_change_by_remote_id(story.remote_id, story.status)
            if outcome.success:
                result.items_updated += 1
            else:
                result.add_error(
                    story.remote_id,
                    outcome.error or "Unknown error",
                    outcome.error_code or ErrorCode.INTERNAL_ERROR,
                )

        self._refresh_pending_count()
        self.logger.info(
            f"Pending push completed: {result.items_updated} pushed, {len(result.errors)} errors"
        )
        return result.complete()

    # -------------------------------------------------------------------------
    # Status
    # -------------------------------------------------------------------------

    def get_outbound_status(self) -> OutboundSyncStatus:
        """Snapshot of the engine's counters with a fresh pending count."""
        self._refresh_pending_count()
        return replace(self._status)

    def _refresh_pending_count(self) -> None:
        try:
            with self.store.session() as db:
                self._status.pending_changes = len(db.find_stories_pending_push())
        except Exception as e:
            self.logger.warning(f"Could not refresh pending changes count: {e}")

    def reset_errors(self) -> None:
        self._status.errors = 0
        self._status.last_error = None

    # -------------------------------------------------------------------------
    # Failure helpers
    # -------------------------------------------------------------------------

    def _record_failure(self, message: str) -> None:
        self._status.errors += 1
        self._status.last_error = message

    def _state_failure(
        self,
        code: ErrorCode,
        message: str,
        work_item_id: int | None = None,
        story_id: str | None = None,
    ) -> OutboundSyncResult:
        self._record_failure(message)
        self.logger.warning(message)
        return OutboundSyncResult(
            success=False,
            work_item_id=work_item_id,
            story_id=story_id,
            error=message,
            error_code=code,
        )

    def _state_error(
        self,
        error: Exception,
        work_item_id: int | None = None,
        story_id: str | None = None,
    ) -> OutboundSyncResult:
        code, message = classify_error(error)
        return self._state_failure(code, message, work_item_id=work_item_id, story_id=story_id)

    def _create_failure(
        self, story_id: str, code: ErrorCode, message: str
    ) -> CreateWorkItemResult:
        self._record_failure(message)
        self.logger.warning(message)
        return CreateWorkItemResult(success=False, story_id=story_id, error=message, error_code=code)


def _status_value(status: StoryStatus | str) -> str:
    return status.value if isinstance(status, StoryStatus) else str(status)
