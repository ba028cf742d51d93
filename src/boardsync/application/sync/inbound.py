"""
Inbound Sync - Pull Azure DevOps work items into the local board.

ADO wins for every field it owns, with one exception: a story whose local
status is ``draft`` has not been promoted yet and is never touched.

Runs are single-flight. A second ``sync_now`` while one is active is
rejected immediately rather than queued. Rate-limited runs push the next
poll further out with exponential backoff.
"""

from __future__ import annotations

import logging
import re
import threading
from dataclasses import replace
from datetime import datetime, timedelta, timezone
from enum import Enum

from boardsync.core.domain.entities import Feature, RemoteWorkItem, Story, utc_timestamp
from boardsync.core.domain.enums import SyncDirection
from boardsync.core.exceptions import RateLimitError
from boardsync.core.ports.config_provider import ConnectionConfig, SyncConfig
from boardsync.core.ports.local_store import LocalStorePort, StoreSession
from boardsync.core.ports.remote_tracker import RemoteTrackerPort

from .field_mapper import FieldMapper, MappedStory
from .results import InboundSyncStatus, SyncResult, classify_error


class ItemOutcome(Enum):
    """What happened to one work item during a run."""

    CREATED = "created"
    UPDATED = "updated"
    SKIPPED = "skipped"


class InboundSyncEngine:
    """
    Polls ADO and applies remote changes to the local store.

    Polling happens on a daemon thread started by ``start_polling``; the
    same ``sync_now`` entry point is safe to call from any other thread.
    """

    MIN_BACKOFF = 5.0  # seconds
    MAX_BACKOFF = 300.0
    DEFAULT_FEATURE_CODE = "ADO"
    FEATURE_CODE_LENGTH = 10

    def __init__(
        self,
        tracker: RemoteTrackerPort,
        store: LocalStorePort,
        mapper: FieldMapper,
        config: SyncConfig | None = None,
        connection: ConnectionConfig | None = None,
    ):
        self.tracker = tracker
        self.store = store
        self.mapper = mapper
        self.config = config or SyncConfig()
        self.area_path = connection.area_path if connection else None
        self.iteration_path = connection.iteration_path if connection else None
        self.logger = logging.getLogger("InboundSync")

        self.current_backoff = 0.0
        self._status = InboundSyncStatus()
        self._run_lock = threading.Lock()
        self._stop_event = threading.Event()
        self._thread: threading.Thread | None = None

    # -------------------------------------------------------------------------
    # Polling control
    # -------------------------------------------------------------------------

    @property
    def is_polling(self) -> bool:
        return self._thread is not None and not self._stop_event.is_set()

    @property
    def is_syncing(self) -> bool:
        return self._run_lock.locked()

    def start_polling(self) -> threading.Thread | None:
        """
        Sync immediately, then every ``poll_interval`` (+ backoff) seconds.

        Returns:
            The polling thread, or None if polling was already running.
        """
        if self.is_polling:
            self.logger.info("Polling already running")
            return None

        self.logger.info(f"Starting polling every {self.config.poll_interval:.0f}s")
        # One stop event per thread; a thread left running by a timed-out stop keeps its own
        self._stop_event = threading.Event()
        self._thread = threading.Thread(
            target=self._poll_loop, args=(self._stop_event,), name="inbound-sync", daemon=True
        )
        self._thread.start()
        return self._thread

    def stop_polling(self, timeout: float | None = None) -> None:
        """Stop polling and wait for an in-flight run to finish."""
        thread = self._thread
        if thread is None:
            return

        self.logger.info("Stopping polling")
        self._stop_event.set()
        if thread is not threading.current_thread():
            thread.join(timeout)
        self._thread = None
        self._status.next_run = None

    def next_delay(self) -> float:
        """Seconds until the next scheduled run."""
        return self.config.poll_interval + self.current_backoff

    def _poll_loop(self, stop_event: threading.Event) -> None:
        while not stop_event.is_set():
            self.sync_now()
            if stop_event.is_set():
                break
            delay = self.next_delay()
            if self.current_backoff:
                self.logger.warning(f"Rate limited, backing off for {self.current_backoff:.0f}s")
            self._status.next_run = utc_timestamp(
                datetime.now(timezone.utc) + timedelta(seconds=delay)
            )
            if stop_event.wait(delay):
                break

    # -------------------------------------------------------------------------
    # Sync operations
    # -------------------------------------------------------------------------

    def sync_now(self) -> SyncResult:
        """
        Run one full inbound sync.

        Never raises. Returns a failed result without touching the store or
        the remote if another run is in progress.
        """
        if not self._run_lock.acquire(blocking=False):
            now = utc_timestamp()
            rejected = SyncResult(
                direction=SyncDirection.INBOUND, success=False, started_at=now, completed_at=now
            )
            rejected.add_error(0, "Sync already in progress")
            return rejected

        try:
            return self._run()
        finally:
            self._run_lock.release()

    def _run(self) -> SyncResult:
        result = SyncResult(direction=SyncDirection.INBOUND)
        run_error: str | None = None

        try:
            self.logger.info("Fetching work items from ADO")
            items = self.tracker.query_by_filter(
                self.mapper.supported_work_item_types,
                area_path=self.area_path,
                iteration_path=self.iteration_path,
            )
            self.logger.info(f"Retrieved {len(items)} work items from ADO")

            with self.store.session() as db:
                for item in items:
                    result.items_processed += 1
                    try:
                        outcome = self._sync_item(db, item)
                    except Exception as e:
                        code, message = classify_error(e)
                        result.add_error(item.id, message, code)
                        self.logger.error(f"Error syncing work item {item.id}: {message}")
                        continue

                    if outcome is ItemOutcome.CREATED:
                        result.items_created += 1
                    elif outcome is ItemOutcome.UPDATED:
                        result.items_updated += 1
                    else:
                        result.items_skipped += 1

            self.current_backoff = 0.0

        except Exception as e:
            code, message = classify_error(e)
            result.success = False
            result.add_error(0, message, code)
            run_error = message

            if isinstance(e, RateLimitError):
                self._increase_backoff()
                self.logger.warning(f"Rate limited, backoff set to {self.current_backoff:.0f}s")
            self.logger.error(f"Sync failed: {message}")

        result.complete()
        self._record_run(result, run_error)
        self.logger.info(
            f"Sync completed: {result.items_processed} processed, "
            f"{result.items_created} created, {result.items_updated} updated, "
            f"{result.items_skipped} skipped, {len(result.errors)} errors"
        )
        return result

    def sync_one(self, remote_id: int) -> RemoteWorkItem | None:
        """
        Fetch and apply a single work item.

        Returns:
            The work item, or None if its type is not synced or the sync failed.
        """
        try:
            item = self.tracker.get_work_item(remote_id)
            if not self.mapper.is_type_supported(item.work_item_type):
                self.logger.info(
                    f"Work item type '{item.work_item_type}' not supported, skipping {remote_id}"
                )
                return None

            with self.store.session() as db:
                self._sync_item(db, item)
            return item

        except Exception as e:
            _, message = classify_error(e)
            self._status.errors += 1
            self._status.last_error = message
            self.logger.error(f"Failed to sync work item {remote_id}: {message}")
            return None

    def get_status(self) -> InboundSyncStatus:
        """Snapshot of the engine's counters."""
        return replace(self._status)

    # -------------------------------------------------------------------------
    # Per-item logic
    # -------------------------------------------------------------------------

    def _sync_item(self, db: StoreSession, item: RemoteWorkItem) -> ItemOutcome:
        if not self.mapper.is_type_supported(item.work_item_type):
            return ItemOutcome.SKIPPED

        mapped = self.mapper.map_remote_to_local(item)
        existing = db.find_story_by_remote_id(item.id)

        if existing is None:
            self._create_story(db, item, mapped)
            return ItemOutcome.CREATED

        if existing.status.is_local_only():
            self.logger.info(f"Skipping draft story {existing.code}: drafts are local-only")
            return ItemOutcome.SKIPPED

        self._update_story(db, existing, mapped)
        return ItemOutcome.UPDATED

    def _update_story(self, db: StoreSession, story: Story, mapped: MappedStory) -> None:
        story.title = mapped.title
        story.description = mapped.description
        story.why = mapped.why
        story.status = mapped.status
        story.priority = mapped.priority
        if mapped.assigned_to is not None:
            story.assigned_to = mapped.assigned_to
        story.extensions = story.extensions.merge(mapped.extensions)
        story.updated_at = utc_timestamp()

        db.update_story(story)
        self.logger.debug(f"Updated story {story.code} from work item {mapped.extensions.remote_id}")

    def _create_story(self, db: StoreSession, item: RemoteWorkItem, mapped: MappedStory) -> None:
        feature = self._get_or_create_feature(db, item.area_path)
        number = db.increment_feature_counter(feature.id)

        story = Story(
            code=Feature.story_code(feature.code, number),
            feature_id=feature.id,
            title=mapped.title,
            description=mapped.description,
            why=mapped.why,
            status=mapped.status,
            priority=mapped.priority,
            assigned_to=mapped.assigned_to,
            extensions=mapped.extensions,
        )
        db.insert_story(story)
        self.logger.info(f"Created story {story.code} from work item {item.id}")

    def _get_or_create_feature(self, db: StoreSession, area_path: str) -> Feature:
        code = self.feature_code_for(area_path)
        feature = db.find_feature_by_code(code)
        if feature is not None:
            return feature

        segments = [s for s in area_path.split("\\") if s]
        feature = Feature(
            code=code,
            name=segments[-1] if segments else code,
            description=f"Feature auto-created from ADO area path: {area_path}",
            extensions={"adoAreaPath": area_path, "adoCreatedFromSync": True},
        )
        db.insert_feature(feature)
        self.logger.info(f"Created feature {code} from area path '{area_path}'")
        return feature

    @classmethod
    def feature_code_for(cls, area_path: str | None) -> str:
        """
        Derive a feature code from an ADO area path.

        >>> InboundSyncEngine.feature_code_for("Project\\\\Team Alpha")
        'TEAMALPHA'
        """
        segments = [s for s in (area_path or "").split("\\") if s]
        last = segments[-1] if segments else ""
        code = re.sub(r"[^A-Z0-9]", "", last.upper())[: cls.FEATURE_CODE_LENGTH]
        return code or cls.DEFAULT_FEATURE_CODE

    # -------------------------------------------------------------------------
    # Status & backoff
    # -------------------------------------------------------------------------

    def _increase_backoff(self) -> None:
        if self.current_backoff <= 0:
            self.current_backoff = self.MIN_BACKOFF
        else:
            self.current_backoff = min(self.current_backoff * 2, self.MAX_BACKOFF)

    def _record_run(self, result: SyncResult, run_error: str | None) -> None:
        status = self._status
        status.last_run = result.completed_at
        status.items_synced = result.items_processed
        status.items_created = result.items_created
        status.items_updated = result.items_updated
        status.errors = len(result.errors)
        if run_error:
            status.last_error = run_error
        elif result.errors:
            status.last_error = result.errors[-1].error
