"""
Tests for InboundSyncEngine.
"""

import threading

import pytest

from boardsync.core.domain import ErrorCode, RemoteLink, StoryStatus
from boardsync.core.exceptions import RateLimitError, RemoteServerError
from boardsync.application.sync import InboundSyncEngine


def _story(store, story_id):
    with store.session() as db:
        return db.find_story_by_id(story_id)


class TestSyncNow:
    def test_queries_with_configured_filter(self, inbound, tracker, mapper):
        inbound.sync_now()

        tracker.query_by_filter.assert_called_once_with(
            mapper.supported_work_item_types,
            area_path="Web\\Payments",
            iteration_path=None,
        )

    def test_creates_story_and_feature(self, inbound, tracker, store, work_item_factory):
        tracker.query_by_filter.return_value = [
            work_item_factory(201, state="Resolved", area_path="Web\\Team Alpha")
        ]

        result = inbound.sync_now()

        assert result.success
        assert result.items_processed == 1
        assert result.items_created == 1
        with store.session() as db:
            feature = db.find_feature_by_code("TEAMALPHA")
            story = db.find_story_by_remote_id(201)
        assert feature is not None
        assert feature.name == "Team Alpha"
        assert feature.extensions["adoAreaPath"] == "Web\\Team Alpha"
        assert feature.story_counter == 1
        assert story.code == "TEAMALPHA-001"
        assert story.feature_id == feature.id
        assert story.status is StoryStatus.REVIEW
        assert story.title == "Work item 201"
        assert story.extensions.remote_revision == 3

    def test_reuses_feature_for_same_area(self, inbound, tracker, store, work_item_factory):
        tracker.query_by_filter.return_value = [
            work_item_factory(301, area_path="Web\\Ops"),
            work_item_factory(302, area_path="Other\\Ops"),
        ]

        result = inbound.sync_now()

        assert result.items_created == 2
        with store.session() as db:
            codes = {db.find_story_by_remote_id(i).code for i in (301, 302)}
            feature = db.find_feature_by_code("OPS")
        assert codes == {"OPS-001", "OPS-002"}
        assert feature.story_counter == 2

    def test_updates_linked_story(self, inbound, tracker, store, add_story, work_item_factory):
        story = add_story(
            assigned_to="Ann",
            extensions=RemoteLink(
                remote_id=101,
                last_pushed_at="2024-01-01T00:00:00.000Z",
                extra={"custom": 1},
            ),
        )
        tracker.query_by_filter.return_value = [
            work_item_factory(101, state="Active", rev=9, **{"System.Title": "Renamed"})
        ]

        result = inbound.sync_now()

        assert result.items_updated == 1
        updated = _story(store, story.id)
        assert updated.title == "Renamed"
        assert updated.status is StoryStatus.IN_PROGRESS
        assert updated.priority.value == "P1"
        assert updated.assigned_to == "Ann"
        assert updated.extensions.remote_revision == 9
        assert updated.extensions.last_pushed_at == "2024-01-01T00:00:00.000Z"
        assert updated.extensions.extra == {"custom": 1}
        assert updated.updated_at >= story.updated_at

    def test_legacy_link_is_found(self, inbound, tracker, store, add_story, work_item_factory):
        story = add_story(extensions=RemoteLink(extra={"adoWorkItemId": 77}))
        tracker.query_by_filter.return_value = [work_item_factory(77, state="Closed")]

        result = inbound.sync_now()

        assert result.items_updated == 1
        assert _story(store, story.id).status is StoryStatus.COMPLETED

    def test_draft_story_is_never_touched(self, inbound, tracker, store, add_story, work_item_factory):
        story = add_story(status=StoryStatus.DRAFT, extensions=RemoteLink(remote_id=101))
        tracker.query_by_filter.return_value = [
            work_item_factory(101, state="Closed", **{"System.Title": "Remote title"})
        ]

        result = inbound.sync_now()

        assert result.items_skipped == 1
        assert result.items_updated == 0
        unchanged = _story(store, story.id)
        assert unchanged.status is StoryStatus.DRAFT
        assert unchanged.title == story.title
        assert unchanged.updated_at == story.updated_at

    def test_unsupported_type_is_skipped(self, inbound, tracker, store, work_item_factory):
        tracker.query_by_filter.return_value = [work_item_factory(5, work_item_type="Test Case")]

        result = inbound.sync_now()

        assert result.items_processed == 1
        assert result.items_skipped == 1
        with store.session() as db:
            assert db.find_story_by_remote_id(5) is None

    def test_item_failure_does_not_stop_run(
        self, inbound, tracker, store, mapper, monkeypatch, work_item_factory
    ):
        original = mapper.map_remote_to_local

        def flaky(item):
            if item.id == 2:
                raise ValueError("bad payload")
            return original(item)

        monkeypatch.setattr(mapper, "map_remote_to_local", flaky)
        tracker.query_by_filter.return_value = [
            work_item_factory(1, area_path="Web\\A"),
            work_item_factory(2, area_path="Web\\A"),
            work_item_factory(3, area_path="Web\\A"),
        ]

        result = inbound.sync_now()

        assert result.success
        assert result.items_processed == 3
        assert result.items_created == 2
        assert len(result.errors) == 1
        assert result.errors[0].remote_id == 2
        assert result.errors[0].code is ErrorCode.INTERNAL_ERROR
        assert inbound.get_status().last_error == "bad payload"

    def test_fetch_failure_fails_run(self, inbound, tracker):
        tracker.query_by_filter.side_effect = RemoteServerError("ADO down", status_code=503)

        result = inbound.sync_now()

        assert not result.success
        assert result.errors[0].remote_id == 0
        assert result.errors[0].code is ErrorCode.REMOTE_SERVER_ERROR
        assert result.completed_at is not None
        assert inbound.current_backoff == 0
        status = inbound.get_status()
        assert status.errors == 1
        assert status.last_error == "ADO down"

    def test_status_counters(self, inbound, tracker, work_item_factory):
        tracker.query_by_filter.return_value = [
            work_item_factory(11, area_path="Web\\A"),
            work_item_factory(12, area_path="Web\\A"),
        ]

        result = inbound.sync_now()
        status = inbound.get_status()

        assert status.last_run == result.completed_at
        assert status.items_synced == 2
        assert status.items_created == 2
        assert status.items_updated == 0
        assert status.errors == 0

    def test_status_is_a_snapshot(self, inbound):
        snapshot = inbound.get_status()
        snapshot.errors = 99
        assert inbound.get_status().errors == 0


class TestSingleFlight:
    def test_concurrent_run_is_rejected(self, inbound, tracker):
        inbound._run_lock.acquire()
        try:
            assert inbound.is_syncing
            result = inbound.sync_now()
        finally:
            inbound._run_lock.release()

        assert not result.success
        assert result.errors[0].error == "Sync already in progress"
        tracker.query_by_filter.assert_not_called()

    def test_overlapping_runs_with_slow_fetch(self, inbound, tracker):
        fetching = threading.Event()
        release = threading.Event()

        def slow_query(*args, **kwargs):
            fetching.set()
            release.wait(5.0)
            return []

        tracker.query_by_filter.side_effect = slow_query
        results = []
        worker = threading.Thread(target=lambda: results.append(inbound.sync_now()))
        worker.start()
        assert fetching.wait(5.0)

        results.append(inbound.sync_now())
        release.set()
        worker.join(5.0)

        assert [r.success for r in results] == [False, True]
        assert results[0].errors[0].error == "Sync already in progress"
        assert tracker.query_by_filter.call_count == 1

    def test_lock_released_after_failure(self, inbound, tracker):
        tracker.query_by_filter.side_effect = RuntimeError("boom")
        inbound.sync_now()

        assert not inbound.is_syncing
        tracker.query_by_filter.side_effect = None
        assert inbound.sync_now().success


class TestBackoff:
    def test_rate_limit_backoff_doubles_and_caps(self, inbound, tracker):
        tracker.query_by_filter.side_effect = RateLimitError("Too many requests", retry_after=1)
        seen = []
        for _ in range(8):
            result = inbound.sync_now()
            assert result.errors[0].code is ErrorCode.RATE_LIMITED
            seen.append(inbound.current_backoff)

        assert seen == [5, 10, 20, 40, 80, 160, 300, 300]
        assert inbound.next_delay() == 330

    def test_success_resets_backoff(self, inbound, tracker):
        tracker.query_by_filter.side_effect = RateLimitError("Too many requests")
        inbound.sync_now()
        assert inbound.current_backoff == 5

        tracker.query_by_filter.side_effect = None
        tracker.query_by_filter.return_value = []
        inbound.sync_now()

        assert inbound.current_backoff == 0
        assert inbound.next_delay() == 30


class TestSyncOne:
    def test_sync_one_creates_story(self, inbound, tracker, store, work_item_factory):
        item = work_item_factory(401, area_path="Web\\Solo")
        tracker.get_work_item.return_value = item

        assert inbound.sync_one(401) is item
        with store.session() as db:
            assert db.find_story_by_remote_id(401).code == "SOLO-001"

    def test_sync_one_unsupported_type(self, inbound, tracker, work_item_factory):
        tracker.get_work_item.return_value = work_item_factory(402, work_item_type="Test Plan")
        assert inbound.sync_one(402) is None

    def test_sync_one_failure_returns_none(self, inbound, tracker):
        tracker.get_work_item.side_effect = RemoteServerError("Work item 403 not found")

        assert inbound.sync_one(403) is None
        status = inbound.get_status()
        assert status.errors == 1
        assert status.last_error == "Work item 403 not found"


class TestFeatureCode:
    @pytest.mark.parametrize(
        "area_path,code",
        [
            ("Project\\Team Alpha", "TEAMALPHA"),
            ("Project", "PROJECT"),
            ("Project\\Payments-2", "PAYMENTS2"),
            ("Project\\Infrastructure Platform", "INFRASTRUC"),
            ("", "ADO"),
            (None, "ADO"),
            ("Project\\---", "ADO"),
        ],
    )
    def test_feature_code_for(self, area_path, code):
        assert InboundSyncEngine.feature_code_for(area_path) == code


@pytest.mark.slow
class TestPolling:
    def test_start_and_stop_polling(self, inbound, tracker):
        ran = threading.Event()

        def query(*args, **kwargs):
            ran.set()
            return []

        tracker.query_by_filter.side_effect = query

        thread = inbound.start_polling()
        try:
            assert thread is not None
            assert ran.wait(5.0)
            assert inbound.is_polling
            assert inbound.start_polling() is None
        finally:
            inbound.stop_polling(timeout=5.0)

        assert not inbound.is_polling
        assert not thread.is_alive()
        assert inbound.get_status().next_run is None

    def test_restart_after_timed_out_stop(self, inbound, tracker):
        fetching = threading.Event()
        release = threading.Event()

        def slow_query(*args, **kwargs):
            fetching.set()
            release.wait(5.0)
            return []

        tracker.query_by_filter.side_effect = slow_query

        first = inbound.start_polling()
        assert fetching.wait(5.0)
        inbound.stop_polling(timeout=0.01)
        assert first.is_alive()

        second = inbound.start_polling()
        try:
            assert second is not None
            release.set()
            first.join(5.0)
            assert not first.is_alive()
            assert second.is_alive()
        finally:
            release.set()
            inbound.stop_polling(timeout=5.0)

        assert not second.is_alive()

    def test_stop_without_start_is_noop(self, inbound):
        inbound.stop_polling()
        assert not inbound.is_polling
