"""
Tests for OutlookSyncTask: reconciling one Outlook event with Welkin.
"""

import pytest

from outlook_welkin_sync.links import OutlookToWelkinLink
from outlook_welkin_sync.links import WelkinToOutlookLink
from outlook_welkin_sync.models import OUTLOOK_LAST_SYNC_KEY
from outlook_welkin_sync.models import OUTLOOK_PLACEHOLDER_KEY
from outlook_welkin_sync.models import LinkCreationFailure
from outlook_welkin_sync.sync.outlook_task import OutlookSyncTask
from outlook_welkin_sync.sync.task_state import TaskState
from tests.conftest import CALENDAR_ID
from tests.conftest import DUMMY_PATIENT_ID
from tests.conftest import make_outlook_event
from tests.conftest import make_welkin_event
from tests.conftest import utc

# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _task(event, strategy, outlook_client, welkin_client, logger, stats=None) -> OutlookSyncTask:
    return OutlookSyncTask(event, strategy, outlook_client, welkin_client, logger, stats)


def _link(outlook_client, welkin_client, welkin_event, outlook_event, logger):
    OutlookToWelkinLink(
        outlook_client, welkin_client, outlook_event, welkin_event, logger
    ).create_if_missing()
    WelkinToOutlookLink(
        outlook_client, welkin_client, welkin_event, outlook_event, logger
    ).create_if_missing()
    outlook_client.reset_counters()
    welkin_client.reset_counters()


# ---------------------------------------------------------------------------
# Skips
# ---------------------------------------------------------------------------


class TestSkips:
    def test_placeholder_is_skipped(
        self, strategy, outlook_client, welkin_client, sync_logger, sync_stats
    ):
        event = outlook_client.add_event(
            make_outlook_event("O1", extensions={OUTLOOK_PLACEHOLDER_KEY: True})
        )
        task = _task(event, strategy, outlook_client, welkin_client, sync_logger, sync_stats)

        assert task.sync() is None
        assert task.state is TaskState.SKIPPED
        assert sync_stats.skipped == 1
        assert welkin_client.calls == []
        assert outlook_client.write_count == 0

    def test_revision_0900_watermark_1000_skips_without_remote_calls(
        self, strategy, outlook_client, welkin_client, sync_logger, sync_stats
    ):
        event = make_outlook_event(
            "O1",
            last_modified=utc(2026, 3, 1, 9),
            extensions={OUTLOOK_LAST_SYNC_KEY: "2026-03-01T10:00:00+00:00"},
        )
        task = _task(event, strategy, outlook_client, welkin_client, sync_logger, sync_stats)

        assert task.sync() is None
        assert task.state is TaskState.SKIPPED
        assert outlook_client.calls == []
        assert welkin_client.calls == []


# ---------------------------------------------------------------------------
# Missing counterpart
# ---------------------------------------------------------------------------


class TestCreatesPlaceholder:
    def test_new_event_gets_linked_welkin_placeholder(
        self, strategy, outlook_client, welkin_client, sync_logger, sync_stats
    ):
        event = outlook_client.add_event(make_outlook_event("O1", start=utc(2026, 3, 2, 15)))
        task = _task(event, strategy, outlook_client, welkin_client, sync_logger, sync_stats)

        placeholder = task.sync()

        assert task.state is TaskState.WATERMARK_UPDATED
        assert sync_stats.created == 1
        stored = welkin_client.stored_event(placeholder.id)
        assert stored.patient_id == DUMMY_PATIENT_ID
        assert stored.calendar_id == CALENDAR_ID
        assert stored.is_all_day is False
        assert stored.start == utc(2026, 3, 2, 15)
        assert stored.end == utc(2026, 3, 2, 16)

        outlook_side = outlook_client.stored_event("O1")
        assert outlook_side.linked_welkin_event_id == placeholder.id
        assert not outlook_side.is_placeholder
        assert OUTLOOK_LAST_SYNC_KEY in outlook_side.extensions

        links = [x for x in welkin_client.external_ids_for(placeholder.id) if x.is_event_link]
        assert [x.linked_ical_uid for x in links] == ["ical-O1"]

    def test_second_run_performs_no_writes(
        self, strategy, outlook_client, welkin_client, sync_logger
    ):
        event = outlook_client.add_event(make_outlook_event("O1"))
        _task(event, strategy, outlook_client, welkin_client, sync_logger).sync()

        unchanged = outlook_client.get_event("ada@clinic.example", "O1")
        outlook_client.reset_counters()
        welkin_client.reset_counters()

        task = _task(unchanged, strategy, outlook_client, welkin_client, sync_logger)
        assert task.sync() is None
        assert task.state is TaskState.SKIPPED
        assert outlook_client.write_count == 0
        assert welkin_client.write_count == 0

    def test_unknown_owner_aborts_without_watermark(
        self, strategy, outlook_client, welkin_client, sync_logger, sync_stats
    ):
        event = outlook_client.add_event(make_outlook_event("O1", owner="nobody@clinic.example"))
        task = _task(event, strategy, outlook_client, welkin_client, sync_logger, sync_stats)

        assert task.sync() is None
        assert task.state is TaskState.ABORTED
        assert sync_stats.errors == 1
        assert welkin_client.event_count == 0
        assert OUTLOOK_LAST_SYNC_KEY not in outlook_client.stored_event("O1").extensions


# ---------------------------------------------------------------------------
# Rollback
# ---------------------------------------------------------------------------


class TestRollback:
    def test_failed_welkin_pointer_deletes_placeholder_once(
        self, strategy, outlook_client, welkin_client, sync_logger, sync_stats
    ):
        welkin_client.fail_external_id_writes = True
        event = outlook_client.add_event(make_outlook_event("O1"))
        task = _task(event, strategy, outlook_client, welkin_client, sync_logger, sync_stats)

        with pytest.raises(LinkCreationFailure) as excinfo:
            task.sync()

        assert excinfo.value.outlook_ical_uid == "ical-O1"
        assert task.state is TaskState.ABORTED
        assert len(welkin_client.creates) == 1
        assert welkin_client.deletes == welkin_client.creates
        assert welkin_client.event_count == 0

        # the user's own event stays, with its pointer blanked and no watermark
        outlook_side = outlook_client.stored_event("O1")
        assert outlook_client.deletes == []
        assert outlook_side.linked_welkin_event_id is None
        assert OUTLOOK_LAST_SYNC_KEY not in outlook_side.extensions


# ---------------------------------------------------------------------------
# Linked pair
# ---------------------------------------------------------------------------


class TestLinkedPair:
    def test_newer_outlook_event_updates_welkin(
        self, strategy, outlook_client, welkin_client, sync_logger, sync_stats
    ):
        welkin_event = welkin_client.add_event(
            make_welkin_event("W1", start=utc(2026, 3, 2, 15), updated_at=utc(2026, 3, 1, 9))
        )
        outlook_event = outlook_client.add_event(
            make_outlook_event("O1", start=utc(2026, 3, 2, 18), last_modified=utc(2026, 3, 1, 11))
        )
        _link(outlook_client, welkin_client, welkin_event, outlook_event, sync_logger)

        current = outlook_client.get_event("ada@clinic.example", "O1")
        task = _task(current, strategy, outlook_client, welkin_client, sync_logger, sync_stats)
        synced = task.sync()

        assert synced.id == "W1"
        assert sync_stats.synced == 1
        assert welkin_client.updates == ["W1"]
        assert welkin_client.stored_event("W1").start == utc(2026, 3, 2, 18)
        assert outlook_client.updates == []

    def test_newer_welkin_event_updates_outlook(
        self, strategy, outlook_client, welkin_client, sync_logger, sync_stats
    ):
        welkin_event = welkin_client.add_event(
            make_welkin_event("W1", start=utc(2026, 3, 2, 15), updated_at=utc(2026, 3, 1, 12))
        )
        outlook_event = outlook_client.add_event(
            make_outlook_event("O1", start=utc(2026, 3, 2, 18), last_modified=utc(2026, 3, 1, 11))
        )
        _link(outlook_client, welkin_client, welkin_event, outlook_event, sync_logger)

        current = outlook_client.get_event("ada@clinic.example", "O1")
        task = _task(current, strategy, outlook_client, welkin_client, sync_logger, sync_stats)
        task.sync()

        assert outlook_client.updates == ["O1"]
        assert outlook_client.stored_event("O1").start == utc(2026, 3, 2, 15)
        assert welkin_client.updates == []

    def test_pair_already_in_step_is_left_untouched(
        self, strategy, outlook_client, welkin_client, sync_logger, sync_stats
    ):
        welkin_event = welkin_client.add_event(
            make_welkin_event("W1", start=utc(2026, 3, 2, 15), updated_at=utc(2026, 3, 1, 9))
        )
        outlook_event = outlook_client.add_event(
            make_outlook_event("O1", start=utc(2026, 3, 2, 15), last_modified=utc(2026, 3, 1, 11))
        )
        _link(outlook_client, welkin_client, welkin_event, outlook_event, sync_logger)

        current = outlook_client.get_event("ada@clinic.example", "O1")
        task = _task(current, strategy, outlook_client, welkin_client, sync_logger, sync_stats)
        synced = task.sync()

        assert synced.id == "W1"
        assert task.state is TaskState.IN_STEP
        assert sync_stats.synced == 0
        assert sync_stats.skipped == 1
        # no watermark either, it would count as a change on the Outlook side
        assert outlook_client.write_count == 0
        assert welkin_client.write_count == 0
        assert OUTLOOK_LAST_SYNC_KEY not in outlook_client.stored_event("O1").extensions
