"""
Tests for orphaned-placeholder cleanup on both sides.
"""

import pytest

from outlook_welkin_sync.models import OUTLOOK_LINKED_WELKIN_EVENT_KEY
from outlook_welkin_sync.models import OUTLOOK_PLACEHOLDER_KEY
from outlook_welkin_sync.models import OutlookEvent
from outlook_welkin_sync.models import WelkinExternalId
from outlook_welkin_sync.sync.cleanup import CleanupTask
from tests.conftest import DUMMY_PATIENT_ID
from tests.conftest import make_outlook_event
from tests.conftest import make_welkin_event
from tests.conftest import utc

WINDOW = (utc(2026, 3, 1), utc(2026, 3, 31))


def _placeholder(event_id: str, welkin_id: str | None, day: int) -> OutlookEvent:
    extensions = {OUTLOOK_PLACEHOLDER_KEY: True}
    if welkin_id is not None:
        extensions[OUTLOOK_LINKED_WELKIN_EVENT_KEY] = welkin_id
    return make_outlook_event(event_id, start=utc(2026, 3, day, 15), extensions=extensions)


def _map(welkin_client, welkin_id: str, ical_uid: str):
    welkin_client.create_or_update_external_id(
        WelkinExternalId(
            id=None,
            resource="calendar_events",
            namespace=f"sync_outlook_{ical_uid}",
            external_id=None,
            welkin_id=welkin_id,
        )
    )


@pytest.fixture
def cleanup_task(strategy, outlook_client, welkin_client, sync_logger, sync_stats):
    return CleanupTask(strategy, outlook_client, welkin_client, sync_logger, sync_stats)


class TestOutlookPlaceholders:
    @pytest.fixture(autouse=True)
    def seeded(self, outlook_client, welkin_client):
        welkin_client.add_event(make_welkin_event("W-live"))
        welkin_client.add_event(make_welkin_event("W-cancelled", outcome="cancelled"))
        welkin_client.add_event(make_welkin_event("W-flaky"))
        welkin_client.fail_gets.add("W-flaky")

        outlook_client.add_event(_placeholder("P-missing", "W-gone", 2))
        outlook_client.add_event(_placeholder("P-cancelled", "W-cancelled", 3))
        outlook_client.add_event(_placeholder("P-live", "W-live", 4))
        outlook_client.add_event(_placeholder("P-unlinked", None, 5))
        outlook_client.add_event(_placeholder("P-flaky", "W-flaky", 6))
        outlook_client.add_event(
            make_outlook_event(
                "N-user",
                start=utc(2026, 3, 7, 15),
                extensions={OUTLOOK_LINKED_WELKIN_EVENT_KEY: "W-gone"},
            )
        )

    def test_orphans_are_deleted(self, cleanup_task, outlook_client, sync_stats):
        deleted = cleanup_task.find_and_delete_orphaned_outlook_placeholders(*WINDOW)

        assert sorted(e.id for e in deleted) == ["P-cancelled", "P-flaky", "P-missing"]
        assert sorted(outlook_client.deletes) == ["P-cancelled", "P-flaky", "P-missing"]
        assert sync_stats.deleted == 3

    def test_live_and_unlinked_placeholders_survive(self, cleanup_task, outlook_client):
        cleanup_task.find_and_delete_orphaned_outlook_placeholders(*WINDOW)

        assert outlook_client.has_event("P-live")
        assert outlook_client.has_event("P-unlinked")

    def test_user_events_are_never_deleted(self, cleanup_task, outlook_client):
        cleanup_task.find_and_delete_orphaned_outlook_placeholders(*WINDOW)

        assert outlook_client.has_event("N-user")
        assert "N-user" not in outlook_client.deletes

    def test_events_outside_window_are_ignored(self, cleanup_task, outlook_client):
        cleanup_task.find_and_delete_orphaned_outlook_placeholders(utc(2026, 4, 1), utc(2026, 4, 30))
        assert outlook_client.deletes == []


class TestWelkinPlaceholders:
    @pytest.fixture(autouse=True)
    def seeded(self, outlook_client, welkin_client):
        outlook_client.add_event(make_outlook_event("O-live"))
        outlook_client.add_event(make_outlook_event("O-cancelled", is_cancelled=True))

        welkin_client.add_event(make_welkin_event("WP-gone", patient_id=DUMMY_PATIENT_ID))
        welkin_client.add_event(make_welkin_event("WP-live", patient_id=DUMMY_PATIENT_ID))
        welkin_client.add_event(make_welkin_event("WP-cancelled", patient_id=DUMMY_PATIENT_ID))
        welkin_client.add_event(make_welkin_event("W-real"))

        _map(welkin_client, "WP-gone", "ical-deleted")
        _map(welkin_client, "WP-live", "ical-O-live")
        _map(welkin_client, "WP-cancelled", "ical-O-cancelled")
        _map(welkin_client, "W-real", "ical-deleted-too")
        welkin_client.reset_counters()

    def test_orphans_are_deleted(self, cleanup_task, welkin_client, sync_stats):
        deleted = cleanup_task.find_and_delete_orphaned_welkin_placeholders(*WINDOW)

        assert sorted(e.id for e in deleted) == ["WP-cancelled", "WP-gone"]
        assert sorted(welkin_client.deletes) == ["WP-cancelled", "WP-gone"]
        assert sync_stats.deleted == 2

    def test_live_placeholder_and_real_events_survive(self, cleanup_task, welkin_client):
        cleanup_task.find_and_delete_orphaned_welkin_placeholders(*WINDOW)

        assert welkin_client.stored_event("WP-live") is not None
        assert welkin_client.stored_event("W-real") is not None
