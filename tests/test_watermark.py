"""
Tests for per-event "last synced" watermarks on both sides.
"""

from outlook_welkin_sync.models import OUTLOOK_LAST_SYNC_KEY
from outlook_welkin_sync.models import WelkinExternalId
from outlook_welkin_sync.watermark import LastSyncEntry
from outlook_welkin_sync.watermark import OutlookWatermark
from outlook_welkin_sync.watermark import WelkinWatermark
from outlook_welkin_sync.watermark import is_newer_than_watermark
from outlook_welkin_sync.watermark import last_sync_namespace
from tests.conftest import make_outlook_event
from tests.conftest import make_welkin_event
from tests.conftest import utc


def _entry(namespace: str, entry_id: str = "x1") -> WelkinExternalId:
    return WelkinExternalId(
        id=entry_id,
        resource="calendar_events",
        namespace=namespace,
        external_id="00000000-0000-0000-0000-000000000000",
        welkin_id="W1",
    )


class TestComparison:
    def test_revision_before_watermark_is_not_newer(self):
        assert not is_newer_than_watermark(utc(2026, 3, 1, 9), utc(2026, 3, 1, 10))

    def test_revision_equal_to_watermark_is_not_newer(self):
        assert not is_newer_than_watermark(utc(2026, 3, 1, 10), utc(2026, 3, 1, 10))

    def test_revision_after_watermark_is_newer(self):
        assert is_newer_than_watermark(utc(2026, 3, 1, 11), utc(2026, 3, 1, 10))

    def test_missing_watermark_is_newer(self):
        assert is_newer_than_watermark(utc(2026, 3, 1, 9), None)


class TestLastSyncEntry:
    def test_parses_namespace_timestamp(self):
        entry = LastSyncEntry(_entry(last_sync_namespace(utc(2026, 3, 1, 10))))
        assert entry.is_valid()
        assert entry.time == utc(2026, 3, 1, 10)
        assert entry.id == "x1"

    def test_namespace_format(self):
        assert (
            last_sync_namespace(utc(2026, 3, 1, 10))
            == "sync_last_datetime:::2026-03-01T10:00:00+00:00"
        )

    def test_malformed_timestamp_is_invalid(self):
        entry = LastSyncEntry(_entry("sync_last_datetime:::not-a-date"))
        assert not entry.is_valid()

    def test_link_record_is_not_a_watermark(self):
        entry = LastSyncEntry(_entry("sync_outlook_ical-O1"))
        assert not entry.is_valid()


class TestWelkinWatermark:
    def test_revision_0900_watermark_1000_is_not_stale(self, welkin_client, sync_logger):
        event = welkin_client.add_event(make_welkin_event("W1", updated_at=utc(2026, 3, 1, 9)))
        watermark = WelkinWatermark(welkin_client, sync_logger)
        watermark.stamp(event, None, utc(2026, 3, 1, 10))

        assert not watermark.is_stale(event, watermark.find(event))

    def test_revision_after_watermark_is_stale(self, welkin_client, sync_logger):
        event = welkin_client.add_event(make_welkin_event("W1", updated_at=utc(2026, 3, 1, 11)))
        watermark = WelkinWatermark(welkin_client, sync_logger)
        watermark.stamp(event, None, utc(2026, 3, 1, 10))

        assert watermark.is_stale(event, watermark.find(event))

    def test_stamp_overwrites_existing_entry(self, welkin_client, sync_logger):
        event = welkin_client.add_event(make_welkin_event("W1"))
        watermark = WelkinWatermark(welkin_client, sync_logger)
        first = watermark.stamp(event, None, utc(2026, 3, 1, 10))
        watermark.stamp(event, first.id, utc(2026, 3, 1, 12))

        entries = welkin_client.external_ids_for("W1")
        assert len(entries) == 1
        assert watermark.find(event).time == utc(2026, 3, 1, 12)


class TestOutlookWatermark:
    def test_revision_0900_watermark_1000_is_not_stale(self, outlook_client, sync_logger):
        event = make_outlook_event(
            "O1",
            last_modified=utc(2026, 3, 1, 9),
            extensions={OUTLOOK_LAST_SYNC_KEY: "2026-03-01T10:00:00+00:00"},
        )
        assert not OutlookWatermark(outlook_client, sync_logger).is_stale(event)

    def test_no_watermark_is_stale(self, outlook_client, sync_logger):
        event = make_outlook_event("O1", last_modified=utc(2026, 3, 1, 9))
        assert OutlookWatermark(outlook_client, sync_logger).is_stale(event)

    def test_unparseable_watermark_is_stale(self, outlook_client, sync_logger):
        event = make_outlook_event("O1", extensions={OUTLOOK_LAST_SYNC_KEY: "yesterday"})
        assert OutlookWatermark(outlook_client, sync_logger).is_stale(event)

    def test_stamp_writes_extension(self, outlook_client, sync_logger):
        event = outlook_client.add_event(make_outlook_event("O1"))
        OutlookWatermark(outlook_client, sync_logger).stamp(event, utc(2026, 3, 1, 10))

        stored = outlook_client.stored_event("O1")
        assert OutlookWatermark.find(stored) == utc(2026, 3, 1, 10)
