"""
Per-event "last synced" watermarks.

Welkin keeps its watermark as an external-id record with namespace
``sync_last_datetime:::<ISO-8601>``; Outlook keeps it as ``LastSyncDateTime``
in our open extension. In both cases an event whose revision time is not
after its watermark has nothing new to reconcile.
"""

import logging
import uuid
from datetime import datetime

from outlook_welkin_sync.dates import ensure_utc
from outlook_welkin_sync.dates import format_iso
from outlook_welkin_sync.dates import parse_iso
from outlook_welkin_sync.models import OUTLOOK_LAST_SYNC_KEY
from outlook_welkin_sync.models import SYNC_NAMESPACE_DATE_SEPARATOR
from outlook_welkin_sync.models import WELKIN_CALENDAR_EVENT_RESOURCE
from outlook_welkin_sync.models import WELKIN_LAST_SYNC_NAMESPACE
from outlook_welkin_sync.models import OutlookEvent
from outlook_welkin_sync.models import WelkinEvent
from outlook_welkin_sync.models import WelkinExternalId


def last_sync_namespace(as_of: datetime) -> str:
    return f"{WELKIN_LAST_SYNC_NAMESPACE}{SYNC_NAMESPACE_DATE_SEPARATOR}{format_iso(as_of)}"


class LastSyncEntry:
    """Read-only view of a Welkin watermark record."""

    def __init__(self, external_id: WelkinExternalId | None):
        self.external_id = external_id
        self.time = self._parse(external_id)

    @staticmethod
    def _parse(external_id: WelkinExternalId | None) -> datetime | None:
        if external_id is None or not external_id.namespace:
            return None
        prefix = WELKIN_LAST_SYNC_NAMESPACE + SYNC_NAMESPACE_DATE_SEPARATOR
        if not external_id.namespace.startswith(prefix):
            return None
        try:
            return parse_iso(external_id.namespace[len(prefix) :])
        except ValueError:
            return None

    @property
    def id(self) -> str | None:
        return self.external_id.id if self.external_id else None

    def is_valid(self) -> bool:
        return self.external_id is not None and self.time is not None


def is_newer_than_watermark(revised: datetime | None, recorded: datetime | None) -> bool:
    """False only when a watermark exists and is at or after the revision time."""
    if recorded is None or revised is None:
        return True
    return ensure_utc(recorded) < ensure_utc(revised)


class WelkinWatermark:
    def __init__(self, welkin_client, logger: logging.Logger):
        self.welkin_client = welkin_client
        self.logger = logger

    def find(self, event: WelkinEvent) -> LastSyncEntry | None:
        entries = self.welkin_client.find_external_ids(
            WELKIN_CALENDAR_EVENT_RESOURCE, event.id, WELKIN_LAST_SYNC_NAMESPACE
        )
        if not entries:
            return None
        parsed = [LastSyncEntry(x) for x in entries]
        valid = [x for x in parsed if x.is_valid()]
        if len(entries) > 1:
            self.logger.warning(
                f"Welkin event {event.id} has {len(entries)} watermark records, "
                "using the latest valid one"
            )
        if not valid:
            return parsed[0]
        return max(valid, key=lambda x: ensure_utc(x.time))

    def is_stale(self, event: WelkinEvent, entry: LastSyncEntry | None = None) -> bool:
        if entry is None or not entry.is_valid():
            return True
        return is_newer_than_watermark(event.updated_at, entry.time)

    def stamp(self, event: WelkinEvent, existing_id: str | None, as_of: datetime) -> WelkinExternalId:
        """Write ``as_of`` as the event's watermark, overwriting ``existing_id`` if given."""
        entry = WelkinExternalId(
            id=None,
            resource=WELKIN_CALENDAR_EVENT_RESOURCE,
            namespace=last_sync_namespace(as_of),
            external_id=str(uuid.uuid4()),
            welkin_id=event.id,
        )
        saved = self.welkin_client.create_or_update_external_id(entry, existing_id)
        self.logger.debug(f"Welkin event {event.id} synced as of {format_iso(as_of)}")
        return saved


class OutlookWatermark:
    def __init__(self, outlook_client, logger: logging.Logger):
        self.outlook_client = outlook_client
        self.logger = logger

    @staticmethod
    def find(event: OutlookEvent) -> datetime | None:
        value = event.extensions.get(OUTLOOK_LAST_SYNC_KEY)
        if not value:
            return None
        try:
            return parse_iso(str(value))
        except ValueError:
            return None

    def is_stale(self, event: OutlookEvent) -> bool:
        return is_newer_than_watermark(event.last_modified, self.find(event))

    def stamp(self, event: OutlookEvent, as_of: datetime):
        self.outlook_client.merge_extension(event, {OUTLOOK_LAST_SYNC_KEY: format_iso(as_of)})
        self.logger.debug(f"Outlook event {event.ical_uid} synced as of {format_iso(as_of)}")
