"""
Newest-wins merge of schedule fields between a linked Outlook/Welkin pair.

Only the schedule (all-day flag, day, start, end) is reconciled; the whole
record is treated as one unit and the side revised most recently wins.
"""

import logging
from datetime import timedelta

import pytz

from outlook_welkin_sync.dates import ensure_utc
from outlook_welkin_sync.dates import local_midnight
from outlook_welkin_sync.dates import resolve_timezone
from outlook_welkin_sync.dates import utc_offset
from outlook_welkin_sync.models import OutlookEvent
from outlook_welkin_sync.models import WelkinEvent

logger = logging.getLogger(__name__)


def welkin_is_authoritative(welkin_event: WelkinEvent, outlook_event: OutlookEvent) -> bool:
    """
    Welkin wins iff Outlook has no revision time, or Welkin's is strictly newer.

    Ties, and an Outlook timestamp with no Welkin timestamp, go to Outlook.
    """
    if outlook_event.last_modified is None:
        return True
    if welkin_event.updated_at is None:
        return False
    return ensure_utc(welkin_event.updated_at) > ensure_utc(outlook_event.last_modified)


def all_day_local_date(outlook_event: OutlookEvent, tz):
    """
    Calendar day an all-day Outlook event falls on for a user in ``tz``.

    All-day spans come back as UTC midnight-to-midnight, so west of UTC the
    start instant lands on the previous local day; use the end instead.
    """
    start = ensure_utc(outlook_event.start)
    end = ensure_utc(outlook_event.end) or start
    if utc_offset(tz, start) < timedelta(0):
        return end.astimezone(tz).date()
    return start.astimezone(tz).date()


def copy_welkin_schedule_to_outlook(
    welkin_event: WelkinEvent, outlook_event: OutlookEvent, tz_name: str | None
):
    outlook_event.is_all_day = welkin_event.is_all_day
    if welkin_event.is_all_day:
        tz = resolve_timezone(tz_name)
        day = welkin_event.day or ensure_utc(welkin_event.start).date()
        outlook_event.timezone = tz.zone
        outlook_event.start = local_midnight(day, tz)
        outlook_event.end = local_midnight(day + timedelta(days=1), tz)
    else:
        outlook_event.timezone = "UTC"
        outlook_event.start = ensure_utc(welkin_event.start)
        outlook_event.end = ensure_utc(welkin_event.end)


def copy_outlook_schedule_to_welkin(
    outlook_event: OutlookEvent, welkin_event: WelkinEvent, tz_name: str | None
):
    welkin_event.is_all_day = outlook_event.is_all_day
    if outlook_event.is_all_day:
        tz = resolve_timezone(tz_name)
        day = all_day_local_date(outlook_event, tz)
        welkin_event.day = day
        welkin_event.start = local_midnight(day, pytz.UTC)
        welkin_event.end = welkin_event.start + timedelta(days=1)
    else:
        welkin_event.day = None
        welkin_event.start = ensure_utc(outlook_event.start)
        welkin_event.end = ensure_utc(outlook_event.end)


def outlook_schedule(event: OutlookEvent) -> tuple:
    return (event.is_all_day, ensure_utc(event.start), ensure_utc(event.end))


def welkin_schedule(event: WelkinEvent) -> tuple:
    return (event.is_all_day, event.day, ensure_utc(event.start), ensure_utc(event.end))


def sync_records(
    welkin_event: WelkinEvent,
    outlook_event: OutlookEvent,
    tz_name: str | None,
    log: logging.Logger | None = None,
) -> bool:
    """
    Copy the newer side's schedule onto the other, in memory.

    Returns True when the Welkin event was changed (caller saves it to Welkin),
    False when the Outlook event was changed (caller saves it to Outlook).
    """
    log = log or logger
    if outlook_event.last_modified is None and welkin_event.updated_at is None:
        log.debug(
            f"Neither Welkin event {welkin_event.id} nor Outlook event "
            f"{outlook_event.ical_uid} has a revision time; keeping Welkin"
        )

    if welkin_is_authoritative(welkin_event, outlook_event):
        log.debug(f"Welkin event {welkin_event.id} is newer; updating Outlook")
        copy_welkin_schedule_to_outlook(welkin_event, outlook_event, tz_name)
        return False

    log.debug(f"Outlook event {outlook_event.ical_uid} is newer; updating Welkin")
    copy_outlook_schedule_to_welkin(outlook_event, welkin_event, tz_name)
    return True
