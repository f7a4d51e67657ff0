"""
Stateless helpers shared by the sync tasks and the sweep driver.
"""

import logging
from datetime import datetime
from datetime import timedelta

from outlook_welkin_sync.dates import ensure_utc
from outlook_welkin_sync.models import OutlookEvent
from outlook_welkin_sync.models import WelkinEvent
from outlook_welkin_sync.models import WelkinWorker

_logger = logging.getLogger(__name__)

# Overlap between consecutive sweeps so changes made during the previous run
# are not missed.
SWEEP_OVERLAP = timedelta(minutes=1)


def _local_part(value: str | None, separator: str) -> str | None:
    if not value or separator not in value:
        return None
    return value[: value.index(separator)] or None


def produce_principal_candidates(worker: WelkinWorker, domains) -> list[str]:
    """
    Outlook principals that could belong to ``worker``.

    The worker's email comes first, then the local part of the worker id and
    email (cut at ``@`` and at ``+``) combined with every tenant domain.
    Order is stable and duplicates are dropped.
    """
    candidates: list[str] = []
    if worker.email:
        candidates.append(worker.email.lower())

    local_parts = [
        _local_part(worker.id, "@"),
        _local_part(worker.id, "+"),
        _local_part(worker.email, "@"),
        _local_part(worker.email, "+"),
    ]
    for domain in sorted(domains):
        for local in local_parts:
            if local:
                candidate = f"{local}@{domain}".lower()
                if candidate not in candidates:
                    candidates.append(candidate)
    return candidates


def compute_lookback_start(
    now: datetime, last_run_started_at: datetime | None, default_hours: float
) -> datetime:
    """
    Start of the "recently changed" window for a sweep starting at ``now``.

    Covers everything since the previous run began (less a small overlap), or
    ``default_hours`` when there is no previous run.
    """
    now = ensure_utc(now)
    default_start = now - timedelta(hours=default_hours)
    if last_run_started_at is None:
        return default_start
    start = ensure_utc(last_run_started_at) - SWEEP_OVERLAP
    if start > now:
        _logger.warning("Previous run recorded in the future; using default lookback")
        return default_start
    return start


def describe_outlook_event(event: OutlookEvent) -> str:
    when = "all day" if event.is_all_day else f"{event.start} → {event.end}"
    return f"Outlook event {event.ical_uid} ({event.owner}, {when})"


def describe_welkin_event(event: WelkinEvent) -> str:
    when = f"all day {event.day}" if event.is_all_day else f"{event.start} → {event.end}"
    return f"Welkin event {event.id} (calendar {event.calendar_id}, {when})"
