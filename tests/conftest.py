"""
Shared pytest fixtures and event builders.
"""

import logging
from datetime import datetime
from datetime import timedelta

import pytest
import pytz

from outlook_welkin_sync.db import RunHistory
from outlook_welkin_sync.models import OutlookEvent
from outlook_welkin_sync.models import SyncConfig
from outlook_welkin_sync.models import SyncStats
from outlook_welkin_sync.models import WelkinCalendar
from outlook_welkin_sync.models import WelkinEvent
from outlook_welkin_sync.models import WelkinPatient
from outlook_welkin_sync.models import WelkinWorker
from outlook_welkin_sync.sync.strategies import NameMatchedStrategy
from tests.fake_client import FakeOutlookClient
from tests.fake_client import FakeWelkinClient

DUMMY_PATIENT_ID = "dummy-patient"
PATIENT_ID = "patient-1"
WORKER_ID = "worker-ada"
WORKER_EMAIL = "ada@clinic.example"
WORKER_TIMEZONE = "America/New_York"
CALENDAR_ID = "calendar-ada"
OUTLOOK_USER = "ada@clinic.example"


def utc(year, month, day, hour=0, minute=0) -> datetime:
    return datetime(year, month, day, hour, minute, tzinfo=pytz.UTC)


def make_welkin_event(
    event_id: str,
    start: datetime | None = None,
    updated_at: datetime | None = None,
    patient_id: str | None = PATIENT_ID,
    calendar_id: str = CALENDAR_ID,
    **kwargs,
) -> WelkinEvent:
    """Return a one-hour timed Welkin appointment."""
    start = start or utc(2026, 3, 2, 15)
    return WelkinEvent(
        id=event_id,
        calendar_id=calendar_id,
        patient_id=patient_id,
        start=start,
        end=kwargs.pop("end", start + timedelta(hours=1)),
        updated_at=updated_at or utc(2026, 3, 1, 9),
        **kwargs,
    )


def make_outlook_event(
    event_id: str,
    ical_uid: str | None = None,
    start: datetime | None = None,
    last_modified: datetime | None = None,
    owner: str = OUTLOOK_USER,
    extensions: dict | None = None,
    **kwargs,
) -> OutlookEvent:
    """Return a one-hour timed Outlook event in ``owner``'s default calendar."""
    start = start or utc(2026, 3, 2, 15)
    return OutlookEvent(
        id=event_id,
        ical_uid=ical_uid or f"ical-{event_id}",
        start=start,
        end=kwargs.pop("end", start + timedelta(hours=1)),
        subject=kwargs.pop("subject", "Team meeting"),
        last_modified=last_modified or utc(2026, 3, 1, 9),
        owner=owner,
        extensions=dict(extensions or {}),
        **kwargs,
    )


@pytest.fixture
def db_path(tmp_path):
    return tmp_path / "test_runs.db"


@pytest.fixture
def run_history(db_path):
    with RunHistory(db_path) as history:
        yield history


@pytest.fixture
def sync_config(db_path):
    return SyncConfig(
        graph_token="graph-token",
        welkin_token="welkin-token",
        dummy_patient_id=DUMMY_PATIENT_ID,
        state_db_path=db_path,
        verbose=False,
    )


@pytest.fixture
def sync_logger():
    return logging.getLogger("test_sync")


@pytest.fixture
def sync_stats():
    return SyncStats()


@pytest.fixture
def worker():
    return WelkinWorker(
        id=WORKER_ID,
        email=WORKER_EMAIL,
        first_name="Ada",
        last_name="Lovelace",
        timezone=WORKER_TIMEZONE,
    )


@pytest.fixture
def welkin_client(worker):
    return FakeWelkinClient(
        dummy_patient_id=DUMMY_PATIENT_ID,
        workers=[worker],
        calendars=[WelkinCalendar(id=CALENDAR_ID, worker_id=WORKER_ID)],
        patients=[WelkinPatient(id=DUMMY_PATIENT_ID, first_name="Placeholder")],
    )


@pytest.fixture
def outlook_client():
    return FakeOutlookClient(users=[OUTLOOK_USER], domains={"clinic.example"})


@pytest.fixture
def strategy(sync_config, outlook_client, welkin_client, sync_logger):
    return NameMatchedStrategy(sync_config, outlook_client, welkin_client, sync_logger)
