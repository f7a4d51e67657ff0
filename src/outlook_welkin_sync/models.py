"""
Pure data models — no HTTP or sqlite imports.
"""

from dataclasses import dataclass
from dataclasses import field
from datetime import date
from datetime import datetime
from pathlib import Path

from outlook_welkin_sync.dates import format_graph_datetime
from outlook_welkin_sync.dates import format_iso
from outlook_welkin_sync.dates import parse_graph_datetime
from outlook_welkin_sync.dates import parse_iso

DEFAULT_STATE_DB = Path.home() / ".local/share/outlook-welkin-sync-runs.db"
DEFAULT_CONFIG = Path.home() / ".config/outlook-welkin-sync.conf"

# Keys stored in the open extension we attach to Outlook events
OUTLOOK_EXTENSION_NAMESPACE = "sync.outlook.welkinhealth.com"
OUTLOOK_LINKED_WELKIN_EVENT_KEY = "LinkedWelkinEventId"
OUTLOOK_PLACEHOLDER_KEY = "IsOutlookPlaceHolderEvent"
OUTLOOK_LAST_SYNC_KEY = "LastSyncDateTime"

# Welkin external-id namespaces
WELKIN_EVENT_NAMESPACE_PREFIX = "sync_outlook_"
WELKIN_LAST_SYNC_NAMESPACE = "sync_last_datetime"
SYNC_NAMESPACE_DATE_SEPARATOR = ":::"

WELKIN_CALENDAR_EVENT_RESOURCE = "calendar_events"
WELKIN_CANCELLED_OUTCOME = "cancelled"
DEFAULT_MODALITY = "call"
DEFAULT_APPOINTMENT_TYPE = "intake_call"


class CalendarSyncError(Exception):
    """Base exception for calendar sync errors."""

    pass


class TransientRemoteFailure(CalendarSyncError):
    """Network or HTTP failure talking to either side; the record is retried next sweep."""

    def __init__(self, message: str, status_code: int | None = None):
        super().__init__(message)
        self.status_code = status_code


class LinkInconsistency(CalendarSyncError):
    """A resolved counterpart is not the record the link was expected to point at."""

    pass


class LinkCreationFailure(CalendarSyncError):
    """A pointer write did not round-trip; carries the identifiers that were being linked."""

    def __init__(self, message: str, welkin_event_id: str | None, outlook_ical_uid: str | None):
        super().__init__(message)
        self.welkin_event_id = welkin_event_id
        self.outlook_ical_uid = outlook_ical_uid


class SyncError(CalendarSyncError):
    """No owner or calendar could be resolved on the opposite side."""

    pass


@dataclass
class SyncConfig:
    """Configuration for a sync sweep."""

    graph_token: str
    welkin_token: str
    dummy_patient_id: str
    state_db_path: Path
    graph_api_url: str = "https://graph.microsoft.com/v1.0/"
    welkin_api_url: str = "https://api.welkinhealth.com/v1/"
    strategy: str = "name"  # 'name' or 'shared'
    shared_calendar_user: str | None = None
    shared_calendar_name: str | None = None
    default_timezone: str = "UTC"
    lookback_hours: float = 2.0
    cleanup_days: int = 30
    verbose: bool = False


@dataclass
class SyncStats:
    """Statistics for one sweep."""

    synced: int = 0
    created: int = 0
    skipped: int = 0
    deleted: int = 0
    errors: int = 0


@dataclass
class OutlookEvent:
    """An Outlook calendar event as seen through Graph."""

    id: str | None
    ical_uid: str | None
    start: datetime | None = None
    end: datetime | None = None
    is_all_day: bool = False
    timezone: str = "UTC"
    subject: str | None = None
    body: str | None = None
    last_modified: datetime | None = None
    is_cancelled: bool = False
    organizer: str | None = None
    owner: str | None = None  # user principal whose mailbox holds the event
    calendar_id: str | None = None
    extensions: dict = field(default_factory=dict)

    @property
    def is_placeholder(self) -> bool:
        return bool(self.extensions.get(OUTLOOK_PLACEHOLDER_KEY))

    @property
    def linked_welkin_event_id(self) -> str | None:
        value = self.extensions.get(OUTLOOK_LINKED_WELKIN_EVENT_KEY)
        return str(value) if value else None

    @classmethod
    def from_graph(cls, data: dict, owner: str | None = None, calendar_id: str | None = None):
        extensions = {}
        for ext in data.get("extensions") or []:
            if str(ext.get("id", "")).endswith(OUTLOOK_EXTENSION_NAMESPACE):
                extensions = {
                    k: v
                    for k, v in ext.items()
                    if k not in ("id", "extensionName") and not k.startswith("@odata")
                }
                break

        start = data.get("start") or {}
        end = data.get("end") or {}
        organizer = ((data.get("organizer") or {}).get("emailAddress") or {}).get("address")
        return cls(
            id=data.get("id"),
            ical_uid=data.get("iCalUId"),
            subject=data.get("subject"),
            is_all_day=bool(data.get("isAllDay")),
            timezone=start.get("timeZone") or "UTC",
            start=parse_graph_datetime(start.get("dateTime"), start.get("timeZone")),
            end=parse_graph_datetime(end.get("dateTime"), end.get("timeZone")),
            last_modified=parse_iso(data.get("lastModifiedDateTime")),
            is_cancelled=bool(data.get("isCancelled")),
            organizer=organizer,
            owner=owner,
            calendar_id=calendar_id,
            extensions=extensions,
        )

    def to_graph(self) -> dict:
        """Schedule fields in the shape Graph accepts for create and PATCH."""
        body = {
            "isAllDay": self.is_all_day,
            "start": {
                "dateTime": format_graph_datetime(self.start, self.timezone),
                "timeZone": self.timezone,
            },
            "end": {
                "dateTime": format_graph_datetime(self.end, self.timezone),
                "timeZone": self.timezone,
            },
        }
        if self.subject is not None:
            body["subject"] = self.subject
        if self.body is not None:
            body["body"] = {"contentType": "html", "content": self.body}
        return body


@dataclass
class WelkinEvent:
    """A Welkin calendar event."""

    id: str | None
    calendar_id: str | None
    patient_id: str | None = None
    is_all_day: bool = False
    day: date | None = None
    start: datetime | None = None
    end: datetime | None = None
    updated_at: datetime | None = None
    created_at: datetime | None = None
    outcome: str | None = None
    modality: str = DEFAULT_MODALITY
    appointment_type: str = DEFAULT_APPOINTMENT_TYPE
    ignore_unavailable_times: bool = False
    ignore_working_hours: bool = False

    @property
    def is_cancelled(self) -> bool:
        return self.outcome == WELKIN_CANCELLED_OUTCOME

    @classmethod
    def from_json(cls, data: dict):
        day = data.get("day")
        return cls(
            id=data.get("id"),
            calendar_id=data.get("calendar_id"),
            patient_id=data.get("patient_id"),
            is_all_day=bool(data.get("is_all_day")),
            day=date.fromisoformat(day) if day else None,
            start=parse_iso(data.get("start_time")),
            end=parse_iso(data.get("end_time")),
            updated_at=parse_iso(data.get("updated_at")),
            created_at=parse_iso(data.get("created_at")),
            outcome=data.get("outcome"),
            modality=data.get("modality") or DEFAULT_MODALITY,
            appointment_type=data.get("appointment_type") or DEFAULT_APPOINTMENT_TYPE,
            ignore_unavailable_times=bool(data.get("ignore_unavailable_times")),
            ignore_working_hours=bool(data.get("ignore_working_hours")),
        )

    def to_json(self) -> dict:
        data = {
            "calendar_id": self.calendar_id,
            "patient_id": self.patient_id,
            "is_all_day": self.is_all_day,
            "start_time": format_iso(self.start),
            "end_time": format_iso(self.end),
            "modality": self.modality,
            "appointment_type": self.appointment_type,
            "ignore_unavailable_times": self.ignore_unavailable_times,
            "ignore_working_hours": self.ignore_working_hours,
        }
        if self.id:
            data["id"] = self.id
        if self.day is not None:
            data["day"] = self.day.isoformat()
        if self.outcome is not None:
            data["outcome"] = self.outcome
        return data


@dataclass
class WelkinExternalId:
    """
    A Welkin external-id record.

    The same record type carries both our cross-references and our sync
    bookkeeping, told apart by namespace prefix:
    ``sync_outlook_<iCalUId>`` points a Welkin event at its Outlook
    counterpart, ``sync_last_datetime:::<ISO-8601>`` records when the event
    was last reconciled.
    """

    id: str | None
    resource: str
    namespace: str
    external_id: str | None
    welkin_id: str

    @property
    def is_event_link(self) -> bool:
        return bool(self.namespace) and self.namespace.startswith(WELKIN_EVENT_NAMESPACE_PREFIX)

    @property
    def is_last_sync(self) -> bool:
        return bool(self.namespace) and self.namespace.startswith(WELKIN_LAST_SYNC_NAMESPACE)

    @property
    def linked_ical_uid(self) -> str | None:
        if not self.is_event_link:
            return None
        return self.namespace[len(WELKIN_EVENT_NAMESPACE_PREFIX) :] or None

    @classmethod
    def from_json(cls, data: dict):
        return cls(
            id=data.get("id"),
            resource=data.get("resource") or WELKIN_CALENDAR_EVENT_RESOURCE,
            namespace=data.get("namespace") or "",
            external_id=data.get("external_id"),
            welkin_id=data.get("welkin_id"),
        )

    def to_json(self) -> dict:
        data = {
            "resource": self.resource,
            "namespace": self.namespace,
            "external_id": self.external_id,
            "welkin_id": self.welkin_id,
        }
        if self.id:
            data["id"] = self.id
        return data


@dataclass
class WelkinWorker:
    id: str
    email: str
    first_name: str | None = None
    last_name: str | None = None
    timezone: str | None = None

    @classmethod
    def from_json(cls, data: dict):
        return cls(
            id=data.get("id"),
            email=data.get("email") or "",
            first_name=data.get("first_name"),
            last_name=data.get("last_name"),
            timezone=data.get("timezone"),
        )


@dataclass
class WelkinCalendar:
    id: str
    worker_id: str | None

    @classmethod
    def from_json(cls, data: dict):
        return cls(id=data.get("id"), worker_id=data.get("worker_id"))


@dataclass
class WelkinPatient:
    id: str
    first_name: str | None = None
    last_name: str | None = None

    @classmethod
    def from_json(cls, data: dict):
        return cls(
            id=data.get("id"),
            first_name=data.get("first_name"),
            last_name=data.get("last_name"),
        )


@dataclass
class OutlookTarget:
    """Where a Welkin event's Outlook counterpart lives, and whose clock it follows."""

    user: str
    calendar_id: str | None = None
    timezone: str = "UTC"
    worker_email: str | None = None
