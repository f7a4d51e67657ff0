"""
Welkin REST API client.

Thin wrapper over ``requests``: every response is unwrapped from Welkin's
``{"data": ...}`` envelope and turned into a model from ``models``. HTTP and
network failures surface as TransientRemoteFailure; a GET that answers 404
returns None so callers can treat "missing" and "present" uniformly.
"""

import logging
import uuid
from datetime import datetime

import requests

from outlook_welkin_sync.dates import format_iso
from outlook_welkin_sync.dates import utc_now
from outlook_welkin_sync.models import DEFAULT_APPOINTMENT_TYPE
from outlook_welkin_sync.models import DEFAULT_MODALITY
from outlook_welkin_sync.models import WELKIN_CALENDAR_EVENT_RESOURCE
from outlook_welkin_sync.models import WELKIN_EVENT_NAMESPACE_PREFIX
from outlook_welkin_sync.models import SyncConfig
from outlook_welkin_sync.models import TransientRemoteFailure
from outlook_welkin_sync.models import WelkinCalendar
from outlook_welkin_sync.models import WelkinEvent
from outlook_welkin_sync.models import WelkinExternalId
from outlook_welkin_sync.models import WelkinPatient
from outlook_welkin_sync.models import WelkinWorker

CALENDAR_RESOURCE = "calendars"
EXTERNAL_ID_RESOURCE = "external_ids"
PATIENT_RESOURCE = "patients"
WORKER_RESOURCE = "workers"

REQUEST_TIMEOUT = 30
MAX_PAGES = 50


class WelkinClient:
    """Client for the Welkin calendar, worker and external-id endpoints."""

    def __init__(
        self,
        config: SyncConfig,
        logger: logging.Logger | None = None,
        session: requests.Session | None = None,
    ):
        self.api_url = config.welkin_api_url.rstrip("/") + "/"
        self.dummy_patient_id = config.dummy_patient_id
        self.logger = logger or logging.getLogger(__name__)
        self.session = session or requests.Session()
        self.session.headers.update(
            {
                "Authorization": f"Bearer {config.welkin_token}",
                "Cache-Control": "no-cache",
            }
        )
        # url -> model; lives for one sweep
        self._cache: dict[str, object] = {}

    # ------------------------------------------------------------------ #
    # HTTP plumbing                                                        #
    # ------------------------------------------------------------------ #

    def _request(self, method: str, url: str, params: dict | None = None, json: dict | None = None):
        try:
            response = self.session.request(
                method, url, params=params, json=json, timeout=REQUEST_TIMEOUT
            )
        except requests.exceptions.RequestException as e:
            raise TransientRemoteFailure(f"Welkin {method} {url} failed: {e}") from e

        if method == "GET" and response.status_code == 404:
            return None
        if response.status_code >= 400:
            raise TransientRemoteFailure(
                f"Welkin {method} {url} returned HTTP {response.status_code}: {response.text}",
                status_code=response.status_code,
            )
        if not response.content:
            return None
        return response.json()

    def _url(self, path: str, object_id: str | None = None) -> str:
        if object_id is None:
            return f"{self.api_url}{path}"
        return f"{self.api_url}{path}/{object_id}"

    def _retrieve(self, path: str, object_id: str, factory):
        url = self._url(path, object_id)
        if url in self._cache:
            return self._cache[url]
        body = self._request("GET", url)
        if not body or not body.get("data"):
            return None
        found = factory(body["data"])
        self._cache[url] = found
        return found

    def _create_or_update(self, path: str, payload: dict, object_id: str | None, factory):
        # POST creates, PUT onto an existing id overwrites it
        if object_id is None:
            body = self._request("POST", self._url(path), json=payload)
        else:
            body = self._request("PUT", self._url(path, object_id), json=payload)
        data = (body or {}).get("data") or {}
        saved = factory(data)
        if getattr(saved, "id", None):
            self._cache[self._url(path, saved.id)] = saved
        return saved

    def _delete(self, path: str, object_id: str):
        self._request("DELETE", self._url(path, object_id))
        self._cache.pop(self._url(path, object_id), None)

    def _search(self, path: str, params: dict | None = None) -> list[dict]:
        """GET a collection, following ``links.href.next`` until exhausted."""
        url = self._url(path)
        items: list[dict] = []
        pages = 0
        while url and pages < MAX_PAGES:
            body = self._request("GET", url, params=params if pages == 0 else None)
            pages += 1
            if not body:
                break
            items.extend(body.get("data") or [])
            url = (((body.get("links") or {}).get("href")) or {}).get("next")
        return items

    # ------------------------------------------------------------------ #
    # Events                                                               #
    # ------------------------------------------------------------------ #

    def get_event(self, event_id: str) -> WelkinEvent | None:
        return self._retrieve(WELKIN_CALENDAR_EVENT_RESOURCE, event_id, WelkinEvent.from_json)

    def create_or_update_event(
        self, event: WelkinEvent, existing_id: str | None = None
    ) -> WelkinEvent:
        saved = self._create_or_update(
            WELKIN_CALENDAR_EVENT_RESOURCE, event.to_json(), existing_id, WelkinEvent.from_json
        )
        self.logger.debug(f"Saved Welkin event {saved.id}")
        return saved

    def delete_event(self, event: WelkinEvent):
        self._delete(WELKIN_CALENDAR_EVENT_RESOURCE, event.id)
        self.logger.debug(f"Deleted Welkin event {event.id}")

    def events_updated_between(self, start: datetime, end: datetime) -> list[WelkinEvent]:
        """
        Welkin events updated inside [start, end].

        Welkin can't filter by patient, so placeholders and cancelled events are
        dropped here.
        """
        params = {"page[from]": format_iso(start), "page[to]": format_iso(end)}
        events = [
            WelkinEvent.from_json(item)
            for item in self._search(WELKIN_CALENDAR_EVENT_RESOURCE, params)
        ]
        for event in events:
            self._cache[self._url(WELKIN_CALENDAR_EVENT_RESOURCE, event.id)] = event
        return [e for e in events if not self.is_placeholder_event(e) and not e.is_cancelled]

    def generate_placeholder_event(self, calendar: WelkinCalendar) -> WelkinEvent:
        """An unsaved all-day event for today on ``calendar``, owned by the dummy patient."""
        return WelkinEvent(
            id=None,
            calendar_id=calendar.id,
            patient_id=self.dummy_patient_id,
            is_all_day=True,
            day=utc_now().date(),
            modality=DEFAULT_MODALITY,
            appointment_type=DEFAULT_APPOINTMENT_TYPE,
        )

    def is_placeholder_event(self, event: WelkinEvent) -> bool:
        return bool(event.patient_id) and event.patient_id == self.dummy_patient_id

    # ------------------------------------------------------------------ #
    # External ids (links and watermarks)                                  #
    # ------------------------------------------------------------------ #

    def find_external_ids(
        self,
        resource: str,
        welkin_id: str,
        namespace_prefix: str | None = None,
    ) -> list[WelkinExternalId]:
        params = {"resource": resource, "welkin_id": welkin_id}
        found = [WelkinExternalId.from_json(item) for item in self._search(EXTERNAL_ID_RESOURCE, params)]
        if namespace_prefix:
            found = [x for x in found if x.namespace.startswith(namespace_prefix)]
        return found

    def find_external_mapping_for(
        self, event: WelkinEvent, ical_uid: str | None = None
    ) -> WelkinExternalId | None:
        """The Welkin→Outlook pointer for ``event``, optionally pinned to one iCalUId."""
        prefix = WELKIN_EVENT_NAMESPACE_PREFIX + (ical_uid or "")
        for entry in self.find_external_ids(WELKIN_CALENDAR_EVENT_RESOURCE, event.id, prefix):
            if ical_uid is None or entry.namespace == prefix:
                return entry
        return None

    def find_external_event_mappings_updated_between(
        self, start: datetime, end: datetime
    ) -> list[WelkinExternalId]:
        params = {
            "resource": WELKIN_CALENDAR_EVENT_RESOURCE,
            "page[from]": format_iso(start),
            "page[to]": format_iso(end),
        }
        found = [WelkinExternalId.from_json(item) for item in self._search(EXTERNAL_ID_RESOURCE, params)]
        return [x for x in found if x.is_event_link]

    def create_or_update_external_id(
        self, entry: WelkinExternalId, existing_id: str | None = None
    ) -> WelkinExternalId:
        if not entry.external_id:
            entry.external_id = str(uuid.uuid4())
        return self._create_or_update(
            EXTERNAL_ID_RESOURCE, entry.to_json(), existing_id, WelkinExternalId.from_json
        )

    def delete_external_id(self, entry: WelkinExternalId):
        self._delete(EXTERNAL_ID_RESOURCE, entry.id)

    # ------------------------------------------------------------------ #
    # Calendars, workers, patients                                         #
    # ------------------------------------------------------------------ #

    def retrieve_calendar(self, calendar_id: str) -> WelkinCalendar | None:
        return self._retrieve(CALENDAR_RESOURCE, calendar_id, WelkinCalendar.from_json)

    def retrieve_worker(self, worker_id: str) -> WelkinWorker | None:
        return self._retrieve(WORKER_RESOURCE, worker_id, WelkinWorker.from_json)

    def retrieve_patient(self, patient_id: str) -> WelkinPatient | None:
        return self._retrieve(PATIENT_RESOURCE, patient_id, WelkinPatient.from_json)

    def calendar_for(self, worker: WelkinWorker) -> WelkinCalendar | None:
        key = f"{self._url(CALENDAR_RESOURCE)}?worker={worker.id}"
        if key in self._cache:
            return self._cache[key]
        body = self._request("GET", self._url(CALENDAR_RESOURCE), params={"worker": worker.id})
        data = (body or {}).get("data") or []
        if not data:
            return None
        found = WelkinCalendar.from_json(data[0])
        self._cache[key] = found
        return found

    def all_workers(self) -> list[WelkinWorker]:
        workers = [WelkinWorker.from_json(item) for item in self._search(WORKER_RESOURCE)]
        for worker in workers:
            self._cache[self._url(WORKER_RESOURCE, worker.id)] = worker
            if worker.email:
                self._cache[f"worker-email:{worker.email.lower()}"] = worker
        return workers

    def find_worker(self, email: str | None) -> WelkinWorker | None:
        if not email:
            return None
        key = f"worker-email:{email.lower()}"
        if key not in self._cache:
            self.all_workers()
        return self._cache.get(key)
