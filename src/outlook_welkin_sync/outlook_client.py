"""
Microsoft Graph client for Outlook calendars.

Every event read goes through ``$expand`` of our single open extension so the
sync metadata (linked Welkin id, placeholder flag, last sync time) arrives
with the event. Graph is asked to answer in UTC so the sync core never has
to interpret Windows timezone names.
"""

import logging
from datetime import datetime

import requests

from outlook_welkin_sync.dates import format_iso
from outlook_welkin_sync.merge import copy_welkin_schedule_to_outlook
from outlook_welkin_sync.models import OUTLOOK_EXTENSION_NAMESPACE
from outlook_welkin_sync.models import OUTLOOK_PLACEHOLDER_KEY
from outlook_welkin_sync.models import OutlookEvent
from outlook_welkin_sync.models import OutlookTarget
from outlook_welkin_sync.models import SyncConfig
from outlook_welkin_sync.models import TransientRemoteFailure
from outlook_welkin_sync.models import WelkinEvent
from outlook_welkin_sync.models import WelkinWorker

EXTENSION_ID = f"Microsoft.OutlookServices.OpenTypeExtension.{OUTLOOK_EXTENSION_NAMESPACE}"
EXPAND_EXTENSION = f"extensions($filter=id eq '{EXTENSION_ID}')"

PLACEHOLDER_SUBJECT = "Placeholder for appointment in Welkin"

REQUEST_TIMEOUT = 30
MAX_PAGES = 50


class OutlookClient:
    """Reads and writes Outlook events (and their open extension) through Graph."""

    def __init__(
        self,
        config: SyncConfig,
        logger: logging.Logger | None = None,
        session: requests.Session | None = None,
    ):
        self.api_url = config.graph_api_url.rstrip("/") + "/"
        self.logger = logger or logging.getLogger(__name__)
        self.session = session or requests.Session()
        self.session.headers.update(
            {
                "Authorization": f"Bearer {config.graph_token}",
                "Prefer": 'outlook.timezone="UTC"',
            }
        )
        self._users: dict[str, dict | None] = {}
        self._domains: set[str] | None = None
        self._calendar_ids: dict[tuple[str, str], str | None] = {}

    # ------------------------------------------------------------------ #
    # HTTP plumbing                                                        #
    # ------------------------------------------------------------------ #

    def _request(self, method: str, url: str, params: dict | None = None, json: dict | None = None):
        if not url.startswith("http"):
            url = f"{self.api_url}{url}"
        try:
            response = self.session.request(
                method, url, params=params, json=json, timeout=REQUEST_TIMEOUT
            )
        except requests.exceptions.RequestException as e:
            raise TransientRemoteFailure(f"Graph {method} {url} failed: {e}") from e

        if method == "GET" and response.status_code == 404:
            return None
        if response.status_code >= 400:
            raise TransientRemoteFailure(
                f"Graph {method} {url} returned HTTP {response.status_code}: {response.text}",
                status_code=response.status_code,
            )
        if not response.content:
            return None
        return response.json()

    def _list(self, url: str, params: dict | None = None) -> list[dict]:
        """GET a collection, following ``@odata.nextLink``."""
        items: list[dict] = []
        pages = 0
        while url and pages < MAX_PAGES:
            body = self._request("GET", url, params=params if pages == 0 else None)
            pages += 1
            if not body:
                break
            items.extend(body.get("value") or [])
            url = body.get("@odata.nextLink")
        return items

    @staticmethod
    def _calendar_path(user: str, calendar_id: str | None = None) -> str:
        if calendar_id:
            return f"users/{user}/calendars/{calendar_id}"
        return f"users/{user}/calendar"

    # ------------------------------------------------------------------ #
    # Directory                                                            #
    # ------------------------------------------------------------------ #

    def get_user(self, principal: str) -> dict | None:
        key = principal.lower()
        if key not in self._users:
            self._users[key] = self._request("GET", f"users/{principal}")
        return self._users[key]

    def all_domains(self) -> set[str]:
        if self._domains is None:
            self._domains = {d["id"] for d in self._list("domains") if d.get("id")}
        return self._domains

    def find_user_corresponding_to(self, worker: WelkinWorker) -> str | None:
        """Return the first Outlook principal derived from ``worker`` that exists."""
        from outlook_welkin_sync.sync.utils import produce_principal_candidates

        for candidate in produce_principal_candidates(worker, self.all_domains()):
            try:
                if self.get_user(candidate):
                    return candidate
            except TransientRemoteFailure as e:
                self.logger.debug(f"Lookup of Outlook user {candidate} failed: {e}")
        return None

    def calendar_id_by_name(self, user: str, name: str) -> str | None:
        key = (user.lower(), name)
        if key not in self._calendar_ids:
            found = None
            for calendar in self._list(f"users/{user}/calendars"):
                if calendar.get("name") == name:
                    found = calendar.get("id")
                    break
            if found is None:
                self.logger.warning(f"Calendar {name!r} not found for {user}")
            self._calendar_ids[key] = found
        return self._calendar_ids[key]

    # ------------------------------------------------------------------ #
    # Events                                                               #
    # ------------------------------------------------------------------ #

    def get_event(self, user: str, event_id: str) -> OutlookEvent | None:
        data = self._request(
            "GET", f"users/{user}/events/{event_id}", params={"$expand": EXPAND_EXTENSION}
        )
        return OutlookEvent.from_graph(data, owner=user) if data else None

    def get_event_by_ical_uid(
        self, user: str, ical_uid: str, calendar_id: str | None = None
    ) -> OutlookEvent | None:
        params = {"$filter": f"iCalUId eq '{ical_uid}'", "$expand": EXPAND_EXTENSION}
        found = self._list(f"{self._calendar_path(user, calendar_id)}/events", params)
        if not found:
            return None
        return OutlookEvent.from_graph(found[0], owner=user, calendar_id=calendar_id)

    def events_modified_between(
        self, user: str, start: datetime, end: datetime, calendar_id: str | None = None
    ) -> list[OutlookEvent]:
        params = {
            "$filter": (
                f"lastModifiedDateTime ge {format_iso(start)} "
                f"and lastModifiedDateTime le {format_iso(end)}"
            ),
            "$expand": EXPAND_EXTENSION,
        }
        return [
            OutlookEvent.from_graph(item, owner=user, calendar_id=calendar_id)
            for item in self._list(f"{self._calendar_path(user, calendar_id)}/events", params)
        ]

    def events_scheduled_between(
        self, user: str, start: datetime, end: datetime, calendar_id: str | None = None
    ) -> list[OutlookEvent]:
        params = {
            "startDateTime": format_iso(start),
            "endDateTime": format_iso(end),
            "$expand": EXPAND_EXTENSION,
        }
        return [
            OutlookEvent.from_graph(item, owner=user, calendar_id=calendar_id)
            for item in self._list(f"{self._calendar_path(user, calendar_id)}/calendarView", params)
        ]

    def create_event(self, event: OutlookEvent) -> OutlookEvent:
        data = self._request(
            "POST", f"{self._calendar_path(event.owner, event.calendar_id)}/events", json=event.to_graph()
        )
        created = OutlookEvent.from_graph(data or {}, owner=event.owner, calendar_id=event.calendar_id)
        self.logger.debug(f"Created Outlook event {created.ical_uid} for {event.owner}")
        return created

    def update_event(self, event: OutlookEvent) -> OutlookEvent:
        data = self._request("PATCH", f"users/{event.owner}/events/{event.id}", json=event.to_graph())
        self.logger.debug(f"Updated Outlook event {event.ical_uid}")
        if not data:
            return event
        updated = OutlookEvent.from_graph(data, owner=event.owner, calendar_id=event.calendar_id)
        updated.extensions = dict(event.extensions)
        return updated

    def delete_event(self, event: OutlookEvent):
        self._request("DELETE", f"users/{event.owner}/events/{event.id}")
        self.logger.debug(f"Deleted Outlook event {event.ical_uid}")

    def create_placeholder_from_welkin(
        self, welkin_event: WelkinEvent, target: OutlookTarget
    ) -> OutlookEvent:
        """
        Create an Outlook event mirroring ``welkin_event``'s schedule and flag it
        as ours. The link back to Welkin is written separately by the caller.
        """
        placeholder = OutlookEvent(
            id=None,
            ical_uid=None,
            subject=PLACEHOLDER_SUBJECT,
            body=f"See your Welkin calendar (user {target.worker_email or target.user}) for details.",
            owner=target.user,
            calendar_id=target.calendar_id,
        )
        copy_welkin_schedule_to_outlook(welkin_event, placeholder, target.timezone)
        created = self.create_event(placeholder)
        try:
            self.merge_extension(created, {OUTLOOK_PLACEHOLDER_KEY: True})
        except TransientRemoteFailure:
            # never leave an unflagged event behind
            self.delete_event(created)
            raise
        return created

    # ------------------------------------------------------------------ #
    # Open extension                                                       #
    # ------------------------------------------------------------------ #

    def read_extension(self, event: OutlookEvent) -> dict | None:
        """Current key/values of our extension on ``event``; None if it has none."""
        data = self._request("GET", f"users/{event.owner}/events/{event.id}/extensions/{EXTENSION_ID}")
        if data is None:
            return None
        return {
            k: v
            for k, v in data.items()
            if k not in ("id", "extensionName") and not k.startswith("@odata")
        }

    def merge_extension(self, event: OutlookEvent, values: dict) -> dict:
        """
        Merge ``values`` into our extension on ``event`` without dropping keys
        already stored there. Returns the merged bag and mirrors it onto
        ``event.extensions``.
        """
        existing = self.read_extension(event)
        merged = dict(existing or {})
        merged.update(values)
        if existing is None:
            payload = {
                "@odata.type": "microsoft.graph.openTypeExtension",
                "extensionName": OUTLOOK_EXTENSION_NAMESPACE,
                **merged,
            }
            self._request("POST", f"users/{event.owner}/events/{event.id}/extensions", json=payload)
        else:
            payload = {"@odata.type": "microsoft.graph.openTypeExtension", **merged}
            self._request(
                "PATCH", f"users/{event.owner}/events/{event.id}/extensions/{EXTENSION_ID}", json=payload
            )
        event.extensions = merged
        self.logger.debug(f"Set extension values {values} on Outlook event {event.ical_uid}")
        return merged
