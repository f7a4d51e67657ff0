"""
Cross-references between Outlook and Welkin events.

Two pointers can tie a pair together:

- Outlook → Welkin: ``LinkedWelkinEventId`` in the Outlook event's open extension.
- Welkin → Outlook: a Welkin external-id record whose namespace is
  ``sync_outlook_<iCalUId>`` and whose external_id is a GUID derived from
  that iCalUId.

EventLink resolves pointers read-only; OutlookToWelkinLink and
WelkinToOutlookLink write one pointer each and can undo their own write.
"""

import logging
from enum import Enum

from outlook_welkin_sync.guids import derive_guid
from outlook_welkin_sync.models import OUTLOOK_LINKED_WELKIN_EVENT_KEY
from outlook_welkin_sync.models import WELKIN_CALENDAR_EVENT_RESOURCE
from outlook_welkin_sync.models import WELKIN_EVENT_NAMESPACE_PREFIX
from outlook_welkin_sync.models import LinkCreationFailure
from outlook_welkin_sync.models import LinkInconsistency
from outlook_welkin_sync.models import OutlookEvent
from outlook_welkin_sync.models import OutlookTarget
from outlook_welkin_sync.models import TransientRemoteFailure
from outlook_welkin_sync.models import WelkinEvent
from outlook_welkin_sync.models import WelkinExternalId


class Direction(Enum):
    OUTLOOK_TO_WELKIN = "outlook-to-welkin"
    WELKIN_TO_OUTLOOK = "welkin-to-outlook"


BOTH_DIRECTIONS = frozenset(Direction)


class EventLink:
    """
    Resolves the counterpart of an Outlook and/or Welkin event.

    ``target_*`` are the events we already hold; ``linked_*`` are the
    counterparts found by following pointers. A counterpart that doesn't match
    an already-known target is discarded.
    """

    def __init__(
        self,
        outlook_client,
        welkin_client,
        logger: logging.Logger,
        outlook_event: OutlookEvent | None = None,
        welkin_event: WelkinEvent | None = None,
        outlook_target: OutlookTarget | None = None,
    ):
        self.outlook_client = outlook_client
        self.welkin_client = welkin_client
        self.logger = logger
        self.target_outlook_event = outlook_event
        self.target_welkin_event = welkin_event
        self.outlook_target = outlook_target
        self.linked_outlook_event: OutlookEvent | None = None
        self.linked_welkin_event: WelkinEvent | None = None
        self.welkin_link_entry: WelkinExternalId | None = None

    def exists(self, directions=BOTH_DIRECTIONS) -> bool:
        """True iff every requested direction resolves to a matching counterpart."""
        for direction in directions:
            try:
                if direction is Direction.OUTLOOK_TO_WELKIN and self.linked_welkin_event is None:
                    self.linked_welkin_event = self._follow_outlook_pointer()
                elif direction is Direction.WELKIN_TO_OUTLOOK and self.linked_outlook_event is None:
                    self.linked_outlook_event = self._follow_welkin_pointer()
            except LinkInconsistency as e:
                self.logger.warning(f"Ignoring link: {e}")
            except TransientRemoteFailure as e:
                self.logger.warning(f"Could not resolve {direction.value} link: {e}")

        return all(
            (
                self.linked_welkin_event
                if direction is Direction.OUTLOOK_TO_WELKIN
                else self.linked_outlook_event
            )
            is not None
            for direction in directions
        )

    def _follow_outlook_pointer(self) -> WelkinEvent | None:
        outlook_event = self.target_outlook_event
        if outlook_event is None:
            return None
        welkin_id = outlook_event.linked_welkin_event_id
        if not welkin_id:
            return None

        found = self.welkin_client.get_event(welkin_id)
        if found is None:
            self.logger.info(
                f"Outlook event {outlook_event.ical_uid} points at missing Welkin event {welkin_id}"
            )
            return None
        expected = self.target_welkin_event
        if expected is not None and expected.id != found.id:
            raise LinkInconsistency(
                f"Outlook event {outlook_event.ical_uid} is linked to Welkin event {found.id}, "
                f"expected {expected.id}"
            )
        return found

    def _follow_welkin_pointer(self) -> OutlookEvent | None:
        welkin_event = self.target_welkin_event
        if welkin_event is None:
            return None
        known_uid = self.target_outlook_event.ical_uid if self.target_outlook_event else None
        entry = self.welkin_client.find_external_mapping_for(welkin_event, known_uid)
        if entry is None or not entry.linked_ical_uid:
            return None

        target = self.outlook_target
        if target is None and self.target_outlook_event is not None:
            target = OutlookTarget(
                user=self.target_outlook_event.owner,
                calendar_id=self.target_outlook_event.calendar_id,
            )
        if target is None:
            self.logger.debug(f"No Outlook mailbox known for Welkin event {welkin_event.id}")
            return None

        found = self.outlook_client.get_event_by_ical_uid(
            target.user, entry.linked_ical_uid, target.calendar_id
        )
        if found is None:
            self.logger.info(
                f"Welkin event {welkin_event.id} points at missing Outlook event "
                f"{entry.linked_ical_uid}"
            )
            return None
        if known_uid is not None and found.ical_uid != known_uid:
            raise LinkInconsistency(
                f"Welkin event {welkin_event.id} is linked to Outlook event {found.ical_uid}, "
                f"expected {known_uid}"
            )
        self.welkin_link_entry = entry
        return found


class OutlookToWelkinLink:
    """Writes ``LinkedWelkinEventId`` onto an Outlook event."""

    def __init__(
        self,
        outlook_client,
        welkin_client,
        outlook_event: OutlookEvent,
        welkin_event: WelkinEvent,
        logger: logging.Logger,
    ):
        self.outlook_client = outlook_client
        self.welkin_client = welkin_client
        self.outlook_event = outlook_event
        self.welkin_event = welkin_event
        self.logger = logger
        self.written = False

    def create_if_missing(self) -> bool:
        """Returns True if a pointer was written, False if one already existed."""
        link = EventLink(
            self.outlook_client,
            self.welkin_client,
            self.logger,
            outlook_event=self.outlook_event,
            welkin_event=self.welkin_event,
        )
        if link.exists({Direction.OUTLOOK_TO_WELKIN}):
            self.logger.debug(f"Outlook event {self.outlook_event.ical_uid} already linked")
            return False

        self.written = True
        self.outlook_client.merge_extension(
            self.outlook_event, {OUTLOOK_LINKED_WELKIN_EVENT_KEY: self.welkin_event.id}
        )
        stored = self.outlook_client.read_extension(self.outlook_event) or {}
        if stored.get(OUTLOOK_LINKED_WELKIN_EVENT_KEY) != self.welkin_event.id:
            raise LinkCreationFailure(
                f"Outlook event {self.outlook_event.ical_uid} did not keep its link to "
                f"Welkin event {self.welkin_event.id}",
                welkin_event_id=self.welkin_event.id,
                outlook_ical_uid=self.outlook_event.ical_uid,
            )
        self.logger.info(
            f"Linked Outlook event {self.outlook_event.ical_uid} → Welkin event {self.welkin_event.id}"
        )
        return True

    def rollback(self):
        """Blank the pointer this link wrote. The previous value is not restored."""
        if not self.written:
            return
        self.outlook_client.merge_extension(self.outlook_event, {OUTLOOK_LINKED_WELKIN_EVENT_KEY: ""})
        self.written = False
        self.logger.info(f"Cleared Welkin link on Outlook event {self.outlook_event.ical_uid}")


class WelkinToOutlookLink:
    """Writes a ``sync_outlook_<iCalUId>`` external-id record for a Welkin event."""

    def __init__(
        self,
        outlook_client,
        welkin_client,
        welkin_event: WelkinEvent,
        outlook_event: OutlookEvent,
        logger: logging.Logger,
    ):
        self.outlook_client = outlook_client
        self.welkin_client = welkin_client
        self.welkin_event = welkin_event
        self.outlook_event = outlook_event
        self.logger = logger
        self.created_entry: WelkinExternalId | None = None

    def create_if_missing(self) -> bool:
        """Returns True if a pointer was written, False if one already existed."""
        link = EventLink(
            self.outlook_client,
            self.welkin_client,
            self.logger,
            outlook_event=self.outlook_event,
            welkin_event=self.welkin_event,
        )
        if link.exists({Direction.WELKIN_TO_OUTLOOK}):
            self.logger.debug(f"Welkin event {self.welkin_event.id} already linked")
            return False

        ical_uid = self.outlook_event.ical_uid
        entry = WelkinExternalId(
            id=None,
            resource=WELKIN_CALENDAR_EVENT_RESOURCE,
            namespace=WELKIN_EVENT_NAMESPACE_PREFIX + ical_uid,
            external_id=derive_guid(ical_uid),
            welkin_id=self.welkin_event.id,
        )
        self.created_entry = self.welkin_client.create_or_update_external_id(entry)
        created = self.created_entry
        if (
            created is None
            or created.linked_ical_uid != ical_uid
            or created.welkin_id != self.welkin_event.id
        ):
            raise LinkCreationFailure(
                f"Welkin event {self.welkin_event.id} link to Outlook event {ical_uid} "
                f"did not round-trip",
                welkin_event_id=self.welkin_event.id,
                outlook_ical_uid=ical_uid,
            )
        self.logger.info(f"Linked Welkin event {self.welkin_event.id} → Outlook event {ical_uid}")
        return True

    def rollback(self):
        """Delete the external-id record this link created, if any."""
        if self.created_entry is None or not self.created_entry.id:
            return
        self.welkin_client.delete_external_id(self.created_entry)
        self.logger.info(
            f"Removed link record {self.created_entry.id} for Welkin event {self.welkin_event.id}"
        )
        self.created_entry = None
