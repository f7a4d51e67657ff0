"""
Removal of orphaned placeholders.

A placeholder is orphaned once the event it stands in for is gone or has been
cancelled on the other side. Only events we created (flagged as placeholders)
are ever deleted here.
"""

import logging
from datetime import datetime

from outlook_welkin_sync.models import CalendarSyncError
from outlook_welkin_sync.models import OutlookEvent
from outlook_welkin_sync.models import SyncStats
from outlook_welkin_sync.models import TransientRemoteFailure
from outlook_welkin_sync.models import WelkinEvent


class CleanupTask:
    def __init__(
        self,
        strategy,
        outlook_client,
        welkin_client,
        logger: logging.Logger,
        stats: SyncStats | None = None,
    ):
        self.strategy = strategy
        self.outlook_client = outlook_client
        self.welkin_client = welkin_client
        self.logger = logger
        self.stats = stats if stats is not None else SyncStats()

    # ------------------------------------------------------------------ #
    # Outlook placeholders                                                 #
    # ------------------------------------------------------------------ #

    def find_and_delete_orphaned_outlook_placeholders(
        self, start: datetime, end: datetime
    ) -> list[OutlookEvent]:
        """Delete Outlook placeholders scheduled in [start, end] whose Welkin event is gone."""
        deleted = []
        for event in self.strategy.retrieve_outlook_events_scheduled_between(start, end):
            if not event.is_placeholder:
                continue
            if not self._outlook_placeholder_is_orphaned(event):
                continue
            try:
                self.outlook_client.delete_event(event)
            except CalendarSyncError as e:
                self.logger.error(f"Could not delete orphaned Outlook placeholder {event.ical_uid}: {e}")
                self.stats.errors += 1
                continue
            self.logger.info(f"Deleted orphaned Outlook placeholder {event.ical_uid}")
            self.stats.deleted += 1
            deleted.append(event)
        return deleted

    def _outlook_placeholder_is_orphaned(self, event: OutlookEvent) -> bool:
        welkin_id = event.linked_welkin_event_id
        if not welkin_id:
            return False
        try:
            welkin_event = self.welkin_client.get_event(welkin_id)
        except TransientRemoteFailure as e:
            self.logger.warning(f"Fetching Welkin event {welkin_id} failed: {e}")
            return True
        if welkin_event is None:
            self.logger.debug(f"Welkin event {welkin_id} no longer exists")
            return True
        if welkin_event.is_cancelled:
            self.logger.debug(f"Welkin event {welkin_id} was cancelled")
            return True
        return False

    # ------------------------------------------------------------------ #
    # Welkin placeholders                                                  #
    # ------------------------------------------------------------------ #

    def find_and_delete_orphaned_welkin_placeholders(
        self, start: datetime, end: datetime
    ) -> list[WelkinEvent]:
        """Delete Welkin placeholders linked in [start, end] whose Outlook event is gone."""
        deleted = []
        for mapping in self.welkin_client.find_external_event_mappings_updated_between(start, end):
            try:
                welkin_event = self.welkin_client.get_event(mapping.welkin_id)
            except TransientRemoteFailure as e:
                self.logger.error(f"Fetching Welkin event {mapping.welkin_id} failed: {e}")
                continue
            if welkin_event is None or not self.welkin_client.is_placeholder_event(welkin_event):
                continue
            if welkin_event.is_cancelled:
                continue

            try:
                target = self.strategy.outlook_target_for(welkin_event)
                outlook_event = self.outlook_client.get_event_by_ical_uid(
                    target.user, mapping.linked_ical_uid, target.calendar_id
                )
            except CalendarSyncError as e:
                # left for the next sweep
                self.logger.warning(f"Could not check Outlook side of Welkin event {welkin_event.id}: {e}")
                continue
            if outlook_event is not None and not outlook_event.is_cancelled:
                continue

            try:
                self.welkin_client.delete_event(welkin_event)
            except CalendarSyncError as e:
                self.logger.error(f"Could not delete orphaned Welkin placeholder {welkin_event.id}: {e}")
                self.stats.errors += 1
                continue
            self.logger.info(f"Deleted orphaned Welkin placeholder {welkin_event.id}")
            self.stats.deleted += 1
            deleted.append(welkin_event)
        return deleted
