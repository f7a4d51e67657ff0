"""
Reconcile one Outlook event with its Welkin counterpart.
"""

import logging

from outlook_welkin_sync.dates import utc_now
from outlook_welkin_sync.links import Direction
from outlook_welkin_sync.links import EventLink
from outlook_welkin_sync.links import OutlookToWelkinLink
from outlook_welkin_sync.links import WelkinToOutlookLink
from outlook_welkin_sync.merge import copy_outlook_schedule_to_welkin
from outlook_welkin_sync.merge import outlook_schedule
from outlook_welkin_sync.merge import sync_records
from outlook_welkin_sync.merge import welkin_schedule
from outlook_welkin_sync.models import LinkCreationFailure
from outlook_welkin_sync.models import OutlookEvent
from outlook_welkin_sync.models import SyncStats
from outlook_welkin_sync.models import WelkinEvent
from outlook_welkin_sync.sync.task_state import TaskState
from outlook_welkin_sync.sync.utils import describe_outlook_event
from outlook_welkin_sync.watermark import OutlookWatermark


class OutlookSyncTask:
    """
    Sync an Outlook event to Welkin.

    Mirror image of WelkinSyncTask: placeholders are recognised by the flag in
    our open extension, the Outlook→Welkin pointer is followed first, and a
    missing counterpart becomes a Welkin placeholder booked against the dummy
    patient on the owner's Welkin calendar.
    """

    def __init__(
        self,
        outlook_event: OutlookEvent,
        strategy,
        outlook_client,
        welkin_client,
        logger: logging.Logger,
        stats: SyncStats | None = None,
    ):
        self.outlook_event = outlook_event
        self.strategy = strategy
        self.outlook_client = outlook_client
        self.welkin_client = welkin_client
        self.logger = logger
        self.stats = stats if stats is not None else SyncStats()
        self.watermark = OutlookWatermark(outlook_client, logger)
        self.state = TaskState.NOT_CHECKED
        self.synced_to: WelkinEvent | None = None

    def sync(self) -> WelkinEvent | None:
        """
        Returns the Welkin event created or updated, or None when skipped or aborted.

        Raises LinkCreationFailure when a freshly created placeholder could not
        be linked; every other failure is logged and swallowed here.
        """
        as_of = utc_now()  # before any write
        event = self.outlook_event
        label = describe_outlook_event(event)

        if event.is_placeholder:
            self.logger.debug(f"{label} is a placeholder for a Welkin event, skipping")
            return self._skip()
        if not self.watermark.is_stale(event):
            self.logger.debug(f"{label} unchanged since its last sync, skipping")
            return self._skip()

        try:
            self.synced_to = self._reconcile()
            if self.state is TaskState.IN_STEP:
                return self.synced_to
            self.watermark.stamp(event, as_of)
            self.state = TaskState.WATERMARK_UPDATED
        except LinkCreationFailure:
            self.state = TaskState.ABORTED
            self.stats.errors += 1
            raise
        except Exception:
            self.logger.exception(f"Sync failed for {label}")
            self.state = TaskState.ABORTED
            self.stats.errors += 1
            return None

        self.logger.info(f"Synced {label} with Welkin event {self.synced_to.id}")
        return self.synced_to

    def _skip(self) -> None:
        self.state = TaskState.SKIPPED
        self.stats.skipped += 1
        return None

    def _reconcile(self) -> WelkinEvent:
        event = self.outlook_event
        link = EventLink(self.outlook_client, self.welkin_client, self.logger, outlook_event=event)

        if link.exists({Direction.OUTLOOK_TO_WELKIN}):
            self.state = TaskState.LINKED
            welkin_event = link.linked_welkin_event
            timezone = self.strategy.timezone_for_welkin_event(welkin_event)
            before = (welkin_schedule(welkin_event), outlook_schedule(event))
            welkin_changed = sync_records(welkin_event, event, timezone, self.logger)
            if (welkin_schedule(welkin_event), outlook_schedule(event)) == before:
                # no watermark either: writing it bumps lastModifiedDateTime
                self.logger.debug(
                    f"Outlook event {event.ical_uid} already matches Welkin event {welkin_event.id}"
                )
                self.state = TaskState.IN_STEP
                self.stats.skipped += 1
                return welkin_event
            if welkin_changed:
                welkin_event = self.welkin_client.create_or_update_event(welkin_event, welkin_event.id)
            else:
                self.outlook_event = self.outlook_client.update_event(event)
            self.state = TaskState.MERGED
            self.stats.synced += 1
            return welkin_event

        self.state = TaskState.LINK_MISSING
        calendar, timezone = self.strategy.welkin_calendar_for(event)
        placeholder = self.welkin_client.generate_placeholder_event(calendar)
        copy_outlook_schedule_to_welkin(event, placeholder, timezone)
        placeholder = self.welkin_client.create_or_update_event(placeholder, None)
        self._link_placeholder(placeholder)
        self.state = TaskState.MERGED
        self.stats.created += 1
        return placeholder

    def _link_placeholder(self, placeholder: WelkinEvent):
        event = self.outlook_event
        outlook_link = OutlookToWelkinLink(
            self.outlook_client, self.welkin_client, event, placeholder, self.logger
        )
        welkin_link = WelkinToOutlookLink(
            self.outlook_client, self.welkin_client, placeholder, event, self.logger
        )
        try:
            outlook_link.create_if_missing()
            welkin_link.create_if_missing()
        except Exception as e:
            self.logger.error(
                f"Linking Outlook event {event.ical_uid} to new Welkin event {placeholder.id} "
                f"failed, rolling back: {e}"
            )
            self._roll_back(outlook_link, welkin_link, placeholder)
            if isinstance(e, LinkCreationFailure):
                raise
            raise LinkCreationFailure(
                f"Failed to link Outlook event {event.ical_uid} to Welkin event {placeholder.id}: {e}",
                welkin_event_id=placeholder.id,
                outlook_ical_uid=event.ical_uid,
            ) from e

    def _roll_back(
        self,
        outlook_link: OutlookToWelkinLink,
        welkin_link: WelkinToOutlookLink,
        placeholder: WelkinEvent,
    ):
        # the Outlook event is the user's own, so its pointer must be blanked
        for link in (outlook_link, welkin_link):
            try:
                link.rollback()
            except Exception:
                self.logger.exception(f"Could not roll back link for Outlook event {self.outlook_event.ical_uid}")
        try:
            self.welkin_client.delete_event(placeholder)
        except Exception:
            self.logger.exception(f"Could not delete Welkin placeholder {placeholder.id}")
            return
        self.logger.info(f"Deleted Welkin placeholder {placeholder.id}")
