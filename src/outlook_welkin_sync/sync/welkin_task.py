"""
Reconcile one Welkin event with its Outlook counterpart.
"""

import logging

from outlook_welkin_sync.dates import utc_now
from outlook_welkin_sync.links import Direction
from outlook_welkin_sync.links import EventLink
from outlook_welkin_sync.links import OutlookToWelkinLink
from outlook_welkin_sync.links import WelkinToOutlookLink
from outlook_welkin_sync.merge import outlook_schedule
from outlook_welkin_sync.merge import sync_records
from outlook_welkin_sync.merge import welkin_schedule
from outlook_welkin_sync.models import LinkCreationFailure
from outlook_welkin_sync.models import OutlookEvent
from outlook_welkin_sync.models import SyncStats
from outlook_welkin_sync.models import WelkinEvent
from outlook_welkin_sync.sync.task_state import TaskState
from outlook_welkin_sync.sync.utils import describe_welkin_event
from outlook_welkin_sync.watermark import WelkinWatermark


class WelkinSyncTask:
    """
    Sync a Welkin event to Outlook.

    Flow: skip placeholders and events not revised since their watermark;
    follow the Welkin→Outlook pointer and merge if it resolves; otherwise
    create an Outlook placeholder and link both ways, deleting the placeholder
    again if linking fails. The watermark is stamped only when the task gets
    through without error, with the time captured when the task started.
    """

    def __init__(
        self,
        welkin_event: WelkinEvent,
        strategy,
        outlook_client,
        welkin_client,
        logger: logging.Logger,
        stats: SyncStats | None = None,
    ):
        self.welkin_event = welkin_event
        self.strategy = strategy
        self.outlook_client = outlook_client
        self.welkin_client = welkin_client
        self.logger = logger
        self.stats = stats if stats is not None else SyncStats()
        self.watermark = WelkinWatermark(welkin_client, logger)
        self.state = TaskState.NOT_CHECKED
        self.synced_to: OutlookEvent | None = None

    def sync(self) -> OutlookEvent | None:
        """
        Returns the Outlook event created or updated, or None when skipped or aborted.

        Raises LinkCreationFailure when a freshly created placeholder could not
        be linked; every other failure is logged and swallowed here.
        """
        as_of = utc_now()  # before any write
        event = self.welkin_event
        label = describe_welkin_event(event)

        if self.welkin_client.is_placeholder_event(event):
            self.logger.debug(f"{label} is a placeholder for an Outlook event, skipping")
            return self._skip()

        try:
            last_sync = self.watermark.find(event)
            if not self.watermark.is_stale(event, last_sync):
                self.logger.debug(f"{label} unchanged since its last sync, skipping")
                return self._skip()

            self.synced_to = self._reconcile()

            # a malformed entry is overwritten too
            existing_id = last_sync.id if last_sync is not None else None
            self.watermark.stamp(event, existing_id, as_of)
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

        self.logger.info(f"Synced {label} with Outlook event {self.synced_to.ical_uid}")
        return self.synced_to

    def _skip(self) -> None:
        self.state = TaskState.SKIPPED
        self.stats.skipped += 1
        return None

    def _reconcile(self) -> OutlookEvent:
        event = self.welkin_event
        target = self.strategy.outlook_target_for(event)
        link = EventLink(
            self.outlook_client,
            self.welkin_client,
            self.logger,
            welkin_event=event,
            outlook_target=target,
        )

        if link.exists({Direction.WELKIN_TO_OUTLOOK}):
            self.state = TaskState.LINKED
            outlook_event = link.linked_outlook_event
            before = (welkin_schedule(event), outlook_schedule(outlook_event))
            welkin_changed = sync_records(event, outlook_event, target.timezone, self.logger)
            if (welkin_schedule(event), outlook_schedule(outlook_event)) == before:
                self.logger.debug(
                    f"Welkin event {event.id} already matches Outlook event {outlook_event.ical_uid}"
                )
                self.state = TaskState.IN_STEP
                self.stats.skipped += 1
                return outlook_event
            if welkin_changed:
                self.welkin_event = self._save_welkin(event)
            else:
                outlook_event = self.outlook_client.update_event(outlook_event)
            self.state = TaskState.MERGED
            self.stats.synced += 1
            return outlook_event

        self.state = TaskState.LINK_MISSING
        placeholder = self.outlook_client.create_placeholder_from_welkin(event, target)
        self._link_placeholder(placeholder)
        # the placeholder was built from this event, so there is nothing to merge
        self.state = TaskState.MERGED
        self.stats.created += 1
        return placeholder

    def _save_welkin(self, event: WelkinEvent) -> WelkinEvent:
        """Save with availability checks off so conflicting Outlook times still land."""
        saved_flags = (event.ignore_unavailable_times, event.ignore_working_hours)
        event.ignore_unavailable_times = True
        event.ignore_working_hours = True
        try:
            saved = self.welkin_client.create_or_update_event(event, event.id)
        finally:
            event.ignore_unavailable_times, event.ignore_working_hours = saved_flags
        return saved

    def _link_placeholder(self, placeholder: OutlookEvent):
        event = self.welkin_event
        welkin_link = WelkinToOutlookLink(
            self.outlook_client, self.welkin_client, event, placeholder, self.logger
        )
        outlook_link = OutlookToWelkinLink(
            self.outlook_client, self.welkin_client, placeholder, event, self.logger
        )
        try:
            welkin_link.create_if_missing()
            outlook_link.create_if_missing()
        except Exception as e:
            self.logger.error(
                f"Linking Welkin event {event.id} to new Outlook event {placeholder.ical_uid} "
                f"failed, rolling back: {e}"
            )
            self._roll_back(welkin_link, placeholder)
            if isinstance(e, LinkCreationFailure):
                raise
            raise LinkCreationFailure(
                f"Failed to link Welkin event {event.id} to Outlook event {placeholder.ical_uid}: {e}",
                welkin_event_id=event.id,
                outlook_ical_uid=placeholder.ical_uid,
            ) from e

    def _roll_back(self, welkin_link: WelkinToOutlookLink, placeholder: OutlookEvent):
        # the Outlook-side pointer lives on the placeholder and goes with it
        try:
            welkin_link.rollback()
        except Exception:
            self.logger.exception(f"Could not remove link record for Welkin event {self.welkin_event.id}")
        try:
            self.outlook_client.delete_event(placeholder)
        except Exception:
            self.logger.exception(f"Could not delete Outlook placeholder {placeholder.ical_uid}")
            return
        self.logger.info(f"Deleted Outlook placeholder {placeholder.ical_uid}")

