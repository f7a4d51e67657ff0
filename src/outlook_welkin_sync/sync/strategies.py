"""
Counterpart-resolution strategies.

A strategy answers "where does this event's counterpart live?" in both
directions and lists the Outlook events a sweep should look at. One is chosen
at startup from ``SyncConfig.strategy`` and handed to every task.

- NameMatchedStrategy: each Welkin worker has an Outlook mailbox whose
  principal can be derived from the worker's id or email.
- SharedCalendarStrategy: every Welkin event is mirrored into one named
  calendar in one Outlook mailbox.
"""

import logging
from datetime import datetime

from outlook_welkin_sync.models import CalendarSyncError
from outlook_welkin_sync.models import OutlookEvent
from outlook_welkin_sync.models import OutlookTarget
from outlook_welkin_sync.models import SyncConfig
from outlook_welkin_sync.models import SyncError
from outlook_welkin_sync.models import WelkinCalendar
from outlook_welkin_sync.models import WelkinEvent
from outlook_welkin_sync.models import WelkinWorker


class _BaseStrategy:
    name = ""

    def __init__(self, config: SyncConfig, outlook_client, welkin_client, logger: logging.Logger):
        self.config = config
        self.outlook_client = outlook_client
        self.welkin_client = welkin_client
        self.logger = logger

    def _timezone_for(self, worker: WelkinWorker | None) -> str:
        if worker is not None and worker.timezone:
            return worker.timezone
        return self.config.default_timezone

    def worker_for_welkin_event(self, welkin_event: WelkinEvent) -> WelkinWorker | None:
        calendar = self.welkin_client.retrieve_calendar(welkin_event.calendar_id)
        if calendar is None or not calendar.worker_id:
            return None
        return self.welkin_client.retrieve_worker(calendar.worker_id)

    def timezone_for_welkin_event(self, welkin_event: WelkinEvent) -> str:
        return self._timezone_for(self.worker_for_welkin_event(welkin_event))

    def _calendar_for_email(self, email: str | None) -> tuple[WelkinCalendar, str]:
        worker = self.welkin_client.find_worker(email)
        if worker is None:
            raise SyncError(f"No Welkin worker found for {email}")
        calendar = self.welkin_client.calendar_for(worker)
        if calendar is None:
            raise SyncError(f"No Welkin calendar found for worker {worker.id}")
        return calendar, self._timezone_for(worker)


class NameMatchedStrategy(_BaseStrategy):
    """Each worker's events live in the default calendar of their own mailbox."""

    name = "name"

    def outlook_target_for(self, welkin_event: WelkinEvent) -> OutlookTarget:
        worker = self.worker_for_welkin_event(welkin_event)
        if worker is None:
            raise SyncError(f"No Welkin worker owns calendar {welkin_event.calendar_id}")
        user = self.outlook_client.find_user_corresponding_to(worker)
        if user is None:
            raise SyncError(f"No Outlook user corresponds to Welkin worker {worker.email}")
        return OutlookTarget(
            user=user,
            calendar_id=None,
            timezone=self._timezone_for(worker),
            worker_email=worker.email,
        )

    def welkin_calendar_for(self, outlook_event: OutlookEvent) -> tuple[WelkinCalendar, str]:
        return self._calendar_for_email(outlook_event.owner)

    def _mailboxes(self) -> list[str]:
        users = []
        for worker in self.welkin_client.all_workers():
            user = self.outlook_client.find_user_corresponding_to(worker)
            if user is None:
                self.logger.debug(f"No Outlook mailbox for Welkin worker {worker.email}")
            elif user not in users:
                users.append(user)
        return users

    def retrieve_outlook_events_updated_between(
        self, start: datetime, end: datetime
    ) -> list[OutlookEvent]:
        events = []
        for user in self._mailboxes():
            try:
                events.extend(self.outlook_client.events_modified_between(user, start, end))
            except CalendarSyncError as e:
                self.logger.error(f"Could not list Outlook events for {user}: {e}")
        return events

    def retrieve_outlook_events_scheduled_between(
        self, start: datetime, end: datetime
    ) -> list[OutlookEvent]:
        events = []
        for user in self._mailboxes():
            try:
                events.extend(self.outlook_client.events_scheduled_between(user, start, end))
            except CalendarSyncError as e:
                self.logger.error(f"Could not list Outlook events for {user}: {e}")
        return events


class SharedCalendarStrategy(_BaseStrategy):
    """All events live in one named calendar of one shared mailbox."""

    name = "shared"

    def __init__(self, config: SyncConfig, outlook_client, welkin_client, logger: logging.Logger):
        super().__init__(config, outlook_client, welkin_client, logger)
        if not config.shared_calendar_user or not config.shared_calendar_name:
            raise CalendarSyncError(
                "Shared calendar strategy needs shared_calendar_user and shared_calendar_name"
            )
        self.user = config.shared_calendar_user
        self.calendar_name = config.shared_calendar_name

    @property
    def calendar_id(self) -> str:
        calendar_id = self.outlook_client.calendar_id_by_name(self.user, self.calendar_name)
        if calendar_id is None:
            raise SyncError(f"Calendar {self.calendar_name!r} not found in mailbox {self.user}")
        return calendar_id

    def outlook_target_for(self, welkin_event: WelkinEvent) -> OutlookTarget:
        worker = self.worker_for_welkin_event(welkin_event)
        return OutlookTarget(
            user=self.user,
            calendar_id=self.calendar_id,
            timezone=self._timezone_for(worker),
            worker_email=worker.email if worker else None,
        )

    def welkin_calendar_for(self, outlook_event: OutlookEvent) -> tuple[WelkinCalendar, str]:
        # The mailbox is shared, so the organizer identifies the worker
        return self._calendar_for_email(outlook_event.organizer)

    def retrieve_outlook_events_updated_between(
        self, start: datetime, end: datetime
    ) -> list[OutlookEvent]:
        return self.outlook_client.events_modified_between(self.user, start, end, self.calendar_id)

    def retrieve_outlook_events_scheduled_between(
        self, start: datetime, end: datetime
    ) -> list[OutlookEvent]:
        return self.outlook_client.events_scheduled_between(self.user, start, end, self.calendar_id)


STRATEGIES = {
    NameMatchedStrategy.name: NameMatchedStrategy,
    SharedCalendarStrategy.name: SharedCalendarStrategy,
}


def build_strategy(config: SyncConfig, outlook_client, welkin_client, logger: logging.Logger):
    try:
        strategy_cls = STRATEGIES[config.strategy]
    except KeyError:
        raise CalendarSyncError(
            f"Unknown strategy {config.strategy!r}; expected one of {', '.join(STRATEGIES)}"
        ) from None
    return strategy_cls(config, outlook_client, welkin_client, logger)
