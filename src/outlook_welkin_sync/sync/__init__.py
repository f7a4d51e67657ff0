"""
CalendarSynchronizer — sweep driver that delegates to the per-event tasks.
"""

import logging
from datetime import datetime
from datetime import timedelta

from outlook_welkin_sync.dates import utc_now
from outlook_welkin_sync.db import RunHistory
from outlook_welkin_sync.models import CalendarSyncError
from outlook_welkin_sync.models import LinkCreationFailure
from outlook_welkin_sync.models import SyncConfig
from outlook_welkin_sync.models import SyncStats
from outlook_welkin_sync.outlook_client import OutlookClient
from outlook_welkin_sync.sync.cleanup import CleanupTask
from outlook_welkin_sync.sync.outlook_task import OutlookSyncTask
from outlook_welkin_sync.sync.strategies import build_strategy
from outlook_welkin_sync.sync.utils import compute_lookback_start
from outlook_welkin_sync.sync.welkin_task import WelkinSyncTask
from outlook_welkin_sync.welkin_client import WelkinClient


class CalendarSynchronizer:
    """Main synchronization engine."""

    def __init__(
        self,
        config: SyncConfig,
        outlook_client=None,
        welkin_client=None,
        logger: logging.Logger | None = None,
        strategy=None,
    ):
        self.config = config
        self.logger = logger or logging.getLogger(__name__)
        self.stats = SyncStats()
        self.outlook_client = outlook_client or OutlookClient(config, self.logger)
        self.welkin_client = welkin_client or WelkinClient(config, self.logger)
        self.strategy = strategy or build_strategy(
            config, self.outlook_client, self.welkin_client, self.logger
        )

    def run(self) -> SyncStats:
        """Execute one sweep: sync recently changed events, then clean up orphans."""
        with RunHistory(self.config.state_db_path) as history:
            now = utc_now()
            window_start = compute_lookback_start(
                now, history.last_run_started_at("sync"), self.config.lookback_hours
            )
            run_id = history.start_run("sync", self.strategy.name, now, window_start)
            self.logger.info(
                f"Syncing events changed since {window_start:%Y-%m-%d %H:%M:%S} UTC "
                f"({self.strategy.name} strategy)"
            )

            self.sync_window(window_start, now)
            self.cleanup(now, now + timedelta(days=self.config.cleanup_days), window_start)

            history.finish_run(run_id, utc_now(), self.stats)
        return self.stats

    def run_cleanup(self, days: int | None = None) -> SyncStats:
        """Only the orphan sweep, over the next ``days`` days."""
        days = self.config.cleanup_days if days is None else days
        with RunHistory(self.config.state_db_path) as history:
            now = utc_now()
            run_id = history.start_run("cleanup", self.strategy.name, now)
            self.cleanup(now, now + timedelta(days=days), now - timedelta(days=days))
            history.finish_run(run_id, utc_now(), self.stats)
        return self.stats

    def sync_window(self, start: datetime, end: datetime):
        """Run one task per event changed in [start, end], Outlook first."""
        synced_welkin_ids: set[str] = set()

        outlook_events = self._list(
            "Outlook", self.strategy.retrieve_outlook_events_updated_between, start, end
        )
        for outlook_event in outlook_events:
            task = OutlookSyncTask(
                outlook_event,
                self.strategy,
                self.outlook_client,
                self.welkin_client,
                self.logger,
                self.stats,
            )
            try:
                welkin_event = task.sync()
            except LinkCreationFailure as e:
                self.logger.error(
                    f"{e} (Welkin event {e.welkin_event_id}, Outlook event {e.outlook_ical_uid})"
                )
                continue
            if welkin_event is not None:
                synced_welkin_ids.add(welkin_event.id)

        welkin_events = self._list(
            "Welkin", self.welkin_client.events_updated_between, start, end
        )
        for welkin_event in welkin_events:
            if welkin_event.id in synced_welkin_ids:
                self.logger.debug(
                    f"Welkin event {welkin_event.id} already synced from Outlook this sweep"
                )
                continue
            task = WelkinSyncTask(
                welkin_event,
                self.strategy,
                self.outlook_client,
                self.welkin_client,
                self.logger,
                self.stats,
            )
            try:
                task.sync()
            except LinkCreationFailure as e:
                self.logger.error(
                    f"{e} (Welkin event {e.welkin_event_id}, Outlook event {e.outlook_ical_uid})"
                )

    def cleanup(self, start: datetime, end: datetime, links_since: datetime | None = None):
        """Delete orphaned Outlook placeholders scheduled in [start, end], then Welkin ones."""
        task = CleanupTask(
            self.strategy, self.outlook_client, self.welkin_client, self.logger, self.stats
        )
        try:
            task.find_and_delete_orphaned_outlook_placeholders(start, end)
        except CalendarSyncError as e:
            self.logger.error(f"Outlook placeholder cleanup failed: {e}")
            self.stats.errors += 1
        if links_since is None:
            return
        try:
            task.find_and_delete_orphaned_welkin_placeholders(links_since, utc_now())
        except CalendarSyncError as e:
            self.logger.error(f"Welkin placeholder cleanup failed: {e}")
            self.stats.errors += 1

    def _list(self, side: str, retrieve, start: datetime, end: datetime) -> list:
        try:
            events = retrieve(start, end)
        except CalendarSyncError as e:
            self.logger.error(f"Could not list changed {side} events: {e}")
            self.stats.errors += 1
            return []
        self.logger.info(f"Found {len(events)} changed {side} event(s)")
        return events
