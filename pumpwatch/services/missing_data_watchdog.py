"""MissingDataWatchdog: raises MISSING_DATA incidents for silent devices.

Runs every MISSING_DATA_CHECK_INTERVAL seconds. Reads the last-seen registry
and feeds synthetic reports through IncidentTracker.submit, like any device:
  silent > threshold              -> active report (opens or refreshes)
  fresh again after being flagged -> clear report (resolves)
Open MISSING_DATA incidents are loaded on start so flags survive restarts.
"""
from __future__ import annotations

import asyncio
import logging
from collections.abc import Callable
from datetime import datetime, timedelta

from redis.asyncio import Redis

from pumpwatch.core.errors import TrackerError
from pumpwatch.models.incident import ConditionType
from pumpwatch.models.report import ConditionReport
from pumpwatch.services.device_activity import DeviceSeen, load_last_seen
from pumpwatch.services.incident_publisher import IncidentPublisher
from pumpwatch.services.incident_store import IncidentStore
from pumpwatch.services.incident_tracker import IncidentTracker, Outcome

logger = logging.getLogger("pumpwatch.missing_data_watchdog")


class MissingDataWatchdog:

    def __init__(
        self,
        redis: Redis,
        tracker: IncidentTracker,
        store: IncidentStore,
        *,
        publisher: IncidentPublisher | None = None,
        check_interval: int = 60,
        threshold_minutes: float = 5,
        clock: Callable[[], datetime] = datetime.utcnow,
    ):
        self.redis = redis
        self.tracker = tracker
        self.store = store
        self.publisher = publisher
        self.check_interval = check_interval
        self.threshold = timedelta(minutes=threshold_minutes)
        self.clock = clock
        self._running = False
        self._silent_since: dict[str, datetime] = {}  # flagged device -> last data before the gap

    async def start(self) -> None:
        self._running = True
        await self._load_active()
        logger.info(
            "MissingDataWatchdog started (check every %ds, threshold=%.1fmin, %d flagged)",
            self.check_interval, self.threshold.total_seconds() / 60, len(self._silent_since),
        )
        while self._running:
            try:
                await self.check_cycle()
            except Exception as exc:
                logger.error("MissingDataWatchdog cycle error: %s", exc, exc_info=True)
            await asyncio.sleep(self.check_interval)

    async def stop(self) -> None:
        self._running = False
        logger.info("MissingDataWatchdog stopped")

    @property
    def flagged(self) -> set[str]:
        return set(self._silent_since)

    # ------------------------------------------------------------------
    async def _load_active(self) -> None:
        """Load open MISSING_DATA incidents from DB to init state after restart."""
        try:
            async with self.store.transaction() as tx:
                open_incidents = await tx.list_open_incidents(ConditionType.MISSING_DATA)
        except TrackerError as exc:
            logger.warning("MissingDataWatchdog failed to load open incidents: %s", exc)
            return
        self._silent_since = {i.device: i.start_time for i in open_incidents}

    async def check_cycle(self, now: datetime | None = None) -> list[Outcome]:
        now = now or self.clock()
        outcomes: list[Outcome] = []

        for seen in await load_last_seen(self.redis):
            stale = now - seen.seen_at > self.threshold
            if stale:
                since = self._silent_since.get(seen.device, seen.seen_at)
                report = self._build_report(seen, since, now, active=True)
            elif seen.device in self._silent_since:
                since = self._silent_since[seen.device]
                report = self._build_report(seen, since, seen.seen_at, active=False)
            else:
                continue

            try:
                outcome = await self.tracker.submit(report)
            except TrackerError as exc:
                logger.error("MissingDataWatchdog submit failed for %s: %s", seen.device, exc)
                continue

            if stale:
                self._silent_since[seen.device] = since
            else:
                self._silent_since.pop(seen.device, None)
                logger.info("Device %s reporting again after %s", seen.device, seen.seen_at - since)
            if self.publisher is not None:
                await self.publisher.publish(outcome)
            outcomes.append(outcome)

        return outcomes

    def _build_report(
        self, seen: DeviceSeen, since: datetime, until: datetime, *, active: bool
    ) -> ConditionReport:
        gap = until - since
        minutes = gap.total_seconds() / 60
        if active:
            description = f"No data received for {minutes:.0f} min"
        else:
            description = f"Data received again after {minutes:.0f} min"
        return ConditionReport(
            device=seen.device,
            location=seen.location,
            condition_type=ConditionType.MISSING_DATA,
            timestamp=until,
            start_time=since,
            value=round(minutes, 1),
            threshold=self.threshold.total_seconds() / 60,
            duration=max(0, int(gap.total_seconds() * 1000)),
            active=active,
            description=description,
        )
