"""Weekly, daily and hourly sync cadences."""

import logging
import threading
from concurrent.futures import Executor, ThreadPoolExecutor
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Callable, List, Optional

from placesync.core.config import HIGH_TRAFFIC_REGIONS, Settings
from placesync.models import SyncSummary
from placesync.sync.grid import grid_from_settings
from placesync.sync.orchestrator import SyncOrchestrator

logger = logging.getLogger(__name__)

MAX_IDLE_SECONDS = 60.0


@dataclass(frozen=True)
class Cadence:
    """A cron-like slot: ``minute`` past every hour, optionally pinned to an hour and weekday (Monday=0)."""

    minute: int = 0
    hour: Optional[int] = None
    weekday: Optional[int] = None

    def next_run(self, after: datetime) -> datetime:
        candidate = after.replace(minute=self.minute, second=0, microsecond=0)
        if self.hour is not None:
            candidate = candidate.replace(hour=self.hour)
        if candidate <= after:
            candidate += timedelta(hours=1) if self.hour is None else timedelta(days=1)
        if self.weekday is not None:
            while candidate.weekday() != self.weekday:
                candidate += timedelta(days=1)
        return candidate


WEEKLY_FULL = Cadence(minute=0, hour=2, weekday=0)
DAILY_UPDATE = Cadence(minute=0, hour=3)
HOURLY_HIGH_TRAFFIC = Cadence(minute=0)


class ScheduledSync:
    """The three cadence bodies. Each one is a no-op while another run holds the lease."""

    def __init__(self, orchestrator: SyncOrchestrator, place_repository, settings: Settings) -> None:
        self.orchestrator = orchestrator
        self.place_repository = place_repository
        self.settings = settings
        self.last_sync_time: Optional[datetime] = None

    def perform_full_sync(self, stop_event: Optional[threading.Event] = None) -> Optional[SyncSummary]:
        logger.info("Starting weekly full sync")
        points = grid_from_settings(self.settings)
        summary = self.orchestrator.run(points, label="full", stop_event=stop_event)
        if summary is None:
            logger.info("Sync already in progress, skipping full sync")
            return None

        now = self.orchestrator.now()
        updated = self.place_repository.mark_synced(now)
        self.last_sync_time = now
        logger.info("Stamped last_sync_time on %d directory places", updated)
        for region, count in self.place_repository.count_by_region().items():
            logger.info("- %s: %d places", region, count)
        return summary

    def perform_daily_sync(self, stop_event: Optional[threading.Event] = None) -> Optional[SyncSummary]:
        logger.info("Starting daily updates sync")
        summary = self.orchestrator.refresh_places(label="daily", stop_event=stop_event)
        if summary is None:
            logger.info("Sync already in progress, skipping daily update")
            return None
        self.last_sync_time = self.orchestrator.now()
        return summary

    def perform_high_traffic_sync(self, stop_event: Optional[threading.Event] = None) -> List[SyncSummary]:
        logger.info("Starting high-traffic regions sync")
        summaries: List[SyncSummary] = []
        for region in HIGH_TRAFFIC_REGIONS:
            summary = self.orchestrator.sync_region(
                region,
                self.settings.high_traffic_limit,
                spacing_km=self.settings.spacing_km,
                stop_event=stop_event,
            )
            if summary is None:
                logger.info("Sync already in progress, skipping high-traffic update at %s", region)
                break
            summaries.append(summary)
        return summaries


@dataclass
class ScheduledJob:
    name: str
    cadence: Cadence
    fn: Callable[[], object]
    next_due: Optional[datetime] = field(default=None)


class Scheduler:
    """Fires due jobs on a thread pool.

    Jobs do not lock each other here; overlapping directory usage is
    prevented by the orchestrator's lease.
    """

    def __init__(
        self,
        jobs: List[ScheduledJob],
        executor: Optional[Executor] = None,
        clock: Callable[[], datetime] = datetime.now,
    ) -> None:
        self.jobs = jobs
        self._executor = executor or ThreadPoolExecutor(max_workers=len(jobs) or 1)
        self._clock = clock
        now = clock()
        for job in self.jobs:
            if job.next_due is None:
                job.next_due = job.cadence.next_run(now)

    def run_pending(self, now: Optional[datetime] = None) -> List[str]:
        now = now or self._clock()
        fired: List[str] = []
        for job in self.jobs:
            if job.next_due is not None and job.next_due <= now:
                logger.info("Firing %s (due %s)", job.name, job.next_due.isoformat())
                self._executor.submit(_run_job_safe, job)
                job.next_due = job.cadence.next_run(now)
                fired.append(job.name)
        return fired

    def run_forever(self, stop_event: threading.Event) -> None:
        for job in self.jobs:
            logger.info("%s next due at %s", job.name, job.next_due.isoformat())
        while not stop_event.is_set():
            self.run_pending()
            next_due = min(job.next_due for job in self.jobs)
            idle = (next_due - self._clock()).total_seconds()
            stop_event.wait(min(max(idle, 0.0), MAX_IDLE_SECONDS))
        logger.info("Scheduler stopped")


def _run_job_safe(job: ScheduledJob) -> None:
    try:
        job.fn()
    except Exception as exc:  # noqa: BLE001
        logger.exception("Scheduled job %s failed: %s", job.name, exc)


def build_jobs(scheduled: ScheduledSync, stop_event: Optional[threading.Event] = None) -> List[ScheduledJob]:
    return [
        ScheduledJob("full", WEEKLY_FULL, lambda: scheduled.perform_full_sync(stop_event)),
        ScheduledJob("daily", DAILY_UPDATE, lambda: scheduled.perform_daily_sync(stop_event)),
        ScheduledJob("high-traffic", HOURLY_HIGH_TRAFFIC, lambda: scheduled.perform_high_traffic_sync(stop_event)),
    ]
