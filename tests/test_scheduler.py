from datetime import datetime

import pytest
from conftest import CountingLimiter, FakeDirectoryClient, make_place

from placesync.core.config import Settings
from placesync.models import BoundingBox, PlaceSource
from placesync.sync import scheduler
from placesync.sync.orchestrator import RunLease, SyncOrchestrator, SyncTarget
from placesync.sync.writer import CanonicalStoreWriter

# 2024-03-04 is a Monday.
MONDAY = datetime(2024, 3, 4)


@pytest.mark.parametrize(
    "cadence, after, expected",
    [
        (scheduler.WEEKLY_FULL, datetime(2024, 3, 4, 1, 0), datetime(2024, 3, 4, 2, 0)),
        (scheduler.WEEKLY_FULL, datetime(2024, 3, 4, 2, 0), datetime(2024, 3, 11, 2, 0)),
        (scheduler.WEEKLY_FULL, datetime(2024, 3, 6, 10, 30), datetime(2024, 3, 11, 2, 0)),
        (scheduler.DAILY_UPDATE, datetime(2024, 3, 4, 3, 30), datetime(2024, 3, 5, 3, 0)),
        (scheduler.DAILY_UPDATE, datetime(2024, 3, 4, 2, 59), datetime(2024, 3, 4, 3, 0)),
        (scheduler.HOURLY_HIGH_TRAFFIC, datetime(2024, 3, 4, 10, 15), datetime(2024, 3, 4, 11, 0)),
        (scheduler.HOURLY_HIGH_TRAFFIC, datetime(2024, 3, 4, 23, 0), datetime(2024, 3, 5, 0, 0)),
    ],
)
def test_cadence_next_run(cadence, after, expected):
    assert cadence.next_run(after) == expected


class DummyExecutor:
    def __init__(self):
        self.submitted = []

    def submit(self, fn, *args):
        self.submitted.append(args)
        fn(*args)


def test_run_pending_fires_due_jobs_and_reschedules():
    fired = []
    jobs = [
        scheduler.ScheduledJob("hourly", scheduler.HOURLY_HIGH_TRAFFIC, lambda: fired.append("hourly")),
        scheduler.ScheduledJob("daily", scheduler.DAILY_UPDATE, lambda: fired.append("daily")),
    ]
    sched = scheduler.Scheduler(jobs, executor=DummyExecutor(), clock=lambda: MONDAY.replace(hour=1, minute=30))

    assert sched.run_pending(MONDAY.replace(hour=1, minute=59)) == []
    assert sched.run_pending(MONDAY.replace(hour=2, minute=0)) == ["hourly"]
    assert fired == ["hourly"]
    assert jobs[0].next_due == MONDAY.replace(hour=3)
    assert sched.run_pending(MONDAY.replace(hour=3, minute=0)) == ["hourly", "daily"]


def test_failing_job_is_logged_not_raised(caplog):
    def boom():
        raise RuntimeError("database went away")

    job = scheduler.ScheduledJob("full", scheduler.WEEKLY_FULL, boom, next_due=MONDAY)
    sched = scheduler.Scheduler([job], executor=DummyExecutor(), clock=lambda: MONDAY)

    with caplog.at_level("ERROR"):
        assert sched.run_pending(MONDAY) == ["full"]

    assert "Scheduled job full failed" in " ".join(caplog.messages)


@pytest.fixture
def settings():
    return Settings(
        google_api_key="key",
        database_url="postgres://",
        bounds=BoundingBox(north=14.705, south=14.700, east=-17.465, west=-17.470),
        spacing_km=2.0,
        high_traffic_limit=5,
    )


@pytest.fixture
def orchestrator(place_repo, tile_cache, raw_repo, clock):
    return SyncOrchestrator(
        FakeDirectoryClient(),
        tile_cache,
        CanonicalStoreWriter(place_repo, clock=clock),
        raw_repo,
        place_repo,
        target=SyncTarget(region="Dakar", city="Dakar", area_name="dakar"),
        lease=RunLease(),
        limiter=CountingLimiter(),
        clock=clock,
    )


def test_full_sync_stamps_directory_places(orchestrator, place_repo, settings, clock):
    synced = place_repo.add(make_place(external_id="ext-1"))
    manual = place_repo.add(make_place(name="Manual", source=PlaceSource.MANUAL))

    summary = scheduler.ScheduledSync(orchestrator, place_repo, settings).perform_full_sync()

    assert summary.label == "full"
    assert summary.points_total == 1
    assert place_repo.places[synced.id].last_sync_time == clock()
    assert place_repo.places[manual.id].last_sync_time is None


def test_full_sync_skipped_while_busy(orchestrator, place_repo, settings, caplog):
    orchestrator.lease.acquire("daily")
    scheduled = scheduler.ScheduledSync(orchestrator, place_repo, settings)

    with caplog.at_level("INFO"):
        assert scheduled.perform_full_sync() is None

    assert "skipping full sync" in " ".join(caplog.messages)
    assert scheduled.last_sync_time is None


def test_high_traffic_sync_covers_every_region(orchestrator, place_repo, settings):
    summaries = scheduler.ScheduledSync(orchestrator, place_repo, settings).perform_high_traffic_sync()

    assert [s.label for s in summaries] == ["region:Dakar", "region:Saint-Louis", "region:Thiès"]


def test_high_traffic_sync_stops_when_busy(orchestrator, place_repo, settings, caplog):
    orchestrator.lease.acquire("full")

    with caplog.at_level("INFO"):
        summaries = scheduler.ScheduledSync(orchestrator, place_repo, settings).perform_high_traffic_sync()

    assert summaries == []
    assert sum("skipping high-traffic update" in m for m in caplog.messages) == 1


def test_daily_sync_refreshes_stale_places(orchestrator, place_repo, settings):
    place_repo.add(make_place(external_id="ext-1"))

    summary = scheduler.ScheduledSync(orchestrator, place_repo, settings).perform_daily_sync()

    assert summary.label == "daily"
    assert summary.points_processed == 1


def test_build_jobs_names():
    jobs = scheduler.build_jobs(scheduled=None)
    assert [(job.name, job.cadence) for job in jobs] == [
        ("full", scheduler.WEEKLY_FULL),
        ("daily", scheduler.DAILY_UPDATE),
        ("high-traffic", scheduler.HOURLY_HIGH_TRAFFIC),
    ]
