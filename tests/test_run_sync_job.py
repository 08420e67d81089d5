import argparse
from unittest.mock import MagicMock

import pytest

from placesync.core.config import ConfigError, Settings
from placesync.core.db import StorageError, StoreUnavailable
from placesync.jobs import clean_duplicates, run_scheduler, run_sync
from placesync.models import BoundingBox, SyncSummary
from placesync.sync.dedup import DedupReport

SMALL_BOX = BoundingBox(north=14.70, south=14.69, east=-17.46, west=-17.47)


def _settings(**overrides):
    values = dict(google_api_key="abc", database_url="postgres://", bounds=SMALL_BOX)
    values.update(overrides)
    return Settings(**values)


@pytest.fixture
def orchestrator(monkeypatch):
    fake = MagicMock()
    fake.run.return_value = SyncSummary(label="ad-hoc")
    monkeypatch.setattr(run_sync, "get_settings", lambda: _settings())
    monkeypatch.setattr(run_sync, "build_orchestrator", lambda settings: fake)
    return fake


def test_run_sync_job_sweeps_sliced_grid(orchestrator):
    run_sync.run_sync_job(limit=2)

    points = orchestrator.run.call_args.args[0]
    assert len(points) == 2
    assert points[0].location_key == "14.7,-17.47"
    assert orchestrator.run.call_args.kwargs["label"] == "ad-hoc"


def test_run_sync_job_unprocessed(orchestrator):
    run_sync.run_sync_job(limit=5, unprocessed=True)

    points = orchestrator.sync_unprocessed.call_args.args[0]
    assert len(points) == 9
    assert orchestrator.sync_unprocessed.call_args.kwargs["limit"] == 5
    orchestrator.run.assert_not_called()


def test_run_sync_job_region_uses_default_place_limit(orchestrator):
    run_sync.run_sync_job(limit=None, region="Saint-Louis")

    orchestrator.sync_region.assert_called_once_with("Saint-Louis", 100, spacing_km=0.4)


def test_run_sync_job_init_db(monkeypatch, orchestrator):
    calls = []
    monkeypatch.setattr(run_sync, "ensure_schema", lambda: calls.append("schema"))

    run_sync.run_sync_job(limit=1, init_db=True)

    assert calls == ["schema"]


def test_build_parser_defaults():
    parser = run_sync.build_parser()
    args = parser.parse_args([])
    assert isinstance(parser, argparse.ArgumentParser)
    assert args.limit is None
    assert args.unprocessed is False
    assert args.region is None

    args = parser.parse_args(["--limit", "10", "--unprocessed", "--region", "Dakar"])
    assert (args.limit, args.unprocessed, args.region) == (10, True, "Dakar")


def test_build_parser_rejects_unknown_region():
    with pytest.raises(SystemExit):
        run_sync.build_parser().parse_args(["--region", "Ziguinchor"])


def test_main_exit_codes(monkeypatch):
    def missing_key(**kwargs):
        raise ConfigError("GOOGLE_API_KEY is required")

    monkeypatch.setattr(run_sync, "run_sync_job", missing_key)
    with pytest.raises(SystemExit) as exc_info:
        run_sync.main([])
    assert exc_info.value.code == 2

    def store_down(**kwargs):
        raise StoreUnavailable("connection refused")

    monkeypatch.setattr(run_sync, "run_sync_job", store_down)
    with pytest.raises(SystemExit) as exc_info:
        run_sync.main([])
    assert exc_info.value.code == 1


def test_main_logs_summary(monkeypatch, caplog):
    summary = SyncSummary(label="ad-hoc", points_total=3, points_processed=2, points_failed=1, api_calls=2)
    summary.failures.append(("14.7,-17.47", "ProviderOutage", "HTTP 503"))
    monkeypatch.setattr(run_sync, "run_sync_job", lambda **kwargs: summary)

    with caplog.at_level("INFO"):
        run_sync.main(["--limit", "3"])

    text = " ".join(caplog.messages)
    assert "points processed: 2/3" in text
    assert "failed 14.7,-17.47: ProviderOutage HTTP 503" in text


def test_clean_duplicates_exact_only(monkeypatch):
    engine = MagicMock()
    engine.run_exact_pass.return_value = DedupReport()
    monkeypatch.setattr(clean_duplicates, "ping", lambda: None)
    monkeypatch.setattr(clean_duplicates, "PostgresPlaceRepository", lambda: "repo")
    monkeypatch.setattr(clean_duplicates, "DedupEngine", lambda repo: engine)

    clean_duplicates.clean_duplicates(exact_only=True)

    engine.run_exact_pass.assert_called_once_with()
    engine.run.assert_not_called()


def test_clean_duplicates_main_store_down(monkeypatch):
    def down(exact_only=False):
        raise StorageError("connection refused")

    monkeypatch.setattr(clean_duplicates, "clean_duplicates", down)

    with pytest.raises(SystemExit) as exc_info:
        clean_duplicates.main([])
    assert exc_info.value.code == 1


def test_scheduler_main_exits_on_bad_environment(monkeypatch, caplog):
    def bad_bounds():
        raise ConfigError("SYNC_BOUNDS is inverted: '1,2,3,4'")

    built = []
    monkeypatch.setattr(run_scheduler, "get_settings", bad_bounds)
    monkeypatch.setattr(run_scheduler, "build_orchestrator", lambda *args, **kwargs: built.append(args))

    with caplog.at_level("ERROR"), pytest.raises(SystemExit) as exc_info:
        run_scheduler.main()

    assert exc_info.value.code == 2
    assert built == []
    assert "Configuration error: SYNC_BOUNDS is inverted" in " ".join(caplog.messages)
