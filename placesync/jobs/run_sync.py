"""CLI job that sweeps the search grid and persists discovered places."""

import argparse
import logging
from typing import List, Optional

from placesync.core.config import HIGH_TRAFFIC_REGIONS, ConfigError, get_settings
from placesync.core.db import StorageError, ensure_schema
from placesync.models import SyncSummary
from placesync.sync.grid import grid_from_settings
from placesync.sync.orchestrator import build_orchestrator

logger = logging.getLogger(__name__)


def run_sync_job(
    *,
    limit: Optional[int],
    unprocessed: bool = False,
    region: Optional[str] = None,
    init_db: bool = False,
) -> Optional[SyncSummary]:
    settings = get_settings()
    if init_db:
        ensure_schema()
    orchestrator = build_orchestrator(settings)

    if region:
        max_places = limit or settings.high_traffic_limit
        logger.info("Syncing region %s (up to %d places)", region, max_places)
        return orchestrator.sync_region(region, max_places, spacing_km=settings.spacing_km)

    points = grid_from_settings(settings)
    logger.info("Total grid points: %d (spacing %.2fkm)", len(points), settings.spacing_km)
    if unprocessed:
        return orchestrator.sync_unprocessed(points, limit=limit)
    if limit is not None:
        points = points[:limit]
    return orchestrator.run(points, label="ad-hoc")


def log_summary(summary: Optional[SyncSummary]) -> None:
    if summary is None:
        logger.info("Nothing ran: another sync holds the lease")
        return
    logger.info("Summary for %s:", summary.label)
    logger.info("  points processed: %d/%d (%d from cache)", summary.points_processed, summary.points_total, summary.points_cached)
    logger.info("  points failed: %d", summary.points_failed)
    logger.info("  unique places found: %d", summary.places_found)
    logger.info("  api calls: %d (~$%.2f USD)", summary.api_calls, summary.estimated_cost)
    for key, kind, message in summary.failures:
        logger.info("  failed %s: %s %s", key, kind, message)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Sweep the place search grid")
    parser.add_argument("--limit", dest="limit", type=int, help="Maximum number of grid points to process")
    parser.add_argument(
        "--unprocessed",
        dest="unprocessed",
        action="store_true",
        help="Only process points that have never been searched",
    )
    parser.add_argument(
        "--region",
        dest="region",
        choices=sorted(HIGH_TRAFFIC_REGIONS),
        help="Sweep a named region instead of the configured grid (limit counts places)",
    )
    parser.add_argument("--init-db", dest="init_db", action="store_true", help="Create tables before syncing")
    return parser


def main(argv: Optional[List[str]] = None) -> None:
    logging.basicConfig(level=logging.INFO, format="%(asctime)s %(levelname)s %(name)s - %(message)s")
    parser = build_parser()
    args = parser.parse_args(argv)

    try:
        summary = run_sync_job(
            limit=args.limit,
            unprocessed=args.unprocessed,
            region=args.region,
            init_db=args.init_db,
        )
    except ConfigError as exc:
        logger.error("Configuration error: %s", exc)
        raise SystemExit(2) from exc
    except StorageError as exc:
        logger.error("Canonical store unavailable: %s", exc)
        raise SystemExit(1) from exc

    log_summary(summary)


if __name__ == "__main__":
    main()
