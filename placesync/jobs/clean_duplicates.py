"""CLI job that merges duplicate places and moves their references."""

import argparse
import logging
from typing import List, Optional

from placesync.core.db import StorageError, ping
from placesync.core.repository import PostgresPlaceRepository
from placesync.sync.dedup import DedupEngine, DedupReport

logger = logging.getLogger(__name__)


def clean_duplicates(exact_only: bool = False) -> DedupReport:
    ping()
    engine = DedupEngine(PostgresPlaceRepository())
    if exact_only:
        return engine.run_exact_pass()
    return engine.run()


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Merge duplicate places")
    parser.add_argument(
        "--exact-only",
        dest="exact_only",
        action="store_true",
        help="Only merge rows sharing an external id",
    )
    return parser


def main(argv: Optional[List[str]] = None) -> None:
    logging.basicConfig(level=logging.INFO, format="%(asctime)s %(levelname)s %(name)s - %(message)s")
    args = build_parser().parse_args(argv)

    try:
        report = clean_duplicates(exact_only=args.exact_only)
    except StorageError as exc:
        logger.error("Canonical store unavailable: %s", exc)
        raise SystemExit(1) from exc

    logger.info(
        "Removed %d duplicates, moved %d references, kept %d distinct same-name pairs",
        len(report.merged),
        report.references_moved,
        report.distinct_pairs,
    )


if __name__ == "__main__":
    main()
