"""Long-running process that fires the weekly, daily and hourly cadences."""

import logging
import signal
import threading

from placesync.core.config import ConfigError, get_settings
from placesync.sync.orchestrator import RunLease, build_orchestrator
from placesync.sync.scheduler import ScheduledSync, Scheduler, build_jobs

logger = logging.getLogger(__name__)


def main() -> None:
    logging.basicConfig(level=logging.INFO, format="%(asctime)s %(levelname)s %(name)s - %(message)s")
    try:
        settings = get_settings()
        orchestrator = build_orchestrator(settings, lease=RunLease())
    except ConfigError as exc:
        logger.error("Configuration error: %s", exc)
        raise SystemExit(2) from exc

    stop_event = threading.Event()

    def _stop(signum, frame):
        logger.info("Received signal %s, stopping after the current point", signum)
        stop_event.set()

    signal.signal(signal.SIGINT, _stop)
    signal.signal(signal.SIGTERM, _stop)

    scheduled = ScheduledSync(orchestrator, orchestrator.place_repository, settings)
    Scheduler(build_jobs(scheduled, stop_event)).run_forever(stop_event)


if __name__ == "__main__":
    main()
