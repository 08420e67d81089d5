"""Per-tile freshness tracking."""

import logging
from datetime import datetime, timedelta, timezone
from typing import Callable, Iterable, Optional, Set

from placesync.models import TileRecord

logger = logging.getLogger(__name__)

DEFAULT_REFRESH_INTERVAL_DAYS = 30


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def is_record_fresh(record: Optional[TileRecord], now: datetime) -> bool:
    if record is None:
        return False
    return record.last_searched_at >= now - timedelta(days=record.refresh_interval_days)


class TileCache:
    """Decides whether a tile may be served from its last query.

    ``repository`` needs ``get(key)``, ``save(record)`` and ``keys()``; see
    ``PostgresTileRepository``.
    """

    def __init__(self, repository, clock: Callable[[], datetime] = utcnow) -> None:
        self.repository = repository
        self._clock = clock

    def is_fresh(self, location_key: str) -> bool:
        return is_record_fresh(self.repository.get(location_key), self._clock())

    def get_cached(self, location_key: str) -> Set[str]:
        record = self.repository.get(location_key)
        return set(record.place_external_ids) if record else set()

    def lookup(self, location_key: str) -> Optional[Set[str]]:
        """Return the cached id set when the tile is fresh, otherwise None."""
        record = self.repository.get(location_key)
        if is_record_fresh(record, self._clock()):
            return set(record.place_external_ids)
        return None

    def record_result(
        self,
        location_key: str,
        radius: int,
        search_terms: str,
        external_ids: Iterable[str],
        refresh_interval_days: int = DEFAULT_REFRESH_INTERVAL_DAYS,
    ) -> TileRecord:
        record = TileRecord(
            location_key=location_key,
            radius_meters=radius,
            search_terms=search_terms,
            place_external_ids=set(external_ids),
            last_searched_at=self._clock(),
            refresh_interval_days=refresh_interval_days,
        )
        self.repository.save(record)
        logger.debug("Recorded %d ids for tile %s", len(record.place_external_ids), location_key)
        return record

    def processed_keys(self) -> Set[str]:
        return set(self.repository.keys())
