"""Drives a grid sweep: cache check, query, merge, persist, record freshness."""

import logging
import threading
from contextlib import contextmanager
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Callable, Iterator, List, Optional, Sequence, Set, Tuple

import requests

from placesync.core import db
from placesync.core.config import HIGH_TRAFFIC_REGIONS, Settings
from placesync.core.db import StorageError
from placesync.core.repository import PostgresPlaceRepository, PostgresRawRepository, PostgresTileRepository
from placesync.etl.transform import to_place_candidate
from placesync.models import RawDirectoryRecord, SearchPoint, SyncSummary
from placesync.sync.client import COST_PER_CALL, DEFAULT_SEARCH_TYPES, DirectoryClient
from placesync.sync.dedup import KnownSet
from placesync.sync.grid import generate_grid
from placesync.sync.throttle import TokenBucket
from placesync.sync.tile_cache import DEFAULT_REFRESH_INTERVAL_DAYS, TileCache, utcnow
from placesync.sync.writer import CanonicalStoreWriter, retry_once
from placesync.vendors.google_places import DirectoryError

logger = logging.getLogger(__name__)

_POINT_ERRORS = (DirectoryError, StorageError, requests.RequestException)


class RunLease:
    """Exclusive right to spend directory quota.

    One lease is shared by every entry point in a process; a run that cannot
    take it is skipped rather than queued.
    """

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self.holder: Optional[str] = None

    @property
    def is_running(self) -> bool:
        return self._lock.locked()

    def acquire(self, holder: str) -> bool:
        if not self._lock.acquire(blocking=False):
            return False
        self.holder = holder
        return True

    def release(self) -> None:
        self.holder = None
        self._lock.release()

    @contextmanager
    def hold(self, holder: str) -> Iterator[bool]:
        acquired = self.acquire(holder)
        try:
            yield acquired
        finally:
            if acquired:
                self.release()


@dataclass(frozen=True)
class SyncTarget:
    """Where discovered places are filed and which vicinity text they must mention."""

    region: str
    city: str
    area_name: Optional[str] = None


class SyncOrchestrator:
    def __init__(
        self,
        client: DirectoryClient,
        tile_cache: TileCache,
        writer: CanonicalStoreWriter,
        raw_repository,
        place_repository,
        *,
        target: SyncTarget,
        lease: Optional[RunLease] = None,
        limiter: Optional[TokenBucket] = None,
        check_store: Optional[Callable[[], None]] = None,
        search_terms: str = DEFAULT_SEARCH_TYPES,
        refresh_interval_days: int = DEFAULT_REFRESH_INTERVAL_DAYS,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self.client = client
        self.tile_cache = tile_cache
        self.writer = writer
        self.raw_repository = raw_repository
        self.place_repository = place_repository
        self.target = target
        self.lease = lease or RunLease()
        self.limiter = limiter or TokenBucket.from_interval(2.0)
        self.check_store = check_store
        self.search_terms = search_terms
        self.refresh_interval_days = refresh_interval_days
        self._clock = clock

    @property
    def is_running(self) -> bool:
        return self.lease.is_running

    def now(self) -> datetime:
        return self._clock()

    def sync_point(
        self,
        point: SearchPoint,
        target: Optional[SyncTarget] = None,
        known: Optional[KnownSet] = None,
        limit: Optional[int] = None,
    ) -> Tuple[Set[str], bool]:
        """Return (external ids at ``point``, served from cache).

        ``limit`` caps how many directory entries are accepted for the point.
        """
        target = target or self.target
        key = point.location_key

        cached = self.tile_cache.lookup(key)
        if cached is not None:
            logger.info("Found %d places from cache for point %s", len(cached), key)
            return cached, True

        logger.info("Searching around %s (%dm radius)", key, point.radius_meters)
        entries = self.client.search(point, type_filter=self.search_terms, limit=limit, area_name=target.area_name)
        now = self._clock()
        external_ids: Set[str] = set()
        for entry in entries:
            external_ids.add(entry.external_id)
            if known is not None and entry.external_id in known:
                logger.debug("%s already persisted during this run", entry.external_id)
                continue
            raw = RawDirectoryRecord(
                external_id=entry.external_id,
                raw_payload=entry.raw,
                found_at_tile_key=key,
                found_at=now,
            )
            retry_once(lambda: self.raw_repository.record(raw), f"raw record {entry.external_id}")
            candidate = to_place_candidate(entry, region=target.region, city=target.city, synced_at=now)
            self.writer.upsert(candidate)
            # Only ids that reached the store may be skipped by later tiles.
            if known is not None:
                known.add(entry.external_id)

        self.tile_cache.record_result(
            key,
            point.radius_meters,
            self.search_terms,
            external_ids,
            refresh_interval_days=self.refresh_interval_days,
        )
        return external_ids, False

    def run(
        self,
        points: Sequence[SearchPoint],
        label: str = "ad-hoc",
        *,
        target: Optional[SyncTarget] = None,
        max_places: Optional[int] = None,
        stop_event: Optional[threading.Event] = None,
    ) -> Optional[SyncSummary]:
        """Sweep ``points`` in order. Returns None when another run holds the lease.

        Raises StoreUnavailable when the canonical store cannot be reached;
        every other error is confined to the point that raised it.
        """
        if self.check_store is not None:
            self.check_store()

        with self.lease.hold(label) as acquired:
            if not acquired:
                logger.info("Sync %s skipped: %s is still running", label, self.lease.holder)
                return None
            return self._sweep(points, label, target or self.target, max_places, stop_event)

    def _sweep(
        self,
        points: Sequence[SearchPoint],
        label: str,
        target: SyncTarget,
        max_places: Optional[int],
        stop_event: Optional[threading.Event],
    ) -> SyncSummary:
        summary = SyncSummary(label=label, points_total=len(points))
        calls_before = self.client.api_calls
        known = KnownSet()
        found: Set[str] = set()
        logger.info("Starting %s sync of %d points for %s", label, len(points), target.region)

        for index, point in enumerate(points, 1):
            if stop_event is not None and stop_event.is_set():
                logger.warning("Sync %s cancelled after %d/%d points", label, index - 1, len(points))
                summary.cancelled = True
                break
            if max_places is not None and len(found) >= max_places:
                logger.info("Sync %s reached %d places, stopping", label, max_places)
                break

            self.limiter.acquire()
            key = point.location_key
            remaining = max_places - len(found) if max_places is not None else None
            try:
                ids, cached = self.sync_point(point, target, known, limit=remaining)
            except _POINT_ERRORS as exc:
                self._record_failure(summary, key, exc)
                continue
            except Exception as exc:  # noqa: BLE001
                logger.exception("Unexpected error at point %s", key)
                self._record_failure(summary, key, exc)
                continue

            summary.points_processed += 1
            if cached:
                summary.points_cached += 1
            if remaining is None:
                found.update(ids)
            else:
                for external_id in sorted(ids - found):
                    if len(found) >= max_places:
                        break
                    found.add(external_id)
            logger.info("Progress %d/%d points, %d unique places", index, len(points), len(found))

        summary.places_found = len(found)
        summary.api_calls = self.client.api_calls - calls_before
        summary.estimated_cost = round(summary.api_calls * COST_PER_CALL, 4)
        logger.info(
            "Sync %s finished: processed=%d cached=%d failed=%d places=%d api_calls=%d cost=$%.2f",
            label,
            summary.points_processed,
            summary.points_cached,
            summary.points_failed,
            summary.places_found,
            summary.api_calls,
            summary.estimated_cost,
        )
        for key, kind, message in summary.provider_outages:
            logger.warning("Provider outage at %s: %s", key, message)
        return summary

    @staticmethod
    def _record_failure(summary: SyncSummary, key: str, exc: Exception) -> None:
        summary.points_failed += 1
        summary.failures.append((key, type(exc).__name__, str(exc)))
        logger.error("Error processing point %s: %s", key, exc)

    def sync_unprocessed(self, points: Sequence[SearchPoint], limit: Optional[int] = None, **kwargs) -> Optional[SyncSummary]:
        """Sweep only points that have never been recorded in the tile cache."""
        processed = self.tile_cache.processed_keys()
        pending: List[SearchPoint] = [point for point in points if point.location_key not in processed]
        logger.info("%d of %d points never processed", len(pending), len(points))
        if limit is not None:
            pending = pending[:limit]
        return self.run(pending, label=kwargs.pop("label", "unprocessed"), **kwargs)

    def sync_region(
        self,
        region: str,
        max_places: int,
        spacing_km: float = 0.4,
        stop_event: Optional[threading.Event] = None,
    ) -> Optional[SyncSummary]:
        """Sweep a named region from ``HIGH_TRAFFIC_REGIONS`` until ``max_places`` are found."""
        try:
            bounds, area_name = HIGH_TRAFFIC_REGIONS[region]
        except KeyError:
            raise ValueError(f"Unknown region {region!r}") from None
        target = SyncTarget(region=region, city=region, area_name=area_name)
        points = generate_grid(bounds, spacing_km)
        return self.run(points, label=f"region:{region}", target=target, max_places=max_places, stop_event=stop_event)

    def refresh_places(
        self,
        label: str = "daily",
        max_age: timedelta = timedelta(hours=24),
        stop_event: Optional[threading.Event] = None,
    ) -> Optional[SyncSummary]:
        """Re-fetch details for directory places not synced within ``max_age``.

        Counters are per place rather than per point.
        """
        if self.check_store is not None:
            self.check_store()

        with self.lease.hold(label) as acquired:
            if not acquired:
                logger.info("Sync %s skipped: %s is still running", label, self.lease.holder)
                return None

            places = self.place_repository.list_stale(self._clock() - max_age)
            summary = SyncSummary(label=label, points_total=len(places))
            calls_before = self.client.api_calls
            logger.info("Found %d places to update", len(places))

            for place in places:
                if stop_event is not None and stop_event.is_set():
                    summary.cancelled = True
                    break
                self.limiter.acquire()
                try:
                    details = self.client.details(place.external_id)
                    self.writer.apply_details(place, details)
                except _POINT_ERRORS as exc:
                    self._record_failure(summary, place.external_id, exc)
                    continue
                except Exception as exc:  # noqa: BLE001
                    logger.exception("Unexpected error refreshing %s", place.external_id)
                    self._record_failure(summary, place.external_id, exc)
                    continue
                summary.points_processed += 1
                logger.info("Updated %s", place.name)

            summary.places_found = summary.points_processed
            summary.api_calls = self.client.api_calls - calls_before
            summary.estimated_cost = round(summary.api_calls * COST_PER_CALL, 4)
            logger.info(
                "Refresh %s finished: processed=%d failed=%d", label, summary.points_processed, summary.points_failed
            )
            return summary


def build_orchestrator(settings: Settings, lease: Optional[RunLease] = None) -> SyncOrchestrator:
    """Wire the Postgres-backed orchestrator for the configured metro area."""
    place_repository = PostgresPlaceRepository()
    client = DirectoryClient(
        settings.require_api_key(),
        area_name=settings.area_name,
        language=settings.language,
    )
    region = settings.area_name.title()
    return SyncOrchestrator(
        client,
        TileCache(PostgresTileRepository()),
        CanonicalStoreWriter(place_repository),
        PostgresRawRepository(),
        place_repository,
        target=SyncTarget(region=region, city=region, area_name=settings.area_name),
        lease=lease,
        limiter=TokenBucket.from_interval(settings.request_delay),
        check_store=db.ping,
        refresh_interval_days=settings.refresh_interval_days,
    )
