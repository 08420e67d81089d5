import itertools
import sys
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Dict, List, Optional

import pytest

# Make `placesync` importable when running pytest from a plain checkout.
ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from placesync.models import Address, CanonicalPlace, DirectoryEntry, PlaceDetails, PlaceSource, Ratings  # noqa: E402
from placesync.sync.tile_cache import TileCache  # noqa: E402

NOW = datetime(2024, 3, 4, 12, 0, tzinfo=timezone.utc)


class FakePlaceRepository:
    """In-memory stand-in for PostgresPlaceRepository."""

    def __init__(self):
        self.places: Dict[int, CanonicalPlace] = {}
        self.references: Dict[str, List[int]] = {"reviews": [], "hangouts": [], "advertisements": []}
        self._ids = itertools.count(1)
        self._created = itertools.count()

    def add(self, place: CanonicalPlace, created_at: Optional[datetime] = None) -> CanonicalPlace:
        place.id = next(self._ids)
        place.created_at = created_at or NOW + timedelta(seconds=next(self._created))
        self.places[place.id] = place
        return place

    def find_by_external_id(self, external_id):
        for place in self.list_all():
            if place.external_id == external_id:
                return place
        return None

    def find_by_name_region(self, name, region):
        return [p for p in self.list_all() if p.name == name and p.address.region == region]

    def insert(self, place):
        if place.external_id:
            existing = self.find_by_external_id(place.external_id)
            if existing is not None:
                return self.update_synced_fields(existing.id, place)
        return self.add(place)

    def update_synced_fields(self, place_id, candidate):
        existing = self.places[place_id]
        if existing.external_id is None:
            existing.external_id = candidate.external_id
        for attr in ("street", "city", "region", "lat", "lng"):
            value = getattr(candidate.address, attr)
            if value is not None:
                setattr(existing.address, attr, value)
        if candidate.ratings.external_rating is not None:
            existing.ratings.external_rating = candidate.ratings.external_rating
        existing.ratings.review_count = candidate.ratings.review_count
        if candidate.images:
            existing.images = list(candidate.images)
        existing.last_sync_time = candidate.last_sync_time or existing.last_sync_time
        return existing

    def apply_details(self, place_id, *, phone, website, street, external_rating, review_count, images, synced_at):
        existing = self.places[place_id]
        existing.phone = phone or existing.phone
        existing.website = website or existing.website
        existing.address.street = street or existing.address.street
        if external_rating is not None:
            existing.ratings.external_rating = external_rating
        if review_count is not None:
            existing.ratings.review_count = review_count
        if images:
            existing.images = list(images)
        existing.last_sync_time = synced_at
        return existing

    def list_all(self):
        return sorted(self.places.values(), key=lambda p: (p.created_at, p.id))

    def list_stale(self, synced_before):
        return [
            p
            for p in self.list_all()
            if p.source == PlaceSource.DIRECTORY
            and p.external_id
            and (p.last_sync_time is None or p.last_sync_time < synced_before)
        ]

    def merge(self, remove_id, keep_id):
        moved = {}
        for table, rows in self.references.items():
            moved[table] = sum(1 for place_id in rows if place_id == remove_id)
            self.references[table] = [keep_id if place_id == remove_id else place_id for place_id in rows]
        del self.places[remove_id]
        return moved

    def mark_synced(self, synced_at):
        count = 0
        for place in self.places.values():
            if place.source == PlaceSource.DIRECTORY:
                place.last_sync_time = synced_at
                count += 1
        return count

    def count_by_region(self):
        counts: Dict[str, int] = {}
        for place in self.places.values():
            counts[place.address.region] = counts.get(place.address.region, 0) + 1
        return counts


class FakeTileRepository:
    def __init__(self):
        self.records = {}

    def get(self, location_key):
        return self.records.get(location_key)

    def save(self, record):
        self.records[record.location_key] = record

    def keys(self):
        return set(self.records)


class FakeRawRepository:
    def __init__(self):
        self.records = {}

    def record(self, raw):
        if raw.external_id in self.records:
            return False
        self.records[raw.external_id] = raw
        return True


class FakeDirectoryClient:
    """Returns canned entries per location key; raises when the canned value is an exception."""

    def __init__(self, results=None, details=None):
        self.results = results or {}
        self.details_by_id = details or {}
        self.api_calls = 0
        self.searched: List[str] = []

    def search(self, point, type_filter=None, limit=None, area_name=None):
        self.api_calls += 1
        self.searched.append(point.location_key)
        result = self.results.get(point.location_key, [])
        if isinstance(result, Exception):
            raise result
        return list(result)[:limit] if limit is not None else list(result)

    def details(self, external_id):
        self.api_calls += 1
        result = self.details_by_id.get(external_id, PlaceDetails(external_id=external_id))
        if isinstance(result, Exception):
            raise result
        return result


class CountingLimiter:
    def __init__(self):
        self.acquired = 0

    def acquire(self):
        self.acquired += 1
        return 0.0


def make_place(name="Chez Loutcha", region="Dakar", lat=14.7, lng=-17.47, **kwargs) -> CanonicalPlace:
    ratings = kwargs.pop("ratings", Ratings())
    return CanonicalPlace(
        name=name,
        address=Address(street="Rue 10", city="Dakar", region=region, lat=lat, lng=lng),
        ratings=ratings,
        **kwargs,
    )


def make_entry(external_id, name=None, lat=14.7, lng=-17.47, vicinity="Rue 10, Dakar", **kwargs) -> DirectoryEntry:
    return DirectoryEntry(
        external_id=external_id,
        name=name or f"Place {external_id}",
        vicinity=vicinity,
        lat=lat,
        lng=lng,
        types=kwargs.pop("types", ["restaurant"]),
        raw={"place_id": external_id},
        **kwargs,
    )


@pytest.fixture
def place_repo():
    return FakePlaceRepository()


@pytest.fixture
def tile_repo():
    return FakeTileRepository()


@pytest.fixture
def raw_repo():
    return FakeRawRepository()


@pytest.fixture
def clock():
    return lambda: NOW


@pytest.fixture
def tile_cache(tile_repo, clock):
    return TileCache(tile_repo, clock=clock)
