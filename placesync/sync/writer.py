"""Upserts discovered places into the canonical store."""

import logging
from datetime import datetime
from typing import Callable, Optional, TypeVar

from placesync.core.db import StorageError
from placesync.etl.transform import photo_urls
from placesync.models import CanonicalPlace, PlaceDetails, PlaceSource, PlaceStatus
from placesync.sync.dedup import SAME_PLACE_DISTANCE_KM, place_distance_km
from placesync.sync.tile_cache import utcnow

logger = logging.getLogger(__name__)

T = TypeVar("T")


def retry_once(fn: Callable[[], T], description: str) -> T:
    """Run ``fn`` and repeat it a single time if the store raises StorageError."""
    try:
        return fn()
    except StorageError as exc:
        logger.warning("%s failed (%s), retrying once", description, exc)
        return fn()


class CanonicalStoreWriter:
    """Merge-not-overwrite writer for directory-sourced places.

    Only address, external rating, review count, images and the sync stamp
    are written on a re-sight. Status, verification, description, pricing,
    cuisine and app rating belong to other flows and are never touched.
    """

    def __init__(self, repository, clock: Callable[[], datetime] = utcnow) -> None:
        self.repository = repository
        self._clock = clock

    def _find_nearby(self, candidate: CanonicalPlace) -> Optional[CanonicalPlace]:
        for existing in self.repository.find_by_name_region(candidate.name, candidate.address.region):
            if existing.external_id and candidate.external_id and existing.external_id != candidate.external_id:
                continue
            distance = place_distance_km(existing, candidate)
            if distance is not None and distance < SAME_PLACE_DISTANCE_KM:
                return existing
        return None

    def upsert(self, candidate: CanonicalPlace) -> CanonicalPlace:
        candidate.last_sync_time = candidate.last_sync_time or self._clock()
        description = f"upsert {candidate.external_id or candidate.name}"
        return retry_once(lambda: self._upsert(candidate), description)

    def _upsert(self, candidate: CanonicalPlace) -> CanonicalPlace:
        existing = None
        if candidate.external_id:
            existing = self.repository.find_by_external_id(candidate.external_id)
        if existing is None:
            existing = self._find_nearby(candidate)

        if existing is not None:
            logger.debug("Updating place id=%s from %s", existing.id, candidate.external_id)
            return self.repository.update_synced_fields(existing.id, candidate)

        candidate.status = PlaceStatus.PENDING
        candidate.source = PlaceSource.DIRECTORY
        logger.debug("Inserting new place %s (%s)", candidate.name, candidate.external_id)
        return self.repository.insert(candidate)

    def apply_details(self, place: CanonicalPlace, details: PlaceDetails) -> CanonicalPlace:
        images = photo_urls(details.photo_references)
        return retry_once(
            lambda: self.repository.apply_details(
                place.id,
                phone=details.phone or None,
                website=details.website or None,
                street=details.formatted_address or None,
                external_rating=details.rating,
                review_count=details.rating_count,
                images=images,
                synced_at=self._clock(),
            ),
            f"apply_details {place.external_id}",
        )
