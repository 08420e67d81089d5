"""Utilities for transforming Google Places responses into sync models."""

import logging
import unicodedata
from datetime import datetime
from typing import Any, Dict, Iterable, List, Optional

from placesync.etl.classify import classify_place_type
from placesync.models import Address, CanonicalPlace, DirectoryEntry, PlaceDetails, PlaceSource, PlaceStatus, Ratings

logger = logging.getLogger(__name__)

PHOTO_URL = "https://maps.googleapis.com/maps/api/place/photo?maxwidth=400&photoreference={reference}"
MAX_PHOTOS = 5


def normalize_text(value: Optional[str]) -> str:
    """Lowercase and strip accents so 'Thiès' matches 'thies'."""
    if not value:
        return ""
    decomposed = unicodedata.normalize("NFKD", value)
    return "".join(ch for ch in decomposed if not unicodedata.combining(ch)).lower()


def in_area(entry: DirectoryEntry, area_name: Optional[str]) -> bool:
    if not area_name:
        return True
    return normalize_text(area_name) in normalize_text(entry.vicinity)


def parse_nearby_result(result: Dict[str, Any]) -> Optional[DirectoryEntry]:
    place_id = result.get("place_id")
    name = (result.get("name") or "").strip()
    if not place_id or not name:
        logger.debug("Skipping result without place_id or name: %s", result)
        return None

    location = result.get("geometry", {}).get("location", {})
    return DirectoryEntry(
        external_id=place_id,
        name=name,
        vicinity=result.get("vicinity"),
        lat=_safe_float(location.get("lat")),
        lng=_safe_float(location.get("lng")),
        rating=_safe_float(result.get("rating")),
        rating_count=_safe_int(result.get("user_ratings_total")),
        types=list(result.get("types") or []),
        raw=result,
    )


def parse_details(result: Dict[str, Any], external_id: str) -> PlaceDetails:
    photos = result.get("photos") or []
    references = [photo.get("photo_reference") for photo in photos if photo.get("photo_reference")]
    hours = (result.get("opening_hours") or {}).get("weekday_text") or []
    return PlaceDetails(
        external_id=result.get("place_id") or external_id,
        phone=result.get("formatted_phone_number") or result.get("international_phone_number"),
        website=result.get("website"),
        formatted_address=result.get("formatted_address"),
        rating=_safe_float(result.get("rating")),
        rating_count=_safe_int(result.get("user_ratings_total")),
        photo_references=references,
        opening_hours=list(hours),
        raw=result,
    )


def photo_urls(references: Iterable[str]) -> List[str]:
    return [PHOTO_URL.format(reference=ref) for ref in list(references)[:MAX_PHOTOS]]


def to_place_candidate(entry: DirectoryEntry, region: str, city: str, synced_at: Optional[datetime] = None) -> CanonicalPlace:
    return CanonicalPlace(
        name=entry.name,
        type=classify_place_type(entry.types),
        external_id=entry.external_id,
        address=Address(street=entry.vicinity, city=city, region=region, lat=entry.lat, lng=entry.lng),
        ratings=Ratings(external_rating=entry.rating, review_count=entry.rating_count or 0),
        status=PlaceStatus.PENDING,
        source=PlaceSource.DIRECTORY,
        last_sync_time=synced_at,
    )


def _safe_float(value: Any) -> Optional[float]:
    try:
        if value is None:
            return None
        return float(value)
    except (TypeError, ValueError):
        return None


def _safe_int(value: Any) -> Optional[int]:
    try:
        if value is None:
            return None
        return int(value)
    except (TypeError, ValueError):
        return None
