"""PostgreSQL repositories for places, tiles and raw directory records."""

import logging
from datetime import datetime
from typing import Any, Dict, List, Optional, Set

from psycopg2 import extras

from placesync.core.db import get_connection
from placesync.models import (
    Address,
    CanonicalPlace,
    PlaceSource,
    PlaceStatus,
    PlaceType,
    Ratings,
    RawDirectoryRecord,
    TileRecord,
)

logger = logging.getLogger(__name__)

REFERENCE_TABLES = ("reviews", "hangouts", "advertisements")


def _row_to_place(row: Dict[str, Any]) -> CanonicalPlace:
    return CanonicalPlace(
        id=row["id"],
        name=row["name"],
        type=PlaceType(row.get("type") or PlaceType.OTHER.value),
        external_id=row.get("external_id"),
        address=Address(
            street=row.get("street"),
            city=row.get("city"),
            region=row.get("region"),
            lat=row.get("lat"),
            lng=row.get("lng"),
        ),
        ratings=Ratings(
            external_rating=row.get("external_rating"),
            review_count=row.get("review_count") or 0,
            app_rating=row.get("app_rating") or 0.0,
        ),
        images=list(row.get("images") or []),
        status=PlaceStatus(row.get("status") or PlaceStatus.PENDING.value),
        source=PlaceSource(row.get("source") or PlaceSource.MANUAL.value),
        phone=row.get("phone"),
        website=row.get("website"),
        description=row.get("description"),
        price_range=row.get("price_range"),
        cuisine=list(row.get("cuisine") or []),
        is_verified=bool(row.get("is_verified")),
        last_sync_time=row.get("last_sync_time"),
        created_at=row.get("created_at"),
        updated_at=row.get("updated_at"),
    )


def _place_params(place: CanonicalPlace) -> Dict[str, Any]:
    return {
        "name": place.name,
        "type": place.type.value,
        "external_id": place.external_id,
        "street": place.address.street,
        "city": place.address.city,
        "region": place.address.region,
        "lat": place.address.lat,
        "lng": place.address.lng,
        "external_rating": place.ratings.external_rating,
        "review_count": place.ratings.review_count,
        "images": extras.Json(place.images or []),
        "status": place.status.value,
        "source": place.source.value,
        "last_sync_time": place.last_sync_time,
    }


# Only the columns the sync writer originates are touched on conflict.
_INSERT_PLACE = """
INSERT INTO places (
    name,
    type,
    external_id,
    street,
    city,
    region,
    lat,
    lng,
    external_rating,
    review_count,
    images,
    status,
    source,
    last_sync_time
) VALUES (
    %(name)s,
    %(type)s,
    %(external_id)s,
    %(street)s,
    %(city)s,
    %(region)s,
    %(lat)s,
    %(lng)s,
    %(external_rating)s,
    %(review_count)s,
    %(images)s,
    %(status)s,
    %(source)s,
    %(last_sync_time)s
)
ON CONFLICT (external_id) DO UPDATE SET
    street = EXCLUDED.street,
    city = EXCLUDED.city,
    region = EXCLUDED.region,
    lat = EXCLUDED.lat,
    lng = EXCLUDED.lng,
    external_rating = EXCLUDED.external_rating,
    review_count = EXCLUDED.review_count,
    images = CASE WHEN jsonb_array_length(EXCLUDED.images) > 0 THEN EXCLUDED.images ELSE places.images END,
    last_sync_time = COALESCE(EXCLUDED.last_sync_time, places.last_sync_time),
    updated_at = NOW()
RETURNING *;
"""

_UPDATE_SYNCED_FIELDS = """
UPDATE places SET
    external_id = COALESCE(places.external_id, %(external_id)s),
    street = COALESCE(%(street)s, places.street),
    city = COALESCE(%(city)s, places.city),
    region = COALESCE(%(region)s, places.region),
    lat = COALESCE(%(lat)s, places.lat),
    lng = COALESCE(%(lng)s, places.lng),
    external_rating = COALESCE(%(external_rating)s, places.external_rating),
    review_count = %(review_count)s,
    images = CASE WHEN jsonb_array_length(%(images)s::jsonb) > 0 THEN %(images)s::jsonb ELSE places.images END,
    last_sync_time = COALESCE(%(last_sync_time)s, places.last_sync_time),
    updated_at = NOW()
WHERE id = %(id)s
RETURNING *;
"""

_APPLY_DETAILS = """
UPDATE places SET
    phone = COALESCE(%(phone)s, places.phone),
    website = COALESCE(%(website)s, places.website),
    street = COALESCE(%(street)s, places.street),
    external_rating = COALESCE(%(external_rating)s, places.external_rating),
    review_count = COALESCE(%(review_count)s, places.review_count),
    images = CASE WHEN jsonb_array_length(%(images)s::jsonb) > 0 THEN %(images)s::jsonb ELSE places.images END,
    last_sync_time = %(last_sync_time)s,
    updated_at = NOW()
WHERE id = %(id)s
RETURNING *;
"""


class PostgresPlaceRepository:
    """Canonical place collection backed by the ``places`` table."""

    def _fetch_one(self, sql: str, params: Any) -> Optional[CanonicalPlace]:
        with get_connection() as conn:
            with conn.cursor(cursor_factory=extras.RealDictCursor) as cur:
                cur.execute(sql, params)
                row = cur.fetchone()
        return _row_to_place(row) if row else None

    def _fetch_all(self, sql: str, params: Any = None) -> List[CanonicalPlace]:
        with get_connection() as conn:
            with conn.cursor(cursor_factory=extras.RealDictCursor) as cur:
                cur.execute(sql, params)
                rows = cur.fetchall()
        return [_row_to_place(row) for row in rows]

    def find_by_external_id(self, external_id: str) -> Optional[CanonicalPlace]:
        return self._fetch_one("SELECT * FROM places WHERE external_id = %s", (external_id,))

    def find_by_name_region(self, name: str, region: Optional[str]) -> List[CanonicalPlace]:
        return self._fetch_all(
            "SELECT * FROM places WHERE name = %s AND region IS NOT DISTINCT FROM %s ORDER BY created_at, id",
            (name, region),
        )

    def insert(self, place: CanonicalPlace) -> CanonicalPlace:
        return self._fetch_one(_INSERT_PLACE, _place_params(place))

    def update_synced_fields(self, place_id: int, place: CanonicalPlace) -> CanonicalPlace:
        params = _place_params(place)
        params["id"] = place_id
        return self._fetch_one(_UPDATE_SYNCED_FIELDS, params)

    def apply_details(
        self,
        place_id: int,
        *,
        phone: Optional[str],
        website: Optional[str],
        street: Optional[str],
        external_rating: Optional[float],
        review_count: Optional[int],
        images: List[str],
        synced_at: datetime,
    ) -> CanonicalPlace:
        params = {
            "id": place_id,
            "phone": phone,
            "website": website,
            "street": street,
            "external_rating": external_rating,
            "review_count": review_count,
            "images": extras.Json(images or []),
            "last_sync_time": synced_at,
        }
        return self._fetch_one(_APPLY_DETAILS, params)

    def list_all(self) -> List[CanonicalPlace]:
        return self._fetch_all("SELECT * FROM places ORDER BY created_at, id")

    def list_stale(self, synced_before: datetime) -> List[CanonicalPlace]:
        return self._fetch_all(
            """
            SELECT * FROM places
            WHERE source = %s AND external_id IS NOT NULL
              AND (last_sync_time IS NULL OR last_sync_time < %s)
            ORDER BY last_sync_time NULLS FIRST, id
            """,
            (PlaceSource.DIRECTORY.value, synced_before),
        )

    def merge(self, remove_id: int, keep_id: int) -> Dict[str, int]:
        """Point every reference at ``keep_id`` and delete ``remove_id`` in one transaction."""
        moved: Dict[str, int] = {}
        with get_connection() as conn:
            with conn.cursor() as cur:
                for table in REFERENCE_TABLES:
                    cur.execute(f"UPDATE {table} SET place_id = %s WHERE place_id = %s", (keep_id, remove_id))
                    moved[table] = cur.rowcount
                cur.execute("DELETE FROM places WHERE id = %s", (remove_id,))
        logger.debug("Merged place %s into %s: %s", remove_id, keep_id, moved)
        return moved

    def mark_synced(self, synced_at: datetime) -> int:
        with get_connection() as conn:
            with conn.cursor() as cur:
                cur.execute(
                    "UPDATE places SET last_sync_time = %s WHERE source = %s",
                    (synced_at, PlaceSource.DIRECTORY.value),
                )
                return cur.rowcount

    def count_by_region(self) -> Dict[str, int]:
        with get_connection() as conn:
            with conn.cursor() as cur:
                cur.execute("SELECT region, COUNT(*) FROM places GROUP BY region ORDER BY region")
                return {region: count for region, count in cur.fetchall()}


class PostgresTileRepository:
    """Freshness records keyed by ``location_key``."""

    def get(self, location_key: str) -> Optional[TileRecord]:
        with get_connection() as conn:
            with conn.cursor(cursor_factory=extras.RealDictCursor) as cur:
                cur.execute("SELECT * FROM place_tiles WHERE location_key = %s", (location_key,))
                row = cur.fetchone()
        if not row:
            return None
        return TileRecord(
            location_key=row["location_key"],
            radius_meters=row["radius_meters"],
            search_terms=row["search_terms"],
            place_external_ids=set(row.get("place_external_ids") or []),
            last_searched_at=row["last_searched_at"],
            refresh_interval_days=row["refresh_interval_days"],
        )

    def save(self, record: TileRecord) -> None:
        params = {
            "location_key": record.location_key,
            "radius_meters": record.radius_meters,
            "search_terms": record.search_terms,
            "place_external_ids": extras.Json(sorted(record.place_external_ids)),
            "last_searched_at": record.last_searched_at,
            "refresh_interval_days": record.refresh_interval_days,
        }
        with get_connection() as conn:
            with conn.cursor() as cur:
                cur.execute(
                    """
                    INSERT INTO place_tiles (
                        location_key, radius_meters, search_terms, place_external_ids,
                        last_searched_at, refresh_interval_days
                    ) VALUES (
                        %(location_key)s, %(radius_meters)s, %(search_terms)s, %(place_external_ids)s,
                        %(last_searched_at)s, %(refresh_interval_days)s
                    )
                    ON CONFLICT (location_key) DO UPDATE SET
                        radius_meters = EXCLUDED.radius_meters,
                        search_terms = EXCLUDED.search_terms,
                        place_external_ids = EXCLUDED.place_external_ids,
                        last_searched_at = EXCLUDED.last_searched_at,
                        refresh_interval_days = EXCLUDED.refresh_interval_days;
                    """,
                    params,
                )

    def keys(self) -> Set[str]:
        with get_connection() as conn:
            with conn.cursor() as cur:
                cur.execute("SELECT location_key FROM place_tiles")
                return {row[0] for row in cur.fetchall()}


class PostgresRawRepository:
    """Write-once cache of raw directory payloads."""

    def record(self, raw: RawDirectoryRecord) -> bool:
        """Insert ``raw`` unless its external id was seen before; return True when inserted."""
        with get_connection() as conn:
            with conn.cursor() as cur:
                cur.execute(
                    """
                    INSERT INTO place_raw (external_id, raw_payload, found_at_tile_key, found_at)
                    VALUES (%s, %s, %s, %s)
                    ON CONFLICT (external_id) DO NOTHING;
                    """,
                    (raw.external_id, extras.Json(raw.raw_payload), raw.found_at_tile_key, raw.found_at),
                )
                return cur.rowcount == 1
