"""Rate-limited directory client wrapping the Places nearby-search and details calls."""

import logging
import time
from typing import Any, Callable, Dict, List, Optional, Set

from placesync.etl.transform import in_area, parse_details, parse_nearby_result
from placesync.models import DirectoryEntry, PlaceDetails, SearchPoint
from placesync.vendors import google_places
from placesync.vendors.google_places import DirectoryError

logger = logging.getLogger(__name__)

MAX_RETRIES = 3
RETRY_DELAY_SECONDS = 1.0
PAGE_SIZE = 20
PAGE_SETTLE_DELAY_SECONDS = 2.0
COST_PER_CALL = 0.017  # USD

DEFAULT_SEARCH_TYPES = "|".join(
    [
        "restaurant", "food", "meal_takeaway", "bakery", "cafe", "bar",
        "fast_food", "pizza_restaurant", "seafood_restaurant",
        "chinese_restaurant", "japanese_restaurant", "indian_restaurant",
        "italian_restaurant", "mexican_restaurant", "thai_restaurant",
        "korean_restaurant", "greek_restaurant", "french_restaurant",
        "spanish_restaurant", "portuguese_restaurant", "brazilian_restaurant",
        "lebanese_restaurant", "turkish_restaurant", "american_restaurant",
        "african_restaurant", "caribbean_restaurant", "mediterranean_restaurant",
        "middle_eastern_restaurant", "asian_restaurant", "european_restaurant",
        "latin_american_restaurant", "fusion_restaurant",
    ]
)


class DirectoryClient:
    """Nearby search with bounded 429 retries, pagination and area filtering.

    Only errors flagged ``retryable`` (``RateLimited``) are retried, with a
    fixed delay; bad requests, key problems and provider outages propagate on
    the first failure so the caller can skip the tile.
    """

    def __init__(
        self,
        api_key: str,
        *,
        area_name: Optional[str] = None,
        language: Optional[str] = "fr",
        max_retries: int = MAX_RETRIES,
        retry_delay: float = RETRY_DELAY_SECONDS,
        page_settle_delay: float = PAGE_SETTLE_DELAY_SECONDS,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        if not api_key:
            raise ValueError("api_key is required")
        self.api_key = api_key
        self.area_name = area_name
        self.language = language
        self.max_retries = max_retries
        self.retry_delay = retry_delay
        self.page_settle_delay = page_settle_delay
        self._sleep = sleep
        self.api_calls = 0

    @property
    def estimated_cost(self) -> float:
        return round(self.api_calls * COST_PER_CALL, 4)

    def _call(self, fn: Callable[[], Dict[str, Any]], description: str) -> Dict[str, Any]:
        attempt = 0
        while True:
            attempt += 1
            self.api_calls += 1
            try:
                return fn()
            except DirectoryError as exc:
                if not exc.retryable:
                    raise
                if attempt > self.max_retries:
                    logger.error("%s still failing after %d attempts: %s", description, attempt, exc)
                    raise
                logger.warning(
                    "%s failed with %s (attempt %d/%d), waiting %.1fs",
                    description,
                    type(exc).__name__,
                    attempt,
                    self.max_retries + 1,
                    self.retry_delay,
                )
                self._sleep(self.retry_delay)

    def search(
        self,
        point: SearchPoint,
        type_filter: Optional[str] = DEFAULT_SEARCH_TYPES,
        limit: Optional[int] = None,
        area_name: Optional[str] = None,
    ) -> List[DirectoryEntry]:
        area = area_name or self.area_name
        accepted: List[DirectoryEntry] = []
        seen: Set[str] = set()
        token: Optional[str] = None
        page = 0

        while True:
            page += 1
            payload = self._call(
                lambda: google_places.nearby_search(
                    lat=point.lat,
                    lng=point.lng,
                    radius=point.radius_meters,
                    api_key=self.api_key,
                    type_filter=type_filter,
                    language=self.language,
                    pagetoken=token,
                ),
                f"nearby_search {point.location_key} page {page}",
            )
            results = payload.get("results", [])
            logger.info("Fetched %d results on page %d for %s", len(results), page, point.location_key)

            for result in results:
                entry = parse_nearby_result(result)
                if entry is None or entry.external_id in seen:
                    continue
                if not in_area(entry, area):
                    logger.debug("Dropping %s outside %s: %s", entry.external_id, area, entry.vicinity)
                    continue
                seen.add(entry.external_id)
                accepted.append(entry)
                if limit is not None and len(accepted) >= limit:
                    return accepted

            token = payload.get("next_page_token")
            if len(results) < PAGE_SIZE or not token:
                break
            # The provider needs a moment before a fresh page token becomes valid.
            self._sleep(self.page_settle_delay)

        return accepted

    def details(self, external_id: str) -> PlaceDetails:
        result = self._call(
            lambda: google_places.place_details(place_id=external_id, api_key=self.api_key, language=self.language),
            f"place_details {external_id}",
        )
        return parse_details(result, external_id)
