"""Core data models shared by the place sync pipeline."""

from __future__ import annotations

import enum
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, List, Optional, Set, Tuple


class PlaceType(str, enum.Enum):
    RESTAURANT = "restaurant"
    PARK = "park"
    MUSEUM = "museum"
    SHOPPING_CENTER = "shopping_center"
    HOTEL = "hotel"
    CAFE = "cafe"
    BAR = "bar"
    ENTERTAINMENT = "entertainment"
    CULTURAL = "cultural"
    SPORTS = "sports"
    OTHER = "other"


class PlaceStatus(str, enum.Enum):
    PENDING = "pending"
    ACTIVE = "active"
    REJECTED = "rejected"


class PlaceSource(str, enum.Enum):
    DIRECTORY = "directory"
    MANUAL = "manual"
    ADMIN = "admin"


@dataclass(frozen=True)
class BoundingBox:
    north: float
    south: float
    east: float
    west: float

    def contains(self, lat: float, lng: float) -> bool:
        return self.south <= lat <= self.north and self.west <= lng <= self.east


@dataclass(frozen=True)
class SearchPoint:
    """Centre of one grid tile and the radius searched around it."""

    lat: float
    lng: float
    radius_meters: int

    @property
    def location_key(self) -> str:
        return f"{self.lat},{self.lng}"


@dataclass(slots=True)
class DirectoryEntry:
    """Normalized snapshot of a single nearby-search result."""

    external_id: str
    name: str
    vicinity: Optional[str] = None
    lat: Optional[float] = None
    lng: Optional[float] = None
    rating: Optional[float] = None
    rating_count: Optional[int] = None
    types: List[str] = field(default_factory=list)
    raw: Dict[str, Any] = field(default_factory=dict, repr=False)


@dataclass(slots=True)
class PlaceDetails:
    """Extended fields returned by the directory details call."""

    external_id: str
    phone: Optional[str] = None
    website: Optional[str] = None
    formatted_address: Optional[str] = None
    rating: Optional[float] = None
    rating_count: Optional[int] = None
    photo_references: List[str] = field(default_factory=list)
    opening_hours: List[str] = field(default_factory=list)
    raw: Dict[str, Any] = field(default_factory=dict, repr=False)


@dataclass(slots=True)
class TileRecord:
    location_key: str
    radius_meters: int
    search_terms: str
    place_external_ids: Set[str]
    last_searched_at: datetime
    refresh_interval_days: int = 30


@dataclass(slots=True)
class RawDirectoryRecord:
    external_id: str
    raw_payload: Dict[str, Any]
    found_at_tile_key: str
    found_at: datetime


@dataclass(slots=True)
class Address:
    street: Optional[str] = None
    city: Optional[str] = None
    region: Optional[str] = None
    lat: Optional[float] = None
    lng: Optional[float] = None


@dataclass(slots=True)
class Ratings:
    external_rating: Optional[float] = None
    review_count: int = 0
    app_rating: float = 0.0


@dataclass(slots=True)
class CanonicalPlace:
    """Application-owned representation of a place after merge."""

    name: str
    type: PlaceType = PlaceType.OTHER
    id: Optional[int] = None
    external_id: Optional[str] = None
    address: Address = field(default_factory=Address)
    ratings: Ratings = field(default_factory=Ratings)
    images: List[str] = field(default_factory=list)
    status: PlaceStatus = PlaceStatus.PENDING
    source: PlaceSource = PlaceSource.DIRECTORY
    phone: Optional[str] = None
    website: Optional[str] = None
    description: Optional[str] = None
    price_range: Optional[str] = None
    cuisine: List[str] = field(default_factory=list)
    is_verified: bool = False
    last_sync_time: Optional[datetime] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None


@dataclass(slots=True)
class SyncSummary:
    """Counters reported at the end of a sync run."""

    label: str
    points_total: int = 0
    points_processed: int = 0
    points_cached: int = 0
    points_failed: int = 0
    places_found: int = 0
    api_calls: int = 0
    estimated_cost: float = 0.0
    cancelled: bool = False
    failures: List[Tuple[str, str, str]] = field(default_factory=list)

    @property
    def provider_outages(self) -> List[Tuple[str, str, str]]:
        return [failure for failure in self.failures if failure[1] == "ProviderOutage"]
