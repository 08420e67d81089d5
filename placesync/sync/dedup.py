"""Duplicate detection and merging for canonical places."""

import logging
import math
from collections import defaultdict
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Dict, Iterable, List, Optional, Set, Tuple

from placesync.models import CanonicalPlace

logger = logging.getLogger(__name__)

EARTH_RADIUS_KM = 6371.0
SAME_PLACE_DISTANCE_KM = 0.1

# Richness weights used to pick the survivor of a fuzzy match.
SCORE_WEIGHTS = {
    "external_rating": 10,
    "review": 1,
    "image": 2,
    "phone": 5,
    "website": 5,
    "description": 3,
    "price_range": 2,
    "cuisine": 1,
}

_EPOCH = datetime.min.replace(tzinfo=timezone.utc)


def haversine_km(lat1: float, lng1: float, lat2: float, lng2: float) -> float:
    d_lat = math.radians(lat2 - lat1)
    d_lng = math.radians(lng2 - lng1)
    a = (
        math.sin(d_lat / 2) ** 2
        + math.cos(math.radians(lat1)) * math.cos(math.radians(lat2)) * math.sin(d_lng / 2) ** 2
    )
    return EARTH_RADIUS_KM * 2 * math.atan2(math.sqrt(a), math.sqrt(1 - a))


def place_distance_km(first: CanonicalPlace, second: CanonicalPlace) -> Optional[float]:
    a, b = first.address, second.address
    if None in (a.lat, a.lng, b.lat, b.lng):
        return None
    return haversine_km(a.lat, a.lng, b.lat, b.lng)


def place_score(place: CanonicalPlace, weights: Dict[str, int] = SCORE_WEIGHTS) -> int:
    score = 0
    if place.ratings.external_rating:
        score += weights["external_rating"]
    score += (place.ratings.review_count or 0) * weights["review"]
    score += len(place.images) * weights["image"]
    if place.phone:
        score += weights["phone"]
    if place.website:
        score += weights["website"]
    if place.description:
        score += weights["description"]
    if place.price_range:
        score += weights["price_range"]
    score += len(place.cuisine) * weights["cuisine"]
    return score


def _age_key(place: CanonicalPlace) -> Tuple[datetime, int]:
    created = place.created_at or _EPOCH
    if created.tzinfo is None:
        created = created.replace(tzinfo=timezone.utc)
    return created, place.id or 0


def pick_survivor(first: CanonicalPlace, second: CanonicalPlace) -> Tuple[CanonicalPlace, CanonicalPlace]:
    """Return (keep, remove): richer record wins, the older one on a tie."""
    first_score, second_score = place_score(first), place_score(second)
    if first_score != second_score:
        return (first, second) if first_score > second_score else (second, first)
    return (first, second) if _age_key(first) <= _age_key(second) else (second, first)


@dataclass
class DedupReport:
    merged: List[Tuple[int, int]] = field(default_factory=list)
    references_moved: int = 0
    distinct_pairs: int = 0

    def extend(self, other: "DedupReport") -> None:
        self.merged.extend(other.merged)
        self.references_moved += other.references_moved
        self.distinct_pairs += other.distinct_pairs


class KnownSet:
    """External ids already persisted during the current run."""

    def __init__(self, initial: Iterable[str] = ()) -> None:
        self._ids: Set[str] = set(initial)

    def add(self, external_id: str) -> bool:
        """Return True if ``external_id`` had not been seen yet."""
        if external_id in self._ids:
            return False
        self._ids.add(external_id)
        return True

    def __contains__(self, external_id: object) -> bool:
        return external_id in self._ids

    def __len__(self) -> int:
        return len(self._ids)


class DedupEngine:
    """Collapses duplicate canonical places.

    ``repository`` must provide ``list_all()`` and ``merge(remove_id,
    keep_id)``, the latter moving reviews, hangouts and advertisements onto
    the survivor before deleting the duplicate.
    """

    def __init__(self, repository) -> None:
        self.repository = repository

    def _merge(self, remove: CanonicalPlace, keep: CanonicalPlace, report: DedupReport) -> None:
        moved = self.repository.merge(remove.id, keep.id)
        total = sum(moved.values())
        report.merged.append((remove.id, keep.id))
        report.references_moved += total
        logger.info("Merged duplicate %s (id=%s) into id=%s, moved %d references", remove.name, remove.id, keep.id, total)

    def run_exact_pass(self) -> DedupReport:
        report = DedupReport()
        groups: Dict[str, List[CanonicalPlace]] = defaultdict(list)
        for place in self.repository.list_all():
            if place.external_id:
                groups[place.external_id].append(place)

        for external_id, places in groups.items():
            if len(places) < 2:
                continue
            places.sort(key=_age_key)
            keep = places[0]
            logger.info("External id %s has %d rows, keeping id=%s", external_id, len(places), keep.id)
            for duplicate in places[1:]:
                self._merge(duplicate, keep, report)
        return report

    def run_fuzzy_pass(self) -> DedupReport:
        report = DedupReport()
        groups: Dict[Tuple[str, Optional[str]], List[CanonicalPlace]] = defaultdict(list)
        for place in self.repository.list_all():
            groups[(place.name, place.address.region)].append(place)

        for (name, region), places in groups.items():
            if len(places) < 2:
                continue
            removed: Set[int] = set()
            for i, first in enumerate(places):
                if first.id in removed:
                    continue
                for second in places[i + 1:]:
                    if second.id in removed:
                        continue
                    distance = place_distance_km(first, second)
                    if distance is None:
                        continue
                    if distance >= SAME_PLACE_DISTANCE_KM:
                        report.distinct_pairs += 1
                        logger.info(
                            "%r in %s: ids %s and %s are %.3fkm apart, keeping both",
                            name,
                            region,
                            first.id,
                            second.id,
                            distance,
                        )
                        continue
                    keep, remove = pick_survivor(first, second)
                    self._merge(remove, keep, report)
                    removed.add(remove.id)
                    if remove is first:
                        break
        return report

    def run(self) -> DedupReport:
        report = self.run_exact_pass()
        report.extend(self.run_fuzzy_pass())
        logger.info("Dedup complete: merged=%d references_moved=%d", len(report.merged), report.references_moved)
        return report
