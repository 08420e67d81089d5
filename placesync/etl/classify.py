"""Map directory category tags onto the application's place types.

Directory results carry several tags at once (``["bar", "restaurant",
"food", "point_of_interest"]``). The rules below are checked top to bottom
and the first rule with a matching tag decides the type, so a result tagged
both ``bar`` and ``restaurant`` is always a bar:

1. bar            -- bar, night_club
2. cafe           -- cafe
3. restaurant     -- restaurant, food, meal_takeaway, meal_delivery, bakery
4. hotel          -- lodging
5. museum         -- museum, art_gallery
6. cultural       -- church, mosque, synagogue, hindu_temple, place_of_worship
7. park           -- park, natural_feature, campground
8. entertainment  -- amusement_park, movie_theater, bowling_alley, casino, zoo, aquarium
9. sports         -- gym, stadium
10. shopping_center -- shopping_mall, department_store, store

Anything else, including an empty tag list, is ``other``.
"""

from typing import Iterable, Tuple

from placesync.models import PlaceType

TYPE_PRECEDENCE: Tuple[Tuple[PlaceType, frozenset], ...] = (
    (PlaceType.BAR, frozenset({"bar", "night_club"})),
    (PlaceType.CAFE, frozenset({"cafe"})),
    (PlaceType.RESTAURANT, frozenset({"restaurant", "food", "meal_takeaway", "meal_delivery", "bakery"})),
    (PlaceType.HOTEL, frozenset({"lodging"})),
    (PlaceType.MUSEUM, frozenset({"museum", "art_gallery"})),
    (PlaceType.CULTURAL, frozenset({"church", "mosque", "synagogue", "hindu_temple", "place_of_worship"})),
    (PlaceType.PARK, frozenset({"park", "natural_feature", "campground"})),
    (
        PlaceType.ENTERTAINMENT,
        frozenset({"amusement_park", "movie_theater", "bowling_alley", "casino", "zoo", "aquarium"}),
    ),
    (PlaceType.SPORTS, frozenset({"gym", "stadium"})),
    (PlaceType.SHOPPING_CENTER, frozenset({"shopping_mall", "department_store", "store"})),
)


def classify_place_type(types: Iterable[str]) -> PlaceType:
    tags = {tag.strip().lower() for tag in types or [] if tag}
    for place_type, matches in TYPE_PRECEDENCE:
        if tags & matches:
            return place_type
    return PlaceType.OTHER
