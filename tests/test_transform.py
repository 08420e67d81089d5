from conftest import NOW, make_entry

from placesync.etl import transform
from placesync.etl.classify import classify_place_type
from placesync.models import PlaceSource, PlaceStatus, PlaceType


def test_parse_nearby_result_maps_fields():
    entry = transform.parse_nearby_result(
        {
            "place_id": "abc",
            "name": "  Chez Loutcha ",
            "vicinity": "101 Rue Moussé Diop, Dakar",
            "geometry": {"location": {"lat": 14.672, "lng": -17.438}},
            "rating": "4.3",
            "user_ratings_total": 812,
            "types": ["restaurant", "food"],
        }
    )

    assert entry.external_id == "abc"
    assert entry.name == "Chez Loutcha"
    assert (entry.lat, entry.lng) == (14.672, -17.438)
    assert entry.rating == 4.3
    assert entry.rating_count == 812
    assert entry.raw["place_id"] == "abc"


def test_parse_nearby_result_skips_incomplete_results():
    assert transform.parse_nearby_result({"name": "No id"}) is None
    assert transform.parse_nearby_result({"place_id": "abc", "name": " "}) is None


def test_parse_nearby_result_tolerates_bad_numbers():
    entry = transform.parse_nearby_result({"place_id": "abc", "name": "X", "rating": "n/a"})
    assert entry.rating is None
    assert entry.lat is None


def test_in_area_ignores_case_and_accents():
    assert transform.in_area(make_entry("a", vicinity="Avenue Lat Dior, THIES"), "thiès")
    assert transform.in_area(make_entry("a", vicinity="Route de Ngor, Dakar"), "dakar")
    assert not transform.in_area(make_entry("a", vicinity="Rufisque"), "dakar")
    assert not transform.in_area(make_entry("a", vicinity=None), "dakar")
    assert transform.in_area(make_entry("a", vicinity=None), None)


def test_parse_details_and_photo_urls():
    details = transform.parse_details(
        {
            "international_phone_number": "+221 33 821 00 00",
            "website": "https://example.sn",
            "photos": [{"photo_reference": f"ref{i}"} for i in range(6)] + [{"height": 10}],
            "opening_hours": {"weekday_text": ["lundi: 12:00–23:00"]},
        },
        "abc",
    )

    assert details.external_id == "abc"
    assert details.phone == "+221 33 821 00 00"
    assert len(details.photo_references) == 6
    assert details.opening_hours == ["lundi: 12:00–23:00"]

    urls = transform.photo_urls(details.photo_references)
    assert len(urls) == transform.MAX_PHOTOS
    assert urls[0] == "https://maps.googleapis.com/maps/api/place/photo?maxwidth=400&photoreference=ref0"


def test_to_place_candidate():
    entry = make_entry("abc", name="Le Bar Chez Fatou", rating=4.1, rating_count=9, types=["bar", "restaurant"])

    place = transform.to_place_candidate(entry, region="Dakar", city="Dakar", synced_at=NOW)

    assert place.external_id == "abc"
    assert place.type == PlaceType.BAR
    assert place.status == PlaceStatus.PENDING
    assert place.source == PlaceSource.DIRECTORY
    assert place.address.street == entry.vicinity
    assert place.address.region == "Dakar"
    assert place.ratings.external_rating == 4.1
    assert place.ratings.review_count == 9
    assert place.last_sync_time == NOW
    assert place.id is None


def test_classify_precedence():
    assert classify_place_type(["bar", "restaurant", "food"]) == PlaceType.BAR
    assert classify_place_type(["restaurant", "cafe"]) == PlaceType.CAFE
    assert classify_place_type(["meal_takeaway", "point_of_interest"]) == PlaceType.RESTAURANT
    assert classify_place_type(["lodging", "restaurant"]) == PlaceType.RESTAURANT
    assert classify_place_type(["lodging"]) == PlaceType.HOTEL
    assert classify_place_type(["mosque", "place_of_worship"]) == PlaceType.CULTURAL
    assert classify_place_type(["shopping_mall"]) == PlaceType.SHOPPING_CENTER


def test_classify_defaults_to_other():
    assert classify_place_type([]) == PlaceType.OTHER
    assert classify_place_type(None) == PlaceType.OTHER
    assert classify_place_type(["point_of_interest", "establishment"]) == PlaceType.OTHER
