"""Client utilities for the Google Places API."""

import logging
from typing import Any, Dict, Optional

import requests

logger = logging.getLogger(__name__)
_SESSION = requests.Session()
_BASE_URL = "https://maps.googleapis.com/maps/api/place"

DETAILS_FIELDS = (
    "place_id,name,formatted_address,formatted_phone_number,international_phone_number,"
    "website,rating,user_ratings_total,photos,opening_hours,types,geometry"
)


class DirectoryError(RuntimeError):
    """Raised when the Places API returns a non-successful response."""

    retryable = False


class RateLimited(DirectoryError):
    """HTTP 429 or OVER_QUERY_LIMIT."""

    retryable = True


class BadRequest(DirectoryError):
    """HTTP 400 or INVALID_REQUEST."""


class AuthError(DirectoryError):
    """HTTP 403 or REQUEST_DENIED: the API key is missing, invalid or restricted."""


class ProviderOutage(DirectoryError):
    """HTTP 5xx or UNKNOWN_ERROR."""


_STATUS_ERRORS = {
    "OVER_QUERY_LIMIT": RateLimited,
    "INVALID_REQUEST": BadRequest,
    "REQUEST_DENIED": AuthError,
    "UNKNOWN_ERROR": ProviderOutage,
}


def classify_http_status(status_code: int) -> Optional[type]:
    if status_code == 429:
        return RateLimited
    if status_code == 400:
        return BadRequest
    if status_code in (401, 403):
        return AuthError
    if status_code >= 500:
        return ProviderOutage
    if status_code >= 400:
        return DirectoryError
    return None


def _get(endpoint: str, params: Dict[str, Any]) -> Dict[str, Any]:
    try:
        response = _SESSION.get(f"{_BASE_URL}/{endpoint}/json", params=params, timeout=10)
    except requests.RequestException as exc:
        raise ProviderOutage(f"{endpoint} request failed: {exc}") from exc

    error_cls = classify_http_status(response.status_code)
    if error_cls is not None:
        logger.error("%s failed: http_status=%s", endpoint, response.status_code)
        raise error_cls(f"{endpoint} returned HTTP {response.status_code}")

    payload = response.json()
    status = payload.get("status")
    if status not in {"OK", "ZERO_RESULTS"}:
        logger.error("%s failed: status=%s, error_message=%s", endpoint, status, payload.get("error_message"))
        error_cls = _STATUS_ERRORS.get(status, DirectoryError)
        raise error_cls(payload.get("error_message") or status)
    return payload


def nearby_search(
    lat: float,
    lng: float,
    radius: int,
    api_key: str,
    type_filter: Optional[str] = None,
    language: Optional[str] = None,
    pagetoken: Optional[str] = None,
) -> Dict[str, Any]:
    if pagetoken:
        # Follow-up pages only accept the token and the key.
        params: Dict[str, Any] = {"pagetoken": pagetoken, "key": api_key}
    else:
        params = {"location": f"{lat},{lng}", "radius": radius, "key": api_key}
        if type_filter:
            params["type"] = type_filter
        if language:
            params["language"] = language
    return _get("nearbysearch", params)


def place_details(place_id: str, api_key: str, language: Optional[str] = None) -> Dict[str, Any]:
    params = {"place_id": place_id, "key": api_key, "fields": DETAILS_FIELDS}
    if language:
        params["language"] = language
    payload = _get("details", params)
    return payload.get("result", {})
