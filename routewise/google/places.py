"""
Google Places client: autocomplete/details (Places API v1), geocoding and
nearby search (legacy Places web service), with a small TTL cache.
"""
import hashlib
import logging
from typing import Any, Dict, List, Optional
from urllib.parse import quote

import requests

from routewise.cache import TTLCache
from routewise.categories import category_for_google_types
from routewise.config import (
    GEOCODING_CACHE_TTL,
    GOOGLE_GEOCODING_URL,
    GOOGLE_PLACES_AUTOCOMPLETE_URL,
    GOOGLE_PLACES_DETAILS_URL,
    GOOGLE_PLACES_LEGACY_URL,
    GOOGLE_PLACES_TIMEOUT,
    PLACES_CACHE_TTL,
)

LOGGER = logging.getLogger(__name__)

DEFAULT_NEARBY_RADIUS = 50000

_ADDRESS_TYPE_HINTS = {
    "street_address",
    "street_number",
    "premise",
    "subpremise",
    "route",
    "intersection",
    "plus_code",
    "postal_code",
    "postal_code_prefix",
    "postal_town",
    "locality",
    "sublocality",
    "neighborhood",
}

_DESCRIPTIONS = {
    "restaurant": [
        "A highly-rated dining spot perfect for a meal break during your journey.",
        "Local favorite restaurant offering delicious food and a welcoming atmosphere.",
        "Great place to refuel with quality food and friendly service.",
    ],
    "park": [
        "Beautiful natural area perfect for stretching your legs and enjoying nature.",
        "Scenic park offering walking trails and peaceful surroundings.",
    ],
    "attraction": [
        "Must-see attraction that offers unique experiences and photo opportunities.",
        "Popular destination perfect for exploring and creating memories.",
    ],
    "scenic": [
        "Breathtaking natural beauty perfect for photography and sightseeing.",
        "Picture-perfect location with incredible views and peaceful atmosphere.",
    ],
    "market": [
        "Local shopping destination perfect for finding unique items and souvenirs.",
        "Great place to browse local goods and pick up travel essentials.",
    ],
    "historic": [
        "Historic site rich in culture and history, perfect for learning and exploration.",
        "Important historical landmark offering insights into local heritage.",
    ],
}


class PlacesError(Exception):
    """Upstream or input failure; status_code is the HTTP status to surface."""

    def __init__(self, message: str, status_code: int = 502):
        super().__init__(message)
        self.message = message
        self.status_code = status_code


def _coalesce_text(*values: Optional[str]) -> Optional[str]:
    for value in values:
        if value:
            stripped = str(value).strip()
            if stripped:
                return stripped
    return None


def _text_of(value: Any) -> Optional[str]:
    if isinstance(value, dict):
        return value.get("text")
    if isinstance(value, str):
        return value
    return None


def _lat_lng(location: Optional[dict]):
    location = location or {}
    try:
        lat = float(location["latitude"]) if location.get("latitude") is not None else None
        lng = float(location["longitude"]) if location.get("longitude") is not None else None
    except (TypeError, ValueError):
        return None, None
    return lat, lng


def _extract_bbox(viewport: Optional[dict]) -> Optional[dict]:
    if not isinstance(viewport, dict):
        return None
    low = viewport.get("low") or {}
    high = viewport.get("high") or {}
    try:
        return {
            "west": float(low["longitude"]),
            "south": float(low["latitude"]),
            "east": float(high["longitude"]),
            "north": float(high["latitude"]),
        }
    except (KeyError, TypeError, ValueError):
        return None


def classify_place(types: Optional[List[str]]) -> str:
    """'address' for street/locality style results, 'place' for everything else."""
    for t in types or []:
        if not isinstance(t, str):
            continue
        t_lower = t.lower()
        if t_lower.startswith("administrative_area_level_") or t_lower.startswith("sublocality_level_"):
            return "address"
        if t_lower in _ADDRESS_TYPE_HINTS:
            return "address"
    return "place"


def parse_location_bias(location_bias: Optional[str]) -> Optional[dict]:
    """
    Parse 'lon,lat' (30 km circle) or 'west,south,east,north' (rectangle)
    into a Places API locationBias object.
    """
    if not location_bias:
        return None
    parts = [p.strip() for p in location_bias.split(",") if p.strip()]
    if len(parts) == 2:
        try:
            lon, lat = float(parts[0]), float(parts[1])
        except ValueError as exc:
            raise PlacesError("Invalid locationBias; expected lon,lat", 400) from exc
        if not (-180.0 <= lon <= 180.0 and -90.0 <= lat <= 90.0):
            raise PlacesError("locationBias lon/lat out of range", 400)
        return {"circle": {"center": {"latitude": lat, "longitude": lon}, "radius": 30000}}
    if len(parts) == 4:
        try:
            west, south, east, north = map(float, parts)
        except ValueError as exc:
            raise PlacesError("Invalid locationBias bbox; expected west,south,east,north", 400) from exc
        if not (-180.0 <= west <= 180.0 and -180.0 <= east <= 180.0 and -90.0 <= south <= 90.0 and -90.0 <= north <= 90.0):
            raise PlacesError("locationBias bbox out of range", 400)
        return {
            "rectangle": {
                "low": {"latitude": min(south, north), "longitude": min(west, east)},
                "high": {"latitude": max(south, north), "longitude": max(west, east)},
            }
        }
    raise PlacesError("Unsupported locationBias format; use lon,lat or west,south,east,north", 400)


def normalize_prediction(pred: dict) -> dict:
    structured = pred.get("structuredFormat") or {}
    place_blob = pred.get("place") or {}

    label = _coalesce_text(
        _text_of(pred.get("text")),
        _text_of(structured.get("mainText")),
        _text_of(place_blob.get("displayName")),
    )
    sublabel = _coalesce_text(place_blob.get("formattedAddress"), _text_of(structured.get("secondaryText")))
    lat, lng = _lat_lng(place_blob.get("location"))

    normalized: Dict[str, Any] = {
        "id": pred.get("placeId"),
        "type": classify_place(pred.get("types")),
        "label": label or sublabel or pred.get("placeId"),
    }
    if sublabel is not None:
        normalized["sublabel"] = sublabel
    if lat is not None:
        normalized["lat"] = lat
    if lng is not None:
        normalized["lng"] = lng
    bbox = _extract_bbox(place_blob.get("viewport"))
    if bbox is not None:
        normalized["bbox"] = bbox
    return normalized


def normalize_place_detail(place: dict) -> dict:
    formatted = place.get("formattedAddress")
    short_formatted = place.get("shortFormattedAddress")
    lat, lng = _lat_lng(place.get("location"))
    return {
        "id": place.get("id") or place.get("name"),
        "type": classify_place(place.get("types")),
        "label": _coalesce_text(_text_of(place.get("displayName")), formatted, short_formatted),
        "sublabel": _coalesce_text(formatted, short_formatted),
        "lat": lat,
        "lng": lng,
        "bbox": _extract_bbox(place.get("viewport")),
    }


def place_path_segment(place_id: Optional[str]) -> str:
    pid = str(place_id).strip() if place_id is not None else ""
    if pid.startswith("places/"):
        pid = pid.split("places/", 1)[1]
    if not pid:
        raise PlacesError("Place id is required", 400)
    return pid


def describe_place(category: str, place_id: str) -> str:
    """Stock blurb for a category; the place id picks one so a place always gets the same text."""
    options = _DESCRIPTIONS.get(category) or _DESCRIPTIONS["attraction"]
    idx = int(hashlib.sha1(place_id.encode("utf-8")).hexdigest(), 16) % len(options)
    return options[idx]


def _error_detail(payload: Any) -> Optional[str]:
    if not isinstance(payload, dict):
        return None
    error = payload.get("error")
    if isinstance(error, dict) and error.get("message"):
        return str(error["message"])
    if payload.get("error_message"):
        return str(payload["error_message"])
    return None


class GooglePlacesClient:
    def __init__(
        self,
        api_key: Optional[str],
        session: Optional[requests.Session] = None,
        cache: Optional[TTLCache] = None,
        timeout: float = GOOGLE_PLACES_TIMEOUT,
    ):
        self.api_key = api_key
        self.session = session or requests.Session()
        self.cache = cache or TTLCache(PLACES_CACHE_TTL)
        self.timeout = timeout

    @property
    def configured(self) -> bool:
        return bool(self.api_key)

    def _require_key(self) -> None:
        if not self.api_key:
            raise PlacesError("Places API key not configured", 500)

    def _json(self, resp: requests.Response, what: str) -> dict:
        try:
            body = resp.json()
        except ValueError:
            body = None
        LOGGER.debug("[%s] status=%s", what, resp.status_code)
        if resp.status_code == 429:
            raise PlacesError(_error_detail(body) or f"{what} quota exceeded", 429)
        if resp.status_code >= 400:
            raise PlacesError(_error_detail(body) or f"{what} error", resp.status_code)
        if not isinstance(body, dict):
            raise PlacesError(f"Invalid response from {what}", 502)
        return body

    # ---------- Places API v1 ----------

    def autocomplete(
        self, text: str, session_token: str, location_bias: Optional[str] = None, limit: int = 8
    ) -> Dict[str, Any]:
        self._require_key()
        query = (text or "").strip()
        if len(query) < 2:
            return {"suggestions": [], "has_more": False}
        payload: Dict[str, Any] = {"input": query, "sessionToken": session_token}
        bias = parse_location_bias(location_bias)
        if bias:
            payload["locationBias"] = bias
        headers = {
            "Content-Type": "application/json",
            "Accept": "application/json",
            "X-Goog-Api-Key": self.api_key,
            "X-Goog-FieldMask": (
                "suggestions.placePrediction.placeId,"
                "suggestions.placePrediction.text,"
                "suggestions.placePrediction.structuredFormat,"
                "suggestions.placePrediction.types"
            ),
        }
        try:
            resp = self.session.post(GOOGLE_PLACES_AUTOCOMPLETE_URL, headers=headers, json=payload, timeout=self.timeout)
        except requests.RequestException as exc:
            raise PlacesError("Places Autocomplete unavailable", 502) from exc
        body = self._json(resp, "Places Autocomplete")

        normalized = []
        for suggestion in body.get("suggestions", []):
            pred = suggestion.get("placePrediction") if isinstance(suggestion, dict) else None
            if isinstance(pred, dict):
                norm = normalize_prediction(pred)
                if norm.get("id"):
                    normalized.append(norm)
        limited = normalized[:limit]
        return {"suggestions": limited, "has_more": len(normalized) > len(limited)}

    def details(self, place_id: str, session_token: str) -> Dict[str, Any]:
        self._require_key()
        segment = place_path_segment(place_id)
        headers = {
            "Accept": "application/json",
            "X-Goog-Api-Key": self.api_key,
            "X-Goog-FieldMask": "id,displayName,formattedAddress,shortFormattedAddress,types,location,viewport",
        }
        url = f"{GOOGLE_PLACES_DETAILS_URL}/{quote(segment, safe='')}"
        try:
            resp = self.session.get(url, headers=headers, params={"sessionToken": session_token}, timeout=self.timeout)
        except requests.RequestException as exc:
            raise PlacesError("Places Details unavailable", 502) from exc
        return {"result": normalize_place_detail(self._json(resp, "Places Details"))}

    # ---------- legacy web service ----------

    def geocode_city(self, city: str) -> Optional[Dict[str, float]]:
        """Coordinates of a city name; bare names are assumed to be in the USA."""
        self._require_key()
        key = ("geocodeCity", city.strip().lower())
        cached = self.cache.get(key, max_age=GEOCODING_CACHE_TTL)
        if cached is not None:
            return cached
        address = city if "," in city else f"{city}, USA"
        try:
            resp = self.session.get(
                GOOGLE_GEOCODING_URL, params={"address": address, "key": self.api_key}, timeout=self.timeout
            )
        except requests.RequestException as exc:
            raise PlacesError("Geocoding unavailable", 502) from exc
        body = self._json(resp, "Geocoding")
        if body.get("status") != "OK" or not body.get("results"):
            LOGGER.warning("Geocoding failed for %s: %s %s", address, body.get("status"), body.get("error_message", ""))
            return None
        location = body["results"][0]["geometry"]["location"]
        coords = {"lat": float(location["lat"]), "lng": float(location["lng"])}
        self.cache.set(key, coords)
        return coords

    def search_nearby(
        self, lat: float, lng: float, radius: int = DEFAULT_NEARBY_RADIUS, place_type: Optional[str] = None
    ) -> List[Dict[str, Any]]:
        self._require_key()
        key = ("searchNearbyPlaces", round(lat, 5), round(lng, 5), radius, place_type)
        cached = self.cache.get(key)
        if cached is not None:
            return cached
        params = {"location": f"{lat},{lng}", "radius": str(radius), "key": self.api_key}
        if place_type:
            params["type"] = place_type
        try:
            resp = self.session.get(f"{GOOGLE_PLACES_LEGACY_URL}/nearbysearch/json", params=params, timeout=self.timeout)
        except requests.RequestException as exc:
            raise PlacesError("Places Nearby Search unavailable", 502) from exc
        body = self._json(resp, "Places Nearby Search")
        status = body.get("status")
        if status == "ZERO_RESULTS":
            results: List[Dict[str, Any]] = []
        elif status != "OK":
            LOGGER.warning("Nearby search at %.4f,%.4f failed: %s", lat, lng, status)
            return []
        else:
            results = list(body.get("results") or [])
        self.cache.set(key, results)
        return results

    def photo_url(self, photo_reference: str, max_width: int = 800) -> str:
        return (
            f"{GOOGLE_PLACES_LEGACY_URL}/photo?maxwidth={max_width}"
            f"&photo_reference={quote(photo_reference, safe='')}&key={self.api_key}"
        )

    def place_to_poi(self, place: Dict[str, Any], time_from_start: Optional[str] = None) -> Dict[str, Any]:
        """Nearby-search result -> raw POI record accepted by POIStore.add."""
        category = category_for_google_types(place.get("types"))
        location = (place.get("geometry") or {}).get("location") or {}
        photos = place.get("photos") or []
        place_id = place.get("place_id") or ""
        return {
            "poi_id": place_id or None,
            "place_id": place_id or None,
            "name": place.get("name") or "",
            "description": describe_place(category, place_id or place.get("name") or ""),
            "category": category,
            "rating": place.get("rating") or 0,
            "review_count": place.get("user_ratings_total") or 0,
            "price_level": place.get("price_level"),
            "address": place.get("vicinity") or place.get("formatted_address"),
            "image_url": self.photo_url(photos[0]["photo_reference"]) if photos and photos[0].get("photo_reference") else None,
            "time_from_start": time_from_start,
            "is_open": (place.get("opening_hours") or {}).get("open_now"),
            "lat": location.get("lat"),
            "lon": location.get("lng"),
        }

    def clear_cache(self) -> int:
        count = self.cache.clear()
        LOGGER.info("Cleared %d places cache entries", count)
        return count

    def cache_stats(self) -> Dict[str, Any]:
        return self.cache.stats()
