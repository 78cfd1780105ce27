"""
Google Directions client and route geometry helpers.
"""
import logging
from typing import Any, Dict, List, Optional

import requests

from routewise.cache import TTLCache
from routewise.config import GOOGLE_DIRECTIONS_URL, GOOGLE_PLACES_TIMEOUT
from routewise.google.places import PlacesError

LOGGER = logging.getLogger(__name__)

TRAVEL_MODES = ("driving", "walking", "bicycling", "transit")
DIRECTIONS_CACHE_TTL = 15 * 60
ROUTE_POINTS = 10
# Consecutive points closer than this (degrees, both axes) are merged
_MIN_POINT_SPACING = 0.01


def decode_polyline(encoded: str) -> List[Dict[str, float]]:
    """Decode a Google encoded polyline (precision 5) into lat/lng points."""
    points = []
    index = lat = lng = 0
    length = len(encoded or "")
    while index < length:
        deltas = []
        for _ in range(2):
            shift = result = 0
            while True:
                if index >= length:
                    raise ValueError("Truncated polyline")
                b = ord(encoded[index]) - 63
                index += 1
                result |= (b & 0x1F) << shift
                shift += 5
                if b < 0x20:
                    break
            deltas.append(~(result >> 1) if result & 1 else result >> 1)
        lat += deltas[0]
        lng += deltas[1]
        points.append({"lat": lat / 1e5, "lng": lng / 1e5})
    return points


def _far_enough(a: Dict[str, float], b: Dict[str, float]) -> bool:
    return abs(a["lat"] - b["lat"]) > _MIN_POINT_SPACING or abs(a["lng"] - b["lng"]) > _MIN_POINT_SPACING


def evenly_spaced(points: List[Dict[str, float]], num_points: int) -> List[Dict[str, float]]:
    if len(points) <= num_points:
        return list(points)
    interval = len(points) / num_points
    return [points[int(i * interval)] for i in range(num_points)]


def extract_route_points(route: Dict[str, Any], num_points: int = ROUTE_POINTS) -> List[Dict[str, float]]:
    """
    Sample points along a Directions route for POI searches: each leg's
    endpoints plus every n-th step start, near-duplicates dropped.
    """
    legs = route.get("legs") or []
    points: List[Dict[str, float]] = []
    for leg in legs:
        steps = leg.get("steps") or []
        points.append(leg["start_location"])
        step_interval = max(1, int(len(steps) // (num_points / len(legs))))
        for i in range(0, len(steps), step_interval):
            points.append(steps[i]["start_location"])
        points.append(leg["end_location"])

    unique = [p for i, p in enumerate(points) if i == 0 or _far_enough(p, points[i - 1])]
    if len(unique) < 2:
        # Legs without steps: fall back to the overview geometry
        encoded = (route.get("overview_polyline") or {}).get("points")
        if encoded:
            unique = decode_polyline(encoded)
    return evenly_spaced(unique, num_points)


def straight_line_points(start: Dict[str, float], end: Dict[str, float], num_points: int = 5) -> List[Dict[str, float]]:
    """num_points + 1 points interpolated from start to end, inclusive."""
    return [
        {
            "lat": start["lat"] + (end["lat"] - start["lat"]) * i / num_points,
            "lng": start["lng"] + (end["lng"] - start["lng"]) * i / num_points,
        }
        for i in range(num_points + 1)
    ]


class GoogleDirectionsClient:
    def __init__(
        self,
        api_key: Optional[str],
        session: Optional[requests.Session] = None,
        cache: Optional[TTLCache] = None,
        timeout: float = GOOGLE_PLACES_TIMEOUT,
    ):
        self.api_key = api_key
        self.session = session or requests.Session()
        self.cache = cache or TTLCache(DIRECTIONS_CACHE_TTL)
        self.timeout = timeout

    @property
    def configured(self) -> bool:
        return bool(self.api_key)

    def _fetch(self, origin: str, destination: str, mode: str, waypoints: Optional[List[str]] = None) -> Optional[dict]:
        if not self.api_key:
            raise PlacesError("Directions API key not configured", 500)
        params = {"origin": origin, "destination": destination, "mode": mode, "key": self.api_key}
        if waypoints:
            params["waypoints"] = "|".join(waypoints)
        try:
            resp = self.session.get(GOOGLE_DIRECTIONS_URL, params=params, timeout=self.timeout)
        except requests.RequestException as exc:
            raise PlacesError("Directions unavailable", 502) from exc
        try:
            body = resp.json()
        except ValueError as exc:
            raise PlacesError("Invalid response from Directions", 502) from exc
        if body.get("status") != "OK":
            LOGGER.warning("Directions %s -> %s failed: %s %s", origin, destination, body.get("status"), body.get("error_message", ""))
            return None
        if not body.get("routes") or not body["routes"][0].get("legs"):
            LOGGER.warning("Directions %s -> %s returned no routes", origin, destination)
            return None
        return body["routes"][0]

    def calculate_route(
        self,
        origin: str,
        destination: str,
        mode: str = "driving",
        waypoints: Optional[List[str]] = None,
    ) -> Optional[Dict[str, Any]]:
        """
        Route summary with legs, overview polyline and sampled route points,
        or None when Google has no route.
        """
        mode = mode.lower()
        if mode not in TRAVEL_MODES:
            raise PlacesError(f"Unsupported travel mode: {mode}", 400)
        key = ("route", origin.strip().lower(), destination.strip().lower(), mode, tuple(waypoints or ()))
        cached = self.cache.get(key)
        if cached is not None:
            return cached

        route = self._fetch(origin, destination, mode, waypoints)
        if route is None:
            return None
        legs = route.get("legs") or []
        first, last = legs[0], legs[-1]
        total_m = sum(leg["distance"]["value"] for leg in legs)
        total_s = sum(leg["duration"]["value"] for leg in legs)
        result = {
            "distance": first["distance"]["text"] if len(legs) == 1 else f"{total_m / 1609.344:.0f} mi",
            "duration": first["duration"]["text"] if len(legs) == 1 else _format_duration(total_s),
            "distance_meters": total_m,
            "duration_seconds": total_s,
            "start_address": first.get("start_address"),
            "end_address": last.get("end_address"),
            "polyline": (route.get("overview_polyline") or {}).get("points", ""),
            "legs": [
                {
                    "distance": leg["distance"]["text"],
                    "duration": leg["duration"]["text"],
                    "start_address": leg.get("start_address"),
                    "end_address": leg.get("end_address"),
                    "start_location": leg["start_location"],
                    "end_location": leg["end_location"],
                }
                for leg in legs
            ],
            "route_points": extract_route_points(route),
        }
        self.cache.set(key, result)
        return result

    def calculate_travel_time(self, origin: Dict[str, float], destination: Dict[str, float]) -> Optional[Dict[str, str]]:
        route = self._fetch(
            f"{origin['lat']},{origin['lng']}", f"{destination['lat']},{destination['lng']}", "driving"
        )
        if route is None:
            return None
        leg = route["legs"][0]
        return {"duration": leg["duration"]["text"], "distance": leg["distance"]["text"]}


def _format_duration(seconds: int) -> str:
    hours, rem = divmod(int(seconds), 3600)
    minutes = rem // 60
    if hours and minutes:
        return f"{hours} hours {minutes} mins"
    if hours:
        return f"{hours} hours"
    return f"{minutes} mins"
