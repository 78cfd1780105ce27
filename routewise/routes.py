"""
Route planning: directions between two cities plus POIs found along the way.
"""
import logging
from typing import Any, Dict, List, Optional

from routewise.google.directions import GoogleDirectionsClient, straight_line_points
from routewise.google.places import GooglePlacesClient, PlacesError
from routewise.interests import InterestsService
from routewise.poi.store import POIStore, pois_near, poi_record

LOGGER = logging.getLogger(__name__)

SEARCH_RADIUS_M = 25000
MAX_ROUTE_POIS = 60


def time_from_start(index: int, total: int, duration_seconds: Optional[int]) -> Optional[str]:
    """'2.5 hours in' style label for the index-th of total sampled route points."""
    if not duration_seconds or total <= 1:
        return None
    hours = duration_seconds * index / (total - 1) / 3600
    if hours < 1:
        return f"{max(1, round(hours * 60))} mins in"
    rounded = round(hours, 1)
    if rounded == int(rounded):
        n = int(rounded)
        return f"{n} hour{'' if n == 1 else 's'} in"
    return f"{rounded} hours in"


class RoutePlanner:
    def __init__(
        self,
        store: POIStore,
        places: Optional[GooglePlacesClient] = None,
        directions: Optional[GoogleDirectionsClient] = None,
        radius_m: float = SEARCH_RADIUS_M,
    ):
        self.store = store
        self.places = places
        self.directions = directions
        self.radius_m = radius_m

    def _route(self, start_city: str, end_city: str, checkpoints: List[str]) -> Dict[str, Any]:
        if self.directions is not None and self.directions.configured:
            try:
                route = self.directions.calculate_route(start_city, end_city, waypoints=checkpoints)
            except PlacesError as exc:
                LOGGER.warning("Directions failed for %s -> %s: %s", start_city, end_city, exc.message)
                route = None
            if route is not None:
                return route

        # Straight line between the geocoded endpoints
        if self.places is None or not self.places.configured:
            raise PlacesError("No route available: Google API key not configured", 503)
        start = self.places.geocode_city(start_city)
        end = self.places.geocode_city(end_city)
        if start is None or end is None:
            missing = start_city if start is None else end_city
            raise PlacesError(f"Could not find location: {missing}", 404)
        LOGGER.info("Using straight-line route for %s -> %s", start_city, end_city)
        return {
            "distance": None,
            "duration": None,
            "duration_seconds": None,
            "start_address": start_city,
            "end_address": end_city,
            "polyline": "",
            "legs": [],
            "route_points": straight_line_points(start, end),
        }

    def _google_pois(self, points: List[Dict[str, float]], duration_seconds: Optional[int]) -> List[Dict[str, Any]]:
        records = []
        for i, point in enumerate(points):
            try:
                places = self.places.search_nearby(point["lat"], point["lng"], radius=int(self.radius_m))
            except PlacesError as exc:
                LOGGER.warning("Nearby search failed at %.4f,%.4f: %s", point["lat"], point["lng"], exc.message)
                continue
            label = time_from_start(i, len(points), duration_seconds)
            records.extend(self.places.place_to_poi(p, label) for p in places)
        return records

    def plan(
        self,
        start_city: str,
        end_city: str,
        checkpoints: Optional[List[str]] = None,
        interest_names: Optional[List[str]] = None,
    ) -> Dict[str, Any]:
        start_city = (start_city or "").strip()
        end_city = (end_city or "").strip()
        if not start_city or not end_city:
            raise PlacesError("Start city and end city are required", 400)
        checkpoints = [c.strip() for c in (checkpoints or []) if c and c.strip()]

        route = self._route(start_city, end_city, checkpoints)
        points = route["route_points"]

        if self.places is not None and self.places.configured:
            added = self.store.add(self._google_pois(points, route.get("duration_seconds")))
            if len(added):
                LOGGER.info("Added %d POIs from nearby search", len(added))

        seen = set()
        pois: List[Dict[str, Any]] = []
        for point in points:
            for _, row in pois_near(self.store.frame, point["lat"], point["lng"], self.radius_m).iterrows():
                if row["poi_id"] in seen:
                    continue
                seen.add(row["poi_id"])
                pois.append(poi_record(row))

        pois = InterestsService.filter_pois_by_interests(pois, interest_names or [])[:MAX_ROUTE_POIS]
        LOGGER.info("Route %s -> %s: %d points, %d POIs", start_city, end_city, len(points), len(pois))
        return {
            "start_city": start_city,
            "end_city": end_city,
            "checkpoints": checkpoints,
            "route": route,
            "pois": pois,
        }
