"""
Saved trips: the personal dashboard plus public sharing.
"""
import logging
from typing import Any, Dict, List, Optional

from routewise.storage import MemStorage, Trip

LOGGER = logging.getLogger(__name__)

USER_TRIPS_LIMIT = 50
PUBLIC_TRIPS_LIMIT = 20
SEARCH_LIMIT = 20


class TripNotFound(LookupError):
    pass


def generate_trip_title(start_city: str, end_city: str, checkpoints: Optional[List[str]] = None) -> str:
    checkpoints = checkpoints or []
    if not checkpoints:
        return f"{start_city} to {end_city}"
    if len(checkpoints) == 1:
        return f"{start_city} to {end_city} via {checkpoints[0]}"
    return f"{start_city} to {end_city} via {len(checkpoints)} stops"


def _newest_updated(trips: List[Trip]) -> List[Trip]:
    return sorted(trips, key=lambda t: (t.updated_at, t.id), reverse=True)


def _newest_created(trips: List[Trip]) -> List[Trip]:
    return sorted(trips, key=lambda t: (t.created_at, t.id), reverse=True)


class TripService:
    def __init__(self, storage: MemStorage):
        self.storage = storage

    def create_trip(
        self,
        user_id: Optional[int],
        start_city: str,
        end_city: str,
        *,
        title: Optional[str] = None,
        checkpoints: Optional[List[str]] = None,
        route_data: Optional[Dict[str, Any]] = None,
        pois_data: Optional[List[Dict[str, Any]]] = None,
        is_public: bool = False,
    ) -> Trip:
        start_city = (start_city or "").strip()
        end_city = (end_city or "").strip()
        if not start_city or not end_city:
            raise ValueError("start_city and end_city are required")
        checkpoints = [c.strip() for c in (checkpoints or []) if c and c.strip()]
        trip = self.storage.create_trip(
            user_id=user_id,
            title=(title or "").strip() or generate_trip_title(start_city, end_city, checkpoints),
            start_city=start_city,
            end_city=end_city,
            checkpoints=checkpoints,
            route_data=route_data,
            pois_data=list(pois_data or []),
            is_public=is_public,
        )
        LOGGER.info("Created trip %d (%s) for user %s", trip.id, trip.title, user_id)
        return trip

    def create_trip_from_route(
        self,
        user_id: Optional[int],
        start_city: str,
        end_city: str,
        checkpoints: List[str],
        route_data: Optional[Dict[str, Any]],
        pois_data: List[Dict[str, Any]],
        is_public: bool = False,
    ) -> Optional[Trip]:
        """Save a planned route. Anonymous callers may only create public trips."""
        if user_id is None and not is_public:
            return None
        return self.create_trip(
            user_id,
            start_city,
            end_city,
            checkpoints=checkpoints,
            route_data=route_data,
            pois_data=pois_data,
            is_public=is_public,
        )

    def get_trip(self, trip_id: int, user_id: Optional[int] = None) -> Trip:
        """Trip visible to the caller: their own, or any public trip."""
        trip = self.storage.get_trip(trip_id)
        if trip is None or not (trip.is_public or (user_id is not None and trip.user_id == user_id)):
            raise TripNotFound(f"Trip {trip_id} not found")
        return trip

    def get_public_trip(self, trip_id: int) -> Trip:
        trip = self.storage.get_trip(trip_id)
        if trip is None or not trip.is_public:
            raise TripNotFound(f"Trip {trip_id} not found")
        return trip

    def get_user_trips(self, user_id: int, limit: int = USER_TRIPS_LIMIT) -> List[Trip]:
        own = [t for t in self.storage.list_trips() if t.user_id == user_id]
        return _newest_updated(own)[:limit]

    def get_public_trips(self, limit: int = PUBLIC_TRIPS_LIMIT) -> List[Trip]:
        public = [t for t in self.storage.list_trips() if t.is_public]
        return _newest_created(public)[:limit]

    def update_trip(self, trip_id: int, user_id: int, updates: Dict[str, Any]) -> Trip:
        trip = self.storage.get_trip(trip_id)
        if trip is None or trip.user_id != user_id:
            raise TripNotFound(f"Trip {trip_id} not found")
        updated = self.storage.update_trip(trip_id, updates)
        if updated is None:
            raise TripNotFound(f"Trip {trip_id} not found")
        return updated

    def delete_trip(self, trip_id: int, user_id: int) -> None:
        trip = self.storage.get_trip(trip_id)
        if trip is None or trip.user_id != user_id:
            raise TripNotFound(f"Trip {trip_id} not found")
        self.storage.delete_trip(trip_id)
        LOGGER.info("Deleted trip %d for user %d", trip_id, user_id)

    def search_trips(self, query: str, user_id: Optional[int] = None, limit: int = SEARCH_LIMIT) -> List[Trip]:
        """Match title, start or end city. Searches public trips plus the caller's own."""
        needle = (query or "").strip().lower()
        visible = [
            t for t in self.storage.list_trips()
            if t.is_public or (user_id is not None and t.user_id == user_id)
        ]
        hits = [
            t for t in visible
            if needle in t.title.lower() or needle in t.start_city.lower() or needle in t.end_city.lower()
        ]
        return _newest_updated(hits)[:limit]
