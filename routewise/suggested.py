"""
Suggested trips ranked by overlap with a user's interests.
"""
import logging
from dataclasses import dataclass
from typing import Any, Dict, List, Optional

from routewise.interests import InterestsService
from routewise.poi.store import POIStore

LOGGER = logging.getLogger(__name__)

MIN_SCORE = 30
DEFAULT_SCORE = 75
POIS_PER_TRIP = 6


@dataclass(frozen=True)
class TripTemplate:
    id: str
    title: str
    description: str
    start_city: str
    end_city: str
    estimated_duration: str
    estimated_distance: str
    categories: tuple
    image_url: str


TRIP_TEMPLATES: List[TripTemplate] = [
    TripTemplate(
        "austin-san-antonio", "Texas Hill Country Adventure",
        "Explore the beautiful Hill Country between Austin and San Antonio",
        "Austin", "San Antonio", "3-4 hours", "80 miles",
        ("restaurants", "scenic_spots", "historic_sites", "outdoor_activities"),
        "https://images.unsplash.com/photo-1534330980078-e5f9e68a1ac1?w=800&h=600&fit=crop",
    ),
    TripTemplate(
        "los-angeles-san-francisco", "California Coast Classic",
        "Scenic coastal drive along the famous Pacific Coast Highway",
        "Los Angeles", "San Francisco", "6-8 hours", "380 miles",
        ("scenic_spots", "restaurants", "attractions", "outdoor_activities"),
        "https://images.unsplash.com/photo-1469474968028-56623f02e42e?w=800&h=600&fit=crop",
    ),
    TripTemplate(
        "denver-aspen", "Rocky Mountain High",
        "Mountain adventure through Colorado's stunning landscapes",
        "Denver", "Aspen", "4-5 hours", "160 miles",
        ("outdoor_activities", "scenic_spots", "parks"),
        "https://images.unsplash.com/photo-1506905925346-21bda4d32df4?w=800&h=600&fit=crop",
    ),
    TripTemplate(
        "new-orleans-nashville", "Southern Music & Culture Trail",
        "Experience the rich musical heritage and culture of the South",
        "New Orleans", "Nashville", "5-6 hours", "300 miles",
        ("cultural_sites", "restaurants", "nightlife", "historic_sites"),
        "https://images.unsplash.com/photo-1493225255756-d9584f8606e9?w=800&h=600&fit=crop",
    ),
    TripTemplate(
        "miami-key-west", "Florida Keys Paradise",
        "Tropical island hopping through the beautiful Florida Keys",
        "Miami", "Key West", "4-5 hours", "160 miles",
        ("outdoor_activities", "restaurants", "scenic_spots", "attractions"),
        "https://images.unsplash.com/photo-1544551763-46a013bb70d5?w=800&h=600&fit=crop",
    ),
    TripTemplate(
        "boston-new-york", "Northeast Urban Explorer",
        "Historic cities and cultural landmarks of the Northeast",
        "Boston", "New York", "4-5 hours", "215 miles",
        ("historic_sites", "cultural_sites", "restaurants", "shopping"),
        "https://images.unsplash.com/photo-1496442226666-8d4d0e62e6e9?w=800&h=600&fit=crop",
    ),
    TripTemplate(
        "seattle-portland", "Pacific Northwest Discovery",
        "Coffee culture, nature, and urban vibes of the Pacific Northwest",
        "Seattle", "Portland", "3-4 hours", "173 miles",
        ("restaurants", "parks", "cultural_sites", "outdoor_activities"),
        "https://images.unsplash.com/photo-1544735716-392fe2489ffa?w=800&h=600&fit=crop",
    ),
    TripTemplate(
        "las-vegas-grand-canyon", "Desert Wonder Adventure",
        "From the entertainment capital to one of the world's natural wonders",
        "Las Vegas", "Grand Canyon", "4-5 hours", "280 miles",
        ("scenic_spots", "outdoor_activities", "attractions", "parks"),
        "https://images.unsplash.com/photo-1474692295473-66ba4d54e0d3?w=800&h=600&fit=crop",
    ),
]


def interest_score(trip_categories, user_interests) -> int:
    """0-100: 70% weight on how much of the trip matches, 30% on how much of the user's interests it covers."""
    if not user_interests:
        return 50
    matches = [c for c in trip_categories if c in user_interests]
    match_pct = len(matches) / len(trip_categories)
    coverage = len(matches) / len(user_interests)
    return int(round(match_pct * 70 + coverage * 30))


class SuggestedTripsService:
    def __init__(self, interests: InterestsService, pois: POIStore, templates: Optional[List[TripTemplate]] = None):
        self.interests = interests
        self.pois = pois
        self.templates = templates if templates is not None else TRIP_TEMPLATES

    def _render(self, template: TripTemplate, score: int, pois: List[Dict[str, Any]], matching: List[str]) -> Dict[str, Any]:
        return {
            "id": template.id,
            "title": template.title,
            "description": template.description,
            "start_city": template.start_city,
            "end_city": template.end_city,
            "estimated_duration": template.estimated_duration,
            "estimated_distance": template.estimated_distance,
            "image_url": template.image_url,
            "score": score,
            "pois": pois,
            "matching_interests": matching,
        }

    def _relevant_pois(self, user_interests: List[str]) -> List[Dict[str, Any]]:
        return InterestsService.filter_pois_by_interests(self.pois.all(), user_interests)[:POIS_PER_TRIP]

    def popular_trips(self, limit: int) -> List[Dict[str, Any]]:
        return [self._render(t, DEFAULT_SCORE, [], []) for t in self.templates[:limit]]

    def generate(self, user_id: int, limit: int = 5) -> List[Dict[str, Any]]:
        user_interests = self.interests.get_enabled_interest_names(user_id)
        if not user_interests:
            return self.popular_trips(limit)

        pois = self._relevant_pois(user_interests)
        scored = []
        for template in self.templates:
            score = interest_score(template.categories, user_interests)
            if score < MIN_SCORE:
                continue
            matching = [c for c in template.categories if c in user_interests]
            scored.append(self._render(template, score, pois, matching))
        scored.sort(key=lambda t: -t["score"])
        LOGGER.debug("user %d: %d of %d templates scored >= %d", user_id, len(scored), len(self.templates), MIN_SCORE)
        return scored[:limit]

    def get_by_id(self, trip_id: str, user_id: Optional[int] = None) -> Optional[Dict[str, Any]]:
        template = next((t for t in self.templates if t.id == trip_id), None)
        if template is None:
            return None
        if user_id is None:
            return self._render(template, DEFAULT_SCORE, self._relevant_pois([]), [])
        user_interests = self.interests.get_enabled_interest_names(user_id)
        return self._render(
            template,
            interest_score(template.categories, user_interests),
            self._relevant_pois(user_interests),
            [c for c in template.categories if c in user_interests],
        )
