"""
RouteWise POI categories and interest categories.

POIs carry one of a small set of category slugs (restaurant, park, ...).
Users pick interests from a separate, wider list; INTEREST_FOR_POI_CATEGORY
links the two so POIs can be filtered by a user's enabled interests.
"""

from dataclasses import dataclass
from typing import Dict, List, Optional


@dataclass
class InterestCategoryDef:
    name: str
    display_name: str
    description: str
    icon_name: str
    is_active: bool = True


POI_CATEGORIES = (
    "restaurant",
    "attraction",
    "park",
    "scenic",
    "historic",
    "market",
    "outdoor",
    "cultural",
    "shopping",
    "nightlife",
)

DEFAULT_POI_CATEGORY = "attraction"

# Seeded interest categories, in display order
DEFAULT_INTEREST_CATEGORIES: List[InterestCategoryDef] = [
    InterestCategoryDef("restaurants", "Restaurants", "Dining establishments and food venues", "utensils"),
    InterestCategoryDef("attractions", "Tourist Attractions", "Must-see attractions and points of interest", "camera"),
    InterestCategoryDef("parks", "Parks & Nature", "Parks, gardens, and natural areas", "tree"),
    InterestCategoryDef("scenic_spots", "Scenic Spots", "Beautiful views and scenic locations", "mountain"),
    InterestCategoryDef("historic_sites", "Historic Sites", "Historical landmarks and cultural sites", "landmark"),
    InterestCategoryDef("markets", "Markets & Shopping", "Shopping areas, markets, and stores", "shopping-bag"),
    InterestCategoryDef("outdoor_activities", "Outdoor Activities", "Outdoor recreation and adventure spots", "hiking"),
    InterestCategoryDef("cultural_sites", "Cultural Sites", "Museums, galleries, and cultural venues", "palette"),
    InterestCategoryDef("shopping", "Shopping Centers", "Malls, retail centers, and shopping districts", "store"),
    InterestCategoryDef("nightlife", "Nightlife & Entertainment", "Bars, clubs, and entertainment venues", "music"),
]

INTEREST_FOR_POI_CATEGORY: Dict[str, str] = {
    "restaurant": "restaurants",
    "attraction": "attractions",
    "park": "parks",
    "scenic": "scenic_spots",
    "historic": "historic_sites",
    "market": "markets",
    "outdoor": "outdoor_activities",
    "cultural": "cultural_sites",
    "shopping": "shopping",
    "nightlife": "nightlife",
}

# Google place type -> POI category; first match in the place's type list wins
GOOGLE_TYPE_TO_CATEGORY: Dict[str, str] = {
    "restaurant": "restaurant",
    "food": "restaurant",
    "meal_takeaway": "restaurant",
    "meal_delivery": "restaurant",
    "park": "park",
    "natural_feature": "scenic",
    "tourist_attraction": "attraction",
    "amusement_park": "attraction",
    "zoo": "attraction",
    "museum": "historic",
    "church": "historic",
    "synagogue": "historic",
    "hindu_temple": "historic",
    "mosque": "historic",
    "cemetery": "historic",
    "shopping_mall": "market",
    "store": "market",
    "supermarket": "market",
}


def category_for_google_types(types: Optional[List[str]]) -> str:
    for t in types or []:
        if isinstance(t, str) and t in GOOGLE_TYPE_TO_CATEGORY:
            return GOOGLE_TYPE_TO_CATEGORY[t]
    return DEFAULT_POI_CATEGORY


def poi_categories_for_interests(interest_names: List[str]) -> List[str]:
    """POI category slugs enabled by the given interest names."""
    enabled = set(interest_names)
    return [poi_cat for poi_cat, interest in INTEREST_FOR_POI_CATEGORY.items() if interest in enabled]


def normalize_category(value: Optional[str]) -> Optional[str]:
    """Normalize a category query value ('Scenic', 'historic_sites', ...) to a POI slug."""
    if value is None:
        return None
    raw = str(value).strip().lower()
    if not raw:
        return None
    slug = raw.replace(" ", "_")
    if slug in POI_CATEGORIES:
        return slug
    # Interest names map back onto their POI category
    for poi_cat, interest in INTEREST_FOR_POI_CATEGORY.items():
        if interest == slug:
            return poi_cat
    return slug
