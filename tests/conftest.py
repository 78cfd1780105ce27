import pandas as pd
import pytest

from routewise.poi.store import POIStore
from routewise.storage import MemStorage

# Three restaurants within a few metres of each other in Boston, a park and a
# museum across town, a pair straddling the antimeridian near Fiji, and one
# unrated shop.
SAMPLE_POIS = [
    {"id": "r1", "name": "Neptune Oyster", "category": "restaurant", "rating": 4.7, "reviews_count": 3100,
     "price_level": 2, "lat": 42.36320, "lng": -71.05590, "address": "63 Salem St, Boston"},
    {"id": "r2", "name": "Regina Pizzeria", "category": "restaurant", "rating": 4.5, "reviews_count": 5200,
     "price_level": 1, "lat": 42.36325, "lng": -71.05595, "address": "11 1/2 Thacher St, Boston"},
    {"id": "r3", "name": "Mike's Pastry", "category": "restaurant", "rating": 4.2, "reviews_count": 8000,
     "price_level": 1, "lat": 42.36330, "lng": -71.05600},
    {"id": "p1", "name": "Boston Common", "category": "park", "rating": 4.7, "reviews_count": 20000,
     "lat": 42.35510, "lng": -71.06560},
    {"id": "h1", "name": "Museum of Fine Arts", "category": "historic", "rating": 4.8, "reviews_count": 15000,
     "price_level": 3, "lat": 42.33940, "lng": -71.09400},
    {"id": "s1", "name": "Corner Shop", "category": "market", "rating": 0, "reviews_count": 0,
     "lat": 42.35000, "lng": -71.06000},
    {"id": "f1", "name": "Taveuni Lookout", "category": "scenic", "rating": 4.9, "reviews_count": 40,
     "lat": -16.80000, "lng": 179.90000},
    {"id": "f2", "name": "Rabi Island Beach", "category": "scenic", "rating": 4.6, "reviews_count": 12,
     "lat": -16.50000, "lng": -179.95000},
]

BOSTON = {"north": 42.40, "south": 42.30, "east": -71.00, "west": -71.15}
FIJI = {"north": -16.0, "south": -17.5, "east": -179.0, "west": 179.0}


@pytest.fixture
def poi_frame() -> pd.DataFrame:
    return pd.DataFrame(SAMPLE_POIS)


@pytest.fixture
def poi_store(poi_frame) -> POIStore:
    return POIStore(poi_frame)


@pytest.fixture
def storage() -> MemStorage:
    return MemStorage()
