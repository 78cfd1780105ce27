"""
User interest preferences.

Categories change rarely and are cached for an hour; a user's interests are
cached for 15 minutes and invalidated on every write.
"""
import copy
import logging
from typing import Any, Dict, List, Optional

from routewise.cache import TTLCache
from routewise.categories import INTEREST_FOR_POI_CATEGORY, poi_categories_for_interests
from routewise.config import CATEGORIES_CACHE_TTL, USER_INTERESTS_CACHE_TTL
from routewise.storage import InterestCategory, MemStorage

LOGGER = logging.getLogger(__name__)

CATEGORIES_CACHE_KEY = ("interests", "categories")


def _user_key(user_id: int):
    return ("interests", "user", user_id)


def category_dict(cat: InterestCategory) -> Dict[str, Any]:
    return {
        "id": cat.id,
        "name": cat.name,
        "display_name": cat.display_name,
        "description": cat.description,
        "icon_name": cat.icon_name,
        "is_active": cat.is_active,
    }


class InterestsService:
    def __init__(self, storage: MemStorage, cache: Optional[TTLCache] = None):
        self.storage = storage
        self.cache = cache or TTLCache(USER_INTERESTS_CACHE_TTL)

    def get_interest_categories(self) -> List[Dict[str, Any]]:
        cached = self.cache.get(CATEGORIES_CACHE_KEY, max_age=CATEGORIES_CACHE_TTL)
        if cached is None:
            cached = [category_dict(c) for c in self.storage.get_all_interest_categories()]
            self.cache.set(CATEGORIES_CACHE_KEY, cached)
        return copy.deepcopy(cached)

    def get_user_interests(self, user_id: int) -> List[Dict[str, Any]]:
        key = _user_key(user_id)
        cached = self.cache.get(key, max_age=USER_INTERESTS_CACHE_TTL)
        if cached is not None:
            return copy.deepcopy(cached)
        interests = [
            {
                "id": ui.id,
                "user_id": ui.user_id,
                "category_id": ui.category_id,
                "is_enabled": ui.is_enabled,
                "priority": ui.priority,
                "category": category_dict(cat),
            }
            for ui, cat in self.storage.get_user_interests(user_id)
        ]
        self.cache.set(key, interests)
        return copy.deepcopy(interests)

    def update_user_interests(self, user_id: int, interests: List[Dict[str, Any]]) -> List[Dict[str, Any]]:
        """Replace all of the user's interests; raises ValueError on unknown category ids."""
        self.storage.set_user_interests(
            user_id,
            [
                {
                    "category_id": int(i["category_id"]),
                    "is_enabled": bool(i.get("is_enabled", True)),
                    "priority": i.get("priority") or 1,
                }
                for i in interests
            ],
        )
        self.cache.delete(_user_key(user_id))
        return self.get_user_interests(user_id)

    def enable_all_interests(self, user_id: int) -> List[Dict[str, Any]]:
        categories = self.get_interest_categories()
        self.storage.set_user_interests(
            user_id, [{"category_id": c["id"], "is_enabled": True, "priority": 1} for c in categories]
        )
        self.cache.delete(_user_key(user_id))
        LOGGER.info("Enabled all %d interests for user id=%d", len(categories), user_id)
        return self.get_user_interests(user_id)

    def toggle_user_interest(
        self, user_id: int, category_id: int, is_enabled: bool, priority: Optional[int] = None
    ) -> Optional[Dict[str, Any]]:
        updated = self.storage.update_user_interest(user_id, category_id, is_enabled, priority)
        if updated is None:
            return None
        self.cache.delete(_user_key(user_id))
        return {
            "id": updated.id,
            "user_id": updated.user_id,
            "category_id": updated.category_id,
            "is_enabled": updated.is_enabled,
            "priority": updated.priority,
        }

    def get_enabled_interest_names(self, user_id: int) -> List[str]:
        return [i["category"]["name"] for i in self.get_user_interests(user_id) if i["is_enabled"]]

    def has_user_interests(self, user_id: int, category_names: List[str]) -> bool:
        enabled = set(self.get_enabled_interest_names(user_id))
        return any(name in enabled for name in category_names)

    def enabled_poi_categories(self, user_id: int) -> List[str]:
        return poi_categories_for_interests(self.get_enabled_interest_names(user_id))

    @staticmethod
    def poi_category_mapping() -> Dict[str, str]:
        return dict(INTEREST_FOR_POI_CATEGORY)

    @staticmethod
    def filter_pois_by_interests(pois: List[Dict[str, Any]], interest_names: List[str]) -> List[Dict[str, Any]]:
        """Keep POIs whose category maps to an enabled interest. No interests means no filtering."""
        if not interest_names:
            return pois
        enabled = set(poi_categories_for_interests(interest_names))
        return [p for p in pois if p.get("category") in enabled]
