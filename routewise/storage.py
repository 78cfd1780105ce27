"""
In-memory storage for users, interests and trips.

All methods are guarded by one lock; FastAPI runs sync endpoints on a thread pool.
"""
import threading
from dataclasses import asdict, dataclass, field, replace
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Tuple

from routewise.categories import DEFAULT_INTEREST_CATEGORIES


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass
class User:
    id: int
    username: str
    password: str
    email: Optional[str] = None
    google_id: Optional[str] = None
    full_name: Optional[str] = None
    avatar: Optional[str] = None
    provider: str = "local"
    created_at: datetime = field(default_factory=utcnow)
    updated_at: datetime = field(default_factory=utcnow)

    def public(self) -> Dict[str, Any]:
        """User fields safe to return to clients (no password hash)."""
        return {
            "id": self.id,
            "username": self.username,
            "email": self.email,
            "full_name": self.full_name,
            "avatar": self.avatar,
            "provider": self.provider,
        }


@dataclass
class InterestCategory:
    id: int
    name: str
    display_name: str
    description: str
    icon_name: str
    is_active: bool = True
    created_at: datetime = field(default_factory=utcnow)


@dataclass
class UserInterest:
    id: int
    user_id: int
    category_id: int
    is_enabled: bool = True
    priority: int = 1
    created_at: datetime = field(default_factory=utcnow)
    updated_at: datetime = field(default_factory=utcnow)


@dataclass
class Trip:
    id: int
    user_id: Optional[int]
    title: str
    start_city: str
    end_city: str
    checkpoints: List[str] = field(default_factory=list)
    route_data: Optional[Dict[str, Any]] = None
    pois_data: List[Dict[str, Any]] = field(default_factory=list)
    is_public: bool = False
    created_at: datetime = field(default_factory=utcnow)
    updated_at: datetime = field(default_factory=utcnow)

    def to_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        data["created_at"] = self.created_at.isoformat()
        data["updated_at"] = self.updated_at.isoformat()
        return data


TRIP_UPDATABLE_FIELDS = ("title", "start_city", "end_city", "checkpoints", "route_data", "pois_data", "is_public")


class MemStorage:
    def __init__(self):
        self._lock = threading.RLock()
        self._users: Dict[int, User] = {}
        self._categories: Dict[int, InterestCategory] = {}
        self._user_interests: Dict[Tuple[int, int], UserInterest] = {}
        self._trips: Dict[int, Trip] = {}
        self._next = {"user": 1, "category": 1, "user_interest": 1, "trip": 1}
        for cat in DEFAULT_INTEREST_CATEGORIES:
            self.create_interest_category(cat.name, cat.display_name, cat.description, cat.icon_name, cat.is_active)

    def _id(self, kind: str) -> int:
        value = self._next[kind]
        self._next[kind] += 1
        return value

    # ---------- users ----------

    def get_user(self, user_id: int) -> Optional[User]:
        with self._lock:
            return self._users.get(user_id)

    def get_user_by_username(self, username: str) -> Optional[User]:
        with self._lock:
            return next((u for u in self._users.values() if u.username == username), None)

    def get_user_by_email(self, email: str) -> Optional[User]:
        with self._lock:
            return next((u for u in self._users.values() if email and u.email == email), None)

    def create_user(self, username: str, password: str, **extra: Any) -> User:
        with self._lock:
            if self.get_user_by_username(username) is not None:
                raise ValueError(f"Username already exists: {username}")
            user = User(id=self._id("user"), username=username, password=password, **extra)
            self._users[user.id] = user
            return user

    def update_user_password(self, user_id: int, password_hash: str) -> bool:
        with self._lock:
            user = self._users.get(user_id)
            if user is None:
                return False
            user.password = password_hash
            user.updated_at = utcnow()
            return True

    # ---------- interest categories ----------

    def get_all_interest_categories(self) -> List[InterestCategory]:
        with self._lock:
            return [c for c in self._categories.values() if c.is_active]

    def get_interest_category(self, category_id: int) -> Optional[InterestCategory]:
        with self._lock:
            return self._categories.get(category_id)

    def get_interest_category_by_name(self, name: str) -> Optional[InterestCategory]:
        with self._lock:
            return next((c for c in self._categories.values() if c.name == name), None)

    def create_interest_category(
        self, name: str, display_name: str, description: str, icon_name: str, is_active: bool = True
    ) -> InterestCategory:
        with self._lock:
            cat = InterestCategory(
                id=self._id("category"),
                name=name,
                display_name=display_name,
                description=description,
                icon_name=icon_name,
                is_active=is_active,
            )
            self._categories[cat.id] = cat
            return cat

    # ---------- user interests ----------

    def get_user_interests(self, user_id: int) -> List[Tuple[UserInterest, InterestCategory]]:
        with self._lock:
            rows = [
                (ui, self._categories[ui.category_id])
                for (uid, _), ui in self._user_interests.items()
                if uid == user_id and ui.category_id in self._categories
            ]
        return sorted(rows, key=lambda pair: (-pair[0].priority, pair[1].id))

    def set_user_interests(self, user_id: int, interests: List[Dict[str, Any]]) -> List[UserInterest]:
        """Replace all of a user's interests. Unknown category ids are rejected."""
        with self._lock:
            for item in interests:
                if item["category_id"] not in self._categories:
                    raise ValueError(f"Unknown interest category id: {item['category_id']}")
            for key in [k for k in self._user_interests if k[0] == user_id]:
                del self._user_interests[key]
            created = []
            for item in interests:
                ui = UserInterest(
                    id=self._id("user_interest"),
                    user_id=user_id,
                    category_id=item["category_id"],
                    is_enabled=bool(item.get("is_enabled", True)),
                    priority=int(item.get("priority") or 1),
                )
                self._user_interests[(user_id, ui.category_id)] = ui
                created.append(ui)
            return created

    def update_user_interest(
        self, user_id: int, category_id: int, is_enabled: bool, priority: Optional[int] = None
    ) -> Optional[UserInterest]:
        with self._lock:
            ui = self._user_interests.get((user_id, category_id))
            if ui is None:
                return None
            ui.is_enabled = is_enabled
            if priority is not None:
                ui.priority = priority
            ui.updated_at = utcnow()
            return ui

    def delete_user_interest(self, user_id: int, category_id: int) -> bool:
        with self._lock:
            return self._user_interests.pop((user_id, category_id), None) is not None

    # ---------- trips ----------

    def create_trip(self, **data: Any) -> Trip:
        with self._lock:
            trip = Trip(id=self._id("trip"), **data)
            self._trips[trip.id] = trip
            return replace(trip)

    def get_trip(self, trip_id: int) -> Optional[Trip]:
        with self._lock:
            trip = self._trips.get(trip_id)
            return replace(trip) if trip else None

    def list_trips(self) -> List[Trip]:
        with self._lock:
            return [replace(t) for t in self._trips.values()]

    def update_trip(self, trip_id: int, updates: Dict[str, Any]) -> Optional[Trip]:
        with self._lock:
            trip = self._trips.get(trip_id)
            if trip is None:
                return None
            changes = {k: v for k, v in updates.items() if k in TRIP_UPDATABLE_FIELDS}
            updated = replace(trip, **changes, updated_at=utcnow())
            self._trips[trip_id] = updated
            return replace(updated)

    def delete_trip(self, trip_id: int) -> bool:
        with self._lock:
            return self._trips.pop(trip_id, None) is not None
