"""
Trips, interests and suggested trips over in-memory storage.
"""
import pytest

from routewise.cache import TTLCache
from routewise.interests import InterestsService
from routewise.suggested import MIN_SCORE, TRIP_TEMPLATES, SuggestedTripsService, interest_score
from routewise.trips import TripNotFound, TripService, generate_trip_title


class FakeClock:
    def __init__(self):
        self.now = 0.0

    def __call__(self):
        return self.now


@pytest.fixture
def trips(storage):
    return TripService(storage)


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def interests(storage, clock):
    return InterestsService(storage, TTLCache(900, clock=clock))


def _category_id(interests, name):
    return next(c["id"] for c in interests.get_interest_categories() if c["name"] == name)


def _enable_only(interests, user_id, names):
    interests.update_user_interests(
        user_id, [{"category_id": _category_id(interests, n), "is_enabled": True} for n in names]
    )


class TestTripTitles:
    @pytest.mark.parametrize(
        "checkpoints,title",
        [
            ([], "Austin to Dallas"),
            (["Waco"], "Austin to Dallas via Waco"),
            (["Waco", "Temple"], "Austin to Dallas via 2 stops"),
        ],
    )
    def test_generate(self, checkpoints, title):
        assert generate_trip_title("Austin", "Dallas", checkpoints) == title


class TestTrips:
    def test_create_generates_title(self, trips):
        trip = trips.create_trip(1, " Austin ", "Dallas", checkpoints=["Waco", " "])
        assert trip.title == "Austin to Dallas via Waco"
        assert trip.checkpoints == ["Waco"]

    def test_create_requires_cities(self, trips):
        with pytest.raises(ValueError):
            trips.create_trip(1, "Austin", "  ")

    def test_visibility(self, trips):
        private = trips.create_trip(1, "A", "B")
        public = trips.create_trip(1, "C", "D", is_public=True)
        assert trips.get_trip(private.id, 1).id == private.id
        assert trips.get_trip(public.id, 2).id == public.id
        assert trips.get_trip(public.id).id == public.id
        with pytest.raises(TripNotFound):
            trips.get_trip(private.id, 2)
        with pytest.raises(TripNotFound):
            trips.get_trip(private.id)
        with pytest.raises(TripNotFound):
            trips.get_public_trip(private.id)

    def test_user_trips_newest_first(self, trips):
        a = trips.create_trip(1, "A", "B")
        b = trips.create_trip(1, "C", "D")
        trips.create_trip(2, "E", "F")
        assert [t.id for t in trips.get_user_trips(1)] == [b.id, a.id]
        assert [t.id for t in trips.get_user_trips(1, limit=1)] == [b.id]

    def test_public_trips(self, trips):
        trips.create_trip(1, "A", "B")
        pub = trips.create_trip(2, "C", "D", is_public=True)
        assert [t.id for t in trips.get_public_trips()] == [pub.id]

    def test_update_and_delete_owner_only(self, trips):
        trip = trips.create_trip(1, "A", "B")
        with pytest.raises(TripNotFound):
            trips.update_trip(trip.id, 2, {"title": "Mine now"})
        updated = trips.update_trip(trip.id, 1, {"title": "Road trip", "user_id": 2})
        assert updated.title == "Road trip"
        assert updated.user_id == 1
        with pytest.raises(TripNotFound):
            trips.delete_trip(trip.id, 2)
        trips.delete_trip(trip.id, 1)
        with pytest.raises(TripNotFound):
            trips.get_trip(trip.id, 1)

    def test_search(self, trips):
        trips.create_trip(1, "Boston", "New York", is_public=True)
        trips.create_trip(2, "Boston", "Portland")
        trips.create_trip(3, "Seattle", "Portland", title="Coffee run", is_public=True)
        assert len(trips.search_trips("boston")) == 1
        assert len(trips.search_trips("boston", user_id=2)) == 2
        assert [t.title for t in trips.search_trips("COFFEE")] == ["Coffee run"]

    def test_create_from_route_anonymous(self, trips):
        assert trips.create_trip_from_route(None, "A", "B", [], None, []) is None
        trip = trips.create_trip_from_route(None, "A", "B", [], {"distance": "1 mi"}, [], is_public=True)
        assert trip.is_public
        assert trip.route_data == {"distance": "1 mi"}

    def test_returned_trips_are_copies(self, trips, storage):
        trip = trips.create_trip(1, "A", "B")
        trip.title = "changed locally"
        assert storage.get_trip(trip.id).title == "A to B"


class TestInterests:
    def test_categories_seeded(self, interests):
        names = [c["name"] for c in interests.get_interest_categories()]
        assert len(names) == 10
        assert names[0] == "restaurants"

    def test_new_user_has_none(self, interests):
        assert interests.get_user_interests(1) == []
        assert interests.get_enabled_interest_names(1) == []

    def test_enable_all(self, interests):
        rows = interests.enable_all_interests(1)
        assert len(rows) == 10
        assert all(r["is_enabled"] for r in rows)
        assert rows[0]["category"]["name"]

    def test_update_replaces_and_invalidates(self, interests):
        interests.enable_all_interests(1)
        assert len(interests.get_enabled_interest_names(1)) == 10
        _enable_only(interests, 1, ["parks", "nightlife"])
        assert sorted(interests.get_enabled_interest_names(1)) == ["nightlife", "parks"]

    def test_unknown_category_rejected(self, interests):
        with pytest.raises(ValueError):
            interests.update_user_interests(1, [{"category_id": 999}])

    def test_toggle(self, interests):
        _enable_only(interests, 1, ["parks", "nightlife"])
        parks = _category_id(interests, "parks")
        updated = interests.toggle_user_interest(1, parks, False)
        assert updated["is_enabled"] is False
        assert interests.get_enabled_interest_names(1) == ["nightlife"]
        assert interests.toggle_user_interest(1, _category_id(interests, "shopping"), True) is None

    def test_priority_orders_interests(self, interests):
        interests.update_user_interests(1, [
            {"category_id": _category_id(interests, "parks"), "priority": 1},
            {"category_id": _category_id(interests, "nightlife"), "priority": 5},
        ])
        assert interests.get_enabled_interest_names(1) == ["nightlife", "parks"]

    def test_callers_cannot_mutate_cached_interests(self, interests):
        interests.enable_all_interests(1)
        rows = interests.get_user_interests(1)
        rows[0]["is_enabled"] = False
        rows[0]["category"]["name"] = "renamed"
        rows.pop()
        fresh = interests.get_user_interests(1)
        assert len(fresh) == 10
        assert all(r["is_enabled"] for r in fresh)
        assert fresh[0]["category"]["name"] != "renamed"

        categories = interests.get_interest_categories()
        categories.clear()
        assert len(interests.get_interest_categories()) == 10

    def test_cached_until_ttl(self, interests, storage, clock):
        _enable_only(interests, 1, ["parks"])
        assert interests.get_enabled_interest_names(1) == ["parks"]
        # Bypass the service so the cache is not invalidated
        storage.update_user_interest(1, _category_id(interests, "parks"), False)
        assert interests.get_enabled_interest_names(1) == ["parks"]
        clock.now += 901
        assert interests.get_enabled_interest_names(1) == []

    def test_poi_categories(self, interests):
        _enable_only(interests, 1, ["restaurants", "historic_sites"])
        assert sorted(interests.enabled_poi_categories(1)) == ["historic", "restaurant"]
        assert interests.has_user_interests(1, ["parks", "restaurants"])
        assert not interests.has_user_interests(1, ["parks"])

    def test_filter_pois_by_interests(self):
        pois = [{"id": 1, "category": "restaurant"}, {"id": 2, "category": "park"}]
        assert InterestsService.filter_pois_by_interests(pois, ["parks"]) == [pois[1]]
        assert InterestsService.filter_pois_by_interests(pois, []) == pois
        assert InterestsService.poi_category_mapping()["scenic"] == "scenic_spots"


class TestSuggestedTrips:
    @pytest.fixture
    def suggested(self, interests, poi_store):
        return SuggestedTripsService(interests, poi_store)

    def test_score(self):
        # All four trip categories match; they are 4 of the user's 8 interests
        cats = ("restaurants", "scenic_spots", "historic_sites", "outdoor_activities")
        user = list(cats) + ["parks", "markets", "nightlife", "shopping"]
        assert interest_score(cats, user) == 85
        assert interest_score(cats, []) == 50
        assert interest_score(cats, ["nightlife"]) == 0

    def test_no_interests_gets_popular(self, suggested):
        trips = suggested.generate(1)
        assert len(trips) == 5
        assert all(t["score"] == 75 for t in trips)
        assert [t["id"] for t in trips] == [t.id for t in TRIP_TEMPLATES[:5]]

    def test_ranked_by_score(self, suggested, interests):
        _enable_only(interests, 1, ["parks", "outdoor_activities", "scenic_spots"])
        trips = suggested.generate(1)
        scores = [t["score"] for t in trips]
        assert scores == sorted(scores, reverse=True)
        assert all(s >= MIN_SCORE for s in scores)
        assert trips[0]["id"] == "denver-aspen"
        assert trips[0]["score"] == 100
        assert trips[0]["matching_interests"] == ["outdoor_activities", "scenic_spots", "parks"]

    def test_low_scores_dropped(self, suggested, interests):
        _enable_only(interests, 1, ["shopping"])
        trips = suggested.generate(1)
        assert [t["id"] for t in trips] == ["boston-new-york"]

    def test_pois_follow_interests(self, suggested, interests):
        _enable_only(interests, 1, ["restaurants", "nightlife"])
        (trip, *_) = suggested.generate(1)
        assert trip["pois"]
        assert {p["category"] for p in trip["pois"]} == {"restaurant"}
        assert len(trip["pois"]) <= 6

    def test_by_id(self, suggested, interests):
        assert suggested.get_by_id("nowhere") is None
        anon = suggested.get_by_id("seattle-portland")
        assert anon["score"] == 75
        _enable_only(interests, 1, ["restaurants"])
        mine = suggested.get_by_id("seattle-portland", 1)
        assert mine["matching_interests"] == ["restaurants"]
        assert mine["score"] == interest_score(("restaurants", "parks", "cultural_sites", "outdoor_activities"), ["restaurants"])
