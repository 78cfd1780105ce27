"""
HTTP and WebSocket surface of the API, exercised through FastAPI's TestClient.
"""
import json
import logging

import pytest
from fastapi.testclient import TestClient

from api import main
from routewise.clustering.channel import CLOSE, HEARTBEAT, JOIN, LEAVE, PHOENIX_TOPIC, REPLY, message
from routewise.config import AUTH_COOKIE, CLUSTER_SOCKET_PATH, CLUSTER_TOPIC
from routewise.google.places import GooglePlacesClient

from tests.conftest import BOSTON

CITIES = {"Boston": {"lat": 42.3601, "lng": -71.0589}, "Cambridge": {"lat": 42.3736, "lng": -71.1097}}


class StubPlaces(GooglePlacesClient):
    """Geocodes from a fixed table and finds nothing nearby."""

    def __init__(self):
        super().__init__("test-key")

    def geocode_city(self, city):
        return CITIES.get(city)

    def search_nearby(self, lat, lng, radius=50000, place_type=None):
        return []


@pytest.fixture
def client(poi_store):
    main.init_services(poi_store, google_api_key=None, bcrypt_rounds=4)
    with TestClient(main.app) as c:
        yield c


@pytest.fixture
def routed_client(poi_store):
    main.init_services(poi_store, google_api_key=None, bcrypt_rounds=4, places_client=StubPlaces())
    with TestClient(main.app) as c:
        yield c


def register(client, username="alice", password="correct horse"):
    resp = client.post("/api/auth/register", json={"username": username, "password": password})
    assert resp.status_code == 201, resp.text
    client.cookies.clear()
    return resp.json()["token"]


def bearer(token):
    return {"Authorization": f"Bearer {token}"}


class TestBasics:
    def test_logging_setup_is_idempotent(self):
        main.setup_logging()
        main.setup_logging()
        filters = logging.getLogger("uvicorn.access").filters
        assert sum(isinstance(f, main.HealthCheckFilter) for f in filters) == 1

    def test_health(self, client):
        assert client.get("/health").json() == {"ok": True, "app": "RouteWise API", "pois": 8}

    def test_root_redirects_to_frontend(self, client):
        resp = client.get("/", follow_redirects=False)
        assert resp.status_code == 307
        assert resp.headers["location"] == main.FRONTEND_ORIGIN


class TestAuthEndpoints:
    def test_register_sets_cookie(self, client):
        resp = client.post("/api/auth/register", json={"username": "Alice", "password": "correct horse"})
        assert resp.status_code == 201
        body = resp.json()
        assert body["success"] is True
        assert body["message"] == "Account created successfully"
        assert body["user"]["username"] == "alice"
        assert AUTH_COOKIE in resp.cookies
        # Cookie alone authenticates
        assert client.get("/api/auth/me").json()["user"]["username"] == "alice"

    def test_duplicate_username(self, client):
        register(client)
        resp = client.post("/api/auth/register", json={"username": "alice", "password": "another one"})
        assert resp.status_code == 409

    def test_login_and_me(self, client):
        register(client)
        resp = client.post("/api/auth/login", json={"username": "alice", "password": "correct horse"})
        assert resp.json()["message"] == "Login successful"
        token = resp.json()["token"]
        client.cookies.clear()
        assert client.get("/api/auth/me").status_code == 401
        assert client.get("/api/auth/me", headers=bearer(token)).json()["user"]["username"] == "alice"

    def test_failed_logins_are_rate_limited(self, client):
        for _ in range(5):
            assert client.post("/api/auth/login", json={"username": "nobody", "password": "whatever1"}).status_code == 401
        resp = client.post("/api/auth/login", json={"username": "nobody", "password": "whatever1"})
        assert resp.status_code == 429
        body = resp.json()
        assert body["success"] is False
        assert body["code"] == "AUTH_RATE_LIMIT_EXCEEDED"
        assert int(resp.headers["Retry-After"]) == body["retryAfter"] > 0

    def test_successful_logins_not_counted(self, client):
        register(client)
        for _ in range(8):
            resp = client.post("/api/auth/login", json={"username": "alice", "password": "correct horse"})
            assert resp.status_code == 200

    def test_verify_token(self, client):
        token = register(client)
        assert client.post("/api/auth/verify-token", json={}).status_code == 400
        assert client.post("/api/auth/verify-token", json={"token": "junk"}).status_code == 401
        resp = client.post("/api/auth/verify-token", json={"token": token})
        assert resp.json()["user"]["username"] == "alice"

    def test_change_password(self, client):
        token = register(client)
        resp = client.post(
            "/api/auth/change-password",
            json={"currentPassword": "correct horse", "newPassword": "battery staple"},
            headers=bearer(token),
        )
        assert resp.status_code == 200
        assert client.post("/api/auth/login", json={"username": "alice", "password": "battery staple"}).status_code == 200

    def test_logout(self, client):
        client.post("/api/auth/register", json={"username": "alice", "password": "correct horse"})
        assert client.post("/api/auth/logout").json()["success"] is True
        assert client.get("/api/auth/me").status_code == 401


class TestPoiEndpoints:
    def test_list_by_interest_name(self, client):
        pois = client.get("/api/pois", params={"category": "parks"}).json()
        assert [p["id"] for p in pois] == ["p1"]

    def test_limit(self, client):
        assert len(client.get("/api/pois", params={"limit": 2}).json()) == 2

    def test_get(self, client):
        poi = client.get("/api/pois/r1").json()
        assert poi["name"] == "Neptune Oyster"
        assert poi["lng"] == pytest.approx(-71.0559)
        assert client.get("/api/pois/nope").status_code == 404

    def test_points_geojson(self, client):
        fc = client.get("/api/poi_points", params={"category": "restaurant", "bbox": "-71.15,42.30,-71.00,42.40"}).json()
        assert fc["type"] == "FeatureCollection"
        assert {f["properties"]["id"] for f in fc["features"]} == {"r1", "r2", "r3"}

    def test_points_bad_bbox(self, client):
        assert client.get("/api/poi_points", params={"bbox": "1,2,3"}).status_code == 400


class TestPlacesEndpoints:
    def test_unconfigured_key(self, client):
        resp = client.get("/api/places/geocode", params={"city": "Austin"})
        assert resp.status_code == 500
        assert resp.json()["detail"] == "Places API key not configured"

    def test_session_token_required(self, client):
        assert client.get("/api/places/autocomplete", params={"input": "Bos"}).status_code == 422

    def test_geocode(self, routed_client):
        assert routed_client.get("/api/places/geocode", params={"city": "Boston"}).json()["lat"] == 42.3601
        assert routed_client.get("/api/places/geocode", params={"city": "Atlantis"}).status_code == 404


class TestRouteEndpoint:
    def test_no_google_key(self, client):
        resp = client.post("/api/route", json={"startCity": "Boston", "endCity": "Cambridge"})
        assert resp.status_code == 503

    def test_plan(self, routed_client):
        resp = routed_client.post("/api/route", json={"startCity": "Boston", "endCity": "Cambridge"})
        assert resp.status_code == 200
        body = resp.json()
        assert len(body["route"]["route_points"]) == 6
        assert {p["id"] for p in body["pois"]} == {"r1", "r2", "r3", "p1", "h1", "s1"}
        assert "trip_id" not in body

    def test_save_requires_owner_or_public(self, routed_client):
        payload = {"startCity": "Boston", "endCity": "Cambridge", "save": True}
        assert routed_client.post("/api/route", json=payload).json()["trip_id"] is None
        token = register(routed_client)
        trip_id = routed_client.post("/api/route", json=payload, headers=bearer(token)).json()["trip_id"]
        trip = routed_client.get(f"/api/trips/{trip_id}", headers=bearer(token)).json()
        assert trip["title"] == "Boston to Cambridge"
        assert len(trip["pois_data"]) == 6

    def test_unknown_city(self, routed_client):
        resp = routed_client.post("/api/route", json={"startCity": "Boston", "endCity": "Atlantis"})
        assert resp.status_code == 404


class TestTripEndpoints:
    def test_crud(self, client):
        alice, bob = register(client, "alice"), register(client, "bob")
        resp = client.post("/api/trips", json={"start_city": "Boston", "end_city": "Salem"}, headers=bearer(alice))
        assert resp.status_code == 201
        trip = resp.json()
        assert trip["title"] == "Boston to Salem"

        assert client.get(f"/api/trips/{trip['id']}", headers=bearer(bob)).status_code == 404
        assert client.get(f"/api/trips/{trip['id']}").status_code == 404
        assert client.put(f"/api/trips/{trip['id']}", json={"title": "x"}, headers=bearer(bob)).status_code == 404

        updated = client.put(
            f"/api/trips/{trip['id']}", json={"title": "Witch trip", "is_public": True}, headers=bearer(alice)
        ).json()
        assert updated["title"] == "Witch trip"
        assert client.get(f"/api/trips/{trip['id']}").json()["is_public"] is True
        assert [t["id"] for t in client.get("/api/trips/public").json()] == [trip["id"]]
        assert [t["title"] for t in client.get("/api/trips/search", params={"q": "salem"}).json()] == ["Witch trip"]
        assert [t["id"] for t in client.get("/api/trips", headers=bearer(alice)).json()] == [trip["id"]]
        assert client.get("/api/trips", headers=bearer(bob)).json() == []

        assert client.delete(f"/api/trips/{trip['id']}", headers=bearer(bob)).status_code == 404
        assert client.delete(f"/api/trips/{trip['id']}", headers=bearer(alice)).json() == {"success": True}
        assert client.get(f"/api/trips/{trip['id']}", headers=bearer(alice)).status_code == 404

    def test_requires_auth(self, client):
        assert client.get("/api/trips").status_code == 401
        assert client.post("/api/trips", json={"start_city": "A", "end_city": "B"}).status_code == 401

    def test_blank_city(self, client):
        token = register(client)
        resp = client.post("/api/trips", json={"start_city": " ", "end_city": "B"}, headers=bearer(token))
        assert resp.status_code == 400

    def test_suggested(self, client):
        anon = client.get("/api/trips/suggested").json()
        assert len(anon) == 5
        assert {t["score"] for t in anon} == {75}
        token = register(client)
        mine = client.get("/api/trips/suggested", params={"limit": 8}, headers=bearer(token)).json()
        assert len(mine) == 8
        assert client.get("/api/trips/suggested/denver-aspen").json()["title"] == "Rocky Mountain High"
        assert client.get("/api/trips/suggested/nowhere").status_code == 404


def _category_id(client, name):
    return next(c["id"] for c in client.get("/api/interests/categories").json() if c["name"] == name)


class TestInterestEndpoints:
    def test_new_user_has_everything_enabled(self, client):
        token = register(client)
        interests = client.get("/api/interests/user", headers=bearer(token)).json()
        assert len(interests) == 10
        assert all(i["is_enabled"] for i in interests)

    def test_replace_and_toggle(self, client):
        token = register(client)
        parks, nightlife = _category_id(client, "parks"), _category_id(client, "nightlife")
        resp = client.put(
            "/api/interests/user",
            json={"interests": [{"category_id": parks}, {"category_id": nightlife, "is_enabled": False}]},
            headers=bearer(token),
        )
        assert [i["category"]["name"] for i in resp.json()] == ["parks", "nightlife"]

        toggled = client.patch(f"/api/interests/user/{nightlife}", json={"is_enabled": True}, headers=bearer(token))
        assert toggled.json()["is_enabled"] is True
        missing = client.patch(f"/api/interests/user/{_category_id(client, 'shopping')}", json={"is_enabled": True}, headers=bearer(token))
        assert missing.status_code == 404

        assert len(client.post("/api/interests/user/enable-all", headers=bearer(token)).json()) == 10

    def test_unknown_category(self, client):
        token = register(client)
        resp = client.put("/api/interests/user", json={"interests": [{"category_id": 999}]}, headers=bearer(token))
        assert resp.status_code == 400


class TestCacheEndpoints:
    def test_stats(self, client):
        stats = client.get("/api/cache/stats").json()
        assert stats["places"] == {"total_entries": 0, "methods": []}

    def test_clear_requires_auth(self, client):
        assert client.delete("/api/cache").status_code == 401
        token = register(client)
        assert client.delete("/api/cache", headers=bearer(token)).json() == {"success": True, "cleared": 0}


class TestClusterSocket:
    def test_join_heartbeat_leave(self, client):
        with client.websocket_connect(CLUSTER_SOCKET_PATH) as ws:
            ws.send_json(message(CLUSTER_TOPIC, JOIN, {"bounds": BOSTON, "zoom": 16, "filters": {}}, "1"))
            reply = ws.receive_json()
            assert reply["event"] == REPLY
            assert reply["payload"]["status"] == "ok"
            assert reply["payload"]["response"]["cluster_count"] == 6

            ws.send_json(message(PHOENIX_TOPIC, HEARTBEAT, {}, "2"))
            assert ws.receive_json()["ref"] == "2"

            ws.send_text("not json")
            assert ws.receive_json()["payload"]["status"] == "error"

            ws.send_json(message(CLUSTER_TOPIC, LEAVE, {}, "3"))
            assert ws.receive_json()["payload"]["status"] == "ok"
            assert ws.receive_json()["event"] == CLOSE

    def test_token_applies_user_interests(self, client):
        token = register(client)
        client.put(
            "/api/interests/user", json={"interests": [{"category_id": _category_id(client, "parks")}]}, headers=bearer(token)
        )
        with client.websocket_connect(f"{CLUSTER_SOCKET_PATH}?token={token}") as ws:
            ws.send_json(message(CLUSTER_TOPIC, JOIN, {"bounds": BOSTON, "zoom": 16}, "1"))
            clusters = ws.receive_json()["payload"]["response"]["clusters"]
            assert [c["id"] for c in clusters] == ["poi:p1"]
            ws.send_json(message(CLUSTER_TOPIC, LEAVE, {}, "2"))
            ws.receive_json()
            ws.receive_json()

    def test_binary_frames(self, client):
        with client.websocket_connect(CLUSTER_SOCKET_PATH) as ws:
            ws.send_bytes(json.dumps(message(PHOENIX_TOPIC, HEARTBEAT, {}, "5")).encode("utf-8"))
            reply = ws.receive_json()
            assert reply["ref"] == "5"
            assert reply["payload"]["status"] == "ok"

            ws.send_bytes(b"\xff\xfe")
            assert ws.receive_json()["payload"]["status"] == "error"

            ws.send_json(message(PHOENIX_TOPIC, HEARTBEAT, {}, "6"))
            assert ws.receive_json()["ref"] == "6"
