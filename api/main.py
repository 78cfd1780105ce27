#!/usr/bin/env python3
# api/main.py

import json
import logging
from typing import Any, Dict, List, Optional

from fastapi import Depends, FastAPI, HTTPException, Query, Request, Response, WebSocket, WebSocketDisconnect
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, RedirectResponse
from pydantic import BaseModel, Field
from starlette.concurrency import run_in_threadpool
import uvicorn

from routewise.auth import AuthError, AuthService
from routewise.cache import TTLCache
from routewise.categories import normalize_category
from routewise.clustering import ClusterEngine
from routewise.clustering.channel import ClusterChannel
from routewise.config import (
    APP_NAME,
    AUTH_COOKIE,
    BCRYPT_ROUNDS,
    CLUSTER_SOCKET_PATH,
    FRONTEND_ORIGIN,
    GOOGLE_PLACES_API_KEY,
    LOG_LEVEL,
    POI_PATH,
    PORT,
    USER_INTERESTS_CACHE_TTL,
    jwt_expiry_seconds,
    warn_on_dev_defaults,
)
from routewise.google.directions import GoogleDirectionsClient
from routewise.google.places import GooglePlacesClient, PlacesError
from routewise.interests import InterestsService
from routewise.poi.store import POIStore, filter_pois, to_feature_collection
from routewise.rate_limit import RateLimitExceeded, auth_limiter, places_limiter
from routewise.routes import RoutePlanner
from routewise.storage import MemStorage, User
from routewise.suggested import SuggestedTripsService
from routewise.trips import TripNotFound, TripService

LOGGER = logging.getLogger("routewise.api")


class HealthCheckFilter(logging.Filter):
    def filter(self, record: logging.LogRecord) -> bool:
        return "/health" not in record.getMessage()


def setup_logging(level: str = LOG_LEVEL) -> None:
    logging.basicConfig(
        level=getattr(logging, str(level).upper(), logging.INFO),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    access = logging.getLogger("uvicorn.access")
    if not any(isinstance(f, HealthCheckFilter) for f in access.filters):
        access.addFilter(HealthCheckFilter())


setup_logging()


# ---------- Services ----------
# Module-level singletons; init_services() rebuilds them (tests pass their own POI store).
STORAGE: MemStorage
POIS: POIStore
AUTH: AuthService
INTERESTS: InterestsService
TRIPS: TripService
ENGINE: ClusterEngine
PLACES: GooglePlacesClient
DIRECTIONS: GoogleDirectionsClient
PLANNER: RoutePlanner
SUGGESTED: SuggestedTripsService
AUTH_LIMITER = auth_limiter()
PLACES_LIMITER = places_limiter()


def init_services(
    poi_store: Optional[POIStore] = None,
    google_api_key: Optional[str] = GOOGLE_PLACES_API_KEY,
    bcrypt_rounds: int = BCRYPT_ROUNDS,
    places_client: Optional[GooglePlacesClient] = None,
    directions_client: Optional[GoogleDirectionsClient] = None,
) -> None:
    global STORAGE, POIS, AUTH, INTERESTS, TRIPS, ENGINE, PLACES, DIRECTIONS, PLANNER, SUGGESTED
    STORAGE = MemStorage()
    POIS = poi_store if poi_store is not None else POIStore.from_path(POI_PATH)
    AUTH = AuthService(STORAGE, expires_in=jwt_expiry_seconds(), rounds=bcrypt_rounds)
    INTERESTS = InterestsService(STORAGE, TTLCache(USER_INTERESTS_CACHE_TTL))
    TRIPS = TripService(STORAGE)
    ENGINE = ClusterEngine(POIS)
    PLACES = places_client or GooglePlacesClient(google_api_key)
    DIRECTIONS = directions_client or GoogleDirectionsClient(google_api_key)
    PLANNER = RoutePlanner(POIS, PLACES, DIRECTIONS)
    SUGGESTED = SuggestedTripsService(INTERESTS, POIS)
    AUTH_LIMITER.reset()
    PLACES_LIMITER.reset()


init_services()


# ---------- Request bodies ----------
class Credentials(BaseModel):
    username: str = ""
    password: str = ""


class ChangePasswordBody(BaseModel):
    current_password: str = Field("", alias="currentPassword")
    new_password: str = Field("", alias="newPassword")

    model_config = {"populate_by_name": True}


class TokenBody(BaseModel):
    token: Optional[str] = None


class RouteBody(BaseModel):
    start_city: str = Field(..., alias="startCity")
    end_city: str = Field(..., alias="endCity")
    checkpoints: List[str] = []
    save: bool = False
    is_public: bool = Field(False, alias="isPublic")

    model_config = {"populate_by_name": True}


class TripBody(BaseModel):
    start_city: str
    end_city: str
    title: Optional[str] = None
    checkpoints: List[str] = []
    route_data: Optional[Dict[str, Any]] = None
    pois_data: List[Dict[str, Any]] = []
    is_public: bool = False


class TripUpdateBody(BaseModel):
    title: Optional[str] = None
    start_city: Optional[str] = None
    end_city: Optional[str] = None
    checkpoints: Optional[List[str]] = None
    route_data: Optional[Dict[str, Any]] = None
    pois_data: Optional[List[Dict[str, Any]]] = None
    is_public: Optional[bool] = None


class InterestItem(BaseModel):
    category_id: int
    is_enabled: bool = True
    priority: int = 1


class InterestsBody(BaseModel):
    interests: List[InterestItem]


class ToggleInterestBody(BaseModel):
    is_enabled: bool
    priority: Optional[int] = None


# ---------- Auth helpers ----------
def _bearer_token(request: Request) -> Optional[str]:
    header = request.headers.get("authorization") or ""
    if header.lower().startswith("bearer "):
        return header[7:].strip() or None
    return request.cookies.get(AUTH_COOKIE)


def optional_user(request: Request) -> Optional[User]:
    return AUTH.get_user_from_token(_bearer_token(request))


def require_user(user: Optional[User] = Depends(optional_user)) -> User:
    if user is None:
        raise HTTPException(status_code=401, detail="Authentication required")
    return user


def _client_key(request: Request) -> str:
    return request.client.host if request.client else "unknown"


def _set_auth_cookie(response: Response, token: str) -> None:
    response.set_cookie(
        AUTH_COOKIE, token, max_age=jwt_expiry_seconds(), httponly=True, samesite="strict",
    )


def _places_http_error(exc: PlacesError) -> HTTPException:
    return HTTPException(status_code=exc.status_code, detail=exc.message)


# ---------- FastAPI ----------
app = FastAPI(title=APP_NAME)

app.add_middleware(
    CORSMiddleware,
    allow_origins=[FRONTEND_ORIGIN] if FRONTEND_ORIGIN else ["*"],
    allow_credentials=True,
    allow_methods=["GET", "POST", "PUT", "PATCH", "DELETE"],
    allow_headers=["*"],
)


@app.exception_handler(RateLimitExceeded)
async def rate_limited(request: Request, exc: RateLimitExceeded):
    return JSONResponse(exc.body, status_code=429, headers={"Retry-After": str(exc.retry_after)})


@app.get("/")
async def serve_frontend():
    """Redirect to the frontend if configured; otherwise emit API status."""
    if FRONTEND_ORIGIN:
        return RedirectResponse(FRONTEND_ORIGIN, status_code=307)
    return JSONResponse({"app": APP_NAME, "frontend": "Set RW_FRONTEND_ORIGIN to redirect to the web client."})


@app.get("/health")
def health():
    return {"ok": True, "app": APP_NAME, "pois": len(POIS)}


# ---------- Auth ----------
@app.post("/api/auth/register", status_code=201)
def register(body: Credentials, request: Request, response: Response):
    key = _client_key(request)
    AUTH_LIMITER.hit(key)
    try:
        result = AUTH.register(body.username, body.password)
    except AuthError as exc:
        raise HTTPException(status_code=exc.status_code, detail=exc.message) from exc
    AUTH_LIMITER.release(key)
    # New accounts start with every interest enabled
    INTERESTS.enable_all_interests(result["user"]["id"])
    _set_auth_cookie(response, result["token"])
    return {"success": True, "message": "Account created successfully", **result}


@app.post("/api/auth/login")
def login(body: Credentials, request: Request, response: Response):
    key = _client_key(request)
    AUTH_LIMITER.hit(key)
    try:
        result = AUTH.login(body.username, body.password)
    except AuthError as exc:
        raise HTTPException(status_code=exc.status_code, detail=exc.message) from exc
    AUTH_LIMITER.release(key)
    _set_auth_cookie(response, result["token"])
    return {"success": True, "message": "Login successful", **result}


@app.post("/api/auth/logout")
def logout(response: Response):
    response.delete_cookie(AUTH_COOKIE, httponly=True, samesite="strict")
    return {"success": True, "message": "Logged out successfully"}


@app.get("/api/auth/me")
def me(user: User = Depends(require_user)):
    return {"success": True, "user": user.public()}


@app.post("/api/auth/change-password")
def change_password(body: ChangePasswordBody, request: Request, user: User = Depends(require_user)):
    key = _client_key(request)
    AUTH_LIMITER.hit(key)
    try:
        AUTH.change_password(user.id, body.current_password, body.new_password)
    except AuthError as exc:
        raise HTTPException(status_code=exc.status_code, detail=exc.message) from exc
    AUTH_LIMITER.release(key)
    return {"success": True, "message": "Password changed successfully"}


@app.post("/api/auth/verify-token")
def verify_token(body: TokenBody):
    if not body.token:
        raise HTTPException(status_code=400, detail="Token is required")
    user = AUTH.get_user_from_token(body.token)
    if user is None:
        raise HTTPException(status_code=401, detail="Invalid or expired token")
    return {"success": True, "message": "Token is valid", "user": user.public()}


# ---------- POIs ----------
@app.get("/api/pois")
def list_pois(
    category: Optional[str] = Query(None, description="Category slug or interest name"),
    limit: Optional[int] = Query(None, ge=1, le=5000),
):
    return POIS.all(category=category, limit=limit)


@app.get("/api/pois/{poi_id}")
def get_poi(poi_id: str):
    poi = POIS.get(poi_id)
    if poi is None:
        raise HTTPException(status_code=404, detail=f"POI '{poi_id}' not found")
    return poi


@app.get("/api/poi_points")
def poi_points(
    category: Optional[str] = Query(None, description="Optional category slug to include"),
    bbox: Optional[str] = Query(None, description="Optional bbox lonmin,latmin,lonmax,latmax"),
):
    """Return GeoJSON FeatureCollection of POI points filtered by category and bbox."""
    bounds: Dict[str, float] = {}
    if bbox:
        try:
            x0, y0, x1, y1 = [float(x) for x in bbox.split(",")]
        except ValueError as exc:
            raise HTTPException(status_code=400, detail="Invalid bbox; expected lonmin,latmin,lonmax,latmax") from exc
        bounds = {"west": x0, "south": min(y0, y1), "east": x1, "north": max(y0, y1)}
    slug = normalize_category(category)
    sub = filter_pois(POIS.frame, categories=[slug] if slug else None, **bounds)
    return to_feature_collection(sub)


# ---------- Places ----------
@app.get("/api/places/autocomplete")
def places_autocomplete(
    request: Request,
    q: str = Query(..., min_length=1, alias="input", description="Search text"),
    session: str = Query(..., min_length=1, description="Google Places session token"),
    location_bias: Optional[str] = Query(None, alias="locationBias", description="Bias as lon,lat or west,south,east,north"),
    limit: int = Query(8, ge=1, le=10, description="Maximum number of suggestions to return"),
):
    PLACES_LIMITER.hit(_client_key(request))
    try:
        return PLACES.autocomplete(q, session, location_bias, limit)
    except PlacesError as exc:
        raise _places_http_error(exc) from exc


@app.get("/api/places/details")
def places_details(
    request: Request,
    place_id: str = Query(..., description="Place identifier"),
    session: str = Query(..., min_length=1, description="Google Places session token"),
):
    PLACES_LIMITER.hit(_client_key(request))
    try:
        return PLACES.details(place_id, session)
    except PlacesError as exc:
        raise _places_http_error(exc) from exc


@app.get("/api/places/geocode")
def places_geocode(request: Request, city: str = Query(..., min_length=1)):
    PLACES_LIMITER.hit(_client_key(request))
    try:
        coords = PLACES.geocode_city(city)
    except PlacesError as exc:
        raise _places_http_error(exc) from exc
    if coords is None:
        raise HTTPException(status_code=404, detail=f"Could not find location: {city}")
    return {"city": city, **coords}


@app.get("/api/places/nearby")
def places_nearby(
    request: Request,
    lat: float = Query(..., ge=-90, le=90),
    lng: float = Query(..., ge=-180, le=180),
    radius: int = Query(5000, ge=1, le=50000),
    place_type: Optional[str] = Query(None, alias="type"),
):
    PLACES_LIMITER.hit(_client_key(request))
    try:
        places = PLACES.search_nearby(lat, lng, radius, place_type)
    except PlacesError as exc:
        raise _places_http_error(exc) from exc
    return {"results": [PLACES.place_to_poi(p) for p in places]}


@app.post("/api/route")
def plan_route(body: RouteBody, user: Optional[User] = Depends(optional_user)):
    """Route between two cities with POIs along it, filtered by the caller's interests."""
    interest_names = INTERESTS.get_enabled_interest_names(user.id) if user else []
    try:
        result = PLANNER.plan(body.start_city, body.end_city, body.checkpoints, interest_names)
    except PlacesError as exc:
        raise _places_http_error(exc) from exc
    if body.save:
        trip = TRIPS.create_trip_from_route(
            user.id if user else None,
            result["start_city"],
            result["end_city"],
            result["checkpoints"],
            result["route"],
            result["pois"],
            is_public=body.is_public,
        )
        result["trip_id"] = trip.id if trip else None
    return result


@app.get("/api/cache/stats")
def cache_stats():
    return {"places": PLACES.cache_stats(), "directions": DIRECTIONS.cache.stats(), "interests": INTERESTS.cache.stats()}


@app.delete("/api/cache")
def clear_cache(user: User = Depends(require_user)):
    cleared = PLACES.clear_cache() + DIRECTIONS.cache.clear()
    LOGGER.info("User %s cleared %d cache entries", user.username, cleared)
    return {"success": True, "cleared": cleared}


# ---------- Trips ----------
@app.get("/api/trips/suggested")
def suggested_trips(limit: int = Query(5, ge=1, le=8), user: Optional[User] = Depends(optional_user)):
    if user is None:
        return SUGGESTED.popular_trips(limit)
    return SUGGESTED.generate(user.id, limit)


@app.get("/api/trips/suggested/{trip_id}")
def suggested_trip(trip_id: str, user: Optional[User] = Depends(optional_user)):
    trip = SUGGESTED.get_by_id(trip_id, user.id if user else None)
    if trip is None:
        raise HTTPException(status_code=404, detail=f"Suggested trip '{trip_id}' not found")
    return trip


@app.get("/api/trips/public")
def public_trips(limit: int = Query(20, ge=1, le=100)):
    return [t.to_dict() for t in TRIPS.get_public_trips(limit)]


@app.get("/api/trips/search")
def search_trips(q: str = Query(..., min_length=1), user: Optional[User] = Depends(optional_user)):
    return [t.to_dict() for t in TRIPS.search_trips(q, user.id if user else None)]


@app.get("/api/trips")
def my_trips(user: User = Depends(require_user)):
    return [t.to_dict() for t in TRIPS.get_user_trips(user.id)]


@app.post("/api/trips", status_code=201)
def create_trip(body: TripBody, user: User = Depends(require_user)):
    try:
        trip = TRIPS.create_trip(
            user.id,
            body.start_city,
            body.end_city,
            title=body.title,
            checkpoints=body.checkpoints,
            route_data=body.route_data,
            pois_data=body.pois_data,
            is_public=body.is_public,
        )
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    return trip.to_dict()


@app.get("/api/trips/{trip_id}")
def get_trip(trip_id: int, user: Optional[User] = Depends(optional_user)):
    try:
        return TRIPS.get_trip(trip_id, user.id if user else None).to_dict()
    except TripNotFound as exc:
        raise HTTPException(status_code=404, detail=str(exc)) from exc


@app.put("/api/trips/{trip_id}")
def update_trip(trip_id: int, body: TripUpdateBody, user: User = Depends(require_user)):
    updates = body.model_dump(exclude_none=True)
    try:
        return TRIPS.update_trip(trip_id, user.id, updates).to_dict()
    except TripNotFound as exc:
        raise HTTPException(status_code=404, detail=str(exc)) from exc


@app.delete("/api/trips/{trip_id}")
def delete_trip(trip_id: int, user: User = Depends(require_user)):
    try:
        TRIPS.delete_trip(trip_id, user.id)
    except TripNotFound as exc:
        raise HTTPException(status_code=404, detail=str(exc)) from exc
    return {"success": True}


# ---------- Interests ----------
@app.get("/api/interests/categories")
def interest_categories():
    return INTERESTS.get_interest_categories()


@app.get("/api/interests/user")
def user_interests(user: User = Depends(require_user)):
    return INTERESTS.get_user_interests(user.id)


@app.put("/api/interests/user")
def set_user_interests(body: InterestsBody, user: User = Depends(require_user)):
    try:
        return INTERESTS.update_user_interests(user.id, [i.model_dump() for i in body.interests])
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc


@app.post("/api/interests/user/enable-all")
def enable_all_interests(user: User = Depends(require_user)):
    return INTERESTS.enable_all_interests(user.id)


@app.patch("/api/interests/user/{category_id}")
def toggle_interest(category_id: int, body: ToggleInterestBody, user: User = Depends(require_user)):
    updated = INTERESTS.toggle_user_interest(user.id, category_id, body.is_enabled, body.priority)
    if updated is None:
        raise HTTPException(status_code=404, detail=f"Interest {category_id} not set for user")
    return updated


# ---------- Cluster channel ----------
@app.websocket(CLUSTER_SOCKET_PATH)
async def cluster_socket(websocket: WebSocket, token: Optional[str] = None):
    await websocket.accept()
    user = AUTH.get_user_from_token(token) if token else None
    defaults = INTERESTS.enabled_poi_categories(user.id) if user else []
    channel = ClusterChannel(ENGINE, default_categories=defaults)
    LOGGER.debug("cluster socket opened (user=%s)", user.username if user else None)
    while not channel.closed:
        frame = await websocket.receive()
        if frame["type"] == "websocket.disconnect":
            LOGGER.debug("cluster socket disconnected")
            return
        for out in await run_in_threadpool(channel.handle, _decode_frame(frame)):
            try:
                await websocket.send_text(json.dumps(out))
            except WebSocketDisconnect:
                LOGGER.debug("cluster socket disconnected")
                return
    await websocket.close()


def _decode_frame(frame: Dict[str, Any]) -> Any:
    """JSON body of a text or binary frame; None when it is not UTF-8 JSON."""
    raw = frame.get("text")
    if raw is None and frame.get("bytes") is not None:
        try:
            raw = frame["bytes"].decode("utf-8")
        except UnicodeDecodeError:
            return None
    if raw is None:
        return None
    try:
        return json.loads(raw)
    except ValueError:
        return None


if __name__ == "__main__":
    warn_on_dev_defaults()
    LOGGER.info("Starting %s on http://0.0.0.0:%d with POIs from %s", APP_NAME, PORT, POI_PATH)
    uvicorn.run("api.main:app", host="0.0.0.0", port=PORT, reload=True)
