"""
RouteWise runtime configuration.

Everything is read from environment variables once at import time; modules
import the constants they need.
"""
import logging
import os

LOGGER = logging.getLogger("routewise.config")

APP_NAME = "RouteWise API"

# ---------- Paths ----------
DATA_DIR = os.environ.get("RW_DATA_DIR", "data")
POI_PATH = os.environ.get("RW_POI_PATH", os.path.join(DATA_DIR, "poi", "pois_canonical.parquet"))

# ---------- Frontend ----------
_FRONTEND_ENV = (os.environ.get("RW_FRONTEND_ORIGIN") or "").strip()
_DEFAULT_FRONTEND_ORIGIN = os.environ.get("RW_DEFAULT_FRONTEND_ORIGIN", "http://localhost:3000").strip() or None
FRONTEND_ORIGIN = _FRONTEND_ENV or _DEFAULT_FRONTEND_ORIGIN

# ---------- Auth ----------
DEV_JWT_SECRET = "route-wise-dev-secret-key"
JWT_SECRET = os.environ.get("JWT_SECRET") or DEV_JWT_SECRET
JWT_EXPIRES_IN = os.environ.get("JWT_EXPIRES_IN", "7d")
JWT_ISSUER = "route-wise"
JWT_AUDIENCE = "route-wise-users"
AUTH_COOKIE = "auth_token"
BCRYPT_ROUNDS = int(os.environ.get("RW_BCRYPT_ROUNDS", "12"))

# ---------- Google ----------
GOOGLE_PLACES_API_KEY = os.environ.get("GOOGLE_PLACES_API_KEY")
GOOGLE_PLACES_AUTOCOMPLETE_URL = "https://places.googleapis.com/v1/places:autocomplete"
GOOGLE_PLACES_DETAILS_URL = "https://places.googleapis.com/v1/places"
GOOGLE_PLACES_LEGACY_URL = "https://maps.googleapis.com/maps/api/place"
GOOGLE_GEOCODING_URL = "https://maps.googleapis.com/maps/api/geocode/json"
GOOGLE_DIRECTIONS_URL = "https://maps.googleapis.com/maps/api/directions/json"
GOOGLE_PLACES_TIMEOUT = float(os.environ.get("GOOGLE_PLACES_TIMEOUT", "7"))

# ---------- Cluster channel ----------
CLUSTER_SOCKET_PATH = "/socket"
CLUSTER_TOPIC = "poi:viewport"
CLUSTER_DEBOUNCE_MS = int(os.environ.get("RW_CLUSTER_DEBOUNCE_MS", "200"))
CLUSTER_MAX_RETRIES = int(os.environ.get("RW_CLUSTER_MAX_RETRIES", "3"))
CLUSTER_RETRY_DELAY_MS = int(os.environ.get("RW_CLUSTER_RETRY_DELAY_MS", "1000"))
CLUSTER_JOIN_TIMEOUT_S = float(os.environ.get("RW_CLUSTER_JOIN_TIMEOUT_S", "10"))

# ---------- Cache TTLs (seconds) ----------
PLACES_CACHE_TTL = 5 * 60
GEOCODING_CACHE_TTL = 10 * 60
CATEGORIES_CACHE_TTL = 60 * 60
USER_INTERESTS_CACHE_TTL = 15 * 60

LOG_LEVEL = os.environ.get("RW_LOG_LEVEL", "INFO")
PORT = int(os.environ.get("PORT", "5174"))


def jwt_expiry_seconds(value: str = JWT_EXPIRES_IN) -> int:
    """Parse an expiry like '7d', '12h', '30m', '45s' or plain seconds."""
    raw = str(value).strip().lower()
    if not raw:
        raise ValueError("Empty JWT expiry")
    units = {"s": 1, "m": 60, "h": 3600, "d": 86400}
    if raw[-1] in units:
        return int(raw[:-1]) * units[raw[-1]]
    return int(raw)


def warn_on_dev_defaults() -> None:
    if JWT_SECRET == DEV_JWT_SECRET:
        LOGGER.warning("JWT_SECRET not set, using development default")
    if not GOOGLE_PLACES_API_KEY:
        LOGGER.warning("GOOGLE_PLACES_API_KEY not set; places and directions endpoints are disabled")
