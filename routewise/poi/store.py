"""
POI table loading, normalization and filtering.

The API keeps one normalized DataFrame in memory; the clustering engine and
the REST endpoints filter it per request.
"""
import hashlib
import logging
import os
import threading
from typing import Any, Dict, Iterable, List, Optional, Sequence

import numpy as np
import pandas as pd

from routewise.categories import DEFAULT_POI_CATEGORY, normalize_category
from routewise.poi.h3_utils import POI_INDEX_RES, cells_for_points
from routewise.poi.schema import (
    CANONICAL_POI_SCHEMA,
    COLUMN_ALIASES,
    ESSENTIAL_COLUMNS,
    create_empty_poi_dataframe,
)

LOGGER = logging.getLogger(__name__)

_NULL_STRINGS = {"": None, "nan": None, "None": None, "NaN": None, "null": None, "NULL": None}


def _synthetic_poi_id(name: Any, lat: float, lon: float) -> str:
    digest = hashlib.sha1(f"{name}|{lat:.6f}|{lon:.6f}".encode("utf-8")).hexdigest()
    return f"poi_{digest[:12]}"


def normalize_poi_frame(raw: pd.DataFrame) -> pd.DataFrame:
    """
    Coerce a raw POI export into the canonical schema.

    Renames known aliases, coerces numeric columns, drops rows without valid
    coordinates, fills defaults, and attaches the H3 index column.
    """
    if raw is None or raw.empty:
        return create_empty_poi_dataframe()

    df = raw.rename(columns={k: v for k, v in COLUMN_ALIASES.items() if k in raw.columns and v not in raw.columns})
    df = df.copy()

    for col in ("lon", "lat"):
        if col not in df.columns:
            raise ValueError(f"POI data missing coordinate column '{col}'")
        df[col] = pd.to_numeric(df[col], errors="coerce")
    df = df.dropna(subset=["lon", "lat"])
    df = df[df["lon"].between(-180, 180) & df["lat"].between(-90, 90)].copy()

    if "name" not in df.columns:
        df["name"] = ""
    df["name"] = df["name"].fillna("").astype(str).str.strip()

    if "poi_id" not in df.columns:
        df["poi_id"] = None
    ids = df["poi_id"].astype(object).where(df["poi_id"].notna(), None)
    df["poi_id"] = [
        str(pid).strip() if pid is not None and str(pid).strip() else _synthetic_poi_id(name, lat, lon)
        for pid, name, lat, lon in zip(ids, df["name"], df["lat"], df["lon"])
    ]
    df = df.drop_duplicates(subset=["poi_id"], keep="first")

    if "category" not in df.columns:
        df["category"] = DEFAULT_POI_CATEGORY
    df["category"] = [normalize_category(c) or DEFAULT_POI_CATEGORY for c in df["category"].astype(object).where(df["category"].notna(), None)]

    for col, dtype in (("rating", "float32"), ("review_count", "int32")):
        if col not in df.columns:
            df[col] = 0
        df[col] = pd.to_numeric(df[col], errors="coerce").fillna(0).astype(dtype)
    if "price_level" in df.columns:
        df["price_level"] = pd.to_numeric(df["price_level"], errors="coerce").round().astype("Int8")
    else:
        df["price_level"] = pd.Series(pd.NA, index=df.index, dtype="Int8")
    if "is_open" in df.columns:
        df["is_open"] = df["is_open"].astype("boolean")
    else:
        df["is_open"] = pd.Series(pd.NA, index=df.index, dtype="boolean")

    for col in ("description", "address", "place_id", "image_url", "time_from_start"):
        if col not in df.columns:
            df[col] = None
        else:
            df[col] = df[col].astype(object).where(df[col].notna(), None)
            df[col] = df[col].map(lambda v: None if v is None else (str(v).strip() or None))

    df["h3_r9"] = cells_for_points(df["lat"], df["lon"], POI_INDEX_RES)

    df = df[list(CANONICAL_POI_SCHEMA.keys())].reset_index(drop=True)
    if df[list(ESSENTIAL_COLUMNS)].isna().any().any():
        raise ValueError("POI rows missing essential values after normalization")
    return df


def read_poi_file(path: str) -> pd.DataFrame:
    """Read a parquet, CSV or JSON POI export and normalize it."""
    ext = os.path.splitext(path)[1].lower()
    if ext == ".parquet":
        raw = pd.read_parquet(path)
    elif ext == ".csv":
        raw = pd.read_csv(path)
    elif ext in (".json", ".jsonl"):
        raw = pd.read_json(path, lines=(ext == ".jsonl"))
    else:
        raise ValueError(f"Unsupported POI file type: {path}")
    return normalize_poi_frame(raw)


class POIStore:
    """In-memory POI table with the lookups the API needs."""

    def __init__(self, df: Optional[pd.DataFrame] = None):
        self._df = normalize_poi_frame(df) if df is not None else create_empty_poi_dataframe()
        self._lock = threading.RLock()

    @classmethod
    def from_path(cls, path: str) -> "POIStore":
        store = cls()
        if not os.path.exists(path):
            LOGGER.warning("POI file not found at %s; starting with an empty POI table", path)
            return store
        df = read_poi_file(path)
        with store._lock:
            store._df = df
        LOGGER.info("Loaded %d POIs from %s", len(store._df), path)
        return store

    @property
    def frame(self) -> pd.DataFrame:
        return self._df

    def __len__(self) -> int:
        return len(self._df)

    def add(self, records: Sequence[Dict[str, Any]]) -> pd.DataFrame:
        """Append POI records (same keys as the raw exports); returns the normalized new rows."""
        new = normalize_poi_frame(pd.DataFrame(list(records)))
        if new.empty:
            return new
        with self._lock:
            new = new[~new["poi_id"].isin(self._df["poi_id"])]
            if self._df.empty:
                self._df = new.reset_index(drop=True)
            else:
                self._df = pd.concat([self._df, new], ignore_index=True)
        return new

    def get(self, poi_id: str) -> Optional[Dict[str, Any]]:
        sub = self._df[self._df["poi_id"] == str(poi_id)]
        if sub.empty:
            return None
        return poi_record(sub.iloc[0])

    def all(self, category: Optional[str] = None, limit: Optional[int] = None) -> List[Dict[str, Any]]:
        sub = self._df
        slug = normalize_category(category)
        if slug:
            sub = sub[sub["category"] == slug]
        if limit is not None:
            sub = sub.head(limit)
        return [poi_record(r) for _, r in sub.iterrows()]


def filter_pois(
    df: pd.DataFrame,
    *,
    north: Optional[float] = None,
    south: Optional[float] = None,
    east: Optional[float] = None,
    west: Optional[float] = None,
    categories: Optional[Iterable[str]] = None,
    min_rating: Optional[float] = None,
    price_levels: Optional[Iterable[int]] = None,
    has_reviews: Optional[bool] = None,
) -> pd.DataFrame:
    """
    Subset of POIs inside the bounds and matching the filters.

    Bounds with west > east cross the antimeridian.
    """
    if df.empty:
        return df
    mask = pd.Series(True, index=df.index)
    if north is not None and south is not None:
        mask &= df["lat"].between(south, north)
    if east is not None and west is not None:
        if west <= east:
            mask &= df["lon"].between(west, east)
        else:
            mask &= (df["lon"] >= west) | (df["lon"] <= east)
    if categories:
        slugs = {normalize_category(c) for c in categories}
        slugs.discard(None)
        if slugs:
            mask &= df["category"].isin(slugs)
    if min_rating is not None:
        mask &= df["rating"] >= float(min_rating)
    if price_levels:
        levels = [int(p) for p in price_levels]
        mask &= df["price_level"].isin(levels).fillna(False).astype(bool)
    if has_reviews is True:
        mask &= df["review_count"] > 0
    elif has_reviews is False:
        mask &= df["review_count"] <= 0
    return df[mask]


EARTH_RADIUS_M = 6371008.8


def pois_near(df: pd.DataFrame, lat: float, lng: float, radius_m: float) -> pd.DataFrame:
    """POIs within radius_m of a point (haversine), nearest first."""
    if df.empty:
        return df
    lat1, lon1 = np.radians(lat), np.radians(lng)
    lat2 = np.radians(df["lat"].to_numpy(dtype="float64"))
    lon2 = np.radians(df["lon"].to_numpy(dtype="float64"))
    a = np.sin((lat2 - lat1) / 2) ** 2 + np.cos(lat1) * np.cos(lat2) * np.sin((lon2 - lon1) / 2) ** 2
    dist = 2 * EARTH_RADIUS_M * np.arcsin(np.sqrt(a))
    mask = dist <= radius_m
    out = df[mask].copy()
    out["distance_m"] = dist[mask]
    return out.sort_values("distance_m", kind="mergesort")


def _clean(value: Any) -> Any:
    if value is None or value is pd.NA:
        return None
    if isinstance(value, float) and np.isnan(value):
        return None
    if isinstance(value, np.generic):
        return value.item()
    return value


def poi_record(row: pd.Series) -> Dict[str, Any]:
    """Full POI record for REST responses."""
    return {
        "id": row["poi_id"],
        "name": row["name"],
        "description": _clean(row.get("description")),
        "category": row["category"],
        "rating": round(float(row["rating"]), 1),
        "review_count": int(row["review_count"]),
        "price_level": _clean(row.get("price_level")),
        "address": _clean(row.get("address")),
        "place_id": _clean(row.get("place_id")),
        "image_url": _clean(row.get("image_url")),
        "time_from_start": _clean(row.get("time_from_start")),
        "is_open": _clean(row.get("is_open")),
        "lat": float(row["lat"]),
        "lng": float(row["lon"]),
    }


def poi_marker(row: pd.Series) -> Dict[str, Any]:
    """Compact POI payload embedded in cluster messages."""
    marker: Dict[str, Any] = {
        "id": row["poi_id"],
        "lat": float(row["lat"]),
        "lng": float(row["lon"]),
        "name": row["name"],
        "category": row["category"],
        "rating": round(float(row["rating"]), 1),
        "reviews_count": int(row["review_count"]),
    }
    address = _clean(row.get("address"))
    if address:
        marker["formatted_address"] = address
    price = _clean(row.get("price_level"))
    if price is not None:
        marker["price_level"] = int(price)
    return marker


def to_feature_collection(df: pd.DataFrame) -> Dict[str, Any]:
    feats = []
    for _, r in df.iterrows():
        lon = float(r["lon"])
        lat = float(r["lat"])
        props: Dict[str, Any] = {"id": r["poi_id"], "category": r["category"]}
        if r["name"]:
            props["name"] = r["name"]
        address = _clean(r.get("address"))
        if address:
            props["address"] = address
        else:
            props["approx_address"] = f"{lat:.4f}°, {lon:.4f}°"
        feats.append({
            "type": "Feature",
            "geometry": {"type": "Point", "coordinates": [lon, lat]},
            "properties": props,
        })
    return {"type": "FeatureCollection", "features": feats}
