"""
Server-side POI clustering.

POIs inside the requested viewport are grouped by H3 cell; the cell
resolution follows the map zoom so markers merge as the user zooms out.
Cluster ids are derived from the member POI ids only, so a cluster whose
membership did not change keeps its id across viewport updates.
"""
import hashlib
import math
from dataclasses import dataclass, field
from typing import Any, Dict, List, Mapping, Optional, Sequence

import pandas as pd

from routewise.poi.h3_utils import MAX_ZOOM, SINGLE_POI_ZOOM, parent_cells, resolution_for_zoom
from routewise.poi.store import POIStore, filter_pois, poi_marker

MAX_POIS_PER_CLUSTER = 50


class ClusteringError(ValueError):
    """Invalid viewport, zoom or filters. Retrying with the same input fails the same way."""


def _number(payload: Mapping[str, Any], key: str, what: str) -> float:
    value = payload.get(key)
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        raise ClusteringError(f"invalid {what}: '{key}' must be a number")
    value = float(value)
    if not math.isfinite(value):
        raise ClusteringError(f"invalid {what}: '{key}' must be finite")
    return value


@dataclass(frozen=True)
class Viewport:
    north: float
    south: float
    east: float
    west: float

    @classmethod
    def from_payload(cls, payload: Any) -> "Viewport":
        if not isinstance(payload, Mapping):
            raise ClusteringError("invalid bounds: expected an object with north, south, east, west")
        north = _number(payload, "north", "bounds")
        south = _number(payload, "south", "bounds")
        east = _number(payload, "east", "bounds")
        west = _number(payload, "west", "bounds")
        if not (-90.0 <= south <= 90.0 and -90.0 <= north <= 90.0):
            raise ClusteringError("invalid bounds: latitude out of range [-90, 90]")
        if not (-180.0 <= west <= 180.0 and -180.0 <= east <= 180.0):
            raise ClusteringError("invalid bounds: longitude out of range [-180, 180]")
        if south > north:
            raise ClusteringError("invalid bounds: south is greater than north")
        return cls(north=north, south=south, east=east, west=west)

    @property
    def crosses_antimeridian(self) -> bool:
        return self.west > self.east

    def to_dict(self) -> Dict[str, float]:
        return {"north": self.north, "south": self.south, "east": self.east, "west": self.west}


@dataclass(frozen=True)
class ClusterFilters:
    categories: Optional[tuple] = None
    min_rating: Optional[float] = None
    price_levels: Optional[tuple] = None
    has_reviews: Optional[bool] = None

    @classmethod
    def from_payload(cls, payload: Any) -> "ClusterFilters":
        if payload is None:
            return cls()
        if not isinstance(payload, Mapping):
            raise ClusteringError("invalid filters: expected an object")

        categories = payload.get("categories")
        if categories is not None:
            if not isinstance(categories, (list, tuple)) or not all(isinstance(c, str) for c in categories):
                raise ClusteringError("invalid filters: 'categories' must be a list of strings")
            categories = tuple(categories) or None

        min_rating = payload.get("min_rating")
        if min_rating is not None:
            min_rating = _number(payload, "min_rating", "filters")
            if not 0.0 <= min_rating <= 5.0:
                raise ClusteringError("invalid filters: 'min_rating' must be between 0 and 5")

        price_levels = payload.get("price_levels")
        if price_levels is not None:
            if not isinstance(price_levels, (list, tuple)) or not all(
                isinstance(p, int) and not isinstance(p, bool) and 0 <= p <= 4 for p in price_levels
            ):
                raise ClusteringError("invalid filters: 'price_levels' must be integers between 0 and 4")
            price_levels = tuple(price_levels) or None

        has_reviews = payload.get("has_reviews")
        if has_reviews is not None and not isinstance(has_reviews, bool):
            raise ClusteringError("invalid filters: 'has_reviews' must be a boolean")

        return cls(categories=categories, min_rating=min_rating, price_levels=price_levels, has_reviews=has_reviews)

    def with_default_categories(self, categories: Sequence[str]) -> "ClusterFilters":
        if self.categories or not categories:
            return self
        return ClusterFilters(
            categories=tuple(categories),
            min_rating=self.min_rating,
            price_levels=self.price_levels,
            has_reviews=self.has_reviews,
        )


def parse_zoom(value: Any) -> float:
    if isinstance(value, bool) or not isinstance(value, (int, float)) or not math.isfinite(float(value)):
        raise ClusteringError("invalid zoom: must be a number")
    zoom = float(value)
    if not 0.0 <= zoom <= MAX_ZOOM:
        raise ClusteringError(f"invalid zoom: must be between 0 and {MAX_ZOOM}")
    return zoom


def cluster_id(poi_ids: Sequence[str]) -> str:
    """Id for a set of POIs; independent of order and of the viewport that produced it."""
    if len(poi_ids) == 1:
        return f"poi:{poi_ids[0]}"
    digest = hashlib.sha1("\x1f".join(sorted(poi_ids)).encode("utf-8")).hexdigest()
    return f"cluster:{digest[:16]}"


def mean_longitude(lons: Sequence[float]) -> float:
    """Mean longitude in [-180, 180]; members on both sides of the antimeridian average near ±180."""
    values = [float(v) for v in lons]
    if max(values) - min(values) <= 180.0:
        return sum(values) / len(values)
    shifted = [v + 360.0 if v < 0 else v for v in values]
    mean = sum(shifted) / len(shifted)
    return mean - 360.0 if mean > 180.0 else mean


@dataclass
class ClusterEngine:
    store: POIStore
    max_pois_per_cluster: int = MAX_POIS_PER_CLUSTER
    stats: Dict[str, int] = field(default_factory=lambda: {"requests": 0, "errors": 0})

    def cluster(self, viewport: Viewport, zoom: float, filters: Optional[ClusterFilters] = None) -> List[Dict[str, Any]]:
        self.stats["requests"] += 1
        filters = filters or ClusterFilters()
        sub = filter_pois(
            self.store.frame,
            north=viewport.north,
            south=viewport.south,
            east=viewport.east,
            west=viewport.west,
            categories=filters.categories,
            min_rating=filters.min_rating,
            price_levels=filters.price_levels,
            has_reviews=filters.has_reviews,
        )
        if sub.empty:
            return []

        zoom_level = int(math.floor(zoom))
        if zoom >= SINGLE_POI_ZOOM:
            keys = list(sub["poi_id"])
        else:
            keys = parent_cells(sub["h3_r9"], resolution_for_zoom(zoom))

        clusters = [self._build(group, zoom_level) for _, group in sub.groupby(pd.Series(keys, index=sub.index), sort=False)]
        clusters.sort(key=lambda c: (-c["count"], c["id"]))
        return clusters

    def cluster_payload(self, payload: Mapping[str, Any], default_categories: Sequence[str] = ()) -> List[Dict[str, Any]]:
        """Validate a channel payload ({bounds, zoom, filters}) and cluster it."""
        try:
            viewport = Viewport.from_payload(payload.get("bounds"))
            zoom = parse_zoom(payload.get("zoom"))
            filters = ClusterFilters.from_payload(payload.get("filters")).with_default_categories(default_categories)
        except ClusteringError:
            self.stats["errors"] += 1
            raise
        return self.cluster(viewport, zoom, filters)

    def _build(self, group: pd.DataFrame, zoom_level: int) -> Dict[str, Any]:
        poi_ids = list(group["poi_id"])
        count = len(poi_ids)
        rated = group.loc[group["rating"] > 0, "rating"]
        ordered = group.sort_values(["rating", "review_count", "poi_id"], ascending=[False, False, True])
        return {
            "id": cluster_id(poi_ids),
            "lat": float(group["lat"].mean()),
            "lng": mean_longitude(group["lon"].tolist()),
            "count": count,
            "pois": [poi_marker(r) for _, r in ordered.head(self.max_pois_per_cluster).iterrows()],
            "type": "single_poi" if count == 1 else "cluster",
            "category_breakdown": {str(k): int(v) for k, v in group["category"].value_counts().sort_index().items()},
            "avg_rating": round(float(rated.mean()), 2) if not rated.empty else None,
            "zoom_level": zoom_level,
        }
