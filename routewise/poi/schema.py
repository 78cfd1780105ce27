"""
Canonical POI Schema Definition

Defines the column layout of the POI table that the API, the clustering
engine, and the loader script share.
"""
import pandas as pd

# Canonical Data Schema
# Column -> pandas dtype of the normalized POI table.
CANONICAL_POI_SCHEMA = {
    "poi_id": "str",
    "name": "str",
    "description": "str",
    "category": "str",
    "rating": "float32",
    "review_count": "int32",
    "price_level": "Int8",   # nullable
    "address": "str",
    "place_id": "str",
    "image_url": "str",
    "time_from_start": "str",
    "is_open": "boolean",    # nullable
    "lon": "float64",
    "lat": "float64",
    "h3_r9": "str",
}

ESSENTIAL_COLUMNS = ("poi_id", "name", "category", "lon", "lat")

# Column aliases accepted from raw exports (Google Places dumps, seed SQL, CSV)
COLUMN_ALIASES = {
    "id": "poi_id",
    "lng": "lon",
    "longitude": "lon",
    "latitude": "lat",
    "reviews_count": "review_count",
    "reviewCount": "review_count",
    "user_ratings_total": "review_count",
    "priceLevel": "price_level",
    "formatted_address": "address",
    "placeId": "place_id",
    "imageUrl": "image_url",
    "timeFromStart": "time_from_start",
    "isOpen": "is_open",
}


def validate_poi_dataframe(df: pd.DataFrame) -> bool:
    """
    Validate that a DataFrame conforms to the canonical POI schema.

    Args:
        df: DataFrame to validate

    Returns:
        True if valid, raises ValueError otherwise
    """
    missing_cols = set(CANONICAL_POI_SCHEMA.keys()) - set(df.columns)
    if missing_cols:
        raise ValueError(f"Missing required columns: {sorted(missing_cols)}")

    if df["poi_id"].isna().any():
        raise ValueError("poi_id must not be null")
    if df["poi_id"].duplicated().any():
        dupes = df.loc[df["poi_id"].duplicated(), "poi_id"].head(5).tolist()
        raise ValueError(f"Duplicate poi_id values: {dupes}")
    if not df["lon"].between(-180, 180).all():
        raise ValueError("longitude values out of range [-180, 180]")
    if not df["lat"].between(-90, 90).all():
        raise ValueError("latitude values out of range [-90, 90]")

    return True


def create_empty_poi_dataframe() -> pd.DataFrame:
    """Create an empty DataFrame with the canonical POI schema."""
    return pd.DataFrame(
        {col: pd.Series(dtype=dtype if dtype != "str" else "object") for col, dtype in CANONICAL_POI_SCHEMA.items()}
    )
