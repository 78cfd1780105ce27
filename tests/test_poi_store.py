"""
POI table normalization, lookups and filtering.
"""
import threading

import pandas as pd
import pytest

from routewise.poi.h3_utils import POI_INDEX_RES, resolution_for_zoom
from routewise.poi.schema import CANONICAL_POI_SCHEMA, create_empty_poi_dataframe, validate_poi_dataframe
from routewise.poi.store import (
    POIStore,
    filter_pois,
    normalize_poi_frame,
    pois_near,
    read_poi_file,
    to_feature_collection,
)

from tests.conftest import BOSTON, FIJI


class TestNormalize:
    """Raw exports are coerced into the canonical schema."""

    def test_columns_match_schema(self, poi_frame):
        df = normalize_poi_frame(poi_frame)
        assert list(df.columns) == list(CANONICAL_POI_SCHEMA.keys())
        assert validate_poi_dataframe(df)

    def test_aliases_are_renamed(self, poi_frame):
        df = normalize_poi_frame(poi_frame)
        row = df[df["poi_id"] == "r1"].iloc[0]
        assert row["lon"] == pytest.approx(-71.0559)
        assert row["review_count"] == 3100

    def test_bad_coordinates_dropped(self):
        raw = pd.DataFrame([
            {"id": "ok", "name": "A", "lat": 10.0, "lng": 10.0},
            {"id": "nolat", "name": "B", "lat": None, "lng": 10.0},
            {"id": "far", "name": "C", "lat": 95.0, "lng": 10.0},
            {"id": "text", "name": "D", "lat": "north", "lng": 10.0},
        ])
        df = normalize_poi_frame(raw)
        assert df["poi_id"].tolist() == ["ok"]

    def test_missing_ids_are_synthesized_and_stable(self):
        raw = pd.DataFrame([{"name": "Somewhere", "lat": 1.0, "lng": 2.0}])
        a = normalize_poi_frame(raw)["poi_id"].iloc[0]
        b = normalize_poi_frame(raw)["poi_id"].iloc[0]
        assert a == b
        assert a.startswith("poi_")

    def test_duplicate_ids_keep_first(self):
        raw = pd.DataFrame([
            {"id": "x", "name": "First", "lat": 1.0, "lng": 2.0},
            {"id": "x", "name": "Second", "lat": 1.0, "lng": 2.0},
        ])
        df = normalize_poi_frame(raw)
        assert df["name"].tolist() == ["First"]

    def test_categories_normalized(self):
        raw = pd.DataFrame([
            {"id": "a", "name": "A", "category": "Historic_Sites", "lat": 1.0, "lng": 1.0},
            {"id": "b", "name": "B", "category": None, "lat": 1.0, "lng": 1.0},
        ])
        df = normalize_poi_frame(raw).set_index("poi_id")
        assert df.loc["a", "category"] == "historic"
        assert df.loc["b", "category"] == "attraction"

    def test_h3_index_attached(self, poi_frame):
        import h3

        df = normalize_poi_frame(poi_frame)
        assert all(h3.get_resolution(c) == POI_INDEX_RES for c in df["h3_r9"])

    def test_missing_coordinate_column_raises(self):
        with pytest.raises(ValueError):
            normalize_poi_frame(pd.DataFrame([{"id": "a", "lat": 1.0}]))

    def test_empty_input(self):
        df = normalize_poi_frame(pd.DataFrame())
        assert df.empty
        assert list(df.columns) == list(CANONICAL_POI_SCHEMA.keys())


class TestSchemaValidation:
    def test_missing_columns(self):
        with pytest.raises(ValueError, match="Missing required columns"):
            validate_poi_dataframe(pd.DataFrame({"poi_id": ["a"]}))

    def test_duplicate_ids(self, poi_frame):
        df = normalize_poi_frame(poi_frame)
        df = pd.concat([df, df.head(1)], ignore_index=True)
        with pytest.raises(ValueError, match="Duplicate poi_id"):
            validate_poi_dataframe(df)

    def test_empty_frame_is_valid(self):
        assert validate_poi_dataframe(create_empty_poi_dataframe())


class TestReadPoiFile:
    def test_csv_and_parquet(self, tmp_path, poi_frame):
        csv_path = tmp_path / "pois.csv"
        poi_frame.to_csv(csv_path, index=False)
        from_csv = read_poi_file(str(csv_path))
        assert len(from_csv) == len(poi_frame)

        parquet_path = tmp_path / "pois.parquet"
        from_csv.to_parquet(parquet_path, index=False)
        from_parquet = read_poi_file(str(parquet_path))
        assert sorted(from_parquet["poi_id"]) == sorted(from_csv["poi_id"])

    def test_unsupported_extension(self, tmp_path):
        path = tmp_path / "pois.xml"
        path.write_text("<pois/>")
        with pytest.raises(ValueError):
            read_poi_file(str(path))


class TestPOIStore:
    def test_missing_file_gives_empty_store(self, tmp_path):
        store = POIStore.from_path(str(tmp_path / "missing.parquet"))
        assert len(store) == 0
        assert store.all() == []

    def test_get(self, poi_store):
        poi = poi_store.get("r1")
        assert poi["name"] == "Neptune Oyster"
        assert poi["lat"] == pytest.approx(42.3632)
        assert poi["lng"] == pytest.approx(-71.0559)
        assert poi["price_level"] == 2
        assert poi_store.get("nope") is None

    def test_all_by_category(self, poi_store):
        names = {p["name"] for p in poi_store.all(category="restaurants")}
        assert names == {"Neptune Oyster", "Regina Pizzeria", "Mike's Pastry"}
        assert len(poi_store.all(limit=2)) == 2

    def test_add_skips_known_ids(self, poi_store):
        added = poi_store.add([
            {"poi_id": "r1", "name": "Dup", "lat": 1.0, "lon": 1.0},
            {"poi_id": "n1", "name": "New", "lat": 1.0, "lon": 1.0},
        ])
        assert added["poi_id"].tolist() == ["n1"]
        assert poi_store.get("r1")["name"] == "Neptune Oyster"
        assert poi_store.get("n1")["name"] == "New"

    def test_concurrent_adds_keep_every_row(self, poi_store):
        before = len(poi_store)
        batches = [
            [{"poi_id": f"t{t}-{i}", "name": f"Stop {t}-{i}", "lat": 42.35 + i * 1e-4, "lon": -71.05 - t * 1e-4} for i in range(25)]
            for t in range(8)
        ]
        threads = [threading.Thread(target=poi_store.add, args=(batch,)) for batch in batches]
        for worker in threads:
            worker.start()
        for worker in threads:
            worker.join()

        assert len(poi_store) == before + 8 * 25
        assert poi_store.frame["poi_id"].is_unique
        assert all(poi_store.get(f"t{t}-{i}") is not None for t in range(8) for i in range(25))


class TestFilterPois:
    def test_bounds(self, poi_store):
        sub = filter_pois(poi_store.frame, **BOSTON)
        assert set(sub["poi_id"]) == {"r1", "r2", "r3", "p1", "h1", "s1"}

    def test_antimeridian_bounds(self, poi_store):
        sub = filter_pois(poi_store.frame, **FIJI)
        assert set(sub["poi_id"]) == {"f1", "f2"}

    def test_attribute_filters(self, poi_store):
        df = poi_store.frame
        assert set(filter_pois(df, min_rating=4.75)["poi_id"]) == {"h1", "f1"}
        assert set(filter_pois(df, price_levels=[1])["poi_id"]) == {"r2", "r3"}
        assert set(filter_pois(df, has_reviews=False)["poi_id"]) == {"s1"}
        assert set(filter_pois(df, categories=["parks"])["poi_id"]) == {"p1"}


class TestGeometryHelpers:
    def test_pois_near_sorted_by_distance(self, poi_store):
        near = pois_near(poi_store.frame, 42.3632, -71.0559, 500)
        assert near["poi_id"].tolist()[0] == "r1"
        assert set(near["poi_id"]) == {"r1", "r2", "r3"}

    def test_feature_collection(self, poi_store):
        fc = to_feature_collection(filter_pois(poi_store.frame, categories=["park"]))
        assert fc["type"] == "FeatureCollection"
        (feature,) = fc["features"]
        assert feature["geometry"]["coordinates"] == [pytest.approx(-71.0656), pytest.approx(42.3551)]
        assert "approx_address" in feature["properties"]

    @pytest.mark.parametrize("zoom,res", [(0, 2), (5, 2), (10, 5), (14, 8), (15, 8), (22, 9)])
    def test_resolution_for_zoom(self, zoom, res):
        assert resolution_for_zoom(zoom) == res
