"""
Normalize raw POI exports into the canonical RouteWise parquet file.

Reads one or more CSV/JSON/JSONL/parquet exports, maps known column aliases
onto the canonical schema, drops rows without usable coordinates, attaches
the H3 index column, deduplicates by poi_id, and writes a single parquet
file that the API loads at startup (RW_POI_PATH).
"""
import argparse
import logging
import os
import sys
from pathlib import Path

import pandas as pd
import pyarrow as pa
import pyarrow.parquet as pq
from tqdm import tqdm

# Allow running as `python scripts/load_pois.py` from the repo root
project_root = Path(__file__).parent.parent
if str(project_root) not in sys.path:
    sys.path.insert(0, str(project_root))

from routewise.config import LOG_LEVEL, POI_PATH
from routewise.poi.schema import validate_poi_dataframe
from routewise.poi.store import read_poi_file

LOGGER = logging.getLogger("routewise.load_pois")


def load_all(paths) -> pd.DataFrame:
    frames = []
    for path in tqdm(paths, desc="POI files", unit="file"):
        df = read_poi_file(str(path))
        LOGGER.info("%s: %d POIs", path, len(df))
        frames.append(df)
    if not frames:
        raise ValueError("No input files")
    merged = pd.concat(frames, ignore_index=True)
    before = len(merged)
    merged = merged.drop_duplicates(subset=["poi_id"], keep="first").reset_index(drop=True)
    if before != len(merged):
        LOGGER.info("Dropped %d duplicate poi_ids", before - len(merged))
    return merged


def write_parquet(df: pd.DataFrame, out_path: str) -> None:
    os.makedirs(os.path.dirname(out_path) or ".", exist_ok=True)
    table = pa.Table.from_pandas(df, preserve_index=False)
    pq.write_table(table, out_path, compression="zstd")


def main(argv=None) -> int:
    parser = argparse.ArgumentParser(description="Normalize raw POI exports into the canonical parquet file.")
    parser.add_argument("inputs", nargs="+", help="CSV, JSON, JSONL or parquet POI exports")
    parser.add_argument("--out", default=POI_PATH, help=f"Output parquet path (default: {POI_PATH})")
    parser.add_argument("--log-level", default=LOG_LEVEL, help="Logging level (default: %(default)s)")
    args = parser.parse_args(argv)

    logging.basicConfig(level=args.log_level.upper(), format="%(asctime)s %(levelname)s %(name)s: %(message)s")

    df = load_all([Path(p) for p in args.inputs])
    validate_poi_dataframe(df)
    write_parquet(df, args.out)

    counts = df["category"].value_counts().sort_index()
    print(f"Wrote {len(df):,} POIs to {args.out}")
    for category, n in counts.items():
        print(f"  {category:<12} {n:>8,}")
    return 0


if __name__ == "__main__":
    sys.exit(main())
