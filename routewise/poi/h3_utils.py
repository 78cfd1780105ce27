"""
H3 helpers shared by the POI loader and the clustering engine.
"""
from typing import Iterable, List

import h3
import numpy as np

# Resolution stored on every POI row by the loader
POI_INDEX_RES = 9

# Map zoom (web-mercator tile zoom, 0..22) to the H3 resolution used for grouping.
# At or above SINGLE_POI_ZOOM clustering is disabled.
MIN_CLUSTER_RES = 2
MAX_CLUSTER_RES = POI_INDEX_RES
SINGLE_POI_ZOOM = 16
MAX_ZOOM = 22


def resolution_for_zoom(zoom: float) -> int:
    """H3 resolution whose hexagons roughly match one marker footprint at this zoom."""
    z = float(zoom)
    res = int(np.floor(z * 0.65)) - 1
    return int(min(MAX_CLUSTER_RES, max(MIN_CLUSTER_RES, res)))


def cells_for_points(lats: Iterable[float], lons: Iterable[float], res: int) -> List[str]:
    return [h3.latlng_to_cell(float(lat), float(lon), res) for lat, lon in zip(lats, lons)]


def parent_cells(cells: Iterable[str], res: int) -> List[str]:
    """Coarsen stored POI_INDEX_RES cells to the given resolution."""
    if res >= POI_INDEX_RES:
        return list(cells)
    return [h3.cell_to_parent(c, res) for c in cells]
