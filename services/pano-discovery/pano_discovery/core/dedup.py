"""
Dedup Index - Suppresses repeated detections of the same panorama within a search.
"""
import logging
import math
from collections import defaultdict
from typing import Dict, List, Set, Tuple

from pano_discovery.config import COORDINATE_DECIMALS, DEDUP_PROXIMITY_DEG2
from pano_discovery.models import PanoramaRecord

logger = logging.getLogger(__name__)


def dedup_key(lon: float, lat: float) -> str:
    """Exact-duplicate key: "lat_lon" rounded to 6 decimals."""
    return f"{lat:.{COORDINATE_DECIMALS}f}_{lon:.{COORDINATE_DECIMALS}f}"


class DedupIndex:
    """
    Two-stage duplicate filter: exact rounded key, then squared-degree proximity.

    Accepted coordinates are bucketed on a grid whose cell size equals the
    proximity radius, so a candidate only needs to be compared against the
    3x3 block of cells around it.
    """

    def __init__(self, proximity_deg2: float = DEDUP_PROXIMITY_DEG2):
        self.proximity_deg2 = proximity_deg2
        self._cell_size = math.sqrt(proximity_deg2)
        self._keys: Set[str] = set()
        self._buckets: Dict[Tuple[int, int], List[Tuple[float, float]]] = defaultdict(list)

    def __len__(self) -> int:
        return len(self._keys)

    def __contains__(self, key: str) -> bool:
        return key in self._keys

    def _cell(self, lon: float, lat: float) -> Tuple[int, int]:
        return math.floor(lon / self._cell_size), math.floor(lat / self._cell_size)

    def is_too_close(self, lon: float, lat: float) -> bool:
        cx, cy = self._cell(lon, lat)
        for dx in (-1, 0, 1):
            for dy in (-1, 0, 1):
                for other_lon, other_lat in self._buckets.get((cx + dx, cy + dy), ()):
                    d_lon = lon - other_lon
                    d_lat = lat - other_lat
                    if d_lon * d_lon + d_lat * d_lat < self.proximity_deg2:
                        return True
        return False

    def accept(self, record: PanoramaRecord) -> bool:
        """Return True and remember the record if it is neither a key nor a proximity duplicate."""
        key, lon, lat = record.dedup_key, record.lon, record.lat
        if key in self._keys:
            return False
        if self.is_too_close(lon, lat):
            logger.debug(f"Rejected {key}: within proximity threshold of an accepted panorama")
            return False
        self._keys.add(key)
        self._buckets[self._cell(lon, lat)].append((lon, lat))
        return True

    def clear(self) -> None:
        self._keys.clear()
        self._buckets.clear()
