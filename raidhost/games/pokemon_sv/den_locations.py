"""
Raid den coordinates.

Maps den identifiers ("{region}-{slot:03d}") to world coordinates, one table
per region. Tables are loaded lazily on first lookup and only ever reloaded
through refresh(), which the rotation state machine calls after repeated
teleport misses.

File format (JSON):
    {
        "paldea":   {"paldea-010": [x, y, z], ...},
        "kitakami": {"kitakami-070": [x, y, z], ...}
    }
"""

import json
import logging
import threading
from pathlib import Path
from typing import Callable, Dict, Mapping, Sequence

from ...exceptions import ConfigError, DenNotFoundError
from .navigation import Coordinates

logger = logging.getLogger(__name__)

DenTable = Dict[str, Coordinates]
RegionLoader = Callable[[str], Mapping[str, Sequence[float]]]


class CoordinateSource:
    """
    Owned cache of den coordinates.

    Args:
        loader: Called with a region id, returns {den_id: (x, y, z)}
    """

    def __init__(self, loader: RegionLoader):
        self._loader = loader
        self._tables: dict[str, DenTable] = {}
        self._lock = threading.Lock()
        self.refresh_count = 0

    @classmethod
    def from_json(cls, path: Path) -> "CoordinateSource":
        path = Path(path)

        def load_region(region_id: str) -> Mapping[str, Sequence[float]]:
            try:
                with open(path, "r") as f:
                    data = json.load(f)
            except (OSError, json.JSONDecodeError) as e:
                raise ConfigError(f"Cannot read den coordinates from {path}: {e}") from e
            return data.get(region_id, {})

        return cls(load_region)

    @classmethod
    def from_mapping(cls, tables: Mapping[str, Mapping[str, Sequence[float]]]) -> "CoordinateSource":
        return cls(lambda region_id: tables.get(region_id, {}))

    def _load(self, region_id: str) -> DenTable:
        raw = self._loader(region_id)
        table: DenTable = {}
        for den_id, xyz in raw.items():
            if len(xyz) != 3:
                raise ConfigError(f"Den {den_id}: expected [x, y, z], got {xyz!r}")
            table[den_id] = Coordinates(*(float(v) for v in xyz))
        logger.info(f"Loaded {len(table)} den coordinates for {region_id}")
        return table

    def lookup(self, region_id: str, den_id: str) -> Coordinates:
        """
        Coordinates for a den.

        Raises:
            DenNotFoundError: if the region table has no such den.
        """
        with self._lock:
            if region_id not in self._tables:
                self._tables[region_id] = self._load(region_id)
            table = self._tables[region_id]
        try:
            return table[den_id]
        except KeyError:
            raise DenNotFoundError(region_id, den_id) from None

    def refresh(self, region_id: str) -> None:
        """Force a reload of one region's table."""
        table = self._load(region_id)
        with self._lock:
            self._tables[region_id] = table
            self.refresh_count += 1
        logger.info(f"Refreshed den coordinates for {region_id}")
