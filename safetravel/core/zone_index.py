import logging
import math
from dataclasses import replace
from datetime import datetime, timezone, tzinfo
from typing import Dict, Iterable, List, Optional, Set, Tuple

from safetravel.core.geometry import BoundingBox, bounding_box, degrees_for_meters, validate_zone
from safetravel.core.types import GeoPoint, Zone
from safetravel.exceptions import IndexUnavailable

logger = logging.getLogger(__name__)

Cell = Tuple[int, int]

class ZoneIndex:
    """
    Immutable grid snapshot of the active zone set.

    Each zone is registered in every grid cell its bounding box touches;
    zones spanning more than ``max_cells_per_zone`` cells are kept in an
    overflow list that every query scans. Time windows are not baked in:
    they are evaluated per query against the fix timestamp.
    """

    def __init__(
        self,
        zones: Iterable[Zone],
        cell_degrees: float = 0.1,
        max_cells_per_zone: int = 2500,
        tz: tzinfo = timezone.utc,
        version: int = 0
    ):
        if cell_degrees <= 0:
            raise ValueError("cell_degrees must be positive")
        self.cell_degrees = cell_degrees
        self.max_cells_per_zone = max_cells_per_zone
        self.tz = tz
        self.version = version
        self._columns = int(math.ceil(360.0 / cell_degrees - 1e-9))
        self._rows = int(math.ceil(180.0 / cell_degrees - 1e-9))
        self._zones: Dict[str, Zone] = {}
        self._cells: Dict[Cell, List[str]] = {}
        self._overflow: List[str] = []

        for zone in zones:
            if zone.is_active:
                self._insert(zone)

        # Freeze cell lists so snapshots can be shared across tasks
        self._cells = {cell: tuple(ids) for cell, ids in self._cells.items()}
        self._overflow = tuple(self._overflow)

    def __len__(self) -> int:
        return len(self._zones)

    @property
    def zones(self) -> List[Zone]:
        return list(self._zones.values())

    def get(self, zone_id: str) -> Optional[Zone]:
        return self._zones.get(zone_id)

    def _row(self, lat: float) -> int:
        return min(self._rows - 1, max(0, int(math.floor((lat + 90.0) / self.cell_degrees))))

    def _column(self, lon: float) -> int:
        if not -180.0 <= lon < 180.0:
            lon = (lon + 180.0) % 360.0 - 180.0
        return min(self._columns - 1, max(0, int(math.floor((lon + 180.0) / self.cell_degrees))))

    def _columns_for_span(self, min_lon: float, max_lon: float) -> List[int]:
        """Columns covering [min_lon, max_lon]; the span may run past +/-180"""
        if max_lon - min_lon >= 360.0:
            return list(range(self._columns))
        first = self._column(min_lon)
        count = self._column(max_lon) - first
        if count < 0 or (count == 0 and max_lon - min_lon > self.cell_degrees):
            count += self._columns
        return [(first + i) % self._columns for i in range(min(count + 1, self._columns))]

    def _cells_for_box(self, box: BoundingBox) -> Optional[List[Cell]]:
        min_lat, min_lon, max_lat, max_lon = box
        rows = range(self._row(min_lat), self._row(max_lat) + 1)
        columns = self._columns_for_span(min_lon, max_lon)
        if len(rows) * len(columns) > self.max_cells_per_zone:
            return None
        return [(row, col) for row in rows for col in columns]

    def _insert(self, zone: Zone):
        self._zones[zone.id] = zone
        cells = self._cells_for_box(bounding_box(zone))
        if cells is None:
            self._overflow.append(zone.id)
            return
        for cell in cells:
            self._cells.setdefault(cell, []).append(zone.id)

    def query_candidates(
        self,
        point: GeoPoint,
        max_radius: float = 0.0,
        at: Optional[datetime] = None
    ) -> Set[Zone]:
        """
        Zones whose cells cover the point (or the box of ``max_radius``
        meters around it) and that are active at ``at``.
        """
        if max_radius > 0:
            dlat = degrees_for_meters(max_radius)
            cos_lat = max(math.cos(math.radians(min(abs(point.latitude) + dlat, 89.9))), 1e-6)
            dlon = min(dlat / cos_lat, 180.0)
            box = (
                point.latitude - dlat, point.longitude - dlon,
                point.latitude + dlat, point.longitude + dlon
            )
            cells = self._cells_for_box(box)
            if cells is None:
                candidate_ids: Set[str] = set(self._zones)
            else:
                candidate_ids = {zid for cell in cells for zid in self._cells.get(cell, ())}
        else:
            cell = (self._row(point.latitude), self._column(point.longitude))
            candidate_ids = set(self._cells.get(cell, ()))

        candidate_ids.update(self._overflow)

        return {
            self._zones[zid] for zid in candidate_ids
            if self._zones[zid].is_active_at(at, self.tz)
        }


class ZoneRegistry:
    """
    Copy-on-write holder for the zone index.

    Writers (zone CRUD) build a fresh ``ZoneIndex`` and swap the reference;
    readers keep whatever snapshot they already hold, so the query path
    never takes a lock.
    """

    def __init__(self, cell_degrees: float = 0.1, max_cells_per_zone: int = 2500, tz: tzinfo = timezone.utc):
        self.cell_degrees = cell_degrees
        self.max_cells_per_zone = max_cells_per_zone
        self.tz = tz
        self._zones: Dict[str, Zone] = {}
        self._snapshot: Optional[ZoneIndex] = None
        self._version = 0

    @property
    def is_ready(self) -> bool:
        return self._snapshot is not None

    def snapshot(self) -> ZoneIndex:
        snapshot = self._snapshot
        if snapshot is None:
            raise IndexUnavailable("Zone index has not been built yet")
        return snapshot

    def all_zones(self) -> List[Zone]:
        return sorted(self._zones.values(), key=lambda z: z.id)

    def get(self, zone_id: str) -> Optional[Zone]:
        return self._zones.get(zone_id)

    def publish(self, zones: Iterable[Zone]) -> ZoneIndex:
        """Replace the whole zone set, validating every zone first"""
        validated = {zone.id: validate_zone(zone) for zone in zones}
        return self._swap(validated)

    def upsert(self, zone: Zone) -> ZoneIndex:
        validate_zone(zone)
        zones = dict(self._zones)
        zones[zone.id] = zone
        return self._swap(zones)

    def deactivate(self, zone_id: str) -> Optional[Zone]:
        zone = self._zones.get(zone_id)
        if zone is None:
            return None
        zones = dict(self._zones)
        zones[zone_id] = replace(zone, is_active=False)
        self._swap(zones)
        return zones[zone_id]

    def remove(self, zone_id: str) -> bool:
        if zone_id not in self._zones:
            return False
        zones = dict(self._zones)
        del zones[zone_id]
        self._swap(zones)
        return True

    def _swap(self, zones: Dict[str, Zone]) -> ZoneIndex:
        self._version += 1
        snapshot = ZoneIndex(
            zones.values(),
            cell_degrees=self.cell_degrees,
            max_cells_per_zone=self.max_cells_per_zone,
            tz=self.tz,
            version=self._version
        )
        self._zones = zones
        self._snapshot = snapshot
        logger.info(f"Zone index v{snapshot.version} published with {len(snapshot)} active zones")
        return snapshot
