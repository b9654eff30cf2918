import math
from typing import Iterable, List, Optional, Sequence, Tuple

from safetravel.core.types import GeoPoint, Zone, ZoneShape
from safetravel.exceptions import InvalidGeometry

EARTH_RADIUS_METERS = 6371000.0
METERS_PER_DEGREE = math.pi * EARTH_RADIUS_METERS / 180.0
# Boxes are padded so they always enclose the haversine circle
BOX_MARGIN = 1.01

BoundingBox = Tuple[float, float, float, float]  # min_lat, min_lon, max_lat, max_lon

def degrees_for_meters(meters: float) -> float:
    """Latitude span in degrees covering the given distance, with the box margin"""
    return math.degrees(meters / EARTH_RADIUS_METERS) * BOX_MARGIN

def calculate_distance(lat1: float, lon1: float, lat2: float, lon2: float) -> float:
    """
    Calculate distance between two points using Haversine formula
    Returns distance in meters
    """
    lat1, lon1, lat2, lon2 = map(math.radians, [lat1, lon1, lat2, lon2])
    dlat = lat2 - lat1
    dlon = lon2 - lon1

    a = math.sin(dlat/2)**2 + math.cos(lat1) * math.cos(lat2) * math.sin(dlon/2)**2
    c = 2 * math.asin(min(1.0, math.sqrt(a)))

    return EARTH_RADIUS_METERS * c

def distance(point_a: GeoPoint, point_b: GeoPoint) -> float:
    return calculate_distance(
        point_a.latitude, point_a.longitude,
        point_b.latitude, point_b.longitude
    )

def _check_coordinate(lat: float, lon: float, zone_id: str):
    if not (math.isfinite(lat) and math.isfinite(lon)):
        raise InvalidGeometry(f"Zone {zone_id} has non-finite coordinates", zone_id=zone_id)
    if not (-90 <= lat <= 90):
        raise InvalidGeometry(f"Zone {zone_id} latitude {lat} out of range", zone_id=zone_id)
    if not (-180 <= lon <= 180):
        raise InvalidGeometry(f"Zone {zone_id} longitude {lon} out of range", zone_id=zone_id)

def validate_zone(zone: Zone) -> Zone:
    """
    Reject malformed zone definitions.
    Called once when a zone is registered, never on the query path.
    """
    if not 1 <= zone.risk_level <= 5:
        raise InvalidGeometry(
            f"Zone {zone.id} risk level must be between 1 and 5", zone_id=zone.id
        )

    if zone.shape == ZoneShape.CIRCLE:
        if zone.center_latitude is None or zone.center_longitude is None:
            raise InvalidGeometry(f"Circular zone {zone.id} has no center", zone_id=zone.id)
        _check_coordinate(zone.center_latitude, zone.center_longitude, zone.id)
        if zone.radius_meters is None or not math.isfinite(zone.radius_meters) or zone.radius_meters <= 0:
            raise InvalidGeometry(
                f"Circular zone {zone.id} needs a positive radius", zone_id=zone.id
            )
        return zone

    if zone.shape == ZoneShape.POLYGON:
        for lon, lat in zone.vertices:
            _check_coordinate(lat, lon, zone.id)
        ring = _open_ring(zone.vertices)
        if len(set(ring)) < 3:
            raise InvalidGeometry(
                f"Polygon zone {zone.id} needs at least 3 distinct vertices",
                zone_id=zone.id,
                vertex_count=len(zone.vertices)
            )
        return zone

    raise InvalidGeometry(f"Unknown zone shape '{zone.shape}'", zone_id=zone.id)

def _open_ring(vertices: Sequence[Tuple[float, float]]) -> List[Tuple[float, float]]:
    """Drop the closing vertex if the ring repeats its first point"""
    ring = [(float(lon), float(lat)) for lon, lat in vertices]
    if len(ring) > 1 and ring[0] == ring[-1]:
        ring.pop()
    return ring

def _unwrap_ring(vertices: Sequence[Tuple[float, float]]) -> List[Tuple[float, float]]:
    """
    Make ring longitudes continuous so that no edge jumps more than 180
    degrees. A ring crossing the antimeridian ends up with longitudes
    beyond +/-180 instead of wrapping.
    """
    ring = _open_ring(vertices)
    if not ring:
        return ring

    unwrapped = [ring[0]]
    prev_lon = ring[0][0]
    for lon, lat in ring[1:]:
        while lon - prev_lon > 180:
            lon -= 360
        while lon - prev_lon < -180:
            lon += 360
        unwrapped.append((lon, lat))
        prev_lon = lon
    return unwrapped

def _shift_into_range(lon: float, min_lon: float) -> float:
    """Shift lon by whole turns so it falls in [min_lon, min_lon + 360)"""
    return min_lon + ((lon - min_lon) % 360.0)

def point_in_polygon(lat: float, lon: float, vertices: Sequence[Tuple[float, float]]) -> bool:
    """
    Ray casting algorithm on (longitude, latitude) vertices.
    Boundary points resolve deterministically: the half-open edge rule
    counts each crossing once.
    """
    ring = _unwrap_ring(vertices)
    if len(ring) < 3:
        raise InvalidGeometry("Polygon needs at least 3 vertices", vertex_count=len(ring))

    min_lon = min(v[0] for v in ring)
    x, y = _shift_into_range(lon, min_lon), lat
    n = len(ring)
    inside = False

    p1x, p1y = ring[0]
    for i in range(1, n + 1):
        p2x, p2y = ring[i % n]
        if min(p1y, p2y) < y <= max(p1y, p2y):
            xinters = (y - p1y) * (p2x - p1x) / (p2y - p1y) + p1x
            if x <= xinters:
                inside = not inside
        p1x, p1y = p2x, p2y

    return inside

def contains(zone: Zone, point: GeoPoint) -> bool:
    if zone.shape == ZoneShape.CIRCLE:
        if zone.radius_meters is None or zone.center_latitude is None or zone.center_longitude is None:
            raise InvalidGeometry(f"Circular zone {zone.id} is incomplete", zone_id=zone.id)
        d = calculate_distance(
            point.latitude, point.longitude,
            zone.center_latitude, zone.center_longitude
        )
        return d <= zone.radius_meters

    if zone.shape == ZoneShape.POLYGON:
        return point_in_polygon(point.latitude, point.longitude, zone.vertices)

    raise InvalidGeometry(f"Unknown zone shape '{zone.shape}'", zone_id=zone.id)

def bounding_box(zone: Zone) -> BoundingBox:
    """
    Lat/lon box around the zone. Longitudes may extend past +/-180 when the
    zone crosses the antimeridian; the index wraps cells accordingly.
    """
    if zone.shape == ZoneShape.CIRCLE:
        lat, lon, radius = zone.center_latitude, zone.center_longitude, zone.radius_meters
        dlat = degrees_for_meters(radius)
        min_lat, max_lat = lat - dlat, lat + dlat
        if min_lat <= -90 or max_lat >= 90:
            return max(min_lat, -90.0), -180.0, min(max_lat, 90.0), 180.0
        widest = max(abs(min_lat), abs(max_lat))
        dlon = dlat / math.cos(math.radians(widest))
        if dlon >= 180:
            return min_lat, -180.0, max_lat, 180.0
        return min_lat, lon - dlon, max_lat, lon + dlon

    ring = _unwrap_ring(zone.vertices)
    lons = [v[0] for v in ring]
    lats = [v[1] for v in ring]
    return min(lats), min(lons), max(lats), max(lons)

def _segment_distance(px: float, py: float, ax: float, ay: float, bx: float, by: float) -> float:
    dx, dy = bx - ax, by - ay
    if dx == 0 and dy == 0:
        return math.hypot(px - ax, py - ay)
    t = ((px - ax) * dx + (py - ay) * dy) / (dx * dx + dy * dy)
    t = max(0.0, min(1.0, t))
    return math.hypot(px - (ax + t * dx), py - (ay + t * dy))

def distance_to_zone(point: GeoPoint, zone: Zone) -> float:
    """
    Distance in meters from the point to the zone edge, 0 when inside.
    Polygon edges are measured on a local equirectangular projection,
    accurate for the city-scale zones this service handles.
    """
    if contains(zone, point):
        return 0.0

    if zone.shape == ZoneShape.CIRCLE:
        d = calculate_distance(
            point.latitude, point.longitude,
            zone.center_latitude, zone.center_longitude
        )
        return max(0.0, d - zone.radius_meters)

    scale_x = math.cos(math.radians(point.latitude)) * METERS_PER_DEGREE
    projected = []
    for lon, lat in _open_ring(zone.vertices):
        dlon = (lon - point.longitude + 180.0) % 360.0 - 180.0
        projected.append((dlon * scale_x, (lat - point.latitude) * METERS_PER_DEGREE))

    best = float('inf')
    n = len(projected)
    for i in range(n):
        ax, ay = projected[i]
        bx, by = projected[(i + 1) % n]
        best = min(best, _segment_distance(0.0, 0.0, ax, ay, bx, by))
    return best

def nearest_zone(point: GeoPoint, zones: Iterable[Zone]) -> Optional[Tuple[Zone, float]]:
    """Closest zone to the point as (zone, meters); ties go to the lower zone id"""
    best: Optional[Tuple[Zone, float]] = None
    for zone in sorted(zones, key=lambda z: z.id):
        d = distance_to_zone(point, zone)
        if best is None or d < best[1]:
            best = (zone, d)
    return best
