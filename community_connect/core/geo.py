from __future__ import annotations

import math
from typing import Any, Dict, Iterable, List, Optional, Sequence, Tuple

EARTH_RADIUS_KM = 6371.0

# Hard cap for bbox -> geocell enumeration. Beyond this the caller skips the grid stage.
MAX_GEOCELLS = 10_000


# ──────────────────────────────────────────────────────────────
# Distance + boxes
# ──────────────────────────────────────────────────────────────

def calculate_distance(a: Tuple[float, float], b: Tuple[float, float]) -> float:
    """Haversine distance in km between two (lat, lng) pairs."""
    lat1, lon1 = math.radians(a[0]), math.radians(a[1])
    lat2, lon2 = math.radians(b[0]), math.radians(b[1])
    dlat = lat2 - lat1
    dlon = lon2 - lon1
    x = math.sin(dlat / 2) ** 2 + math.cos(lat1) * math.cos(lat2) * math.sin(dlon / 2) ** 2
    return 2 * EARTH_RADIUS_KM * math.atan2(math.sqrt(x), math.sqrt(1 - x))


def is_within_radius(center: Tuple[float, float], point: Tuple[float, float], radius_km: float) -> bool:
    return calculate_distance(center, point) <= radius_km


def is_within_bounding_box(box: Dict[str, float], point: Tuple[float, float]) -> bool:
    """box: {minLat, maxLat, minLng, maxLng}; point: (lat, lng)."""
    lat, lng = point
    return box["minLat"] <= lat <= box["maxLat"] and box["minLng"] <= lng <= box["maxLng"]


def create_expanded_bounding_box(center: Tuple[float, float], radius_km: float) -> Dict[str, float]:
    lat, lng = center
    dlat = radius_km / 111.0
    dlng = radius_km / (111.0 * math.cos(math.radians(lat)))
    return {
        "minLat": lat - dlat,
        "maxLat": lat + dlat,
        "minLng": lng - dlng,
        "maxLng": lng + dlng,
    }


def filter_locations_by_proximity(
    locations: Iterable[Dict[str, Any]],
    home: Tuple[float, float],
    home_bbox: Optional[Sequence[float]] = None,
    max_km: float = 15.0,
) -> List[Dict[str, Any]]:
    """
    Keep GeoJSON-ish items within max_km of home (lat, lng).

    home_bbox is [minLat, maxLat, minLon, maxLon]; when given it is widened by
    0.05 deg and used as a cheap prefilter before the haversine check.
    """
    box = None
    if home_bbox and len(home_bbox) == 4:
        box = {
            "minLat": float(home_bbox[0]) - 0.05,
            "maxLat": float(home_bbox[1]) + 0.05,
            "minLng": float(home_bbox[2]) - 0.05,
            "maxLng": float(home_bbox[3]) + 0.05,
        }

    out: List[Dict[str, Any]] = []
    for loc in locations:
        coords = extract_coordinates_from_geometry(loc.get("geometry"))
        if not coords:
            continue
        point = (coords[1], coords[0])
        if box is not None and not is_within_bounding_box(box, point):
            continue
        if is_within_radius(home, point, max_km):
            out.append(loc)
    return out


# ──────────────────────────────────────────────────────────────
# Geometry
# ──────────────────────────────────────────────────────────────

def _is_position(x: Any) -> bool:
    return (
        isinstance(x, (list, tuple))
        and len(x) >= 2
        and isinstance(x[0], (int, float))
        and isinstance(x[1], (int, float))
    )


def extract_coordinates_from_geometry(geom: Any) -> Optional[List[float]]:
    """First usable [lng, lat] from a GeoJSON geometry."""
    if not isinstance(geom, dict):
        return None
    gtype = geom.get("type")
    coords = geom.get("coordinates")

    if gtype == "Point" and _is_position(coords):
        return [float(coords[0]), float(coords[1])]

    if gtype == "MultiPoint" and isinstance(coords, list) and coords and _is_position(coords[0]):
        return [float(coords[0][0]), float(coords[0][1])]

    if gtype == "GeometryCollection":
        members = geom.get("geometries") or []
        for g in members:
            if isinstance(g, dict) and g.get("type") == "Point" and _is_position(g.get("coordinates")):
                c = g["coordinates"]
                return [float(c[0]), float(c[1])]
        if members and isinstance(members[0], dict):
            first = members[0]
            fc = first.get("coordinates")
            if first.get("type") == "Point" and _is_position(fc):
                return [float(fc[0]), float(fc[1])]
            if first.get("type") == "LineString" and isinstance(fc, list) and fc and _is_position(fc[0]):
                return [float(fc[0][0]), float(fc[0][1])]
            if (
                first.get("type") == "MultiLineString"
                and isinstance(fc, list)
                and fc
                and isinstance(fc[0], list)
                and fc[0]
                and _is_position(fc[0][0])
            ):
                return [float(fc[0][0][0]), float(fc[0][0][1])]

    return None


def _ring_average(ring: Any) -> Optional[Tuple[float, float]]:
    if not isinstance(ring, list) or not ring:
        return None
    pts = [p for p in ring if _is_position(p)]
    if not pts:
        return None
    lat = sum(float(p[1]) for p in pts) / len(pts)
    lng = sum(float(p[0]) for p in pts) / len(pts)
    return lat, lng


def _middle_vertex(line: Any) -> Optional[Tuple[float, float]]:
    if not isinstance(line, list) or not line:
        return None
    mid = line[len(line) // 2]
    if not _is_position(mid):
        return None
    return float(mid[1]), float(mid[0])


def compute_centroid(geom: Any) -> Optional[Tuple[float, float]]:
    """Representative (lat, lng) of a GeoJSON geometry, or None."""
    if not isinstance(geom, dict):
        return None
    gtype = geom.get("type")
    coords = geom.get("coordinates")

    try:
        if gtype == "Point":
            if _is_position(coords):
                return float(coords[1]), float(coords[0])
            return None
        if gtype == "LineString":
            return _middle_vertex(coords)
        if gtype == "Polygon":
            return _ring_average(coords[0]) if isinstance(coords, list) and coords else None
        if gtype == "MultiPoint":
            return _ring_average(coords)
        if gtype == "MultiLineString":
            return _middle_vertex(coords[0]) if isinstance(coords, list) and coords else None
        if gtype == "MultiPolygon":
            if isinstance(coords, list) and coords and isinstance(coords[0], list) and coords[0]:
                return _ring_average(coords[0][0])
            return None
        if gtype == "GeometryCollection":
            for g in geom.get("geometries") or []:
                c = compute_centroid(g)
                if c is not None:
                    return c
            return None
    except (TypeError, ValueError, IndexError):
        return None
    return None


# ──────────────────────────────────────────────────────────────
# Geocells
# ──────────────────────────────────────────────────────────────

def generate_geocell(lat: float, lng: float, precision: int = 3) -> str:
    step = 10 ** -precision
    glat = math.floor(lat / step) * step
    glng = math.floor(lng / step) * step
    return f"{precision}_{glat:.{precision}f}_{glng:.{precision}f}"


def geocells_in_bounding_box(
    sw: Tuple[float, float],
    ne: Tuple[float, float],
    precision: int = 3,
    max_cells: int = MAX_GEOCELLS,
) -> Optional[set[str]]:
    """
    All geocells covering the (lat, lng) box sw..ne.
    Returns None when the box needs more than max_cells cells.
    """
    step = 10 ** -precision
    lat0 = math.floor(sw[0] / step)
    lat1 = math.floor(ne[0] / step)
    lng0 = math.floor(sw[1] / step)
    lng1 = math.floor(ne[1] / step)

    n_lat = lat1 - lat0 + 1
    n_lng = lng1 - lng0 + 1
    if n_lat <= 0 or n_lng <= 0:
        return set()
    if n_lat * n_lng > max_cells:
        return None

    cells: set[str] = set()
    for i in range(lat0, lat1 + 1):
        for j in range(lng0, lng1 + 1):
            # Centre of the cell avoids float drift at the edges
            cells.add(generate_geocell((i + 0.5) * step, (j + 0.5) * step, precision))
    return cells
