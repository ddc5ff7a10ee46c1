"""
Computational geometry over latitude/longitude rings.

All functions are pure and operate on ``(lat, lng)`` tuples. Areas are in
squared degrees, which is an accepted approximation at city/suburb scale.

Provides:
1. Point-in-polygon (ray casting) and segment/polygon intersection
2. Monotone-chain convex hull
3. Approximate union, intersection area and overlap ratio
4. Small geodesic helpers (haversine distance, destination point)
"""

from __future__ import annotations

import math
from enum import IntEnum
from typing import Iterable, List, Sequence, Tuple

Coordinate = Tuple[float, float]
"""A ``(lat, lng)`` pair in decimal degrees."""

BoundingBox = Tuple[float, float, float, float]
"""``(min_lat, max_lat, min_lng, max_lng)``."""

COLLINEAR_TOLERANCE = 1e-10
EARTH_RADIUS_M = 6_371_000.0
UNION_BUFFER_FRACTION = 0.3


class Orientation(IntEnum):
    """Turn direction of an ordered triplet."""
    COLLINEAR = 0
    CLOCKWISE = 1
    COUNTER_CLOCKWISE = 2


# -----------------------------
# Predicates
# -----------------------------

def point_in_polygon(point: Coordinate, ring: Sequence[Coordinate]) -> bool:
    """
    Ray-casting containment test.

    The ray is cast along increasing latitude. An edge is considered when the
    point's longitude lies in the half-open interval ``(min_lng, max_lng]`` of
    that edge; edges whose endpoints share a longitude are skipped, and a
    crossing counts when ``point_lat <= crossing_lat``. For an axis-aligned
    ring, points on the maximum-latitude or maximum-longitude edge report
    inside and points on the minimum-latitude or minimum-longitude edge report
    outside. The rule is the same for every call.

    Args:
        point: ``(lat, lng)`` to test
        ring: Polygon vertices, closing edge implied

    Returns:
        True if inside. Rings with fewer than 3 vertices always return False.
    """
    n = len(ring)
    if n < 3:
        return False

    lat, lng = point
    inside = False
    p1_lat, p1_lng = ring[0]

    for i in range(1, n + 1):
        p2_lat, p2_lng = ring[i % n]
        if min(p1_lng, p2_lng) < lng <= max(p1_lng, p2_lng) and lat <= max(p1_lat, p2_lat):
            if p1_lng != p2_lng:
                crossing = (lng - p1_lng) * (p2_lat - p1_lat) / (p2_lng - p1_lng) + p1_lat
                if p1_lat == p2_lat or lat <= crossing:
                    inside = not inside
        p1_lat, p1_lng = p2_lat, p2_lng

    return inside


def orientation(p: Coordinate, q: Coordinate, r: Coordinate) -> Orientation:
    """Orientation of ``(p, q, r)`` from the cross-product sign."""
    value = (q[1] - p[1]) * (r[0] - q[0]) - (q[0] - p[0]) * (r[1] - q[1])
    if abs(value) < COLLINEAR_TOLERANCE:
        return Orientation.COLLINEAR
    return Orientation.CLOCKWISE if value > 0 else Orientation.COUNTER_CLOCKWISE


def on_segment(p: Coordinate, q: Coordinate, r: Coordinate) -> bool:
    """True if ``q`` lies within the bounding box of segment ``pr``."""
    return (
        min(p[1], r[1]) <= q[1] <= max(p[1], r[1])
        and min(p[0], r[0]) <= q[0] <= max(p[0], r[0])
    )


def segments_intersect(p1: Coordinate, q1: Coordinate, p2: Coordinate, q2: Coordinate) -> bool:
    """Check whether segments ``p1q1`` and ``p2q2`` intersect (touching counts)."""
    o1 = orientation(p1, q1, p2)
    o2 = orientation(p1, q1, q2)
    o3 = orientation(p2, q2, p1)
    o4 = orientation(p2, q2, q1)

    if o1 != o2 and o3 != o4:
        return True

    # Collinear overlap
    if o1 == Orientation.COLLINEAR and on_segment(p1, p2, q1):
        return True
    if o2 == Orientation.COLLINEAR and on_segment(p1, q2, q1):
        return True
    if o3 == Orientation.COLLINEAR and on_segment(p2, p1, q2):
        return True
    if o4 == Orientation.COLLINEAR and on_segment(p2, q1, q2):
        return True

    return False


def edges_intersect(ring_a: Sequence[Coordinate], ring_b: Sequence[Coordinate]) -> bool:
    """True if any edge of ``ring_a`` intersects any edge of ``ring_b``."""
    na, nb = len(ring_a), len(ring_b)
    for i in range(na):
        a_start, a_end = ring_a[i], ring_a[(i + 1) % na]
        for j in range(nb):
            if segments_intersect(a_start, a_end, ring_b[j], ring_b[(j + 1) % nb]):
                return True
    return False


def polygons_intersect(ring_a: Sequence[Coordinate], ring_b: Sequence[Coordinate]) -> bool:
    """
    Geometric intersection test between two polygons.

    True if any vertex of either polygon lies inside the other, or if any
    pair of edges cross (covers overlap without vertex containment).
    """
    if len(ring_a) < 3 or len(ring_b) < 3:
        return False

    if any(point_in_polygon(vertex, ring_b) for vertex in ring_a):
        return True
    if any(point_in_polygon(vertex, ring_a) for vertex in ring_b):
        return True

    return edges_intersect(ring_a, ring_b)


def is_convex(ring: Sequence[Coordinate], tolerance: float = 1e-8) -> bool:
    """True if all non-collinear turns along ``ring`` share one direction."""
    n = len(ring)
    if n < 3:
        return True

    sign = 0
    for i in range(n):
        cross = _cross(ring[i], ring[(i + 1) % n], ring[(i + 2) % n])
        if abs(cross) < tolerance:
            continue
        current = 1 if cross > 0 else -1
        if sign == 0:
            sign = current
        elif current != sign:
            return False
    return True


# -----------------------------
# Measures
# -----------------------------

def approximate_polygon_area(ring: Sequence[Coordinate]) -> float:
    """Shoelace area in squared degrees (0 for fewer than 3 vertices)."""
    n = len(ring)
    if n < 3:
        return 0.0

    area = 0.0
    for i in range(n):
        j = (i + 1) % n
        area += ring[i][0] * ring[j][1]
        area -= ring[j][0] * ring[i][1]
    return abs(area) / 2.0


def bounding_box(ring: Sequence[Coordinate]) -> BoundingBox:
    """Axis-aligned bounds of ``ring``; all zeros when empty."""
    if not ring:
        return (0.0, 0.0, 0.0, 0.0)
    lats = [c[0] for c in ring]
    lngs = [c[1] for c in ring]
    return (min(lats), max(lats), min(lngs), max(lngs))


def intersection_area(ring_a: Sequence[Coordinate], ring_b: Sequence[Coordinate]) -> float:
    """
    Approximate intersection area as the overlap of bounding boxes.

    Returns 0 when the polygons do not intersect per :func:`polygons_intersect`.
    """
    if not polygons_intersect(ring_a, ring_b):
        return 0.0

    a_min_lat, a_max_lat, a_min_lng, a_max_lng = bounding_box(ring_a)
    b_min_lat, b_max_lat, b_min_lng, b_max_lng = bounding_box(ring_b)

    min_lat = max(a_min_lat, b_min_lat)
    max_lat = min(a_max_lat, b_max_lat)
    min_lng = max(a_min_lng, b_min_lng)
    max_lng = min(a_max_lng, b_max_lng)

    if min_lat < max_lat and min_lng < max_lng:
        return (max_lat - min_lat) * (max_lng - min_lng)
    return 0.0


def overlap_ratio(ring_a: Sequence[Coordinate], ring_b: Sequence[Coordinate]) -> float:
    """Intersection-over-union (0.0 = disjoint, 1.0 = identical bounds)."""
    area_a = approximate_polygon_area(ring_a)
    area_b = approximate_polygon_area(ring_b)
    if area_a <= 0 or area_b <= 0:
        return 0.0

    shared = intersection_area(ring_a, ring_b)
    union = area_a + area_b - shared
    return shared / union if union > 0 else 0.0


def polygon_centroid(ring: Sequence[Coordinate]) -> Coordinate:
    """Mean of the vertices (not the area centroid)."""
    if not ring:
        return (0.0, 0.0)
    n = len(ring)
    return (sum(c[0] for c in ring) / n, sum(c[1] for c in ring) / n)


def haversine_m(a: Coordinate, b: Coordinate) -> float:
    """Great-circle distance between ``a`` and ``b`` in meters."""
    lat1, lng1 = math.radians(a[0]), math.radians(a[1])
    lat2, lng2 = math.radians(b[0]), math.radians(b[1])
    dlat = lat2 - lat1
    dlng = lng2 - lng1
    h = math.sin(dlat / 2) ** 2 + math.cos(lat1) * math.cos(lat2) * math.sin(dlng / 2) ** 2
    return 2 * EARTH_RADIUS_M * math.asin(min(1.0, math.sqrt(h)))


def polygon_perimeter_m(ring: Sequence[Coordinate]) -> float:
    """Closed-ring perimeter in meters."""
    n = len(ring)
    if n < 2:
        return 0.0
    return sum(haversine_m(ring[i], ring[(i + 1) % n]) for i in range(n))


def destination_point(origin: Coordinate, distance_m: float, bearing_deg: float) -> Coordinate:
    """Coordinate reached from ``origin`` after ``distance_m`` along ``bearing_deg``."""
    angular = distance_m / EARTH_RADIUS_M
    bearing = math.radians(bearing_deg)
    lat1 = math.radians(origin[0])
    lng1 = math.radians(origin[1])

    lat2 = math.asin(
        math.sin(lat1) * math.cos(angular)
        + math.cos(lat1) * math.sin(angular) * math.cos(bearing)
    )
    lng2 = lng1 + math.atan2(
        math.sin(bearing) * math.sin(angular) * math.cos(lat1),
        math.cos(angular) - math.sin(lat1) * math.sin(lat2),
    )
    return (math.degrees(lat2), math.degrees(lng2))


# -----------------------------
# Hulls and unions
# -----------------------------

def _cross(o: Coordinate, a: Coordinate, b: Coordinate) -> float:
    return (a[0] - o[0]) * (b[1] - o[1]) - (a[1] - o[1]) * (b[0] - o[0])


def convex_hull(points: Sequence[Coordinate]) -> List[Coordinate]:
    """
    Monotone-chain convex hull.

    Points are sorted by latitude then longitude; only strictly left turns
    are kept, so collinear and interior points are dropped. Fewer than three
    points are returned unchanged.
    """
    if len(points) < 3:
        return list(points)

    ordered = sorted(points, key=lambda c: (c[0], c[1]))

    lower: List[Coordinate] = []
    for point in ordered:
        while len(lower) >= 2 and _cross(lower[-2], lower[-1], point) <= 0:
            lower.pop()
        lower.append(point)

    upper: List[Coordinate] = []
    for point in reversed(ordered):
        while len(upper) >= 2 and _cross(upper[-2], upper[-1], point) <= 0:
            upper.pop()
        upper.append(point)

    return lower[:-1] + upper[:-1]


def _all_vertices(polygons: Iterable[Sequence[Coordinate]]) -> List[Coordinate]:
    return [vertex for polygon in polygons for vertex in polygon]


def union_polygons(polygons: Sequence[Sequence[Coordinate]]) -> List[Coordinate]:
    """Approximate union: convex hull of every vertex (single input unchanged)."""
    if not polygons:
        return []
    if len(polygons) == 1:
        return list(polygons[0])
    return convex_hull(_all_vertices(polygons))


def precise_union_polygons(
    polygons: Sequence[Sequence[Coordinate]],
    buffer_radius_m: float,
) -> List[Coordinate]:
    """
    Buffered approximate union.

    Adds four points around every vertex at ``0.3 * buffer_radius_m`` (bearings
    0, 90, 180 and 270 degrees) before hulling, so that overlapping shapes merge
    with a small margin. Still a convex approximation, not clipping.
    """
    if not polygons:
        return []
    if len(polygons) == 1:
        return list(polygons[0])

    buffered: List[Coordinate] = []
    offset = buffer_radius_m * UNION_BUFFER_FRACTION
    for polygon in polygons:
        buffered.extend(polygon)
        for vertex in polygon:
            for bearing in (0.0, 90.0, 180.0, 270.0):
                buffered.append(destination_point(vertex, offset, bearing))

    return convex_hull(buffered)


__all__ = [
    "BoundingBox",
    "Coordinate",
    "Orientation",
    "approximate_polygon_area",
    "bounding_box",
    "convex_hull",
    "destination_point",
    "edges_intersect",
    "haversine_m",
    "intersection_area",
    "is_convex",
    "on_segment",
    "orientation",
    "overlap_ratio",
    "point_in_polygon",
    "polygon_centroid",
    "polygon_perimeter_m",
    "polygons_intersect",
    "precise_union_polygons",
    "segments_intersect",
    "union_polygons",
]
