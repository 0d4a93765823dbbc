"""Plane-geometry helpers shared by the builder, reconstructor and simplifier.

Floor-plan points are 2D (x, z). "Clockwise" means descending polar angle
in (x, z), which is the winding that makes a floor fan face +Y."""

import logging

import numpy as np
from scipy.spatial import ConvexHull, QhullError
from shapely.geometry import Polygon
from shapely.geometry.polygon import orient

log = logging.getLogger(__name__)

EPS = 1e-9


def to_xz(point):
    p = np.asarray(point, dtype=float)
    return np.array([p[0], p[2]])


def from_xz(point, y=0.0):
    return np.array([point[0], y, point[1]], dtype=float)


def cross2d(a, b):
    return a[0] * b[1] - a[1] * b[0]


def normalize(v):
    v = np.asarray(v, dtype=float)
    n = np.linalg.norm(v)
    if n < EPS or not np.isfinite(n):
        return None
    return v / n


def project_onto_segment(point, start, end):
    """Clamped closest point on segment start-end.

    Returns (distance along the segment, closest point, distance to it)."""
    point = np.asarray(point, dtype=float)
    start = np.asarray(start, dtype=float)
    end = np.asarray(end, dtype=float)
    d = end - start
    length = np.linalg.norm(d)
    if length < EPS:
        return 0.0, start.copy(), float(np.linalg.norm(point - start))
    direction = d / length
    t = float(np.clip(np.dot(point - start, direction), 0.0, length))
    closest = start + direction * t
    return t, closest, float(np.linalg.norm(point - closest))


def centroid(points):
    return np.mean(np.asarray(points, dtype=float), axis=0)


def order_clockwise(points):
    """Sort (x, z) points by descending polar angle around their centroid."""
    pts = np.asarray(points, dtype=float)
    if len(pts) < 3:
        return pts.copy()
    c = centroid(pts)
    angles = np.arctan2(pts[:, 1] - c[1], pts[:, 0] - c[0])
    return pts[np.argsort(-angles, kind="stable")]


def snap_nearby_corners(points, threshold):
    """Average each point with later points closer than threshold."""
    pts = [np.asarray(p, dtype=float) for p in points]
    used = set()
    out = []
    for i, p in enumerate(pts):
        if i in used:
            continue
        merged = p.copy()
        for j in range(i + 1, len(pts)):
            if j in used:
                continue
            if np.linalg.norm(merged - pts[j]) < threshold:
                merged = (merged + pts[j]) / 2
                used.add(j)
        out.append(merged)
    return out


def line_intersection(p1, d1, p2, d2):
    """Intersection of lines p1 + s*d1 and p2 + t*d2, None when parallel."""
    denom = cross2d(d1, d2)
    if abs(denom) < 1e-6:
        return None
    s = cross2d(np.asarray(p2) - np.asarray(p1), d2) / denom
    return np.asarray(p1, dtype=float) + s * np.asarray(d1, dtype=float)


def turn_angle(a, b, c):
    """Absolute heading change (rad) walking a -> b -> c."""
    v1 = np.asarray(b) - np.asarray(a)
    v2 = np.asarray(c) - np.asarray(b)
    n1, n2 = np.linalg.norm(v1), np.linalg.norm(v2)
    if n1 < EPS or n2 < EPS:
        return 0.0
    cos = np.clip(np.dot(v1, v2) / (n1 * n2), -1.0, 1.0)
    return float(np.arccos(cos))


# ─── Polygons ───

def _polygon(points):
    pts = np.asarray(points, dtype=float)
    if len(pts) < 3:
        return None
    return Polygon(pts)


def polygon_area(points):
    poly = _polygon(points)
    return float(poly.area) if poly is not None else 0.0


def polygon_perimeter(points):
    pts = np.asarray(points, dtype=float)
    if len(pts) < 2:
        return 0.0
    return float(np.sum(np.linalg.norm(np.roll(pts, -1, axis=0) - pts, axis=1)))


def orient_clockwise(points):
    poly = _polygon(points)
    if poly is None or poly.area < EPS:
        return np.asarray(points, dtype=float)
    ring = np.array(orient(poly, sign=-1.0).exterior.coords)[:-1]
    return ring


def convex_hull(points):
    """Counter-clockwise hull starting at the lowest (then left-most) point.

    Collinear or too-small input is returned unchanged."""
    pts = np.asarray(points, dtype=float)
    if len(pts) < 3:
        return pts.copy()
    try:
        hull = ConvexHull(pts)
    except QhullError as e:
        log.warning("convex hull failed on %d points: %s", len(pts), str(e).splitlines()[0])
        return pts.copy()
    ring = pts[hull.vertices]
    start = min(range(len(ring)), key=lambda i: (ring[i][1], ring[i][0]))
    return np.roll(ring, -start, axis=0)
