"""Room simplifier: floor outline straight from wall-base points.

Independent of segment and corner inference. Wall vertices near the floor are
grid snapped, hulled and then cleaned up into a small polygon with square
corners where the room is nearly square."""

import logging

import numpy as np

from .config import RoomConfig
from .geometry import convex_hull, line_intersection, orient_clockwise, turn_angle
from .mesh import RoomMesh
from .types import SimplifiedProtrusion, SimplifiedRoom, SurfaceType

log = logging.getLogger(__name__)

WALL_TYPES = (SurfaceType.WALL, SurfaceType.WALL_EDGE)


class RoomSimplifier:
    def __init__(self, config=None):
        self.config = config or RoomConfig()

    def extract_simplified_room(self, fragments, statistics):
        floor = statistics.floor_height
        ceiling = statistics.ceiling_height
        if floor is None or ceiling is None:
            return None

        points = self.extract_wall_points(fragments, floor, statistics)
        if len(points) < 3:
            log.info("simplifier: %d wall-base points, not enough for an outline", len(points))
            return None

        outline = self.simplify_polygon(convex_hull(points))
        if len(outline) < 3:
            return None
        room = SimplifiedRoom(floor, ceiling, outline, self.extract_protrusions(statistics, ceiling))
        log.info("simplifier: %d corners, %.1fm² floor, %d protrusions",
                 room.wall_count, room.floor_area, len(room.protrusions))
        return room

    def extract_wall_points(self, fragments, floor_height, statistics):
        """Grid-snapped (x, z) of wall vertices near the floor, in grid order."""
        cfg = self.config
        cells = set()
        for fragment in fragments:
            if statistics.surface_type_of(fragment.identifier) not in WALL_TYPES:
                continue
            verts = fragment.world_vertices()
            if not len(verts):
                continue
            base = verts[np.abs(verts[:, 1] - floor_height) < cfg.wall_base_tolerance]
            for x, z in np.round(base[:, [0, 2]] / cfg.simplifier_grid).astype(int):
                cells.add((int(x), int(z)))
        return np.array(sorted(cells), dtype=float).reshape(-1, 2) * cfg.simplifier_grid

    # ─── Polygon clean-up ───

    def simplify_polygon(self, polygon):
        """Repeat the clean-up until a pass leaves the polygon unchanged.

        Every pass either drops a vertex or only re-squares corners, so a
        fixed point is reached within about two passes per vertex."""
        poly = np.asarray(polygon, dtype=float)
        for _ in range(2 * len(poly) + 2):
            if len(poly) < 3:
                return poly
            nxt = self._simplify_pass(poly)
            if nxt.shape == poly.shape and np.allclose(nxt, poly):
                return poly
            poly = nxt
        log.debug("simplifier: outline still changing after %d passes", 2 * len(polygon) + 2)
        return poly

    def _simplify_pass(self, poly):
        poly = self.remove_short_edges(poly)
        poly = self.merge_collinear(poly)
        poly = self.snap_right_angles(poly)
        return self.snap_corners(poly)

    def remove_short_edges(self, poly):
        n = len(poly)
        if n <= 4:
            return poly
        keep = [i for i in range(n)
                if np.linalg.norm(poly[(i + 1) % n] - poly[i]) >= self.config.min_wall_length]
        return poly[keep] if len(keep) >= 3 else poly

    def merge_collinear(self, poly):
        n = len(poly)
        if n <= 4:
            return poly
        limit = np.radians(self.config.collinear_threshold_deg)
        keep = [i for i in range(n)
                if turn_angle(poly[i - 1], poly[i], poly[(i + 1) % n]) > limit]
        return poly[keep] if len(keep) >= 3 else poly

    def snap_right_angles(self, poly):
        """Square up corners within tolerance of 90 degrees.

        Edge 0 is the reference. Each later edge that meets its (already
        adjusted) predecessor at close to a right angle is turned about its
        midpoint to be exactly perpendicular, then every vertex is rebuilt as
        the intersection of its two edge lines. A vertex whose edge lines
        ended up parallel is dropped."""
        n = len(poly)
        if n < 3:
            return poly
        tol = np.radians(self.config.right_angle_tolerance_deg)

        mids, dirs = [], []
        for i in range(n):
            d = poly[(i + 1) % n] - poly[i]
            length = np.linalg.norm(d)
            mids.append((poly[i] + poly[(i + 1) % n]) / 2)
            dirs.append(d / length if length > 0 else d)

        for i in range(1, n):
            prev, cur = dirs[i - 1], dirs[i]
            if not np.any(prev) or not np.any(cur):
                continue
            angle = np.arccos(np.clip(np.dot(prev, cur), -1.0, 1.0))
            if abs(angle - np.pi / 2) < tol:
                perp = np.array([-prev[1], prev[0]])
                dirs[i] = perp if np.dot(perp, cur) > 0 else -perp

        out = []
        for i in range(n):
            p = line_intersection(mids[i - 1], dirs[i - 1], mids[i], dirs[i])
            if p is not None:
                out.append(p)
        return np.array(out) if len(out) >= 3 else poly

    def snap_corners(self, poly):
        """Merge non-adjacent corners closer than the snap distance, then dedupe."""
        cfg = self.config
        result = [p.copy() for p in poly]
        n = len(result)
        for i in range(n):
            for j in range(i + 2, n):
                if i == 0 and j == n - 1:
                    continue
                dist = np.linalg.norm(result[i] - result[j])
                if 0 < dist < cfg.simplifier_snap_distance:
                    mid = (result[i] + result[j]) / 2
                    result[i] = mid
                    result[j] = mid.copy()

        unique = []
        for p in result:
            if not any(np.linalg.norm(u - p) < cfg.duplicate_distance for u in unique):
                unique.append(p)
        return np.array(unique).reshape(-1, 2)

    # ─── Protrusions ───

    def extract_protrusions(self, statistics, ceiling_height):
        out = []
        for p in statistics.detected_protrusions:
            lo, hi = p.bounding_box
            outline = np.array([[lo[0], lo[2]], [hi[0], lo[2]], [hi[0], hi[2]], [lo[0], hi[2]]])
            out.append(SimplifiedProtrusion(outline, ceiling_height, ceiling_height - p.depth))
        return out

    # ─── Mesh ───

    def generate_mesh(self, room):
        mesh = RoomMesh()
        if room is None or len(room.floor_polygon) < 3:
            return mesh
        double = self.config.double_sided
        outline = orient_clockwise(room.floor_polygon)
        fy, cy = room.floor_height, room.ceiling_height

        mesh.add_fan([[x, fy, z] for x, z in outline], [0.0, 1.0, 0.0], SurfaceType.FLOOR, double)
        mesh.add_fan([[x, cy, z] for x, z in outline], [0.0, -1.0, 0.0], SurfaceType.CEILING, double)

        n = len(outline)
        for i in range(n):
            p1, p2 = outline[i], outline[(i + 1) % n]
            d = p2 - p1
            length = np.linalg.norm(d)
            if length == 0:
                continue
            d = d / length
            normal = [d[1], 0.0, -d[0]]
            mesh.add_quad([[p1[0], fy, p1[1]], [p2[0], fy, p2[1]], [p2[0], cy, p2[1]], [p1[0], cy, p1[1]]],
                          normal, SurfaceType.WALL, double)

        for prot in room.protrusions:
            self._protrusion_mesh(mesh, prot)
        return mesh

    def _protrusion_mesh(self, mesh, prot):
        ring = np.asarray(prot.polygon, dtype=float)
        if len(ring) < 3:
            return
        lo, hi = prot.bottom_height, prot.top_height
        mesh.add_fan([[x, lo, z] for x, z in ring], [0.0, -1.0, 0.0], SurfaceType.CEILING_PROTRUSION)

        center = ring.mean(axis=0)
        n = len(ring)
        for i in range(n):
            p1, p2 = ring[i], ring[(i + 1) % n]
            d = p2 - p1
            length = np.linalg.norm(d)
            if length == 0:
                continue
            out = np.array([d[1], -d[0]]) / length
            if np.dot(out, (p1 + p2) / 2 - center) < 0:
                out = -out
            mesh.add_quad([[p1[0], lo, p1[1]], [p2[0], lo, p2[1]], [p2[0], hi, p2[1]], [p1[0], hi, p1[1]]],
                          [out[0], 0.0, out[1]], SurfaceType.CEILING_PROTRUSION)
