"""Wall reconstructor: idealised room geometry from corners and openings.

Works on a ScanStatistics snapshot and never mutates it. Corners confirmed by
the user win over inferred ones; the closed corner polygon is turned into
straight full-height walls with door and window cut-outs plus a fan
triangulated floor and ceiling."""

import logging

import numpy as np

from .config import RoomConfig
from .geometry import from_xz, order_clockwise, project_onto_segment, snap_nearby_corners, to_xz
from .mesh import RoomMesh
from .types import EdgeType, OpeningType, ReconstructedOpening, ReconstructedWall, SurfaceType

log = logging.getLogger(__name__)

BAND_EPS = 1e-4


class WallReconstructor:
    def __init__(self, config=None):
        self.config = config or RoomConfig()

    def room_heights(self, statistics):
        cfg = self.config
        floor_y = statistics.floor_height if statistics.floor_height is not None else 0.0
        ceiling_y = statistics.ceiling_height
        if ceiling_y is None or ceiling_y - floor_y < cfg.min_room_height:
            ceiling_y = floor_y + cfg.default_ceiling_height
        return floor_y, ceiling_y

    def reconstruct(self, statistics):
        floor_y, ceiling_y = self.room_heights(statistics)
        corners = self.extract_corners(statistics.user_confirmed_corners,
                                       self.inferred_corners(statistics))
        if len(corners) < 3:
            log.info("reconstruct: %d corners, not enough for a room", len(corners))
            return []

        walls = self.generate_walls(corners, floor_y, ceiling_y,
                                    statistics.detected_doors, statistics.detected_windows)
        log.info("reconstruct: %d walls from %d corners, floor=%.2f ceiling=%.2f",
                 len(walls), len(corners), floor_y, ceiling_y)
        return walls

    # ─── Corners ───

    def corners_from_edges(self, edges):
        points = [to_xz(e.midpoint) for e in edges if e.edge_type == EdgeType.VERTICAL_CORNER]
        return snap_nearby_corners(points, self.config.reconstructor_snap_distance)

    def inferred_corners(self, statistics):
        points = [to_xz(c.position) for c in statistics.room_corners]
        points += self.corners_from_edges(statistics.detected_edges)
        return points

    def extract_corners(self, confirmed, inferred):
        """Confirmed corners first, inferred ones only where nothing was
        confirmed nearby; then snapped and ordered clockwise."""
        snap = self.config.reconstructor_snap_distance
        corners = [to_xz(p) if len(p) == 3 else np.asarray(p, dtype=float) for p in confirmed]
        n_confirmed = len(corners)
        for p in inferred:
            p = np.asarray(p, dtype=float)
            if not any(np.linalg.norm(c - p) < snap * 2 for c in corners[:n_confirmed]):
                corners.append(p)

        corners = snap_nearby_corners(corners, snap)
        if len(corners) < 3:
            return [np.asarray(c) for c in corners]
        return list(order_clockwise(corners))

    # ─── Walls ───

    def generate_walls(self, corners, floor_y, ceiling_y, doors=(), windows=()):
        walls = []
        n = len(corners)
        for i in range(n):
            start = np.asarray(corners[i], dtype=float)
            end = np.asarray(corners[(i + 1) % n], dtype=float)
            d = end - start
            length = np.linalg.norm(d)
            if length < self.config.min_wall_length:
                continue
            d = d / length
            normal = np.array([d[1], 0.0, -d[0]])
            openings = self.find_openings(start, end, floor_y, ceiling_y, doors, windows)
            walls.append(ReconstructedWall(from_xz(start, floor_y), from_xz(end, floor_y),
                                           floor_y, ceiling_y, normal, openings))
        return walls

    def find_openings(self, start, end, floor_y, ceiling_y, doors=(), windows=()):
        cfg = self.config
        length = float(np.linalg.norm(np.asarray(end) - np.asarray(start)))
        openings = []

        def place(record, bottom_y, top_y):
            offset, _, distance = project_onto_segment(to_xz(record.position), start, end)
            if distance >= cfg.opening_proximity:
                return
            start_offset = max(0.0, offset - record.width / 2)
            width = min(record.width, length - start_offset)
            if width <= 0:
                return
            openings.append(ReconstructedOpening(record.kind, bottom_y, min(top_y, ceiling_y),
                                                 start_offset, width))

        for door in doors:
            top = ceiling_y if door.kind == OpeningType.GLASS_DOOR else floor_y + door.height
            place(door, floor_y, top)
        for window in windows:
            bottom = floor_y + window.height_from_floor
            place(window, bottom, bottom + window.height)

        openings.sort(key=lambda o: o.start_offset)
        return self.merge_openings(openings)

    def merge_openings(self, openings):
        gap = self.config.opening_merge_gap
        out = []
        for o in openings:
            if out and out[-1].end_offset >= o.start_offset - gap:
                last = out[-1]
                out[-1] = ReconstructedOpening(last.kind, min(last.bottom_y, o.bottom_y),
                                               max(last.top_y, o.top_y), last.start_offset,
                                               max(last.end_offset, o.end_offset) - last.start_offset)
            else:
                out.append(o)
        return out

    # ─── Mesh ───

    def generate_wall_mesh(self, wall, mesh=None):
        mesh = mesh if mesh is not None else RoomMesh()
        double = self.config.double_sided
        d = wall.direction

        def point(offset, y):
            p = wall.start + d * offset
            return np.array([p[0], y, p[2]])

        def quad(o0, o1, y0, y1):
            mesh.add_quad([point(o0, y0), point(o1, y0), point(o1, y1), point(o0, y1)],
                          wall.normal, SurfaceType.WALL, double)

        current = 0.0
        for o in wall.openings:
            if o.start_offset > current + BAND_EPS:
                quad(current, o.start_offset, wall.floor_y, wall.ceiling_y)
            if o.bottom_y > wall.floor_y + BAND_EPS:
                quad(o.start_offset, o.end_offset, wall.floor_y, o.bottom_y)
            if o.top_y < wall.ceiling_y - BAND_EPS:
                quad(o.start_offset, o.end_offset, o.top_y, wall.ceiling_y)
            current = max(current, o.end_offset)
        if current < wall.length - BAND_EPS:
            quad(current, wall.length, wall.floor_y, wall.ceiling_y)
        return mesh

    def generate_floor_ceiling(self, corners, floor_y, ceiling_y, mesh=None):
        mesh = mesh if mesh is not None else RoomMesh()
        if len(corners) < 3:
            return mesh
        double = self.config.double_sided
        mesh.add_fan([from_xz(c, floor_y) for c in corners], [0.0, 1.0, 0.0],
                     SurfaceType.FLOOR, double)
        mesh.add_fan([from_xz(c, ceiling_y) for c in corners], [0.0, -1.0, 0.0],
                     SurfaceType.CEILING, double)
        return mesh

    def generate_mesh(self, walls, corners, floor_y, ceiling_y):
        mesh = RoomMesh()
        for wall in walls:
            self.generate_wall_mesh(wall, mesh)
        self.generate_floor_ceiling(corners, floor_y, ceiling_y, mesh)
        return mesh

    def build(self, statistics):
        """Reconstructed room mesh, empty while there are too few corners."""
        walls = self.reconstruct(statistics)
        if not walls:
            return RoomMesh()
        floor_y, ceiling_y = self.room_heights(statistics)
        corners = self.extract_corners(statistics.user_confirmed_corners,
                                       self.inferred_corners(statistics))
        return self.generate_mesh(walls, corners, floor_y, ceiling_y)
