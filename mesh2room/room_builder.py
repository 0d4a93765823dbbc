"""Room builder: turns calibrated vertical fragments into wall segments and corners.

A vertical fragment counts as a wall only when it runs from the floor to near
the ceiling; anything shorter is furniture. Walls seen in several fragments are
merged into one segment, and corners are inferred where two roughly
perpendicular segments meet. All heights handled here are relative to the
calibrated floor."""

import copy
import logging
from dataclasses import dataclass

import numpy as np
import trimesh

from .config import RoomConfig
from .geometry import EPS, normalize
from .openings import find_wall_gaps, surface_points
from .types import OpeningType, RoomCorner, WallOpening, WallSegment

log = logging.getLogger(__name__)


@dataclass
class PartialWall:
    """Wall piece that reaches the ceiling but not the floor."""
    identifier: str
    start: np.ndarray
    end: np.ndarray
    normal: np.ndarray
    min_height: float
    max_height: float


def wall_direction(normal_2d):
    """Unit direction along a wall with a fixed sign, so that every
    observation of one wall runs the same way."""
    d = np.array([-normal_2d[1], normal_2d[0]])
    if d[0] < -EPS or (abs(d[0]) <= EPS and d[1] < 0):
        d = -d
    return d


def _line_extent(points_xz, normal_2d):
    d = wall_direction(normal_2d)
    s = points_xz @ d
    offset = float(np.mean(points_xz @ normal_2d))
    base = normal_2d * offset
    return base + d * s.min(), base + d * s.max()


class RoomBuilder:
    def __init__(self, statistics, config=None):
        self.statistics = statistics
        self.config = config or RoomConfig()
        self.reset()

    def reset(self):
        self.floor_height = None
        self.ceiling_height = None
        self.wall_segments = []
        self.room_corners = []
        self.partial_walls = []
        self.detected_openings = []
        self._observations = {}
        self._next_id = 0

    # ─── Calibration ───

    def calibrate(self, floor_y=None, ceiling_y=None):
        if floor_y is not None:
            self.floor_height = float(floor_y)
        if ceiling_y is not None:
            self.ceiling_height = float(ceiling_y)

    def calibrate_floor(self, y):
        self.calibrate(floor_y=y)

    def calibrate_ceiling(self, y):
        self.calibrate(ceiling_y=y)

    @property
    def room_height(self):
        if self.floor_height is None or self.ceiling_height is None:
            return 0.0
        return self.ceiling_height - self.floor_height

    @property
    def is_calibrated(self):
        return self.room_height > 0

    def normalized_y(self, y):
        return y - (self.floor_height or 0.0)

    # ─── Vertical surfaces ───

    def process_vertical_surface(self, vertices, normal, transform=None, identifier=None, faces=None):
        """Classify a vertical fragment as wall, partial wall or furniture.

        Returns the fragment's own WallSegment when it is a wall. With faces,
        gap finding also sees the interior of large triangles."""
        if not self.is_calibrated:
            return None
        cfg = self.config
        if identifier is None:
            identifier = f"surface-{self._next_id}"
            self._next_id += 1
        identifier = str(identifier)

        world = np.asarray(vertices, dtype=float).reshape(-1, 3)
        if transform is not None:
            world = trimesh.transform_points(world, np.asarray(transform, dtype=float))
        dense = surface_points(world, faces, cfg.grid_resolution)
        world = world[np.isfinite(world).all(axis=1)]
        dense = dense[np.isfinite(dense).all(axis=1)]
        n2 = normalize([normal[0], normal[2]])
        if len(world) == 0 or n2 is None:
            return None

        heights = self.normalized_y(world[:, 1])
        min_h, max_h = float(heights.min()), float(heights.max())
        reaches_floor = min_h <= cfg.wall_height_tolerance
        reaches_ceiling = max_h >= self.room_height * cfg.ceiling_reach_ratio

        self._observations.pop(identifier, None)
        segment = None
        if reaches_floor and reaches_ceiling:
            start, end = _line_extent(world[:, [0, 2]], n2)
            segment = WallSegment(identifier, start, end, n2, max_h - min_h, min_h)
            if segment.length < cfg.min_wall_length:
                log.debug("surface %s: wall too short (%.2fm)", identifier, segment.length)
                segment = None
            else:
                normal3 = np.array([n2[0], 0.0, n2[1]])
                for gap in find_wall_gaps(dense, normal3, cfg.grid_resolution,
                                          cfg.min_gap_size, cfg.max_grid_cells):
                    bottom = self.normalized_y(gap.bottom)
                    top = self.normalized_y(gap.top)
                    kind = self.classify_opening(bottom, top, gap.width, gap.height)
                    if kind is not None:
                        opening = WallOpening(kind, gap.center, gap.width, gap.height, bottom, n2)
                        segment.openings.append(self.place_opening(segment, opening))
                self._observations[identifier] = segment
        elif reaches_ceiling:
            start, end = _line_extent(world[:, [0, 2]], n2)
            self._observations[identifier] = PartialWall(identifier, start, end, n2, min_h, max_h)
        else:
            log.debug("surface %s: furniture (%.2f-%.2fm)", identifier, min_h, max_h)

        self._rebuild()
        return segment

    def remove_surface(self, identifier):
        if self._observations.pop(str(identifier), None) is not None:
            self._rebuild()

    def _rebuild(self):
        segments = [copy.deepcopy(o) for o in self._observations.values() if isinstance(o, WallSegment)]
        self.partial_walls = [o for o in self._observations.values() if isinstance(o, PartialWall)]
        self.wall_segments = self._merge_all(segments)
        for partial in self.partial_walls:
            self._reconcile_partial(partial)
        self._update_corners()

    def _merge_all(self, segments):
        merged = list(segments)
        changed = True
        while changed:
            changed = False
            out = []
            for seg in merged:
                for i, existing in enumerate(out):
                    if self.can_merge(existing, seg):
                        out[i] = self.merge_segments(existing, seg)
                        changed = True
                        break
                else:
                    out.append(seg)
            merged = out
        return merged

    # ─── Merging ───

    def _lateral_offset(self, a, point):
        return abs(float(np.dot(point - a.start, a.normal)))

    def _overlaps(self, a, b_start, b_end):
        d = a.direction
        s = sorted((float(np.dot(b_start - a.start, d)), float(np.dot(b_end - a.start, d))))
        return s[1] >= 0.0 and s[0] <= a.length

    def can_merge(self, a, b):
        cfg = self.config
        if float(np.dot(a.normal, b.normal)) <= cfg.segment_merge_dot:
            return False
        gap = min(np.linalg.norm(a.end - b.start), np.linalg.norm(a.start - b.end))
        if gap < cfg.segment_merge_distance:
            return True
        return (self._lateral_offset(a, b.center) < cfg.segment_merge_distance
                and self._overlaps(a, b.start, b.end))

    def merge_segments(self, a, b):
        """Union of both extents along a's line; a keeps its identity."""
        d = wall_direction(a.normal)
        base = a.start - d * float(np.dot(a.start, d))
        s = [float(np.dot(p, d)) for p in (a.start, a.end, b.start, b.end)]
        merged = WallSegment(a.identifier, base + d * min(s), base + d * max(s), a.normal.copy(),
                             max(a.height, b.height), min(a.bottom_y, b.bottom_y))

        limit = self.config.opening_dedupe_distance
        for o in list(a.openings) + list(b.openings):
            if any(k.kind == o.kind and np.linalg.norm(k.position - o.position) < limit
                   for k in merged.openings):
                continue
            merged.openings.append(self.place_opening(merged, o))
        return merged

    def place_opening(self, segment, opening):
        """Copy of an opening with its offsets measured along segment."""
        placed = copy.copy(opening)
        pos = np.array([opening.position[0], opening.position[2]])
        t = float(np.dot(pos - segment.start, segment.direction))
        start = float(np.clip(t - opening.width / 2, 0.0, segment.length))
        placed.start_offset = start
        placed.width = float(min(opening.width, segment.length - start))
        mid = segment.start + segment.direction * (start + placed.width / 2)
        placed.position = np.array([mid[0], opening.position[1], mid[1]])
        return placed

    def _reconcile_partial(self, partial):
        """Best effort: a wall piece hanging from the ceiling over a segment
        marks an opening below it."""
        cfg = self.config
        for seg in self.wall_segments:
            if float(np.dot(seg.normal, partial.normal)) <= cfg.segment_merge_dot:
                continue
            mid = (partial.start + partial.end) / 2
            if self._lateral_offset(seg, mid) >= cfg.segment_merge_distance:
                continue
            if not self._overlaps(seg, partial.start, partial.end):
                continue
            width = float(np.linalg.norm(partial.end - partial.start))
            top = partial.min_height
            kind = self.classify_opening(0.0, top, width, top)
            if kind is None:
                return
            center = np.array([mid[0], (self.floor_height or 0.0) + top / 2, mid[1]])
            opening = WallOpening(kind, center, width, top, 0.0, seg.normal.copy())
            if not any(o.kind == kind and np.linalg.norm(o.position - center) < cfg.opening_dedupe_distance
                       for o in seg.openings):
                seg.openings.append(self.place_opening(seg, opening))
            return

    # ─── Corners ───

    def find_corner(self, a, b):
        cfg = self.config
        dot = float(np.dot(a.normal, b.normal))
        if abs(dot) >= cfg.corner_perpendicular_dot:
            return None

        pairs = []
        for p in (a.start, a.end):
            for q in (b.start, b.end):
                mid = (p + q) / 2
                pairs.append((float(np.linalg.norm(p - q)), float(mid[0]), float(mid[1])))
        dist, mx, mz = min(pairs)
        if dist >= cfg.corner_snap_distance:
            return None

        floor = self.floor_height or 0.0
        angle = float(np.arccos(np.clip(dot, -1.0, 1.0)))
        return RoomCorner(np.array([mx, floor, mz]), angle,
                          tuple(sorted((a.identifier, b.identifier))))

    def _update_corners(self):
        corners = []
        segs = self.wall_segments
        for i in range(len(segs)):
            for j in range(i + 1, len(segs)):
                corner = self.find_corner(segs[i], segs[j])
                if corner is not None:
                    corners.append(corner)
        self.room_corners = corners
        self.statistics.room_corners = list(corners)
        log.debug("room builder: %d segments, %d corners, %d partial walls",
                  len(segs), len(corners), len(self.partial_walls))

    # ─── Openings ───

    def classify_opening(self, bottom, top, width, height):
        """Opening type from floor-relative bottom/top and size, or None."""
        cfg = self.config
        room = self.room_height
        tol = cfg.wall_height_tolerance

        if (bottom <= tol and cfg.door_min_height <= height <= cfg.door_max_height
                and cfg.door_min_width <= width <= cfg.door_max_width):
            return OpeningType.DOOR
        if (bottom >= cfg.builder_window_min_from_floor and top < room - tol
                and width >= cfg.window_min_width and height >= cfg.builder_window_min_height):
            return OpeningType.WINDOW
        if bottom <= tol and top >= room * cfg.ceiling_reach_ratio and width >= cfg.door_min_width:
            return OpeningType.GLASS_DOOR
        if bottom > tol and top < room - tol and width >= cfg.pass_through_min_width:
            return OpeningType.PASS_THROUGH
        return None

    def process_no_return_area(self, bounds_min, bounds_max, adjacent_wall_normal):
        """Area where the sensor got no returns, usually glass."""
        lo = np.asarray(bounds_min, dtype=float)
        hi = np.asarray(bounds_max, dtype=float)
        bottom, top = self.normalized_y(lo[1]), self.normalized_y(hi[1])
        width = float(np.linalg.norm(hi[[0, 2]] - lo[[0, 2]]))
        height = top - bottom

        kind = self.classify_opening(bottom, top, width, height)
        if kind is None:
            return None
        n = np.asarray(adjacent_wall_normal, dtype=float)
        opening = WallOpening(kind, (lo + hi) / 2, width, height, bottom, np.array([n[0], n[2]]))
        self.detected_openings.append(opening)
        return opening
