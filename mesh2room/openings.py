"""Occupancy-grid gap finding on wall fragments.

A wall's vertices, plus lattice samples across its triangles, are dropped
into a 2D grid (width along the wall, height along Y). Empty axis-aligned
rectangles are found with a greedy expand-right / expand-up scan, which
misses L-shaped or partly occluded gaps but is cheap enough to run per
fragment. Rectangle edges are then pulled out to the geometry that bounds
them, so a gap is measured against the observed jambs rather than the cell
lattice."""

import logging
from dataclasses import dataclass

import numpy as np

log = logging.getLogger(__name__)


@dataclass
class WallGap:
    start: float        # world coordinate along the width axis
    end: float
    bottom: float       # world Y
    top: float
    cells: int
    center: np.ndarray  # world 3D
    x_aligned: bool     # wall normal mostly along X, width runs along Z

    @property
    def width(self):
        return self.end - self.start

    @property
    def height(self):
        return self.top - self.bottom

    def bounding_box(self, thickness=0.1):
        if self.x_aligned:
            lo = [self.center[0] - thickness, self.bottom, self.start]
            hi = [self.center[0] + thickness, self.top, self.end]
        else:
            lo = [self.start, self.bottom, self.center[2] - thickness]
            hi = [self.end, self.top, self.center[2] + thickness]
        return np.array(lo), np.array(hi)


class WallGrid:
    """Boolean occupancy over a wall's width x height extent."""

    def __init__(self, world_vertices, x_aligned, cell):
        pts = np.asarray(world_vertices, dtype=float)
        self.cell = cell
        self.x_aligned = x_aligned
        self.bbox_min = pts.min(axis=0)
        self.bbox_max = pts.max(axis=0)

        axis = 2 if x_aligned else 0
        self.w = pts[:, axis] - self.bbox_min[axis]
        self.h = pts[:, 1] - self.bbox_min[1]
        self.w_origin = self.bbox_min[axis]
        self.h_origin = self.bbox_min[1]
        self.w_extent = self.bbox_max[axis] - self.bbox_min[axis]
        self.h_extent = self.bbox_max[1] - self.bbox_min[1]

        self.shape = (int(self.w_extent / cell) + 1, int(self.h_extent / cell) + 1)
        self.col = (self.w / cell).astype(int)
        self.row = (self.h / cell).astype(int)
        inside = (self.col >= 0) & (self.col < self.shape[0]) & (self.row >= 0) & (self.row < self.shape[1])

        self.occupied = np.zeros(self.shape, dtype=bool)
        self.occupied[self.col[inside], self.row[inside]] = True

    def _vertices_in(self, cols, rows):
        return ((self.col >= cols[0]) & (self.col <= cols[1])
                & (self.row >= rows[0]) & (self.row <= rows[1]))

    def refine(self, x0, y0, width, height):
        """Local (start, end, bottom, top) of a cell rectangle, snapped to
        the nearest observed geometry on each side."""
        x1, y1 = x0 + width - 1, y0 + height - 1
        start, end = x0 * self.cell, min((x1 + 1) * self.cell, self.w_extent)
        bottom, top = y0 * self.cell, min((y1 + 1) * self.cell, self.h_extent)

        if x0 > 0:
            m = self._vertices_in((x0 - 1, x0 - 1), (y0, y1))
            if m.any():
                start = self.w[m].max()
        if x1 < self.shape[0] - 1:
            m = self._vertices_in((x1 + 1, x1 + 1), (y0, y1))
            if m.any():
                end = self.w[m].min()
        if y0 > 0:
            m = self._vertices_in((x0, x1), (y0 - 1, y0 - 1))
            if m.any():
                bottom = self.h[m].max()
        if y1 < self.shape[1] - 1:
            m = self._vertices_in((x0, x1), (y1 + 1, y1 + 1))
            if m.any():
                top = self.h[m].min()
        return start, end, bottom, top


def surface_points(vertices, faces=None, spacing=0.1, max_steps=200):
    """Vertices plus a barycentric lattice over each triangle, no coarser
    than spacing, so large flat faces still mark the cells they cover."""
    pts = np.asarray(vertices, dtype=float).reshape(-1, 3)
    if faces is None or not len(pts):
        return pts
    faces = np.asarray(faces, dtype=np.int64).reshape(-1, 3)
    faces = faces[((faces >= 0) & (faces < len(pts))).all(axis=1)]
    tri = pts[faces]
    tri = tri[np.isfinite(tri).all(axis=(1, 2))]
    if not len(tri):
        return pts

    longest = np.linalg.norm(tri - np.roll(tri, 1, axis=1), axis=2).max(axis=1)
    steps = np.clip(np.ceil(longest / spacing), 1, max_steps).astype(int)
    samples = [pts]
    for k in np.unique(steps[steps > 1]):
        i, j = np.meshgrid(np.arange(k + 1), np.arange(k + 1), indexing="ij")
        keep = i + j <= k
        bary = np.stack([i[keep], j[keep], k - i[keep] - j[keep]], axis=1) / k
        samples.append(np.einsum("mk,nkd->nmd", bary, tri[steps == k]).reshape(-1, 3))
    return np.vstack(samples)


def is_x_aligned(wall_normal):
    n = np.asarray(wall_normal, dtype=float)
    return abs(n[0]) > abs(n[2])


def wall_occupancy(world_vertices, wall_normal, cell=0.1, max_cells=200):
    pts = np.asarray(world_vertices, dtype=float)
    if len(pts) == 0 or not np.all(np.isfinite(pts)):
        return None
    grid = WallGrid(pts, is_x_aligned(wall_normal), cell)
    if grid.shape[0] >= max_cells or grid.shape[1] >= max_cells:
        log.warning("wall grid %dx%d exceeds %d cells, skipping", grid.shape[0], grid.shape[1], max_cells)
        return None
    return grid


def find_empty_rectangles(grid, min_cells):
    """Greedy maximal empty rectangles, scanning column by column.

    Returns (x0, y0, width, height) in cells for rectangles whose sides are
    both at least min_cells."""
    occupied = np.asarray(grid, dtype=bool)
    if occupied.ndim != 2 or occupied.size == 0:
        return []
    n_cols, n_rows = occupied.shape
    blocked = occupied.copy()
    rects = []

    for x in range(n_cols):
        for y in range(n_rows):
            if blocked[x, y]:
                continue
            max_x = x
            while max_x + 1 < n_cols and not blocked[max_x + 1, y]:
                max_x += 1

            max_y = y
            while max_y + 1 < n_rows and not blocked[x:max_x + 1, max_y + 1].any():
                max_y += 1

            blocked[x:max_x + 1, y:max_y + 1] = True
            w, h = max_x - x + 1, max_y - y + 1
            if w >= min_cells and h >= min_cells:
                rects.append((x, y, w, h))
    return rects


def find_wall_gaps(world_vertices, wall_normal, cell=0.1, min_size=0.3, max_cells=200):
    grid = wall_occupancy(world_vertices, wall_normal, cell, max_cells)
    if grid is None:
        return []

    min_cells = max(1, int(round(min_size / cell)))
    gaps = []
    for x0, y0, w, h in find_empty_rectangles(grid.occupied, min_cells):
        start, end, bottom, top = grid.refine(x0, y0, w, h)
        start += grid.w_origin
        end += grid.w_origin
        bottom += grid.h_origin
        top += grid.h_origin

        mid_w = (start + end) / 2
        mid_h = (bottom + top) / 2
        if grid.x_aligned:
            center = np.array([(grid.bbox_min[0] + grid.bbox_max[0]) / 2, mid_h, mid_w])
        else:
            center = np.array([mid_w, mid_h, (grid.bbox_min[2] + grid.bbox_max[2]) / 2])
        gaps.append(WallGap(start, end, bottom, top, w * h, center, grid.x_aligned))

    log.debug("found %d wall gaps", len(gaps))
    return gaps
