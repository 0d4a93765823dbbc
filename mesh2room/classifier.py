"""Surface classifier: labels faces and fragments from normal direction and height.

Floor and ceiling heights are estimated on the fly (25th / 75th percentile of
recent samples) and published into the shared ScanStatistics. The classifier
also finds typed edges between differently labelled faces, sizes ceiling
protrusions, and looks for door and window gaps in wall fragments."""

import logging

import numpy as np
import trimesh

from .config import RoomConfig
from .geometry import normalize
from .openings import find_wall_gaps, surface_points
from .statistics import HeightEstimator
from .types import (CeilingProtrusion, ClassifiedSurface, DetectedDoor, DetectedWindow,
                    EdgeType, ProtrusionType, SurfaceType, WallEdge)

log = logging.getLogger(__name__)


def edge_type_for(type_a, type_b, angle, sharp_angle):
    """Edge label for the pair of face types meeting at an edge."""
    pair = {type_a, type_b}
    if pair == {SurfaceType.FLOOR, SurfaceType.WALL}:
        return EdgeType.FLOOR_WALL
    if pair == {SurfaceType.CEILING, SurfaceType.WALL}:
        return EdgeType.CEILING_WALL
    if pair == {SurfaceType.WALL} and angle > sharp_angle:
        return EdgeType.VERTICAL_CORNER
    # everything else, including anything touching an object. Wall/protrusion
    # and floor/ceiling pairs land here too, so beam junctions never reach
    # the vertical-corner set used for room corners.
    return EdgeType.OBJECT_EDGE


def protrusion_kind(width, length):
    area = width * length
    aspect = max(width, length) / max(min(width, length), 0.01)
    if aspect > 5 and area < 2.0:
        return ProtrusionType.BEAM
    if aspect > 3 and area >= 0.5:
        return ProtrusionType.DUCT
    if area < 0.25:
        return ProtrusionType.FIXTURE
    if area > 4.0:
        return ProtrusionType.DROPPED_CEILING
    return ProtrusionType.UNKNOWN


class SurfaceClassifier:
    def __init__(self, statistics, config=None):
        self.statistics = statistics
        self.config = config or RoomConfig()
        cfg = self.config
        self.floor_estimator = HeightEstimator(cfg.floor_percentile, cfg.height_sample_window,
                                               cfg.height_min_samples)
        self.ceiling_estimator = HeightEstimator(cfg.ceiling_percentile, cfg.height_sample_window,
                                                 cfg.height_min_samples)

    def reset(self):
        self.floor_estimator.reset()
        self.ceiling_estimator.reset()

    # ─── Single normal ───

    def classify(self, normal, world_y, record=True):
        cfg = self.config
        if not cfg.classification_enabled:
            return SurfaceType.UNKNOWN
        n = normalize(normal)
        if n is None or not np.isfinite(world_y):
            return SurfaceType.UNKNOWN
        ny = n[1]

        if ny > cfg.horizontal_threshold:
            if record:
                self._add_floor_sample(world_y)
            return SurfaceType.FLOOR

        if ny < -cfg.horizontal_threshold:
            ceiling = self.statistics.ceiling_height
            if ceiling is not None:
                depth = ceiling - world_y
                if cfg.protrusion_min_depth < depth < cfg.protrusion_max_depth:
                    return SurfaceType.CEILING_PROTRUSION
            if record:
                self._add_ceiling_sample(world_y)
            return SurfaceType.CEILING

        if abs(ny) < cfg.wall_threshold:
            return SurfaceType.WALL
        return SurfaceType.OBJECT

    def _add_floor_sample(self, y):
        estimate = self.floor_estimator.add(y)
        if estimate is not None:
            self.statistics.floor_height = estimate

    def _add_ceiling_sample(self, y):
        estimate = self.ceiling_estimator.add(y)
        if estimate is not None:
            self.statistics.ceiling_height = estimate

    # ─── Per face ───

    def _face_geometry(self, fragment):
        """World vertices plus normals, areas, centroids and a validity mask per face."""
        verts = fragment.world_vertices()
        faces = fragment.faces
        n_faces = len(faces)
        normals = np.zeros((n_faces, 3))
        areas = np.zeros(n_faces)
        centers = np.zeros((n_faces, 3))
        valid = np.zeros(n_faces, dtype=bool)
        if n_faces == 0:
            return verts, normals, areas, centers, valid

        in_range = np.all((faces >= 0) & (faces < len(verts)), axis=1)
        idx = np.nonzero(in_range)[0]
        if len(idx):
            tris = verts[faces[idx]]
            with np.errstate(invalid="ignore"):
                tri_normals, ok = trimesh.triangles.normals(tris)
            good = idx[ok]
            normals[good] = tri_normals
            areas[good] = trimesh.triangles.area(tris[ok])
            centers[good] = tris[ok].mean(axis=1)
            valid[good] = np.isfinite(centers[good]).all(axis=1)
        return verts, normals, areas, centers, valid

    def classify_mesh(self, fragment):
        """Per-face surface types; records the fragment's areas and edges."""
        verts, normals, areas, centers, valid = self._face_geometry(fragment)
        face_types = []
        totals = {}
        for i in range(len(fragment.faces)):
            if not valid[i]:
                face_types.append(SurfaceType.UNKNOWN)
                continue
            t = self.classify(normals[i], centers[i][1])
            face_types.append(t)
            totals[t] = totals.get(t, 0.0) + float(areas[i])

        skipped = int(len(valid) - valid.sum())
        if skipped:
            log.debug("fragment %s: skipped %d malformed faces", fragment.identifier, skipped)

        self.statistics.record_areas(fragment.identifier, totals)
        edges = self.detect_edges(fragment.faces, verts, face_types, normals, valid,
                                  source=fragment.identifier)
        self.statistics.record_edges(fragment.identifier, edges)
        return face_types

    def detect_edges(self, faces, world_vertices, face_types, face_normals, valid, source=None):
        """Typed edges along internal mesh edges where the label changes or
        the surface folds sharply. Keeps the sharpest max_edges."""
        cfg = self.config
        faces = np.asarray(faces, dtype=np.int64)
        face_ids = np.nonzero(np.asarray(valid, dtype=bool))[0]
        if len(face_ids) < 2:
            return []

        edges, edge_face = trimesh.geometry.faces_to_edges(faces[face_ids], return_index=True)
        edges = np.sort(edges, axis=1)
        shared = trimesh.grouping.group_rows(edges, require_count=2)
        if len(shared) == 0:
            return []

        candidates = []
        for a, b in shared:
            fa, fb = face_ids[edge_face[a]], face_ids[edge_face[b]]
            ta, tb = face_types[fa], face_types[fb]
            dot = np.clip(np.dot(face_normals[fa], face_normals[fb]), -1.0, 1.0)
            angle = float(np.arccos(dot))
            if ta == tb and angle <= cfg.edge_angle_threshold:
                continue
            start = np.asarray(world_vertices[edges[a][0]], dtype=float)
            end = np.asarray(world_vertices[edges[a][1]], dtype=float)
            if np.linalg.norm(end - start) <= cfg.min_edge_length:
                continue
            kind = edge_type_for(ta, tb, angle, cfg.edge_angle_threshold)
            candidates.append(WallEdge(start, end, kind, angle, source))

        candidates.sort(key=lambda e: -e.angle)
        return candidates[:cfg.max_edges]

    # ─── Per fragment ───

    def classify_fragment(self, fragment):
        """Fragment-level summary from a stride sample of its faces.

        Does not feed the height estimators; classify_mesh already did."""
        verts, normals, areas, _, valid = self._face_geometry(fragment)
        n_faces = len(fragment.faces)
        stride = max(1, n_faces // self.config.fragment_sample_faces)
        sample = [i for i in range(0, n_faces, stride) if valid[i]]

        if not sample:
            lo = verts.min(axis=0) if len(verts) else np.zeros(3)
            hi = verts.max(axis=0) if len(verts) else np.zeros(3)
            return ClassifiedSurface(SurfaceType.UNKNOWN, np.array([0.0, 1.0, 0.0]), 0.0,
                                     fragment.vertex_count, (float(lo[1]), float(hi[1])), (lo, hi), 0.0)

        sample = np.array(sample)
        weighted = (normals[sample] * areas[sample][:, None]).sum(axis=0)
        total_area = float(areas[sample].sum())
        corners = verts[fragment.faces[sample]].reshape(-1, 3)
        lo, hi = corners.min(axis=0), corners.max(axis=0)

        avg_normal = normalize(weighted) if total_area > 0 else None
        if avg_normal is None:
            avg_normal = np.array([0.0, 1.0, 0.0])
        surface_type = self.classify(avg_normal, (lo[1] + hi[1]) / 2, record=False)
        confidence = min(1.0, float(np.linalg.norm(weighted)) / (total_area + 0.001))

        return ClassifiedSurface(surface_type, avg_normal, total_area, fragment.vertex_count,
                                 (float(lo[1]), float(hi[1])), (lo, hi), confidence)

    # ─── Protrusions ───

    def detect_protrusion(self, identifier, fragment, surface_type):
        if surface_type != SurfaceType.CEILING_PROTRUSION:
            return None
        ceiling = self.statistics.ceiling_height
        if ceiling is None:
            return None
        verts = fragment.world_vertices()
        if not len(verts):
            return None

        lo, hi = verts.min(axis=0), verts.max(axis=0)
        depth = ceiling - (lo[1] + hi[1]) / 2
        width, length = float(hi[0] - lo[0]), float(hi[2] - lo[2])
        protrusion = CeilingProtrusion(str(identifier), (lo, hi), float(depth), width * length,
                                       protrusion_kind(width, length))
        self.statistics.record_protrusion(protrusion)
        log.debug("protrusion %s: %s depth=%.2f area=%.2f", identifier, protrusion.kind.value,
                  protrusion.depth, protrusion.area)
        return protrusion

    # ─── Doors and windows ───

    def detect_openings(self, fragment, wall_normal, source=None):
        """Classify occupancy-grid gaps on a wall fragment as doors or windows."""
        cfg = self.config
        floor = self.statistics.floor_height
        if floor is None:
            return [], []
        source = fragment.identifier if source is None else source
        wall_normal = np.asarray(wall_normal, dtype=float)

        points = surface_points(fragment.world_vertices(), fragment.faces, cfg.grid_resolution)
        gaps = find_wall_gaps(points, wall_normal, cfg.grid_resolution,
                              cfg.min_gap_size, cfg.max_grid_cells)
        doors, windows = [], []
        for gap in gaps:
            from_floor = gap.bottom - floor
            width, height = gap.width, gap.height
            is_door = (from_floor < cfg.door_max_bottom_from_floor
                       and cfg.door_min_width <= width <= cfg.door_max_width
                       and cfg.door_min_height <= height <= cfg.door_max_height)
            is_window = (not is_door
                         and from_floor >= cfg.window_min_bottom_from_floor
                         and width >= cfg.window_min_width
                         and height >= cfg.window_min_height)

            if is_door:
                door = DetectedDoor(gap.center, width, height, wall_normal, gap.bounding_box(),
                                    min(1.0, gap.cells / 100.0), source=source)
                if not self._near(door.position, self.statistics.detected_doors):
                    self.statistics.detected_doors.append(door)
                    doors.append(door)
            elif is_window:
                window = DetectedWindow(gap.center, width, height, from_floor, wall_normal,
                                        gap.bounding_box(), min(1.0, gap.cells / 50.0), source=source)
                if not self._near(window.position, self.statistics.detected_windows):
                    self.statistics.detected_windows.append(window)
                    windows.append(window)

        if doors or windows:
            log.debug("fragment %s: %d doors, %d windows", source, len(doors), len(windows))
        return doors, windows

    def _near(self, position, existing):
        limit = self.config.opening_dedupe_distance
        return any(np.linalg.norm(o.position - position) < limit for o in existing)
