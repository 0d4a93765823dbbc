"""Scan session: the single writer that feeds fragments through the pipeline.

Fragments arrive repeatedly as the capture side re-observes a surface; a
later fragment with the same identifier replaces the earlier one everywhere
(statistics, wall segments, openings). Read operations work on a snapshot
so they can run while capture continues."""

import logging

import numpy as np

from .classifier import SurfaceClassifier
from .config import RoomConfig
from .reconstructor import WallReconstructor
from .room_builder import RoomBuilder
from .simplifier import RoomSimplifier
from .statistics import ScanStatistics
from .types import DetectedDoor, DetectedWindow, OpeningType, SurfaceType

log = logging.getLogger(__name__)


class ScanSession:
    def __init__(self, config=None):
        self.config = config or RoomConfig()
        self.statistics = ScanStatistics()
        self.classifier = SurfaceClassifier(self.statistics, self.config)
        self.builder = RoomBuilder(self.statistics, self.config)
        self.reconstructor = WallReconstructor(self.config)
        self.simplifier = RoomSimplifier(self.config)
        self.fragments = {}
        self.surfaces = {}

    def reset(self):
        self.statistics.reset()
        self.classifier.reset()
        self.builder.reset()
        self.fragments.clear()
        self.surfaces.clear()

    # ─── Capture side ───

    def on_fragment_added(self, fragment):
        ident = fragment.identifier
        if ident in self.fragments:
            self._drop(ident)
        self.fragments[ident] = fragment

        self.classifier.classify_mesh(fragment)
        surface = self.classifier.classify_fragment(fragment)
        self.surfaces[ident] = surface
        self.statistics.record_surface(ident, surface.surface_type)

        if surface.surface_type == SurfaceType.CEILING_PROTRUSION:
            self.classifier.detect_protrusion(ident, fragment, surface.surface_type)
        elif surface.surface_type == SurfaceType.WALL:
            self.classifier.detect_openings(fragment, surface.average_normal, source=ident)

        stats = self.statistics
        was_calibrated = self.builder.is_calibrated
        self.builder.calibrate(stats.floor_height, stats.ceiling_height)
        if not was_calibrated and self.builder.is_calibrated:
            self._replay_walls(skip=ident)
        if surface.surface_type == SurfaceType.WALL and self.builder.is_calibrated:
            self._build_wall(ident)

        log.debug("fragment %s: %s (%d faces, %.2fm²)", ident, surface.surface_type.value,
                  fragment.face_count, surface.area)
        return surface

    on_fragment_updated = on_fragment_added

    def _build_wall(self, identifier):
        fragment = self.fragments[identifier]
        self.builder.process_vertical_surface(fragment.vertices, self.surfaces[identifier].average_normal,
                                              fragment.transform, identifier, faces=fragment.faces)

    def _replay_walls(self, skip=None):
        """Walls that arrived before floor and ceiling were known."""
        waiting = [i for i, s in self.surfaces.items()
                   if i != skip and s.surface_type == SurfaceType.WALL]
        for ident in waiting:
            self.classifier.detect_openings(self.fragments[ident], self.surfaces[ident].average_normal,
                                            source=ident)
            self._build_wall(ident)
        if waiting:
            log.info("calibrated: replayed %d earlier wall fragments", len(waiting))

    def on_fragment_removed(self, identifier):
        identifier = str(identifier)
        if identifier not in self.fragments:
            return
        self._drop(identifier)
        del self.fragments[identifier]

    def _drop(self, identifier):
        self.statistics.forget(identifier)
        self.builder.remove_surface(identifier)
        self.surfaces.pop(identifier, None)

    # ─── Confirmed observations ───

    def confirm_corner(self, point):
        self.statistics.user_confirmed_corners.append(np.asarray(point, dtype=float))

    def confirm_opening(self, kind, point, wall_normal, width=None, height=None):
        """Record an opening the user pointed at. It replaces inferred
        openings of the same family nearby."""
        cfg = self.config
        stats = self.statistics
        kind = OpeningType(kind)
        point = np.asarray(point, dtype=float)
        wall_normal = np.asarray(wall_normal, dtype=float)
        floor = stats.floor_height if stats.floor_height is not None else 0.0
        limit = cfg.opening_dedupe_distance

        if kind in (OpeningType.DOOR, OpeningType.GLASS_DOOR):
            width = cfg.confirmed_door_width if width is None else width
            if height is None:
                room = stats.estimated_room_height
                height = room if kind == OpeningType.GLASS_DOOR and room else cfg.confirmed_door_height
            position = np.array([point[0], floor + height / 2, point[2]])
            stats.detected_doors = [d for d in stats.detected_doors
                                    if np.linalg.norm(d.position - position) >= limit]
            box = (position - [width / 2, height / 2, 0.1], position + [width / 2, height / 2, 0.1])
            record = DetectedDoor(position, width, height, wall_normal, box, 1.0, kind=kind)
            stats.detected_doors.append(record)
        else:
            width = cfg.confirmed_window_width if width is None else width
            height = cfg.confirmed_window_height if height is None else height
            bottom = max(0.0, point[1] - height / 2 - floor)
            position = np.array([point[0], floor + bottom + height / 2, point[2]])
            stats.detected_windows = [w for w in stats.detected_windows
                                      if np.linalg.norm(w.position - position) >= limit]
            box = (position - [width / 2, height / 2, 0.1], position + [width / 2, height / 2, 0.1])
            record = DetectedWindow(position, width, height, bottom, wall_normal, box, 1.0, kind=kind)
            stats.detected_windows.append(record)
        return record

    # ─── Read side ───

    @property
    def vertex_count(self):
        return sum(f.vertex_count for f in self.fragments.values())

    @property
    def face_count(self):
        return sum(f.face_count for f in self.fragments.values())

    @property
    def wall_segments(self):
        return self.builder.wall_segments

    @property
    def room_corners(self):
        return self.builder.room_corners

    def summary(self):
        return self.statistics.summary()

    def snapshot(self):
        return self.statistics.snapshot()

    def reconstruct_walls(self):
        return self.reconstructor.reconstruct(self.snapshot())

    def reconstruct(self):
        return self.reconstructor.build(self.snapshot())

    def simplified_room(self):
        return self.simplifier.extract_simplified_room(list(self.fragments.values()), self.snapshot())

    def simplified_mesh(self):
        return self.simplifier.generate_mesh(self.simplified_room())
