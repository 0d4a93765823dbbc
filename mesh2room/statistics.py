"""Per-scan accumulator shared by the pipeline stages.

One ScanStatistics exists per scan and is handed to each stage's constructor.
Contributions are keyed by fragment identifier so that a re-observed fragment
replaces what it contributed before instead of adding to it."""

import copy
from collections import deque

import numpy as np

from .types import EdgeType, ProtrusionType, SurfaceType


class HeightEstimator:
    """Quantile over a sliding window of height samples."""

    def __init__(self, quantile, window=100, min_samples=10):
        self.quantile = quantile
        self.min_samples = min_samples
        self.samples = deque(maxlen=window)
        self.estimate = None

    def add(self, y):
        self.samples.append(float(y))
        if len(self.samples) >= self.min_samples:
            ordered = sorted(self.samples)
            self.estimate = ordered[int(len(ordered) * self.quantile)]
        return self.estimate

    def reset(self):
        self.samples.clear()
        self.estimate = None

    def __len__(self):
        return len(self.samples)


class ScanStatistics:
    def __init__(self):
        self.reset()

    def reset(self):
        self.floor_height = None
        self.ceiling_height = None
        self._areas = {}
        self._edges = {}
        self._protrusions = {}
        self._surface_types = {}
        self.detected_doors = []
        self.detected_windows = []
        self.user_confirmed_corners = []
        self.room_corners = []

    # ── per-fragment contributions ──

    def record_areas(self, identifier, areas):
        self._areas.pop(identifier, None)
        self._areas[identifier] = {SurfaceType(k): float(v) for k, v in areas.items() if v > 0}

    def record_edges(self, identifier, edges):
        self._edges.pop(identifier, None)
        self._edges[identifier] = list(edges)

    def record_protrusion(self, protrusion):
        self._protrusions.pop(protrusion.identifier, None)
        self._protrusions[protrusion.identifier] = protrusion

    def record_surface(self, identifier, surface_type):
        self._surface_types[identifier] = SurfaceType(surface_type)

    def forget(self, identifier):
        """Drop everything a fragment contributed. Height samples stay."""
        self._areas.pop(identifier, None)
        self._edges.pop(identifier, None)
        self._protrusions.pop(identifier, None)
        self._surface_types.pop(identifier, None)
        self.detected_doors = [d for d in self.detected_doors if d.source != identifier]
        self.detected_windows = [w for w in self.detected_windows if w.source != identifier]

    @property
    def fragment_ids(self):
        return set(self._areas) | set(self._surface_types)

    # ── aggregates ──

    def area_by_type(self):
        totals = {}
        for areas in self._areas.values():
            for k, v in areas.items():
                totals[k] = totals.get(k, 0.0) + v
        return totals

    def _area(self, surface_type):
        return self.area_by_type().get(surface_type, 0.0)

    @property
    def floor_area(self):
        return self._area(SurfaceType.FLOOR)

    @property
    def ceiling_area(self):
        return self._area(SurfaceType.CEILING)

    @property
    def wall_area(self):
        return self._area(SurfaceType.WALL)

    @property
    def object_area(self):
        return self._area(SurfaceType.OBJECT)

    @property
    def protrusion_area(self):
        return self._area(SurfaceType.CEILING_PROTRUSION)

    @property
    def surface_counts(self):
        counts = {}
        for t in self._surface_types.values():
            counts[t] = counts.get(t, 0) + 1
        return counts

    def surface_type_of(self, identifier):
        return self._surface_types.get(identifier)

    @property
    def detected_edges(self):
        return [e for edges in self._edges.values() for e in edges]

    @property
    def detected_protrusions(self):
        return list(self._protrusions.values())

    # ── derived heights ──

    @property
    def estimated_room_height(self):
        if self.floor_height is None or self.ceiling_height is None:
            return None
        return self.ceiling_height - self.floor_height

    @property
    def min_clearance_height(self):
        if self.floor_height is None or self.ceiling_height is None:
            return None
        deepest = max((p.depth for p in self._protrusions.values()), default=0.0)
        return (self.ceiling_height - deepest) - self.floor_height

    def clearance_at(self, x, z):
        """Free height above (x, z), accounting for protrusions overhead."""
        if self.floor_height is None or self.ceiling_height is None:
            return None
        lowest = self.ceiling_height
        for p in self._protrusions.values():
            lo, hi = p.bounding_box
            if lo[0] <= x <= hi[0] and lo[2] <= z <= hi[2]:
                lowest = min(lowest, lo[1])
        return lowest - self.floor_height

    # ── feature queries ──

    def _edges_of(self, edge_type):
        return [e for e in self.detected_edges if e.edge_type == edge_type]

    def wall_corners(self):
        return self._edges_of(EdgeType.VERTICAL_CORNER)

    def floor_perimeter(self):
        return self._edges_of(EdgeType.FLOOR_WALL)

    def ceiling_perimeter(self):
        return self._edges_of(EdgeType.CEILING_WALL)

    def beams_and_ducts(self):
        return [p for p in self._protrusions.values()
                if p.kind in (ProtrusionType.BEAM, ProtrusionType.DUCT)]

    def summary(self):
        parts = []
        height = self.estimated_room_height
        if height is not None:
            parts.append(f"Room: {height:.1f}m")
        clearance = self.min_clearance_height
        if clearance is not None and clearance < (height or 0.0) - 0.1:
            parts.append(f"Clearance: {clearance:.1f}m")
        if self._protrusions:
            parts.append(f"{len(self._protrusions)} protrusions")
        if self.detected_doors:
            parts.append(f"{len(self.detected_doors)} doors")
        if self.detected_windows:
            parts.append(f"{len(self.detected_windows)} windows")
        if self.floor_area > 0:
            parts.append(f"{self.floor_area:.1f}m²")
        return " | ".join(parts)

    def snapshot(self):
        """Independent copy for readers off the capture path."""
        return copy.deepcopy(self)

    def to_dict(self):
        return {
            "floor_height": self.floor_height,
            "ceiling_height": self.ceiling_height,
            "room_height": self.estimated_room_height,
            "min_clearance": self.min_clearance_height,
            "areas": {k.value: round(v, 3) for k, v in self.area_by_type().items()},
            "edges": {t.value: len(self._edges_of(t)) for t in EdgeType if self._edges_of(t)},
            "protrusions": [{"kind": p.kind.value, "depth": p.depth, "area": p.area,
                             "center": np.asarray(p.center)} for p in self._protrusions.values()],
            "doors": len(self.detected_doors),
            "windows": len(self.detected_windows),
            "summary": self.summary(),
        }
