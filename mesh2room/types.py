"""Data model shared by every stage of the room pipeline.

Enumerations are closed; behaviour that hangs off them (display colour,
filter rules) lives in lookup tables and plain functions below them.
All points are Y-up world metres; floor-plan points are (x, z)."""

from dataclasses import dataclass, field
from enum import Enum
from typing import List, Optional, Tuple

import numpy as np
import trimesh

from .errors import FragmentError
from .geometry import polygon_area, polygon_perimeter


class SurfaceType(str, Enum):
    FLOOR = "floor"
    CEILING = "ceiling"
    CEILING_PROTRUSION = "ceiling_protrusion"
    WALL = "wall"
    WALL_EDGE = "wall_edge"
    FLOOR_EDGE = "floor_edge"
    DOOR = "door"
    DOOR_FRAME = "door_frame"
    WINDOW = "window"
    WINDOW_FRAME = "window_frame"
    OBJECT = "object"
    UNKNOWN = "unknown"


class EdgeType(str, Enum):
    VERTICAL_CORNER = "vertical_corner"
    FLOOR_WALL = "floor_wall"
    CEILING_WALL = "ceiling_wall"
    OBJECT_EDGE = "object_edge"
    DOOR_FRAME = "door_frame"
    WINDOW_FRAME = "window_frame"


class ProtrusionType(str, Enum):
    BEAM = "beam"
    DUCT = "duct"
    FIXTURE = "fixture"
    DROPPED_CEILING = "dropped_ceiling"
    UNKNOWN = "unknown"


class OpeningType(str, Enum):
    DOOR = "door"
    WINDOW = "window"
    GLASS_DOOR = "glass_door"
    PASS_THROUGH = "pass_through"


class WindowShape(str, Enum):
    STANDARD = "standard"
    FLOOR_TO_CEILING = "floor_to_ceiling"
    HORIZONTAL = "horizontal"
    VERTICAL = "vertical"


# RGBA overlay colours for the visualisation layer
SURFACE_COLORS = {
    SurfaceType.FLOOR: (0.2, 0.8, 0.2, 0.5),
    SurfaceType.CEILING: (0.9, 0.9, 0.2, 0.5),
    SurfaceType.CEILING_PROTRUSION: (1.0, 0.5, 0.0, 0.7),
    SurfaceType.WALL: (0.2, 0.4, 0.9, 0.5),
    SurfaceType.WALL_EDGE: (0.0, 1.0, 1.0, 0.8),
    SurfaceType.FLOOR_EDGE: (0.0, 0.8, 0.4, 0.8),
    SurfaceType.DOOR: (0.6, 0.3, 0.1, 0.6),
    SurfaceType.DOOR_FRAME: (0.8, 0.4, 0.2, 0.8),
    SurfaceType.WINDOW: (0.5, 0.8, 1.0, 0.4),
    SurfaceType.WINDOW_FRAME: (0.3, 0.6, 0.9, 0.8),
    SurfaceType.OBJECT: (0.7, 0.2, 0.7, 0.5),
    SurfaceType.UNKNOWN: (0.5, 0.5, 0.5, 0.3),
}

STRUCTURAL_FEATURES = frozenset({
    SurfaceType.CEILING_PROTRUSION, SurfaceType.WALL_EDGE, SurfaceType.FLOOR_EDGE,
    SurfaceType.DOOR, SurfaceType.DOOR_FRAME, SurfaceType.WINDOW, SurfaceType.WINDOW_FRAME,
})

OPENING_SURFACES = frozenset({
    SurfaceType.DOOR, SurfaceType.DOOR_FRAME, SurfaceType.WINDOW, SurfaceType.WINDOW_FRAME,
})


def surface_color(surface_type):
    return SURFACE_COLORS[SurfaceType(surface_type)]


def is_structural_feature(surface_type):
    return SurfaceType(surface_type) in STRUCTURAL_FEATURES


def is_opening(surface_type):
    return SurfaceType(surface_type) in OPENING_SURFACES


# ─── Fragments ───

@dataclass
class MeshFragment:
    """One batch of captured surface geometry tied to a stable identifier."""
    vertices: np.ndarray
    normals: np.ndarray
    faces: np.ndarray
    transform: np.ndarray = field(default_factory=lambda: np.eye(4))
    identifier: str = ""

    def __post_init__(self):
        self.vertices = np.asarray(self.vertices, dtype=float)
        if self.vertices.size == 0:
            self.vertices = self.vertices.reshape(0, 3)
        if self.vertices.ndim != 2 or self.vertices.shape[1] != 3:
            raise FragmentError(f"vertices must be N x 3, got {self.vertices.shape}")

        self.normals = np.asarray(self.normals if self.normals is not None else [], dtype=float)
        if self.normals.size == 0:
            self.normals = np.zeros((0, 3))
        if self.normals.ndim != 2 or self.normals.shape[1] != 3:
            raise FragmentError(f"normals must be N x 3, got {self.normals.shape}")
        if len(self.normals) and len(self.normals) != len(self.vertices):
            raise FragmentError("normals and vertices differ in length")

        self.faces = np.asarray(self.faces, dtype=np.int64)
        if self.faces.size == 0:
            self.faces = self.faces.reshape(0, 3)
        if self.faces.ndim != 2 or self.faces.shape[1] != 3:
            raise FragmentError(f"faces must be M x 3, got {self.faces.shape}")

        self.transform = np.asarray(self.transform, dtype=float)
        if self.transform.shape != (4, 4):
            raise FragmentError(f"transform must be 4 x 4, got {self.transform.shape}")
        self.identifier = str(self.identifier)

    @property
    def vertex_count(self):
        return len(self.vertices)

    @property
    def face_count(self):
        return len(self.faces)

    def world_vertices(self):
        if not len(self.vertices):
            return np.zeros((0, 3))
        return trimesh.transform_points(self.vertices, self.transform)

    def world_normals(self):
        if not len(self.normals):
            return np.zeros((0, 3))
        return trimesh.transform_points(self.normals, self.transform, translate=False)


# ─── Classification products ───

@dataclass
class ClassifiedSurface:
    surface_type: SurfaceType
    average_normal: np.ndarray
    area: float
    vertex_count: int
    height_range: Tuple[float, float]
    bounding_box: Tuple[np.ndarray, np.ndarray]
    confidence: float

    @property
    def size(self):
        return self.bounding_box[1] - self.bounding_box[0]

    @property
    def max_dimension(self):
        return float(np.max(self.size))


@dataclass
class CeilingProtrusion:
    identifier: str
    bounding_box: Tuple[np.ndarray, np.ndarray]
    depth: float
    area: float
    kind: ProtrusionType = ProtrusionType.UNKNOWN

    @property
    def center(self):
        return (self.bounding_box[0] + self.bounding_box[1]) / 2


@dataclass
class WallEdge:
    start: np.ndarray
    end: np.ndarray
    edge_type: EdgeType
    angle: float
    source: Optional[str] = None

    @property
    def length(self):
        return float(np.linalg.norm(self.end - self.start))

    @property
    def midpoint(self):
        return (self.start + self.end) / 2


@dataclass
class DetectedDoor:
    position: np.ndarray
    width: float
    height: float
    wall_normal: np.ndarray
    bounding_box: Tuple[np.ndarray, np.ndarray]
    confidence: float
    kind: OpeningType = OpeningType.DOOR
    source: Optional[str] = None

    @property
    def is_standard_size(self):
        return 0.6 <= self.width <= 1.2 and 1.8 <= self.height <= 2.5


@dataclass
class DetectedWindow:
    position: np.ndarray
    width: float
    height: float
    height_from_floor: float
    wall_normal: np.ndarray
    bounding_box: Tuple[np.ndarray, np.ndarray]
    confidence: float
    kind: OpeningType = OpeningType.WINDOW
    source: Optional[str] = None

    @property
    def shape(self):
        if self.height > 1.8 and self.height_from_floor < 0.2:
            return WindowShape.FLOOR_TO_CEILING
        if self.width > self.height * 2:
            return WindowShape.HORIZONTAL
        if self.height > self.width * 2:
            return WindowShape.VERTICAL
        return WindowShape.STANDARD


# ─── Room builder products ───

@dataclass
class WallOpening:
    """A gap in a wall segment; offsets run along the segment from its start."""
    kind: OpeningType
    position: np.ndarray
    width: float
    height: float
    bottom_from_floor: float
    wall_normal: np.ndarray
    start_offset: float = 0.0

    @property
    def top_from_floor(self):
        return self.bottom_from_floor + self.height

    @property
    def end_offset(self):
        return self.start_offset + self.width


@dataclass
class WallSegment:
    identifier: str
    start: np.ndarray          # (x, z)
    end: np.ndarray
    normal: np.ndarray         # (x, z), unit
    height: float
    bottom_y: float
    openings: List[WallOpening] = field(default_factory=list)

    @property
    def length(self):
        return float(np.linalg.norm(self.end - self.start))

    @property
    def center(self):
        return (self.start + self.end) / 2

    @property
    def direction(self):
        d = self.end - self.start
        n = np.linalg.norm(d)
        return d / n if n > 0 else np.zeros(2)


@dataclass
class RoomCorner:
    position: np.ndarray       # 3D, floor level
    angle: float               # rad between the two walls
    wall_ids: Tuple[str, str]

    def __eq__(self, other):
        if not isinstance(other, RoomCorner):
            return NotImplemented
        return (np.allclose(self.position, other.position)
                and np.isclose(self.angle, other.angle)
                and tuple(self.wall_ids) == tuple(other.wall_ids))


# ─── Reconstruction products ───

@dataclass
class ReconstructedOpening:
    kind: OpeningType
    bottom_y: float
    top_y: float
    start_offset: float
    width: float

    @property
    def end_offset(self):
        return self.start_offset + self.width

    @property
    def height(self):
        return self.top_y - self.bottom_y


@dataclass
class ReconstructedWall:
    start: np.ndarray          # 3D at floor level
    end: np.ndarray
    floor_y: float
    ceiling_y: float
    normal: np.ndarray         # 3D, points into the room
    openings: List[ReconstructedOpening] = field(default_factory=list)

    @property
    def length(self):
        return float(np.linalg.norm(self.end - self.start))

    @property
    def height(self):
        return self.ceiling_y - self.floor_y

    @property
    def direction(self):
        d = self.end - self.start
        n = np.linalg.norm(d)
        return d / n if n > 0 else np.zeros(3)


@dataclass
class SimplifiedProtrusion:
    polygon: np.ndarray        # (n, 2) xz
    top_height: float
    bottom_height: float

    @property
    def depth(self):
        return self.top_height - self.bottom_height


@dataclass
class SimplifiedRoom:
    floor_height: float
    ceiling_height: float
    floor_polygon: np.ndarray  # (n, 2) xz
    protrusions: List[SimplifiedProtrusion] = field(default_factory=list)

    @property
    def room_height(self):
        return self.ceiling_height - self.floor_height

    @property
    def floor_area(self):
        return polygon_area(self.floor_polygon)

    @property
    def perimeter_length(self):
        return polygon_perimeter(self.floor_polygon)

    @property
    def wall_count(self):
        return len(self.floor_polygon)

    @property
    def vertex_count(self):
        # floor, ceiling and protrusion outlines top and bottom
        return len(self.floor_polygon) * 2 + sum(len(p.polygon) * 2 for p in self.protrusions)
