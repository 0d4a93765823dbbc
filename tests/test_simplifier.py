import numpy as np

from fragments import floor_fragment, room_walls
from mesh2room.config import RoomConfig
from mesh2room.geometry import convex_hull, turn_angle
from mesh2room.simplifier import RoomSimplifier
from mesh2room.statistics import ScanStatistics
from mesh2room.types import CeilingProtrusion, ProtrusionType, SimplifiedRoom, SurfaceType

SKEWED = np.array([(0, 0), (2, 0.03), (4, 0), (4.1, 3), (0.05, 3.02), (0, 1.5)], dtype=float)


def _scanned_room():
    stats = ScanStatistics()
    stats.floor_height, stats.ceiling_height = 0.0, 2.5
    fragments = room_walls()
    for frag in fragments:
        stats.record_surface(frag.identifier, SurfaceType.WALL)
    floor = floor_fragment()
    stats.record_surface(floor.identifier, SurfaceType.FLOOR)
    return fragments + [floor], stats


def test_near_rectangle_squared_up():
    out = RoomSimplifier().simplify_polygon(SKEWED)
    assert len(out) == 4
    assert np.allclose(out, [[0.025, 0], [4.05, 0], [4.05, 3.01], [0.025, 3.01]])
    for i in range(4):
        a = out[(i + 1) % 4] - out[i]
        b = out[(i + 2) % 4] - out[(i + 1) % 4]
        assert abs(np.dot(a, b)) < 1e-9


def _noisy_rectangle_hull(rng, grid=0.1):
    w, h = rng.uniform(2.5, 6.0), rng.uniform(2.5, 5.0)
    t = rng.uniform(0.0, 2 * (w + h), 200)
    pts = np.zeros((200, 2))
    for i, s in enumerate(t):
        if s < w:
            pts[i] = (s, 0.0)
        elif s < w + h:
            pts[i] = (w, s - w)
        elif s < 2 * w + h:
            pts[i] = (2 * w + h - s, h)
        else:
            pts[i] = (0.0, 2 * (w + h) - s)
    pts += rng.normal(0.0, 0.05, pts.shape)
    return convex_hull(np.round(pts / grid) * grid)


def test_simplify_is_idempotent():
    simplifier = RoomSimplifier()
    once = simplifier.simplify_polygon(SKEWED)
    twice = simplifier.simplify_polygon(once)
    assert np.allclose(once, twice)


def test_simplify_noisy_hulls_reaches_fixed_point():
    simplifier = RoomSimplifier()
    limit = np.radians(simplifier.config.collinear_threshold_deg)
    rng = np.random.default_rng(11)
    for _ in range(100):
        once = simplifier.simplify_polygon(_noisy_rectangle_hull(rng))
        twice = simplifier.simplify_polygon(once)
        assert once.shape == twice.shape
        assert np.allclose(once, twice)
        n = len(once)
        assert n >= 3
        if n > 4:
            assert all(turn_angle(once[i - 1], once[i], once[(i + 1) % n]) > limit for i in range(n))


def test_obtuse_corners_left_alone():
    octagon = np.array([(1, 0), (3, 0), (4, 1), (4, 3), (3, 4), (1, 4), (0, 3), (0, 1)], dtype=float)
    out = RoomSimplifier().simplify_polygon(octagon)
    assert np.allclose(out, octagon)


def test_close_corners_snapped():
    simplifier = RoomSimplifier()
    poly = np.array([(0, 0), (4, 0), (0.05, 0.05), (0, 4)], dtype=float)
    out = simplifier.snap_corners(poly)
    assert len(out) == 3
    assert np.allclose(out[0], [0.025, 0.025])


def test_extract_room_from_walls():
    fragments, stats = _scanned_room()
    room = RoomSimplifier().extract_simplified_room(fragments, stats)
    assert room.wall_count == 4
    assert np.isclose(room.floor_area, 16.0)
    assert np.isclose(room.perimeter_length, 16.0)
    assert room.room_height == 2.5


def test_extract_needs_heights_and_points():
    fragments, stats = _scanned_room()
    stats.ceiling_height = None
    assert RoomSimplifier().extract_simplified_room(fragments, stats) is None

    _, stats = _scanned_room()
    assert RoomSimplifier().extract_simplified_room([floor_fragment()], stats) is None


def test_wall_points_ignore_non_walls_and_high_vertices():
    fragments, stats = _scanned_room()
    points = RoomSimplifier().extract_wall_points(fragments, 0.0, stats)
    assert len(points) > 0
    assert points[:, 0].min() == 0.0 and points[:, 0].max() == 4.0
    # floor fragment interior (2, 2) is not a wall
    assert not any(np.allclose(p, [2.0, 2.0]) for p in points)


def test_protrusions_from_statistics():
    stats = ScanStatistics()
    box = (np.array([0.0, 2.2, 1.0]), np.array([4.0, 2.2, 1.3]))
    stats.record_protrusion(CeilingProtrusion("beam", box, 0.3, 1.2, ProtrusionType.BEAM))
    prots = RoomSimplifier().extract_protrusions(stats, 2.5)
    assert len(prots) == 1
    assert np.allclose(prots[0].polygon, [[0, 1.0], [4, 1.0], [4, 1.3], [0, 1.3]])
    assert prots[0].top_height == 2.5
    assert np.isclose(prots[0].depth, 0.3)


def test_mesh_counts():
    square = np.array([(0, 0), (4, 0), (4, 4), (0, 4)], dtype=float)
    room = SimplifiedRoom(0.0, 2.5, square)
    mesh = RoomSimplifier().generate_mesh(room)
    counts = mesh.tag_counts()
    assert counts[SurfaceType.FLOOR] == 8
    assert counts[SurfaceType.CEILING] == 8
    assert counts[SurfaceType.WALL] == 16
    assert room.vertex_count == 8


def test_mesh_faces_up_and_inward():
    square = np.array([(0, 0), (4, 0), (4, 4), (0, 4)], dtype=float)
    mesh = RoomSimplifier(RoomConfig(double_sided=False)).generate_mesh(SimplifiedRoom(0.0, 2.5, square))
    v = mesh.vertices
    floor = mesh.faces_of(SurfaceType.FLOOR)
    assert len(floor) == 4
    for a, b, c in floor:
        assert np.cross(v[b] - v[a], v[c] - v[a])[1] > 0
    for a, b, c in mesh.faces_of(SurfaceType.WALL):
        n = np.cross(v[b] - v[a], v[c] - v[a])
        mid = (v[a] + v[b] + v[c]) / 3
        assert np.dot(n, np.array([2.0, mid[1], 2.0]) - mid) > 0


def test_mesh_with_protrusion():
    square = np.array([(0, 0), (4, 0), (4, 4), (0, 4)], dtype=float)
    stats = ScanStatistics()
    box = (np.array([0.0, 2.2, 1.0]), np.array([4.0, 2.2, 1.3]))
    stats.record_protrusion(CeilingProtrusion("beam", box, 0.3, 1.2, ProtrusionType.BEAM))
    simplifier = RoomSimplifier()
    room = SimplifiedRoom(0.0, 2.5, square, simplifier.extract_protrusions(stats, 2.5))
    mesh = simplifier.generate_mesh(room)
    assert mesh.tag_counts()[SurfaceType.CEILING_PROTRUSION] == 12
    assert room.vertex_count == 16


def test_no_room_no_mesh():
    assert RoomSimplifier().generate_mesh(None).is_empty()
