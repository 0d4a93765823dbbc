import numpy as np

from fragments import ceiling_fragment, floor_fragment, room_walls, solid_room_walls
from mesh2room.session import ScanSession
from mesh2room.types import OpeningType, SurfaceType


def _scan(door=True):
    session = ScanSession()
    session.on_fragment_added(floor_fragment())
    session.on_fragment_added(ceiling_fragment())
    for wall in room_walls(door=door):
        session.on_fragment_added(wall)
    return session


def test_calibration_from_floor_and_ceiling():
    session = ScanSession()
    assert session.on_fragment_added(floor_fragment()).surface_type == SurfaceType.FLOOR
    assert session.on_fragment_added(ceiling_fragment()).surface_type == SurfaceType.CEILING
    assert session.statistics.floor_height == 0.0
    assert session.statistics.ceiling_height == 2.5
    assert session.builder.is_calibrated


def test_full_scan():
    session = _scan()
    stats = session.statistics
    assert stats.surface_counts == {SurfaceType.FLOOR: 1, SurfaceType.CEILING: 1, SurfaceType.WALL: 4}
    assert np.isclose(stats.floor_area, 16.0)
    assert len(stats.detected_doors) == 1
    assert session.summary() == "Room: 2.5m | 1 doors | 16.0m²"

    assert len(session.wall_segments) == 4
    assert len(session.room_corners) == 4
    south = [s for s in session.wall_segments if np.allclose(s.normal, [0, 1])][0]
    assert [o.kind for o in south.openings] == [OpeningType.DOOR]


def test_reconstruction_from_scan():
    session = _scan()
    walls = session.reconstruct_walls()
    assert len(walls) == 4
    assert sum(len(w.openings) for w in walls) == 1

    counts = session.reconstruct().tag_counts()
    assert counts[SurfaceType.WALL] == 24
    assert counts[SurfaceType.FLOOR] == 8
    assert counts[SurfaceType.CEILING] == 8


def test_simplified_room_from_scan():
    session = _scan(door=False)
    room = session.simplified_room()
    assert room.wall_count == 4
    assert np.isclose(room.floor_area, 16.0)
    assert not session.simplified_mesh().is_empty()


def test_updated_fragment_replaces_contribution():
    session = ScanSession()
    session.on_fragment_added(floor_fragment(size=4.0))
    session.on_fragment_updated(floor_fragment(size=2.0))
    assert np.isclose(session.statistics.floor_area, 4.0)
    assert session.vertex_count == 25
    assert len(session.fragments) == 1

    session.on_fragment_removed("floor")
    assert session.statistics.floor_area == 0.0
    assert session.vertex_count == 0
    assert session.statistics.floor_height == 0.0
    session.on_fragment_removed("never-seen")


def test_removed_wall_leaves_builder():
    session = _scan()
    session.on_fragment_removed("wall_south")
    assert len(session.wall_segments) == 3
    assert len(session.room_corners) == 2
    assert session.statistics.detected_doors == []


def test_confirmed_door_replaces_inferred():
    session = _scan()
    door = session.confirm_opening(OpeningType.DOOR, [1.0, 1.0, 0.0], [0, 0, 1])
    doors = session.statistics.detected_doors
    assert doors == [door]
    assert door.confidence == 1.0
    assert np.isclose(door.position[1], 1.05)
    assert door.width == 0.9

    window = session.confirm_opening("window", [3.0, 1.5, 0.0], [0, 0, 1])
    assert session.statistics.detected_windows == [window]
    assert np.isclose(window.height_from_floor, 0.9)


def test_confirmed_corner_used():
    session = _scan()
    session.confirm_corner([0.2, 0.0, 0.2])
    walls = session.reconstruct_walls()
    starts = [w.start for w in walls]
    assert any(np.allclose(s, [0.2, 0.0, 0.2]) for s in starts)


def test_reads_do_not_touch_live_statistics():
    session = _scan()
    snap = session.snapshot()
    snap.detected_doors.clear()
    assert len(session.statistics.detected_doors) == 1


def test_reset():
    session = _scan()
    session.reset()
    assert session.fragments == {}
    assert session.wall_segments == []
    assert session.statistics.floor_height is None
    assert session.summary() == ""


def test_large_triangle_walls_have_no_openings():
    session = ScanSession()
    session.on_fragment_added(floor_fragment())
    session.on_fragment_added(ceiling_fragment())
    for wall in solid_room_walls():
        session.on_fragment_added(wall)

    assert len(session.wall_segments) == 4
    assert len(session.room_corners) == 4
    assert all(s.openings == [] for s in session.wall_segments)
    assert session.statistics.detected_doors == []
    assert session.reconstruct().tag_counts()[SurfaceType.WALL] == 16


def test_walls_before_calibration_are_replayed():
    session = ScanSession()
    for wall in room_walls(door=True):
        session.on_fragment_added(wall)
    assert session.wall_segments == []

    session.on_fragment_added(floor_fragment())
    session.on_fragment_added(ceiling_fragment())
    assert len(session.wall_segments) == 4
    assert len(session.room_corners) == 4
    assert len(session.statistics.detected_doors) == 1
    south = [s for s in session.wall_segments if np.allclose(s.normal, [0, 1])][0]
    assert [o.kind for o in south.openings] == [OpeningType.DOOR]
