import numpy as np

from fragments import X, Y, grid_fragment, room_walls, solid_room_walls
from mesh2room.room_builder import RoomBuilder
from mesh2room.statistics import ScanStatistics
from mesh2room.types import OpeningType

SOUTH, NORTH, WEST, EAST = [0, 0, 1], [0, 0, -1], [1, 0, 0], [-1, 0, 0]


def _builder(floor=0.0, ceiling=2.5):
    stats = ScanStatistics()
    builder = RoomBuilder(stats)
    builder.calibrate(floor, ceiling)
    return builder, stats


def _south_wall(x0, x1, height=2.5, step=0.25):
    return grid_fragment([x0, 0, 0], X, Y, x1 - x0, height, step).vertices


def _add_room(builder, door=False):
    for frag, normal in zip(room_walls(door=door), (SOUTH, NORTH, WEST, EAST)):
        builder.process_vertical_surface(frag.vertices, normal, frag.transform, frag.identifier)


def test_two_triangle_walls_stay_solid():
    builder, _ = _builder()
    for frag, normal in zip(solid_room_walls(), (SOUTH, NORTH, WEST, EAST)):
        builder.process_vertical_surface(frag.vertices, normal, frag.transform, frag.identifier,
                                         faces=frag.faces)

    assert len(builder.wall_segments) == 4
    assert len(builder.room_corners) == 4
    assert all(s.openings == [] for s in builder.wall_segments)


def test_uncalibrated_builder_ignores_walls():
    builder = RoomBuilder(ScanStatistics())
    assert builder.process_vertical_surface(_south_wall(0, 4), SOUTH) is None
    builder.calibrate_floor(0.0)
    assert not builder.is_calibrated
    assert builder.wall_segments == []


def test_square_room():
    builder, stats = _builder()
    _add_room(builder)

    assert len(builder.wall_segments) == 4
    assert all(np.isclose(s.length, 4.0) and np.isclose(s.height, 2.5) for s in builder.wall_segments)

    corners = builder.room_corners
    assert len(corners) == 4
    spots = sorted((round(c.position[0], 6), round(c.position[2], 6)) for c in corners)
    assert spots == [(0, 0), (0, 4), (4, 0), (4, 4)]
    assert all(np.isclose(c.angle, np.pi / 2) for c in corners)
    assert all(c.position[1] == 0.0 for c in corners)
    assert stats.room_corners == corners


def test_segment_extent_and_normal():
    builder, _ = _builder()
    seg = builder.process_vertical_surface(_south_wall(0, 4), SOUTH, identifier="s")
    assert np.allclose(seg.start, [0, 0])
    assert np.allclose(seg.end, [4, 0])
    assert np.allclose(seg.normal, [0, 1])
    assert seg.bottom_y == 0.0
    assert seg.openings == []


def test_door_opening_on_segment():
    builder, _ = _builder()
    _add_room(builder, door=True)
    south = [s for s in builder.wall_segments if np.allclose(s.normal, [0, 1])][0]
    assert len(south.openings) == 1
    door = south.openings[0]
    assert door.kind == OpeningType.DOOR
    assert np.isclose(door.start_offset, 0.55)
    assert np.isclose(door.width, 0.9)
    assert np.isclose(door.height, 2.1)
    assert np.isclose(door.bottom_from_floor, 0.0)


def test_furniture_and_short_walls_rejected():
    builder, _ = _builder()
    table = grid_fragment([0, 0, 1], X, Y, 1.5, 0.8, 0.1).vertices
    assert builder.process_vertical_surface(table, SOUTH, identifier="table") is None
    assert builder.process_vertical_surface(_south_wall(0, 0.2, step=0.1), SOUTH, identifier="stub") is None
    assert builder.wall_segments == []


def test_offset_floor_is_normalised():
    builder, _ = _builder(floor=1.0, ceiling=3.5)
    verts = _south_wall(0, 4) + [0, 1.0, 0]
    seg = builder.process_vertical_surface(verts, SOUTH, identifier="s")
    assert np.isclose(seg.bottom_y, 0.0)
    assert np.isclose(seg.height, 2.5)


def test_adjacent_pieces_merge():
    builder, _ = _builder()
    builder.process_vertical_surface(_south_wall(0, 2), SOUTH, identifier="a")
    builder.process_vertical_surface(_south_wall(2, 4), SOUTH, identifier="b")
    assert len(builder.wall_segments) == 1
    seg = builder.wall_segments[0]
    assert np.allclose(seg.start, [0, 0])
    assert np.allclose(seg.end, [4, 0])
    assert seg.identifier == "a"


def test_overlapping_pieces_merge():
    builder, _ = _builder()
    builder.process_vertical_surface(_south_wall(0, 3), SOUTH, identifier="a")
    builder.process_vertical_surface(_south_wall(1, 4), SOUTH, identifier="b")
    assert len(builder.wall_segments) == 1
    assert np.isclose(builder.wall_segments[0].length, 4.0)


def test_merge_is_idempotent():
    builder, _ = _builder()
    _add_room(builder, door=True)
    south = [s for s in builder.wall_segments if np.allclose(s.normal, [0, 1])][0]
    again = builder.merge_segments(south, south)
    assert np.allclose(again.start, south.start)
    assert np.allclose(again.end, south.end)
    assert len(again.openings) == 1
    assert np.isclose(again.openings[0].start_offset, south.openings[0].start_offset)


def test_reobserved_fragment_replaces():
    builder, _ = _builder()
    builder.process_vertical_surface(_south_wall(0, 4), SOUTH, identifier="s")
    builder.process_vertical_surface(_south_wall(0, 2), SOUTH, identifier="s")
    assert len(builder.wall_segments) == 1
    assert np.isclose(builder.wall_segments[0].length, 2.0)


def test_remove_surface_drops_corners():
    builder, _ = _builder()
    _add_room(builder)
    builder.remove_surface("wall_west")
    assert len(builder.wall_segments) == 3
    assert len(builder.room_corners) == 2


def test_find_corner_symmetric():
    builder, _ = _builder()
    _add_room(builder)
    segs = builder.wall_segments
    for a in segs:
        for b in segs:
            if a is b:
                continue
            ab, ba = builder.find_corner(a, b), builder.find_corner(b, a)
            assert (ab is None) == (ba is None)
            if ab is not None:
                assert ab == ba


def test_classify_opening_table():
    builder, _ = _builder()
    assert builder.classify_opening(0.0, 2.1, 0.9, 2.1) == OpeningType.DOOR
    assert builder.classify_opening(1.0, 2.0, 1.0, 1.0) == OpeningType.WINDOW
    assert builder.classify_opening(0.0, 2.4, 2.0, 2.4) == OpeningType.GLASS_DOOR
    assert builder.classify_opening(0.3, 2.0, 1.0, 1.7) == OpeningType.PASS_THROUGH
    assert builder.classify_opening(0.0, 1.0, 0.2, 1.0) is None


def test_no_return_area():
    builder, _ = _builder()
    opening = builder.process_no_return_area([1, 1, 0], [2, 2, 0], SOUTH)
    assert opening.kind == OpeningType.WINDOW
    assert np.isclose(opening.width, 1.0)
    assert builder.detected_openings == [opening]
    assert builder.process_no_return_area([1, 1, 0], [1.1, 1.1, 0], SOUTH) is None


def test_partial_wall_marks_opening_below():
    builder, _ = _builder()
    builder.process_vertical_surface(_south_wall(0, 4), SOUTH, identifier="s")
    header = np.array([[1, 2.1, 0], [2, 2.1, 0], [2, 2.5, 0], [1, 2.5, 0]], dtype=float)
    assert builder.process_vertical_surface(header, SOUTH, identifier="header") is None
    assert len(builder.partial_walls) == 1

    seg = builder.wall_segments[0]
    assert len(seg.openings) == 1
    assert seg.openings[0].kind == OpeningType.DOOR
    assert np.isclose(seg.openings[0].start_offset, 1.0)
    assert np.isclose(seg.openings[0].width, 1.0)
