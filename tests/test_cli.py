import json

import numpy as np
import trimesh

from mesh2room.cli import main, normal_label, split_fragments, up_transform


def test_up_transform_maps_z_to_y():
    up = trimesh.transform_points([[0.0, 0.0, 1.0]], up_transform("z"), translate=False)
    assert np.allclose(up, [[0, 1, 0]])
    assert np.allclose(up_transform("y"), np.eye(4))


def test_normal_label():
    assert normal_label([0.1, -0.9, 0.2]) == "y-"
    assert normal_label([0.0, 0.2, 0.9]) == "z+"


def test_split_keeps_every_face():
    box = trimesh.creation.box(extents=[4.0, 2.5, 4.0])
    fragments = split_fragments(box, np.eye(4), chunk=1.0)
    assert sum(f.face_count for f in fragments) == len(box.faces)
    assert all(f.identifier.startswith("chunk_") for f in fragments)
    assert len({f.identifier for f in fragments}) == len(fragments)


def test_main_writes_report(tmp_path):
    mesh_path = tmp_path / "box.ply"
    trimesh.creation.box(extents=[4.0, 2.5, 4.0]).export(str(mesh_path))
    out = tmp_path / "report.json"

    assert main([str(mesh_path), str(out), "--passes", "1"]) == 0
    report = json.loads(out.read_text())
    assert report["fragments"] > 0
    assert report["faces"] == 12
    assert report["reconstructed_walls"] == []


def test_main_rejects_bad_config(tmp_path):
    mesh_path = tmp_path / "box.ply"
    trimesh.creation.box().export(str(mesh_path))
    cfg = tmp_path / "bad.yaml"
    cfg.write_text("classifier:\n  wall_threshold: 0.9\n")
    assert main([str(mesh_path), "--config", str(cfg)]) == 2
