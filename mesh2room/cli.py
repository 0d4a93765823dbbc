#!/usr/bin/env python3
"""mesh2room: reconstruct an idealised room from a scanned mesh.

Splits the scan into column-shaped fragments, streams them through a
ScanSession the way a capture device would, then writes a JSON report and,
optionally, the reconstructed and simplified room meshes."""

import argparse
import json
import logging
import sys
from pathlib import Path

import numpy as np
import trimesh

from .config import load_config
from .errors import ConfigError
from .session import ScanSession
from .types import MeshFragment


class NpEncoder(json.JSONEncoder):
    def default(self, obj):
        if isinstance(obj, (np.integer,)): return int(obj)
        if isinstance(obj, (np.floating,)): return float(obj)
        if isinstance(obj, np.ndarray): return obj.tolist()
        if isinstance(obj, (np.bool_,)): return bool(obj)
        return super().default(obj)


def up_transform(up):
    """Matrix taking the scan's up axis to +Y."""
    if up == "z":
        return trimesh.transformations.rotation_matrix(-np.pi / 2, [1, 0, 0])
    return np.eye(4)


def normal_label(n):
    axis = int(np.argmax(np.abs(n)))
    return f"{'xyz'[axis]}{'+' if n[axis] >= 0 else '-'}"


def split_fragments(mesh, transform, chunk=1.0):
    """Group faces into fragments by floor-plan cell and facing direction.

    Cells are columns (no split along Y) so walls stay floor-to-ceiling."""
    centers = trimesh.transform_points(mesh.triangles_center, transform)
    normals = trimesh.transform_points(mesh.face_normals, transform, translate=False)

    groups = {}
    for i, (c, n) in enumerate(zip(centers, normals)):
        key = (int(np.floor(c[0] / chunk)), int(np.floor(c[2] / chunk)), normal_label(n))
        groups.setdefault(key, []).append(i)

    fragments = []
    for (cx, cz, label), faces in sorted(groups.items()):
        sub = mesh.submesh([faces], append=True)
        fragments.append(MeshFragment(sub.vertices, sub.vertex_normals, sub.faces, transform,
                                      f"chunk_{cx}_{cz}_{label}"))
    return fragments


def parse_point(text):
    values = [float(v) for v in text.split(",")]
    if len(values) != 3:
        raise argparse.ArgumentTypeError(f"expected x,y,z, got '{text}'")
    return np.array(values)


def build_report(session, mesh_path):
    stats = session.statistics
    walls = session.reconstruct_walls()
    room = session.simplified_room()

    result = {
        "mesh": str(mesh_path),
        "fragments": len(session.fragments),
        "vertices": session.vertex_count,
        "faces": session.face_count,
        "statistics": stats.to_dict(),
        "surface_counts": {k.value: v for k, v in stats.surface_counts.items()},
        "wall_segments": [{
            "id": s.identifier, "start": s.start, "end": s.end, "normal": s.normal,
            "length": round(s.length, 3), "height": round(s.height, 3),
            "openings": [{"kind": o.kind, "start": round(o.start_offset, 3),
                          "width": round(o.width, 3), "height": round(o.height, 3),
                          "bottom": round(o.bottom_from_floor, 3)} for o in s.openings],
        } for s in session.wall_segments],
        "room_corners": [{"position": c.position, "angle_deg": round(float(np.degrees(c.angle)), 1),
                          "walls": list(c.wall_ids)} for c in session.room_corners],
        "doors": [{"position": d.position, "width": round(d.width, 3), "height": round(d.height, 3),
                   "kind": d.kind, "standard": d.is_standard_size, "confidence": d.confidence}
                  for d in stats.detected_doors],
        "windows": [{"position": w.position, "width": round(w.width, 3), "height": round(w.height, 3),
                     "from_floor": round(w.height_from_floor, 3), "shape": w.shape,
                     "confidence": w.confidence} for w in stats.detected_windows],
        "reconstructed_walls": [{
            "start": w.start, "end": w.end, "length": round(w.length, 3),
            "openings": [{"kind": o.kind, "start": round(o.start_offset, 3), "width": round(o.width, 3),
                          "bottom": round(o.bottom_y, 3), "top": round(o.top_y, 3)} for o in w.openings],
        } for w in walls],
        "simplified_room": None,
    }
    if room is not None:
        result["simplified_room"] = {
            "floor_height": room.floor_height, "ceiling_height": room.ceiling_height,
            "polygon": room.floor_polygon, "area_m2": round(room.floor_area, 2),
            "perimeter_m": round(room.perimeter_length, 2), "walls": room.wall_count,
            "protrusions": [{"polygon": p.polygon, "depth": round(p.depth, 3)} for p in room.protrusions],
        }
    return result


def main(argv=None):
    parser = argparse.ArgumentParser(description="Reconstruct an idealised room from a scanned mesh")
    parser.add_argument("mesh_file", help="Path to scan mesh (.obj, .ply, .glb, ...)")
    parser.add_argument("output", nargs="?", default=None, help="Output JSON (default: <mesh>_room.json)")
    parser.add_argument("--config", default=None, help="YAML threshold overrides")
    parser.add_argument("--up", choices=["y", "z"], default="y", help="Up axis of the scan")
    parser.add_argument("--chunk", type=float, default=1.0, help="Fragment column size (m)")
    parser.add_argument("--passes", type=int, default=2, help="Times the fragments are streamed")
    parser.add_argument("--corner", type=parse_point, action="append", default=[],
                        help="Confirmed corner x,y,z (repeatable)")
    parser.add_argument("--export", default=None, help="Write reconstructed room mesh here")
    parser.add_argument("--simplified-export", default=None, help="Write simplified room mesh here")
    parser.add_argument("--verbose", action="store_true")
    args = parser.parse_args(argv)

    if args.verbose:
        logging.basicConfig(level=logging.DEBUG, format="%(name)s: %(message)s")

    try:
        config = load_config(args.config)
    except ConfigError as e:
        print(f"Config error: {e}", file=sys.stderr)
        return 2

    mesh_path = Path(args.mesh_file)
    out_path = Path(args.output) if args.output else mesh_path.with_name(f"{mesh_path.stem}_room.json")

    print(f"Loading {mesh_path}...", flush=True)
    mesh = trimesh.load(str(mesh_path), force="mesh", process=True)
    print(f"  {len(mesh.vertices)} verts, {len(mesh.faces)} faces", flush=True)

    print("\n── Fragments ──", flush=True)
    fragments = split_fragments(mesh, up_transform(args.up), args.chunk)
    print(f"  {len(fragments)} fragments ({args.chunk:.2f}m columns)", flush=True)

    session = ScanSession(config)
    for corner in args.corner:
        session.confirm_corner(corner)

    for p in range(args.passes):
        for fragment in fragments:
            session.on_fragment_updated(fragment)
        stats = session.statistics
        fh = f"{stats.floor_height:.3f}" if stats.floor_height is not None else "?"
        ch = f"{stats.ceiling_height:.3f}" if stats.ceiling_height is not None else "?"
        print(f"  pass {p + 1}: floor={fh} ceiling={ch}", flush=True)

    print("\n── Room Builder ──", flush=True)
    print(f"  {len(session.wall_segments)} wall segments, {len(session.room_corners)} corners", flush=True)
    print(f"  {session.summary()}", flush=True)

    print("\n── Reconstruction ──", flush=True)
    result = build_report(session, mesh_path)
    print(f"  {len(result['reconstructed_walls'])} walls", flush=True)
    if result["simplified_room"]:
        sr = result["simplified_room"]
        print(f"  simplified: {sr['walls']} walls, {sr['area_m2']}m²", flush=True)

    if args.export:
        room_mesh = session.reconstruct()
        if room_mesh.is_empty():
            print("  not enough corners, skipping export", flush=True)
        else:
            room_mesh.to_trimesh().export(args.export)
            print(f"  exported {args.export}", flush=True)
    if args.simplified_export:
        simple = session.simplified_mesh()
        if not simple.is_empty():
            simple.to_trimesh().export(args.simplified_export)
            print(f"  exported {args.simplified_export}", flush=True)

    with open(out_path, "w") as f:
        json.dump(result, f, indent=2, cls=NpEncoder)
    print(f"\nResults: {out_path}", flush=True)
    return 0


if __name__ == "__main__":
    sys.exit(main())
