"""Triangle mesh accumulator for reconstructed room geometry.

Each face carries the SurfaceType it was emitted for, so exporters can split
walls, floor and ceiling back out."""

import numpy as np
import trimesh

from .types import SurfaceType


class RoomMesh:
    def __init__(self):
        self._vertices = []
        self._normals = []
        self._faces = []
        self._tags = []

    @property
    def vertices(self):
        return np.array(self._vertices, dtype=float).reshape(-1, 3)

    @property
    def normals(self):
        return np.array(self._normals, dtype=float).reshape(-1, 3)

    @property
    def faces(self):
        return np.array(self._faces, dtype=np.int64).reshape(-1, 3)

    @property
    def face_tags(self):
        return list(self._tags)

    @property
    def vertex_count(self):
        return len(self._vertices)

    @property
    def face_count(self):
        return len(self._faces)

    def is_empty(self):
        return not self._faces

    def add_vertices(self, points, normal):
        base = len(self._vertices)
        normal = np.asarray(normal, dtype=float)
        for p in points:
            self._vertices.append(np.asarray(p, dtype=float))
            self._normals.append(normal)
        return base

    def add_faces(self, faces, tag, base=0):
        for f in faces:
            self._faces.append([base + f[0], base + f[1], base + f[2]])
            self._tags.append(SurfaceType(tag))

    def add_quad(self, corners, normal, tag, double_sided=False):
        """Quad from bl, br, tr, tl, wound so its face normal matches normal.

        Double-sided quads get a second copy of the corners with the opposite
        normal and winding."""
        bl, br, tr, tl = [np.asarray(c, dtype=float) for c in corners]
        normal = np.asarray(normal, dtype=float)
        front = [[0, 1, 2], [0, 2, 3]]
        if np.dot(np.cross(br - bl, tr - bl), normal) < 0:
            front = [[0, 2, 1], [0, 3, 2]]
        base = self.add_vertices([bl, br, tr, tl], normal)
        self.add_faces(front, tag, base)
        if double_sided:
            back = [[f[0], f[2], f[1]] for f in front]
            base = self.add_vertices([bl, br, tr, tl], -normal)
            self.add_faces(back, tag, base)

    def add_fan(self, ring, normal, tag, double_sided=False):
        """Fan from the ring's centroid, wound to face along normal."""
        ring = [np.asarray(p, dtype=float) for p in ring]
        if len(ring) < 3:
            return
        normal = np.asarray(normal, dtype=float)
        center = np.mean(ring, axis=0)
        n = len(ring)
        tris = [[0, i + 1, (i + 1) % n + 1] for i in range(n)]
        area_normal = sum(np.cross(ring[i] - center, ring[(i + 1) % n] - center) for i in range(n))
        if np.dot(area_normal, normal) < 0:
            tris = [[a, c, b] for a, b, c in tris]

        base = self.add_vertices([center] + ring, normal)
        self.add_faces(tris, tag, base)
        if double_sided:
            base = self.add_vertices([center] + ring, -normal)
            self.add_faces([[a, c, b] for a, b, c in tris], tag, base)

    def extend(self, other):
        base = len(self._vertices)
        self._vertices.extend(other._vertices)
        self._normals.extend(other._normals)
        self._faces.extend([base + f[0], base + f[1], base + f[2]] for f in other._faces)
        self._tags.extend(other._tags)
        return self

    def tag_counts(self):
        counts = {}
        for t in self._tags:
            counts[t] = counts.get(t, 0) + 1
        return counts

    def faces_of(self, tag):
        tag = SurfaceType(tag)
        return self.faces[np.array([t == tag for t in self._tags], dtype=bool)]

    def to_trimesh(self):
        mesh = trimesh.Trimesh(vertices=self.vertices, faces=self.faces,
                               vertex_normals=self.normals, process=False)
        mesh.metadata["face_tags"] = [t.value for t in self._tags]
        return mesh
