import logging
import math
from collections import Counter
from dataclasses import dataclass, field

import numpy as np

logger = logging.getLogger(__name__)

# canonical outward directions of the six sides of the solid
OUT_TOP = (0.0, 1.0, 0.0)
OUT_BOTTOM = (0.0, -1.0, 0.0)
OUT_FRONT = (0.0, 0.0, 1.0)
OUT_BACK = (0.0, 0.0, -1.0)
OUT_LEFT = (-1.0, 0.0, 0.0)
OUT_RIGHT = (1.0, 0.0, 0.0)


class DegenerateGeometry(RuntimeError):
    """A face was requested with a repeated vertex index (grid indexing bug)"""


def quantize_color(color):
    """Clamp to [0, 1] and round half up to 8-bit channels"""
    return tuple(int(math.floor(min(1.0, max(0.0, c)) * 255 + 0.5)) for c in color)


def quantize_colors(colors):
    """Array form of quantize_color: (N, 3) floats -> (N, 3) ints"""
    clamped = np.clip(np.asarray(colors, dtype=float), 0.0, 1.0)
    return np.floor(clamped * 255 + 0.5).astype(np.int64)


@dataclass(frozen=True)
class Material:
    name: str
    rgb: tuple

    @property
    def diffuse(self):
        return tuple(c / 255 for c in self.rgb)


class MaterialPalette:
    """Quantized rgb -> material; repeated colors share one definition"""

    def __init__(self):
        self._materials = {}

    def _register(self, key):
        if key not in self._materials:
            self._materials[key] = Material("c_%d_%d_%d" % key, key)
        return self._materials[key].name

    def name_for(self, color):
        return self._register(quantize_color(color))

    def names_for(self, colors):
        """One name per row; new colors are registered in row order"""
        keys = quantize_colors(colors).reshape(-1, 3)
        if not len(keys):
            return []
        unique, first, inverse = np.unique(keys, axis=0, return_index=True, return_inverse=True)
        names = [None] * len(unique)
        for k in np.argsort(first, kind='stable'):
            names[k] = self._register(tuple(int(c) for c in unique[k]))
        return [names[k] for k in inverse.reshape(-1)]

    def materials(self):
        return list(self._materials.values())

    def __len__(self):
        return len(self._materials)


@dataclass
class SolidMesh:
    """Closed triangulated solid: vertex positions/colors, faces and materials"""
    vertices: np.ndarray
    colors: np.ndarray
    faces: np.ndarray
    face_materials: list
    materials: list = field(default_factory=list)

    @property
    def vertex_count(self):
        return len(self.vertices)

    @property
    def face_count(self):
        return len(self.faces)

    def material_by_name(self):
        return {m.name: m for m in self.materials}


def triangle_normals(positions, faces):
    """Unnormalised geometric normals (v2 - v1) x (v3 - v1) for (F, 3) faces"""
    tri = positions[np.asarray(faces, dtype=np.int64).reshape(-1, 3)]
    return np.cross(tri[:, 1] - tri[:, 0], tri[:, 2] - tri[:, 0])


def orient_faces(positions, faces, outward):
    """Swap the last two indices of every face whose normal opposes outward"""
    faces = np.array(faces, dtype=np.int64).reshape(-1, 3)
    flip = triangle_normals(positions, faces) @ np.asarray(outward, dtype=float) < 0
    faces[flip, 1:] = faces[flip, :0:-1]
    return faces


class SolidAssembler:
    """
    Accumulates vertices and faces for one SolidMesh.

    Every face goes through emit_faces (emit_face is the one-face form), which
    orients the block against the requested outward axis; there is no other
    way to add a face.
    """

    def __init__(self):
        self._positions = []
        self._colors = []
        self._faces = []
        self._cache = None
        self.vertex_count = 0
        self.face_materials = []
        self.palette = MaterialPalette()

    def add_vertex(self, position, color):
        return self.add_vertices([position], [color])

    def add_vertices(self, positions, colors):
        """Bulk add (N, 3) arrays; returns the index of the first vertex"""
        positions = np.asarray(positions, dtype=float).reshape(-1, 3)
        start = self.vertex_count
        self._positions.append(positions)
        self._colors.append(np.asarray(colors, dtype=float).reshape(-1, 3))
        self.vertex_count += len(positions)
        self._cache = None
        return start

    @property
    def positions(self):
        if self._cache is None:
            self._cache = np.concatenate(self._positions) if self._positions else np.zeros((0, 3))
        return self._cache

    @property
    def faces(self):
        return np.concatenate(self._faces) if self._faces else np.zeros((0, 3), dtype=np.int64)

    def normal(self, v1, v2, v3):
        return tuple(triangle_normals(self.positions, [(v1, v2, v3)])[0])

    def has_area(self, v1, v2, v3):
        return bool(self.area_mask([(v1, v2, v3)])[0])

    def area_mask(self, faces):
        """True for every face whose corners are not collinear"""
        return np.any(triangle_normals(self.positions, faces) != 0, axis=1)

    def emit_face(self, v1, v2, v3, outward, material):
        self.emit_faces([(v1, v2, v3)], outward, [material])

    def emit_faces(self, faces, outward, materials):
        """Orient and append a block of faces; materials is one name or one per face"""
        faces = np.asarray(faces, dtype=np.int64).reshape(-1, 3)
        if isinstance(materials, str):
            materials = [materials] * len(faces)
        repeated = (faces[:, 0] == faces[:, 1]) | (faces[:, 1] == faces[:, 2]) | (faces[:, 0] == faces[:, 2])
        if repeated.any():
            v1, v2, v3 = faces[np.argmax(repeated)].tolist()
            logger.error("Degenerate face requested: (%d, %d, %d)", v1, v2, v3)
            raise DegenerateGeometry("face repeats a vertex: (%d, %d, %d)" % (v1, v2, v3))
        if len(materials) != len(faces):
            raise ValueError("got %d materials for %d faces" % (len(materials), len(faces)))

        self._faces.append(orient_faces(self.positions, faces, outward))
        self.face_materials.extend(materials)

    def material_for(self, color):
        return self.palette.name_for(color)

    def materials_for(self, colors):
        return self.palette.names_for(colors)

    def to_mesh(self):
        return SolidMesh(
            vertices=self.positions.copy(),
            colors=np.concatenate(self._colors) if self._colors else np.zeros((0, 3)),
            faces=self.faces,
            face_materials=list(self.face_materials),
            materials=self.palette.materials(),
        )


def signed_volume(mesh, origin=(0.0, 0.0, 0.0)):
    """Volume enclosed by the faces, positive when they all wind outward"""
    p = mesh.vertices[mesh.faces] - np.asarray(origin, dtype=float)
    return float(np.einsum('ij,ij->i', p[:, 0], np.cross(p[:, 1], p[:, 2])).sum() / 6.0)


def face_normals(mesh):
    """Unnormalised per-face normals following the stored winding"""
    return triangle_normals(mesh.vertices, mesh.faces)


def find_open_edges(mesh, decimals=6, tolerance=1e-5):
    """
    Return edge segments used by exactly one face.

    Coincident positions are welded first and faces that collapse under the
    weld are ignored. Edges shared by exactly two faces are closed; every
    other edge is split at each vertex lying on it, so the T-junctions left
    by merged flat rectangles count as closed. An empty list means the
    surface is watertight.
    """
    points, inverse = np.unique(np.round(mesh.vertices, decimals), axis=0, return_inverse=True)
    inverse = inverse.reshape(-1)
    faces = inverse[mesh.faces]
    keep = (faces[:, 0] != faces[:, 1]) & (faces[:, 1] != faces[:, 2]) & (faces[:, 0] != faces[:, 2])
    faces = faces[keep]

    edges = np.sort(np.concatenate([faces[:, [0, 1]], faces[:, [1, 2]], faces[:, [2, 0]]]), axis=1)
    edges, multiplicity = np.unique(edges, axis=0, return_counts=True)
    unpaired = multiplicity != 2
    edges, multiplicity = edges[unpaired], multiplicity[unpaired]

    # candidate vertices for an edge come from its x range
    order = np.argsort(points[:, 0], kind='stable')
    xs = points[order, 0]

    segments = Counter()
    for (p, q), count in zip(edges.tolist(), multiplicity.tolist()):
        a, b = points[p], points[q]
        lo, hi = min(a[0], b[0]) - tolerance, max(a[0], b[0]) + tolerance
        candidates = order[np.searchsorted(xs, lo, 'left'):np.searchsorted(xs, hi, 'right')]

        direction = b - a
        length = np.sqrt(direction @ direction)
        offsets = points[candidates] - a
        along = offsets @ direction / length
        off_line = np.linalg.norm(np.cross(offsets, direction), axis=1) / length
        inside = (along > tolerance) & (along < length - tolerance) & (off_line <= tolerance)

        chain = [p] + candidates[inside][np.argsort(along[inside])].tolist() + [q]
        for u, v in zip(chain, chain[1:]):
            segments[(min(u, v), max(u, v))] += count

    open_edges = [(tuple(points[u]), tuple(points[v])) for (u, v), n in segments.items() if n == 1]
    if open_edges:
        logger.debug("Found %d open edge segments", len(open_edges))
    return open_edges
