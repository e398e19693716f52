"""
SolidMesh -> text/binary payloads.

OBJ + MTL for colored printing services, binary STL for slicers. Nothing here
touches the file system; callers decide where the payloads go.
"""
import io
from collections import namedtuple

import numpy as np
import stl

from config import EXPORT_BASENAME

ObjExport = namedtuple('ObjExport', ['obj_text', 'mtl_text'])


def to_obj(mesh, basename=EXPORT_BASENAME):
    """Vertex/face text; one usemtl directive per face, 1-based indices"""
    lines = [
        '# Spectrogram sculpture export',
        f'mtllib {basename}.mtl',
        'g spectrogram',
    ]
    lines.extend('v %.5f %.5f %.5f' % (x, y, z) for x, y, z in mesh.vertices.tolist())
    for (a, b, c), name in zip(mesh.faces.tolist(), mesh.face_materials):
        lines.append(f'usemtl {name}')
        lines.append(f'f {a + 1} {b + 1} {c + 1}')
    return '\n'.join(lines)


def to_mtl(mesh):
    """Material library text, one block per distinct quantized color"""
    lines = ['# Materials']
    for material in mesh.materials:
        r, g, b = material.diffuse
        lines.append(f'newmtl {material.name}')
        lines.append('Kd %.6f %.6f %.6f' % (r, g, b))
        lines.append('Ka 0 0 0')
        lines.append('Ks 0 0 0')
        lines.append('illum 1')
        lines.append('d 1')
        lines.append('')
    return '\n'.join(lines)


def export_obj(mesh, basename=EXPORT_BASENAME):
    return ObjExport(to_obj(mesh, basename), to_mtl(mesh))


def to_stl_bytes(mesh, name=EXPORT_BASENAME):
    """Binary STL of the solid (numpy-stl recomputes the facet normals)"""
    stl_mesh = stl.mesh.Mesh(np.zeros(mesh.face_count, dtype=stl.mesh.Mesh.dtype))
    stl_mesh.vectors[:] = mesh.vertices[mesh.faces]

    buffer = io.BytesIO()
    stl_mesh.save(f'{name}.stl', fh=buffer, mode=stl.Mode.BINARY)
    return buffer.getvalue()
