"""
SolidMesh to Web 3D Converter
Prepares the exported solid for the browser preview
"""

import logging

import numpy as np
import trimesh

from mesh import find_open_edges

logger = logging.getLogger(__name__)


def to_trimesh(mesh):
    """Wrap the solid in a trimesh object, keeping vertex order and colors"""
    colors = np.clip(np.round(mesh.colors * 255), 0, 255).astype(np.uint8)
    return trimesh.Trimesh(
        vertices=mesh.vertices,
        faces=mesh.faces,
        vertex_colors=colors,
        process=False,
    )


def mesh_to_glb(mesh):
    """Binary glTF of the solid for viewers that prefer it"""
    return to_trimesh(mesh).export(file_type='glb')


def mesh_to_threejs_json(mesh):
    """Three.js BufferGeometry JSON with per-vertex colors"""
    index_type = "Uint32Array" if mesh.vertex_count > 65535 else "Uint16Array"

    return {
        "metadata": {
            "version": 4.5,
            "type": "BufferGeometry",
            "generator": "Spectrogram sculpture exporter"
        },
        "data": {
            "attributes": {
                "position": {
                    "itemSize": 3,
                    "type": "Float32Array",
                    "array": mesh.vertices.flatten().tolist()
                },
                "color": {
                    "itemSize": 3,
                    "type": "Float32Array",
                    "array": mesh.colors.flatten().tolist()
                }
            },
            "index": {
                "type": index_type,
                "array": mesh.faces.flatten().tolist()
            }
        }
    }


def get_mesh_info(mesh):
    """Basic information about the solid"""
    tm = to_trimesh(mesh)
    open_edges = find_open_edges(mesh)
    info = {
        "vertices_count": mesh.vertex_count,
        "faces_count": mesh.face_count,
        "materials_count": len(mesh.materials),
        "bounds": tm.bounds.tolist(),
        "volume": float(tm.volume),
        "area": float(tm.area),
        "is_watertight": not open_edges,
        "open_edges": len(open_edges),
    }
    logger.debug("Mesh info: %s", info)
    return info
