import logging

import numpy as np

from config import (
    BASE_THICKNESS,
    FLAT_EPSILON_FRACTION,
    HEIGHT_SCALE,
    NUM_SLICES,
    SOLID_BASE_COLOR,
    WIDTH,
)
from mesh import (
    OUT_BACK,
    OUT_BOTTOM,
    OUT_FRONT,
    OUT_LEFT,
    OUT_RIGHT,
    OUT_TOP,
    SolidAssembler,
)
from spectrum import color_ramp_array, default_row_geometry

# Captured history -> closed solid for printing
# x: time (slice index), z: frequency row (nonlinear), y: amplitude
# top heightfield + seam strip + base plate + four side walls, all wound outward

logger = logging.getLogger(__name__)


class InsufficientData(ValueError):
    """Export needs at least two captured slices"""


class SpectrogramSolidBuilder:
    def __init__(self, geometry=None, width=WIDTH, num_slices=NUM_SLICES,
                 height_scale=HEIGHT_SCALE, base_thickness=BASE_THICKNESS):
        self.geometry = geometry or default_row_geometry()
        self.width = width
        self.num_slices = num_slices
        self.height_scale = height_scale
        self.base_thickness = base_thickness

    @property
    def amplitude_scale(self):
        """Height of a full-scale amplitude"""
        return self.geometry.depth * self.height_scale

    def build(self, history):
        """Convert the full capture history to a SolidMesh"""
        slices = len(history)
        if slices < 2:
            raise InsufficientData("need at least 2 captured slices, got %d" % slices)

        active_rows = self.geometry.active_rows
        bins = active_rows + 1  # active band plus the front boundary row

        amplitudes = self._amplitude_grid(history, active_rows)
        heights = amplitudes * self.amplitude_scale
        # snap near-flat to exact zero so silent regions can merge
        heights[heights < FLAT_EPSILON_FRACTION * self.amplitude_scale] = 0.0

        dx = self.width / (self.num_slices - 1)
        export_width = dx * (slices - 1)
        xs = -export_width / 2 + dx * np.arange(slices)
        grid_x, grid_z = np.meshgrid(xs, self.geometry.export_positions, indexing='ij')

        assembler = SolidAssembler()
        base = assembler.material_for(SOLID_BASE_COLOR)

        top_positions = np.stack([grid_x, heights, grid_z], axis=-1).reshape(-1, 3)
        top_start = assembler.add_vertices(top_positions, color_ramp_array(amplitudes).reshape(-1, 3))

        bottom_y = np.full_like(grid_x, -self.base_thickness)
        bottom_positions = np.stack([grid_x, bottom_y, grid_z], axis=-1).reshape(-1, 3)
        bottom_start = assembler.add_vertices(bottom_positions, np.tile(SOLID_BASE_COLOR, (slices * bins, 1)))

        top = (top_start + np.arange(slices * bins)).reshape(slices, bins)
        bottom = (bottom_start + np.arange(slices * bins)).reshape(slices, bins)

        self._emit_top_surface(assembler, top, heights, base)
        self._emit_seam(assembler, top, base)
        self._emit_bottom(assembler, bottom, base)
        self._emit_side_walls(assembler, top, bottom, base)

        mesh = assembler.to_mesh()
        logger.info("Built solid from %d slices: %d vertices, %d faces, %d materials",
                    slices, mesh.vertex_count, mesh.face_count, len(mesh.materials))
        return mesh

    def _amplitude_grid(self, history, active_rows):
        """(slices, bins) amplitudes; collapsed rows are dropped, boundary row is silent"""
        data = np.asarray(history.as_array() if hasattr(history, 'as_array') else history, dtype=float)
        grid = np.zeros((data.shape[0], active_rows + 1))
        grid[:, :active_rows] = np.clip(data[:, :active_rows], 0.0, 1.0)
        return grid

    @staticmethod
    def _cell_faces(grid, i, j):
        """(a, b, c) and (a, c, d) for each cell (i, j), interleaved per cell"""
        a, b = grid[i, j], grid[i + 1, j]
        c, d = grid[i + 1, j + 1], grid[i, j + 1]
        return np.stack([np.stack([a, b, c], axis=-1), np.stack([a, c, d], axis=-1)], axis=1).reshape(-1, 3)

    def _emit_top_surface(self, assembler, top, heights, base):
        """Heightfield over the active band, flat cells merged into rectangles"""
        cells_i = len(top) - 1
        cells_j = self.geometry.active_rows - 1
        h = heights
        flat = ((h[:-1, :cells_j] == 0) & (h[1:, :cells_j] == 0)
                & (h[:-1, 1:cells_j + 1] == 0) & (h[1:, 1:cells_j + 1] == 0))

        # non-flat cells in scan order (j outer, i inner), each triangle
        # colored by its own mean height
        j, i = np.nonzero(~flat.T)
        scale = 3 * self.amplitude_scale
        t1 = (h[i, j] + h[i + 1, j] + h[i + 1, j + 1]) / scale
        t2 = (h[i, j] + h[i + 1, j + 1] + h[i, j + 1]) / scale
        colors = color_ramp_array(np.stack([t1, t2], axis=1).reshape(-1))
        assembler.emit_faces(self._cell_faces(top, i, j), OUT_TOP, assembler.materials_for(colors))

        rectangles = self._merge_flat_cells(flat.tolist())
        quads = []
        for i0, i1, j0, j1 in rectangles:
            a, b = top[i0, j0], top[i1 + 1, j0]
            c, d = top[i1 + 1, j1 + 1], top[i0, j1 + 1]
            quads.extend([(a, b, c), (a, c, d)])
        assembler.emit_faces(quads, OUT_TOP, base)
        logger.debug("Top surface: %d non-flat cells, %d merged flat rectangles", len(i), len(rectangles))

    @staticmethod
    def _merge_flat_cells(flat):
        """
        Greedy cover of the flat cells by rectangles (i0, i1, j0, j1), inclusive.

        Cells are scanned j outer, i inner. A rectangle first grows along time
        while the next cell is flat and free, then along frequency while the
        whole run of the next row is flat and free.
        """
        cells_i = len(flat)
        cells_j = len(flat[0]) if cells_i else 0
        visited = [[False] * cells_j for _ in range(cells_i)]
        rectangles = []

        for j in range(cells_j):
            for i in range(cells_i):
                if visited[i][j] or not flat[i][j]:
                    continue

                i_end = i
                while i_end + 1 < cells_i and flat[i_end + 1][j] and not visited[i_end + 1][j]:
                    i_end += 1
                j_end = j
                while j_end + 1 < cells_j and all(
                        flat[k][j_end + 1] and not visited[k][j_end + 1] for k in range(i, i_end + 1)):
                    j_end += 1

                for jj in range(j, j_end + 1):
                    for ii in range(i, i_end + 1):
                        visited[ii][jj] = True
                rectangles.append((i, i_end, j, j_end))
        return rectangles

    def _emit_seam(self, assembler, top, base):
        """
        Close the strip between the last active row and the boundary row.

        Both rows sit at z = +depth/2, so the strip is a vertical face running
        from the last active row's height down to zero. Triangles with no area
        (the row is silent there) are left out.
        """
        last_active = self.geometry.active_rows - 1
        a0, a1 = top[:-1, last_active], top[1:, last_active]
        b0, b1 = top[:-1, last_active + 1], top[1:, last_active + 1]
        strip = np.stack([np.stack([a0, a1, b1], axis=-1), np.stack([a0, b1, b0], axis=-1)], axis=1).reshape(-1, 3)
        has_area = assembler.area_mask(strip)
        assembler.emit_faces(strip[has_area], OUT_FRONT, base)
        logger.debug("Seam strip: %d zero-area triangles omitted", int((~has_area).sum()))

    def _emit_bottom(self, assembler, bottom, base):
        """Base plate cell by cell so its edges meet the side walls exactly"""
        i, j = np.meshgrid(np.arange(len(bottom) - 1), np.arange(self.geometry.active_rows - 1), indexing='ij')
        assembler.emit_faces(self._cell_faces(bottom, i.reshape(-1), j.reshape(-1)), OUT_BOTTOM, base)

    def _emit_side_walls(self, assembler, top, bottom, base):
        back, front = 0, self.geometry.active_rows
        rows = self.geometry.active_rows  # the collapsed band has no width along z
        self._emit_wall(assembler, top[:, back], bottom[:, back], OUT_BACK, base)
        self._emit_wall(assembler, top[:, front], bottom[:, front], OUT_FRONT, base)
        self._emit_wall(assembler, top[0, :rows], bottom[0, :rows], OUT_LEFT, base)
        self._emit_wall(assembler, top[-1, :rows], bottom[-1, :rows], OUT_RIGHT, base)

    @staticmethod
    def _emit_wall(assembler, top_line, bottom_line, outward, material):
        # fixed diagonal: top -> bottom at same index -> bottom at next index
        a_top, b_top = top_line[:-1], top_line[1:]
        a_bottom, b_bottom = bottom_line[:-1], bottom_line[1:]
        faces = np.stack([np.stack([a_top, a_bottom, b_bottom], axis=-1),
                          np.stack([a_top, b_bottom, b_top], axis=-1)], axis=1).reshape(-1, 3)
        assembler.emit_faces(faces, outward, material)
