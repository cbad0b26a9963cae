from __future__ import annotations

from dataclasses import dataclass
from typing import Iterator, Sequence

import numpy as np

from .blobs import Blob
from .settings import GridGeometry


def cell_rect(geom: GridGeometry, col: int, row: int, *, inset: bool = True) -> tuple[int, int, int, int]:
    """Pixel rect (x, y, w, h) of one tile cell, truncated to ints.

    With `inset` the rect is shrunk by the tolerance on every side so that a body
    standing on the seam between two tiles does not trigger both.
    """
    tx = float(geom.tol_x) if inset else 0.0
    ty = float(geom.tol_y) if inset else 0.0
    x = int(geom.origin_x + col * geom.cell_w + tx)
    y = int(geom.origin_y + row * geom.cell_h + ty)
    w = int(geom.cell_w - 2.0 * tx)
    h = int(geom.cell_h - 2.0 * ty)
    return x, y, w, h


@dataclass(frozen=True)
class OccupancyGrid:
    """Per-cycle tile occupancy.

    `cells[row, col]` is indexed in image space. Consumers get logical tile
    coordinates through `logical()` / `iter_cells()`, which apply the mounting
    reversal given by `flip_cols` / `flip_rows`.
    """

    cells: np.ndarray
    flip_cols: bool = True
    flip_rows: bool = True

    @property
    def rows(self) -> int:
        return int(self.cells.shape[0])

    @property
    def cols(self) -> int:
        return int(self.cells.shape[1])

    @property
    def is_empty(self) -> bool:
        """True when nobody stands on the field."""
        return not bool(self.cells.any())

    def occupied(self, col: int, row: int) -> bool:
        return bool(self.cells[int(row), int(col)])

    def map_index(self, col: int, row: int) -> tuple[int, int]:
        c = self.cols - 1 - int(col) if self.flip_cols else int(col)
        r = self.rows - 1 - int(row) if self.flip_rows else int(row)
        return c, r

    def logical(self) -> np.ndarray:
        out = self.cells
        if self.flip_rows:
            out = out[::-1, :]
        if self.flip_cols:
            out = out[:, ::-1]
        return np.ascontiguousarray(out)

    def iter_cells(self) -> Iterator[tuple[int, int, bool]]:
        for row in range(self.rows):
            for col in range(self.cols):
                c, r = self.map_index(col, row)
                yield c, r, bool(self.cells[row, col])

    def occupied_cells(self) -> list[tuple[int, int]]:
        return [(c, r) for c, r, occ in self.iter_cells() if occ]


def empty_grid(geom: GridGeometry, *, flip_cols: bool = True, flip_rows: bool = True) -> OccupancyGrid:
    rows = max(0, int(geom.rows))
    cols = max(0, int(geom.cols))
    cells = np.zeros((rows, cols), dtype=bool)
    cells.setflags(write=False)
    return OccupancyGrid(cells=cells, flip_cols=bool(flip_cols), flip_rows=bool(flip_rows))


def intersect_grid(
    blobs: Sequence[Blob],
    geom: GridGeometry,
    *,
    flip_cols: bool = True,
    flip_rows: bool = True,
) -> OccupancyGrid:
    if geom.is_empty:
        return empty_grid(geom, flip_cols=flip_cols, flip_rows=flip_rows)
    cells = np.zeros((int(geom.rows), int(geom.cols)), dtype=bool)
    if blobs:
        for row in range(int(geom.rows)):
            for col in range(int(geom.cols)):
                x, y, w, h = cell_rect(geom, col, row)
                if w <= 0 or h <= 0:
                    continue
                for b in blobs:
                    if b.intersects(x, y, w, h):
                        cells[row, col] = True
                        break
    cells.setflags(write=False)
    return OccupancyGrid(cells=cells, flip_cols=bool(flip_cols), flip_rows=bool(flip_rows))
