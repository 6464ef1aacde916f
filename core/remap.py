"""
Ring <-> mesh mapping.

Every cell is assigned, by its centre, to exactly one ring with weight 1.0.
Ring values are area-weighted cell averages; a ring-level update is pushed back
to the cells by adding the ring change, so sub-ring structure is preserved.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import List

import numpy as np

from .rings import RingCluster
from .types import FloatArray, SpatialGrid

logger = logging.getLogger(__name__)


class EmptyRingError(ValueError):
    """Raised when a ring contains no cell centre (grid too coarse for the rings)."""


@dataclass(slots=True)
class RingToMeshMap:
    """Cell membership per ring.

    cells[r]      : flat (row-major) indices of the cells in ring r
    weights[r]    : per-cell weights (1.0 for centre assignment)
    ring_of_cell  : (NY*NX,) ring index of every cell
    cell_areas    : (NY*NX,) cell areas [m^2]
    ring_area     : (n_ring,) sum of the member cell areas [m^2]
    """

    shape: tuple[int, int]
    cells: List[np.ndarray]
    weights: List[FloatArray]
    ring_of_cell: np.ndarray
    cell_areas: FloatArray
    ring_area: FloatArray

    @property
    def n_ring(self) -> int:
        return len(self.cells)

    def check_partition(self) -> None:
        """Every cell in exactly one ring; fail fast otherwise."""
        n_cells = self.shape[0] * self.shape[1]
        counts = np.zeros(n_cells, dtype=np.int64)
        for idx in self.cells:
            np.add.at(counts, idx, 1)
        if np.any(counts != 1):
            bad = int(np.count_nonzero(counts != 1))
            raise ValueError(f"Ring map is not a partition: {bad} cells covered != 1 times")
        for r, idx in enumerate(self.cells):
            if idx.size == 0:
                raise EmptyRingError(f"Ring {r} contains no cell; refine the grid or reduce n_ring")

    def _flat(self, fields: FloatArray) -> FloatArray:
        arr = np.asarray(fields)
        if arr.shape[-2:] != self.shape:
            raise ValueError(f"field trailing shape {arr.shape[-2:]} != mesh {self.shape}")
        return arr.reshape(arr.shape[:-2] + (-1,))

    def ring_average(self, fields: FloatArray) -> FloatArray:
        """Area-weighted ring averages; (..., NY, NX) -> (n_ring, ...)."""
        flat = self._flat(fields)
        out = np.empty((self.n_ring,) + flat.shape[:-1], dtype=np.float64)
        for r, (idx, w) in enumerate(zip(self.cells, self.weights)):
            aw = w * self.cell_areas[idx]
            out[r] = flat[..., idx] @ aw / aw.sum()
        return out

    def apply_ring_delta(self, fields: FloatArray, ring: int, new: FloatArray, old: FloatArray) -> None:
        """cell <- cell + weight * (new - old) for every cell of `ring` (in place)."""
        if not fields.flags.c_contiguous:
            raise ValueError("apply_ring_delta needs a C-contiguous field array")
        flat = fields.reshape(fields.shape[:-2] + (-1,))
        idx = self.cells[ring]
        delta = np.asarray(new, dtype=np.float64) - np.asarray(old, dtype=np.float64)
        flat[..., idx] += delta[..., None] * self.weights[ring]

    def cells_at_level(self, cluster: RingCluster, level: int) -> np.ndarray:
        """Flat indices of every cell belonging to an annulus (both halves)."""
        rings = cluster.rings_at_level(level)
        return np.concatenate([self.cells[r] for r in rings])


def build_ring_map(cluster: RingCluster, grid: SpatialGrid) -> RingToMeshMap:
    """Assign each cell centre to its ring and compute ring areas."""
    xx, yy = grid.mesh()
    ring_of_cell = cluster.locate(xx, yy).reshape(-1)
    cell_areas = np.asarray(grid.areas, dtype=np.float64).reshape(-1)
    cells: List[np.ndarray] = []
    weights: List[FloatArray] = []
    for r in range(cluster.n_ring):
        idx = np.flatnonzero(ring_of_cell == r)
        cells.append(idx)
        weights.append(np.ones(idx.size, dtype=np.float64))
    ring_area = np.array([cell_areas[idx].sum() for idx in cells], dtype=np.float64)

    ring_map = RingToMeshMap(
        shape=grid.shape,
        cells=cells,
        weights=weights,
        ring_of_cell=ring_of_cell,
        cell_areas=cell_areas,
        ring_area=ring_area,
    )
    ring_map.check_partition()
    cluster.ring_area = ring_area.copy()
    logger.info("Ring map: %s; cells per ring %s", cluster.describe(), [int(c.size) for c in cells])
    return ring_map
