"""
Grid construction from CaseConfig geometry settings.

Builds the static, uniform, periodic 2-D mesh of the plume cross-section:
NX columns over [x_min, x_max] and NY rows over [y_min, y_max], cell centres
at the middle of each cell.
"""

from __future__ import annotations

import logging

import numpy as np

from .types import CaseConfig, CaseGrid, FloatArray, SpatialGrid

logger = logging.getLogger(__name__)


def _cell_centres(lo: float, hi: float, n: int) -> tuple[FloatArray, float]:
    """Return (centres, width) of n uniform cells on [lo, hi]."""
    width = (float(hi) - float(lo)) / int(n)
    if not np.isfinite(width) or width <= 0.0:
        raise ValueError(f"Degenerate axis [{lo}, {hi}] with n={n}")
    centres = float(lo) + width * (np.arange(n, dtype=np.float64) + 0.5)
    return centres, width


def build_grid_from_block(geo: CaseGrid) -> SpatialGrid:
    """Build a SpatialGrid from a CaseGrid block."""
    x, dx = _cell_centres(geo.x_min, geo.x_max, geo.nx)
    y, dy = _cell_centres(geo.y_min, geo.y_max, geo.ny)
    areas = np.full((geo.ny, geo.nx), dx * dy, dtype=np.float64)
    grid = SpatialGrid(nx=int(geo.nx), ny=int(geo.ny), x=x, y=y, dx=dx, dy=dy, areas=areas)
    logger.debug(
        "Built grid nx=%d ny=%d dx=%.3g m dy=%.3g m extent=[%.4g,%.4g]x[%.4g,%.4g]",
        grid.nx,
        grid.ny,
        dx,
        dy,
        geo.x_min,
        geo.x_max,
        geo.y_min,
        geo.y_max,
    )
    return grid


def build_grid(cfg: CaseConfig) -> SpatialGrid:
    """Build a SpatialGrid from the case configuration."""
    return build_grid_from_block(cfg.grid)


def nearest_cell(grid: SpatialGrid, x0: float = 0.0, y0: float = 0.0) -> int:
    """Flat (row-major) index of the cell whose centre is closest to (x0, y0)."""
    i = int(np.argmin(np.abs(grid.x - x0)))
    j = int(np.argmin(np.abs(grid.y - y0)))
    return j * grid.nx + i
