"""
Concentric elliptic ring partition of the plume cross-section.

Rings are equal-area elliptic annuli around the plume axis, described by the
normalised elliptic radius rho = sqrt((x/a)^2 + (y/b)^2) with semi-axes (a, b)
of the initial plume. Annulus i covers rho in [sqrt(i), sqrt(i+1)); the last
annulus is unbounded so that the ring set covers the whole domain. With half
rings every annulus is split into an upper (y >= y0) and a lower half.
"""

from __future__ import annotations

import logging
import math
from dataclasses import dataclass
from typing import List, Optional

import numpy as np

from .types import FloatArray

logger = logging.getLogger(__name__)


@dataclass(frozen=True, slots=True)
class Ring:
    index: int
    level: int  # annulus number, 0 is the innermost ellipse
    inner: float  # normalised inner radius
    outer: float  # normalised outer radius (inf for the outermost annulus)
    half: Optional[str] = None  # "upper" | "lower" | None


class RingCluster:
    """Ordered set of rings; ring index increases outward (upper half before lower)."""

    def __init__(
        self,
        n_ring: int,
        semi_x: float,
        semi_y: float,
        *,
        half_ring: bool = False,
        x0: float = 0.0,
        y0: float = 0.0,
    ) -> None:
        if int(n_ring) < 2:
            raise ValueError(f"RingCluster needs n_ring >= 2, got {n_ring}")
        if not (semi_x > 0.0 and semi_y > 0.0):
            raise ValueError(f"Ring semi-axes must be positive, got ({semi_x}, {semi_y})")
        self.n_level = int(n_ring)
        self.semi_x = float(semi_x)
        self.semi_y = float(semi_y)
        self.half_ring = bool(half_ring)
        self.x0 = float(x0)
        self.y0 = float(y0)
        self.rings: List[Ring] = self._build()
        self.ring_area: Optional[FloatArray] = None

    def _build(self) -> List[Ring]:
        rings: List[Ring] = []
        for level in range(self.n_level):
            inner = math.sqrt(level)
            outer = math.sqrt(level + 1) if level < self.n_level - 1 else math.inf
            if self.half_ring:
                rings.append(Ring(len(rings), level, inner, outer, "upper"))
                rings.append(Ring(len(rings), level, inner, outer, "lower"))
            else:
                rings.append(Ring(len(rings), level, inner, outer))
        return rings

    @property
    def n_ring(self) -> int:
        return len(self.rings)

    def __len__(self) -> int:
        return len(self.rings)

    def __iter__(self):
        return iter(self.rings)

    def elliptic_radius(self, x: FloatArray, y: FloatArray) -> FloatArray:
        return np.sqrt(((x - self.x0) / self.semi_x) ** 2 + ((y - self.y0) / self.semi_y) ** 2)

    def locate(self, x: FloatArray, y: FloatArray) -> np.ndarray:
        """Ring index of each point (every point belongs to exactly one ring)."""
        x = np.asarray(x, dtype=np.float64)
        y = np.asarray(y, dtype=np.float64)
        rho = self.elliptic_radius(x, y)
        level = np.minimum(np.floor(rho * rho).astype(np.int64), self.n_level - 1)
        # floor(rho^2) can land one level off right at a boundary
        below = (level > 0) & (rho < np.sqrt(level.astype(np.float64)))
        level = np.where(below, level - 1, level)
        if not self.half_ring:
            return level
        lower = (y - self.y0) < 0.0
        return 2 * level + lower.astype(np.int64)

    def rings_at_level(self, level: int) -> List[int]:
        return [r.index for r in self.rings if r.level == int(level)]

    def describe(self) -> str:
        kind = "half rings" if self.half_ring else "full rings"
        return f"{self.n_ring} {kind}, semi-axes ({self.semi_x:.4g} m, {self.semi_y:.4g} m)"
