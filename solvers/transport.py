"""
Spectral advection-diffusion on the periodic cross-section.

One step multiplies the 2-D Fourier transform of a field by

    exp(-(Dx kx^2 + Dy ky^2) dt - i (vx kx + vy ky) dt)

which is exact for constant coefficients. Negative values produced by the
truncated spectrum are replaced by a fill value after the inverse transform.
"""

from __future__ import annotations

import logging
from typing import Optional

import numpy as np

from core.types import FloatArray, SpatialGrid

logger = logging.getLogger(__name__)


class TransportEngine:
    """Spectral solver bound to one grid; coefficients are set before each solve."""

    def __init__(self, grid: SpatialGrid, *, fill_negative: bool = True, fill_value: float = 0.0) -> None:
        self.shape = grid.shape
        self.fill_negative = bool(fill_negative)
        self.fill_value = float(fill_value)
        self._kx = 2.0 * np.pi * np.fft.rfftfreq(grid.nx, d=grid.dx)  # (NX//2 + 1,)
        self._ky = 2.0 * np.pi * np.fft.fftfreq(grid.ny, d=grid.dy)  # (NY,)
        self.dt = 0.0
        self.diffusion = (0.0, 0.0)
        self.velocity = (0.0, 0.0)
        self._factor: Optional[np.ndarray] = None

    def update_time_step(self, dt: float) -> None:
        if dt != self.dt:
            self.dt = float(dt)
            self._factor = None

    def update_diffusion(self, d_x: float, d_y: float) -> None:
        if d_x < 0.0 or d_y < 0.0:
            raise ValueError(f"diffusion coefficients must be non-negative, got ({d_x}, {d_y})")
        if (d_x, d_y) != self.diffusion:
            self.diffusion = (float(d_x), float(d_y))
            self._factor = None

    def update_advection(self, v_x: float, v_y: float) -> None:
        if (v_x, v_y) != self.velocity:
            self.velocity = (float(v_x), float(v_y))
            self._factor = None

    def factor(self) -> np.ndarray:
        """(NY, NX//2 + 1) complex multiplier for the current coefficients."""
        if self._factor is None:
            kx = self._kx[None, :]
            ky = self._ky[:, None]
            d_x, d_y = self.diffusion
            v_x, v_y = self.velocity
            self._factor = np.exp(-(d_x * kx**2 + d_y * ky**2) * self.dt - 1j * (v_x * kx + v_y * ky) * self.dt)
        return self._factor

    def solve(self, field: FloatArray, *, fill_value: Optional[float] = None) -> None:
        """Advance field (..., NY, NX) in place; leading axes are independent fields."""
        if field.shape[-2:] != self.shape:
            raise ValueError(f"field trailing shape {field.shape[-2:]} != grid {self.shape}")
        spectrum = np.fft.rfft2(field, axes=(-2, -1))
        spectrum *= self.factor()
        field[...] = np.fft.irfft2(spectrum, s=self.shape, axes=(-2, -1))
        if self.fill_negative:
            fill = self.fill_value if fill_value is None else float(fill_value)
            field[field < 0.0] = fill
