"""
Brownian coagulation of binned aerosol (semi-implicit, volume conserving).

Kernel: Fuchs interpolation for Brownian coagulation (Jacobson, 2005, eq. 15.33).
Solver: Jacobson's semi-implicit scheme on a fixed volume grid. A collision of
bins i and j produces volume v_i + v_j that is split between the two bins
bracketing it through the size-split fractions f[i, j, k].
"""

from __future__ import annotations

import logging

import numpy as np

from core.types import FloatArray, MicrophysicsRegime

from .constants import KB, PI
from .thermo import cunningham_slip, dynamic_viscosity

logger = logging.getLogger(__name__)


def brownian_kernel(radius: FloatArray, temperature: float, pressure: float, density: float) -> FloatArray:
    """Coagulation kernel K[i, j] [cm^3/s] for the given radii [m]."""
    r = np.asarray(radius, dtype=np.float64)
    mass = density * 4.0 / 3.0 * PI * r**3
    mu = dynamic_viscosity(temperature)
    diff = KB * temperature * cunningham_slip(r, temperature, pressure) / (6.0 * PI * mu * r)
    speed = np.sqrt(8.0 * KB * temperature / (PI * mass))
    path = 8.0 * diff / (PI * speed)
    delta = ((2.0 * r + path) ** 3 - (4.0 * r**2 + path**2) ** 1.5) / (6.0 * r * path) - 2.0 * r

    r_sum = r[:, None] + r[None, :]
    d_sum = diff[:, None] + diff[None, :]
    g = np.sqrt(delta[:, None] ** 2 + delta[None, :] ** 2)
    c = np.sqrt(speed[:, None] ** 2 + speed[None, :] ** 2)
    kernel = 4.0 * PI * r_sum * d_sum / (r_sum / (r_sum + g) + 4.0 * d_sum / (c * r_sum))
    return kernel * 1.0e6


def size_split_fractions(volumes: FloatArray) -> FloatArray:
    """f[i, j, k]: fraction of the volume v_i + v_j assigned to bin k."""
    v = np.asarray(volumes, dtype=np.float64)
    n = v.size
    f = np.zeros((n, n, n), dtype=np.float64)
    vsum = v[:, None] + v[None, :]
    for k in range(n):
        if k < n - 1:
            inside = (vsum >= v[k]) & (vsum < v[k + 1])
            f[:, :, k] = np.where(inside, (v[k + 1] - vsum) / (v[k + 1] - v[k]) * v[k] / vsum, 0.0)
        else:
            f[:, :, k] = np.where(vsum >= v[k], 1.0, 0.0)
        if k > 0:
            below = (vsum > v[k - 1]) & (vsum < v[k])
            f[:, :, k] = np.where(below, 1.0 - f[:, :, k - 1], f[:, :, k])
    return f


class CoagulationOperator:
    """Precomputed gain/loss matrices for one bin grid and kernel."""

    def __init__(self, volumes: FloatArray, kernel: FloatArray) -> None:
        v = np.asarray(volumes, dtype=np.float64)
        kernel = np.asarray(kernel, dtype=np.float64)
        if kernel.shape != (v.size, v.size):
            raise ValueError(f"kernel shape {kernel.shape} != ({v.size}, {v.size})")
        f = size_split_fractions(v)
        n = v.size
        self.volumes = v
        # gain[k][i, j] = f[i, j, k] K[i, j] for i < k, j <= k
        self._gain = [f[:k, : k + 1, k] * kernel[:k, : k + 1] for k in range(n)]
        # loss[k, j] = (1 - f[k, j, k]) K[k, j]
        self._loss = np.stack([(1.0 - f[k, :, k]) * kernel[k, :] for k in range(n)])

    def step(self, numbers: FloatArray, dt: float) -> FloatArray:
        """Advance numbers (n_bin, n_cells) by dt [s]; returns the new numbers."""
        n_old = np.asarray(numbers, dtype=np.float64)
        v = self.volumes
        vn = np.empty_like(n_old)
        for k in range(v.size):
            gain = 0.0
            if k > 0:
                gain = np.einsum("ic,ij,jc->c", vn[:k], self._gain[k], n_old[: k + 1])
            loss = self._loss[k] @ n_old
            vn[k] = (v[k] * n_old[k] + dt * gain) / (1.0 + dt * loss)
        return vn / v[:, None]


def _mirror(pdf: FloatArray, symmetry: int) -> None:
    _, ny, nx = pdf.shape
    lo = nx // 2
    if lo > 0:
        pdf[:, :, :lo] = pdf[:, :, nx - lo :][:, :, ::-1]
    if symmetry >= 2:
        lo = ny // 2
        if lo > 0:
            pdf[:, :lo, :] = pdf[:, ny - lo :, :][:, ::-1, :]


def coagulate(
    pdf: FloatArray,
    operator: CoagulationOperator,
    dt: float,
    *,
    regime: MicrophysicsRegime,
    symmetry: int = 0,
) -> None:
    """Apply coagulation over dt to pdf (n_bin, NY, NX) in place.

    UNIFORM regimes solve one cell and copy it everywhere. With symmetry 1 only
    the right half (x >= 0) is solved and mirrored; with symmetry 2 only the
    upper-right quadrant.
    """
    if regime == MicrophysicsRegime.NONE or dt <= 0.0:
        return
    n_bin, ny, nx = pdf.shape
    if regime == MicrophysicsRegime.UNIFORM:
        new = operator.step(pdf[:, 0, 0][:, None], dt)
        pdf[...] = new[:, 0][:, None, None]
        return

    x0 = nx // 2 if symmetry >= 1 else 0
    y0 = ny // 2 if symmetry >= 2 else 0
    sub = pdf[:, y0:, x0:]
    new = operator.step(sub.reshape(n_bin, -1), dt)
    pdf[:, y0:, x0:] = new.reshape(sub.shape)
    if symmetry >= 1:
        _mirror(pdf, symmetry)
