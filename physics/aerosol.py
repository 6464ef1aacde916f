"""
Binned aerosol number distributions.

A population holds pdf[b, j, i]: number density [#/cm^3] of particles in
radius bin b of cell (j, i). Bins are log-spaced; centres are the geometric
mean of the bin edges.
"""

from __future__ import annotations

import math
from typing import Optional

import numpy as np
from scipy.special import erf

from core.types import FloatArray

from .constants import PI


def log_bin_edges(r_min: float, r_max: float, n_bin: int) -> FloatArray:
    """n_bin + 1 log-spaced radius edges [m]."""
    if not (0.0 < r_min < r_max) or n_bin < 1:
        raise ValueError(f"invalid bin request r_min={r_min}, r_max={r_max}, n_bin={n_bin}")
    return np.geomspace(r_min, r_max, n_bin + 1)


def lognormal_bin_numbers(edges: FloatArray, number: float, r_median: float, sigma: float) -> FloatArray:
    """Number [#/cm^3] falling in each bin of a lognormal distribution."""
    if number <= 0.0:
        return np.zeros(edges.size - 1)
    if r_median <= 0.0 or sigma <= 1.0:
        raise ValueError(f"lognormal needs r_median > 0 and sigma > 1, got {r_median}, {sigma}")
    z = np.log(edges / r_median) / (math.sqrt(2.0) * math.log(sigma))
    cdf = 0.5 * (1.0 + erf(z))
    return number * np.diff(cdf)


class AerosolPopulation:
    """Binned number distribution over the mesh (or a single cell)."""

    def __init__(self, edges: FloatArray, pdf: FloatArray, *, density: float) -> None:
        edges = np.asarray(edges, dtype=np.float64)
        pdf = np.asarray(pdf, dtype=np.float64)
        if edges.ndim != 1 or edges.size < 2 or np.any(np.diff(edges) <= 0.0):
            raise ValueError("bin edges must be a strictly increasing 1-D array")
        if pdf.ndim != 3 or pdf.shape[0] != edges.size - 1:
            raise ValueError(f"pdf shape {pdf.shape} must be (n_bin, NY, NX) with n_bin={edges.size - 1}")
        self.edges = edges
        self.pdf = np.ascontiguousarray(pdf)
        self.density = float(density)
        self.centers = np.sqrt(edges[:-1] * edges[1:])
        self.volumes = 4.0 / 3.0 * PI * self.centers**3  # [m^3]

    @classmethod
    def zeros(cls, edges: FloatArray, shape: tuple[int, int], *, density: float) -> "AerosolPopulation":
        return cls(edges, np.zeros((edges.size - 1,) + tuple(shape)), density=density)

    @classmethod
    def uniform(cls, edges: FloatArray, numbers: FloatArray, shape: tuple[int, int], *, density: float) -> "AerosolPopulation":
        """Same per-bin numbers (n_bin,) in every cell."""
        pdf = np.broadcast_to(np.asarray(numbers, dtype=np.float64)[:, None, None], (edges.size - 1,) + tuple(shape))
        return cls(edges, pdf.copy(), density=density)

    @property
    def n_bin(self) -> int:
        return self.centers.size

    def copy(self) -> "AerosolPopulation":
        return AerosolPopulation(self.edges, self.pdf.copy(), density=self.density)

    # moments: all return (NY, NX) fields
    def moment(self, k: float) -> FloatArray:
        return np.tensordot(self.centers**k, self.pdf, axes=(0, 0))

    def number(self) -> FloatArray:
        return self.pdf.sum(axis=0)

    def surface_area(self) -> FloatArray:
        """[m^2/cm^3]"""
        return 4.0 * PI * self.moment(2.0)

    def volume(self) -> FloatArray:
        """[m^3/cm^3]"""
        return np.tensordot(self.volumes, self.pdf, axes=(0, 0))

    def effective_radius(self) -> FloatArray:
        m3 = self.moment(3.0)
        m2 = self.moment(2.0)
        with np.errstate(divide="ignore", invalid="ignore"):
            return np.where(m2 > 0.0, m3 / m2, 0.0)

    def aggregate(self, cells: Optional[np.ndarray] = None, weights: Optional[FloatArray] = None) -> tuple[float, float, float]:
        """(mean number, mean surface area, effective radius) over flat cell indices."""
        flat = self.pdf.reshape(self.n_bin, -1)
        if cells is not None:
            flat = flat[:, cells]
        if weights is None:
            weights = np.full(flat.shape[1], 1.0 / max(flat.shape[1], 1))
        else:
            weights = np.asarray(weights, dtype=np.float64) / np.sum(weights)
        mean_pdf = flat @ weights
        number = float(mean_pdf.sum())
        m2 = float(self.centers**2 @ mean_pdf)
        m3 = float(self.centers**3 @ mean_pdf)
        r_eff = m3 / m2 if m2 > 0.0 else 0.0
        return number, 4.0 * PI * m2, r_eff

    def total_number(self, cell_areas: FloatArray) -> float:
        """Particles per metre of plume [#/m]."""
        return float(np.sum(self.number() * cell_areas) * 1.0e6)

    def scale(self, factor: float) -> None:
        self.pdf *= float(factor)

    def add(self, numbers: FloatArray, cells: np.ndarray, factor: float = 1.0) -> None:
        """Add per-bin numbers (n_bin,) into the given flat cells."""
        flat = self.pdf.reshape(self.n_bin, -1)
        flat[:, cells] += factor * np.asarray(numbers, dtype=np.float64)[:, None]
