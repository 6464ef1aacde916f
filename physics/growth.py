"""
Depositional growth of ice crystals in a uniform humidity field.

Diffusion-limited growth (Rogers & Yau, 1989): r dr/dt = G (S_i - 1) with

    G = 1 / (rho_i L_s^2 / (k_a R_v T^2) + rho_i R_v T / (D_v e_si))

Each bin is moved to its new radius and its number split between the two
bins bracketing that radius (log-linear weights), which conserves number.
"""

from __future__ import annotations

import numpy as np

from core.types import FloatArray

from .constants import R_VAPOR, RHO_ICE
from .thermo import psat_h2o_ice

LATENT_SUBLIMATION = 2.834e6  # [J/kg]
THERMAL_CONDUCTIVITY_AIR = 2.4e-2  # [W/m/K]


def growth_factor(temperature: float, pressure: float) -> float:
    """G [m^2/s] of the r dr/dt equation."""
    dv = 2.11e-5 * (temperature / 273.15) ** 1.94 * (101325.0 / pressure)
    esi = float(psat_h2o_ice(temperature))
    thermal = RHO_ICE * LATENT_SUBLIMATION**2 / (THERMAL_CONDUCTIVITY_AIR * R_VAPOR * temperature**2)
    vapour = RHO_ICE * R_VAPOR * temperature / (dv * esi)
    return 1.0 / (thermal + vapour)


def transfer_matrix(centers: FloatArray, new_radii: FloatArray) -> FloatArray:
    """T[k, b]: fraction of bin b that lands in bin k (columns sum to one)."""
    n = centers.size
    t = np.zeros((n, n), dtype=np.float64)
    log_c = np.log(centers)
    for b, r in enumerate(new_radii):
        if r <= centers[0]:
            t[0, b] = 1.0
            continue
        if r >= centers[-1]:
            t[-1, b] = 1.0
            continue
        k = int(np.searchsorted(centers, r, side="right")) - 1
        w = (log_c[k + 1] - np.log(r)) / (log_c[k + 1] - log_c[k])
        t[k, b] = w
        t[k + 1, b] = 1.0 - w
    return t


def grow_ice(pdf: FloatArray, centers: FloatArray, dt: float, *, temperature: float, pressure: float, rh_ice: float) -> None:
    """Grow (or sublimate) ice in place over dt for RH over ice [%]."""
    s = rh_ice / 100.0 - 1.0
    if dt <= 0.0 or s == 0.0:
        return
    r2 = centers**2 + 2.0 * growth_factor(temperature, pressure) * s * dt
    new_radii = np.sqrt(np.maximum(r2, centers[0] ** 2))
    t = transfer_matrix(centers, new_radii)
    n_bin = pdf.shape[0]
    flat = pdf.reshape(n_bin, -1)
    flat[...] = t @ flat
