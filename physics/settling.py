"""Gravitational settling speed of small spheres (Stokes drag with slip correction)."""

from __future__ import annotations

import numpy as np

from .constants import G0, RHO_ICE
from .thermo import cunningham_slip, dynamic_viscosity


def settling_velocity(radius, temperature: float, pressure: float, density: float = RHO_ICE):
    """Terminal fall speed [m/s] (positive downward) for radii [m]."""
    r = np.asarray(radius, dtype=np.float64)
    if np.any(r <= 0.0):
        raise ValueError("settling_velocity needs positive radii")
    mu = dynamic_viscosity(temperature)
    cc = cunningham_slip(r, temperature, pressure)
    return 2.0 * density * G0 * r**2 * cc / (9.0 * mu)
