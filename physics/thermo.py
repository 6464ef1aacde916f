"""
Thermodynamic helpers for humid air at flight level.

Saturation pressures follow Murphy & Koop (2005); air viscosity follows
Sutherland's law. Concentrations are in molec/cm^3, pressures in Pa.
"""

from __future__ import annotations

import numpy as np

from .constants import KB, PI, MW_AIR, R_GAS


def psat_h2o_liquid(temperature):
    """Saturation vapour pressure over supercooled liquid water [Pa]."""
    T = np.asarray(temperature, dtype=np.float64)
    ln_p = (
        54.842763
        - 6763.22 / T
        - 4.210 * np.log(T)
        + 0.000367 * T
        + np.tanh(0.0415 * (T - 218.8))
        * (53.878 - 1331.22 / T - 9.44523 * np.log(T) + 0.014025 * T)
    )
    return np.exp(ln_p)


def psat_h2o_ice(temperature):
    """Saturation vapour pressure over hexagonal ice [Pa]."""
    T = np.asarray(temperature, dtype=np.float64)
    return np.exp(9.550426 - 5723.265 / T + 3.53068 * np.log(T) - 0.00728332 * T)


def psat_h2so4(temperature):
    """Saturation vapour pressure of H2SO4 (Ayers et al., 1980) [Pa]."""
    T = np.asarray(temperature, dtype=np.float64)
    return np.exp(-10156.0 / T + 16.259) * 101325.0


def air_density(pressure, temperature):
    """Number density of air [molec/cm^3]."""
    return np.asarray(pressure, dtype=np.float64) / (KB * np.asarray(temperature, dtype=np.float64)) * 1.0e-6


def h2o_from_rh(rh_w, temperature):
    """Water vapour number density [molec/cm^3] from RH over liquid water [%]."""
    return 0.01 * np.asarray(rh_w) * psat_h2o_liquid(temperature) / (KB * np.asarray(temperature)) * 1.0e-6


def rh_from_h2o(h2o, temperature):
    """RH over liquid water [%] from water vapour number density [molec/cm^3]."""
    T = np.asarray(temperature, dtype=np.float64)
    return 100.0 * np.asarray(h2o) * KB * T * 1.0e6 / psat_h2o_liquid(T)


def rh_ice_from_rh_w(rh_w, temperature):
    """RH over ice [%] from RH over liquid water [%]."""
    return np.asarray(rh_w) * psat_h2o_liquid(temperature) / psat_h2o_ice(temperature)


def dynamic_viscosity(temperature):
    """Dynamic viscosity of air, Sutherland's law [kg/m/s]."""
    T = np.asarray(temperature, dtype=np.float64)
    return 1.8325e-5 * (416.16 / (T + 120.0)) * (T / 296.16) ** 1.5


def mean_free_path(temperature, pressure):
    """Mean free path of air molecules [m]."""
    T = np.asarray(temperature, dtype=np.float64)
    rho = np.asarray(pressure, dtype=np.float64) * MW_AIR / (R_GAS * T)
    mu = dynamic_viscosity(T)
    return 2.0 * mu / (rho * np.sqrt(8.0 * R_GAS * T / (PI * MW_AIR)))


def cunningham_slip(radius, temperature, pressure):
    """Cunningham slip correction for spheres of the given radius [m]."""
    kn = mean_free_path(temperature, pressure) / np.asarray(radius, dtype=np.float64)
    return 1.0 + kn * (1.257 + 0.4 * np.exp(-1.1 / kn))
