"""
Heterogeneous reaction rates on aerosol surfaces.

First-order loss rate of a gas on aerosol type a (Schwartz, 1986, as used in
GEOS-Chem's ARSL1K):

    k_a = A_a / (r_a / Dg + 4 / (v_mean * gamma_a))

with A_a the surface area density [cm^2/cm^3], r_a the effective radius [cm],
Dg the gas-phase diffusivity [cm^2/s] and v_mean the mean molecular speed [cm/s].
Rates over all aerosol types are summed into het[species, slot].
"""

from __future__ import annotations

import logging
from dataclasses import dataclass

import numpy as np

from core.mechanism import Mechanism
from core.types import FloatArray

logger = logging.getLogger(__name__)

# crystalline tropospheric sulfate below this RH_w [%] does not take up gases
EFFLORESCENCE_RH = 35.0


@dataclass(slots=True)
class AerosolSurface:
    """Aerosol surface seen by chemistry at one location.

    area   : (n_aero,) surface area densities [m^2/cm^3]
    radius : (n_aero,) effective radii [m]
    iwc    : ice water content [kg/m^3]
    """

    area: FloatArray
    radius: FloatArray
    iwc: float = 0.0

    @classmethod
    def empty(cls, n_aero: int) -> "AerosolSurface":
        return cls(np.zeros(n_aero), np.zeros(n_aero), 0.0)


def gas_diffusivity(temperature: float, air_density: float, molar_mass: float) -> float:
    """Gas-phase diffusivity [cm^2/s]; molar_mass in kg/mol."""
    mw = molar_mass * 1.0e3
    return 9.45e17 / air_density * np.sqrt(temperature) * np.sqrt(3.472e-2 + 1.0 / mw)


def uptake_rate(area_cm2: float, radius_cm: float, gamma: float, diffusivity: float, temperature: float, molar_mass: float) -> float:
    """First-order uptake rate [1/s] on one aerosol type."""
    if area_cm2 <= 0.0 or radius_cm <= 0.0 or gamma <= 0.0:
        return 0.0
    mw = molar_mass * 1.0e3
    # 4 / v_mean in s/cm
    inv_speed = 2.749064e-4 * np.sqrt(mw / temperature)
    return area_cm2 / (radius_cm / diffusivity + inv_speed / gamma)


def compute_het_rates(
    out: FloatArray,
    mechanism: Mechanism,
    *,
    temperature: float,
    air_density: float,
    rh_w: float,
    surface: AerosolSurface,
    psc_state: int = 0,
) -> FloatArray:
    """Fill out (n_var, N_HET_SLOTS) with heterogeneous first-order rates [1/s]."""
    out[:] = 0.0
    if not mechanism.uptakes:
        return out

    active = np.ones(mechanism.n_aero, dtype=bool)
    i_ice = mechanism.aerosol_index("ice_nat")
    if i_ice is not None and psc_state == 0 and surface.iwc <= 0.0:
        active[i_ice] = False
    i_sulf = mechanism.aerosol_index("trop_sulfate")
    if i_sulf is not None and rh_w < EFFLORESCENCE_RH:
        active[i_sulf] = False

    area_cm2 = surface.area * 1.0e4
    radius_cm = surface.radius * 1.0e2
    for uptake in mechanism.uptakes:
        dg = gas_diffusivity(temperature, air_density, uptake.molar_mass)
        k = 0.0
        for a in range(mechanism.n_aero):
            if not active[a]:
                continue
            k += uptake_rate(area_cm2[a], radius_cm[a], uptake.gamma[a], dg, temperature, uptake.molar_mass)
        out[uptake.species, uptake.slot] += k
    return out
