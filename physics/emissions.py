"""
Aircraft emissions and early-plume (vortex regime) microphysics.

Emission indices are in g per kg of fuel burnt; column emissions are per metre
of flight track. The early-plume result describes one engine plume at the end
of the vortex regime; build_emission_state turns it into the initial plume of
the whole aircraft.
"""

from __future__ import annotations

import logging
import math
from dataclasses import dataclass, field
from typing import Dict, Mapping, Protocol

import numpy as np

from core.types import CaseConditions, CaseEarlyMicrophysics, CaseEmissions, FloatArray

from .aerosol import lognormal_bin_numbers
from .constants import MW_H2SO4, NA, PI, RHO_SOOT, RHO_SULFATE
from .thermo import rh_ice_from_rh_w

logger = logging.getLogger(__name__)

MW_SO2 = 64.066e-3


@dataclass(slots=True)
class AircraftEmissions:
    name: str
    n_engines: int
    fuel_flow: float  # total [kg/s]
    v_flight: float  # [m/s]
    vortex_delta_z1: float  # [m]
    ei: Dict[str, float] = field(default_factory=dict)  # [g/kg]
    so2_to_so4: float = 0.0
    soot_ei: float = 0.0  # [g/kg]
    soot_radius: float = 2.0e-8  # [m]

    @property
    def fuel_per_metre(self) -> float:
        """[kg/m] for the whole aircraft."""
        return self.fuel_flow / self.v_flight

    def column(self, species: str, molar_mass: float) -> float:
        """Emitted molecules per metre of track [molec/m]."""
        ei = float(self.ei.get(species, 0.0))
        if species == "SO2":
            ei *= 1.0 - self.so2_to_so4
        return ei * 1.0e-3 * self.fuel_per_metre / molar_mass * NA

    def sulfate_column(self) -> float:
        """Sulfate (as H2SO4) emitted from SO2 conversion [molec/m]."""
        so2 = float(self.ei.get("SO2", 0.0)) * self.so2_to_so4
        return so2 * 1.0e-3 * self.fuel_per_metre / MW_SO2 * NA

    def soot_number_per_engine(self) -> float:
        """Soot particles per metre from a single engine [#/m]."""
        if self.soot_ei <= 0.0:
            return 0.0
        mass = RHO_SOOT * 4.0 / 3.0 * PI * self.soot_radius**3
        return self.soot_ei * 1.0e-3 * self.fuel_per_metre / self.n_engines / mass


class EmissionsProvider(Protocol):
    def aircraft_emissions(self) -> AircraftEmissions:
        ...


class ConfigEmissions:
    """Emissions taken directly from the case file."""

    def __init__(self, block: CaseEmissions) -> None:
        self.block = block

    def aircraft_emissions(self) -> AircraftEmissions:
        b = self.block
        return AircraftEmissions(
            name=b.aircraft,
            n_engines=int(b.n_engines),
            fuel_flow=float(b.fuel_flow) if b.enabled else 0.0,
            v_flight=float(b.v_flight),
            vortex_delta_z1=float(b.vortex_delta_z1),
            ei={str(k): float(v) for k, v in b.ei.items()},
            so2_to_so4=float(b.so2_to_so4),
            soot_ei=float(b.soot_ei),
            soot_radius=float(b.soot_radius),
        )


@dataclass(slots=True)
class EarlyPlume:
    """Single-engine plume at the end of the vortex regime (densities in #/cm^3)."""

    plume_area: float  # [m^2]
    ice_density: float
    ice_radius: float
    soot_density: float
    liquid_numbers: FloatArray  # (n_bin_liquid,)
    solid_numbers: FloatArray  # (n_bin_solid,)


class EarlyMicrophysicsProvider(Protocol):
    def run(
        self,
        aircraft: AircraftEmissions,
        conditions: CaseConditions,
        liquid_edges: FloatArray,
        solid_edges: FloatArray,
    ) -> EarlyPlume:
        ...


class ParametricEarlyMicrophysics:
    """Fixed-area early plume: soot activates into ice when the air is ice-supersaturated."""

    def __init__(self, block: CaseEarlyMicrophysics) -> None:
        self.block = block

    def run(self, aircraft, conditions, liquid_edges, solid_edges) -> EarlyPlume:
        b = self.block
        area = float(b.plume_area_m2)
        soot_density = aircraft.soot_number_per_engine() / area * 1.0e-6

        rh_i = float(rh_ice_from_rh_w(conditions.rh_w, conditions.temperature_K))
        ice_density = b.ice_activation * soot_density if rh_i > 100.0 else 0.0
        solid = lognormal_bin_numbers(solid_edges, ice_density, b.ice_radius_m, b.ice_sigma)

        sulfate_mass = aircraft.sulfate_column() / NA * MW_H2SO4 / aircraft.n_engines  # [kg/m]
        particle_mass = RHO_SULFATE * 4.0 / 3.0 * PI * b.sulfate_radius_m**3
        liquid_density = sulfate_mass / particle_mass / area * 1.0e-6
        liquid = lognormal_bin_numbers(liquid_edges, liquid_density, b.sulfate_radius_m, b.sulfate_sigma)

        logger.info(
            "Early plume: area %.4g m^2, soot %.4g #/cm^3, ice %.4g #/cm^3 (RH_i %.1f %%), sulfate %.4g #/cm^3",
            area,
            soot_density,
            ice_density,
            rh_i,
            liquid_density,
        )
        return EarlyPlume(
            plume_area=area,
            ice_density=ice_density,
            ice_radius=float(b.ice_radius_m),
            soot_density=soot_density,
            liquid_numbers=liquid,
            solid_numbers=solid,
        )


@dataclass(slots=True)
class EmissionState:
    """Initial plume of the whole aircraft (densities in #/cm^3)."""

    aircraft: AircraftEmissions
    plume_area: float  # [m^2]
    semi_x: float  # [m]
    semi_y: float  # [m]
    ice_density: float
    ice_radius: float
    soot_density: float
    liquid_numbers: FloatArray
    solid_numbers: FloatArray

    @property
    def has_liquid(self) -> bool:
        return bool(np.sum(self.liquid_numbers) > 0.0)

    @property
    def has_ice(self) -> bool:
        return self.ice_density > 0.0


def build_emission_state(aircraft: AircraftEmissions, early: EarlyPlume) -> EmissionState:
    """Combine the engine plumes: area doubles, densities scale with n_engines / 2."""
    area = 2.0 * early.plume_area
    scale = aircraft.n_engines / 2.0
    semi_y = 0.5 * aircraft.vortex_delta_z1
    semi_x = area / (math.pi * semi_y)
    state = EmissionState(
        aircraft=aircraft,
        plume_area=area,
        semi_x=semi_x,
        semi_y=semi_y,
        ice_density=early.ice_density * scale,
        ice_radius=early.ice_radius,
        soot_density=early.soot_density * scale,
        liquid_numbers=np.asarray(early.liquid_numbers, dtype=np.float64) * scale,
        solid_numbers=np.asarray(early.solid_numbers, dtype=np.float64) * scale,
    )
    logger.info(
        "Initial plume: %s, %d engines, area %.4g m^2, semi-axes (%.4g m, %.4g m)",
        aircraft.name,
        aircraft.n_engines,
        area,
        semi_x,
        semi_y,
    )
    return state


def species_columns(aircraft: AircraftEmissions, molar_mass: Mapping[str, float], variable: list) -> Dict[str, float]:
    """Emitted columns [molec/m] for the variable species that have an emission index."""
    out: Dict[str, float] = {}
    for name in aircraft.ei:
        if name not in variable:
            logger.warning("Emission index for %s ignored: not a variable species", name)
            continue
        if name not in molar_mass:
            raise KeyError(f"molar mass of emitted species {name!r} missing from mechanism")
        out[name] = aircraft.column(name, molar_mass[name])
    if "SO4" in variable:
        out["SO4"] = out.get("SO4", 0.0) + aircraft.sulfate_column()
    return out
