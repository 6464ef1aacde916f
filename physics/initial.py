"""
Initial plume state: uniform background plus the emitted plume.

The background fills every cell; emissions (gases, soot, sulfate and ice
aerosol) are then spread uniformly over the cells of the initial plume region.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Optional

import numpy as np

from core.mechanism import Mechanism
from core.types import CaseBackground, CaseConditions, FloatArray, PlumeState, SpatialGrid

from .aerosol import AerosolPopulation, lognormal_bin_numbers
from .constants import N2_MIXING_RATIO, O2_MIXING_RATIO, PI, RHO_ICE, RHO_SULFATE
from .emissions import EmissionState, species_columns
from .thermo import air_density, h2o_from_rh

logger = logging.getLogger(__name__)


@dataclass(slots=True)
class AmbientState:
    """Uniform background the plume is diluted into."""

    var: FloatArray  # (n_var,) [molec/cm^3]
    fixed: FloatArray  # (n_fix,)
    air_density: float  # [molec/cm^3]
    liquid_numbers: FloatArray  # (n_bin_liquid,) [#/cm^3]
    solid_numbers: FloatArray  # (n_bin_solid,)


def background_concentrations(
    mechanism: Mechanism, background: CaseBackground, conditions: CaseConditions
) -> tuple[FloatArray, FloatArray, float]:
    """(var, fixed, air density) for the background air."""
    air = float(air_density(conditions.pressure_Pa, conditions.temperature_K))
    mixing = {"O2": O2_MIXING_RATIO, "N2": N2_MIXING_RATIO}
    mixing.update({str(k): float(v) for k, v in background.mixing_ratios.items()})

    var = np.zeros(mechanism.n_var, dtype=np.float64)
    fix = np.zeros(mechanism.n_fix, dtype=np.float64)
    for name, x in mixing.items():
        if x < 0.0:
            raise ValueError(f"background mixing ratio of {name} is negative: {x}")
        if name in mechanism.variable:
            var[mechanism.index(name)] = x * air
        elif name in mechanism.fixed:
            fix[mechanism.fixed_index(name)] = x * air
        elif name not in ("O2", "N2"):
            raise ValueError(f"background species {name!r} not in mechanism {mechanism.name!r}")

    h2o = float(h2o_from_rh(conditions.rh_w, conditions.temperature_K))
    if "H2O" in mechanism.variable:
        var[mechanism.index("H2O")] = h2o
    elif "H2O" in mechanism.fixed:
        fix[mechanism.fixed_index("H2O")] = h2o
    return var, fix, air


def build_initial_state(
    mechanism: Mechanism,
    grid: SpatialGrid,
    background: CaseBackground,
    conditions: CaseConditions,
    liquid_edges: FloatArray,
    solid_edges: FloatArray,
) -> tuple[PlumeState, AmbientState]:
    """Fill every cell with the background composition."""
    var, fix, air = background_concentrations(mechanism, background, conditions)
    la = background.liquid_aerosol
    pa = background.solid_aerosol
    liquid_numbers = lognormal_bin_numbers(liquid_edges, la.number, la.radius, la.sigma)
    solid_numbers = lognormal_bin_numbers(solid_edges, pa.number, pa.radius, pa.sigma)

    shape = grid.shape
    state = PlumeState(
        species=np.ascontiguousarray(np.broadcast_to(var[:, None, None], (mechanism.n_var,) + shape)).copy(),
        fixed=fix.copy(),
        so4_liquid=np.zeros(shape),
        soot_density=np.zeros(shape),
        soot_radius=np.zeros(shape),
        soot_area=np.zeros(shape),
        liquid=AerosolPopulation.uniform(liquid_edges, liquid_numbers, shape, density=RHO_SULFATE),
        solid=AerosolPopulation.uniform(solid_edges, solid_numbers, shape, density=RHO_ICE),
    )
    ambient = AmbientState(
        var=var.copy(),
        fixed=fix.copy(),
        air_density=air,
        liquid_numbers=liquid_numbers,
        solid_numbers=solid_numbers,
    )
    return state, ambient


def deposit_emissions(
    state: PlumeState,
    emission: EmissionState,
    mechanism: Mechanism,
    cells: np.ndarray,
    cell_areas: FloatArray,
) -> float:
    """Spread the aircraft emissions over the given flat cells; returns the region area [m^2]."""
    cells = np.asarray(cells, dtype=np.int64)
    if cells.size == 0:
        raise ValueError("emission region contains no cell")
    region_area = float(np.sum(np.asarray(cell_areas).reshape(-1)[cells]))
    dilution = emission.plume_area / region_area

    species = state.species.reshape(mechanism.n_var, -1)
    columns = species_columns(emission.aircraft, mechanism.molar_mass, mechanism.variable)
    for name, col in columns.items():
        species[mechanism.index(name), cells] += col / region_area * 1.0e-6

    if emission.soot_density > 0.0:
        soot = emission.soot_density * dilution
        r = emission.aircraft.soot_radius
        state.soot_density.reshape(-1)[cells] += soot
        state.soot_radius.reshape(-1)[cells] = r
        state.soot_area.reshape(-1)[cells] = 4.0 * PI * r**2 * state.soot_density.reshape(-1)[cells]

    if emission.has_liquid:
        state.liquid.add(emission.liquid_numbers, cells, dilution)
    if emission.has_ice:
        state.solid.add(emission.solid_numbers, cells, dilution)

    logger.info(
        "Deposited emissions into %d cells (%.4g m^2, plume area %.4g m^2): %s",
        cells.size,
        region_area,
        emission.plume_area,
        ", ".join(f"{k}={v:.3e} molec/m" for k, v in columns.items()) or "no gases",
    )
    return region_area


def plume_region(grid: SpatialGrid, semi_x: float, semi_y: float, cells: Optional[np.ndarray] = None) -> np.ndarray:
    """Flat indices of the initial plume: given cells, else centres inside the ellipse, else the centre cell."""
    if cells is not None and np.size(cells) > 0:
        return np.asarray(cells, dtype=np.int64)
    xx, yy = grid.mesh()
    inside = np.flatnonzero(((xx / semi_x) ** 2 + (yy / semi_y) ** 2).reshape(-1) < 1.0)
    if inside.size:
        return inside
    i = int(np.argmin(np.abs(grid.x)))
    j = int(np.argmin(np.abs(grid.y)))
    return np.array([j * grid.nx + i], dtype=np.int64)
