"""
Gas-phase chemistry over the plume.

ChemistryEngine advances one air parcel: it refreshes heterogeneous rates and
rate constants from the parcel's thermodynamic state, then integrates the
kinetics. Two strategies apply it to the plume:

- RingChemistry: one parcel per ring (area-weighted ring average); the ring
  change is added back to every cell of the ring.
- GridChemistry: one parcel per mesh cell.

The ambient parcel is advanced separately by solve_ambient. An integration
failure raises ChemistryIntegrationError carrying the parcel data for a dump.
"""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import List, Optional

import numpy as np

from core.mechanism import N_HET_SLOTS, Mechanism
from core.remap import RingToMeshMap
from core.types import FloatArray, PlumeState, SpatialGrid
from physics.constants import RHO_ICE
from physics.heterogeneous import AerosolSurface, compute_het_rates
from physics.initial import AmbientState
from physics.meteorology import MeteorologyProvider
from physics.thermo import air_density, rh_from_h2o

from .kinetics import INTEGRATION_SUCCESS, KineticsIntegrator, describe_status

logger = logging.getLogger(__name__)


class ChemistryIntegrationError(RuntimeError):
    """Kinetics integration failed for one parcel; the run must stop."""

    def __init__(
        self,
        message: str,
        *,
        location: str,
        t: float,
        status: int,
        species: List[str],
        concentrations: FloatArray,
        rconst: FloatArray,
        temperature: float,
        pressure: float,
        air_density: float,
    ) -> None:
        super().__init__(message)
        self.location = location
        self.t = t
        self.status = status
        self.species = list(species)
        self.concentrations = np.array(concentrations, copy=True)
        self.rconst = np.array(rconst, copy=True)
        self.temperature = temperature
        self.pressure = pressure
        self.air_density = air_density

    def dump_lines(self) -> List[str]:
        lines = [
            f"Chemistry failure at {self.location}, t = {self.t:.2f} s, status {self.status}",
            f"  T = {self.temperature:.3f} K, P = {self.pressure:.2f} Pa, [M] = {self.air_density:.4e} molec/cm^3",
        ]
        for name, c in zip(self.species, self.concentrations):
            lines.append(f"  {name:>10s} = {c: .6e} molec/cm^3 ({c / self.air_density * 1.0e9: .4e} ppb)")
        for j, k in enumerate(self.rconst):
            lines.append(f"  k[{j:3d}] = {k: .6e}")
        return lines


@dataclass(slots=True)
class ChemistryContext:
    """Per-run scratch arrays handed to every chemistry call."""

    rconst: FloatArray
    het: FloatArray
    photol: FloatArray

    @classmethod
    def for_mechanism(cls, mechanism: Mechanism) -> "ChemistryContext":
        return cls(
            rconst=np.zeros(mechanism.n_react),
            het=np.zeros((mechanism.n_var, N_HET_SLOTS)),
            photol=np.zeros(mechanism.n_photol),
        )


@dataclass(slots=True)
class ThermoState:
    temperature: float
    pressure: float
    air_density: float
    rh_w: float
    psc_state: int = 0


class ChemistryEngine:
    def __init__(
        self,
        mechanism: Mechanism,
        integrator: KineticsIntegrator,
        *,
        heterogeneous: bool,
        rtol: float,
        atol: float,
        rh_w_fallback: float,
        psc_state: int = 0,
    ) -> None:
        self.mechanism = mechanism
        self.integrator = integrator
        self.heterogeneous = bool(heterogeneous)
        self.rtol = float(rtol)
        self.atol = float(atol)
        self.rh_w_fallback = float(rh_w_fallback)
        self.psc_state = int(psc_state)
        self._h2o = mechanism.find("H2O")
        self.n_calls = 0

    def thermo(self, var: FloatArray, temperature: float, pressure: float) -> ThermoState:
        rh = self.rh_w_fallback if self._h2o is None else float(rh_from_h2o(var[self._h2o], temperature))
        return ThermoState(
            temperature=float(temperature),
            pressure=float(pressure),
            air_density=float(air_density(pressure, temperature)),
            rh_w=rh,
            psc_state=self.psc_state,
        )

    def step(
        self,
        ctx: ChemistryContext,
        var: FloatArray,
        fix: FloatArray,
        t: float,
        dt: float,
        thermo: ThermoState,
        surface: Optional[AerosolSurface],
        *,
        location: str,
    ) -> None:
        """Advance var (n_var,) in place over [t, t + dt]."""
        mech = self.mechanism
        if self.heterogeneous and surface is not None:
            compute_het_rates(
                ctx.het,
                mech,
                temperature=thermo.temperature,
                air_density=thermo.air_density,
                rh_w=thermo.rh_w,
                surface=surface,
                psc_state=thermo.psc_state,
            )
        else:
            ctx.het[:] = 0.0
        mech.compute_rate_constants(
            ctx.rconst,
            temperature=thermo.temperature,
            air_density=thermo.air_density,
            photol=ctx.photol,
            het=ctx.het,
        )
        self.n_calls += 1
        status = self.integrator.integrate(var, fix, ctx.rconst, t, dt, rtol=self.rtol, atol=self.atol)
        if status != INTEGRATION_SUCCESS:
            raise ChemistryIntegrationError(
                f"Chemistry integration failed at {location} ({describe_status(status)})",
                location=location,
                t=t,
                status=status,
                species=mech.variable,
                concentrations=var,
                rconst=ctx.rconst,
                temperature=thermo.temperature,
                pressure=thermo.pressure,
                air_density=thermo.air_density,
            )


@dataclass(slots=True)
class SurfaceFields:
    """Per-cell aerosol surface fields; flat (NY*NX,) arrays."""

    solid_area: FloatArray
    solid_radius: FloatArray
    liquid_area: FloatArray
    liquid_radius: FloatArray
    soot_area: FloatArray
    soot_radius: FloatArray
    iwc: FloatArray

    @classmethod
    def from_state(cls, state: PlumeState) -> "SurfaceFields":
        return cls(
            solid_area=state.solid.surface_area().reshape(-1),
            solid_radius=state.solid.effective_radius().reshape(-1),
            liquid_area=state.liquid.surface_area().reshape(-1),
            liquid_radius=state.liquid.effective_radius().reshape(-1),
            soot_area=state.soot_area.reshape(-1),
            soot_radius=state.soot_radius.reshape(-1),
            iwc=(state.solid.volume() * 1.0e6 * RHO_ICE).reshape(-1),
        )

    def surface(self, mechanism: Mechanism, cells, weights: Optional[FloatArray] = None) -> AerosolSurface:
        """Aerosol surface averaged over cells (area weights)."""
        cells = np.atleast_1d(cells)
        w = np.ones(cells.size) if weights is None else np.asarray(weights, dtype=np.float64)
        w = w / w.sum()
        out = AerosolSurface.empty(mechanism.n_aero)

        def put(name: str, area: FloatArray, radius: FloatArray) -> None:
            a = mechanism.aerosol_index(name)
            if a is None:
                return
            sel_area = area[cells]
            total = float(sel_area @ w)
            out.area[a] = total
            # area-weighted radius
            out.radius[a] = float((sel_area * radius[cells]) @ w / total) if total > 0.0 else 0.0

        put("ice_nat", self.solid_area, self.solid_radius)
        liquid_name = "strat_liquid" if mechanism.aerosol_index("strat_liquid") is not None else "trop_sulfate"
        put(liquid_name, self.liquid_area, self.liquid_radius)
        put("soot", self.soot_area, self.soot_radius)
        out.iwc = float(self.iwc[cells] @ w)
        return out


class ChemistryPath(ABC):
    """Strategy applying the engine to the plume state."""

    def __init__(self, engine: ChemistryEngine) -> None:
        self.engine = engine

    @abstractmethod
    def solve(self, ctx: ChemistryContext, state: PlumeState, t: float, dt: float) -> Optional[FloatArray]:
        """Advance state.species in place; ring strategies return post-chemistry ring values."""


class RingChemistry(ChemistryPath):
    def __init__(
        self,
        engine: ChemistryEngine,
        ring_map: RingToMeshMap,
        *,
        temperature: float,
        pressure: float,
    ) -> None:
        super().__init__(engine)
        self.ring_map = ring_map
        self.temperature = float(temperature)
        self.pressure = float(pressure)

    def solve(self, ctx, state, t, dt) -> FloatArray:
        rmap = self.ring_map
        ring_values = rmap.ring_average(state.species)
        surfaces = SurfaceFields.from_state(state) if self.engine.heterogeneous else None
        for r in range(rmap.n_ring):
            old = ring_values[r].copy()
            var = ring_values[r]
            thermo = self.engine.thermo(var, self.temperature, self.pressure)
            surface = None
            if surfaces is not None:
                idx = rmap.cells[r]
                surface = surfaces.surface(self.engine.mechanism, idx, rmap.weights[r] * rmap.cell_areas[idx])
            self.engine.step(ctx, var, state.fixed, t, dt, thermo, surface, location=f"ring {r}")
            rmap.apply_ring_delta(state.species, r, var, old)
        return ring_values


class GridChemistry(ChemistryPath):
    def __init__(self, engine: ChemistryEngine, grid: SpatialGrid, meteorology: MeteorologyProvider) -> None:
        super().__init__(engine)
        self.grid = grid
        self.meteorology = meteorology

    def solve(self, ctx, state, t, dt) -> None:
        temperature = self.meteorology.temperature(t)
        pressure = self.meteorology.pressure(t)
        surfaces = SurfaceFields.from_state(state) if self.engine.heterogeneous else None
        nx = self.grid.nx
        for j in range(self.grid.ny):
            for i in range(nx):
                var = state.species[:, j, i].copy()
                thermo = self.engine.thermo(var, temperature[j, i], pressure[j])
                surface = None if surfaces is None else surfaces.surface(self.engine.mechanism, j * nx + i)
                self.engine.step(ctx, var, state.fixed, t, dt, thermo, surface, location=f"cell ({j}, {i})")
                state.species[:, j, i] = var
        return None


@dataclass(slots=True)
class AmbientSeries:
    """Ambient concentrations at every time level plus the per-step CSZA."""

    values: List[FloatArray] = field(default_factory=list)
    cos_sza: List[float] = field(default_factory=list)

    def current(self) -> FloatArray:
        return self.values[-1]

    def append(self, var: FloatArray) -> None:
        self.values.append(np.array(var, dtype=np.float64, copy=True))

    def as_array(self) -> FloatArray:
        return np.vstack(self.values)


def solve_ambient(
    engine: ChemistryEngine,
    ctx: ChemistryContext,
    ambient: AmbientState,
    series: AmbientSeries,
    surface: Optional[AerosolSurface],
    *,
    temperature: float,
    pressure: float,
    t: float,
    dt: float,
) -> None:
    """Advance the ambient parcel and append the new level to the series."""
    var = series.current().copy()
    thermo = engine.thermo(var, temperature, pressure)
    engine.step(ctx, var, ambient.fixed, t, dt, thermo, surface, location="ambient")
    series.append(var)
