"""
Single-step plume advance with operator splitting.

Order within one step [t, t + dt]:
1. transport coefficients from the time elapsed since emission,
2. spectral transport of gases, sulfate, soot and aerosol bins (solid bins
   also fall with their settling speed),
3. gas/liquid sulfate partitioning,
4. solar geometry and photolysis rates at t,
5. chemistry on the plume (ring or grid strategy) and on the ambient parcel,
6. optional ice depositional growth.

The clock is not touched here; the driver owns it. Cadenced processes
(coagulation, snapshot saving, mass checks) are also left to the driver.
"""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass, field
from typing import Any, Dict, Optional

import numpy as np

from core.mechanism import Mechanism
from core.remap import RingToMeshMap
from core.types import FloatArray, MicrophysicsRegime, PlumeState, SpatialGrid
from physics.constants import PI
from physics.growth import grow_ice
from physics.heterogeneous import AerosolSurface
from physics.initial import AmbientState
from physics.meteorology import MeteorologyProvider
from physics.photolysis import update_photolysis_rates
from physics.solar import SolarGeometry
from physics.sulfate import partition_sulfate
from physics.thermo import rh_ice_from_rh_w, rh_from_h2o

from .chemistry import AmbientSeries, ChemistryContext, ChemistryEngine, ChemistryPath, solve_ambient
from .step_rules import ConstantAdvection, ConstantDiffusion
from .transport import TransportEngine

logger = logging.getLogger(__name__)


@dataclass(slots=True)
class StepDiagnostics:
    """Diagnostics for a single timestep."""

    # Time info
    t_old: float
    t_new: float
    dt: float

    # Forcing
    cos_sza: float
    d_x: float
    d_y: float
    v_x: float
    v_y: float

    # Wall-clock split [s]
    time_transport: float = 0.0
    time_chemistry: float = 0.0
    time_microphysics: float = 0.0

    # Key state values (new state)
    species_min: float = float("nan")
    n_chemistry_calls: int = 0

    # Extra debug data
    extra: Dict[str, Any] = field(default_factory=dict)


@dataclass(slots=True)
class StepResult:
    """Result of a single timestep."""

    diag: StepDiagnostics
    ring_values: Optional[FloatArray] = None


@dataclass(slots=True)
class StepContext:
    """Everything advance_one_step reads or updates, built once by the driver."""

    mechanism: Mechanism
    grid: SpatialGrid
    state: PlumeState
    ambient: AmbientState
    ambient_series: AmbientSeries
    sun: SolarGeometry
    meteorology: MeteorologyProvider
    gas_transport: TransportEngine
    micro_transport: TransportEngine
    diffusion_rule: ConstantDiffusion
    advection_rule: ConstantAdvection
    chem_ctx: ChemistryContext
    temperature: float
    pressure: float
    rh_w: float
    t_initial: float
    transport_enabled: bool = True
    chemistry_engine: Optional[ChemistryEngine] = None
    chemistry_path: Optional[ChemistryPath] = None
    ring_map: Optional[RingToMeshMap] = None
    ambient_surface: Optional[AerosolSurface] = None
    liquid_regime: MicrophysicsRegime = MicrophysicsRegime.NONE
    solid_regime: MicrophysicsRegime = MicrophysicsRegime.NONE
    settling: Optional[FloatArray] = None  # (n_bin_solid,) fall speeds [m/s]
    aerosol_floor: float = 1.0e-50
    ice_growth: bool = False
    i_so4: Optional[int] = None
    i_h2o: Optional[int] = None


def _transport(ctx: StepContext, dt: float, d_x: float, d_y: float, v_x: float, v_y: float) -> None:
    state = ctx.state
    gas = ctx.gas_transport
    gas.update_time_step(dt)
    gas.update_diffusion(d_x, d_y)
    gas.update_advection(v_x, v_y)
    gas.solve(state.species)
    gas.solve(state.so4_liquid)

    micro = ctx.micro_transport
    micro.update_time_step(dt)
    micro.update_diffusion(d_x, d_y)
    micro.update_advection(v_x, v_y)

    if ctx.liquid_regime == MicrophysicsRegime.FULL:
        micro.solve(state.liquid.pdf, fill_value=ctx.aerosol_floor)

    if np.any(state.soot_density > 0.0):
        soot = np.stack((state.soot_density, state.soot_area))
        micro.solve(soot, fill_value=0.0)
        state.soot_density[...] = soot[0]
        state.soot_area[...] = soot[1]
        with np.errstate(divide="ignore", invalid="ignore"):
            radius = np.sqrt(state.soot_area / (4.0 * PI * state.soot_density))
        state.soot_radius[...] = np.where(state.soot_density > 0.0, radius, 0.0)

    if ctx.solid_regime == MicrophysicsRegime.FULL:
        pdf = state.solid.pdf
        if ctx.settling is None or not np.any(ctx.settling):
            micro.solve(pdf, fill_value=ctx.aerosol_floor)
        else:
            for b in range(pdf.shape[0]):
                micro.update_advection(v_x, v_y - float(ctx.settling[b]))
                micro.solve(pdf[b], fill_value=ctx.aerosol_floor)
            micro.update_advection(v_x, v_y)


def advance_one_step(ctx: StepContext, t: float, dt: float) -> StepResult:
    """Advance ctx.state from t to t + dt; chemistry failures propagate as exceptions."""
    elapsed = t - ctx.t_initial
    d_x, d_y = ctx.diffusion_rule(elapsed)
    v_x, v_y = ctx.advection_rule(elapsed)

    tic = time.perf_counter()
    if ctx.transport_enabled:
        _transport(ctx, dt, d_x, d_y, v_x, v_y)
    time_transport = time.perf_counter() - tic

    temperature = ctx.meteorology.temperature(t)
    if ctx.i_so4 is not None:
        partition_sulfate(ctx.state.species[ctx.i_so4], ctx.state.so4_liquid, temperature)

    csza = ctx.sun.update(t)
    update_photolysis_rates(ctx.chem_ctx.photol, ctx.mechanism, csza)
    ctx.ambient_series.cos_sza.append(csza)

    tic = time.perf_counter()
    ring_values = None
    n_calls_before = ctx.chemistry_engine.n_calls if ctx.chemistry_engine is not None else 0
    if ctx.chemistry_path is not None and ctx.chemistry_engine is not None:
        ring_values = ctx.chemistry_path.solve(ctx.chem_ctx, ctx.state, t, dt)
        solve_ambient(
            ctx.chemistry_engine,
            ctx.chem_ctx,
            ctx.ambient,
            ctx.ambient_series,
            ctx.ambient_surface,
            temperature=ctx.temperature,
            pressure=ctx.pressure,
            t=t,
            dt=dt,
        )
    else:
        ctx.ambient_series.append(ctx.ambient_series.current())
        if ctx.ring_map is not None:
            ring_values = ctx.ring_map.ring_average(ctx.state.species)
    time_chemistry = time.perf_counter() - tic
    n_calls = (ctx.chemistry_engine.n_calls if ctx.chemistry_engine is not None else 0) - n_calls_before

    tic = time.perf_counter()
    if ctx.ice_growth and ctx.solid_regime != MicrophysicsRegime.NONE:
        if ctx.i_h2o is not None:
            h2o = float(np.mean(ctx.state.species[ctx.i_h2o]))
            rh_w = float(rh_from_h2o(h2o, ctx.temperature))
        else:
            rh_w = ctx.rh_w
        rh_i = float(rh_ice_from_rh_w(rh_w, ctx.temperature))
        grow_ice(
            ctx.state.solid.pdf,
            ctx.state.solid.centers,
            dt,
            temperature=ctx.temperature,
            pressure=ctx.pressure,
            rh_ice=rh_i,
        )
    time_micro = time.perf_counter() - tic

    diag = StepDiagnostics(
        t_old=t,
        t_new=t + dt,
        dt=dt,
        cos_sza=csza,
        d_x=d_x,
        d_y=d_y,
        v_x=v_x,
        v_y=v_y,
        time_transport=time_transport,
        time_chemistry=time_chemistry,
        time_microphysics=time_micro,
        species_min=float(np.min(ctx.state.species)) if ctx.state.species.size else float("nan"),
        n_chemistry_calls=n_calls,
    )
    return StepResult(diag=diag, ring_values=ring_values)
