"""
Plume model orchestrator.

Responsibilities:
- Build grid, solar geometry, background and emitted plume, rings and engines.
- Advance in time by repeatedly calling advance_one_step; run cadenced
  coagulation, snapshot saving and mass checks between steps.
- Stop on the first chemistry failure; write products at the end.

Run phases: INIT -> RUNNING -> COMPLETED | CHEMISTRY_FAILED | SAVE_FAILED.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Callable, Dict, List, Optional

import numpy as np

from core.grid import build_grid
from core.layout import SnapshotBuffer, SnapshotLayout
from core.mechanism import Mechanism
from core.remap import RingToMeshMap, build_ring_map
from core.rings import RingCluster
from core.schedule import CadencedEvent
from core.types import (
    CaseConditions,
    CaseConfig,
    FloatArray,
    MicrophysicsRegime,
    PlumeState,
    RunPhase,
    RunStatus,
    SimulationClock,
    SpatialGrid,
    check_state_shapes,
)
from output.writers import SAVE_SUCCESS, PlumeOutputWriter, RunOutput, ScalarsWriter
from physics.aerosol import log_bin_edges
from physics.coagulation import CoagulationOperator, brownian_kernel, coagulate
from physics.constants import PI, SECONDS_PER_HOUR
from physics.emissions import (
    ConfigEmissions,
    EarlyMicrophysicsProvider,
    EmissionsProvider,
    EmissionState,
    ParametricEarlyMicrophysics,
    build_emission_state,
)
from physics.heterogeneous import AerosolSurface
from physics.initial import AmbientState, build_initial_state, deposit_emissions, plume_region
from physics.mass_check import family_mass
from physics.meteorology import LapseRateMeteorology, MeteorologyProvider
from physics.settling import settling_velocity
from physics.solar import SolarGeometry
from physics.thermo import rh_ice_from_rh_w
from solvers.chemistry import (
    AmbientSeries,
    ChemistryContext,
    ChemistryEngine,
    ChemistryIntegrationError,
    ChemistryPath,
    GridChemistry,
    RingChemistry,
)
from solvers.kinetics import KineticsIntegrator
from solvers.step_rules import (
    TimeStepRule,
    build_advection_rule,
    build_diffusion_rule,
    build_step_rule,
    build_time_levels,
)
from solvers.timestepper import StepContext, StepResult, advance_one_step
from solvers.transport import TransportEngine

logger = logging.getLogger(__name__)

StepHook = Callable[["PlumeModel", StepResult], None]


@dataclass(slots=True)
class AerosolPhaseControl:
    """Microphysics bookkeeping of one aerosol phase."""

    name: str
    regime: MicrophysicsRegime
    symmetry: int
    operator: Optional[CoagulationOperator]
    coag_event: CadencedEvent
    save_event: CadencedEvent
    snapshots: SnapshotBuffer
    save: bool


def _symmetry(grid: SpatialGrid, v_x: float, v_y: float, vertical_asym: bool) -> int:
    """2: quadrant, 1: left/right, 0: none."""
    x_sym = np.allclose(grid.x, -grid.x[::-1])
    y_sym = np.allclose(grid.y, -grid.y[::-1])
    if v_x != 0.0 or not x_sym:
        return 0
    if v_y != 0.0 or vertical_asym or not y_sym:
        return 1
    return 2


def _select_regime(emitted: bool, background: FloatArray) -> MicrophysicsRegime:
    if emitted:
        return MicrophysicsRegime.FULL
    if float(np.sum(background)) > 0.0:
        return MicrophysicsRegime.UNIFORM
    return MicrophysicsRegime.NONE


def _ambient_surface(mechanism: Mechanism, ambient: AmbientState, liquid_centers, solid_centers) -> AerosolSurface:
    out = AerosolSurface.empty(mechanism.n_aero)
    for name, numbers, centers in (
        ("ice_nat", ambient.solid_numbers, solid_centers),
        ("strat_liquid" if mechanism.aerosol_index("strat_liquid") is not None else "trop_sulfate", ambient.liquid_numbers, liquid_centers),
    ):
        a = mechanism.aerosol_index(name)
        if a is None:
            continue
        m2 = float(centers**2 @ numbers)
        out.area[a] = 4.0 * PI * m2
        out.radius[a] = float(centers**3 @ numbers) / m2 if m2 > 0.0 else 0.0
    return out


class PlumeModel:
    """One plume simulation for one set of atmospheric conditions."""

    def __init__(
        self,
        cfg: CaseConfig,
        mechanism: Mechanism,
        *,
        meteorology: Optional[MeteorologyProvider] = None,
        emissions: Optional[EmissionsProvider] = None,
        early_microphysics: Optional[EarlyMicrophysicsProvider] = None,
        integrator: Optional[KineticsIntegrator] = None,
        writer: Optional[PlumeOutputWriter] = None,
        step_rule: Optional[TimeStepRule] = None,
        out_dir: Optional[Path] = None,
        on_step: Optional[List[StepHook]] = None,
        root_only_output: bool = True,
    ) -> None:
        self.cfg = cfg
        self.mechanism = mechanism
        self._meteorology = meteorology
        self.emissions = emissions or ConfigEmissions(cfg.emissions)
        self.early_microphysics = early_microphysics or ParametricEarlyMicrophysics(cfg.emissions.early)
        self._integrator = integrator
        self.out_dir = Path(out_dir) if out_dir is not None else self._default_out_dir()
        self.writer = writer
        self.step_rule = step_rule or build_step_rule(cfg.time)
        self.on_step: List[StepHook] = list(on_step or [])
        self.root_only_output = bool(root_only_output)

        self.phase = RunPhase.INIT
        self.history: List = []
        self.failure: Optional[ChemistryIntegrationError] = None
        self.mass_checks: List[Dict[str, object]] = []
        self.timing: Dict[str, float] = {"transport": 0.0, "chemistry": 0.0, "microphysics": 0.0}

        self.grid: Optional[SpatialGrid] = None
        self.state: Optional[PlumeState] = None
        self.clock: Optional[SimulationClock] = None
        self.sun: Optional[SolarGeometry] = None
        self.emission: Optional[EmissionState] = None
        self.cluster: Optional[RingCluster] = None
        self.ring_map: Optional[RingToMeshMap] = None
        self.ring_series: List[FloatArray] = []
        self.ambient_series = AmbientSeries()
        self.liquid: Optional[AerosolPhaseControl] = None
        self.solid: Optional[AerosolPhaseControl] = None
        self._ctx: Optional[StepContext] = None
        self._scalars: Optional[ScalarsWriter] = None

    def _default_out_dir(self) -> Path:
        if self.cfg.paths.case_dir is not None:
            return Path(self.cfg.paths.case_dir)
        return Path(self.cfg.paths.output_root) / self.cfg.case.id

    # ------------------------------------------------------------------ run
    def run(self, conditions: Optional[CaseConditions] = None) -> RunStatus:
        """Run the whole simulation; returns SUCCESS, CHEMISTRY_FAILURE or SAVE_FAILURE."""
        conditions = conditions or self.cfg.conditions
        self.phase = RunPhase.INIT
        self._initialize(conditions)

        self.phase = RunPhase.RUNNING
        try:
            status = self._time_loop()
        finally:
            if self._scalars is not None:
                self._scalars.close()
        if status != RunStatus.SUCCESS:
            return status
        return self._finish(conditions)

    # ----------------------------------------------------------- initialize
    def _initialize(self, conditions: CaseConditions) -> None:
        cfg = self.cfg
        mech = self.mechanism
        grid = build_grid(cfg)
        self.grid = grid

        sun = SolarGeometry(conditions.latitude_deg, conditions.day_gmt)
        self.sun = sun
        t_initial = conditions.emission_time_h * SECONDS_PER_HOUR
        t_final = t_initial + cfg.time.duration_h * SECONDS_PER_HOUR
        self.clock = SimulationClock(t=t_initial, t_initial=t_initial, t_final=t_final)
        n_steps = len(build_time_levels(t_initial, t_final, self.step_rule, sun.sunrise_s, sun.sunset_s)) - 1

        meteorology = self._meteorology or LapseRateMeteorology(
            grid, conditions.temperature_K, conditions.pressure_Pa, cfg.background.lapse_rate
        )

        liquid_edges = log_bin_edges(cfg.aerosol.liquid_bins.r_min, cfg.aerosol.liquid_bins.r_max, cfg.aerosol.liquid_bins.n_bin)
        solid_edges = log_bin_edges(cfg.aerosol.solid_bins.r_min, cfg.aerosol.solid_bins.r_max, cfg.aerosol.solid_bins.n_bin)
        state, ambient = build_initial_state(mech, grid, cfg.background, conditions, liquid_edges, solid_edges)

        aircraft = self.emissions.aircraft_emissions()
        early = self.early_microphysics.run(aircraft, conditions, liquid_edges, solid_edges)
        emission = build_emission_state(aircraft, early)
        self.emission = emission

        rh_i = float(rh_ice_from_rh_w(conditions.rh_w, conditions.temperature_K))
        region = None
        if cfg.chemistry.rings:
            self.cluster = RingCluster(
                cfg.chemistry.n_ring, emission.semi_x, emission.semi_y, half_ring=rh_i > 100.0
            )
            self.ring_map = build_ring_map(self.cluster, grid)
            region = self.ring_map.cells_at_level(self.cluster, 0)
        region = plume_region(grid, emission.semi_x, emission.semi_y, region)
        if cfg.emissions.enabled:
            deposit_emissions(state, emission, mech, region, grid.areas)
        check_state_shapes(state, grid, n_var=mech.n_var, n_fix=mech.n_fix)
        self.state = state

        emitted = cfg.emissions.enabled
        liquid_regime = _select_regime(emitted and emission.has_liquid, ambient.liquid_numbers)
        solid_regime = _select_regime(emitted and emission.has_ice, ambient.solid_numbers)

        tr = cfg.transport
        v_x, v_y = build_advection_rule(tr)(0.0)
        settling = None
        if tr.enabled and cfg.aerosol.settling and solid_regime == MicrophysicsRegime.FULL:
            settling = settling_velocity(state.solid.centers, conditions.temperature_K, conditions.pressure_Pa)

        self.liquid = self._phase_control(
            "liquid",
            liquid_regime,
            _symmetry(grid, v_x, v_y, False),
            state.liquid,
            cfg.aerosol.liquid_coag_dt,
            cfg.output.liquid_save_dt,
            cfg.output.save_liquid,
            conditions,
            t_initial,
        )
        self.solid = self._phase_control(
            "solid",
            solid_regime,
            _symmetry(grid, v_x, v_y, settling is not None or rh_i > 100.0),
            state.solid,
            cfg.aerosol.solid_coag_dt,
            cfg.output.solid_save_dt,
            cfg.output.save_solid,
            conditions,
            t_initial,
        )

        chemistry_engine = None
        chemistry_path: Optional[ChemistryPath] = None
        if cfg.chemistry.enabled:
            integrator = self._integrator or KineticsIntegrator(mech, method=cfg.chemistry.method)
            chemistry_engine = ChemistryEngine(
                mech,
                integrator,
                heterogeneous=cfg.chemistry.heterogeneous,
                rtol=cfg.chemistry.rtol,
                atol=cfg.chemistry.atol,
                rh_w_fallback=conditions.rh_w,
                psc_state=cfg.chemistry.psc_state,
            )
            if self.ring_map is not None:
                chemistry_path = RingChemistry(
                    chemistry_engine,
                    self.ring_map,
                    temperature=conditions.temperature_K,
                    pressure=conditions.pressure_Pa,
                )
            else:
                chemistry_path = GridChemistry(chemistry_engine, grid, meteorology)

        self.ambient_series = AmbientSeries()
        self.ambient_series.append(ambient.var)
        self.ring_series = []
        if self.ring_map is not None:
            self.ring_series.append(self.ring_map.ring_average(state.species))

        self._ctx = StepContext(
            mechanism=mech,
            grid=grid,
            state=state,
            ambient=ambient,
            ambient_series=self.ambient_series,
            sun=sun,
            meteorology=meteorology,
            gas_transport=TransportEngine(grid, fill_negative=tr.fill_negative, fill_value=tr.fill_value),
            micro_transport=TransportEngine(grid, fill_negative=tr.fill_negative, fill_value=tr.aerosol_floor),
            diffusion_rule=build_diffusion_rule(tr),
            advection_rule=build_advection_rule(tr),
            chem_ctx=ChemistryContext.for_mechanism(mech),
            temperature=conditions.temperature_K,
            pressure=conditions.pressure_Pa,
            rh_w=conditions.rh_w,
            t_initial=t_initial,
            transport_enabled=tr.enabled,
            chemistry_engine=chemistry_engine,
            chemistry_path=chemistry_path,
            ring_map=self.ring_map,
            ambient_surface=_ambient_surface(mech, ambient, state.liquid.centers, state.solid.centers)
            if cfg.chemistry.heterogeneous
            else None,
            liquid_regime=liquid_regime,
            solid_regime=solid_regime,
            settling=settling,
            aerosol_floor=tr.aerosol_floor,
            ice_growth=cfg.aerosol.ice_growth,
            i_so4=mech.find("SO4"),
            i_h2o=mech.find("H2O"),
        )

        if cfg.output.write_scalars and cfg.output.save_output:
            self._scalars = ScalarsWriter(self.out_dir, root_only=self.root_only_output)

        if cfg.diagnostics.mass_check:
            self._mass_check(0)

        self._log_summary(conditions, rh_i, n_steps)

    def _phase_control(
        self,
        name: str,
        regime: MicrophysicsRegime,
        symmetry: int,
        population,
        coag_dt: float,
        save_dt: float,
        save: bool,
        conditions: CaseConditions,
        t_initial: float,
    ) -> AerosolPhaseControl:
        operator = None
        if self.cfg.aerosol.coagulation and regime != MicrophysicsRegime.NONE:
            kernel = brownian_kernel(
                population.centers, conditions.temperature_K, conditions.pressure_Pa, population.density
            )
            operator = CoagulationOperator(population.volumes, kernel)
        snapshots = SnapshotBuffer(SnapshotLayout(population.n_bin, *population.pdf.shape[1:]))
        if save:
            snapshots.append(population.pdf, t_initial)
        return AerosolPhaseControl(
            name=name,
            regime=regime,
            symmetry=symmetry,
            operator=operator,
            coag_event=CadencedEvent(f"{name} coagulation", coag_dt, t_initial),
            save_event=CadencedEvent(f"{name} save", save_dt, t_initial),
            snapshots=snapshots,
            save=save,
        )

    def _log_summary(self, conditions: CaseConditions, rh_i: float, n_steps: int) -> None:
        sun = self.sun
        amb = self._ctx.ambient
        logger.info("Case %s: %s", self.cfg.case.id, self.cfg.case.title)
        logger.info(
            "Conditions: T = %.2f K, P = %.1f hPa, RH_w = %.1f %%, RH_i = %.1f %%, [M] = %.4e molec/cm^3",
            conditions.temperature_K,
            conditions.pressure_Pa / 100.0,
            conditions.rh_w,
            rh_i,
            amb.air_density,
        )
        logger.info(
            "Location: lon %.2f, lat %.2f, day %d; %s",
            conditions.longitude_deg,
            conditions.latitude_deg,
            conditions.day_gmt,
            sun.describe(),
        )
        logger.info(
            "Time: %.2f h -> %.2f h local (%d steps); grid %dx%d; chemistry %s; regimes liquid=%s solid=%s",
            self.clock.t_initial / SECONDS_PER_HOUR,
            self.clock.t_final / SECONDS_PER_HOUR,
            n_steps,
            self.grid.nx,
            self.grid.ny,
            ("rings" if self.ring_map is not None else "grid") if self.cfg.chemistry.enabled else "off",
            self.liquid.regime.name,
            self.solid.regime.name,
        )

    # ------------------------------------------------------------ time loop
    def _time_loop(self) -> RunStatus:
        clock = self.clock
        sun = self.sun
        while not clock.done:
            clock.set_step(self.step_rule(clock.t, sun.sunrise_s, sun.sunset_s))
            try:
                res = advance_one_step(self._ctx, clock.t, clock.dt)
            except ChemistryIntegrationError as exc:
                for line in exc.dump_lines():
                    logger.error(line)
                logger.error("Stopping at step %d (t = %.2f s): %s", clock.step, clock.t, exc)
                self.failure = exc
                self.phase = RunPhase.CHEMISTRY_FAILED
                return RunStatus.CHEMISTRY_FAILURE

            if res.ring_values is not None:
                self.ring_series.append(np.array(res.ring_values, copy=True))
            self._microphysics(res)
            self._save_snapshots()
            if self.cfg.diagnostics.mass_check:
                self._mass_check(clock.step + 1)

            self.history.append(res.diag)
            self.timing["transport"] += res.diag.time_transport
            self.timing["chemistry"] += res.diag.time_chemistry
            self.timing["microphysics"] += res.diag.time_microphysics
            if self._scalars is not None:
                self._scalars.write(clock.step, res.diag)
            self._log_step(res)
            for hook in self.on_step:
                hook(self, res)
            clock.advance()
        return RunStatus.SUCCESS

    def _microphysics(self, res: StepResult) -> None:
        clock = self.clock
        for control, pop in ((self.liquid, self.state.liquid), (self.solid, self.state.solid)):
            if control.operator is None:
                continue
            if control.coag_event.is_due(clock.t, clock.is_last_step):
                span = control.coag_event.fire(clock.t)
                coagulate(pop.pdf, control.operator, span, regime=control.regime, symmetry=control.symmetry)
                logger.debug("%s over %.1f s", control.coag_event.name, span)

    def _save_snapshots(self) -> None:
        clock = self.clock
        for control, pop in ((self.liquid, self.state.liquid), (self.solid, self.state.solid)):
            if not control.save:
                continue
            if control.save_event.is_due(clock.t, clock.is_last_step):
                t_record = clock.t + clock.dt if clock.is_last_step else clock.t
                control.save_event.fire(t_record)
                control.snapshots.append(pop.pdf, t_record)

    def _mass_check(self, level: int) -> None:
        mech = self.mechanism
        families = self.cfg.diagnostics.families or list(mech.families)
        ambient_var = self.ambient_series.current()
        ring_values = self.ring_series[-1] if self.ring_series else None
        for name in families:
            if name not in mech.families:
                logger.warning("Mass check: unknown family %s", name)
                continue
            m = family_mass(
                mech,
                name,
                self.state.species,
                ambient_var,
                self.grid.areas,
                ring_values,
                self.ring_map.ring_area if self.ring_map is not None else None,
            )
            self.mass_checks.append({"level": level, "family": name, "grid": m.grid_excess, "rings": m.ring_excess})
            frac = m.ring_fraction
            logger.info(
                "Mass check [%d] %s: %.4e mol/m on grid%s%s",
                level,
                name,
                m.grid_excess,
                "" if m.grid_kg_per_km is None else f" ({m.grid_kg_per_km:.4e} kg/km)",
                "" if frac is None else f", ring fraction {100.0 * frac:.2f} %",
            )

    def _log_step(self, res: StepResult) -> None:
        d = res.diag
        logger.info(
            "step=%d t=[%.1f -> %.1f] (%.2f h) dt=%.1f csza=%.3f D=(%.3g, %.3g) chem_calls=%d min=%.3e",
            self.clock.step,
            d.t_old,
            d.t_new,
            d.t_new / SECONDS_PER_HOUR,
            d.dt,
            d.cos_sza,
            d.d_x,
            d.d_y,
            d.n_chemistry_calls,
            d.species_min,
        )

    # --------------------------------------------------------------- finish
    def time_levels(self) -> FloatArray:
        return np.array([self.clock.t_initial] + [d.t_new for d in self.history], dtype=np.float64)

    def build_output(self, conditions: CaseConditions) -> RunOutput:
        sun = self.sun
        amb = self._ctx.ambient
        return RunOutput(
            species=list(self.mechanism.variable),
            times=self.time_levels(),
            ambient=self.ambient_series.as_array(),
            cos_sza=np.asarray(self.ambient_series.cos_sza, dtype=np.float64),
            x=np.asarray(self.grid.x),
            y=np.asarray(self.grid.y),
            ring_series=np.stack(self.ring_series) if self.ring_series else None,
            ring_area=self.ring_map.ring_area if self.ring_map is not None else None,
            liquid=self.liquid.snapshots if self.liquid.save else None,
            solid=self.solid.snapshots if self.solid.save else None,
            liquid_bins=self.state.liquid.centers,
            solid_bins=self.state.solid.centers,
            attributes={
                "case_id": self.cfg.case.id,
                "mechanism": self.mechanism.name,
                "temperature_K": conditions.temperature_K,
                "pressure_Pa": conditions.pressure_Pa,
                "rh_w": conditions.rh_w,
                "rh_i": float(rh_ice_from_rh_w(conditions.rh_w, conditions.temperature_K)),
                "air_density": amb.air_density,
                "longitude_deg": conditions.longitude_deg,
                "latitude_deg": conditions.latitude_deg,
                "sunrise_h": sun.sunrise_h,
                "sunset_h": sun.sunset_h,
                "n_ring": self.ring_map.n_ring if self.ring_map is not None else 0,
                "half_ring": bool(self.cluster.half_ring) if self.cluster is not None else False,
            },
        )

    def _finish(self, conditions: CaseConditions) -> RunStatus:
        out = self.cfg.output
        logger.info(
            "Time loop done after %d steps; wall time transport %.2f s, chemistry %.2f s, microphysics %.2f s",
            self.clock.step,
            self.timing["transport"],
            self.timing["chemistry"],
            self.timing["microphysics"],
        )
        if out.save_output or out.save_liquid or out.save_solid:
            writer = self.writer or PlumeOutputWriter(
                self.out_dir,
                save_output=out.save_output,
                save_liquid=out.save_liquid,
                save_solid=out.save_solid,
                root_only=self.root_only_output,
            )
            status = writer.write_run(self.build_output(conditions))
            if status != SAVE_SUCCESS:
                logger.error("Saving run output failed with status %s", status)
                self.phase = RunPhase.SAVE_FAILED
                return RunStatus.SAVE_FAILURE
        self.phase = RunPhase.COMPLETED
        return RunStatus.SUCCESS
