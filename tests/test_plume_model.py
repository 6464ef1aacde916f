"""
End-to-end plume runs on tiny grids.

Tests:
1. Single-cell grid chemistry follows the closed-form decay after every step; snapshots at start and last step
2. A chemistry failure on step 2 stops the run with CHEMISTRY_FAILURE after one step, on the grid and on the rings
3. A failing writer turns a finished run into SAVE_FAILURE
4. Ring chemistry with emissions keeps the emitted family mass on the rings
5. Emitted soot, ice and sulfate switch both aerosol phases to full microphysics
6. A sweep runs every point into its own directory
7. Coagulation symmetry drops to a full solve when transport breaks the mirror image
"""

from __future__ import annotations

import csv
import json
import sys
from pathlib import Path

import numpy as np
import pytest

sys.path.insert(0, str(Path(__file__).parent.parent))

from core.grid import build_grid_from_block
from core.mechanism import Mechanism
from core.types import (
    CaseAerosol,
    CaseBackground,
    CaseBins,
    CaseChemistry,
    CaseConditions,
    CaseConfig,
    CaseDiagnostics,
    CaseEmissions,
    CaseGrid,
    CaseMeta,
    CaseOutput,
    CasePaths,
    CaseTime,
    CaseTransport,
    MicrophysicsRegime,
    RunPhase,
    RunStatus,
)
from driver.plume_model import PlumeModel, _symmetry
from driver.sweep import run_sweep
from output.writers import SAVE_FAILURE
from solvers.kinetics import INTEGRATION_FAILED, KineticsIntegrator

K_DECAY = 1.0e-3


def _decay_mechanism():
    return Mechanism.from_dict(
        {
            "name": "decay",
            "variable_species": ["A", "B"],
            "molar_mass": {"A": 0.03, "B": 0.03},
            "reactions": [{"reactants": {"A": 1}, "products": {"B": 1}, "rate": {"type": "constant", "k": K_DECAY}}],
            "families": {"AB": {"members": {"A": 1, "B": 1}, "molar_mass": 0.03}},
        }
    )


def _config(
    tmp_path, *, grid=None, rings=False, emissions=None, duration_h=0.5, dt=900.0, mass_check=False, transport=None
):
    return CaseConfig(
        case=CaseMeta(id="unit", title="unit test"),
        paths=CasePaths(output_root=tmp_path, mechanism=tmp_path / "mech.yaml"),
        conditions=CaseConditions(temperature_K=220.0, pressure_Pa=25000.0, rh_w=40.0, latitude_deg=45.0),
        grid=grid or CaseGrid(nx=1, ny=1, x_min=-50.0, x_max=50.0, y_min=-50.0, y_max=50.0),
        time=CaseTime(duration_h=duration_h, dt=dt),
        transport=transport or CaseTransport(),
        chemistry=CaseChemistry(rings=rings, n_ring=3, rtol=1.0e-8, atol=1.0e-3),
        aerosol=CaseAerosol(),
        emissions=emissions or CaseEmissions(enabled=False),
        background=CaseBackground(mixing_ratios={"A": 1.0e-9}),
        output=CaseOutput(liquid_save_dt=900.0, solid_save_dt=900.0),
        diagnostics=CaseDiagnostics(mass_check=mass_check),
    )


def test_single_cell_decay_run(tmp_path):
    cfg = _config(tmp_path)
    mech = _decay_mechanism()
    after_step = []
    model = PlumeModel(
        cfg,
        mech,
        out_dir=tmp_path / "run",
        on_step=[lambda m, res: after_step.append(m.state.species[:, 0, 0].copy())],
    )
    status = model.run()
    assert status == RunStatus.SUCCESS
    assert model.phase == RunPhase.COMPLETED
    assert len(model.history) == 2

    a0 = model.ambient_series.values[0][0]
    assert len(after_step) == 2
    for n, conc in enumerate(after_step, start=1):
        decay = np.exp(-K_DECAY * n * 900.0)
        assert conc[0] == pytest.approx(a0 * decay, rel=1e-5)
        assert conc[1] == pytest.approx(a0 * (1.0 - decay), rel=1e-5)
    t_total = 1800.0
    assert model.state.species[0, 0, 0] == pytest.approx(a0 * np.exp(-K_DECAY * t_total), rel=1e-5)
    assert model.state.species[:, 0, 0].sum() == pytest.approx(a0, rel=1e-6)
    assert model.ambient_series.current()[0] == pytest.approx(model.state.species[0, 0, 0], rel=1e-6)

    # no particles anywhere: both phases skip microphysics but keep snapshots
    assert model.liquid.regime == MicrophysicsRegime.NONE
    np.testing.assert_allclose(model.liquid.snapshots.times, [8.0 * 3600.0, 8.5 * 3600.0])
    np.testing.assert_allclose(model.time_levels(), [28800.0, 29700.0, 30600.0])

    run_dir = tmp_path / "run"
    mapping = json.loads((run_dir / "mapping.json").read_text())
    assert mapping["species"] == ["A", "B"]
    series = np.load(run_dir / "timeseries.npz")
    assert series["ambient"].shape == (3, 2)
    assert series["cos_sza"].shape == (2,)
    assert (run_dir / "scalars.csv").exists()


class _FailAfterCalls:
    def __init__(self, mechanism, n_ok):
        self.inner = KineticsIntegrator(mechanism)
        self.n_ok = n_ok
        self.calls = 0

    def integrate(self, var, fix, rconst, t, dt, *, rtol, atol):
        self.calls += 1
        if self.calls > self.n_ok:
            return INTEGRATION_FAILED
        return self.inner.integrate(var, fix, rconst, t, dt, rtol=rtol, atol=atol)


def test_chemistry_failure_stops_run(tmp_path):
    cfg = _config(tmp_path, duration_h=1.0)
    mech = _decay_mechanism()
    integ = _FailAfterCalls(mech, 2)
    model = PlumeModel(cfg, mech, integrator=integ, out_dir=tmp_path / "run")
    status = model.run()
    # step 1: plume cell + ambient succeed; step 2: the plume cell fails
    assert status == RunStatus.CHEMISTRY_FAILURE
    assert int(status) == -1
    assert model.phase == RunPhase.CHEMISTRY_FAILED
    assert len(model.history) == 1
    assert model.failure is not None and model.failure.location == "cell (0, 0)"
    assert not (tmp_path / "run" / "mapping.json").exists()


def test_ring_chemistry_failure_stops_run(tmp_path):
    grid = CaseGrid(nx=48, ny=24, x_min=-1200.0, x_max=1200.0, y_min=-600.0, y_max=600.0)
    emissions = CaseEmissions(enabled=True, ei={"A": 10.0}, soot_ei=0.0)
    cfg = _config(tmp_path, grid=grid, rings=True, emissions=emissions, duration_h=1.0)
    mech = _decay_mechanism()
    # step 1: three rings + ambient; step 2 fails on the outermost ring
    integ = _FailAfterCalls(mech, 6)
    model = PlumeModel(cfg, mech, integrator=integ, out_dir=tmp_path / "run")
    status = model.run()
    assert status == RunStatus.CHEMISTRY_FAILURE
    assert model.phase == RunPhase.CHEMISTRY_FAILED
    assert integ.calls == 7
    assert len(model.history) == 1
    assert len(model.ring_series) == 2
    assert model.failure is not None and model.failure.location == "ring 2"
    assert model.clock.step == 1
    assert not (tmp_path / "run" / "mapping.json").exists()


class _BrokenWriter:
    def write_run(self, output):
        return SAVE_FAILURE


def test_save_failure_status(tmp_path):
    cfg = _config(tmp_path)
    model = PlumeModel(cfg, _decay_mechanism(), writer=_BrokenWriter(), out_dir=tmp_path / "run")
    status = model.run()
    assert status == RunStatus.SAVE_FAILURE
    assert int(status) == -2
    assert model.phase == RunPhase.SAVE_FAILED


def test_ring_chemistry_with_emissions(tmp_path):
    grid = CaseGrid(nx=48, ny=24, x_min=-1200.0, x_max=1200.0, y_min=-600.0, y_max=600.0)
    emissions = CaseEmissions(enabled=True, ei={"A": 10.0}, soot_ei=0.0, fuel_flow=2.8)
    # unfilled spectral transport conserves every species integral exactly
    cfg = _config(
        tmp_path,
        grid=grid,
        rings=True,
        emissions=emissions,
        duration_h=0.5,
        mass_check=True,
        transport=CaseTransport(fill_negative=False),
    )
    cfg.diagnostics.families = ["AB"]
    model = PlumeModel(cfg, _decay_mechanism(), out_dir=tmp_path / "run")
    assert model.run() == RunStatus.SUCCESS

    assert model.ring_map is not None and model.ring_map.n_ring == 3
    assert len(model.ring_series) == 3
    checks = [c for c in model.mass_checks if c["family"] == "AB"]
    assert len(checks) == 3
    emitted = checks[0]["grid"]
    assert emitted > 0.0
    # A -> B conserves the family; transport conserves the domain integral
    for c in checks:
        assert c["grid"] == pytest.approx(emitted, rel=1e-6)
        assert c["rings"] == pytest.approx(c["grid"], rel=1e-6)

    series = np.load(tmp_path / "run" / "timeseries.npz")
    assert series["ring_species"].shape == (3, 3, 2)
    assert series["ring_area"].sum() == pytest.approx(2400.0 * 1200.0)


def test_emitted_particles_run_full_microphysics(tmp_path):
    grid = CaseGrid(nx=48, ny=24, x_min=-1200.0, x_max=1200.0, y_min=-600.0, y_max=600.0)
    emissions = CaseEmissions(enabled=True, ei={"A": 10.0, "SO2": 1.2}, soot_ei=0.04)
    cfg = _config(tmp_path, grid=grid, rings=True, emissions=emissions, duration_h=0.5)
    cfg.conditions.rh_w = 80.0
    cfg.chemistry.enabled = False
    cfg.aerosol.liquid_bins = CaseBins(n_bin=8, r_min=1.0e-9, r_max=1.0e-6)
    cfg.aerosol.solid_bins = CaseBins(n_bin=8, r_min=1.0e-7, r_max=1.0e-4)
    model = PlumeModel(cfg, _decay_mechanism(), out_dir=tmp_path / "run")
    assert model.run() == RunStatus.SUCCESS

    # ice-supersaturated air: ice forms on soot and rings are split in halves
    assert model.cluster.half_ring
    assert model.ring_map.n_ring == 6
    assert model.liquid.regime == MicrophysicsRegime.FULL
    assert model.solid.regime == MicrophysicsRegime.FULL
    assert model.solid.symmetry == 1
    assert model.liquid.symmetry == 2
    assert model.solid.operator is not None

    for pop in (model.state.liquid, model.state.solid):
        assert np.all(np.isfinite(pop.pdf))
        assert np.all(pop.pdf >= 0.0)
        assert pop.number().max() > 0.0
    # soot spreads beyond the initial ellipse
    assert np.count_nonzero(model.state.soot_density > 1.0e-3 * model.state.soot_density.max()) > 8
    assert len(model.solid.snapshots) == 2

    # no chemistry: ring values are recorded but species only move by transport
    assert len(model.ring_series) == 3
    assert sum(d.n_chemistry_calls for d in model.history) == 0


def test_sweep_runs_every_point(tmp_path):
    cfg = _config(tmp_path)
    cfg.sweep = {"temperature_K": [215.0, 225.0]}
    results = run_sweep(cfg, _decay_mechanism(), tmp_path)
    assert results == [(0, 1), (1, 1)]
    with (tmp_path / "sweep_status_rank000.csv").open() as fh:
        rows = list(csv.reader(fh))
    assert len(rows) == 3
    assert float(rows[2][3]) == 225.0
    for k in range(2):
        assert (tmp_path / f"point_{k:04d}" / "mapping.json").exists()


def test_coagulation_symmetry_follows_transport(tmp_path):
    grid = build_grid_from_block(CaseGrid(nx=8, ny=4, x_min=-400.0, x_max=400.0, y_min=-200.0, y_max=200.0))
    assert _symmetry(grid, 0.0, 0.0, False) == 2
    assert _symmetry(grid, 0.0, 0.0, True) == 1
    assert _symmetry(grid, 0.0, 0.1, False) == 1
    assert _symmetry(grid, 0.5, 0.0, False) == 0
    shifted = build_grid_from_block(CaseGrid(nx=8, ny=4, x_min=-300.0, x_max=500.0, y_min=-200.0, y_max=200.0))
    assert _symmetry(shifted, 0.0, 0.0, False) == 0

    # a crosswind breaks the mirror image, so liquid coagulation runs on the full domain
    big = CaseGrid(nx=48, ny=24, x_min=-1200.0, x_max=1200.0, y_min=-600.0, y_max=600.0)
    emissions = CaseEmissions(enabled=True, ei={"SO2": 1.2}, soot_ei=0.0)
    cfg = _config(
        tmp_path, grid=big, emissions=emissions, duration_h=0.25, transport=CaseTransport(advection=True, v_x=0.5)
    )
    cfg.chemistry.enabled = False
    model = PlumeModel(cfg, _decay_mechanism(), out_dir=tmp_path / "run")
    assert model.run() == RunStatus.SUCCESS
    assert model.liquid.regime == MicrophysicsRegime.FULL
    assert model.liquid.symmetry == 0
