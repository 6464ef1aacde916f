"""
Case YAML loading and driver entry points.

Tests:
1. The shipped example case loads into nested dataclasses with resolved paths
2. Unknown keys and invalid values are rejected
3. run_case --dry_run loads config and mechanism without running
4. Sweep points form the cartesian product and are striped over ranks
5. Species keys that YAML turned into booleans are rejected
"""

from __future__ import annotations

import sys
from pathlib import Path

import pytest
import yaml

sys.path.insert(0, str(Path(__file__).parent.parent))

from core.types import CaseConfig, CaseConditions, CaseTime, RunStatus
from driver.run_plume_case import EXIT_UNHANDLED, _load_case_config, build_case_config, run_case
from driver.sweep import assigned_points, point_conditions, sweep_points

ROOT = Path(__file__).parent.parent
EXAMPLE = ROOT / "cases" / "example_plume.yaml"


def _raw():
    return yaml.safe_load(EXAMPLE.read_text())


def test_example_case_loads():
    cfg = _load_case_config(str(EXAMPLE))
    assert isinstance(cfg, CaseConfig)
    assert cfg.case.id == "b747_cruise"
    assert cfg.paths.mechanism == (ROOT / "mechanisms" / "example_nox.yaml").resolve()
    assert cfg.paths.mechanism.exists()
    assert cfg.grid.nx == 128 and cfg.grid.ny == 64
    assert cfg.time.step_rule == "solar_refined"
    assert cfg.chemistry.rings and cfg.chemistry.n_ring == 10
    assert cfg.aerosol.solid_bins.r_max == pytest.approx(1.0e-4)
    assert cfg.emissions.ei["NO"] == pytest.approx(12.0)
    assert cfg.emissions.early.plume_area_m2 == pytest.approx(1.0e4)
    assert cfg.background.liquid_aerosol.number == pytest.approx(10.0)
    assert cfg.diagnostics.families == ["NOy", "CO2", "SOx"]
    assert cfg.sweep == {}


def test_unknown_keys_rejected(tmp_path):
    raw = _raw()
    raw["transport"]["d_z"] = 1.0
    with pytest.raises(ValueError):
        build_case_config(raw, EXAMPLE.parent)

    raw = _raw()
    raw["conditions"]["altitude_m"] = 11000.0
    with pytest.raises(ValueError):
        build_case_config(raw, EXAMPLE.parent)


def test_invalid_values_rejected():
    raw = _raw()
    raw["chemistry"]["n_ring"] = 1
    with pytest.raises(ValueError):
        build_case_config(raw, EXAMPLE.parent)

    raw = _raw()
    raw["time"]["step_rule"] = "adaptive"
    with pytest.raises(ValueError):
        build_case_config(raw, EXAMPLE.parent)

    with pytest.raises(ValueError):
        CaseConditions(temperature_K=-1.0, pressure_Pa=1.0e4, rh_w=50.0)
    with pytest.raises(ValueError):
        CaseTime(duration_h=0.0)


def test_dry_run(tmp_path):
    assert run_case(str(EXAMPLE), dry_run=True) == int(RunStatus.SUCCESS)
    assert run_case(str(tmp_path / "missing.yaml"), dry_run=True) == EXIT_UNHANDLED


def test_sweep_points_and_striping():
    points = sweep_points({"temperature_K": [215.0, 220.0], "rh_w": [40.0, 60.0, 80.0]})
    assert len(points) == 6
    assert points[0] == {"temperature_K": 215.0, "rh_w": 40.0}
    assert points[-1] == {"temperature_K": 220.0, "rh_w": 80.0}
    assert sweep_points({}) == [{}]
    with pytest.raises(ValueError):
        sweep_points({"grid_nx": [1.0]})

    ranks = [list(assigned_points(6, r, 4)) for r in range(4)]
    assert ranks == [[0, 4], [1, 5], [2], [3]]
    assert sorted(i for r in ranks for i in r) == list(range(6))


def test_point_conditions_override():
    base = CaseConditions(temperature_K=220.0, pressure_Pa=25000.0, rh_w=60.0)
    cond = point_conditions(base, {"temperature_K": 210.0, "day_gmt": 172.0})
    assert cond.temperature_K == 210.0
    assert cond.day_gmt == 172 and isinstance(cond.day_gmt, int)
    assert cond.pressure_Pa == 25000.0
    assert base.temperature_K == 220.0


def test_yaml_boolean_species_keys_rejected():
    # an unquoted NO in the YAML arrives as False
    text = EXAMPLE.read_text().replace('"NO": 12.0', "NO: 12.0")
    raw = yaml.safe_load(text)
    assert False in raw["emissions"]["ei"]
    with pytest.raises(ValueError, match="quote"):
        build_case_config(raw, EXAMPLE.parent)

    raw = _raw()
    raw["background"]["mixing_ratios"][True] = 1.0e-9
    with pytest.raises(ValueError, match="background.mixing_ratios"):
        build_case_config(raw, EXAMPLE.parent)
