"""
Driver to run one aircraft plume case from a YAML file.

Responsibilities:
- Load CaseConfig from YAML (nested dataclasses, paths resolved against the file).
- Load the mechanism artifact.
- Create a timestamped run directory with a config copy and run.log.
- Run PlumeModel and map its status to the process exit code.
"""

from __future__ import annotations

import argparse
import logging
import shutil
import traceback
from datetime import datetime
from pathlib import Path
from typing import Any, Dict, Mapping, Optional, Sequence

import yaml

from core.logging_utils import get_log_level_from_env, get_mpi_rank_size, run_log, setup_logging
from core.mechanism import Mechanism
from core.types import (
    CaseAerosol,
    CaseBackground,
    CaseBins,
    CaseChemistry,
    CaseConditions,
    CaseConfig,
    CaseDiagnostics,
    CaseEarlyMicrophysics,
    CaseEmissions,
    CaseGrid,
    CaseLognormal,
    CaseMeta,
    CaseOutput,
    CasePaths,
    CaseTime,
    CaseTransport,
    RunStatus,
)
from driver.plume_model import PlumeModel

logger = logging.getLogger(__name__)

EXIT_UNHANDLED = 99


# -----------------------------------------------------------------------------
# YAML loader
# -----------------------------------------------------------------------------
def _resolve_path(base: Path, value: str | Path) -> Path:
    """Resolve a possibly relative path against base."""
    path = Path(value)
    return path if path.is_absolute() else (base / path).resolve()


def _read_yaml_text(cfg_file: Path) -> str:
    try:
        return cfg_file.read_text(encoding="utf-8-sig")
    except UnicodeDecodeError:
        return cfg_file.read_text()


def _block(raw: Mapping[str, Any], key: str) -> Mapping[str, Any]:
    value = raw.get(key, {}) or {}
    if not isinstance(value, Mapping):
        raise TypeError(f"Config block {key!r} must be a mapping, got {type(value).__name__}")
    return value


def _check_keys(block: Mapping[str, Any], allowed: set, where: str) -> None:
    unknown = set(block.keys()) - allowed
    if unknown:
        raise ValueError(f"Unsupported keys in {where}: {sorted(unknown)}")


def _species_map(raw: Any, where: str) -> Dict[str, float]:
    out: Dict[str, float] = {}
    for k, v in (raw or {}).items():
        if not isinstance(k, str):
            raise ValueError(f"{where}: species key {k!r} is not a string; quote it in the YAML")
        out[k] = float(v)
    return out


def _build_bins(raw: Mapping[str, Any], default: CaseBins) -> CaseBins:
    if not raw:
        return default
    return CaseBins(
        n_bin=int(raw.get("n_bin", default.n_bin)),
        r_min=float(raw.get("r_min", default.r_min)),
        r_max=float(raw.get("r_max", default.r_max)),
    )


def _build_lognormal(raw: Mapping[str, Any]) -> CaseLognormal:
    return CaseLognormal(
        number=float(raw.get("number", 0.0)),
        radius=float(raw.get("radius", 1.0e-7)),
        sigma=float(raw.get("sigma", 1.5)),
    )


def build_case_config(raw: Mapping[str, Any], base: Path) -> CaseConfig:
    """Build CaseConfig from an already parsed YAML mapping."""
    case_cfg = CaseMeta(**raw["case"])

    paths_raw = _block(raw, "paths")
    paths_cfg = CasePaths(
        output_root=_resolve_path(base, paths_raw.get("output_root", "out")),
        mechanism=_resolve_path(base, paths_raw["mechanism"]),
        case_dir=_resolve_path(base, paths_raw["case_dir"]) if paths_raw.get("case_dir") else None,
    )

    cond_raw = _block(raw, "conditions")
    _check_keys(
        cond_raw,
        {"temperature_K", "pressure_Pa", "rh_w", "longitude_deg", "latitude_deg", "day_gmt", "emission_time_h"},
        "conditions",
    )
    conditions = CaseConditions(
        temperature_K=float(cond_raw["temperature_K"]),
        pressure_Pa=float(cond_raw["pressure_Pa"]),
        rh_w=float(cond_raw["rh_w"]),
        longitude_deg=float(cond_raw.get("longitude_deg", 0.0)),
        latitude_deg=float(cond_raw.get("latitude_deg", 0.0)),
        day_gmt=int(cond_raw.get("day_gmt", 81)),
        emission_time_h=float(cond_raw.get("emission_time_h", 8.0)),
    )

    grid_raw = _block(raw, "grid")
    grid_cfg = CaseGrid(
        nx=int(grid_raw["nx"]),
        ny=int(grid_raw["ny"]),
        x_min=float(grid_raw.get("x_min", -1.0e3)),
        x_max=float(grid_raw.get("x_max", 1.0e3)),
        y_min=float(grid_raw.get("y_min", -5.0e2)),
        y_max=float(grid_raw.get("y_max", 5.0e2)),
    )

    time_raw = _block(raw, "time")
    time_cfg = CaseTime(
        duration_h=float(time_raw["duration_h"]),
        step_rule=str(time_raw.get("step_rule", "fixed")),
        dt=float(time_raw.get("dt", 600.0)),
        dt_fine=float(time_raw["dt_fine"]) if time_raw.get("dt_fine") is not None else None,
        refine_window_h=float(time_raw.get("refine_window_h", 0.5)),
    )

    tr_raw = _block(raw, "transport")
    _check_keys(
        tr_raw,
        {"enabled", "diffusion", "advection", "d_h", "d_v", "v_x", "v_y", "fill_negative", "fill_value", "aerosol_floor"},
        "transport",
    )
    transport_cfg = CaseTransport(**{k: (bool(v) if isinstance(v, bool) else float(v)) for k, v in tr_raw.items()})

    chem_raw = _block(raw, "chemistry")
    chemistry_cfg = CaseChemistry(
        enabled=bool(chem_raw.get("enabled", True)),
        heterogeneous=bool(chem_raw.get("heterogeneous", False)),
        rings=bool(chem_raw.get("rings", True)),
        n_ring=int(chem_raw.get("n_ring", 10)),
        rtol=float(chem_raw.get("rtol", 1.0e-3)),
        atol=float(chem_raw.get("atol", 1.0)),
        method=str(chem_raw.get("method", "BDF")),
        psc_state=int(chem_raw.get("psc_state", 0)),
    )

    aero_raw = _block(raw, "aerosol")
    default_aero = CaseAerosol()
    aerosol_cfg = CaseAerosol(
        coagulation=bool(aero_raw.get("coagulation", True)),
        liquid_coag_dt=float(aero_raw.get("liquid_coag_dt", 600.0)),
        solid_coag_dt=float(aero_raw.get("solid_coag_dt", 600.0)),
        settling=bool(aero_raw.get("settling", True)),
        ice_growth=bool(aero_raw.get("ice_growth", False)),
        liquid_bins=_build_bins(_block(aero_raw, "liquid_bins"), default_aero.liquid_bins),
        solid_bins=_build_bins(_block(aero_raw, "solid_bins"), default_aero.solid_bins),
    )

    em_raw = _block(raw, "emissions")
    early_raw = _block(em_raw, "early")
    early_cfg = CaseEarlyMicrophysics(**{k: float(v) for k, v in early_raw.items()})
    emissions_cfg = CaseEmissions(
        enabled=bool(em_raw.get("enabled", True)),
        aircraft=str(em_raw.get("aircraft", "B747-800")),
        engine=str(em_raw.get("engine", "")),
        fuel=str(em_raw.get("fuel", "C12H24")),
        n_engines=int(em_raw.get("n_engines", 4)),
        fuel_flow=float(em_raw.get("fuel_flow", 2.8)),
        v_flight=float(em_raw.get("v_flight", 250.0)),
        vortex_delta_z1=float(em_raw.get("vortex_delta_z1", 150.0)),
        ei=_species_map(em_raw.get("ei"), "emissions.ei"),
        so2_to_so4=float(em_raw.get("so2_to_so4", 0.02)),
        soot_ei=float(em_raw.get("soot_ei", 0.04)),
        soot_radius=float(em_raw.get("soot_radius", 2.0e-8)),
        early=early_cfg,
    )

    bg_raw = _block(raw, "background")
    background_cfg = CaseBackground(
        mixing_ratios=_species_map(bg_raw.get("mixing_ratios"), "background.mixing_ratios"),
        liquid_aerosol=_build_lognormal(_block(bg_raw, "liquid_aerosol")),
        solid_aerosol=_build_lognormal(_block(bg_raw, "solid_aerosol")),
        lapse_rate=float(bg_raw.get("lapse_rate", -3.0e-3)),
    )

    out_raw = _block(raw, "output")
    output_cfg = CaseOutput(
        save_output=bool(out_raw.get("save_output", True)),
        save_liquid=bool(out_raw.get("save_liquid", True)),
        save_solid=bool(out_raw.get("save_solid", True)),
        liquid_save_dt=float(out_raw.get("liquid_save_dt", 3600.0)),
        solid_save_dt=float(out_raw.get("solid_save_dt", 3600.0)),
        write_scalars=bool(out_raw.get("write_scalars", True)),
    )

    diag_raw = _block(raw, "diagnostics")
    diagnostics_cfg = CaseDiagnostics(
        mass_check=bool(diag_raw.get("mass_check", False)),
        families=[str(f) for f in (diag_raw.get("families") or [])],
        timing=bool(diag_raw.get("timing", True)),
    )

    sweep_raw = _block(raw, "sweep")
    sweep = {str(k): [float(v) for v in vals] for k, vals in sweep_raw.items()}

    return CaseConfig(
        case=case_cfg,
        paths=paths_cfg,
        conditions=conditions,
        grid=grid_cfg,
        time=time_cfg,
        transport=transport_cfg,
        chemistry=chemistry_cfg,
        aerosol=aerosol_cfg,
        emissions=emissions_cfg,
        background=background_cfg,
        output=output_cfg,
        diagnostics=diagnostics_cfg,
        sweep=sweep,
    )


def _load_case_config(cfg_path: str) -> CaseConfig:
    """Load YAML file into CaseConfig with nested dataclasses."""
    cfg_file = Path(cfg_path).expanduser().resolve()
    raw = yaml.safe_load(_read_yaml_text(cfg_file))
    if not isinstance(raw, Mapping):
        raise ValueError(f"Case file {cfg_file} does not contain a mapping")
    return build_case_config(raw, cfg_file.parent)


def _prepare_run_dir(cfg: CaseConfig, cfg_path: str) -> Path:
    """Create per-run output directory and copy cfg yaml into it."""
    out_root = Path(cfg.paths.output_root)
    stamp = datetime.now().strftime("%Y%m%d_%H%M%S")
    run_dir = Path(cfg.paths.case_dir) if cfg.paths.case_dir is not None else out_root / cfg.case.id / stamp
    run_dir.mkdir(parents=True, exist_ok=True)

    cfg.paths.case_dir = run_dir

    try:
        shutil.copy2(cfg_path, run_dir / "config.yaml")
    except OSError as exc:  # pragma: no cover - best-effort copy
        logger.warning("Failed to copy cfg to run dir: %s", exc)
    return run_dir


def run_case(
    cfg_path: str,
    *,
    dry_run: bool = False,
    log_level: int | str = logging.INFO,
) -> int:
    """Run one plume case. Returns the RunStatus value, or 99 on an unhandled exception."""
    cfg_path = str(cfg_path)
    try:
        rank, _ = get_mpi_rank_size()
        level = get_log_level_from_env(default=log_level)
        setup_logging(rank, level=level, quiet_nonroot=True)

        cfg = _load_case_config(cfg_path)
        mechanism = Mechanism.from_yaml(cfg.paths.mechanism)

        if dry_run:
            logger.info("Dry run requested: config and mechanism loaded; skipping simulation.")
            return int(RunStatus.SUCCESS)

        run_dir = _prepare_run_dir(cfg, cfg_path)
        logger.info("Run directory: %s", run_dir)
        with run_log(run_dir, level=level):
            status = PlumeModel(cfg, mechanism, out_dir=run_dir).run()
        if status == RunStatus.SUCCESS:
            logger.info("Completed run %s in %s", cfg.case.id, run_dir)
        else:
            logger.error("Run %s ended with %s (%d)", cfg.case.id, status.name, int(status))
        return int(status)
    except Exception:
        logger.error("Unhandled exception:\n%s", traceback.format_exc())
        return EXIT_UNHANDLED


def _parse_args(argv: Optional[Sequence[str]] = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Run an aircraft plume case.")
    parser.add_argument("case_yaml", help="Path to case YAML file.")
    parser.add_argument(
        "--dry_run",
        action="store_true",
        help="Load config and mechanism only; skip the simulation.",
    )
    parser.add_argument("--log_level", default="INFO", help="Console log level (PLUME_LOG_LEVEL overrides).")
    return parser.parse_args(argv)


def main(argv: Optional[Sequence[str]] = None) -> int:
    args = _parse_args(argv)
    status = run_case(args.case_yaml, dry_run=args.dry_run, log_level=args.log_level)
    # SUCCESS maps to exit code 0
    return 0 if status == int(RunStatus.SUCCESS) else (status if status > 0 else 100 - status)


if __name__ == "__main__":  # pragma: no cover
    raise SystemExit(main())
