"""
Parameter sweep over atmospheric conditions.

The case YAML carries an optional ``sweep`` block mapping CaseConditions field
names to value lists; the cartesian product of the lists is run point by point.
With mpi4py available the points are striped over COMM_WORLD ranks; each rank
writes its own status CSV next to the per-point run directories.
"""

from __future__ import annotations

import argparse
import csv
import dataclasses
import itertools
import logging
import time
import traceback
from pathlib import Path
from typing import Dict, Iterator, List, Optional, Sequence, Tuple

from core.logging_utils import get_log_level_from_env, get_mpi_rank_size, run_log, setup_logging
from core.mechanism import Mechanism
from core.types import CaseConditions, CaseConfig, RunStatus
from driver.plume_model import PlumeModel
from driver.run_plume_case import EXIT_UNHANDLED, _load_case_config, _prepare_run_dir

logger = logging.getLogger(__name__)

SWEEPABLE = ("temperature_K", "pressure_Pa", "rh_w", "longitude_deg", "latitude_deg", "day_gmt", "emission_time_h")


def sweep_points(sweep: Dict[str, List[float]]) -> List[Dict[str, float]]:
    """Cartesian product of the sweep lists, in key order then value order."""
    unknown = set(sweep) - set(SWEEPABLE)
    if unknown:
        raise ValueError(f"Cannot sweep over {sorted(unknown)}; allowed: {list(SWEEPABLE)}")
    if not sweep:
        return [{}]
    keys = list(sweep)
    return [dict(zip(keys, values)) for values in itertools.product(*(sweep[k] for k in keys))]


def point_conditions(base: CaseConditions, point: Dict[str, float]) -> CaseConditions:
    values = dict(point)
    if "day_gmt" in values:
        values["day_gmt"] = int(values["day_gmt"])
    return dataclasses.replace(base, **values)


def assigned_points(n_points: int, rank: int, size: int) -> Iterator[int]:
    """Point indices handled by one rank (round-robin)."""
    return iter(range(rank, n_points, max(size, 1)))


def run_sweep(
    cfg: CaseConfig,
    mechanism: Mechanism,
    run_dir: Path,
    *,
    rank: int = 0,
    size: int = 1,
) -> List[Tuple[int, int]]:
    """Run this rank's share of the sweep; returns (point index, status) pairs."""
    points = sweep_points(cfg.sweep)
    status_path = run_dir / f"sweep_status_rank{rank:03d}.csv"
    results: List[Tuple[int, int]] = []
    with status_path.open("w", newline="") as fh:
        writer = csv.writer(fh)
        writer.writerow(["point", "status", "wall_s", *SWEEPABLE])
        for k in assigned_points(len(points), rank, size):
            conditions = point_conditions(cfg.conditions, points[k])
            point_dir = run_dir / f"point_{k:04d}"
            logger.info("Sweep point %d/%d on rank %d: %s", k + 1, len(points), rank, points[k])
            tic = time.perf_counter()
            try:
                model = PlumeModel(cfg, mechanism, out_dir=point_dir, root_only_output=False)
                status = int(model.run(conditions))
            except Exception:
                logger.error("Sweep point %d raised:\n%s", k, traceback.format_exc())
                status = EXIT_UNHANDLED
            wall = time.perf_counter() - tic
            writer.writerow([k, status, f"{wall:.3f}", *(getattr(conditions, f) for f in SWEEPABLE)])
            fh.flush()
            results.append((k, status))
    n_ok = sum(1 for _, s in results if s == int(RunStatus.SUCCESS))
    logger.info("Rank %d finished %d sweep points (%d successful)", rank, len(results), n_ok)
    return results


def _parse_args(argv: Optional[Sequence[str]] = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Run a sweep of plume cases over atmospheric conditions.")
    parser.add_argument("case_yaml", help="Path to case YAML file with a sweep block.")
    parser.add_argument("--log_level", default="INFO", help="Console log level (PLUME_LOG_LEVEL overrides).")
    return parser.parse_args(argv)


def main(argv: Optional[Sequence[str]] = None) -> int:
    args = _parse_args(argv)
    rank, size = get_mpi_rank_size()
    level = get_log_level_from_env(default=args.log_level)
    setup_logging(rank, level=level, quiet_nonroot=True)

    cfg = _load_case_config(args.case_yaml)
    mechanism = Mechanism.from_yaml(cfg.paths.mechanism)
    run_dir = _prepare_run_dir(cfg, args.case_yaml) if rank == 0 else None
    if size > 1:
        from mpi4py import MPI

        # one run directory for all ranks
        run_dir = MPI.COMM_WORLD.bcast(run_dir, root=0)
    with run_log(run_dir, level=level, name=f"sweep_rank{rank:03d}.log"):
        results = run_sweep(cfg, mechanism, run_dir, rank=rank, size=size)
    return 0 if all(s == int(RunStatus.SUCCESS) for _, s in results) else 1


if __name__ == "__main__":  # pragma: no cover
    raise SystemExit(main())
