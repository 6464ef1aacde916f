"""
Output helpers:
- RunOutput: everything the driver hands over at the end of a run.
- PlumeOutputWriter: writes ring/ambient time series and aerosol snapshots
  (npz) plus a mapping.json describing their layout; returns an int status.
- ScalarsWriter: per-step scalar diagnostics to CSV.
"""

from __future__ import annotations

import csv
import json
import logging
import math
import os
import sys
from dataclasses import dataclass, field
from pathlib import Path
from typing import TYPE_CHECKING, Any, Dict, List, Optional

import numpy as np

from core.layout import SnapshotBuffer
from core.logging_utils import is_root_rank
from core.types import FloatArray

if TYPE_CHECKING:  # pragma: no cover - type checking only
    from solvers.timestepper import StepDiagnostics

logger = logging.getLogger(__name__)

SAVE_SUCCESS = 1
SAVE_FAILURE = -1

DEFAULT_SCALAR_FIELDS = [
    "step",
    "t_old",
    "t_new",
    "dt",
    "cos_sza",
    "d_x",
    "d_y",
    "species_min",
    "n_chemistry_calls",
    "time_transport",
    "time_chemistry",
    "time_microphysics",
]


@dataclass(slots=True)
class RunOutput:
    """Run products handed from the driver to the writer."""

    species: List[str]
    times: FloatArray  # (n_level,) [s]
    ambient: FloatArray  # (n_level, n_var) [molec/cm^3]
    cos_sza: FloatArray  # (n_step,)
    x: FloatArray
    y: FloatArray
    ring_series: Optional[FloatArray] = None  # (n_level, n_ring, n_var)
    ring_area: Optional[FloatArray] = None  # (n_ring,) [m^2]
    liquid: Optional[SnapshotBuffer] = None
    solid: Optional[SnapshotBuffer] = None
    liquid_bins: Optional[FloatArray] = None  # bin centres [m]
    solid_bins: Optional[FloatArray] = None
    attributes: Dict[str, Any] = field(default_factory=dict)


def _atomic_write_json(path: Path, payload: dict) -> None:
    tmp = path.with_name(path.name + ".tmp")
    with open(tmp, "w", encoding="utf-8") as f:
        json.dump(payload, f, indent=2)
    os.replace(tmp, path)


def _atomic_write_npz(path: Path, **arrays: Any) -> None:
    tmp = path.with_name(path.name + ".tmp")
    with open(tmp, "wb") as f:
        np.savez(f, **arrays)
    os.replace(tmp, path)


def build_mapping(output: RunOutput) -> dict:
    """Describe the written arrays so post-processing can unpack them without this package."""
    arrays = [
        {"file": "timeseries.npz", "name": "times", "shape": [int(output.times.size)], "units": "s"},
        {"file": "timeseries.npz", "name": "ambient", "shape": list(output.ambient.shape), "units": "molec/cm^3"},
        {"file": "timeseries.npz", "name": "cos_sza", "shape": [int(output.cos_sza.size)], "units": "-"},
    ]
    if output.ring_series is not None:
        arrays.append(
            {"file": "timeseries.npz", "name": "ring_species", "shape": list(output.ring_series.shape), "units": "molec/cm^3"}
        )
    snapshots = {}
    for name, buf in (("liquid", output.liquid), ("solid", output.solid)):
        if buf is not None:
            snapshots[name] = {"file": f"{name}_aerosol.npz", **buf.metadata()}
    return {
        "version": 1,
        "endianness": sys.byteorder,
        "dtype": "float64",
        "ordering": "C",
        "species": list(output.species),
        "arrays": arrays,
        "snapshots": snapshots,
        "attributes": {k: v for k, v in output.attributes.items() if _json_scalar(v)},
    }


def _json_scalar(value: Any) -> bool:
    if isinstance(value, bool) or value is None or isinstance(value, str):
        return True
    if isinstance(value, (int, float)):
        return math.isfinite(float(value))
    return False


class PlumeOutputWriter:
    def __init__(
        self,
        out_dir: Path | str,
        *,
        save_output: bool = True,
        save_liquid: bool = True,
        save_solid: bool = True,
        root_only: bool = True,
    ) -> None:
        self.out_dir = Path(out_dir)
        self.root_only = bool(root_only)
        self.save_output = bool(save_output)
        self.save_liquid = bool(save_liquid)
        self.save_solid = bool(save_solid)

    def write_run(self, output: RunOutput) -> int:
        """Write all run products; SAVE_SUCCESS or SAVE_FAILURE (errors are logged, not raised)."""
        if self.root_only and not is_root_rank():
            return SAVE_SUCCESS
        try:
            self.out_dir.mkdir(parents=True, exist_ok=True)
            if self.save_output:
                series = {
                    "times": np.asarray(output.times, dtype=np.float64),
                    "ambient": np.asarray(output.ambient, dtype=np.float64),
                    "cos_sza": np.asarray(output.cos_sza, dtype=np.float64),
                    "x": np.asarray(output.x, dtype=np.float64),
                    "y": np.asarray(output.y, dtype=np.float64),
                }
                if output.ring_series is not None:
                    series["ring_species"] = np.asarray(output.ring_series, dtype=np.float64)
                    series["ring_area"] = np.asarray(output.ring_area, dtype=np.float64)
                _atomic_write_npz(self.out_dir / "timeseries.npz", **series)
            if self.save_liquid and output.liquid is not None:
                self._write_snapshots("liquid", output.liquid, output.liquid_bins, output)
            if self.save_solid and output.solid is not None:
                self._write_snapshots("solid", output.solid, output.solid_bins, output)
            _atomic_write_json(self.out_dir / "mapping.json", build_mapping(output))
        except (OSError, ValueError, TypeError) as exc:
            logger.error("Failed to write run output to %s: %s", self.out_dir, exc)
            return SAVE_FAILURE
        logger.info("Wrote run output to %s", self.out_dir)
        return SAVE_SUCCESS

    def _write_snapshots(self, name: str, buf: SnapshotBuffer, bins: Optional[FloatArray], output: RunOutput) -> None:
        _atomic_write_npz(
            self.out_dir / f"{name}_aerosol.npz",
            data=buf.flat(),
            shape=np.asarray(buf.metadata()["shape"], dtype=np.int64),
            times=buf.times,
            bin_centers=np.asarray(bins if bins is not None else [], dtype=np.float64),
            x=np.asarray(output.x, dtype=np.float64),
            y=np.asarray(output.y, dtype=np.float64),
        )
        logger.debug("Wrote %d %s aerosol snapshots", len(buf), name)


def _as_float(value) -> float:
    try:
        return float(value)
    except (TypeError, ValueError):
        return math.nan


class ScalarsWriter:
    """Per-step scalar CSV (one row per StepDiagnostics)."""

    def __init__(
        self,
        out_dir: Path | str,
        *,
        fields: Optional[List[str]] = None,
        enabled: bool = True,
        root_only: bool = True,
    ) -> None:
        self.fields = list(fields or DEFAULT_SCALAR_FIELDS)
        self.enabled = bool(enabled) and (not root_only or is_root_rank())
        self.out_path = Path(out_dir) / "scalars.csv"
        self._fh = None
        self._writer = None
        if self.enabled:
            self._open()

    def _open(self) -> None:
        self.out_path.parent.mkdir(parents=True, exist_ok=True)
        self._fh = self.out_path.open("w", newline="")
        self._writer = csv.writer(self._fh)
        self._writer.writerow(self.fields)
        self._fh.flush()

    def write(self, step_id: int, diag: "StepDiagnostics") -> None:
        if not self.enabled or self._writer is None:
            return
        row = []
        for name in self.fields:
            if name == "step":
                row.append(step_id)
            elif hasattr(diag, name):
                row.append(_as_float(getattr(diag, name)))
            else:
                row.append(_as_float(diag.extra.get(name, math.nan)))
        self._writer.writerow(row)
        self._fh.flush()

    def close(self) -> None:
        if self._fh is not None:
            self._fh.close()
            self._fh = None
            self._writer = None
