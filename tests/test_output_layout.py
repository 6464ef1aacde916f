"""
Snapshot layout and run output writers.

Tests:
1. SnapshotLayout offsets agree with the C-ordered 4-D view
2. SnapshotBuffer grows past its initial capacity
3. PlumeOutputWriter writes npz products and a mapping.json that describes them
4. Unwritable output reports SAVE_FAILURE instead of raising
5. ScalarsWriter writes one CSV row per step
"""

from __future__ import annotations

import csv
import json
import sys
from pathlib import Path

import numpy as np
import pytest

sys.path.insert(0, str(Path(__file__).parent.parent))

from core.layout import SnapshotBuffer, SnapshotLayout
from output.writers import SAVE_FAILURE, SAVE_SUCCESS, PlumeOutputWriter, RunOutput, ScalarsWriter
from solvers.timestepper import StepDiagnostics


def _buffer(n=5, layout=SnapshotLayout(3, 4, 5)):
    buf = SnapshotBuffer(layout, capacity=2)
    rng = np.random.default_rng(0)
    frames = [rng.uniform(size=layout.frame_shape) for _ in range(n)]
    for s, frame in enumerate(frames):
        buf.append(frame, 100.0 * s)
    return buf, frames


def test_layout_offsets_match_view():
    buf, frames = _buffer()
    layout = buf.layout
    assert len(buf) == 5
    view = buf.view()
    assert view.shape == (5, 3, 4, 5)
    for s, b, j, i in ((0, 0, 0, 0), (2, 1, 3, 4), (4, 2, 0, 1)):
        assert buf.value(s, b, j, i) == view[s, b, j, i] == frames[s][b, j, i]
        assert layout.offset(s, b, j, i) == np.ravel_multi_index((s, b, j, i), view.shape)
    np.testing.assert_array_equal(buf.times, [0.0, 100.0, 200.0, 300.0, 400.0])
    assert buf.metadata()["shape"] == [5, 3, 4, 5]
    assert buf.metadata()["strides"] == [60, 20, 5, 1]


def test_buffer_rejects_bad_frames():
    buf, _ = _buffer(n=1)
    with pytest.raises(ValueError):
        buf.append(np.zeros((3, 4, 4)), 0.0)
    with pytest.raises(IndexError):
        buf.value(3, 0, 0, 0)
    with pytest.raises(ValueError):
        SnapshotLayout(0, 1, 1)


def _output(with_rings=True):
    buf, _ = _buffer(n=2)
    return RunOutput(
        species=["A", "B"],
        times=np.array([0.0, 600.0, 1200.0]),
        ambient=np.ones((3, 2)),
        cos_sza=np.array([0.1, 0.2]),
        x=np.linspace(-2.0, 2.0, 5),
        y=np.linspace(-1.5, 1.5, 4),
        ring_series=np.ones((3, 4, 2)) if with_rings else None,
        ring_area=np.ones(4) if with_rings else None,
        liquid=buf,
        solid=None,
        liquid_bins=np.array([1.0e-9, 2.0e-9, 4.0e-9]),
        attributes={"case_id": "unit", "temperature_K": 220.0, "bad": float("nan")},
    )


def test_writer_products_and_mapping(tmp_path):
    out_dir = tmp_path / "run"
    writer = PlumeOutputWriter(out_dir)
    assert writer.write_run(_output()) == SAVE_SUCCESS

    series = np.load(out_dir / "timeseries.npz")
    assert series["ring_species"].shape == (3, 4, 2)
    np.testing.assert_array_equal(series["times"], [0.0, 600.0, 1200.0])

    liquid = np.load(out_dir / "liquid_aerosol.npz")
    shape = tuple(liquid["shape"])
    assert shape == (2, 3, 4, 5)
    assert liquid["data"].reshape(shape).shape == shape
    assert not (out_dir / "solid_aerosol.npz").exists()

    mapping = json.loads((out_dir / "mapping.json").read_text())
    assert mapping["species"] == ["A", "B"]
    assert {a["name"] for a in mapping["arrays"]} == {"times", "ambient", "cos_sza", "ring_species"}
    assert mapping["snapshots"]["liquid"]["shape"] == [2, 3, 4, 5]
    assert "bad" not in mapping["attributes"]
    assert not list(out_dir.glob("*.tmp"))


def test_writer_failure_is_reported(tmp_path):
    blocker = tmp_path / "not_a_dir"
    blocker.write_text("x")
    writer = PlumeOutputWriter(blocker / "run")
    assert writer.write_run(_output(with_rings=False)) == SAVE_FAILURE


def test_scalars_writer(tmp_path):
    writer = ScalarsWriter(tmp_path)
    for k in range(3):
        diag = StepDiagnostics(
            t_old=600.0 * k, t_new=600.0 * (k + 1), dt=600.0, cos_sza=0.5, d_x=15.0, d_y=0.15, v_x=0.0, v_y=0.0
        )
        writer.write(k, diag)
    writer.close()
    with (tmp_path / "scalars.csv").open() as fh:
        rows = list(csv.reader(fh))
    assert rows[0][:3] == ["step", "t_old", "t_new"]
    assert len(rows) == 4
    assert float(rows[3][2]) == pytest.approx(1800.0)
