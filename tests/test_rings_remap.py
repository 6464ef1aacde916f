"""
Ring cluster and ring <-> mesh mapping tests.

Tests:
1. Every cell belongs to exactly one ring; ring areas sum to the domain area
2. Inner rings are equal-area annuli (up to cell discretisation)
3. locate works on scalars and arrays, boundaries go outward
4. Half rings split each annulus into upper / lower halves
5. ring_average of a uniform field is the field value
6. apply_ring_delta moves the ring average by exactly the delta and keeps sub-ring structure
7. A grid too coarse for the rings raises EmptyRingError
"""

from __future__ import annotations

import sys
from pathlib import Path

import numpy as np
import pytest

sys.path.insert(0, str(Path(__file__).parent.parent))

from core.grid import build_grid_from_block
from core.remap import EmptyRingError, build_ring_map
from core.rings import RingCluster
from core.types import CaseGrid


def _grid(nx=200, ny=100):
    return build_grid_from_block(CaseGrid(nx=nx, ny=ny, x_min=-1000.0, x_max=1000.0, y_min=-500.0, y_max=500.0))


def test_partition_and_total_area():
    grid = _grid()
    cluster = RingCluster(5, 200.0, 75.0)
    rmap = build_ring_map(cluster, grid)
    assert rmap.n_ring == 5
    counts = np.zeros(grid.n_cells, dtype=int)
    for idx in rmap.cells:
        counts[idx] += 1
    assert np.all(counts == 1)
    assert rmap.ring_area.sum() == pytest.approx(grid.total_area)
    np.testing.assert_array_equal(cluster.ring_area, rmap.ring_area)


def test_inner_rings_are_equal_area():
    grid = _grid(nx=400, ny=200)
    a, b = 200.0, 75.0
    cluster = RingCluster(4, a, b)
    rmap = build_ring_map(cluster, grid)
    expected = np.pi * a * b
    for r in range(3):
        assert rmap.ring_area[r] == pytest.approx(expected, rel=0.05)


def test_locate_boundaries():
    cluster = RingCluster(3, 100.0, 50.0)
    assert cluster.locate(0.0, 0.0) == 0
    assert cluster.locate(99.9, 0.0) == 0
    assert cluster.locate(100.0, 0.0) == 1
    assert cluster.locate(0.0, 50.0 * np.sqrt(2.0) + 1e-6) == 2
    # outermost ring is unbounded
    assert cluster.locate(1.0e6, 1.0e6) == 2


def test_locate_arrays_keep_shape():
    cluster = RingCluster(3, 100.0, 50.0)
    # rho = 1 exactly belongs to the outer annulus
    x = np.array([[0.0, 100.0], [100.0 * np.sqrt(2.0) + 1.0e-6, 50.0]])
    y = np.zeros_like(x)
    rings = cluster.locate(x, y)
    assert rings.shape == (2, 2)
    np.testing.assert_array_equal(rings, [[0, 1], [2, 0]])

    halves = RingCluster(3, 100.0, 50.0, half_ring=True)
    assert halves.locate(0.0, 10.0) == 0
    assert halves.locate(0.0, -10.0) == 1
    np.testing.assert_array_equal(halves.locate(np.array([120.0, 120.0]), np.array([1.0, -1.0])), [2, 3])


def test_half_rings():
    grid = _grid()
    cluster = RingCluster(3, 200.0, 75.0, half_ring=True)
    assert cluster.n_ring == 6
    assert cluster.rings_at_level(1) == [2, 3]
    rmap = build_ring_map(cluster, grid)
    _, yy = grid.mesh()
    y_flat = yy.reshape(-1)
    for ring in cluster:
        ys = y_flat[rmap.cells[ring.index]]
        if ring.half == "upper":
            assert np.all(ys >= 0.0)
        else:
            assert np.all(ys < 0.0)
    level0 = rmap.cells_at_level(cluster, 0)
    assert level0.size == rmap.cells[0].size + rmap.cells[1].size


def test_ring_average_uniform_field():
    grid = _grid()
    rmap = build_ring_map(RingCluster(4, 200.0, 75.0), grid)
    fields = np.stack((np.full(grid.shape, 3.0), np.full(grid.shape, 7.0)))
    avg = rmap.ring_average(fields)
    assert avg.shape == (4, 2)
    np.testing.assert_allclose(avg[:, 0], 3.0)
    np.testing.assert_allclose(avg[:, 1], 7.0)


def test_apply_ring_delta_shifts_average_and_keeps_structure():
    grid = _grid()
    rmap = build_ring_map(RingCluster(4, 200.0, 75.0), grid)
    rng = np.random.default_rng(3)
    fields = rng.uniform(1.0, 2.0, size=(2,) + grid.shape)
    before = fields.copy()
    avg = rmap.ring_average(fields)

    old = avg[1].copy()
    new = old + np.array([0.5, -0.25])
    rmap.apply_ring_delta(fields, 1, new, old)

    after = rmap.ring_average(fields)
    np.testing.assert_allclose(after[1], new, rtol=1e-12)
    np.testing.assert_allclose(np.delete(after, 1, axis=0), np.delete(avg, 1, axis=0), rtol=1e-12)

    idx = rmap.cells[1]
    diff = fields.reshape(2, -1)[:, idx] - before.reshape(2, -1)[:, idx]
    np.testing.assert_allclose(diff[0], 0.5)
    np.testing.assert_allclose(diff[1], -0.25)


def test_coarse_grid_raises_empty_ring():
    grid = build_grid_from_block(CaseGrid(nx=4, ny=4, x_min=-1000.0, x_max=1000.0, y_min=-500.0, y_max=500.0))
    with pytest.raises(EmptyRingError):
        build_ring_map(RingCluster(10, 50.0, 20.0), grid)


def test_cluster_validation():
    with pytest.raises(ValueError):
        RingCluster(1, 100.0, 50.0)
    with pytest.raises(ValueError):
        RingCluster(3, 0.0, 50.0)
