"""
Binned aerosol microphysics.

Tests:
1. Lognormal bin numbers sum to the total when the bins cover the distribution
2. Coagulation conserves volume, reduces number and is a no-op for NONE
3. UNIFORM coagulation yields the same distribution in every cell
4. Symmetric coagulation matches the full solve on a symmetric field
5. Settling speed grows with radius
6. Ice growth conserves number and shifts the distribution
"""

from __future__ import annotations

import sys
from pathlib import Path

import numpy as np
import pytest

sys.path.insert(0, str(Path(__file__).parent.parent))

from core.types import MicrophysicsRegime
from physics.aerosol import AerosolPopulation, log_bin_edges, lognormal_bin_numbers
from physics.coagulation import CoagulationOperator, brownian_kernel, coagulate, size_split_fractions
from physics.constants import RHO_ICE, RHO_SULFATE
from physics.growth import grow_ice, transfer_matrix
from physics.settling import settling_velocity

T, P = 220.0, 25000.0


def _population(shape=(4, 6), number=1.0e4):
    edges = log_bin_edges(1.0e-9, 1.0e-6, 16)
    numbers = lognormal_bin_numbers(edges, number, 1.0e-8, 1.6)
    return AerosolPopulation.uniform(edges, numbers, shape, density=RHO_SULFATE)


def _operator(pop, dens=RHO_SULFATE):
    return CoagulationOperator(pop.volumes, brownian_kernel(pop.centers, T, P, dens))


def test_lognormal_totals():
    edges = log_bin_edges(1.0e-10, 1.0e-4, 60)
    numbers = lognormal_bin_numbers(edges, 250.0, 5.0e-8, 1.5)
    assert numbers.sum() == pytest.approx(250.0, rel=1e-8)
    assert np.all(numbers >= 0.0)
    np.testing.assert_array_equal(lognormal_bin_numbers(edges, 0.0, 5.0e-8, 1.5), np.zeros(60))


def test_population_moments():
    pop = _population()
    assert pop.number().shape == (4, 6)
    np.testing.assert_allclose(pop.number(), pop.pdf[:, 0, 0].sum())
    n, area, r_eff = pop.aggregate()
    assert n == pytest.approx(float(pop.pdf[:, 0, 0].sum()))
    assert area == pytest.approx(float(pop.surface_area()[0, 0]))
    assert pop.edges[0] < r_eff < pop.edges[-1]


def test_size_split_fractions_sum_to_one():
    edges = log_bin_edges(1.0e-9, 1.0e-6, 12)
    v = 4.0 / 3.0 * np.pi * np.sqrt(edges[:-1] * edges[1:]) ** 3
    f = size_split_fractions(v)
    np.testing.assert_allclose(f.sum(axis=2), 1.0, rtol=1e-12)
    assert np.all((f >= 0.0) & (f <= 1.0))


def test_kernel_is_symmetric_and_positive():
    pop = _population()
    k = brownian_kernel(pop.centers, T, P, RHO_SULFATE)
    np.testing.assert_allclose(k, k.T, rtol=1e-12)
    assert np.all(k > 0.0)


def test_coagulation_conserves_volume_and_reduces_number():
    pop = _population(number=1.0e6)
    op = _operator(pop)
    v0 = pop.volume().copy()
    n0 = pop.number().copy()
    coagulate(pop.pdf, op, 3600.0, regime=MicrophysicsRegime.FULL)
    np.testing.assert_allclose(pop.volume(), v0, rtol=1e-10)
    assert np.all(pop.number() < n0)
    assert np.all(pop.pdf >= 0.0)


def test_coagulation_none_regime_is_noop():
    pop = _population(number=1.0e6)
    ref = pop.pdf.copy()
    coagulate(pop.pdf, _operator(pop), 3600.0, regime=MicrophysicsRegime.NONE)
    np.testing.assert_array_equal(pop.pdf, ref)


def test_uniform_regime_matches_single_cell():
    pop = _population(number=1.0e6)
    single = pop.pdf[:, :1, :1].copy()
    op = _operator(pop)
    coagulate(pop.pdf, op, 1800.0, regime=MicrophysicsRegime.UNIFORM)
    coagulate(single, op, 1800.0, regime=MicrophysicsRegime.FULL)
    np.testing.assert_allclose(pop.pdf, np.broadcast_to(single, pop.pdf.shape), rtol=1e-12)


@pytest.mark.parametrize("symmetry", [1, 2])
def test_symmetric_solve_matches_full_solve(symmetry):
    edges = log_bin_edges(1.0e-9, 1.0e-6, 10)
    ny, nx = 6, 8
    x = np.arange(nx) - (nx - 1) / 2.0
    y = np.arange(ny) - (ny - 1) / 2.0
    weight = np.exp(-(x[None, :] ** 2) / 8.0 - (y[:, None] ** 2) / 4.0)
    base = lognormal_bin_numbers(edges, 1.0e6, 1.0e-8, 1.6)
    pdf = base[:, None, None] * weight[None, :, :]
    op = CoagulationOperator(
        4.0 / 3.0 * np.pi * np.sqrt(edges[:-1] * edges[1:]) ** 3,
        brownian_kernel(np.sqrt(edges[:-1] * edges[1:]), T, P, RHO_SULFATE),
    )
    full = pdf.copy()
    half = pdf.copy()
    coagulate(full, op, 1800.0, regime=MicrophysicsRegime.FULL, symmetry=0)
    coagulate(half, op, 1800.0, regime=MicrophysicsRegime.FULL, symmetry=symmetry)
    np.testing.assert_allclose(half, full, rtol=1e-12)


def test_settling_velocity_monotone():
    r = np.geomspace(1.0e-8, 1.0e-4, 20)
    v = settling_velocity(r, T, P, RHO_ICE)
    assert np.all(np.diff(v) > 0.0)
    # 10 um ice falls at a few cm/s
    assert 1.0e-3 < float(settling_velocity(1.0e-5, T, P)) < 1.0
    with pytest.raises(ValueError):
        settling_velocity(np.array([0.0]), T, P)


def test_transfer_matrix_columns_sum_to_one():
    centers = np.sqrt(log_bin_edges(1.0e-8, 1.0e-4, 20)[:-1] * log_bin_edges(1.0e-8, 1.0e-4, 20)[1:])
    t = transfer_matrix(centers, centers * 1.7)
    np.testing.assert_allclose(t.sum(axis=0), 1.0)
    assert np.all(t >= 0.0)


def test_ice_growth_conserves_number_and_grows():
    edges = log_bin_edges(1.0e-8, 1.0e-4, 30)
    pop = AerosolPopulation.uniform(edges, lognormal_bin_numbers(edges, 100.0, 1.0e-6, 1.5), (2, 3), density=RHO_ICE)
    n0 = pop.number().copy()
    r0 = pop.effective_radius().copy()
    grow_ice(pop.pdf, pop.centers, 600.0, temperature=T, pressure=P, rh_ice=120.0)
    np.testing.assert_allclose(pop.number(), n0, rtol=1e-12)
    assert np.all(pop.effective_radius() > r0)

    before = pop.pdf.copy()
    grow_ice(pop.pdf, pop.centers, 600.0, temperature=T, pressure=P, rh_ice=100.0)
    np.testing.assert_array_equal(pop.pdf, before)
