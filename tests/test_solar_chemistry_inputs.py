"""
Solar geometry, photolysis, sulfate partitioning and heterogeneous rates.

Tests:
1. Equinox day length is 12 h at any latitude; polar night / day limits
2. CSZA is clipped to zero at night and peaks at noon
3. Photolysis rates are zero at night and interpolated in daylight
4. Sulfate partitioning conserves the gas + liquid total
5. Heterogeneous uptake is zero without surface and gated by RH / PSC state
"""

from __future__ import annotations

import sys
from pathlib import Path

import numpy as np
import pytest

sys.path.insert(0, str(Path(__file__).parent.parent))

from core.mechanism import N_HET_SLOTS, Mechanism
from physics.heterogeneous import AerosolSurface, compute_het_rates
from physics.photolysis import update_photolysis_rates
from physics.solar import SolarGeometry, solar_declination
from physics.sulfate import h2so4_gas_fraction, partition_sulfate
from physics.thermo import air_density, h2o_from_rh, rh_from_h2o, rh_ice_from_rh_w

HOUR = 3600.0


def _mech():
    return Mechanism.from_dict(
        {
            "variable_species": ["N2O5", "HNO3"],
            "molar_mass": {"N2O5": 0.108},
            "reactions": [
                {"reactants": {"N2O5": 1}, "products": {"HNO3": 2}, "rate": {"type": "heterogeneous", "species": "N2O5"}},
                {"reactants": {"HNO3": 1}, "products": {}, "rate": {"type": "photolysis", "name": "J_HNO3"}},
            ],
            "photolysis": {"csza": [0.0, 0.5, 1.0], "rates": {"J_HNO3": [0.0, 1.0e-6, 4.0e-6]}},
            "heterogeneous": [{"species": "N2O5", "gamma": {"ice_nat": 0.02, "trop_sulfate": 0.02, "soot": 0.005}}],
        }
    )


def test_equinox_day_length():
    # day 81 sits close to the March equinox
    assert abs(solar_declination(81)) < np.radians(1.0)
    for lat in (0.0, 30.0, 60.0):
        sun = SolarGeometry(lat, 81)
        assert sun.sunset_h - sun.sunrise_h == pytest.approx(12.0, abs=0.3)


def test_polar_limits():
    # northern summer solstice
    day = SolarGeometry(85.0, 172)
    assert (day.sunrise_h, day.sunset_h) == (0.0, 24.0)
    night = SolarGeometry(85.0, 355)
    assert night.sunrise_h == night.sunset_h == 12.0
    assert night.csza_max == 0.0


def test_csza_clipped_and_peaks_at_noon():
    sun = SolarGeometry(45.0, 172)
    assert sun.update(0.0) == 0.0
    assert sun.csza == 0.0
    noon = sun.update(12.0 * HOUR)
    assert noon == pytest.approx(sun.csza_max)
    assert sun.update(9.0 * HOUR) < noon
    assert sun.cos_sza(9.0 * HOUR) == pytest.approx(sun.cos_sza(15.0 * HOUR))
    # local solar time wraps every day
    assert sun.cos_sza(36.0 * HOUR) == pytest.approx(noon)
    assert sun.is_daytime(12.0 * HOUR) and not sun.is_daytime(0.0)


def test_photolysis_rates():
    mech = _mech()
    out = np.full(mech.n_photol, 7.0)
    update_photolysis_rates(out, mech, 0.0)
    np.testing.assert_array_equal(out, 0.0)
    update_photolysis_rates(out, mech, 0.75)
    assert out[0] == pytest.approx(2.5e-6)


def test_sulfate_partition_conserves_total():
    gas = np.array([[1.0e8, 1.0e3], [0.0, 5.0e10]])
    liq = np.array([[1.0e6, 0.0], [0.0, 1.0e9]])
    total = gas + liq
    partition_sulfate(gas, liq, 220.0)
    np.testing.assert_allclose(gas + liq, total)
    assert np.all(gas >= 0.0) and np.all(liq >= 0.0)
    # saturation at 220 K is tiny: almost all of a large load condenses
    assert liq[1, 1] > 0.99 * total[1, 1]
    assert float(h2so4_gas_fraction(220.0, 0.0)) == 1.0


def test_humidity_round_trip_and_ice_supersaturation():
    h2o = h2o_from_rh(60.0, 220.0)
    assert float(rh_from_h2o(h2o, 220.0)) == pytest.approx(60.0)
    # over ice the same vapour is more saturated
    assert float(rh_ice_from_rh_w(60.0, 220.0)) > 60.0
    assert float(air_density(25000.0, 220.0)) == pytest.approx(8.23e18, rel=1e-2)


def test_het_rates_gating():
    mech = _mech()
    out = np.zeros((mech.n_var, N_HET_SLOTS))
    air = float(air_density(25000.0, 220.0))

    compute_het_rates(out, mech, temperature=220.0, air_density=air, rh_w=60.0, surface=AerosolSurface.empty(mech.n_aero))
    assert np.all(out == 0.0)

    surface = AerosolSurface.empty(mech.n_aero)
    i_ice = mech.aerosol_index("ice_nat")
    i_sulf = mech.aerosol_index("trop_sulfate")
    surface.area[i_ice] = 1.0e-9
    surface.radius[i_ice] = 1.0e-6
    surface.area[i_sulf] = 1.0e-10
    surface.radius[i_sulf] = 5.0e-8

    # no ice water, no PSC: only sulfate is active
    compute_het_rates(out, mech, temperature=220.0, air_density=air, rh_w=60.0, surface=surface)
    k_sulf = out[0, 0]
    assert k_sulf > 0.0

    # dry air: sulfate effloresces
    compute_het_rates(out, mech, temperature=220.0, air_density=air, rh_w=20.0, surface=surface)
    assert out[0, 0] == 0.0

    surface.iwc = 1.0e-6
    compute_het_rates(out, mech, temperature=220.0, air_density=air, rh_w=60.0, surface=surface)
    assert out[0, 0] > k_sulf
    assert out[1, 0] == 0.0
