"""Gas/liquid partitioning of sulfate (H2SO4)."""

from __future__ import annotations

import numpy as np

from core.types import FloatArray

from .constants import KB
from .thermo import psat_h2so4


def h2so4_gas_fraction(temperature, total):
    """Fraction of total sulfate [molec/cm^3] that stays in the gas phase."""
    n_sat = psat_h2so4(temperature) / (KB * np.asarray(temperature, dtype=np.float64)) * 1.0e-6
    total = np.asarray(total, dtype=np.float64)
    with np.errstate(divide="ignore", invalid="ignore"):
        frac = np.where(total > 0.0, n_sat / total, 1.0)
    return np.minimum(frac, 1.0)


def partition_sulfate(so4_gas: FloatArray, so4_liquid: FloatArray, temperature) -> None:
    """Split total sulfate between gas and liquid in place; the total is conserved."""
    total = so4_gas + so4_liquid
    frac = h2so4_gas_fraction(temperature, total)
    so4_gas[...] = frac * total
    so4_liquid[...] = total - so4_gas
