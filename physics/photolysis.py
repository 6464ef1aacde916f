"""Photolysis frequencies interpolated from the mechanism's CSZA table."""

from __future__ import annotations

import numpy as np

from core.mechanism import Mechanism
from core.types import FloatArray


def update_photolysis_rates(out: FloatArray, mechanism: Mechanism, csza: float) -> FloatArray:
    """Fill `out` (n_photol,) for the given CSZA; all rates are zero at night."""
    out[:] = 0.0
    if csza <= 0.0 or mechanism.n_photol == 0:
        return out
    grid = mechanism.photolysis_csza
    for j in range(mechanism.n_photol):
        out[j] = np.interp(csza, grid, mechanism.photolysis_rates[j])
    return out
