"""Background meteorology over the cross-section."""

from __future__ import annotations

import logging
from typing import Protocol

import numpy as np

from core.types import FloatArray, SpatialGrid

from .constants import G0, MW_AIR, R_GAS

logger = logging.getLogger(__name__)


class MeteorologyProvider(Protocol):
    def temperature(self, t: float) -> FloatArray:
        """(NY, NX) temperature [K]."""

    def pressure(self, t: float) -> FloatArray:
        """(NY,) pressure [Pa] per row."""


class LapseRateMeteorology:
    """Steady atmosphere: linear temperature lapse and hydrostatic pressure about the flight level."""

    def __init__(self, grid: SpatialGrid, temperature_K: float, pressure_Pa: float, lapse_rate: float = -3.0e-3) -> None:
        y = np.asarray(grid.y, dtype=np.float64)
        t_row = temperature_K + lapse_rate * y
        if np.any(t_row <= 0.0):
            raise ValueError("lapse rate produces non-positive temperatures over the grid")
        t_mean = 0.5 * (temperature_K + t_row)
        self._temperature = np.repeat(t_row[:, None], grid.nx, axis=1)
        self._pressure = pressure_Pa * np.exp(-G0 * MW_AIR * y / (R_GAS * t_mean))
        self._temperature.setflags(write=False)
        self._pressure.setflags(write=False)
        logger.debug(
            "Meteorology: T in [%.2f, %.2f] K, P in [%.1f, %.1f] Pa",
            float(t_row.min()),
            float(t_row.max()),
            float(self._pressure.min()),
            float(self._pressure.max()),
        )

    def temperature(self, t: float) -> FloatArray:
        return self._temperature

    def pressure(self, t: float) -> FloatArray:
        return self._pressure
