"""
Solar geometry for a fixed location and day of year.

Declination uses Spencer's (1971) Fourier series. Times are local solar time
in seconds (t = 0 at local midnight); the hour angle is zero at noon.
"""

from __future__ import annotations

import logging
import math

from .constants import SECONDS_PER_HOUR

logger = logging.getLogger(__name__)


def solar_declination(day_of_year: int) -> float:
    """Solar declination [rad]."""
    g = 2.0 * math.pi * (int(day_of_year) - 1) / 365.0
    return (
        0.006918
        - 0.399912 * math.cos(g)
        + 0.070257 * math.sin(g)
        - 0.006758 * math.cos(2.0 * g)
        + 0.000907 * math.sin(2.0 * g)
        - 0.002697 * math.cos(3.0 * g)
        + 0.001480 * math.sin(3.0 * g)
    )


class SolarGeometry:
    """Cosine of the solar zenith angle (CSZA) as a function of local solar time."""

    def __init__(self, latitude_deg: float, day_of_year: int) -> None:
        if not (-90.0 <= latitude_deg <= 90.0):
            raise ValueError(f"latitude out of range: {latitude_deg}")
        self.latitude = math.radians(float(latitude_deg))
        self.day_of_year = int(day_of_year)
        self.declination = solar_declination(self.day_of_year)
        self.csza = 0.0

        x = -math.tan(self.latitude) * math.tan(self.declination)
        if x >= 1.0:  # polar night
            half_day_h = 0.0
        elif x <= -1.0:  # polar day
            half_day_h = 12.0
        else:
            half_day_h = math.degrees(math.acos(x)) / 15.0
        self.sunrise_h = 12.0 - half_day_h
        self.sunset_h = 12.0 + half_day_h
        self.csza_max = max(self.cos_sza(12.0 * SECONDS_PER_HOUR), 0.0)

    @property
    def sunrise_s(self) -> float:
        return self.sunrise_h * SECONDS_PER_HOUR

    @property
    def sunset_s(self) -> float:
        return self.sunset_h * SECONDS_PER_HOUR

    def cos_sza(self, t: float) -> float:
        """Raw CSZA at local solar time t [s] (negative below the horizon)."""
        hour = (float(t) / SECONDS_PER_HOUR) % 24.0
        hour_angle = math.radians(15.0 * (hour - 12.0))
        return math.sin(self.latitude) * math.sin(self.declination) + math.cos(self.latitude) * math.cos(
            self.declination
        ) * math.cos(hour_angle)

    def update(self, t: float) -> float:
        """Set and return the daylight CSZA at time t (0 at night)."""
        self.csza = max(self.cos_sza(t), 0.0)
        return self.csza

    def is_daytime(self, t: float) -> bool:
        return self.cos_sza(t) > 0.0

    def describe(self) -> str:
        return (
            f"sunrise {self.sunrise_h:.2f} h, sunset {self.sunset_h:.2f} h, "
            f"max CSZA {self.csza_max:.3f}"
        )
