"""
Pluggable time-step and transport-coefficient rules.

Step rules return the next dt from the current time; coefficient rules return
diffusion / advection coefficients from the time elapsed since emission.
"""

from __future__ import annotations

from typing import List, Protocol

from core.types import CaseTime, CaseTransport

from physics.constants import SECONDS_PER_DAY, SECONDS_PER_HOUR


class TimeStepRule(Protocol):
    def __call__(self, t: float, sunrise_s: float, sunset_s: float) -> float:
        ...


class FixedTimeStep:
    def __init__(self, dt: float) -> None:
        if dt <= 0.0:
            raise ValueError(f"dt must be positive, got {dt}")
        self.dt = float(dt)

    def __call__(self, t, sunrise_s, sunset_s) -> float:
        return self.dt


class SolarRefinedTimeStep:
    """Fine steps within a window around sunrise and sunset, coarse steps otherwise."""

    def __init__(self, dt: float, dt_fine: float, window_s: float) -> None:
        if not (0.0 < dt_fine <= dt):
            raise ValueError(f"need 0 < dt_fine <= dt, got dt_fine={dt_fine}, dt={dt}")
        self.dt = float(dt)
        self.dt_fine = float(dt_fine)
        self.window_s = float(window_s)

    def __call__(self, t, sunrise_s, sunset_s) -> float:
        tod = t % SECONDS_PER_DAY
        for event in (sunrise_s, sunset_s):
            if abs(tod - event) < self.window_s:
                return self.dt_fine
        return self.dt


class ConstantDiffusion:
    def __init__(self, d_x: float, d_y: float) -> None:
        self.d_x = float(d_x)
        self.d_y = float(d_y)

    def __call__(self, elapsed: float) -> tuple[float, float]:
        return self.d_x, self.d_y


class ConstantAdvection:
    def __init__(self, v_x: float, v_y: float) -> None:
        self.v_x = float(v_x)
        self.v_y = float(v_y)

    def __call__(self, elapsed: float) -> tuple[float, float]:
        return self.v_x, self.v_y


def build_step_rule(block: CaseTime) -> TimeStepRule:
    if block.step_rule == "fixed":
        return FixedTimeStep(block.dt)
    dt_fine = block.dt_fine if block.dt_fine is not None else 0.25 * block.dt
    return SolarRefinedTimeStep(block.dt, dt_fine, block.refine_window_h * SECONDS_PER_HOUR)


def build_diffusion_rule(block: CaseTransport) -> ConstantDiffusion:
    if not (block.enabled and block.diffusion):
        return ConstantDiffusion(0.0, 0.0)
    return ConstantDiffusion(block.d_h, block.d_v)


def build_advection_rule(block: CaseTransport) -> ConstantAdvection:
    if not (block.enabled and block.advection):
        return ConstantAdvection(0.0, 0.0)
    return ConstantAdvection(block.v_x, block.v_y)


def build_time_levels(t_initial: float, t_final: float, rule: TimeStepRule, sunrise_s: float, sunset_s: float) -> List[float]:
    """All time levels visited by the run, last one >= t_final."""
    levels = [float(t_initial)]
    t = float(t_initial)
    while t < t_final:
        t += rule(t, sunrise_s, sunset_s)
        levels.append(t)
    return levels
