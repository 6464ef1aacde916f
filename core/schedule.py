"""
Cadenced events (coagulation, snapshot saving).

An event is due when the time elapsed since it last fired reaches its cadence,
or unconditionally on the last step of the run.
"""

from __future__ import annotations

from dataclasses import dataclass


@dataclass(slots=True)
class CadencedEvent:
    name: str
    cadence: float
    last_time: float

    def __post_init__(self) -> None:
        if self.cadence <= 0.0:
            raise ValueError(f"{self.name}: cadence must be positive, got {self.cadence}")

    def elapsed(self, t: float) -> float:
        return float(t) - self.last_time

    def is_due(self, t: float, is_last_step: bool = False) -> bool:
        return self.elapsed(t) >= self.cadence or bool(is_last_step)

    def fire(self, t: float) -> float:
        """Mark the event as fired at time t; return the span since the previous firing."""
        span = self.elapsed(t)
        self.last_time = float(t)
        return span
