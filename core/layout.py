"""
Flat snapshot buffer layout for binned aerosol fields.

One snapshot frame holds a (n_bin, NY, NX) number distribution. Frames are
stored back to back in a single contiguous float64 buffer; element (s, b, j, i)
lives at offset ((s * n_bin + b) * NY + j) * NX + i. Indices must come from
SnapshotLayout helpers (no hand-rolled math elsewhere).
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Dict, List

import numpy as np

from .types import FloatArray

logger = logging.getLogger(__name__)

LAYOUT_VERSION = "snapshot-v1"


@dataclass(frozen=True, slots=True)
class SnapshotLayout:
    """Shape of a single frame."""

    n_bin: int
    ny: int
    nx: int

    def __post_init__(self) -> None:
        if self.n_bin <= 0 or self.ny <= 0 or self.nx <= 0:
            raise ValueError(f"SnapshotLayout needs positive sizes, got {self.frame_shape}")

    @property
    def frame_shape(self) -> tuple[int, int, int]:
        return (self.n_bin, self.ny, self.nx)

    @property
    def frame_size(self) -> int:
        return self.n_bin * self.ny * self.nx

    @property
    def strides(self) -> tuple[int, int, int, int]:
        """Element strides for (snapshot, bin, row, column)."""
        return (self.frame_size, self.ny * self.nx, self.nx, 1)

    def offset(self, s: int, b: int, j: int, i: int) -> int:
        return ((int(s) * self.n_bin + int(b)) * self.ny + int(j)) * self.nx + int(i)


class SnapshotBuffer:
    """Growable flat buffer of aerosol snapshots plus their times."""

    def __init__(self, layout: SnapshotLayout, *, capacity: int = 8) -> None:
        self.layout = layout
        self._data = np.zeros(max(int(capacity), 1) * layout.frame_size, dtype=np.float64)
        self._times: List[float] = []

    def __len__(self) -> int:
        return len(self._times)

    @property
    def times(self) -> FloatArray:
        return np.asarray(self._times, dtype=np.float64)

    def append(self, frame: FloatArray, t: float) -> None:
        frame = np.asarray(frame, dtype=np.float64)
        if frame.shape != self.layout.frame_shape:
            raise ValueError(f"snapshot frame shape {frame.shape} != {self.layout.frame_shape}")
        n = len(self._times)
        need = (n + 1) * self.layout.frame_size
        if need > self._data.size:
            grown = np.zeros(max(need, 2 * self._data.size), dtype=np.float64)
            grown[: self._data.size] = self._data
            self._data = grown
        start = n * self.layout.frame_size
        self._data[start:need] = frame.reshape(-1)
        self._times.append(float(t))

    def flat(self) -> FloatArray:
        """Contiguous copy of the filled part of the buffer."""
        return self._data[: len(self) * self.layout.frame_size].copy()

    def view(self) -> FloatArray:
        """(n_snapshot, n_bin, NY, NX) view of the filled part of the buffer."""
        n = len(self)
        return self._data[: n * self.layout.frame_size].reshape((n,) + self.layout.frame_shape)

    def value(self, s: int, b: int, j: int, i: int) -> float:
        if not (0 <= s < len(self)):
            raise IndexError(f"snapshot index {s} out of range [0, {len(self)})")
        return float(self._data[self.layout.offset(s, b, j, i)])

    def metadata(self) -> Dict[str, Any]:
        n = len(self)
        return {
            "layout_version": LAYOUT_VERSION,
            "shape": [n, *self.layout.frame_shape],
            "strides": list(self.layout.strides),
            "order": "C",
            "dtype": "float64",
        }
