"""Emitted-mass bookkeeping for species families (plume excess over ambient)."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Optional

import numpy as np

from core.mechanism import Mechanism
from core.types import FloatArray

from .constants import NA


@dataclass(slots=True)
class FamilyMass:
    family: str
    grid_excess: float  # [mol/m]
    ring_excess: Optional[float] = None  # [mol/m]
    molar_mass: Optional[float] = None  # [kg/mol]

    @property
    def ring_fraction(self) -> Optional[float]:
        if self.ring_excess is None or self.grid_excess == 0.0:
            return None
        return self.ring_excess / self.grid_excess

    @property
    def grid_kg_per_km(self) -> Optional[float]:
        if self.molar_mass is None:
            return None
        return self.grid_excess * self.molar_mass * 1.0e3


def family_mass(
    mechanism: Mechanism,
    family: str,
    species: FloatArray,
    ambient_var: FloatArray,
    cell_areas: FloatArray,
    ring_values: Optional[FloatArray] = None,
    ring_area: Optional[FloatArray] = None,
) -> FamilyMass:
    """Family excess over ambient summed over the mesh (and over the rings when given)."""
    excess = mechanism.family_total(family, species) - mechanism.family_total(family, ambient_var)
    grid_total = float(np.sum(excess * cell_areas)) * 1.0e6 / NA
    ring_total = None
    if ring_values is not None and ring_area is not None:
        ring_excess = mechanism.family_total(family, ring_values.T) - mechanism.family_total(family, ambient_var)
        ring_total = float(np.sum(ring_excess * ring_area)) * 1.0e6 / NA
    return FamilyMass(family, grid_total, ring_total, mechanism.families[family].molar_mass)
