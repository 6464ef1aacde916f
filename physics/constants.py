"""Physical constants (SI unless noted)."""

from __future__ import annotations

import math

PI = math.pi
KB = 1.380649e-23  # Boltzmann constant [J/K]
NA = 6.02214076e23  # Avogadro constant [1/mol]
R_GAS = KB * NA  # universal gas constant [J/mol/K]
G0 = 9.80665  # gravitational acceleration [m/s^2]

MW_AIR = 28.9647e-3  # [kg/mol]
MW_H2O = 18.015e-3
MW_H2SO4 = 98.079e-3
R_AIR = R_GAS / MW_AIR  # [J/kg/K]
R_VAPOR = R_GAS / MW_H2O

RHO_ICE = 917.0  # [kg/m^3]
RHO_SULFATE = 1600.0
RHO_SOOT = 1500.0

O2_MIXING_RATIO = 0.2095
N2_MIXING_RATIO = 0.7808

SECONDS_PER_HOUR = 3600.0
SECONDS_PER_DAY = 86400.0
