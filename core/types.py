"""
Strongly typed containers for case configuration, grid, plume state and run status.

Global shape and unit conventions:
- NX, NY: mesh columns / rows; every 2-D field has shape (NY, NX) (rows are y, columns are x)
- n_var / n_fix: variable / fixed species counts of the loaded mechanism
- species.shape == (n_var, NY, NX); fixed.shape == (n_fix,)
- concentrations [molec/cm^3]; aerosol number densities [#/cm^3]; radii [m]
- surface area densities [m^2/cm^3]; cell areas [m^2]; times [s] of local solar time
- y increases upward; the plume axis sits at (x, y) = (0, 0)
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum, IntEnum
from pathlib import Path
from typing import TYPE_CHECKING, Dict, List, Mapping, Optional

import numpy as np
from numpy.typing import NDArray

if TYPE_CHECKING:  # pragma: no cover - type checking only
    from physics.aerosol import AerosolPopulation

FloatArray = NDArray[np.float64]


class RunStatus(IntEnum):
    """Terminal status of one plume run (literal values are relied upon by log tooling)."""

    SUCCESS = 1
    CHEMISTRY_FAILURE = -1
    SAVE_FAILURE = -2


class RunPhase(Enum):
    INIT = "init"
    RUNNING = "running"
    COMPLETED = "completed"
    CHEMISTRY_FAILED = "chemistry_failed"
    SAVE_FAILED = "save_failed"


class MicrophysicsRegime(IntEnum):
    """Microphysics treatment of one aerosol phase, fixed at initialization."""

    NONE = 0  # no particles at all
    UNIFORM = 1  # background particles only: every cell evolves identically
    FULL = 2  # emitted particles: per-cell microphysics and transport


@dataclass(slots=True)
class CaseMeta:
    """Metadata for the case block."""

    id: str
    title: str = ""
    version: int = 1
    notes: Optional[str] = None


@dataclass(slots=True)
class CasePaths:
    """Case-level paths (resolved by the loader).

    Attributes
    ----------
    output_root : Path
        Root directory under which run directories are created.
    mechanism : Path
        YAML artifact describing the chemical mechanism.
    case_dir : Path, optional
        Run directory, filled by the driver once it is created.
    """

    output_root: Path
    mechanism: Path
    case_dir: Optional[Path] = None

    def __post_init__(self) -> None:
        for name in ("output_root", "mechanism"):
            v = getattr(self, name)
            if not isinstance(v, Path):
                raise TypeError(f"{name} must be pathlib.Path (loader must convert str -> Path).")


@dataclass(slots=True)
class CaseConditions:
    """Initial atmospheric conditions at the flight level."""

    temperature_K: float
    pressure_Pa: float
    rh_w: float  # relative humidity w.r.t. liquid water [%]
    longitude_deg: float = 0.0
    latitude_deg: float = 0.0
    day_gmt: int = 81
    emission_time_h: float = 8.0  # local solar time of emission [h]

    def __post_init__(self) -> None:
        if not (self.temperature_K > 0.0):
            raise ValueError(f"temperature_K must be positive, got {self.temperature_K}")
        if not (self.pressure_Pa > 0.0):
            raise ValueError(f"pressure_Pa must be positive, got {self.pressure_Pa}")
        if self.rh_w < 0.0:
            raise ValueError(f"rh_w must be non-negative, got {self.rh_w}")
        if not (-90.0 <= self.latitude_deg <= 90.0):
            raise ValueError(f"latitude_deg out of range: {self.latitude_deg}")


@dataclass(slots=True)
class CaseGrid:
    """Mesh extent and resolution (geometry block)."""

    nx: int
    ny: int
    x_min: float = -1.0e3
    x_max: float = 1.0e3
    y_min: float = -5.0e2
    y_max: float = 5.0e2

    def __post_init__(self) -> None:
        if self.nx <= 0 or self.ny <= 0:
            raise ValueError(f"grid needs nx>0 and ny>0, got nx={self.nx}, ny={self.ny}")
        if not (self.x_max > self.x_min and self.y_max > self.y_min):
            raise ValueError("grid extent must satisfy x_max > x_min and y_max > y_min.")


@dataclass(slots=True)
class CaseTime:
    """Time control settings."""

    duration_h: float
    step_rule: str = "fixed"  # "fixed" | "solar_refined"
    dt: float = 600.0
    dt_fine: Optional[float] = None
    refine_window_h: float = 0.5

    def __post_init__(self) -> None:
        if self.duration_h <= 0.0:
            raise ValueError(f"duration_h must be positive, got {self.duration_h}")
        if self.dt <= 0.0:
            raise ValueError(f"dt must be positive, got {self.dt}")
        if self.step_rule not in ("fixed", "solar_refined"):
            raise ValueError(f"Unknown step_rule {self.step_rule!r}")


@dataclass(slots=True)
class CaseTransport:
    """Transport switches and coefficients."""

    enabled: bool = True
    diffusion: bool = True
    advection: bool = False
    d_h: float = 15.0  # horizontal diffusion coefficient [m^2/s]
    d_v: float = 0.15  # vertical diffusion coefficient [m^2/s]
    v_x: float = 0.0  # domain-wide advection velocity [m/s]
    v_y: float = 0.0
    fill_negative: bool = True
    fill_value: float = 0.0
    aerosol_floor: float = 1.0e-50


@dataclass(slots=True)
class CaseChemistry:
    """Chemistry switches and integrator settings."""

    enabled: bool = True
    heterogeneous: bool = False
    rings: bool = True
    n_ring: int = 10
    rtol: float = 1.0e-3
    atol: float = 1.0
    method: str = "BDF"
    psc_state: int = 0

    def __post_init__(self) -> None:
        if self.rings and self.n_ring < 2:
            raise ValueError(f"ring chemistry needs n_ring >= 2, got {self.n_ring}")
        if self.rtol <= 0.0 or self.atol <= 0.0:
            raise ValueError("chemistry rtol/atol must be positive.")


@dataclass(slots=True)
class CaseBins:
    """Log-spaced radius bins of one aerosol phase."""

    n_bin: int
    r_min: float
    r_max: float

    def __post_init__(self) -> None:
        if self.n_bin < 2:
            raise ValueError(f"n_bin must be >= 2, got {self.n_bin}")
        if not (0.0 < self.r_min < self.r_max):
            raise ValueError("bins need 0 < r_min < r_max.")


@dataclass(slots=True)
class CaseAerosol:
    """Aerosol microphysics switches and cadences."""

    coagulation: bool = True
    liquid_coag_dt: float = 600.0
    solid_coag_dt: float = 600.0
    settling: bool = True
    ice_growth: bool = False
    liquid_bins: CaseBins = field(default_factory=lambda: CaseBins(n_bin=24, r_min=1.0e-9, r_max=1.0e-6))
    solid_bins: CaseBins = field(default_factory=lambda: CaseBins(n_bin=24, r_min=1.0e-8, r_max=1.0e-4))


@dataclass(slots=True)
class CaseEarlyMicrophysics:
    """Parameters of the parametric early-plume (vortex regime) microphysics."""

    plume_area_m2: float = 1.0e4
    ice_activation: float = 1.0  # ice crystals per emitted soot particle
    ice_radius_m: float = 1.0e-6
    ice_sigma: float = 1.6
    sulfate_radius_m: float = 5.0e-9
    sulfate_sigma: float = 1.5


@dataclass(slots=True)
class CaseEmissions:
    """Aircraft, engine and fuel description (emission indices in g/kg fuel)."""

    enabled: bool = True
    aircraft: str = "B747-800"
    engine: str = ""
    fuel: str = "C12H24"
    n_engines: int = 4
    fuel_flow: float = 2.8  # total fuel flow [kg/s]
    v_flight: float = 250.0  # [m/s]
    vortex_delta_z1: float = 150.0  # wake vortex maximum descent [m]
    ei: Mapping[str, float] = field(default_factory=dict)
    so2_to_so4: float = 0.02
    soot_ei: float = 0.04  # [g/kg]
    soot_radius: float = 2.0e-8  # [m]
    early: CaseEarlyMicrophysics = field(default_factory=CaseEarlyMicrophysics)

    def __post_init__(self) -> None:
        if self.n_engines <= 0:
            raise ValueError(f"n_engines must be positive, got {self.n_engines}")
        if self.fuel_flow < 0.0 or self.v_flight <= 0.0:
            raise ValueError("fuel_flow must be >= 0 and v_flight > 0.")
        if self.vortex_delta_z1 <= 0.0:
            raise ValueError("vortex_delta_z1 must be positive.")


@dataclass(slots=True)
class CaseLognormal:
    """Lognormal number distribution (number [#/cm^3], median radius [m], geometric std)."""

    number: float = 0.0
    radius: float = 1.0e-7
    sigma: float = 1.5


@dataclass(slots=True)
class CaseBackground:
    """Background (ambient) composition."""

    mixing_ratios: Mapping[str, float] = field(default_factory=dict)  # [mol/mol]
    liquid_aerosol: CaseLognormal = field(default_factory=CaseLognormal)
    solid_aerosol: CaseLognormal = field(default_factory=CaseLognormal)
    lapse_rate: float = -3.0e-3  # [K/m]


@dataclass(slots=True)
class CaseOutput:
    """Output controls."""

    save_output: bool = True
    save_liquid: bool = True
    save_solid: bool = True
    liquid_save_dt: float = 3600.0
    solid_save_dt: float = 3600.0
    write_scalars: bool = True


@dataclass(slots=True)
class CaseDiagnostics:
    """Optional run-time diagnostics."""

    mass_check: bool = False
    families: List[str] = field(default_factory=list)
    timing: bool = True


@dataclass(slots=True)
class CaseConfig:
    """Top-level case configuration container."""

    case: CaseMeta
    paths: CasePaths
    conditions: CaseConditions
    grid: CaseGrid
    time: CaseTime
    transport: CaseTransport = field(default_factory=CaseTransport)
    chemistry: CaseChemistry = field(default_factory=CaseChemistry)
    aerosol: CaseAerosol = field(default_factory=CaseAerosol)
    emissions: CaseEmissions = field(default_factory=CaseEmissions)
    background: CaseBackground = field(default_factory=CaseBackground)
    output: CaseOutput = field(default_factory=CaseOutput)
    diagnostics: CaseDiagnostics = field(default_factory=CaseDiagnostics)
    sweep: Dict[str, List[float]] = field(default_factory=dict)

    def __post_init__(self) -> None:
        for name, typ in (
            ("conditions", CaseConditions),
            ("grid", CaseGrid),
            ("time", CaseTime),
            ("transport", CaseTransport),
            ("chemistry", CaseChemistry),
            ("aerosol", CaseAerosol),
            ("emissions", CaseEmissions),
            ("background", CaseBackground),
            ("output", CaseOutput),
            ("diagnostics", CaseDiagnostics),
        ):
            if not isinstance(getattr(self, name), typ):
                raise TypeError(f"{name} must be {typ.__name__} (loader must build dataclass).")


@dataclass(slots=True)
class SpatialGrid:
    """Uniform 2-D mesh of the plume cross-section (no generation logic).

    Fields
    ------
    nx, ny : int
        Cell counts along x (horizontal) and y (vertical).
    x : (nx,) float64
        Cell-centre abscissae [m].
    y : (ny,) float64
        Cell-centre ordinates [m].
    dx, dy : float
        Cell widths [m].
    areas : (ny, nx) float64
        Cell areas [m^2].
    """

    nx: int
    ny: int
    x: FloatArray
    y: FloatArray
    dx: float
    dy: float
    areas: FloatArray

    def __post_init__(self) -> None:
        if self.x.shape != (self.nx,):
            raise ValueError(f"x shape {self.x.shape} != ({self.nx},)")
        if self.y.shape != (self.ny,):
            raise ValueError(f"y shape {self.y.shape} != ({self.ny},)")
        if self.areas.shape != (self.ny, self.nx):
            raise ValueError(f"areas shape {self.areas.shape} != ({self.ny}, {self.nx})")
        if self.dx <= 0.0 or self.dy <= 0.0:
            raise ValueError("dx and dy must be positive.")
        if np.any(self.areas <= 0.0):
            raise ValueError("areas must be positive for all cells.")
        if self.nx > 1 and not np.all(np.diff(self.x) > 0.0):
            raise ValueError("x must be strictly increasing.")
        if self.ny > 1 and not np.all(np.diff(self.y) > 0.0):
            raise ValueError("y must be strictly increasing.")
        for arr in (self.x, self.y, self.areas):
            arr.setflags(write=False)

    @property
    def shape(self) -> tuple[int, int]:
        return (self.ny, self.nx)

    @property
    def n_cells(self) -> int:
        return self.nx * self.ny

    @property
    def total_area(self) -> float:
        return float(self.dx * self.nx * self.dy * self.ny)

    def mesh(self) -> tuple[FloatArray, FloatArray]:
        """Return (X, Y) cell-centre coordinates with shape (ny, nx)."""
        return np.meshgrid(self.x, self.y, indexing="xy")


@dataclass(slots=True)
class PlumeState:
    """Plume state on the mesh (all float64 arrays).

    species     : (n_var, NY, NX) variable species [molec/cm^3]
    fixed       : (n_fix,) fixed species [molec/cm^3]
    so4_liquid  : (NY, NX) sulfate held in the liquid phase [molec/cm^3]
    soot_density, soot_radius, soot_area : (NY, NX) [#/cm^3], [m], [m^2/cm^3]
    liquid, solid : binned aerosol populations
    """

    species: FloatArray
    fixed: FloatArray
    so4_liquid: FloatArray
    soot_density: FloatArray
    soot_radius: FloatArray
    soot_area: FloatArray
    liquid: "AerosolPopulation"
    solid: "AerosolPopulation"

    def copy(self) -> "PlumeState":
        """Deep copy arrays to decouple from the original state."""
        return PlumeState(
            species=np.array(self.species, copy=True),
            fixed=np.array(self.fixed, copy=True),
            so4_liquid=np.array(self.so4_liquid, copy=True),
            soot_density=np.array(self.soot_density, copy=True),
            soot_radius=np.array(self.soot_radius, copy=True),
            soot_area=np.array(self.soot_area, copy=True),
            liquid=self.liquid.copy(),
            solid=self.solid.copy(),
        )


@dataclass(slots=True)
class SimulationClock:
    """Monotone simulation clock [s]."""

    t: float
    t_initial: float
    t_final: float
    dt: float = 0.0
    step: int = 0
    is_last_step: bool = False

    def set_step(self, dt: float) -> None:
        if not (dt > 0.0) or not np.isfinite(dt):
            raise ValueError(f"time step must be positive and finite, got {dt}")
        self.dt = float(dt)
        self.is_last_step = self.t + self.dt >= self.t_final

    def advance(self) -> None:
        self.t += self.dt
        self.step += 1

    @property
    def elapsed(self) -> float:
        return self.t - self.t_initial

    @property
    def done(self) -> bool:
        return self.t >= self.t_final


def check_state_shapes(state: PlumeState, grid: SpatialGrid, *, n_var: int, n_fix: int) -> None:
    """Validate PlumeState array shapes against grid and mechanism sizes."""
    if state.species.shape != (n_var, grid.ny, grid.nx):
        raise ValueError(f"species shape {state.species.shape} != ({n_var}, {grid.ny}, {grid.nx})")
    if state.fixed.shape != (n_fix,):
        raise ValueError(f"fixed shape {state.fixed.shape} != ({n_fix},)")
    for name in ("so4_liquid", "soot_density", "soot_radius", "soot_area"):
        arr = getattr(state, name)
        if arr.shape != grid.shape:
            raise ValueError(f"{name} shape {arr.shape} != {grid.shape}")
    for name, pop in (("liquid", state.liquid), ("solid", state.solid)):
        if pop.pdf.shape[1:] != grid.shape:
            raise ValueError(f"{name} aerosol pdf shape {pop.pdf.shape} does not match grid {grid.shape}")
    for name in ("species", "fixed", "so4_liquid"):
        arr = getattr(state, name)
        if arr.dtype != np.float64:
            raise ValueError(f"{name} dtype must be float64, got {arr.dtype}")
