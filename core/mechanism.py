"""
Mass-action chemical mechanism loaded from a YAML artifact.

The mechanism is data, not code: species lists, reactions with their rate
laws, the photolysis table, heterogeneous uptake coefficients and species
families are read once and turned into dense arrays. Right-hand side and
Jacobian are evaluated from those arrays.

YAML layout (top-level key ``mechanism``):

    name: str
    variable_species: [O3, NO, ...]
    fixed_species: [O2, N2]
    aerosol_types: [ice_nat, strat_liquid, trop_sulfate, soot]
    molar_mass: {NO: 0.030, ...}                       # [kg/mol]
    reactions:
      - reactants: {NO: 1, O3: 1}
        products: {NO2: 1, O2: 1}
        rate: {type: arrhenius, A: 3.0e-12, Ea_R: 1500.0, n: 0.0, third_body: false}
      - rate: {type: photolysis, name: J_NO2}
      - rate: {type: heterogeneous, species: N2O5, slot: 0}
      - rate: {type: constant, k: 1.0e-3}
    photolysis:
      csza: [0.0, 0.1, ...]
      rates: {J_NO2: [...], ...}                      # [1/s]
    heterogeneous:
      - species: N2O5
        slot: 0
        molar_mass: 0.108
        gamma: {strat_liquid: 0.1, trop_sulfate: 0.02}
    families:
      NOy: {members: {NO: 1, NO2: 1, N2O5: 2}, molar_mass: 0.014}

Concentrations are in molec/cm^3, first-order rates in 1/s, second-order
rates in cm^3/molec/s.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Mapping, Optional

import numpy as np
import yaml

from .types import FloatArray

logger = logging.getLogger(__name__)

N_HET_SLOTS = 3
DEFAULT_AEROSOL_TYPES = ("ice_nat", "strat_liquid", "trop_sulfate", "soot")
_RATE_TYPES = ("constant", "arrhenius", "photolysis", "heterogeneous")


class MechanismError(ValueError):
    """Raised for malformed or inconsistent mechanism artifacts."""


def _species_name(value: Any, where: str) -> str:
    # YAML 1.1 reads bare NO, ON, Y as booleans
    if not isinstance(value, str):
        raise MechanismError(f"{where}: species name {value!r} is not a string; quote it in the YAML")
    return value


@dataclass(frozen=True, slots=True)
class Reaction:
    reactants: Mapping[str, int]
    products: Mapping[str, float]
    rate: Mapping[str, Any]
    label: str = ""


@dataclass(frozen=True, slots=True)
class HetUptake:
    """Reactive uptake of one gas species on the aerosol types (one het slot)."""

    species: int  # variable species index
    slot: int
    molar_mass: float  # [kg/mol]
    gamma: FloatArray  # (n_aero,) reaction probabilities


@dataclass(frozen=True, slots=True)
class Family:
    name: str
    members: Mapping[int, float]  # variable species index -> weight
    molar_mass: Optional[float] = None  # [kg/mol] of the counted atom/molecule


@dataclass(slots=True)
class Mechanism:
    name: str
    variable: List[str]
    fixed: List[str]
    aerosol_types: List[str]
    reactions: List[Reaction]
    molar_mass: Dict[str, float] = field(default_factory=dict)
    photolysis_names: List[str] = field(default_factory=list)
    photolysis_csza: FloatArray = field(default_factory=lambda: np.zeros(0))
    photolysis_rates: FloatArray = field(default_factory=lambda: np.zeros((0, 0)))
    uptakes: List[HetUptake] = field(default_factory=list)
    families: Dict[str, Family] = field(default_factory=dict)

    # dense arrays, filled by _compile()
    reactant_index: np.ndarray = field(init=False)
    stoich: FloatArray = field(init=False)
    _groups: Dict[str, Dict[str, np.ndarray]] = field(init=False)

    def __post_init__(self) -> None:
        names = list(self.variable) + list(self.fixed)
        if len(set(names)) != len(names):
            raise MechanismError(f"Duplicate species names in mechanism {self.name!r}")
        self._compile()

    # ------------------------------------------------------------------ sizes
    @property
    def n_var(self) -> int:
        return len(self.variable)

    @property
    def n_fix(self) -> int:
        return len(self.fixed)

    @property
    def n_react(self) -> int:
        return len(self.reactions)

    @property
    def n_aero(self) -> int:
        return len(self.aerosol_types)

    @property
    def n_photol(self) -> int:
        return len(self.photolysis_names)

    def index(self, name: str) -> int:
        """Variable species index of `name` (KeyError when absent)."""
        try:
            return self.variable.index(name)
        except ValueError as exc:
            raise KeyError(f"{name!r} is not a variable species of {self.name!r}") from exc

    def find(self, name: str) -> Optional[int]:
        return self.variable.index(name) if name in self.variable else None

    def fixed_index(self, name: str) -> Optional[int]:
        return self.fixed.index(name) if name in self.fixed else None

    def aerosol_index(self, name: str) -> Optional[int]:
        return self.aerosol_types.index(name) if name in self.aerosol_types else None

    # -------------------------------------------------------------- compiling
    def _compile(self) -> None:
        all_names = list(self.variable) + list(self.fixed)
        lookup = {s: i for i, s in enumerate(all_names)}
        sentinel = len(all_names)

        max_order = max((sum(int(c) for c in r.reactants.values()) for r in self.reactions), default=1)
        max_order = max(max_order, 1)
        idx = np.full((self.n_react, max_order), sentinel, dtype=np.int64)
        stoich = np.zeros((self.n_var, self.n_react), dtype=np.float64)

        groups: Dict[str, Dict[str, list]] = {
            "constant": {"rxn": [], "k": []},
            "arrhenius": {"rxn": [], "A": [], "n": [], "Ea_R": [], "third_body": []},
            "photolysis": {"rxn": [], "j": []},
            "heterogeneous": {"rxn": [], "species": [], "slot": []},
        }

        for j, rxn in enumerate(self.reactions):
            col = 0
            for sp, coeff in rxn.reactants.items():
                if sp not in lookup:
                    raise MechanismError(f"Reaction {j} ({rxn.label}): unknown reactant {sp!r}")
                if int(coeff) != coeff or coeff <= 0:
                    raise MechanismError(f"Reaction {j}: reactant coefficients must be positive integers")
                for _ in range(int(coeff)):
                    idx[j, col] = lookup[sp]
                    col += 1
                if lookup[sp] < self.n_var:
                    stoich[lookup[sp], j] -= float(coeff)
            for sp, coeff in rxn.products.items():
                if sp not in lookup:
                    raise MechanismError(f"Reaction {j} ({rxn.label}): unknown product {sp!r}")
                if lookup[sp] < self.n_var:
                    stoich[lookup[sp], j] += float(coeff)

            kind = str(rxn.rate.get("type", "arrhenius"))
            if kind not in _RATE_TYPES:
                raise MechanismError(f"Reaction {j}: unknown rate type {kind!r}")
            g = groups[kind]
            g["rxn"].append(j)
            if kind == "constant":
                g["k"].append(float(rxn.rate["k"]))
            elif kind == "arrhenius":
                g["A"].append(float(rxn.rate["A"]))
                g["n"].append(float(rxn.rate.get("n", 0.0)))
                g["Ea_R"].append(float(rxn.rate.get("Ea_R", 0.0)))
                g["third_body"].append(bool(rxn.rate.get("third_body", False)))
            elif kind == "photolysis":
                name = str(rxn.rate["name"])
                if name not in self.photolysis_names:
                    raise MechanismError(f"Reaction {j}: photolysis rate {name!r} missing from table")
                g["j"].append(self.photolysis_names.index(name))
            else:
                sp = str(rxn.rate["species"])
                slot = int(rxn.rate.get("slot", 0))
                if sp not in self.variable:
                    raise MechanismError(f"Reaction {j}: heterogeneous species {sp!r} is not variable")
                if not (0 <= slot < N_HET_SLOTS):
                    raise MechanismError(f"Reaction {j}: het slot {slot} outside [0, {N_HET_SLOTS})")
                g["species"].append(self.variable.index(sp))
                g["slot"].append(slot)

        self.reactant_index = idx
        self.stoich = stoich
        self._groups = {
            kind: {key: np.asarray(val) for key, val in g.items()} for kind, g in groups.items()
        }
        for kind in self._groups:
            self._groups[kind]["rxn"] = self._groups[kind]["rxn"].astype(np.int64)

        if self.photolysis_rates.shape != (self.n_photol, self.photolysis_csza.size):
            raise MechanismError(
                f"photolysis table shape {self.photolysis_rates.shape} != "
                f"({self.n_photol}, {self.photolysis_csza.size})"
            )

    # ----------------------------------------------------------- rate constants
    def compute_rate_constants(
        self,
        out: FloatArray,
        *,
        temperature: float,
        air_density: float,
        photol: FloatArray,
        het: FloatArray,
    ) -> FloatArray:
        """Fill `out` (n_react,) with rate constants for the given state."""
        g = self._groups["constant"]
        out[g["rxn"]] = g["k"]

        g = self._groups["arrhenius"]
        if g["rxn"].size:
            k = g["A"] * (temperature / 300.0) ** g["n"] * np.exp(-g["Ea_R"] / temperature)
            out[g["rxn"]] = np.where(g["third_body"], k * air_density, k)

        g = self._groups["photolysis"]
        if g["rxn"].size:
            out[g["rxn"]] = photol[g["j"]]

        g = self._groups["heterogeneous"]
        if g["rxn"].size:
            out[g["rxn"]] = het[g["species"], g["slot"]]
        return out

    # -------------------------------------------------------------- kinetics
    def _concentrations(self, var: FloatArray, fix: FloatArray) -> FloatArray:
        return np.concatenate((var, fix, (1.0,)))

    def reaction_rates(self, var: FloatArray, fix: FloatArray, rconst: FloatArray) -> FloatArray:
        c = self._concentrations(var, fix)
        return rconst * np.prod(c[self.reactant_index], axis=1)

    def rhs(self, var: FloatArray, fix: FloatArray, rconst: FloatArray) -> FloatArray:
        """d[var]/dt [molec/cm^3/s]."""
        return self.stoich @ self.reaction_rates(var, fix, rconst)

    def jacobian(self, var: FloatArray, fix: FloatArray, rconst: FloatArray) -> FloatArray:
        """Analytic d(rhs)/d(var), shape (n_var, n_var)."""
        c = self._concentrations(var, fix)
        gathered = c[self.reactant_index]  # (n_react, max_order)
        n_react, order = gathered.shape
        drate = np.zeros((n_react, c.size), dtype=np.float64)
        rows = np.arange(n_react)
        for s in range(order):
            others = np.prod(np.delete(gathered, s, axis=1), axis=1) if order > 1 else np.ones(n_react)
            np.add.at(drate, (rows, self.reactant_index[:, s]), rconst * others)
        return self.stoich @ drate[:, : self.n_var]

    # -------------------------------------------------------------- families
    def family_total(self, name: str, var: FloatArray) -> FloatArray:
        """Weighted family sum over the leading species axis of `var`."""
        fam = self.families[name]
        total = np.zeros(np.shape(var)[1:], dtype=np.float64)
        for i, w in fam.members.items():
            total = total + w * var[i]
        return total

    # ---------------------------------------------------------------- loading
    @classmethod
    def from_dict(cls, raw: Mapping[str, Any]) -> "Mechanism":
        if "mechanism" in raw:
            raw = raw["mechanism"]
        try:
            variable = [_species_name(s, "variable_species") for s in raw["variable_species"]]
        except KeyError as exc:
            raise MechanismError("mechanism needs 'variable_species'") from exc
        fixed = [_species_name(s, "fixed_species") for s in raw.get("fixed_species", []) or []]
        aerosol_types = [str(a) for a in raw.get("aerosol_types", DEFAULT_AEROSOL_TYPES)]

        reactions = []
        for j, item in enumerate(raw.get("reactions", []) or []):
            if "rate" not in item:
                raise MechanismError(f"Reaction {j} has no 'rate' block")
            reactions.append(
                Reaction(
                    reactants={_species_name(k, f"reaction {j}"): int(v) for k, v in (item.get("reactants") or {}).items()},
                    products={_species_name(k, f"reaction {j}"): float(v) for k, v in (item.get("products") or {}).items()},
                    rate=dict(item["rate"]),
                    label=str(item.get("label", f"R{j + 1}")),
                )
            )

        photo = raw.get("photolysis") or {}
        photolysis_names = [str(k) for k in (photo.get("rates") or {}).keys()]
        csza = np.asarray(photo.get("csza", []), dtype=np.float64)
        if photolysis_names:
            rates = np.vstack([np.asarray(photo["rates"][k], dtype=np.float64) for k in photolysis_names])
            if csza.size < 2 or np.any(np.diff(csza) <= 0.0):
                raise MechanismError("photolysis csza grid must be strictly increasing with >= 2 nodes")
        else:
            rates = np.zeros((0, csza.size), dtype=np.float64)

        molar_mass = {_species_name(k, "molar_mass"): float(v) for k, v in (raw.get("molar_mass") or {}).items()}

        uptakes = []
        for item in raw.get("heterogeneous", []) or []:
            sp = _species_name(item["species"], "heterogeneous")
            if sp not in variable:
                raise MechanismError(f"heterogeneous uptake species {sp!r} is not variable")
            gamma = np.zeros(len(aerosol_types), dtype=np.float64)
            for aero, val in (item.get("gamma") or {}).items():
                if aero not in aerosol_types:
                    raise MechanismError(f"unknown aerosol type {aero!r} in uptake of {sp}")
                gamma[aerosol_types.index(aero)] = float(val)
            mm = float(item.get("molar_mass", molar_mass.get(sp, 0.0)))
            if mm <= 0.0:
                raise MechanismError(f"uptake of {sp} needs a positive molar_mass")
            uptakes.append(HetUptake(variable.index(sp), int(item.get("slot", 0)), mm, gamma))

        families = {}
        for fname, item in (raw.get("families") or {}).items():
            members_raw = item.get("members", item) if isinstance(item, Mapping) else {}
            members = {}
            for sp, w in members_raw.items():
                if sp == "molar_mass":
                    continue
                _species_name(sp, f"family {fname}")
                if sp not in variable:
                    raise MechanismError(f"family {fname}: {sp!r} is not variable")
                members[variable.index(sp)] = float(w)
            mm = item.get("molar_mass") if isinstance(item, Mapping) else None
            families[str(fname)] = Family(str(fname), members, None if mm is None else float(mm))

        mech = cls(
            name=str(raw.get("name", "mechanism")),
            variable=variable,
            fixed=fixed,
            aerosol_types=aerosol_types,
            reactions=reactions,
            molar_mass=molar_mass,
            photolysis_names=photolysis_names,
            photolysis_csza=csza,
            photolysis_rates=rates,
            uptakes=uptakes,
            families=families,
        )
        logger.info(
            "Loaded mechanism %r: %d variable, %d fixed species, %d reactions, %d photolysis rates",
            mech.name,
            mech.n_var,
            mech.n_fix,
            mech.n_react,
            mech.n_photol,
        )
        return mech

    @classmethod
    def from_yaml(cls, path: Path) -> "Mechanism":
        path = Path(path)
        if not path.exists():
            raise FileNotFoundError(f"Mechanism file not found: {path}")
        with path.open("r", encoding="utf-8") as f:
            raw = yaml.safe_load(f)
        if not isinstance(raw, Mapping):
            raise MechanismError(f"Mechanism file {path} does not contain a mapping")
        return cls.from_dict(raw)
