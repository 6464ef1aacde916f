"""
Stiff kinetics integration of one air parcel.

Wraps scipy.integrate.solve_ivp (BDF by default) around the mechanism's
mass-action right-hand side and analytic Jacobian. Integration outcome is
reported as an integer status; the caller decides what is fatal.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Optional

import numpy as np
from scipy.integrate import solve_ivp

from core.mechanism import Mechanism
from core.types import FloatArray

logger = logging.getLogger(__name__)

INTEGRATION_SUCCESS = 1
INTEGRATION_FAILED = -1
NON_FINITE_RESULT = -2
NEGATIVE_RESULT = -3

_IMPLICIT_METHODS = ("BDF", "Radau", "LSODA")


@dataclass(slots=True)
class IntegrationStats:
    status: int = INTEGRATION_SUCCESS
    n_fev: int = 0
    n_jev: int = 0
    message: str = ""


class KineticsIntegrator:
    """Integrates d[var]/dt = N r(var, fix) over one interval, in place."""

    def __init__(self, mechanism: Mechanism, *, method: str = "BDF", max_step: float = np.inf) -> None:
        self.mechanism = mechanism
        self.method = str(method)
        self.max_step = float(max_step)
        self.last = IntegrationStats()

    def integrate(
        self,
        var: FloatArray,
        fix: FloatArray,
        rconst: FloatArray,
        t: float,
        dt: float,
        *,
        rtol: float,
        atol: float,
    ) -> int:
        mech = self.mechanism

        def fun(_t, y):
            return mech.rhs(y, fix, rconst)

        def jac(_t, y):
            return mech.jacobian(y, fix, rconst)

        kwargs = {}
        if self.method in _IMPLICIT_METHODS:
            kwargs["jac"] = jac
        try:
            sol = solve_ivp(
                fun,
                (float(t), float(t) + float(dt)),
                np.asarray(var, dtype=np.float64),
                method=self.method,
                rtol=rtol,
                atol=atol,
                max_step=self.max_step,
                t_eval=None,
                **kwargs,
            )
        except (ValueError, ArithmeticError, np.linalg.LinAlgError) as exc:
            self.last = IntegrationStats(INTEGRATION_FAILED, message=f"{type(exc).__name__}: {exc}")
            return INTEGRATION_FAILED

        self.last = IntegrationStats(
            INTEGRATION_SUCCESS, n_fev=int(sol.nfev), n_jev=int(sol.njev), message=str(sol.message)
        )
        if not sol.success:
            self.last.status = INTEGRATION_FAILED
            return INTEGRATION_FAILED

        y_end = sol.y[:, -1]
        if not np.all(np.isfinite(y_end)):
            self.last.status = NON_FINITE_RESULT
            self.last.message = "non-finite concentrations"
            return NON_FINITE_RESULT
        # round-off negatives within the absolute tolerance are clipped
        if np.any(y_end < -atol):
            self.last.status = NEGATIVE_RESULT
            self.last.message = f"negative concentration {float(y_end.min()):.3e} below -atol"
            return NEGATIVE_RESULT
        var[:] = np.maximum(y_end, 0.0)
        return INTEGRATION_SUCCESS


def describe_status(status: int) -> Optional[str]:
    return {
        INTEGRATION_SUCCESS: None,
        INTEGRATION_FAILED: "integration failed",
        NON_FINITE_RESULT: "non-finite result",
        NEGATIVE_RESULT: "negative result",
    }.get(int(status), f"unknown status {status}")
