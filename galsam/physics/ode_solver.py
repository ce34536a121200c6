"""Adaptive ODE integration over fixed macro steps.

:class:`ODESolver` advances a system ``dy/dt = f(t, y)`` from ``t0`` in
macro steps of ``delta_t``.  Each macro step is covered by an adaptive
embedded Runge-Kutta method from :mod:`scipy.integrate`; the number of
internal sub-steps is free but every call to :meth:`ODESolver.evolve`
lands exactly on ``t0 + step * delta_t``.

Accuracy problems (step size underflow, stalled progress, step ceiling)
are soft: a warning is logged and the best available state is returned.
A failing evaluator, or any other backend error, raises
:class:`~galsam.errors.NumericalError`.
"""
from __future__ import annotations

import contextlib
import logging
import math
from typing import Any, Callable, Dict, Iterator, Optional, Sequence, Type

import numpy as np
from scipy.integrate import DOP853, RK23, RK45, OdeSolver

from ..errors import NumericalError

logger = logging.getLogger(__name__)

# Evaluator contract: fill ``dydt`` in place and return 0 on success.
Evaluator = Callable[[float, np.ndarray, np.ndarray, Any], int]

METHODS: Dict[str, Type[OdeSolver]] = {"RK45": RK45, "RK23": RK23, "DOP853": DOP853}

__all__ = ["Evaluator", "METHODS", "ODESolver"]


class _EvaluatorFailure(Exception):
    """Internal signal raised when the evaluator reports an error."""

    def __init__(self, status: int, detail: str = "") -> None:
        self.status = status
        self.detail = detail
        super().__init__(f"status={status}" + (f": {detail}" if detail else ""))


class ODESolver:
    """A solver of ODE systems evolved in macro steps of ``delta_t``.

    Parameters
    ----------
    y0:
        Initial values.  The evaluator must produce as many derivatives.
    t0:
        Time associated with ``y0``.
    delta_t:
        Macro step covered by every :meth:`evolve` call.
    precision:
        Relative precision targeted by the adaptive step-size control.
    evaluator:
        Callable ``(t, y, dydt, params) -> status``; a non-zero status
        aborts the integration.
    params:
        Opaque bundle forwarded to ``evaluator`` unchanged.
    method:
        Name of the embedded Runge-Kutta pair (see :data:`METHODS`).
    atol:
        Absolute tolerance, protecting components that sit at zero.
    max_steps:
        Ceiling on the number of internal sub-steps per macro step.
    min_step_fraction:
        Sub-steps shorter than ``min_step_fraction * delta_t`` are treated
        as stalled progress.
    """

    def __init__(
        self,
        y0: Sequence[float],
        t0: float,
        delta_t: float,
        precision: float,
        evaluator: Evaluator,
        params: Any = None,
        *,
        method: str = "RK45",
        atol: float = 1e-6,
        max_steps: int = 100_000,
        min_step_fraction: float = 1e-12,
    ) -> None:
        if not (math.isfinite(delta_t) and delta_t > 0.0):
            raise NumericalError(f"ODE macro step must be positive and finite, got {delta_t}")
        try:
            self._method = METHODS[method]
        except KeyError:
            raise NumericalError(
                f"Unknown ODE method {method!r}; supported methods are {', '.join(METHODS)}"
            ) from None
        self._y = np.array(y0, dtype=float)
        self.t = float(t0)
        self.t0 = float(t0)
        self.delta_t = float(delta_t)
        self.step = 0
        self.precision = float(precision)
        self.atol = float(atol)
        self.max_steps = int(max_steps)
        self.min_step = float(min_step_fraction) * self.delta_t
        self._evaluator = evaluator
        self._params = params
        self._nfev = 0
        self.forced_completions = 0

    @property
    def current_t(self) -> float:
        """Time at which the system is currently sitting."""

        return self.t

    @property
    def y(self) -> np.ndarray:
        return self._y.copy()

    def num_evaluations(self) -> int:
        """Number of times the evaluator has been called so far."""

        return self._nfev

    def _rhs(self, t: float, y: np.ndarray) -> np.ndarray:
        dydt = np.zeros_like(y)
        try:
            status = self._evaluator(t, y, dydt, self._params)
        except Exception as exc:
            raise _EvaluatorFailure(-1, repr(exc)) from exc
        if status != 0:
            raise _EvaluatorFailure(int(status))
        return dydt

    @contextlib.contextmanager
    def _driver(self, t_target: float) -> Iterator[OdeSolver]:
        """Acquire a fresh stepping driver for one macro step.

        The driver is released on every exit path; its evaluation count is
        folded into :meth:`num_evaluations`.
        """

        driver: Optional[OdeSolver] = None
        try:
            driver = self._method(
                self._rhs,
                self.t,
                self._y,
                t_target,
                first_step=t_target - self.t,
                rtol=self.precision,
                atol=self.atol,
            )
            yield driver
        finally:
            if driver is not None:
                self._nfev += driver.nfev
            else:
                # the initial evaluation failed before the driver existed
                self._nfev += 1

    def _force_completion(self, reason: str, driver: OdeSolver, t_target: float) -> None:
        self.forced_completions += 1
        logger.warning(
            "ODE: %s at t=%.6g (target %.6g). Will force integration to finish "
            "regardless of desired accuracy not reached.",
            reason,
            driver.t,
            t_target,
        )

    def _advance(self, driver: OdeSolver, t_target: float) -> np.ndarray:
        n_steps = 0
        while driver.status == "running":
            if n_steps >= self.max_steps:
                self._force_completion("maximum number of steps reached", driver, t_target)
                break
            message = driver.step()
            n_steps += 1
            if driver.status == "failed":
                self._force_completion(
                    f"step size decreases below machine precision ({message})", driver, t_target
                )
                break
            if (
                driver.status == "running"
                and driver.step_size is not None
                and driver.step_size < self.min_step
            ):
                self._force_completion("step size dropped below minimum value", driver, t_target)
                break
        logger.debug("ODE: reached t=%.6g in %d sub-steps", driver.t, n_steps)
        return np.array(driver.y, dtype=float)

    def evolve(self) -> np.ndarray:
        """Evolve the system to ``t = t0 + step * delta_t`` and return ``y``."""

        self.step += 1
        t_target = self.t0 + self.step * self.delta_t
        try:
            with self._driver(t_target) as driver:
                y_new = self._advance(driver, t_target)
        except _EvaluatorFailure as exc:
            self.step -= 1
            raise NumericalError(
                f"Error while solving ODE system: user function signaled an error ({exc})"
            ) from exc
        except NumericalError:
            self.step -= 1
            raise
        except Exception as exc:
            self.step -= 1
            raise NumericalError(f"Error while solving ODE system: unexpected solver error: {exc}") from exc
        self._y = y_new
        self.t = t_target
        return self._y.copy()
