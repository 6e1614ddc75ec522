"""
Dekker-Brent root finder.

This module implements Brent's method (a hybrid of bisection, secant and
inverse quadratic interpolation) for an arbitrary scalar function. It keeps
a bracket [a_k, b_k] with f(a_k) and f(b_k) of opposite sign at all times,
with b_k the endpoint of smaller |f|, and only accepts an interpolated step
when it makes enough progress; otherwise it bisects.

Reaching the iteration cap is not an error: the best estimate b_k is
returned. ``brent_root`` reports whether the tolerance was actually met.
"""

import logging
import math
from dataclasses import dataclass
from typing import Callable, Iterator

from option_calibration.utils.constants import ROOT_MAX_ITERATIONS, ROOT_TOLERANCE
from option_calibration.utils.errors import EqualSignsError
from option_calibration.utils.types import RootResult

logger = logging.getLogger(__name__)

ScalarFunction = Callable[[float], float]


def _sign(x: float) -> int:
    return (x > 0) - (x < 0)


def _evaluate(f: ScalarFunction, x: float) -> float:
    fx = float(f(x))
    if not math.isfinite(fx):
        raise ValueError(f"Residual is not finite at x={x!r}: f(x)={fx!r}")
    return fx


def _check_settings(tolerance: float, max_iterations: int) -> None:
    if not tolerance >= 0:
        raise ValueError(f"tolerance must be non-negative, got {tolerance!r}")
    if max_iterations < 0:
        raise ValueError(f"max_iterations must be non-negative, got {max_iterations!r}")


@dataclass
class SolverState:
    """
    Mutable state of one Brent solve.

    Attributes:
        a, fa: Contrapoint of the bracket and its residual
        b, fb: Best estimate and its residual (|fb| <= |fa|)
        b1, fb1: Previous best estimate b_{k-1}
        b2, fb2: Estimate before that, b_{k-2}
        bisected: Whether the last step was a bisection
        tolerance: Convergence threshold on |fb|
        iteration: Iterations performed so far
    """

    a: float
    fa: float
    b: float
    fb: float
    b1: float
    fb1: float
    b2: float
    fb2: float
    bisected: bool
    tolerance: float
    iteration: int = 0

    @classmethod
    def initial(
        cls,
        f: ScalarFunction,
        a0: float,
        b0: float,
        tolerance: float,
    ) -> "SolverState":
        """
        Evaluate both estimates and seed the history.

        Raises:
            EqualSignsError: If f(a0) and f(b0) have the same sign
        """
        a0, b0 = float(a0), float(b0)
        fa = _evaluate(f, a0)
        fb = _evaluate(f, b0)
        if _sign(fa) == _sign(fb):
            raise EqualSignsError(fa, fb)

        state = cls(a0, fa, b0, fb, b0, fb, b0, fb, bisected=True, tolerance=tolerance)
        state.order()
        # Identical history makes the first step fall through to bisection.
        state.b1 = state.b2 = state.b
        state.fb1 = state.fb2 = state.fb
        return state

    @property
    def converged(self) -> bool:
        return abs(self.fb) <= self.tolerance

    def order(self) -> None:
        """Swap the endpoints so b holds the smaller residual."""
        if abs(self.fb) > abs(self.fa):
            self.a, self.b = self.b, self.a
            self.fa, self.fb = self.fb, self.fa

    def candidate(self) -> float:
        """
        Interpolated next estimate.

        Inverse quadratic interpolation through (a, b, b1) when the three
        residuals are pairwise distinct, otherwise the secant through
        (b, b1). NaN when neither is defined.
        """
        a, b, b1 = self.a, self.b, self.b1
        fa, fb, fb1 = self.fa, self.fb, self.fb1

        if fa != fb and fa != fb1 and fb != fb1:
            return (
                a * fb * fb1 / ((fa - fb) * (fa - fb1))
                + b * fa * fb1 / ((fb - fa) * (fb - fb1))
                + b1 * fa * fb / ((fb1 - fa) * (fb1 - fb))
            )
        if fb != fb1:
            return b - fb * (b - b1) / (fb - fb1)
        return math.nan

    def needs_bisection(self, s: float) -> bool:
        """Brent's conditions for rejecting the interpolated step ``s``."""
        bound = (3.0 * self.a + self.b) / 4.0
        if not min(bound, self.b) < s < max(bound, self.b):
            return True

        step = abs(s - self.b)
        if self.bisected:
            last = abs(self.b - self.b1)
        else:
            last = abs(self.b1 - self.b2)
        return step >= last / 2.0 or last < self.tolerance

    def advance(self, f: ScalarFunction) -> None:
        """Perform one iteration, keeping the bracket invariant."""
        s = self.candidate()
        if self.needs_bisection(s):
            s = (self.a + self.b) / 2.0
            self.bisected = True
        else:
            self.bisected = False

        self.b2, self.fb2 = self.b1, self.fb1
        self.b1, self.fb1 = self.b, self.fb

        fs = _evaluate(f, s)
        if _sign(fs) == _sign(self.fa):
            self.a, self.fa = s, fs
        else:
            self.b, self.fb = s, fs
        self.order()
        self.iteration += 1


def _iterate(state: SolverState, f: ScalarFunction, max_iterations: int) -> Iterator[SolverState]:
    while not state.converged and state.iteration < max_iterations:
        state.advance(f)
        yield state


def brent_iterations(
    f: ScalarFunction,
    a0: float,
    b0: float,
    tolerance: float = ROOT_TOLERANCE,
    max_iterations: int = ROOT_MAX_ITERATIONS,
) -> Iterator[SolverState]:
    """
    Yield the live solver state after every iteration.

    The same ``SolverState`` object is yielded each time; copy it if a
    history is needed. The precondition check runs on the first ``next``.
    """
    _check_settings(tolerance, max_iterations)
    state = SolverState.initial(f, a0, b0, tolerance)
    yield from _iterate(state, f, max_iterations)


def brent_root(
    f: ScalarFunction,
    a0: float,
    b0: float,
    tolerance: float = ROOT_TOLERANCE,
    max_iterations: int = ROOT_MAX_ITERATIONS,
) -> RootResult:
    """
    Find a root of ``f`` inside the bracket [a0, b0].

    Args:
        f: Residual function
        a0, b0: Initial estimates with f(a0), f(b0) of opposite sign (in
            either order)
        tolerance: Stop once |f(b)| <= tolerance
        max_iterations: Iteration cap, always enforced

    Returns:
        RootResult with the best estimate, its residual, the iteration
        count and whether the tolerance was met

    Raises:
        EqualSignsError: If the estimates do not bracket a root
        ValueError: If f returns a non-finite value
    """
    _check_settings(tolerance, max_iterations)
    state = SolverState.initial(f, a0, b0, tolerance)
    for _ in _iterate(state, f, max_iterations):
        pass

    if state.converged:
        logger.debug(
            "Brent converged to %.10g in %d iterations (residual %.3e)",
            state.b,
            state.iteration,
            state.fb,
        )
    else:
        logger.warning(
            "Brent stopped after %d iterations without convergence: "
            "best estimate %.10g has residual %.3e (tolerance %.1e)",
            state.iteration,
            state.b,
            state.fb,
            tolerance,
        )
    return RootResult(
        root=state.b,
        residual=state.fb,
        iterations=state.iteration,
        converged=state.converged,
    )


def brent_solve(
    f: ScalarFunction,
    a0: float,
    b0: float,
    tolerance: float = ROOT_TOLERANCE,
    max_iterations: int = ROOT_MAX_ITERATIONS,
) -> float:
    """
    Return the best root estimate of ``f`` in [a0, b0].

    Same contract as ``brent_root`` but returns only the number; use
    ``brent_root`` to learn whether the tolerance was met.

    Examples:
        >>> round(brent_solve(lambda x: x * x - 2.0, 0.0, 2.0, tolerance=1e-12), 9)
        1.414213562
    """
    return brent_root(f, a0, b0, tolerance, max_iterations).root
