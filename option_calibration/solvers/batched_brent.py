"""
Batched Dekker-Brent root finder.

Runs the algorithm of ``solvers.brent`` on many independent problems at
once. ``f`` maps an array of trial points to an array of residuals of the
same shape, so one call can re-price a whole batch of contracts. Every
branch of the scalar algorithm becomes an elementwise ``np.where``; the loop
ends when every element meets the tolerance or the iteration cap is hit.

Per-element rules:

- elements that have converged are frozen,
- a non-finite interpolated candidate forces bisection,
- a non-finite residual at the trial point moves that element's contrapoint
  a to the trial point, shrinking its bracket towards b.
"""

import logging
from dataclasses import dataclass
from typing import Callable

import numpy as np

from option_calibration.solvers.brent import _check_settings
from option_calibration.utils.constants import ROOT_MAX_ITERATIONS, ROOT_TOLERANCE
from option_calibration.utils.errors import EqualSignsError
from option_calibration.utils.types import BatchRootResult

logger = logging.getLogger(__name__)

ArrayFunction = Callable[[np.ndarray], np.ndarray]


@dataclass(eq=False)
class BatchSolverState:
    """Elementwise counterpart of ``SolverState``; every field but the counters is an array."""

    a: np.ndarray
    fa: np.ndarray
    b: np.ndarray
    fb: np.ndarray
    b1: np.ndarray
    fb1: np.ndarray
    b2: np.ndarray
    fb2: np.ndarray
    bisected: np.ndarray
    tolerance: float
    iteration: int = 0

    @classmethod
    def initial(
        cls,
        f: ArrayFunction,
        a0,
        b0,
        tolerance: float,
    ) -> "BatchSolverState":
        """
        Evaluate both estimate arrays and seed the history.

        ``a0`` and ``b0`` may be scalars or arrays; everything is broadcast
        to the shape of the residuals.

        Raises:
            EqualSignsError: If any element's residuals share a sign
            ValueError: If any residual at the initial estimates is not finite
        """
        a0 = np.asarray(a0, dtype=float)
        b0 = np.asarray(b0, dtype=float)
        fa = np.asarray(f(a0), dtype=float)
        fb = np.asarray(f(b0), dtype=float)
        shape = np.broadcast_shapes(a0.shape, b0.shape, fa.shape, fb.shape)
        a, b, fa, fb = (np.broadcast_to(x, shape).astype(float) for x in (a0, b0, fa, fb))

        non_finite = ~np.isfinite(fa) | ~np.isfinite(fb)
        if non_finite.any():
            raise ValueError(
                f"Residual is not finite at the initial estimates for batch elements "
                f"{np.flatnonzero(non_finite).tolist()}"
            )
        bad = np.sign(fa) == np.sign(fb)
        if bad.any():
            raise EqualSignsError(fa, fb, indices=np.flatnonzero(bad).tolist())

        state = cls(
            a=a,
            fa=fa,
            b=b,
            fb=fb,
            b1=b.copy(),
            fb1=fb.copy(),
            b2=b.copy(),
            fb2=fb.copy(),
            bisected=np.ones(shape, dtype=bool),
            tolerance=tolerance,
        )
        state.order()
        state.b1, state.b2 = state.b.copy(), state.b.copy()
        state.fb1, state.fb2 = state.fb.copy(), state.fb.copy()
        return state

    @property
    def converged(self) -> np.ndarray:
        return np.abs(self.fb) <= self.tolerance

    def order(self) -> None:
        swap = np.abs(self.fb) > np.abs(self.fa)
        self.a, self.b = np.where(swap, self.b, self.a), np.where(swap, self.a, self.b)
        self.fa, self.fb = np.where(swap, self.fb, self.fa), np.where(swap, self.fa, self.fb)

    def candidate(self) -> np.ndarray:
        a, b, b1 = self.a, self.b, self.b1
        fa, fb, fb1 = self.fa, self.fb, self.fb1

        distinct = (fa != fb) & (fa != fb1) & (fb != fb1)
        with np.errstate(divide="ignore", invalid="ignore", over="ignore"):
            interpolated = (
                a * fb * fb1 / ((fa - fb) * (fa - fb1))
                + b * fa * fb1 / ((fb - fa) * (fb - fb1))
                + b1 * fa * fb / ((fb1 - fa) * (fb1 - fb))
            )
            secant = b - fb * (b - b1) / (fb - fb1)
        return np.where(distinct, interpolated, np.where(fb != fb1, secant, np.nan))

    def needs_bisection(self, s: np.ndarray) -> np.ndarray:
        bound = (3.0 * self.a + self.b) / 4.0
        low, high = np.minimum(bound, self.b), np.maximum(bound, self.b)
        outside = ~((low < s) & (s < high))

        last = np.where(self.bisected, np.abs(self.b - self.b1), np.abs(self.b1 - self.b2))
        with np.errstate(invalid="ignore"):
            slow = (np.abs(s - self.b) >= last / 2.0) | (last < self.tolerance)
        return outside | slow | ~np.isfinite(s)

    def advance(self, f: ArrayFunction) -> None:
        active = ~self.converged
        s = self.candidate()
        bisect = self.needs_bisection(s)
        s = np.where(bisect, (self.a + self.b) / 2.0, s)
        s = np.where(active, s, self.b)

        fs = np.broadcast_to(np.asarray(f(s), dtype=float), s.shape)
        finite = np.isfinite(fs)
        shrink = active & ~finite
        if shrink.any():
            logger.debug(
                "Non-finite residual for batch elements %s at iteration %d, shrinking towards b",
                np.flatnonzero(shrink).tolist(),
                self.iteration,
            )
        update = active & finite

        self.bisected = np.where(active, bisect, self.bisected)
        self.b2 = np.where(active, self.b1, self.b2)
        self.fb2 = np.where(active, self.fb1, self.fb2)
        self.b1 = np.where(active, self.b, self.b1)
        self.fb1 = np.where(active, self.fb, self.fb1)

        same = np.sign(fs) == np.sign(self.fa)
        replace_a = update & same
        replace_b = update & ~same
        # A non-finite trial point becomes the contrapoint; fa keeps its sign.
        self.a = np.where(replace_a | shrink, s, self.a)
        self.fa = np.where(replace_a, fs, self.fa)
        self.b = np.where(replace_b, s, self.b)
        self.fb = np.where(replace_b, fs, self.fb)
        self.order()
        self.iteration += 1


def batched_brent_root(
    f: ArrayFunction,
    a0,
    b0,
    tolerance: float = ROOT_TOLERANCE,
    max_iterations: int = ROOT_MAX_ITERATIONS,
) -> BatchRootResult:
    """
    Solve f(x) = 0 elementwise for a batch of brackets.

    Args:
        f: Vectorized residual function
        a0, b0: Initial estimates (scalars or arrays broadcastable to the
            residual shape)
        tolerance: Per-element threshold on |f(b)|
        max_iterations: Cap on whole-batch iterations

    Returns:
        BatchRootResult with per-element roots, residuals and convergence
        flags

    Raises:
        EqualSignsError: If any element is not bracketed
        ValueError: If a residual at the initial estimates is not finite
    """
    _check_settings(tolerance, max_iterations)
    state = BatchSolverState.initial(f, a0, b0, tolerance)
    while not state.converged.all() and state.iteration < max_iterations:
        state.advance(f)

    converged = state.converged
    if converged.all():
        logger.debug("Batched Brent converged in %d iterations", state.iteration)
    else:
        logger.warning(
            "Batched Brent stopped after %d iterations; elements %s did not converge",
            state.iteration,
            np.flatnonzero(~converged).tolist(),
        )
    return BatchRootResult(
        root=state.b.copy(),
        residual=state.fb.copy(),
        iterations=state.iteration,
        converged=converged,
    )


def batched_brent_solve(
    f: ArrayFunction,
    a0,
    b0,
    tolerance: float = ROOT_TOLERANCE,
    max_iterations: int = ROOT_MAX_ITERATIONS,
) -> np.ndarray:
    """Return the best root estimate for every element (see ``batched_brent_root``)."""
    return batched_brent_root(f, a0, b0, tolerance, max_iterations).root
