"""
Calibration of a single contract parameter to a quoted value.

The solver builds the residual

    f(x) = engine.replace(param=x).price().price - target

and hands it to the Dekker-Brent root finder. ``param`` defaults to
volatility, so the common use is implied volatility, but any numeric
contract field can be calibrated (rate, dividend yield, spot, strike, time
to expiry).

By default the caller supplies the bracket [a0, b0]. An optional bracket
search widens a guess until the residual changes sign; for volatility it can
be seeded from the Brenner-Subrahmanyam approximation.
"""

import logging
import math
from typing import Callable, Optional

import numpy as np

from option_calibration.core.engine import ValuationEngine
from option_calibration.diagnostics.arbitrage import check_value_bounds
from option_calibration.solvers.batched_brent import batched_brent_root
from option_calibration.solvers.brent import brent_root
from option_calibration.utils.constants import (
    BRACKET_GROWTH,
    BRACKET_MAX_ATTEMPTS,
    CALIBRATION_PARAMS,
    DEFAULT_CALIBRATION_PARAM,
    IV_INITIAL_GUESS,
    IV_MAX_VOL,
    IV_MIN_VOL,
    ROOT_MAX_ITERATIONS,
    ROOT_TOLERANCE,
)
from option_calibration.utils.errors import (
    ArbitrageBoundsError,
    BracketSearchError,
    InvalidContractError,
)
from option_calibration.utils.types import BatchCalibrationResult, CalibrationResult

logger = logging.getLogger(__name__)


def _resolve_param(param_name: Optional[str]) -> str:
    if param_name is None:
        return DEFAULT_CALIBRATION_PARAM
    if param_name not in CALIBRATION_PARAMS:
        raise InvalidContractError("param_name", param_name, f"must be one of {CALIBRATION_PARAMS}")
    return param_name


def residual_function(
    param_name: str,
    engine: ValuationEngine,
    target_value,
) -> Callable:
    """
    Build f(x) = model value with ``param_name`` set to x, minus the target.

    Works for scalar engines (float in, float out) and batched engines
    (array in, array out) alike.
    """

    def residual(x):
        return engine.replace(**{param_name: x}).price().price - target_value

    return residual


def brenner_subrahmanyam_approximation(market_price: float, S: float, K: float, T: float) -> float:
    """
    Brenner-Subrahmanyam approximation for ATM implied volatility.

    Formula (for ATM):
        σ ≈ √(2π/T) × (C/S)

    Args:
        market_price: Option market price
        S: Spot price
        K: Strike price (unused; the formula assumes S ≈ K)
        T: Time to expiration

    Returns:
        Volatility guess clamped to [IV_MIN_VOL, IV_MAX_VOL]

    Reference:
        Brenner, M., & Subrahmanyam, M. G. (1988). A Simple Formula to
        Compute the Implied Standard Deviation. Financial Analysts Journal, 44(5), 80-83.
    """
    if S <= 0 or T <= 0 or market_price <= 0:
        return IV_INITIAL_GUESS

    sigma_guess = math.sqrt(2.0 * math.pi / T) * (market_price / S)
    return max(IV_MIN_VOL, min(sigma_guess, IV_MAX_VOL))


def expand_bracket(
    f: Callable[[float], float],
    a0: float,
    b0: float,
    growth: float = BRACKET_GROWTH,
    max_attempts: int = BRACKET_MAX_ATTEMPTS,
) -> tuple[float, float]:
    """
    Widen [a0, b0] multiplicatively until f changes sign across it.

    Each attempt moves the endpoint with the smaller |f| (the one nearer the
    root) outwards: the lower estimate is divided by ``growth``, the upper
    multiplied by it. Estimates that already straddle a sign change are
    returned unchanged, whatever their sign; otherwise they must be positive,
    which suits volatility and the other strictly positive contract fields.

    Returns:
        Tuple (lower, upper) with f(lower), f(upper) of opposite sign

    Raises:
        BracketSearchError: If no sign change is found within
            ``max_attempts`` or f is not finite at an estimate
        ValueError: For non-positive estimates that need widening, or
            ``growth`` <= 1
    """
    if not growth > 1.0:
        raise ValueError(f"growth must be greater than 1, got {growth!r}")
    lower, upper = sorted((float(a0), float(b0)))

    def evaluate(x: float) -> float:
        fx = float(f(x))
        if not math.isfinite(fx):
            raise BracketSearchError(f"Residual is not finite at x={x!r}")
        return fx

    f_lower, f_upper = evaluate(lower), evaluate(upper)
    if (f_lower > 0) != (f_upper > 0) or f_lower == 0 or f_upper == 0:
        return lower, upper
    if lower <= 0:
        raise ValueError(f"Bracket search needs positive estimates, got [{lower}, {upper}]")

    attempt = 0
    while (f_lower > 0) == (f_upper > 0) and f_lower != 0 and f_upper != 0:
        if attempt == max_attempts:
            raise BracketSearchError(
                f"No sign change found in [{lower:.6g}, {upper:.6g}] after {max_attempts} attempts"
            )
        if abs(f_lower) < abs(f_upper):
            lower /= growth
            f_lower = evaluate(lower)
        else:
            upper *= growth
            f_upper = evaluate(upper)
        attempt += 1
        logger.debug("Bracket search attempt %d: [%.6g, %.6g]", attempt, lower, upper)

    logger.debug("Bracket [%.6g, %.6g] found after %d attempts", lower, upper, attempt)
    return lower, upper


def _initial_estimates(
    param_name: str,
    engine: ValuationEngine,
    target_value: float,
    a0: Optional[float],
    b0: Optional[float],
    search_bracket: bool,
) -> tuple[float, float]:
    if a0 is not None and b0 is not None and not search_bracket:
        return a0, b0
    if not search_bracket:
        missing = "a0" if a0 is None else "b0"
        raise InvalidContractError(missing, None, "initial estimate required unless search_bracket is set")

    if a0 is None and b0 is None:
        if param_name != "volatility":
            raise InvalidContractError(
                "a0", None, f"an initial estimate is required to search a bracket for {param_name}"
            )
        spec = engine.contract
        guess = brenner_subrahmanyam_approximation(
            target_value, spec.spot, spec.strike, spec.time_to_expiry
        )
        logger.debug("Brenner-Subrahmanyam seed %.6g for target %.6g", guess, target_value)
        a0, b0 = guess / BRACKET_GROWTH, guess * BRACKET_GROWTH
    elif a0 is None or b0 is None:
        estimate = a0 if a0 is not None else b0
        a0, b0 = estimate / BRACKET_GROWTH, estimate

    return expand_bracket(residual_function(param_name, engine, target_value), a0, b0)


def calibrate(
    param_name: Optional[str],
    engine: ValuationEngine,
    target_value: float,
    a0: Optional[float] = None,
    b0: Optional[float] = None,
    tolerance: float = ROOT_TOLERANCE,
    max_iterations: int = ROOT_MAX_ITERATIONS,
    search_bracket: bool = False,
    check_bounds: bool = False,
) -> CalibrationResult:
    """
    Find the parameter value at which the engine reproduces ``target_value``.

    Args:
        param_name: Contract field to calibrate (None means volatility)
        engine: Valuation engine bound to the contract
        target_value: Quoted contract value
        a0, b0: Initial estimates bracketing the solution
        tolerance: Threshold on |model value - target|
        max_iterations: Root-finder iteration cap
        search_bracket: Widen (or, for volatility, derive) the estimates
            until they bracket the solution
        check_bounds: Reject targets outside the no-arbitrage bounds before
            solving

    Returns:
        CalibrationResult with the value, residual, iteration count and
        convergence flag

    Raises:
        EqualSignsError: If the estimates do not bracket the solution
        ArbitrageBoundsError: If ``check_bounds`` is set and the target
            violates the value bounds
        BracketSearchError: If the bracket search gives up
        InvalidContractError: For an unknown parameter or missing estimates

    Examples:
        >>> from option_calibration.core.black_scholes import ClosedFormEngine
        >>> from option_calibration.utils.types import ContractSpec
        >>> spec = ContractSpec(spot=100, strike=100, time_to_expiry=0.5, volatility=0.2, rate=0.07)
        >>> result = calibrate("volatility", ClosedFormEngine(spec), 10.13377, a0=0.2, b0=0.31)
        >>> round(result.value, 4)
        0.3
    """
    param_name = _resolve_param(param_name)

    if check_bounds:
        check = check_value_bounds(target_value, engine.contract)
        if not check.is_valid:
            raise ArbitrageBoundsError("; ".join(check.violations))

    a0, b0 = _initial_estimates(param_name, engine, target_value, a0, b0, search_bracket)
    f = residual_function(param_name, engine, target_value)
    root = brent_root(f, a0, b0, tolerance, max_iterations)

    if root.converged:
        message = f"Converged in {root.iterations} iterations"
    else:
        message = (
            f"Iteration cap {max_iterations} reached; "
            f"residual {root.residual:.3e} exceeds tolerance {tolerance:.1e}"
        )
    return CalibrationResult(
        value=root.root,
        param=param_name,
        residual=root.residual,
        iterations=root.iterations,
        engine=engine.name,
        converged=root.converged,
        message=message,
    )


def solve_for(
    param_name: Optional[str],
    engine: ValuationEngine,
    target_value: float,
    a0: float,
    b0: float,
    tolerance: float = ROOT_TOLERANCE,
    max_iterations: int = ROOT_MAX_ITERATIONS,
) -> float:
    """
    Return the calibrated parameter value (best estimate on non-convergence).

    Use ``calibrate`` to learn whether the tolerance was met.
    """
    return calibrate(param_name, engine, target_value, a0, b0, tolerance, max_iterations).value


# ===========================
# Batched calibration
# ===========================


def calibrate_batch(
    param_name: Optional[str],
    engine: ValuationEngine,
    targets,
    a0,
    b0,
    tolerance: float = ROOT_TOLERANCE,
    max_iterations: int = ROOT_MAX_ITERATIONS,
) -> BatchCalibrationResult:
    """
    Calibrate one parameter for every contract of a batched engine at once.

    Args:
        param_name: Contract field to calibrate (None means volatility)
        engine: Engine bound to a ``BatchContractSpec``, usually a
            ``VectorizedLatticeEngine``
        targets: Quoted values, one per contract (or a scalar)
        a0, b0: Initial estimates, scalars or one per contract

    Returns:
        BatchCalibrationResult with per-contract values and flags

    Raises:
        EqualSignsError: Listing the contracts whose estimates do not
            bracket their target
    """
    param_name = _resolve_param(param_name)
    targets = np.asarray(targets, dtype=float)
    f = residual_function(param_name, engine, targets)
    root = batched_brent_root(f, a0, b0, tolerance, max_iterations)

    failed = int(np.count_nonzero(~root.converged))
    if failed:
        message = f"{failed} of {root.converged.size} contracts did not converge"
    else:
        message = f"Converged in {root.iterations} iterations"
    return BatchCalibrationResult(
        values=root.root,
        param=param_name,
        residuals=root.residual,
        iterations=root.iterations,
        engine=engine.name,
        converged=root.converged,
        message=message,
    )


def solve_batch_for(
    param_name: Optional[str],
    engine: ValuationEngine,
    targets,
    a0,
    b0,
    tolerance: float = ROOT_TOLERANCE,
    max_iterations: int = ROOT_MAX_ITERATIONS,
) -> np.ndarray:
    """Array form of ``calibrate_batch``: the calibrated values only."""
    return calibrate_batch(param_name, engine, targets, a0, b0, tolerance, max_iterations).values
