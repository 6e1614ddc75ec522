"""
Statistical distributions with numerical safeguards.

This module provides the standard normal CDF and PDF used by the closed-form
engine, and the Peizer-Pratt inversion that places Leisen-Reimer lattice
probabilities. The inversion accepts scalars or numpy arrays.
"""

import math

import numpy as np
from scipy.stats import norm

from option_calibration.utils.constants import MAX_STANDARD_DEVIATIONS


def normal_cdf(x: float) -> float:
    """
    Standard normal cumulative distribution function with bounds clamping.

    For |x| > 8, the CDF is effectively 0 (x < -8) or 1 (x > 8) due to
    floating point precision limits.

    Examples:
        >>> normal_cdf(0.0)
        0.5
        >>> normal_cdf(10.0)
        1.0
    """
    if x > MAX_STANDARD_DEVIATIONS:
        return 1.0
    if x < -MAX_STANDARD_DEVIATIONS:
        return 0.0

    return float(norm.cdf(x))


def normal_pdf(x: float) -> float:
    """
    Standard normal probability density function with overflow protection.

    For |x| > 10 the density is below 2e-22 and returned as zero.

    Notes:
        φ(x) = (1/√(2π)) * exp(-x²/2)
    """
    if abs(x) > 10.0:
        return 0.0

    return (1.0 / math.sqrt(2.0 * math.pi)) * math.exp(-0.5 * x * x)


def peizer_pratt_inversion(z, steps: int):
    """
    Peizer-Pratt method 2 inversion of the normal CDF.

    Maps a standardized distance ``z`` (d1 or d2 of the Black-Scholes
    formula) to the binomial probability that reproduces Φ(z) on an
    ``steps``-step tree:

        h(z) = 1/2 + sign(z) · √(1/4 − 1/4 · exp(−(z / (n + 1/3 + 0.1/(n+1)))² · (n + 1/6)))

    Args:
        z: Scalar or array of standardized distances
        steps: Number of lattice steps n (odd for Leisen-Reimer)

    Returns:
        Probability in [0, 1], same shape as ``z``

    Notes:
        For |z| large relative to n the exponential underflows and the
        result saturates at exactly 0 or 1; callers must treat that case as
        a degenerate (deterministic) lattice.

    Reference:
        Leisen, D. P. J., & Reimer, M. (1996). Binomial models for option
        valuation - examining and improving convergence. Applied
        Mathematical Finance, 3(4), 319-346.
    """
    z = np.asarray(z, dtype=float)
    scale = steps + 1.0 / 3.0 + 0.1 / (steps + 1.0)
    exponent = -np.square(z / scale) * (steps + 1.0 / 6.0)
    spread = np.sqrt(np.maximum(0.25 - 0.25 * np.exp(exponent), 0.0))
    return 0.5 + np.sign(z) * spread
