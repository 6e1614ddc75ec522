"""
Model-free value bounds for single option contracts.

Any arbitrage-free price must lie between these bounds whatever the
volatility, so a quote outside them cannot be calibrated. Bounds depend on
option type and exercise style:

- European call: max(S·e^(-qT) - K·e^(-rT), 0) <= C <= S·e^(-qT)
- European put:  max(K·e^(-rT) - S·e^(-qT), 0) <= P <= K·e^(-rT)
- American call: max(S - K, S·e^(-qT) - K·e^(-rT), 0) <= C <= S
- American put:  max(K - S, K·e^(-rT) - S·e^(-qT), 0) <= P <= K
"""

import math

from option_calibration.utils.constants import ARBITRAGE_TOLERANCE
from option_calibration.utils.types import ArbitrageCheck, ContractSpec


def value_bounds(spec: ContractSpec) -> tuple[float, float]:
    """
    Lower and upper no-arbitrage bounds for ``spec``.

    Returns:
        Tuple (lower, upper)
    """
    discount_spot = spec.spot * math.exp(-spec.dividend_yield * spec.time_to_expiry)
    discount_strike = spec.strike * math.exp(-spec.rate * spec.time_to_expiry)

    if spec.option_type == "call":
        lower = max(discount_spot - discount_strike, 0.0)
        upper = discount_spot
        if spec.is_american:
            lower = max(lower, spec.spot - spec.strike)
            upper = spec.spot
    else:
        lower = max(discount_strike - discount_spot, 0.0)
        upper = discount_strike
        if spec.is_american:
            lower = max(lower, spec.strike - spec.spot)
            upper = spec.strike

    return lower, upper


def check_value_bounds(
    value: float,
    spec: ContractSpec,
    tolerance: float = ARBITRAGE_TOLERANCE,
) -> ArbitrageCheck:
    """
    Validate a contract value against its no-arbitrage bounds.

    Args:
        value: Observed or target option value
        spec: Contract the value refers to (its volatility is ignored)
        tolerance: Slack for floating point comparisons

    Returns:
        ArbitrageCheck; ``details`` holds the value and both bounds

    Examples:
        >>> spec = ContractSpec(spot=100, strike=100, time_to_expiry=0.5, volatility=0.3)
        >>> check_value_bounds(150.0, spec).is_valid
        False
    """
    lower, upper = value_bounds(spec)
    label = f"{spec.style.capitalize()} {spec.option_type}"

    violations = []
    if value < lower - tolerance:
        violations.append(f"{label} value {value:.4f} below lower bound {lower:.4f}")
    if value > upper + tolerance:
        violations.append(f"{label} value {value:.4f} above upper bound {upper:.4f}")

    details = {"value": value, "lower_bound": lower, "upper_bound": upper}
    return ArbitrageCheck(is_valid=not violations, violations=violations, details=details)
