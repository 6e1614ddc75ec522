"""
Black-Scholes closed-form engine with continuous dividend yield.

This module implements the Black-Scholes-Merton formula for European
options and its closed-form Greeks, both as plain functions of the usual
(S, K, T, r, sigma, q) arguments and as a ``ClosedFormEngine`` bound to an
immutable ``ContractSpec``.

The price is written with a type sign ω (+1 call, -1 put) applied
symmetrically to both terms:

    V = ω · [S·e^(-qT)·N(ω·d1) - K·e^(-rT)·N(ω·d2)]

References:
    Black, F., & Scholes, M. (1973). The Pricing of Options and Corporate Liabilities.
    Journal of Political Economy, 81(3), 637-654.
"""

import math
from dataclasses import dataclass

from option_calibration.core.distributions import normal_cdf, normal_pdf
from option_calibration.core.engine import OverridableEngine
from option_calibration.utils.constants import DAYS_PER_YEAR
from option_calibration.utils.errors import InvalidContractError
from option_calibration.utils.types import ContractSpec, Greeks, OptionType, ValuationResult


def _validate_inputs(S: float, K: float, T: float, sigma: float) -> None:
    """
    Reject inputs for which d1/d2 are undefined.

    Raises:
        InvalidContractError: If S, K, T or sigma is not strictly positive
    """
    if S <= 0:
        raise InvalidContractError("spot", S, "must be positive")
    if K <= 0:
        raise InvalidContractError("strike", K, "must be positive")
    if T <= 0:
        raise InvalidContractError("time_to_expiry", T, "must be positive")
    if sigma <= 0:
        raise InvalidContractError("volatility", sigma, "must be positive")


def _type_sign(option_type: OptionType) -> int:
    if option_type == "call":
        return 1
    if option_type == "put":
        return -1
    raise InvalidContractError("option_type", option_type, "must be 'call' or 'put'")


def d1(S: float, K: float, T: float, r: float, sigma: float, q: float) -> float:
    """
    Calculate d1 parameter in Black-Scholes formula.

    Formula:
        d1 = [ln(S/K) + (r - q + σ²/2)T] / (σ√T)

    Notes:
        Uses log(S) - log(K) to avoid overflow for extreme S/K.
    """
    _validate_inputs(S, K, T, sigma)

    log_moneyness = math.log(S) - math.log(K)
    drift = (r - q + 0.5 * sigma * sigma) * T
    diffusion = sigma * math.sqrt(T)

    return (log_moneyness + drift) / diffusion


def d2(S: float, K: float, T: float, r: float, sigma: float, q: float) -> float:
    """
    Calculate d2 = d1 - σ√T.

    For a call, N(d2) is the risk-neutral probability of exercise.
    """
    return d1(S, K, T, r, sigma, q) - sigma * math.sqrt(T)


def black_scholes_price(
    S: float,
    K: float,
    T: float,
    r: float,
    sigma: float,
    q: float = 0.0,
    option_type: OptionType = "call",
) -> float:
    """
    Calculate European option price (call or put).

    Args:
        S: Current spot price
        K: Strike price
        T: Time to expiration in years
        r: Risk-free interest rate (annualized, continuous)
        sigma: Volatility (annualized standard deviation)
        q: Continuous dividend yield, default 0.0
        option_type: "call" or "put"

    Returns:
        Option price

    Raises:
        InvalidContractError: If T or sigma is not positive, or the
            option type is unknown
    """
    sign = _type_sign(option_type)
    d1_value = d1(S, K, T, r, sigma, q)
    d2_value = d1_value - sigma * math.sqrt(T)

    discount_spot = S * math.exp(-q * T)
    discount_strike = K * math.exp(-r * T)

    return sign * (
        discount_spot * normal_cdf(sign * d1_value)
        - discount_strike * normal_cdf(sign * d2_value)
    )


def black_scholes_call(
    S: float, K: float, T: float, r: float, sigma: float, q: float = 0.0
) -> float:
    """
    European call price: C = S·e^(-qT)·N(d1) - K·e^(-rT)·N(d2).

    Examples:
        >>> price = black_scholes_call(100, 100, 0.5, 0.07, 0.30)
        >>> round(price, 5)
        10.13377
    """
    return black_scholes_price(S, K, T, r, sigma, q, "call")


def black_scholes_put(
    S: float, K: float, T: float, r: float, sigma: float, q: float = 0.0
) -> float:
    """European put price: P = K·e^(-rT)·N(-d2) - S·e^(-qT)·N(-d1)."""
    return black_scholes_price(S, K, T, r, sigma, q, "put")


# ===========================
# Greeks Calculations
# ===========================


def delta(
    S: float,
    K: float,
    T: float,
    r: float,
    sigma: float,
    q: float = 0.0,
    option_type: OptionType = "call",
) -> float:
    """
    Option delta (∂V/∂S).

    Formula:
        Δ = ω · e^(-qT) · N(ω·d1)
    """
    sign = _type_sign(option_type)
    d1_value = d1(S, K, T, r, sigma, q)
    return sign * math.exp(-q * T) * normal_cdf(sign * d1_value)


def gamma(S: float, K: float, T: float, r: float, sigma: float, q: float = 0.0) -> float:
    """
    Option gamma (∂²V/∂S²), identical for calls and puts.

    Formula:
        Γ = e^(-qT) · φ(d1) / (S · σ · √T)
    """
    d1_value = d1(S, K, T, r, sigma, q)
    return math.exp(-q * T) * normal_pdf(d1_value) / (S * sigma * math.sqrt(T))


def vega(S: float, K: float, T: float, r: float, sigma: float, q: float = 0.0) -> float:
    """
    Option vega (∂V/∂σ) per unit of volatility, identical for calls and puts.

    Formula:
        ν = S · e^(-qT) · √T · φ(d1)
    """
    d1_value = d1(S, K, T, r, sigma, q)
    return S * math.exp(-q * T) * math.sqrt(T) * normal_pdf(d1_value)


def theta(
    S: float,
    K: float,
    T: float,
    r: float,
    sigma: float,
    q: float = 0.0,
    option_type: OptionType = "call",
) -> float:
    """
    Option theta, reported per calendar day.

    Formula (annualized, ω the type sign):
        Θ = -S·σ·e^(-qT)·φ(d1)/(2√T) - ω·r·K·e^(-rT)·N(ω·d2) + ω·q·S·e^(-qT)·N(ω·d1)
    """
    sign = _type_sign(option_type)
    d1_value = d1(S, K, T, r, sigma, q)
    d2_value = d1_value - sigma * math.sqrt(T)

    discount_spot = math.exp(-q * T)
    discount_strike = math.exp(-r * T)

    diffusion = -(S * sigma * discount_spot * normal_pdf(d1_value)) / (2.0 * math.sqrt(T))
    carry = -sign * r * K * discount_strike * normal_cdf(sign * d2_value)
    dividend = sign * q * S * discount_spot * normal_cdf(sign * d1_value)

    return (diffusion + carry + dividend) / DAYS_PER_YEAR


def rho(
    S: float,
    K: float,
    T: float,
    r: float,
    sigma: float,
    q: float = 0.0,
    option_type: OptionType = "call",
) -> float:
    """
    Option rho (∂V/∂r) per unit of rate.

    Formula:
        ρ = ω · K · T · e^(-rT) · N(ω·d2)
    """
    sign = _type_sign(option_type)
    d2_value = d2(S, K, T, r, sigma, q)
    return sign * K * T * math.exp(-r * T) * normal_cdf(sign * d2_value)


def calculate_greeks(
    S: float,
    K: float,
    T: float,
    r: float,
    sigma: float,
    q: float = 0.0,
    option_type: OptionType = "call",
) -> Greeks:
    """Calculate delta, gamma, vega, theta and rho in one call."""
    return Greeks(
        delta=delta(S, K, T, r, sigma, q, option_type),
        gamma=gamma(S, K, T, r, sigma, q),
        vega=vega(S, K, T, r, sigma, q),
        theta=theta(S, K, T, r, sigma, q, option_type),
        rho=rho(S, K, T, r, sigma, q, option_type),
    )


def black_scholes_valuation(spec: ContractSpec) -> ValuationResult:
    """
    Price a contract and compute all closed-form Greeks.

    The exercise style is ignored: the formula is European by construction.
    """
    args = (
        spec.spot,
        spec.strike,
        spec.time_to_expiry,
        spec.rate,
        spec.volatility,
        spec.dividend_yield,
    )
    greeks = calculate_greeks(*args, spec.option_type)
    return ValuationResult(
        price=black_scholes_price(*args, spec.option_type),
        delta=greeks.delta,
        gamma=greeks.gamma,
        vega=greeks.vega,
        theta=greeks.theta,
        rho=greeks.rho,
    )


@dataclass(frozen=True)
class ClosedFormEngine(OverridableEngine):
    """Black-Scholes engine bound to one contract."""

    contract: ContractSpec
    name = "closed-form"

    def price(self) -> ValuationResult:
        return black_scholes_valuation(self.contract)
