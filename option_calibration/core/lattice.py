"""
Binomial-lattice engine for vanilla options.

Two node-placement schemes share one backward induction:

- ``leisen-reimer`` (default): up/down factors and the risk-neutral
  probability come from the Peizer-Pratt inversion of d1 and d2, so the
  price converges smoothly to Black-Scholes as the step count grows. The
  scheme is only defined for odd step counts.
- ``crr``: the Cox-Ross-Rubinstein tree, u = e^(σ√Δt), d = 1/u.

Nodes at a level are indexed by the number of down moves, so index 0 is the
all-up node. The factor helpers here are written against numpy and accept
scalars or arrays; the batched engine reuses them unchanged.
"""

import logging
from dataclasses import dataclass
from typing import Optional

import numpy as np

from option_calibration.core.distributions import peizer_pratt_inversion
from option_calibration.core.engine import OverridableEngine
from option_calibration.utils.constants import LATTICE_DEFAULT_STEPS, LATTICE_SCHEMES
from option_calibration.utils.errors import InvalidContractError
from option_calibration.utils.types import ContractSpec, ValuationResult

logger = logging.getLogger(__name__)


def validate_steps(steps: int, scheme: str) -> None:
    """
    Check a step count against a lattice scheme.

    Raises:
        InvalidContractError: If the scheme is unknown, ``steps`` is not a
            positive integer, or ``steps`` is even under Leisen-Reimer
    """
    if scheme not in LATTICE_SCHEMES:
        raise InvalidContractError("scheme", scheme, f"must be one of {LATTICE_SCHEMES}")
    if isinstance(steps, bool) or not isinstance(steps, (int, np.integer)):
        raise InvalidContractError("steps", steps, "must be an integer")
    if steps < 1:
        raise InvalidContractError("steps", steps, "must be positive")
    if scheme == "leisen-reimer" and steps % 2 == 0:
        raise InvalidContractError("steps", steps, "Leisen-Reimer requires an odd step count")


def lattice_factors(
    spot,
    strike,
    time_to_expiry,
    rate,
    dividend_yield,
    volatility,
    steps: int,
    scheme: str = "leisen-reimer",
):
    """
    Compute (up, down, probability, discount) for one lattice step.

    All contract arguments may be scalars or equal-shape arrays. Under
    Leisen-Reimer the probability saturates at exactly 0 or 1 when the
    inversion underflows; up/down are then NaN or infinite and the caller
    must fall back to ``forward_path_value``.

    Returns:
        Tuple of numpy arrays (up, down, probability, discount)
    """
    spot = np.asarray(spot, dtype=float)
    strike = np.asarray(strike, dtype=float)
    T = np.asarray(time_to_expiry, dtype=float)
    r = np.asarray(rate, dtype=float)
    q = np.asarray(dividend_yield, dtype=float)
    sigma = np.asarray(volatility, dtype=float)

    dt = T / steps
    growth = np.exp((r - q) * dt)
    discount = np.exp(-r * dt)

    if scheme == "crr":
        up = np.exp(sigma * np.sqrt(dt))
        down = 1.0 / up
        probability = (growth - down) / (up - down)
        return up, down, probability, discount

    diffusion = sigma * np.sqrt(T)
    d1 = (np.log(spot / strike) + (r - q + 0.5 * sigma * sigma) * T) / diffusion
    d2 = d1 - diffusion
    h1 = peizer_pratt_inversion(d1, steps)
    h2 = peizer_pratt_inversion(d2, steps)

    probability = h2
    with np.errstate(divide="ignore", invalid="ignore"):
        up = growth * h1 / h2
        down = (growth - probability * up) / (1.0 - probability)
    return up, down, probability, discount


def is_degenerate(up, down, probability) -> np.ndarray:
    """True where the tree collapses to a single deterministic path."""
    return ~(
        (probability > 0.0)
        & (probability < 1.0)
        & np.isfinite(up)
        & np.isfinite(down)
    )


def _log_power(base, exponent) -> np.ndarray:
    # exponent · log(base), with a zero exponent contributing nothing even for base 0
    return np.where(exponent == 0, 0.0, exponent * np.log(base))


def node_spots(spot, up, down, step: int) -> np.ndarray:
    """
    Underlying prices at every node of ``step``; last axis indexes down moves.

    Built in log space so that u^(n-i) overflowing and d^i underflowing never
    meet in one product. Nodes beyond the float range come out as inf or 0.
    """
    downs = np.arange(step + 1)
    spot = np.asarray(spot, dtype=float)[..., None]
    up = np.asarray(up, dtype=float)[..., None]
    down = np.asarray(down, dtype=float)[..., None]
    with np.errstate(divide="ignore", over="ignore", invalid="ignore"):
        log_spots = np.log(spot) + _log_power(up, step - downs) + _log_power(down, downs)
        return np.exp(log_spots)


def node_intrinsic(spot, strike, up, down, step: int, sign, per_unit_spot=False) -> np.ndarray:
    """
    Immediate-exercise value ω·(S_node - K) at every node of ``step``.

    With ``per_unit_spot`` the value is expressed per unit of node spot,
    ω·(1 - K/S_node), which stays bounded where S_node overflows. ``strike``,
    ``sign`` and ``per_unit_spot`` must broadcast against the node axis.
    """
    spots = node_spots(spot, up, down, step)
    with np.errstate(divide="ignore", over="ignore", invalid="ignore"):
        scaled = sign * (1.0 - strike / spots)
        plain = sign * (spots - strike)
    return np.where(per_unit_spot, scaled, plain)


def forward_path_value(
    spot,
    strike,
    time_to_expiry,
    rate,
    dividend_yield,
    type_sign,
    american,
    steps: int,
):
    """
    Value of a contract whose underlying follows its forward deterministically.

    European: discounted intrinsic at expiry. American: the best discounted
    intrinsic over the ``steps + 1`` exercise dates.
    """
    spot = np.asarray(spot, dtype=float)[..., None]
    strike = np.asarray(strike, dtype=float)[..., None]
    T = np.asarray(time_to_expiry, dtype=float)[..., None]
    r = np.asarray(rate, dtype=float)[..., None]
    q = np.asarray(dividend_yield, dtype=float)[..., None]
    sign = np.asarray(type_sign, dtype=float)[..., None]

    times = T * np.arange(steps + 1) / steps
    forwards = spot * np.exp((r - q) * times)
    discounted = np.exp(-r * times) * np.maximum(sign * (forwards - strike), 0.0)
    return np.where(np.asarray(american), discounted.max(axis=-1), discounted[..., -1])


@dataclass(frozen=True)
class LatticeParameters:
    """
    Per-step lattice quantities derived from a contract.

    Attributes:
        steps: Number of time steps n
        up: Up factor u
        down: Down factor d
        probability: Risk-neutral up probability p
        discount: One-step discount factor e^(-rΔt)
    """

    steps: int
    up: float
    down: float
    probability: float
    discount: float

    @property
    def degenerate(self) -> bool:
        return bool(is_degenerate(self.up, self.down, self.probability))


def lattice_parameters(
    spec: ContractSpec,
    steps: int,
    scheme: str = "leisen-reimer",
) -> LatticeParameters:
    """
    Derive the lattice for ``spec``.

    Raises:
        InvalidContractError: For invalid step counts, or a CRR tree whose
            probability leaves [0, 1]
    """
    validate_steps(steps, scheme)
    up, down, probability, discount = lattice_factors(
        spec.spot,
        spec.strike,
        spec.time_to_expiry,
        spec.rate,
        spec.dividend_yield,
        spec.volatility,
        steps,
        scheme,
    )
    if scheme == "crr" and not 0.0 <= probability <= 1.0:
        raise InvalidContractError(
            "steps", steps, "CRR risk-neutral probability outside [0, 1]; increase steps"
        )
    return LatticeParameters(
        steps=steps,
        up=float(up),
        down=float(down),
        probability=float(probability),
        discount=float(discount),
    )


def lattice_valuation(
    spec: ContractSpec,
    steps: int = LATTICE_DEFAULT_STEPS,
    scheme: str = "leisen-reimer",
) -> ValuationResult:
    """
    Price a contract by backward induction on a binomial tree.

    At the terminal level every node holds the intrinsic payoff
    max(ω·(S·u^(n-i)·d^i - K), 0). Each earlier node takes the discounted
    expectation of its two children; American contracts then take the max
    against immediate exercise. Call values are carried divided by the node
    spot, which keeps them bounded when u^n exceeds the float range at high
    volatility and many steps.

    Delta and gamma are finite differences over the levels one and two
    steps from the root (gamma needs n >= 2).

    Raises:
        InvalidContractError: For invalid step counts, or if the tree still
            produces a non-finite value
        RuntimeError: If induction does not collapse to a single root value
    """
    params = lattice_parameters(spec, steps, scheme)
    if params.degenerate:
        logger.debug("Degenerate lattice for %s, using forward path value", spec)
        value = forward_path_value(
            spec.spot,
            spec.strike,
            spec.time_to_expiry,
            spec.rate,
            spec.dividend_yield,
            spec.type_sign,
            spec.is_american,
            steps,
        )
        return ValuationResult(price=float(value))

    sign = spec.type_sign
    u, d, p, disc = params.up, params.down, params.probability, params.discount
    # Calls are carried per unit of node spot; their top nodes can overflow.
    per_unit_spot = sign > 0
    if per_unit_spot:
        up_weight, down_weight = disc * p * u, disc * (1.0 - p) * d
    else:
        up_weight, down_weight = disc * p, disc * (1.0 - p)

    def intrinsic(step: int) -> np.ndarray:
        return node_intrinsic(spec.spot, spec.strike, u, d, step, sign, per_unit_spot)

    values = np.maximum(intrinsic(steps), 0.0)
    level1: Optional[np.ndarray] = None
    level2: Optional[np.ndarray] = None
    for step in range(steps - 1, -1, -1):
        level2, level1 = level1, values
        values = up_weight * values[:-1] + down_weight * values[1:]
        if spec.is_american:
            values = np.maximum(values, intrinsic(step))

    if values.shape != (1,):
        raise RuntimeError(f"Backward induction left {values.size} values at the root")

    if per_unit_spot:
        values = values * spec.spot
        level1 = level1 * node_spots(spec.spot, u, d, 1)
        if level2 is not None:
            level2 = level2 * node_spots(spec.spot, u, d, 2)

    price = float(values[0])
    if not np.isfinite(price):
        raise InvalidContractError(
            "volatility", spec.volatility, f"lattice value is not finite with {steps} steps"
        )

    gamma = None
    spot_up, spot_down = spec.spot * u, spec.spot * d
    delta = float((level1[0] - level1[1]) / (spot_up - spot_down))
    if level2 is not None:
        spot_uu, spot_ud, spot_dd = spot_up * u, spot_up * d, spot_down * d
        delta_up = (level2[0] - level2[1]) / (spot_uu - spot_ud)
        delta_down = (level2[1] - level2[2]) / (spot_ud - spot_dd)
        gamma = float((delta_up - delta_down) / (0.5 * (spot_uu - spot_dd)))

    return ValuationResult(price=price, delta=delta, gamma=gamma)


@dataclass(frozen=True)
class LatticeEngine(OverridableEngine):
    """
    Binomial-tree engine bound to one contract.

    Supports American and European exercise through ``contract.style``.
    """

    contract: ContractSpec
    steps: int = LATTICE_DEFAULT_STEPS
    scheme: str = "leisen-reimer"
    name = "lattice"

    def __post_init__(self) -> None:
        validate_steps(self.steps, self.scheme)

    def price(self) -> ValuationResult:
        return lattice_valuation(self.contract, self.steps, self.scheme)
