"""
Vectorized binomial-lattice engine for batches of contracts.

Runs the same backward induction as ``core.lattice`` for a whole
``BatchContractSpec`` at once. Node values are held in a (batch, nodes)
array; each induction step weights neighbouring children with a per-contract
2-tap kernel [disc·p, disc·(1-p)] over a sliding window of the node axis
(call rows, carried per unit of node spot, use [disc·p·u, disc·(1-p)·d]), and
early exercise is an elementwise selection instead of a per-node branch.

``dtype`` selects the numeric type of the induction. float64 matches the
scalar engine to rounding error; float32 halves memory traffic at the cost
of roughly seven significant digits.
"""

import logging
from dataclasses import dataclass
from typing import Any

import numpy as np
from numpy.lib.stride_tricks import sliding_window_view

from option_calibration.core.engine import OverridableEngine
from option_calibration.core.lattice import (
    forward_path_value,
    is_degenerate,
    lattice_factors,
    node_intrinsic,
    node_spots,
    validate_steps,
)
from option_calibration.utils.constants import LATTICE_DEFAULT_STEPS
from option_calibration.utils.errors import InvalidContractError
from option_calibration.utils.types import BatchContractSpec, BatchValuationResult

logger = logging.getLogger(__name__)


def _validate_dtype(dtype: Any) -> np.dtype:
    try:
        resolved = np.dtype(dtype)
    except TypeError:
        raise InvalidContractError("dtype", dtype, "not a numpy dtype") from None
    if resolved.kind != "f":
        raise InvalidContractError("dtype", dtype, "must be a floating point type")
    return resolved


def batched_lattice_valuation(
    batch: BatchContractSpec,
    steps: int = LATTICE_DEFAULT_STEPS,
    scheme: str = "leisen-reimer",
    dtype: Any = np.float64,
) -> BatchValuationResult:
    """
    Price every contract in ``batch`` on its own binomial tree.

    All trees share the step count; every other input (including type and
    style) may differ per element. Elements whose tree is degenerate get the
    deterministic forward-path value and NaN Greeks. An element whose tree
    still yields a non-finite value is priced NaN, never inf.

    Returns:
        BatchValuationResult with price, delta and gamma arrays (gamma is
        None when ``steps`` is 1)

    Raises:
        InvalidContractError: For invalid steps/scheme/dtype, or a CRR tree
            whose probability leaves [0, 1] for some element
    """
    validate_steps(steps, scheme)
    dtype = _validate_dtype(dtype)

    up, down, probability, discount = lattice_factors(
        batch.spot,
        batch.strike,
        batch.time_to_expiry,
        batch.rate,
        batch.dividend_yield,
        batch.volatility,
        steps,
        scheme,
    )
    if scheme == "crr":
        bad = (probability < 0.0) | (probability > 1.0)
        if bad.any():
            raise InvalidContractError(
                "steps", steps, f"CRR probability outside [0, 1] for elements {np.flatnonzero(bad).tolist()}"
            )

    degenerate = is_degenerate(up, down, probability)
    if degenerate.any():
        logger.debug(
            "Degenerate lattice for batch elements %s, using forward path value",
            np.flatnonzero(degenerate).tolist(),
        )
    # Neutral factors keep degenerate rows finite; their values are replaced below.
    up = np.where(degenerate, 1.0, up)
    down = np.where(degenerate, 1.0, down)
    probability = np.where(degenerate, 0.5, probability)

    sign = batch.type_sign[:, None]
    strike = batch.strike[:, None]
    american = batch.is_american[:, None]
    any_american = bool(american.any())
    # Call rows are carried per unit of node spot; their top nodes can overflow.
    per_unit_spot = sign > 0
    up_tap = discount * probability * np.where(per_unit_spot[:, 0], up, 1.0)
    down_tap = discount * (1.0 - probability) * np.where(per_unit_spot[:, 0], down, 1.0)
    taps = np.stack([up_tap, down_tap], axis=1).astype(dtype)

    def intrinsic(step: int) -> np.ndarray:
        return node_intrinsic(batch.spot, strike, up, down, step, sign, per_unit_spot).astype(dtype)

    values = np.maximum(intrinsic(steps), 0.0)
    level1 = level2 = None
    for step in range(steps - 1, -1, -1):
        level2, level1 = level1, values
        windows = sliding_window_view(values, 2, axis=1)
        values = np.einsum("bnk,bk->bn", windows, taps)
        if any_american:
            values = np.where(american, np.maximum(values, intrinsic(step)), values)

    if values.shape[1] != 1:
        raise RuntimeError(f"Backward induction left {values.shape[1]} values per root")

    def to_value(level: np.ndarray, step: int) -> np.ndarray:
        spots = node_spots(batch.spot, up, down, step)
        return np.where(per_unit_spot, level * spots, level).astype(dtype)

    values = to_value(values, 0)
    level1 = to_value(level1, 1)
    if level2 is not None:
        level2 = to_value(level2, 2)

    spot_up, spot_down = batch.spot * up, batch.spot * down
    with np.errstate(divide="ignore", invalid="ignore"):
        delta = (level1[:, 0] - level1[:, 1]) / (spot_up - spot_down)
        gamma = None
        if level2 is not None:
            spot_uu, spot_ud, spot_dd = spot_up * up, spot_up * down, spot_down * down
            delta_up = (level2[:, 0] - level2[:, 1]) / (spot_uu - spot_ud)
            delta_down = (level2[:, 1] - level2[:, 2]) / (spot_ud - spot_dd)
            gamma = (delta_up - delta_down) / (0.5 * (spot_uu - spot_dd))

    price = values[:, 0]
    if degenerate.any():
        fallback = forward_path_value(
            batch.spot,
            batch.strike,
            batch.time_to_expiry,
            batch.rate,
            batch.dividend_yield,
            batch.type_sign,
            batch.is_american,
            steps,
        )
        price = np.where(degenerate, fallback, price).astype(dtype)
        delta = np.where(degenerate, np.nan, delta)
        if gamma is not None:
            gamma = np.where(degenerate, np.nan, gamma)

    overflow = ~np.isfinite(price)
    if overflow.any():
        logger.debug("Non-finite lattice value for batch elements %s", np.flatnonzero(overflow).tolist())
        price = np.where(overflow, np.nan, price).astype(dtype)

    return BatchValuationResult(price=price, delta=delta, gamma=gamma)


@dataclass(frozen=True, eq=False)
class VectorizedLatticeEngine(OverridableEngine):
    """Binomial-tree engine bound to a batch of contracts."""

    contract: BatchContractSpec
    steps: int = LATTICE_DEFAULT_STEPS
    scheme: str = "leisen-reimer"
    dtype: Any = np.float64
    name = "vectorized-lattice"

    def __post_init__(self) -> None:
        validate_steps(self.steps, self.scheme)
        _validate_dtype(self.dtype)

    def price(self) -> BatchValuationResult:
        return batched_lattice_valuation(self.contract, self.steps, self.scheme, self.dtype)
