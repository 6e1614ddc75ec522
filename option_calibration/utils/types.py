"""
Data types and structures for option valuation and calibration.

This module defines the immutable contract specifications consumed by the
valuation engines (scalar and batched), the valuation results they produce,
and the result records returned by the root finder and calibration solver.
"""

import dataclasses
import math
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Literal, Optional

import numpy as np

from option_calibration.utils.constants import SECONDS_PER_YEAR
from option_calibration.utils.errors import InvalidContractError

OptionType = Literal["call", "put"]
ExerciseStyle = Literal["european", "american"]

_OPTION_TYPE_ALIASES = {"call": "call", "c": "call", "put": "put", "p": "put"}
_STYLE_ALIASES = {"european": "european", "american": "american"}


def normalize_option_type(option_type: Any) -> Any:
    """Map 'call'/'put'/'C'/'P' (any case) to 'call'/'put'; pass anything else through."""
    if isinstance(option_type, str):
        return _OPTION_TYPE_ALIASES.get(option_type.strip().lower(), option_type)
    return option_type


def normalize_style(style: Any) -> Any:
    """Map exercise-style tokens to 'european'/'american'; pass anything else through."""
    if isinstance(style, str):
        return _STYLE_ALIASES.get(style.strip().lower(), style)
    return style


def _coerce_float(field: str, value: Any) -> float:
    try:
        return float(value)
    except (TypeError, ValueError):
        raise InvalidContractError(field, value, "must be a real number") from None


@dataclass(frozen=True)
class ContractSpec:
    """
    Immutable specification of one vanilla option contract.

    Attributes:
        spot: Current price of the underlying
        strike: Strike price
        time_to_expiry: Year fraction until expiry
        volatility: Annualized volatility (decimal)
        rate: Risk-free rate (annualized, continuous compounding)
        dividend_yield: Continuous dividend/borrow yield (annualized)
        option_type: "call" or "put"
        style: "european" or "american"

    Use ``replace(**changes)`` to derive a new contract; the original is
    never modified.
    """

    spot: float
    strike: float
    time_to_expiry: float
    volatility: float
    rate: float = 0.0
    dividend_yield: float = 0.0
    option_type: OptionType = "call"
    style: ExerciseStyle = "european"

    def __post_init__(self) -> None:
        for name in ("spot", "strike", "time_to_expiry", "volatility", "rate", "dividend_yield"):
            object.__setattr__(self, name, _coerce_float(name, getattr(self, name)))
        object.__setattr__(self, "option_type", normalize_option_type(self.option_type))
        object.__setattr__(self, "style", normalize_style(self.style))
        self.validate()

    @classmethod
    def from_dates(
        cls,
        expiry: datetime,
        valuation_time: datetime,
        **fields: Any,
    ) -> "ContractSpec":
        """
        Build a contract whose time to expiry is derived from two timestamps.

        The year fraction is elapsed seconds divided by a 365-day year.

        Example:
            >>> from datetime import timedelta
            >>> start = datetime(2000, 1, 1)
            >>> spec = ContractSpec.from_dates(
            ...     expiry=start + timedelta(hours=365 * 12),
            ...     valuation_time=start,
            ...     spot=100, strike=100, volatility=0.3,
            ... )
            >>> spec.time_to_expiry
            0.5
        """
        elapsed = (expiry - valuation_time).total_seconds()
        return cls(time_to_expiry=elapsed / SECONDS_PER_YEAR, **fields)

    def validate(self) -> None:
        """
        Check every field, in declaration order.

        Raises:
            InvalidContractError: Naming the first invalid field
        """
        for name in ("spot", "strike", "time_to_expiry", "volatility"):
            value = getattr(self, name)
            if not math.isfinite(value) or value <= 0:
                raise InvalidContractError(name, value, "must be positive and finite")
        for name in ("rate", "dividend_yield"):
            value = getattr(self, name)
            if not math.isfinite(value):
                raise InvalidContractError(name, value, "must be finite")
        if self.option_type not in ("call", "put"):
            raise InvalidContractError("option_type", self.option_type, "must be 'call' or 'put'")
        if self.style not in ("european", "american"):
            raise InvalidContractError("style", self.style, "must be 'european' or 'american'")

    def replace(self, **changes: Any) -> "ContractSpec":
        """Return a copy with the given fields overridden (re-validated)."""
        return dataclasses.replace(self, **changes)

    @property
    def type_sign(self) -> int:
        """+1 for calls, -1 for puts."""
        return 1 if self.option_type == "call" else -1

    @property
    def is_american(self) -> bool:
        return self.style == "american"


_BATCH_NUMERIC_FIELDS = (
    "spot",
    "strike",
    "time_to_expiry",
    "volatility",
    "rate",
    "dividend_yield",
)


@dataclass(frozen=True, eq=False)
class BatchContractSpec:
    """
    A batch of independent contracts stored field-by-field as arrays.

    Every field accepts a scalar or a 1-D sequence; all fields are broadcast
    to one common length. ``option_type`` and ``style`` may also vary per
    element.
    """

    spot: Any
    strike: Any
    time_to_expiry: Any
    volatility: Any
    rate: Any = 0.0
    dividend_yield: Any = 0.0
    option_type: Any = "call"
    style: Any = "european"

    def __post_init__(self) -> None:
        numeric = {}
        for name in _BATCH_NUMERIC_FIELDS:
            try:
                numeric[name] = np.atleast_1d(np.asarray(getattr(self, name), dtype=np.float64))
            except (TypeError, ValueError):
                raise InvalidContractError(name, getattr(self, name), "must be numeric") from None
        types = np.atleast_1d(np.asarray(self.option_type, dtype=object))
        styles = np.atleast_1d(np.asarray(self.style, dtype=object))

        arrays = list(numeric.values()) + [types, styles]
        for name, array in zip(list(numeric) + ["option_type", "style"], arrays):
            if array.ndim != 1:
                raise InvalidContractError(name, array.shape, "batch fields must be 1-D")
        try:
            shape = np.broadcast_shapes(*(array.shape for array in arrays))
        except ValueError:
            raise InvalidContractError(
                "batch", [array.shape for array in arrays], "field lengths do not broadcast"
            ) from None

        for name, array in numeric.items():
            object.__setattr__(self, name, np.broadcast_to(array, shape).copy())
        object.__setattr__(
            self,
            "option_type",
            np.array([normalize_option_type(t) for t in np.broadcast_to(types, shape)], dtype=object),
        )
        object.__setattr__(
            self,
            "style",
            np.array([normalize_style(s) for s in np.broadcast_to(styles, shape)], dtype=object),
        )
        self.validate()

    @classmethod
    def from_contracts(cls, contracts: list[ContractSpec]) -> "BatchContractSpec":
        """Stack scalar contracts into one batch."""
        if not contracts:
            raise InvalidContractError("contracts", contracts, "batch must not be empty")
        fields = {
            field.name: [getattr(contract, field.name) for contract in contracts]
            for field in dataclasses.fields(ContractSpec)
        }
        return cls(**fields)

    def validate(self) -> None:
        """
        Elementwise validation, in declaration order.

        Raises:
            InvalidContractError: Naming the first invalid field and element
        """
        for name in ("spot", "strike", "time_to_expiry", "volatility"):
            values = getattr(self, name)
            bad = ~(np.isfinite(values) & (values > 0))
            if bad.any():
                index = int(np.flatnonzero(bad)[0])
                raise InvalidContractError(
                    f"{name}[{index}]", float(values[index]), "must be positive and finite"
                )
        for name in ("rate", "dividend_yield"):
            values = getattr(self, name)
            bad = ~np.isfinite(values)
            if bad.any():
                index = int(np.flatnonzero(bad)[0])
                raise InvalidContractError(f"{name}[{index}]", float(values[index]), "must be finite")
        for index, token in enumerate(self.option_type):
            if token not in ("call", "put"):
                raise InvalidContractError(f"option_type[{index}]", token, "must be 'call' or 'put'")
        for index, token in enumerate(self.style):
            if token not in ("european", "american"):
                raise InvalidContractError(
                    f"style[{index}]", token, "must be 'european' or 'american'"
                )

    def replace(self, **changes: Any) -> "BatchContractSpec":
        """Return a copy with the given fields overridden (re-validated)."""
        return dataclasses.replace(self, **changes)

    def contract(self, index: int) -> ContractSpec:
        """Extract element ``index`` as a scalar ContractSpec."""
        return ContractSpec(
            **{name: float(getattr(self, name)[index]) for name in _BATCH_NUMERIC_FIELDS},
            option_type=self.option_type[index],
            style=self.style[index],
        )

    @property
    def size(self) -> int:
        return int(self.spot.shape[0])

    @property
    def type_sign(self) -> np.ndarray:
        """+1.0 for calls, -1.0 for puts, per element."""
        return np.where(self.option_type == "call", 1.0, -1.0)

    @property
    def is_american(self) -> np.ndarray:
        return self.style == "american"


@dataclass(frozen=True)
class ValuationResult:
    """
    Output of one valuation.

    Greeks that an engine does not define are left as None. Vega and rho are
    per unit change of volatility/rate; theta is per calendar day.
    """

    price: float
    delta: Optional[float] = None
    gamma: Optional[float] = None
    vega: Optional[float] = None
    theta: Optional[float] = None
    rho: Optional[float] = None


@dataclass(frozen=True, eq=False)
class BatchValuationResult:
    """Output of a batched valuation; every field is an array over the batch."""

    price: np.ndarray
    delta: Optional[np.ndarray] = None
    gamma: Optional[np.ndarray] = None


@dataclass
class Greeks:
    """
    Container for option Greeks.

    Attributes:
        delta: ∂V/∂S
        gamma: ∂²V/∂S²
        vega: ∂V/∂σ, per unit volatility
        theta: ∂V/∂t, per calendar day
        rho: ∂V/∂r, per unit rate
    """

    delta: float
    gamma: float
    vega: float
    theta: float
    rho: float


@dataclass(frozen=True)
class RootResult:
    """
    Outcome of a scalar root search.

    Attributes:
        root: Best estimate b_k on termination
        residual: f(root)
        iterations: Iterations performed
        converged: Whether |residual| reached the tolerance
    """

    root: float
    residual: float
    iterations: int
    converged: bool


@dataclass(frozen=True, eq=False)
class BatchRootResult:
    """Outcome of a batched root search; ``iterations`` counts whole-batch passes."""

    root: np.ndarray
    residual: np.ndarray
    iterations: int
    converged: np.ndarray

    @property
    def all_converged(self) -> bool:
        return bool(np.all(self.converged))


@dataclass
class CalibrationResult:
    """
    Result from calibrating one contract parameter.

    Attributes:
        value: Calibrated parameter value
        param: Name of the calibrated contract field
        residual: Model price minus target at ``value``
        iterations: Root-finder iterations used
        engine: Name of the valuation engine
        converged: Whether the residual met the tolerance
        message: Additional information about convergence
    """

    value: float
    param: str
    residual: float
    iterations: int
    engine: str
    converged: bool
    message: str = ""


@dataclass(eq=False)
class BatchCalibrationResult:
    """Result from calibrating one parameter across a batch of contracts."""

    values: np.ndarray
    param: str
    residuals: np.ndarray
    iterations: int
    engine: str
    converged: np.ndarray
    message: str = ""


@dataclass
class ArbitrageCheck:
    """
    Result from arbitrage validation.

    Attributes:
        is_valid: Whether the value satisfies no-arbitrage conditions
        violations: List of specific violations detected
        details: Bounds and value used in the check
    """

    is_valid: bool
    violations: list[str]
    details: dict[str, float]

