"""
Exception types raised by the pricing engines and solvers.

All errors derive from ValueError so callers that already guard pricing
calls with ``except ValueError`` keep working.
"""

from typing import Any, Optional


class InvalidContractError(ValueError):
    """
    A contract or engine parameter failed validation.

    Attributes:
        field: Name of the first invalid field
        value: The offending value
    """

    def __init__(self, field: str, value: Any, reason: str) -> None:
        self.field = field
        self.value = value
        super().__init__(f"Invalid {field}={value!r}: {reason}")


class EqualSignsError(ValueError):
    """
    The initial estimates do not bracket a root.

    Raised before any iteration when f(a0) and f(b0) have the same sign.
    Batched solves set ``indices`` to the offending element positions.
    """

    def __init__(
        self,
        fa: Any,
        fb: Any,
        indices: Optional[list[int]] = None,
    ) -> None:
        self.fa = fa
        self.fb = fb
        self.indices = indices
        if indices is None:
            message = (
                f"Initial estimates do not bracket a root: "
                f"f(a0) = {fa!r}, f(b0) = {fb!r} have equal signs"
            )
        else:
            message = (
                f"Initial estimates do not bracket a root for "
                f"batch elements {indices}"
            )
        super().__init__(message)


class ArbitrageBoundsError(ValueError):
    """A target value lies outside the model-free bounds for its contract."""


class BracketSearchError(ValueError):
    """Automatic bracket search gave up without finding a sign change."""
