"""
Unit tests for the scalar Dekker-Brent root finder.

This module validates:
1. Roots of smooth test functions
2. The bracket invariant after every iteration
3. Precondition and settings errors
4. Behaviour at the iteration cap
"""

import copy
import logging
import math

import pytest

from option_calibration.solvers.brent import brent_iterations, brent_root, brent_solve
from option_calibration.utils.errors import EqualSignsError


def _sign(x):
    return (x > 0) - (x < 0)


# ===========================
# Known Roots Tests
# ===========================


@pytest.mark.parametrize(
    "f,a0,b0,expected",
    [
        (lambda x: x * x - 2.0, 0.0, 2.0, math.sqrt(2.0)),
        (lambda x: x**3 - 2.0 * x - 5.0, 2.0, 3.0, 2.0945514815423265),
        (lambda x: math.cos(x) - x, 0.0, 1.0, 0.7390851332151607),
        (lambda x: math.exp(x) - 10.0, 0.0, 5.0, math.log(10.0)),
        (lambda x: math.atan(x - 1.0), -5.0, 7.0, 1.0),
    ],
)
def test_known_roots(f, a0, b0, expected):
    root = brent_solve(f, a0, b0, tolerance=1e-12)
    assert abs(root - expected) < 1e-9


def test_estimate_order_does_not_matter():
    f = lambda x: x * x - 2.0  # noqa: E731
    assert abs(brent_solve(f, 0.0, 2.0, 1e-12) - brent_solve(f, 2.0, 0.0, 1e-12)) < 1e-9


def test_result_reports_residual_and_iterations():
    result = brent_root(lambda x: x * x - 2.0, 0.0, 2.0, tolerance=1e-10)

    assert result.converged
    assert abs(result.residual) <= 1e-10
    assert result.residual == result.root * result.root - 2.0
    assert 0 < result.iterations < 100


def test_linear_function_takes_secant_step():
    """One forced bisection, then the secant lands on the root."""
    result = brent_root(lambda x: x - 0.3, 0.0, 1.0, tolerance=1e-12)
    assert result.iterations <= 3
    assert abs(result.root - 0.3) < 1e-12


def test_root_at_estimate_needs_no_iteration():
    result = brent_root(lambda x: x - 1.0, 1.0, 3.0)
    assert result.root == 1.0
    assert result.iterations == 0


# ===========================
# Bracket Invariant Tests
# ===========================


@pytest.mark.parametrize(
    "f,a0,b0",
    [
        (lambda x: x**3 - 2.0 * x - 5.0, 2.0, 3.0),
        (lambda x: math.cos(x) - x, 1.0, 0.0),
        (lambda x: (x - 1.0) ** 3, -4.0, 2.5),
        (lambda x: math.tanh(5.0 * (x - 0.2)), -3.0, 3.0),
    ],
)
def test_bracket_invariant_holds_every_iteration(f, a0, b0):
    history = []
    for state in brent_iterations(f, a0, b0, tolerance=1e-12):
        assert _sign(state.fa) != _sign(state.fb)
        assert abs(state.fb) <= abs(state.fa)
        assert state.fa == f(state.a)
        assert state.fb == f(state.b)
        history.append(copy.copy(state))

    assert history, "expected at least one iteration"
    assert [s.iteration for s in history] == list(range(1, len(history) + 1))


def test_first_iteration_bisects():
    """Seeded history makes the first interpolation undefined."""
    state = next(brent_iterations(lambda x: x**3 - 2.0, 0.0, 10.0))
    assert state.bisected
    assert 5.0 in (state.a, state.b)


# ===========================
# Error Tests
# ===========================


def test_equal_signs_raise():
    with pytest.raises(EqualSignsError) as excinfo:
        brent_solve(lambda x: x * x - 2.0, 3.0, 4.0)
    assert excinfo.value.fa == 7.0
    assert excinfo.value.fb == 14.0


def test_equal_signs_raise_on_first_next():
    iterations = brent_iterations(lambda x: x * x + 1.0, -1.0, 1.0)
    with pytest.raises(EqualSignsError):
        next(iterations)


def test_equal_signs_is_a_value_error():
    with pytest.raises(ValueError):
        brent_solve(lambda x: 1.0, 0.0, 1.0)


def test_non_finite_residual_raises():
    with pytest.raises(ValueError, match="not finite"):
        brent_solve(lambda x: math.nan if x > 0.4 else x - 1.0, 0.0, 2.0)


@pytest.mark.parametrize("tolerance,max_iterations", [(-1e-6, 10), (1e-6, -1)])
def test_invalid_settings(tolerance, max_iterations):
    with pytest.raises(ValueError):
        brent_solve(lambda x: x, -1.0, 1.0, tolerance, max_iterations)


# ===========================
# Iteration Cap Tests
# ===========================


def test_cap_returns_best_estimate(caplog):
    f = lambda x: x**3 - 2.0 * x - 5.0  # noqa: E731
    with caplog.at_level(logging.WARNING, logger="option_calibration.solvers.brent"):
        result = brent_root(f, 2.0, 3.0, tolerance=0.0, max_iterations=3)

    assert not result.converged
    assert result.iterations == 3
    assert 2.0 <= result.root <= 3.0
    assert abs(result.residual) < abs(f(2.0))
    assert "without convergence" in caplog.text


def test_zero_iterations_returns_better_estimate():
    result = brent_root(lambda x: x - 0.9, 0.0, 1.0, max_iterations=0)
    assert result.root == 1.0
    assert result.iterations == 0
    assert not result.converged


def test_solve_returns_estimate_silently_at_cap():
    root = brent_solve(lambda x: x**3 - 2.0 * x - 5.0, 2.0, 3.0, tolerance=0.0, max_iterations=2)
    assert 2.0 <= root <= 3.0
