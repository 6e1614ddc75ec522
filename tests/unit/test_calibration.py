"""
Unit tests for parameter calibration.

This module validates:
1. Implied volatility round trips with the closed-form engine across brackets
2. Implied volatility of American puts with the lattice engine
3. Batched calibration with the vectorized lattice
4. Calibrating other contract fields
5. Bracket search, bounds pre-check and error propagation
"""

import numpy as np
import pytest

from option_calibration.core.black_scholes import ClosedFormEngine
from option_calibration.core.lattice import LatticeEngine
from option_calibration.core.vectorized_lattice import VectorizedLatticeEngine
from option_calibration.solvers.calibration import (
    brenner_subrahmanyam_approximation,
    calibrate,
    calibrate_batch,
    expand_bracket,
    residual_function,
    solve_batch_for,
    solve_for,
)
from option_calibration.utils.errors import (
    ArbitrageBoundsError,
    BracketSearchError,
    EqualSignsError,
    InvalidContractError,
)

CALLS = [(80.0, 23.75799), (90.0, 16.09963), (100.0, 10.13377), (110.0, 5.94946), (120.0, 3.28280)]
PUTS = [(80.0, 1.00642), (90.0, 3.00412), (100.0, 6.69431), (110.0, 12.16606), (120.0, 19.15545)]
AMERICAN_PUTS = [
    (80.0, 1.04264),
    (90.0, 3.12832),
    (100.0, 7.02858),
    (110.0, 12.93136),
    (120.0, 20.67576),
]

EUROPEAN_BRACKETS = [
    (0.2, 0.31),  # straddling
    (0.25, 10.0),  # a0 below, b0 far above
    (0.35, 1e-5),  # a0 above, b0 far below
    (10.0, 0.25),  # a0 far above
    (1e-5, 0.35),  # a0 far below
    (1e-5, 10.0),  # both far away
]

AMERICAN_BRACKETS = [(0.2, 0.31), (0.25, 10.0), (0.35, 1e-2), (10.0, 0.25), (1e-2, 0.35)]

# ===========================
# Closed-form Round Trips
# ===========================


@pytest.mark.parametrize("a0,b0", EUROPEAN_BRACKETS)
@pytest.mark.parametrize("option_type,quotes", [("call", CALLS), ("put", PUTS)])
def test_closed_form_implied_volatility(make_contract, option_type, quotes, a0, b0):
    for strike, quote in quotes:
        engine = ClosedFormEngine(make_contract(strike=strike, option_type=option_type, volatility=0.2))
        sigma = solve_for("volatility", engine, quote, a0, b0)
        assert abs(sigma - 0.3) < 1e-6, f"K={strike}: expected 0.3, got {sigma}"


def test_price_round_trip(atm_call):
    """Price at σ=0.3, then recover σ from that price."""
    engine = ClosedFormEngine(atm_call)
    price = engine.price().price
    assert abs(price - 10.13377) < 1e-5

    result = calibrate("volatility", engine.replace(volatility=0.5), price, 0.2, 0.31)
    assert abs(result.value - 0.3) < 1e-6
    assert result.converged
    assert abs(result.residual) <= 1e-6
    assert result.engine == "closed-form"
    assert result.param == "volatility"


def test_default_param_is_volatility(atm_call):
    result = calibrate(None, ClosedFormEngine(atm_call), 10.13377, 0.2, 0.31)
    assert result.param == "volatility"
    assert abs(result.value - 0.3) < 1e-6


def test_engine_is_not_modified(atm_call):
    engine = ClosedFormEngine(atm_call.replace(volatility=0.2))
    solve_for("volatility", engine, 10.13377, 0.2, 0.31)
    assert engine.contract.volatility == 0.2


# ===========================
# Lattice Round Trips
# ===========================


@pytest.mark.parametrize("a0,b0", AMERICAN_BRACKETS)
def test_american_put_implied_volatility(make_contract, a0, b0):
    for strike, quote in AMERICAN_PUTS:
        spec = make_contract(strike=strike, option_type="put", style="american")
        sigma = solve_for("volatility", LatticeEngine(spec, steps=25), quote, a0, b0)
        assert abs(sigma - 0.3) < 1e-5, f"K={strike}: expected 0.3, got {sigma}"


def test_lattice_calibration_reports_engine(make_contract):
    spec = make_contract(option_type="put", style="american")
    result = calibrate("volatility", LatticeEngine(spec, steps=25), 7.02858, 0.2, 0.31)
    assert result.engine == "lattice"
    assert result.converged


# ===========================
# Batched Calibration
# ===========================


def test_batched_implied_volatility(make_batch):
    """Five strikes, 853 steps, one batched solve."""
    engine = VectorizedLatticeEngine(make_batch(volatility=0.2), steps=853)
    targets = [quote for _, quote in CALLS]

    result = calibrate_batch("volatility", engine, targets, 3e-2, 0.5)

    assert result.converged.all()
    np.testing.assert_allclose(result.values, 0.3, atol=1e-5)
    assert result.engine == "vectorized-lattice"
    assert result.values.shape == (5,)


def test_batched_matches_scalar(make_batch):
    batch = make_batch(option_type="put", style="american")
    targets = [quote for _, quote in AMERICAN_PUTS]
    values = solve_batch_for("volatility", VectorizedLatticeEngine(batch, steps=25), targets, 0.2, 0.31)

    for i in range(batch.size):
        scalar = solve_for("volatility", LatticeEngine(batch.contract(i), steps=25), targets[i], 0.2, 0.31)
        assert values[i] == pytest.approx(scalar, abs=1e-6)


def test_batched_per_element_brackets(make_batch):
    engine = VectorizedLatticeEngine(make_batch(), steps=25)
    targets = [quote for _, quote in CALLS]
    a0 = np.array([0.2, 10.0, 1e-2, 0.35, 0.25])
    b0 = np.array([0.31, 0.25, 0.35, 1e-2, 10.0])

    values = solve_batch_for("volatility", engine, targets, a0, b0)
    np.testing.assert_allclose(values, 0.3, atol=1e-4)


def test_batched_equal_signs_indices(make_batch):
    engine = VectorizedLatticeEngine(make_batch(), steps=25)
    targets = [quote for _, quote in CALLS]
    a0 = np.array([0.2, 0.2, 0.32, 0.2, 0.2])
    b0 = np.array([0.31, 0.31, 0.5, 0.31, 0.31])

    with pytest.raises(EqualSignsError) as excinfo:
        solve_batch_for("volatility", engine, targets, a0, b0)
    assert excinfo.value.indices == [2]


# ===========================
# Other Parameters
# ===========================


def test_calibrate_rate(make_contract):
    engine = ClosedFormEngine(make_contract(rate=0.01))
    rate = solve_for("rate", engine, 10.13377, -0.1, 0.2)
    assert abs(rate - 0.07) < 1e-5


def test_calibrate_strike(make_contract):
    """Call value falls with strike; the solver does not assume monotone direction."""
    engine = ClosedFormEngine(make_contract(strike=50.0))
    strike = solve_for("strike", engine, 5.94946, 90.0, 130.0)
    assert abs(strike - 110.0) < 1e-3


def test_unknown_param_rejected(atm_call):
    with pytest.raises(InvalidContractError) as excinfo:
        solve_for("option_type", ClosedFormEngine(atm_call), 10.0, 0.2, 0.3)
    assert excinfo.value.field == "param_name"


# ===========================
# Error Propagation
# ===========================


def test_same_side_estimates_raise(atm_call):
    """Both estimates overshoot the target volatility."""
    with pytest.raises(EqualSignsError):
        solve_for("volatility", ClosedFormEngine(atm_call), 10.13377, 0.35, 0.5)


def test_identical_estimates_raise(atm_call):
    with pytest.raises(EqualSignsError):
        solve_for("volatility", ClosedFormEngine(atm_call), 10.13377, 0.4, 0.4)


def test_missing_estimates_without_search(atm_call):
    with pytest.raises(InvalidContractError):
        calibrate("volatility", ClosedFormEngine(atm_call), 10.13377, a0=0.2)


def test_invalid_trial_value_propagates(atm_call):
    with pytest.raises(InvalidContractError) as excinfo:
        solve_for("volatility", ClosedFormEngine(atm_call), 10.13377, -0.1, 0.5)
    assert excinfo.value.field == "volatility"


def test_iteration_cap_reported(atm_call):
    result = calibrate(
        "volatility", ClosedFormEngine(atm_call), 10.13377, 1e-5, 10.0, tolerance=0.0, max_iterations=3
    )
    assert not result.converged
    assert result.iterations == 3
    assert "Iteration cap" in result.message


# ===========================
# Bracket Search
# ===========================


@pytest.mark.parametrize("option_type,quotes", [("call", CALLS), ("put", PUTS)])
def test_search_from_brenner_subrahmanyam_seed(make_contract, option_type, quotes):
    for strike, quote in quotes:
        engine = ClosedFormEngine(make_contract(strike=strike, option_type=option_type))
        result = calibrate("volatility", engine, quote, search_bracket=True)
        assert abs(result.value - 0.3) < 1e-6


def test_search_widens_bad_estimates(atm_call):
    result = calibrate("volatility", ClosedFormEngine(atm_call), 10.13377, 0.5, 0.6, search_bracket=True)
    assert abs(result.value - 0.3) < 1e-6


def test_search_from_single_estimate(atm_call):
    result = calibrate("volatility", ClosedFormEngine(atm_call), 10.13377, b0=0.1, search_bracket=True)
    assert abs(result.value - 0.3) < 1e-6


def test_search_needs_estimate_for_other_params(atm_call):
    with pytest.raises(InvalidContractError):
        calibrate("rate", ClosedFormEngine(atm_call), 10.13377, search_bracket=True)


def test_expand_bracket_moves_nearer_end():
    lower, upper = expand_bracket(lambda x: x - 5.0, 1.0, 2.0)
    assert lower == 1.0
    assert upper >= 5.0
    assert upper / 1.1 < 5.0


def test_expand_bracket_gives_up():
    with pytest.raises(BracketSearchError):
        expand_bracket(lambda x: 1.0 + x, 1.0, 2.0, max_attempts=20)


def test_expand_bracket_rejects_non_positive_estimates():
    with pytest.raises(ValueError, match="positive estimates"):
        expand_bracket(lambda x: x + 5.0, -1.0, 2.0)


def test_expand_bracket_keeps_straddling_estimates():
    assert expand_bracket(lambda x: x, -1.0, 2.0) == (-1.0, 2.0)


def test_search_accepts_negative_rate_bracket(make_contract):
    engine = ClosedFormEngine(make_contract(rate=0.01))
    result = calibrate("rate", engine, 10.13377, -0.1, 0.2, search_bracket=True)
    assert abs(result.value - 0.07) < 1e-5


def test_brenner_subrahmanyam_atm():
    guess = brenner_subrahmanyam_approximation(10.13377, 100.0, 100.0, 0.5)
    assert 0.3 < guess < 0.4


def test_brenner_subrahmanyam_invalid_inputs():
    assert brenner_subrahmanyam_approximation(0.0, 100.0, 100.0, 0.5) == 0.25


# ===========================
# Bounds Pre-check
# ===========================


def test_check_bounds_rejects_impossible_quote(atm_call):
    with pytest.raises(ArbitrageBoundsError, match="above upper bound"):
        calibrate("volatility", ClosedFormEngine(atm_call), 150.0, 0.2, 0.31, check_bounds=True)


def test_check_bounds_passes_valid_quote(atm_call):
    result = calibrate("volatility", ClosedFormEngine(atm_call), 10.13377, 0.2, 0.31, check_bounds=True)
    assert abs(result.value - 0.3) < 1e-6


def test_residual_function(atm_call):
    f = residual_function("volatility", ClosedFormEngine(atm_call), 10.13377)
    assert abs(f(0.3)) < 1e-5
    assert f(0.2) < 0.0 < f(0.4)


# ===========================
# Wide Brackets On Deep Trees
# ===========================


def test_wide_bracket_on_deep_tree(atm_call):
    """At σ=50 u^853 leaves the float range; the call value must stay finite."""
    engine = LatticeEngine(atm_call.replace(volatility=0.2), steps=853)

    assert engine.replace(volatility=50.0).price().price <= 100.0
    result = calibrate("volatility", engine, 10.13377, 0.01, 50.0)
    assert result.converged
    assert abs(result.value - 0.3) < 1e-5


def test_wide_bracket_on_deep_batched_tree(make_batch):
    engine = VectorizedLatticeEngine(make_batch(volatility=0.2), steps=853)
    targets = [quote for _, quote in CALLS]

    result = calibrate_batch("volatility", engine, targets, 0.01, 50.0)

    assert result.converged.all()
    np.testing.assert_allclose(result.values, 0.3, atol=1e-5)
