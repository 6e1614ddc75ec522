"""
Pytest configuration and shared fixtures.

The reference scenario used throughout: spot 100, rate 7%, six months to
expiry, 30% volatility, strikes 80 to 120.
"""

import pytest

from option_calibration.utils.types import BatchContractSpec, ContractSpec

STRIKES = [80.0, 90.0, 100.0, 110.0, 120.0]


@pytest.fixture
def standard_params():
    """At-the-money parameters in the (S, K, T, r, sigma, q) form of the scalar helpers."""
    return {
        "S": 100.0,
        "K": 100.0,
        "T": 0.5,
        "r": 0.07,
        "sigma": 0.30,
        "q": 0.0,
    }


@pytest.fixture
def with_dividend_params():
    """Parameters with non-zero dividend yield."""
    return {
        "S": 100.0,
        "K": 100.0,
        "T": 1.0,
        "r": 0.05,
        "sigma": 0.20,
        "q": 0.02,
    }


@pytest.fixture
def make_contract():
    """Factory for reference-scenario contracts; keywords override fields."""

    def _make(**overrides):
        fields = {
            "spot": 100.0,
            "strike": 100.0,
            "time_to_expiry": 0.5,
            "volatility": 0.3,
            "rate": 0.07,
            "dividend_yield": 0.0,
            "option_type": "call",
            "style": "european",
        }
        fields.update(overrides)
        return ContractSpec(**fields)

    return _make


@pytest.fixture
def atm_call(make_contract):
    """European ATM call of the reference scenario."""
    return make_contract()


@pytest.fixture
def make_batch():
    """Factory for the five-strike reference batch; keywords override fields."""

    def _make(**overrides):
        fields = {
            "spot": 100.0,
            "strike": STRIKES,
            "time_to_expiry": 0.5,
            "volatility": 0.3,
            "rate": 0.07,
            "option_type": "call",
            "style": "european",
        }
        fields.update(overrides)
        return BatchContractSpec(**fields)

    return _make
