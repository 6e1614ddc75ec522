"""
Numerical constants, tolerances and defaults for pricing and calibration.

This module defines the defaults shared by the valuation engines and the
root finder. Values are chosen so the reference scenarios in the test suite
converge with a comfortable margin inside the iteration cap.
"""

# Time conventions
SECONDS_PER_YEAR = 365 * 24 * 3600  # Year fraction = elapsed seconds / this
DAYS_PER_YEAR = 365.0  # Theta is reported per calendar day

# Normal distribution bounds
MAX_STANDARD_DEVIATIONS = 8.0  # Beyond ±8σ, CDF is effectively 0 or 1

# Root finder parameters
ROOT_TOLERANCE = 1e-6  # |f(b)| below this counts as converged
ROOT_MAX_ITERATIONS = 100  # Hard cap, always enforced

# Lattice parameters
LATTICE_DEFAULT_STEPS = 123  # Odd, so valid for Leisen-Reimer
LATTICE_SCHEMES = ("leisen-reimer", "crr")

# Calibration parameters
DEFAULT_CALIBRATION_PARAM = "volatility"
CALIBRATION_PARAMS = (
    "volatility",
    "rate",
    "dividend_yield",
    "spot",
    "strike",
    "time_to_expiry",
)
BRACKET_GROWTH = 1.1  # Multiplicative widening per bracket-search attempt
BRACKET_MAX_ATTEMPTS = 200
IV_INITIAL_GUESS = 0.25  # Default 25% volatility if no better guess
IV_MIN_VOL = 0.001  # Lower clamp for the Brenner-Subrahmanyam seed
IV_MAX_VOL = 5.0  # Upper clamp for the Brenner-Subrahmanyam seed

# Diagnostics tolerances
ARBITRAGE_TOLERANCE = 1e-6  # Slack allowed when comparing against bounds
