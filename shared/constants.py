"""
Shared constants for the outcome forecaster.

Numeric thresholds and default values used across all modules. Every value
here can be overridden from config/engine.json.
"""

# ---------------------------------------------------------------------------
# Outcome Domain
# ---------------------------------------------------------------------------

OUTCOME_MIN = 0
OUTCOME_MAX = 9
EXTREME_LOW = 1  # outcomes <= 1 count as the low extreme
EXTREME_HIGH = 8  # outcomes >= 8 count as the high extreme

# ---------------------------------------------------------------------------
# Regime Classification
# ---------------------------------------------------------------------------

DEFAULT_SHORT_LOOKBACK = 5
DEFAULT_MEDIUM_LOOKBACK = 10
DEFAULT_LONG_LOOKBACK = 20
VOLATILITY_WINDOW = 30
VOLATILITY_MIN_POINTS = 15
SPREAD_EPSILON = 0.001
STRONG_SPREAD = 0.80
MODERATE_SPREAD = 0.45
VOL_HIGH = 3.0
VOL_MEDIUM = 1.8
VOL_LOW = 0.9
UNKNOWN_REGIME = "UNKNOWN_REGIME"

# ---------------------------------------------------------------------------
# Adaptive Weight Learning
# ---------------------------------------------------------------------------

PERFORMANCE_WINDOW = 30
MIN_OBSERVATIONS_FOR_ADJUST = 10
MIN_REGIME_OBSERVATIONS = 5
OVERALL_DEVIATION_SCALE = 1.2
REGIME_DEVIATION_SCALE = 1.5
REGIME_FACTOR_MIN = 0.4
REGIME_FACTOR_MAX = 1.6
MAX_WEIGHT_FACTOR = 1.8
MIN_WEIGHT_FACTOR = 0.1
PROBATION_THRESHOLD_ACCURACY = 0.40
PROBATION_MIN_OBSERVATIONS = 15
PROBATION_RELEASE_ACCURACY = 0.55
PROBATION_WEIGHT_CAP = 0.2
WEIGHT_FLOOR = 0.001
HIGH_CONFIDENCE_MISS = 0.75
HIGH_CONFIDENCE_MISS_SCORE = -0.5

# ---------------------------------------------------------------------------
# Concept Drift (DDM)
# ---------------------------------------------------------------------------

DRIFT_WARNING_LEVEL = 2.0
DRIFT_DRIFT_LEVEL = 3.0

# ---------------------------------------------------------------------------
# Decision Synthesis
# ---------------------------------------------------------------------------

MIN_CONFIRMED_HISTORY = 52
MIN_VALID_SIGNALS = 3
NEGLIGIBLE_WEIGHT = 0.001
LEVEL_2_CONFIDENCE = 0.62
LEVEL_3_CONFIDENCE = 0.75
FORCED_UNCERTAINTY_SCORE = 85.0
PROBABILITY_FLOOR = 0.001
PROBABILITY_CEILING = 0.999
TOP_CONTRIBUTING_SIGNALS = 10
GLOBAL_ACCURACY_FLOOR = 0.48
GLOBAL_ACCURACY_PENALTY = 150.0

UNCERTAINTY_DRIFT = 70.0
UNCERTAINTY_DRIFT_WARNING = 40.0
UNCERTAINTY_INSTABILITY = 45.0
UNCERTAINTY_CHAOS = 35.0
UNCERTAINTY_TRANSITION = 25.0
UNCERTAINTY_HIGH_VOLATILITY = 20.0

# ---------------------------------------------------------------------------
# Default Base Weights per Generator
# ---------------------------------------------------------------------------

DEFAULT_BASE_WEIGHTS = {
    "streak_break": 0.08,
    "rsi_reversal": 0.10,
    "macd_cross": 0.12,
    "bollinger_breach": 0.09,
    "stochastic_cross": 0.10,
    "extreme_reversion": 0.06,
    "external_model": 0.25,
    "weighted_majority": 0.20,
}

DEFAULT_SESSION_TIMEZONE = "Asia/Kolkata"
