"""
Shared pytest configuration and fixtures for outcome forecaster tests.

Log files go to a throwaway directory: FORECAST_LOG_DIR is set before any
project module creates its logger.
"""

from __future__ import annotations

import copy
import os
import random
import tempfile
from unittest.mock import MagicMock

os.environ.setdefault("FORECAST_LOG_DIR", tempfile.mkdtemp(prefix="forecaster_test_logs_"))

import pytest  # noqa: E402

from core.external import FixedClock, NeutralExternalData  # noqa: E402
from shared.types import HistoryRecord, RecordStatus  # noqa: E402

# ---------------------------------------------------------------------------
# Standard engine config (mirrors config/engine.json)
# ---------------------------------------------------------------------------

STANDARD_ENGINE_CONFIG = {
    "regime": {
        "short_lookback": 5,
        "medium_lookback": 10,
        "long_lookback": 20,
        "volatility_window": 30,
        "volatility_min_points": 15,
    },
    "generators": {
        "streak_break": {"enabled": True, "base_weight": 0.08},
        "rsi_reversal": {"enabled": True, "base_weight": 0.10, "period": 14},
        "macd_cross": {"enabled": True, "base_weight": 0.12, "fast": 12, "slow": 26, "signal": 9},
        "bollinger_breach": {
            "enabled": True,
            "base_weight": 0.09,
            "period": 20,
            "std_multiplier": 2.0,
        },
        "stochastic_cross": {
            "enabled": True,
            "base_weight": 0.10,
            "k_period": 14,
            "d_period": 3,
            "smooth_k": 3,
        },
        "extreme_reversion": {"enabled": True, "base_weight": 0.06},
        "external_model": {"enabled": True, "base_weight": 0.25, "min_numbers": 52},
        "weighted_majority": {
            "enabled": True,
            "base_weight": 0.20,
            "min_signals": 4,
            "min_total_weight": 0.1,
            "dominance_ratio": 1.2,
        },
    },
    "learner": {
        "performance_window": 30,
        "min_observations_for_adjust": 10,
        "min_regime_observations": 5,
        "max_weight_factor": 1.8,
        "min_weight_factor": 0.1,
        "probation_threshold_accuracy": 0.40,
        "probation_min_observations": 15,
        "probation_release_accuracy": 0.55,
        "probation_weight_cap": 0.2,
        "high_confidence_miss": 0.75,
    },
    "drift": {"warning_level": 2.0, "drift_level": 3.0},
    "decision": {
        "min_confirmed_history": 52,
        "min_valid_signals": 3,
        "level_2_confidence": 0.62,
        "level_3_confidence": 0.75,
        "forced_uncertainty_score": 85.0,
        "top_contributing_signals": 10,
        "global_accuracy_floor": 0.48,
        "global_accuracy_penalty": 150.0,
    },
    "uncertainty": {
        "drift": 70.0,
        "drift_warning": 40.0,
        "instability": 45.0,
        "chaos": 35.0,
        "transition": 25.0,
        "high_volatility": 20.0,
    },
    "session": {"timezone": "Asia/Kolkata", "prime_sessions": []},
}

STANDARD_APP_CONFIG = {
    "logging": {"log_dir": "logs"},
    "external_data": {"mode": "neutral", "seed": None},
    "feedback": {"accuracy_smoothing": 0.05},
    "replay": {"warmup": 52},
}


def _make_records(numbers, status: RecordStatus = RecordStatus.WIN) -> list[HistoryRecord]:
    """History records for `numbers` given newest first; periods count down."""
    top = 10_000 + len(numbers)
    return [
        HistoryRecord(period=str(top - i), outcome=n, status=status) for i, n in enumerate(numbers)
    ]


# ---------------------------------------------------------------------------
# History fixtures (newest first)
# ---------------------------------------------------------------------------


@pytest.fixture
def make_records():
    """Factory fixture: make_records([7, 2, ...]) -> newest-first HistoryRecords."""
    return _make_records


@pytest.fixture
def alternating_history() -> list[HistoryRecord]:
    """60 records alternating 7 and 2."""
    return _make_records([7, 2] * 30)


@pytest.fixture
def all_big_history() -> list[HistoryRecord]:
    """60 records, every outcome BIG."""
    return _make_records([7] * 60)


@pytest.fixture
def mixed_history() -> list[HistoryRecord]:
    """60 records cycling 6, 7, 2, 3."""
    return _make_records([6, 7, 2, 3] * 15)


@pytest.fixture
def short_history() -> list[HistoryRecord]:
    """Too short for anything but a fallback."""
    return _make_records([5, 3, 8, 1, 9, 0, 4, 6, 2, 7])


# ---------------------------------------------------------------------------
# Engine collaborators
# ---------------------------------------------------------------------------


@pytest.fixture
def engine_config() -> dict:
    return copy.deepcopy(STANDARD_ENGINE_CONFIG)


@pytest.fixture
def app_config() -> dict:
    return copy.deepcopy(STANDARD_APP_CONFIG)


@pytest.fixture
def off_hours_clock() -> FixedClock:
    """An hour outside every prime session."""
    return FixedClock(3)


@pytest.fixture
def seeded_rng() -> random.Random:
    return random.Random(1234)


@pytest.fixture
def neutral_external() -> NeutralExternalData:
    return NeutralExternalData()


# ---------------------------------------------------------------------------
# Config loader fixture (patched singleton)
# ---------------------------------------------------------------------------


@pytest.fixture
def mock_config_loader():
    """
    Provide a mock ConfigLoader that returns standard configs.

    Usage in tests:
        def test_something(mock_config_loader):
            mock_config_loader.get_engine_config.return_value = {...}
    """
    loader = MagicMock()
    loader.get_engine_config.return_value = STANDARD_ENGINE_CONFIG
    loader.get_engine_section.side_effect = lambda section: loader.get_engine_config.return_value.get(
        section, {}
    )
    loader.get_app_config.return_value = STANDARD_APP_CONFIG
    loader.get_log_dir.return_value = os.environ["FORECAST_LOG_DIR"]
    loader.get_external_data_mode.return_value = "neutral"
    return loader
