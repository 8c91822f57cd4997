"""
Unit tests for core/market_state.py.

Tests cover:
- Trend stability (outcome dominance, choppiness, data sufficiency)
- Binary Shannon entropy and entropy states
- Rule-based regime probabilities
- Prime session lookup ([start, end) hour windows)
"""

from __future__ import annotations

import math

import pytest

from core.market_state import (
    assess_entropy,
    assess_trend_stability,
    estimate_regime_probabilities,
    prime_session,
    shannon_entropy,
)
from core.regime import unknown_context
from shared.types import (
    EntropyAssessment,
    EntropyState,
    HistoryRecord,
    Outcome,
    RecordStatus,
    RegimeProbabilities,
    TrendContext,
    TrendDirection,
    TrendStrength,
    VolatilityTier,
)


def _context(strength, direction, volatility) -> TrendContext:
    return TrendContext(strength, direction, volatility, macro_regime="TEST")


# ===========================================================================
# Trend stability
# ===========================================================================


class TestTrendStability:
    def test_short_history_is_stable(self, make_records):
        result = assess_trend_stability(make_records([7] * 24))
        assert result.is_stable
        assert result.reason == "Not enough data for stability check."

    def test_dominance(self, all_big_history):
        result = assess_trend_stability(all_big_history)
        assert not result.is_stable
        assert result.reason == "Unstable: Outcome Dominance"
        assert result.details == "B:20,S:0"

    def test_dominance_threshold_inclusive(self, make_records):
        """15 of 20 is exactly 0.75."""
        result = assess_trend_stability(make_records([7] * 15 + [2] * 15))
        assert result.reason == "Unstable: Outcome Dominance"

    def test_choppiness(self, alternating_history):
        result = assess_trend_stability(alternating_history)
        assert not result.is_stable
        assert result.reason == "Unstable: Excessive Choppiness"
        assert result.details == "Alternations: 19/20"

    def test_stable_pattern(self, mixed_history):
        result = assess_trend_stability(mixed_history)
        assert result.is_stable
        assert result.reason == "Trend appears stable."

    def test_not_enough_confirmed(self, make_records):
        records = [HistoryRecord(str(i), None, RecordStatus.PENDING) for i in range(6)]
        records += make_records([7] * 19)
        result = assess_trend_stability(records)
        assert result.is_stable
        assert result.reason == "Not enough confirmed results."


# ===========================================================================
# Entropy
# ===========================================================================


class TestShannonEntropy:
    def test_empty(self):
        assert shannon_entropy([]) is None

    def test_uniform_is_one_bit(self):
        assert shannon_entropy([Outcome.BIG, Outcome.SMALL]) == pytest.approx(1.0)

    def test_single_category_is_zero(self):
        assert shannon_entropy([Outcome.SMALL] * 5) == 0.0

    def test_skewed(self):
        expected = -(0.8 * math.log2(0.8) + 0.2 * math.log2(0.2))
        categories = [Outcome.BIG] * 8 + [Outcome.SMALL] * 2
        assert shannon_entropy(categories) == pytest.approx(expected)


class TestAssessEntropy:
    def test_orderly(self, all_big_history):
        result = assess_entropy(all_big_history)
        assert result.state is EntropyState.ORDERLY
        assert result.entropy == 0.0

    def test_chaos(self, alternating_history):
        result = assess_entropy(alternating_history)
        assert result.state is EntropyState.STABLE_CHAOS
        assert result.state.is_chaotic

    def test_moderate(self, make_records):
        result = assess_entropy(make_records([7] * 12 + [2] * 3))
        assert result.state is EntropyState.STABLE_MODERATE
        assert not result.state.is_chaotic

    def test_short_history_uncertain(self, make_records):
        assert assess_entropy(make_records([7] * 14)).state is EntropyState.UNCERTAIN_ENTROPY

    def test_pending_head_skipped(self, alternating_history):
        records = [HistoryRecord("next", None, RecordStatus.PENDING)] + alternating_history
        result = assess_entropy(records)
        assert result.state is EntropyState.STABLE_CHAOS
        assert result.entropy == pytest.approx(assess_entropy(alternating_history).entropy)

    def test_malformed_rows_skipped(self, make_records):
        records = make_records([7] * 8) + [HistoryRecord("bad", 42)] + make_records([7] * 7)
        assert assess_entropy(records).state is EntropyState.ORDERLY

    def test_too_few_confirmed_uncertain(self, make_records):
        pending = [HistoryRecord(str(i), None, RecordStatus.PENDING) for i in range(6)]
        assert assess_entropy(pending + make_records([7] * 14)).state is EntropyState.UNCERTAIN_ENTROPY


# ===========================================================================
# Regime probabilities
# ===========================================================================


class TestRegimeProbabilities:
    ORDERLY = EntropyAssessment(EntropyState.ORDERLY, 0.1)
    CHAOS = EntropyAssessment(EntropyState.STABLE_CHAOS, 0.99)

    def test_strong_big_orderly(self):
        context = _context(TrendStrength.STRONG, TrendDirection.BIG, VolatilityTier.LOW)
        assert estimate_regime_probabilities(context, self.ORDERLY) == RegimeProbabilities(
            0.8, 0.05, 0.1, 0.05
        )

    def test_strong_small_orderly(self):
        context = _context(TrendStrength.STRONG, TrendDirection.SMALL, VolatilityTier.MEDIUM)
        assert estimate_regime_probabilities(context, self.ORDERLY).bear_trend == 0.8

    def test_strong_trend_high_volatility_is_uniform(self):
        context = _context(TrendStrength.STRONG, TrendDirection.BIG, VolatilityTier.HIGH)
        assert estimate_regime_probabilities(context, self.ORDERLY) == RegimeProbabilities()

    def test_volatile_range(self):
        context = _context(TrendStrength.RANGING, TrendDirection.NONE, VolatilityTier.HIGH)
        assert estimate_regime_probabilities(context, self.CHAOS).volatile_range == 0.7

    def test_quiet_range(self):
        context = _context(TrendStrength.RANGING, TrendDirection.NONE, VolatilityTier.VERY_LOW)
        assert estimate_regime_probabilities(context, self.CHAOS).quiet_range == 0.7

    def test_default_uniform(self):
        context = _context(TrendStrength.WEAK, TrendDirection.BIG, VolatilityTier.MEDIUM)
        probs = estimate_regime_probabilities(context, self.CHAOS)
        assert probs == RegimeProbabilities(0.25, 0.25, 0.25, 0.25)

    def test_unknown_context_is_uniform(self):
        context = unknown_context("Insufficient numbers")
        assert context.is_unknown
        assert estimate_regime_probabilities(context, self.CHAOS) == RegimeProbabilities()


# ===========================================================================
# Sessions
# ===========================================================================


class TestPrimeSession:
    @pytest.mark.parametrize(
        "hour,name,multiplier",
        [
            (10, "PRIME_MORNING", 1.10),
            (11, "PRIME_MORNING", 1.10),
            (13, "PRIME_AFTERNOON", 1.05),
            (17, "PRIME_EVENING", 1.15),
            (19, "PRIME_EVENING", 1.15),
        ],
    )
    def test_inside_session(self, hour, name, multiplier):
        session = prime_session(hour)
        assert session.name == name
        assert session.confidence_multiplier == pytest.approx(multiplier)

    @pytest.mark.parametrize("hour", [0, 3, 9, 12, 16, 20, 23])
    def test_outside_sessions(self, hour):
        assert prime_session(hour) is None

    def test_custom_sessions(self):
        sessions = [{"name": "NIGHT", "start_hour": 0, "end_hour": 2, "confidence_multiplier": 1.2}]
        assert prime_session(1, sessions).name == "NIGHT"
        assert prime_session(10, sessions) is None
