"""
Unit tests for core/forecast_engine.py.

Tests cover:
- Forced random fallbacks (short history, too few valid signals)
- Score fusion, consensus tilt and confidence tiers
- Session, external and uncertainty damping
- Forced tier 1 on high uncertainty or concept drift
- Feedback loop into the drift detector and the weight learner
- Uncertainty scoring
"""

from __future__ import annotations

import random
from unittest.mock import MagicMock, patch

import pytest

from core.drift_detector import ConceptDriftDetector
from core.external import ExternalFactor, FixedClock, NeutralExternalData
from core.forecast_engine import FALLBACK_LOGIC, ForecastEngine
from core.market_state import DEFAULT_PRIME_SESSIONS
from core.weight_learner import AdaptiveWeightLearner
from shared.types import (
    ContributingSignal,
    DriftStatus,
    EntropyAssessment,
    EntropyState,
    FallbackReason,
    HistoryRecord,
    Outcome,
    PredictionFeedback,
    RecordStatus,
    RegimeProbabilities,
    Signal,
    StabilityAssessment,
    TrendContext,
    TrendDirection,
    TrendStrength,
    UncertaintyAssessment,
    VolatilityTier,
)

# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


class _FixedGenerator:
    """Generator stub that always emits the same signal."""

    def __init__(self, source: str, prediction: Outcome, base_weight: float) -> None:
        self.source = source
        self.prediction = prediction
        self.base_weight = base_weight

    def generate(self, records, context, base_weight):
        return Signal(self.source, self.prediction, base_weight)


class _FixedExternal:
    def __init__(self, factor: float) -> None:
        self.factor = factor

    def get_factor(self) -> ExternalFactor:
        return ExternalFactor(self.factor, "ExtData(Test)")


def _generators(big: int, small: int, weight: float = 0.1) -> list[_FixedGenerator]:
    return [_FixedGenerator(f"Big{i}", Outcome.BIG, weight) for i in range(big)] + [
        _FixedGenerator(f"Small{i}", Outcome.SMALL, weight) for i in range(small)
    ]


def _engine(config, generators=None, **overrides) -> ForecastEngine:
    kwargs = dict(
        learner=AdaptiveWeightLearner(config["learner"]),
        drift_detector=ConceptDriftDetector(config=config["drift"]),
        external_data=NeutralExternalData(),
        clock=FixedClock(3),
        rng=random.Random(7),
        config=config,
    )
    kwargs.update(overrides)
    if generators is None:
        return ForecastEngine(**kwargs)
    with patch("core.forecast_engine.build_generators", return_value=generators):
        return ForecastEngine(**kwargs)


@pytest.fixture
def no_combiner_config(engine_config):
    engine_config["generators"]["weighted_majority"]["enabled"] = False
    return engine_config


@pytest.fixture
def neutral_market():
    """Uniform regime probabilities and zero uncertainty unless a test overrides the score."""
    with (
        patch(
            "core.forecast_engine.estimate_regime_probabilities",
            return_value=RegimeProbabilities(),
        ),
        patch.object(
            ForecastEngine, "assess_uncertainty", return_value=UncertaintyAssessment(0.0, [])
        ) as mock_uncertainty,
    ):
        yield mock_uncertainty


# ===========================================================================
# Fallbacks
# ===========================================================================


class TestFallback:
    def test_short_history(self, engine_config, short_history):
        decision = _engine(engine_config).predict(short_history)
        assert decision.fallback_reason is FallbackReason.INSUFFICIENT_HISTORY
        assert decision.final_confidence == 0.5
        assert decision.confidence_level == 1
        assert decision.is_forced_prediction
        assert decision.contributing_signals == []
        assert decision.last_prediction_signals == []
        for prediction in decision.predictions.values():
            assert prediction.confidence == 0.5
            assert prediction.logic == FALLBACK_LOGIC
        assert "InsufficientHistory(10<52)" in decision.trace

    def test_pending_records_do_not_count(self, engine_config, make_records):
        records = [HistoryRecord(str(i), None, RecordStatus.PENDING) for i in range(10)]
        records += make_records([6, 7, 2, 3] * 12 + [6, 7, 2])  # 51 confirmed
        decision = _engine(engine_config).predict(records)
        assert decision.fallback_reason is FallbackReason.INSUFFICIENT_HISTORY

    def test_all_generators_disabled(self, engine_config, alternating_history):
        for section in engine_config["generators"].values():
            section["enabled"] = False
        decision = _engine(engine_config).predict(alternating_history)
        assert decision.fallback_reason is FallbackReason.INSUFFICIENT_SIGNALS
        assert "NoValidSignals_ForceRandom" in decision.trace

    def test_uncertainty_reported_on_fallback(self, engine_config, make_records):
        """A run of zeros is dominated (+45) and yields too few signals to decide."""
        decision = _engine(engine_config).predict(make_records([0] * 60))
        assert decision.fallback_reason is FallbackReason.INSUFFICIENT_SIGNALS
        assert decision.uncertainty_score == pytest.approx(45.0)

    def test_seeded_fallback_is_reproducible(self, engine_config, short_history):
        first = _engine(engine_config, rng=random.Random(42)).predict(short_history)
        second = _engine(engine_config, rng=random.Random(42)).predict(short_history)
        assert first.final_decision is second.final_decision

    def test_negligible_signals_dropped(self, no_combiner_config, mixed_history, neutral_market):
        generators = _generators(2, 0) + [_FixedGenerator("Tiny", Outcome.SMALL, 0.001)]
        decision = _engine(no_combiner_config, generators).predict(mixed_history)
        assert decision.fallback_reason is FallbackReason.INSUFFICIENT_SIGNALS


# ===========================================================================
# Fusion
# ===========================================================================


class TestFusion:
    def test_majority_decision(self, no_combiner_config, mixed_history, neutral_market):
        """0.3 BIG vs 0.1 SMALL; consensus 1.25 gives 0.375 vs 0.075."""
        decision = _engine(no_combiner_config, _generators(3, 1)).predict(mixed_history)
        assert decision.fallback_reason is None
        assert decision.final_decision is Outcome.BIG
        assert decision.final_confidence == pytest.approx(0.375 / 0.45)
        assert decision.confidence_level == 3
        assert not decision.is_forced_prediction
        assert decision.predictions[Outcome.BIG].confidence == pytest.approx(0.375 / 0.45)
        assert decision.predictions[Outcome.SMALL].confidence == pytest.approx(0.075 / 0.45)

    @pytest.mark.parametrize("draw, expected", [(0.9, Outcome.BIG), (0.1, Outcome.SMALL)])
    def test_tie_is_random(self, no_combiner_config, mixed_history, neutral_market, draw, expected):
        rng = MagicMock(spec=random.Random)
        rng.random.return_value = draw
        decision = _engine(no_combiner_config, _generators(2, 2), rng=rng).predict(mixed_history)
        rng.random.assert_called_once()
        assert decision.final_decision is expected
        assert decision.final_confidence == pytest.approx(0.5)
        assert decision.confidence_level == 1
        assert "Tie_Random" in decision.trace

    def test_tie_reproducible_with_seed(self, no_combiner_config, mixed_history, neutral_market):
        decisions = [
            _engine(no_combiner_config, _generators(2, 2), rng=random.Random(seed)).predict(
                mixed_history
            )
            for seed in (11, 11)
        ]
        assert decisions[0].final_decision is decisions[1].final_decision

    def test_regime_probabilities_tilt_scores(self, no_combiner_config, mixed_history):
        with (
            patch(
                "core.forecast_engine.estimate_regime_probabilities",
                return_value=RegimeProbabilities(0.05, 0.8, 0.1, 0.05),
            ),
            patch.object(
                ForecastEngine, "assess_uncertainty", return_value=UncertaintyAssessment(0.0)
            ),
        ):
            decision = _engine(no_combiner_config, _generators(2, 2)).predict(mixed_history)
        assert decision.final_decision is Outcome.SMALL

    def test_meta_signal_added(self, engine_config, mixed_history, neutral_market):
        decision = _engine(engine_config, _generators(3, 1)).predict(mixed_history)
        sources = [s.source for s in decision.last_prediction_signals]
        assert "WeightedMajority" in sources

    def test_top_contributing_signals(self, no_combiner_config, mixed_history, neutral_market):
        generators = [
            _FixedGenerator(f"G{i}", Outcome.BIG, 0.01 * (i + 1)) for i in range(12)
        ]
        decision = _engine(no_combiner_config, generators).predict(mixed_history)
        weights = [s.weight for s in decision.contributing_signals]
        assert len(decision.contributing_signals) == 10
        assert weights == sorted(weights, reverse=True)
        assert decision.contributing_signals[0].source == "G11"
        assert len(decision.last_prediction_signals) == 12

    def test_confidence_ceiling(self, no_combiner_config, mixed_history, neutral_market):
        no_combiner_config["session"]["prime_sessions"] = list(DEFAULT_PRIME_SESSIONS)
        engine = _engine(
            no_combiner_config,
            _generators(4, 0),
            clock=FixedClock(17),
            external_data=_FixedExternal(1.02),
        )
        decision = engine.predict(mixed_history)
        assert decision.final_confidence <= 0.999
        assert decision.predictions[Outcome.SMALL].confidence == pytest.approx(0.001)

    def test_learned_weights_used(self, no_combiner_config, mixed_history, neutral_market):
        learner = AdaptiveWeightLearner(no_combiner_config["learner"])
        for _ in range(20):
            learner.record_outcome([ContributingSignal("Big0", Outcome.BIG, 0.1)], Outcome.SMALL, "X", 0.6)
        engine = _engine(no_combiner_config, _generators(1, 2), learner=learner)
        decision = engine.predict(mixed_history)
        weights = {s.source: s.weight for s in decision.last_prediction_signals}
        assert weights["Big0"] < 0.1
        assert weights["Small0"] == pytest.approx(0.1)

    def test_real_generators_respect_invariants(self, engine_config, alternating_history):
        decision = _engine(engine_config).predict(alternating_history)
        assert 0.001 <= decision.final_confidence <= 0.999
        assert decision.confidence_level in (1, 2, 3)
        assert decision.timestamp > 0
        assert decision.last_macro_regime != ""


# ===========================================================================
# End to end with the real generators
# ===========================================================================


class TestEndToEnd:
    def test_same_history_same_decision(self, engine_config, mixed_history):
        """Fresh learner and detector, fixed clock, neutral external data."""
        first = _engine(engine_config).predict(mixed_history)
        second = _engine(engine_config).predict(mixed_history)
        assert first.final_decision is second.final_decision
        assert first.final_confidence == second.final_confidence
        assert first.confidence_level == second.confidence_level
        assert first.uncertainty_score == second.uncertainty_score
        assert first.trace == second.trace

    def test_all_big_history_is_dominated(self, engine_config, make_records):
        decision = _engine(engine_config).predict(make_records([5, 6, 7, 8, 9] * 12))
        assert "Unstable: Outcome Dominance" in decision.trace
        assert decision.uncertainty_score > 0

    def test_pending_head_keeps_chaos_penalty(self, engine_config, alternating_history):
        with_pending = [HistoryRecord("next", None, RecordStatus.PENDING)] + alternating_history
        confirmed_only = _engine(engine_config).predict(alternating_history)
        live = _engine(engine_config).predict(with_pending)
        assert "Entropy:STABLE_CHAOS" in live.trace
        assert live.uncertainty_score == confirmed_only.uncertainty_score
        assert live.is_forced_prediction == confirmed_only.is_forced_prediction


# ===========================================================================
# Damping and tiers
# ===========================================================================


class TestDamping:
    def test_uncertainty_damps_confidence(self, no_combiner_config, mixed_history, neutral_market):
        neutral_market.return_value = UncertaintyAssessment(50.0, ["Test"])
        decision = _engine(no_combiner_config, _generators(3, 1)).predict(mixed_history)
        expected = 0.5 + (0.375 / 0.45 - 0.5) * 0.5
        assert decision.final_confidence == pytest.approx(expected)
        assert decision.confidence_level == 2

    def test_prime_session_amplifies(self, no_combiner_config, mixed_history, neutral_market):
        no_combiner_config["session"]["prime_sessions"] = list(DEFAULT_PRIME_SESSIONS)
        engine = _engine(no_combiner_config, _generators(3, 1), clock=FixedClock(17))
        decision = engine.predict(mixed_history)
        expected = 0.5 + (0.375 / 0.45 - 0.5) * 1.15
        assert decision.final_confidence == pytest.approx(expected)
        assert "PrimeTime:PRIME_EVENING" in decision.trace

    def test_external_factor(self, no_combiner_config, mixed_history, neutral_market):
        engine = _engine(no_combiner_config, _generators(3, 1), external_data=_FixedExternal(0.95))
        decision = engine.predict(mixed_history)
        expected = 0.5 + (0.375 / 0.45 - 0.5) * 0.95
        assert decision.final_confidence == pytest.approx(expected)
        assert "ExtData(Test)" in decision.trace

    def test_high_uncertainty_forces_level_one(self, no_combiner_config, mixed_history, neutral_market):
        neutral_market.return_value = UncertaintyAssessment(90.0, ["Instability:x", "STABLE_CHAOS"])
        decision = _engine(no_combiner_config, _generators(3, 1)).predict(mixed_history)
        assert decision.is_forced_prediction
        assert decision.confidence_level == 1
        assert "FORCED_PREDICTION(Reason:Instability:x;STABLE_CHAOS)" in decision.trace


# ===========================================================================
# Feedback loop
# ===========================================================================


class TestFeedbackLoop:
    def test_drift_forces_prediction(self, no_combiner_config, mixed_history):
        detector = ConceptDriftDetector(warning_level=2.0, drift_level=3.0)
        for _ in range(50):
            detector.update(True)
        feedback = PredictionFeedback(
            long_term_global_accuracy=0.6,
            last_predicted_outcome=Outcome.BIG,
            last_final_confidence=0.6,
            last_actual_outcome=2,
        )
        engine = _engine(no_combiner_config, _generators(3, 1), drift_detector=detector)
        decision = engine.predict(mixed_history, feedback)
        assert decision.drift_status is DriftStatus.DRIFT
        assert decision.is_forced_prediction
        assert decision.confidence_level == 1
        assert "Drift:DRIFT" in decision.trace
        assert decision.uncertainty_score >= 70.0

    def test_learner_scored_from_feedback(self, engine_config, short_history):
        engine = _engine(engine_config)
        feedback = PredictionFeedback(
            last_predicted_outcome=Outcome.BIG,
            last_final_confidence=0.7,
            last_macro_regime="RANGE_MED_VOL",
            last_prediction_signals=[
                ContributingSignal("RSI", Outcome.BIG, 0.1),
                ContributingSignal("MACD_Cross", Outcome.SMALL, 0.12),
            ],
            last_actual_outcome=7,
        )
        engine.predict(short_history, feedback)
        rsi = engine.learner.performance("RSI")
        macd = engine.learner.performance("MACD_Cross")
        assert list(rsi.rolling_accuracy) == [1.0]
        assert list(macd.rolling_accuracy) == [0.0]
        assert rsi.regime_stats["RANGE_MED_VOL"].correct == 1
        assert engine.drift_detector.state.n == 1

    def test_invalid_outcome_ignored(self, engine_config, short_history):
        engine = _engine(engine_config)
        feedback = PredictionFeedback(
            last_predicted_outcome=Outcome.BIG,
            last_prediction_signals=[ContributingSignal("RSI", Outcome.BIG, 0.1)],
            last_actual_outcome=12,
        )
        decision = engine.predict(short_history, feedback)
        assert decision.drift_status is DriftStatus.STABLE
        assert engine.learner.performance("RSI") is None
        assert engine.drift_detector.state.n == 0

    def test_fallback_feedback_skips_drift(self, engine_config, short_history):
        engine = _engine(engine_config)
        feedback = PredictionFeedback(last_predicted_outcome=None, last_actual_outcome=3)
        engine.predict(short_history, feedback)
        assert engine.drift_detector.state.n == 0

    def test_unresolved_feedback_is_ignored(self, engine_config, short_history):
        engine = _engine(engine_config)
        feedback = PredictionFeedback(
            last_predicted_outcome=Outcome.BIG,
            last_prediction_signals=[ContributingSignal("RSI", Outcome.BIG, 0.1)],
        )
        engine.predict(short_history, feedback)
        assert engine.learner.performance("RSI") is None
        assert engine.drift_detector.state.n == 0


# ===========================================================================
# Uncertainty
# ===========================================================================


class TestAssessUncertainty:
    CONTEXT = TrendContext(
        TrendStrength.RANGING, TrendDirection.NONE, VolatilityTier.MEDIUM, "RANGE_MED_VOL"
    )
    STABLE = StabilityAssessment(True, "Trend appears stable.")
    MODERATE = EntropyAssessment(EntropyState.STABLE_MODERATE, 0.8)

    def test_calm_market_scores_zero(self, engine_config):
        result = _engine(engine_config).assess_uncertainty(
            self.CONTEXT, self.STABLE, self.MODERATE, 0.5, DriftStatus.STABLE
        )
        assert result.score == 0.0
        assert result.reasons == []
        assert result.factor == 1.0

    def test_penalties_add_up(self, engine_config):
        context = TrendContext(
            TrendStrength.RANGING,
            TrendDirection.NONE,
            VolatilityTier.HIGH,
            "RANGE_HIGH_VOL_TRANSITION",
            is_transitioning=True,
        )
        result = _engine(engine_config).assess_uncertainty(
            context,
            StabilityAssessment(False, "Unstable: Excessive Choppiness"),
            EntropyAssessment(EntropyState.STABLE_CHAOS, 0.99),
            0.5,
            DriftStatus.WARNING,
        )
        assert result.score == pytest.approx(40 + 45 + 35 + 25 + 20)
        assert result.factor == 0.0
        assert "Instability:Unstable: Excessive Choppiness" in result.reasons

    def test_low_global_accuracy(self, engine_config):
        result = _engine(engine_config).assess_uncertainty(
            self.CONTEXT, self.STABLE, self.MODERATE, 0.38, DriftStatus.STABLE
        )
        assert result.score == pytest.approx(15.0)
        assert result.reasons == ["LowGlobalAcc:0.38"]

    def test_drift_penalty(self, engine_config):
        result = _engine(engine_config).assess_uncertainty(
            self.CONTEXT, self.STABLE, self.MODERATE, None, DriftStatus.DRIFT
        )
        assert result.score == pytest.approx(70.0)
        assert result.reasons == ["ConceptDrift"]


class TestConstruction:
    def test_defaults_from_global_config(self, mock_config_loader, mixed_history):
        with (
            patch("core.forecast_engine.get_config", return_value=mock_config_loader),
            patch("core.weight_learner.get_config", return_value=mock_config_loader),
            patch("core.drift_detector.get_config", return_value=mock_config_loader),
        ):
            engine = ForecastEngine(clock=FixedClock(3), rng=random.Random(1))
        decision = engine.predict(mixed_history)
        assert decision.final_decision in (Outcome.BIG, Outcome.SMALL)
        mock_config_loader.get_engine_config.assert_called()
