"""
Decision synthesizer for the outcome forecaster.

One synchronous decision cycle per call to ForecastEngine.predict():

    1. Close the feedback loop: feed the previous decision's correctness to the
       drift detector and score the previous contributing signals in the
       weight learner.
    2. Read the market: regime context, trend stability, entropy state and
       regime probabilities.
    3. Fall back to a forced random call when confirmed history is short.
    4. Run every generator on confirmed history, adjust weights through the
       learner, compute consensus and the weighted-majority meta-signal, and
       drop negligible signals (forced fallback when fewer than three remain).
    5. Fuse per-category weight with regime probabilities and consensus into a
       decision and a confidence.
    6. Damp the confidence toward 0.5 by session, external and uncertainty
       factors; assign a tier; force tier 1 on high uncertainty or drift.

The engine holds no learning state of its own: the learner and the drift
detector are injected, and everything else the next call needs travels back
through the returned decision (see core.feedback.next_feedback).

Usage:
    learner = AdaptiveWeightLearner()
    engine = ForecastEngine(learner=learner, drift_detector=ConceptDriftDetector())
    decision = engine.predict(records, feedback)
"""

from __future__ import annotations

import random
import time
from collections.abc import Callable, Mapping, Sequence
from typing import Any

from bot_logging.logger_manager import log_decision, setup_module_logger
from config.loader import get_config
from core.consensus import compute_consensus
from core.drift_detector import ConceptDriftDetector
from core.external import (
    ExternalDataProvider,
    ExternalModel,
    NeutralExternalData,
    SessionClock,
)
from core.market_state import (
    DEFAULT_PRIME_SESSIONS,
    assess_entropy,
    assess_trend_stability,
    estimate_regime_probabilities,
    prime_session,
)
from core.regime import RegimeClassifier
from core.signal_generators import build_combiner, build_generators
from core.weight_learner import AdaptiveWeightLearner
from shared.constants import (
    DEFAULT_SESSION_TIMEZONE,
    FORCED_UNCERTAINTY_SCORE,
    GLOBAL_ACCURACY_FLOOR,
    GLOBAL_ACCURACY_PENALTY,
    LEVEL_2_CONFIDENCE,
    LEVEL_3_CONFIDENCE,
    MIN_CONFIRMED_HISTORY,
    MIN_VALID_SIGNALS,
    NEGLIGIBLE_WEIGHT,
    PROBABILITY_CEILING,
    PROBABILITY_FLOOR,
    TOP_CONTRIBUTING_SIGNALS,
    UNCERTAINTY_CHAOS,
    UNCERTAINTY_DRIFT,
    UNCERTAINTY_DRIFT_WARNING,
    UNCERTAINTY_HIGH_VOLATILITY,
    UNCERTAINTY_INSTABILITY,
    UNCERTAINTY_TRANSITION,
)
from shared.types import (
    CategoryPrediction,
    ContributingSignal,
    DriftStatus,
    EntropyAssessment,
    FallbackReason,
    ForecastDecision,
    HistoryRecord,
    Outcome,
    PredictionFeedback,
    Signal,
    StabilityAssessment,
    TrendContext,
    UncertaintyAssessment,
    VolatilityTier,
)

ENSEMBLE_LOGIC = "AdaptiveEnsemble"
FALLBACK_LOGIC = "ForcedRandom"


def _clamp_probability(value: float) -> float:
    return max(PROBABILITY_FLOOR, min(PROBABILITY_CEILING, value))


def _damp(confidence: float, factor: float) -> float:
    """Scale the distance of `confidence` from 0.5 by `factor`."""
    return 0.5 + (confidence - 0.5) * factor


class ForecastEngine:
    """
    Fuses regime-aware, accuracy-weighted signals into a BIG/SMALL decision.

    All collaborators are injectable; defaults are built from config/engine.json.
    """

    def __init__(
        self,
        learner: AdaptiveWeightLearner | None = None,
        drift_detector: ConceptDriftDetector | None = None,
        model: ExternalModel | None = None,
        external_data: ExternalDataProvider | None = None,
        clock: Callable[[], int] | None = None,
        rng: random.Random | None = None,
        config: Mapping[str, Any] | None = None,
    ) -> None:
        if config is None:
            config = get_config().get_engine_config()

        self._learner = learner or AdaptiveWeightLearner(config.get("learner", {}))
        self._drift_detector = drift_detector or ConceptDriftDetector(config=config.get("drift", {}))
        self._external_data = external_data or NeutralExternalData()
        self._rng = rng or random.Random()

        session_cfg = config.get("session", {})
        self._clock = clock or SessionClock(session_cfg.get("timezone", DEFAULT_SESSION_TIMEZONE))
        self._prime_sessions = session_cfg.get("prime_sessions", DEFAULT_PRIME_SESSIONS)

        regime_cfg = config.get("regime", {})
        self._classifier = RegimeClassifier(**regime_cfg)

        generators_cfg = config.get("generators", {})
        self._generators = build_generators(generators_cfg, model)
        self._combiner = build_combiner(generators_cfg)

        decision_cfg = config.get("decision", {})
        self._min_confirmed = decision_cfg.get("min_confirmed_history", MIN_CONFIRMED_HISTORY)
        self._min_valid_signals = decision_cfg.get("min_valid_signals", MIN_VALID_SIGNALS)
        self._level_2 = decision_cfg.get("level_2_confidence", LEVEL_2_CONFIDENCE)
        self._level_3 = decision_cfg.get("level_3_confidence", LEVEL_3_CONFIDENCE)
        self._forced_score = decision_cfg.get("forced_uncertainty_score", FORCED_UNCERTAINTY_SCORE)
        self._top_signals = decision_cfg.get("top_contributing_signals", TOP_CONTRIBUTING_SIGNALS)
        self._accuracy_floor = decision_cfg.get("global_accuracy_floor", GLOBAL_ACCURACY_FLOOR)
        self._accuracy_penalty = decision_cfg.get("global_accuracy_penalty", GLOBAL_ACCURACY_PENALTY)

        penalties = config.get("uncertainty", {})
        self._penalty_drift = penalties.get("drift", UNCERTAINTY_DRIFT)
        self._penalty_drift_warning = penalties.get("drift_warning", UNCERTAINTY_DRIFT_WARNING)
        self._penalty_instability = penalties.get("instability", UNCERTAINTY_INSTABILITY)
        self._penalty_chaos = penalties.get("chaos", UNCERTAINTY_CHAOS)
        self._penalty_transition = penalties.get("transition", UNCERTAINTY_TRANSITION)
        self._penalty_high_volatility = penalties.get("high_volatility", UNCERTAINTY_HIGH_VOLATILITY)

        self._logger = setup_module_logger(
            "forecast_engine", "forecast_engine.log", module_folder="Forecast_Engine_Logs"
        )

    @property
    def learner(self) -> AdaptiveWeightLearner:
        return self._learner

    @property
    def drift_detector(self) -> ConceptDriftDetector:
        return self._drift_detector

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    def predict(
        self,
        records: Sequence[HistoryRecord],
        feedback: PredictionFeedback | None = None,
    ) -> ForecastDecision:
        """
        Produce a decision for the outcome following `records`.

        Args:
            records: History, newest first. Pending and malformed records
                are tolerated; only confirmed records feed the generators.
            feedback: The previous decision's round-trip state with the
                realised outcome, or None on the first call.

        Returns:
            ForecastDecision. Never raises on short or malformed history.
        """
        hour = self._clock()
        session = prime_session(hour, self._prime_sessions)
        external = self._external_data.get_factor()

        trace = [f"Session(Hour:{hour})", external.reason]
        if session is not None:
            trace.append(f"PrimeTime:{session.name}")

        global_accuracy = 0.5
        if feedback is not None and feedback.long_term_global_accuracy is not None:
            global_accuracy = feedback.long_term_global_accuracy

        context = self._classifier.classify(records)
        trace.append(
            f"Trend(Dir:{context.direction.value},Str:{context.strength.value},"
            f"Vol:{context.volatility.value},Regime:{context.macro_regime})"
        )
        stability = assess_trend_stability(records)
        if not stability.is_stable:
            trace.append(stability.reason)
        entropy = assess_entropy(records)
        trace.append(f"Entropy:{entropy.state.value}")
        probabilities = estimate_regime_probabilities(context, entropy)
        trace.append(
            f"RegimeProb(B:{probabilities.bull_trend:.2f},S:{probabilities.bear_trend:.2f})"
        )

        drift_status = self._apply_feedback(feedback)
        if drift_status is not DriftStatus.STABLE:
            trace.append(f"Drift:{drift_status.value}")

        uncertainty = self.assess_uncertainty(
            context, stability, entropy, global_accuracy, drift_status
        )

        confirmed = [r for r in records if r.is_confirmed]
        if len(confirmed) < self._min_confirmed:
            trace.append(f"InsufficientHistory({len(confirmed)}<{self._min_confirmed})")
            return self._fallback(
                FallbackReason.INSUFFICIENT_HISTORY, context, drift_status, uncertainty, trace
            )

        signals = self._collect_signals(confirmed, context)
        consensus = compute_consensus(signals)
        trace.append(f"Consensus(Factor:{consensus.factor:.2f})")

        if self._combiner is not None:
            meta = self._combiner.combine(signals, consensus)
            if meta is not None:
                signals.append(self._adjust(meta, context))

        valid = [s for s in signals if s.effective_weight > NEGLIGIBLE_WEIGHT]
        trace.append(f"ValidSignals({len(valid)})")
        if len(valid) < self._min_valid_signals:
            trace.append("NoValidSignals_ForceRandom")
            return self._fallback(
                FallbackReason.INSUFFICIENT_SIGNALS, context, drift_status, uncertainty, trace
            )

        big = sum(s.effective_weight for s in valid if s.prediction is Outcome.BIG)
        small = sum(s.effective_weight for s in valid if s.prediction is Outcome.SMALL)
        big *= 1.0 + probabilities.bull_trend - probabilities.bear_trend
        small *= 1.0 + probabilities.bear_trend - probabilities.bull_trend
        big *= consensus.factor
        small *= 2.0 - consensus.factor

        total = big + small
        if big > small:
            final_decision = Outcome.BIG
        elif small > big:
            final_decision = Outcome.SMALL
        else:
            final_decision = self._random_outcome()
            trace.append("Tie_Random")
        confidence = max(big, small) / total if total > 0 else 0.5

        if session is not None:
            confidence = _damp(confidence, session.confidence_multiplier)
        confidence = _damp(confidence, external.factor)
        confidence = _damp(confidence, uncertainty.factor)
        confidence = min(confidence, PROBABILITY_CEILING)
        trace.append(
            f"Uncertainty(Score:{uncertainty.score:.0f},Factor:{uncertainty.factor:.2f})"
        )

        level = 1
        if confidence > self._level_2:
            level = 2
        if confidence > self._level_3:
            level = 3

        forced = uncertainty.score >= self._forced_score or drift_status is DriftStatus.DRIFT
        if forced:
            level = 1
            reason = ";".join(uncertainty.reasons) or "Drift"
            trace.append(f"FORCED_PREDICTION(Reason:{reason})")

        contributing = [ContributingSignal(s.source, s.prediction, s.effective_weight) for s in valid]
        top = sorted(contributing, key=lambda s: s.weight, reverse=True)[: self._top_signals]

        decision = ForecastDecision(
            predictions=self._category_predictions(final_decision, confidence, ENSEMBLE_LOGIC),
            final_decision=final_decision,
            final_confidence=confidence,
            confidence_level=level,
            is_forced_prediction=forced,
            trace=" -> ".join(trace),
            contributing_signals=top,
            last_macro_regime=context.macro_regime,
            last_prediction_signals=contributing,
            timestamp=int(time.time() * 1000),
            drift_status=drift_status,
            uncertainty_score=uncertainty.score,
        )
        self._log(decision)
        return decision

    # ------------------------------------------------------------------
    # Feedback loop
    # ------------------------------------------------------------------

    def _apply_feedback(self, feedback: PredictionFeedback | None) -> DriftStatus:
        if feedback is None or feedback.last_actual_outcome is None:
            return DriftStatus.STABLE
        actual = Outcome.from_number(feedback.last_actual_outcome)
        if actual is None:
            self._logger.warning(
                "Ignoring feedback with invalid last outcome %r", feedback.last_actual_outcome
            )
            return DriftStatus.STABLE

        drift_status = DriftStatus.STABLE
        if feedback.last_predicted_outcome is not None:
            drift_status = self._drift_detector.update(
                feedback.last_predicted_outcome is actual
            )

        if feedback.last_prediction_signals:
            self._learner.record_outcome(
                feedback.last_prediction_signals,
                actual,
                feedback.last_macro_regime,
                feedback.last_final_confidence,
                feedback.last_predicted_outcome,
            )
        return drift_status

    # ------------------------------------------------------------------
    # Signals
    # ------------------------------------------------------------------

    def _adjust(self, signal: Signal, context: TrendContext) -> Signal:
        weight = self._learner.adjusted_weight(signal.source, signal.base_weight, context.macro_regime)
        return signal.with_adjusted_weight(weight)

    def _collect_signals(
        self, confirmed: Sequence[HistoryRecord], context: TrendContext
    ) -> list[Signal]:
        signals = []
        for generator in self._generators:
            signal = generator.generate(confirmed, context, generator.base_weight)
            if signal is None or signal.base_weight <= 0:
                continue
            signals.append(self._adjust(signal, context))
        return signals

    # ------------------------------------------------------------------
    # Uncertainty
    # ------------------------------------------------------------------

    def assess_uncertainty(
        self,
        context: TrendContext,
        stability: StabilityAssessment,
        entropy: EntropyAssessment,
        global_accuracy: float | None,
        drift_status: DriftStatus,
    ) -> UncertaintyAssessment:
        """Additive uncertainty score; >= the forced threshold overrides the tier."""
        score = 0.0
        reasons = []

        if drift_status is DriftStatus.DRIFT:
            score += self._penalty_drift
            reasons.append("ConceptDrift")
        elif drift_status is DriftStatus.WARNING:
            score += self._penalty_drift_warning
            reasons.append("DriftWarning")
        if not stability.is_stable:
            score += self._penalty_instability
            reasons.append(f"Instability:{stability.reason}")
        if entropy.state.is_chaotic:
            score += self._penalty_chaos
            reasons.append(entropy.state.value)
        if context.is_transitioning:
            score += self._penalty_transition
            reasons.append("RegimeTransition")
        if context.volatility is VolatilityTier.HIGH:
            score += self._penalty_high_volatility
            reasons.append("HighVolatility")
        if global_accuracy is not None and global_accuracy < self._accuracy_floor:
            score += (self._accuracy_floor - global_accuracy) * self._accuracy_penalty
            reasons.append(f"LowGlobalAcc:{global_accuracy:.2f}")

        return UncertaintyAssessment(score, reasons)

    # ------------------------------------------------------------------
    # Output
    # ------------------------------------------------------------------

    def _random_outcome(self) -> Outcome:
        return Outcome.BIG if self._rng.random() > 0.5 else Outcome.SMALL

    @staticmethod
    def _category_predictions(
        decision: Outcome, confidence: float, logic: str
    ) -> dict[Outcome, CategoryPrediction]:
        return {
            decision: CategoryPrediction(_clamp_probability(confidence), logic),
            decision.opposite(): CategoryPrediction(_clamp_probability(1.0 - confidence), logic),
        }

    def _fallback(
        self,
        reason: FallbackReason,
        context: TrendContext,
        drift_status: DriftStatus,
        uncertainty: UncertaintyAssessment,
        trace: list[str],
    ) -> ForecastDecision:
        final_decision = self._random_outcome()
        decision = ForecastDecision(
            predictions=self._category_predictions(final_decision, 0.5, FALLBACK_LOGIC),
            final_decision=final_decision,
            final_confidence=0.5,
            confidence_level=1,
            is_forced_prediction=True,
            trace=" -> ".join(trace),
            contributing_signals=[],
            last_macro_regime=context.macro_regime,
            last_prediction_signals=[],
            timestamp=int(time.time() * 1000),
            drift_status=drift_status,
            uncertainty_score=uncertainty.score,
            fallback_reason=reason,
        )
        self._logger.info("Fallback %s: random %s", reason.value, final_decision.value)
        log_decision(decision.to_dict())
        return decision

    def _log(self, decision: ForecastDecision) -> None:
        self._logger.info(
            "Decision %s @ %.1f%% | Lvl %d | Drift %s | Uncertainty %.0f | Regime %s",
            decision.final_decision.value,
            decision.final_confidence * 100,
            decision.confidence_level,
            decision.drift_status.value,
            decision.uncertainty_score,
            decision.last_macro_regime,
        )
        log_decision(decision.to_dict())
