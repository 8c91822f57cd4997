"""
Adaptive weight learner for the outcome forecaster.

Keeps one PerformanceRecord per signal source: a rolling window of scored
outcomes plus per-macro-regime hit counts. The record turns historical
accuracy into a weight multiplier for the next decision and puts chronically
poor sources on probation.

Weight multiplier:
    overall = 1 + (rolling_accuracy - 0.5) * 1.2        (>= 10 scored outcomes)
    regime  = 1 + (regime_accuracy  - 0.5) * 1.5        (>= 5 in this regime,
                                                          clamped to [0.4, 1.6])
    factor  = (overall + regime) / 2, each defaulting to 1.0
    factor  = min(factor, 0.2) while on probation
    weight  = max(base * clamp(factor, 0.1, 1.8), 0.001)

Scoring: 1 when a source was right, 0 when wrong, -0.5 when wrong and the
final decision it fed was a miss at confidence > 0.75.

The ledger is owned by the caller and injected into the engine; one lock
guards every read-modify-write.
"""

from __future__ import annotations

import copy
import threading
from collections.abc import Iterable, Mapping
from typing import Any, Protocol

from bot_logging.logger_manager import setup_module_logger
from config.loader import get_config
from shared.constants import (
    HIGH_CONFIDENCE_MISS,
    HIGH_CONFIDENCE_MISS_SCORE,
    MAX_WEIGHT_FACTOR,
    MIN_OBSERVATIONS_FOR_ADJUST,
    MIN_REGIME_OBSERVATIONS,
    MIN_WEIGHT_FACTOR,
    OVERALL_DEVIATION_SCALE,
    PERFORMANCE_WINDOW,
    PROBATION_MIN_OBSERVATIONS,
    PROBATION_RELEASE_ACCURACY,
    PROBATION_THRESHOLD_ACCURACY,
    PROBATION_WEIGHT_CAP,
    REGIME_DEVIATION_SCALE,
    REGIME_FACTOR_MAX,
    REGIME_FACTOR_MIN,
    UNKNOWN_REGIME,
    WEIGHT_FLOOR,
)
from shared.types import Outcome, PerformanceRecord, RegimeStats


class ScoredSignal(Protocol):
    source: str
    prediction: Outcome


class AdaptiveWeightLearner:
    """Per-source, per-regime performance ledger with probation."""

    def __init__(self, config: Mapping[str, Any] | None = None) -> None:
        if config is None:
            config = get_config().get_engine_section("learner")

        self._window = int(config.get("performance_window", PERFORMANCE_WINDOW))
        self._min_observations = config.get("min_observations_for_adjust", MIN_OBSERVATIONS_FOR_ADJUST)
        self._min_regime_observations = config.get("min_regime_observations", MIN_REGIME_OBSERVATIONS)
        self._max_factor = config.get("max_weight_factor", MAX_WEIGHT_FACTOR)
        self._min_factor = config.get("min_weight_factor", MIN_WEIGHT_FACTOR)
        self._probation_threshold = config.get("probation_threshold_accuracy", PROBATION_THRESHOLD_ACCURACY)
        self._probation_min_observations = config.get("probation_min_observations", PROBATION_MIN_OBSERVATIONS)
        self._probation_release = config.get("probation_release_accuracy", PROBATION_RELEASE_ACCURACY)
        self._probation_cap = config.get("probation_weight_cap", PROBATION_WEIGHT_CAP)
        self._high_confidence_miss = config.get("high_confidence_miss", HIGH_CONFIDENCE_MISS)

        self._records: dict[str, PerformanceRecord] = {}
        self._lock = threading.Lock()

        self._logger = setup_module_logger(
            "weight_learner",
            "weight_learner.log",
            module_folder="Weight_Learner_Logs",
            formatter="json",
        )

    # ------------------------------------------------------------------
    # Weight adjustment
    # ------------------------------------------------------------------

    def adjusted_weight(self, source: str, base_weight: float, regime: str | None) -> float:
        """
        Accuracy-adjusted weight for a signal source in the current regime.

        Args:
            source: Signal source identifier (e.g. "RSI").
            base_weight: Generator-scaled weight of the signal.
            regime: Current macro-regime label.

        Returns:
            Adjusted weight, never below WEIGHT_FLOOR. Unknown sources get
            base_weight unchanged (subject to the floor).
        """
        regime = regime or UNKNOWN_REGIME
        with self._lock:
            record = self._records.get(source)
            if record is None:
                factor = 1.0
            else:
                factor = self._factor(record, regime)

        factor = min(max(factor, self._min_factor), self._max_factor)
        return max(base_weight * factor, WEIGHT_FLOOR)

    def _factor(self, record: PerformanceRecord, regime: str) -> float:
        overall = 1.0
        if len(record.rolling_accuracy) >= self._min_observations:
            overall = 1.0 + (record.accuracy - 0.5) * OVERALL_DEVIATION_SCALE

        regime_factor = 1.0
        stats = record.regime_stats.get(regime)
        if stats is not None and stats.total >= self._min_regime_observations:
            regime_accuracy = stats.correct / stats.total
            regime_factor = 1.0 + (regime_accuracy - 0.5) * REGIME_DEVIATION_SCALE
            regime_factor = max(REGIME_FACTOR_MIN, min(REGIME_FACTOR_MAX, regime_factor))

        factor = (overall + regime_factor) / 2
        if record.on_probation:
            factor = min(factor, self._probation_cap)
        return factor

    # ------------------------------------------------------------------
    # Learning
    # ------------------------------------------------------------------

    def record_outcome(
        self,
        signals: Iterable[ScoredSignal],
        actual: Outcome,
        regime: str | None,
        last_confidence: float | None,
        last_prediction: Outcome | None = None,
    ) -> None:
        """
        Score the previous decision's contributing signals against the realised outcome.

        Args:
            signals: Signals that fed the previous decision.
            actual: Realised category.
            regime: Macro regime the previous decision was made in.
            last_confidence: Final confidence of the previous decision.
            last_prediction: Final decision of the previous invocation. Without
                it no high-confidence miss penalty applies.
        """
        regime = regime or UNKNOWN_REGIME
        high_confidence_miss = (
            last_confidence is not None
            and last_prediction is not None
            and last_confidence > self._high_confidence_miss
            and last_prediction is not actual
        )

        with self._lock:
            transitions = []
            for signal in signals:
                source = getattr(signal, "source", None)
                if not source:
                    continue
                record = self._records.get(source)
                if record is None:
                    record = PerformanceRecord(window=self._window)
                    self._records[source] = record
                stats = record.regime_stats.setdefault(regime, RegimeStats())

                record.total_observations += 1
                stats.total += 1

                if signal.prediction is actual:
                    score = 1.0
                elif high_confidence_miss:
                    score = HIGH_CONFIDENCE_MISS_SCORE
                else:
                    score = 0.0

                if score > 0:
                    stats.correct += 1
                record.rolling_accuracy.append(score)
                transition = self._update_probation(record)
                if transition is not None:
                    transitions.append((source, *transition))

        for source, on_probation, accuracy, observations in transitions:
            self._log_probation(source, on_probation, accuracy, observations)

    def _update_probation(self, record: PerformanceRecord) -> tuple[bool, float, int] | None:
        """Apply probation hysteresis; returns (on_probation, accuracy, window) on a change."""
        accuracy = record.accuracy
        if accuracy is None:
            return None
        observations = len(record.rolling_accuracy)
        if observations >= self._probation_min_observations and accuracy < self._probation_threshold:
            if record.on_probation:
                return None
            record.on_probation = True
            return True, accuracy, observations
        if accuracy > self._probation_release and record.on_probation:
            record.on_probation = False
            return False, accuracy, observations
        return None

    def _log_probation(
        self, source: str, on_probation: bool, accuracy: float, observations: int
    ) -> None:
        if on_probation:
            self._logger.warning(
                "Probation ON: %s (accuracy %.3f over %d)",
                source,
                accuracy,
                observations,
                extra={"source": source, "accuracy": accuracy, "observations": observations},
            )
        else:
            self._logger.info(
                "Probation OFF: %s (accuracy %.3f)",
                source,
                accuracy,
                extra={"source": source, "accuracy": accuracy},
            )

    # ------------------------------------------------------------------
    # Inspection
    # ------------------------------------------------------------------

    def performance(self, source: str) -> PerformanceRecord | None:
        """Copy of a source's record, or None if it has never been scored."""
        with self._lock:
            record = self._records.get(source)
            return copy.deepcopy(record) if record is not None else None

    def snapshot(self) -> dict[str, dict[str, Any]]:
        with self._lock:
            return {
                source: {
                    "total_observations": record.total_observations,
                    "accuracy": record.accuracy,
                    "window_size": len(record.rolling_accuracy),
                    "on_probation": record.on_probation,
                    "regimes": {
                        regime: {"correct": stats.correct, "total": stats.total}
                        for regime, stats in record.regime_stats.items()
                    },
                }
                for source, record in self._records.items()
            }

    def reset(self) -> None:
        with self._lock:
            self._records.clear()
