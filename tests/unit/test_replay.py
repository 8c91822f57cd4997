"""
Unit tests for core/replay.py.

Tests cover:
- Walk-forward windows (newest first, only the past is visible)
- Hit counting overall and per confidence level
- Feedback threading between steps
- Pending targets and oversized warmups
"""

from __future__ import annotations

import random
from unittest.mock import MagicMock

from core.drift_detector import ConceptDriftDetector
from core.external import FixedClock, NeutralExternalData
from core.forecast_engine import ForecastEngine
from core.replay import ReplayReport, replay
from core.weight_learner import AdaptiveWeightLearner
from shared.types import (
    CategoryPrediction,
    ForecastDecision,
    HistoryRecord,
    Outcome,
    RecordStatus,
)

# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _always_big(level: int = 2) -> ForecastDecision:
    return ForecastDecision(
        predictions={
            Outcome.BIG: CategoryPrediction(0.7, "AdaptiveEnsemble"),
            Outcome.SMALL: CategoryPrediction(0.3, "AdaptiveEnsemble"),
        },
        final_decision=Outcome.BIG,
        final_confidence=0.7,
        confidence_level=level,
        is_forced_prediction=False,
        trace="test",
        contributing_signals=[],
        last_macro_regime="RANGE_MED_VOL",
        last_prediction_signals=[],
        timestamp=1,
    )


def _real_engine(config) -> ForecastEngine:
    return ForecastEngine(
        learner=AdaptiveWeightLearner(config["learner"]),
        drift_detector=ConceptDriftDetector(config=config["drift"]),
        external_data=NeutralExternalData(),
        clock=FixedClock(3),
        rng=random.Random(11),
        config=config,
    )


# ===========================================================================
# Replay with a scripted engine
# ===========================================================================


class TestReplayCounting:
    def test_hits_and_levels(self, alternating_history):
        """Targets 52..59 (oldest first) alternate 2, 7, ...; half of them are BIG."""
        engine = MagicMock()
        engine.predict.return_value = _always_big(level=2)

        report = replay(alternating_history, engine, warmup=52)

        assert report.total == 8
        assert report.hits == 4
        assert report.accuracy == 0.5
        assert report.by_level[2].total == 8
        assert report.by_level[2].hits == 4
        assert report.fallbacks == 0
        assert report.forced == 0

    def test_windows_are_newest_first_past_only(self, alternating_history):
        engine = MagicMock()
        engine.predict.return_value = _always_big()

        replay(alternating_history, engine, warmup=52)

        first_window, first_feedback = engine.predict.call_args_list[0][0]
        assert len(first_window) == 52
        assert first_window[0] is alternating_history[8]
        assert first_window[-1] is alternating_history[-1]
        assert first_feedback is None

        last_window, last_feedback = engine.predict.call_args_list[-1][0]
        assert len(last_window) == 59
        assert last_window[0] is alternating_history[1]
        assert last_feedback.last_actual_outcome == alternating_history[1].outcome

    def test_feedback_threaded(self, alternating_history):
        engine = MagicMock()
        engine.predict.return_value = _always_big()

        report = replay(alternating_history, engine, warmup=52)

        assert report.final_feedback.last_actual_outcome == alternating_history[0].outcome
        assert report.final_feedback.long_term_global_accuracy is not None

    def test_pending_target_skipped(self, alternating_history):
        records = [HistoryRecord("next", None, RecordStatus.PENDING)] + alternating_history
        engine = MagicMock()
        engine.predict.return_value = _always_big()

        report = replay(records, engine, warmup=52)

        assert report.skipped == 1
        assert report.total == 8

    def test_warmup_beyond_history(self, short_history):
        engine = MagicMock()
        report = replay(short_history, engine, warmup=52)
        assert report.total == 0
        assert report.accuracy is None
        assert report.final_feedback is None
        engine.predict.assert_not_called()


# ===========================================================================
# Replay with the real engine
# ===========================================================================


class TestReplayEngine:
    def test_walk_forward(self, engine_config, make_records):
        records = make_records([6, 7, 2, 3, 8, 1, 5, 4, 9, 0] * 7)
        report = replay(records, _real_engine(engine_config), warmup=52)

        assert report.total == 18
        assert 0 <= report.hits <= 18
        assert sum(stats.total for stats in report.by_level.values()) == 18
        assert set(report.by_level) <= {1, 2, 3}

    def test_report_to_dict(self, engine_config, mixed_history):
        report = replay(mixed_history, _real_engine(engine_config), warmup=56)
        data = report.to_dict()
        assert data["total"] == 4
        assert set(data) == {
            "total",
            "hits",
            "accuracy",
            "forced",
            "fallbacks",
            "skipped",
            "by_level",
            "final_feedback",
        }
        assert all(isinstance(level, str) for level in data["by_level"])


def test_empty_report():
    report = ReplayReport()
    assert report.accuracy is None
    assert report.to_dict()["final_feedback"] is None
