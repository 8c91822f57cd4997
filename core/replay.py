"""
Walk-forward replay of a stored history through the forecast engine.

Starting after `warmup` records, each step shows the engine only the records
known at that point, scores its decision against the next outcome and feeds
that outcome back, exactly as a live caller would. The engine's learner and
drift detector therefore evolve as they would in production.
"""

from __future__ import annotations

from collections.abc import Sequence
from dataclasses import dataclass, field
from typing import Any

from bot_logging.logger_manager import setup_module_logger
from core.feedback import DEFAULT_ACCURACY_SMOOTHING, next_feedback
from core.forecast_engine import ForecastEngine
from shared.constants import MIN_CONFIRMED_HISTORY
from shared.types import HistoryRecord, PredictionFeedback

_PROGRESS_EVERY = 100


@dataclass
class TierStats:
    total: int = 0
    hits: int = 0

    @property
    def accuracy(self) -> float | None:
        return self.hits / self.total if self.total else None


@dataclass
class ReplayReport:
    total: int = 0
    hits: int = 0
    forced: int = 0
    fallbacks: int = 0
    skipped: int = 0  # target periods without a confirmed outcome
    by_level: dict[int, TierStats] = field(default_factory=dict)
    final_feedback: PredictionFeedback | None = None

    @property
    def accuracy(self) -> float | None:
        return self.hits / self.total if self.total else None

    def to_dict(self) -> dict[str, Any]:
        return {
            "total": self.total,
            "hits": self.hits,
            "accuracy": self.accuracy,
            "forced": self.forced,
            "fallbacks": self.fallbacks,
            "skipped": self.skipped,
            "by_level": {
                str(level): {"total": s.total, "hits": s.hits, "accuracy": s.accuracy}
                for level, s in sorted(self.by_level.items())
            },
            "final_feedback": self.final_feedback.to_dict() if self.final_feedback else None,
        }


def replay(
    records: Sequence[HistoryRecord],
    engine: ForecastEngine,
    warmup: int = MIN_CONFIRMED_HISTORY,
    smoothing: float = DEFAULT_ACCURACY_SMOOTHING,
) -> ReplayReport:
    """
    Replay `records` (newest first) oldest to newest through `engine`.

    Args:
        records: Full stored history, newest first.
        engine: Engine whose learner and drift detector accumulate state.
        warmup: Number of oldest records shown before the first decision.
        smoothing: Running global-accuracy smoothing passed to next_feedback.

    Returns:
        ReplayReport with hit counts overall and per confidence level.
    """
    logger = setup_module_logger("replay", "replay.log", module_folder="Replay_Logs")
    chronological = list(reversed(records))
    report = ReplayReport()
    feedback: PredictionFeedback | None = None

    logger.info("Replay start: %d records, warmup %d", len(chronological), warmup)
    for i in range(max(warmup, 0), len(chronological)):
        target = chronological[i]
        if not target.is_confirmed:
            report.skipped += 1
            continue

        window = chronological[:i][::-1]
        decision = engine.predict(window, feedback)

        hit = decision.final_decision is target.category
        report.total += 1
        report.hits += int(hit)
        report.forced += int(decision.is_forced_prediction)
        report.fallbacks += int(decision.fallback_reason is not None)
        tier = report.by_level.setdefault(decision.confidence_level, TierStats())
        tier.total += 1
        tier.hits += int(hit)

        feedback = next_feedback(decision, target.outcome, feedback, smoothing)

        if report.total % _PROGRESS_EVERY == 0:
            logger.info("Replay progress: %d decisions, accuracy %.3f", report.total, report.accuracy)

    report.final_feedback = feedback
    logger.info(
        "Replay done: %d decisions, %d hits, %d forced, %d fallbacks",
        report.total,
        report.hits,
        report.forced,
        report.fallbacks,
    )
    return report
