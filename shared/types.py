"""
Shared data types for the outcome forecaster.

Centralized dataclasses and enums used across all modules.
"""

from __future__ import annotations

import math
from collections import deque
from dataclasses import dataclass, field, replace
from enum import Enum
from typing import Any

# ---------------------------------------------------------------------------
# Enums
# ---------------------------------------------------------------------------


class Outcome(Enum):
    BIG = "BIG"  # 5-9
    SMALL = "SMALL"  # 0-4

    @classmethod
    def from_number(cls, number: Any) -> Outcome | None:
        """Map a raw 0-9 outcome to its category; anything else maps to None."""
        value = _to_int(number)
        if value is None:
            return None
        if 0 <= value <= 4:
            return cls.SMALL
        if 5 <= value <= 9:
            return cls.BIG
        return None

    @classmethod
    def parse(cls, value: Any) -> Outcome | None:
        if isinstance(value, cls):
            return value
        if isinstance(value, str):
            try:
                return cls(value.strip().upper())
            except ValueError:
                return None
        return None

    def opposite(self) -> Outcome:
        return Outcome.SMALL if self is Outcome.BIG else Outcome.BIG


class RecordStatus(Enum):
    WIN = "Win"
    LOSS = "Loss"
    PENDING = "Pending"


class TrendStrength(Enum):
    STRONG = "STRONG"
    MODERATE = "MODERATE"
    WEAK = "WEAK"
    RANGING = "RANGING"
    UNKNOWN = "UNKNOWN"


class TrendDirection(Enum):
    BIG = "BIG"
    SMALL = "SMALL"
    BIG_BIASED_RANGE = "BIG_BIASED_RANGE"
    SMALL_BIASED_RANGE = "SMALL_BIASED_RANGE"
    NONE = "NONE"


class VolatilityTier(Enum):
    VERY_LOW = "VERY_LOW"  # std-dev <= 0.9
    LOW = "LOW"  # 0.9 - 1.8
    MEDIUM = "MEDIUM"  # 1.8 - 3.0
    HIGH = "HIGH"  # > 3.0
    UNKNOWN = "UNKNOWN"


class EntropyState(Enum):
    ORDERLY = "ORDERLY"  # entropy < 0.6
    STABLE_MODERATE = "STABLE_MODERATE"
    STABLE_CHAOS = "STABLE_CHAOS"  # entropy > 0.95
    UNCERTAIN_ENTROPY = "UNCERTAIN_ENTROPY"

    @property
    def is_chaotic(self) -> bool:
        return "CHAOS" in self.value


class DriftStatus(Enum):
    STABLE = "STABLE"
    WARNING = "WARNING"
    DRIFT = "DRIFT"


class FallbackReason(Enum):
    INSUFFICIENT_HISTORY = "INSUFFICIENT_HISTORY"
    INSUFFICIENT_SIGNALS = "INSUFFICIENT_SIGNALS"


def _to_int(value: Any) -> int | None:
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, int):
        return value
    if isinstance(value, float):
        return int(value) if math.isfinite(value) else None
    if isinstance(value, str):
        try:
            return int(value.strip())
        except ValueError:
            return None
    return None


# ---------------------------------------------------------------------------
# History Types
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class HistoryRecord:
    period: str
    outcome: int | None  # 0-9, None while pending
    status: RecordStatus = RecordStatus.WIN
    volume: float | None = None  # optional weight for weighted averages

    @property
    def category(self) -> Outcome | None:
        return Outcome.from_number(self.outcome)

    @property
    def is_confirmed(self) -> bool:
        return self.status is not RecordStatus.PENDING and self.category is not None


# ---------------------------------------------------------------------------
# Market Context Types
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class TrendContext:
    strength: TrendStrength
    direction: TrendDirection
    volatility: VolatilityTier
    macro_regime: str  # learning-partition key, e.g. "TREND_STRONG_LOW_VOL"
    is_transitioning: bool = False
    details: str = ""

    @property
    def is_unknown(self) -> bool:
        return self.strength is TrendStrength.UNKNOWN


@dataclass(frozen=True)
class StabilityAssessment:
    is_stable: bool
    reason: str
    details: str = ""


@dataclass(frozen=True)
class EntropyAssessment:
    state: EntropyState
    entropy: float | None = None


@dataclass(frozen=True)
class RegimeProbabilities:
    bull_trend: float = 0.25
    bear_trend: float = 0.25
    volatile_range: float = 0.25
    quiet_range: float = 0.25


@dataclass(frozen=True)
class TradingSession:
    name: str
    confidence_multiplier: float


# ---------------------------------------------------------------------------
# Signal Types
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class Signal:
    source: str  # e.g. "RSI", "StreakBreak-3"
    prediction: Outcome
    base_weight: float  # generator-scaled weight before adaptation
    adjusted_weight: float | None = None  # set once by the weight learner

    def with_adjusted_weight(self, weight: float) -> Signal:
        return replace(self, adjusted_weight=weight)

    @property
    def effective_weight(self) -> float:
        return self.adjusted_weight if self.adjusted_weight is not None else self.base_weight


@dataclass(frozen=True)
class Consensus:
    factor: float  # [0.5, 1.5]
    score: float = 0.0  # |wBIG - wSMALL| / total
    details: str = ""


@dataclass(frozen=True)
class UncertaintyAssessment:
    score: float
    reasons: list[str] = field(default_factory=list)

    @property
    def factor(self) -> float:
        return 1.0 - min(1.0, self.score / 100.0)


# ---------------------------------------------------------------------------
# Learning State Types
# ---------------------------------------------------------------------------


@dataclass
class RegimeStats:
    correct: int = 0
    total: int = 0


@dataclass
class PerformanceRecord:
    window: int = 30
    total_observations: int = 0
    rolling_accuracy: deque[float] = field(default_factory=deque)
    regime_stats: dict[str, RegimeStats] = field(default_factory=dict)
    on_probation: bool = False

    def __post_init__(self) -> None:
        if self.rolling_accuracy.maxlen != self.window:
            self.rolling_accuracy = deque(self.rolling_accuracy, maxlen=self.window)

    @property
    def accuracy(self) -> float | None:
        if not self.rolling_accuracy:
            return None
        return sum(self.rolling_accuracy) / len(self.rolling_accuracy)


@dataclass
class DriftState:
    p_i: float = 0.0
    p_min: float = math.inf
    s_min: float = math.inf
    n: int = 0
    warning_level: float = 2.0
    drift_level: float = 3.0


# ---------------------------------------------------------------------------
# Engine I/O Types
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class ContributingSignal:
    source: str
    prediction: Outcome
    weight: float

    def to_dict(self) -> dict[str, Any]:
        return {"source": self.source, "prediction": self.prediction.value, "weight": self.weight}

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> ContributingSignal | None:
        prediction = Outcome.parse(data.get("prediction"))
        source = data.get("source")
        if prediction is None or not source:
            return None
        try:
            weight = float(data.get("weight", 0.0))
        except (TypeError, ValueError):
            weight = 0.0
        return cls(source=str(source), prediction=prediction, weight=weight)


_FEEDBACK_ALIASES = {
    "long_term_global_accuracy": "longTermGlobalAccuracy",
    "last_predicted_outcome": "lastPredictedOutcome",
    "last_final_confidence": "lastFinalConfidence",
    "last_confidence_level": "lastConfidenceLevel",
    "last_macro_regime": "lastMacroRegime",
    "last_prediction_signals": "lastPredictionSignals",
    "last_actual_outcome": "lastActualOutcome",
    "period_full": "periodFull",
}


@dataclass(frozen=True)
class PredictionFeedback:
    """State handed back by the caller on the next invocation (the only persistence channel)."""

    long_term_global_accuracy: float | None = None
    last_predicted_outcome: Outcome | None = None
    last_final_confidence: float | None = None
    last_confidence_level: int | None = None
    last_macro_regime: str | None = None
    last_prediction_signals: list[ContributingSignal] = field(default_factory=list)
    last_actual_outcome: int | None = None
    period_full: int | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "long_term_global_accuracy": self.long_term_global_accuracy,
            "last_predicted_outcome": (
                self.last_predicted_outcome.value if self.last_predicted_outcome else None
            ),
            "last_final_confidence": self.last_final_confidence,
            "last_confidence_level": self.last_confidence_level,
            "last_macro_regime": self.last_macro_regime,
            "last_prediction_signals": [s.to_dict() for s in self.last_prediction_signals],
            "last_actual_outcome": self.last_actual_outcome,
            "period_full": self.period_full,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any] | None) -> PredictionFeedback | None:
        """Build from snake_case or camelCase keys. Unusable fields are dropped."""
        if not data:
            return None

        def pick(key: str) -> Any:
            if key in data:
                return data[key]
            return data.get(_FEEDBACK_ALIASES[key])

        signals = []
        for raw in pick("last_prediction_signals") or []:
            if isinstance(raw, dict):
                parsed = ContributingSignal.from_dict(raw)
                if parsed is not None:
                    signals.append(parsed)

        return cls(
            long_term_global_accuracy=_to_float(pick("long_term_global_accuracy")),
            last_predicted_outcome=Outcome.parse(pick("last_predicted_outcome")),
            last_final_confidence=_to_float(pick("last_final_confidence")),
            last_confidence_level=_to_int(pick("last_confidence_level")),
            last_macro_regime=pick("last_macro_regime"),
            last_prediction_signals=signals,
            last_actual_outcome=_to_int(pick("last_actual_outcome")),
            period_full=_to_int(pick("period_full")),
        )


def _to_float(value: Any) -> float | None:
    if value is None or isinstance(value, bool):
        return None
    try:
        result = float(value)
    except (TypeError, ValueError):
        return None
    return result if math.isfinite(result) else None


@dataclass(frozen=True)
class CategoryPrediction:
    confidence: float  # clamped to [0.001, 0.999]
    logic: str


@dataclass(frozen=True)
class ForecastDecision:
    predictions: dict[Outcome, CategoryPrediction]
    final_decision: Outcome
    final_confidence: float
    confidence_level: int  # 1, 2 or 3
    is_forced_prediction: bool
    trace: str
    contributing_signals: list[ContributingSignal]
    last_macro_regime: str
    last_prediction_signals: list[ContributingSignal]
    timestamp: int  # epoch milliseconds
    drift_status: DriftStatus = DriftStatus.STABLE
    uncertainty_score: float = 0.0
    fallback_reason: FallbackReason | None = None
    source: str = "AdaptiveFusion"

    @property
    def last_predicted_outcome(self) -> Outcome | None:
        """The decision as fed back next time; None for random fallbacks."""
        return None if self.fallback_reason is not None else self.final_decision

    @property
    def last_final_confidence(self) -> float:
        return self.final_confidence

    @property
    def last_confidence_level(self) -> int:
        return self.confidence_level

    def to_dict(self) -> dict[str, Any]:
        return {
            "predictions": {
                outcome.value: {"confidence": p.confidence, "logic": p.logic}
                for outcome, p in self.predictions.items()
            },
            "final_decision": self.final_decision.value,
            "final_confidence": self.final_confidence,
            "confidence_level": self.confidence_level,
            "is_forced_prediction": self.is_forced_prediction,
            "fallback_reason": self.fallback_reason.value if self.fallback_reason else None,
            "drift_status": self.drift_status.value,
            "uncertainty_score": self.uncertainty_score,
            "overall_logic": self.trace,
            "source": self.source,
            "contributing_signals": [s.to_dict() for s in self.contributing_signals],
            "last_predicted_outcome": (
                self.last_predicted_outcome.value if self.last_predicted_outcome else None
            ),
            "last_final_confidence": self.final_confidence,
            "last_confidence_level": self.confidence_level,
            "last_macro_regime": self.last_macro_regime,
            "last_prediction_signals": [s.to_dict() for s in self.last_prediction_signals],
            "timestamp": self.timestamp,
        }
