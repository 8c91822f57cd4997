"""
Market regime classification for the outcome forecaster.

Derives trend direction/strength, volatility tier, a composite macro-regime
label and a transition flag from three EMAs over the numeric outcome series.

The macro regime is only a partition key for the adaptive weight learner;
no other component branches on it.

Usage:
    from core.regime import RegimeClassifier

    context = RegimeClassifier().classify(records)   # records newest first
"""

from __future__ import annotations

from collections.abc import Sequence

from core.indicators import Indicators
from shared.constants import (
    DEFAULT_LONG_LOOKBACK,
    DEFAULT_MEDIUM_LOOKBACK,
    DEFAULT_SHORT_LOOKBACK,
    MODERATE_SPREAD,
    SPREAD_EPSILON,
    STRONG_SPREAD,
    UNKNOWN_REGIME,
    VOL_HIGH,
    VOL_LOW,
    VOL_MEDIUM,
    VOLATILITY_MIN_POINTS,
    VOLATILITY_WINDOW,
)
from shared.types import (
    HistoryRecord,
    TrendContext,
    TrendDirection,
    TrendStrength,
    VolatilityTier,
)

_VOL_SUFFIX = {
    VolatilityTier.VERY_LOW: "LOW_VOL",
    VolatilityTier.LOW: "LOW_VOL",
    VolatilityTier.MEDIUM: "MED_VOL",
    VolatilityTier.HIGH: "HIGH_VOL",
}

_STRENGTH_PREFIX = {
    TrendStrength.STRONG: "TREND_STRONG",
    TrendStrength.MODERATE: "TREND_MOD",
    TrendStrength.RANGING: "RANGE",
}


def unknown_context(details: str) -> TrendContext:
    """Context returned when the history cannot support classification."""
    return TrendContext(
        strength=TrendStrength.UNKNOWN,
        direction=TrendDirection.NONE,
        volatility=VolatilityTier.UNKNOWN,
        macro_regime=UNKNOWN_REGIME,
        is_transitioning=False,
        details=details,
    )


def classify_volatility(std_dev: float | None) -> VolatilityTier:
    if std_dev is None:
        return VolatilityTier.UNKNOWN
    if std_dev > VOL_HIGH:
        return VolatilityTier.HIGH
    if std_dev > VOL_MEDIUM:
        return VolatilityTier.MEDIUM
    if std_dev > VOL_LOW:
        return VolatilityTier.LOW
    return VolatilityTier.VERY_LOW


def macro_regime_label(
    strength: TrendStrength, volatility: VolatilityTier, is_transitioning: bool
) -> str:
    """
    Deterministic {strength x volatility} label with optional _TRANSITION suffix.

    VERY_LOW folds into LOW_VOL. An UNKNOWN volatility tier folds into
    HIGH_VOL for trend/range labels and into LOW_VOL for weak labels.
    """
    prefix = _STRENGTH_PREFIX.get(strength)
    if prefix is not None:
        label = f"{prefix}_{_VOL_SUFFIX.get(volatility, 'HIGH_VOL')}"
    elif volatility is VolatilityTier.HIGH:
        label = "WEAK_HIGH_VOL"
    elif volatility is VolatilityTier.MEDIUM:
        label = "WEAK_MED_VOL"
    else:
        label = "WEAK_LOW_VOL"

    if is_transitioning:
        label += "_TRANSITION"
    return label


class RegimeClassifier:
    """EMA-spread trend classifier with volatility tiering and crossover detection."""

    def __init__(
        self,
        short_lookback: int = DEFAULT_SHORT_LOOKBACK,
        medium_lookback: int = DEFAULT_MEDIUM_LOOKBACK,
        long_lookback: int = DEFAULT_LONG_LOOKBACK,
        volatility_window: int = VOLATILITY_WINDOW,
        volatility_min_points: int = VOLATILITY_MIN_POINTS,
    ) -> None:
        self.short_lookback = short_lookback
        self.medium_lookback = medium_lookback
        self.long_lookback = long_lookback
        self.volatility_window = volatility_window
        self.volatility_min_points = volatility_min_points

    def classify(self, records: Sequence[HistoryRecord]) -> TrendContext:
        numbers = Indicators.outcome_numbers(records)
        if len(numbers) < self.long_lookback:
            return unknown_context("Insufficient numbers")

        short_ma = Indicators.ema(numbers, self.short_lookback)
        medium_ma = Indicators.ema(numbers, self.medium_lookback)
        long_ma = Indicators.ema(numbers, self.long_lookback)
        if short_ma is None or medium_ma is None or long_ma is None:
            return unknown_context("MA calculation failed")

        details = f"S:{short_ma:.1f},M:{medium_ma:.1f},L:{long_ma:.1f}"

        std_long = Indicators.std_dev(numbers, self.long_lookback)
        divisor = std_long if std_long is not None and std_long > SPREAD_EPSILON else SPREAD_EPSILON
        spread = (short_ma - long_ma) / divisor
        details += f",NormSpread:{spread:.2f}"

        direction, strength = self._trend(short_ma, medium_ma, long_ma, spread)

        volatility = VolatilityTier.UNKNOWN
        vol_slice = numbers[: min(len(numbers), self.volatility_window)]
        if len(vol_slice) >= self.volatility_min_points:
            std_vol = Indicators.std_dev(vol_slice, len(vol_slice))
            volatility = classify_volatility(std_vol)
            if std_vol is not None:
                details += f" VolStdDev:{std_vol:.2f}"

        is_transitioning = self.detect_transition(numbers)
        macro_regime = macro_regime_label(strength, volatility, is_transitioning)
        details += f",Regime:{macro_regime}"

        return TrendContext(
            strength=strength,
            direction=direction,
            volatility=volatility,
            macro_regime=macro_regime,
            is_transitioning=is_transitioning,
            details=details,
        )

    def detect_transition(self, numbers: Sequence[float]) -> bool:
        """Short/medium EMA crossover between the previous and the current bar."""
        if len(numbers) <= self.medium_lookback + 5:
            return False

        prev_short = Indicators.ema(numbers[1:], self.short_lookback)
        prev_medium = Indicators.ema(numbers[1:], self.medium_lookback)
        cur_short = Indicators.ema(numbers, self.short_lookback)
        cur_medium = Indicators.ema(numbers, self.medium_lookback)
        if None in (prev_short, prev_medium, cur_short, cur_medium):
            return False

        crossed_up = prev_short <= prev_medium and cur_short > cur_medium
        crossed_down = prev_short >= prev_medium and cur_short < cur_medium
        return crossed_up or crossed_down

    @staticmethod
    def _trend(
        short_ma: float, medium_ma: float, long_ma: float, spread: float
    ) -> tuple[TrendDirection, TrendStrength]:
        if short_ma > medium_ma > long_ma:
            if spread > STRONG_SPREAD:
                return TrendDirection.BIG, TrendStrength.STRONG
            if spread > MODERATE_SPREAD:
                return TrendDirection.BIG, TrendStrength.MODERATE
            return TrendDirection.BIG, TrendStrength.WEAK

        if short_ma < medium_ma < long_ma:
            if spread < -STRONG_SPREAD:
                return TrendDirection.SMALL, TrendStrength.STRONG
            if spread < -MODERATE_SPREAD:
                return TrendDirection.SMALL, TrendStrength.MODERATE
            return TrendDirection.SMALL, TrendStrength.WEAK

        if short_ma > long_ma:
            return TrendDirection.BIG_BIASED_RANGE, TrendStrength.RANGING
        if long_ma > short_ma:
            return TrendDirection.SMALL_BIASED_RANGE, TrendStrength.RANGING
        return TrendDirection.NONE, TrendStrength.RANGING
