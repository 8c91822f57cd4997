"""
Independent signal generators for the outcome forecaster.

Every generator shares one contract:

    generate(records, context, base_weight) -> Signal | None

`records` are confirmed history records, newest first. A generator abstains
(returns None) on insufficient history, degenerate statistics or when its
pattern is absent. The returned Signal carries the generator-scaled weight as
`base_weight`; the adaptive weight learner sets `adjusted_weight` afterwards.

Generators:
    StreakBreakGenerator: run of >= 2 identical categories, predict reversal
    RSIReversalGenerator: volatility-tiered overbought/oversold reversal
    MACDCrossGenerator: MACD line crossing its signal line
    BollingerBreachGenerator: latest outcome outside the bands, predict reversion
    StochasticCrossGenerator: %K/%D crossover away from the extremes
    ExtremeReversionGenerator: jump between the outcome extremes, predict reversion
    ExternalModelGenerator: delegates to an injected ExternalModel

The WeightedMajorityCombiner is not a generator: it reads the already
adjusted ensemble plus its consensus and emits one meta-signal.

References:
    Wilder (1978), "New Concepts in Technical Trading Systems": RSI.
    Appel (2005): MACD crossovers.
    Bollinger (2001), "Bollinger on Bollinger Bands".
    Lane (1984), "Lane's Stochastics".
"""

from __future__ import annotations

from collections.abc import Mapping, Sequence
from typing import Any

from core.external import ExternalModel, FeatureVector, RuleTableModel
from core.indicators import Indicators
from shared.constants import DEFAULT_BASE_WEIGHTS, EXTREME_HIGH, EXTREME_LOW
from shared.types import (
    Consensus,
    HistoryRecord,
    Outcome,
    Signal,
    TrendContext,
    TrendStrength,
    VolatilityTier,
)

# (overbought, oversold) per volatility tier; wider bands when outcomes swing more
RSI_THRESHOLDS = {
    VolatilityTier.HIGH: (78.0, 22.0),
    VolatilityTier.MEDIUM: (72.0, 28.0),
    VolatilityTier.LOW: (68.0, 32.0),
    VolatilityTier.VERY_LOW: (65.0, 35.0),
}
RSI_DEFAULT_THRESHOLDS = (70.0, 30.0)

STOCHASTIC_THRESHOLDS = {
    VolatilityTier.HIGH: (85.0, 15.0),
    VolatilityTier.MEDIUM: (80.0, 20.0),
    VolatilityTier.LOW: (75.0, 25.0),
    VolatilityTier.VERY_LOW: (70.0, 30.0),
}
STOCHASTIC_DEFAULT_THRESHOLDS = (80.0, 20.0)


class SignalGenerator:
    """Base class: subclasses set `name` (the config key) and implement generate()."""

    name = ""

    def __init__(self, base_weight: float | None = None) -> None:
        self.base_weight = (
            float(base_weight) if base_weight is not None else DEFAULT_BASE_WEIGHTS[self.name]
        )

    def generate(
        self, records: Sequence[HistoryRecord], context: TrendContext, base_weight: float
    ) -> Signal | None:
        raise NotImplementedError

    def __repr__(self) -> str:
        return f"{type(self).__name__}(base_weight={self.base_weight})"


# ---------------------------------------------------------------------------
# Pattern generators
# ---------------------------------------------------------------------------


class StreakBreakGenerator(SignalGenerator):
    name = "streak_break"

    def generate(self, records, context, base_weight):
        categories = [r.category for r in records if r.category is not None]
        if len(categories) < 3:
            return None

        current = categories[0]
        length = 0
        for category in categories:
            if category is not current:
                break
            length += 1

        if length < 2:
            return None
        factor = min(0.50 + length * 0.15, 0.90)
        return Signal(f"StreakBreak-{length}", current.opposite(), base_weight * factor)


class ExtremeReversionGenerator(SignalGenerator):
    """Latest two outcomes sit at opposite extremes (<= 1 and >= 8)."""

    name = "extreme_reversion"

    def generate(self, records, context, base_weight):
        numbers = Indicators.outcome_numbers(records)
        if len(numbers) < 2:
            return None

        last, prev = numbers[0], numbers[1]
        jumped = (last <= EXTREME_LOW and prev >= EXTREME_HIGH) or (
            last >= EXTREME_HIGH and prev <= EXTREME_LOW
        )
        if not jumped:
            return None
        prediction = Outcome.SMALL if last > 4 else Outcome.BIG
        return Signal("ExtremeReversion", prediction, base_weight)


# ---------------------------------------------------------------------------
# Indicator generators
# ---------------------------------------------------------------------------


class RSIReversalGenerator(SignalGenerator):
    name = "rsi_reversal"

    def __init__(self, base_weight: float | None = None, period: int = 14) -> None:
        super().__init__(base_weight)
        self.period = period

    def generate(self, records, context, base_weight):
        if self.period <= 0:
            return None
        numbers = Indicators.outcome_numbers(records)
        rsi = Indicators.rsi(numbers, self.period)
        if rsi is None:
            return None

        overbought, oversold = RSI_THRESHOLDS.get(context.volatility, RSI_DEFAULT_THRESHOLDS)
        if rsi < oversold:
            prediction = Outcome.BIG
            strength = (oversold - rsi) / oversold
        elif rsi > overbought:
            prediction = Outcome.SMALL
            strength = (rsi - overbought) / (100.0 - overbought)
        else:
            return None

        return Signal("RSI", prediction, base_weight * (0.60 + min(strength, 1.0) * 0.40))


class MACDCrossGenerator(SignalGenerator):
    name = "macd_cross"

    def __init__(
        self,
        base_weight: float | None = None,
        fast: int = 12,
        slow: int = 26,
        signal: int = 9,
    ) -> None:
        super().__init__(base_weight)
        self.fast = fast
        self.slow = slow
        self.signal = signal

    def generate(self, records, context, base_weight):
        numbers = Indicators.outcome_numbers(records)
        macd = Indicators.macd(numbers, self.fast, self.slow, self.signal)
        if macd is None or macd.prev_macd_line is None or macd.prev_signal_line is None:
            return None

        if macd.prev_macd_line <= macd.prev_signal_line and macd.macd_line > macd.signal_line:
            prediction = Outcome.BIG
        elif macd.prev_macd_line >= macd.prev_signal_line and macd.macd_line < macd.signal_line:
            prediction = Outcome.SMALL
        else:
            return None

        strength = min(abs(macd.histogram) / 0.5, 1.0)
        return Signal("MACD_Cross", prediction, base_weight * (0.55 + strength * 0.45))


class BollingerBreachGenerator(SignalGenerator):
    name = "bollinger_breach"

    def __init__(
        self,
        base_weight: float | None = None,
        period: int = 20,
        std_multiplier: float = 2.0,
    ) -> None:
        super().__init__(base_weight)
        self.period = period
        self.std_multiplier = std_multiplier

    def generate(self, records, context, base_weight):
        numbers = Indicators.outcome_numbers(records)
        # volumes line up with numbers only when every record is numeric
        volumes = None
        if len(numbers) == len(records):
            volumes = [getattr(r, "volume", None) for r in records]
        mid = Indicators.weighted_average(numbers, self.period, volumes)
        std = Indicators.std_dev(numbers, self.period)
        if mid is None or std is None or std < 0.05:
            return None

        band = std * self.std_multiplier
        latest = numbers[0]
        if latest > mid + band:
            prediction = Outcome.SMALL
        elif latest < mid - band:
            prediction = Outcome.BIG
        else:
            return None

        breach = abs(latest - mid) / (band + 0.001)
        return Signal("Bollinger", prediction, base_weight * (0.65 + min(breach, 0.9) * 0.35))


class StochasticCrossGenerator(SignalGenerator):
    name = "stochastic_cross"

    def __init__(
        self,
        base_weight: float | None = None,
        k_period: int = 14,
        d_period: int = 3,
        smooth_k: int = 3,
    ) -> None:
        super().__init__(base_weight)
        self.k_period = k_period
        self.d_period = d_period
        self.smooth_k = smooth_k

    def oscillator(self, numbers: Sequence[float]) -> tuple[list[float], list[float]] | None:
        """
        Smoothed %K and %D series, oldest first.

        A flat window (highest == lowest) repeats the previous raw %K, or 50
        when there is none.
        """
        if self.k_period <= 0 or self.d_period <= 0 or self.smooth_k <= 0:
            return None
        if len(numbers) < self.k_period + self.smooth_k - 1 + self.d_period - 1:
            return None

        chronological = list(reversed(numbers))
        raw_k: list[float] = []
        for i in range(self.k_period - 1, len(chronological)):
            window = chronological[i - self.k_period + 1 : i + 1]
            lowest, highest = min(window), max(window)
            if highest == lowest:
                raw_k.append(raw_k[-1] if raw_k else 50.0)
            else:
                raw_k.append(100.0 * (window[-1] - lowest) / (highest - lowest))

        smoothed = _rolling_mean(raw_k, self.smooth_k)
        d_values = _rolling_mean(smoothed, self.d_period)
        if len(smoothed) < 2 or len(d_values) < 2:
            return None
        return smoothed, d_values

    def generate(self, records, context, base_weight):
        series = self.oscillator(Indicators.outcome_numbers(records))
        if series is None:
            return None
        k_values, d_values = series

        current_k, prev_k = k_values[-1], k_values[-2]
        current_d, prev_d = d_values[-1], d_values[-2]
        overbought, oversold = STOCHASTIC_THRESHOLDS.get(
            context.volatility, STOCHASTIC_DEFAULT_THRESHOLDS
        )

        if prev_k <= prev_d and current_k > current_d and current_k < overbought - 10:
            prediction = Outcome.BIG
        elif prev_k >= prev_d and current_k < current_d and current_k > oversold + 10:
            prediction = Outcome.SMALL
        else:
            return None
        return Signal("Stochastic", prediction, base_weight * 0.7)


def _rolling_mean(values: Sequence[float], window: int) -> list[float]:
    return [sum(values[i : i + window]) / window for i in range(len(values) - window + 1)]


# ---------------------------------------------------------------------------
# External model generator
# ---------------------------------------------------------------------------

_STRENGTH_LEVEL = {TrendStrength.STRONG: 2, TrendStrength.MODERATE: 1}
_VOLATILITY_LEVEL = {VolatilityTier.HIGH: 2, VolatilityTier.MEDIUM: 1}


def build_feature_vector(
    numbers: Sequence[float], context: TrendContext, min_numbers: int = 52
) -> FeatureVector | None:
    """Feature vector for an external model, or None when any feature is unavailable."""
    if len(numbers) < min_numbers:
        return None

    rsi = Indicators.rsi(numbers, 14)
    macd = Indicators.macd(numbers, 12, 26, 9)
    stddev_10 = Indicators.std_dev(numbers, 10)
    stddev_30 = Indicators.std_dev(numbers, 30)
    mean_5 = Indicators.sma(numbers, 5)
    mean_20 = Indicators.sma(numbers, 20)
    if None in (rsi, macd, stddev_10, stddev_30, mean_5, mean_20):
        return None

    return FeatureVector(
        rsi_14=rsi,
        macd_histogram=macd.histogram,
        stddev_10=stddev_10,
        stddev_30=stddev_30,
        mean_5=mean_5,
        mean_20=mean_20,
        trend_strength=_STRENGTH_LEVEL.get(context.strength, 0),
        volatility_level=_VOLATILITY_LEVEL.get(context.volatility, 0),
    )


class ExternalModelGenerator(SignalGenerator):
    """Wraps an ExternalModel; weight = base * min(1, confidence) * 1.5."""

    name = "external_model"

    def __init__(
        self,
        base_weight: float | None = None,
        model: ExternalModel | None = None,
        min_numbers: int = 52,
    ) -> None:
        super().__init__(base_weight)
        self.model = model if model is not None else RuleTableModel()
        self.min_numbers = min_numbers

    def generate(self, records, context, base_weight):
        features = build_feature_vector(
            Indicators.outcome_numbers(records), context, self.min_numbers
        )
        if features is None:
            return None

        result = self.model.predict(features)
        if result is None or result.confidence <= 0:
            return None
        weight = base_weight * min(1.0, result.confidence) * 1.5
        return Signal("ExternalModel", result.prediction, weight)


# ---------------------------------------------------------------------------
# Meta-signal
# ---------------------------------------------------------------------------


class WeightedMajorityCombiner:
    """
    Meta-signal from the adjusted ensemble and its consensus factor.

    BIG share is scaled by the consensus factor, SMALL share by (2 - factor);
    a side must beat the other by `dominance_ratio` to emit.
    """

    name = "weighted_majority"

    def __init__(
        self,
        base_weight: float | None = None,
        min_signals: int = 4,
        min_total_weight: float = 0.1,
        dominance_ratio: float = 1.2,
    ) -> None:
        self.base_weight = (
            float(base_weight) if base_weight is not None else DEFAULT_BASE_WEIGHTS[self.name]
        )
        self.min_signals = min_signals
        self.min_total_weight = min_total_weight
        self.dominance_ratio = dominance_ratio

    def combine(
        self, signals: Sequence[Signal], consensus: Consensus, base_weight: float | None = None
    ) -> Signal | None:
        if base_weight is None:
            base_weight = self.base_weight
        if len(signals) < self.min_signals:
            return None

        big = sum(s.effective_weight for s in signals if s.prediction is Outcome.BIG)
        small = sum(s.effective_weight for s in signals if s.prediction is Outcome.SMALL)
        total = big + small
        if total < self.min_total_weight:
            return None

        big_mass = big / total * consensus.factor
        small_mass = small / total * (2.0 - consensus.factor)

        if big_mass > small_mass * self.dominance_ratio:
            return Signal("WeightedMajority", Outcome.BIG, base_weight * min(1.0, big_mass - small_mass))
        if small_mass > big_mass * self.dominance_ratio:
            return Signal("WeightedMajority", Outcome.SMALL, base_weight * min(1.0, small_mass - big_mass))
        return None


# ---------------------------------------------------------------------------
# Assembly
# ---------------------------------------------------------------------------

GENERATOR_CLASSES: dict[str, type[SignalGenerator]] = {
    cls.name: cls
    for cls in (
        StreakBreakGenerator,
        RSIReversalGenerator,
        MACDCrossGenerator,
        BollingerBreachGenerator,
        StochasticCrossGenerator,
        ExtremeReversionGenerator,
        ExternalModelGenerator,
    )
}


def _params(section: Mapping[str, Any]) -> dict[str, Any]:
    return {k: v for k, v in section.items() if k != "enabled"}


def build_generators(
    config: Mapping[str, Any] | None = None, model: ExternalModel | None = None
) -> list[SignalGenerator]:
    """
    Instantiate enabled generators in evaluation order.

    Args:
        config: The engine config `generators` section. Generators missing from
            it run with defaults; `enabled: false` removes one.
        model: Model for the external-model generator (RuleTableModel if None).

    Returns:
        List of generator instances.
    """
    config = config or {}
    generators: list[SignalGenerator] = []
    for name, cls in GENERATOR_CLASSES.items():
        section = config.get(name, {})
        if not section.get("enabled", True):
            continue
        params = _params(section)
        if cls is ExternalModelGenerator:
            params["model"] = model
        generators.append(cls(**params))
    return generators


def build_combiner(config: Mapping[str, Any] | None = None) -> WeightedMajorityCombiner | None:
    section = (config or {}).get(WeightedMajorityCombiner.name, {})
    if not section.get("enabled", True):
        return None
    return WeightedMajorityCombiner(**_params(section))
