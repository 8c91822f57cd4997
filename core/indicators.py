"""
Technical indicator computation module for the outcome forecaster.

Pure computation with no I/O or side effects. Takes an ordered numeric sequence
and returns indicator values as 64-bit floats.

Ordering convention: public indicators take sequences NEWEST FIRST (index 0 is
the most recent outcome), matching how history records arrive. The
``ema_series`` helper is the only one that works oldest first, because it
returns the full chronological series.

Failure convention: every indicator returns ``None`` ("no value") when given
fewer points than its lookback or when a denominator degenerates. Callers
treat ``None`` as "this indicator abstains"; nothing here raises.

Indicators implemented:
- SMA, EMA (SMA-seeded), population standard deviation
- RSI (Wilder's smoothing)
- MACD with previous-bar values for crossover detection
- Volume-weighted average

References:
    Wilder (1978), "New Concepts in Technical Trading Systems".
    Appel (2005), "Technical Analysis: Power Tools for Active Investors".

Usage:
    from core.indicators import Indicators

    numbers = Indicators.outcome_numbers(records)   # newest first
    rsi = Indicators.rsi(numbers, period=14)
"""

from __future__ import annotations

import math
from collections.abc import Iterable, Sequence
from typing import TYPE_CHECKING, NamedTuple

if TYPE_CHECKING:
    from shared.types import HistoryRecord


class MACDResult(NamedTuple):
    macd_line: float
    signal_line: float
    histogram: float
    prev_macd_line: float | None
    prev_signal_line: float | None


class Indicators:
    """Static methods for technical indicator computation."""

    # ------------------------------------------------------------------
    # Input extraction
    # ------------------------------------------------------------------

    @staticmethod
    def outcome_numbers(records: Iterable[HistoryRecord]) -> list[float]:
        """Numeric outcomes of records (newest first), skipping malformed entries."""
        numbers = []
        for record in records:
            value = getattr(record, "outcome", None)
            if value is None or isinstance(value, bool):
                continue
            try:
                number = float(value)
            except (TypeError, ValueError):
                continue
            if math.isfinite(number):
                numbers.append(float(int(number)))
        return numbers

    # ------------------------------------------------------------------
    # Moving averages & dispersion
    # ------------------------------------------------------------------

    @staticmethod
    def sma(values: Sequence[float], period: int) -> float | None:
        """Simple moving average of the first (most recent) `period` values."""
        if period <= 0 or len(values) < period:
            return None
        return sum(values[:period]) / period

    @staticmethod
    def ema_series(chronological: Sequence[float], period: int) -> list[float]:
        """
        Exponential Moving Average series, oldest first.

        Uses standard multiplier k = 2 / (period + 1). First value is
        initialized with SMA of the first `period` values.

        Returns:
            List of EMA values (len(values) - period + 1 entries).
            Returns empty list if insufficient data.
        """
        if period <= 0 or len(chronological) < period:
            return []

        k = 2.0 / (period + 1)
        one_minus_k = 1.0 - k

        # Seed with SMA of first `period` values
        result = [sum(chronological[:period]) / period]

        for value in chronological[period:]:
            result.append(value * k + result[-1] * one_minus_k)

        return result

    @staticmethod
    def ema(values: Sequence[float], period: int) -> float | None:
        """
        Current EMA of a newest-first sequence.

        The seed is the SMA of the oldest `period` points; the recurrence then
        walks forward in time up to the newest point.
        """
        series = Indicators.ema_series(list(reversed(values)), period)
        return series[-1] if series else None

    @staticmethod
    def std_dev(values: Sequence[float], period: int) -> float | None:
        """Population standard deviation over the first `period` values."""
        if period <= 0 or len(values) < period:
            return None
        window = values[:period]
        if len(window) < 2:
            return None
        mean = sum(window) / len(window)
        variance = sum((v - mean) ** 2 for v in window) / len(window)
        return math.sqrt(variance)

    @staticmethod
    def weighted_average(
        values: Sequence[float],
        period: int,
        weights: Sequence[float | None] | None = None,
    ) -> float | None:
        """
        Volume-weighted average of the first `period` values.

        A missing or non-numeric weight counts as 1; non-positive weights are
        skipped. Returns None when no weight remains.
        """
        if period <= 0 or len(values) < period:
            return None

        total_weighted = 0.0
        total_weight = 0.0
        for i in range(period):
            raw = weights[i] if weights is not None and i < len(weights) else None
            try:
                weight = 1.0 if raw is None else float(raw)
            except (TypeError, ValueError):
                weight = 1.0
            if not math.isfinite(weight) or weight <= 0:
                continue
            total_weighted += values[i] * weight
            total_weight += weight

        if total_weight == 0:
            return None
        return total_weighted / total_weight

    # ------------------------------------------------------------------
    # Momentum oscillators
    # ------------------------------------------------------------------

    @staticmethod
    def rsi(values: Sequence[float], period: int = 14) -> float | None:
        """
        Relative Strength Index using Wilder's smoothing method.

        Wilder (1978): uses exponential moving average of gains and losses
        with smoothing factor 1/period (NOT the standard EMA 2/(period+1)).

        Args:
            values: Newest-first sequence. Needs period+1 values minimum.
            period: RSI lookback period (default 14).

        Returns:
            RSI value between 0 and 100, or None if insufficient data.
        """
        if period <= 0 or len(values) < period + 1:
            return None

        chronological = list(reversed(values))
        changes = [chronological[i] - chronological[i - 1] for i in range(1, len(chronological))]

        # Initial average gain/loss from first `period` changes
        avg_gain = sum(max(c, 0.0) for c in changes[:period]) / period
        avg_loss = sum(max(-c, 0.0) for c in changes[:period]) / period

        # Wilder's smoothing for remaining changes
        for c in changes[period:]:
            avg_gain = (avg_gain * (period - 1) + max(c, 0.0)) / period
            avg_loss = (avg_loss * (period - 1) + max(-c, 0.0)) / period

        if avg_loss == 0:
            return 100.0

        rs = avg_gain / avg_loss
        return 100.0 - (100.0 / (1.0 + rs))

    @staticmethod
    def macd(
        values: Sequence[float],
        fast: int = 12,
        slow: int = 26,
        signal: int = 9,
    ) -> MACDResult | None:
        """
        Moving Average Convergence Divergence with previous-bar values.

        MACD line at each bar = EMA(fast) - EMA(slow) as of that bar; the
        signal line is the EMA of the MACD line series. The previous-bar
        line and signal are included so callers can detect a crossover.

        Args:
            values: Newest-first sequence.
            fast: Fast EMA period (default 12).
            slow: Slow EMA period (default 26).
            signal: Signal line EMA period (default 9).

        Returns:
            MACDResult, or None if periods are invalid or data is insufficient.
        """
        if fast <= 0 or slow <= 0 or signal <= 0 or fast >= slow:
            return None
        if len(values) < slow + signal - 1:
            return None

        chronological = list(reversed(values))
        fast_ema = Indicators.ema_series(chronological, fast)
        slow_ema = Indicators.ema_series(chronological, slow)
        if not fast_ema or not slow_ema:
            return None

        # Align: fast EMA starts at index (fast-1), slow at (slow-1)
        offset = slow - fast
        macd_values = [fast_ema[i + offset] - slow_ema[i] for i in range(len(slow_ema))]

        signal_ema = Indicators.ema_series(macd_values, signal)
        if not signal_ema:
            return None

        macd_line = macd_values[-1]
        signal_line = signal_ema[-1]

        prev_macd = macd_values[-2] if len(signal_ema) >= 2 else None
        prev_signal = signal_ema[-2] if len(signal_ema) >= 2 else None

        return MACDResult(
            macd_line=macd_line,
            signal_line=signal_line,
            histogram=macd_line - signal_line,
            prev_macd_line=prev_macd,
            prev_signal_line=prev_signal,
        )
