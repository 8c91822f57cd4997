"""
Market state analysers that feed the decision synthesizer's uncertainty score.

- Trend stability: outcome dominance and choppiness over recent confirmed results.
- Entropy state: binary Shannon entropy of the most recent categories.
- Regime probabilities: coarse rule table over trend context and entropy.
- Prime sessions: time-of-day confidence multipliers.

All functions are pure and never raise on malformed history.
"""

from __future__ import annotations

import math
from collections.abc import Mapping, Sequence
from typing import Any

from shared.types import (
    EntropyAssessment,
    EntropyState,
    HistoryRecord,
    Outcome,
    RegimeProbabilities,
    StabilityAssessment,
    TradingSession,
    TrendContext,
    TrendDirection,
    TrendStrength,
    VolatilityTier,
)

STABILITY_MIN_RECORDS = 25
STABILITY_MIN_CONFIRMED = 20
STABILITY_MIN_VALID = 18
DOMINANCE_THRESHOLD = 0.75
CHOPPINESS_THRESHOLD = 0.70

ENTROPY_WINDOW = 15
ORDERLY_ENTROPY = 0.6
CHAOTIC_ENTROPY = 0.95

DEFAULT_PRIME_SESSIONS: tuple[dict[str, Any], ...] = (
    {"name": "PRIME_MORNING", "start_hour": 10, "end_hour": 12, "confidence_multiplier": 1.10},
    {"name": "PRIME_AFTERNOON", "start_hour": 13, "end_hour": 16, "confidence_multiplier": 1.05},
    {"name": "PRIME_EVENING", "start_hour": 17, "end_hour": 20, "confidence_multiplier": 1.15},
)


# ---------------------------------------------------------------------------
# Trend Stability
# ---------------------------------------------------------------------------


def assess_trend_stability(records: Sequence[HistoryRecord]) -> StabilityAssessment:
    """
    Flag histories dominated by one category or alternating too often.

    Too little data is reported as stable so it never adds uncertainty by itself.
    """
    if len(records) < STABILITY_MIN_RECORDS:
        return StabilityAssessment(True, "Not enough data for stability check.")

    confirmed = [r for r in records if r.is_confirmed]
    if len(confirmed) < STABILITY_MIN_CONFIRMED:
        return StabilityAssessment(
            True, "Not enough confirmed results.", f"Confirmed: {len(confirmed)}"
        )

    recent = [r.category for r in confirmed[:STABILITY_MIN_CONFIRMED] if r.category is not None]
    if len(recent) < STABILITY_MIN_VALID:
        return StabilityAssessment(
            True, "Not enough valid B/S for stability.", f"Valid B/S: {len(recent)}"
        )

    big = sum(1 for c in recent if c is Outcome.BIG)
    small = len(recent) - big
    if big / len(recent) >= DOMINANCE_THRESHOLD or small / len(recent) >= DOMINANCE_THRESHOLD:
        return StabilityAssessment(False, "Unstable: Outcome Dominance", f"B:{big},S:{small}")

    alternations = sum(1 for a, b in zip(recent, recent[1:]) if a is not b)
    if alternations / len(recent) > CHOPPINESS_THRESHOLD:
        return StabilityAssessment(
            False,
            "Unstable: Excessive Choppiness",
            f"Alternations: {alternations}/{len(recent)}",
        )

    return StabilityAssessment(True, "Trend appears stable.", f"B:{big},S:{small}")


# ---------------------------------------------------------------------------
# Entropy
# ---------------------------------------------------------------------------


def shannon_entropy(categories: Sequence[Outcome]) -> float | None:
    """Binary Shannon entropy in bits; None for an empty sequence."""
    if not categories:
        return None
    p_big = sum(1 for c in categories if c is Outcome.BIG) / len(categories)
    entropy = 0.0
    for p in (p_big, 1.0 - p_big):
        if p > 0:
            entropy -= p * math.log2(p)
    return entropy


def assess_entropy(
    records: Sequence[HistoryRecord], window: int = ENTROPY_WINDOW
) -> EntropyAssessment:
    """Entropy state of the newest `window` confirmed categories; pending rows are skipped."""
    categories = [r.category for r in records if r.is_confirmed][:window]
    if len(categories) < window:
        return EntropyAssessment(EntropyState.UNCERTAIN_ENTROPY)

    entropy = shannon_entropy(categories)
    if entropy is None:
        return EntropyAssessment(EntropyState.UNCERTAIN_ENTROPY)
    if entropy < ORDERLY_ENTROPY:
        return EntropyAssessment(EntropyState.ORDERLY, entropy)
    if entropy > CHAOTIC_ENTROPY:
        return EntropyAssessment(EntropyState.STABLE_CHAOS, entropy)
    return EntropyAssessment(EntropyState.STABLE_MODERATE, entropy)


# ---------------------------------------------------------------------------
# Regime Probabilities
# ---------------------------------------------------------------------------


def estimate_regime_probabilities(
    context: TrendContext, entropy: EntropyAssessment
) -> RegimeProbabilities:
    """Rule-based stand-in for a regime-switching model; uniform unless a rule fires."""
    if context.is_unknown:
        return RegimeProbabilities()

    if (
        context.strength is TrendStrength.STRONG
        and context.volatility is not VolatilityTier.HIGH
        and entropy.state is EntropyState.ORDERLY
    ):
        if context.direction in (TrendDirection.BIG, TrendDirection.BIG_BIASED_RANGE):
            return RegimeProbabilities(0.8, 0.05, 0.1, 0.05)
        return RegimeProbabilities(0.05, 0.8, 0.1, 0.05)

    if (
        context.strength is TrendStrength.RANGING
        and context.volatility is VolatilityTier.HIGH
        and entropy.state.is_chaotic
    ):
        return RegimeProbabilities(0.1, 0.1, 0.7, 0.1)

    if context.strength is TrendStrength.RANGING and context.volatility is VolatilityTier.VERY_LOW:
        return RegimeProbabilities(0.1, 0.1, 0.1, 0.7)

    return RegimeProbabilities()


# ---------------------------------------------------------------------------
# Sessions
# ---------------------------------------------------------------------------


def prime_session(
    hour: int, sessions: Sequence[Mapping[str, Any]] = DEFAULT_PRIME_SESSIONS
) -> TradingSession | None:
    """Session whose [start_hour, end_hour) contains `hour`, if any."""
    for session in sessions:
        if session["start_hour"] <= hour < session["end_hour"]:
            return TradingSession(
                name=session["name"],
                confidence_multiplier=float(session["confidence_multiplier"]),
            )
    return None
