"""Ensemble agreement factor used to tilt category scores toward the majority side."""

from __future__ import annotations

from collections.abc import Sequence

from shared.types import Consensus, Outcome, Signal

MIN_CONSENSUS_SIGNALS = 3
CONSENSUS_FACTOR_MIN = 0.5
CONSENSUS_FACTOR_MAX = 1.5


def compute_consensus(signals: Sequence[Signal]) -> Consensus:
    """
    Agreement of the weighted ensemble.

    score = |wBIG - wSMALL| / total over effective (adjusted) weights and
    factor = 1 + 0.5 * score, clamped to [0.5, 1.5]. Fewer than three
    signals, or no weight at all, yields a neutral factor of exactly 1.0.
    """
    if len(signals) < MIN_CONSENSUS_SIGNALS:
        return Consensus(1.0, 0.0, "Insufficient signals")

    big = sum(s.effective_weight for s in signals if s.prediction is Outcome.BIG)
    small = sum(s.effective_weight for s in signals if s.prediction is Outcome.SMALL)
    total = big + small
    if total <= 0:
        return Consensus(1.0, 0.0, "No weighted signals")

    score = abs(big - small) / total
    factor = max(CONSENSUS_FACTOR_MIN, min(CONSENSUS_FACTOR_MAX, 1.0 + score * 0.5))
    return Consensus(factor, score, f"Score:{score:.2f}")
