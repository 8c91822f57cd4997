"""Unit tests for core/consensus.py."""

from __future__ import annotations

import pytest

from core.consensus import compute_consensus
from shared.types import Outcome, Signal


def _signal(prediction: Outcome, weight: float, adjusted: float | None = None) -> Signal:
    return Signal("X", prediction, weight, adjusted)


class TestComputeConsensus:
    def test_fewer_than_three_signals_is_neutral(self):
        result = compute_consensus([_signal(Outcome.BIG, 0.5), _signal(Outcome.BIG, 0.5)])
        assert result.factor == 1.0
        assert result.details == "Insufficient signals"

    def test_unanimous(self):
        result = compute_consensus([_signal(Outcome.SMALL, 0.1)] * 3)
        assert result.score == pytest.approx(1.0)
        assert result.factor == pytest.approx(1.5)

    def test_split(self):
        signals = [_signal(Outcome.BIG, 0.1), _signal(Outcome.BIG, 0.1), _signal(Outcome.SMALL, 0.1)]
        result = compute_consensus(signals)
        assert result.score == pytest.approx(1 / 3)
        assert result.factor == pytest.approx(1 + 1 / 6)

    def test_even_split(self):
        signals = [_signal(Outcome.BIG, 0.2), _signal(Outcome.SMALL, 0.1), _signal(Outcome.SMALL, 0.1)]
        assert compute_consensus(signals).factor == pytest.approx(1.0)

    def test_uses_adjusted_weights(self):
        signals = [
            _signal(Outcome.BIG, 0.1, adjusted=0.9),
            _signal(Outcome.SMALL, 0.1, adjusted=0.05),
            _signal(Outcome.SMALL, 0.1, adjusted=0.05),
        ]
        assert compute_consensus(signals).score == pytest.approx(0.8)

    def test_zero_weight_is_neutral(self):
        result = compute_consensus([_signal(Outcome.BIG, 0.0)] * 3)
        assert result.factor == 1.0
        assert result.score == 0.0

    def test_factor_bounds(self):
        for big in range(0, 6):
            signals = [_signal(Outcome.BIG, 0.1)] * big + [_signal(Outcome.SMALL, 0.1)] * (5 - big)
            assert 0.5 <= compute_consensus(signals).factor <= 1.5
