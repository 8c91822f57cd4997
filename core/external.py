"""
Injectable collaborators of the forecast engine.

- ExternalModel: a model scoring a feature vector. RuleTableModel is a
  hand-written rule table standing in for a trained model endpoint.
- ExternalDataProvider: a bounded confidence factor derived from outside
  information (news sentiment, market volatility). NeutralExternalData is the
  default; SimulatedExternalData draws random conditions and carries no
  information about real markets.
- Session clocks: callables returning the current hour in the session timezone.

Replace any of these without touching the engine, e.g.:

    engine = ForecastEngine(model=MyServedModel(), external_data=MyNewsFeed())
"""

from __future__ import annotations

import random
from dataclasses import asdict, dataclass
from datetime import datetime
from typing import Protocol
from zoneinfo import ZoneInfo

from shared.constants import DEFAULT_SESSION_TIMEZONE
from shared.types import Outcome

# ---------------------------------------------------------------------------
# External model
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class FeatureVector:
    rsi_14: float
    macd_histogram: float
    stddev_10: float
    stddev_30: float
    mean_5: float
    mean_20: float
    trend_strength: int  # 2 STRONG, 1 MODERATE, 0 otherwise
    volatility_level: int  # 2 HIGH, 1 MEDIUM, 0 otherwise

    def to_dict(self) -> dict[str, float]:
        return asdict(self)


@dataclass(frozen=True)
class ModelPrediction:
    prediction: Outcome
    confidence: float


class ExternalModel(Protocol):
    def predict(self, features: FeatureVector) -> ModelPrediction | None:
        """Return a categorical prediction with a confidence, or None to abstain."""


class RuleTableModel:
    """
    Fixed rule table over RSI, MACD histogram and 30-point dispersion.

    Not a trained model: rules are evaluated in order and the first match wins.
    """

    def predict(self, features: FeatureVector) -> ModelPrediction | None:
        rsi = features.rsi_14
        hist = features.macd_histogram

        if rsi > 75 and hist < -0.1:
            return ModelPrediction(Outcome.SMALL, abs(hist) + (rsi - 70) / 30)
        if rsi < 25 and hist > 0.1:
            return ModelPrediction(Outcome.BIG, abs(hist) + (30 - rsi) / 30)
        if features.stddev_30 < 1.0 and hist > 0.05:
            return ModelPrediction(Outcome.BIG, 0.4)
        return None


# ---------------------------------------------------------------------------
# External data
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class ExternalFactor:
    factor: float  # multiplies confidence distance from 0.5
    reason: str


class ExternalDataProvider(Protocol):
    def get_factor(self) -> ExternalFactor:
        """Return the current external confidence factor."""


class NeutralExternalData:
    """No external information: factor 1.0."""

    def get_factor(self) -> ExternalFactor:
        return ExternalFactor(1.0, "ExtData(Neutral)")


_NEWS_FACTORS = {"Positive": 1.02, "Neutral": 1.0, "Negative": 0.98}
_MARKET_VOL_FACTORS = {"Low": 1.0, "Normal": 1.0, "High": 0.95}


class SimulatedExternalData:
    """
    Random news sentiment and market volatility, for demos only.

    The factor stays within [0.931, 1.02]. Pass a seeded ``random.Random`` for
    reproducible runs.
    """

    def __init__(self, rng: random.Random | None = None) -> None:
        self._rng = rng or random.Random()

    def get_factor(self) -> ExternalFactor:
        news = self._rng.choice(list(_NEWS_FACTORS))
        market_vol = self._rng.choice(list(_MARKET_VOL_FACTORS))
        factor = _NEWS_FACTORS[news] * _MARKET_VOL_FACTORS[market_vol]
        return ExternalFactor(
            factor, f"ExtData(SIMULATED_News:{news},SIMULATED_MktVol:{market_vol})"
        )


def build_external_data(mode: str, seed: int | None = None) -> ExternalDataProvider:
    """Provider for an app.json ``external_data.mode`` value."""
    if mode == "simulated":
        return SimulatedExternalData(random.Random(seed))
    return NeutralExternalData()


# ---------------------------------------------------------------------------
# Session clocks
# ---------------------------------------------------------------------------


class SessionClock:
    """Current wall-clock hour (0-23) in the session timezone."""

    def __init__(self, timezone: str = DEFAULT_SESSION_TIMEZONE) -> None:
        self._tz = ZoneInfo(timezone)

    def __call__(self) -> int:
        return datetime.now(self._tz).hour


class FixedClock:
    """Always returns the same hour."""

    def __init__(self, hour: int) -> None:
        self.hour = hour

    def __call__(self) -> int:
        return self.hour
