"""
Caller-side glue around the forecast engine.

- parse_history(): raw provider rows -> HistoryRecord list (newest first),
  dropping rows that cannot be interpreted.
- next_feedback(): one decision + the realised outcome -> the
  PredictionFeedback to hand to the next predict() call. It is the
  composition of pending_feedback() (right after the decision) and
  resolve_feedback() (once the outcome is known), for callers that persist
  the state in between.

Usage:
    records = parse_history(json.load(fh))
    decision = engine.predict(records, feedback)
    feedback = next_feedback(decision, actual_outcome=7, previous=feedback)
"""

from __future__ import annotations

import math
from collections.abc import Iterable, Mapping
from dataclasses import replace
from typing import Any

from bot_logging.logger_manager import setup_module_logger
from shared.types import (
    ForecastDecision,
    HistoryRecord,
    Outcome,
    PredictionFeedback,
    RecordStatus,
)

DEFAULT_ACCURACY_SMOOTHING = 0.05
NEUTRAL_ACCURACY = 0.5

# Accepted spellings per field, first match wins
_PERIOD_KEYS = ("period", "issueNumber", "periodFull")
_OUTCOME_KEYS = ("outcome", "actualNumber", "actual", "number")
_STATUS_KEYS = ("status",)
_VOLUME_KEYS = ("volume",)

_logger = setup_module_logger("feedback", "feedback.log", module_folder="Feedback_Logs")


def _first(row: Mapping[str, Any], keys: Iterable[str]) -> Any:
    for key in keys:
        if row.get(key) is not None:
            return row[key]
    return None


def _parse_status(value: Any) -> RecordStatus | None:
    if value is None:
        return RecordStatus.WIN
    if isinstance(value, RecordStatus):
        return value
    text = str(value).strip().lower()
    for status in RecordStatus:
        if status.value.lower() == text:
            return status
    return None


def _parse_outcome(value: Any) -> int | None:
    if value is None or isinstance(value, bool):
        return None
    try:
        number = float(value)
    except (TypeError, ValueError):
        return None
    if not math.isfinite(number) or number != int(number) or not 0 <= number <= 9:
        return None
    return int(number)


def _parse_volume(value: Any) -> float | None:
    if value is None or isinstance(value, bool):
        return None
    try:
        volume = float(value)
    except (TypeError, ValueError):
        return None
    return volume if math.isfinite(volume) else None


def parse_history(raw: Iterable[Any]) -> list[HistoryRecord]:
    """
    Convert provider rows (dicts, newest first) into HistoryRecords.

    A row is kept when it has a period and either a 0-9 outcome or a Pending
    status. Malformed rows are dropped and logged; order is preserved.
    """
    records = []
    dropped = 0
    for index, row in enumerate(raw):
        if not isinstance(row, Mapping):
            dropped += 1
            _logger.warning("Dropping row %d: not a mapping (%s)", index, type(row).__name__)
            continue

        period = _first(row, _PERIOD_KEYS)
        status = _parse_status(_first(row, _STATUS_KEYS))
        raw_outcome = _first(row, _OUTCOME_KEYS)
        outcome = _parse_outcome(raw_outcome)

        if period is None or status is None:
            dropped += 1
            _logger.warning("Dropping row %d: missing period or unknown status", index)
            continue
        if outcome is None and (raw_outcome is not None or status is not RecordStatus.PENDING):
            dropped += 1
            _logger.warning("Dropping row %d: invalid outcome %r", index, raw_outcome)
            continue

        records.append(
            HistoryRecord(
                period=str(period),
                outcome=outcome,
                status=status,
                volume=_parse_volume(_first(row, _VOLUME_KEYS)),
            )
        )

    if dropped:
        _logger.info("Parsed %d records, dropped %d malformed rows", len(records), dropped)
    return records


def pending_feedback(
    decision: ForecastDecision,
    previous: PredictionFeedback | None = None,
    period_full: int | None = None,
) -> PredictionFeedback:
    """
    Round-trip state of a decision whose outcome is not known yet.

    Fallback decisions carry no prediction forward, so once resolved they
    neither move the global accuracy nor feed the drift detector.
    """
    return PredictionFeedback(
        long_term_global_accuracy=(
            previous.long_term_global_accuracy if previous is not None else None
        ),
        last_predicted_outcome=decision.last_predicted_outcome,
        last_final_confidence=decision.final_confidence,
        last_confidence_level=decision.confidence_level,
        last_macro_regime=decision.last_macro_regime,
        last_prediction_signals=list(decision.last_prediction_signals),
        last_actual_outcome=None,
        period_full=period_full,
    )


def resolve_feedback(
    pending: PredictionFeedback,
    actual_outcome: int,
    smoothing: float = DEFAULT_ACCURACY_SMOOTHING,
) -> PredictionFeedback:
    """
    Attach the realised outcome to pending feedback.

    Long-term global accuracy is an exponential running mean of decision
    correctness starting from 0.5.

    Raises:
        ValueError: actual_outcome is not an integer 0-9.
    """
    parsed = _parse_outcome(actual_outcome)
    actual = Outcome.from_number(parsed)
    if actual is None:
        raise ValueError(f"actual_outcome must be an integer 0-9, got {actual_outcome!r}")

    accuracy = pending.long_term_global_accuracy
    if pending.last_predicted_outcome is not None:
        prior = accuracy if accuracy is not None else NEUTRAL_ACCURACY
        hit = 1.0 if pending.last_predicted_outcome is actual else 0.0
        accuracy = prior + smoothing * (hit - prior)

    return replace(pending, long_term_global_accuracy=accuracy, last_actual_outcome=parsed)


def next_feedback(
    decision: ForecastDecision,
    actual_outcome: int,
    previous: PredictionFeedback | None = None,
    smoothing: float = DEFAULT_ACCURACY_SMOOTHING,
    period_full: int | None = None,
) -> PredictionFeedback:
    """
    Build the feedback for the next invocation.

    Args:
        decision: Decision returned by the previous predict() call.
        actual_outcome: Realised outcome (0-9) of the forecast period.
        previous: Feedback that was passed into that predict() call.
        smoothing: Weight of the newest result in the running accuracy.
        period_full: Optional period identifier of the forecast period.

    Returns:
        PredictionFeedback.

    Raises:
        ValueError: actual_outcome is not an integer 0-9.
    """
    return resolve_feedback(
        pending_feedback(decision, previous, period_full), actual_outcome, smoothing
    )
