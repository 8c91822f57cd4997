"""
Outcome Forecaster: command-line entrypoint.

Two subcommands over JSON files:
    predict  Forecast the next outcome of a stored history.
    replay   Walk a stored history forward and report hit rates per tier.

Learning state lives in memory for the duration of one command; `predict`
carries state between runs only through the feedback file.

History files hold a list of rows (newest first) or {"history": [...]}; each
row needs a period ("period" or "issueNumber"), an outcome 0-9 ("outcome",
"actualNumber" or "actual") and optionally a status (Win/Loss/Pending).

Usage:
    python main.py predict --history history.json --write-feedback state.json
    python main.py predict --history history.json --feedback state.json --actual 7 \\
        --write-feedback state.json
    python main.py replay --history history.json
"""

from __future__ import annotations

import argparse
import json
import random
import sys
from pathlib import Path
from typing import Any

from dotenv import load_dotenv

from bot_logging.logger_manager import create_module_log_directories, setup_module_logger
from config.loader import get_config
from config.validate import ConfigValidationError, validate_all_configs
from core.external import FixedClock, build_external_data
from core.feedback import parse_history, pending_feedback, resolve_feedback
from core.forecast_engine import ForecastEngine
from core.replay import replay
from shared.serialization_utils import ForecastEncoder
from shared.types import PredictionFeedback

_logger = setup_module_logger("main", "main.log", module_folder="CLI_Logs")


class InputFileError(Exception):
    """Raised when an input file cannot be read or has the wrong shape."""


# ---------------------------------------------------------------------------
# File helpers
# ---------------------------------------------------------------------------


def _read_json(path: str) -> Any:
    try:
        with open(path, "r", encoding="utf-8") as f:
            return json.load(f)
    except OSError as exc:
        raise InputFileError(f"Cannot read {path}: {exc}") from exc
    except json.JSONDecodeError as exc:
        raise InputFileError(f"Invalid JSON in {path}: {exc}") from exc


def _load_history(path: str) -> list[Any]:
    data = _read_json(path)
    if isinstance(data, dict):
        data = data.get("history")
    if not isinstance(data, list):
        raise InputFileError(f"{path}: expected a list of rows or {{'history': [...]}}")
    return parse_history(data)


def _load_feedback(path: str | None) -> PredictionFeedback | None:
    if path is None or not Path(path).exists():
        return None
    data = _read_json(path)
    if not isinstance(data, dict):
        raise InputFileError(f"{path}: expected a JSON object")
    return PredictionFeedback.from_dict(data)


def _write_json(path: str, payload: Any) -> None:
    with open(path, "w", encoding="utf-8") as f:
        json.dump(payload, f, cls=ForecastEncoder, indent=2)


def _emit(payload: Any) -> None:
    print(json.dumps(payload, cls=ForecastEncoder, indent=2))


# ---------------------------------------------------------------------------
# Engine wiring
# ---------------------------------------------------------------------------


def _build_engine(hour: int | None = None, seed: int | None = None) -> ForecastEngine:
    cfg = get_config()
    return ForecastEngine(
        external_data=build_external_data(
            cfg.get_external_data_mode(), cfg.get_external_data_seed()
        ),
        clock=FixedClock(hour) if hour is not None else None,
        rng=random.Random(seed) if seed is not None else None,
    )


# ---------------------------------------------------------------------------
# Commands
# ---------------------------------------------------------------------------


def _cmd_predict(args: argparse.Namespace) -> int:
    records = _load_history(args.history)
    feedback = _load_feedback(args.feedback)
    smoothing = get_config().get_feedback_smoothing()

    if args.actual is not None:
        if feedback is None:
            _logger.warning("--actual given without a feedback file; ignoring it")
        else:
            feedback = resolve_feedback(feedback, args.actual, smoothing)

    engine = _build_engine(args.hour, args.seed)
    decision = engine.predict(records, feedback)
    _logger.info(
        "predict: %d records -> %s @ %.3f (level %d)",
        len(records),
        decision.final_decision.value,
        decision.final_confidence,
        decision.confidence_level,
    )

    if args.write_feedback:
        _write_json(args.write_feedback, pending_feedback(decision, feedback, args.period_full))
    _emit(decision)
    return 0


def _cmd_replay(args: argparse.Namespace) -> int:
    records = _load_history(args.history)
    smoothing = get_config().get_feedback_smoothing()
    engine = _build_engine(args.hour, args.seed)

    report = replay(records, engine, warmup=args.warmup, smoothing=smoothing)
    payload = {"report": report, "learner": engine.learner.snapshot()}
    if args.output:
        _write_json(args.output, payload)
    _emit(payload)
    return 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="forecaster", description="Adaptive BIG/SMALL outcome forecaster")
    sub = parser.add_subparsers(dest="command", required=True)

    predict = sub.add_parser("predict", help="Forecast the next outcome")
    predict.add_argument("--history", required=True, help="History JSON file (newest first)")
    predict.add_argument("--feedback", default=None, help="Feedback JSON from the previous run")
    predict.add_argument("--actual", type=int, default=None, help="Realised outcome (0-9) of the previous forecast")
    predict.add_argument("--write-feedback", default=None, help="Write pending feedback for the next run here")
    predict.add_argument("--period-full", type=int, default=None, help="Period identifier stored in the feedback")
    predict.add_argument("--hour", type=int, default=None, help="Override the session hour (0-23)")
    predict.add_argument("--seed", type=int, default=None, help="Seed for fallback random decisions")
    predict.set_defaults(func=_cmd_predict)

    replay_cmd = sub.add_parser("replay", help="Walk-forward replay of a stored history")
    replay_cmd.add_argument("--history", required=True, help="History JSON file (newest first)")
    replay_cmd.add_argument("--warmup", type=int, default=None, help="Records shown before the first decision")
    replay_cmd.add_argument("--output", default=None, help="Also write the report here")
    replay_cmd.add_argument("--hour", type=int, default=None, help="Override the session hour (0-23)")
    replay_cmd.add_argument("--seed", type=int, default=None, help="Seed for fallback random decisions")
    replay_cmd.set_defaults(func=_cmd_replay)

    return parser


# ---------------------------------------------------------------------------
# Entrypoint
# ---------------------------------------------------------------------------


def main(argv: list[str] | None = None) -> int:
    """Synchronous entry point; returns the process exit code."""
    load_dotenv()
    args = build_parser().parse_args(argv)

    try:
        validate_all_configs()
    except ConfigValidationError as exc:
        _logger.critical("Config validation failed:\n%s", exc)
        print(exc, file=sys.stderr)
        return 1

    create_module_log_directories()
    if args.command == "replay" and args.warmup is None:
        args.warmup = get_config().get_replay_warmup()

    try:
        return args.func(args)
    except InputFileError as exc:
        _logger.error("%s", exc)
        print(exc, file=sys.stderr)
        return 2
    except ValueError as exc:
        _logger.error("Invalid input: %s", exc)
        print(f"Invalid input: {exc}", file=sys.stderr)
        return 2


if __name__ == "__main__":
    sys.exit(main())
