"""
Centralized logging for the outcome forecaster.

Each component gets its own file logger inside a module folder under the log
root (FORECAST_LOG_DIR, else app.json logging.log_dir). Three line formats:

    human  timestamp | level | logger | message
    json   one JSON object per record, with forecaster extras
           (source, accuracy, drift_status, error_rate, ...)
    raw    the message as-is, for lines that are already JSON

The decision trail (Forecast_Engine_Logs/decisions.jsonl) holds one full
serialized ForecastDecision per line.

Usage:
    from bot_logging.logger_manager import setup_module_logger

    logger = setup_module_logger("drift_detector", "drift_detector.log",
                                 module_folder="Drift_Detector_Logs", formatter="json")
    logger.warning("Concept drift detected", extra={"drift_status": "DRIFT"})
"""

import json
import logging
import os
from datetime import datetime, timezone
from typing import Any

from config.loader import get_config
from shared.serialization_utils import ForecastEncoder

_DEFAULT_MODULE_FOLDERS = {
    "forecast_engine": "Forecast_Engine_Logs",
    "weight_learner": "Weight_Learner_Logs",
    "drift_detector": "Drift_Detector_Logs",
    "feedback": "Feedback_Logs",
    "replay": "Replay_Logs",
    "cli": "CLI_Logs",
}

# LogRecord attributes copied into JSON lines when a caller passes them in `extra`
_JSON_EXTRAS = (
    "source",
    "accuracy",
    "observations",
    "drift_status",
    "error_rate",
    "macro_regime",
    "final_decision",
    "confidence",
    "error",
)


def get_log_dir() -> str:
    return get_config().get_log_dir()


def get_module_folders() -> dict[str, str]:
    logging_cfg = get_config().get_app_config().get("logging", {})
    return logging_cfg.get("module_folders", _DEFAULT_MODULE_FOLDERS)


# ============================================================================
# FORMATTERS
# ============================================================================


class JSONFormatter(logging.Formatter):
    """One JSON object per record; forecaster extras are included when present."""

    def format(self, record: logging.LogRecord) -> str:
        entry = {
            "timestamp": datetime.fromtimestamp(record.created, tz=timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            "module": record.module,
            "function": record.funcName,
            "line": record.lineno,
        }
        entry.update({key: getattr(record, key) for key in _JSON_EXTRAS if hasattr(record, key)})
        if record.exc_info and record.exc_info[0] is not None:
            entry["exception"] = self.formatException(record.exc_info)
        return json.dumps(entry, cls=ForecastEncoder)


class HumanReadableFormatter(logging.Formatter):
    FORMAT = "%(asctime)s | %(levelname)-8s | %(name)-30s | %(message)s"
    DATE_FORMAT = "%Y-%m-%d %H:%M:%S"

    def __init__(self) -> None:
        super().__init__(fmt=self.FORMAT, datefmt=self.DATE_FORMAT)


class RawMessageFormatter(logging.Formatter):
    """Message only; used for pre-serialized JSON lines."""

    def format(self, record: logging.LogRecord) -> str:
        return record.getMessage()


_FORMATTERS: dict[str, type[logging.Formatter]] = {
    "human": HumanReadableFormatter,
    "json": JSONFormatter,
    "raw": RawMessageFormatter,
}


# ============================================================================
# LOGGER FACTORY
# ============================================================================

_logger_cache: dict[str, logging.Logger] = {}


def create_module_log_directories() -> dict[str, str]:
    """Create the log root and every module folder; returns folder key -> path."""
    log_dir = get_log_dir()
    created = {}
    for key, folder_name in get_module_folders().items():
        path = os.path.join(log_dir, folder_name)
        os.makedirs(path, exist_ok=True)
        created[key] = path
    return created


def _log_path(log_file: str, module_folder: str | None) -> str:
    parts = [get_log_dir()] + ([module_folder] if module_folder else []) + [log_file]
    path = os.path.join(*parts)
    os.makedirs(os.path.dirname(path), exist_ok=True)
    return path


def setup_module_logger(
    name: str,
    log_file: str,
    level: int = logging.INFO,
    module_folder: str | None = None,
    formatter: str = "human",
) -> logging.Logger:
    """
    Create (or fetch) a file logger for one component.

    Args:
        name: Logger name, unique per component.
        log_file: File name inside `module_folder` (or the log root).
        level: Logging level (default INFO).
        module_folder: Subfolder of the log root, e.g. 'Weight_Learner_Logs'.
        formatter: 'human', 'json' or 'raw'.

    Returns:
        logging.Logger writing only to its own file (no propagation).

    Raises:
        ValueError: unknown formatter name.
    """
    if formatter not in _FORMATTERS:
        raise ValueError(f"Unknown log formatter {formatter!r}; use one of {sorted(_FORMATTERS)}")

    cache_key = f"{name}:{module_folder}:{log_file}"
    cached = _logger_cache.get(cache_key)
    if cached is not None:
        return cached

    logger = logging.getLogger(name)
    logger.setLevel(level)
    if not logger.handlers:
        handler = logging.FileHandler(_log_path(log_file, module_folder), mode="a", encoding="utf-8")
        handler.setLevel(level)
        handler.setFormatter(_FORMATTERS[formatter]())
        logger.addHandler(handler)
        logger.propagate = False

    _logger_cache[cache_key] = logger
    return logger


# ============================================================================
# DECISION TRAIL
# ============================================================================


def get_decision_logger() -> logging.Logger:
    folder = get_module_folders().get("forecast_engine", "Forecast_Engine_Logs")
    return setup_module_logger(
        "forecast_decisions", "decisions.jsonl", module_folder=folder, formatter="raw"
    )


def log_decision(decision: dict[str, Any]) -> None:
    """Append one decision (as produced by ForecastDecision.to_dict) to the trail."""
    entry = {
        "event": "DECISION",
        "logged_at": datetime.now(timezone.utc).isoformat(),
        **decision,
    }
    get_decision_logger().info(json.dumps(entry, cls=ForecastEncoder))
