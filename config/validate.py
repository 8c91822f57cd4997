"""
Configuration schema validation for the outcome forecaster.

Validates that all required config files exist and contain required keys
with sane values. Run at startup to fail fast on misconfiguration.
"""

from typing import Any

from config.loader import get_config

_GENERATOR_NAMES = (
    "streak_break",
    "rsi_reversal",
    "macd_cross",
    "bollinger_breach",
    "stochastic_cross",
    "extreme_reversion",
    "external_model",
    "weighted_majority",
)


class ConfigValidationError(ValueError):
    """Raised when a required config key is missing or invalid."""

    pass


def _check_keys(config: dict[str, Any], required_keys: list[str], config_name: str) -> list[str]:
    """Check that all required keys exist in a config dict. Returns list of missing keys."""
    missing = []
    for key in required_keys:
        parts = key.split(".")
        current = config
        for part in parts:
            if not isinstance(current, dict) or part not in current:
                missing.append(key)
                break
            current = current[part]
    return missing


def _check_range(
    section: dict[str, Any], key: str, low: float, high: float, prefix: str
) -> list[str]:
    value = section.get(key)
    if value is None:
        return []
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return [f"{prefix}{key}: must be a number"]
    if not low <= value <= high:
        return [f"{prefix}{key}: {value} outside [{low}, {high}]"]
    return []


def validate_app_config(config: dict[str, Any]) -> list[str]:
    """Validate app.json has required fields."""
    errors = _check_keys(config, ["logging.log_dir", "external_data.mode"], "app.json")
    mode = config.get("external_data", {}).get("mode")
    if mode is not None and mode not in ("neutral", "simulated"):
        errors.append("external_data.mode: must be 'neutral' or 'simulated'")
    smoothing = config.get("feedback", {})
    errors.extend(_check_range(smoothing, "accuracy_smoothing", 0.0, 1.0, "feedback."))
    return errors


def validate_engine_config(config: dict[str, Any]) -> list[str]:
    """Validate engine.json has required fields and in-range thresholds."""
    errors = _check_keys(
        config,
        [
            "regime.long_lookback",
            "generators",
            "learner.performance_window",
            "drift.warning_level",
            "drift.drift_level",
            "decision.min_confirmed_history",
            "decision.min_valid_signals",
        ],
        "engine.json",
    )
    if errors:
        return errors

    generators = config["generators"]
    for name in generators:
        if name not in _GENERATOR_NAMES:
            errors.append(f"generators.{name}: unknown generator")
            continue
        errors.extend(
            _check_range(generators[name], "base_weight", 0.0, 1.0, f"generators.{name}.")
        )

    learner = config["learner"]
    errors.extend(_check_range(learner, "performance_window", 1, 10_000, "learner."))
    errors.extend(_check_range(learner, "min_weight_factor", 0.0, 1.0, "learner."))
    errors.extend(_check_range(learner, "max_weight_factor", 1.0, 10.0, "learner."))
    errors.extend(_check_range(learner, "probation_weight_cap", 0.0, 1.0, "learner."))
    threshold = learner.get("probation_threshold_accuracy")
    release = learner.get("probation_release_accuracy")
    if threshold is not None and release is not None and release < threshold:
        errors.append("learner.probation_release_accuracy: must be >= probation_threshold_accuracy")

    drift = config["drift"]
    drift_errors = _check_range(drift, "warning_level", 0.0, 100.0, "drift.")
    drift_errors += _check_range(drift, "drift_level", 0.0, 100.0, "drift.")
    if not drift_errors and drift["drift_level"] <= drift["warning_level"]:
        drift_errors.append("drift.drift_level: must exceed drift.warning_level")
    errors.extend(drift_errors)

    decision = config["decision"]
    errors.extend(_check_range(decision, "level_2_confidence", 0.5, 1.0, "decision."))
    errors.extend(_check_range(decision, "level_3_confidence", 0.5, 1.0, "decision."))
    errors.extend(_check_range(decision, "min_valid_signals", 1, 100, "decision."))
    return errors


def validate_all_configs() -> None:
    """
    Validate all config files. Raises ConfigValidationError with details
    if any required keys are missing or out of range.
    """
    loader = get_config()
    all_errors: dict[str, list[str]] = {}

    validators = {
        "app.json": (loader.get_app_config, validate_app_config),
        "engine.json": (loader.get_engine_config, validate_engine_config),
    }

    for config_name, (loader_fn, validator_fn) in validators.items():
        config = loader_fn()
        if not config:
            all_errors[config_name] = ["Config file is empty or not found"]
            continue
        errors = validator_fn(config)
        if errors:
            all_errors[config_name] = errors

    if all_errors:
        lines = ["Configuration validation failed:"]
        for config_name, errors in all_errors.items():
            lines.append(f"\n  {config_name}:")
            for error in errors:
                lines.append(f"    - {error}")
        raise ConfigValidationError("\n".join(lines))
