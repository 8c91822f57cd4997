"""
Configuration loader for the outcome forecaster.

Two JSON files under config/ drive everything:
    app.json     logging folders, external data provider, feedback smoothing,
                 replay warmup
    engine.json  generator weights and every engine threshold

Values from .env or the process environment override a few app settings:
    FORECAST_CONFIG_DIR     alternative directory holding app.json/engine.json
    FORECAST_LOG_DIR        log root
    FORECAST_EXTERNAL_DATA  external data mode ('neutral' or 'simulated')

Usage:
    from config.loader import get_config

    config = get_config()
    learner_cfg = config.get_engine_section("learner")
    warmup = config.get_replay_warmup()
"""

import json
import os
import sys
from functools import lru_cache
from pathlib import Path
from typing import Any, Dict, Optional

from dotenv import load_dotenv

load_dotenv()

_CONFIG_DIR = Path(__file__).parent
_PROJECT_ROOT = _CONFIG_DIR.parent

_DEFAULT_SMOOTHING = 0.05
_DEFAULT_WARMUP = 52


def _load_json(filepath: Path) -> Dict[str, Any]:
    """Parsed JSON object, or {} when the file is missing or unreadable."""
    if not filepath.is_file():
        print(f"[CONFIG_WARN] Config file not found: {filepath}", file=sys.stderr)
        return {}
    try:
        data = json.loads(filepath.read_text(encoding="utf-8"))
    except json.JSONDecodeError as e:
        print(f"[CONFIG_ERROR] Invalid JSON in {filepath}: {e}", file=sys.stderr)
        return {}
    if not isinstance(data, dict):
        print(f"[CONFIG_ERROR] {filepath} must hold a JSON object", file=sys.stderr)
        return {}
    return data


def get_env_var(var_name: str, default_value: Any, var_type: type) -> Any:
    """Environment value converted to `var_type`; `default_value` when unset or unconvertible."""
    raw = os.getenv(var_name)
    if raw is None:
        return default_value
    if var_type is bool:
        return raw.strip().lower() in ("true", "1", "yes")
    try:
        return var_type(raw)
    except (ValueError, TypeError):
        return default_value


class ConfigLoader:
    """
    Singleton access to app.json and engine.json.

    File reads are cached; call clear_cache() after editing a file in-process.
    """

    _instance: Optional["ConfigLoader"] = None

    def __init__(self, config_dir: Optional[Path] = None):
        override = get_env_var("FORECAST_CONFIG_DIR", None, str)
        self._config_dir = Path(config_dir or override or _CONFIG_DIR)
        self._project_root = _PROJECT_ROOT

    @classmethod
    def get_instance(cls) -> "ConfigLoader":
        if cls._instance is None:
            cls._instance = cls()
        return cls._instance

    @property
    def config_dir(self) -> Path:
        return self._config_dir

    # ------------------------------------------------------------------
    # Files
    # ------------------------------------------------------------------

    @lru_cache(maxsize=16)
    def get_config_file(self, config_name: str) -> Dict[str, Any]:
        """Any config/<config_name>.json."""
        return _load_json(self._config_dir / f"{config_name}.json")

    def get_app_config(self) -> Dict[str, Any]:
        return self.get_config_file("app")

    def get_engine_config(self) -> Dict[str, Any]:
        return self.get_config_file("engine")

    def get_engine_section(self, section: str) -> Dict[str, Any]:
        """One engine.json section ('learner', 'drift', ...), {} when absent."""
        value = self.get_engine_config().get(section)
        return value if isinstance(value, dict) else {}

    # ------------------------------------------------------------------
    # App settings
    # ------------------------------------------------------------------

    def get_log_dir(self) -> str:
        """FORECAST_LOG_DIR, else app.json logging.log_dir resolved against the project root."""
        override = get_env_var("FORECAST_LOG_DIR", None, str)
        if override:
            return override
        log_dir = self.get_app_config().get("logging", {}).get("log_dir", "logs")
        return str(self._project_root / log_dir)

    def get_external_data_mode(self) -> str:
        default = self.get_app_config().get("external_data", {}).get("mode", "neutral")
        return get_env_var("FORECAST_EXTERNAL_DATA", default, str).strip().lower()

    def get_external_data_seed(self) -> Optional[int]:
        seed = self.get_app_config().get("external_data", {}).get("seed")
        return seed if isinstance(seed, int) and not isinstance(seed, bool) else None

    def get_feedback_smoothing(self) -> float:
        return float(
            self.get_app_config().get("feedback", {}).get("accuracy_smoothing", _DEFAULT_SMOOTHING)
        )

    def get_replay_warmup(self) -> int:
        return int(self.get_app_config().get("replay", {}).get("warmup", _DEFAULT_WARMUP))

    def clear_cache(self) -> None:
        self.get_config_file.cache_clear()


def get_config() -> ConfigLoader:
    """The process-wide ConfigLoader."""
    return ConfigLoader.get_instance()
