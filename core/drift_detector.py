"""
Concept-drift detection over the correctness stream of final decisions.

Drift Detection Method (Gama et al. 2004): tracks the running error rate p
and its standard deviation s = sqrt(p(1-p)/n), remembers the minimum of
p + s, and compares the current p + s against that minimum:

    p + s > p_min + drift_level   * s_min  ->  DRIFT   (minimum statistics reset)
    p + s > p_min + warning_level * s_min  ->  WARNING
    otherwise                              ->  STABLE

On DRIFT the sample counter restarts at 1 and the minimum statistics return
to infinity; the running error rate carries over.

References:
    Gama, Medas, Castillo & Rodrigues (2004), "Learning with Drift Detection", SBIA.
"""

from __future__ import annotations

import math
import threading
from collections.abc import Mapping
from dataclasses import replace
from typing import Any

from bot_logging.logger_manager import setup_module_logger
from config.loader import get_config
from shared.constants import DRIFT_DRIFT_LEVEL, DRIFT_WARNING_LEVEL
from shared.types import DriftState, DriftStatus


class ConceptDriftDetector:
    """Online DDM test; one instance per forecasting stream."""

    def __init__(
        self,
        warning_level: float | None = None,
        drift_level: float | None = None,
        config: Mapping[str, Any] | None = None,
    ) -> None:
        if config is None and (warning_level is None or drift_level is None):
            config = get_config().get_engine_section("drift")
        config = config or {}

        self._state = DriftState(
            warning_level=float(
                warning_level if warning_level is not None
                else config.get("warning_level", DRIFT_WARNING_LEVEL)
            ),
            drift_level=float(
                drift_level if drift_level is not None
                else config.get("drift_level", DRIFT_DRIFT_LEVEL)
            ),
        )
        self._lock = threading.Lock()
        self._logger = setup_module_logger(
            "drift_detector",
            "drift_detector.log",
            module_folder="Drift_Detector_Logs",
            formatter="json",
        )

    def update(self, is_correct: bool) -> DriftStatus:
        """Feed one final-decision outcome and return the drift status after it."""
        with self._lock:
            state = self._state
            state.n += 1
            error = 0.0 if is_correct else 1.0
            previous = state.p_i if state.n > 1 else 0.0
            state.p_i = previous + (error - previous) / state.n
            s_i = math.sqrt(state.p_i * (1.0 - state.p_i) / state.n)
            level = state.p_i + s_i

            if level < state.p_min + state.s_min:
                state.p_min = state.p_i
                state.s_min = s_i

            if level > state.p_min + state.drift_level * state.s_min:
                state.p_min = math.inf
                state.s_min = math.inf
                state.n = 1
                status = DriftStatus.DRIFT
            elif level > state.p_min + state.warning_level * state.s_min:
                status = DriftStatus.WARNING
            else:
                status = DriftStatus.STABLE

            p_i = state.p_i

        if status is DriftStatus.DRIFT:
            self._logger.warning(
                "Concept drift detected (error rate %.3f), statistics reset",
                p_i,
                extra={"drift_status": status.value, "error_rate": p_i},
            )
        elif status is DriftStatus.WARNING:
            self._logger.info(
                "Drift warning (error rate %.3f)",
                p_i,
                extra={"drift_status": status.value, "error_rate": p_i},
            )
        return status

    @property
    def state(self) -> DriftState:
        with self._lock:
            return replace(self._state)

    def reset(self) -> None:
        with self._lock:
            self._state = DriftState(
                warning_level=self._state.warning_level,
                drift_level=self._state.drift_level,
            )
