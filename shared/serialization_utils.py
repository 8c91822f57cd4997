"""
Serialization utilities for the outcome forecaster.

Provides JSON encoding for enums, dataclasses, deques and non-finite floats
(drift statistics start at infinity, which JSON cannot represent).

Usage:
    from shared.serialization_utils import ForecastEncoder
    json.dumps(decision, cls=ForecastEncoder)
"""

import dataclasses
import math
from collections import deque
from enum import Enum
from json import JSONEncoder
from typing import Any


class ForecastEncoder(JSONEncoder):
    """
    Custom JSON encoder for forecaster types.

    Sources:
    - RFC 8259 section 6 (Infinity and NaN are not permitted as JSON numbers)
    """

    def default(self, obj: Any) -> Any:
        if isinstance(obj, Enum):
            return obj.value
        # Types with their own JSON shape (decisions, feedback, reports)
        if hasattr(obj, "to_dict"):
            return obj.to_dict()
        if dataclasses.is_dataclass(obj) and not isinstance(obj, type):
            return {f.name: getattr(obj, f.name) for f in dataclasses.fields(obj)}
        if isinstance(obj, (deque, set, frozenset)):
            return list(obj)
        return super().default(obj)

    def iterencode(self, obj: Any, _one_shot: bool = False) -> Any:
        """Replace non-finite floats and enum keys before serialization (json.dump and dumps)."""
        return super().iterencode(self._sanitize(obj), _one_shot)

    def _sanitize(self, obj: Any) -> Any:
        """
        Recursively map non-finite floats to None and enum dict keys to their values.

        Objects handled by default() are expanded first so their contents are
        sanitized too.
        """
        if isinstance(obj, float):
            return obj if math.isfinite(obj) else None
        if isinstance(obj, dict):
            return {
                (k.value if isinstance(k, Enum) else k): self._sanitize(v) for k, v in obj.items()
            }
        if isinstance(obj, (list, tuple, deque)):
            return [self._sanitize(item) for item in obj]
        if isinstance(obj, Enum) or obj is None or isinstance(obj, (str, int, bool)):
            return obj
        try:
            expanded = self.default(obj)
        except TypeError:
            return obj
        return self._sanitize(expanded)
