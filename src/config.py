"""
Engine configuration.

Defaults live in module constants; EngineConfig.from_env() lets a host override
them with DECISIONING_* environment variables.
"""

import math
import os
from dataclasses import dataclass, fields
from typing import Mapping, Optional

DEFAULT_MAX_RECOMMENDATIONS = 5
DEFAULT_DECISION_TIMEOUT = 5.0  # seconds
DEFAULT_DECISION_WORKERS = 8
DEFAULT_CONFIDENCE_FLOOR = 0.3
DEFAULT_WEIGHT_TOLERANCE = 0.01
DEFAULT_ALLOCATION_TOLERANCE = 0.01
DEFAULT_MIN_SAMPLE_SIZE = 30
DEFAULT_CONFIDENCE_LEVEL = 0.95
DEFAULT_SRM_ALPHA = 0.01
DEFAULT_STORE_DIR = "data/experiments"
DEFAULT_ARTIFACTS_DIR = "artifacts/experiments"

ENV_PREFIX = "DECISIONING_"

# Decision options a request or an experiment variant may set
OPTION_FIELDS = ("max_recommendations", "timeout", "include_reasons", "debug")


def option_error(name: str, value) -> Optional[str]:
    """Reason `value` is unusable for decision option `name`, or None when it is fine."""
    if name == "max_recommendations":
        if isinstance(value, bool) or not isinstance(value, int) or value < 1:
            return f"max_recommendations must be an integer >= 1, got {value!r}"
    elif name == "timeout":
        if (isinstance(value, bool) or not isinstance(value, (int, float))
                or not math.isfinite(value) or value <= 0):
            return f"timeout must be a positive number of seconds, got {value!r}"
    elif name in ("include_reasons", "debug"):
        if not isinstance(value, bool):
            return f"{name} must be a boolean, got {value!r}"
    return None


@dataclass
class EngineConfig:
    """Tunables for both engines."""
    max_recommendations: int = DEFAULT_MAX_RECOMMENDATIONS
    decision_timeout: float = DEFAULT_DECISION_TIMEOUT
    decision_workers: int = DEFAULT_DECISION_WORKERS
    confidence_floor: float = DEFAULT_CONFIDENCE_FLOOR
    weight_tolerance: float = DEFAULT_WEIGHT_TOLERANCE
    allocation_tolerance: float = DEFAULT_ALLOCATION_TOLERANCE
    min_sample_size: int = DEFAULT_MIN_SAMPLE_SIZE
    confidence_level: float = DEFAULT_CONFIDENCE_LEVEL
    srm_alpha: float = DEFAULT_SRM_ALPHA
    store_dir: Optional[str] = None
    artifacts_dir: str = DEFAULT_ARTIFACTS_DIR

    @classmethod
    def from_env(cls, environ: Optional[Mapping[str, str]] = None) -> "EngineConfig":
        """
        Build a config from environment variables.

        Each field maps to DECISIONING_<FIELD_NAME_UPPER>; values are cast to
        the type of the field's default. Unset variables keep the default.
        """
        environ = os.environ if environ is None else environ
        kwargs = {}
        for f in fields(cls):
            raw = environ.get(ENV_PREFIX + f.name.upper())
            if raw is None or raw == "":
                continue
            if isinstance(f.default, bool):
                kwargs[f.name] = raw.strip().lower() in ("1", "true", "yes")
            elif isinstance(f.default, int):
                kwargs[f.name] = int(raw)
            elif isinstance(f.default, float):
                kwargs[f.name] = float(raw)
            else:
                kwargs[f.name] = raw
        return cls(**kwargs)
