"""Engine configuration loaded from environment variables.

Environment variables:
    SLOTENGINE_SCRIPT_MAX_STEPS: Interpreter steps a script may take (default: 10000)
    SLOTENGINE_SCRIPT_TIMEOUT_MS: Wall-clock budget per script run (default: 250)
    SLOTENGINE_DECISION_TREE_MAX_DEPTH: Deepest decision tree walked (default: 64)
    SLOTENGINE_EVAL_MAX_WORKERS: Threads used per dependency layer (default: 1)
"""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass
from typing import Final

from slotengine.errors import ConfigError

logger = logging.getLogger(__name__)

ENV_SCRIPT_MAX_STEPS: Final[str] = "SLOTENGINE_SCRIPT_MAX_STEPS"
ENV_SCRIPT_TIMEOUT_MS: Final[str] = "SLOTENGINE_SCRIPT_TIMEOUT_MS"
ENV_DECISION_TREE_MAX_DEPTH: Final[str] = "SLOTENGINE_DECISION_TREE_MAX_DEPTH"
ENV_EVAL_MAX_WORKERS: Final[str] = "SLOTENGINE_EVAL_MAX_WORKERS"

DEFAULT_SCRIPT_MAX_STEPS: Final[int] = 10_000
DEFAULT_SCRIPT_TIMEOUT_MS: Final[int] = 250
DEFAULT_DECISION_TREE_MAX_DEPTH: Final[int] = 64
DEFAULT_EVAL_MAX_WORKERS: Final[int] = 1


@dataclass(frozen=True)
class EngineConfig:
    """Engine limits (immutable).

    Attributes:
        script_max_steps: Interpreter steps allowed per script run.
        script_timeout_ms: Wall-clock budget per script run in milliseconds.
        decision_tree_max_depth: Maximum recursion depth when walking a tree.
        eval_max_workers: Worker threads per dependency layer (1 = sequential).
    """

    script_max_steps: int = DEFAULT_SCRIPT_MAX_STEPS
    script_timeout_ms: int = DEFAULT_SCRIPT_TIMEOUT_MS
    decision_tree_max_depth: int = DEFAULT_DECISION_TREE_MAX_DEPTH
    eval_max_workers: int = DEFAULT_EVAL_MAX_WORKERS

    def __post_init__(self) -> None:
        """Validate configuration values."""
        for name in (
            "script_max_steps",
            "script_timeout_ms",
            "decision_tree_max_depth",
            "eval_max_workers",
        ):
            value = getattr(self, name)
            if not isinstance(value, int) or isinstance(value, bool) or value <= 0:
                raise ConfigError(f"{name} must be a positive integer, got {value!r}")

    @property
    def script_timeout_seconds(self) -> float:
        """Script wall-clock budget in seconds."""
        return self.script_timeout_ms / 1000


def _parse_positive_int(env_var: str, default: int) -> int:
    """Parse a positive integer from an environment variable.

    Raises:
        ConfigError: If the value is set but not a positive integer.
    """
    raw = os.environ.get(env_var)
    if raw is None:
        return default

    raw = raw.strip()
    if not raw:
        return default

    try:
        value = int(raw)
    except ValueError as e:
        raise ConfigError(f"{env_var} must be a positive integer, got '{raw}'") from e

    if value <= 0:
        raise ConfigError(f"{env_var} must be a positive integer, got {value}")

    return value


def load_engine_config() -> EngineConfig:
    """Load engine configuration from environment variables.

    Returns:
        EngineConfig with validated values.

    Raises:
        ConfigError: If any value is invalid.
    """
    config = EngineConfig(
        script_max_steps=_parse_positive_int(ENV_SCRIPT_MAX_STEPS, DEFAULT_SCRIPT_MAX_STEPS),
        script_timeout_ms=_parse_positive_int(ENV_SCRIPT_TIMEOUT_MS, DEFAULT_SCRIPT_TIMEOUT_MS),
        decision_tree_max_depth=_parse_positive_int(
            ENV_DECISION_TREE_MAX_DEPTH, DEFAULT_DECISION_TREE_MAX_DEPTH
        ),
        eval_max_workers=_parse_positive_int(ENV_EVAL_MAX_WORKERS, DEFAULT_EVAL_MAX_WORKERS),
    )
    logger.debug("Loaded engine config: %s", config)
    return config
