"""Shared NeuralMiner configuration utilities.

Values are plain dataclass fields. ~/.neuralminer/configuration.json may
override the defaults, one section per component:

    {
        "coordinator": {"critique_sampling_rate": 0.5},
        "recovery": {"max_retries": 5}
    }
"""

import json
import logging
from dataclasses import dataclass, fields
from pathlib import Path
from typing import Any

from neuralminer.errors import ConfigurationError

logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# Low-level config file access
# ---------------------------------------------------------------------------

NEURALMINER_CONFIG_FILE = Path.home() / ".neuralminer" / "configuration.json"


def get_neuralminer_config(path: Path | None = None) -> dict[str, Any]:
    """Load configuration from ~/.neuralminer/configuration.json."""
    config_file = path or NEURALMINER_CONFIG_FILE
    if not config_file.exists():
        return {}
    try:
        with open(config_file, encoding="utf-8-sig") as f:
            data = json.load(f)
    except (json.JSONDecodeError, OSError):
        return {}
    return data if isinstance(data, dict) else {}


def _section_overrides(cls: type, section: str, path: Path | None) -> dict[str, Any]:
    raw = get_neuralminer_config(path).get(section, {})
    if not isinstance(raw, dict):
        logger.warning(f"⚠ Ignoring non-object '{section}' section in configuration")
        return {}
    known = {f.name for f in fields(cls)}
    unknown = sorted(set(raw) - known)
    if unknown:
        logger.warning(f"⚠ Ignoring unknown '{section}' config keys: {unknown}")
    return {k: v for k, v in raw.items() if k in known}


# ---------------------------------------------------------------------------
# CoordinatorConfig
# ---------------------------------------------------------------------------


@dataclass
class CoordinatorConfig:
    """Run-loop behaviour for the Coordinator."""

    enable_critique: bool = True
    critique_sampling_rate: float = 0.3  # Fraction of peer agents asked to critique
    enable_dynamic_routing: bool = True  # Skip/redirect/terminate adjustments
    max_run_time: float = 300.0  # Seconds
    fast_path_ratio: float = 0.7  # Redirect once this share of the budget is used
    terminate_ratio: float | None = None  # Jump to the end node past this share; off if None
    skip_error_threshold: int = 3
    max_retained_runs: int = 100

    def __post_init__(self) -> None:
        if not 0.0 <= self.critique_sampling_rate <= 1.0:
            raise ConfigurationError(
                f"critique_sampling_rate must be within [0, 1], got {self.critique_sampling_rate}"
            )
        if self.max_run_time <= 0:
            raise ConfigurationError(f"max_run_time must be positive, got {self.max_run_time}")
        for name in ("fast_path_ratio", "terminate_ratio"):
            value = getattr(self, name)
            if value is not None and not 0.0 < value <= 1.0:
                raise ConfigurationError(f"{name} must be within (0, 1], got {value}")
        if self.terminate_ratio is not None and self.fast_path_ratio > self.terminate_ratio:
            raise ConfigurationError("fast_path_ratio must not exceed terminate_ratio")
        if self.skip_error_threshold < 1:
            raise ConfigurationError("skip_error_threshold must be at least 1")
        if self.max_retained_runs < 1:
            raise ConfigurationError("max_retained_runs must be at least 1")

    @classmethod
    def from_file(cls, path: Path | None = None, **overrides: Any) -> "CoordinatorConfig":
        values = _section_overrides(cls, "coordinator", path)
        values.update(overrides)
        return cls(**values)


# ---------------------------------------------------------------------------
# RecoveryConfig
# ---------------------------------------------------------------------------


@dataclass
class RecoveryConfig:
    """Retry/backoff and circuit-breaker policy for the RecoveryManager."""

    max_retries: int = 3
    initial_delay: float = 1.0  # Seconds
    max_delay: float = 30.0  # Seconds
    backoff_factor: float = 2.0
    enable_jitter: bool = True
    failure_threshold: int = 10  # Global failures before threshold events fire
    monitoring_window: float = 60.0  # Seconds
    max_consecutive_failures: int = 3  # Per origin, inside one monitoring window

    def __post_init__(self) -> None:
        for name in (
            "max_retries",
            "initial_delay",
            "max_delay",
            "failure_threshold",
            "max_consecutive_failures",
        ):
            if getattr(self, name) < 0:
                raise ConfigurationError(f"{name} must not be negative")
        if self.backoff_factor < 1:
            raise ConfigurationError(f"backoff_factor must be >= 1, got {self.backoff_factor}")
        if self.monitoring_window <= 0:
            raise ConfigurationError("monitoring_window must be positive")

    @classmethod
    def from_file(cls, path: Path | None = None, **overrides: Any) -> "RecoveryConfig":
        values = _section_overrides(cls, "recovery", path)
        values.update(overrides)
        return cls(**values)
