"""
Configuration Management
========================

Handles loading engine configuration from defaults, a JSON config file and
environment variables. Every section merges a partial mapping over its
documented defaults, so a malformed or incomplete file never stops the
engine from starting.
"""

import json
import logging
import os
import time
from dataclasses import dataclass, field, replace
from pathlib import Path
from typing import Any, Optional

logger = logging.getLogger(__name__)

CONFIG_FILENAME = "riskpulse_config.json"

# Paths whose modification carries extra risk (lockfiles, secrets, schemas...)
DEFAULT_CRITICAL_PATTERNS: list[str] = [
    r"(^|/)package\.json$",
    r"(^|/)(package-lock\.json|yarn\.lock|pnpm-lock\.yaml|poetry\.lock|Pipfile\.lock|Cargo\.lock|go\.sum)$",
    r"(^|/)(pyproject\.toml|setup\.py|setup\.cfg|requirements[^/]*\.txt)$",
    r"(^|/)\.env(\.[^/]*)?$",
    r"(^|/)[^/]*(config|settings)\.[^/]+$",
    r"(^|/)(migrations?|schema)(/|\.)",
    r"(^|/)(auth|security|secrets?)(/|[^/]*\.)",
    r"(^|/)(Dockerfile|docker-compose[^/]*\.ya?ml)$",
    r"(^|/)\.github/workflows/",
]


def current_millis() -> float:
    """Wall-clock time in epoch milliseconds, for outer surfaces only."""
    return time.time() * 1000.0


def _as_float(value: Any, default: float, low: Optional[float] = None,
              high: Optional[float] = None) -> float:
    try:
        result = float(value)
    except (TypeError, ValueError):
        logger.warning("Ignoring non-numeric config value %r", value)
        return default
    if result != result:  # NaN
        return default
    if low is not None:
        result = max(low, result)
    if high is not None:
        result = min(high, result)
    return result


@dataclass
class PulseConfig:
    """Sliding-window change-rate sensor settings."""
    window_seconds: float = 60.0
    elevated: float = 15.0
    racing: float = 30.0
    critical: float = 50.0

    def to_dict(self) -> dict:
        return {
            "window_seconds": self.window_seconds,
            "elevated": self.elevated,
            "racing": self.racing,
            "critical": self.critical,
        }

    @classmethod
    def from_dict(cls, data: Optional[dict]) -> "PulseConfig":
        data = data or {}
        d = cls()
        return cls(
            window_seconds=_as_float(data.get("window_seconds", d.window_seconds), d.window_seconds, 1.0),
            elevated=_as_float(data.get("elevated", d.elevated), d.elevated, 0.0),
            racing=_as_float(data.get("racing", d.racing), d.racing, 0.0),
            critical=_as_float(data.get("critical", d.critical), d.critical, 0.0),
        )


@dataclass
class TemperatureConfig:
    """AI/human activity ratio sensor settings."""
    decay_seconds: float = 300.0
    warm: float = 20.0
    hot: float = 50.0
    burning: float = 80.0
    min_detection_confidence: float = 0.6

    def to_dict(self) -> dict:
        return {
            "decay_seconds": self.decay_seconds,
            "warm": self.warm,
            "hot": self.hot,
            "burning": self.burning,
            "min_detection_confidence": self.min_detection_confidence,
        }

    @classmethod
    def from_dict(cls, data: Optional[dict]) -> "TemperatureConfig":
        data = data or {}
        d = cls()
        return cls(
            decay_seconds=_as_float(data.get("decay_seconds", d.decay_seconds), d.decay_seconds, 1.0),
            warm=_as_float(data.get("warm", d.warm), d.warm, 0.0, 100.0),
            hot=_as_float(data.get("hot", d.hot), d.hot, 0.0, 100.0),
            burning=_as_float(data.get("burning", d.burning), d.burning, 0.0, 100.0),
            min_detection_confidence=_as_float(
                data.get("min_detection_confidence", d.min_detection_confidence),
                d.min_detection_confidence, 0.0, 1.0,
            ),
        )


@dataclass
class PressureConfig:
    """Accumulated unprotected-change pressure settings."""
    base_rate: float = 5.0
    critical_multiplier: float = 3.0
    decay_on_snapshot: float = 50.0  # percent
    warning_threshold: float = 50.0
    high_threshold: float = 60.0
    critical_threshold: float = 80.0
    critical_patterns: list[str] = field(default_factory=lambda: list(DEFAULT_CRITICAL_PATTERNS))

    def to_dict(self) -> dict:
        return {
            "base_rate": self.base_rate,
            "critical_multiplier": self.critical_multiplier,
            "decay_on_snapshot": self.decay_on_snapshot,
            "warning_threshold": self.warning_threshold,
            "high_threshold": self.high_threshold,
            "critical_threshold": self.critical_threshold,
            "critical_patterns": list(self.critical_patterns),
        }

    @classmethod
    def from_dict(cls, data: Optional[dict]) -> "PressureConfig":
        data = data or {}
        d = cls()
        patterns = data.get("critical_patterns")
        if not isinstance(patterns, list) or not all(isinstance(p, str) for p in patterns):
            if patterns is not None:
                logger.warning("Ignoring malformed critical_patterns: %r", patterns)
            patterns = list(DEFAULT_CRITICAL_PATTERNS)
        return cls(
            base_rate=_as_float(data.get("base_rate", d.base_rate), d.base_rate, 0.0),
            critical_multiplier=_as_float(
                data.get("critical_multiplier", d.critical_multiplier), d.critical_multiplier, 1.0
            ),
            decay_on_snapshot=_as_float(
                data.get("decay_on_snapshot", d.decay_on_snapshot), d.decay_on_snapshot, 0.0, 100.0
            ),
            warning_threshold=_as_float(
                data.get("warning_threshold", d.warning_threshold), d.warning_threshold, 0.0, 100.0
            ),
            high_threshold=_as_float(
                data.get("high_threshold", d.high_threshold), d.high_threshold, 0.0, 100.0
            ),
            critical_threshold=_as_float(
                data.get("critical_threshold", d.critical_threshold), d.critical_threshold, 0.0, 100.0
            ),
            critical_patterns=patterns,
        )


@dataclass
class OxygenConfig:
    """Snapshot-coverage sensor settings."""
    stale_minutes: float = 30.0
    critical_weight: float = 2.0
    low_threshold: float = 50.0
    moderate_threshold: float = 70.0

    def to_dict(self) -> dict:
        return {
            "stale_minutes": self.stale_minutes,
            "critical_weight": self.critical_weight,
            "low_threshold": self.low_threshold,
            "moderate_threshold": self.moderate_threshold,
        }

    @classmethod
    def from_dict(cls, data: Optional[dict]) -> "OxygenConfig":
        data = data or {}
        d = cls()
        return cls(
            stale_minutes=_as_float(data.get("stale_minutes", d.stale_minutes), d.stale_minutes, 0.1),
            critical_weight=_as_float(
                data.get("critical_weight", d.critical_weight), d.critical_weight, 1.0
            ),
            low_threshold=_as_float(data.get("low_threshold", d.low_threshold), d.low_threshold, 0.0, 100.0),
            moderate_threshold=_as_float(
                data.get("moderate_threshold", d.moderate_threshold), d.moderate_threshold, 0.0, 100.0
            ),
        )


@dataclass
class CommitRiskConfig:
    """Commit-risk engine cooldowns and calibration targets."""
    min_snapshot_interval_minutes: float = 5.0
    min_prompt_interval_minutes: float = 10.0
    target_bad_outcome_rate: float = 0.15

    def to_dict(self) -> dict:
        return {
            "min_snapshot_interval_minutes": self.min_snapshot_interval_minutes,
            "min_prompt_interval_minutes": self.min_prompt_interval_minutes,
            "target_bad_outcome_rate": self.target_bad_outcome_rate,
        }

    @classmethod
    def from_dict(cls, data: Optional[dict]) -> "CommitRiskConfig":
        data = data or {}
        d = cls()
        return cls(
            min_snapshot_interval_minutes=_as_float(
                data.get("min_snapshot_interval_minutes", d.min_snapshot_interval_minutes),
                d.min_snapshot_interval_minutes, 0.0,
            ),
            min_prompt_interval_minutes=_as_float(
                data.get("min_prompt_interval_minutes", d.min_prompt_interval_minutes),
                d.min_prompt_interval_minutes, 0.0,
            ),
            target_bad_outcome_rate=_as_float(
                data.get("target_bad_outcome_rate", d.target_bad_outcome_rate),
                d.target_bad_outcome_rate, 0.0, 1.0,
            ),
        )


@dataclass
class EngineConfig:
    """Complete configuration for one workspace engine."""
    pulse: PulseConfig = field(default_factory=PulseConfig)
    temperature: TemperatureConfig = field(default_factory=TemperatureConfig)
    pressure: PressureConfig = field(default_factory=PressureConfig)
    oxygen: OxygenConfig = field(default_factory=OxygenConfig)
    commit_risk: CommitRiskConfig = field(default_factory=CommitRiskConfig)
    db_dir: Optional[str] = None

    def to_dict(self) -> dict:
        """Convert to dictionary."""
        return {
            "pulse": self.pulse.to_dict(),
            "temperature": self.temperature.to_dict(),
            "pressure": self.pressure.to_dict(),
            "oxygen": self.oxygen.to_dict(),
            "commit_risk": self.commit_risk.to_dict(),
            "db_dir": self.db_dir,
        }

    @classmethod
    def from_dict(cls, data: Optional[dict]) -> "EngineConfig":
        """Create from a (possibly partial) dictionary."""
        if not isinstance(data, dict):
            if data is not None:
                logger.warning("Ignoring malformed engine config: %r", data)
            data = {}

        def section(name: str) -> Optional[dict]:
            value = data.get(name)
            if value is not None and not isinstance(value, dict):
                logger.warning("Ignoring malformed '%s' config section", name)
                return None
            return value

        db_dir = data.get("db_dir")
        return cls(
            pulse=PulseConfig.from_dict(section("pulse")),
            temperature=TemperatureConfig.from_dict(section("temperature")),
            pressure=PressureConfig.from_dict(section("pressure")),
            oxygen=OxygenConfig.from_dict(section("oxygen")),
            commit_risk=CommitRiskConfig.from_dict(section("commit_risk")),
            db_dir=str(db_dir) if db_dir else None,
        )

    def copy(self) -> "EngineConfig":
        """Deep copy, so engines never share mutable config sections."""
        return EngineConfig.from_dict(self.to_dict())

    @classmethod
    def load(cls, path: Optional[Path] = None) -> "EngineConfig":
        """
        Load configuration from multiple sources in precedence order:
        1. Environment variables
        2. Config file (riskpulse_config.json, or an explicit path)
        3. Default values
        """
        data: dict = {}

        config_path = Path(path) if path else Path(CONFIG_FILENAME)
        if config_path.exists():
            try:
                with open(config_path, "r") as f:
                    file_config = json.load(f)
                if isinstance(file_config, dict):
                    data.update(file_config)
                else:
                    logger.warning("Config file %s is not a JSON object", config_path)
            except (OSError, json.JSONDecodeError) as e:
                logger.warning("Failed to load config file %s: %s", config_path, e)

        config = cls.from_dict(data)
        return _apply_env_overrides(config)


# env var -> (section, attribute, low, high)
_ENV_OVERRIDES: dict[str, tuple[str, str, Optional[float], Optional[float]]] = {
    "RISKPULSE_PULSE_WINDOW_SECONDS": ("pulse", "window_seconds", 1.0, None),
    "RISKPULSE_TEMPERATURE_DECAY_SECONDS": ("temperature", "decay_seconds", 1.0, None),
    "RISKPULSE_PRESSURE_BASE_RATE": ("pressure", "base_rate", 0.0, None),
    "RISKPULSE_DECAY_ON_SNAPSHOT": ("pressure", "decay_on_snapshot", 0.0, 100.0),
    "RISKPULSE_STALE_MINUTES": ("oxygen", "stale_minutes", 0.1, None),
    "RISKPULSE_TARGET_BAD_RATE": ("commit_risk", "target_bad_outcome_rate", 0.0, 1.0),
}


def _apply_env_overrides(config: EngineConfig) -> EngineConfig:
    for env_name, (section_name, attr, low, high) in _ENV_OVERRIDES.items():
        raw = os.environ.get(env_name)
        if raw is None or raw == "":
            continue
        section = getattr(config, section_name)
        value = _as_float(raw, getattr(section, attr), low, high)
        setattr(config, section_name, replace(section, **{attr: value}))

    db_dir = os.environ.get("RISKPULSE_DB_DIR")
    if db_dir:
        config.db_dir = db_dir
    return config


def get_default_config() -> EngineConfig:
    """Get the configuration from file and environment."""
    return EngineConfig.load()
