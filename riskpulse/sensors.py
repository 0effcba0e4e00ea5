"""
Session Sensors
===============

Four leaf sensors that turn raw activity events into derived vitals:

- PulseTracker: change rate over a sliding window
- TemperatureMonitor: share of AI-attributed activity over a decay window
- PressureGauge: accumulated risk from changes that are not yet snapshotted
- OxygenSensor: snapshot coverage of the files currently being modified

Every query takes an explicit ``now`` (epoch milliseconds). Queries never
mutate sensor state; only the ``record_*`` methods and ``reset()`` do.
"""

import logging
import re
from dataclasses import dataclass, field
from enum import Enum
from pathlib import PurePath
from typing import Iterable, Optional

from riskpulse.config import OxygenConfig, PressureConfig, PulseConfig, TemperatureConfig

logger = logging.getLogger(__name__)

MS_PER_MINUTE = 60_000.0

# Stale, untouched snapshot entries are forgotten after this many stale windows
STALE_RETENTION_FACTOR = 4


class PulseLevel(Enum):
    """Change-rate classification."""
    RESTING = "resting"
    ELEVATED = "elevated"
    RACING = "racing"
    CRITICAL = "critical"


class TemperatureLevel(Enum):
    """AI-activity classification."""
    COLD = "cold"
    WARM = "warm"
    HOT = "hot"
    BURNING = "burning"


@dataclass(frozen=True)
class PulseReading:
    level: PulseLevel
    changes_per_minute: float

    def to_dict(self) -> dict:
        return {"level": self.level.value, "changes_per_minute": self.changes_per_minute}


@dataclass(frozen=True)
class TemperatureReading:
    level: TemperatureLevel
    ai_percentage: float
    detected_tool: Optional[str] = None

    def to_dict(self) -> dict:
        return {
            "level": self.level.value,
            "ai_percentage": self.ai_percentage,
            "detected_tool": self.detected_tool,
        }


@dataclass(frozen=True)
class PressureReading:
    value: float
    unsnapshotted_changes: int
    minutes_since_snapshot: float
    critical_files_touched: frozenset[str] = field(default_factory=frozenset)

    def to_dict(self) -> dict:
        return {
            "value": self.value,
            "unsnapshotted_changes": self.unsnapshotted_changes,
            "minutes_since_snapshot": self.minutes_since_snapshot,
            "critical_files_touched": sorted(self.critical_files_touched),
        }


@dataclass(frozen=True)
class OxygenReading:
    value: float
    stale_snapshots: int

    def to_dict(self) -> dict:
        return {"value": self.value, "stale_snapshots": self.stale_snapshots}


def normalize_path(path: str) -> str:
    """Normalize a path to forward-slash form for pattern matching."""
    return PurePath(str(path)).as_posix()


class CriticalPathMatcher:
    """Matches file paths against critical-path regexes."""

    def __init__(self, patterns: Iterable[str]):
        self._patterns = []
        for pattern in patterns:
            try:
                self._patterns.append(re.compile(pattern, re.IGNORECASE))
            except re.error as e:
                logger.warning("Skipping invalid critical-path pattern %r: %s", pattern, e)

    def is_critical(self, path: str) -> bool:
        candidate = normalize_path(path)
        return any(p.search(candidate) for p in self._patterns)


# =============================================================================
# Pulse
# =============================================================================

class PulseTracker:
    """Sliding-window change-rate sensor."""

    def __init__(self, config: Optional[PulseConfig] = None):
        self.config = config or PulseConfig()
        self._timestamps: list[float] = []

    @property
    def window_ms(self) -> float:
        return self.config.window_seconds * 1000.0

    def record_change(self, now: float) -> None:
        self._timestamps.append(now)
        self._prune(now)

    def _prune(self, now: float) -> None:
        cutoff = now - self.window_ms
        self._timestamps = [t for t in self._timestamps if t > cutoff]

    def get_level(self, now: float) -> PulseReading:
        cutoff = now - self.window_ms
        count = sum(1 for t in self._timestamps if cutoff < t <= now)
        cpm = count / self.config.window_seconds * 60.0
        return PulseReading(level=self.classify(cpm), changes_per_minute=cpm)

    def classify(self, changes_per_minute: float) -> PulseLevel:
        if changes_per_minute >= self.config.critical:
            return PulseLevel.CRITICAL
        if changes_per_minute >= self.config.racing:
            return PulseLevel.RACING
        if changes_per_minute >= self.config.elevated:
            return PulseLevel.ELEVATED
        return PulseLevel.RESTING

    def reset(self) -> None:
        self._timestamps = []


# =============================================================================
# Temperature
# =============================================================================

class TemperatureMonitor:
    """Decaying-window ratio of AI-attributed to human-attributed activity."""

    def __init__(self, config: Optional[TemperatureConfig] = None):
        self.config = config or TemperatureConfig()
        self._ai_events: list[float] = []
        self._human_events: list[float] = []
        self._last_tool: Optional[str] = None

    @property
    def decay_ms(self) -> float:
        return self.config.decay_seconds * 1000.0

    def record_ai(self, now: float, tool: Optional[str] = None) -> None:
        self._ai_events.append(now)
        if tool:
            self._last_tool = tool
        self._prune(now)

    def record_human(self, now: float) -> None:
        self._human_events.append(now)
        self._prune(now)

    def apply_detection(self, tool: str, confidence: float, now: float) -> bool:
        """Count an AI-detection event when its confidence is high enough."""
        if confidence > self.config.min_detection_confidence:
            self.record_ai(now, tool=tool)
            return True
        logger.debug("Ignoring low-confidence AI detection (%s, %.2f)", tool, confidence)
        return False

    def _prune(self, now: float) -> None:
        cutoff = now - self.decay_ms
        self._ai_events = [t for t in self._ai_events if t > cutoff]
        self._human_events = [t for t in self._human_events if t > cutoff]

    def get_level(self, now: float) -> TemperatureReading:
        cutoff = now - self.decay_ms
        ai = sum(1 for t in self._ai_events if cutoff < t <= now)
        human = sum(1 for t in self._human_events if cutoff < t <= now)
        total = ai + human
        ai_percentage = (ai / total * 100.0) if total else 0.0
        return TemperatureReading(
            level=self.classify(ai_percentage),
            ai_percentage=ai_percentage,
            detected_tool=self._last_tool,
        )

    def classify(self, ai_percentage: float) -> TemperatureLevel:
        if ai_percentage >= self.config.burning:
            return TemperatureLevel.BURNING
        if ai_percentage >= self.config.hot:
            return TemperatureLevel.HOT
        if ai_percentage >= self.config.warm:
            return TemperatureLevel.WARM
        return TemperatureLevel.COLD

    def reset(self) -> None:
        self._ai_events = []
        self._human_events = []
        self._last_tool = None


# =============================================================================
# Pressure
# =============================================================================

class PressureGauge:
    """
    Accumulated risk from unsnapshotted changes.

    Each change adds ``base_rate / 10`` to an accumulator (times the critical
    multiplier for critical paths). While unsnapshotted changes exist, the
    reading also adds ``minutes_since_snapshot * base_rate``. Both parts are
    capped at 100. A snapshot decays the accumulator by ``decay_on_snapshot``
    percent and clears the change counter and critical-file set.
    """

    def __init__(self, config: Optional[PressureConfig] = None):
        self.config = config or PressureConfig()
        self._matcher = CriticalPathMatcher(self.config.critical_patterns)
        self._accumulator = 0.0
        self._unsnapshotted_changes = 0
        self._critical_files: set[str] = set()
        self._last_snapshot_at: Optional[float] = None

    @property
    def accumulator(self) -> float:
        return self._accumulator

    @property
    def unsnapshotted_changes(self) -> int:
        return self._unsnapshotted_changes

    @property
    def last_snapshot_at(self) -> Optional[float]:
        return self._last_snapshot_at

    def is_critical(self, path: str) -> bool:
        return self._matcher.is_critical(path)

    def record_change(self, path: str, now: float) -> None:
        if self._last_snapshot_at is None:
            # Session clock starts with the first unprotected change
            self._last_snapshot_at = now

        multiplier = 1.0
        if self.is_critical(path):
            multiplier = self.config.critical_multiplier
            self._critical_files.add(normalize_path(path))

        self._accumulator = min(100.0, self._accumulator + self.config.base_rate / 10.0 * multiplier)
        self._unsnapshotted_changes += 1

    def record_snapshot(self, now: float) -> None:
        self._accumulator *= 1.0 - self.config.decay_on_snapshot / 100.0
        self._unsnapshotted_changes = 0
        self._critical_files = set()
        self._last_snapshot_at = now
        logger.debug("Pressure decayed to %.2f after snapshot", self._accumulator)

    def minutes_since_snapshot(self, now: float) -> float:
        if self._last_snapshot_at is None:
            return 0.0
        return max(0.0, (now - self._last_snapshot_at) / MS_PER_MINUTE)

    def get_reading(self, now: float) -> PressureReading:
        minutes = self.minutes_since_snapshot(now)
        value = self._accumulator
        if self._unsnapshotted_changes > 0:
            value = min(100.0, value + minutes * self.config.base_rate)
        return PressureReading(
            value=min(100.0, value),
            unsnapshotted_changes=self._unsnapshotted_changes,
            minutes_since_snapshot=minutes,
            critical_files_touched=frozenset(self._critical_files),
        )

    def restore(self, accumulator: float, last_snapshot_at: Optional[float]) -> None:
        """Restore persisted accumulator state."""
        value = max(0.0, min(100.0, float(accumulator)))
        snapshot_at = float(last_snapshot_at) if last_snapshot_at is not None else None
        self._accumulator = value
        self._last_snapshot_at = snapshot_at

    def reset(self) -> None:
        self._accumulator = 0.0
        self._unsnapshotted_changes = 0
        self._critical_files = set()
        self._last_snapshot_at = None


# =============================================================================
# Oxygen
# =============================================================================

class OxygenSensor:
    """Snapshot coverage over the files modified in this session."""

    def __init__(self, config: Optional[OxygenConfig] = None,
                 critical_patterns: Optional[Iterable[str]] = None):
        self.config = config or OxygenConfig()
        self._matcher = CriticalPathMatcher(critical_patterns or [])
        # path -> last modification time
        self._modified: dict[str, float] = {}
        # path -> last snapshot time
        self._snapshotted: dict[str, float] = {}

    @property
    def stale_ms(self) -> float:
        return self.config.stale_minutes * MS_PER_MINUTE

    def record_modification(self, path: str, now: float) -> None:
        self._modified[normalize_path(path)] = now
        self._prune(now)

    def record_snapshot(self, now: float, paths: Optional[Iterable[str]] = None) -> None:
        """Mark files as covered; with no paths, every modified file is covered."""
        targets = [normalize_path(p) for p in paths] if paths is not None else list(self._modified)
        for path in targets:
            self._snapshotted[path] = now
        self._prune(now)

    @property
    def tracked_files(self) -> int:
        return len(set(self._modified) | set(self._snapshotted))

    def _prune(self, now: float) -> None:
        """Forget files whose snapshot is long stale and that were not modified since."""
        horizon = self.stale_ms * STALE_RETENTION_FACTOR
        expired = [
            path for path, snapped_at in self._snapshotted.items()
            if now - snapped_at >= horizon and self._modified.get(path, snapped_at) <= snapped_at
        ]
        for path in expired:
            del self._snapshotted[path]
            self._modified.pop(path, None)

    def _weight(self, path: str) -> float:
        return self.config.critical_weight if self._matcher.is_critical(path) else 1.0

    def get_reading(self, now: float) -> OxygenReading:
        tracked = set(self._modified) | set(self._snapshotted)
        if not tracked:
            return OxygenReading(value=100.0, stale_snapshots=0)

        total = 0.0
        covered = 0.0
        stale = 0
        for path in tracked:
            weight = self._weight(path)
            total += weight
            snapped_at = self._snapshotted.get(path)
            if snapped_at is None:
                continue
            if now - snapped_at >= self.stale_ms:
                stale += 1
                continue
            modified_at = self._modified.get(path)
            if modified_at is None or modified_at <= snapped_at:
                covered += weight

        return OxygenReading(value=covered / total * 100.0, stale_snapshots=stale)

    def reset(self) -> None:
        self._modified = {}
        self._snapshotted = {}
