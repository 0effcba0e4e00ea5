"""
Vitals Aggregation
==================

Composes the four sensor readings into a point-in-time VitalsSnapshot,
classifies the session trajectory, and turns vitals into snapshot
recommendations and agent guidance.

Trajectory rules (checked in order):
- critical:   pressure >= 80 AND temperature burning AND oxygen < 50
- escalating: (pressure >= 60 AND oxygen < 70) OR (temperature hot AND pulse racing)
- recovering: last 3 recorded history points show pressure dropping > 10
              while oxygen >= 70
- stable:     everything else

History is only appended by an explicit ``record_history_snapshot()`` call.
"""

import logging
from collections import deque
from concurrent.futures import Future, ThreadPoolExecutor
from dataclasses import dataclass
from enum import Enum
from typing import Callable, Optional, Sequence

from riskpulse.config import EngineConfig
from riskpulse.sensors import (
    OxygenReading,
    OxygenSensor,
    PressureGauge,
    PressureReading,
    PulseLevel,
    PulseReading,
    PulseTracker,
    TemperatureLevel,
    TemperatureMonitor,
    TemperatureReading,
)

logger = logging.getLogger(__name__)

HISTORY_LIMIT = 100

CRITICAL_PRESSURE = 80.0
ESCALATING_PRESSURE = 60.0
CRITICAL_OXYGEN = 50.0
ESCALATING_OXYGEN = 70.0
RECOVERY_PRESSURE_DROP = 10.0


class Trajectory(Enum):
    """Categorical direction of session risk."""
    STABLE = "stable"
    ESCALATING = "escalating"
    CRITICAL = "critical"
    RECOVERING = "recovering"


class Urgency(Enum):
    """Urgency tiers for snapshot recommendations."""
    NONE = "none"
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"


class PressureAction(Enum):
    """Fine-grained pressure advisory actions."""
    NONE = "none"
    MONITOR = "monitor"
    SNAPSHOT_SOON = "snapshot_soon"
    SNAPSHOT_NOW = "snapshot_now"


@dataclass(frozen=True)
class VitalsSnapshot:
    """Immutable point-in-time view of the session vitals."""
    timestamp: float
    pulse: PulseReading
    temperature: TemperatureReading
    pressure: PressureReading
    oxygen: OxygenReading
    trajectory: Trajectory

    def to_dict(self) -> dict:
        """Convert to dictionary."""
        return {
            "timestamp": self.timestamp,
            "pulse": self.pulse.to_dict(),
            "temperature": self.temperature.to_dict(),
            "pressure": self.pressure.to_dict(),
            "oxygen": self.oxygen.to_dict(),
            "trajectory": self.trajectory.value,
        }


def classify_trajectory(
    pressure: float,
    temperature: TemperatureLevel,
    oxygen: float,
    pulse: PulseLevel,
    history: Sequence[VitalsSnapshot] = (),
) -> Trajectory:
    """Classify a trajectory from raw vitals and recent recorded history."""
    if (
        pressure >= CRITICAL_PRESSURE
        and temperature == TemperatureLevel.BURNING
        and oxygen < CRITICAL_OXYGEN
    ):
        return Trajectory.CRITICAL

    if (pressure >= ESCALATING_PRESSURE and oxygen < ESCALATING_OXYGEN) or (
        temperature == TemperatureLevel.HOT and pulse == PulseLevel.RACING
    ):
        return Trajectory.ESCALATING

    if len(history) >= 3:
        recent = list(history)[-3:]
        drop = recent[0].pressure.value - recent[-1].pressure.value
        if drop > RECOVERY_PRESSURE_DROP and recent[-1].oxygen.value >= ESCALATING_OXYGEN:
            return Trajectory.RECOVERING

    return Trajectory.STABLE


@dataclass(frozen=True)
class SnapshotRecommendation:
    should: bool
    reason: str
    urgency: Urgency

    def to_dict(self) -> dict:
        return {"should": self.should, "reason": self.reason, "urgency": self.urgency.value}


@dataclass(frozen=True)
class PressureRecommendation:
    action: PressureAction
    urgency: int  # 0-100
    educational: str

    def to_dict(self) -> dict:
        return {"action": self.action.value, "urgency": self.urgency, "educational": self.educational}


@dataclass(frozen=True)
class AgentGuidance:
    """Guidance surfaced to AI agents before they act."""
    should_snapshot: bool
    risky_files: tuple[str, ...]
    safe_operations: tuple[str, ...]
    blocked_operations: tuple[str, ...]
    suggestion: str

    def to_dict(self) -> dict:
        return {
            "should_snapshot": self.should_snapshot,
            "risky_files": list(self.risky_files),
            "safe_operations": list(self.safe_operations),
            "blocked_operations": list(self.blocked_operations),
            "suggestion": self.suggestion,
        }


SAFE_OPERATIONS: tuple[str, ...] = ("read_files", "run_tests", "create_snapshot", "small_edits")
DESTRUCTIVE_OPERATIONS: tuple[str, ...] = (
    "delete_files",
    "mass_refactor",
    "dependency_upgrade",
    "schema_migration",
    "force_push",
)


# =============================================================================
# Notifications
# =============================================================================

class AlertKind(Enum):
    TRAJECTORY_CRITICAL = "trajectory_critical"
    URGENCY_HIGH = "urgency_high"


@dataclass(frozen=True)
class VitalsAlert:
    kind: AlertKind
    vitals: VitalsSnapshot
    recommendation: SnapshotRecommendation


VitalsListener = Callable[[VitalsAlert], None]


class VitalsEventBus:
    """
    Delivers vitals alerts to listeners off the emitting thread.

    Listener exceptions are logged and swallowed.
    """

    def __init__(self):
        self._listeners: list[VitalsListener] = []
        self._executor: Optional[ThreadPoolExecutor] = None
        self._pending: list[Future] = []

    def subscribe(self, listener: VitalsListener) -> Callable[[], None]:
        """Register a listener; returns a function that unsubscribes it."""
        self._listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    @property
    def listener_count(self) -> int:
        return len(self._listeners)

    def emit(self, alert: VitalsAlert) -> None:
        if not self._listeners:
            return
        if self._executor is None:
            self._executor = ThreadPoolExecutor(max_workers=1, thread_name_prefix="riskpulse-alerts")
        self._pending = [f for f in self._pending if not f.done()]
        for listener in list(self._listeners):
            self._pending.append(self._executor.submit(self._deliver, listener, alert))

    @staticmethod
    def _deliver(listener: VitalsListener, alert: VitalsAlert) -> None:
        try:
            listener(alert)
        except Exception as e:
            logger.warning("Vitals listener %r failed on %s: %s", listener, alert.kind.value, e)

    def flush(self, timeout: Optional[float] = None) -> None:
        """Wait for queued deliveries to finish."""
        pending, self._pending = self._pending, []
        for future in pending:
            future.result(timeout=timeout)

    def close(self) -> None:
        if self._executor is not None:
            self._executor.shutdown(wait=True)
            self._executor = None
        self._pending = []


# =============================================================================
# Aggregator
# =============================================================================

class VitalsAggregator:
    """
    Owns the four sensors and composes them into vitals.

    Provides:
    - Event intake (file changes, snapshots, AI detections)
    - Point-in-time vitals with trajectory classification
    - Snapshot recommendations and pressure advisories
    - Agent guidance that blocks destructive work on a critical trajectory
    """

    def __init__(self, config: Optional[EngineConfig] = None,
                 event_bus: Optional[VitalsEventBus] = None):
        self.config = config or EngineConfig()
        self.pulse = PulseTracker(self.config.pulse)
        self.temperature = TemperatureMonitor(self.config.temperature)
        self.pressure = PressureGauge(self.config.pressure)
        self.oxygen = OxygenSensor(self.config.oxygen, self.config.pressure.critical_patterns)
        self.events = event_bus or VitalsEventBus()
        self._history: deque[VitalsSnapshot] = deque(maxlen=HISTORY_LIMIT)
        self._last_trajectory = Trajectory.STABLE
        self._last_urgency = Urgency.NONE

    @property
    def history(self) -> list[VitalsSnapshot]:
        return list(self._history)

    def apply_config(self, config: EngineConfig) -> None:
        """Swap sensor cut-offs without discarding accumulated sensor state."""
        self.config = config
        self.pulse.config = config.pulse
        self.temperature.config = config.temperature
        self.pressure.config = config.pressure
        self.oxygen.config = config.oxygen

    # -------------------------------------------------------------------------
    # Event intake
    # -------------------------------------------------------------------------

    def on_file_change(self, path: str, is_ai: bool, now: float, tool: Optional[str] = None) -> None:
        self.pulse.record_change(now)
        if is_ai:
            self.temperature.record_ai(now, tool=tool)
        else:
            self.temperature.record_human(now)
        self.pressure.record_change(path, now)
        self.oxygen.record_modification(path, now)
        logger.debug("File change %s (ai=%s) recorded", path, is_ai)
        self._check_alerts(now)

    def on_snapshot(self, now: float, file_path: Optional[str] = None) -> None:
        self.pressure.record_snapshot(now)
        self.oxygen.record_snapshot(now, [file_path] if file_path else None)
        self._check_alerts(now)

    def on_ai_detection(self, tool: str, confidence: float, now: float) -> bool:
        applied = self.temperature.apply_detection(tool, confidence, now)
        if applied:
            self._check_alerts(now)
        return applied

    def _check_alerts(self, now: float) -> None:
        vitals = self.current(now)
        recommendation = self.should_snapshot(now, vitals)

        if vitals.trajectory == Trajectory.CRITICAL and self._last_trajectory != Trajectory.CRITICAL:
            self.events.emit(VitalsAlert(AlertKind.TRAJECTORY_CRITICAL, vitals, recommendation))

        high = (Urgency.HIGH, Urgency.CRITICAL)
        if recommendation.urgency in high and self._last_urgency not in high:
            self.events.emit(VitalsAlert(AlertKind.URGENCY_HIGH, vitals, recommendation))

        self._last_trajectory = vitals.trajectory
        self._last_urgency = recommendation.urgency

    # -------------------------------------------------------------------------
    # Queries
    # -------------------------------------------------------------------------

    def current(self, now: float) -> VitalsSnapshot:
        pulse = self.pulse.get_level(now)
        temperature = self.temperature.get_level(now)
        pressure = self.pressure.get_reading(now)
        oxygen = self.oxygen.get_reading(now)
        trajectory = classify_trajectory(
            pressure.value, temperature.level, oxygen.value, pulse.level, self._history
        )
        return VitalsSnapshot(
            timestamp=now,
            pulse=pulse,
            temperature=temperature,
            pressure=pressure,
            oxygen=oxygen,
            trajectory=trajectory,
        )

    def record_history_snapshot(self, now: float) -> VitalsSnapshot:
        snapshot = self.current(now)
        self._history.append(snapshot)
        return snapshot

    def should_snapshot(self, now: float, vitals: Optional[VitalsSnapshot] = None) -> SnapshotRecommendation:
        """Ordered rule checks; the first matching rule wins."""
        v = vitals or self.current(now)
        pressure_cfg = self.config.pressure
        oxygen_cfg = self.config.oxygen

        if v.trajectory == Trajectory.CRITICAL:
            return SnapshotRecommendation(
                True,
                "Critical trajectory: high pressure, heavy AI activity and low snapshot coverage",
                Urgency.CRITICAL,
            )
        if v.pressure.value >= pressure_cfg.critical_threshold:
            return SnapshotRecommendation(
                True, "Pressure is critical: many unprotected changes have accumulated", Urgency.HIGH
            )
        if v.pressure.critical_files_touched and v.oxygen.value < oxygen_cfg.low_threshold:
            return SnapshotRecommendation(
                True, "Critical files were modified and snapshot coverage is low", Urgency.HIGH
            )
        if (
            v.temperature.level == TemperatureLevel.BURNING
            and v.oxygen.value < oxygen_cfg.moderate_threshold
        ):
            return SnapshotRecommendation(
                True, "AI activity is very high and snapshot coverage is moderate", Urgency.MEDIUM
            )
        if v.pressure.value >= pressure_cfg.warning_threshold:
            return SnapshotRecommendation(
                True, "Pressure is building: consider a snapshot", Urgency.LOW
            )
        return SnapshotRecommendation(False, "Vitals are healthy", Urgency.NONE)

    def get_pressure_recommendation(self, now: float) -> PressureRecommendation:
        v = self.current(now)
        urgency = v.pressure.value * 0.6 + (100.0 - v.oxygen.value) * 0.4
        if v.pressure.critical_files_touched:
            urgency += 10.0
        urgency_int = int(round(max(0.0, min(100.0, urgency))))

        minutes = int(v.pressure.minutes_since_snapshot)
        changes = v.pressure.unsnapshotted_changes
        if urgency_int >= 80:
            return PressureRecommendation(
                PressureAction.SNAPSHOT_NOW,
                urgency_int,
                f"{changes} changes over {minutes} minutes are unprotected. "
                "A snapshot now means any mistake from here is a one-step undo.",
            )
        if urgency_int >= 60:
            return PressureRecommendation(
                PressureAction.SNAPSHOT_SOON,
                urgency_int,
                "Unprotected work is piling up. Snapshot at the next stable point "
                "so a bad edit does not cost the whole session.",
            )
        if urgency_int >= 30:
            return PressureRecommendation(
                PressureAction.MONITOR,
                urgency_int,
                "Pressure is moderate. Keep working, but snapshot before risky or "
                "wide-reaching changes.",
            )
        return PressureRecommendation(
            PressureAction.NONE,
            urgency_int,
            "Recent work is well protected. No action needed.",
        )

    def get_agent_guidance(self, now: float) -> AgentGuidance:
        v = self.current(now)
        recommendation = self.should_snapshot(now, v)
        risky = tuple(sorted(v.pressure.critical_files_touched))

        if v.trajectory == Trajectory.CRITICAL:
            return AgentGuidance(
                should_snapshot=True,
                risky_files=risky,
                safe_operations=SAFE_OPERATIONS,
                blocked_operations=DESTRUCTIVE_OPERATIONS,
                suggestion="Create a snapshot before any further changes; destructive operations are blocked.",
            )
        if v.trajectory == Trajectory.ESCALATING:
            suggestion = "Risk is escalating. Snapshot before continuing with large edits."
        elif recommendation.should:
            suggestion = recommendation.reason
        else:
            suggestion = "Session is healthy. Continue normally."

        return AgentGuidance(
            should_snapshot=recommendation.should,
            risky_files=risky,
            safe_operations=SAFE_OPERATIONS + DESTRUCTIVE_OPERATIONS,
            blocked_operations=(),
            suggestion=suggestion,
        )

    def reset(self) -> None:
        self.pulse.reset()
        self.temperature.reset()
        self.pressure.reset()
        self.oxygen.reset()
        self._history.clear()
        self._last_trajectory = Trajectory.STABLE
        self._last_urgency = Urgency.NONE
