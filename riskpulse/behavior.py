"""
Behavior Learning and Threshold Calibration
===========================================

Learns how a user reacts to snapshot recommendations and turns that into
per-workspace threshold multipliers.

Each observation pairs the vitals at the time with two facts: whether the
user created a snapshot, and whether the vitals recommended one. The
pairing is classified as:

- missed:  recommended, not acted on
- early:   acted on, not recommended
- late:    both, but the trajectory was already critical or pressure > 80
- aligned: everything else

The calibrator derives a status from the observation count alone
(5 / 20 / 50), a risk tolerance, a confidence score, and, once calibrated,
a single multiplier applied to every threshold category.
"""

import logging
from collections import Counter, deque
from dataclasses import dataclass, field, replace
from enum import Enum
from typing import TYPE_CHECKING, Optional

from riskpulse.config import EngineConfig
from riskpulse.sensors import (
    OxygenReading,
    PressureReading,
    PulseLevel,
    PulseReading,
    TemperatureLevel,
    TemperatureReading,
)
from riskpulse.vitals import Trajectory, Urgency, VitalsSnapshot

if TYPE_CHECKING:
    from riskpulse.vitals import VitalsAggregator

logger = logging.getLogger(__name__)

OBSERVATION_LIMIT = 100
LATE_PRESSURE = 80.0
MIN_PROFILE_OBSERVATIONS = 3

LEARNING_AT = 5
CALIBRATED_AT = 20
LOCKED_AT = 50


class Timing(Enum):
    ALIGNED = "aligned"
    EARLY = "early"
    LATE = "late"
    MISSED = "missed"


class RiskProfile(Enum):
    CONSERVATIVE = "conservative"
    AGGRESSIVE = "aggressive"
    BALANCED = "balanced"


class CalibrationStatus(Enum):
    UNCALIBRATED = "uncalibrated"
    LEARNING = "learning"
    CALIBRATED = "calibrated"
    LOCKED = "locked"


PROFILE_MULTIPLIERS: dict[RiskProfile, float] = {
    RiskProfile.CONSERVATIVE: 0.7,
    RiskProfile.AGGRESSIVE: 1.3,
    RiskProfile.BALANCED: 1.0,
}

THRESHOLD_CATEGORIES = ("pressure", "temperature", "pulse", "oxygen")


def _finite(value, name: str) -> float:
    result = float(value)
    if result != result or result in (float("inf"), float("-inf")):
        raise ValueError(f"{name} is not a finite number")
    return result


def classify_timing(vitals: VitalsSnapshot, user_created_snapshot: bool, vitals_recommended: bool) -> Timing:
    if vitals_recommended and not user_created_snapshot:
        return Timing.MISSED
    if user_created_snapshot and not vitals_recommended:
        return Timing.EARLY
    if user_created_snapshot and vitals_recommended and (
        vitals.trajectory == Trajectory.CRITICAL or vitals.pressure.value > LATE_PRESSURE
    ):
        return Timing.LATE
    return Timing.ALIGNED


@dataclass(frozen=True)
class BehaviorObservation:
    """A user reaction paired with the vitals at the time."""
    vitals: VitalsSnapshot
    user_created_snapshot: bool
    vitals_recommended: bool
    timing: Timing
    urgency_at_time: Urgency

    def to_dict(self) -> dict:
        return {
            "timestamp": self.vitals.timestamp,
            "pressure": self.vitals.pressure.value,
            "oxygen": self.vitals.oxygen.value,
            "trajectory": self.vitals.trajectory.value,
            "user_created_snapshot": self.user_created_snapshot,
            "vitals_recommended": self.vitals_recommended,
            "timing": self.timing.value,
            "urgency_at_time": self.urgency_at_time.value,
        }

    @classmethod
    def from_dict(cls, data: dict) -> "BehaviorObservation":
        """
        Rebuild a persisted observation.

        Only the readings the statistics use are stored, so pulse and
        temperature come back at rest. Raises ValueError on malformed data.
        """
        if not isinstance(data, dict):
            raise ValueError("observation is not an object")
        vitals = VitalsSnapshot(
            timestamp=_finite(data.get("timestamp", 0.0), "timestamp"),
            pulse=PulseReading(PulseLevel.RESTING, 0.0),
            temperature=TemperatureReading(TemperatureLevel.COLD, 0.0),
            pressure=PressureReading(_finite(data.get("pressure", 0.0), "pressure"), 0, 0.0),
            oxygen=OxygenReading(_finite(data.get("oxygen", 100.0), "oxygen"), 0),
            trajectory=Trajectory(data.get("trajectory", Trajectory.STABLE.value)),
        )
        user_created = bool(data.get("user_created_snapshot", False))
        recommended = bool(data.get("vitals_recommended", False))
        return cls(
            vitals=vitals,
            user_created_snapshot=user_created,
            vitals_recommended=recommended,
            timing=classify_timing(vitals, user_created, recommended),
            urgency_at_time=Urgency(data.get("urgency_at_time", Urgency.NONE.value)),
        )


@dataclass
class BehaviorStats:
    """Aggregate counts over recorded observations."""
    total: int = 0
    aligned: int = 0
    early: int = 0
    late: int = 0
    missed: int = 0
    snapshots: int = 0
    avg_pressure_at_snapshot: float = 0.0
    avg_oxygen_at_snapshot: float = 0.0
    risk_profile: RiskProfile = RiskProfile.BALANCED

    @property
    def early_ratio(self) -> float:
        return self.early / self.total if self.total else 0.0

    @property
    def aggressive_ratio(self) -> float:
        return (self.missed + self.late) / self.total if self.total else 0.0

    def to_dict(self) -> dict:
        return {
            "total": self.total,
            "aligned": self.aligned,
            "early": self.early,
            "late": self.late,
            "missed": self.missed,
            "snapshots": self.snapshots,
            "avg_pressure_at_snapshot": self.avg_pressure_at_snapshot,
            "avg_oxygen_at_snapshot": self.avg_oxygen_at_snapshot,
            "risk_profile": self.risk_profile.value,
        }

    @classmethod
    def from_dict(cls, data: dict, total: Optional[int] = None) -> "BehaviorStats":
        """Parse persisted stats. Raises ValueError on malformed or negative counts."""
        if not isinstance(data, dict):
            raise ValueError("stats is not an object")
        counts = {k: int(data.get(k, 0)) for k in ("aligned", "early", "late", "missed")}
        total = int(data.get("total", 0)) if total is None else int(total)
        # Older states did not track snapshots; everything but misses is a fair bound
        snapshots = int(data.get("snapshots", total - counts["missed"]))
        if total < 0 or snapshots < 0 or any(v < 0 for v in counts.values()):
            raise ValueError("negative observation count")
        stats = cls(
            total=total,
            snapshots=snapshots,
            avg_pressure_at_snapshot=_finite(data.get("avg_pressure_at_snapshot", 0.0), "avg_pressure_at_snapshot"),
            avg_oxygen_at_snapshot=_finite(data.get("avg_oxygen_at_snapshot", 0.0), "avg_oxygen_at_snapshot"),
            **counts,
        )
        stats.risk_profile = infer_risk_profile(stats)
        return stats


class UserBehaviorLearner:
    """
    Records whether and when the user snapshotted relative to recommendations.

    Statistics cover a baseline summary (observations that predate the
    persisted buffer) plus the live ring buffer.
    """

    def __init__(self, aggregator: Optional["VitalsAggregator"] = None):
        self.aggregator = aggregator
        self._observations: deque[BehaviorObservation] = deque(maxlen=OBSERVATION_LIMIT)
        self._baseline: Optional[BehaviorStats] = None

    @property
    def observations(self) -> list[BehaviorObservation]:
        return list(self._observations)

    @property
    def baseline(self) -> Optional[BehaviorStats]:
        return self._baseline

    def record(
        self,
        vitals: VitalsSnapshot,
        user_created_snapshot: bool,
        vitals_recommended: bool,
        urgency: Urgency = Urgency.NONE,
    ) -> BehaviorObservation:
        observation = BehaviorObservation(
            vitals=vitals,
            user_created_snapshot=user_created_snapshot,
            vitals_recommended=vitals_recommended,
            timing=classify_timing(vitals, user_created_snapshot, vitals_recommended),
            urgency_at_time=urgency,
        )
        self._observations.append(observation)
        logger.debug("Behavior observation: %s", observation.timing.value)
        return observation

    def observe(self, user_created_snapshot: bool, now: float) -> BehaviorObservation:
        """Record an observation using the aggregator's current vitals and recommendation."""
        if self.aggregator is None:
            raise RuntimeError("observe() needs an aggregator; use record() instead")
        vitals = self.aggregator.current(now)
        recommendation = self.aggregator.should_snapshot(now, vitals)
        return self.record(vitals, user_created_snapshot, recommendation.should, recommendation.urgency)

    def get_stats(self) -> BehaviorStats:
        base = self._baseline or BehaviorStats()
        counts = Counter(o.timing for o in self._observations)
        snapshots = [o for o in self._observations if o.user_created_snapshot]
        stats = BehaviorStats(
            total=base.total + len(self._observations),
            aligned=base.aligned + counts[Timing.ALIGNED],
            early=base.early + counts[Timing.EARLY],
            late=base.late + counts[Timing.LATE],
            missed=base.missed + counts[Timing.MISSED],
            snapshots=base.snapshots + len(snapshots),
        )
        if stats.snapshots:
            pressure = base.avg_pressure_at_snapshot * base.snapshots
            oxygen = base.avg_oxygen_at_snapshot * base.snapshots
            pressure += sum(o.vitals.pressure.value for o in snapshots)
            oxygen += sum(o.vitals.oxygen.value for o in snapshots)
            stats.avg_pressure_at_snapshot = pressure / stats.snapshots
            stats.avg_oxygen_at_snapshot = oxygen / stats.snapshots
        stats.risk_profile = infer_risk_profile(stats)
        return stats

    def load(self, observations: list[BehaviorObservation],
             baseline: Optional[BehaviorStats] = None) -> None:
        """Replace the buffer and baseline with persisted ones."""
        self._observations = deque(observations, maxlen=OBSERVATION_LIMIT)
        self._baseline = baseline



def infer_risk_profile(stats: BehaviorStats) -> RiskProfile:
    if stats.total < MIN_PROFILE_OBSERVATIONS:
        return RiskProfile.BALANCED
    if stats.early_ratio > stats.aggressive_ratio:
        return RiskProfile.CONSERVATIVE
    if stats.aggressive_ratio > stats.early_ratio:
        return RiskProfile.AGGRESSIVE
    return RiskProfile.BALANCED


@dataclass
class CalibrationProfile:
    """Per-workspace calibration derived from behavior."""
    status: CalibrationStatus = CalibrationStatus.UNCALIBRATED
    observation_count: int = 0
    risk_profile: RiskProfile = RiskProfile.BALANCED
    risk_tolerance: float = 0.5
    confidence: float = 0.0
    threshold_adjustments: dict[str, float] = field(
        default_factory=lambda: {c: 1.0 for c in THRESHOLD_CATEGORIES}
    )

    def to_dict(self) -> dict:
        return {
            "status": self.status.value,
            "observation_count": self.observation_count,
            "risk_profile": self.risk_profile.value,
            "risk_tolerance": self.risk_tolerance,
            "confidence": self.confidence,
            "threshold_adjustments": dict(self.threshold_adjustments),
        }


def status_for_count(count: int) -> CalibrationStatus:
    if count >= LOCKED_AT:
        return CalibrationStatus.LOCKED
    if count >= CALIBRATED_AT:
        return CalibrationStatus.CALIBRATED
    if count >= LEARNING_AT:
        return CalibrationStatus.LEARNING
    return CalibrationStatus.UNCALIBRATED


class ThresholdCalibrator:
    """
    Converts behavior statistics into threshold multipliers.

    Once a workspace reaches the locked status the multiplier is frozen at
    the value it had when it locked.
    """

    def __init__(self, learner: UserBehaviorLearner):
        self.learner = learner
        self._locked_multiplier: Optional[float] = None

    def calibrate(self) -> CalibrationProfile:
        stats = self.learner.get_stats()
        status = status_for_count(stats.total)

        profile = CalibrationProfile(
            status=status,
            observation_count=stats.total,
            risk_profile=stats.risk_profile,
            risk_tolerance=self._risk_tolerance(stats),
            confidence=self._confidence(stats),
        )

        if status in (CalibrationStatus.CALIBRATED, CalibrationStatus.LOCKED):
            multiplier = PROFILE_MULTIPLIERS[stats.risk_profile]
            if status == CalibrationStatus.LOCKED:
                if self._locked_multiplier is None:
                    self._locked_multiplier = multiplier
                    logger.info("Calibration locked at multiplier %.2f", multiplier)
                multiplier = self._locked_multiplier
            multiplier = max(0.5, min(2.0, multiplier))
            profile.threshold_adjustments = {c: multiplier for c in THRESHOLD_CATEGORIES}

        return profile

    @staticmethod
    def _risk_tolerance(stats: BehaviorStats) -> float:
        if stats.total == 0:
            return 0.5
        tolerance = 0.5 + (stats.aggressive_ratio - stats.early_ratio) * 0.5
        return max(0.0, min(1.0, tolerance))

    @staticmethod
    def _confidence(stats: BehaviorStats) -> float:
        if stats.total == 0:
            return 0.0
        count_confidence = min(1.0, stats.total / LOCKED_AT)
        dominant_share = max(stats.aligned, stats.early, stats.late, stats.missed) / stats.total
        entropy_penalty = 0.15 if dominant_share < 0.6 else 0.0
        confidence = count_confidence * 0.6 + dominant_share * 0.4 - entropy_penalty
        return max(0.0, min(1.0, confidence))

    def apply(self, config: EngineConfig, profile: Optional[CalibrationProfile] = None) -> EngineConfig:
        """
        Scale vitals cut-offs by the learned multipliers.

        A multiplier above 1 (aggressive user) raises the pulse, temperature
        and pressure cut-offs and lowers the oxygen alert floor.
        """
        profile = profile or self.calibrate()
        adjusted = config.copy()
        adj = profile.threshold_adjustments

        def scale(value: float, factor: float) -> float:
            return max(0.0, min(100.0, value * factor))

        p = adj.get("pulse", 1.0)
        adjusted.pulse = replace(
            adjusted.pulse,
            elevated=adjusted.pulse.elevated * p,
            racing=adjusted.pulse.racing * p,
            critical=adjusted.pulse.critical * p,
        )
        t = adj.get("temperature", 1.0)
        adjusted.temperature = replace(
            adjusted.temperature,
            warm=scale(adjusted.temperature.warm, t),
            hot=scale(adjusted.temperature.hot, t),
            burning=scale(adjusted.temperature.burning, t),
        )
        pr = adj.get("pressure", 1.0)
        adjusted.pressure = replace(
            adjusted.pressure,
            warning_threshold=scale(adjusted.pressure.warning_threshold, pr),
            high_threshold=scale(adjusted.pressure.high_threshold, pr),
            critical_threshold=scale(adjusted.pressure.critical_threshold, pr),
        )
        o = adj.get("oxygen", 1.0)
        adjusted.oxygen = replace(
            adjusted.oxygen,
            low_threshold=scale(adjusted.oxygen.low_threshold, 1.0 / o),
            moderate_threshold=scale(adjusted.oxygen.moderate_threshold, 1.0 / o),
        )
        return adjusted

    # -------------------------------------------------------------------------
    # State
    # -------------------------------------------------------------------------

    def to_state(self) -> dict:
        stats = self.learner.get_stats()
        baseline = self.learner.baseline
        return {
            "observation_count": stats.total,
            "stats": stats.to_dict(),
            "baseline": baseline.to_dict() if baseline else None,
            "locked_multiplier": self._locked_multiplier,
            "observations": [o.to_dict() for o in self.learner.observations],
        }

    def restore(self, state: Optional[dict]) -> bool:
        """
        Restore persisted calibration. Returns False (and stays
        uncalibrated) when the state is corrupt.
        """
        if not state:
            return True
        try:
            if not isinstance(state, dict):
                raise ValueError("calibration state is not an object")
            count = int(state.get("observation_count", 0))
            summary = BehaviorStats.from_dict(state.get("stats") or {}, total=count)
            raw_observations = state.get("observations", [])
            if not isinstance(raw_observations, list):
                raise ValueError("observation buffer is not a list")
            baseline_data = state.get("baseline")
            baseline = BehaviorStats.from_dict(baseline_data) if baseline_data is not None else None
            locked = state.get("locked_multiplier")
            locked_multiplier = _finite(locked, "locked_multiplier") if locked is not None else None
        except (TypeError, ValueError, AttributeError) as e:
            logger.warning("Ignoring corrupt calibration state: %s", e)
            self._reset_restored()
            return False

        observations = []
        for data in raw_observations:
            try:
                observations.append(BehaviorObservation.from_dict(data))
            except (TypeError, ValueError, AttributeError) as e:
                logger.warning("Skipping corrupt behavior observation: %s", e)

        if "baseline" not in state and not raw_observations:
            # Summary-only state: keep its counts and add live observations on top
            baseline = summary if summary.total else None

        self.learner.load(observations[-OBSERVATION_LIMIT:], baseline)
        self._locked_multiplier = locked_multiplier
        return True

    def _reset_restored(self) -> None:
        self.learner.load(self.learner.observations)
        self._locked_multiplier = None
