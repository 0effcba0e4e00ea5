"""
Tests for Behavior Module
=========================

Tests for behavior observation, risk profiling and threshold calibration.
"""

import pytest

from riskpulse.behavior import (
    BehaviorStats,
    CalibrationStatus,
    RiskProfile,
    ThresholdCalibrator,
    Timing,
    UserBehaviorLearner,
    classify_timing,
    infer_risk_profile,
    status_for_count,
)
from riskpulse.config import EngineConfig
from riskpulse.sensors import (
    OxygenReading,
    PressureReading,
    PulseLevel,
    PulseReading,
    TemperatureLevel,
    TemperatureReading,
)
from riskpulse.vitals import Trajectory, Urgency, VitalsAggregator, VitalsSnapshot

T0 = 1_700_000_000_000.0


def vitals_at(pressure: float = 20.0, oxygen: float = 80.0,
              trajectory: Trajectory = Trajectory.STABLE) -> VitalsSnapshot:
    return VitalsSnapshot(
        timestamp=T0,
        pulse=PulseReading(PulseLevel.RESTING, 0.0),
        temperature=TemperatureReading(TemperatureLevel.COLD, 0.0),
        pressure=PressureReading(pressure, 1, 1.0),
        oxygen=OxygenReading(oxygen, 0),
        trajectory=trajectory,
    )


@pytest.fixture
def learner():
    return UserBehaviorLearner()


@pytest.fixture
def calibrator(learner):
    return ThresholdCalibrator(learner)


def record_many(learner, count, user_snapshot, recommended, **vitals_kwargs):
    for _ in range(count):
        learner.record(vitals_at(**vitals_kwargs), user_snapshot, recommended)


# =============================================================================
# Timing Tests
# =============================================================================

class TestClassifyTiming:
    """Tests for observation timing classification."""

    def test_missed(self):
        assert classify_timing(vitals_at(), False, True) == Timing.MISSED

    def test_early(self):
        assert classify_timing(vitals_at(), True, False) == Timing.EARLY

    def test_late_on_critical_trajectory(self):
        assert classify_timing(vitals_at(trajectory=Trajectory.CRITICAL), True, True) == Timing.LATE

    def test_late_on_high_pressure(self):
        assert classify_timing(vitals_at(pressure=81), True, True) == Timing.LATE

    def test_aligned(self):
        assert classify_timing(vitals_at(pressure=80), True, True) == Timing.ALIGNED
        assert classify_timing(vitals_at(), False, False) == Timing.ALIGNED


# =============================================================================
# Learner Tests
# =============================================================================

class TestUserBehaviorLearner:
    """Tests for observation recording and statistics."""

    def test_stats(self, learner):
        learner.record(vitals_at(pressure=30, oxygen=60), True, False)
        learner.record(vitals_at(pressure=50, oxygen=40), True, True)
        learner.record(vitals_at(), False, True)

        stats = learner.get_stats()
        assert stats.total == 3
        assert stats.early == 1
        assert stats.aligned == 1
        assert stats.missed == 1
        assert stats.avg_pressure_at_snapshot == pytest.approx(40.0)
        assert stats.avg_oxygen_at_snapshot == pytest.approx(50.0)

    def test_conservative_profile(self, learner):
        record_many(learner, 4, True, False)
        record_many(learner, 1, False, True)
        assert learner.get_stats().risk_profile == RiskProfile.CONSERVATIVE

    def test_aggressive_profile(self, learner):
        record_many(learner, 4, False, True)
        assert learner.get_stats().risk_profile == RiskProfile.AGGRESSIVE

    def test_balanced_with_few_observations(self, learner):
        record_many(learner, 2, True, False)
        assert learner.get_stats().risk_profile == RiskProfile.BALANCED

    def test_observation_buffer_is_bounded(self, learner):
        record_many(learner, 150, True, False)
        assert len(learner.observations) == 100

    def test_observe_requires_aggregator(self, learner):
        with pytest.raises(RuntimeError):
            learner.observe(True, T0)

    def test_observe_uses_current_recommendation(self):
        aggregator = VitalsAggregator(EngineConfig())
        aggregator.on_file_change("package.json", False, T0)
        learner = UserBehaviorLearner(aggregator)
        observation = learner.observe(False, T0)
        assert observation.vitals_recommended is True
        assert observation.timing == Timing.MISSED
        assert observation.urgency_at_time == Urgency.HIGH
        aggregator.events.close()

    def test_infer_risk_profile_tie(self):
        stats = BehaviorStats(total=4, early=2, missed=2)
        assert infer_risk_profile(stats) == RiskProfile.BALANCED


# =============================================================================
# Calibration Tests
# =============================================================================

class TestStatusForCount:
    @pytest.mark.parametrize("count,status", [
        (0, CalibrationStatus.UNCALIBRATED),
        (4, CalibrationStatus.UNCALIBRATED),
        (5, CalibrationStatus.LEARNING),
        (19, CalibrationStatus.LEARNING),
        (20, CalibrationStatus.CALIBRATED),
        (49, CalibrationStatus.CALIBRATED),
        (50, CalibrationStatus.LOCKED),
    ])
    def test_status(self, count, status):
        assert status_for_count(count) == status


class TestThresholdCalibrator:
    """Tests for multiplier derivation and application."""

    def test_uncalibrated_defaults(self, calibrator):
        profile = calibrator.calibrate()
        assert profile.status == CalibrationStatus.UNCALIBRATED
        assert profile.risk_tolerance == 0.5
        assert profile.confidence == 0.0
        assert set(profile.threshold_adjustments.values()) == {1.0}

    def test_learning_keeps_neutral_multipliers(self, learner, calibrator):
        record_many(learner, 10, True, False)
        profile = calibrator.calibrate()
        assert profile.status == CalibrationStatus.LEARNING
        assert set(profile.threshold_adjustments.values()) == {1.0}

    def test_conservative_calibration(self, learner, calibrator):
        record_many(learner, 20, True, False)
        profile = calibrator.calibrate()
        assert profile.status == CalibrationStatus.CALIBRATED
        assert profile.risk_profile == RiskProfile.CONSERVATIVE
        assert profile.risk_tolerance == pytest.approx(0.0)
        # 20/50 * 0.6 + 1.0 * 0.4
        assert profile.confidence == pytest.approx(0.64)
        assert set(profile.threshold_adjustments.values()) == {0.7}

    def test_aggressive_calibration(self, learner, calibrator):
        record_many(learner, 20, False, True)
        profile = calibrator.calibrate()
        assert profile.risk_tolerance == pytest.approx(1.0)
        assert set(profile.threshold_adjustments.values()) == {1.3}

    def test_mixed_behavior_lowers_confidence(self, learner, calibrator):
        record_many(learner, 10, True, False)
        record_many(learner, 10, False, True)
        # 0.24 + 0.5 * 0.4 - 0.15
        assert calibrator.calibrate().confidence == pytest.approx(0.29)

    def test_locked_multiplier_is_frozen(self, learner, calibrator):
        record_many(learner, 50, True, False)
        locked = calibrator.calibrate()
        assert locked.status == CalibrationStatus.LOCKED
        assert locked.threshold_adjustments["pressure"] == 0.7

        record_many(learner, 60, False, True)
        assert learner.get_stats().risk_profile == RiskProfile.AGGRESSIVE
        assert calibrator.calibrate().threshold_adjustments["pressure"] == 0.7

    def test_apply_aggressive(self, learner, calibrator):
        record_many(learner, 20, False, True)
        adjusted = calibrator.apply(EngineConfig())
        assert adjusted.pulse.elevated == pytest.approx(19.5)
        assert adjusted.pressure.warning_threshold == pytest.approx(65.0)
        assert adjusted.pressure.critical_threshold == 100.0
        assert adjusted.oxygen.low_threshold == pytest.approx(50.0 / 1.3)

    def test_apply_does_not_mutate_input(self, learner, calibrator):
        record_many(learner, 20, True, False)
        config = EngineConfig()
        calibrator.apply(config)
        assert config.pressure.warning_threshold == 50.0


class TestCalibrationState:
    """Tests for persisted calibration state."""

    def test_restore(self, learner, calibrator):
        record_many(learner, 50, True, False)
        calibrator.calibrate()
        state = calibrator.to_state()

        fresh = ThresholdCalibrator(UserBehaviorLearner())
        assert fresh.restore(state) is True
        profile = fresh.calibrate()
        assert profile.status == CalibrationStatus.LOCKED
        assert profile.observation_count == 50
        assert profile.threshold_adjustments["oxygen"] == 0.7

    def test_restored_buffer_keeps_counting(self, learner, calibrator):
        record_many(learner, 60, True, False, pressure=30.0, oxygen=90.0)
        state = calibrator.to_state()

        fresh_learner = UserBehaviorLearner()
        fresh = ThresholdCalibrator(fresh_learner)
        assert fresh.restore(state) is True
        assert len(fresh_learner.observations) == 60
        assert fresh_learner.observations[0].timing == Timing.EARLY

        fresh_learner.record(vitals_at(), True, False)
        profile = fresh.calibrate()
        assert profile.status == CalibrationStatus.LOCKED
        assert profile.observation_count == 61
        assert fresh_learner.get_stats().avg_oxygen_at_snapshot == pytest.approx((60 * 90 + 80) / 61)

    def test_summary_state_is_a_baseline(self, learner, calibrator):
        state = {"observation_count": 30, "stats": {"early": 30, "avg_pressure_at_snapshot": 40.0}}
        assert calibrator.restore(state) is True
        learner.record(vitals_at(pressure=10.0), True, False)

        stats = learner.get_stats()
        assert stats.total == 31
        assert stats.early == 31
        assert stats.avg_pressure_at_snapshot == pytest.approx((30 * 40 + 10) / 31)
        assert calibrator.calibrate().status == CalibrationStatus.CALIBRATED

        again = ThresholdCalibrator(UserBehaviorLearner())
        assert again.restore(calibrator.to_state()) is True
        assert again.calibrate().observation_count == 31

    def test_corrupt_observations_are_skipped(self, calibrator, learner):
        state = {
            "observation_count": 2,
            "observations": [
                {"timestamp": T0, "pressure": "high", "oxygen": 50.0},
                {"timestamp": T0, "pressure": 10.0, "oxygen": 50.0,
                 "user_created_snapshot": True, "vitals_recommended": False},
            ],
        }
        assert calibrator.restore(state) is True
        assert learner.get_stats().total == 1
        assert learner.get_stats().early == 1

    def test_empty_state_is_fine(self, calibrator):
        assert calibrator.restore(None) is True
        assert calibrator.calibrate().status == CalibrationStatus.UNCALIBRATED

    @pytest.mark.parametrize("state", [
        {"observation_count": "lots"},
        {"observation_count": -3},
        {"observation_count": 5, "stats": {"early": -1}},
        {"observation_count": 5, "observations": "not-a-list"},
        {"observation_count": 5, "stats": {"avg_pressure_at_snapshot": "abc"}},
        {"observation_count": 5, "stats": {"avg_oxygen_at_snapshot": None}},
        {"observation_count": 5, "locked_multiplier": "frozen"},
        {"observation_count": 5, "baseline": {"total": -2}},
        ["not", "a", "dict"],
    ])
    def test_corrupt_state_stays_uncalibrated(self, calibrator, state):
        assert calibrator.restore(state) is False
        assert calibrator.calibrate().status == CalibrationStatus.UNCALIBRATED
