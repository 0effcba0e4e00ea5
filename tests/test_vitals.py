"""
Tests for Vitals Module
=======================

Tests for trajectory classification, snapshot recommendations, pressure
advisories, agent guidance and alert delivery.
"""

import threading

import pytest

from riskpulse.config import EngineConfig, PulseConfig
from riskpulse.sensors import (
    OxygenReading,
    PressureReading,
    PulseLevel,
    PulseReading,
    TemperatureLevel,
    TemperatureReading,
)
from riskpulse.vitals import (
    DESTRUCTIVE_OPERATIONS,
    HISTORY_LIMIT,
    AlertKind,
    PressureAction,
    Trajectory,
    Urgency,
    VitalsAggregator,
    VitalsEventBus,
    VitalsSnapshot,
    classify_trajectory,
)

MINUTE = 60_000.0
T0 = 1_700_000_000_000.0


# =============================================================================
# Fixtures
# =============================================================================

@pytest.fixture
def aggregator():
    agg = VitalsAggregator(EngineConfig())
    yield agg
    agg.events.close()


def drive_critical(agg: VitalsAggregator) -> float:
    """Push the aggregator onto a critical trajectory; returns the read time."""
    agg.on_file_change("src/a.py", True, T0)
    for i in range(5):
        agg.on_file_change("src/b.py", True, T0 + 16 * MINUTE + i)
    return T0 + 16 * MINUTE + 5


def snapshot_with(pressure: float, oxygen: float, at: float = T0) -> VitalsSnapshot:
    return VitalsSnapshot(
        timestamp=at,
        pulse=PulseReading(PulseLevel.RESTING, 0.0),
        temperature=TemperatureReading(TemperatureLevel.COLD, 0.0),
        pressure=PressureReading(pressure, 0, 0.0),
        oxygen=OxygenReading(oxygen, 0),
        trajectory=Trajectory.STABLE,
    )


# =============================================================================
# Trajectory Tests
# =============================================================================

class TestClassifyTrajectory:
    """Tests for the trajectory rules."""

    def test_critical(self):
        assert classify_trajectory(80, TemperatureLevel.BURNING, 49, PulseLevel.RESTING) == Trajectory.CRITICAL

    def test_critical_needs_all_three(self):
        assert classify_trajectory(80, TemperatureLevel.HOT, 10, PulseLevel.RESTING) != Trajectory.CRITICAL
        assert classify_trajectory(80, TemperatureLevel.BURNING, 50, PulseLevel.RESTING) != Trajectory.CRITICAL

    def test_escalating_on_pressure_and_oxygen(self):
        assert classify_trajectory(60, TemperatureLevel.COLD, 69, PulseLevel.RESTING) == Trajectory.ESCALATING

    def test_escalating_on_hot_and_racing(self):
        assert classify_trajectory(0, TemperatureLevel.HOT, 100, PulseLevel.RACING) == Trajectory.ESCALATING

    def test_recovering(self):
        history = [snapshot_with(50, 40), snapshot_with(45, 60), snapshot_with(30, 75)]
        assert classify_trajectory(30, TemperatureLevel.COLD, 75, PulseLevel.RESTING, history) == Trajectory.RECOVERING

    def test_recovering_uses_last_three_points(self):
        history = [snapshot_with(90, 80), snapshot_with(35, 80), snapshot_with(32, 80), snapshot_with(30, 80)]
        assert classify_trajectory(30, TemperatureLevel.COLD, 80, PulseLevel.RESTING, history) == Trajectory.STABLE

    def test_recovering_needs_oxygen(self):
        history = [snapshot_with(50, 40), snapshot_with(40, 50), snapshot_with(30, 60)]
        assert classify_trajectory(30, TemperatureLevel.COLD, 60, PulseLevel.RESTING, history) == Trajectory.STABLE

    def test_stable(self):
        assert classify_trajectory(10, TemperatureLevel.WARM, 90, PulseLevel.ELEVATED) == Trajectory.STABLE


# =============================================================================
# Aggregator Tests
# =============================================================================

class TestVitalsAggregator:
    """Tests for VitalsAggregator.current and history."""

    def test_initial_vitals(self, aggregator):
        vitals = aggregator.current(T0)
        assert vitals.pressure.value == 0.0
        assert vitals.oxygen.value == 100.0
        assert vitals.trajectory == Trajectory.STABLE

    def test_current_is_idempotent(self, aggregator):
        aggregator.on_file_change("package.json", True, T0, tool="cursor")
        aggregator.on_file_change("src/app.py", False, T0 + 1)
        first = aggregator.current(T0 + 5 * MINUTE)
        second = aggregator.current(T0 + 5 * MINUTE)
        assert first == second
        assert first.to_dict() == second.to_dict()
        assert aggregator.history == []

    def test_critical_trajectory(self, aggregator):
        now = drive_critical(aggregator)
        vitals = aggregator.current(now)
        assert vitals.pressure.value >= 80
        assert vitals.temperature.level == TemperatureLevel.BURNING
        assert vitals.oxygen.value < 50
        assert vitals.trajectory == Trajectory.CRITICAL

    def test_snapshot_event_restores_oxygen(self, aggregator):
        aggregator.on_file_change("src/a.py", False, T0)
        aggregator.on_snapshot(T0 + 1)
        vitals = aggregator.current(T0 + 2)
        assert vitals.oxygen.value == 100.0
        assert vitals.pressure.unsnapshotted_changes == 0

    def test_history_is_explicit_and_capped(self, aggregator):
        for i in range(HISTORY_LIMIT + 5):
            aggregator.record_history_snapshot(T0 + i)
        history = aggregator.history
        assert len(history) == HISTORY_LIMIT
        assert history[-1].timestamp == T0 + HISTORY_LIMIT + 4
        assert aggregator.current(T0 + HISTORY_LIMIT + 5).trajectory == Trajectory.STABLE

    def test_recovering_from_recorded_history(self, aggregator):
        aggregator.on_file_change("src/a.py", False, T0)
        first = aggregator.record_history_snapshot(T0 + 8 * MINUTE)
        assert first.pressure.value == pytest.approx(40.5)

        aggregator.on_snapshot(T0 + 8 * MINUTE + 1)
        aggregator.record_history_snapshot(T0 + 9 * MINUTE)
        aggregator.record_history_snapshot(T0 + 10 * MINUTE)

        vitals = aggregator.current(T0 + 10 * MINUTE + 1)
        assert vitals.oxygen.value == 100.0
        assert vitals.trajectory == Trajectory.RECOVERING
        assert aggregator.should_snapshot(T0 + 10 * MINUTE + 1).should is False

    def test_ai_detection(self, aggregator):
        assert aggregator.on_ai_detection("copilot", 0.9, T0) is True
        assert aggregator.on_ai_detection("copilot", 0.3, T0) is False
        assert aggregator.current(T0).temperature.detected_tool == "copilot"

    def test_apply_config_keeps_state(self, aggregator):
        for i in range(10):
            aggregator.on_file_change("src/a.py", False, T0 + i)
        config = EngineConfig()
        config.pulse = PulseConfig(elevated=5, racing=8, critical=50)
        aggregator.apply_config(config)
        vitals = aggregator.current(T0 + 10)
        assert vitals.pulse.level == PulseLevel.RACING
        assert vitals.pressure.unsnapshotted_changes == 10

    def test_reset(self, aggregator):
        drive_critical(aggregator)
        aggregator.record_history_snapshot(T0)
        aggregator.reset()
        vitals = aggregator.current(T0 + 20 * MINUTE)
        assert vitals.trajectory == Trajectory.STABLE
        assert vitals.pressure.value == 0.0
        assert aggregator.history == []


# =============================================================================
# Recommendation Tests
# =============================================================================

class TestShouldSnapshot:
    """Tests for the ordered snapshot rules."""

    def test_healthy(self, aggregator):
        rec = aggregator.should_snapshot(T0)
        assert rec.should is False
        assert rec.urgency == Urgency.NONE

    def test_critical_trajectory_first(self, aggregator):
        now = drive_critical(aggregator)
        rec = aggregator.should_snapshot(now)
        assert rec.should is True
        assert rec.urgency == Urgency.CRITICAL

    def test_critical_pressure(self, aggregator):
        aggregator.on_file_change("src/a.py", False, T0)
        rec = aggregator.should_snapshot(T0 + 16 * MINUTE)
        assert rec.urgency == Urgency.HIGH
        assert "Pressure is critical" in rec.reason

    def test_critical_files_with_low_oxygen(self, aggregator):
        aggregator.on_file_change("package.json", False, T0)
        rec = aggregator.should_snapshot(T0)
        assert rec.urgency == Urgency.HIGH
        assert "Critical files" in rec.reason

    def test_burning_with_moderate_oxygen(self, aggregator):
        for i in range(5):
            aggregator.on_file_change("src/a.py", True, T0 + i)
        rec = aggregator.should_snapshot(T0 + 5)
        assert rec.urgency == Urgency.MEDIUM

    def test_warning_pressure(self, aggregator):
        aggregator.on_file_change("src/a.py", False, T0)
        rec = aggregator.should_snapshot(T0 + 10 * MINUTE)
        assert rec.should is True
        assert rec.urgency == Urgency.LOW


class TestPressureRecommendation:
    """Tests for the pressure advisory."""

    def test_none_when_protected(self, aggregator):
        rec = aggregator.get_pressure_recommendation(T0)
        assert rec.action == PressureAction.NONE
        assert rec.urgency == 0

    def test_monitor(self, aggregator):
        aggregator.on_file_change("src/a.py", False, T0)
        rec = aggregator.get_pressure_recommendation(T0)
        assert rec.urgency == 40
        assert rec.action == PressureAction.MONITOR

    def test_critical_files_add_urgency(self, aggregator):
        aggregator.on_file_change("package.json", False, T0)
        assert aggregator.get_pressure_recommendation(T0).urgency == 51

    def test_snapshot_soon(self, aggregator):
        aggregator.on_file_change("src/a.py", False, T0)
        assert aggregator.get_pressure_recommendation(T0 + 8 * MINUTE).action == PressureAction.SNAPSHOT_SOON

    def test_snapshot_now(self, aggregator):
        aggregator.on_file_change("src/a.py", False, T0)
        rec = aggregator.get_pressure_recommendation(T0 + 16 * MINUTE)
        assert rec.action == PressureAction.SNAPSHOT_NOW
        assert "1 changes over 16 minutes" in rec.educational


class TestAgentGuidance:
    """Tests for agent guidance."""

    def test_healthy_allows_everything(self, aggregator):
        guidance = aggregator.get_agent_guidance(T0)
        assert guidance.should_snapshot is False
        assert guidance.blocked_operations == ()
        assert "healthy" in guidance.suggestion

    def test_critical_blocks_destructive_operations(self, aggregator):
        now = drive_critical(aggregator)
        guidance = aggregator.get_agent_guidance(now)
        assert guidance.should_snapshot is True
        assert guidance.blocked_operations == DESTRUCTIVE_OPERATIONS
        assert not set(guidance.safe_operations) & set(DESTRUCTIVE_OPERATIONS)

    def test_risky_files_listed(self, aggregator):
        aggregator.on_file_change(".env", False, T0)
        aggregator.on_file_change("package.json", False, T0)
        guidance = aggregator.get_agent_guidance(T0)
        assert guidance.risky_files == (".env", "package.json")


# =============================================================================
# Alert Tests
# =============================================================================

class TestAlerts:
    """Tests for transition alerts on the event bus."""

    def test_critical_transition_emits_once(self, aggregator):
        alerts = []
        aggregator.events.subscribe(alerts.append)
        now = drive_critical(aggregator)
        aggregator.on_file_change("src/c.py", True, now + 1)
        aggregator.events.flush(timeout=5)

        kinds = [a.kind for a in alerts]
        assert kinds.count(AlertKind.TRAJECTORY_CRITICAL) == 1
        assert kinds.count(AlertKind.URGENCY_HIGH) == 1

    def test_listener_exception_is_swallowed(self, aggregator):
        received = []

        def broken(alert):
            raise RuntimeError("listener failure")

        aggregator.events.subscribe(broken)
        aggregator.events.subscribe(received.append)
        drive_critical(aggregator)
        aggregator.events.flush(timeout=5)
        assert received

    def test_unsubscribe(self):
        bus = VitalsEventBus()
        unsubscribe = bus.subscribe(lambda alert: None)
        assert bus.listener_count == 1
        unsubscribe()
        assert bus.listener_count == 0
        bus.close()

    def test_delivery_off_emitting_thread(self, aggregator):
        threads = []
        aggregator.events.subscribe(lambda alert: threads.append(threading.current_thread().name))
        drive_critical(aggregator)
        aggregator.events.flush(timeout=5)
        assert threads
        assert all(name != threading.current_thread().name for name in threads)
