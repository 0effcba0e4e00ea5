"""
Tests for Trajectory Module
===========================

Tests for vitals extrapolation and forecasting.
"""

import pytest

from riskpulse.sensors import (
    OxygenReading,
    PressureReading,
    PulseLevel,
    PulseReading,
    TemperatureLevel,
    TemperatureReading,
)
from riskpulse.trajectory import (
    PulseTrend,
    TemperatureTrend,
    TrajectoryPredictor,
    confidence_for,
)
from riskpulse.vitals import Trajectory, VitalsSnapshot

MINUTE = 60_000.0
T0 = 1_700_000_000_000.0


def point(minute: float, pressure: float, oxygen: float, ai: float = 0.0, cpm: float = 0.0,
          trajectory: Trajectory = Trajectory.STABLE) -> VitalsSnapshot:
    return VitalsSnapshot(
        timestamp=T0 + minute * MINUTE,
        pulse=PulseReading(PulseLevel.RESTING, cpm),
        temperature=TemperatureReading(TemperatureLevel.COLD, ai),
        pressure=PressureReading(pressure, 1, minute),
        oxygen=OxygenReading(oxygen, 0),
        trajectory=trajectory,
    )


@pytest.fixture
def predictor():
    return TrajectoryPredictor()


class TestRates:
    """Tests for linear rate estimation."""

    def test_no_history(self, predictor):
        assert predictor.rates() == (0.0, 0.0)

    def test_linear_rates(self, predictor):
        predictor.record(point(0, 10, 90))
        predictor.record(point(5, 30, 60))
        pressure_rate, oxygen_rate = predictor.rates()
        assert pressure_rate == pytest.approx(4.0)
        assert oxygen_rate == pytest.approx(-6.0)

    def test_same_timestamp(self, predictor):
        predictor.record(point(0, 10, 90))
        predictor.record(point(0, 30, 60))
        assert predictor.rates() == (0.0, 0.0)

    def test_rate_window_uses_recent_points(self, predictor):
        predictor.record(point(0, 90, 50))
        for minute in range(1, 11):
            predictor.record(point(minute, 10 + minute, 50))
        # first point falls outside the ten-point window
        assert predictor.rates()[0] == pytest.approx(1.0)


class TestTrends:
    """Tests for categorical temperature and pulse trends."""

    def test_heating_and_slowing(self, predictor):
        predictor.record(point(0, 0, 100, ai=10, cpm=30))
        predictor.record(point(1, 0, 100, ai=40, cpm=10))
        assert predictor.temperature_trend() == TemperatureTrend.HEATING
        assert predictor.pulse_trend() == PulseTrend.SLOWING

    def test_cooling_and_accelerating(self, predictor):
        predictor.record(point(0, 0, 100, ai=60, cpm=5))
        predictor.record(point(1, 0, 100, ai=20, cpm=25))
        assert predictor.temperature_trend() == TemperatureTrend.COOLING
        assert predictor.pulse_trend() == PulseTrend.ACCELERATING

    def test_small_changes_are_stable(self, predictor):
        predictor.record(point(0, 0, 100, ai=10, cpm=10))
        predictor.record(point(1, 0, 100, ai=14, cpm=6))
        assert predictor.temperature_trend() == TemperatureTrend.STABLE
        assert predictor.pulse_trend() == PulseTrend.STABLE


class TestPredict:
    """Tests for forecasts."""

    def test_empty_forecast(self, predictor):
        forecast = predictor.predict(T0)
        assert forecast.current is None
        assert forecast.points == ()
        assert forecast.time_to_state_change_ms is None
        assert forecast.confidence == 0.0

    def test_forecast_points(self, predictor):
        predictor.record(point(0, 10, 90))
        predictor.record(point(5, 30, 60))
        forecast = predictor.predict(T0 + 5 * MINUTE)

        assert forecast.current == Trajectory.STABLE
        five = forecast.at(5)
        assert five.pressure == pytest.approx(50.0)
        assert five.oxygen == pytest.approx(30.0)
        assert five.trajectory == Trajectory.STABLE

        ten = forecast.at(10)
        assert ten.pressure == pytest.approx(70.0)
        assert ten.oxygen == 0.0
        assert ten.trajectory == Trajectory.ESCALATING
        assert forecast.at(15) is None

    def test_time_to_escalation(self, predictor):
        predictor.record(point(0, 10, 90))
        predictor.record(point(5, 30, 60))
        # 30 points to the escalating boundary at 4 points per minute
        assert predictor.time_to_state_change() == pytest.approx(7.5 * MINUTE)

    def test_time_to_critical_when_escalating(self, predictor):
        predictor.record(point(0, 60, 50, trajectory=Trajectory.ESCALATING))
        predictor.record(point(2, 70, 40, trajectory=Trajectory.ESCALATING))
        assert predictor.time_to_state_change() == pytest.approx(2.0 * MINUTE)

    def test_falling_pressure_has_no_state_change(self, predictor):
        predictor.record(point(0, 40, 50))
        predictor.record(point(2, 20, 80))
        assert predictor.time_to_state_change() is None

    def test_to_dict(self, predictor):
        predictor.record(point(0, 10, 90))
        data = predictor.predict(T0).to_dict()
        assert data["current"] == "stable"
        assert [p["minutes_ahead"] for p in data["points"]] == [5, 10]

    def test_reset(self, predictor):
        predictor.record(point(0, 10, 90))
        predictor.reset()
        assert predictor.history_length == 0


class TestConfidence:
    @pytest.mark.parametrize("length,expected", [
        (0, 0.0), (1, 0.2), (2, 0.4), (4, 0.6), (9, 0.75), (10, 0.9), (100, 0.9),
    ])
    def test_confidence_for(self, length, expected):
        assert confidence_for(length) == expected
