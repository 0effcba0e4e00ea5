"""
Trajectory Prediction
=====================

Extrapolates the short-term direction of the session vitals from recorded
history: linear rates for pressure and oxygen, categorical trends for
temperature and pulse, forecasts at +5 and +10 minutes, and the time until
pressure crosses the next trajectory boundary.
"""

from collections import deque
from dataclasses import dataclass
from enum import Enum
from typing import Optional

from riskpulse.vitals import (
    CRITICAL_PRESSURE,
    ESCALATING_PRESSURE,
    HISTORY_LIMIT,
    Trajectory,
    VitalsSnapshot,
    classify_trajectory,
)

MS_PER_MINUTE = 60_000.0
RATE_WINDOW = 10
TREND_DELTA = 5.0
FORECAST_MINUTES = (5, 10)


class TemperatureTrend(Enum):
    HEATING = "heating"
    STABLE = "stable"
    COOLING = "cooling"


class PulseTrend(Enum):
    ACCELERATING = "accelerating"
    STABLE = "stable"
    SLOWING = "slowing"


@dataclass(frozen=True)
class ForecastPoint:
    minutes_ahead: int
    pressure: float
    oxygen: float
    trajectory: Trajectory

    def to_dict(self) -> dict:
        return {
            "minutes_ahead": self.minutes_ahead,
            "pressure": self.pressure,
            "oxygen": self.oxygen,
            "trajectory": self.trajectory.value,
        }


@dataclass(frozen=True)
class Forecast:
    """Short-term forecast of the session trajectory."""
    generated_at: float
    current: Optional[Trajectory]
    pressure_rate: float  # points per minute
    oxygen_rate: float
    temperature_trend: TemperatureTrend
    pulse_trend: PulseTrend
    points: tuple[ForecastPoint, ...]
    time_to_state_change_ms: Optional[float]
    confidence: float

    def at(self, minutes: int) -> Optional[ForecastPoint]:
        return next((p for p in self.points if p.minutes_ahead == minutes), None)

    def to_dict(self) -> dict:
        return {
            "generated_at": self.generated_at,
            "current": self.current.value if self.current else None,
            "pressure_rate": self.pressure_rate,
            "oxygen_rate": self.oxygen_rate,
            "temperature_trend": self.temperature_trend.value,
            "pulse_trend": self.pulse_trend.value,
            "points": [p.to_dict() for p in self.points],
            "time_to_state_change_ms": self.time_to_state_change_ms,
            "confidence": self.confidence,
        }


def confidence_for(history_length: int) -> float:
    if history_length <= 0:
        return 0.0
    if history_length == 1:
        return 0.2
    if history_length == 2:
        return 0.4
    if history_length < 5:
        return 0.6
    if history_length < 10:
        return 0.75
    return 0.9


class TrajectoryPredictor:
    """Forecasts trajectory from a capped history of vitals snapshots."""

    def __init__(self):
        self._history: deque[VitalsSnapshot] = deque(maxlen=HISTORY_LIMIT)

    def record(self, snapshot: VitalsSnapshot) -> None:
        self._history.append(snapshot)

    @property
    def history_length(self) -> int:
        return len(self._history)

    def _window(self) -> list[VitalsSnapshot]:
        return list(self._history)[-RATE_WINDOW:]

    def rates(self) -> tuple[float, float]:
        """(pressure_rate, oxygen_rate) in points per minute."""
        window = self._window()
        if len(window) < 2:
            return 0.0, 0.0
        first, last = window[0], window[-1]
        minutes = (last.timestamp - first.timestamp) / MS_PER_MINUTE
        if minutes <= 0:
            return 0.0, 0.0
        return (
            (last.pressure.value - first.pressure.value) / minutes,
            (last.oxygen.value - first.oxygen.value) / minutes,
        )

    def temperature_trend(self) -> TemperatureTrend:
        window = self._window()
        if len(window) < 2:
            return TemperatureTrend.STABLE
        delta = window[-1].temperature.ai_percentage - window[0].temperature.ai_percentage
        if delta > TREND_DELTA:
            return TemperatureTrend.HEATING
        if delta < -TREND_DELTA:
            return TemperatureTrend.COOLING
        return TemperatureTrend.STABLE

    def pulse_trend(self) -> PulseTrend:
        window = self._window()
        if len(window) < 2:
            return PulseTrend.STABLE
        delta = window[-1].pulse.changes_per_minute - window[0].pulse.changes_per_minute
        if delta > TREND_DELTA:
            return PulseTrend.ACCELERATING
        if delta < -TREND_DELTA:
            return PulseTrend.SLOWING
        return PulseTrend.STABLE

    def time_to_state_change(self) -> Optional[float]:
        """Milliseconds until pressure crosses the next boundary, or None."""
        if not self._history:
            return None
        latest = self._history[-1]
        pressure_rate, _ = self.rates()
        if pressure_rate <= 0:
            return None
        boundary = ESCALATING_PRESSURE if latest.trajectory == Trajectory.STABLE else CRITICAL_PRESSURE
        remaining = boundary - latest.pressure.value
        if remaining <= 0:
            return None
        return remaining / pressure_rate * MS_PER_MINUTE

    def predict(self, now: float) -> Forecast:
        pressure_rate, oxygen_rate = self.rates()
        latest = self._history[-1] if self._history else None

        points = []
        if latest is not None:
            for minutes in FORECAST_MINUTES:
                pressure = max(0.0, min(100.0, latest.pressure.value + pressure_rate * minutes))
                oxygen = max(0.0, min(100.0, latest.oxygen.value + oxygen_rate * minutes))
                points.append(ForecastPoint(
                    minutes_ahead=minutes,
                    pressure=pressure,
                    oxygen=oxygen,
                    trajectory=classify_trajectory(
                        pressure, latest.temperature.level, oxygen, latest.pulse.level
                    ),
                ))

        return Forecast(
            generated_at=now,
            current=latest.trajectory if latest else None,
            pressure_rate=pressure_rate,
            oxygen_rate=oxygen_rate,
            temperature_trend=self.temperature_trend(),
            pulse_trend=self.pulse_trend(),
            points=tuple(points),
            time_to_state_change_ms=self.time_to_state_change(),
            confidence=confidence_for(len(self._history)),
        )

    def reset(self) -> None:
        self._history.clear()
