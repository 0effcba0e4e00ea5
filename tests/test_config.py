"""
Tests for Config Module
=======================

Tests for defaults, partial merging, file loading and environment overrides.
"""

import json
import tempfile
from pathlib import Path

import pytest

from riskpulse.config import (
    DEFAULT_CRITICAL_PATTERNS,
    EngineConfig,
    PressureConfig,
    PulseConfig,
)


@pytest.fixture
def temp_dir():
    """Create a temporary directory for config files."""
    with tempfile.TemporaryDirectory() as tmpdir:
        yield Path(tmpdir)


@pytest.fixture(autouse=True)
def clean_env(monkeypatch):
    for name in (
        "RISKPULSE_PULSE_WINDOW_SECONDS",
        "RISKPULSE_PRESSURE_BASE_RATE",
        "RISKPULSE_DECAY_ON_SNAPSHOT",
        "RISKPULSE_TARGET_BAD_RATE",
        "RISKPULSE_DB_DIR",
    ):
        monkeypatch.delenv(name, raising=False)


class TestDefaults:
    """Tests for documented default values."""

    def test_sensor_defaults(self):
        config = EngineConfig()
        assert config.pulse.elevated == 15.0
        assert config.temperature.decay_seconds == 300.0
        assert config.pressure.base_rate == 5.0
        assert config.pressure.decay_on_snapshot == 50.0
        assert config.oxygen.stale_minutes == 30.0
        assert config.commit_risk.target_bad_outcome_rate == 0.15
        assert config.pressure.critical_patterns == DEFAULT_CRITICAL_PATTERNS

    def test_copy_is_independent(self):
        config = EngineConfig()
        copied = config.copy()
        copied.pressure.critical_patterns.append(r"\.sql$")
        assert r"\.sql$" not in config.pressure.critical_patterns


class TestFromDict:
    """Tests for partial and malformed mappings."""

    def test_partial_section_keeps_other_defaults(self):
        config = EngineConfig.from_dict({"pulse": {"racing": 40}})
        assert config.pulse.racing == 40.0
        assert config.pulse.elevated == 15.0
        assert config.pressure == PressureConfig()

    def test_non_numeric_values_fall_back(self):
        assert PulseConfig.from_dict({"critical": "fast"}).critical == 50.0

    def test_values_are_clamped(self):
        config = EngineConfig.from_dict({
            "temperature": {"burning": 140},
            "pressure": {"decay_on_snapshot": -10},
        })
        assert config.temperature.burning == 100.0
        assert config.pressure.decay_on_snapshot == 0.0

    def test_malformed_sections_ignored(self):
        config = EngineConfig.from_dict({"pulse": [1, 2], "pressure": {"critical_patterns": "x"}})
        assert config.pulse == PulseConfig()
        assert config.pressure.critical_patterns == DEFAULT_CRITICAL_PATTERNS

    def test_non_dict_input(self):
        assert EngineConfig.from_dict("nonsense") == EngineConfig()

    def test_round_trip(self):
        config = EngineConfig.from_dict({"oxygen": {"stale_minutes": 12}, "db_dir": "/tmp/rp"})
        assert EngineConfig.from_dict(config.to_dict()) == config


class TestLoad:
    """Tests for file and environment loading."""

    def test_missing_file_uses_defaults(self, temp_dir):
        assert EngineConfig.load(temp_dir / "absent.json") == EngineConfig()

    def test_file_values(self, temp_dir):
        path = temp_dir / "riskpulse_config.json"
        path.write_text(json.dumps({"pressure": {"base_rate": 2.5}}))
        assert EngineConfig.load(path).pressure.base_rate == 2.5

    def test_malformed_file_uses_defaults(self, temp_dir):
        path = temp_dir / "riskpulse_config.json"
        path.write_text("{not json")
        assert EngineConfig.load(path) == EngineConfig()

    def test_non_object_file_uses_defaults(self, temp_dir):
        path = temp_dir / "riskpulse_config.json"
        path.write_text("[1, 2, 3]")
        assert EngineConfig.load(path) == EngineConfig()

    def test_env_overrides_file(self, temp_dir, monkeypatch):
        path = temp_dir / "riskpulse_config.json"
        path.write_text(json.dumps({"pressure": {"base_rate": 2.5}}))
        monkeypatch.setenv("RISKPULSE_PRESSURE_BASE_RATE", "7")
        monkeypatch.setenv("RISKPULSE_DB_DIR", str(temp_dir))

        config = EngineConfig.load(path)
        assert config.pressure.base_rate == 7.0
        assert config.db_dir == str(temp_dir)

    def test_env_values_are_clamped(self, temp_dir, monkeypatch):
        monkeypatch.setenv("RISKPULSE_DECAY_ON_SNAPSHOT", "250")
        monkeypatch.setenv("RISKPULSE_TARGET_BAD_RATE", "oops")
        config = EngineConfig.load(temp_dir / "absent.json")
        assert config.pressure.decay_on_snapshot == 100.0
        assert config.commit_risk.target_bad_outcome_rate == 0.15
