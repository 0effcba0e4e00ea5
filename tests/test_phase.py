"""
Tests for Phase Module
======================

Tests for branch-name phase detection and manual overrides.
"""

import pytest

from riskpulse.phase import (
    PHASE_PROFILES,
    DevPhase,
    PhaseDetector,
    PhaseOverride,
)

MINUTE = 60_000.0
T0 = 1_700_000_000_000.0


@pytest.fixture
def detector():
    return PhaseDetector()


# =============================================================================
# Pattern Tests
# =============================================================================

class TestPatternDetection:
    """Tests for prefix-pattern detection."""

    @pytest.mark.parametrize("branch,phase", [
        ("hotfix/login-crash", DevPhase.HOTFIX),
        ("hot-fix_payments", DevPhase.HOTFIX),
        ("urgent/outage", DevPhase.HOTFIX),
        ("feature/search", DevPhase.FEATURE),
        ("feat-dark-mode", DevPhase.FEATURE),
        ("refactor/storage", DevPhase.REFACTOR),
        ("chore/bump-deps", DevPhase.REFACTOR),
        ("release/2.4", DevPhase.RELEASE),
        ("v1.2.3", DevPhase.RELEASE),
        ("spike/new-parser", DevPhase.EXPLORATORY),
        ("wip-idea", DevPhase.EXPLORATORY),
    ])
    def test_patterns(self, detector, branch, phase):
        detection = detector.detect(branch, T0)
        assert detection.phase == phase
        assert detection.confidence == 0.9
        assert detection.source == "pattern"

    def test_case_insensitive(self, detector):
        assert detector.detect("HOTFIX/Boom", T0).phase == DevPhase.HOTFIX

    def test_profile_attached(self, detector):
        detection = detector.detect("hotfix/x", T0)
        assert detection.profile == PHASE_PROFILES[DevPhase.HOTFIX]
        assert detection.profile.risk_multiplier == 1.4


class TestHeuristicDetection:
    """Tests for structural fallbacks."""

    @pytest.mark.parametrize("branch,phase,confidence,matched", [
        ("main", DevPhase.FEATURE, 0.6, "trunk"),
        ("develop", DevPhase.FEATURE, 0.6, "trunk"),
        ("PROJ-123-login", DevPhase.FEATURE, 0.5, "ticket"),
        ("bugfix-login", DevPhase.HOTFIX, 0.6, "fix"),
        ("prep-2.1", DevPhase.RELEASE, 0.5, "version"),
    ])
    def test_heuristics(self, detector, branch, phase, confidence, matched):
        detection = detector.detect(branch, T0)
        assert detection.phase == phase
        assert detection.confidence == confidence
        assert detection.source == "heuristic"
        assert detection.matched == matched

    def test_unknown(self, detector):
        detection = detector.detect("random", T0)
        assert detection.phase == DevPhase.UNKNOWN
        assert detection.confidence == 0.3
        assert detection.source == "default"

    def test_missing_branch(self, detector):
        assert detector.detect(None, T0).phase == DevPhase.UNKNOWN


# =============================================================================
# Override Tests
# =============================================================================

class TestOverrides:
    """Tests for manual phase overrides."""

    def test_override_wins(self, detector):
        detector.set_override(DevPhase.RELEASE, T0, duration_minutes=60, reason="cutting 2.0")
        detection = detector.detect("feature/search", T0 + MINUTE)
        assert detection.phase == DevPhase.RELEASE
        assert detection.confidence == 1.0
        assert detection.source == "override"
        assert detection.matched == "cutting 2.0"

    def test_override_expires(self, detector):
        detector.set_override(DevPhase.RELEASE, T0, duration_minutes=60)
        assert detector.detect("feature/search", T0 + 61 * MINUTE).phase == DevPhase.FEATURE
        assert detector.get_override(T0 + 61 * MINUTE) is None
        assert detector.override is not None

    def test_override_without_expiry(self, detector):
        detector.set_override(DevPhase.EXPLORATORY, T0, duration_minutes=None)
        assert detector.detect("main", T0 + 10_000 * MINUTE).phase == DevPhase.EXPLORATORY

    def test_clear_override(self, detector):
        detector.set_override(DevPhase.HOTFIX, T0)
        detector.clear_override()
        assert detector.detect("feature/x", T0).phase == DevPhase.FEATURE

    def test_override_dict(self):
        override = PhaseOverride(DevPhase.HOTFIX, T0, T0 + MINUTE, "incident")
        restored = PhaseOverride.from_dict(override.to_dict())
        assert restored == override


class TestCurrentBranch:
    """Tests for the tracked current branch."""

    def test_detect_current(self):
        detector = PhaseDetector(current_branch="refactor/db")
        assert detector.detect_current(T0).phase == DevPhase.REFACTOR

    def test_set_current_branch(self, detector):
        assert detector.detect_current(T0).phase == DevPhase.UNKNOWN
        detector.set_current_branch("hotfix/x")
        assert detector.current_branch == "hotfix/x"
        assert detector.detect_current(T0).phase == DevPhase.HOTFIX

    def test_detection_is_cached(self, detector):
        first = detector.detect("feature/x", T0)
        assert detector.detect("feature/x", T0 + MINUTE) is first


class TestDevPhaseCoerce:
    def test_coerce(self):
        assert DevPhase.coerce("HOTFIX") == DevPhase.HOTFIX
        assert DevPhase.coerce(DevPhase.RELEASE) == DevPhase.RELEASE
        assert DevPhase.coerce("nonsense") == DevPhase.UNKNOWN
        assert DevPhase.coerce(None) == DevPhase.UNKNOWN
