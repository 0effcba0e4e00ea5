"""
Development Phase Detection
===========================

Infers the current development phase from a branch name so that snapshot
and commit sensitivity can follow what the developer is doing.

Detection order:
1. Manual override (absolute precedence, confidence 1.0, optional expiry)
2. Prefix patterns for hotfix / feature / refactor / release / exploratory
3. Structural heuristics (trunk branches, ticket ids, fix/bug, versions)
4. Unknown
"""

import logging
import re
from dataclasses import dataclass
from enum import Enum
from typing import Optional

logger = logging.getLogger(__name__)

MS_PER_MINUTE = 60_000.0
DEFAULT_OVERRIDE_MINUTES = 120.0
PATTERN_CONFIDENCE = 0.9


class DevPhase(Enum):
    """Inferred development mode."""
    HOTFIX = "hotfix"
    FEATURE = "feature"
    REFACTOR = "refactor"
    RELEASE = "release"
    EXPLORATORY = "exploratory"
    UNKNOWN = "unknown"

    @classmethod
    def coerce(cls, value) -> "DevPhase":
        if isinstance(value, cls):
            return value
        try:
            return cls(str(value).lower())
        except ValueError:
            return cls.UNKNOWN


@dataclass(frozen=True)
class PhaseProfile:
    """Sensitivity profile associated with a phase."""
    interval_multiplier: float
    max_lines_before_snapshot: int
    risk_multiplier: float
    recommended_interval_minutes: float
    ai_adjusted_interval_minutes: float

    def to_dict(self) -> dict:
        return {
            "interval_multiplier": self.interval_multiplier,
            "max_lines_before_snapshot": self.max_lines_before_snapshot,
            "risk_multiplier": self.risk_multiplier,
            "recommended_interval_minutes": self.recommended_interval_minutes,
            "ai_adjusted_interval_minutes": self.ai_adjusted_interval_minutes,
        }


PHASE_PROFILES: dict[DevPhase, PhaseProfile] = {
    DevPhase.HOTFIX: PhaseProfile(0.5, 50, 1.4, 5, 3),
    DevPhase.FEATURE: PhaseProfile(1.0, 200, 1.0, 15, 10),
    DevPhase.REFACTOR: PhaseProfile(0.75, 150, 1.1, 10, 7),
    DevPhase.RELEASE: PhaseProfile(0.5, 100, 1.3, 5, 3),
    DevPhase.EXPLORATORY: PhaseProfile(2.0, 500, 0.8, 30, 20),
    DevPhase.UNKNOWN: PhaseProfile(1.0, 200, 1.0, 15, 10),
}

# Ordered: the first group with a matching pattern wins
PHASE_PATTERNS: list[tuple[DevPhase, list[str]]] = [
    (DevPhase.HOTFIX, [r"^hot-?fix[/_-]", r"^(urgent|emergency|critical)[/_-]", r"^patch[/_-]"]),
    (DevPhase.FEATURE, [r"^feat(ure)?s?[/_-]", r"^(story|epic)[/_-]"]),
    (DevPhase.REFACTOR, [r"^refactor(ing)?[/_-]", r"^(cleanup|clean-up|chore|tech-?debt|perf)[/_-]"]),
    (DevPhase.RELEASE, [r"^releases?[/_-]", r"^(rc|rel)[/_-]", r"^v?\d+\.\d+(\.\d+)?$"]),
    (DevPhase.EXPLORATORY, [r"^(spike|experiment|explore|poc|prototype|sandbox|wip|try)[/_-]"]),
]

TRUNK_BRANCHES = {"main", "master", "develop", "development", "trunk"}
TICKET_PATTERN = re.compile(r"(^|[/_-])[A-Za-z][A-Za-z0-9]+-\d+($|[/_-])")
FIX_PATTERN = re.compile(r"fix|bug", re.IGNORECASE)
VERSION_PATTERN = re.compile(r"v?\d+\.\d+")


@dataclass(frozen=True)
class PhaseDetection:
    """Result of phase detection."""
    phase: DevPhase
    confidence: float
    source: str  # override, pattern, heuristic, default
    profile: PhaseProfile
    matched: Optional[str] = None

    def to_dict(self) -> dict:
        return {
            "phase": self.phase.value,
            "confidence": self.confidence,
            "source": self.source,
            "profile": self.profile.to_dict(),
            "matched": self.matched,
        }


@dataclass(frozen=True)
class PhaseOverride:
    phase: DevPhase
    set_at: float
    expires_at: Optional[float]
    reason: Optional[str] = None

    def is_active(self, now: float) -> bool:
        return self.expires_at is None or now < self.expires_at

    def to_dict(self) -> dict:
        return {
            "phase": self.phase.value,
            "set_at": self.set_at,
            "expires_at": self.expires_at,
            "reason": self.reason,
        }

    @classmethod
    def from_dict(cls, data: dict) -> "PhaseOverride":
        """Raises ValueError or TypeError when a timestamp is not a number."""
        expires_at = data.get("expires_at")
        return cls(
            phase=DevPhase.coerce(data.get("phase")),
            set_at=float(data.get("set_at", 0.0)),
            expires_at=float(expires_at) if expires_at is not None else None,
            reason=data.get("reason"),
        )


class PhaseDetector:
    """Classifies development phase for one workspace."""

    def __init__(self, current_branch: Optional[str] = None):
        self._current_branch = current_branch
        self._cache: dict[str, PhaseDetection] = {}
        self._override: Optional[PhaseOverride] = None
        self._compiled = [
            (phase, [re.compile(p, re.IGNORECASE) for p in patterns])
            for phase, patterns in PHASE_PATTERNS
        ]

    @property
    def current_branch(self) -> Optional[str]:
        return self._current_branch

    def set_current_branch(self, branch: Optional[str]) -> None:
        self._current_branch = branch
        self._cache.clear()

    # -------------------------------------------------------------------------
    # Overrides
    # -------------------------------------------------------------------------

    def set_override(
        self,
        phase: DevPhase,
        now: float,
        duration_minutes: Optional[float] = DEFAULT_OVERRIDE_MINUTES,
        reason: Optional[str] = None,
    ) -> PhaseOverride:
        """Force a phase. ``duration_minutes=None`` never expires."""
        expires_at = None if duration_minutes is None else now + duration_minutes * MS_PER_MINUTE
        self._override = PhaseOverride(DevPhase.coerce(phase), now, expires_at, reason)
        logger.info("Phase override set to %s (expires_at=%s)", self._override.phase.value, expires_at)
        return self._override

    def clear_override(self) -> None:
        self._override = None

    def get_override(self, now: float) -> Optional[PhaseOverride]:
        if self._override is not None and not self._override.is_active(now):
            return None
        return self._override

    @property
    def override(self) -> Optional[PhaseOverride]:
        """The stored override, whether or not it has expired."""
        return self._override

    def restore_override(self, override: Optional[PhaseOverride]) -> None:
        self._override = override

    # -------------------------------------------------------------------------
    # Detection
    # -------------------------------------------------------------------------

    def detect(self, branch: Optional[str], now: float) -> PhaseDetection:
        override = self.get_override(now)
        if override is not None:
            return PhaseDetection(
                phase=override.phase,
                confidence=1.0,
                source="override",
                profile=PHASE_PROFILES[override.phase],
                matched=override.reason,
            )

        key = (branch or "").strip()
        cached = self._cache.get(key)
        if cached is not None:
            return cached

        detection = self._classify(key)
        self._cache[key] = detection
        return detection

    def detect_current(self, now: float) -> PhaseDetection:
        return self.detect(self._current_branch, now)

    def _classify(self, branch: str) -> PhaseDetection:
        for phase, patterns in self._compiled:
            for pattern in patterns:
                if pattern.search(branch):
                    return self._result(phase, PATTERN_CONFIDENCE, "pattern", pattern.pattern)

        name = branch.lower()
        if name in TRUNK_BRANCHES:
            return self._result(DevPhase.FEATURE, 0.6, "heuristic", "trunk")
        if TICKET_PATTERN.search(branch):
            return self._result(DevPhase.FEATURE, 0.5, "heuristic", "ticket")
        if FIX_PATTERN.search(branch):
            return self._result(DevPhase.HOTFIX, 0.6, "heuristic", "fix")
        if VERSION_PATTERN.search(branch):
            return self._result(DevPhase.RELEASE, 0.5, "heuristic", "version")
        return self._result(DevPhase.UNKNOWN, 0.3, "default", None)

    @staticmethod
    def _result(phase: DevPhase, confidence: float, source: str, matched: Optional[str]) -> PhaseDetection:
        return PhaseDetection(phase, confidence, source, PHASE_PROFILES[phase], matched)
