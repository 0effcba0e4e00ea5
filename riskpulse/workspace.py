"""
Workspace Engines and Registry
==============================

One WorkspaceEngine per workspace composes every analytical component:

    VitalsAggregator  -> sensors, trajectory, recommendations, guidance
    PhaseDetector     -> development phase from the branch name
    UserBehaviorLearner / ThresholdCalibrator -> personalized cut-offs
    TrajectoryPredictor -> short-term forecasts
    CommitRiskEngine  -> commit-risk score and hysteresis-gated actions

All public methods take the engine's lock, so a vitals read never
interleaves with a file-change or snapshot write from another thread.

The WorkspaceRegistry owns the engines keyed by workspace path with an
explicit ``init`` / ``drop`` lifecycle.

Usage:
    registry = WorkspaceRegistry()
    engine = registry.init("/path/to/repo")
    engine.on_file_change(FileChangeEvent("src/app.py", is_ai=True, tool="cursor"), now)
    vitals = engine.current(now)
"""

import logging
import threading
from dataclasses import dataclass, replace
from pathlib import Path
from typing import Any, Optional

from riskpulse.behavior import (
    BehaviorObservation,
    BehaviorStats,
    CalibrationProfile,
    ThresholdCalibrator,
    UserBehaviorLearner,
)
from riskpulse.commit_risk import (
    CommitAction,
    CommitRiskEngine,
    PRCalibrationResult,
    RiskContext,
    RiskEvaluation,
    SessionOutcome,
    ThresholdAdjustment,
    WeightOptimization,
    commit_phase_for,
)
from riskpulse.config import EngineConfig
from riskpulse.phase import DevPhase, PhaseDetection, PhaseDetector, PhaseOverride
from riskpulse.state_store import STATE_VERSION, WorkspaceStateStore
from riskpulse.trajectory import Forecast, TrajectoryPredictor
from riskpulse.vitals import (
    AgentGuidance,
    PressureRecommendation,
    SnapshotRecommendation,
    VitalsAggregator,
    VitalsEventBus,
    VitalsListener,
    VitalsSnapshot,
)

logger = logging.getLogger(__name__)


# =============================================================================
# Inbound events
# =============================================================================

@dataclass(frozen=True)
class FileChangeEvent:
    path: str
    is_ai: bool = False
    tool: Optional[str] = None


@dataclass(frozen=True)
class SnapshotEvent:
    """A snapshot was created. ``file_path=None`` covers every modified file."""
    file_path: Optional[str]
    timestamp: float


@dataclass(frozen=True)
class AIDetectionEvent:
    tool: str
    confidence: float


def workspace_key(workspace: str) -> str:
    """Canonical registry key for a workspace path."""
    return Path(workspace).expanduser().resolve().as_posix()


# =============================================================================
# Engine
# =============================================================================

class WorkspaceEngine:
    """All per-workspace analytical state behind one lock."""

    def __init__(
        self,
        workspace_path: str,
        config: Optional[EngineConfig] = None,
        store: Optional[WorkspaceStateStore] = None,
        event_bus: Optional[VitalsEventBus] = None,
    ):
        self.workspace_path = workspace_path
        self.base_config = (config or EngineConfig()).copy()
        self.store = store
        self._lock = threading.RLock()

        self.vitals = VitalsAggregator(self.base_config.copy(), event_bus=event_bus)
        self.phase_detector = PhaseDetector()
        self.learner = UserBehaviorLearner(self.vitals)
        self.calibrator = ThresholdCalibrator(self.learner)
        self.predictor = TrajectoryPredictor()
        self.commit_risk = CommitRiskEngine(self.base_config.commit_risk)

    # -------------------------------------------------------------------------
    # Inbound events
    # -------------------------------------------------------------------------

    def on_file_change(self, event: FileChangeEvent, now: float) -> None:
        with self._lock:
            self.vitals.on_file_change(event.path, event.is_ai, now, tool=event.tool)

    def on_snapshot(self, event: SnapshotEvent, now: Optional[float] = None) -> None:
        at = event.timestamp if now is None else now
        with self._lock:
            self.vitals.on_snapshot(at, event.file_path)
            self.commit_risk.record_snapshot(at)

    def on_ai_detection(self, event: AIDetectionEvent, now: float) -> bool:
        with self._lock:
            return self.vitals.on_ai_detection(event.tool, event.confidence, now)

    def subscribe(self, listener: VitalsListener):
        return self.vitals.events.subscribe(listener)

    # -------------------------------------------------------------------------
    # Vitals
    # -------------------------------------------------------------------------

    def current(self, now: float) -> VitalsSnapshot:
        with self._lock:
            return self.vitals.current(now)

    def should_snapshot(self, now: float) -> SnapshotRecommendation:
        with self._lock:
            return self.vitals.should_snapshot(now)

    def pressure_recommendation(self, now: float) -> PressureRecommendation:
        with self._lock:
            return self.vitals.get_pressure_recommendation(now)

    def agent_guidance(self, now: float) -> AgentGuidance:
        with self._lock:
            return self.vitals.get_agent_guidance(now)

    def record_history_snapshot(self, now: float) -> VitalsSnapshot:
        """Append the current vitals to aggregator and predictor history."""
        with self._lock:
            snapshot = self.vitals.record_history_snapshot(now)
            self.predictor.record(snapshot)
            return snapshot

    def forecast(self, now: float) -> Forecast:
        with self._lock:
            return self.predictor.predict(now)

    def reset_sensors(self) -> None:
        with self._lock:
            self.vitals.reset()
            self.predictor.reset()

    # -------------------------------------------------------------------------
    # Phase
    # -------------------------------------------------------------------------

    def set_branch(self, branch: Optional[str]) -> None:
        with self._lock:
            self.phase_detector.set_current_branch(branch)

    def detect_phase(self, now: float, branch: Optional[str] = None) -> PhaseDetection:
        with self._lock:
            if branch is None:
                return self.phase_detector.detect_current(now)
            return self.phase_detector.detect(branch, now)

    def set_phase_override(
        self,
        phase: DevPhase,
        now: float,
        duration_minutes: Optional[float] = 120.0,
        reason: Optional[str] = None,
    ) -> PhaseOverride:
        with self._lock:
            return self.phase_detector.set_override(phase, now, duration_minutes, reason)

    def clear_phase_override(self) -> None:
        with self._lock:
            self.phase_detector.clear_override()

    # -------------------------------------------------------------------------
    # Commit risk
    # -------------------------------------------------------------------------

    def evaluate(self, ctx: RiskContext) -> RiskEvaluation:
        """Evaluate commit risk; an unset phase comes from the detected phase."""
        with self._lock:
            if ctx.phase is None:
                detected = self.phase_detector.detect_current(ctx.now)
                ctx = replace(ctx, phase=commit_phase_for(detected.phase))
            return self.commit_risk.evaluate(ctx)

    def should_act(self, action: CommitAction, now: float) -> bool:
        with self._lock:
            return self.commit_risk.should_act(action, now)

    def record_prompt(self, now: float) -> None:
        with self._lock:
            self.commit_risk.record_prompt(now)

    def record_outcome(self, outcome: SessionOutcome) -> None:
        with self._lock:
            self.commit_risk.record_outcome(outcome)
        if self.store is not None:
            self.store.record_outcome(self.workspace_path, outcome)

    def recalibrate_thresholds(self, target_bad_rate: Optional[float] = None) -> ThresholdAdjustment:
        with self._lock:
            return self.commit_risk.recalibrate_thresholds(target_bad_rate)

    def optimize_weights(self) -> WeightOptimization:
        with self._lock:
            return self.commit_risk.optimize_weights()

    def calibrate_from_pr_metrics(self) -> PRCalibrationResult:
        with self._lock:
            return self.commit_risk.calibrate_from_pr_metrics()

    # -------------------------------------------------------------------------
    # Behavior
    # -------------------------------------------------------------------------

    def observe_user(self, user_created_snapshot: bool, now: float) -> BehaviorObservation:
        with self._lock:
            return self.learner.observe(user_created_snapshot, now)

    def behavior_stats(self) -> BehaviorStats:
        with self._lock:
            return self.learner.get_stats()

    def calibration_profile(self) -> CalibrationProfile:
        with self._lock:
            return self.calibrator.calibrate()

    def apply_calibration(self) -> CalibrationProfile:
        """Rescale vitals cut-offs from the learned profile, keeping sensor state."""
        with self._lock:
            profile = self.calibrator.calibrate()
            self.vitals.apply_config(self.calibrator.apply(self.base_config, profile))
            logger.info(
                "Applied %s calibration to %s", profile.status.value, self.workspace_path
            )
            return profile

    # -------------------------------------------------------------------------
    # State
    # -------------------------------------------------------------------------

    def to_state(self, now: Optional[float] = None) -> dict[str, Any]:
        with self._lock:
            state = self.commit_risk.to_state()
            override = (
                self.phase_detector.get_override(now) if now is not None
                else self.phase_detector.override
            )
            state.update({
                "version": STATE_VERSION,
                "calibration": self.calibrator.to_state(),
                "phaseOverride": override.to_dict() if override else None,
                "branch": self.phase_detector.current_branch,
                "pressure": {
                    "accumulator": self.vitals.pressure.accumulator,
                    "lastSnapshotAt": self.vitals.pressure.last_snapshot_at,
                },
            })
            return state

    def restore(self, state: Optional[dict[str, Any]]) -> None:
        if not state:
            return
        if not isinstance(state, dict):
            logger.warning("Ignoring malformed state for %s", self.workspace_path)
            return
        with self._lock:
            self.commit_risk.restore(state)
            if not self.calibrator.restore(state.get("calibration")):
                logger.warning("Calibration for %s restored as uncalibrated", self.workspace_path)

            override = state.get("phaseOverride")
            if isinstance(override, dict):
                try:
                    self.phase_detector.restore_override(PhaseOverride.from_dict(override))
                except (TypeError, ValueError):
                    logger.warning("Ignoring malformed phase override for %s", self.workspace_path)
            branch = state.get("branch")
            if isinstance(branch, str):
                self.phase_detector.set_current_branch(branch)

            pressure = state.get("pressure") or {}
            if isinstance(pressure, dict) and "accumulator" in pressure:
                try:
                    self.vitals.pressure.restore(
                        float(pressure.get("accumulator", 0.0)), pressure.get("lastSnapshotAt")
                    )
                except (TypeError, ValueError):
                    logger.warning("Ignoring malformed pressure state for %s", self.workspace_path)

    @classmethod
    def from_state(
        cls,
        workspace_path: str,
        state: Optional[dict[str, Any]],
        config: Optional[EngineConfig] = None,
        store: Optional[WorkspaceStateStore] = None,
        event_bus: Optional[VitalsEventBus] = None,
    ) -> "WorkspaceEngine":
        engine = cls(workspace_path, config, store=store, event_bus=event_bus)
        engine.restore(state)
        return engine

    def save(self, now: Optional[float] = None) -> None:
        """Persist state through the attached store (fire-and-forget)."""
        if self.store is not None:
            self.store.save(self.workspace_path, self.to_state(now))

    async def save_async(self, now: Optional[float] = None) -> None:
        if self.store is not None:
            await self.store.save_async(self.workspace_path, self.to_state(now))

    def close(self) -> None:
        self.vitals.events.close()


# =============================================================================
# Registry
# =============================================================================

class WorkspaceRegistry:
    """
    Owns one WorkspaceEngine per workspace path.

    Dependencies (config, store) are injected once and shared by every
    engine the registry creates.
    """

    def __init__(self, config: Optional[EngineConfig] = None, store: Optional[WorkspaceStateStore] = None):
        self.config = config or EngineConfig()
        self.store = store
        self._engines: dict[str, WorkspaceEngine] = {}
        self._lock = threading.Lock()

    def init(self, workspace: str, state: Optional[dict[str, Any]] = None) -> WorkspaceEngine:
        """Create the engine for a workspace; returns the existing one if present."""
        key = workspace_key(workspace)
        with self._lock:
            engine = self._engines.get(key)
            if engine is not None:
                logger.warning("Workspace %s already initialized; reusing engine", key)
                return engine
            if state is None and self.store is not None:
                state = self.store.load(key)
            engine = WorkspaceEngine.from_state(key, state, self.config, store=self.store)
            self._engines[key] = engine
            logger.info("Initialized workspace engine for %s", key)
            return engine

    async def init_async(self, workspace: str) -> WorkspaceEngine:
        """Create the engine, loading persisted state through the async store API."""
        key = workspace_key(workspace)
        state = await self.store.load_async(key) if self.store is not None else None
        return self.init(workspace, state=state or {})

    def get(self, workspace: str) -> Optional[WorkspaceEngine]:
        with self._lock:
            return self._engines.get(workspace_key(workspace))

    def require(self, workspace: str) -> WorkspaceEngine:
        engine = self.get(workspace)
        if engine is None:
            raise KeyError(f"Workspace not initialized: {workspace}")
        return engine

    def drop(self, workspace: str, save: bool = True) -> bool:
        """Remove a workspace engine, optionally persisting its state first."""
        key = workspace_key(workspace)
        with self._lock:
            engine = self._engines.pop(key, None)
        if engine is None:
            return False
        if save:
            engine.save()
        engine.close()
        logger.info("Dropped workspace engine for %s", key)
        return True

    def workspaces(self) -> list[str]:
        with self._lock:
            return sorted(self._engines)

    def __contains__(self, workspace: str) -> bool:
        return self.get(workspace) is not None

    def __len__(self) -> int:
        with self._lock:
            return len(self._engines)

    def close(self) -> None:
        for key in self.workspaces():
            self.drop(key)
