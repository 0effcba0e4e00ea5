"""
Commit Risk Engine
==================

Combines five weighted risk factors into a single commit-risk score and
drives a hysteresis-gated action state machine:

    none -> auto_snapshot -> suggest_commit -> strong_commit

Factors (each shaped to [0, 1]):
- time:  minutes since last commit, relative to a phase baseline
- lines: lines changed, piecewise-linear bands
- files: files changed
- ai:    fraction of AI-authored change
- churn: percent of recently changed lines changed again

Each action tier is a boolean latch. A latch sets when the score reaches
its enter threshold and only clears once the score falls below its exit
threshold, so scores hovering near a boundary do not flap.

Weights and thresholds self-tune from recorded session outcomes through
explicit, operator-invoked calibration methods; ``evaluate()`` never
calibrates.
"""

import logging
from collections import deque
from dataclasses import dataclass, field
from enum import Enum
from typing import Iterable, Optional

from riskpulse.config import CommitRiskConfig
from riskpulse.phase import DevPhase

logger = logging.getLogger(__name__)

MS_PER_MINUTE = 60_000.0
OUTCOME_LIMIT = 500

MIN_WEIGHT = 0.05
MAX_WEIGHT = 0.5
WEIGHT_STEP = 0.02
THRESHOLD_STEP = 0.05
MAX_FINAL_SCORE = 1.5

MIN_THRESHOLD_SAMPLES = 20
MIN_WEIGHT_SAMPLES = 30
MIN_PR_SAMPLES = 10

PR_SLOW_REVIEW_MINUTES = 120
PR_MANY_COMMENTS = 15
PR_LARGE_LINES = 400

FACTORS = ("time", "lines", "files", "ai", "churn")


class CommitPhase(Enum):
    """Commit-phase bucket used for baselines and multipliers."""
    CRITICAL = "critical"
    FEATURE = "feature"
    REFACTOR = "refactor"
    RELEASE = "release"
    EXPLORATORY = "exploratory"

    @classmethod
    def coerce(cls, value) -> "CommitPhase":
        if isinstance(value, cls):
            return value
        if value is None:
            return cls.FEATURE
        if isinstance(value, DevPhase):
            return commit_phase_for(value)
        try:
            return cls(str(value).lower())
        except ValueError:
            return commit_phase_for(DevPhase.coerce(value))


def commit_phase_for(phase: DevPhase) -> CommitPhase:
    """Map a development phase onto its commit-phase bucket."""
    return {
        DevPhase.HOTFIX: CommitPhase.CRITICAL,
        DevPhase.RELEASE: CommitPhase.RELEASE,
        DevPhase.FEATURE: CommitPhase.FEATURE,
        DevPhase.REFACTOR: CommitPhase.REFACTOR,
        DevPhase.EXPLORATORY: CommitPhase.EXPLORATORY,
    }.get(phase, CommitPhase.FEATURE)


# Minutes before time starts to count, and the point where it saturates
PHASE_BASELINES: dict[CommitPhase, float] = {
    CommitPhase.CRITICAL: 15,
    CommitPhase.FEATURE: 30,
    CommitPhase.REFACTOR: 60,
    CommitPhase.RELEASE: 20,
    CommitPhase.EXPLORATORY: 120,
}
PHASE_HARD_CAPS: dict[CommitPhase, float] = {phase: base * 3 for phase, base in PHASE_BASELINES.items()}

PHASE_MULTIPLIERS: dict[CommitPhase, float] = {
    CommitPhase.CRITICAL: 1.4,
    CommitPhase.FEATURE: 1.0,
    CommitPhase.REFACTOR: 1.1,
    CommitPhase.RELEASE: 1.3,
    CommitPhase.EXPLORATORY: 0.8,
}


class CommitAction(Enum):
    NONE = "none"
    AUTO_SNAPSHOT = "auto_snapshot"
    SUGGEST_COMMIT = "suggest_commit"
    STRONG_COMMIT = "strong_commit"


class Escalation(Enum):
    NONE = "none"
    STATUS_BAR = "status_bar"
    NOTIFICATION = "notification"
    MODAL = "modal"


ACTION_ESCALATION: dict[CommitAction, Escalation] = {
    CommitAction.NONE: Escalation.NONE,
    CommitAction.AUTO_SNAPSHOT: Escalation.STATUS_BAR,
    CommitAction.SUGGEST_COMMIT: Escalation.NOTIFICATION,
    CommitAction.STRONG_COMMIT: Escalation.MODAL,
}


@dataclass(frozen=True)
class HysteresisBand:
    enter: float
    exit: float

    @property
    def gap(self) -> float:
        return self.enter - self.exit


# Fixed per tier; the gap is applied below whatever the current threshold is
HYSTERESIS_BANDS: dict[str, HysteresisBand] = {
    "snapshot": HysteresisBand(0.35, 0.25),
    "prompt": HysteresisBand(0.55, 0.45),
    "strong": HysteresisBand(0.80, 0.70),
}


# =============================================================================
# Value types
# =============================================================================

@dataclass
class RiskWeights:
    """Factor weights; always sum to 1 with each in [0.05, 0.5]."""
    time: float = 0.25
    lines: float = 0.25
    files: float = 0.15
    ai: float = 0.20
    churn: float = 0.15

    def as_dict(self) -> dict[str, float]:
        return {name: getattr(self, name) for name in FACTORS}

    def total(self) -> float:
        return sum(self.as_dict().values())

    @classmethod
    def from_dict(cls, data: Optional[dict]) -> "RiskWeights":
        base = cls().as_dict()
        if not isinstance(data, dict):
            data = {}
        for name, value in data.items():
            if name in base:
                try:
                    base[name] = float(value)
                except (TypeError, ValueError):
                    logger.warning("Ignoring non-numeric weight %s=%r", name, value)
        return cls(**normalize_weights(base))


@dataclass
class RiskThresholds:
    """Enter thresholds per action tier; strictly increasing."""
    auto_snapshot: float = 0.35
    suggest_commit: float = 0.55
    strong_commit: float = 0.80

    BOUNDS = {
        "auto_snapshot": (0.2, 0.5),
        "suggest_commit": (0.3, 0.7),
        "strong_commit": (0.6, 1.0),
    }

    def to_dict(self) -> dict:
        return {
            "auto_snapshot": self.auto_snapshot,
            "suggest_commit": self.suggest_commit,
            "strong_commit": self.strong_commit,
        }

    @classmethod
    def from_dict(cls, data: Optional[dict]) -> "RiskThresholds":
        thresholds = cls()
        thresholds.update(data if isinstance(data, dict) else {})
        return thresholds

    def update(self, values: dict) -> None:
        for name, (low, high) in self.BOUNDS.items():
            if name not in values:
                continue
            try:
                setattr(self, name, max(low, min(high, float(values[name]))))
            except (TypeError, ValueError):
                logger.warning("Ignoring non-numeric threshold %s=%r", name, values[name])
        self.enforce_order()

    def enforce_order(self) -> None:
        self.suggest_commit = max(self.suggest_commit, round(self.auto_snapshot + 0.05, 4))
        self.strong_commit = min(1.0, max(self.strong_commit, round(self.suggest_commit + 0.05, 4)))


@dataclass
class UserTuning:
    """User-chosen cooldown scaling, each in [0.5, 2]."""
    snapshot_interval_scale: float = 1.0
    prompt_interval_scale: float = 1.0

    def to_dict(self) -> dict:
        return {
            "snapshot_interval_scale": self.snapshot_interval_scale,
            "prompt_interval_scale": self.prompt_interval_scale,
        }

    @classmethod
    def from_dict(cls, data: Optional[dict]) -> "UserTuning":
        data = data if isinstance(data, dict) else {}
        return cls(
            snapshot_interval_scale=_clamp(_num(data.get("snapshot_interval_scale"), 1.0), 0.5, 2.0),
            prompt_interval_scale=_clamp(_num(data.get("prompt_interval_scale"), 1.0), 0.5, 2.0),
        )


@dataclass(frozen=True)
class RiskContext:
    """Caller-supplied inputs for one evaluation."""
    minutes_since_commit: float = 0.0
    lines_changed: int = 0
    files_changed: int = 0
    ai_fraction: float = 0.0
    churn_percent: float = 0.0
    phase: Optional[CommitPhase] = None
    now: float = 0.0


@dataclass(frozen=True)
class RiskBreakdown:
    time_risk: float
    lines_risk: float
    files_risk: float
    ai_risk: float
    churn_risk: float
    raw_score: float
    phase_multiplier: float
    final_score: float

    def factors(self) -> dict[str, float]:
        return {
            "time": self.time_risk,
            "lines": self.lines_risk,
            "files": self.files_risk,
            "ai": self.ai_risk,
            "churn": self.churn_risk,
        }

    def to_dict(self) -> dict:
        return {
            "time_risk": self.time_risk,
            "lines_risk": self.lines_risk,
            "files_risk": self.files_risk,
            "ai_risk": self.ai_risk,
            "churn_risk": self.churn_risk,
            "raw_score": self.raw_score,
            "phase_multiplier": self.phase_multiplier,
            "final_score": self.final_score,
        }


@dataclass(frozen=True)
class RiskEvaluation:
    score: float
    breakdown: RiskBreakdown
    action: CommitAction
    escalation: Escalation
    reason: str
    educational: str
    phase: CommitPhase

    def to_dict(self) -> dict:
        return {
            "score": self.score,
            "breakdown": self.breakdown.to_dict(),
            "action": self.action.value,
            "escalation": self.escalation.value,
            "reason": self.reason,
            "educational": self.educational,
            "phase": self.phase.value,
        }


@dataclass
class SessionOutcome:
    """Post-hoc record of how a session's commit turned out."""
    lines_at_commit: int
    files_at_commit: int
    ai_fraction: float
    churn_percent: float
    max_risk_score: float
    had_revert_within_2_weeks: bool = False
    had_bug_fix_within_2_weeks: bool = False
    minutes_at_commit: Optional[float] = None
    phase: CommitPhase = CommitPhase.FEATURE
    pr_review_time_min: Optional[float] = None
    pr_comments_count: Optional[int] = None
    pr_size_lines: Optional[int] = None

    @property
    def is_bad(self) -> bool:
        return self.had_revert_within_2_weeks or self.had_bug_fix_within_2_weeks

    @property
    def has_pr_metrics(self) -> bool:
        return any(
            v is not None for v in (self.pr_review_time_min, self.pr_comments_count, self.pr_size_lines)
        )

    @property
    def pr_is_problematic(self) -> bool:
        return (self.pr_review_time_min or 0) > PR_SLOW_REVIEW_MINUTES or (
            self.pr_comments_count or 0
        ) > PR_MANY_COMMENTS

    def to_dict(self) -> dict:
        return {
            "lines_at_commit": self.lines_at_commit,
            "files_at_commit": self.files_at_commit,
            "ai_fraction": self.ai_fraction,
            "churn_percent": self.churn_percent,
            "max_risk_score": self.max_risk_score,
            "had_revert_within_2_weeks": self.had_revert_within_2_weeks,
            "had_bug_fix_within_2_weeks": self.had_bug_fix_within_2_weeks,
            "minutes_at_commit": self.minutes_at_commit,
            "phase": self.phase.value,
            "pr_review_time_min": self.pr_review_time_min,
            "pr_comments_count": self.pr_comments_count,
            "pr_size_lines": self.pr_size_lines,
        }

    @classmethod
    def from_dict(cls, data: dict) -> "SessionOutcome":
        return cls(
            lines_at_commit=max(0, int(_num(data.get("lines_at_commit"), 0))),
            files_at_commit=max(0, int(_num(data.get("files_at_commit"), 0))),
            ai_fraction=_clamp(_num(data.get("ai_fraction"), 0.0), 0.0, 1.0),
            churn_percent=max(0.0, _num(data.get("churn_percent"), 0.0)),
            max_risk_score=_clamp(_num(data.get("max_risk_score"), 0.0), 0.0, MAX_FINAL_SCORE),
            had_revert_within_2_weeks=bool(data.get("had_revert_within_2_weeks", False)),
            had_bug_fix_within_2_weeks=bool(data.get("had_bug_fix_within_2_weeks", False)),
            minutes_at_commit=_opt_num(data.get("minutes_at_commit")),
            phase=CommitPhase.coerce(data.get("phase", "feature")),
            pr_review_time_min=_opt_num(data.get("pr_review_time_min")),
            pr_comments_count=_opt_int(data.get("pr_comments_count")),
            pr_size_lines=_opt_int(data.get("pr_size_lines")),
        )


@dataclass(frozen=True)
class ThresholdAdjustment:
    adjusted: bool
    reason: str
    sample_size: int = 0
    bad_outcome_rate: Optional[float] = None
    previous: Optional[dict] = None
    current: Optional[dict] = None

    def to_dict(self) -> dict:
        return {
            "adjusted": self.adjusted,
            "reason": self.reason,
            "sample_size": self.sample_size,
            "bad_outcome_rate": self.bad_outcome_rate,
            "previous": self.previous,
            "current": self.current,
        }


@dataclass(frozen=True)
class WeightOptimization:
    optimized: bool
    reason: str
    sample_size: int = 0
    correlations: dict = field(default_factory=dict)
    previous: Optional[dict] = None
    current: Optional[dict] = None

    def to_dict(self) -> dict:
        return {
            "optimized": self.optimized,
            "reason": self.reason,
            "sample_size": self.sample_size,
            "correlations": dict(self.correlations),
            "previous": self.previous,
            "current": self.current,
        }


@dataclass(frozen=True)
class PRCalibrationResult:
    adjusted: bool
    reason: str
    sample_size: int = 0
    problematic_rate: Optional[float] = None
    changes: tuple[str, ...] = ()

    def to_dict(self) -> dict:
        return {
            "adjusted": self.adjusted,
            "reason": self.reason,
            "sample_size": self.sample_size,
            "problematic_rate": self.problematic_rate,
            "changes": list(self.changes),
        }


# =============================================================================
# Risk shaping
# =============================================================================

def _num(value, default: float) -> float:
    try:
        result = float(value)
    except (TypeError, ValueError):
        return default
    return default if result != result else result


def _opt_num(value) -> Optional[float]:
    return None if value is None else _num(value, 0.0)


def _opt_int(value) -> Optional[int]:
    return None if value is None else int(_num(value, 0))


def _clamp(value: float, low: float, high: float) -> float:
    return max(low, min(high, value))


def compute_time_risk(minutes: float, phase: CommitPhase = CommitPhase.FEATURE) -> float:
    baseline = PHASE_BASELINES[phase]
    cap = PHASE_HARD_CAPS[phase]
    elapsed = max(0.0, _num(minutes, 0.0))
    if elapsed <= baseline:
        return 0.0
    elapsed = min(elapsed, cap)
    return _clamp(((elapsed - baseline) / (cap - baseline)) ** 1.5, 0.0, 1.0)


def compute_lines_risk(lines: float) -> float:
    x = max(0.0, _num(lines, 0.0))
    if x <= 50:
        return 0.0
    if x <= 200:
        return 0.3 * (x - 50) / 150
    if x <= 400:
        return 0.3 + 0.3 * (x - 200) / 200
    if x <= 1000:
        return 0.6 + 0.4 * (x - 400) / 600
    return 1.0


def compute_files_risk(files: float) -> float:
    x = max(0.0, _num(files, 0.0))
    if x <= 2:
        return 0.0
    if x <= 6:
        return 0.6 * (x - 2) / 4
    return 1.0


def compute_ai_risk(ai_fraction: float) -> float:
    x = _clamp(_num(ai_fraction, 0.0), 0.0, 1.0)
    if x <= 0.2:
        return 0.0
    return _clamp(((x - 0.2) / 0.8) ** 1.3, 0.0, 1.0)


def compute_churn_risk(churn_percent: float) -> float:
    x = max(0.0, _num(churn_percent, 0.0))
    if x <= 15:
        return 0.3 * x / 15
    if x <= 30:
        return 0.3 + 0.4 * (x - 15) / 15
    if x < 60:
        return 0.7 + 0.3 * (x - 30) / 30
    return 1.0


def normalize_weights(weights: dict[str, float]) -> dict[str, float]:
    """
    Scale weights to sum to 1 with each in [MIN_WEIGHT, MAX_WEIGHT].

    Weights that hit a bound are pinned there and the remainder is spread
    proportionally over the weights that can still absorb it.
    """
    w = {k: max(0.0, _num(weights.get(k), 0.0)) for k in FACTORS}
    total = sum(w.values())
    if total > 0:
        w = {k: v / total for k, v in w.items()}
    else:
        w = {k: 1.0 / len(FACTORS) for k in FACTORS}

    clipped = {k: _clamp(v, MIN_WEIGHT, MAX_WEIGHT) for k, v in w.items()}
    for _ in range(50):
        excess = 1.0 - sum(clipped.values())
        if abs(excess) < 1e-12:
            break
        if excess > 0:
            movable = [k for k in FACTORS if clipped[k] < MAX_WEIGHT]
        else:
            movable = [k for k in FACTORS if clipped[k] > MIN_WEIGHT]
        if not movable:
            break
        base = sum(clipped[k] for k in movable)
        for k in movable:
            share = clipped[k] / base if base > 0 else 1.0 / len(movable)
            clipped[k] = _clamp(clipped[k] + excess * share, MIN_WEIGHT, MAX_WEIGHT)
    return clipped


# =============================================================================
# Engine
# =============================================================================

class CommitRiskEngine:
    """
    Weighted commit-risk scorer with hysteresis-gated actions.

    Provides:
    - Factor shaping and phase-amplified scoring
    - Three independent hysteresis latches (snapshot, prompt, strong)
    - Cooldown gating for acting on an action
    - Outcome-driven threshold, weight and PR-metric calibration
    """

    def __init__(
        self,
        config: Optional[CommitRiskConfig] = None,
        weights: Optional[RiskWeights] = None,
        thresholds: Optional[RiskThresholds] = None,
        user_tuning: Optional[UserTuning] = None,
    ):
        self.config = config or CommitRiskConfig()
        self.weights = weights or RiskWeights()
        self.thresholds = thresholds or RiskThresholds()
        self.user_tuning = user_tuning or UserTuning()
        self.latches: dict[str, bool] = {"snapshot": False, "prompt": False, "strong": False}
        self._outcomes: deque[SessionOutcome] = deque(maxlen=OUTCOME_LIMIT)
        self._last_snapshot_at: Optional[float] = None
        self._last_prompt_at: Optional[float] = None

    # -------------------------------------------------------------------------
    # Scoring
    # -------------------------------------------------------------------------

    def compute_breakdown(self, ctx: RiskContext) -> RiskBreakdown:
        phase = CommitPhase.coerce(ctx.phase)
        factors = {
            "time": compute_time_risk(ctx.minutes_since_commit, phase),
            "lines": compute_lines_risk(ctx.lines_changed),
            "files": compute_files_risk(ctx.files_changed),
            "ai": compute_ai_risk(ctx.ai_fraction),
            "churn": compute_churn_risk(ctx.churn_percent),
        }
        weights = self.weights.as_dict()
        raw = _clamp(sum(weights[k] * factors[k] for k in FACTORS), 0.0, 1.0)
        multiplier = PHASE_MULTIPLIERS[phase]
        return RiskBreakdown(
            time_risk=factors["time"],
            lines_risk=factors["lines"],
            files_risk=factors["files"],
            ai_risk=factors["ai"],
            churn_risk=factors["churn"],
            raw_score=raw,
            phase_multiplier=multiplier,
            final_score=_clamp(raw * multiplier, 0.0, MAX_FINAL_SCORE),
        )

    def _enter_threshold(self, tier: str) -> float:
        return {
            "snapshot": self.thresholds.auto_snapshot,
            "prompt": self.thresholds.suggest_commit,
            "strong": self.thresholds.strong_commit,
        }[tier]

    def _update_latches(self, score: float) -> None:
        for tier, band in HYSTERESIS_BANDS.items():
            enter = self._enter_threshold(tier)
            exit_ = enter - band.gap
            latched = self.latches[tier]
            if not latched and score >= enter:
                self.latches[tier] = True
                logger.debug("Latch %s set at score %.3f", tier, score)
            elif latched and score < exit_:
                self.latches[tier] = False
                logger.debug("Latch %s cleared at score %.3f", tier, score)

    def _select_action(self) -> CommitAction:
        if self.latches["strong"]:
            return CommitAction.STRONG_COMMIT
        if self.latches["prompt"]:
            return CommitAction.SUGGEST_COMMIT
        if self.latches["snapshot"]:
            return CommitAction.AUTO_SNAPSHOT
        return CommitAction.NONE

    def evaluate(self, ctx: RiskContext) -> RiskEvaluation:
        phase = CommitPhase.coerce(ctx.phase)
        breakdown = self.compute_breakdown(ctx)
        self._update_latches(breakdown.final_score)
        action = self._select_action()
        return RiskEvaluation(
            score=breakdown.final_score,
            breakdown=breakdown,
            action=action,
            escalation=ACTION_ESCALATION[action],
            reason=self._reason(breakdown, ctx, phase),
            educational=EDUCATIONAL_MESSAGES[action],
            phase=phase,
        )

    def top_factor(self, breakdown: RiskBreakdown) -> Optional[str]:
        weights = self.weights.as_dict()
        contributions = {k: weights[k] * v for k, v in breakdown.factors().items()}
        name = max(FACTORS, key=lambda k: contributions[k])
        return name if contributions[name] > 0 else None

    def _reason(self, breakdown: RiskBreakdown, ctx: RiskContext, phase: CommitPhase) -> str:
        factor = self.top_factor(breakdown)
        if factor is None:
            return f"No significant risk factors in {phase.value} phase"
        template = REASON_TEMPLATES[factor]
        return template.format(
            minutes=int(max(0.0, _num(ctx.minutes_since_commit, 0.0))),
            lines=max(0, int(_num(ctx.lines_changed, 0))),
            files=max(0, int(_num(ctx.files_changed, 0))),
            ai=int(round(_clamp(_num(ctx.ai_fraction, 0.0), 0.0, 1.0) * 100)),
            churn=int(round(max(0.0, _num(ctx.churn_percent, 0.0)))),
            phase=phase.value,
        )

    # -------------------------------------------------------------------------
    # Cooldowns
    # -------------------------------------------------------------------------

    @property
    def min_snapshot_interval_ms(self) -> float:
        return (
            self.config.min_snapshot_interval_minutes
            * self.user_tuning.snapshot_interval_scale
            * MS_PER_MINUTE
        )

    @property
    def min_prompt_interval_ms(self) -> float:
        return (
            self.config.min_prompt_interval_minutes
            * self.user_tuning.prompt_interval_scale
            * MS_PER_MINUTE
        )

    def record_snapshot(self, now: float) -> None:
        self._last_snapshot_at = now

    def record_prompt(self, now: float) -> None:
        self._last_prompt_at = now

    def should_act(self, action: CommitAction, now: float) -> bool:
        action = CommitAction(action)
        if action == CommitAction.NONE:
            return False
        if action == CommitAction.AUTO_SNAPSHOT:
            last, interval = self._last_snapshot_at, self.min_snapshot_interval_ms
        else:
            last, interval = self._last_prompt_at, self.min_prompt_interval_ms
        return last is None or now - last >= interval

    def set_user_tuning(
        self,
        snapshot_interval_scale: Optional[float] = None,
        prompt_interval_scale: Optional[float] = None,
    ) -> UserTuning:
        if snapshot_interval_scale is not None:
            self.user_tuning.snapshot_interval_scale = _clamp(_num(snapshot_interval_scale, 1.0), 0.5, 2.0)
        if prompt_interval_scale is not None:
            self.user_tuning.prompt_interval_scale = _clamp(_num(prompt_interval_scale, 1.0), 0.5, 2.0)
        return self.user_tuning

    # -------------------------------------------------------------------------
    # Weights / thresholds
    # -------------------------------------------------------------------------

    def set_weights(self, weights: dict[str, float]) -> RiskWeights:
        merged = self.weights.as_dict()
        for name, value in weights.items():
            if name in merged:
                merged[name] = _num(value, merged[name])
        self.weights = RiskWeights(**normalize_weights(merged))
        return self.weights

    def set_thresholds(self, thresholds: dict[str, float]) -> RiskThresholds:
        self.thresholds.update(thresholds)
        return self.thresholds

    # -------------------------------------------------------------------------
    # Outcomes and calibration
    # -------------------------------------------------------------------------

    @property
    def outcomes(self) -> list[SessionOutcome]:
        return list(self._outcomes)

    def record_outcome(self, outcome: SessionOutcome) -> None:
        self._outcomes.append(outcome)

    def load_outcomes(self, outcomes: Iterable[SessionOutcome]) -> None:
        self._outcomes.extend(outcomes)

    def outcome_factors(self, outcome: SessionOutcome) -> dict[str, Optional[float]]:
        return {
            "time": (
                compute_time_risk(outcome.minutes_at_commit, outcome.phase)
                if outcome.minutes_at_commit is not None else None
            ),
            "lines": compute_lines_risk(outcome.lines_at_commit),
            "files": compute_files_risk(outcome.files_at_commit),
            "ai": compute_ai_risk(outcome.ai_fraction),
            "churn": compute_churn_risk(outcome.churn_percent),
        }

    def _shift_prompt_thresholds(self, direction: int, suggest_step: float = THRESHOLD_STEP,
                                 auto_step: Optional[float] = THRESHOLD_STEP) -> None:
        t = self.thresholds
        if direction < 0:
            t.suggest_commit = round(max(0.3, t.suggest_commit - suggest_step), 4)
            if auto_step:
                t.auto_snapshot = round(max(0.2, t.auto_snapshot - auto_step), 4)
        else:
            t.suggest_commit = round(min(0.7, t.suggest_commit + suggest_step), 4)
            if auto_step:
                t.auto_snapshot = round(min(0.5, t.auto_snapshot + auto_step), 4)
        t.enforce_order()

    def recalibrate_thresholds(self, target_bad_rate: Optional[float] = None) -> ThresholdAdjustment:
        """Tune suggest/auto thresholds from the bad-outcome rate of low-scoring sessions."""
        target = self.config.target_bad_outcome_rate if target_bad_rate is None else target_bad_rate
        outcomes = self.outcomes
        if len(outcomes) < MIN_THRESHOLD_SAMPLES:
            return ThresholdAdjustment(
                False,
                f"Need at least {MIN_THRESHOLD_SAMPLES} outcomes, have {len(outcomes)}",
                sample_size=len(outcomes),
            )

        low = [o for o in outcomes if o.max_risk_score < self.thresholds.suggest_commit]
        if not low:
            return ThresholdAdjustment(
                False, "No sessions scored below the suggest threshold", sample_size=len(outcomes)
            )

        rate = sum(1 for o in low if o.is_bad) / len(low)
        previous = self.thresholds.to_dict()

        if rate > target:
            self._shift_prompt_thresholds(-1)
            reason = f"Bad-outcome rate {rate:.0%} above target {target:.0%}; lowered thresholds"
        elif rate < target / 2:
            self._shift_prompt_thresholds(+1)
            reason = f"Bad-outcome rate {rate:.0%} well below target {target:.0%}; raised thresholds"
        else:
            return ThresholdAdjustment(
                False,
                f"Bad-outcome rate {rate:.0%} is within target",
                sample_size=len(outcomes),
                bad_outcome_rate=rate,
            )

        current = self.thresholds.to_dict()
        adjusted = current != previous
        if not adjusted:
            reason += " (already at bound)"
        logger.info(reason)
        return ThresholdAdjustment(adjusted, reason, len(outcomes), rate, previous, current)

    def optimize_weights(self) -> WeightOptimization:
        """Step weights toward the mean-difference correlation proxy of each factor."""
        outcomes = self.outcomes
        if len(outcomes) < MIN_WEIGHT_SAMPLES:
            return WeightOptimization(
                False,
                f"Need at least {MIN_WEIGHT_SAMPLES} outcomes, have {len(outcomes)}",
                sample_size=len(outcomes),
            )

        bad = [self.outcome_factors(o) for o in outcomes if o.is_bad]
        good = [self.outcome_factors(o) for o in outcomes if not o.is_bad]
        if not bad or not good:
            return WeightOptimization(
                False, "Need both good and bad outcomes to compare", sample_size=len(outcomes)
            )

        correlations: dict[str, float] = {}
        for name in FACTORS:
            bad_values = [f[name] for f in bad if f[name] is not None]
            good_values = [f[name] for f in good if f[name] is not None]
            if bad_values and good_values:
                correlations[name] = (
                    sum(bad_values) / len(bad_values) - sum(good_values) / len(good_values)
                )

        total = sum(abs(c) for c in correlations.values())
        if total == 0:
            return WeightOptimization(
                False, "No factor separates good from bad outcomes",
                sample_size=len(outcomes), correlations=correlations,
            )

        current = self.weights.as_dict()
        # Factors without data keep their current weight share
        unmeasured = sum(current[k] for k in FACTORS if k not in correlations)
        targets = {
            k: _clamp(abs(correlations[k]) / total * (1.0 - unmeasured), MIN_WEIGHT, MAX_WEIGHT)
            if k in correlations else current[k]
            for k in FACTORS
        }

        stepped = dict(current)
        for k in FACTORS:
            diff = targets[k] - current[k]
            if abs(diff) > WEIGHT_STEP / 2:
                stepped[k] = current[k] + (WEIGHT_STEP if diff > 0 else -WEIGHT_STEP)

        self.weights = RiskWeights(**normalize_weights(stepped))
        new = self.weights.as_dict()
        changed = any(abs(new[k] - current[k]) > 1e-9 for k in FACTORS)
        reason = "Weights moved toward outcome correlations" if changed else "Weights already near targets"
        logger.info(reason)
        return WeightOptimization(changed, reason, len(outcomes), correlations, current, new)

    def calibrate_from_pr_metrics(self) -> PRCalibrationResult:
        """Adjust thresholds and the lines weight from pull-request review signals."""
        prs = [o for o in self.outcomes if o.has_pr_metrics]
        if len(prs) < MIN_PR_SAMPLES:
            return PRCalibrationResult(
                False, f"Need at least {MIN_PR_SAMPLES} sessions with PR metrics, have {len(prs)}",
                sample_size=len(prs),
            )

        problematic = [o for o in prs if o.pr_is_problematic]
        rate = len(problematic) / len(prs)
        changes: list[str] = []

        low_scoring_problems = [o for o in problematic if o.max_risk_score < self.thresholds.suggest_commit]
        review_times = [o.pr_review_time_min for o in prs if o.pr_review_time_min is not None]
        avg_review = sum(review_times) / len(review_times) if review_times else None

        if rate > 0.30 and len(low_scoring_problems) > len(problematic) / 2:
            before = self.thresholds.to_dict()
            self._shift_prompt_thresholds(-1)
            if self.thresholds.to_dict() != before:
                changes.append("lowered suggest/auto thresholds")
        elif rate < 0.15 and avg_review is not None and avg_review < PR_SLOW_REVIEW_MINUTES / 2:
            before = self.thresholds.to_dict()
            self._shift_prompt_thresholds(+1, suggest_step=THRESHOLD_STEP / 2, auto_step=None)
            if self.thresholds.to_dict() != before:
                changes.append("raised suggest threshold slightly")

        large = [o for o in prs if (o.pr_size_lines or 0) > PR_LARGE_LINES]
        if large and problematic:
            large_rate = sum(1 for o in large if o.pr_is_problematic) / len(large)
            if large_rate > rate * 1.5:
                weights = self.weights.as_dict()
                weights["lines"] += WEIGHT_STEP
                self.weights = RiskWeights(**normalize_weights(weights))
                changes.append("increased lines weight")

        if not changes:
            return PRCalibrationResult(
                False, f"PR problem rate {rate:.0%} needs no adjustment",
                sample_size=len(prs), problematic_rate=rate,
            )
        reason = f"PR problem rate {rate:.0%}: " + ", ".join(changes)
        logger.info(reason)
        return PRCalibrationResult(True, reason, len(prs), rate, tuple(changes))

    # -------------------------------------------------------------------------
    # State
    # -------------------------------------------------------------------------

    def to_state(self) -> dict:
        return {
            "weights": self.weights.as_dict(),
            "thresholds": self.thresholds.to_dict(),
            "userTuning": self.user_tuning.to_dict(),
            "outcomes": [o.to_dict() for o in self._outcomes],
            "latches": dict(self.latches),
            "lastSnapshotAt": self._last_snapshot_at,
            "lastPromptAt": self._last_prompt_at,
        }

    def restore(self, state: Optional[dict]) -> None:
        state = state or {}
        self.weights = RiskWeights.from_dict(state.get("weights"))
        self.thresholds = RiskThresholds.from_dict(state.get("thresholds"))
        self.user_tuning = UserTuning.from_dict(state.get("userTuning"))
        latches = state.get("latches")
        if not isinstance(latches, dict):
            latches = {}
        self.latches = {tier: bool(latches.get(tier, False)) for tier in HYSTERESIS_BANDS}
        self._last_snapshot_at = _opt_num(state.get("lastSnapshotAt"))
        self._last_prompt_at = _opt_num(state.get("lastPromptAt"))

        self._outcomes.clear()
        raw_outcomes = state.get("outcomes") or []
        if not isinstance(raw_outcomes, list):
            logger.warning("Ignoring malformed outcomes buffer")
            raw_outcomes = []
        for item in raw_outcomes[-OUTCOME_LIMIT:]:
            if isinstance(item, dict):
                self._outcomes.append(SessionOutcome.from_dict(item))

    def reset_latches(self) -> None:
        self.latches = {tier: False for tier in HYSTERESIS_BANDS}


REASON_TEMPLATES: dict[str, str] = {
    "time": "{minutes} minutes since last commit is long for {phase} work",
    "lines": "{lines} lines changed since last commit in {phase} phase",
    "files": "{files} files changed since last commit in {phase} phase",
    "ai": "{ai}% of recent changes are AI-generated in {phase} phase",
    "churn": "{churn}% of recent lines were rewritten again in {phase} phase",
}

EDUCATIONAL_MESSAGES: dict[CommitAction, str] = {
    CommitAction.NONE: "Changes are small and recent. Keep going.",
    CommitAction.AUTO_SNAPSHOT: (
        "A quiet snapshot keeps this work recoverable without interrupting you."
    ),
    CommitAction.SUGGEST_COMMIT: (
        "Smaller commits are easier to review and to revert. This is a good point to commit."
    ),
    CommitAction.STRONG_COMMIT: (
        "Large uncommitted changes are where reverts and follow-up bug fixes come from. "
        "Commit now before going further."
    ),
}
