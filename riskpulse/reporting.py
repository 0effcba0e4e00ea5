"""
Reporting Consumers
===================

Aggregate views over recorded session outcomes and behavior statistics,
used by diagnostic tooling. These read engine output; they never feed back
into scoring.
"""

from dataclasses import dataclass
from typing import Iterable, Optional

from riskpulse.behavior import BehaviorStats
from riskpulse.commit_risk import SessionOutcome


def _mean(values: list[float]) -> Optional[float]:
    return sum(values) / len(values) if values else None


@dataclass(frozen=True)
class DORAMetrics:
    """Delivery-health proxies computed from session outcomes."""
    sessions: int
    change_failure_rate: float
    revert_rate: float
    mean_batch_lines: Optional[float]
    mean_peak_risk: Optional[float]
    mean_pr_review_minutes: Optional[float]

    @classmethod
    def from_outcomes(cls, outcomes: Iterable[SessionOutcome]) -> "DORAMetrics":
        items = list(outcomes)
        total = len(items)
        return cls(
            sessions=total,
            change_failure_rate=sum(1 for o in items if o.is_bad) / total if total else 0.0,
            revert_rate=sum(1 for o in items if o.had_revert_within_2_weeks) / total if total else 0.0,
            mean_batch_lines=_mean([float(o.lines_at_commit) for o in items]),
            mean_peak_risk=_mean([o.max_risk_score for o in items]),
            mean_pr_review_minutes=_mean(
                [o.pr_review_time_min for o in items if o.pr_review_time_min is not None]
            ),
        )

    def to_dict(self) -> dict:
        return {
            "sessions": self.sessions,
            "change_failure_rate": self.change_failure_rate,
            "revert_rate": self.revert_rate,
            "mean_batch_lines": self.mean_batch_lines,
            "mean_peak_risk": self.mean_peak_risk,
            "mean_pr_review_minutes": self.mean_pr_review_minutes,
        }


@dataclass(frozen=True)
class TrustMetrics:
    """How closely the user follows the engine's snapshot recommendations."""
    observations: int
    alignment_rate: float
    acceptance_rate: Optional[float]
    early_rate: float

    @classmethod
    def from_stats(cls, stats: BehaviorStats) -> "TrustMetrics":
        total = stats.total
        ignored = stats.missed
        return cls(
            observations=total,
            alignment_rate=stats.aligned / total if total else 0.0,
            acceptance_rate=(total - ignored) / total if total else None,
            early_rate=stats.early_ratio,
        )

    def to_dict(self) -> dict:
        return {
            "observations": self.observations,
            "alignment_rate": self.alignment_rate,
            "acceptance_rate": self.acceptance_rate,
            "early_rate": self.early_rate,
        }
