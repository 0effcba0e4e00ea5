"""
Rich Output Utilities
=====================

Terminal output for the riskpulse diagnostic tooling using the Rich library.
Provides the shared console, a semantic theme, message helpers and
renderers for vitals, commit-risk evaluations and calibration results.
"""

import logging
import os
import sys
from contextlib import contextmanager
from dataclasses import dataclass
from typing import Any, Iterator, Optional, Sequence

from rich.console import Console, RenderableType
from rich.logging import RichHandler
from rich.panel import Panel
from rich.rule import Rule
from rich.status import Status
from rich.table import Table
from rich.text import Text
from rich.theme import Theme

from riskpulse.behavior import CalibrationProfile
from riskpulse.commit_risk import (
    CommitAction,
    PRCalibrationResult,
    RiskEvaluation,
    ThresholdAdjustment,
    WeightOptimization,
)
from riskpulse.phase import PhaseDetection
from riskpulse.reporting import DORAMetrics, TrustMetrics
from riskpulse.trajectory import Forecast
from riskpulse.vitals import (
    AgentGuidance,
    PressureRecommendation,
    SnapshotRecommendation,
    Trajectory,
    Urgency,
    VitalsSnapshot,
)


# =============================================================================
# Color Scheme & Theme
# =============================================================================

@dataclass(frozen=True)
class PulseColors:
    """riskpulse color palette using hex for truecolor terminal support."""
    ink: str = "#E6E6E6"       # primary text
    dim: str = "#9AA4B2"       # muted text
    heat: str = "#F97316"      # warm accent
    calm: str = "#38BDF8"      # cool accent
    steel: str = "#94A3B8"     # secondary accent
    ok: str = "#22C55E"
    warn: str = "#FBBF24"
    err: str = "#EF4444"


def riskpulse_theme(colors: PulseColors = PulseColors()) -> Theme:
    """
    Rich Theme for the riskpulse CLI.

    Style names are semantic so you can use them everywhere:
      console.print("...", style="rp.ok")
    """
    return Theme(
        {
            "rp.banner": f"bold {colors.calm}",
            "rp.border": f"{colors.calm}",
            "rp.accent": f"bold {colors.heat}",
            "rp.muted": f"{colors.dim}",
            "rp.text": f"{colors.ink}",

            # Status
            "rp.ok": f"bold {colors.ok}",
            "rp.warn": f"bold {colors.warn}",
            "rp.err": f"bold {colors.err}",
            "rp.info": f"{colors.calm}",

            # Data display
            "rp.key": f"{colors.steel}",
            "rp.value": f"{colors.ink}",
            "rp.number": f"bold {colors.heat}",
            "rp.path": f"{colors.calm}",

            "rp.table.header": f"bold {colors.calm}",
        }
    )


# =============================================================================
# Unicode / ASCII Fallbacks
# =============================================================================

def _can_use_unicode() -> bool:
    """Check if the terminal can handle the box and bullet characters we use."""
    if os.name == "nt":
        try:
            encoding = sys.stdout.encoding or "utf-8"
            "✓✗•█".encode(encoding)
            return True
        except (UnicodeEncodeError, LookupError, AttributeError):
            return False
    return True


_UNICODE_ICONS = {
    "check": "✓",
    "cross": "✗",
    "warning": "⚠",
    "info": "ℹ",
    "bar_filled": "█",
    "bar_empty": "░",
    "bullet": "•",
    "arrow_right": "→",
    "blocked": "⛔",
}

_ASCII_ICONS = {
    "check": "[OK]",
    "cross": "[X]",
    "warning": "[!]",
    "info": "[i]",
    "bar_filled": "#",
    "bar_empty": "-",
    "bullet": "-",
    "arrow_right": "->",
    "blocked": "[BLOCKED]",
}

_ICONS = _UNICODE_ICONS if _can_use_unicode() else _ASCII_ICONS


def icon(name: str) -> str:
    """Get an icon by name, using ASCII fallback if needed."""
    return _ICONS.get(name, "")


# =============================================================================
# Global Console Instance
# =============================================================================

console = Console(theme=riskpulse_theme())

def setup_rich_logging(level: int = logging.INFO) -> None:
    """
    Configure Python logging to use Rich for log output.

    Usage:
        setup_rich_logging(logging.DEBUG)
        logging.getLogger("riskpulse").debug("pressure updated")
    """
    logging.basicConfig(
        level=level,
        format="%(message)s",
        datefmt="[%X]",
        handlers=[RichHandler(
            console=console,
            show_path=False,
            markup=False,
            rich_tracebacks=True,
        )],
        force=True,
    )


# =============================================================================
# Basic Message Functions
# =============================================================================

def print_success(message: str) -> None:
    console.print(f"[rp.ok]{icon('check')} {message}[/]")


def print_error(message: str) -> None:
    console.print(f"[rp.err]{icon('cross')} {message}[/]")


def print_warning(message: str) -> None:
    console.print(f"[rp.warn]{icon('warning')} {message}[/]")


def print_info(message: str) -> None:
    console.print(f"[rp.info]{icon('info')} {message}[/]")


def print_muted(message: str) -> None:
    console.print(f"[rp.muted]{message}[/]")


def print_header(title: str, style: str = "rp.accent") -> None:
    """Print a prominent section header with rule lines."""
    console.print()
    console.print(Rule(f"[{style}]{title}[/]", style=style))
    console.print()


# =============================================================================
# Tables & Panels
# =============================================================================

def print_key_value_table(
    data: dict[str, Any],
    *,
    title: Optional[str] = None,
    border_style: str = "rp.border",
) -> None:
    """Print multiple key-value pairs in a clean table format."""
    table = Table(show_header=False, box=None, padding=(0, 2))
    table.add_column("Key", style="rp.key")
    table.add_column("Value", style="rp.value")

    for key, value in data.items():
        table.add_row(key, value if isinstance(value, Text) else str(value))

    if title:
        console.print(Panel(table, title=f"[bold]{title}[/]", border_style=border_style))
    else:
        console.print(table)


def create_table(
    *,
    title: Optional[str] = None,
    columns: Optional[list[str]] = None,
    show_header: bool = True,
    border_style: str = "rp.border",
    header_style: str = "rp.table.header",
) -> Table:
    """Create a styled Rich Table with the riskpulse theme."""
    table = Table(
        title=title,
        show_header=show_header,
        header_style=header_style,
        border_style=border_style,
        title_style="rp.accent",
    )

    if columns:
        for col in columns:
            table.add_column(col)

    return table


def print_panel(
    content: RenderableType,
    *,
    title: Optional[str] = None,
    subtitle: Optional[str] = None,
    border_style: str = "rp.border",
    padding: tuple = (1, 2),
) -> None:
    """Print content in a styled panel."""
    console.print(Panel(
        content,
        title=f"[bold]{title}[/]" if title else None,
        subtitle=f"[rp.muted]{subtitle}[/]" if subtitle else None,
        border_style=border_style,
        padding=padding,
    ))


def print_list(items: Sequence[str], *, style: str = "rp.text", empty: str = "none") -> None:
    if not items:
        console.print(f"  [rp.muted]{empty}[/]")
        return
    for item in items:
        console.print(f"  [rp.accent]{icon('bullet')}[/] [{style}]{item}[/]")


@contextmanager
def spinner(message: str, *, style: str = "rp.accent") -> Iterator[Status]:
    """
    Context manager for showing a spinner during long operations.

    Usage:
        with spinner("Loading state..."):
            load_state()
    """
    with console.status(f"[{style}]{message}[/]", spinner="dots") as status:
        yield status


# =============================================================================
# Gauges
# =============================================================================

def gauge(value: float, *, invert: bool = False, width: int = 20) -> str:
    """
    Render a 0-100 value as an inline bar.

    Colors escalate with the value; ``invert`` flips that for readings
    where higher is healthier (oxygen).
    """
    value = max(0.0, min(100.0, value))
    severity = 100.0 - value if invert else value
    if severity >= 80:
        color = "rp.err"
    elif severity >= 50:
        color = "rp.warn"
    else:
        color = "rp.ok"

    filled = int(round(width * value / 100.0))
    bar = f"[{color}]{icon('bar_filled') * filled}[/][rp.muted]{icon('bar_empty') * (width - filled)}[/]"
    return f"{bar} [rp.number]{value:5.1f}[/]"


_TRAJECTORY_STYLES = {
    Trajectory.STABLE: "rp.ok",
    Trajectory.RECOVERING: "rp.info",
    Trajectory.ESCALATING: "rp.warn",
    Trajectory.CRITICAL: "rp.err",
}

_URGENCY_STYLES = {
    Urgency.NONE: "rp.muted",
    Urgency.LOW: "rp.info",
    Urgency.MEDIUM: "rp.warn",
    Urgency.HIGH: "rp.err",
    Urgency.CRITICAL: "rp.err",
}

_ACTION_STYLES = {
    CommitAction.NONE: "rp.ok",
    CommitAction.AUTO_SNAPSHOT: "rp.info",
    CommitAction.SUGGEST_COMMIT: "rp.warn",
    CommitAction.STRONG_COMMIT: "rp.err",
}


def _styled(value: str, style: str) -> str:
    return f"[{style}]{value}[/]"


def _percent(value: Optional[float]) -> str:
    return "n/a" if value is None else f"{value * 100:.1f}%"


def _number(value: Optional[float], fmt: str = "{:.1f}") -> str:
    return "n/a" if value is None else fmt.format(value)


# =============================================================================
# Renderers
# =============================================================================

def print_vitals(vitals: VitalsSnapshot) -> None:
    """Print the four sensor readings and the trajectory."""
    table = create_table(columns=["Vital", "Level", "Reading"])
    table.add_row(
        "Pulse",
        vitals.pulse.level.value,
        f"[rp.number]{vitals.pulse.changes_per_minute:.1f}[/] [rp.muted]changes/min[/]",
    )
    tool = vitals.temperature.detected_tool
    table.add_row(
        "Temperature",
        vitals.temperature.level.value,
        gauge(vitals.temperature.ai_percentage) + (f" [rp.muted]({tool})[/]" if tool else ""),
    )
    table.add_row("Pressure", "", gauge(vitals.pressure.value))
    table.add_row("Oxygen", "", gauge(vitals.oxygen.value, invert=True))
    console.print(table)

    style = _TRAJECTORY_STYLES.get(vitals.trajectory, "rp.text")
    console.print(f"Trajectory: {_styled(vitals.trajectory.value, style)}")
    touched = sorted(vitals.pressure.critical_files_touched)
    if touched:
        console.print(f"[rp.warn]Critical files touched:[/] [rp.path]{', '.join(touched)}[/]")


def print_recommendation(
    recommendation: SnapshotRecommendation,
    pressure: Optional[PressureRecommendation] = None,
) -> None:
    style = _URGENCY_STYLES.get(recommendation.urgency, "rp.text")
    verdict = "snapshot recommended" if recommendation.should else "no snapshot needed"
    body = f"{_styled(verdict, style)} [rp.muted]({recommendation.urgency.value})[/]\n{recommendation.reason}"
    if pressure is not None:
        body += (
            f"\n\n[rp.key]Pressure action:[/] {pressure.action.value} "
            f"[rp.muted](urgency {pressure.urgency})[/]\n[rp.muted]{pressure.educational}[/]"
        )
    print_panel(body, title="Recommendation", border_style=style)


def print_guidance(guidance: AgentGuidance) -> None:
    console.print(f"[rp.key]Suggestion:[/] {guidance.suggestion}")
    console.print("[rp.key]Risky files:[/]")
    print_list(guidance.risky_files, style="rp.path")
    console.print("[rp.key]Safe operations:[/]")
    print_list(guidance.safe_operations, style="rp.ok")
    if guidance.blocked_operations:
        console.print(f"[rp.err]{icon('blocked')} Blocked operations:[/]")
        print_list(guidance.blocked_operations, style="rp.err")


def print_forecast(forecast: Forecast) -> None:
    if not forecast.points:
        print_muted("No forecast yet: not enough recorded history.")
        return
    table = create_table(columns=["Minutes ahead", "Pressure", "Oxygen", "Trajectory"])
    for point in forecast.points:
        table.add_row(
            f"+{point.minutes_ahead}",
            f"[rp.number]{point.pressure:.1f}[/]",
            f"[rp.number]{point.oxygen:.1f}[/]",
            _styled(point.trajectory.value, _TRAJECTORY_STYLES.get(point.trajectory, "rp.text")),
        )
    console.print(table)
    if forecast.time_to_state_change_ms is not None:
        console.print(
            f"[rp.key]Time to state change:[/] [rp.number]{forecast.time_to_state_change_ms / 60_000:.1f}[/] min"
        )
    console.print(f"[rp.key]Confidence:[/] {_percent(forecast.confidence)}")


def print_evaluation(evaluation: RiskEvaluation) -> None:
    """Print a commit-risk evaluation with its factor breakdown."""
    breakdown = evaluation.breakdown
    table = create_table(columns=["Factor", "Risk"])
    for name, value in breakdown.factors().items():
        table.add_row(name, gauge(value * 100, width=16))
    console.print(table)

    style = _ACTION_STYLES.get(evaluation.action, "rp.text")
    print_key_value_table({
        "Phase": evaluation.phase.value,
        "Raw score": f"{breakdown.raw_score:.3f}",
        "Phase multiplier": f"{breakdown.phase_multiplier:.2f}",
        "Final score": f"{evaluation.score:.3f}",
        "Action": Text.from_markup(_styled(evaluation.action.value, style)),
        "Escalation": evaluation.escalation.value,
    }, title="Commit Risk")
    if evaluation.action is not CommitAction.NONE:
        console.print(evaluation.reason)
        print_muted(evaluation.educational)


def print_phase_detection(detection: PhaseDetection, branch: Optional[str] = None) -> None:
    profile = detection.profile
    data = {}
    if branch is not None:
        data["Branch"] = branch
    data.update({
        "Phase": detection.phase.value,
        "Confidence": _percent(detection.confidence),
        "Source": detection.source,
        "Matched": detection.matched or "-",
        "Interval multiplier": f"{profile.interval_multiplier:.2f}",
        "Risk multiplier": f"{profile.risk_multiplier:.2f}",
        "Max lines before snapshot": profile.max_lines_before_snapshot,
        "Recommended interval": f"{profile.recommended_interval_minutes:g} min",
        "AI-adjusted interval": f"{profile.ai_adjusted_interval_minutes:g} min",
    })
    print_key_value_table(data, title="Development Phase")


def print_calibration_profile(profile: CalibrationProfile) -> None:
    print_key_value_table({
        "Status": profile.status.value,
        "Observations": profile.observation_count,
        "Risk profile": profile.risk_profile.value,
        "Risk tolerance": f"{profile.risk_tolerance:.2f}",
        "Confidence": _percent(profile.confidence),
        "Multipliers": ", ".join(f"{k}={v:.2f}" for k, v in profile.threshold_adjustments.items()),
    }, title="Behavior Calibration")


def _print_result(title: str, changed: bool, reason: str, sample_size: int) -> None:
    if changed:
        print_success(f"{title}: {reason}")
    else:
        print_muted(f"{title}: {reason}")
    console.print(f"  [rp.key]samples:[/] [rp.number]{sample_size}[/]")


def print_threshold_adjustment(result: ThresholdAdjustment) -> None:
    _print_result("Thresholds", result.adjusted, result.reason, result.sample_size)
    if result.bad_outcome_rate is not None:
        console.print(f"  [rp.key]bad outcome rate:[/] {_percent(result.bad_outcome_rate)}")
    if result.adjusted and result.previous and result.current:
        for tier, value in result.current.items():
            before = result.previous.get(tier)
            console.print(f"  [rp.key]{tier}:[/] {_number(before, '{:.3f}')} {icon('arrow_right')} {value:.3f}")


def print_weight_optimization(result: WeightOptimization) -> None:
    _print_result("Weights", result.optimized, result.reason, result.sample_size)
    if result.optimized and result.current:
        table = create_table(columns=["Factor", "Correlation", "Before", "After"])
        for name, value in result.current.items():
            corr = result.correlations.get(name)
            before = (result.previous or {}).get(name)
            table.add_row(name, _number(corr, "{:+.3f}"), _number(before, "{:.3f}"), f"{value:.3f}")
        console.print(table)


def print_pr_calibration(result: PRCalibrationResult) -> None:
    _print_result("PR calibration", result.adjusted, result.reason, result.sample_size)
    if result.problematic_rate is not None:
        console.print(f"  [rp.key]problematic PR rate:[/] {_percent(result.problematic_rate)}")
    for change in result.changes:
        console.print(f"  [rp.accent]{icon('bullet')}[/] {change}")


def print_report(dora: DORAMetrics, trust: TrustMetrics) -> None:
    print_key_value_table({
        "Sessions": dora.sessions,
        "Change failure rate": _percent(dora.change_failure_rate if dora.sessions else None),
        "Revert rate": _percent(dora.revert_rate if dora.sessions else None),
        "Mean batch size (lines)": _number(dora.mean_batch_lines),
        "Mean peak risk": _number(dora.mean_peak_risk, "{:.3f}"),
        "Mean PR review time (min)": _number(dora.mean_pr_review_minutes),
    }, title="Delivery Health")
    print_key_value_table({
        "Observations": trust.observations,
        "Alignment rate": _percent(trust.alignment_rate if trust.observations else None),
        "Acceptance rate": _percent(trust.acceptance_rate),
        "Early snapshot rate": _percent(trust.early_rate if trust.observations else None),
    }, title="Recommendation Trust")
