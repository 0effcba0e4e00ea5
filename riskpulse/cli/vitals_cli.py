#!/usr/bin/env python3
"""
Vitals CLI Tool
===============

Command-line interface for inspecting and tuning the persisted risk state
of a workspace.

Usage:
    riskpulse status [--project PATH] [--json]
    riskpulse evaluate --minutes N --lines N --files N [--ai F] [--churn P] [--phase PHASE]
    riskpulse phase [BRANCH] [--set PHASE [--minutes N]] [--clear]
    riskpulse outcome --lines N --files N --peak-risk F [--revert] [--bug-fix] ...
    riskpulse calibrate [--target-bad-rate F]
    riskpulse report
"""

import argparse
import asyncio
import logging
import sys
from pathlib import Path

from dotenv import load_dotenv

from riskpulse.commit_risk import CommitPhase, RiskContext, SessionOutcome
from riskpulse.config import EngineConfig, current_millis
from riskpulse.db import close_db, init_db
from riskpulse.output import (
    console,
    print_calibration_profile,
    print_error,
    print_evaluation,
    print_forecast,
    print_guidance,
    print_header,
    print_info,
    print_muted,
    print_phase_detection,
    print_pr_calibration,
    print_recommendation,
    print_report,
    print_success,
    print_threshold_adjustment,
    print_vitals,
    print_warning,
    print_weight_optimization,
    setup_rich_logging,
    spinner,
)
from riskpulse.phase import DevPhase
from riskpulse.reporting import DORAMetrics, TrustMetrics
from riskpulse.state_store import WorkspaceStateStore
from riskpulse.workspace import WorkspaceEngine, WorkspaceRegistry

logger = logging.getLogger(__name__)


def get_project_dir(args) -> Path:
    """Get project directory from args or current directory."""
    if hasattr(args, "project") and args.project:
        return Path(args.project)
    return Path.cwd()


# =============================================================================
# Commands
# =============================================================================
# Each command receives the loaded engine and returns True when the engine
# state changed and must be saved.

def cmd_status(engine: WorkspaceEngine, args, now: float) -> bool:
    """Show vitals, recommendation and agent guidance."""
    vitals = engine.current(now)
    recommendation = engine.should_snapshot(now)
    pressure = engine.pressure_recommendation(now)
    guidance = engine.agent_guidance(now)
    phase = engine.detect_phase(now)

    if args.json:
        console.print_json(data={
            "workspace": engine.workspace_path,
            "vitals": vitals.to_dict(),
            "recommendation": recommendation.to_dict(),
            "pressure": pressure.to_dict(),
            "guidance": guidance.to_dict(),
            "phase": phase.to_dict(),
        })
        return False

    print_header(f"Vitals: {engine.workspace_path}")
    print_vitals(vitals)
    console.print()
    print_recommendation(recommendation, pressure)
    print_guidance(guidance)
    console.print()
    console.print(f"[rp.key]Phase:[/] {phase.phase.value} [rp.muted]({phase.source})[/]")

    forecast = engine.forecast(now)
    if forecast.points:
        print_header("Forecast")
        print_forecast(forecast)
    return False


def cmd_evaluate(engine: WorkspaceEngine, args, now: float) -> bool:
    """Score commit risk for the given session metrics."""
    if args.branch:
        engine.set_branch(args.branch)
    ctx = RiskContext(
        minutes_since_commit=args.minutes,
        lines_changed=args.lines,
        files_changed=args.files,
        ai_fraction=args.ai,
        churn_percent=args.churn,
        phase=CommitPhase.coerce(args.phase) if args.phase else None,
        now=now,
    )
    evaluation = engine.evaluate(ctx)

    if args.json:
        console.print_json(data=evaluation.to_dict())
    else:
        print_header("Commit Risk Evaluation")
        print_evaluation(evaluation)
        if not engine.should_act(evaluation.action, now):
            print_warning("Action is inside its cooldown window; it would not be surfaced now.")

    # Latches carry over to the next evaluation
    return True


def cmd_phase(engine: WorkspaceEngine, args, now: float) -> bool:
    """Detect the development phase, or set/clear a manual override."""
    changed = False
    if args.clear:
        engine.clear_phase_override()
        print_success("Phase override cleared")
        changed = True
    if args.set:
        phase = DevPhase(args.set)
        duration = None if args.minutes <= 0 else args.minutes
        engine.set_phase_override(phase, now, duration, reason=args.reason)
        print_success(f"Phase override set to {phase.value}")
        changed = True
    if args.branch:
        engine.set_branch(args.branch)
        changed = True

    branch = args.branch or engine.phase_detector.current_branch
    detection = engine.detect_phase(now, branch)
    print_phase_detection(detection, branch)
    return changed


def cmd_outcome(engine: WorkspaceEngine, args, now: float) -> bool:
    """Record how a committed session turned out."""
    outcome = SessionOutcome.from_dict({
        "lines_at_commit": args.lines,
        "files_at_commit": args.files,
        "ai_fraction": args.ai,
        "churn_percent": args.churn,
        "max_risk_score": args.peak_risk,
        "had_revert_within_2_weeks": args.revert,
        "had_bug_fix_within_2_weeks": args.bug_fix,
        "minutes_at_commit": args.minutes,
        "phase": args.phase or CommitPhase.FEATURE.value,
        "pr_review_time_min": args.pr_review_minutes,
        "pr_comments_count": args.pr_comments,
        "pr_size_lines": args.pr_size,
    })
    engine.record_outcome(outcome)
    verdict = "bad" if outcome.is_bad else "good"
    print_success(f"Recorded {verdict} outcome ({len(engine.commit_risk.outcomes)} on file)")
    return True


def cmd_calibrate(engine: WorkspaceEngine, args, now: float) -> bool:
    """Run every outcome-driven calibration pass."""
    print_header("Calibration")
    with spinner("Calibrating..."):
        thresholds = engine.recalibrate_thresholds(args.target_bad_rate)
        weights = engine.optimize_weights()
        pr = engine.calibrate_from_pr_metrics()
        profile = engine.apply_calibration()

    print_threshold_adjustment(thresholds)
    print_weight_optimization(weights)
    print_pr_calibration(pr)
    console.print()
    print_calibration_profile(profile)
    return thresholds.adjusted or weights.optimized or pr.adjusted


def cmd_report(engine: WorkspaceEngine, args, now: float) -> bool:
    """Show delivery-health and recommendation-trust summaries."""
    dora = DORAMetrics.from_outcomes(engine.commit_risk.outcomes)
    trust = TrustMetrics.from_stats(engine.behavior_stats())

    if args.json:
        console.print_json(data={"dora": dora.to_dict(), "trust": trust.to_dict()})
        return False

    print_header(f"Report: {engine.workspace_path}")
    print_report(dora, trust)
    return False


COMMANDS = {
    "status": cmd_status,
    "evaluate": cmd_evaluate,
    "phase": cmd_phase,
    "outcome": cmd_outcome,
    "calibrate": cmd_calibrate,
    "report": cmd_report,
}


# =============================================================================
# Runner
# =============================================================================

async def run_command(args, config: EngineConfig) -> None:
    """Load the workspace, run one command and persist any change."""
    project_dir = get_project_dir(args).resolve()
    db_dir = Path(config.db_dir) if config.db_dir else project_dir

    session_maker = await init_db(db_dir)
    store = WorkspaceStateStore(session_maker)
    registry = WorkspaceRegistry(config, store)
    try:
        engine = await registry.init_async(str(project_dir))
        now = current_millis()
        changed = COMMANDS[args.command](engine, args, now)
        if changed:
            await engine.save_async(now)
            logger.debug("Saved state for %s", engine.workspace_path)
        await store.drain()
        registry.drop(str(project_dir), save=False)
    finally:
        await close_db()


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="riskpulse",
        description="Session risk vitals and commit-risk diagnostics",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
    # Show vitals for the current repository
    riskpulse status

    # Score a session: 45 minutes, 320 lines over 9 files, 60% AI
    riskpulse evaluate --minutes 45 --lines 320 --files 9 --ai 0.6

    # Classify a branch, or force a phase for two hours
    riskpulse phase hotfix/login-crash
    riskpulse phase --set refactor --minutes 120

    # Tune thresholds and weights from recorded outcomes
    riskpulse calibrate
        """
    )
    parser.add_argument("--verbose", "-v", action="store_true", help="Enable debug logging")
    parser.add_argument("--config", "-c", help="Path to a riskpulse_config.json file")

    # Shared by every subcommand
    common = argparse.ArgumentParser(add_help=False)
    common.add_argument("--project", "-p", help="Project directory")

    subparsers = parser.add_subparsers(dest="command", help="Available commands")

    status_parser = subparsers.add_parser("status", parents=[common], help="Show session vitals")
    status_parser.add_argument("--json", action="store_true", help="Print JSON instead of tables")

    evaluate_parser = subparsers.add_parser("evaluate", parents=[common], help="Score commit risk")
    evaluate_parser.add_argument("--minutes", type=float, default=0.0, help="Minutes since last commit")
    evaluate_parser.add_argument("--lines", type=int, default=0, help="Lines changed since last commit")
    evaluate_parser.add_argument("--files", type=int, default=0, help="Files changed since last commit")
    evaluate_parser.add_argument("--ai", type=float, default=0.0, help="AI-generated fraction (0-1)")
    evaluate_parser.add_argument("--churn", type=float, default=0.0, help="Churn percent")
    evaluate_parser.add_argument("--phase", choices=[p.value for p in CommitPhase],
                                 help="Commit phase (default: detected from the branch)")
    evaluate_parser.add_argument("--branch", help="Current branch name")
    evaluate_parser.add_argument("--json", action="store_true", help="Print JSON instead of tables")

    phase_parser = subparsers.add_parser("phase", parents=[common], help="Detect or override the development phase")
    phase_parser.add_argument("branch", nargs="?", help="Branch name to classify")
    phase_parser.add_argument("--set", choices=[p.value for p in DevPhase if p is not DevPhase.UNKNOWN],
                              help="Force a phase")
    phase_parser.add_argument("--minutes", type=float, default=120.0,
                              help="Override duration in minutes (0 = until cleared)")
    phase_parser.add_argument("--reason", help="Why the override was set")
    phase_parser.add_argument("--clear", action="store_true", help="Clear the manual override")

    outcome_parser = subparsers.add_parser("outcome", parents=[common], help="Record a session outcome")
    outcome_parser.add_argument("--lines", type=int, required=True, help="Lines in the commit")
    outcome_parser.add_argument("--files", type=int, required=True, help="Files in the commit")
    outcome_parser.add_argument("--peak-risk", type=float, required=True, help="Highest risk score in the session")
    outcome_parser.add_argument("--ai", type=float, default=0.0, help="AI-generated fraction (0-1)")
    outcome_parser.add_argument("--churn", type=float, default=0.0, help="Churn percent")
    outcome_parser.add_argument("--minutes", type=float, help="Minutes since the previous commit")
    outcome_parser.add_argument("--phase", choices=[p.value for p in CommitPhase], help="Commit phase")
    outcome_parser.add_argument("--revert", action="store_true", help="Reverted within two weeks")
    outcome_parser.add_argument("--bug-fix", action="store_true", help="Needed a bug fix within two weeks")
    outcome_parser.add_argument("--pr-review-minutes", type=float, help="PR review time in minutes")
    outcome_parser.add_argument("--pr-comments", type=int, help="PR review comment count")
    outcome_parser.add_argument("--pr-size", type=int, help="PR size in lines")

    calibrate_parser = subparsers.add_parser("calibrate", parents=[common], help="Tune from recorded outcomes")
    calibrate_parser.add_argument("--target-bad-rate", type=float,
                                  help="Target bad-outcome rate (default from config)")

    report_parser = subparsers.add_parser("report", parents=[common], help="Show delivery and trust reports")
    report_parser.add_argument("--json", action="store_true", help="Print JSON instead of tables")

    return parser


def main(argv=None):
    parser = build_parser()
    args = parser.parse_args(argv)

    if not args.command:
        print_info("riskpulse: session risk vitals")
        console.print()
        parser.print_help()
        sys.exit(1)

    setup_rich_logging(logging.DEBUG if args.verbose else logging.WARNING)
    load_dotenv()

    config_path = Path(args.config) if args.config else None
    if config_path is not None and not config_path.exists():
        print_error(f"Config file not found: {config_path}")
        sys.exit(1)
    config = EngineConfig.load(config_path)

    try:
        asyncio.run(run_command(args, config))
    except KeyboardInterrupt:
        print_muted("Interrupted")
        sys.exit(130)


if __name__ == "__main__":
    main()
