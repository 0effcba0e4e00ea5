"""
Database Models for riskpulse
=============================

SQLAlchemy models for persisting per-workspace engine state and the
session-outcome audit log.
"""

from datetime import datetime
from typing import Any, Dict, Optional

from sqlalchemy import JSON, Boolean, DateTime, Float, Integer, String, Text
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column
from sqlalchemy.sql import func


class Base(DeclarativeBase):
    pass


class WorkspaceStateModel(Base):
    """
    Serialized engine state, one row per workspace.

    ``state`` holds weights, thresholds, userTuning, outcomes, latches,
    calibration and behavior buffers, and the active phase override.
    """
    __tablename__ = "workspace_state"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    workspace_path: Mapped[str] = mapped_column(Text, unique=True, index=True)
    version: Mapped[int] = mapped_column(Integer, default=1)
    state: Mapped[Dict[str, Any]] = mapped_column(JSON, default=dict)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())


class SessionOutcomeModel(Base):
    """Append-only log of recorded session outcomes."""
    __tablename__ = "session_outcomes"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    workspace_path: Mapped[str] = mapped_column(Text, index=True)
    recorded_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now(), index=True)

    lines_at_commit: Mapped[int] = mapped_column(Integer, default=0)
    files_at_commit: Mapped[int] = mapped_column(Integer, default=0)
    ai_fraction: Mapped[float] = mapped_column(Float, default=0.0)
    churn_percent: Mapped[float] = mapped_column(Float, default=0.0)
    max_risk_score: Mapped[float] = mapped_column(Float, default=0.0)
    phase: Mapped[str] = mapped_column(String(20), default="feature")
    had_revert: Mapped[bool] = mapped_column(Boolean, default=False)
    had_bug_fix: Mapped[bool] = mapped_column(Boolean, default=False)
    pr_review_time_min: Mapped[Optional[float]] = mapped_column(Float, nullable=True)
    pr_comments_count: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    pr_size_lines: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
