"""
Workspace State Store
=====================

Persists per-workspace engine state as a JSON document keyed by workspace
path, and appends recorded session outcomes to an audit table.

Writes from synchronous code are fire-and-forget: inside a running event
loop they are scheduled as tasks, otherwise they run to completion with
``asyncio.run``. Losing the most recent write on a crash is acceptable;
the next save rewrites the whole document.

Storage: <db_dir>/.riskpulse/riskpulse.db
"""

import asyncio
import logging
from typing import Any, Optional

from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from riskpulse.commit_risk import SessionOutcome
from riskpulse.db.models import SessionOutcomeModel, WorkspaceStateModel

logger = logging.getLogger(__name__)

STATE_VERSION = 1


class WorkspaceStateStore:
    """Async SQLAlchemy persistence for workspace engine state."""

    def __init__(self, session_maker: Optional[async_sessionmaker[AsyncSession]] = None):
        self._session_maker = session_maker
        self._pending: set[asyncio.Task] = set()

    def set_session_maker(self, session_maker: async_sessionmaker[AsyncSession]) -> None:
        """Set the session maker for async operations."""
        self._session_maker = session_maker

    @property
    def is_connected(self) -> bool:
        return self._session_maker is not None

    # =========================================================================
    # Async Database Methods
    # =========================================================================

    async def load_async(self, workspace_path: str) -> Optional[dict[str, Any]]:
        """Load the state document for a workspace, or None."""
        if self._session_maker is None:
            return None

        async with self._session_maker() as session:
            result = await session.execute(
                select(WorkspaceStateModel).where(WorkspaceStateModel.workspace_path == workspace_path)
            )
            row = result.scalar_one_or_none()

        if row is None:
            return None
        if not isinstance(row.state, dict):
            logger.warning("Stored state for %s is not a JSON object; ignoring", workspace_path)
            return None
        return dict(row.state)

    async def save_async(self, workspace_path: str, state: dict[str, Any]) -> None:
        """Insert or replace the state document for a workspace."""
        if self._session_maker is None:
            return

        async with self._session_maker() as session:
            result = await session.execute(
                select(WorkspaceStateModel.id).where(WorkspaceStateModel.workspace_path == workspace_path)
            )
            existing = result.scalar_one_or_none()

            if existing is not None:
                await session.execute(
                    update(WorkspaceStateModel)
                    .where(WorkspaceStateModel.workspace_path == workspace_path)
                    .values(state=state, version=STATE_VERSION)
                )
            else:
                session.add(WorkspaceStateModel(
                    workspace_path=workspace_path,
                    state=state,
                    version=STATE_VERSION,
                ))
            await session.commit()

    async def record_outcome_async(self, workspace_path: str, outcome: SessionOutcome) -> None:
        """Append an outcome to the audit log."""
        if self._session_maker is None:
            return

        async with self._session_maker() as session:
            session.add(SessionOutcomeModel(
                workspace_path=workspace_path,
                lines_at_commit=outcome.lines_at_commit,
                files_at_commit=outcome.files_at_commit,
                ai_fraction=outcome.ai_fraction,
                churn_percent=outcome.churn_percent,
                max_risk_score=outcome.max_risk_score,
                phase=outcome.phase.value,
                had_revert=outcome.had_revert_within_2_weeks,
                had_bug_fix=outcome.had_bug_fix_within_2_weeks,
                pr_review_time_min=outcome.pr_review_time_min,
                pr_comments_count=outcome.pr_comments_count,
                pr_size_lines=outcome.pr_size_lines,
            ))
            await session.commit()

    async def count_outcomes_async(self, workspace_path: str) -> int:
        if self._session_maker is None:
            return 0
        async with self._session_maker() as session:
            result = await session.execute(
                select(SessionOutcomeModel.id).where(SessionOutcomeModel.workspace_path == workspace_path)
            )
            return len(result.scalars().all())

    async def list_workspaces_async(self) -> list[str]:
        if self._session_maker is None:
            return []
        async with self._session_maker() as session:
            result = await session.execute(
                select(WorkspaceStateModel.workspace_path).order_by(WorkspaceStateModel.workspace_path)
            )
            return list(result.scalars().all())

    async def delete_async(self, workspace_path: str) -> None:
        if self._session_maker is None:
            return
        async with self._session_maker() as session:
            result = await session.execute(
                select(WorkspaceStateModel).where(WorkspaceStateModel.workspace_path == workspace_path)
            )
            row = result.scalar_one_or_none()
            if row is not None:
                await session.delete(row)
                await session.commit()

    # =========================================================================
    # Sync Wrappers
    # =========================================================================

    def load(self, workspace_path: str) -> Optional[dict[str, Any]]:
        """Load state (sync wrapper). Returns None inside a running loop."""
        if self._session_maker is None:
            return None
        try:
            asyncio.get_running_loop()
            # In async context, use load_async
            return None
        except RuntimeError:
            return asyncio.run(self.load_async(workspace_path))

    def save(self, workspace_path: str, state: dict[str, Any]) -> None:
        """Save state (fire-and-forget sync wrapper)."""
        self._dispatch(self.save_async(workspace_path, state))

    def record_outcome(self, workspace_path: str, outcome: SessionOutcome) -> None:
        """Append an outcome (fire-and-forget sync wrapper)."""
        self._dispatch(self.record_outcome_async(workspace_path, outcome))

    def _dispatch(self, coro) -> None:
        if self._session_maker is None:
            coro.close()
            return
        try:
            asyncio.get_running_loop()
            task = asyncio.create_task(self._guarded(coro))
            self._pending.add(task)
            task.add_done_callback(self._pending.discard)
        except RuntimeError:
            asyncio.run(self._guarded(coro))

    @staticmethod
    async def _guarded(coro) -> None:
        try:
            await coro
        except Exception as e:
            logger.warning("Deferred state write failed: %s", e)

    async def drain(self) -> None:
        """Wait for scheduled fire-and-forget writes."""
        if self._pending:
            await asyncio.gather(*list(self._pending))
