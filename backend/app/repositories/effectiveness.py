"""EffectivenessRepository: persistence for runs and criterion scores.

Handles all database operations for Client (read only), EffectivenessRun and
CriterionScore. Follows the layered architecture pattern:
API -> Service -> Repository -> Database.

Every SQLAlchemyError is logged and re-raised as PersistenceError. Writes to
a run are guarded in SQL:
- status and progress writes never touch a terminal run
- progress only moves forward (WHERE progress <= :new)
"""

import time
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from datetime import UTC, datetime
from typing import Any

from sqlalchemy import func, select, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from app.core.database import session_scope
from app.core.logging import db_logger, effectiveness_logger, get_logger
from app.models.client import Client
from app.models.criterion_score import CriterionScore
from app.models.effectiveness_run import TERMINAL_STATUSES, EffectivenessRun, RunStatus
from app.services.errors import InvalidStatusTransitionError, PersistenceError
from app.services.scoring import CriterionResult

logger = get_logger(__name__)

TERMINAL_VALUES = [status.value for status in TERMINAL_STATUSES]


@asynccontextmanager
async def persistence_scope(context: str) -> AsyncIterator[AsyncSession]:
    """session_scope for background work; commit failures become PersistenceError."""
    try:
        async with session_scope(context) as session:
            yield session
    except SQLAlchemyError as e:
        raise PersistenceError(context, f"{context} failed: {e}") from e


class EffectivenessRepository:
    """Repository for effectiveness runs and their scores.

    All methods use the session they were constructed with; callers own the
    transaction (commit/rollback).
    """

    TABLE_NAME = "effectiveness_runs"
    SLOW_OPERATION_THRESHOLD_MS = 1000

    def __init__(self, session: AsyncSession) -> None:
        self.session = session

    @asynccontextmanager
    async def _operation(self, name: str, table: str, **context: Any) -> AsyncIterator[None]:
        """Time an operation and translate database errors."""
        start_time = time.monotonic()
        try:
            yield
        except SQLAlchemyError as e:
            db_logger.transaction_failure(e, table=table, context=f"{name} {context}")
            logger.error(
                f"Failed to {name}",
                extra={
                    **context,
                    "error_type": type(e).__name__,
                    "error_message": str(e),
                },
                exc_info=True,
            )
            raise PersistenceError(name, f"Failed to {name}: {e}") from e
        duration_ms = (time.monotonic() - start_time) * 1000
        if duration_ms > self.SLOW_OPERATION_THRESHOLD_MS:
            db_logger.slow_query(query=name, duration_ms=duration_ms, table=table)

    # Clients

    async def get_client(self, client_id: str) -> Client | None:
        """Client with its competitors loaded."""
        async with self._operation("get client", "clients", client_id=client_id):
            result = await self.session.execute(
                select(Client)
                .options(selectinload(Client.competitors))
                .where(Client.id == client_id)
            )
            return result.scalar_one_or_none()

    # Runs

    async def create_run(self, client_id: str) -> EffectivenessRun:
        async with self._operation("create run", self.TABLE_NAME, client_id=client_id):
            run = EffectivenessRun(
                client_id=client_id,
                status=RunStatus.PENDING.value,
                progress=0,
                progress_detail={},
            )
            self.session.add(run)
            await self.session.flush()
            await self.session.refresh(run)
        logger.debug("Run created", extra={"run_id": run.id, "client_id": client_id})
        return run

    async def get_run(self, run_id: str) -> EffectivenessRun | None:
        async with self._operation("get run", self.TABLE_NAME, run_id=run_id):
            result = await self.session.execute(
                select(EffectivenessRun).where(EffectivenessRun.id == run_id)
            )
            return result.scalar_one_or_none()

    async def get_latest_run(self, client_id: str) -> EffectivenessRun | None:
        async with self._operation("get latest run", self.TABLE_NAME, client_id=client_id):
            result = await self.session.execute(
                select(EffectivenessRun)
                .where(EffectivenessRun.client_id == client_id)
                .order_by(EffectivenessRun.created_at.desc())
                .limit(1)
            )
            return result.scalar_one_or_none()

    async def get_active_runs(self, client_id: str) -> list[EffectivenessRun]:
        """Non-terminal runs for a client, newest first."""
        async with self._operation("get active runs", self.TABLE_NAME, client_id=client_id):
            result = await self.session.execute(
                select(EffectivenessRun)
                .where(
                    EffectivenessRun.client_id == client_id,
                    EffectivenessRun.status.notin_(TERMINAL_VALUES),
                )
                .order_by(EffectivenessRun.created_at.desc())
            )
            return list(result.scalars().all())

    async def transition_status(
        self,
        run_id: str,
        new_status: RunStatus,
        error_message: str | None = None,
    ) -> bool:
        """Move a run forward in the state machine.

        Returns False when the run is already terminal (write refused).

        Raises:
            InvalidStatusTransitionError: The write would regress the run
            PersistenceError: On database errors
        """
        async with self._operation(
            "transition run status", self.TABLE_NAME, run_id=run_id, new_status=new_status.value
        ):
            result = await self.session.execute(
                select(EffectivenessRun.status).where(EffectivenessRun.id == run_id)
            )
            current_value = result.scalar_one_or_none()
            if current_value is None:
                return False
            current = RunStatus(current_value)
            if current.is_terminal:
                logger.debug(
                    "Status write refused for terminal run",
                    extra={
                        "run_id": run_id,
                        "status": current.value,
                        "requested": new_status.value,
                    },
                )
                return False
            if not current.can_transition_to(new_status):
                logger.error(
                    "Rejected run status regression",
                    extra={
                        "run_id": run_id,
                        "current_status": current.value,
                        "requested_status": new_status.value,
                    },
                )
                raise InvalidStatusTransitionError(run_id, current.value, new_status.value)

            values: dict[str, Any] = {"status": new_status.value}
            if error_message is not None:
                values["error_message"] = error_message
            updated = await self.session.execute(
                update(EffectivenessRun)
                .where(
                    EffectivenessRun.id == run_id,
                    EffectivenessRun.status.notin_(TERMINAL_VALUES),
                )
                .values(**values)
                .execution_options(synchronize_session=False)
            )

        if updated.rowcount:
            effectiveness_logger.status_transition(run_id, current.value, new_status.value)
        return bool(updated.rowcount)

    async def update_progress(self, run_id: str, progress_detail: dict[str, Any]) -> bool:
        """Store a progress snapshot unless it would move progress backwards."""
        percent = int(progress_detail.get("overallPercent", 0))
        async with self._operation("update run progress", self.TABLE_NAME, run_id=run_id):
            updated = await self.session.execute(
                update(EffectivenessRun)
                .where(
                    EffectivenessRun.id == run_id,
                    EffectivenessRun.progress <= percent,
                    EffectivenessRun.status.notin_(TERMINAL_VALUES),
                )
                .values(progress=percent, progress_detail=progress_detail)
                .execution_options(synchronize_session=False)
            )
        return bool(updated.rowcount)

    async def set_screenshots(
        self,
        run_id: str,
        screenshot_url: str | None,
        full_page_screenshot_url: str | None,
    ) -> bool:
        async with self._operation("set run screenshots", self.TABLE_NAME, run_id=run_id):
            updated = await self.session.execute(
                update(EffectivenessRun)
                .where(
                    EffectivenessRun.id == run_id,
                    EffectivenessRun.status.notin_(TERMINAL_VALUES),
                )
                .values(
                    screenshot_url=screenshot_url,
                    full_page_screenshot_url=full_page_screenshot_url,
                )
                .execution_options(synchronize_session=False)
            )
        return bool(updated.rowcount)

    async def finalize(
        self,
        run_id: str,
        status: RunStatus,
        overall_score: float | None,
        error_message: str | None = None,
    ) -> bool:
        """Terminal write: status, overall score and (on success) 100% progress."""
        if not status.is_terminal:
            raise ValueError(f"finalize requires a terminal status, got {status.value}")

        values: dict[str, Any] = {"status": status.value, "overall_score": overall_score}
        if error_message is not None:
            values["error_message"] = error_message
        if status is RunStatus.COMPLETED:
            values["progress"] = 100

        async with self._operation("finalize run", self.TABLE_NAME, run_id=run_id):
            updated = await self.session.execute(
                update(EffectivenessRun)
                .where(
                    EffectivenessRun.id == run_id,
                    EffectivenessRun.status.notin_(TERMINAL_VALUES),
                )
                .values(**values)
                .execution_options(synchronize_session=False)
            )
        return bool(updated.rowcount)

    async def save_insights(self, run_id: str, insights: dict[str, Any]) -> bool:
        """Attach (or overwrite) cached insights. Allowed on terminal runs."""
        async with self._operation("save run insights", self.TABLE_NAME, run_id=run_id):
            updated = await self.session.execute(
                update(EffectivenessRun)
                .where(EffectivenessRun.id == run_id)
                .values(insights=insights, insights_generated_at=datetime.now(UTC))
                .execution_options(synchronize_session=False)
            )
        return bool(updated.rowcount)

    # Scores

    async def upsert_score(
        self,
        run_id: str,
        competitor_id: str | None,
        result: CriterionResult,
    ) -> CriterionScore:
        """Insert or overwrite the single score for (run, target, criterion)."""
        async with self._operation(
            "upsert criterion score",
            "criterion_scores",
            run_id=run_id,
            competitor_id=competitor_id,
            criterion=result.criterion.value,
        ):
            target_filter = (
                CriterionScore.competitor_id.is_(None)
                if competitor_id is None
                else CriterionScore.competitor_id == competitor_id
            )
            existing = await self.session.execute(
                select(CriterionScore).where(
                    CriterionScore.run_id == run_id,
                    target_filter,
                    CriterionScore.criterion == result.criterion.value,
                )
            )
            score = existing.scalar_one_or_none()
            if score is None:
                score = CriterionScore(
                    run_id=run_id,
                    competitor_id=competitor_id,
                    criterion=result.criterion.value,
                )
                self.session.add(score)
            score.score = result.score
            score.passes = result.passes
            score.tier = int(result.tier)
            score.evidence = result.evidence
            await self.session.flush()
        return score

    async def list_scores(self, run_id: str) -> list[CriterionScore]:
        """Scores for a run: client rows first, then by competitor and criterion."""
        async with self._operation("list criterion scores", "criterion_scores", run_id=run_id):
            result = await self.session.execute(
                select(CriterionScore)
                .where(CriterionScore.run_id == run_id)
                .order_by(
                    CriterionScore.competitor_id.is_not(None),
                    CriterionScore.competitor_id,
                    CriterionScore.criterion,
                )
            )
            return list(result.scalars().all())

    async def list_client_scores(self, run_id: str) -> list[CriterionScore]:
        async with self._operation("list client scores", "criterion_scores", run_id=run_id):
            result = await self.session.execute(
                select(CriterionScore)
                .where(
                    CriterionScore.run_id == run_id,
                    CriterionScore.competitor_id.is_(None),
                )
                .order_by(CriterionScore.criterion)
            )
            return list(result.scalars().all())

    async def count_client_scores(self, run_id: str) -> int:
        async with self._operation("count client scores", "criterion_scores", run_id=run_id):
            result = await self.session.execute(
                select(func.count())
                .select_from(CriterionScore)
                .where(
                    CriterionScore.run_id == run_id,
                    CriterionScore.competitor_id.is_(None),
                )
            )
            return int(result.scalar_one())
