"""Durable storage for job definitions, executions and execution logs."""

from __future__ import annotations

from datetime import datetime
from typing import Any, Dict, Iterable, List, Optional

from sqlalchemy import null, select, update
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from ..db.models import ScraperTaskDefinition as DefinitionModel
from ..db.models import ScraperTaskExecution as ExecutionModel
from ..db.models import ScraperTaskLog as LogModel
from ..db.session import get_sessionmaker, session_scope
from .models import ExecutionRecord, ExecutionStatus, JobDefinition, LogEntry, TriggerType


def _to_definition(row: DefinitionModel) -> JobDefinition:
    return JobDefinition(
        id=row.id,
        name=row.name,
        target_site=row.target_site,
        start_urls=list(row.start_urls or []),
        credential_ref=row.credential_ref,
        max_requests=row.max_requests,
        max_load_clicks=row.max_load_clicks,
        max_items=row.max_items,
        concurrency=row.concurrency,
        is_enabled=row.is_enabled,
        is_debug_mode_enabled=row.is_debug_mode_enabled,
        cron_expression=row.cron_expression,
        config=dict(row.config or {}),
    )


def _to_execution(row: ExecutionModel) -> ExecutionRecord:
    return ExecutionRecord(
        id=row.id,
        task_definition_id=row.task_definition_id,
        status=ExecutionStatus(row.status),
        trigger_type=TriggerType(row.trigger_type),
        created_at=row.created_at,
        started_at=row.started_at,
        completed_at=row.completed_at,
        metrics=row.metrics,
        error_message=row.error_message,
        error_stack=row.error_stack,
    )


class JobRepository:
    """find-by-id, create, update-status and list-by-status over the job tables."""

    def __init__(self, sessionmaker: Optional[async_sessionmaker[AsyncSession]] = None) -> None:
        self._sessionmaker = sessionmaker

    def _scope(self):
        return session_scope(self._sessionmaker or get_sessionmaker())

    async def get_definition(self, definition_id: str) -> Optional[JobDefinition]:
        async with self._scope() as session:
            row = await session.get(DefinitionModel, definition_id)
            return _to_definition(row) if row else None

    async def create_execution(self, definition_id: str, trigger_type: TriggerType) -> ExecutionRecord:
        async with self._scope() as session:
            row = ExecutionModel(
                task_definition_id=definition_id,
                status=ExecutionStatus.QUEUED.value,
                trigger_type=trigger_type.value,
                created_at=datetime.utcnow(),
            )
            session.add(row)
            await session.flush()
            return _to_execution(row)

    async def get_execution(self, execution_id: str) -> Optional[ExecutionRecord]:
        async with self._scope() as session:
            row = await session.get(ExecutionModel, execution_id)
            return _to_execution(row) if row else None

    async def _transition(
        self, execution_id: str, from_statuses: Iterable[ExecutionStatus], **values: Any
    ) -> Optional[ExecutionRecord]:
        """Applies ``values`` only while the execution is in one of ``from_statuses``.

        Returns None when the execution is missing or has already moved on, so a
        terminal record is never rewritten.
        """

        async with self._scope() as session:
            result = await session.execute(
                update(ExecutionModel)
                .where(
                    ExecutionModel.id == execution_id,
                    ExecutionModel.status.in_([status.value for status in from_statuses]),
                )
                .values(**values)
                .returning(ExecutionModel)
            )
            row = result.scalar_one_or_none()
            return _to_execution(row) if row else None

    async def mark_running(self, execution_id: str) -> Optional[ExecutionRecord]:
        return await self._transition(
            execution_id,
            [ExecutionStatus.QUEUED],
            status=ExecutionStatus.RUNNING.value,
            started_at=datetime.utcnow(),
            completed_at=None,
            metrics=null(),
            error_message=None,
            error_stack=None,
        )

    async def mark_completed(self, execution_id: str, metrics: Dict[str, Any]) -> Optional[ExecutionRecord]:
        return await self._transition(
            execution_id,
            [ExecutionStatus.RUNNING],
            status=ExecutionStatus.COMPLETED.value,
            completed_at=datetime.utcnow(),
            metrics=metrics,
        )

    async def mark_failed(
        self, execution_id: str, error_message: str, error_stack: Optional[str] = None
    ) -> Optional[ExecutionRecord]:
        return await self._transition(
            execution_id,
            [ExecutionStatus.QUEUED, ExecutionStatus.RUNNING],
            status=ExecutionStatus.FAILED.value,
            completed_at=datetime.utcnow(),
            error_message=error_message,
            error_stack=error_stack,
        )

    async def mark_cancelled(self, execution_id: str) -> Optional[ExecutionRecord]:
        return await self._transition(
            execution_id,
            [ExecutionStatus.QUEUED, ExecutionStatus.RUNNING],
            status=ExecutionStatus.CANCELLED.value,
            completed_at=datetime.utcnow(),
        )

    async def list_by_status(self, status: ExecutionStatus) -> List[ExecutionRecord]:
        async with self._scope() as session:
            result = await session.execute(
                select(ExecutionModel)
                .where(ExecutionModel.status == status.value)
                .order_by(ExecutionModel.created_at)
            )
            return [_to_execution(row) for row in result.scalars()]

    async def write_log(self, entry: LogEntry) -> None:
        async with self._scope() as session:
            session.add(
                LogModel(
                    execution_id=entry.execution_id,
                    level=entry.level.value,
                    message=entry.message,
                    context=entry.context,
                    timestamp=entry.timestamp,
                )
            )


__all__ = ["JobRepository"]
