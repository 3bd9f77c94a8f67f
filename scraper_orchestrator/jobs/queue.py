"""In-process admission control for job executions."""

from __future__ import annotations

import asyncio
import logging
import traceback
from collections import deque
from typing import Any, Deque, Dict, Set

from ..errors import DisabledJobError, NotFoundError, ValidationError
from ..monitoring.metrics import ACTIVE_EXECUTIONS, QUEUE_LENGTH
from ..reporting import best_effort
from .executor import MAX_ERROR_MESSAGE, MAX_ERROR_STACK, TaskExecutor
from .models import ExecutionRecord, ExecutionStatus, TriggerType
from .repository import JobRepository

logger = logging.getLogger(__name__)


class TaskQueueManager:
    """FIFO of execution ids drained into at most ``max_concurrency`` running executions.

    The database is the source of truth: every queued id has a QUEUED
    execution row, so :meth:`initialize` can rebuild the FIFO after a
    restart. One instance per process.
    """

    def __init__(
        self,
        repository: JobRepository,
        executor: TaskExecutor,
        *,
        max_concurrency: int = 1,
        shutdown_grace_seconds: float = 30.0,
    ) -> None:
        if max_concurrency < 1:
            raise ValidationError("max_concurrency must be at least 1")
        self.repository = repository
        self.executor = executor
        self.max_concurrency = max_concurrency
        self.shutdown_grace_seconds = shutdown_grace_seconds
        self._queue: Deque[str] = deque()
        self._active: Set[str] = set()
        self._running: Set[asyncio.Task] = set()
        self._draining = False
        self._shutting_down = False
        self._changed = asyncio.Event()

    def _push(self, execution_id: str) -> bool:
        if execution_id in self._queue or execution_id in self._active:
            return False
        self._queue.append(execution_id)
        return True

    def _update_gauges(self) -> None:
        QUEUE_LENGTH.set(len(self._queue))
        ACTIVE_EXECUTIONS.set(len(self._active))
        self._changed.set()

    async def enqueue(self, job_definition_id: str, trigger_type: TriggerType = TriggerType.MANUAL) -> ExecutionRecord:
        if self._shutting_down:
            raise ValidationError("Queue is shutting down and not accepting new executions")
        definition = await self.repository.get_definition(job_definition_id)
        if definition is None:
            raise NotFoundError(f"Job definition {job_definition_id} not found")
        if not definition.is_enabled:
            raise DisabledJobError(f"Job definition {definition.name} is disabled")

        record = await self.repository.create_execution(job_definition_id, trigger_type)
        self._push(record.id)
        logger.info(
            "Queued execution",
            extra={"execution_id": record.id, "job": definition.name, "queue_length": len(self._queue)},
        )
        self._trigger_drain()
        return record

    async def initialize(self) -> int:
        """Reload QUEUED executions, oldest first, and start draining."""

        records = await self.repository.list_by_status(ExecutionStatus.QUEUED)
        restored = sum(1 for record in records if self._push(record.id))
        logger.info("Restored queued executions", extra={"restored": restored, "found": len(records)})
        self._trigger_drain()
        return restored

    def set_max_concurrency(self, value: int) -> None:
        if value < 1:
            raise ValidationError("max_concurrency must be at least 1")
        self.max_concurrency = value
        logger.info("Queue concurrency changed", extra={"max_concurrency": value})
        self._trigger_drain()

    async def cancel(self, execution_id: str) -> bool:
        """Cancel a still-queued execution. Running executions are left alone."""

        if execution_id not in self._queue:
            return False
        self._queue.remove(execution_id)
        self._update_gauges()
        await self.repository.mark_cancelled(execution_id)
        logger.info("Cancelled queued execution", extra={"execution_id": execution_id})
        return True

    def status(self) -> Dict[str, Any]:
        return {
            "queue_length": len(self._queue),
            "queued": list(self._queue),
            "active": sorted(self._active),
            "active_count": len(self._active),
            "max_concurrency": self.max_concurrency,
            "draining": self._draining,
            "shutting_down": self._shutting_down,
        }

    def _trigger_drain(self) -> None:
        if self._draining:
            return
        self._draining = True
        try:
            while self._queue and len(self._active) < self.max_concurrency and not self._shutting_down:
                execution_id = self._queue.popleft()
                self._active.add(execution_id)
                task = asyncio.create_task(self._run_execution(execution_id), name=f"execution-{execution_id}")
                self._running.add(task)
                task.add_done_callback(self._running.discard)
        finally:
            self._draining = False
            self._update_gauges()

    async def _run_execution(self, execution_id: str) -> None:
        logger.info("Starting execution", extra={"execution_id": execution_id, "active": len(self._active)})
        try:
            await self.executor.execute_task(execution_id)
        except Exception as exc:
            logger.exception("Execution crashed outside the executor", extra={"execution_id": execution_id})
            message = (str(exc) or exc.__class__.__name__)[:MAX_ERROR_MESSAGE]
            await best_effort(
                self.repository.mark_failed(execution_id, message, traceback.format_exc()[:MAX_ERROR_STACK]),
                description=f"Marking execution {execution_id} failed",
            )
        finally:
            self._active.discard(execution_id)
            self._update_gauges()
            self._trigger_drain()

    async def wait_until_idle(self) -> None:
        while self._queue or self._active:
            self._changed.clear()
            await self._changed.wait()

    async def shutdown(self) -> None:
        self._shutting_down = True
        logger.info("Queue shutting down", extra={"active": sorted(self._active), "queued": len(self._queue)})
        if self._running:
            _, pending = await asyncio.wait(set(self._running), timeout=self.shutdown_grace_seconds)
            if pending:
                logger.warning(
                    "Executions still running after shutdown grace period",
                    extra={"active": sorted(self._active), "grace_seconds": self.shutdown_grace_seconds},
                )
        # QUEUED rows stay in the database and are picked up by the next initialize()
        self._queue.clear()
        self._update_gauges()


__all__ = ["TaskQueueManager"]
