"""Runs one queued execution end to end."""

from __future__ import annotations

import logging
import time
import traceback
from typing import Optional

from ..config import Settings, get_settings
from ..errors import NotFoundError
from ..monitoring.metrics import (
    EXECUTION_DURATION,
    EXECUTIONS_COMPLETED,
    EXECUTIONS_FAILED,
    EXECUTIONS_STARTED,
)
from ..sites.base import ScraperOptions, SiteKey, SiteRegistry, credentials_from_settings
from .catalog import CatalogWriter
from .logsink import ExecutionLog, ExecutionLogger
from .models import ExecutionRecord, ExecutionStatus, JobDefinition
from .repository import JobRepository

logger = logging.getLogger(__name__)

MAX_ERROR_MESSAGE = 2000
MAX_ERROR_STACK = 4000
MAX_METRIC_ERRORS = 5


class TaskExecutor:
    """Moves an execution QUEUED -> RUNNING -> COMPLETED | FAILED.

    Failures inside the run are recorded on the execution and the FAILED
    record is returned. Only a missing execution, or a storage error while
    recording the failure, propagates to the caller. Status writes are
    conditional in the repository, so an execution cancelled elsewhere is
    never restarted, and its CANCELLED status is never overwritten.
    """

    def __init__(
        self,
        repository: JobRepository,
        registry: SiteRegistry,
        catalog: CatalogWriter,
        execution_logger: ExecutionLogger,
        settings: Optional[Settings] = None,
    ) -> None:
        self.repository = repository
        self.registry = registry
        self.catalog = catalog
        self.execution_logger = execution_logger
        self.settings = settings or get_settings()

    def build_options(self, definition: JobDefinition, log: ExecutionLog) -> ScraperOptions:
        return ScraperOptions(
            max_requests=definition.max_requests,
            max_items=definition.max_items,
            concurrency=definition.concurrency,
            storage_dir=self.execution_logger.storage_dir,
            credentials=credentials_from_settings(self.settings, definition.credential_ref),
            config=dict(definition.config),
            log=log,
        )

    async def _current(self, execution_id: str, fallback: ExecutionRecord) -> ExecutionRecord:
        return await self.repository.get_execution(execution_id) or fallback

    async def execute_task(self, execution_id: str) -> ExecutionRecord:
        """Run a QUEUED execution. Anything else is returned unchanged with a warning."""

        record = await self.repository.get_execution(execution_id)
        if record is None:
            raise NotFoundError(f"Execution {execution_id} not found")
        if record.status != ExecutionStatus.QUEUED:
            logger.warning(
                "Skipping execution that is not queued",
                extra={"execution_id": execution_id, "status": record.status.value},
            )
            return record
        running = await self.repository.mark_running(execution_id)
        if running is None:
            # cancelled or claimed between the read and the conditional update
            current = await self._current(execution_id, record)
            logger.warning(
                "Execution left the queue before it could start",
                extra={"execution_id": execution_id, "status": current.status.value},
            )
            return current
        record = running
        started = time.perf_counter()
        EXECUTIONS_STARTED.inc()

        log = self.execution_logger.bind(execution_id)
        try:
            definition = await self.repository.get_definition(record.task_definition_id)
            if definition is None:
                raise NotFoundError(f"Job definition {record.task_definition_id} not found")
            log = self.execution_logger.bind(
                execution_id,
                debug=definition.is_debug_mode_enabled,
                target_site=definition.target_site,
            )
            await log.info(
                "Execution started",
                job=definition.name,
                target_site=definition.target_site,
                start_urls=len(definition.start_urls),
                trigger_type=record.trigger_type.value,
            )

            scraper = self.registry.resolve(definition.target_site)
            options = self.build_options(definition, log)
            await log.debug(
                "Scraper options",
                max_requests=options.max_requests,
                max_items=options.max_items,
                concurrency=options.concurrency,
                credential_ref=definition.credential_ref,
            )
            items = await scraper.scrape(definition.start_urls, options, execution_id) or []
            await log.info("Scrape finished", found=len(items))

            source = SiteKey.parse(definition.target_site).value
            summary = await self.catalog.save_items(items, source, log=log)
            metrics = {
                "found": len(items),
                "saved": summary.saved,
                "failed": summary.failed,
                "errors": summary.errors[:MAX_METRIC_ERRORS],
            }
            completed = await self.repository.mark_completed(execution_id, metrics)
            if completed is None:
                await log.warning("Execution stopped being RUNNING before it finished; status left as is", **metrics)
                return await self._current(execution_id, record)
            EXECUTIONS_COMPLETED.inc()
            await log.info("Execution completed", **metrics)
            return completed
        except Exception as exc:
            message = (str(exc) or exc.__class__.__name__)[:MAX_ERROR_MESSAGE]
            stack = traceback.format_exc()[:MAX_ERROR_STACK]
            await log.error("Execution failed", error=message, error_type=exc.__class__.__name__)
            failed = await self.repository.mark_failed(execution_id, message, stack)
            if failed is None:
                return await self._current(execution_id, record)
            EXECUTIONS_FAILED.inc()
            return failed
        finally:
            EXECUTION_DURATION.observe(time.perf_counter() - started)


__all__ = ["TaskExecutor"]
