"""Construction of the long-lived service objects shared by the CLI and the API."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Optional

from .config import Settings, get_settings
from .jobs.catalog import CatalogWriter, SqlCatalogStore
from .jobs.executor import TaskExecutor
from .jobs.logsink import ExecutionLogger
from .jobs.queue import TaskQueueManager
from .jobs.repository import JobRepository
from .reporting import ProgressReporter
from .sites.base import SiteKey, SiteRegistry
from .sites.merchants.plugin import MerchantDirectoryScraper
from .sites.merchants.session import DatabaseSessionStore, FileSessionStore, SessionManager

logger = logging.getLogger(__name__)


@dataclass
class Services:
    settings: Settings
    repository: JobRepository
    execution_logger: ExecutionLogger
    catalog: CatalogWriter
    session_manager: SessionManager
    reporter: ProgressReporter
    registry: SiteRegistry
    executor: TaskExecutor
    queue: TaskQueueManager


def build_session_manager(settings: Settings) -> SessionManager:
    primary = DatabaseSessionStore() if settings.session_use_database else None
    fallback = None
    if settings.session_fallback_to_file or primary is None:
        fallback = FileSessionStore(settings.data_dir / "sessions")
    return SessionManager(primary, fallback, max_age_seconds=settings.session_max_age_seconds)


def build_registry(settings: Settings, session_manager: SessionManager, reporter: ProgressReporter) -> SiteRegistry:
    return SiteRegistry(
        {
            SiteKey.FMTC: MerchantDirectoryScraper(settings, session_manager, reporter=reporter),
        }
    )


def build_services(settings: Optional[Settings] = None) -> Services:
    settings = settings or get_settings()
    repository = JobRepository()
    execution_logger = ExecutionLogger(repository.write_log, settings.storage_dir)
    catalog = CatalogWriter(SqlCatalogStore())
    session_manager = build_session_manager(settings)
    reporter = ProgressReporter(settings.progress_base_url, timeout=settings.progress_timeout_seconds)
    registry = build_registry(settings, session_manager, reporter)
    executor = TaskExecutor(repository, registry, catalog, execution_logger, settings)
    queue = TaskQueueManager(
        repository,
        executor,
        max_concurrency=settings.max_concurrent_executions,
        shutdown_grace_seconds=settings.shutdown_grace_seconds,
    )
    logger.debug("Built services", extra={"sites": [key.value for key in registry.keys()]})
    return Services(
        settings=settings,
        repository=repository,
        execution_logger=execution_logger,
        catalog=catalog,
        session_manager=session_manager,
        reporter=reporter,
        registry=registry,
        executor=executor,
        queue=queue,
    )


__all__ = ["Services", "build_registry", "build_services", "build_session_manager"]
