"""Worker pool scraping many merchant detail pages over one authenticated context."""

from __future__ import annotations

import asyncio
import json
import logging
import random
import time
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Callable, Dict, List, Optional, Sequence

from playwright.async_api import Browser, BrowserContext, Page

from ...config import Settings
from ...errors import LoginError
from ...jobs.logsink import ExecutionLog
from ...monitoring.metrics import MERCHANT_TASKS
from ...reporting import ProgressReporter, best_effort
from ..base import Credentials
from .detail import MerchantDetailHandler
from .login import LoginHandler
from .models import BatchProgress, BatchResult, MerchantTarget, MerchantTask, TaskStatus, WorkerState
from .session import SessionManager

logger = logging.getLogger(__name__)

TaskCallback = Callable[[MerchantTask], None]


@dataclass
class BatchConfig:
    concurrency: int = 2
    min_delay_ms: int = 500
    max_delay_ms: int = 1500
    dashboard_url: str = "https://account.fmtc.co/cp/dash"
    dashboard_timeout: float = 15.0
    dashboard_settle: float = 2.0
    navigation_timeout: float = 30.0
    user_agent: Optional[str] = None

    @classmethod
    def from_settings(cls, settings: Settings, concurrency: Optional[int] = None) -> "BatchConfig":
        return cls(
            concurrency=concurrency or settings.batch_concurrency,
            min_delay_ms=settings.batch_min_delay_ms,
            max_delay_ms=max(settings.batch_min_delay_ms, settings.batch_max_delay_ms),
            dashboard_url=settings.merchant_dashboard_url,
            navigation_timeout=settings.navigation_timeout_seconds,
            user_agent=settings.user_agent,
        )


def _local_storage_script(origins: List[Dict[str, Any]]) -> str:
    return (
        "(() => {\n"
        f"  const origins = {json.dumps(origins)};\n"
        "  const entry = origins.find((item) => item.origin === window.location.origin);\n"
        "  if (!entry || !entry.localStorage) { return; }\n"
        "  for (const pair of entry.localStorage) {\n"
        "    window.localStorage.setItem(pair.name, pair.value);\n"
        "  }\n"
        "})();"
    )


class BatchMerchantScraper:
    """Scrape merchant detail pages with ``concurrency`` worker pages.

    Every page shares one browser context, so a single login made on the
    first worker's page before any task is claimed authenticates them all.
    Tasks are claimed under a lock, run once and never retried. The batch
    only raises when the shared login fails. Pages and the context are
    closed on every exit path.
    """

    def __init__(
        self,
        browser: Browser,
        targets: Sequence[MerchantTarget],
        credentials: Credentials,
        *,
        session_manager: SessionManager,
        login_handler_factory: Callable[[Page], LoginHandler],
        detail_handler: Optional[MerchantDetailHandler] = None,
        config: Optional[BatchConfig] = None,
        reporter: Optional[ProgressReporter] = None,
        log: Optional[ExecutionLog] = None,
        execution_id: Optional[str] = None,
        on_task_complete: Optional[TaskCallback] = None,
        on_task_failed: Optional[TaskCallback] = None,
    ) -> None:
        self.browser = browser
        self.credentials = credentials
        self.session_manager = session_manager
        self.login_handler_factory = login_handler_factory
        self.detail_handler = detail_handler or MerchantDetailHandler()
        self.config = config or BatchConfig()
        self.reporter = reporter
        self.log = log
        self.execution_id = execution_id
        self.on_task_complete = on_task_complete
        self.on_task_failed = on_task_failed

        self.tasks: List[MerchantTask] = [MerchantTask.from_target(target) for target in targets]
        self.workers: List[WorkerState] = []
        self.completed_tasks: List[MerchantTask] = []
        self.failed_tasks: List[MerchantTask] = []
        self.context: Optional[BrowserContext] = None
        self.running = False
        self.started_at: Optional[datetime] = None
        self._started_monotonic = 0.0
        self._cancelled = False
        self._claim_lock = asyncio.Lock()

    async def _emit(self, level: int, message: str, **context: Any) -> None:
        if self.log is not None:
            method = {
                logging.DEBUG: self.log.debug,
                logging.INFO: self.log.info,
                logging.WARNING: self.log.warning,
                logging.ERROR: self.log.error,
            }[level]
            await method(f"[batch] {message}", **context)
        else:
            logger.log(level, message, extra=context)

    async def run(self) -> BatchResult:
        self.started_at = datetime.utcnow()
        self._started_monotonic = time.monotonic()
        if not self.tasks:
            return BatchResult(success=True, total=0, completed=0, failed=0)

        self.running = True
        await self._emit(
            logging.INFO,
            "Starting batch merchant scrape",
            total=len(self.tasks),
            concurrency=self.config.concurrency,
        )
        try:
            await self.initialize()
            await self._start_workers()
            await self._push({
                "type": "started",
                "total": len(self.tasks),
                "concurrency": self.config.concurrency,
                "start_time": self.started_at.isoformat(),
                "workers": [worker.to_dict() for worker in self.workers],
            })
            await self._shared_login(self.workers[0].page)
            await self._run_workers()

            result = self._build_result()
            await self._emit(
                logging.INFO,
                "Batch merchant scrape finished",
                total=result.total,
                completed=result.completed,
                failed=result.failed,
                total_time=round(result.total_time, 1),
            )
            await self._push({
                "type": "completed",
                "result": result.to_dict(),
                "end_time": datetime.utcnow().isoformat(),
                "summary": {
                    "total_tasks": result.total,
                    "successful_tasks": result.completed,
                    "failed_tasks": result.failed,
                    "total_time_seconds": round(result.total_time),
                    "average_time_per_task_seconds": round(result.avg_time_per_task),
                    "concurrency": self.config.concurrency,
                },
            })
            return result
        except Exception as exc:
            await self._emit(logging.ERROR, "Batch merchant scrape failed", error=str(exc))
            raise
        finally:
            await self._cleanup()

    async def initialize(self) -> None:
        """Open the shared context and restore any saved session into it."""

        kwargs: Dict[str, Any] = {"viewport": {"width": 1920, "height": 1080}}
        if self.config.user_agent:
            kwargs["user_agent"] = self.config.user_agent
        self.context = await self.browser.new_context(**kwargs)

        state = await self.session_manager.load_session_state(self.credentials.username)
        if not state:
            await self._emit(logging.INFO, "No saved session to restore")
            return
        cookies = state.get("cookies") or []
        origins = state.get("origins") or []
        try:
            if cookies:
                await self.context.add_cookies(cookies)
            if origins:
                await self.context.add_init_script(script=_local_storage_script(origins))
        except Exception as exc:
            await self._emit(logging.WARNING, "Could not apply saved session", error=str(exc))
            return
        await self._emit(logging.INFO, "Restored saved session", cookies=len(cookies), origins=len(origins))

    async def _start_workers(self) -> None:
        assert self.context is not None
        count = max(1, min(self.config.concurrency, len(self.tasks)))
        for index in range(count):
            worker = WorkerState(id=f"worker-{index + 1}")
            self.workers.append(worker)
            worker.page = await self.context.new_page()
        await self._emit(logging.INFO, "Started workers", workers=count)

    async def _shared_login(self, page: Page) -> None:
        handler = self.login_handler_factory(page)
        try:
            await page.goto(
                self.config.dashboard_url,
                wait_until="domcontentloaded",
                timeout=self.config.dashboard_timeout * 1000,
            )
            await asyncio.sleep(self.config.dashboard_settle)
            if await handler.is_logged_in():
                await self._emit(logging.INFO, "Existing session is still logged in")
                return
        except Exception as exc:
            await self._emit(logging.WARNING, "Dashboard check failed; logging in", error=str(exc))

        await self._emit(logging.INFO, "Running full login", username=self.credentials.username)
        result = await handler.login(self.credentials)
        if not result.success:
            raise LoginError(
                f"Login failed: {result.error or 'unknown error'}",
                requires_captcha=result.requires_captcha,
                category=result.category,
            )
        assert self.context is not None
        await self.session_manager.save_session_state(self.context, self.credentials.username)

    async def _run_workers(self) -> None:
        running = [asyncio.create_task(self._run_worker(worker)) for worker in self.workers]
        try:
            await asyncio.gather(*running)
        except BaseException:
            for task in running:
                task.cancel()
            await asyncio.gather(*running, return_exceptions=True)
            raise

    async def _claim(self, worker: WorkerState) -> Optional[MerchantTask]:
        async with self._claim_lock:
            for task in self.tasks:
                if task.status is TaskStatus.PENDING:
                    task.status = TaskStatus.RUNNING
                    task.worker_id = worker.id
                    task.started_at = datetime.utcnow()
                    worker.busy = True
                    worker.current_task = task
                    return task
        return None

    async def _run_worker(self, worker: WorkerState) -> None:
        await self._emit(logging.DEBUG, "Worker started", worker=worker.id)
        while not self._cancelled:
            task = await self._claim(worker)
            if task is None:
                break
            try:
                task.result = await self._scrape_one(worker, task)
            except Exception as exc:
                task.status = TaskStatus.FAILED
                task.error = str(exc) or exc.__class__.__name__
                task.finished_at = datetime.utcnow()
                self.failed_tasks.append(task)
                MERCHANT_TASKS.labels(outcome="failed").inc()
                await self._emit(
                    logging.ERROR,
                    "Merchant task failed",
                    worker=worker.id,
                    merchant=task.merchant_name,
                    error=task.error,
                )
                callback = self.on_task_failed
            else:
                task.status = TaskStatus.COMPLETED
                task.finished_at = datetime.utcnow()
                self.completed_tasks.append(task)
                MERCHANT_TASKS.labels(outcome="completed").inc()
                await self._emit(logging.INFO, "Merchant task completed", worker=worker.id, merchant=task.merchant_name)
                callback = self.on_task_complete
            finally:
                worker.busy = False
                worker.current_task = None

            if callback is not None:
                callback(task)
            await self._report_progress()
            await asyncio.sleep(self._delay())
        await self._emit(logging.DEBUG, "Worker finished", worker=worker.id)

    async def _scrape_one(self, worker: WorkerState, task: MerchantTask) -> Dict[str, Any]:
        if worker.page is None:
            raise RuntimeError(f"{worker.id} has no page")
        await worker.page.goto(
            task.merchant_url,
            wait_until="networkidle",
            timeout=self.config.navigation_timeout * 1000,
        )
        detail = await self.detail_handler.scrape(worker.page, task.merchant_url, task.merchant_name)
        if not detail:
            raise ValueError("Merchant detail extraction returned no data")
        return detail

    def _delay(self) -> float:
        return random.uniform(self.config.min_delay_ms, self.config.max_delay_ms) / 1000

    def progress(self) -> BatchProgress:
        total = len(self.tasks)
        completed = len(self.completed_tasks)
        failed = len(self.failed_tasks)
        running = sum(1 for worker in self.workers if worker.busy)
        pending = total - completed - failed - running
        elapsed = time.monotonic() - self._started_monotonic
        average = elapsed / completed if completed else 0.0
        eta = None
        if pending > 0 and average > 0 and self.workers:
            eta = pending * average / len(self.workers)
        return BatchProgress(
            total=total,
            completed=completed,
            failed=failed,
            running=running,
            pending=pending,
            percentage=round((completed + failed) / total * 100) if total else 100,
            started_at=self.started_at or datetime.utcnow(),
            average_time_per_task=average,
            estimated_time_remaining=eta,
        )

    async def _report_progress(self) -> None:
        payload = {"type": "progress", **self.progress().to_dict()}
        payload["workers"] = [worker.to_dict() for worker in self.workers]
        payload["recent_completed_tasks"] = [
            {"id": task.id, "merchant_name": task.merchant_name, "duration": round(task.duration, 2)}
            for task in self.completed_tasks[-3:]
        ]
        payload["recent_failed_tasks"] = [
            {"id": task.id, "merchant_name": task.merchant_name, "error": task.error}
            for task in self.failed_tasks[-3:]
        ]
        await self._push(payload)

    async def _push(self, payload: Dict[str, Any]) -> None:
        if self.reporter is not None:
            await self.reporter.push(self.execution_id, payload)

    def _build_result(self) -> BatchResult:
        total_time = time.monotonic() - self._started_monotonic
        completed = len(self.completed_tasks)
        return BatchResult(
            success=not self.failed_tasks,
            total=len(self.tasks),
            completed=completed,
            failed=len(self.failed_tasks),
            completed_tasks=list(self.completed_tasks),
            failed_tasks=list(self.failed_tasks),
            total_time=total_time,
            avg_time_per_task=total_time / completed if completed else 0.0,
        )

    def cancel(self) -> None:
        """Stop claiming new tasks. Tasks already running finish normally."""

        logger.info("Batch cancel requested", extra={"execution_id": self.execution_id})
        self._cancelled = True

    def status(self) -> Dict[str, Any]:
        return {
            "running": self.running,
            "progress": self.progress().to_dict() if self.tasks else None,
            "workers": [worker.to_dict() for worker in self.workers],
        }

    async def _cleanup(self) -> None:
        for worker in self.workers:
            if worker.page is not None:
                await best_effort(worker.page.close(), description=f"Closing page of {worker.id}")
        if self.context is not None:
            await best_effort(self.context.close(), description="Closing browser context")
        self.running = False


__all__ = ["BatchConfig", "BatchMerchantScraper"]
