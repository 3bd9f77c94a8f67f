import asyncio
from types import SimpleNamespace

from fakes import InMemoryJobRepository
from fastapi.testclient import TestClient

from scraper_orchestrator import main
from scraper_orchestrator.config import Settings
from scraper_orchestrator.jobs.models import ExecutionStatus, JobDefinition, TriggerType
from scraper_orchestrator.jobs.queue import TaskQueueManager


class ImmediateExecutor:
    def __init__(self, repository):
        self.repository = repository
        self.executed = []

    async def execute_task(self, execution_id):
        self.executed.append(execution_id)
        await self.repository.mark_running(execution_id)
        return await self.repository.mark_completed(execution_id, {"found": 0})


def test_lifespan_restores_queue_and_serves_health(monkeypatch):
    repository = InMemoryJobRepository([JobDefinition(id="job-1", name="merchants", target_site="FMTC")])
    executor = ImmediateExecutor(repository)
    disposed = []

    async def dispose():
        disposed.append(True)

    monkeypatch.setattr(main, "dispose_engine", dispose)
    monkeypatch.setattr(main, "configure_logging", lambda *args, **kwargs: None)

    queued = asyncio.run(repository.create_execution("job-1", TriggerType.SCHEDULED))
    app = main.create_app(
        Settings(enable_metrics=True),
        services_factory=lambda settings: SimpleNamespace(queue=TaskQueueManager(repository, executor)),
    )

    with TestClient(app) as client:
        health = client.get("/health")
        metrics = client.get("/metrics")

    assert health.status_code == 200
    assert health.json()["status"] == "ok"
    assert health.json()["queue"]["max_concurrency"] == 1
    assert metrics.status_code == 200
    assert "scraper_queue_length" in metrics.text
    assert executor.executed == [queued.id]
    assert repository.executions[queued.id].status == ExecutionStatus.COMPLETED
    assert disposed == [True]
