import asyncio
import json
from types import SimpleNamespace

import pytest
from fakes import InMemoryJobRepository
from typer.testing import CliRunner

from scraper_orchestrator import cli
from scraper_orchestrator.config import Settings
from scraper_orchestrator.jobs.models import JobDefinition
from scraper_orchestrator.jobs.queue import TaskQueueManager

runner = CliRunner()


class CompletingExecutor:
    def __init__(self, repository):
        self.repository = repository

    async def execute_task(self, execution_id):
        await self.repository.mark_running(execution_id)
        await asyncio.sleep(0)
        return await self.repository.mark_completed(execution_id, {"found": 1, "saved": 1})


@pytest.fixture
def fake_services(monkeypatch):
    created = []
    disposed = []

    def build(settings=None):
        repository = InMemoryJobRepository(
            [
                JobDefinition(id="job-1", name="merchants", target_site="FMTC"),
                JobDefinition(id="job-off", name="paused", target_site="FMTC", is_enabled=False),
            ]
        )
        queue = TaskQueueManager(repository, CompletingExecutor(repository))
        services = SimpleNamespace(settings=settings, repository=repository, queue=queue)
        created.append(services)
        return services

    async def dispose():
        disposed.append(True)

    monkeypatch.setattr(cli, "get_settings", lambda: Settings(merchant_password="hunter2"))
    monkeypatch.setattr(cli, "configure_logging", lambda *args, **kwargs: None)
    monkeypatch.setattr(cli, "build_services", build)
    monkeypatch.setattr(cli, "dispose_engine", dispose)
    return SimpleNamespace(created=created, disposed=disposed)


def test_show_config_masks_secrets(monkeypatch):
    monkeypatch.setattr(cli, "get_settings", lambda: Settings(merchant_password="hunter2", batch_concurrency=3))

    result = runner.invoke(cli.app, ["show-config"])

    assert result.exit_code == 0
    payload = json.loads(result.stdout)
    assert payload["batch_concurrency"] == 3
    assert "hunter2" not in result.stdout


def test_enqueue_runs_execution_to_completion(fake_services):
    result = runner.invoke(cli.app, ["enqueue", "job-1"])

    assert result.exit_code == 0, result.output
    assert "Queued execution" in result.stdout
    assert "finished with status COMPLETED" in result.stdout
    services = fake_services.created[0]
    assert [r.status.value for r in services.repository.executions.values()] == ["COMPLETED"]
    assert fake_services.disposed == [True]


def test_enqueue_disabled_job_exits_with_error(fake_services):
    result = runner.invoke(cli.app, ["enqueue", "job-off"])

    assert result.exit_code == 1
    assert "Cannot enqueue job-off" in result.output
    assert fake_services.created[0].repository.executions == {}
    assert fake_services.disposed == [True]
