import asyncio
import json

import httpx

from scraper_orchestrator.reporting import ProgressReporter, best_effort


def test_push_posts_json_to_execution_url():
    seen = []

    def handler(request: httpx.Request) -> httpx.Response:
        seen.append(request)
        return httpx.Response(200, json={"ok": True})

    async def scenario():
        async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as client:
            reporter = ProgressReporter("http://admin.test/", client=client)
            return await reporter.push("exec-1", {"type": "progress", "completed": 2})

    assert asyncio.run(scenario()) is True
    assert str(seen[0].url) == "http://admin.test/api/fmtc-merchants/progress/exec-1"
    assert json.loads(seen[0].content) == {"type": "progress", "completed": 2}


def test_push_failure_is_swallowed(caplog):
    calls = []

    def handler(request: httpx.Request) -> httpx.Response:
        calls.append(request)
        raise httpx.ConnectError("connection refused", request=request)

    async def scenario():
        async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as client:
            reporter = ProgressReporter("http://admin.test", client=client)
            return await reporter.push("exec-1", {"type": "completed"})

    caplog.set_level("WARNING")
    assert asyncio.run(scenario()) is False
    # never retried
    assert len(calls) == 1
    assert "Progress push (completed) for exec-1 failed" in caplog.text


def test_push_without_execution_id_is_a_no_op():
    reporter = ProgressReporter("http://admin.test")

    assert asyncio.run(reporter.push(None, {"type": "progress"})) is False


def test_best_effort_returns_default_on_error():
    async def boom():
        raise ValueError("nope")

    async def fine():
        return 7

    assert asyncio.run(best_effort(boom(), description="boom", default=0)) == 0
    assert asyncio.run(best_effort(fine(), description="fine")) == 7
