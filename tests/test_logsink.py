import asyncio
from datetime import datetime

from scraper_orchestrator.jobs.logsink import ExecutionLogger, format_debug_line
from scraper_orchestrator.jobs.models import LogEntry, LogLevel


def test_format_debug_line():
    entry = LogEntry(
        execution_id="exec-1",
        level=LogLevel.WARN,
        message="Slow page",
        context={"seconds": 12},
        timestamp=datetime(2024, 1, 2, 3, 4, 5),
    )

    assert format_debug_line(entry) == '[2024-01-02T03:04:05] [WARN] Slow page {"seconds": 12}\n'


def test_entries_reach_sink_and_debug_file(tmp_path):
    entries = []

    async def sink(entry):
        entries.append(entry)

    log = ExecutionLogger(sink, tmp_path).bind("exec-1", debug=True, target_site="FMTC")
    asyncio.run(log.info("Started", urls=3))
    asyncio.run(log.error("Broken"))

    assert [(e.level, e.message, e.context) for e in entries] == [
        (LogLevel.INFO, "Started", {"urls": 3}),
        (LogLevel.ERROR, "Broken", None),
    ]
    lines = (tmp_path / "scraper_storage_runs" / "FMTC" / "exec-1" / "debug.log").read_text().splitlines()
    assert lines[0].endswith('[INFO] Started {"urls": 3}')
    assert lines[1].endswith("[ERROR] Broken")


def test_sink_failure_is_swallowed_with_warning(tmp_path, caplog):
    async def sink(entry):
        raise ConnectionError("database unavailable")

    log = ExecutionLogger(sink, tmp_path).bind("exec-2")

    caplog.set_level("WARNING")
    asyncio.run(log.info("Still running"))

    assert "Execution log write failed" in caplog.text
    assert not (tmp_path / "scraper_storage_runs").exists()
