"""Execution-scoped structured logging.

Each entry goes to three places:

* the module logger (always),
* the durable sink, normally ``JobRepository.write_log`` (always, best effort),
* ``<storage_dir>/scraper_storage_runs/<site>/<execution>/debug.log`` when the
  job has debug mode enabled (best effort).
"""

from __future__ import annotations

import json
import logging
from datetime import datetime
from pathlib import Path
from typing import Any, Awaitable, Callable, Dict, Optional

from ..reporting import best_effort
from .models import LogEntry, LogLevel

logger = logging.getLogger(__name__)

LogSink = Callable[[LogEntry], Awaitable[None]]

_PY_LEVELS = {
    LogLevel.DEBUG: logging.DEBUG,
    LogLevel.INFO: logging.INFO,
    LogLevel.WARN: logging.WARNING,
    LogLevel.ERROR: logging.ERROR,
}


def format_debug_line(entry: LogEntry) -> str:
    line = f"[{entry.timestamp.isoformat()}] [{entry.level.value}] {entry.message}"
    if entry.context:
        line += " " + json.dumps(entry.context, default=str)
    return line + "\n"


class ExecutionLog:
    """Logger bound to one execution."""

    def __init__(
        self,
        execution_id: str,
        sink: Optional[LogSink],
        debug_file: Optional[Path] = None,
    ) -> None:
        self.execution_id = execution_id
        self._sink = sink
        self.debug_file = debug_file

    @staticmethod
    async def _append(path: Path, line: str) -> None:
        path.parent.mkdir(parents=True, exist_ok=True)
        with path.open("a", encoding="utf-8") as handle:
            handle.write(line)

    async def log(self, level: LogLevel, message: str, **context: Any) -> None:
        entry = LogEntry(
            execution_id=self.execution_id,
            level=level,
            message=message,
            context=context or None,
            timestamp=datetime.utcnow(),
        )
        logger.log(
            _PY_LEVELS[level],
            message,
            extra={"execution_id": self.execution_id, "context": entry.context},
        )
        if self._sink is not None:
            await best_effort(self._sink(entry), description="Execution log write")
        if self.debug_file is not None:
            await best_effort(self._append(self.debug_file, format_debug_line(entry)), description="Debug log file write")

    async def debug(self, message: str, **context: Any) -> None:
        await self.log(LogLevel.DEBUG, message, **context)

    async def info(self, message: str, **context: Any) -> None:
        await self.log(LogLevel.INFO, message, **context)

    async def warning(self, message: str, **context: Any) -> None:
        await self.log(LogLevel.WARN, message, **context)

    async def error(self, message: str, **context: Any) -> None:
        await self.log(LogLevel.ERROR, message, **context)


class ExecutionLogger:
    """Creates :class:`ExecutionLog` instances sharing one sink and storage root."""

    def __init__(self, sink: Optional[LogSink], storage_dir: Path) -> None:
        self._sink = sink
        self.storage_dir = Path(storage_dir)

    def debug_file_for(self, target_site: str, execution_id: str) -> Path:
        return self.storage_dir / "scraper_storage_runs" / target_site / execution_id / "debug.log"

    def bind(self, execution_id: str, *, debug: bool = False, target_site: str = "unknown") -> ExecutionLog:
        debug_file = self.debug_file_for(target_site, execution_id) if debug else None
        return ExecutionLog(execution_id, self._sink, debug_file)


__all__ = ["ExecutionLog", "ExecutionLogger", "LogSink", "format_debug_line"]
