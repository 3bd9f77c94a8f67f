"""Job orchestration: queue admission, execution and result persistence."""

from .models import ExecutionRecord, ExecutionStatus, JobDefinition, LogEntry, LogLevel, ScrapedItem, TriggerType

__all__ = [
    "ExecutionRecord",
    "ExecutionStatus",
    "JobDefinition",
    "LogEntry",
    "LogLevel",
    "ScrapedItem",
    "TriggerType",
]
