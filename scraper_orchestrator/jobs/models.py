"""Domain models for job definitions, executions and their logs."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional


class ExecutionStatus(str, Enum):
    QUEUED = "QUEUED"
    RUNNING = "RUNNING"
    COMPLETED = "COMPLETED"
    FAILED = "FAILED"
    CANCELLED = "CANCELLED"

    @property
    def is_terminal(self) -> bool:
        return self in (ExecutionStatus.COMPLETED, ExecutionStatus.FAILED, ExecutionStatus.CANCELLED)


class TriggerType(str, Enum):
    MANUAL = "MANUAL"
    SCHEDULED = "SCHEDULED"
    API = "API"


class LogLevel(str, Enum):
    DEBUG = "DEBUG"
    INFO = "INFO"
    WARN = "WARN"
    ERROR = "ERROR"


@dataclass
class JobDefinition:
    id: str
    name: str
    target_site: str
    start_urls: List[str] = field(default_factory=list)
    credential_ref: Optional[str] = None
    max_requests: Optional[int] = None
    max_load_clicks: Optional[int] = None
    max_items: Optional[int] = None
    concurrency: Optional[int] = None
    is_enabled: bool = True
    is_debug_mode_enabled: bool = False
    cron_expression: Optional[str] = None
    config: Dict[str, Any] = field(default_factory=dict)


@dataclass
class ExecutionRecord:
    id: str
    task_definition_id: str
    status: ExecutionStatus = ExecutionStatus.QUEUED
    trigger_type: TriggerType = TriggerType.MANUAL
    created_at: datetime = field(default_factory=datetime.utcnow)
    started_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None
    metrics: Optional[Dict[str, Any]] = None
    error_message: Optional[str] = None
    error_stack: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "task_definition_id": self.task_definition_id,
            "status": self.status.value,
            "trigger_type": self.trigger_type.value,
            "created_at": self.created_at,
            "started_at": self.started_at,
            "completed_at": self.completed_at,
            "metrics": self.metrics,
            "error_message": self.error_message,
        }


@dataclass
class ScrapedItem:
    """One record produced by a site scraper, persisted keyed by (url, source)."""

    url: str
    source: str
    name: str
    brand: Optional[str] = None
    breadcrumbs: List[str] = field(default_factory=list)
    data: Dict[str, Any] = field(default_factory=dict)
    scraped_at: datetime = field(default_factory=datetime.utcnow)


@dataclass
class LogEntry:
    execution_id: str
    level: LogLevel
    message: str
    context: Optional[Dict[str, Any]] = None
    timestamp: datetime = field(default_factory=datetime.utcnow)


__all__ = [
    "ExecutionStatus",
    "TriggerType",
    "LogLevel",
    "JobDefinition",
    "ExecutionRecord",
    "ScrapedItem",
    "LogEntry",
]
