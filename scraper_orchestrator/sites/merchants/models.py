"""Batch scraper task, worker and progress models."""

from __future__ import annotations

import uuid
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional

from playwright.async_api import Page


class TaskStatus(str, Enum):
    PENDING = "PENDING"
    RUNNING = "RUNNING"
    COMPLETED = "COMPLETED"
    FAILED = "FAILED"


@dataclass(frozen=True)
class MerchantTarget:
    merchant_id: str
    merchant_name: str
    merchant_url: str


@dataclass
class MerchantTask:
    merchant_id: str
    merchant_name: str
    merchant_url: str
    id: str = field(default_factory=lambda: uuid.uuid4().hex)
    status: TaskStatus = TaskStatus.PENDING
    # tracked for reporting only; tasks are never retried automatically
    retry_count: int = 0
    worker_id: Optional[str] = None
    started_at: Optional[datetime] = None
    finished_at: Optional[datetime] = None
    result: Optional[Dict[str, Any]] = None
    error: Optional[str] = None

    @classmethod
    def from_target(cls, target: MerchantTarget) -> "MerchantTask":
        return cls(
            merchant_id=target.merchant_id,
            merchant_name=target.merchant_name,
            merchant_url=target.merchant_url,
        )

    @property
    def duration(self) -> float:
        if self.started_at and self.finished_at:
            return (self.finished_at - self.started_at).total_seconds()
        return 0.0

    def summary(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "merchant_name": self.merchant_name,
            "status": self.status.value,
            "worker_id": self.worker_id,
            "duration": round(self.duration, 2),
            "error": self.error,
        }


@dataclass
class WorkerState:
    id: str
    page: Optional[Page] = None
    busy: bool = False
    current_task: Optional[MerchantTask] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "is_working": self.busy,
            "current_task": self.current_task.merchant_name if self.current_task else None,
        }


@dataclass
class BatchProgress:
    total: int
    completed: int
    failed: int
    running: int
    pending: int
    percentage: int
    started_at: datetime
    average_time_per_task: float = 0.0
    estimated_time_remaining: Optional[float] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "total": self.total,
            "completed": self.completed,
            "failed": self.failed,
            "running": self.running,
            "pending": self.pending,
            "percentage": self.percentage,
            "start_time": self.started_at.isoformat(),
            "average_time_per_task": round(self.average_time_per_task, 2),
            "estimated_time_remaining": (
                round(self.estimated_time_remaining, 2) if self.estimated_time_remaining is not None else None
            ),
        }


@dataclass
class BatchResult:
    success: bool
    total: int
    completed: int
    failed: int
    completed_tasks: List[MerchantTask] = field(default_factory=list)
    failed_tasks: List[MerchantTask] = field(default_factory=list)
    total_time: float = 0.0
    avg_time_per_task: float = 0.0

    def to_dict(self) -> Dict[str, Any]:
        return {
            "success": self.success,
            "total": self.total,
            "completed": self.completed,
            "failed": self.failed,
            "total_time": round(self.total_time, 2),
            "avg_time_per_task": round(self.avg_time_per_task, 2),
            "failed_tasks": [task.summary() for task in self.failed_tasks],
        }


__all__ = [
    "BatchProgress",
    "BatchResult",
    "MerchantTarget",
    "MerchantTask",
    "TaskStatus",
    "WorkerState",
]
