"""Monitoring helpers."""

from .metrics import (
    ACTIVE_EXECUTIONS,
    EXECUTION_DURATION,
    EXECUTIONS_COMPLETED,
    EXECUTIONS_FAILED,
    EXECUTIONS_STARTED,
    ITEMS_SAVED,
    LOGIN_ATTEMPTS,
    MERCHANT_TASKS,
    PROGRESS_PUSH_FAILURES,
    QUEUE_LENGTH,
    metrics_router,
)

__all__ = [
    "ACTIVE_EXECUTIONS",
    "EXECUTION_DURATION",
    "EXECUTIONS_COMPLETED",
    "EXECUTIONS_FAILED",
    "EXECUTIONS_STARTED",
    "ITEMS_SAVED",
    "LOGIN_ATTEMPTS",
    "MERCHANT_TASKS",
    "PROGRESS_PUSH_FAILURES",
    "QUEUE_LENGTH",
    "metrics_router",
]
