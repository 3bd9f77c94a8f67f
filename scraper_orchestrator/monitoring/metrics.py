"""Prometheus metrics and monitoring utilities."""

from __future__ import annotations

from fastapi import APIRouter, Response
from prometheus_client import CONTENT_TYPE_LATEST, Counter, Gauge, Histogram, generate_latest

EXECUTIONS_STARTED = Counter("scraper_executions_started_total", "Executions moved to RUNNING")
EXECUTIONS_COMPLETED = Counter("scraper_executions_completed_total", "Executions finished successfully")
EXECUTIONS_FAILED = Counter("scraper_executions_failed_total", "Executions marked FAILED")
ACTIVE_EXECUTIONS = Gauge("scraper_executions_active", "Executions currently running")
QUEUE_LENGTH = Gauge("scraper_queue_length", "Executions waiting in the in-memory queue")
EXECUTION_DURATION = Histogram("scraper_execution_duration_seconds", "Wall time of a single execution")
ITEMS_SAVED = Counter("scraper_items_saved_total", "Scraped items upserted")
MERCHANT_TASKS = Counter("scraper_merchant_tasks_total", "Merchant detail tasks by outcome", ["outcome"])
LOGIN_ATTEMPTS = Counter("scraper_login_attempts_total", "Login attempts by outcome", ["outcome"])
PROGRESS_PUSH_FAILURES = Counter("scraper_progress_push_failures_total", "Progress pushes that failed")

metrics_router = APIRouter()


@metrics_router.get("/metrics", include_in_schema=False)
def metrics() -> Response:
    return Response(generate_latest(), media_type=CONTENT_TYPE_LATEST)


__all__ = [
    "EXECUTIONS_STARTED",
    "EXECUTIONS_COMPLETED",
    "EXECUTIONS_FAILED",
    "ACTIVE_EXECUTIONS",
    "QUEUE_LENGTH",
    "EXECUTION_DURATION",
    "ITEMS_SAVED",
    "MERCHANT_TASKS",
    "LOGIN_ATTEMPTS",
    "PROGRESS_PUSH_FAILURES",
    "metrics_router",
]
