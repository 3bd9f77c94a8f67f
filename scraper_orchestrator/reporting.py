"""Fire-and-forget side channels: progress pushes and the shared swallow helper."""

from __future__ import annotations

import logging
from typing import Any, Awaitable, Dict, Optional, TypeVar

import httpx

from .monitoring.metrics import PROGRESS_PUSH_FAILURES

logger = logging.getLogger(__name__)

T = TypeVar("T")


async def best_effort(awaitable: Awaitable[T], *, description: str, default: Optional[T] = None) -> Optional[T]:
    """Await ``awaitable``; on failure log a warning and return ``default``.

    Every non-fatal write in the service (progress pushes, log sink rows,
    session saves) goes through here so a failing side channel can never
    abort the scrape that triggered it.
    """

    try:
        return await awaitable
    except Exception as exc:
        logger.warning("%s failed: %s", description, exc, extra={"operation": description})
        return default


class ProgressReporter:
    """Posts JSON progress snapshots to the admin API, one request per state change."""

    path_template = "/api/fmtc-merchants/progress/{execution_id}"

    def __init__(
        self,
        base_url: str,
        *,
        timeout: float = 5.0,
        client: Optional[httpx.AsyncClient] = None,
    ) -> None:
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self._client = client

    def url_for(self, execution_id: str) -> str:
        return self.base_url + self.path_template.format(execution_id=execution_id)

    async def _post(self, execution_id: str, payload: Dict[str, Any]) -> bool:
        url = self.url_for(execution_id)
        if self._client is not None:
            response = await self._client.post(url, json=payload, timeout=self.timeout)
        else:
            async with httpx.AsyncClient(timeout=self.timeout) as client:
                response = await client.post(url, json=payload)
        response.raise_for_status()
        return True

    async def push(self, execution_id: Optional[str], payload: Dict[str, Any]) -> bool:
        """Send one snapshot. Never retries and never raises."""

        if not execution_id:
            return False
        sent = await best_effort(
            self._post(execution_id, payload),
            description=f"Progress push ({payload.get('type', 'progress')}) for {execution_id}",
            default=False,
        )
        if not sent:
            PROGRESS_PUSH_FAILURES.inc()
        return bool(sent)


__all__ = ["best_effort", "ProgressReporter"]
