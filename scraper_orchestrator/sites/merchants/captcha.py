"""reCAPTCHA detection and solving for the merchant directory login form.

Three modes are supported:

``manual``
    Wait (bounded) for a human to tick the widget in a headed browser.
``auto``
    Submit the site key to a 2captcha compatible HTTP API, poll for the token
    and inject it into the response textarea.
``skip``
    Report the CAPTCHA as unsolved without trying.
"""

from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import dataclass
from typing import Any, Dict, Optional

import httpx
from playwright.async_api import Page
from tenacity import AsyncRetrying, retry_if_result, stop_after_attempt, wait_fixed

from ...config import Settings
from ...errors import CaptchaError
from . import selectors

logger = logging.getLogger(__name__)

_RESPONSE_FILLED_JS = """
(selector) => {
    const element = document.querySelector(selector);
    return !!(element && element.value && element.value.length > 0);
}
"""

_SITE_KEY_JS = """
() => {
    const widget = document.querySelector('.g-recaptcha');
    if (widget && widget.getAttribute('data-sitekey')) {
        return widget.getAttribute('data-sitekey');
    }
    for (const script of document.querySelectorAll('script')) {
        const match = (script.textContent || '').match(/['"](6[0-9A-Za-z_-]{39})['"]/);
        if (match) {
            return match[1];
        }
    }
    return null;
}
"""

_APPLY_TOKEN_JS = """
({ token, selector }) => {
    const element = document.querySelector(selector);
    if (!element) {
        return false;
    }
    element.value = token;
    for (const name of ['input', 'change', 'keyup']) {
        element.dispatchEvent(new Event(name, { bubbles: true }));
    }
    const widget = document.querySelector('.g-recaptcha');
    const callback = widget && widget.getAttribute('data-callback');
    if (callback && typeof window[callback] === 'function') {
        window[callback](token);
    }
    return true;
}
"""


@dataclass
class CaptchaConfig:
    mode: str = "manual"
    manual_timeout: float = 120.0
    auto_timeout: float = 180.0
    retry_attempts: int = 3
    retry_delay: float = 5.0
    api_key: Optional[str] = None
    base_url: str = "https://2captcha.com"
    first_poll_delay: float = 20.0
    poll_interval: float = 5.0

    @classmethod
    def from_settings(cls, settings: Settings) -> "CaptchaConfig":
        return cls(
            mode=settings.captcha_mode,
            manual_timeout=settings.captcha_manual_timeout_seconds,
            auto_timeout=settings.captcha_auto_timeout_seconds,
            retry_attempts=settings.captcha_retry_attempts,
            retry_delay=settings.captcha_retry_delay_seconds,
            api_key=settings.twocaptcha_api_key.get_secret_value() if settings.twocaptcha_api_key else None,
            base_url=settings.twocaptcha_base_url,
        )


@dataclass
class CaptchaResult:
    success: bool
    method: str
    error: Optional[str] = None
    duration: float = 0.0

    def to_dict(self) -> Dict[str, Any]:
        return {
            "success": self.success,
            "method": self.method,
            "error": self.error,
            "duration": round(self.duration, 2),
        }


class CaptchaSolver:
    def __init__(
        self,
        page: Page,
        config: CaptchaConfig,
        client: Optional[httpx.AsyncClient] = None,
    ) -> None:
        self.page = page
        self.config = config
        self._client = client

    async def detect(self) -> bool:
        try:
            return await self.page.query_selector(selectors.RECAPTCHA) is not None
        except Exception as exc:
            logger.warning("reCAPTCHA detection failed: %s", exc)
            return False

    async def is_completed(self) -> bool:
        try:
            element = await self.page.query_selector(selectors.RECAPTCHA_RESPONSE)
            if element is None:
                return False
            return bool(await element.input_value())
        except Exception as exc:
            logger.warning("reCAPTCHA completion check failed: %s", exc)
            return False

    async def solve(self) -> CaptchaResult:
        """Solve a CAPTCHA if one is present. Never raises."""

        started = time.monotonic()
        mode = self.config.mode
        try:
            if not await self.detect() or await self.is_completed():
                return CaptchaResult(success=True, method="skip", duration=time.monotonic() - started)
            if mode == "manual":
                await self._solve_manually()
            elif mode == "auto":
                await self._solve_automatically()
            elif mode == "skip":
                return CaptchaResult(
                    success=False,
                    method="skip",
                    error="reCAPTCHA solving is disabled",
                    duration=time.monotonic() - started,
                )
            else:
                raise CaptchaError(f"Unsupported reCAPTCHA mode: {mode}")
        except Exception as exc:
            return CaptchaResult(
                success=False,
                method=mode,
                error=f"reCAPTCHA solving failed: {exc}",
                duration=time.monotonic() - started,
            )
        return CaptchaResult(success=True, method=mode, duration=time.monotonic() - started)

    async def solve_with_retry(self) -> CaptchaResult:
        attempts = max(1, self.config.retry_attempts)

        def _log_retry(retry_state) -> None:
            outcome = retry_state.outcome.result()
            logger.warning(
                "reCAPTCHA attempt %s/%s failed: %s", retry_state.attempt_number, attempts, outcome.error
            )

        retrying = AsyncRetrying(
            stop=stop_after_attempt(attempts),
            wait=wait_fixed(self.config.retry_delay),
            retry=retry_if_result(lambda result: not result.success),
            before_sleep=_log_retry,
            retry_error_callback=lambda retry_state: retry_state.outcome.result(),
        )
        result = await retrying(self.solve)
        if not result.success:
            return CaptchaResult(
                success=False,
                method=result.method,
                error=f"All {attempts} attempts failed. Last error: {result.error}",
                duration=result.duration,
            )
        return result

    async def _solve_manually(self) -> None:
        logger.info("Waiting for manual reCAPTCHA completion", extra={"timeout": self.config.manual_timeout})
        try:
            await self.page.wait_for_function(
                _RESPONSE_FILLED_JS,
                arg=selectors.RECAPTCHA_RESPONSE,
                timeout=self.config.manual_timeout * 1000,
            )
        except Exception as exc:
            raise CaptchaError(f"Timed out waiting for manual reCAPTCHA: {exc}", retryable=True) from exc

    async def _solve_automatically(self) -> None:
        if not self.config.api_key:
            raise CaptchaError("2captcha API key is not configured")
        site_key = await self.page.evaluate(_SITE_KEY_JS)
        if not site_key:
            raise CaptchaError("Could not extract the reCAPTCHA site key")

        task_id = await self._submit_task(site_key, self.page.url)
        token = await self._wait_for_token(task_id)
        applied = await self.page.evaluate(
            _APPLY_TOKEN_JS, {"token": token, "selector": selectors.RECAPTCHA_RESPONSE}
        )
        if not applied:
            raise CaptchaError("reCAPTCHA response element not found")
        logger.info("Applied solver token", extra={"task_id": task_id, "token_length": len(token)})

    async def _call(self, method: str, path: str, **kwargs: Any) -> Dict[str, Any]:
        url = f"{self.config.base_url.rstrip('/')}/{path}"
        if self._client is not None:
            response = await self._client.request(method, url, **kwargs)
        else:
            async with httpx.AsyncClient(timeout=30) as client:
                response = await client.request(method, url, **kwargs)
        response.raise_for_status()
        return response.json()

    async def _submit_task(self, site_key: str, page_url: str) -> str:
        body = await self._call(
            "POST",
            "in.php",
            data={
                "key": self.config.api_key,
                "method": "userrecaptcha",
                "googlekey": site_key,
                "pageurl": page_url,
                "json": "1",
            },
        )
        if body.get("status") != 1:
            raise CaptchaError(f"2captcha task submission failed: {body.get('error_text') or body.get('request')}")
        logger.info("Submitted reCAPTCHA to solver", extra={"task_id": body["request"]})
        return str(body["request"])

    async def _wait_for_token(self, task_id: str) -> str:
        deadline = time.monotonic() + self.config.auto_timeout
        await asyncio.sleep(self.config.first_poll_delay)
        while True:
            try:
                body = await self._call(
                    "GET",
                    "res.php",
                    params={"key": self.config.api_key, "action": "get", "id": task_id, "json": "1"},
                )
            except httpx.HTTPError as exc:
                logger.warning("Polling solver failed: %s", exc, extra={"task_id": task_id})
            else:
                if body.get("status") == 1:
                    return str(body["request"])
                if body.get("request") != "CAPCHA_NOT_READY":
                    raise CaptchaError(f"2captcha failed: {body.get('error_text') or body.get('request')}")
            if time.monotonic() >= deadline:
                raise CaptchaError("Timed out waiting for the solver", retryable=True)
            await asyncio.sleep(self.config.poll_interval)


__all__ = ["CaptchaConfig", "CaptchaResult", "CaptchaSolver"]
