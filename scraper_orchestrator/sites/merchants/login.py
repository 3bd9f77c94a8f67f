"""Form login against the merchant directory, including CAPTCHA handling.

``LoginHandler.login`` walks NOT_LOGGED_IN -> NAVIGATING -> FORM_READY ->
(CAPTCHA_PENDING) -> SUBMITTING -> LOGGED_IN | FAILED and always returns a
:class:`LoginResult`; exceptions raised along the way are converted.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from enum import Enum
from typing import Any, Optional

from playwright.async_api import Page
from tenacity import AsyncRetrying, stop_after_attempt, wait_fixed

from ...config import Settings
from ...errors import AmbiguousLoginStateError, LoginFormError, NavigationError
from ...jobs.logsink import ExecutionLog
from ...monitoring.metrics import LOGIN_ATTEMPTS
from ..base import Credentials
from . import selectors
from .captcha import CaptchaSolver

logger = logging.getLogger(__name__)


class LoginState(str, Enum):
    NOT_LOGGED_IN = "NOT_LOGGED_IN"
    NAVIGATING = "NAVIGATING"
    FORM_READY = "FORM_READY"
    CAPTCHA_PENDING = "CAPTCHA_PENDING"
    SUBMITTING = "SUBMITTING"
    LOGGED_IN = "LOGGED_IN"
    FAILED = "FAILED"


@dataclass
class LoginConfig:
    login_url: str = "https://account.fmtc.co/cp/login"
    dashboard_url: str = "https://account.fmtc.co/cp/dash"
    login_path: str = "/cp/login"
    expected_title: str = "FMTC"
    navigation_timeout: float = 30.0
    navigation_attempts: int = 3
    navigation_backoff: float = 5.0
    form_timeout: float = 15.0
    settle_delay: float = 3.0
    max_captcha_cycles: int = 2

    @classmethod
    def from_settings(cls, settings: Settings) -> "LoginConfig":
        return cls(
            login_url=settings.merchant_login_url,
            dashboard_url=settings.merchant_dashboard_url,
            login_path=settings.merchant_login_path,
            expected_title=settings.merchant_login_title,
            navigation_timeout=settings.navigation_timeout_seconds,
            max_captcha_cycles=settings.captcha_max_cycles,
        )


@dataclass
class LoginResult:
    success: bool
    error: Optional[str] = None
    requires_captcha: bool = False
    retryable: bool = False
    category: Optional[str] = None


class LoginHandler:
    def __init__(
        self,
        page: Page,
        config: LoginConfig,
        captcha_solver: Optional[CaptchaSolver] = None,
        log: Optional[ExecutionLog] = None,
    ) -> None:
        self.page = page
        self.config = config
        self.captcha_solver = captcha_solver
        self.log = log
        self.state = LoginState.NOT_LOGGED_IN

    async def _emit(self, level: int, message: str, **context: Any) -> None:
        if self.log is not None:
            method = {
                logging.DEBUG: self.log.debug,
                logging.INFO: self.log.info,
                logging.WARNING: self.log.warning,
                logging.ERROR: self.log.error,
            }[level]
            await method(f"[login] {message}", **context)
        else:
            logger.log(level, message, extra=context)

    def _set_state(self, state: LoginState) -> None:
        logger.debug("Login state %s -> %s", self.state.value, state.value)
        self.state = state

    async def is_logged_in(self) -> bool:
        try:
            if self.config.login_path in self.page.url:
                return False
            marker = await self.page.query_selector(selectors.LOGGED_IN_MARKER)
            login_inputs = await self.page.query_selector("#username, #password")
            return marker is not None and login_inputs is None
        except Exception as exc:
            logger.warning("Logged-in check failed: %s", exc)
            return False

    async def navigate_to_login_page(self) -> None:
        await self._emit(logging.DEBUG, "Navigating to login page", url=self.config.login_url)
        try:
            async for attempt in AsyncRetrying(
                reraise=True,
                stop=stop_after_attempt(self.config.navigation_attempts),
                wait=wait_fixed(self.config.navigation_backoff),
            ):
                with attempt:
                    await self.page.goto(
                        self.config.login_url,
                        wait_until="networkidle",
                        timeout=self.config.navigation_timeout * 1000,
                    )
                    title = await self.page.title()
                    if self.config.expected_title.lower() not in title.lower():
                        raise NavigationError(f"Unexpected login page title: {title!r}")
        except Exception as exc:
            raise NavigationError(
                f"Login page unavailable after {self.config.navigation_attempts} attempts: {exc}"
            ) from exc

    async def wait_for_login_page_load(self) -> None:
        for selector in (selectors.USERNAME_INPUT, selectors.PASSWORD_INPUT, selectors.SUBMIT_BUTTON):
            try:
                await self.page.wait_for_selector(selector, timeout=self.config.form_timeout * 1000)
            except Exception as exc:
                raise LoginFormError(f"Login form did not load ({selector}): {exc}") from exc

    async def validate_login_form(self) -> bool:
        found = {
            "form": await self.page.query_selector(selectors.LOGIN_FORM) is not None,
            "username_input": await self.page.query_selector(selectors.USERNAME_INPUT) is not None,
            "password_input": await self.page.query_selector(selectors.PASSWORD_INPUT) is not None,
            "submit_button": await self.page.query_selector(selectors.SUBMIT_BUTTON) is not None,
        }
        if not all(found.values()):
            missing = [name for name, present in found.items() if not present]
            await self._emit(logging.ERROR, "Login form validation failed", missing=missing)
            return False
        return True

    async def fill_login_form(self, credentials: Credentials) -> None:
        fields = (
            ("username", selectors.USERNAME_INPUT, credentials.username),
            ("password", selectors.PASSWORD_INPUT, credentials.password),
        )
        for label, selector, value in fields:
            element = await self.page.query_selector(selector)
            if element is None:
                raise LoginFormError(f"{label} input not found")
            await element.fill("")
            await element.fill(value)
            if await element.input_value() != value:
                raise LoginFormError(f"{label} input did not keep its value")
        await self._emit(
            logging.DEBUG,
            "Filled login form",
            username=credentials.username,
            password_length=len(credentials.password),
        )

    async def submit_login_form(self) -> None:
        button = await self.page.query_selector(selectors.SUBMIT_BUTTON)
        if button is not None:
            await button.click()
        else:
            await self.page.keyboard.press("Enter")
        try:
            await self.page.wait_for_load_state("networkidle", timeout=self.config.navigation_timeout * 1000)
        except Exception as exc:
            # some successful submissions never reach network idle
            logger.debug("Network idle wait after submit timed out: %s", exc)
        await asyncio.sleep(self.config.settle_delay)

    async def _captcha_pending(self) -> bool:
        if self.captcha_solver is not None:
            return await self.captcha_solver.detect() and not await self.captcha_solver.is_completed()
        return await self.page.query_selector(selectors.RECAPTCHA) is not None

    async def _classify_result(self) -> LoginResult:
        content = (await self.page.content()).lower()

        for phrase in selectors.ANTI_AUTOMATION_PHRASES:
            if phrase in content:
                return LoginResult(
                    success=False,
                    error=f"Blocked as automated traffic ({phrase!r})",
                    category="anti_automation",
                )

        if await self._captcha_pending():
            return LoginResult(
                success=False,
                error="CAPTCHA issued after submit",
                requires_captcha=True,
                retryable=True,
                category="CAPTCHA_REQUIRED",
            )

        error_element = await self.page.query_selector(selectors.ERROR_MESSAGE)
        if error_element is not None:
            text = ((await error_element.text_content()) or "").strip()
            return LoginResult(success=False, error=text or "Unknown login error", category="error_message")

        if self.config.login_path not in self.page.url and await self.is_logged_in():
            return LoginResult(success=True)

        if await self.page.query_selector(selectors.LOGGED_IN_MARKER) is not None:
            return LoginResult(success=True)

        for category, phrases in selectors.ERROR_PATTERNS.items():
            if any(phrase in content for phrase in phrases):
                return LoginResult(success=False, error=f"Login failed: {category}", category=category)

        raise AmbiguousLoginStateError(f"No login outcome rule matched at {self.page.url}")

    async def wait_for_login_result(self) -> LoginResult:
        try:
            return await self._classify_result()
        except AmbiguousLoginStateError as exc:
            await self._emit(
                logging.ERROR,
                "Login outcome indeterminate; detection rules are likely stale",
                url=self.page.url,
                error=str(exc),
            )
            return LoginResult(success=False, error=str(exc), category="indeterminate")

    async def _solve_captcha(self) -> LoginResult:
        self._set_state(LoginState.CAPTCHA_PENDING)
        if self.captcha_solver is None:
            return LoginResult(
                success=False, error="CAPTCHA present and no solver configured", requires_captcha=True
            )
        solved = await self.captcha_solver.solve_with_retry()
        await self._emit(logging.INFO, "CAPTCHA handling finished", **solved.to_dict())
        if not solved.success:
            return LoginResult(success=False, error=solved.error, requires_captcha=True, category="CAPTCHA_REQUIRED")
        return LoginResult(success=True)

    async def login(self, credentials: Credentials) -> LoginResult:
        await self._emit(logging.INFO, "Starting login", username=credentials.username)
        self._set_state(LoginState.NOT_LOGGED_IN)
        try:
            if await self.is_logged_in():
                self._set_state(LoginState.LOGGED_IN)
                return LoginResult(success=True)

            self._set_state(LoginState.NAVIGATING)
            await self.navigate_to_login_page()
            await self.wait_for_login_page_load()
            if not await self.validate_login_form():
                result = LoginResult(
                    success=False,
                    error="Login form validation failed; page structure may have changed",
                    category="form",
                )
                return self._finish(result)
            self._set_state(LoginState.FORM_READY)

            result = LoginResult(success=False, error="Login not attempted")
            for cycle in range(1, self.config.max_captcha_cycles + 1):
                if await self._captcha_pending():
                    solved = await self._solve_captcha()
                    if not solved.success:
                        return self._finish(solved)
                await self.fill_login_form(credentials)
                self._set_state(LoginState.SUBMITTING)
                await self.submit_login_form()
                result = await self.wait_for_login_result()
                if result.requires_captcha and cycle < self.config.max_captcha_cycles:
                    await self._emit(logging.WARNING, "CAPTCHA reappeared after submit", cycle=cycle)
                    continue
                break
            return self._finish(result)
        except NavigationError as exc:
            return self._finish(LoginResult(success=False, error=str(exc), retryable=True, category="navigation"))
        except LoginFormError as exc:
            return self._finish(LoginResult(success=False, error=str(exc), category="form"))
        except Exception as exc:
            logger.exception("Unexpected error during login")
            return self._finish(LoginResult(success=False, error=f"Login error: {exc}", category="internal"))

    def _finish(self, result: LoginResult) -> LoginResult:
        if result.success:
            self._set_state(LoginState.LOGGED_IN)
            LOGIN_ATTEMPTS.labels(outcome="success").inc()
        else:
            self._set_state(LoginState.FAILED)
            LOGIN_ATTEMPTS.labels(outcome="captcha" if result.requires_captcha else "failure").inc()
            logger.warning(
                "Login failed", extra={"error": result.error, "category": result.category}
            )
        return result

    async def logout(self) -> bool:
        try:
            link = await self.page.query_selector(selectors.LOGOUT_LINK)
            if link is None:
                await self._emit(logging.WARNING, "Logout link not found")
                return False
            await link.click()
            await self.page.wait_for_load_state("networkidle")
        except Exception as exc:
            await self._emit(logging.ERROR, "Logout failed", error=str(exc))
            return False
        self._set_state(LoginState.NOT_LOGGED_IN)
        return True

    async def refresh_session(self) -> bool:
        """Visit an authenticated-only page and report whether the session is still valid."""

        try:
            await self.page.goto(
                self.config.dashboard_url,
                wait_until="networkidle",
                timeout=self.config.navigation_timeout * 1000,
            )
        except Exception as exc:
            await self._emit(logging.ERROR, "Session refresh failed", error=str(exc))
            return False
        return await self.is_logged_in()


__all__ = ["LoginConfig", "LoginHandler", "LoginResult", "LoginState"]
