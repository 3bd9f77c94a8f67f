"""Exception types shared by the queue, executor and site scrapers."""

from __future__ import annotations

from typing import Optional


class ScraperServiceError(Exception):
    """Base class for all service errors."""


class ValidationError(ScraperServiceError):
    """Input or configuration rejected before any work started."""


class NotFoundError(ScraperServiceError):
    """A job definition or execution record does not exist."""


class DisabledJobError(ScraperServiceError):
    """The job definition exists but is not enabled."""


class UnsupportedSiteError(ScraperServiceError):
    """The job names a site with no registered scraper."""


class NavigationError(ScraperServiceError):
    """Navigation failed after its retry budget was exhausted."""


class LoginFormError(ScraperServiceError):
    """The login form is missing or did not accept input."""


class CaptchaError(ScraperServiceError):
    """A CAPTCHA could not be solved."""

    def __init__(self, message: str, *, retryable: bool = False) -> None:
        super().__init__(message)
        self.retryable = retryable


class LoginError(ScraperServiceError):
    """Login did not succeed; raised at the batch boundary."""

    def __init__(self, message: str, *, requires_captcha: bool = False, category: Optional[str] = None) -> None:
        super().__init__(message)
        self.requires_captcha = requires_captcha
        self.category = category


class AmbiguousLoginStateError(ScraperServiceError):
    """None of the login result rules matched the page."""


class PersistenceError(ScraperServiceError):
    """A database operation failed."""


__all__ = [
    "ScraperServiceError",
    "ValidationError",
    "NotFoundError",
    "DisabledJobError",
    "UnsupportedSiteError",
    "NavigationError",
    "LoginFormError",
    "CaptchaError",
    "LoginError",
    "AmbiguousLoginStateError",
    "PersistenceError",
]
