"""Merchant directory scraper plugin: start URLs in, merchant records out."""

from __future__ import annotations

import logging
from datetime import datetime
from typing import Any, AsyncContextManager, Callable, Dict, Iterable, List, Optional

import httpx
from playwright.async_api import Browser, Page

from ...browser import playwright_browser
from ...config import Settings
from ...errors import ValidationError
from ...jobs.logsink import ExecutionLog
from ...jobs.models import ScrapedItem
from ...reporting import ProgressReporter
from ..base import Credentials, ScraperOptions, SiteKey, SiteScraper, credentials_from_settings
from . import selectors
from .batch import BatchConfig, BatchMerchantScraper
from .captcha import CaptchaConfig, CaptchaSolver
from .detail import MerchantDetailHandler
from .login import LoginConfig, LoginHandler
from .models import MerchantTarget, MerchantTask
from .session import SessionManager

logger = logging.getLogger(__name__)

BrowserFactory = Callable[..., AsyncContextManager[Browser]]


def normalize_merchant_url(url: str) -> str:
    # the directory links some detail pages through a misspelled path
    return url.strip().replace("/program_dtails/", "/program_directory/")


def targets_from_urls(urls: Iterable[str]) -> List[MerchantTarget]:
    targets: List[MerchantTarget] = []
    seen = set()
    for raw in urls:
        url = normalize_merchant_url(raw)
        match = selectors.MERCHANT_URL_PATTERN.search(url)
        if not match:
            logger.warning("Skipping start URL that is not a merchant detail page", extra={"url": url})
            continue
        merchant_id = match.group(1)
        if merchant_id in seen:
            continue
        seen.add(merchant_id)
        targets.append(MerchantTarget(merchant_id=merchant_id, merchant_name=f"Merchant {merchant_id}", merchant_url=url))
    return targets


def targets_from_config(entries: Iterable[Dict[str, Any]]) -> List[MerchantTarget]:
    targets: List[MerchantTarget] = []
    for entry in entries:
        url = entry.get("url")
        if not url:
            raise ValidationError(f"Merchant entry without url: {entry!r}")
        url = normalize_merchant_url(url)
        match = selectors.MERCHANT_URL_PATTERN.search(url)
        merchant_id = str(entry.get("id") or (match.group(1) if match else url))
        targets.append(
            MerchantTarget(
                merchant_id=merchant_id,
                merchant_name=entry.get("name") or f"Merchant {merchant_id}",
                merchant_url=url,
            )
        )
    return targets


class MerchantDirectoryScraper(SiteScraper):
    site = SiteKey.FMTC
    source = SiteKey.FMTC.value

    def __init__(
        self,
        settings: Settings,
        session_manager: SessionManager,
        *,
        reporter: Optional[ProgressReporter] = None,
        browser_factory: BrowserFactory = playwright_browser,
        detail_handler: Optional[MerchantDetailHandler] = None,
        captcha_client: Optional[httpx.AsyncClient] = None,
    ) -> None:
        self.settings = settings
        self.session_manager = session_manager
        self.reporter = reporter
        self.browser_factory = browser_factory
        self.detail_handler = detail_handler or MerchantDetailHandler()
        self.captcha_client = captcha_client

    def resolve_targets(self, start_urls: List[str], options: ScraperOptions) -> List[MerchantTarget]:
        configured = options.config.get("merchants") or []
        targets = targets_from_config(configured) if configured else targets_from_urls(start_urls)
        # one detail page request per merchant
        limits = [limit for limit in (options.max_items, options.max_requests) if limit is not None]
        if limits:
            targets = targets[: min(limits)]
        return targets

    def resolve_credentials(self, options: ScraperOptions) -> Credentials:
        credentials = options.credentials or credentials_from_settings(self.settings)
        if credentials is None or not credentials.username or not credentials.password:
            raise ValidationError("Merchant directory scraping needs a username and password")
        return credentials

    def login_handler_factory(self, log: Optional[ExecutionLog]) -> Callable[[Page], LoginHandler]:
        def build(page: Page) -> LoginHandler:
            solver = CaptchaSolver(page, CaptchaConfig.from_settings(self.settings), client=self.captcha_client)
            return LoginHandler(page, LoginConfig.from_settings(self.settings), captcha_solver=solver, log=log)

        return build

    def to_item(self, task: MerchantTask) -> ScrapedItem:
        data = dict(task.result or {})
        category = data.get("primary_category")
        return ScrapedItem(
            url=task.merchant_url,
            source=self.source,
            name=data.get("name") or task.merchant_name,
            breadcrumbs=[category] if category else [],
            data=data,
            scraped_at=task.finished_at or datetime.utcnow(),
        )

    async def scrape(
        self,
        start_urls: List[str],
        options: ScraperOptions,
        execution_id: Optional[str] = None,
    ) -> Optional[List[ScrapedItem]]:
        targets = self.resolve_targets(start_urls, options)
        if not targets:
            if options.log is not None:
                await options.log.warning("No merchant detail URLs to scrape", start_urls=start_urls)
            return []
        credentials = self.resolve_credentials(options)
        if options.log is not None:
            await options.log.info("Scraping merchant details", merchants=len(targets))

        async with self.browser_factory(headless=self.settings.browser_headless) as browser:
            batch = BatchMerchantScraper(
                browser,
                targets,
                credentials,
                session_manager=self.session_manager,
                login_handler_factory=self.login_handler_factory(options.log),
                detail_handler=self.detail_handler,
                config=BatchConfig.from_settings(self.settings, options.concurrency),
                reporter=self.reporter,
                log=options.log,
                execution_id=execution_id,
            )
            result = await batch.run()

        if result.failed_tasks and options.log is not None:
            await options.log.warning(
                "Some merchant pages failed",
                failed=result.failed,
                errors=[task.error for task in result.failed_tasks[:5]],
            )
        return [self.to_item(task) for task in result.completed_tasks]


__all__ = [
    "MerchantDirectoryScraper",
    "normalize_merchant_url",
    "targets_from_config",
    "targets_from_urls",
]
