"""Site scraper plugin contract and the closed registry of supported sites."""

from __future__ import annotations

import abc
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Any, Dict, List, Mapping, Optional

from ..config import Settings
from ..errors import UnsupportedSiteError, ValidationError
from ..jobs.logsink import ExecutionLog
from ..jobs.models import ScrapedItem


class SiteKey(str, Enum):
    """Every site the service can scrape. Each member needs a registered scraper."""

    FMTC = "FMTC"

    @classmethod
    def parse(cls, value: str) -> "SiteKey":
        for member in cls:
            if value == member.value or value.upper() == member.name:
                return member
        raise UnsupportedSiteError(f"Unsupported target site or scraper not found: {value}")


@dataclass(frozen=True)
class Credentials:
    username: str
    password: str = field(repr=False)


def credentials_from_settings(settings: Settings, credential_ref: Optional[str] = None) -> Optional[Credentials]:
    """Look up ``credential_ref`` in ``settings.credentials``, else use the default pair."""

    if credential_ref:
        raw = settings.credentials.get(credential_ref)
        if raw is None:
            raise ValidationError(f"Unknown credential reference: {credential_ref}")
        username, sep, password = raw.partition(":")
        if not sep or not username:
            raise ValidationError(f"Credential {credential_ref} must look like username:password")
        return Credentials(username=username, password=password)
    if settings.merchant_username and settings.merchant_password:
        return Credentials(
            username=settings.merchant_username,
            password=settings.merchant_password.get_secret_value(),
        )
    return None


@dataclass
class ScraperOptions:
    """Normalized per-execution options handed to a site scraper."""

    max_requests: Optional[int] = None
    max_items: Optional[int] = None
    concurrency: Optional[int] = None
    storage_dir: Optional[Path] = None
    credentials: Optional[Credentials] = None
    config: Dict[str, Any] = field(default_factory=dict)
    log: Optional[ExecutionLog] = None


class SiteScraper(abc.ABC):
    site: SiteKey

    @abc.abstractmethod
    async def scrape(
        self,
        start_urls: List[str],
        options: ScraperOptions,
        execution_id: Optional[str] = None,
    ) -> Optional[List[ScrapedItem]]:
        """Scrape ``start_urls`` and return the produced items (or ``None``)."""


class SiteRegistry:
    """Maps each :class:`SiteKey` to its scraper. Construction fails on gaps."""

    def __init__(self, scrapers: Mapping[SiteKey, SiteScraper]) -> None:
        missing = [key.value for key in SiteKey if key not in scrapers]
        if missing:
            raise ValidationError(f"No scraper registered for: {', '.join(missing)}")
        self._scrapers: Dict[SiteKey, SiteScraper] = dict(scrapers)

    def resolve(self, site: str) -> SiteScraper:
        return self._scrapers[SiteKey.parse(site)]

    def keys(self) -> List[SiteKey]:
        return list(self._scrapers)


__all__ = ["Credentials", "credentials_from_settings", "ScraperOptions", "SiteKey", "SiteRegistry", "SiteScraper"]
