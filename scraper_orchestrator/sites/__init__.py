"""Site scraper plugins."""

from .base import Credentials, ScraperOptions, SiteKey, SiteRegistry, SiteScraper, credentials_from_settings

__all__ = ["Credentials", "ScraperOptions", "SiteKey", "SiteRegistry", "SiteScraper", "credentials_from_settings"]
