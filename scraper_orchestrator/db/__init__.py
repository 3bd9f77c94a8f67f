"""Database package."""

from .models import (
    Base,
    Brand,
    BrowserSession,
    Category,
    ScrapedItem,
    ScraperTaskDefinition,
    ScraperTaskExecution,
    ScraperTaskLog,
)
from .session import dispose_engine, get_engine, get_sessionmaker, session_scope

__all__ = [
    "Base",
    "Brand",
    "BrowserSession",
    "Category",
    "ScrapedItem",
    "ScraperTaskDefinition",
    "ScraperTaskExecution",
    "ScraperTaskLog",
    "dispose_engine",
    "get_engine",
    "get_sessionmaker",
    "session_scope",
]
