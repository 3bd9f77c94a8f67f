"""Merchant directory (FMTC) scraper: login, session reuse and batch detail scraping."""

from .batch import BatchConfig, BatchMerchantScraper
from .detail import MerchantDetailHandler
from .login import LoginConfig, LoginHandler, LoginResult, LoginState
from .models import BatchProgress, BatchResult, MerchantTarget, MerchantTask, TaskStatus, WorkerState
from .plugin import MerchantDirectoryScraper
from .session import DatabaseSessionStore, FileSessionStore, SessionManager

__all__ = [
    "BatchConfig",
    "BatchMerchantScraper",
    "BatchProgress",
    "BatchResult",
    "DatabaseSessionStore",
    "FileSessionStore",
    "LoginConfig",
    "LoginHandler",
    "LoginResult",
    "LoginState",
    "MerchantDetailHandler",
    "MerchantDirectoryScraper",
    "MerchantTarget",
    "MerchantTask",
    "SessionManager",
    "TaskStatus",
    "WorkerState",
]
