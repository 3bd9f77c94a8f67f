"""Authenticated browser session persistence keyed by credential identity."""

from __future__ import annotations

import abc
import json
import logging
import re
import time
from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional, Tuple

from playwright.async_api import BrowserContext
from sqlalchemy import delete, select
from sqlalchemy.dialects.postgresql import insert
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from ...db.models import BrowserSession
from ...db.session import get_sessionmaker, session_scope
from ...reporting import best_effort

logger = logging.getLogger(__name__)


@dataclass
class StoredSession:
    identity: str
    state: Dict[str, Any]
    saved_at: float

    def age(self, now: float) -> float:
        return now - self.saved_at


class SessionStore(abc.ABC):
    name: str = "store"

    @abc.abstractmethod
    async def load(self, identity: str) -> Optional[StoredSession]:
        ...

    @abc.abstractmethod
    async def save(self, session: StoredSession, max_age_seconds: float) -> None:
        ...

    @abc.abstractmethod
    async def delete(self, identity: str) -> None:
        ...


class DatabaseSessionStore(SessionStore):
    name = "database"

    def __init__(self, sessionmaker: Optional[async_sessionmaker[AsyncSession]] = None) -> None:
        self._sessionmaker = sessionmaker

    def _scope(self):
        return session_scope(self._sessionmaker or get_sessionmaker())

    async def load(self, identity: str) -> Optional[StoredSession]:
        async with self._scope() as session:
            row = await session.scalar(
                select(BrowserSession).where(BrowserSession.username == identity, BrowserSession.is_active.is_(True))
            )
            if not row:
                return None
            return StoredSession(identity=row.username, state=row.session_state, saved_at=row.saved_at.timestamp())

    async def save(self, session: StoredSession, max_age_seconds: float) -> None:
        saved_at = datetime.fromtimestamp(session.saved_at, tz=timezone.utc)
        expires_at = datetime.fromtimestamp(session.saved_at + max_age_seconds, tz=timezone.utc)
        values = {
            "session_state": session.state,
            "saved_at": saved_at,
            "expires_at": expires_at,
            "last_activity_at": saved_at,
            "is_active": True,
            "metadata": {"cookies": len(session.state.get("cookies", []))},
        }
        stmt = insert(BrowserSession.__table__).values(username=session.identity, **values)
        stmt = stmt.on_conflict_do_update(
            index_elements=["username"],
            set_={
                "session_state": stmt.excluded.session_state,
                "saved_at": stmt.excluded.saved_at,
                "expires_at": stmt.excluded.expires_at,
                "last_activity_at": stmt.excluded.last_activity_at,
                "is_active": True,
                "metadata": stmt.excluded["metadata"],
            },
        )
        async with self._scope() as db:
            await db.execute(stmt)

    async def delete(self, identity: str) -> None:
        async with self._scope() as session:
            await session.execute(delete(BrowserSession).where(BrowserSession.username == identity))


class FileSessionStore(SessionStore):
    """One JSON file per identity under ``directory``."""

    name = "file"

    def __init__(self, directory: Path) -> None:
        self.directory = Path(directory)

    def path_for(self, identity: str) -> Path:
        safe = re.sub(r"[^a-zA-Z0-9]", "_", identity)
        return self.directory / f"merchant-session-{safe}.json"

    async def load(self, identity: str) -> Optional[StoredSession]:
        path = self.path_for(identity)
        if not path.exists():
            return None
        payload = json.loads(path.read_text(encoding="utf-8"))
        return StoredSession(identity=payload["username"], state=payload["state"], saved_at=float(payload["saved_at"]))

    async def save(self, session: StoredSession, max_age_seconds: float) -> None:
        path = self.path_for(session.identity)
        path.parent.mkdir(parents=True, exist_ok=True)
        payload = {
            "username": session.identity,
            "saved_at": session.saved_at,
            "max_age": max_age_seconds,
            "state": session.state,
        }
        path.write_text(json.dumps(payload, indent=2), encoding="utf-8")

    async def delete(self, identity: str) -> None:
        self.path_for(identity).unlink(missing_ok=True)


class SessionManager:
    """Loads and saves browser storage state with a primary and a fallback store.

    A stored state is only handed out while its age is below ``max_age_seconds``.
    Expired entries are deleted on read. Write failures are logged and never
    propagate to the caller.
    """

    def __init__(
        self,
        primary: Optional[SessionStore],
        fallback: Optional[SessionStore] = None,
        *,
        max_age_seconds: float = 4 * 60 * 60,
        clock: Callable[[], float] = time.time,
    ) -> None:
        if primary is None and fallback is None:
            raise ValueError("SessionManager needs at least one store")
        self.primary = primary
        self.fallback = fallback
        self.max_age_seconds = max_age_seconds
        self._clock = clock

    @property
    def stores(self) -> List[SessionStore]:
        return [store for store in (self.primary, self.fallback) if store is not None]

    async def _read(self, identity: str) -> Tuple[Optional[StoredSession], Optional[SessionStore]]:
        for store in self.stores:
            try:
                return await store.load(identity), store
            except Exception as exc:
                logger.warning(
                    "Session load failed, trying next store",
                    extra={"store": store.name, "identity": identity, "error": str(exc)},
                )
        return None, None

    async def load_session_state(self, identity: str) -> Optional[Dict[str, Any]]:
        stored, store = await self._read(identity)
        if stored is None or store is None:
            return None
        if stored.identity != identity:
            logger.info(
                "Stored session belongs to a different identity",
                extra={"stored": stored.identity, "requested": identity},
            )
            return None
        age = stored.age(self._clock())
        if age >= self.max_age_seconds:
            logger.info(
                "Stored session expired",
                extra={"identity": identity, "age_minutes": round(age / 60), "store": store.name},
            )
            await best_effort(store.delete(identity), description=f"Expired session cleanup ({store.name})")
            return None
        logger.info(
            "Restored stored session",
            extra={"identity": identity, "age_minutes": round(age / 60), "store": store.name},
        )
        return stored.state

    async def save_session_state(self, context: BrowserContext, identity: str) -> bool:
        try:
            state = await context.storage_state()
        except Exception as exc:
            logger.warning("Could not serialize browser storage state: %s", exc, extra={"identity": identity})
            return False

        stored = StoredSession(identity=identity, state=state, saved_at=self._clock())
        for store in self.stores:
            try:
                await store.save(stored, self.max_age_seconds)
            except Exception as exc:
                logger.warning(
                    "Session save failed",
                    extra={"store": store.name, "identity": identity, "error": str(exc)},
                )
                continue
            logger.info(
                "Saved session state",
                extra={"store": store.name, "identity": identity, "cookies": len(state.get("cookies", []))},
            )
            return True
        return False

    async def clear_session_state(self, identity: str) -> None:
        for store in self.stores:
            await best_effort(store.delete(identity), description=f"Session clear ({store.name})")

    async def session_info(self, identity: str) -> Dict[str, Any]:
        stored, store = await self._read(identity)
        if stored is None or store is None:
            return {"exists": False, "identity": identity}
        age = stored.age(self._clock())
        return {
            "exists": True,
            "identity": stored.identity,
            "source": store.name,
            "age_seconds": round(age, 1),
            "expired": age >= self.max_age_seconds,
        }


__all__ = [
    "DatabaseSessionStore",
    "FileSessionStore",
    "SessionManager",
    "SessionStore",
    "StoredSession",
]
