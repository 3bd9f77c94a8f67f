"""Persistence of scraped items and the brand/category taxonomy derived from them."""

from __future__ import annotations

import abc
import re
from dataclasses import dataclass, field
from typing import Any, Iterable, List, Optional, Sequence

from sqlalchemy import case, func, literal
from sqlalchemy.dialects.postgresql import JSONB, Insert, insert
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from ..db.models import Brand, Category
from ..db.models import ScrapedItem as ScrapedItemModel
from ..db.session import get_sessionmaker, session_scope
from ..monitoring.metrics import ITEMS_SAVED
from .logsink import ExecutionLog
from .models import ScrapedItem

DEFAULT_CATEGORY = "Default Category"
UNKNOWN_BRAND = "Unknown Brand"
SEGMENT_NAMES = ("women", "woman", "men", "man", "kids", "children")
_URL_SEGMENTS = (
    (("/women/", "/woman/"), "Women"),
    (("/men/", "/man/"), "Men"),
    (("/kids/", "/children/"), "Kids"),
)


def slugify(name: str) -> str:
    if not name:
        return ""
    slug = re.sub(r"\s+", "-", name.strip().lower())
    slug = slug.replace("&", "and")
    slug = re.sub(r"[^a-z0-9-]", "", slug)
    return slug[:50]


def infer_segment_from_url(url: str) -> Optional[str]:
    lowered = url.lower()
    for needles, segment in _URL_SEGMENTS:
        if any(needle in lowered for needle in needles):
            return segment
    return None


def category_path(breadcrumbs: Sequence[str], url: str, brand: Optional[str]) -> List[str]:
    """Clean breadcrumbs into the category path used for interning.

    Blank crumbs and crumbs equal to the brand are dropped. When no
    Women/Men/Kids style segment is present one is inferred from the URL.
    """

    crumbs = [crumb.strip() for crumb in breadcrumbs if crumb and crumb.strip()]
    if not any(crumb.lower() in SEGMENT_NAMES for crumb in crumbs):
        inferred = infer_segment_from_url(url)
        if inferred:
            crumbs.insert(0, inferred)
    if brand and brand.strip():
        brand_lower = brand.strip().lower()
        crumbs = [crumb for crumb in crumbs if crumb.lower() != brand_lower]
    return crumbs


def has_value(value: Any) -> bool:
    if value is None:
        return False
    if isinstance(value, str):
        return bool(value.strip())
    if isinstance(value, (list, tuple, dict)):
        return len(value) > 0
    return True


def _keep_or_replace(stored, incoming, incoming_is_fallback: bool):
    if incoming_is_fallback:
        return func.coalesce(stored, incoming)
    return func.coalesce(incoming, stored)


def build_item_upsert(
    item: ScrapedItem,
    brand_id: Optional[int],
    category_id: Optional[int],
    *,
    brand_is_fallback: bool = False,
    category_is_fallback: bool = False,
) -> Insert:
    """Insert a scraped item, or fill in an existing row without erasing it.

    On conflict the stored name and breadcrumbs are kept unless they are
    empty, and the non-empty keys of ``item.data`` are merged over the stored
    ``data``. Brand and category move to a new non-null id, except that the
    Unknown Brand and Default Category placeholders only fill a NULL column.
    """

    fresh = {key: value for key, value in item.data.items() if has_value(value)}
    stmt = insert(ScrapedItemModel).values(
        url=item.url,
        source=item.source,
        name=item.name,
        brand_id=brand_id,
        category_id=category_id,
        breadcrumbs=list(item.breadcrumbs),
        data=fresh,
        scraped_at=item.scraped_at,
    )
    excluded = stmt.excluded
    return stmt.on_conflict_do_update(
        constraint="uq_scraped_items_url_source",
        set_={
            "name": func.coalesce(func.nullif(func.btrim(ScrapedItemModel.name), ""), excluded.name),
            "brand_id": _keep_or_replace(ScrapedItemModel.brand_id, excluded.brand_id, brand_is_fallback),
            "category_id": _keep_or_replace(ScrapedItemModel.category_id, excluded.category_id, category_is_fallback),
            "breadcrumbs": case(
                (func.coalesce(func.jsonb_array_length(ScrapedItemModel.breadcrumbs), 0) == 0, excluded.breadcrumbs),
                else_=ScrapedItemModel.breadcrumbs,
            ),
            "data": func.coalesce(ScrapedItemModel.data, literal({}, JSONB)).op("||")(excluded.data),
            "scraped_at": excluded.scraped_at,
        },
    )


def is_unknown_brand(name: Optional[str]) -> bool:
    brand = (name or "").strip()
    return not brand or brand.lower() in ("unknown", UNKNOWN_BRAND.lower())


class CatalogStore(abc.ABC):
    """Storage backend for items and taxonomy rows. Upserts return row ids."""

    @abc.abstractmethod
    async def upsert_brand(self, name: str, slug: str, is_active: bool) -> int:
        ...

    @abc.abstractmethod
    async def upsert_category(self, name: str, slug: str, level: int, parent_id: Optional[int]) -> int:
        ...

    @abc.abstractmethod
    async def upsert_item(
        self,
        item: ScrapedItem,
        brand_id: Optional[int],
        category_id: Optional[int],
        *,
        brand_is_fallback: bool = False,
        category_is_fallback: bool = False,
    ) -> None:
        ...


class SqlCatalogStore(CatalogStore):
    """PostgreSQL ``INSERT ... ON CONFLICT`` implementation."""

    def __init__(self, sessionmaker: Optional[async_sessionmaker[AsyncSession]] = None) -> None:
        self._sessionmaker = sessionmaker

    def _scope(self):
        return session_scope(self._sessionmaker or get_sessionmaker())

    async def upsert_brand(self, name: str, slug: str, is_active: bool) -> int:
        stmt = (
            insert(Brand)
            .values(name=name, slug=slug, is_active=is_active)
            .on_conflict_do_update(index_elements=[Brand.name], set_={"slug": slug, "is_active": is_active})
            .returning(Brand.id)
        )
        async with self._scope() as session:
            return await session.scalar(stmt)

    async def upsert_category(self, name: str, slug: str, level: int, parent_id: Optional[int]) -> int:
        stmt = (
            insert(Category)
            .values(name=name, slug=slug, level=level, parent_id=parent_id, is_active=True)
            .on_conflict_do_update(
                index_elements=[Category.slug],
                set_={"name": name, "level": level, "parent_id": parent_id, "is_active": True},
            )
            .returning(Category.id)
        )
        async with self._scope() as session:
            return await session.scalar(stmt)

    async def upsert_item(
        self,
        item: ScrapedItem,
        brand_id: Optional[int],
        category_id: Optional[int],
        *,
        brand_is_fallback: bool = False,
        category_is_fallback: bool = False,
    ) -> None:
        stmt = build_item_upsert(
            item,
            brand_id,
            category_id,
            brand_is_fallback=brand_is_fallback,
            category_is_fallback=category_is_fallback,
        )
        async with self._scope() as session:
            await session.execute(stmt)


@dataclass
class SaveSummary:
    saved: int = 0
    failed: int = 0
    errors: List[str] = field(default_factory=list)


class CatalogWriter:
    """Interns taxonomy for each item and upserts it."""

    def __init__(self, store: CatalogStore) -> None:
        self.store = store

    async def ensure_brand(self, name: Optional[str]) -> int:
        brand = (name or "").strip()
        if is_unknown_brand(brand):
            return await self.store.upsert_brand(UNKNOWN_BRAND, slugify(UNKNOWN_BRAND), False)
        return await self.store.upsert_brand(brand, slugify(brand), True)

    async def ensure_category(self, crumbs: Sequence[str]) -> int:
        if not crumbs:
            return await self.store.upsert_category(DEFAULT_CATEGORY, slugify(DEFAULT_CATEGORY), 1, None)

        parent_id: Optional[int] = None
        parts: List[str] = []
        for level, crumb in enumerate(crumbs, start=1):
            parts.append(slugify(crumb))
            composite = "-".join(parts)[:255]
            parent_id = await self.store.upsert_category(crumb, composite, level, parent_id)
        assert parent_id is not None
        return parent_id

    async def save_items(
        self,
        items: Iterable[ScrapedItem],
        source: str,
        log: Optional[ExecutionLog] = None,
    ) -> SaveSummary:
        summary = SaveSummary()
        for item in items:
            if not item.source:
                item.source = source
            if not item.url:
                message = f"Skipped item due to missing URL. Name: {item.name or 'N/A'}"
                summary.failed += 1
                summary.errors.append(message)
                if log:
                    await log.warning(message)
                continue
            try:
                brand_id = await self.ensure_brand(item.brand)
                crumbs = category_path(item.breadcrumbs, item.url, item.brand)
                category_id = await self.ensure_category(crumbs)
                await self.store.upsert_item(
                    item,
                    brand_id,
                    category_id,
                    brand_is_fallback=is_unknown_brand(item.brand),
                    category_is_fallback=not crumbs,
                )
            except Exception as exc:
                summary.failed += 1
                summary.errors.append(f"{item.url}: {exc}")
                if log:
                    await log.error("Failed to save item", url=item.url, error=str(exc))
                continue
            summary.saved += 1
            ITEMS_SAVED.inc()
        return summary


__all__ = [
    "CatalogStore",
    "CatalogWriter",
    "SaveSummary",
    "SqlCatalogStore",
    "build_item_upsert",
    "category_path",
    "has_value",
    "infer_segment_from_url",
    "is_unknown_brand",
    "slugify",
]
