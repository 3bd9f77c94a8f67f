"""Extraction of the small record stored for each merchant detail page."""

from __future__ import annotations

import logging
from typing import Any, Dict, List
from urllib.parse import urljoin

from bs4 import BeautifulSoup
from playwright.async_api import Page

from . import selectors

logger = logging.getLogger(__name__)


def _clean(text: str) -> str:
    return " ".join(text.split())


def parse_merchant_detail(html: str, base_url: str) -> Dict[str, Any]:
    soup = BeautifulSoup(html, "html.parser")
    detail: Dict[str, Any] = {}

    for item in soup.select("li.list-group-item"):
        label_tag = item.find("span")
        if label_tag is None:
            continue
        label = _clean(label_tag.get_text())
        field = selectors.DETAIL_LABELS.get(label)
        if field is None:
            continue
        value_tag = item.select_one(".ml-5") or item
        if field == "homepage":
            anchor = value_tag.find("a", href=True)
            if anchor is not None:
                detail[field] = urljoin(base_url, anchor["href"])
            continue
        value = _clean(value_tag.get_text().replace(label, "", 1))
        if not value:
            continue
        if field == "ships_to":
            detail[field] = [part.strip() for part in value.split(",") if part.strip()]
        else:
            detail[field] = value

    networks: List[Dict[str, str]] = []
    for row in soup.select(selectors.NETWORK_TABLE_ROWS):
        cells = row.find_all("td")
        if len(cells) < 4:
            continue
        networks.append(
            {
                "fmtc_id": _clean(cells[1].get_text()),
                "network": _clean(cells[2].get_text()),
                "status": _clean(cells[3].get_text()),
            }
        )
    if networks:
        detail["networks"] = networks
        detail["fmtc_id"] = networks[0]["fmtc_id"]
    return detail


class MerchantDetailHandler:
    """Reads the current page and returns the merchant record, or raises."""

    async def scrape(self, page: Page, url: str, merchant_name: str) -> Dict[str, Any]:
        html = await page.content()
        detail = parse_merchant_detail(html, url)
        if not detail:
            raise ValueError(f"No merchant details found on {url}")
        logger.debug("Extracted merchant detail", extra={"merchant": merchant_name, "fields": sorted(detail)})
        return {"name": merchant_name, "source_url": url, **detail}


__all__ = ["MerchantDetailHandler", "parse_merchant_detail"]
