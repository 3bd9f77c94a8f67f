import asyncio
from contextlib import asynccontextmanager

import pytest
from fakes import FakeBrowser, FakeElement, FakePage, MemorySessionStore

from scraper_orchestrator.config import Settings
from scraper_orchestrator.errors import ValidationError
from scraper_orchestrator.sites.base import ScraperOptions
from scraper_orchestrator.sites.merchants import selectors
from scraper_orchestrator.sites.merchants.detail import MerchantDetailHandler, parse_merchant_detail
from scraper_orchestrator.sites.merchants.plugin import MerchantDirectoryScraper, targets_from_config, targets_from_urls
from scraper_orchestrator.sites.merchants.session import SessionManager

DETAIL_HTML = """
<html><body>
<ul class="list-group">
  <li class="list-group-item"><span>Homepage:</span><div class="ml-5"><a href="https://acme.example">acme.example</a></div></li>
  <li class="list-group-item"><span>Primary Category:</span><div class="ml-5">Apparel &amp; Accessories</div></li>
  <li class="list-group-item"><span>Primary Country:</span><div class="ml-5">US</div></li>
  <li class="list-group-item"><span>Ships To:</span><div class="ml-5">US, CA , GB</div></li>
  <li class="list-group-item"><span>Unrelated:</span><div class="ml-5">ignored</div></li>
</ul>
<table class="fmtc-table"><tbody>
  <tr><td>1</td><td>12345</td><td>Awin</td><td><span class="badge">Active</span></td></tr>
  <tr><td>2</td><td>67890</td><td>CJ</td><td>Closed</td></tr>
  <tr><td>short row</td></tr>
</tbody></table>
</body></html>
"""


def test_parse_merchant_detail():
    detail = parse_merchant_detail(DETAIL_HTML, "https://account.fmtc.co/cp/program_directory/merchant/1")

    assert detail == {
        "homepage": "https://acme.example",
        "primary_category": "Apparel & Accessories",
        "primary_country": "US",
        "ships_to": ["US", "CA", "GB"],
        "networks": [
            {"fmtc_id": "12345", "network": "Awin", "status": "Active"},
            {"fmtc_id": "67890", "network": "CJ", "status": "Closed"},
        ],
        "fmtc_id": "12345",
    }


def test_detail_handler_rejects_empty_pages():
    page = FakePage(html="<html><body>Nothing here</body></html>")

    with pytest.raises(ValueError):
        asyncio.run(MerchantDetailHandler().scrape(page, "https://x.test/merchant/1", "Acme"))


def test_targets_from_urls_fixes_typo_and_deduplicates(caplog):
    targets = targets_from_urls(
        [
            "https://account.fmtc.co/cp/program_dtails/merchant/7",
            "https://account.fmtc.co/cp/program_directory/merchant/7",
            "https://account.fmtc.co/cp/program_directory/merchant/8",
            "https://account.fmtc.co/cp/dash",
        ]
    )

    assert [t.merchant_id for t in targets] == ["7", "8"]
    assert targets[0].merchant_url == "https://account.fmtc.co/cp/program_directory/merchant/7"
    assert "not a merchant detail page" in caplog.text


def test_targets_from_config():
    targets = targets_from_config([{"name": "Acme", "url": "https://account.fmtc.co/cp/program_directory/merchant/9"}])

    assert targets[0].merchant_id == "9"
    assert targets[0].merchant_name == "Acme"
    with pytest.raises(ValidationError):
        targets_from_config([{"name": "No url"}])


def _settings(**overrides):
    values = dict(
        merchant_username="robot@example.com",
        merchant_password="hunter2",
        batch_min_delay_ms=0,
        batch_max_delay_ms=0,
        batch_concurrency=2,
    )
    values.update(overrides)
    return Settings(**values)


def _logged_in_page():
    page = FakePage(html=DETAIL_HTML)
    page.elements[selectors.LOGGED_IN_MARKER] = FakeElement()
    return page


def test_scrape_maps_completed_merchants_to_items():
    browser = FakeBrowser(page_factory=_logged_in_page)
    launches = []

    @asynccontextmanager
    async def browser_factory(headless=True):
        launches.append(headless)
        yield browser

    scraper = MerchantDirectoryScraper(
        _settings(), SessionManager(MemorySessionStore()), browser_factory=browser_factory
    )
    options = ScraperOptions(
        max_items=2,
        config={
            "merchants": [
                {"name": "Acme", "url": "https://account.fmtc.co/cp/program_directory/merchant/1"},
                {"name": "Globex", "url": "https://account.fmtc.co/cp/program_directory/merchant/2"},
                {"name": "Initech", "url": "https://account.fmtc.co/cp/program_directory/merchant/3"},
            ]
        },
    )

    items = asyncio.run(scraper.scrape([], options, execution_id=None))

    assert launches == [True]
    assert sorted(item.name for item in items) == ["Acme", "Globex"]
    item = next(i for i in items if i.name == "Acme")
    assert item.source == "FMTC"
    assert item.url == "https://account.fmtc.co/cp/program_directory/merchant/1"
    assert item.breadcrumbs == ["Apparel & Accessories"]
    assert item.data["fmtc_id"] == "12345"
    assert item.data["source_url"] == item.url


def test_scrape_without_credentials_is_rejected():
    scraper = MerchantDirectoryScraper(
        Settings(merchant_username=None, merchant_password=None), SessionManager(MemorySessionStore())
    )
    options = ScraperOptions()

    with pytest.raises(ValidationError):
        asyncio.run(scraper.scrape(["https://account.fmtc.co/cp/program_directory/merchant/1"], options))


def test_scrape_with_no_targets_returns_empty_list():
    scraper = MerchantDirectoryScraper(_settings(), SessionManager(MemorySessionStore()))

    assert asyncio.run(scraper.scrape(["https://account.fmtc.co/cp/dash"], ScraperOptions())) == []


def test_resolve_targets_applies_the_tighter_of_item_and_request_caps():
    scraper = MerchantDirectoryScraper(_settings(), SessionManager(MemorySessionStore()))
    urls = [f"https://account.fmtc.co/cp/program_directory/merchant/{i}" for i in range(1, 6)]

    assert len(scraper.resolve_targets(urls, ScraperOptions())) == 5
    assert len(scraper.resolve_targets(urls, ScraperOptions(max_items=3))) == 3
    assert len(scraper.resolve_targets(urls, ScraperOptions(max_items=3, max_requests=2))) == 2
    assert len(scraper.resolve_targets(urls, ScraperOptions(max_requests=4))) == 4
