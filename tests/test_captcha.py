import asyncio

import httpx
from fakes import FakeElement, FakePage

from scraper_orchestrator.sites.merchants import selectors
from scraper_orchestrator.sites.merchants.captcha import CaptchaConfig, CaptchaSolver

SITE_KEY = "6Lc" + "x" * 37


def _captcha_page():
    page = FakePage(url="https://account.fmtc.co/cp/login", title="FMTC")
    response = FakeElement()
    page.elements[selectors.RECAPTCHA] = FakeElement()
    page.elements[selectors.RECAPTCHA_RESPONSE] = response

    def evaluate(script, arg):
        if arg is None:
            return SITE_KEY
        response.value = arg["token"]
        return True

    page.evaluate_handler = evaluate
    return page, response


def _auto_config(**overrides):
    values = dict(
        mode="auto",
        api_key="test-key",
        base_url="https://solver.test",
        first_poll_delay=0,
        poll_interval=0,
        retry_attempts=2,
        retry_delay=0,
    )
    values.update(overrides)
    return CaptchaConfig(**values)


def test_auto_mode_submits_polls_and_applies_token():
    requests = []
    polls = iter([{"status": 0, "request": "CAPCHA_NOT_READY"}, {"status": 1, "request": "solved-token"}])

    def handler(request: httpx.Request) -> httpx.Response:
        requests.append(request)
        if request.url.path == "/in.php":
            return httpx.Response(200, json={"status": 1, "request": "42"})
        return httpx.Response(200, json=next(polls))

    page, response = _captcha_page()

    async def scenario():
        async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as client:
            return await CaptchaSolver(page, _auto_config(), client=client).solve()

    result = asyncio.run(scenario())

    assert result.success
    assert result.method == "auto"
    assert response.value == "solved-token"
    assert requests[0].method == "POST"
    assert b"googlekey=" + SITE_KEY.encode() in requests[0].content
    assert [r.url.params.get("id") for r in requests[1:]] == ["42", "42"]


def test_solver_error_is_reported_after_retries(caplog):
    calls = []

    def handler(request: httpx.Request) -> httpx.Response:
        calls.append(request)
        return httpx.Response(200, json={"status": 0, "request": "ERROR_ZERO_BALANCE"})

    page, _ = _captcha_page()

    async def scenario():
        async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as client:
            return await CaptchaSolver(page, _auto_config(), client=client).solve_with_retry()

    caplog.set_level("WARNING")
    result = asyncio.run(scenario())

    assert not result.success
    assert "All 2 attempts failed" in result.error
    assert "ERROR_ZERO_BALANCE" in result.error
    assert len(calls) == 2
    assert "reCAPTCHA attempt 1/2 failed" in caplog.text


def test_missing_api_key_fails_without_http():
    page, _ = _captcha_page()

    result = asyncio.run(CaptchaSolver(page, _auto_config(api_key=None)).solve())

    assert not result.success
    assert "API key" in result.error


def test_skip_mode_reports_unsolved():
    page, _ = _captcha_page()

    result = asyncio.run(CaptchaSolver(page, CaptchaConfig(mode="skip")).solve())

    assert not result.success
    assert result.method == "skip"


def test_manual_mode_times_out_as_failure():
    page, _ = _captcha_page()

    result = asyncio.run(CaptchaSolver(page, CaptchaConfig(mode="manual", manual_timeout=0.01)).solve())

    assert not result.success
    assert "manual reCAPTCHA" in result.error


def test_no_captcha_is_trivially_solved():
    page = FakePage()

    result = asyncio.run(CaptchaSolver(page, CaptchaConfig(mode="skip")).solve())

    assert result.success
