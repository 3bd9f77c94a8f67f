import asyncio

from fakes import FakeElement, FakePage

from scraper_orchestrator.config import Settings
from scraper_orchestrator.sites.base import Credentials
from scraper_orchestrator.sites.merchants import selectors
from scraper_orchestrator.sites.merchants.captcha import CaptchaResult
from scraper_orchestrator.sites.merchants.login import LoginConfig, LoginHandler, LoginState

CREDENTIALS = Credentials(username="robot@example.com", password="hunter2")
CONFIG = LoginConfig(navigation_backoff=0, settle_delay=0, form_timeout=1)


def _login_page(on_submit):
    page = FakePage(title="FMTC | Login", html="<html><body>Sign in</body></html>")
    page.elements.update(
        {
            selectors.LOGIN_FORM: FakeElement(),
            selectors.USERNAME_INPUT: FakeElement(),
            selectors.PASSWORD_INPUT: FakeElement(),
            selectors.SUBMIT_BUTTON: FakeElement(on_click=lambda: on_submit(page)),
        }
    )
    return page


def _land_on_dashboard(page):
    page.url = CONFIG.dashboard_url
    page.html = "<html><body>Dashboard</body></html>"
    del page.elements[selectors.USERNAME_INPUT]
    del page.elements[selectors.PASSWORD_INPUT]
    page.elements[selectors.LOGGED_IN_MARKER] = FakeElement()


def _show_captcha(page):
    page.elements[selectors.RECAPTCHA] = FakeElement()


def test_dashboard_marker_off_login_path_is_success(caplog):
    page = _login_page(_land_on_dashboard)
    handler = LoginHandler(page, CONFIG)

    caplog.set_level("DEBUG")
    result = asyncio.run(handler.login(CREDENTIALS))

    assert result.success
    assert handler.state is LoginState.LOGGED_IN
    assert page.visited == [CONFIG.login_url]
    assert "hunter2" not in caplog.text


def test_captcha_after_submit_reports_requires_captcha():
    page = _login_page(_show_captcha)
    handler = LoginHandler(page, CONFIG)

    result = asyncio.run(handler.login(CREDENTIALS))

    assert not result.success
    assert result.requires_captcha
    assert handler.state is LoginState.FAILED


def test_explicit_error_element_is_fatal_with_its_text():
    def reject(page):
        page.elements[selectors.ERROR_MESSAGE] = FakeElement(text="  Invalid username or password ")

    handler = LoginHandler(_login_page(reject), CONFIG)

    result = asyncio.run(handler.login(CREDENTIALS))

    assert not result.success
    assert not result.retryable
    assert result.error == "Invalid username or password"


def test_anti_automation_page_wins_over_other_signals():
    def block(page):
        page.html = "<html>We detected unusual traffic from your network</html>"
        page.elements[selectors.RECAPTCHA] = FakeElement()

    result = asyncio.run(LoginHandler(_login_page(block), CONFIG).login(CREDENTIALS))

    assert not result.success
    assert result.category == "anti_automation"
    assert not result.requires_captcha


def test_unmatched_page_is_indeterminate(caplog):
    result = asyncio.run(LoginHandler(_login_page(lambda page: None), CONFIG).login(CREDENTIALS))

    assert not result.success
    assert result.category == "indeterminate"
    assert not result.retryable
    assert any(record.levelname == "ERROR" for record in caplog.records)


def test_wrong_title_exhausts_navigation_retries():
    page = _login_page(_land_on_dashboard)
    page.title_text = "Maintenance"

    result = asyncio.run(LoginHandler(page, CONFIG).login(CREDENTIALS))

    assert not result.success
    assert result.retryable
    assert result.category == "navigation"
    assert page.visited == [CONFIG.login_url] * CONFIG.navigation_attempts


def test_missing_form_is_a_fatal_form_error():
    page = _login_page(_land_on_dashboard)
    del page.elements[selectors.PASSWORD_INPUT]

    result = asyncio.run(LoginHandler(page, CONFIG).login(CREDENTIALS))

    assert not result.success
    assert result.category == "form"
    assert not result.retryable


def test_already_logged_in_skips_the_form():
    page = FakePage(url=CONFIG.dashboard_url, elements={selectors.LOGGED_IN_MARKER: FakeElement()})

    result = asyncio.run(LoginHandler(page, CONFIG).login(CREDENTIALS))

    assert result.success
    assert page.visited == []


def test_logout_clicks_the_logout_link():
    link = FakeElement()
    page = FakePage(url=CONFIG.dashboard_url, elements={selectors.LOGOUT_LINK: link})
    handler = LoginHandler(page, CONFIG)

    assert asyncio.run(handler.logout()) is True
    assert link.clicks == 1
    assert handler.state == LoginState.NOT_LOGGED_IN
    assert asyncio.run(LoginHandler(FakePage(), CONFIG).logout()) is False


def test_refresh_session_revisits_the_dashboard():
    page = FakePage(elements={selectors.LOGGED_IN_MARKER: FakeElement()})

    assert asyncio.run(LoginHandler(page, CONFIG).refresh_session()) is True
    assert page.visited == [CONFIG.dashboard_url]

    expired = FakePage(elements={selectors.USERNAME_INPUT: FakeElement()})
    assert asyncio.run(LoginHandler(expired, CONFIG).refresh_session()) is False


class ClearingCaptchaSolver:
    """Solves by removing the CAPTCHA widget from the fake page."""

    def __init__(self, page):
        self.page = page
        self.solves = 0

    async def detect(self):
        return selectors.RECAPTCHA in self.page.elements

    async def is_completed(self):
        return False

    async def solve_with_retry(self):
        self.solves += 1
        self.page.elements.pop(selectors.RECAPTCHA, None)
        return CaptchaResult(success=True, method="manual")


def test_captcha_after_submit_is_solved_and_form_resubmitted():
    submits = []

    def on_submit(page):
        submits.append(page.url)
        if len(submits) == 1:
            _show_captcha(page)
        else:
            _land_on_dashboard(page)

    page = _login_page(on_submit)
    solver = ClearingCaptchaSolver(page)
    handler = LoginHandler(page, CONFIG, captcha_solver=solver)

    result = asyncio.run(handler.login(CREDENTIALS))

    assert result.success
    assert solver.solves == 1
    assert len(submits) == 2
    assert page.elements[selectors.SUBMIT_BUTTON].clicks == 2
    assert handler.state is LoginState.LOGGED_IN


def test_captcha_cycles_are_bounded():
    page = _login_page(_show_captcha)
    solver = ClearingCaptchaSolver(page)
    config = LoginConfig(navigation_backoff=0, settle_delay=0, form_timeout=1, max_captcha_cycles=3)
    handler = LoginHandler(page, config, captcha_solver=solver)

    result = asyncio.run(handler.login(CREDENTIALS))

    assert not result.success
    assert result.requires_captcha
    assert solver.solves == 2
    assert page.elements[selectors.SUBMIT_BUTTON].clicks == 3


def test_login_config_reads_captcha_cycles_from_settings():
    config = LoginConfig.from_settings(Settings(captcha_max_cycles=4, merchant_base_url="https://merchants.test"))

    assert config.max_captcha_cycles == 4
    assert config.login_url == "https://merchants.test/cp/login"
