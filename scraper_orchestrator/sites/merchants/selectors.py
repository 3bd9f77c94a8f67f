"""CSS selectors, URL patterns and page-text phrase tables for the merchant directory."""

from __future__ import annotations

import re

USERNAME_INPUT = '#username, input[name="username"]'
PASSWORD_INPUT = '#password, input[name="password"]'
SUBMIT_BUTTON = 'button[type="submit"], .btn.fmtc-primary-btn'
LOGIN_FORM = 'form#form, form[name="form"], form[action="/cp/login"]'
ERROR_MESSAGE = (
    '.error, .alert-danger, .login-error, [class*="error"], [class*="invalid"], .rc-anchor-error-msg'
)
RECAPTCHA = ".g-recaptcha, #rc-anchor-container, .recaptcha-checkbox"
RECAPTCHA_RESPONSE = '#g-recaptcha-response, textarea[name="g-recaptcha-response"]'
RECAPTCHA_CHECKBOX = ".recaptcha-checkbox, #recaptcha-anchor"
LOGGED_IN_MARKER = '.user-menu, .logout, [href*="logout"]'
LOGOUT_LINK = 'a[href*="logout"], .logout'

MERCHANT_URL_PATTERN = re.compile(r"/program_directory/merchant/(\d+)")

# Detail page, label text of each list-group row -> output field
DETAIL_LABELS = {
    "Homepage:": "homepage",
    "Primary Category:": "primary_category",
    "Primary Country:": "primary_country",
    "Ships To:": "ships_to",
}
NETWORK_TABLE_ROWS = "table.fmtc-table tbody tr, .table-striped tbody tr"

ERROR_PATTERNS = {
    "LOGIN_FAILED": (
        "invalid credentials",
        "incorrect username",
        "incorrect password",
        "login failed",
        "authentication failed",
    ),
    "ACCOUNT_LOCKED": ("account locked", "account suspended", "account disabled", "too many attempts"),
    "CAPTCHA_REQUIRED": ("captcha", "verification required", "prove you are human"),
    "SESSION_EXPIRED": ("session expired", "please login again", "authentication timeout"),
    "ACCESS_DENIED": ("access denied", "permission denied", "unauthorized", "forbidden"),
}

# Phrases shown when the site has flagged the browser as automated
ANTI_AUTOMATION_PHRASES = (
    "unusual traffic",
    "automated requests",
    "are you a robot",
    "your access has been blocked",
    "rate limit exceeded",
)


__all__ = [
    "ANTI_AUTOMATION_PHRASES",
    "DETAIL_LABELS",
    "ERROR_MESSAGE",
    "ERROR_PATTERNS",
    "LOGGED_IN_MARKER",
    "LOGIN_FORM",
    "LOGOUT_LINK",
    "MERCHANT_URL_PATTERN",
    "NETWORK_TABLE_ROWS",
    "PASSWORD_INPUT",
    "RECAPTCHA",
    "RECAPTCHA_CHECKBOX",
    "RECAPTCHA_RESPONSE",
    "SUBMIT_BUTTON",
    "USERNAME_INPUT",
]
