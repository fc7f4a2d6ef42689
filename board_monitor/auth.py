"""
Authentication check for the board page.

The board redirects to an SSO passport page (or renders an account picker)
when the session cookies are gone.  Both shapes are detected: auth-redirect
URL patterns first, then login-form markers inside the page.

Exceptions are NOT swallowed here: a page that throws is a session problem,
and the engine treats it differently from "not logged in".
"""

import logging

logger = logging.getLogger("board_monitor")

_JS_HAS_AUTH_MARKERS = """
(args) => {
    const hasElement = args.selectors.some((sel) => document.querySelector(sel) !== null);
    const body = document.body ? (document.body.textContent || '') : '';
    const hasText = args.texts.some((text) => body.includes(text));
    return hasElement || hasText;
}
"""


def is_auth_url(url: str, adapter) -> bool:
    lower = (url or "").lower()
    return any(pattern.lower() in lower for pattern in adapter.auth_url_patterns)


def check_authenticated(page, adapter) -> bool:
    """Return True when the page shows the board rather than a login flow."""
    current_url = page.url
    if is_auth_url(current_url, adapter):
        logger.warning(f"Authentication page detected by URL: {current_url}")
        return False

    if page.evaluate(_JS_HAS_AUTH_MARKERS, adapter.auth_args()):
        logger.warning("Login form detected on the board page")
        return False

    return True
