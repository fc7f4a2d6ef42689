"""
Page Session Gateway: one Chromium, one context, one main page.

Owns the browser lifecycle (launch with exponential-backoff retries, close,
liveness probe) and the main tracking tab.  Scoped tabs for task claims are
opened from the same context so they share the login cookies.

Everything here runs on the thread that called init() — the sync Playwright
API is thread-affine.
"""

import os
import logging
import random
import time

from playwright.sync_api import sync_playwright

from board_monitor.utils import capture_diagnostics, get_session_path, screenshot_path

logger = logging.getLogger("board_monitor")

# The board is a SPA: "domcontentloaded" is enough, "networkidle" can hang.
WAIT_STRATEGY = "domcontentloaded"
VIEWPORT = {"width": 1920, "height": 1080}
EXTRA_HEADERS = {
    "Accept-Language": "ru-RU,ru;q=0.9,en-US;q=0.8,en;q=0.7",
}

MAX_INIT_RETRIES = 5
INIT_BACKOFF_BASE = 2  # seconds; doubles per retry


class SessionError(RuntimeError):
    """The browser or the main page is not available."""


class BrowserSession:
    """Gateway to the remote-controlled browser."""

    def __init__(self, config, *, playwright_factory=sync_playwright):
        self.config = config
        self._playwright_factory = playwright_factory
        self._playwright = None
        self.browser = None
        self.context = None
        self.page = None

    # ── Lifecycle ────────────────────────────────────────────────────

    def init(self) -> None:
        """Launch the browser; retry with exponential backoff, then raise."""
        for attempt in range(1, MAX_INIT_RETRIES + 2):
            try:
                logger.info("Initialising browser...")
                self._launch()
                logger.info("Browser initialised")
                return
            except Exception as e:
                self._teardown()
                if attempt > MAX_INIT_RETRIES:
                    logger.error(f"Browser initialisation failed after {MAX_INIT_RETRIES} retries: {e}")
                    raise SessionError(f"Browser could not be started: {e}") from e
                delay = INIT_BACKOFF_BASE * (2 ** (attempt - 1))
                logger.warning(
                    f"Browser init failed (attempt {attempt}/{MAX_INIT_RETRIES}): {e} — "
                    f"retrying in {delay}s"
                )
                time.sleep(delay)

    def _launch(self) -> None:
        cfg = self.config
        self._playwright = self._playwright_factory().start()

        launch_args = ["--no-sandbox", "--disable-dev-shm-usage", "--no-first-run"]
        if cfg.headless:
            # Prevent navigator.webdriver from returning true (bot detection)
            launch_args.append("--disable-blink-features=AutomationControlled")

        ctx_opts: dict = {
            "viewport": VIEWPORT,
            "user_agent": cfg.user_agent,
            "extra_http_headers": EXTRA_HEADERS,
            "ignore_https_errors": True,
        }

        if cfg.user_data_dir:
            # Persistent profile: the context *is* the browser
            self.context = self._playwright.chromium.launch_persistent_context(
                os.path.abspath(cfg.user_data_dir),
                headless=cfg.headless,
                args=launch_args,
                **ctx_opts,
            )
            self.browser = None
        else:
            self.browser = self._playwright.chromium.launch(
                headless=cfg.headless,
                slow_mo=0 if cfg.headless else 100,
                args=launch_args,
            )
            session_path = get_session_path()
            if os.path.exists(session_path):
                logger.info("Loading saved browser session...")
                ctx_opts["storage_state"] = session_path
            self.context = self.browser.new_context(**ctx_opts)

        self.page = self.context.pages[0] if self.context.pages else self.context.new_page()
        self.page.set_default_timeout(cfg.nav_timeout_ms)

    def close(self) -> None:
        """Save the login session and close everything.  Never raises."""
        if self.context is not None:
            self.save_session()
        self._teardown()
        logger.info("Browser closed")

    def _teardown(self) -> None:
        for closer in (self.context, self.browser):
            if closer is None:
                continue
            try:
                closer.close()
            except Exception as e:
                logger.debug(f"Close failed (already gone?): {e}")
        if self._playwright is not None:
            try:
                self._playwright.stop()
            except Exception as e:
                logger.debug(f"Playwright stop failed: {e}")
        self._playwright = None
        self.browser = None
        self.context = None
        self.page = None

    def save_session(self) -> None:
        """Persist cookies + localStorage so a relaunch stays logged in."""
        if self.context is None or self.config.user_data_dir:
            return
        try:
            self.context.storage_state(path=get_session_path())
            logger.debug(f"Session saved to: {get_session_path()}")
        except Exception as e:
            logger.debug(f"Could not save session: {e}")

    # ── Main page ────────────────────────────────────────────────────

    def get_page(self):
        """Return the main page, or None if it is gone."""
        if self.page is None:
            return None
        try:
            if self.page.is_closed():
                return None
        except Exception:
            return None
        return self.page

    def _require_page(self):
        page = self.get_page()
        if page is None:
            raise SessionError("Main page is not available")
        return page

    def is_alive(self) -> bool:
        """Lightweight probe — a crashed renderer throws on any call."""
        page = self.get_page()
        if page is None:
            return False
        try:
            page.title()
            return True
        except Exception as e:
            logger.info(f"Page is unusable ({e.__class__.__name__}: {e})")
            return False

    def navigate_to(self, url: str, *, wait_until: str = WAIT_STRATEGY, timeout: int = None) -> None:
        page = self._require_page()
        logger.debug(f"Navigating to: {url}")
        page.goto(url, wait_until=wait_until, timeout=timeout or self.config.nav_timeout_ms)
        # Human-ish pause so the SPA finishes routing
        page.wait_for_timeout(1000 + random.random() * 2000)

    def reload_page(self) -> None:
        page = self._require_page()
        logger.debug("Reloading page")
        page.reload(wait_until=WAIT_STRATEGY, timeout=self.config.nav_timeout_ms)

    def evaluate(self, script: str, arg=None):
        return self._require_page().evaluate(script, arg)

    def open_new_tab(self):
        """Open a scoped tab in the same context (shares cookies)."""
        if self.context is None:
            raise SessionError("Browser is not initialised")
        tab = self.context.new_page()
        tab.set_default_timeout(self.config.nav_timeout_ms)
        return tab

    def bring_main_to_front(self) -> None:
        page = self.get_page()
        if page is not None:
            page.bring_to_front()

    def screenshot(self, label: str) -> str | None:
        """Full-page screenshot of the main page; None if it failed."""
        page = self.get_page()
        if page is None:
            return None
        path = screenshot_path(label)
        try:
            page.screenshot(path=path, full_page=True, timeout=10_000)
            return path
        except Exception as e:
            logger.warning(f"Board screenshot failed: {e}")
            return None

    def capture_diagnostics(self, label: str) -> str | None:
        return capture_diagnostics(self.get_page(), label)
