"""
Assignment Driver: try to move one task into "in progress" for us.

Per attempt:
  0. (optional) HTTP fast path — replay the claim request; HTTP 201 wins
  1. Open a scoped tab (never the main tracking tab)
  2. Navigate to the task with a bounded timeout
  3. Walk the adapter's ordered claim strategies; first visible, enabled
     control wins.  No control → no-op failure
  4. Reload and verify affirmative markers — verification, not the click,
     decides success
  5. Screenshot as evidence, whatever the outcome
  6. Close the scoped tab and bring the main tab back, on every path

Failures are returned, never raised: the engine puts the task into its
retry set and moves on.
"""

import logging
from dataclasses import dataclass

from board_monitor.board import ACTION_CLICK, ACTION_STATUS_MENU
from board_monitor.session import WAIT_STRATEGY
from board_monitor.utils import screenshot_path

logger = logging.getLogger("board_monitor")

STATUS_MENU_SETTLE_MS = 1_000

# Click the first visible, enabled element matching selector (+ text regex).
_JS_CLICK_CONTROL = """
(args) => {
    const re = args.pattern ? new RegExp(args.pattern, 'i') : null;
    for (const el of document.querySelectorAll(args.selector)) {
        const style = window.getComputedStyle(el);
        const visible = style.display !== 'none'
            && style.visibility !== 'hidden'
            && (el.offsetParent !== null || style.position === 'fixed');
        if (!visible) continue;
        if (el.disabled || el.getAttribute('aria-disabled') === 'true') continue;
        if (re && !re.test((el.textContent || '').trim())) continue;
        el.click();
        return true;
    }
    return false;
}
"""

# True if any success marker is present, or a countdown shows time left.
_JS_VERIFY_CLAIM = """
(args) => {
    for (const sel of args.successSelectors) {
        if (document.querySelector(sel)) return true;
    }
    for (const sel of args.timerSelectors) {
        for (const el of document.querySelectorAll(sel)) {
            const text = (el.textContent || '').trim();
            if (/\\d/.test(text) && /[1-9]/.test(text)) return true;
        }
    }
    return false;
}
"""


@dataclass
class AssignmentResult:
    success: bool
    evidence: str | None = None
    method: str | None = None
    reason: str = ""


class AssignmentDriver:
    """Claims tasks through scoped tabs of the shared browser session."""

    def __init__(self, session, adapter, config, http_claimer=None):
        self.session = session
        self.adapter = adapter
        self.config = config
        self.http_claimer = http_claimer
        self._actions = {
            ACTION_CLICK: self._action_click,
            ACTION_STATUS_MENU: self._action_status_menu,
        }

    # ── Entry point ──────────────────────────────────────────────────

    def attempt(self, task_key: str, task_title: str, task_url: str) -> AssignmentResult:
        logger.info(f"Claiming {task_key}: {task_title}")

        if self.http_claimer is not None:
            if self.http_claimer.take_task(task_url):
                evidence = self._capture_task_view(task_key, task_url)
                return AssignmentResult(True, evidence, "http", "claimed via HTTP")
            logger.info(f"  {task_key}: HTTP claim inconclusive — falling back to UI")

        return self._attempt_via_ui(task_key, task_url)

    # ── UI path ──────────────────────────────────────────────────────

    def _attempt_via_ui(self, task_key: str, task_url: str) -> AssignmentResult:
        tab = self._open_scoped_tab(task_key)
        if tab is None:
            return AssignmentResult(False, None, "ui", "could not open a tab")

        try:
            if not self._open_task(tab, task_key, task_url):
                evidence = self._capture_evidence(tab, task_key, "navigation-failed")
                return AssignmentResult(False, evidence, "ui", "navigation failed")

            strategy = self._click_claim(tab, task_key)
            if strategy is None:
                evidence = self._capture_evidence(tab, task_key, "no-claim-control")
                return AssignmentResult(False, evidence, "ui", "no claim control found")

            tab.wait_for_timeout(self.config.settle_ms)
            verified = self._verify(tab, task_key)
            evidence = self._capture_evidence(tab, task_key, "claimed" if verified else "not-verified")
            if verified:
                logger.info(f"  ✅ {task_key}: claim verified (strategy '{strategy}')")
                return AssignmentResult(True, evidence, "ui", f"verified after '{strategy}'")
            logger.warning(f"  {task_key}: clicked '{strategy}' but no success marker appeared")
            return AssignmentResult(False, evidence, "ui", "verification failed")
        except Exception as e:
            logger.error(f"  {task_key}: claim attempt raised: {e}")
            evidence = self._capture_evidence(tab, task_key, "error")
            return AssignmentResult(False, evidence, "ui", str(e))
        finally:
            self._release(tab, task_key)

    def _open_scoped_tab(self, task_key: str):
        try:
            return self.session.open_new_tab()
        except Exception as e:
            logger.error(f"  {task_key}: could not open a scoped tab: {e}")
            return None

    def _open_task(self, tab, task_key: str, task_url: str) -> bool:
        try:
            tab.bring_to_front()
            tab.goto(task_url, wait_until=WAIT_STRATEGY, timeout=self.config.task_nav_timeout_ms)
            return True
        except Exception as e:
            logger.warning(f"  {task_key}: navigation to {task_url} failed: {e}")
            return False

    def _click_claim(self, tab, task_key: str) -> str | None:
        """Run the strategies in priority order; return the name that fired."""
        for strategy in self.adapter.claim_strategies:
            action = self._actions.get(strategy.action)
            if action is None:
                logger.warning(f"  Unknown claim action '{strategy.action}' in '{strategy.name}'")
                continue
            if action(tab, strategy):
                logger.info(f"  {task_key}: claim control fired via '{strategy.name}'")
                return strategy.name
            logger.debug(f"  {task_key}: strategy '{strategy.name}' found nothing")
        logger.warning(f"  {task_key}: no claim control matched")
        return None

    @staticmethod
    def _action_click(tab, strategy) -> bool:
        return bool(tab.evaluate(_JS_CLICK_CONTROL, {
            "selector": strategy.selector,
            "pattern": strategy.text_pattern,
        }))

    @staticmethod
    def _action_status_menu(tab, strategy) -> bool:
        opened = tab.evaluate(_JS_CLICK_CONTROL, {
            "selector": strategy.selector,
            "pattern": strategy.text_pattern,
        })
        if not opened:
            return False
        tab.wait_for_timeout(STATUS_MENU_SETTLE_MS)
        return bool(tab.evaluate(_JS_CLICK_CONTROL, {
            "selector": strategy.option_selector,
            "pattern": strategy.option_text_pattern,
        }))

    def _verify(self, tab, task_key: str) -> bool:
        try:
            tab.reload(wait_until=WAIT_STRATEGY, timeout=self.config.task_nav_timeout_ms)
            tab.wait_for_timeout(self.config.settle_ms)
        except Exception as e:
            # A failed reload still leaves the post-click DOM to inspect
            logger.debug(f"  {task_key}: reload before verification failed: {e}")
        return bool(tab.evaluate(_JS_VERIFY_CLAIM, self.adapter.verify_args()))

    # ── Evidence / cleanup ───────────────────────────────────────────

    @staticmethod
    def _capture_evidence(tab, task_key: str, outcome: str) -> str | None:
        path = screenshot_path(f"task-{task_key}-{outcome}")
        try:
            tab.screenshot(path=path, full_page=True, timeout=10_000)
            logger.debug(f"  {task_key}: evidence {path}")
            return path
        except Exception as e:
            logger.warning(f"  {task_key}: evidence screenshot failed: {e}")
            return None

    def _capture_task_view(self, task_key: str, task_url: str) -> str | None:
        """Evidence for the HTTP path; the claim already succeeded, so this never raises."""
        tab = self._open_scoped_tab(task_key)
        if tab is None:
            return None
        try:
            if not self._open_task(tab, task_key, task_url):
                return None
            tab.wait_for_timeout(self.config.settle_ms)
            return self._capture_evidence(tab, task_key, "claimed")
        except Exception as e:
            logger.warning(f"  {task_key}: could not capture the claimed task: {e}")
            return None
        finally:
            self._release(tab, task_key)

    def _release(self, tab, task_key: str) -> None:
        try:
            tab.close()
        except Exception as e:
            logger.debug(f"  {task_key}: scoped tab close failed: {e}")
        try:
            self.session.bring_main_to_front()
        except Exception as e:
            logger.debug(f"  {task_key}: could not refocus main tab: {e}")
