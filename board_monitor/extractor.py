"""
DOM Task Extractor: read the monitored board section into a BoardSnapshot.

Flow per call:
  1. Reload the main page (defeats client-side caches / stale renders)
  2. Wait for the board-ready selector (bounded)
  3. Run one in-page script that finds the section by header text, its table,
     and every row carrying the task-key attribute

A missing section or table is a legitimate empty board, not an error.
A timeout or exception yields an empty snapshot with ``error`` set; the
engine decides what that means.
"""

import logging
from dataclasses import dataclass, field

from playwright.sync_api import TimeoutError as PlaywrightTimeout

from board_monitor.session import SessionError
from board_monitor.utils import is_session_error

logger = logging.getLogger("board_monitor")

URL_RESOLVE_ATTEMPTS = 3

# Returns {keys, titles, links, found}.  Arguments come from
# BoardAdapter.extract_args() so no selector literal lives in this file.
_JS_EXTRACT_TASKS = """
(args) => {
    const empty = {keys: [], titles: {}, links: {}, found: false};
    const headers = Array.from(document.querySelectorAll(args.headerSelector));
    const header = headers.find((el) => {
        const text = (el.textContent || '');
        return args.labels.some((label) => text.includes(label));
    });
    if (!header) return empty;

    const widget = args.widgetSelector ? header.closest(args.widgetSelector) : document;
    if (!widget) return empty;

    const table = widget.querySelector(args.tableSelector);
    if (!table) return empty;

    const keys = [];
    const titles = {};
    const links = {};
    for (const row of table.querySelectorAll(args.rowSelector)) {
        const key = (row.getAttribute(args.keyAttribute) || '').trim();
        if (!key) continue;
        if (args.keyPrefix && !key.startsWith(args.keyPrefix)) continue;
        if (key in titles) continue;

        let titleEl = null;
        for (const sel of args.titleSelectors) {
            titleEl = row.querySelector(sel);
            if (titleEl) break;
        }
        const title = titleEl ? (titleEl.textContent || '').trim() : '';
        keys.push(key);
        titles[key] = title || key;

        if (args.linkSelector) {
            const a = row.querySelector(args.linkSelector);
            if (a && a.href) links[key] = a.href;
        }
    }
    return {keys: keys, titles: titles, links: links, found: true};
}
"""

# Click the first selector that exists.  Returns the selector used or null.
_JS_CLICK_FIRST_EXISTING = """
(selectors) => {
    for (const sel of selectors) {
        const el = document.querySelector(sel);
        if (el) { el.click(); return sel; }
    }
    return null;
}
"""

_JS_READ_HREF = """
(selector) => {
    const el = document.querySelector(selector);
    return el && el.href ? el.href : null;
}
"""

_JS_MODAL_HTML = """
(selector) => {
    const modal = document.querySelector(selector);
    return modal ? modal.innerHTML : null;
}
"""


@dataclass
class BoardSnapshot:
    """One poll's view of the monitored section."""

    keys: list = field(default_factory=list)
    titles: dict = field(default_factory=dict)
    links: dict = field(default_factory=dict)
    error: str | None = None

    @property
    def count(self) -> int:
        return len(self.keys)

    @property
    def ok(self) -> bool:
        return self.error is None

    def title_of(self, key: str) -> str:
        return self.titles.get(key) or key

    @classmethod
    def empty(cls, error: str | None = None) -> "BoardSnapshot":
        return cls(error=error)

    @classmethod
    def from_raw(cls, raw) -> "BoardSnapshot":
        """Build from the in-page script result, enforcing key uniqueness."""
        if not raw:
            return cls()
        keys, seen = [], set()
        for key in raw.get("keys") or []:
            key = str(key).strip()
            if key and key not in seen:
                seen.add(key)
                keys.append(key)
        titles = raw.get("titles") or {}
        links = raw.get("links") or {}
        return cls(
            keys=keys,
            titles={k: (str(titles.get(k) or "").strip() or k) for k in keys},
            links={k: links[k] for k in keys if links.get(k)},
        )


class TaskExtractor:
    """Reads task snapshots and resolves task deep links from the main page."""

    def __init__(self, adapter, config):
        self.adapter = adapter
        self.config = config

    def extract(self, session) -> BoardSnapshot:
        """Reload and read the board.  SessionError propagates, all else is absorbed."""
        page = session.get_page()
        if page is None:
            raise SessionError("Main page is not available")

        try:
            session.reload_page()
            page.wait_for_timeout(self.config.settle_ms)
            page.wait_for_selector(
                self.adapter.board_ready_selector,
                state="attached",
                timeout=self.config.extract_timeout_ms,
            )
            raw = page.evaluate(_JS_EXTRACT_TASKS, self.adapter.extract_args(self.config.task_key_prefix))
        except PlaywrightTimeout as e:
            logger.warning(f"Board did not render in time: {e}")
            return BoardSnapshot.empty(error=f"timeout: {e}")
        except Exception as e:
            if is_session_error(e):
                raise SessionError(str(e)) from e
            logger.error(f"Task extraction failed: {e}")
            return BoardSnapshot.empty(error=str(e))

        if raw and not raw.get("found", True):
            logger.debug("Monitored section not on the board — treating as empty")
        snapshot = BoardSnapshot.from_raw(raw)
        logger.debug(f"Found {snapshot.count} task(s): {snapshot.keys}")
        return snapshot

    # ── Deep links ───────────────────────────────────────────────────

    def resolve_task_url(self, session, task_key: str, snapshot: BoardSnapshot = None) -> str | None:
        """
        Return the task's deep link.

        Order: link carried by the row → task_url_template → open the task
        modal on the main page and read the link out of it.
        """
        if snapshot is not None and snapshot.links.get(task_key):
            return snapshot.links[task_key]
        if self.config.task_url_template:
            return self.config.task_url_template.format(key=task_key)
        if not self.adapter.row_click_selectors or not self.adapter.modal_link_selector:
            return None
        return self._resolve_via_modal(session, task_key)

    def _resolve_via_modal(self, session, task_key: str) -> str | None:
        page = session.get_page()
        if page is None:
            raise SessionError("Main page is not available")

        selectors = self.adapter.row_selectors_for(task_key)
        for attempt in range(1, URL_RESOLVE_ATTEMPTS + 1):
            logger.debug(f"  {task_key}: resolving task URL (attempt {attempt}/{URL_RESOLVE_ATTEMPTS})")
            try:
                clicked = page.evaluate(_JS_CLICK_FIRST_EXISTING, selectors)
                if not clicked:
                    logger.warning(f"  {task_key}: row not clickable (attempt {attempt})")
                    session.capture_diagnostics(f"click_failed_{task_key}_attempt_{attempt}")
                    continue

                # Give the modal more time on every retry
                page.wait_for_timeout((2 + attempt) * 1000)
                url = page.evaluate(_JS_READ_HREF, self.adapter.modal_link_selector)
                if url:
                    logger.info(f"  {task_key}: task URL {url}")
                    return url

                logger.warning(f"  {task_key}: link not found in modal (attempt {attempt})")
                session.capture_diagnostics(f"modal_not_found_{task_key}_attempt_{attempt}")
                modal_html = page.evaluate(_JS_MODAL_HTML, self.adapter.modal_selector)
                logger.debug(f"  {task_key}: modal content: {(modal_html or '<none>')[:500]}")
            except Exception as e:
                if is_session_error(e):
                    raise SessionError(str(e)) from e
                logger.error(f"  {task_key}: URL resolution error: {e}")
                session.capture_diagnostics(f"error_{task_key}_attempt_{attempt}")
            finally:
                self.close_modal(page)

        logger.error(f"  {task_key}: no task URL after {URL_RESOLVE_ATTEMPTS} attempts")
        return None

    def close_modal(self, page) -> None:
        try:
            page.evaluate(_JS_CLICK_FIRST_EXISTING, list(self.adapter.modal_close_selectors))
            page.wait_for_timeout(1000)
        except Exception as e:
            logger.debug(f"Modal close failed: {e}")
