"""
Board adapters: every selector literal and text heuristic for one known
board-UI version lives here, so a UI change touches exactly one class.

The rest of the code only talks to a BoardAdapter instance obtained from
get_adapter(config.board_adapter).
"""

import logging
from dataclasses import dataclass

logger = logging.getLogger("board_monitor")

# ── Claim strategy actions ────────────────────────────────────────────────
ACTION_CLICK       = "click"         # click the matched control, done
ACTION_STATUS_MENU = "status_menu"   # click opener, then pick a menu option


@dataclass(frozen=True)
class ClaimStrategy:
    """
    One (matcher, action) entry of the ordered claim list.

    The matcher is ``selector`` plus an optional case-insensitive regex the
    element text must match.  Only visible, enabled elements qualify; the
    first matching strategy wins.
    """

    name: str
    selector: str
    text_pattern: str = ""
    action: str = ACTION_CLICK
    # status_menu only: the popup and the option to pick inside it
    option_selector: str = ""
    option_text_pattern: str = ""


class BoardAdapter:
    """Base adapter.  Subclasses override the class attributes."""

    version = "base"

    # ── Board section / task table ───────────────────────────────────
    board_ready_selector = "body"
    section_header_selector = ""
    section_labels: tuple = ()
    section_widget_selector = ""
    table_selector = "table"
    row_selector = "tr[data-key]"
    key_attribute = "data-key"
    title_selectors: tuple = ()
    row_link_selector = ""

    # ── Deep-link resolution through the task modal ──────────────────
    row_click_selectors: tuple = ()       # templates with {key}
    modal_link_selector = ""
    modal_selector = ""
    modal_close_selectors: tuple = ()

    # ── Authentication markers ───────────────────────────────────────
    auth_url_patterns: tuple = ()
    auth_selectors: tuple = ()
    auth_texts: tuple = ()

    # ── Claiming and verification ────────────────────────────────────
    claim_strategies: tuple = ()
    success_selectors: tuple = ()
    timer_selectors: tuple = ()

    # ── HTTP claim fast path ─────────────────────────────────────────
    auth_token_storage_key = ""
    auth_token_prefix = ""

    def extract_args(self, key_prefix: str = "") -> dict:
        """Arguments for the in-page task extraction script."""
        return {
            "headerSelector": self.section_header_selector,
            "labels": list(self.section_labels),
            "widgetSelector": self.section_widget_selector,
            "tableSelector": self.table_selector,
            "rowSelector": self.row_selector,
            "keyAttribute": self.key_attribute,
            "titleSelectors": list(self.title_selectors),
            "linkSelector": self.row_link_selector,
            "keyPrefix": key_prefix,
        }

    def auth_args(self) -> dict:
        return {"selectors": list(self.auth_selectors), "texts": list(self.auth_texts)}

    def verify_args(self) -> dict:
        return {"successSelectors": list(self.success_selectors), "timerSelectors": list(self.timer_selectors)}

    def row_selectors_for(self, task_key: str) -> list:
        return [template.format(key=task_key) for template in self.row_click_selectors]

    def __repr__(self):
        return f"{self.__class__.__name__}(version={self.version!r})"


class TrackerBoardV1(BoardAdapter):
    """Issue-tracker board with collapsible filter widgets and gt-table rows."""

    version = "tracker-v1"

    board_ready_selector = "body"
    section_header_selector = ".collapse-widget-header__title-item_primary"
    section_labels = ("Обычные задачи", "Normal tasks")
    section_widget_selector = ".filter-widget"
    table_selector = "table.gt-table"
    row_selector = "tr[data-key]"
    key_attribute = "data-key"
    title_selectors = (".edit-cell__text", 'a[href*="/browse/"]', "td:nth-child(2)")
    row_link_selector = ""

    row_click_selectors = (
        'tr[data-key="{key}"]',
        '[data-key="{key}"] .edit-cell__text',
        'a[href*="{key}"]',
        '[data-key="{key}"] td:first-child',
    )
    modal_link_selector = '.yfm__wacko[style*="border:2px solid green"] a[href]'
    modal_selector = '.modal-content, [class*="modal"], .g-modal'
    modal_close_selectors = (
        'button[aria-label="Close"]',
        ".modal-close",
        ".close-button",
        ".g-modal-close",
        '[class*="close"]',
    )

    auth_url_patterns = ("passport.yandex-team.ru", "passport?mode=auth")
    auth_selectors = (
        'input[type="password"]',
        'input[name="password"]',
        ".passport-Domik",
        ".passport-AccountList",
        'a[href*="passport.yandex-team.ru"]',
    )
    auth_texts = ("Выберите аккаунт для входа", "Войдите в аккаунт", "Sign in to your account")

    claim_strategies = (
        ClaimStrategy("review-take-button", "button.review-header__button-take"),
        ClaimStrategy("prisma-button", ".prisma-button2", r"взять|take|work|assign"),
        ClaimStrategy("take-class-button", 'button[class*="take"]', r"взять|take"),
        ClaimStrategy("assign-class-button", 'button[class*="assign"], button[class*="work"]', r"взять|take|work|assign"),
        ClaimStrategy(
            "status-transition",
            '.FieldView[data-id="status"] button',
            action=ACTION_STATUS_MENU,
            option_selector=".IssueStatus-popup-wrapper .g-list__item",
            option_text_pattern=r"в работу|in progress",
        ),
        ClaimStrategy("generic-button", 'button[type="button"]', r"взять в работу|take to work|assign to me"),
    )
    success_selectors = (
        'button[class*="taken"]',
        'button[class*="assigned"]',
        ".status-success",
        ".alert-success",
        "button.review-header__button-finish",
    )
    timer_selectors = (".review-header__timer", '[class*="timer"]', '[class*="countdown"]')

    auth_token_storage_key = "AuthToken"
    auth_token_prefix = "eyJ"


ADAPTERS = {
    TrackerBoardV1.version: TrackerBoardV1,
}


def get_adapter(version: str) -> BoardAdapter:
    """Return an adapter instance for *version* (ValueError if unknown)."""
    try:
        adapter = ADAPTERS[version]()
    except KeyError:
        raise ValueError(
            f"Unknown board_adapter '{version}'. Known: {', '.join(sorted(ADAPTERS))}"
        ) from None
    logger.debug(f"Board adapter: {adapter}")
    return adapter
