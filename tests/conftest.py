import sys
from pathlib import Path

import pytest

ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from board_monitor.config import MonitorConfig  # noqa: E402
from board_monitor.extractor import BoardSnapshot  # noqa: E402


class FakePage:
    """Stands in for a Playwright page; evaluate() dispatches on the script text."""

    def __init__(self, url="https://board.test/board/1", handlers=None):
        self.url = url
        self.handlers = dict(handlers or {})
        self.calls = []
        self.closed = False
        self.dead = False
        self.goto_error = None
        self.screenshots = []

    def evaluate(self, script, arg=None):
        self.calls.append(("evaluate", script, arg))
        handler = self.handlers.get(script)
        if callable(handler):
            return handler(arg)
        return handler

    def goto(self, url, wait_until=None, timeout=None):
        self.calls.append(("goto", url))
        if self.goto_error:
            raise self.goto_error

    def reload(self, wait_until=None, timeout=None):
        self.calls.append(("reload",))

    def wait_for_timeout(self, ms):
        pass

    def wait_for_selector(self, selector, state=None, timeout=None):
        self.calls.append(("wait_for_selector", selector))

    def bring_to_front(self):
        self.calls.append(("bring_to_front",))

    def screenshot(self, path=None, full_page=False, timeout=None):
        self.screenshots.append(path)

    def title(self):
        if self.dead:
            raise RuntimeError("Target crashed")
        return "Board"

    def content(self):
        return "<html></html>"

    def is_closed(self):
        return self.closed

    def close(self):
        self.closed = True


class FakeSession:
    """Stands in for BrowserSession with counters for every lifecycle call."""

    def __init__(self, page=None, tab_factory=FakePage):
        self.page = page or FakePage()
        self.tab_factory = tab_factory
        self.tabs = []
        self.alive = True
        self.init_calls = 0
        self.close_calls = 0
        self.init_error = None
        self.navigations = []
        self.focus_calls = 0

    def init(self):
        self.init_calls += 1
        if self.init_error:
            raise self.init_error
        self.alive = True

    def close(self):
        self.close_calls += 1

    def get_page(self):
        return self.page if self.alive else None

    def is_alive(self):
        return self.alive

    def navigate_to(self, url, **_):
        self.navigations.append(url)

    def reload_page(self):
        self.page.reload()

    def evaluate(self, script, arg=None):
        return self.page.evaluate(script, arg)

    def open_new_tab(self):
        tab = self.tab_factory()
        self.tabs.append(tab)
        return tab

    def bring_main_to_front(self):
        self.focus_calls += 1

    def screenshot(self, label):
        return None

    def capture_diagnostics(self, label):
        return None


class FakeNotifier:
    enabled = True
    chat_id = "42"

    def __init__(self, updates=None):
        self.sent = []
        self.updates = list(updates or [])
        self.edited = []
        self.answered = []

    def send_text(self, message, keyboard=None):
        self.sent.append(("text", message))
        return True

    def send_alert(self, image_path, link="", caption="", show_board_button=False):
        self.sent.append(("alert", caption))
        return True

    def send_double_alert(self, images, link="", caption=""):
        self.sent.append(("double", caption))
        return True

    def get_updates(self, offset, timeout=10):
        updates, self.updates = self.updates, []
        return updates

    def edit_message(self, message_id, text, keyboard=None):
        self.edited.append((message_id, text))
        return True

    def answer_callback(self, callback_id, text=""):
        self.answered.append(callback_id)

    def texts(self):
        return [message for _, message in self.sent]


def snapshot(*keys, titles=None, error=None):
    titles = titles or {}
    return BoardSnapshot(keys=list(keys), titles={k: titles.get(k, k) for k in keys}, error=error)


@pytest.fixture
def config():
    return MonitorConfig(
        target_board_url="https://board.test/board/1",
        poll_interval=0,
        error_delay=0,
        auth_grace_seconds=0,
        recovery_delay=0,
        assign_pause=0,
        settle_ms=0,
        max_errors=3,
    )


@pytest.fixture
def session():
    return FakeSession()


@pytest.fixture
def notifier():
    return FakeNotifier()
