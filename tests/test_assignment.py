import pytest

from conftest import FakePage, FakeSession
from board_monitor.assignment import _JS_CLICK_CONTROL, _JS_VERIFY_CLAIM, AssignmentDriver
from board_monitor.board import get_adapter

TASK_URL = "https://board.test/review/100/s3cr3t"


def _tab(claim=True, verified=True):
    return FakePage(handlers={_JS_CLICK_CONTROL: claim, _JS_VERIFY_CLAIM: verified})


def _driver(config, tab, http_claimer=None):
    session = FakeSession(tab_factory=lambda: tab)
    return session, AssignmentDriver(session, get_adapter("tracker-v1"), config, http_claimer=http_claimer)


def test_verified_claim_succeeds(config):
    tab = _tab()
    session, driver = _driver(config, tab)
    result = driver.attempt("PCR-100", "Review [19]", TASK_URL)

    assert result.success
    assert result.method == "ui"
    assert result.evidence
    assert ("goto", TASK_URL) in tab.calls
    assert tab.closed
    assert session.focus_calls == 1


def test_missing_claim_control_is_a_failure(config):
    tab = _tab(claim=False)
    _, driver = _driver(config, tab)
    result = driver.attempt("PCR-100", "Review [19]", TASK_URL)

    assert not result.success
    assert result.reason == "no claim control found"
    assert not any(c[1] == _JS_VERIFY_CLAIM for c in tab.calls if c[0] == "evaluate")
    assert tab.closed


def test_unverified_click_is_a_failure_with_evidence(config):
    tab = _tab(verified=False)
    _, driver = _driver(config, tab)
    result = driver.attempt("PCR-100", "Review [19]", TASK_URL)

    assert not result.success
    assert result.reason == "verification failed"
    assert result.evidence
    assert tab.screenshots


def test_navigation_failure_still_closes_tab(config):
    tab = _tab()
    tab.goto_error = RuntimeError("net::ERR_TIMED_OUT")
    _, driver = _driver(config, tab)
    result = driver.attempt("PCR-100", "Review [19]", TASK_URL)

    assert not result.success
    assert result.reason == "navigation failed"
    assert tab.closed


def test_exception_mid_attempt_closes_tab_once(config):
    def _boom(_):
        raise RuntimeError("evaluation failed")

    tab = FakePage(handlers={_JS_CLICK_CONTROL: _boom})
    close_calls = []
    original_close = tab.close
    tab.close = lambda: (close_calls.append(1), original_close())
    session, driver = _driver(config, tab)
    result = driver.attempt("PCR-100", "Review [19]", TASK_URL)

    assert not result.success
    assert "evaluation failed" in result.reason
    assert len(session.tabs) == 1
    assert len(close_calls) == 1


def test_status_menu_strategy_picks_option(config):
    adapter = get_adapter("tracker-v1")
    menu = next(s for s in adapter.claim_strategies if s.action == "status_menu")

    def _click(args):
        return args["selector"] in (menu.selector, menu.option_selector)

    tab = FakePage(handlers={_JS_CLICK_CONTROL: _click, _JS_VERIFY_CLAIM: True})
    _, driver = _driver(config, tab)
    result = driver.attempt("PCR-100", "Review [19]", TASK_URL)

    assert result.success
    assert f"'{menu.name}'" in result.reason


class _Claimer:
    def __init__(self, ok):
        self.ok = ok
        self.urls = []

    def take_task(self, url):
        self.urls.append(url)
        return self.ok


def test_http_fast_path_skips_ui_claim(config):
    tab = _tab(claim=False, verified=False)
    claimer = _Claimer(True)
    _, driver = _driver(config, tab, http_claimer=claimer)
    result = driver.attempt("PCR-100", "Review [19]", TASK_URL)

    assert result.success
    assert result.method == "http"
    assert claimer.urls == [TASK_URL]
    assert not any(c[1] == _JS_CLICK_CONTROL for c in tab.calls if c[0] == "evaluate")
    assert tab.closed


def test_http_failure_falls_back_to_ui(config):
    tab = _tab()
    _, driver = _driver(config, tab, http_claimer=_Claimer(False))
    result = driver.attempt("PCR-100", "Review [19]", TASK_URL)

    assert result.success
    assert result.method == "ui"


@pytest.mark.parametrize("claim,verified", [(True, True), (False, False), (True, False)])
def test_every_attempt_opens_and_closes_one_tab(config, claim, verified):
    tabs = []

    def _factory():
        tab = _tab(claim, verified)
        tabs.append(tab)
        return tab

    session = FakeSession(tab_factory=_factory)
    driver = AssignmentDriver(session, get_adapter("tracker-v1"), config)
    driver.attempt("PCR-1", "t", TASK_URL)
    driver.attempt("PCR-2", "t", TASK_URL)

    assert len(tabs) == 2
    assert all(tab.closed for tab in tabs)


def test_http_claim_survives_failed_evidence_capture(config):
    tab = _tab()

    def _broken_wait(ms):
        raise RuntimeError("Target page, context or browser has been closed")

    tab.wait_for_timeout = _broken_wait
    _, driver = _driver(config, tab, http_claimer=_Claimer(True))
    result = driver.attempt("PCR-100", "Review [19]", TASK_URL)

    assert result.success
    assert result.method == "http"
    assert result.evidence is None
    assert tab.closed
