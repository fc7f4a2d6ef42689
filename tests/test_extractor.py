import pytest
from playwright.sync_api import TimeoutError as PlaywrightTimeout

from conftest import FakePage, FakeSession
from board_monitor.board import get_adapter
from board_monitor.extractor import (
    _JS_CLICK_FIRST_EXISTING,
    _JS_EXTRACT_TASKS,
    _JS_READ_HREF,
    BoardSnapshot,
    TaskExtractor,
)
from board_monitor.session import SessionError


@pytest.fixture
def extractor(config):
    return TaskExtractor(get_adapter("tracker-v1"), config)


def test_snapshot_from_raw_dedupes_and_defaults_titles():
    snap = BoardSnapshot.from_raw({
        "keys": ["PCR-1", "PCR-2", "PCR-1", " "],
        "titles": {"PCR-1": "Review [19]"},
        "links": {"PCR-2": "https://board.test/t/2"},
    })
    assert snap.keys == ["PCR-1", "PCR-2"]
    assert snap.count == 2
    assert snap.title_of("PCR-2") == "PCR-2"
    assert snap.links == {"PCR-2": "https://board.test/t/2"}
    assert snap.ok


def test_extract_reads_board(extractor):
    page = FakePage(handlers={_JS_EXTRACT_TASKS: {
        "keys": ["PCR-100"], "titles": {"PCR-100": "Review [19]"}, "links": {}, "found": True,
    }})
    snap = extractor.extract(FakeSession(page))
    assert snap.keys == ["PCR-100"]
    assert snap.title_of("PCR-100") == "Review [19]"
    assert ("reload",) in page.calls


def test_missing_section_is_an_empty_board(extractor):
    page = FakePage(handlers={_JS_EXTRACT_TASKS: {"keys": [], "titles": {}, "links": {}, "found": False}})
    snap = extractor.extract(FakeSession(page))
    assert snap.ok
    assert snap.count == 0


def test_timeout_yields_errored_snapshot(extractor):
    def _timeout(_):
        raise PlaywrightTimeout("Timeout 30000ms exceeded")

    snap = extractor.extract(FakeSession(FakePage(handlers={_JS_EXTRACT_TASKS: _timeout})))
    assert not snap.ok
    assert snap.count == 0
    assert snap.error.startswith("timeout")


def test_closed_page_raises_session_error(extractor):
    def _closed(_):
        raise RuntimeError("Target page, context or browser has been closed")

    with pytest.raises(SessionError):
        extractor.extract(FakeSession(FakePage(handlers={_JS_EXTRACT_TASKS: _closed})))


def test_no_page_raises_session_error(extractor):
    session = FakeSession()
    session.alive = False
    with pytest.raises(SessionError):
        extractor.extract(session)


def test_resolve_prefers_row_link_then_template(extractor, config):
    snap = BoardSnapshot(keys=["A-1"], titles={"A-1": "x"}, links={"A-1": "https://board.test/t/a1"})
    assert extractor.resolve_task_url(FakeSession(), "A-1", snap) == "https://board.test/t/a1"

    config.task_url_template = "https://board.test/task/{key}"
    assert extractor.resolve_task_url(FakeSession(), "A-2") == "https://board.test/task/A-2"


def test_resolve_through_modal(extractor):
    page = FakePage(handlers={
        _JS_CLICK_FIRST_EXISTING: True,
        _JS_READ_HREF: "https://board.test/review/7/abc",
    })
    assert extractor.resolve_task_url(FakeSession(page), "PCR-7") == "https://board.test/review/7/abc"


def test_resolve_gives_up_after_three_attempts(extractor):
    page = FakePage(handlers={_JS_CLICK_FIRST_EXISTING: True, _JS_READ_HREF: None})
    assert extractor.resolve_task_url(FakeSession(page), "PCR-7") is None
    reads = [c for c in page.calls if c[0] == "evaluate" and c[1] == _JS_READ_HREF]
    assert len(reads) == 3
