from conftest import FakePage
from board_monitor.auth import _JS_HAS_AUTH_MARKERS, check_authenticated, is_auth_url
from board_monitor.board import get_adapter

ADAPTER = get_adapter("tracker-v1")


def test_board_page_is_authenticated():
    page = FakePage(handlers={_JS_HAS_AUTH_MARKERS: False})
    assert check_authenticated(page, ADAPTER) is True


def test_passport_redirect_is_detected():
    page = FakePage(url="https://passport.yandex-team.ru/auth?retpath=x")
    assert check_authenticated(page, ADAPTER) is False
    assert page.calls == []


def test_login_form_markers_are_detected():
    page = FakePage(handlers={_JS_HAS_AUTH_MARKERS: True})
    assert check_authenticated(page, ADAPTER) is False


def test_is_auth_url_is_case_insensitive():
    assert is_auth_url("https://PASSPORT.yandex-team.ru/", ADAPTER)
    assert not is_auth_url("https://board.test/", ADAPTER)
