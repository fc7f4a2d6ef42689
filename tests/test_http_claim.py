import pytest
import requests

from conftest import FakePage, FakeSession
from board_monitor.board import get_adapter
from board_monitor.http_claim import _JS_READ_CREDENTIALS, HttpClaimer

TEMPLATE = "https://board.test/api/homework/{homework_id}/{secret}/start_review"
TASK_URL = "https://board.test/review/100/s3cr3t"


class FakeHttp:
    def __init__(self, status=201, error=None):
        self.status = status
        self.error = error
        self.calls = []

    def post(self, url, **kwargs):
        self.calls.append((url, kwargs))
        if self.error:
            raise self.error
        return type("Response", (), {"status_code": self.status})()


def _claimer(http, token="eyJabc"):
    page = FakePage(handlers={_JS_READ_CREDENTIALS: {"authToken": token, "cookies": "sid=1"}})
    return HttpClaimer(FakeSession(page), get_adapter("tracker-v1"), TEMPLATE, http=http)


def test_extract_task_params():
    assert HttpClaimer.extract_task_params(TASK_URL) == ("100", "s3cr3t")
    with pytest.raises(ValueError):
        HttpClaimer.extract_task_params("https://board.test/only")


def test_created_status_is_success():
    http = FakeHttp(201)
    assert _claimer(http).take_task(TASK_URL) is True
    url, kwargs = http.calls[0]
    assert url == "https://board.test/api/homework/100/s3cr3t/start_review"
    assert kwargs["headers"]["x-authtoken"] == "eyJabc"
    assert kwargs["headers"]["cookie"] == "sid=1"


def test_other_status_is_failure():
    assert _claimer(FakeHttp(200)).take_task(TASK_URL) is False


def test_invalid_token_skips_request():
    http = FakeHttp(201)
    assert _claimer(http, token="bogus").take_task(TASK_URL) is False
    assert http.calls == []


def test_network_error_is_failure():
    assert _claimer(FakeHttp(error=requests.ConnectionError("down"))).take_task(TASK_URL) is False
