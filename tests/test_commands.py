import pytest

from conftest import FakeNotifier
from board_monitor.commands import CommandListener, parse_input
from board_monitor.config import ConfigStore, MonitorConfig


class FakeMonitor:
    def __init__(self):
        self.restarts = 0

    def restart_monitoring(self):
        self.restarts += 1

    def status(self):
        return {"state": "polling", "tasks_taken": 1, "max_tasks": 4, "last_task_count": 3, "retry": ["A-1"]}


@pytest.fixture
def store():
    return ConfigStore(MonitorConfig(target_board_url="https://board.test/b/1"))


@pytest.fixture
def listener(store):
    return CommandListener(FakeNotifier(), store, FakeMonitor())


def _message(text, chat_id=42, update_id=1):
    return {"update_id": update_id, "message": {"text": text, "chat": {"id": chat_id}}}


def _callback(data, chat_id=42, update_id=1):
    return {"update_id": update_id, "callback_query": {
        "id": "cb1", "data": data, "message": {"message_id": 9, "chat": {"id": chat_id}},
    }}


def test_config_command_sends_menu(listener):
    listener.handle_update(_message("/config"))
    assert "Current settings" in listener.notifier.texts()[-1]


def test_toggle_auto_assign(listener, store):
    listener.handle_update(_callback("toggle_autoassign"))
    assert store.snapshot().auto_assign is False
    assert listener.notifier.answered == ["cb1"]
    assert listener.notifier.edited


def test_toggle_auth(listener, store):
    listener.handle_update(_callback("toggle_auth"))
    assert store.snapshot().auth_required is True


def test_change_max_tasks_flow(listener, store):
    listener.handle_update(_callback("change_max_tasks"))
    assert listener.waiting_for == "max_tasks"

    listener.handle_update(_message("abc"))
    assert store.snapshot().max_tasks == 4
    assert listener.waiting_for == "max_tasks"

    listener.handle_update(_message("6"))
    assert store.snapshot().max_tasks == 6
    assert listener.waiting_for is None


def test_change_whitelist_and_clear(listener, store):
    listener.handle_update(_callback("change_whitelist"))
    listener.handle_update(_message("19, 10"))
    assert store.snapshot().sprint_whitelist == ["19", "10"]

    listener.handle_update(_callback("change_whitelist"))
    listener.handle_update(_message("-"))
    assert store.snapshot().sprint_whitelist == []


def test_change_board_url_rejects_non_http(listener, store):
    listener.handle_update(_callback("change_target_url"))
    listener.handle_update(_message("board.test/b/2"))
    assert store.snapshot().target_board_url == "https://board.test/b/1"
    listener.handle_update(_message("https://board.test/b/2"))
    assert store.snapshot().target_board_url == "https://board.test/b/2"


def test_restart_via_button_and_command(listener):
    listener.handle_update(_callback("restart_monitoring"))
    listener.handle_update(_message("/restart"))
    assert listener.monitor.restarts == 2


def test_status_command(listener):
    listener.handle_update(_message("/status"))
    assert "Taken: 1/4" in listener.notifier.texts()[-1]


def test_foreign_chat_is_ignored(listener, store):
    listener.handle_update(_callback("toggle_autoassign", chat_id=999))
    listener.handle_update(_message("/restart", chat_id=999))
    assert store.snapshot().auto_assign is True
    assert listener.monitor.restarts == 0


def test_poll_once_advances_offset(store):
    notifier = FakeNotifier(updates=[_message("/config", update_id=5), _message("/status", update_id=6)])
    listener = CommandListener(notifier, store, FakeMonitor())
    assert listener.poll_once() == 2
    assert listener.offset == 7


def test_parse_input_validation():
    assert parse_input("max_tasks", " 3 ") == 3
    assert parse_input("sprint_whitelist", "19,7") == ["19", "7"]
    with pytest.raises(ValueError):
        parse_input("sprint_whitelist", "19,x")
    with pytest.raises(ValueError):
        parse_input("target_board_url", "nope")


def test_stranger_is_ignored_without_configured_chat(store):
    notifier = FakeNotifier()
    notifier.chat_id = ""
    listener = CommandListener(notifier, store, FakeMonitor())

    listener.handle_update(_callback("toggle_autoassign", chat_id=666))
    listener.handle_update(_message("/restart", chat_id=666))

    assert store.snapshot().auto_assign is True
    assert listener.monitor.restarts == 0
    assert notifier.sent == []


def test_first_start_adopts_operator_chat(store):
    notifier = FakeNotifier()
    notifier.chat_id = ""
    listener = CommandListener(notifier, store, FakeMonitor())

    listener.handle_update(_message("/start", chat_id=42))
    assert notifier.chat_id == "42"
    assert "Current settings" in notifier.texts()[-1]

    listener.handle_update(_message("/start", chat_id=666))
    listener.handle_update(_message("/restart", chat_id=666))
    assert notifier.chat_id == "42"
    assert listener.monitor.restarts == 0
