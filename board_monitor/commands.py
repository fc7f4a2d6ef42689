"""
Operator commands over the Telegram bot.

A daemon thread long-polls getUpdates and turns messages / inline-button
callbacks into ConfigStore edits or a restart request.  It never touches
the browser — the sync Playwright objects belong to the monitor thread.

Text commands:   /start  /config  /status  /restart
Menu callbacks:  show_config, toggle_autoassign, toggle_auth,
                 change_max_tasks, change_whitelist, change_target_url,
                 restart_monitoring

The change_* buttons put the listener into "waiting for input" mode; the
next text message is validated and applied (or rejected with a hint).
Edits are picked up by the next restart.

Only the operator chat is obeyed.  Without TELEGRAM_CHAT_ID the first chat
to send /start becomes the operator for this process.
"""

import html
import logging
import threading
import time

from board_monitor.config import parse_whitelist

logger = logging.getLogger("board_monitor")

_ERROR_BACKOFF = 5  # seconds after a failed poll

_PROMPTS = {
    "max_tasks": "Send the new task limit (a whole number):",
    "sprint_whitelist": "Send sprint numbers separated by commas (e.g. 19, 10), or '-' to allow any sprint:",
    "target_board_url": "Send the new board URL (must start with http):",
}

_INPUT_CALLBACKS = {
    "change_max_tasks": "max_tasks",
    "change_whitelist": "sprint_whitelist",
    "change_target_url": "target_board_url",
}


def render_config(config) -> str:
    whitelist = ", ".join(config.sprint_whitelist) or "any sprint"
    return (
        "⚙️ <b>Current settings</b>\n\n"
        f"Auto-assign: {'✅ on' if config.auto_assign else '❌ off'}\n"
        f"Login wait at start: {'✅ on' if config.auth_required else '❌ off'}\n"
        f"Task limit: {config.max_tasks}\n"
        f"Sprint whitelist: {html.escape(whitelist)}\n"
        f"Board: {html.escape(config.target_board_url)}\n\n"
        "Changes apply after a restart."
    )


def config_keyboard(config) -> dict:
    return {"inline_keyboard": [
        [{"text": f"Auto-assign: {'on' if config.auto_assign else 'off'}", "callback_data": "toggle_autoassign"}],
        [{"text": f"Login wait: {'on' if config.auth_required else 'off'}", "callback_data": "toggle_auth"}],
        [{"text": "Change task limit", "callback_data": "change_max_tasks"}],
        [{"text": "Change sprint whitelist", "callback_data": "change_whitelist"}],
        [{"text": "Change board URL", "callback_data": "change_target_url"}],
        [{"text": "🔄 Restart monitoring", "callback_data": "restart_monitoring"}],
    ]}


def parse_input(field: str, text: str):
    """Validate operator input for *field*; raise ValueError with a hint."""
    text = text.strip()
    if field == "max_tasks":
        if not text.isdigit():
            raise ValueError("The task limit must be a whole number")
        return int(text)
    if field == "sprint_whitelist":
        if text in ("-", ""):
            return []
        items = parse_whitelist(text)
        if not all(item.isdigit() for item in items):
            raise ValueError("Sprint numbers must be digits separated by commas")
        return items
    if field == "target_board_url":
        if not text.startswith("http"):
            raise ValueError("The board URL must start with http")
        return text
    raise ValueError(f"Unknown setting: {field}")


class CommandListener:
    """Background bot poller that edits the live config and requests restarts."""

    def __init__(self, notifier, store, monitor, *, poll_timeout: int = 10):
        self.notifier = notifier
        self.store = store
        self.monitor = monitor
        self.poll_timeout = poll_timeout
        self.offset = 0
        self.waiting_for = None
        self._stop_event = threading.Event()
        self._thread = None

    def start(self) -> None:
        self._thread = threading.Thread(target=self._poll_loop, daemon=True, name="commands")
        self._thread.start()
        logger.info("Command listener started")

    def stop(self) -> None:
        self._stop_event.set()

    def _poll_loop(self) -> None:
        while not self._stop_event.is_set():
            try:
                self.poll_once()
            except Exception as e:
                logger.error(f"Command polling failed: {e}")
                time.sleep(_ERROR_BACKOFF)

    def poll_once(self) -> int:
        updates = self.notifier.get_updates(self.offset, timeout=self.poll_timeout)
        for update in updates:
            self.offset = max(self.offset, update.get("update_id", 0) + 1)
            try:
                self.handle_update(update)
            except Exception as e:
                logger.error(f"Command handling failed: {e}")
        return len(updates)

    # ── Dispatch ─────────────────────────────────────────────────────

    def _authorised(self, chat_id) -> bool:
        expected = self.notifier.chat_id
        if not expected or str(chat_id) != str(expected):
            logger.warning(f"Ignoring command from unknown chat {chat_id}")
            return False
        return True

    def handle_update(self, update: dict) -> None:
        if "callback_query" in update:
            query = update["callback_query"]
            chat_id = query.get("message", {}).get("chat", {}).get("id")
            if self._authorised(chat_id):
                self.handle_callback(query)
            return

        message = update.get("message") or {}
        text = message.get("text")
        if not text:
            return
        chat_id = message.get("chat", {}).get("id")
        if text.strip().startswith("/start") and not self.notifier.chat_id and chat_id is not None:
            # First /start claims the bot; everyone else is ignored from then on
            self.notifier.chat_id = str(chat_id)
            logger.info(f"Operator chat set to {chat_id} — put it in TELEGRAM_CHAT_ID to keep it across runs")
        if self._authorised(chat_id):
            self.handle_text(text)

    def handle_text(self, text: str) -> None:
        command = text.strip().split()[0].split("@")[0].lower() if text.strip() else ""

        if command in ("/start", "/config"):
            self.waiting_for = None
            self._send_menu()
        elif command == "/status":
            self._send_status()
        elif command == "/restart":
            self.waiting_for = None
            self._restart()
        elif self.waiting_for:
            self._apply_input(text)
        else:
            logger.debug(f"Unhandled message: {text!r}")

    def handle_callback(self, query: dict) -> None:
        data = query.get("data", "")
        self.notifier.answer_callback(query.get("id", ""))
        message_id = query.get("message", {}).get("message_id")

        if data == "show_config":
            self._send_menu(message_id)
        elif data == "toggle_autoassign":
            config = self.store.snapshot()
            self.store.update(auto_assign=not config.auto_assign)
            self._send_menu(message_id)
        elif data == "toggle_auth":
            config = self.store.snapshot()
            self.store.update(auth_required=not config.auth_required)
            self._send_menu(message_id)
        elif data in _INPUT_CALLBACKS:
            self.waiting_for = _INPUT_CALLBACKS[data]
            self.notifier.send_text(_PROMPTS[self.waiting_for])
        elif data == "restart_monitoring":
            self._restart()
        else:
            logger.warning(f"Unknown callback: {data!r}")

    # ── Actions ──────────────────────────────────────────────────────

    def _send_menu(self, message_id: int = None) -> None:
        config = self.store.snapshot()
        text, keyboard = render_config(config), config_keyboard(config)
        if message_id is not None and self.notifier.edit_message(message_id, text, keyboard):
            return
        self.notifier.send_text(text, keyboard)

    def _send_status(self) -> None:
        status = self.monitor.status()
        self.notifier.send_text(
            "📊 <b>Status</b>\n"
            f"State: {status.get('state', 'idle')}\n"
            f"Taken: {status.get('tasks_taken', 0)}/{status.get('max_tasks', '?')}\n"
            f"Tasks in section: {status.get('last_task_count', 0)}\n"
            f"Retry queue: {len(status.get('retry', []))}"
        )

    def _apply_input(self, text: str) -> None:
        field = self.waiting_for
        try:
            value = parse_input(field, text)
            self.store.update(**{field: value})
        except ValueError as e:
            self.notifier.send_text(f"⚠️ {html.escape(str(e))}. {_PROMPTS[field]}")
            return
        self.waiting_for = None
        self.notifier.send_text("✅ Saved. Restart monitoring to apply.")
        self._send_menu()

    def _restart(self) -> None:
        self.notifier.send_text("🔄 Restarting monitoring with the current settings...")
        self.monitor.restart_monitoring()
