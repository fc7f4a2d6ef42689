"""
Notification Sink: Telegram Bot API client with an email fallback.

Interface used by the engine:
    send_text(message, keyboard=None)
    send_alert(image_path, link, caption, show_board_button=False)
    send_double_alert(images, link, caption)

Every call returns True/False and never raises for transport problems —
a dead chat channel must not stop the monitor.  When Telegram fails, the
mail fallback is tried once and its outcome only logged.

Two classes:
  TelegramNotifier — real implementation over requests
  NullNotifier     — log-only drop-in when no bot token is configured
"""

import json
import logging
import os
import time

import requests as _requests

from board_monitor.mailer import MailService

logger = logging.getLogger("board_monitor")

API_BASE = "https://api.telegram.org"


class TelegramNotifier:
    """Sends operator messages through a Telegram bot."""

    enabled = True

    _TIMEOUT = 15        # seconds per request
    _RETRY_BACKOFF = 2   # seconds before the single retry

    def __init__(self, bot_token: str, chat_id: str = "", *, mail: MailService = None, http=_requests):
        if not bot_token:
            raise ValueError("bot_token is required")
        self._base = f"{API_BASE}/bot{bot_token}"
        self.chat_id = str(chat_id) if chat_id else ""
        self._mail = mail
        self._http = http

    # ── Internal helpers ──────────────────────────────────────────────

    def _call(self, method: str, *, payload: dict = None, files: dict = None, params: dict = None, timeout: int = None):
        """Call a Bot API method with one retry.  Returns ``result`` or None."""
        url = f"{self._base}/{method}"
        for attempt in range(2):
            try:
                if params is not None:
                    r = self._http.get(url, params=params, timeout=timeout or self._TIMEOUT)
                elif files:
                    r = self._http.post(url, data=payload, files=files, timeout=timeout or self._TIMEOUT)
                else:
                    r = self._http.post(url, json=payload, timeout=timeout or self._TIMEOUT)
                r.raise_for_status()
                body = r.json()
                if not body.get("ok"):
                    logger.warning(f"  [telegram] {method} rejected: {body.get('description')}")
                    return None
                return body.get("result")
            except (_requests.ConnectionError, _requests.Timeout) as exc:
                if attempt == 0 and not files:
                    logger.warning(f"  [telegram] {method} failed ({exc}), retrying in {self._RETRY_BACKOFF}s…")
                    time.sleep(self._RETRY_BACKOFF)
                else:
                    logger.error(f"  [telegram] {method} failed: {exc}")
                    return None
            except (_requests.RequestException, ValueError) as exc:
                logger.error(f"  [telegram] {method} error: {exc}")
                return None
        return None

    def _fallback(self, caption: str, link: str = "", image_path: str | None = None) -> None:
        if self._mail is None:
            return
        if self._mail.send_alert_mail("Task board monitor", caption, link=link, image_path=image_path):
            logger.info("Alert delivered by email instead of Telegram")

    # ── Sending ───────────────────────────────────────────────────────

    def send_text(self, message: str, keyboard: dict = None) -> bool:
        if not self.chat_id:
            logger.warning("chat_id not set — message not sent")
            return False
        payload = {"chat_id": self.chat_id, "text": message, "parse_mode": "HTML",
                   "disable_web_page_preview": True}
        if keyboard:
            payload["reply_markup"] = keyboard
        result = self._call("sendMessage", payload=payload)
        if result is None:
            self._fallback(message)
            return False
        logger.debug("Telegram message sent")
        return True

    def send_alert(self, image_path: str, link: str = "", caption: str = "", show_board_button: bool = False) -> bool:
        if not self.chat_id:
            return False
        if not image_path or not os.path.exists(image_path):
            logger.warning(f"Alert image not found: {image_path}")
            return self.send_text(caption)

        payload = {"chat_id": self.chat_id, "caption": caption, "parse_mode": "HTML"}
        if show_board_button and link:
            payload["reply_markup"] = json.dumps(
                {"inline_keyboard": [[{"text": "📋 Open board", "url": link}]]}
            )
        with open(image_path, "rb") as photo:
            result = self._call("sendPhoto", payload=payload, files={"photo": photo})
        if result is None:
            self._fallback(caption, link, image_path)
            return False
        logger.debug("Telegram photo alert sent")
        return True

    def send_double_alert(self, images: list, link: str = "", caption: str = "") -> bool:
        if not self.chat_id:
            return False
        existing = [p for p in images if p and os.path.exists(p)]
        if len(existing) < 2:
            if existing:
                return self.send_alert(existing[0], link, caption, show_board_button=bool(link))
            return self.send_text(caption)

        if link:
            caption = f'{caption}\n\n<a href="{link}">Open task</a>'
        media, handles = [], {}
        try:
            for i, path in enumerate(existing):
                name = f"photo{i}"
                item = {"type": "photo", "media": f"attach://{name}"}
                if i == 0:
                    item.update(caption=caption, parse_mode="HTML")
                media.append(item)
                handles[name] = open(path, "rb")
            payload = {"chat_id": self.chat_id, "media": json.dumps(media)}
            result = self._call("sendMediaGroup", payload=payload, files=handles)
        finally:
            for handle in handles.values():
                handle.close()
        if result is None:
            self._fallback(caption, link, existing[0])
            return False
        logger.debug("Telegram double alert sent")
        return True

    # ── Inbound (used by the command listener) ───────────────────────

    def get_updates(self, offset: int, timeout: int = 10) -> list:
        result = self._call(
            "getUpdates",
            params={"offset": offset, "timeout": timeout,
                    "allowed_updates": json.dumps(["message", "callback_query"])},
            timeout=timeout + 5,
        )
        return result or []

    def edit_message(self, message_id: int, text: str, keyboard: dict = None) -> bool:
        payload = {"chat_id": self.chat_id, "message_id": message_id, "text": text, "parse_mode": "HTML"}
        if keyboard:
            payload["reply_markup"] = keyboard
        return self._call("editMessageText", payload=payload) is not None

    def answer_callback(self, callback_id: str, text: str = "") -> None:
        self._call("answerCallbackQuery", payload={"callback_query_id": callback_id, "text": text})


class NullNotifier:
    """
    Drop-in notifier that only logs.

    Used when no bot token is configured, so call sites never need
    if/else guards.
    """

    enabled = False
    chat_id = ""

    def __init__(self, mail: MailService = None):
        self._mail = mail

    def send_text(self, message: str, keyboard: dict = None) -> bool:
        logger.info(f"[notify] {message}")
        return True

    def send_alert(self, image_path: str, link: str = "", caption: str = "", show_board_button: bool = False) -> bool:
        logger.info(f"[notify] {caption} (image: {image_path})")
        return True

    def send_double_alert(self, images: list, link: str = "", caption: str = "") -> bool:
        logger.info(f"[notify] {caption} (images: {images})")
        return True

    def get_updates(self, offset: int, timeout: int = 10) -> list:
        return []

    def edit_message(self, message_id: int, text: str, keyboard: dict = None) -> bool:
        return False

    def answer_callback(self, callback_id: str, text: str = "") -> None:
        pass


def build_notifier(config) -> "TelegramNotifier | NullNotifier":
    """Telegram when a bot token is configured, otherwise log-only."""
    mail = MailService.from_config(config)
    if not config.telegram_bot_token:
        logger.info("Notifications: Telegram disabled (NullNotifier)")
        return NullNotifier(mail=mail)
    if not config.telegram_chat_id:
        logger.warning("TELEGRAM_CHAT_ID not set — send any message to the bot and use /start to learn it")
    logger.info(f"Notifications: Telegram{' + email fallback' if mail.is_configured() else ''}")
    return TelegramNotifier(config.telegram_bot_token, config.telegram_chat_id, mail=mail)
