"""
HTTP claim fast path: replay the board's own "start review" request with
the credentials the logged-in main page already holds.

Only HTTP 201 counts as success.  Anything else (other status, missing
token, network error) returns False and the caller falls back to the UI.
"""

import json
import logging
from urllib.parse import urlparse

import requests as _requests

logger = logging.getLogger("board_monitor")

_JS_READ_CREDENTIALS = """
(storageKey) => ({
    authToken: storageKey ? window.sessionStorage.getItem(storageKey) : null,
    cookies: document.cookie,
})
"""


class HttpClaimer:
    """Claims a task by POSTing to ``url_template`` with the page's auth token."""

    _TIMEOUT = 10  # seconds

    def __init__(self, session, adapter, url_template: str, *, http=_requests):
        self._session = session
        self._adapter = adapter
        self._url_template = url_template
        self._http = http

    @staticmethod
    def extract_task_params(task_url: str) -> tuple[str, str]:
        """Task links end in .../<homework_id>/<secret>; return both."""
        parts = [p for p in urlparse(task_url).path.split("/") if p]
        if len(parts) < 2:
            raise ValueError(f"Task URL has no id/secret path: {task_url}")
        return parts[-2], parts[-1]

    def _credentials(self) -> dict:
        data = self._session.evaluate(_JS_READ_CREDENTIALS, self._adapter.auth_token_storage_key) or {}
        token = data.get("authToken") or ""
        prefix = self._adapter.auth_token_prefix
        if not token or (prefix and not token.startswith(prefix)):
            raise ValueError("No valid auth token in sessionStorage")
        return {"token": token, "cookies": data.get("cookies") or ""}

    def take_task(self, task_url: str) -> bool:
        try:
            homework_id, secret = self.extract_task_params(task_url)
            creds = self._credentials()
        except Exception as e:
            logger.info(f"  [http-claim] Not possible: {e}")
            return False

        claim_url = self._url_template.format(homework_id=homework_id, secret=secret)
        headers = {
            "x-authtoken": creds["token"],
            "accept": "application/json",
            "content-type": "application/json",
            "sec-fetch-dest": "empty",
            "sec-fetch-mode": "cors",
            "sec-fetch-site": "same-origin",
            "referer": task_url,
            "cookie": creds["cookies"],
        }
        try:
            r = self._http.post(claim_url, data=json.dumps({}), headers=headers, timeout=self._TIMEOUT)
        except _requests.RequestException as exc:
            logger.warning(f"  [http-claim] POST failed: {exc}")
            return False

        if r.status_code == 201:
            logger.info(f"  [http-claim] Task {homework_id} taken via HTTP")
            return True
        logger.warning(f"  [http-claim] Unexpected status {r.status_code} for {homework_id}")
        return False
