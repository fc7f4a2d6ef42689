"""
Task Tracking Engine: the poll → diff → notify → filter → assign loop.

State machine:
    idle → initializing → polling ⇄ processing → (recovering) → polling … → stopped

Owned state (nobody else mutates it):
  - seen_tasks   : keys already reported to the operator (never re-notified)
  - retry_tasks  : seen keys whose claim failed; retried while still on the board
  - tasks_taken  : confirmed claims this run, gated by config.max_tasks

Error policy:
  - errored extraction / unexpected exception → consecutive error counter;
    reaching max_errors stops the run with a terminal notification
  - dead page / crashed browser → recovering (relaunch + re-navigate);
    seen_tasks survives so nothing is re-announced
  - not logged in → one alert (suppressed until logged in again), grace
    wait, re-check; still logged out mid-run → one browser relaunch, then
    stop.  Never touches the error counter

Everything runs on the caller's thread, one step at a time.  The only
cross-thread entry point is stop_monitoring().
"""

import html
import logging
import random
import threading
import time

from board_monitor.assignment import AssignmentDriver, AssignmentResult
from board_monitor.auth import check_authenticated
from board_monitor.board import get_adapter
from board_monitor.extractor import TaskExtractor
from board_monitor.http_claim import HttpClaimer
from board_monitor.session import SessionError
from board_monitor.utils import is_session_error, remove_file
from board_monitor.whitelist import is_eligible

logger = logging.getLogger("board_monitor")

# Telegram rejects photo captions above 1024 characters, messages above 4096
_MAX_CAPTION = 1000
_MAX_MESSAGE = 4000


def _compose(header: str, lines: list, footer: str, limit: int = None) -> str:
    """Build a listing message, cutting trailing lines to fit *limit*."""
    kept = list(lines)
    while True:
        hidden = len(lines) - len(kept)
        listing = kept + ([f"… and {hidden} more"] if hidden else [])
        text = f"{header}\n\n" + "\n".join(listing) + f"\n\n{footer}"
        if limit is None or len(text) <= limit or not kept:
            return text
        kept.pop()


class ExtractionError(RuntimeError):
    """The board could not be read this cycle."""


class AuthenticationLost(RuntimeError):
    """Still not logged in after the grace window."""


class TaskTracker:
    """Monitors one board section and claims eligible tasks."""

    IDLE         = "idle"
    INITIALIZING = "initializing"
    POLLING      = "polling"
    PROCESSING   = "processing"
    RECOVERING   = "recovering"
    STOPPED      = "stopped"

    def __init__(
        self,
        session,
        notifier,
        config,
        *,
        adapter=None,
        extractor=None,
        driver=None,
        auth_check=check_authenticated,
    ):
        self.session = session
        self.notifier = notifier
        # Private copy: live edits apply on the next restart, never mid-cycle
        self.config = config.copy()
        self.adapter = adapter or get_adapter(self.config.board_adapter)
        self.extractor = extractor or TaskExtractor(self.adapter, self.config)
        if driver is None:
            claimer = None
            if self.config.http_claim_url_template:
                claimer = HttpClaimer(session, self.adapter, self.config.http_claim_url_template)
            driver = AssignmentDriver(session, self.adapter, self.config, http_claimer=claimer)
        self.driver = driver
        self.auth_check = auth_check

        self.state = self.IDLE
        self.state_entered_at = time.time()
        self.history: list = []
        self.stop_reason = ""

        self.seen_tasks: set = set()
        self.retry_tasks: set = set()
        self.task_urls: dict = {}
        self.tasks_taken = 0
        self.last_task_count = 0
        self.error_count = 0

        self._auth_alerted = False
        self._auth_relaunched = False
        self._stop_event = threading.Event()

    # ── Public API ───────────────────────────────────────────────────

    def start_monitoring(self) -> None:
        """
        Reset run state and block in the monitoring loop until stopped.

        A tracker runs once: a stop requested before this call is honoured
        and the method returns without touching the browser.
        """
        if self._stop_event.is_set():
            logger.info("Stop requested before monitoring started")
            self._transition(self.STOPPED, self.stop_reason or "stop requested")
            return

        self.seen_tasks.clear()
        self.retry_tasks.clear()
        self.task_urls.clear()
        self.tasks_taken = 0
        self.last_task_count = 0
        self.error_count = 0
        self._auth_alerted = False
        self._auth_relaunched = False

        logger.info("=" * 60)
        logger.info("STARTING TASK MONITORING")
        logger.info(f"  Board:        {self.config.target_board_url}")
        logger.info(f"  Auto-assign:  {self.config.auto_assign}")
        logger.info(f"  Task limit:   {self.config.max_tasks}")
        logger.info(f"  Whitelist:    {self.config.sprint_whitelist or 'any sprint'}")
        logger.info("=" * 60)

        if self._initialize():
            self._run_loop()

        if self.state != self.STOPPED:
            self._transition(self.STOPPED, self.stop_reason or "stop requested")
        logger.info(f"Monitoring stopped ({self.stop_reason or 'stop requested'}) — "
                    f"{self.tasks_taken} task(s) taken")

    def stop_monitoring(self) -> None:
        """Ask the loop to exit.  An in-flight claim finishes first."""
        if not self.stop_reason:
            self.stop_reason = "stop requested"
        self._stop_event.set()
        logger.info("Stopping monitoring...")

    @property
    def monitoring_active(self) -> bool:
        return not self._stop_event.is_set() and self.state != self.STOPPED

    def status(self) -> dict:
        return {
            "state": self.state,
            "time_in_state": round(time.time() - self.state_entered_at, 1),
            "tasks_taken": self.tasks_taken,
            "max_tasks": self.config.max_tasks,
            "auto_assign": self.config.auto_assign,
            "seen": len(self.seen_tasks),
            "retry": sorted(self.retry_tasks),
            "last_task_count": self.last_task_count,
            "error_count": self.error_count,
            "stop_reason": self.stop_reason,
        }

    # ── State bookkeeping ────────────────────────────────────────────

    def _transition(self, new_state: str, message: str = "") -> None:
        if new_state == self.state and not message:
            return
        now = time.time()
        old = self.state
        self.state = new_state
        self.state_entered_at = now
        self.history.append((now, new_state, message or f"from {old}"))
        if len(self.history) > 200:
            self.history = self.history[-100:]
        if old != new_state:
            logger.debug(f"[engine] {old} → {new_state} {message}")

    def _wait(self, seconds: float) -> None:
        """Sleep that stop_monitoring() can cut short."""
        if seconds and seconds > 0:
            self._stop_event.wait(seconds)

    def _idle_delay(self) -> float:
        jitter = self.config.poll_jitter
        return self.config.poll_interval + (random.uniform(0, jitter) if jitter else 0)

    def _notify(self, method: str, *args, **kwargs) -> bool:
        """Call the sink; a failing sink is logged and never stops the loop."""
        try:
            return bool(getattr(self.notifier, method)(*args, **kwargs))
        except Exception as e:
            logger.error(f"Notification '{method}' failed: {e}")
            return False

    def _is_session_failure(self, exc: BaseException) -> bool:
        if isinstance(exc, SessionError) or is_session_error(exc):
            return True
        try:
            return not self.session.is_alive()
        except Exception:
            return True

    def _stop_fatal(self, reason: str) -> None:
        self.stop_reason = reason
        self._stop_event.set()
        self._transition(self.STOPPED, reason)
        logger.error(f"Monitoring stopped: {reason}")
        self._notify("send_text", f"❌ Monitoring stopped: {reason}")

    # ── Initializing ─────────────────────────────────────────────────

    def _initialize(self) -> bool:
        self._transition(self.INITIALIZING)
        board_url = self.config.target_board_url

        try:
            self.session.navigate_to(board_url)

            if self.config.auth_required:
                grace = self.config.auth_grace_seconds
                logger.info(f"Authentication required — waiting {grace:.0f}s for a manual login")
                self._notify("send_text", f"🔐 Log in to the board within {grace:.0f}s")
                self._wait(grace)
                if self._stop_event.is_set():
                    return False

            if not self._ensure_authenticated():
                if not self._stop_event.is_set():
                    self._stop_fatal("authentication required")
                return False

            snapshot = self.extractor.extract(self.session)
            if not snapshot.ok:
                logger.warning(f"Initial board read failed: {snapshot.error}")
            self.last_task_count = snapshot.count
            to_process = self._diff(snapshot)
            if to_process:
                self._process(snapshot, to_process, initial=True)
        except Exception as e:
            logger.error(f"Initialisation error: {e}")
            self.session.capture_diagnostics("init_error")
            if self._is_session_failure(e):
                if not self._recover(str(e)):
                    return False
            else:
                self.error_count += 1

        self._notify(
            "send_text",
            f"🚀 Monitoring started\n"
            f"Auto-assign: {'✅' if self.config.auto_assign else '❌'}\n"
            f"Task limit: {self.config.max_tasks}\n"
            f"Tasks in section: {self.last_task_count}",
        )
        self._transition(self.POLLING)
        return True

    def _ensure_authenticated(self) -> bool:
        page = self.session.get_page()
        if page is None:
            raise SessionError("Main page is not available")

        if self.auth_check(page, self.adapter):
            self._auth_relaunched = False
            if self._auth_alerted:
                self._auth_alerted = False
                self._notify("send_text", "✅ Authentication restored")
            return True

        if not self._auth_alerted:
            self._auth_alerted = True
            self._notify(
                "send_text",
                f"⚠️ Authentication required — waiting {self.config.auth_grace_seconds:.0f}s for a login",
            )
        logger.info("Waiting for authentication...")
        self._wait(self.config.auth_grace_seconds)
        if self._stop_event.is_set():
            return False

        self.session.navigate_to(self.config.target_board_url)
        page = self.session.get_page()
        if page is None:
            raise SessionError("Main page is not available")
        if self.auth_check(page, self.adapter):
            self._auth_relaunched = False
            self._auth_alerted = False
            self._notify("send_text", "✅ Authentication restored")
            return True
        return False

    # ── Polling loop ─────────────────────────────────────────────────

    def _run_loop(self) -> None:
        while not self._stop_event.is_set():
            try:
                self._poll_once()
                self.error_count = 0
                self._wait(self._idle_delay())
            except AuthenticationLost:
                if self._stop_event.is_set():
                    break
                # One relaunch per regression (reloads the saved login), then give up
                if self._auth_relaunched:
                    self._stop_fatal("authentication required")
                    break
                self._auth_relaunched = True
                if not self._recover("authentication lost"):
                    break
            except Exception as e:
                if self._is_session_failure(e):
                    logger.warning(f"Browser session failure: {e}")
                    if not self._recover(str(e)):
                        break
                    continue

                self.error_count += 1
                logger.error(f"Monitoring loop error ({self.error_count}/{self.config.max_errors}): {e}")
                self.session.capture_diagnostics("loop_error")
                if self.error_count >= self.config.max_errors:
                    self._stop_fatal(f"{self.config.max_errors} consecutive errors")
                    break
                self._wait(self.config.error_delay)

    def _poll_once(self) -> None:
        self._transition(self.POLLING)
        if not self.session.is_alive():
            raise SessionError("main page is not responding")
        if not self._ensure_authenticated():
            raise AuthenticationLost("not authenticated")

        snapshot = self.extractor.extract(self.session)
        if not snapshot.ok:
            raise ExtractionError(f"board read failed: {snapshot.error}")

        if snapshot.count != self.last_task_count:
            logger.info(f"Task count changed: {self.last_task_count} → {snapshot.count}")
            self.last_task_count = snapshot.count

        to_process = self._diff(snapshot)
        if to_process:
            self._process(snapshot, to_process)

    def _diff(self, snapshot) -> list:
        """New keys plus still-present retry keys, in snapshot order."""
        if not snapshot.ok:
            return []
        present = set(snapshot.keys)
        gone = self.retry_tasks - present
        if gone:
            logger.info(f"Dropping {len(gone)} retry task(s) no longer on the board: {sorted(gone)}")
            self.retry_tasks -= gone
            for key in gone:
                self.task_urls.pop(key, None)
        return [k for k in snapshot.keys if k not in self.seen_tasks or k in self.retry_tasks]

    # ── Processing ───────────────────────────────────────────────────

    def _process(self, snapshot, keys: list, initial: bool = False) -> None:
        self._transition(self.PROCESSING)
        new_keys = [k for k in keys if k not in self.seen_tasks]
        if new_keys:
            logger.info(f"New task(s): {new_keys}")
        retries = [k for k in keys if k in self.retry_tasks]
        if retries:
            logger.info(f"Retrying task(s): {retries}")

        for key in keys:
            if key not in self.task_urls:
                url = self.extractor.resolve_task_url(self.session, key, snapshot)
                if url:
                    self.task_urls[key] = url

        # Announce first; a task is never claimed before it was reported
        if new_keys:
            self.seen_tasks.update(new_keys)
            self._notify_new_tasks(snapshot, new_keys, initial)

        assigned = self._assign_eligible(snapshot, keys)

        if assigned:
            listing = "\n".join(f"• {html.escape(title)}" for title in assigned)
            self._notify(
                "send_text",
                f"✅ Took {len(assigned)} task(s):\n{listing}\n"
                f"📊 Taken: {self.tasks_taken}/{self.config.max_tasks}",
            )
        self._transition(self.POLLING)

    def _assign_eligible(self, snapshot, keys: list) -> list:
        assigned = []
        if not self.config.auto_assign:
            return assigned

        for key in keys:
            if self.tasks_taken >= self.config.max_tasks:
                logger.info(f"Task limit reached ({self.tasks_taken}/{self.config.max_tasks}) — no more claims")
                break

            title = snapshot.title_of(key)
            if not is_eligible(title, self.config.sprint_whitelist):
                logger.info(f"  {key}: sprint not whitelisted — skipping '{title}'")
                self.retry_tasks.discard(key)
                continue

            url = self.task_urls.get(key)
            if not url:
                logger.warning(f"  {key}: no task URL — will retry next cycle")
                self.retry_tasks.add(key)
                continue

            try:
                result = self.driver.attempt(key, title, url)
            except Exception as e:
                self.retry_tasks.add(key)
                if self._is_session_failure(e):
                    raise
                result = AssignmentResult(False, reason=str(e))

            if result.success:
                self.tasks_taken += 1
                self.retry_tasks.discard(key)
                assigned.append(title)
                logger.info(f"  ✅ {key} taken ({self.tasks_taken}/{self.config.max_tasks}) via {result.method}")
                self._notify_assigned(key, title, url, result)
            else:
                self.retry_tasks.add(key)
                logger.info(f"  {key}: not taken ({result.reason}) — queued for retry")

            self._wait(self.config.assign_pause)
        return assigned

    # ── Operator messages ────────────────────────────────────────────

    def _notify_new_tasks(self, snapshot, new_keys: list, initial: bool) -> None:
        header = "🚀 <b>Tasks found at startup!</b>" if initial else "🚀 <b>New tasks detected!</b>"
        lines = []
        for key in new_keys:
            title = html.escape(snapshot.title_of(key))
            url = self.task_urls.get(key)
            lines.append(f'• <a href="{html.escape(url)}">{title}</a>' if url else f"• {title}")
        footer = f"In section: {snapshot.count}\nTaken: {self.tasks_taken}/{self.config.max_tasks}"

        caption = _compose(header, lines, footer)
        shot = self.session.screenshot("new-tasks") if len(caption) <= _MAX_CAPTION else None
        if shot:
            self._notify("send_alert", shot, self.config.target_board_url, caption, show_board_button=True)
            remove_file(shot)
            return

        self._notify("send_text", _compose(header, lines, footer, _MAX_MESSAGE))

    def _notify_assigned(self, key: str, title: str, url: str, result) -> None:
        board_shot = self.session.screenshot(f"board-{key}")
        caption = (
            f'✅ Task taken\n"{html.escape(title)}"\n'
            f"📊 Taken: {self.tasks_taken}/{self.config.max_tasks}"
        )
        images = [p for p in (result.evidence, board_shot) if p]
        if images:
            self._notify("send_double_alert", images, url, caption)
        else:
            self._notify("send_text", caption)
        for path in images:
            remove_file(path)

    # ── Recovering ───────────────────────────────────────────────────

    def _recover(self, reason: str) -> bool:
        self._transition(self.RECOVERING, reason)
        logger.warning(f"Recovering browser session: {reason}")
        self._notify("send_text", "♻️ Browser session lost — restarting the browser")

        attempts = self.config.recovery_attempts
        for attempt in range(1, attempts + 1):
            if self._stop_event.is_set():
                return False
            try:
                self.session.close()
                self.session.init()
                self.session.navigate_to(self.config.target_board_url)
            except Exception as e:
                logger.error(f"Recovery attempt {attempt}/{attempts} failed: {e}")
                self._wait(self.config.recovery_delay)
                continue

            self.last_task_count = 0
            self._transition(self.POLLING, "recovered")
            logger.info(f"Browser session recovered (attempt {attempt}/{attempts})")
            self._notify("send_text", "✅ Browser session restored")
            return True

        self._stop_fatal(f"browser session could not be recovered after {attempts} attempts")
        return False
