"""
Supervisor: owns the browser session and the current TaskTracker.

run() blocks on the calling thread (the only thread that touches
Playwright).  restart_monitoring() and shutdown() may be called from any
thread: they only set events and ask the tracker to stop, and run() then
rebuilds the session + tracker from a fresh ConfigStore snapshot.
"""

import logging
import threading
import time

from board_monitor.engine import TaskTracker
from board_monitor.session import BrowserSession, SessionError

logger = logging.getLogger("board_monitor")


class BoardMonitor:

    def __init__(self, store, notifier, *, session_factory=BrowserSession, tracker_factory=TaskTracker):
        self.store = store
        self.notifier = notifier
        self._session_factory = session_factory
        self._tracker_factory = tracker_factory
        self.session = None
        self.tracker = None
        self.restarts = 0
        self.started_at = time.time()
        self._lock = threading.Lock()
        self._restart_event = threading.Event()
        self._shutdown_event = threading.Event()

    # ── Main thread ──────────────────────────────────────────────────

    def run(self) -> None:
        """Run monitoring until shutdown, rebuilding on every restart request."""
        while not self._shutdown_event.is_set():
            config = self.store.snapshot()
            self._restart_event.clear()

            try:
                session = self._session_factory(config)
                session.init()
            except SessionError as e:
                logger.error(f"Could not start the browser: {e}")
                self._safe_notify(f"❌ Browser could not be started: {e}")
                if not self._await_restart(config):
                    break
                continue

            tracker = self._tracker_factory(session, self.notifier, config)
            with self._lock:
                self.session, self.tracker = session, tracker
            # A request that arrived during init() found no tracker to stop
            if self._shutdown_event.is_set() or self._restart_event.is_set():
                tracker.stop_monitoring()
            try:
                tracker.start_monitoring()
            finally:
                session.close()
                with self._lock:
                    self.session = None

            if self._shutdown_event.is_set():
                break
            if self._restart_event.is_set():
                self.restarts += 1
                logger.info(f"Restarting monitoring (restart #{self.restarts})")
                continue
            if not self._await_restart(config):
                break

        logger.info("Board monitor finished")

    def _await_restart(self, config) -> bool:
        """Idle until restart_monitoring() is called; False if nobody can call it."""
        if not (config.command_polling and getattr(self.notifier, "enabled", False)):
            return False
        logger.info("Monitoring is idle — waiting for a restart command")
        self._restart_event.wait()
        return not self._shutdown_event.is_set()

    def _safe_notify(self, message: str) -> None:
        try:
            self.notifier.send_text(message)
        except Exception as e:
            logger.error(f"Notification failed: {e}")

    # ── Any thread ───────────────────────────────────────────────────

    def restart_monitoring(self) -> None:
        """Stop the current run; run() starts a new one with the current config."""
        logger.info("Restart requested")
        self._restart_event.set()
        with self._lock:
            tracker = self.tracker
        if tracker is not None:
            tracker.stop_monitoring()

    def shutdown(self) -> None:
        logger.info("Shutdown requested")
        self._shutdown_event.set()
        self._restart_event.set()
        with self._lock:
            tracker = self.tracker
        if tracker is not None:
            tracker.stop_monitoring()

    def status(self) -> dict:
        with self._lock:
            tracker = self.tracker
        status = tracker.status() if tracker is not None else {"state": "idle"}
        status.update(
            restarts=self.restarts,
            uptime=int(time.time() - self.started_at),
            browser=self.session is not None,
        )
        return status
