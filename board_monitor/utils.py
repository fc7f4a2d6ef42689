"""
Utility functions: logging setup, diagnostics capture and small helpers.

Diagnostics follow one rule: capture as much as possible even when the page
is broken (screenshot first, HTML dump as the fallback, URL + title always).
"""

import os
import re
import logging
from datetime import datetime


ROOT_DIR = os.path.dirname(os.path.dirname(os.path.abspath(__file__)))
LOG_DIR = os.path.join(ROOT_DIR, "logs")
SCREENSHOT_DIR = os.path.join(LOG_DIR, "screenshots")
HTMLDUMP_DIR   = os.path.join(LOG_DIR, "htmldumps")

LOGGER_NAME = "board_monitor"

# Error texts Playwright uses when the page/browser behind a handle is gone.
_SESSION_ERROR_MARKERS = (
    "target closed",
    "target page, context or browser has been closed",
    "has been closed",
    "crash",
    "detached",
    "browser has disconnected",
    "connection closed",
)


def setup_logging(level: str = "INFO") -> logging.Logger:
    """Configure and return the project logger."""
    os.makedirs(LOG_DIR, exist_ok=True)
    timestamp = datetime.now().strftime("%Y%m%d_%H%M%S")
    log_file = os.path.join(LOG_DIR, f"run_{timestamp}.log")

    logger = logging.getLogger(LOGGER_NAME)
    logger.setLevel(logging.DEBUG)

    # Prevent duplicate handlers on repeated calls
    if logger.handlers:
        return logger

    # Console handler
    ch = logging.StreamHandler()
    ch.setLevel(getattr(logging, str(level).upper(), logging.INFO))
    ch_fmt = logging.Formatter("[%(asctime)s] %(levelname)-8s %(message)s", datefmt="%H:%M:%S")
    ch.setFormatter(ch_fmt)

    # File handler
    fh = logging.FileHandler(log_file, encoding="utf-8")
    fh.setLevel(logging.DEBUG)
    fh_fmt = logging.Formatter("[%(asctime)s] %(levelname)-8s %(name)s — %(message)s")
    fh.setFormatter(fh_fmt)

    logger.addHandler(ch)
    logger.addHandler(fh)

    # Flask's per-request lines would drown the monitor output
    logging.getLogger("werkzeug").setLevel(logging.WARNING)

    logger.info(f"Log file: {log_file}")
    return logger


def formatted_timestamp() -> str:
    """Filesystem-safe timestamp, e.g. 2024-05-01_13-45-10."""
    return datetime.now().strftime("%Y-%m-%d_%H-%M-%S")


def safe_label(label: str) -> str:
    """Reduce an arbitrary label to characters that are safe in a filename."""
    return re.sub(r"[^\w\-]", "_", label)[:80]


def is_session_error(exc: BaseException) -> bool:
    """Return True if *exc* says the page/browser behind a handle is gone."""
    text = str(exc).lower()
    return any(marker in text for marker in _SESSION_ERROR_MARKERS)


def get_session_path() -> str:
    """Return the path of the browser storage-state file (login cookies only)."""
    return os.path.join(ROOT_DIR, "session.json")


def screenshot_path(label: str) -> str:
    """Build a timestamped path under the screenshot directory."""
    os.makedirs(SCREENSHOT_DIR, exist_ok=True)
    return os.path.join(SCREENSHOT_DIR, f"{safe_label(label)}-{formatted_timestamp()}.png")


def capture_diagnostics(page, label: str = "error") -> str | None:
    """
    Capture maximum diagnostic data even when the page is broken.

    Chain:
      1. page.screenshot()  with a hard 5s timeout
      2. On failure → page.content() → save as .html dump
      3. Always log page.url and page.title()

    Returns the file path of the saved screenshot or HTML dump, or None.
    """
    logger = logging.getLogger(LOGGER_NAME)
    if page is None:
        logger.debug(f"[diag] {label}: no page to capture")
        return None

    timestamp = datetime.now().strftime("%Y%m%d_%H%M%S")
    label = safe_label(label)

    # URL + title first, works even on stuck pages
    try:
        current_url = page.url
    except Exception:
        current_url = "<unavailable>"
    try:
        current_title = page.title()
    except Exception:
        current_title = "<unavailable>"
    logger.debug(f"[diag] url={current_url}  title={current_title}")

    # Screenshot with a hard 5s timeout
    try:
        os.makedirs(SCREENSHOT_DIR, exist_ok=True)
        filepath = os.path.join(SCREENSHOT_DIR, f"{timestamp}_{label}.png")
        page.screenshot(path=filepath, full_page=True, timeout=5_000)
        logger.info(f"📸 Screenshot saved: {filepath}")
        return filepath
    except Exception as ss_err:
        logger.debug(f"Screenshot failed ({ss_err}) — falling back to HTML dump")

    # HTML dump fallback
    try:
        os.makedirs(HTMLDUMP_DIR, exist_ok=True)
        html_filepath = os.path.join(HTMLDUMP_DIR, f"{timestamp}_{label}.html")
        html_content = page.content()
        with open(html_filepath, "w", encoding="utf-8") as f:
            f.write(html_content)
        logger.info(f"📄 HTML dump saved: {html_filepath}")
        return html_filepath
    except Exception as html_err:
        logger.warning(f"HTML dump also failed: {html_err}")
        return None


def remove_file(path: str | None) -> None:
    """Delete a screenshot once it has been delivered. Missing files are fine."""
    if not path:
        return
    try:
        if os.path.exists(path):
            os.unlink(path)
    except OSError as e:
        logging.getLogger(LOGGER_NAME).warning(f"Could not remove {path}: {e}")
