"""
Task Board Monitor — Entry Point

Usage:
    python main.py
    python main.py --config path/to/config.yaml

Environment variables override config.yaml (TARGET_BOARD_URL, AUTO_ASSIGN,
SPRINT_WHITELIST, MAX_TASKS, AUTH, TELEGRAM_BOT_TOKEN, TELEGRAM_CHAT_ID, …).
"""

import argparse
import logging
import signal
import sys

from board_monitor.commands import CommandListener
from board_monitor.config import ConfigStore, load_config
from board_monitor.health import start_health_server
from board_monitor.monitor import BoardMonitor
from board_monitor.notifier import build_notifier
from board_monitor.utils import setup_logging


def main():
    # ── Parse arguments ──────────────────────────────────────────────
    parser = argparse.ArgumentParser(
        description="Watch a task board section, report new tasks and claim eligible ones"
    )
    parser.add_argument(
        "--config", "-c",
        default=None,
        help="Path to config.yaml (default: ./config.yaml)"
    )
    parser.add_argument(
        "--log-level",
        default=None,
        help="Console log level (default: from config, INFO)"
    )
    args = parser.parse_args()

    # ── Setup ────────────────────────────────────────────────────────
    try:
        config = load_config(args.config)
    except (FileNotFoundError, ValueError) as e:
        setup_logging().error(f"Configuration error: {e}")
        sys.exit(2)

    logger = setup_logging(args.log_level or config.log_level)

    logger.info("Configuration loaded:")
    logger.info(f"  Board:            {config.target_board_url}")
    logger.info(f"  Adapter:          {config.board_adapter}")
    logger.info(f"  Auto-assign:      {config.auto_assign}")
    logger.info(f"  Task limit:       {config.max_tasks}")
    logger.info(f"  Sprint whitelist: {config.sprint_whitelist or 'any'}")
    logger.info(f"  Login wait:       {config.auth_required}")
    logger.info(f"  Headless:         {config.headless}")
    logger.info(f"  HTTP claim:       {'enabled' if config.http_claim_url_template else 'disabled'}")

    store = ConfigStore(config)
    notifier = build_notifier(config)
    monitor = BoardMonitor(store, notifier)

    # ── Background threads (daemonic, never touch the browser) ───────
    start_health_server(monitor, config.health_port)

    if config.command_polling and notifier.enabled:
        CommandListener(notifier, store, monitor).start()

    def _on_signal(*_):
        logging.getLogger("board_monitor").info("Signal received — shutting down...")
        monitor.shutdown()

    signal.signal(signal.SIGINT, _on_signal)
    signal.signal(signal.SIGTERM, _on_signal)

    # ── Monitoring (blocks on this thread) ───────────────────────────
    try:
        monitor.run()
    except Exception as e:
        logger.error(f"Monitor crashed: {e}")
        sys.exit(1)
    logger.info("Goodbye!")


if __name__ == "__main__":
    main()
