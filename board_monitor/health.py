"""
Health endpoint — a tiny Flask app for uptime checks.

    GET  /health   → {"status": "ok", "uptime": …}
    GET  /status   → current monitor status (state, counters, retry queue)
    POST /restart  → same as the bot's restart button
"""

import logging
import threading
import time

from flask import Flask, jsonify

logger = logging.getLogger("board_monitor")


def create_health_app(monitor) -> Flask:
    app = Flask(__name__)
    started = time.time()

    @app.route("/health", methods=["GET"])
    def health():
        return jsonify({"status": "ok", "uptime": int(time.time() - started)})

    @app.route("/status", methods=["GET"])
    def status():
        return jsonify(monitor.status())

    @app.route("/restart", methods=["POST"])
    def restart():
        monitor.restart_monitoring()
        return jsonify({"status": "restarting"})

    return app


def start_health_server(monitor, port: int, host: str = "0.0.0.0") -> threading.Thread | None:
    """Serve the health app on a daemon thread; port 0 disables it."""
    if not port:
        return None
    app = create_health_app(monitor)
    thread = threading.Thread(
        target=lambda: app.run(host=host, port=port, threaded=True, use_reloader=False),
        daemon=True,
        name="health",
    )
    thread.start()
    logger.info(f"Health endpoint on http://{host}:{port}/health")
    return thread
