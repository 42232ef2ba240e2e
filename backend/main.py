#!/usr/bin/env python3
"""
Check-in Service Main Entry Point

Starts a worker process with an embedded health endpoint.

Usage:
    python main.py worker      # RQ worker for the call and generation queues
    python main.py executor    # Executor tick loop
    python main.py schedule    # Register the recurring tick with rq-scheduler
    python main.py both        # Worker and executor loop in separate processes
"""
import json
import logging
import os
import sys
import threading
import time
from http.server import BaseHTTPRequestHandler, HTTPServer
from typing import Optional

from dotenv import load_dotenv

from config.redis import test_redis_connection

logger = logging.getLogger("checkin-main")

WORKER_MODES = ["worker", "executor", "schedule", "both"]


class SimpleHealthHandler(BaseHTTPRequestHandler):
    """Minimal handler for platform health checks."""

    def do_GET(self):  # noqa: N802 (http.server API)
        if self.path != "/health":
            self.send_response(404)
            self.end_headers()
            return

        redis_ok = test_redis_connection()

        self.send_response(200 if redis_ok else 503)
        self.send_header("Content-Type", "application/json")
        self.end_headers()
        payload = {
            "status": "healthy" if redis_ok else "degraded",
            "service": "checkin-service",
            "redis": redis_ok,
            "timestamp": int(time.time()),
        }
        self.wfile.write(json.dumps(payload).encode())

    def log_message(self, format, *args):  # noqa: A003 (shadow builtins)
        # Route default server logging to our logger at DEBUG
        logger.debug(format % args)


class BackgroundHTTPServer:
    """Run a simple HTTPServer in a background thread."""

    def __init__(self, port: int = 8081):
        self._port = port
        self._server: Optional[HTTPServer] = None
        self._thread: Optional[threading.Thread] = None

    def start(self):
        if self._server is not None:
            return

        self._server = HTTPServer(("0.0.0.0", self._port), SimpleHealthHandler)
        self._thread = threading.Thread(target=self._server.serve_forever, daemon=True)
        self._thread.start()
        logger.info(f"Health endpoint listening on 0.0.0.0:{self._port} at /health")

    def stop(self):
        if self._server is None:
            return
        logger.info("Stopping health server")
        self._server.shutdown()
        self._server.server_close()
        self._server = None
        if self._thread and self._thread.is_alive():
            self._thread.join(timeout=1.0)


def main():
    """Main entry point router with embedded health endpoint."""
    load_dotenv()
    logging.basicConfig(
        level=os.getenv("LOG_LEVEL", "INFO"),
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s"
    )

    if len(sys.argv) < 2 or sys.argv[1].lower() not in WORKER_MODES:
        print("Usage: python main.py <mode>")
        print(f"Modes: {', '.join(WORKER_MODES)}")
        sys.exit(1)

    health_server = BackgroundHTTPServer(port=int(os.getenv("HEALTH_PORT", "8081")))
    started_health = False
    try:
        health_server.start()
        started_health = True
    except OSError as exc:
        logger.error(f"Failed to start health endpoint: {exc}")

    from scheduling.worker import main as worker_main

    # The worker parser reads the mode (and any flags) from argv
    try:
        worker_main()
    finally:
        if started_health:
            health_server.stop()


if __name__ == "__main__":
    main()
