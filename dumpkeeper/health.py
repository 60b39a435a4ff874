"""
Health check HTTP endpoint for container orchestration.

Served from a daemon thread; it only reads the BackupState snapshot.
"""

import logging
import threading

from flask import Flask, jsonify
from werkzeug.serving import make_server


logger = logging.getLogger(__name__)


def create_app(state):
    """
    Flask application exposing the backup loop state.

    Args:
        state: BackupState shared with the executor
    """
    app = Flask(__name__)

    @app.route('/health')
    def health():
        return {'status': 'healthy'}, 200

    @app.route('/status')
    def status():
        """
        Current loop state.

        Returns:
            JSON with status, cycles_run, failures, last_success_at and last_cycle
        """
        return jsonify(state.snapshot())

    return app


def start_health_server(state, port: int, host: str = '0.0.0.0'):
    """
    Start the health endpoint in a daemon thread.

    Returns:
        The werkzeug server (call shutdown() to stop it)
    """
    server = make_server(host, port, create_app(state), threaded=True)
    thread = threading.Thread(target=server.serve_forever, name='health-server', daemon=True)
    thread.start()
    logger.info(f"Health server started on port {server.server_port}")
    return server
