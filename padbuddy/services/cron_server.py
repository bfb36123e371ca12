"""HTTP endpoint for the scheduled reconciliation job.

  GET /api/cron/log-sensors → run the job (requires "Authorization: Bearer <CRON_SECRET>")
  GET /api/health           → JSON liveness check

An external scheduler calls the cron route every few minutes.
"""

import hmac
import json
import logging
import threading
from datetime import datetime
from http.server import BaseHTTPRequestHandler, HTTPServer
from socketserver import ThreadingMixIn
from typing import Callable, Optional, Tuple
from urllib.parse import urlparse

from .. import config

logger = logging.getLogger(__name__)

CRON_PATH = '/api/cron/log-sensors'
HEALTH_PATH = '/api/health'


def is_authorized(auth_header: Optional[str], secret: Optional[str]) -> bool:
    """Constant-time check of the bearer token; an unset secret authorizes nobody"""
    if not secret or not auth_header:
        return False
    return hmac.compare_digest(auth_header.encode('utf-8'), f"Bearer {secret}".encode('utf-8'))


def handle_cron_request(auth_header: Optional[str], job_factory: Callable,
                        secret: Optional[str] = None) -> Tuple[int, dict]:
    """Authorize, build the job and run it; returns (status, JSON body)"""
    secret = config.CRON_SECRET if secret is None else secret
    if not is_authorized(auth_header, secret):
        logger.warning("[Cron] Unauthorized request rejected")
        return 401, {'error': 'Unauthorized'}

    try:
        job = job_factory()
        summary = job.run()
    except Exception as e:
        logger.error(f"[Cron] Job failed: {e}", exc_info=True)
        return 500, {'success': False, 'error': str(e)}

    return 200, summary.to_dict()


class CronRequestHandler(BaseHTTPRequestHandler):
    """HTTP request handler for the cron endpoint."""

    # Access logging goes through our logger instead
    def log_message(self, format, *args):
        logger.debug(f"{self.address_string()} - {format % args}")

    def _send_json(self, data: dict, status: int = 200):
        """Send a JSON response."""
        body = json.dumps(data, default=str).encode('utf-8')
        self.send_response(status)
        self.send_header('Content-Type', 'application/json')
        self.send_header('Content-Length', str(len(body)))
        self.end_headers()
        self.wfile.write(body)

    def do_GET(self):
        path = urlparse(self.path).path.rstrip('/')

        try:
            if path == CRON_PATH:
                status, body = handle_cron_request(
                    self.headers.get('Authorization'),
                    self.server.job_factory,
                    self.server.secret,
                )
                self._send_json(body, status)
            elif path == HEALTH_PATH:
                self._send_json({
                    'status': 'online',
                    'timestamp': datetime.now().isoformat(),
                })
            else:
                self._send_json({'error': 'Not found'}, 404)
        except Exception as e:
            self._send_json({'success': False, 'error': str(e)}, 500)


class ThreadingHTTPServer(ThreadingMixIn, HTTPServer):
    """HTTPServer that handles each request in a separate thread."""
    daemon_threads = True

    def __init__(self, server_address, handler_class, job_factory: Callable, secret: Optional[str]):
        super().__init__(server_address, handler_class)
        self.job_factory = job_factory
        self.secret = secret


class CronServer:
    """Manages the cron HTTP server lifecycle."""

    def __init__(self, job_factory: Callable, host: str = None, port: int = None, secret: Optional[str] = None):
        self.job_factory = job_factory
        self.host = config.CRON_SERVER_HOST if host is None else host
        self.port = config.CRON_SERVER_PORT if port is None else port
        self.secret = config.CRON_SECRET if secret is None else secret
        self._server: Optional[ThreadingHTTPServer] = None
        self._thread: Optional[threading.Thread] = None

    @property
    def address(self) -> Tuple[str, int]:
        """Bound (host, port); resolves port 0 to the ephemeral port"""
        if self._server:
            return self._server.server_address[:2]
        return self.host, self.port

    def start(self):
        """Start the server in a background thread."""
        if not self.secret:
            logger.warning("CRON_SECRET is not set; every cron request will be rejected")

        self._server = ThreadingHTTPServer((self.host, self.port), CronRequestHandler,
                                           self.job_factory, self.secret)
        self._thread = threading.Thread(
            target=self._server.serve_forever,
            daemon=True,
            name='CronServer'
        )
        self._thread.start()

        host, port = self.address
        logger.info(f"Cron server started: http://{host}:{port}")
        logger.info(f"   Sensor job: http://{host}:{port}{CRON_PATH}")
        logger.info(f"   Health:     http://{host}:{port}{HEALTH_PATH}")

    def stop(self):
        """Stop the server."""
        if self._server:
            self._server.shutdown()
            self._server.server_close()
            self._server = None
            logger.info("Cron server stopped")
