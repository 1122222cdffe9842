"""Shared pytest fixtures: a local webhook endpoint that records posts."""

import json
import threading
from http.server import BaseHTTPRequestHandler, ThreadingHTTPServer

import pytest


class _RecordingHandler(BaseHTTPRequestHandler):
    def do_POST(self):
        length = int(self.headers.get("Content-Length", 0))
        body = self.rfile.read(length)
        self.server.received.append({
            "path": self.path,
            "content_type": self.headers.get("Content-Type"),
            "payload": json.loads(body),
        })
        self.send_response(self.server.status)
        self.end_headers()
        self.wfile.write(b"ok")

    def log_message(self, format, *args):
        pass


@pytest.fixture
def webhook_server():
    """Start an HTTP server on an ephemeral port; yields (server, url)."""
    server = ThreadingHTTPServer(("127.0.0.1", 0), _RecordingHandler)
    server.received = []
    server.status = 200
    t = threading.Thread(target=server.serve_forever, daemon=True)
    t.start()
    host, port = server.server_address
    yield server, f"http://{host}:{port}/hooks/test"
    server.shutdown()
    server.server_close()
