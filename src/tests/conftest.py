"""Pytest configuration and shared fixtures."""

import os
import sys
import threading
from http.server import BaseHTTPRequestHandler, HTTPServer

import pytest

# Add src to path for imports
sys.path.insert(0, os.path.join(os.path.dirname(__file__), ".."))

from prometheus_client import CollectorRegistry

from gauges import GaugeRegistry
from reconciler import BackendSnapshot


def make_backend(group: str, server: str, counter: int) -> BackendSnapshot:
    """Shorthand for building a BackendSnapshot in tests."""
    return BackendSnapshot(group=group, server=server, request_counter=counter)


@pytest.fixture
def gauge_registry():
    """Provide a GaugeRegistry on a fresh CollectorRegistry."""
    return GaugeRegistry(CollectorRegistry())


class FakeClock:
    """Manually advanced monotonic clock."""

    def __init__(self, start: float = 1000.0) -> None:
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


@pytest.fixture
def fake_clock():
    return FakeClock()


@pytest.fixture
def vts_server():
    """Serve a mutable status document over HTTP on a free local port.

    Yields an object with .url, .body (bytes served on GET) and .status.
    """

    class State:
        body = b"{}"
        status = 200
        url = ""

    state = State()

    class Handler(BaseHTTPRequestHandler):
        def do_GET(self):
            self.send_response(state.status)
            self.send_header("Content-Type", "application/json")
            self.send_header("Content-Length", str(len(state.body)))
            self.end_headers()
            self.wfile.write(state.body)

        def log_message(self, format, *args):
            pass

    server = HTTPServer(("127.0.0.1", 0), Handler)
    state.url = f"http://127.0.0.1:{server.server_port}/status/format/json"
    thread = threading.Thread(target=server.serve_forever, daemon=True)
    thread.start()
    yield state
    server.shutdown()
    server.server_close()
