"""
Test Configuration Module
"""

import ssl
import threading
import time
from contextlib import contextmanager
from http.server import BaseHTTPRequestHandler, ThreadingHTTPServer
from typing import Optional

import pytest
import trustme

from latency_probe.config import get_settings


class FakeClock:
    """Manually advanced clock for deterministic phase timings"""

    def __init__(self, start: float = 10.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> float:
        self.now += seconds
        return self.now


@pytest.fixture
def clock():
    """Fake clock starting at 10.0s"""
    return FakeClock()


@pytest.fixture(autouse=True)
def clear_settings_cache():
    """Reload settings from the environment for every test"""
    get_settings.cache_clear()
    yield
    get_settings.cache_clear()


# Delay before the local server answers, so server processing is measurable
SERVER_DELAY_SECONDS = 0.01


class _KeepAliveHandler(BaseHTTPRequestHandler):
    """HTTP/1.1 handler keeping connections open between requests"""

    protocol_version = "HTTP/1.1"

    def do_GET(self):
        time.sleep(SERVER_DELAY_SECONDS)
        body = b"hello from the latency probe test server\n"
        self.send_response(200)
        self.send_header("Content-Type", "text/plain")
        self.send_header("Content-Length", str(len(body)))
        self.end_headers()
        self.wfile.write(body)

    def log_message(self, format, *args):
        pass


@contextmanager
def _serve(ssl_context: Optional[ssl.SSLContext] = None):
    """Run the keep-alive server in a thread, optionally behind TLS"""
    server = ThreadingHTTPServer(("127.0.0.1", 0), _KeepAliveHandler)
    server.daemon_threads = True
    scheme = "http"
    if ssl_context is not None:
        server.socket = ssl_context.wrap_socket(server.socket, server_side=True)
        scheme = "https"
    thread = threading.Thread(target=server.serve_forever, daemon=True)
    thread.start()

    try:
        yield f"{scheme}://localhost:{server.server_address[1]}"
    finally:
        server.shutdown()
        server.server_close()
        thread.join(timeout=5)


@pytest.fixture
def local_server():
    """
    Start a keep-alive HTTP server on the loopback interface

    Yields a base URL using the "localhost" name, so requests go through a
    real name lookup.
    """
    with _serve() as url:
        yield url


@pytest.fixture(scope="session")
def tls_ca():
    """Throwaway certificate authority for the loopback TLS server"""
    return trustme.CA()


@pytest.fixture
def client_ssl_context(tls_ca):
    """Client SSL context trusting the throwaway authority"""
    context = ssl.create_default_context(ssl.Purpose.SERVER_AUTH)
    tls_ca.configure_trust(context)
    return context


@pytest.fixture
def tls_server(tls_ca):
    """
    Start the keep-alive server behind TLS

    The certificate covers "localhost" and 127.0.0.1; connect with
    `verify=client_ssl_context`.
    """
    server_context = ssl.create_default_context(ssl.Purpose.CLIENT_AUTH)
    tls_ca.issue_cert("localhost", "127.0.0.1").configure_cert(server_context)
    with _serve(server_context) as url:
        yield url
