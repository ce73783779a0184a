"""Tests for the one-shot loopback capture server."""

from __future__ import annotations

import threading
from http.client import HTTPConnection
from urllib.parse import urlparse

import pytest

from sitewatch.auth.callback_server import LoopbackCaptureServer


def _port(redirect_uri: str) -> int:
    port = urlparse(redirect_uri).port
    assert port is not None
    return port


def _simulate_callback(port: int, path: str) -> tuple[int, str]:
    """Send a GET to the local callback server and return (status, body)."""
    conn = HTTPConnection("127.0.0.1", port, timeout=5)
    conn.request("GET", path)
    response = conn.getresponse()
    body = response.read().decode("utf-8")
    conn.close()
    return response.status, body


@pytest.fixture()
def cancel() -> threading.Event:
    event = threading.Event()
    yield event
    event.set()


class TestLoopbackCaptureServer:
    def test_redirect_uri_uses_localhost_and_ephemeral_port(self, cancel: threading.Event) -> None:
        server = LoopbackCaptureServer(poll_interval=0.05)
        redirect_uri, _ = server.start(cancel)

        parsed = urlparse(redirect_uri)
        assert parsed.scheme == "http"
        assert parsed.hostname == "localhost"
        assert parsed.port and parsed.port > 0
        assert parsed.path == ""

    def test_captures_code_once(self, cancel: threading.Event) -> None:
        server = LoopbackCaptureServer(poll_interval=0.05)
        redirect_uri, future = server.start(cancel)

        status, body = _simulate_callback(_port(redirect_uri), "/?code=XYZ&state=ignored")

        assert status == 200
        assert "Authentication successful!" in body
        assert future.result(timeout=5) == "XYZ"
        server.join(timeout=5)

        with pytest.raises(OSError):
            _simulate_callback(_port(redirect_uri), "/?code=SECOND")

    def test_request_without_code_resolves_empty(self, cancel: threading.Event) -> None:
        server = LoopbackCaptureServer(poll_interval=0.05)
        redirect_uri, future = server.start(cancel)

        status, body = _simulate_callback(
            _port(redirect_uri), "/?error=access_denied&error_description=User+cancelled"
        )

        assert status == 400
        assert "access_denied" in body
        assert future.result(timeout=5) is None

    def test_cancel_resolves_empty_and_closes(self, cancel: threading.Event) -> None:
        server = LoopbackCaptureServer(poll_interval=0.05)
        redirect_uri, future = server.start(cancel)

        cancel.set()

        assert future.result(timeout=5) is None
        server.join(timeout=5)
        with pytest.raises(OSError):
            _simulate_callback(_port(redirect_uri), "/?code=LATE")

    def test_error_page_escapes_markup(self, cancel: threading.Event) -> None:
        server = LoopbackCaptureServer(poll_interval=0.05)
        redirect_uri, future = server.start(cancel)

        _, body = _simulate_callback(_port(redirect_uri), "/?error=%3Cscript%3E")

        assert "<script>" not in body
        assert "&lt;script&gt;" in body
        assert future.result(timeout=5) is None
