"""One-shot loopback HTTP listener that captures the OAuth2 redirect.

The listener binds ``127.0.0.1`` on an OS-assigned port and serves exactly
one ``GET`` on a worker thread. It keeps no clock of its own: it polls a
caller-owned :class:`threading.Event` between accept attempts and stops as
soon as the event is set, so the login deadline lives in a single place.

Example::

    cancel = threading.Event()
    server = LoopbackCaptureServer()
    redirect_uri, code_future = server.start(cancel)
    try:
        code = code_future.result(timeout=300)
    finally:
        cancel.set()
        server.join()
"""

from __future__ import annotations

import html
import logging
import threading
from concurrent.futures import Future
from http.server import BaseHTTPRequestHandler, HTTPServer
from typing import Any, Optional
from urllib.parse import parse_qs, urlparse

from sitewatch.exceptions import AuthError

logger = logging.getLogger(__name__)

SUCCESS_PAGE = (
    "<html><body><h2>Authentication successful!</h2>"
    "<p>You can close this window and return to sitewatch.</p></body></html>"
)


class _CaptureHTTPServer(HTTPServer):
    """HTTPServer carrying the outcome of the single request it serves."""

    handled: bool = False
    code: Optional[str] = None


class _CallbackHandler(BaseHTTPRequestHandler):
    # Idle connections (browser preconnects) must not pin the worker.
    timeout = 5

    server: _CaptureHTTPServer

    def do_GET(self) -> None:
        params = parse_qs(urlparse(self.path).query)
        self.server.handled = True

        if "code" in params and params["code"][0]:
            self.server.code = params["code"][0]
            self._respond(200, SUCCESS_PAGE)
            return

        error = params.get("error", [""])[0]
        description = params.get("error_description", [""])[0]
        if error:
            logger.warning("Authorization redirect carried error %s: %s", error, description)
        else:
            logger.warning("Loopback request without an authorization code: %s", self.path)
        detail = html.escape(f"{error} - {description}" if error else "No authorization code received.")
        self._respond(
            400,
            f"<html><body><h2>Authentication failed</h2><p>{detail}</p></body></html>",
        )

    def _respond(self, status: int, body: str) -> None:
        payload = body.encode("utf-8")
        self.send_response(status)
        self.send_header("Content-Type", "text/html; charset=utf-8")
        self.send_header("Content-Length", str(len(payload)))
        self.send_header("Connection", "close")
        self.end_headers()
        self.wfile.write(payload)

    def log_message(self, format: str, *args: Any) -> None:
        logger.debug("loopback: " + format, *args)


class LoopbackCaptureServer:
    """Capture a single authorization code on a loopback port.

    Args:
        host: Interface to bind. Only loopback addresses make sense here.
        redirect_host: Host name placed in the redirect URI registered with
            the provider.
        poll_interval: Seconds between checks of the cancellation event.
    """

    def __init__(
        self,
        host: str = "127.0.0.1",
        redirect_host: str = "localhost",
        poll_interval: float = 0.2,
    ) -> None:
        self._host = host
        self._redirect_host = redirect_host
        self._poll_interval = poll_interval
        self._thread: Optional[threading.Thread] = None

    def start(self, cancel: threading.Event) -> tuple[str, "Future[Optional[str]]"]:
        """Bind the listener and start serving on a daemon thread.

        Args:
            cancel: Set by the caller to stop listening. The listener also
                stops by itself after serving one request.

        Returns:
            A tuple of ``(redirect_uri, code_future)``. The future resolves
            to the authorization code, or to ``None`` if the request carried
            no code or the listener was cancelled first.

        Raises:
            AuthError: If the loopback port cannot be bound.
        """
        try:
            server = _CaptureHTTPServer((self._host, 0), _CallbackHandler)
        except OSError as exc:
            raise AuthError(f"Cannot start loopback listener: {exc}") from exc
        server.timeout = self._poll_interval
        port = server.server_address[1]
        redirect_uri = f"http://{self._redirect_host}:{port}"

        future: Future[Optional[str]] = Future()
        self._thread = threading.Thread(
            target=self._serve,
            args=(server, cancel, future),
            name=f"sitewatch-loopback-{port}",
            daemon=True,
        )
        self._thread.start()
        logger.debug("Loopback listener started on %s", redirect_uri)
        return redirect_uri, future

    def _serve(
        self,
        server: _CaptureHTTPServer,
        cancel: threading.Event,
        future: "Future[Optional[str]]",
    ) -> None:
        try:
            while not cancel.is_set() and not server.handled:
                server.handle_request()
        except OSError as exc:
            future.set_exception(AuthError(f"Loopback listener failed: {exc}"))
            return
        finally:
            server.server_close()
        if server.handled:
            logger.debug("Loopback listener served its request")
        else:
            logger.debug("Loopback listener cancelled")
        future.set_result(server.code)

    def join(self, timeout: Optional[float] = None) -> None:
        """Wait for the worker thread to exit."""
        if self._thread is not None:
            self._thread.join(timeout)
