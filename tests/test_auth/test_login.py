"""Tests for the interactive PKCE login coordinator."""

from __future__ import annotations

import threading
import webbrowser
from http.client import HTTPConnection
from typing import Callable, Optional
from unittest.mock import MagicMock
from urllib.parse import parse_qs, urlparse

import pytest

from sitewatch.auth.callback_server import LoopbackCaptureServer
from sitewatch.auth.exchange import TokenExchangeClient
from sitewatch.auth.login import LoginCoordinator
from sitewatch.auth.pkce import code_challenge
from sitewatch.auth.scheduler import RefreshScheduler
from sitewatch.auth.session import SessionManager
from sitewatch.auth.tokens import TokenCache
from sitewatch.exceptions import AuthTimeout, BrowserLaunchError, ProviderError, StoreError
from sitewatch.models import AuthSettings, TokenRecord


def _redirect_port(authorization_url: str) -> int:
    params = parse_qs(urlparse(authorization_url).query)
    port = urlparse(params["redirect_uri"][0]).port
    assert port is not None
    return port


def _hit(port: int, path: str) -> None:
    conn = HTTPConnection("127.0.0.1", port, timeout=5)
    try:
        conn.request("GET", path)
        conn.getresponse().read()
    finally:
        conn.close()


class FakeBrowser:
    """Stand-in for webbrowser.open that follows the redirect on a thread."""

    def __init__(self, path: Optional[str] = "/?code=XYZ", result: bool = True) -> None:
        self.path = path
        self.result = result
        self.urls: list[str] = []
        self.threads: list[threading.Thread] = []

    def __call__(self, url: str) -> bool:
        self.urls.append(url)
        if self.path is not None and self.result:
            thread = threading.Thread(target=_hit, args=(_redirect_port(url), self.path))
            thread.start()
            self.threads.append(thread)
        return self.result

    def join(self) -> None:
        for thread in self.threads:
            thread.join(timeout=5)


def _assert_listener_closed(authorization_url: str) -> None:
    with pytest.raises(OSError):
        _hit(_redirect_port(authorization_url), "/?code=LATE")


@pytest.fixture()
def exchange(make_token: Callable[..., TokenRecord], make_id_token: Callable[..., str]) -> MagicMock:
    real = TokenExchangeClient(AuthSettings())
    mock = MagicMock(spec=TokenExchangeClient)
    mock.authorization_url.side_effect = real.authorization_url
    mock.exchange.return_value = make_token(
        id_token=make_id_token(preferred_username="ada@contoso.com")
    )
    return mock


@pytest.fixture()
def sessions(vault, exchange: MagicMock, clock) -> SessionManager:
    cache = TokenCache(vault, exchange, "app-123", "contoso", clock=clock)

    def factory(cache: TokenCache, user: str) -> RefreshScheduler:
        return RefreshScheduler(cache, user, fallback_delay=30, missing_delay=30)

    manager = SessionManager(cache, scheduler_factory=factory)
    yield manager
    manager.stop()


def _coordinator(
    exchange: MagicMock,
    sessions: SessionManager,
    browser: Callable[[str], bool],
    login_timeout: float = 5.0,
    on_url: Optional[Callable[[str], None]] = None,
) -> LoginCoordinator:
    return LoginCoordinator(
        exchange,
        sessions,
        open_browser=browser,
        server_factory=lambda: LoopbackCaptureServer(poll_interval=0.05),
        login_timeout=login_timeout,
        on_url=on_url,
    )


class TestLoginSuccess:
    def test_full_flow(self, exchange: MagicMock, sessions: SessionManager, vault) -> None:
        browser = FakeBrowser()
        result = _coordinator(exchange, sessions, browser).login("app-123", "contoso")
        browser.join()

        assert result.user == "ada@contoso.com"
        assert result.token.access_token == "AT1"

        code, verifier, redirect_uri, client_id, tenant = exchange.exchange.call_args[0]
        assert code == "XYZ"
        assert len(verifier) == 128
        assert redirect_uri.startswith("http://localhost:")
        assert (client_id, tenant) == ("app-123", "contoso")

        params = parse_qs(urlparse(browser.urls[0]).query)
        assert params["code_challenge"] == [code_challenge(verifier)]
        assert params["redirect_uri"] == [redirect_uri]

        stored = vault.load("ada@contoso.com")
        assert stored is not None
        assert stored.token.access_token == "AT1"
        assert vault.last_user() == "ada@contoso.com"

        assert sessions.scheduler is not None
        assert sessions.scheduler.user == "ada@contoso.com"
        assert sessions.scheduler.is_alive()
        _assert_listener_closed(browser.urls[0])

    def test_on_url_sees_authorization_url_first(
        self, exchange: MagicMock, sessions: SessionManager
    ) -> None:
        seen: list[str] = []
        browser = FakeBrowser()

        def on_url(url: str) -> None:
            assert browser.urls == []
            seen.append(url)

        _coordinator(exchange, sessions, browser, on_url=on_url).login("app-123", "contoso")
        browser.join()
        assert seen == browser.urls

    def test_store_failure_still_returns_token(
        self, exchange: MagicMock, sessions: SessionManager, monkeypatch: pytest.MonkeyPatch
    ) -> None:
        monkeypatch.setattr(
            sessions.cache, "persist", MagicMock(side_effect=StoreError("keyring is locked"))
        )
        browser = FakeBrowser()
        result = _coordinator(exchange, sessions, browser).login("app-123", "contoso")
        browser.join()

        assert result.token.access_token == "AT1"
        assert sessions.scheduler is not None

    def test_new_login_replaces_previous_session(
        self, exchange: MagicMock, sessions: SessionManager
    ) -> None:
        first_browser = FakeBrowser()
        _coordinator(exchange, sessions, first_browser).login("app-123", "contoso")
        first_browser.join()
        first = sessions.scheduler

        second_browser = FakeBrowser()
        _coordinator(exchange, sessions, second_browser).login("app-123", "contoso")
        second_browser.join()

        assert first is not None and not first.is_alive()
        assert sessions.scheduler is not first


class TestLoginFailures:
    def test_browser_returns_false(self, exchange: MagicMock, sessions: SessionManager) -> None:
        browser = FakeBrowser(result=False)
        with pytest.raises(BrowserLaunchError):
            _coordinator(exchange, sessions, browser).login("app-123", "contoso")

        exchange.exchange.assert_not_called()
        assert sessions.scheduler is None
        _assert_listener_closed(browser.urls[0])

    def test_browser_raises(self, exchange: MagicMock, sessions: SessionManager) -> None:
        def browser(url: str) -> bool:
            raise webbrowser.Error("could not locate runnable browser")

        with pytest.raises(BrowserLaunchError, match="runnable browser"):
            _coordinator(exchange, sessions, browser).login("app-123", "contoso")
        exchange.exchange.assert_not_called()

    def test_timeout(self, exchange: MagicMock, sessions: SessionManager) -> None:
        browser = FakeBrowser(path=None)
        with pytest.raises(AuthTimeout):
            _coordinator(exchange, sessions, browser, login_timeout=0.3).login("app-123", "contoso")

        exchange.exchange.assert_not_called()
        assert sessions.scheduler is None
        _assert_listener_closed(browser.urls[0])

    def test_redirect_without_code(self, exchange: MagicMock, sessions: SessionManager) -> None:
        browser = FakeBrowser(path="/?error=access_denied")
        with pytest.raises(AuthTimeout, match="code"):
            _coordinator(exchange, sessions, browser).login("app-123", "contoso")
        browser.join()
        exchange.exchange.assert_not_called()

    def test_exchange_rejected(self, exchange: MagicMock, sessions: SessionManager, vault) -> None:
        exchange.exchange.side_effect = ProviderError("invalid_grant", status_code=400)
        browser = FakeBrowser()
        with pytest.raises(ProviderError):
            _coordinator(exchange, sessions, browser).login("app-123", "contoso")
        browser.join()

        assert vault.last_user() is None
        assert sessions.scheduler is None
