"""Tests for website availability checks and the monitor loop."""

from __future__ import annotations

import time
from typing import Callable

import httpx
import pytest

from sitewatch.models import SiteStatus
from sitewatch.monitor import MonitorLoop, SiteMonitor


def _transport(routes: dict[str, Callable[[httpx.Request], httpx.Response]]) -> httpx.MockTransport:
    def handler(request: httpx.Request) -> httpx.Response:
        return routes[request.url.host](request)

    return httpx.MockTransport(handler)


def _status(code: int) -> Callable[[httpx.Request], httpx.Response]:
    return lambda request: httpx.Response(code)


class TestRegistration:
    def test_add_is_case_insensitive(self) -> None:
        monitor = SiteMonitor(["https://Example.test"])
        assert monitor.add("https://example.test") is False
        assert monitor.add("https://other.test") is True
        assert [s.url for s in monitor.statuses] == ["https://Example.test", "https://other.test"]

    def test_remove(self) -> None:
        monitor = SiteMonitor(["https://example.test"])
        assert monitor.remove("HTTPS://EXAMPLE.TEST") is True
        assert monitor.remove("https://example.test") is False
        assert monitor.statuses == []

    def test_sites_start_online(self) -> None:
        status = SiteMonitor(["https://example.test"]).statuses[0]
        assert status.is_online is True
        assert status.last_checked is None


class TestCheckAll:
    def test_online_and_offline_statuses(self) -> None:
        routes = {"up.test": _status(200), "down.test": _status(503)}
        monitor = SiteMonitor(["https://up.test", "https://down.test"], transport=_transport(routes))

        up, down = monitor.check_all()

        assert up.is_online is True
        assert up.status_code == 200
        assert up.message == "OK"
        assert up.last_checked is not None
        assert down.is_online is False
        assert down.status_code == 503
        assert down.message == "Status: 503 Service Unavailable"

    def test_timeout(self) -> None:
        def slow(request: httpx.Request) -> httpx.Response:
            raise httpx.ReadTimeout("timed out", request=request)

        monitor = SiteMonitor(["https://slow.test"], transport=_transport({"slow.test": slow}))
        (status,) = monitor.check_all()

        assert status.is_online is False
        assert status.status_code == 0
        assert status.message == "Timeout"

    def test_connection_error(self) -> None:
        def refused(request: httpx.Request) -> httpx.Response:
            raise httpx.ConnectError("connection refused", request=request)

        monitor = SiteMonitor(["https://gone.test"], transport=_transport({"gone.test": refused}))
        (status,) = monitor.check_all()

        assert status.is_online is False
        assert status.status_code == 0
        assert "connection refused" in status.message

    def test_malformed_url_is_down_without_ending_round(self) -> None:
        downs: list[SiteStatus] = []
        routes = {"up.test": _status(200)}
        monitor = SiteMonitor(
            ["http://[::1", "https://up.test"], on_down=downs.append, transport=_transport(routes)
        )

        bad, up = monitor.check_all()

        assert bad.url == "http://[::1"
        assert bad.is_online is False
        assert bad.status_code == 0
        assert bad.message
        assert bad.last_checked is not None
        assert up.is_online is True
        assert [s.url for s in downs] == ["http://[::1"]

    def test_redirect_to_success_is_online(self) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            if request.url.path == "/old":
                return httpx.Response(301, headers={"location": "https://moved.test/new"})
            return httpx.Response(200)

        monitor = SiteMonitor(["https://moved.test/old"], transport=httpx.MockTransport(handler))
        (status,) = monitor.check_all()
        assert status.is_online is True

    def test_empty_monitor(self) -> None:
        assert SiteMonitor().check_all() == []


class TestTransitions:
    def test_on_down_fires_once_per_outage(self) -> None:
        codes = {"code": 200}
        downs: list[SiteStatus] = []
        routes = {"flaky.test": lambda request: httpx.Response(codes["code"])}
        monitor = SiteMonitor(["https://flaky.test"], on_down=downs.append, transport=_transport(routes))

        monitor.check_all()
        assert downs == []

        codes["code"] = 500
        monitor.check_all()
        monitor.check_all()
        assert len(downs) == 1
        assert downs[0].status_code == 500

        codes["code"] = 200
        monitor.check_all()
        codes["code"] = 500
        monitor.check_all()
        assert len(downs) == 2

    def test_initially_down_site_notifies(self) -> None:
        downs: list[SiteStatus] = []
        monitor = SiteMonitor(
            ["https://down.test"], on_down=downs.append, transport=_transport({"down.test": _status(404)})
        )
        monitor.check_all()
        assert [s.url for s in downs] == ["https://down.test"]


class TestMonitorLoop:
    def test_runs_immediately_and_stops(self) -> None:
        rounds: list[list[SiteStatus]] = []
        monitor = SiteMonitor(["https://up.test"], transport=_transport({"up.test": _status(200)}))
        loop = MonitorLoop(monitor, interval=30, on_round=rounds.append)

        loop.start()
        deadline = time.monotonic() + 5
        while not rounds and time.monotonic() < deadline:
            time.sleep(0.01)
        started = time.monotonic()
        loop.stop(timeout=5)

        assert time.monotonic() - started < 2
        assert loop.rounds == 1
        assert rounds[0][0].is_online is True
        assert loop.wait(0) is True

    def test_repeats_every_interval(self) -> None:
        monitor = SiteMonitor(["https://up.test"], transport=_transport({"up.test": _status(200)}))
        loop = MonitorLoop(monitor, interval=0.01)
        loop.start()
        deadline = time.monotonic() + 5
        while loop.rounds < 3 and time.monotonic() < deadline:
            time.sleep(0.01)
        loop.stop(timeout=5)
        assert loop.rounds >= 3

    def test_start_twice_raises(self) -> None:
        loop = MonitorLoop(SiteMonitor(), interval=30)
        loop.start()
        try:
            with pytest.raises(RuntimeError):
                loop.start()
        finally:
            loop.stop(timeout=5)
