"""Website availability checks with up/down transition detection.

:class:`SiteMonitor` checks every registered URL concurrently with
:class:`httpx.AsyncClient`. A site is online iff the final response (after
redirects) has a 2xx status. The ``on_down`` callback fires only when a site
goes from online to offline; sites start out online.

:class:`MonitorLoop` repeats the checks on a daemon thread every
``interval`` seconds until stopped, starting with an immediate round.
"""

from __future__ import annotations

import asyncio
import logging
import threading
from datetime import datetime
from typing import Callable, Optional

import httpx

from sitewatch.models import SiteStatus

logger = logging.getLogger(__name__)

DownCallback = Callable[[SiteStatus], None]


class SiteMonitor:
    """Track the availability of a set of URLs.

    Args:
        sites: Initial URLs to monitor.
        timeout: Per-request timeout in seconds.
        on_down: Called with the new status when a site goes down.
        transport: Optional transport for the underlying
            :class:`httpx.AsyncClient` (tests pass an
            :class:`httpx.MockTransport`).
    """

    def __init__(
        self,
        sites: Optional[list[str]] = None,
        timeout: float = 10.0,
        on_down: Optional[DownCallback] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        self._timeout = timeout
        self._on_down = on_down
        self._transport = transport
        self._statuses: dict[str, SiteStatus] = {}
        self._lock = threading.Lock()
        for url in sites or []:
            self.add(url)

    @property
    def statuses(self) -> list[SiteStatus]:
        """Latest status of every site, in registration order."""
        with self._lock:
            return list(self._statuses.values())

    def add(self, url: str) -> bool:
        """Register *url*. Returns ``False`` if it is already monitored (case-insensitive)."""
        with self._lock:
            if any(existing.lower() == url.lower() for existing in self._statuses):
                return False
            self._statuses[url] = SiteStatus(url=url)
            return True

    def remove(self, url: str) -> bool:
        """Stop monitoring *url*. Returns ``False`` if it was not registered."""
        with self._lock:
            for existing in list(self._statuses):
                if existing.lower() == url.lower():
                    del self._statuses[existing]
                    return True
            return False

    def check_all(self) -> list[SiteStatus]:
        """Run one round of checks and return the updated statuses."""
        return asyncio.run(self.check_all_async())

    async def check_all_async(self) -> list[SiteStatus]:
        urls = [status.url for status in self.statuses]
        async with httpx.AsyncClient(
            timeout=self._timeout,
            follow_redirects=True,
            transport=self._transport,
        ) as client:
            results = await asyncio.gather(*(self._check_one(client, url) for url in urls))
        for status in results:
            self._record(status)
        return self.statuses

    async def _check_one(self, client: httpx.AsyncClient, url: str) -> SiteStatus:
        now = datetime.now()
        try:
            response = await client.get(url)
        except httpx.TimeoutException:
            return SiteStatus(url=url, is_online=False, status_code=0, message="Timeout", last_checked=now)
        except (httpx.HTTPError, httpx.InvalidURL) as exc:
            # InvalidURL does not derive from HTTPError.
            return SiteStatus(
                url=url, is_online=False, status_code=0, message=str(exc) or type(exc).__name__,
                last_checked=now,
            )
        online = response.is_success
        return SiteStatus(
            url=url,
            is_online=online,
            status_code=response.status_code,
            message="OK" if online else f"Status: {response.status_code} {response.reason_phrase}".rstrip(),
            last_checked=now,
        )

    def _record(self, status: SiteStatus) -> None:
        with self._lock:
            previous = self._statuses.get(status.url)
            if previous is None:
                # Removed while the round was in flight.
                return
            self._statuses[status.url] = status
        if previous.is_online and not status.is_online:
            logger.warning("%s is down: %s", status.url, status.message)
            if self._on_down is not None:
                self._on_down(status)
        elif not previous.is_online and status.is_online:
            logger.info("%s is back up", status.url)


class MonitorLoop:
    """Run :meth:`SiteMonitor.check_all` periodically on a daemon thread.

    Args:
        monitor: The monitor to drive.
        interval: Seconds between the start of consecutive rounds.
        on_round: Optional hook called with the statuses after each round.
    """

    def __init__(
        self,
        monitor: SiteMonitor,
        interval: float = 60.0,
        on_round: Optional[Callable[[list[SiteStatus]], None]] = None,
    ) -> None:
        self._monitor = monitor
        self._interval = interval
        self._on_round = on_round
        self._cancel = threading.Event()
        self._thread: Optional[threading.Thread] = None
        self.rounds = 0

    def start(self) -> None:
        if self._thread is not None:
            raise RuntimeError("MonitorLoop already started")
        self._thread = threading.Thread(target=self._run, name="sitewatch-monitor", daemon=True)
        self._thread.start()

    def stop(self, timeout: Optional[float] = None) -> None:
        self._cancel.set()
        if self._thread is not None:
            self._thread.join(timeout)

    def wait(self, timeout: Optional[float] = None) -> bool:
        """Block until the loop is stopped or *timeout* elapses."""
        return self._cancel.wait(timeout)

    def _run(self) -> None:
        while not self._cancel.is_set():
            try:
                statuses = self._monitor.check_all()
            except Exception:
                logger.exception("Monitor round failed")
            else:
                self.rounds += 1
                if self._on_round is not None:
                    self._on_round(statuses)
            if self._cancel.wait(self._interval):
                break
