"""Monitor commands -- manage and check the list of watched websites.

Provides the ``sitewatch monitor`` sub-command group. The site list lives in
``monitor.sites`` of the global config; ``./sitewatch.json`` can override it
per directory.

Typical workflow::

    sitewatch monitor add https://example.com
    sitewatch monitor check
    sitewatch monitor watch --interval 30
"""

from __future__ import annotations

from typing import Optional

import httpx
import typer

from sitewatch.exit_codes import EXIT_INVALID_USAGE, EXIT_SITE_DOWN
from sitewatch.models import SiteStatus
from sitewatch.output import error, info, render_sites, render_statuses, success, suggest, warning


monitor_app = typer.Typer(no_args_is_help=True)


@monitor_app.command("list")
def monitor_list() -> None:
    """List monitored websites."""
    from sitewatch.config import resolve_config

    config = resolve_config()
    if not config.monitor.sites:
        info("No sites configured.")
        suggest("Add one: sitewatch monitor add https://example.com")
        return
    render_sites(config.monitor.sites)


@monitor_app.command("add")
def monitor_add(url: str = typer.Argument(help="Website URL to monitor.")) -> None:
    """Add a website to the user config."""
    from sitewatch.config import add_site

    if not url.startswith(("http://", "https://")):
        error(f"Not an http(s) URL: {url}")
        raise typer.Exit(code=EXIT_INVALID_USAGE)
    try:
        parsed = httpx.URL(url)
    except httpx.InvalidURL as exc:
        error(f"Invalid URL {url}: {exc}")
        raise typer.Exit(code=EXIT_INVALID_USAGE) from None
    if not parsed.host:
        error(f"Missing host in URL: {url}")
        raise typer.Exit(code=EXIT_INVALID_USAGE)

    if add_site(url):
        success(f"Added {url}.")
    else:
        info(f"{url} is already monitored.")


@monitor_app.command("remove")
def monitor_remove(url: str = typer.Argument(help="Website URL to stop monitoring.")) -> None:
    """Remove a website from the user config."""
    from sitewatch.config import remove_site

    if not remove_site(url):
        error(f"{url} is not monitored.")
        raise typer.Exit(code=EXIT_INVALID_USAGE)
    success(f"Removed {url}.")


@monitor_app.command("check")
def monitor_check(
    timeout: Optional[int] = typer.Option(None, "--timeout", help="Per-request timeout in seconds."),
) -> None:
    """Check every site once and print the results.

    Exits with code 4 when at least one site is down.
    """
    from sitewatch.config import resolve_config
    from sitewatch.monitor import SiteMonitor

    config = resolve_config()
    if not config.monitor.sites:
        info("No sites configured.")
        return

    monitor = SiteMonitor(config.monitor.sites, timeout=float(timeout or config.monitor.timeout))
    statuses = monitor.check_all()
    render_statuses(statuses)
    if any(not status.is_online for status in statuses):
        raise typer.Exit(code=EXIT_SITE_DOWN)


@monitor_app.command("watch")
def monitor_watch(
    ctx: typer.Context,
    interval: Optional[int] = typer.Option(None, "--interval", help="Seconds between rounds."),
    keep_session: bool = typer.Option(
        True,
        "--keep-session/--no-keep-session",
        help="Keep the signed-in user's token fresh while watching.",
    ),
) -> None:
    """Check sites repeatedly until interrupted, warning when one goes down."""
    from sitewatch.config import resolve_config
    from sitewatch.monitor import MonitorLoop, SiteMonitor

    config = resolve_config()
    if not config.monitor.sites:
        info("No sites configured.")
        return

    sessions = None
    if keep_session and config.auth.client_id:
        from sitewatch.commands.auth import load_auth_context

        sessions = load_auth_context(ctx).sessions
        resumed = sessions.resume()
        if resumed:
            info(f"Keeping session for {resumed} refreshed in the background.")

    def _on_down(status: SiteStatus) -> None:
        warning(f"{status.url} is DOWN ({status.message})")

    monitor = SiteMonitor(
        config.monitor.sites,
        timeout=float(config.monitor.timeout),
        on_down=_on_down,
    )
    loop = MonitorLoop(monitor, interval=float(interval or config.monitor.interval), on_round=render_statuses)
    info(f"Watching {len(config.monitor.sites)} site(s). Press Ctrl-C to stop.")
    loop.start()
    try:
        loop.wait()
    except KeyboardInterrupt:
        info("Stopping.")
    finally:
        loop.stop(timeout=5)
        if sessions is not None:
            sessions.stop()
