"""Typer application and CLI entry point for sitewatch.

This module wires together the top-level Typer application and registers the
built-in sub-commands (``auth``, ``monitor``, ``config`` and ``fetch``).

The :func:`main` function is the console-script entry point declared in
``pyproject.toml``. It installs signal handlers and invokes the Typer app.
:class:`~sitewatch.exceptions.SitewatchError` exits with its ``exit_code``;
any other exception is written to a crash log under the data directory.

See Also:
    :mod:`sitewatch.config`: Configuration precedence resolution.
    :mod:`sitewatch.output`: Output formatting initialised in :func:`main_callback`.
"""

from __future__ import annotations

import logging
import signal
import sys
import traceback
from datetime import datetime
from typing import Any, Optional

import typer
from rich.console import Console
from rich.logging import RichHandler

from sitewatch import __version__
from sitewatch.commands.auth import auth_app, fetch_command
from sitewatch.commands.config import config_app
from sitewatch.commands.monitor import monitor_app
from sitewatch.exit_codes import EXIT_GENERIC_FAILURE
from sitewatch.output import OutputFormat

logger = logging.getLogger(__name__)

app = typer.Typer(
    name="sitewatch",
    help="Monitor websites and manage a Microsoft Entra sign-in session.",
    no_args_is_help=True,
    add_completion=True,
    rich_markup_mode="rich",
)

app.add_typer(auth_app, name="auth", help="Sign-in and session management.")
app.add_typer(monitor_app, name="monitor", help="Website uptime monitoring.")
app.add_typer(config_app, name="config", help="Configuration management.")
app.command("fetch")(fetch_command)


def _version_callback(value: bool) -> None:
    """Print version and exit when --version is passed."""
    if value:
        typer.echo(f"sitewatch {__version__}")
        raise typer.Exit()


def _configure_logging(verbose: bool, no_color: bool) -> None:
    """Route ``sitewatch.*`` loggers to stderr through Rich."""
    handler = RichHandler(
        console=Console(stderr=True, no_color=no_color),
        show_path=False,
        rich_tracebacks=verbose,
    )
    handler.setFormatter(logging.Formatter("%(message)s"))
    package_logger = logging.getLogger("sitewatch")
    package_logger.handlers.clear()
    package_logger.addHandler(handler)
    package_logger.setLevel(logging.DEBUG if verbose else logging.WARNING)
    package_logger.propagate = False


def _configured_format(client_id: Optional[str], tenant_id: Optional[str]) -> OutputFormat:
    """Return the configured default format, or AUTO if the config is unreadable.

    A broken config is reported by the command that reads it; ``config reset``
    must still run.
    """
    from sitewatch.config import resolve_config
    from sitewatch.exceptions import ConfigError

    try:
        config = resolve_config(cli_client_id=client_id, cli_tenant_id=tenant_id)
    except ConfigError as exc:
        logger.debug("Using automatic output format: %s", exc)
        return OutputFormat.AUTO
    return OutputFormat(config.output.format)


@app.callback()
def main_callback(
    ctx: typer.Context,
    version: bool = typer.Option(
        False,
        "--version",
        callback=_version_callback,
        is_eager=True,
        help="Show version and exit.",
    ),
    client_id: Optional[str] = typer.Option(
        None, "--client-id", help="Application (client) id override."
    ),
    tenant_id: Optional[str] = typer.Option(
        None, "--tenant", help="Directory (tenant) id override."
    ),
    json_output: bool = typer.Option(
        False, "--json", help="JSON output format."
    ),
    plain_output: bool = typer.Option(
        False, "--plain", help="Plain text output."
    ),
    no_color: bool = typer.Option(
        False, "--no-color", help="Disable color output."
    ),
    quiet: bool = typer.Option(
        False, "--quiet", "-q", help="Suppress non-essential output."
    ),
    verbose: bool = typer.Option(
        False, "--verbose", "-v", help="Enable debug output."
    ),
    force: bool = typer.Option(
        False, "--force", "-f", help="Skip confirmations."
    ),
) -> None:
    """Root callback executed before every sub-command.

    Sets up logging and the global :class:`~sitewatch.output.OutputManager`
    and stores shared options in ``ctx.obj``. Without ``--json`` or
    ``--plain`` the format comes from ``output.format`` in the config.
    """
    from sitewatch.output import OutputManager, set_output

    _configure_logging(verbose, no_color)

    if json_output:
        fmt = OutputFormat.JSON
    elif plain_output:
        fmt = OutputFormat.PLAIN
    else:
        fmt = _configured_format(client_id, tenant_id)

    set_output(OutputManager(format=fmt, no_color=no_color, quiet=quiet))

    ctx.ensure_object(dict)
    ctx.obj["client_id"] = client_id
    ctx.obj["tenant_id"] = tenant_id
    ctx.obj["force"] = force


def _setup_signal_handlers() -> None:
    """Install a SIGINT handler so Ctrl-C exits cleanly."""

    def _handler(signum: int, frame: Any) -> None:  # noqa: ANN401
        sys.stderr.write("\nCancelled.\n")
        sys.exit(130)

    signal.signal(signal.SIGINT, _handler)


def _write_crash_log(exc: Exception) -> str:
    """Write a crash traceback to disk and return the log file path."""
    from sitewatch.config import get_data_dir

    logs_dir = get_data_dir() / "logs"
    logs_dir.mkdir(parents=True, exist_ok=True)
    timestamp = datetime.now().strftime("%Y%m%d-%H%M%S")
    log_path = logs_dir / f"crash-{timestamp}.log"
    log_path.write_text(
        "".join(traceback.format_exception(type(exc), exc, exc.__traceback__))
    )
    return str(log_path)


def main() -> None:
    """CLI entry point invoked by the ``sitewatch`` console script.

    Raises:
        SystemExit: Always raised (either by Typer or explicitly).
    """
    _setup_signal_handlers()
    try:
        app()
    except SystemExit:
        raise
    except KeyboardInterrupt:
        sys.stderr.write("\nCancelled.\n")
        sys.exit(130)
    except Exception as exc:
        from sitewatch.exceptions import SitewatchError
        from sitewatch.output import error

        if isinstance(exc, SitewatchError):
            error(str(exc))
            sys.exit(exc.exit_code)
        else:
            log_path = _write_crash_log(exc)
            error(f"Unexpected error. Debug log: {log_path}")
            sys.exit(EXIT_GENERIC_FAILURE)
