"""Terminal rendering for sitewatch.

Data (site statuses, identities, config dumps, fetched bodies, tokens) is
written to stdout so it can be piped; every human-facing message goes to
stderr. Each renderer knows three shapes:

* ``json``  -- machine-readable, stable keys
* ``plain`` -- tab-separated lines, no colour
* ``rich``  -- tables and syntax highlighting for an interactive terminal

``auto`` picks ``rich`` on a colour-capable TTY and ``plain`` otherwise.
``NO_COLOR`` and ``TERM=dumb`` are honoured alongside ``--no-color``.

The root callback installs one :class:`OutputManager` with :func:`set_output`;
commands call the module-level helpers.
"""

from __future__ import annotations

import json
import os
import sys
from enum import Enum
from typing import Any, Optional

from rich.console import Console
from rich.syntax import Syntax
from rich.table import Table

from sitewatch.models import SiteStatus, WhoAmI


class OutputFormat(str, Enum):
    """How data is written to stdout."""

    AUTO = "auto"
    JSON = "json"
    PLAIN = "plain"
    RICH = "rich"


_STATUS_HEADERS = ["URL", "State", "Code", "Message", "Checked"]


def _status_cells(status: SiteStatus) -> list[str]:
    checked = status.last_checked.strftime("%Y-%m-%d %H:%M:%S") if status.last_checked else "-"
    return [
        status.url,
        "up" if status.is_online else "DOWN",
        str(status.status_code) if status.status_code is not None else "-",
        status.message,
        checked,
    ]


def _flatten(data: dict[str, Any], prefix: str = "") -> list[tuple[str, str]]:
    """Turn nested config into ``section.key`` pairs, lists comma-joined."""
    pairs: list[tuple[str, str]] = []
    for key, value in data.items():
        name = f"{prefix}{key}"
        if isinstance(value, dict):
            pairs.extend(_flatten(value, f"{name}."))
        elif isinstance(value, list):
            pairs.append((name, ",".join(str(v) for v in value)))
        else:
            pairs.append((name, "" if value is None else str(value)))
    return pairs


class OutputManager:
    """Writes data to stdout and diagnostics to stderr in one resolved format.

    Args:
        format: Requested format; ``AUTO`` is resolved here, once.
        no_color: Strip colour and markup from both streams.
        quiet: Drop info, success and suggestion messages. Warnings and
            errors are always shown.
    """

    def __init__(
        self,
        format: OutputFormat = OutputFormat.AUTO,
        no_color: bool = False,
        quiet: bool = False,
    ) -> None:
        self._no_color = no_color or _should_disable_color()
        self._quiet = quiet

        if format == OutputFormat.AUTO:
            format = OutputFormat.RICH if _is_tty() and not self._no_color else OutputFormat.PLAIN
        self._format = format

        self._stdout = Console(
            file=sys.stdout,
            no_color=self._no_color,
            force_terminal=(format == OutputFormat.RICH),
        )
        self._stderr = Console(file=sys.stderr, no_color=self._no_color, stderr=True)

    @property
    def format(self) -> OutputFormat:
        return self._format

    # --- stdout ---

    def print_data(self, text: str) -> None:
        """Write *text* to stdout verbatim."""
        print(text, file=sys.stdout, flush=True)

    def _print_json(self, data: Any) -> None:
        self.print_data(json.dumps(data, indent=2, ensure_ascii=False))

    def render_statuses(self, statuses: list[SiteStatus], title: str = "Site status") -> None:
        """Write one row per site; down sites are highlighted in rich mode."""
        if self._format == OutputFormat.JSON:
            self._print_json([status.model_dump(mode="json") for status in statuses])
            return
        if self._format == OutputFormat.PLAIN:
            self.print_data("\t".join(_STATUS_HEADERS))
            for status in statuses:
                self.print_data("\t".join(_status_cells(status)))
            return

        table = Table(title=title, header_style="bold cyan")
        for header in _STATUS_HEADERS:
            table.add_column(header)
        for status in statuses:
            cells = _status_cells(status)
            cells[1] = "[green]up[/green]" if status.is_online else "[bold red]DOWN[/bold red]"
            table.add_row(*cells)
        self._stdout.print(table)

    def render_sites(self, urls: list[str]) -> None:
        if self._format == OutputFormat.JSON:
            self._print_json(list(urls))
        elif self._format == OutputFormat.PLAIN:
            for url in urls:
                self.print_data(url)
        else:
            table = Table(title="Monitored sites", header_style="bold cyan")
            table.add_column("URL")
            for url in urls:
                table.add_row(url)
            self._stdout.print(table)

    def render_identity(self, identity: WhoAmI) -> None:
        """Write who is signed in, as ``user<TAB>state`` in plain mode."""
        if self._format == OutputFormat.JSON:
            self._print_json(identity.model_dump(mode="json"))
            return
        state = "authenticated" if identity.authenticated else "signed out"
        if self._format == OutputFormat.PLAIN:
            self.print_data(f"{identity.user or '-'}\t{state}")
        elif identity.authenticated:
            self._stdout.print(f"[bold]{identity.user}[/bold] [green]({state})[/green]")
        else:
            self._stdout.print(f"[dim]{identity.user or 'nobody'} ({state})[/dim]")

    def render_config(self, data: dict[str, Any]) -> None:
        """Write a config dump; plain mode uses ``section.key<TAB>value`` lines."""
        if self._format == OutputFormat.JSON:
            self._print_json(data)
        elif self._format == OutputFormat.PLAIN:
            for key, value in _flatten(data):
                self.print_data(f"{key}\t{value}")
        else:
            text = json.dumps(data, indent=2, ensure_ascii=False)
            self._stdout.print(Syntax(text, "json", theme="monokai", word_wrap=True))

    def render_body(self, text: str, content_type: str = "") -> None:
        """Write a fetched response body.

        Bodies labelled JSON are pretty-printed. A body that claims to be
        JSON but does not parse is written out unchanged.
        """
        if "json" in content_type.lower():
            try:
                parsed = json.loads(text)
            except ValueError:
                parsed = None
            else:
                if self._format == OutputFormat.RICH:
                    pretty = json.dumps(parsed, indent=2, ensure_ascii=False)
                    self._stdout.print(Syntax(pretty, "json", theme="monokai", word_wrap=True))
                else:
                    self._print_json(parsed)
                return
        self.print_data(text)

    # --- stderr ---

    def _emit(self, plain: str, markup: str) -> None:
        if self._no_color:
            print(plain, file=sys.stderr, flush=True)
        else:
            self._stderr.print(markup)

    def info(self, message: str) -> None:
        if not self._quiet:
            self._emit(message, message)

    def success(self, message: str) -> None:
        if not self._quiet:
            self._emit(message, f"[green]{message}[/green]")

    def warning(self, message: str) -> None:
        self._emit(f"Warning: {message}", f"[yellow]Warning:[/yellow] {message}")

    def error(self, message: str) -> None:
        self._emit(f"Error: {message}", f"[bold red]Error:[/bold red] {message}")

    def suggest(self, message: str) -> None:
        """Print a hint for the next command to run."""
        if not self._quiet:
            self._emit(f"→ {message}", f"[dim]→ {message}[/dim]")


def _is_tty() -> bool:
    return hasattr(sys.stdout, "isatty") and sys.stdout.isatty()


def _should_disable_color() -> bool:
    """True when ``NO_COLOR`` is set to anything or ``TERM`` is ``dumb``."""
    return os.environ.get("NO_COLOR") is not None or os.environ.get("TERM") == "dumb"


_output: Optional[OutputManager] = None


def get_output() -> OutputManager:
    """Return the installed :class:`OutputManager`, creating a default one if needed."""
    global _output
    if _output is None:
        _output = OutputManager()
    return _output


def set_output(output: OutputManager) -> None:
    global _output
    _output = output


def reset_output() -> None:
    """Forget the installed manager so the next call rebuilds it."""
    global _output
    _output = None


def print_data(text: str) -> None:
    get_output().print_data(text)


def render_statuses(statuses: list[SiteStatus], title: str = "Site status") -> None:
    get_output().render_statuses(statuses, title)


def render_sites(urls: list[str]) -> None:
    get_output().render_sites(urls)


def render_identity(identity: WhoAmI) -> None:
    get_output().render_identity(identity)


def render_config(data: dict[str, Any]) -> None:
    get_output().render_config(data)


def render_body(text: str, content_type: str = "") -> None:
    get_output().render_body(text, content_type)


def info(message: str) -> None:
    get_output().info(message)


def success(message: str) -> None:
    get_output().success(message)


def warning(message: str) -> None:
    get_output().warning(message)


def error(message: str) -> None:
    get_output().error(message)


def suggest(message: str) -> None:
    get_output().suggest(message)
