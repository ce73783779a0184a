"""sitewatch -- website uptime monitor with Microsoft Entra sign-in.

The package is split into a small number of layers:

* :mod:`sitewatch.auth` -- OAuth2 Authorization Code + PKCE login over a
  loopback redirect, credential persistence in the OS keyring, token expiry
  policy, and the background refresh scheduler.
* :mod:`sitewatch.monitor` -- periodic HTTP availability checks for a list
  of websites with up/down transition callbacks.
* :mod:`sitewatch.commands` -- Typer sub-command groups wired together in
  :mod:`sitewatch.app`.

Typical workflow::

    sitewatch config set auth.client_id <app-id>
    sitewatch auth login
    sitewatch monitor add https://example.com
    sitewatch monitor watch

Modules:
    app: Typer application and CLI entry point.
    models: Pydantic models shared across the package.
    config: XDG-aware configuration and precedence resolution.
    exceptions: Exception hierarchy with exit-code mapping.
    exit_codes: Numeric exit codes following clig.dev conventions.
    output: stdout/stderr formatting system with Rich support.
"""

__version__ = "0.1.0"
