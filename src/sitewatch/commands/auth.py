"""Auth commands -- sign in, inspect, and end the Microsoft Entra session.

Provides the ``sitewatch auth`` sub-command group. Tokens are stored in the
credential backend configured by ``auth.store`` (the system keyring by
default) under the ``auth.service_name`` namespace.

Typical workflow::

    sitewatch auth login        # opens the browser
    sitewatch auth whoami
    sitewatch auth token        # prints a valid access token
    sitewatch auth logout
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Optional

import typer

from sitewatch.output import info, print_data, render_body, render_identity, success, suggest

if TYPE_CHECKING:
    from sitewatch.auth import AuthContext


auth_app = typer.Typer(no_args_is_help=True)


def load_auth_context(ctx: typer.Context) -> "AuthContext":
    """Resolve configuration from the root options and build the auth components.

    Raises:
        ConfigError: If the configuration is invalid or has no client id.
    """
    from sitewatch.auth import create_auth_context
    from sitewatch.config import resolve_config

    obj = ctx.obj or {}
    config = resolve_config(
        cli_client_id=obj.get("client_id"),
        cli_tenant_id=obj.get("tenant_id"),
    )
    return create_auth_context(config.auth)


def _resolve_user(auth: "AuthContext", user: Optional[str]) -> str:
    from sitewatch.exceptions import AuthError

    if user:
        return user
    last = auth.vault.last_user()
    if last is None:
        raise AuthError("Not signed in. Run: sitewatch auth login")
    return last


@auth_app.command("login")
def auth_login(
    ctx: typer.Context,
    no_browser: bool = typer.Option(
        False, "--no-browser", help="Print the sign-in URL instead of opening a browser."
    ),
) -> None:
    """Sign in through the browser (Authorization Code + PKCE).

    Starts a one-shot listener on a loopback port, opens the provider's
    sign-in page, and stores the returned tokens for the signed-in user.

    Example::

        sitewatch auth login
        sitewatch --tenant contoso.onmicrosoft.com auth login
    """
    auth = load_auth_context(ctx)

    def _show_url(url: str) -> None:
        info("Opening the sign-in page in your browser. If it does not open, visit:")
        info(url)

    kwargs = {"on_url": _show_url}
    if no_browser:
        kwargs["open_browser"] = lambda url: True
    coordinator = auth.coordinator(**kwargs)
    try:
        result = coordinator.login(auth.client_id, auth.settings.tenant_id)
    finally:
        auth.sessions.stop()

    success(f"Signed in as {result.user}.")
    suggest("Check it: sitewatch auth whoami")


@auth_app.command("logout")
def auth_logout(
    ctx: typer.Context,
    user: Optional[str] = typer.Argument(None, help="User to sign out (default: last user)."),
) -> None:
    """Delete stored tokens and end the session.

    Example::

        sitewatch auth logout
        sitewatch auth logout ada@contoso.com
    """
    auth = load_auth_context(ctx)
    target = user or auth.vault.last_user()
    if target is None:
        info("Not signed in.")
        return
    auth.sessions.logout(target)
    success(f"Signed out {target}.")


@auth_app.command("whoami")
def auth_whoami(ctx: typer.Context) -> None:
    """Show the last signed-in user and whether a token is stored for them."""
    auth = load_auth_context(ctx)
    identity = auth.sessions.whoami()
    render_identity(identity)
    if not identity.authenticated:
        suggest("Sign in: sitewatch auth login")


@auth_app.command("token")
def auth_token(
    ctx: typer.Context,
    user: Optional[str] = typer.Option(None, "--user", "-u", help="User (default: last user)."),
) -> None:
    """Print a valid access token, refreshing it if it is about to expire.

    Example::

        curl -H "Authorization: Bearer $(sitewatch auth token)" https://graph.microsoft.com/v1.0/me
    """
    auth = load_auth_context(ctx)
    target = _resolve_user(auth, user)
    print_data(auth.sessions.get_access_token(target, auth.settings.refresh_margin))


@auth_app.command("photo")
def auth_photo(
    ctx: typer.Context,
    user: Optional[str] = typer.Option(None, "--user", "-u", help="User (default: last user)."),
) -> None:
    """Print the user's Microsoft Graph profile photo as a data URL."""
    auth = load_auth_context(ctx)
    target = _resolve_user(auth, user)
    with auth.resource_client() as client:
        photo = client.fetch_user_photo(target)
    if photo is None:
        info(f"No profile photo available for {target}.")
        return
    print_data(photo)


def fetch_command(
    ctx: typer.Context,
    url: str = typer.Argument(help="Protected URL to GET with the user's bearer token."),
    user: Optional[str] = typer.Option(None, "--user", "-u", help="User (default: last user)."),
) -> None:
    """GET a protected resource with the signed-in user's token.

    The response body goes to stdout; a non-2xx status exits with code 1.

    Example::

        sitewatch fetch https://graph.microsoft.com/v1.0/me
    """
    from sitewatch.output import error

    auth = load_auth_context(ctx)
    target = _resolve_user(auth, user)
    with auth.resource_client() as client:
        response = client.fetch(url, target)

    render_body(response.text, response.headers.get("content-type", ""))
    if not response.is_success:
        error(f"HTTP {response.status_code} {response.reason_phrase}")
        raise typer.Exit(code=1)
