"""Config commands -- view and modify the user configuration.

Provides the ``sitewatch config`` sub-command group for reading, updating,
and resetting the user's configuration file
(:class:`~sitewatch.models.GlobalConfig`).
"""

from __future__ import annotations

from typing import Any

import typer

from sitewatch.exit_codes import EXIT_INVALID_USAGE
from sitewatch.output import error, info, render_config, success


config_app = typer.Typer(no_args_is_help=True)


@config_app.command("show")
def config_show(
    effective: bool = typer.Option(
        False, "--effective", help="Show the merged result of all config layers."
    ),
) -> None:
    """Show current configuration.

    Example::

        sitewatch config show
        sitewatch config show --effective --json
    """
    from sitewatch.config import get_config_dir, load_global_config, resolve_config

    config = resolve_config() if effective else load_global_config()
    info(f"Config directory: {get_config_dir()}")
    render_config(config.model_dump(mode="json"))


def _coerce(key: str, current: Any, value: str) -> Any:
    """Convert *value* to the type of the field's *current* value."""
    if isinstance(current, bool):
        return value.lower() in ("true", "1", "yes")
    if isinstance(current, int):
        try:
            return int(value)
        except ValueError:
            error(f"Expected integer for {key}, got: {value}")
            raise typer.Exit(code=EXIT_INVALID_USAGE) from None
    if isinstance(current, list):
        return [item.strip() for item in value.split(",") if item.strip()]
    return value


@config_app.command("set")
def config_set(
    key: str = typer.Argument(help="Config key (dot notation, e.g., 'auth.client_id')."),
    value: str = typer.Argument(help="Value to set (comma-separated for lists)."),
) -> None:
    """Set a configuration value.

    Uses dot notation for nested keys. The value is coerced to match the
    existing field's type (bool, int, list, or str) and the result is
    validated before saving.

    Example::

        sitewatch config set auth.client_id 00000000-0000-0000-0000-000000000000
        sitewatch config set auth.store file
        sitewatch config set monitor.interval 30
    """
    from sitewatch.config import load_global_config, save_global_config
    from sitewatch.models import GlobalConfig

    config = load_global_config()
    data = config.model_dump(mode="json")

    keys = key.split(".")
    target = data
    for k in keys[:-1]:
        if k not in target or not isinstance(target[k], dict):
            error(f"Invalid config key: {key}")
            raise typer.Exit(code=EXIT_INVALID_USAGE)
        target = target[k]

    final_key = keys[-1]
    if final_key not in target:
        error(f"Unknown config key: {key}")
        raise typer.Exit(code=EXIT_INVALID_USAGE)

    coerced = _coerce(key, target[final_key], value)
    target[final_key] = coerced

    try:
        new_config = GlobalConfig.model_validate(data)
    except ValueError as exc:
        error(f"Validation error: {exc}")
        raise typer.Exit(code=EXIT_INVALID_USAGE) from None

    save_global_config(new_config)
    success(f"Set {key} = {coerced}")


@config_app.command("reset")
def config_reset(ctx: typer.Context) -> None:
    """Reset configuration to defaults.

    Asks for confirmation unless ``--force`` is active.
    """
    from sitewatch.config import save_global_config
    from sitewatch.models import GlobalConfig

    force = ctx.obj.get("force", False) if ctx.obj else False
    if not force:
        confirmed = typer.confirm("Reset all config to defaults?")
        if not confirmed:
            info("Cancelled.")
            raise typer.Exit()

    save_global_config(GlobalConfig())
    success("Configuration reset to defaults.")
