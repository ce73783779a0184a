"""Where sitewatch keeps its settings, and how the layers are combined.

Settings come from four places. From strongest to weakest:

1. root CLI flags (``--client-id``, ``--tenant``, ``--json``/``--plain``)
2. ``SITEWATCH_CLIENT_ID``, ``SITEWATCH_TENANT_ID`` and ``SITEWATCH_STORE``
3. ``./sitewatch.json`` in the working directory (a partial config, usually
   just a site list for the project at hand)
4. the user config file under :func:`get_config_dir`

:func:`resolve_config` merges them into one validated
:class:`~sitewatch.models.GlobalConfig`. Commands that *edit* settings
(``config set``, ``monitor add``) only ever touch layer 4.

Directories follow XDG on Linux/BSD and live under ``~/.sitewatch`` elsewhere.
"""

from __future__ import annotations

import json
import os
import platform
import tempfile
from pathlib import Path
from typing import Any, Optional

from sitewatch.exceptions import ConfigError
from sitewatch.models import GlobalConfig

_APP_NAME = "sitewatch"
_USER_CONFIG_FILE = "config.json"
_PROJECT_CONFIG_FILE = "sitewatch.json"

ENV_CLIENT_ID = "SITEWATCH_CLIENT_ID"
ENV_TENANT_ID = "SITEWATCH_TENANT_ID"
ENV_STORE = "SITEWATCH_STORE"

# kind -> (XDG variable, default under $HOME, subdirectory of ~/.sitewatch)
_DIR_LAYOUT: dict[str, tuple[str, tuple[str, ...], Optional[str]]] = {
    "config": ("XDG_CONFIG_HOME", (".config",), None),
    "data": ("XDG_DATA_HOME", (".local", "share"), "data"),
}


def _is_xdg_platform() -> bool:
    """Return True on Linux and the BSDs."""
    system = platform.system()
    return system == "Linux" or system.endswith("BSD")


def _app_dir(kind: str) -> Path:
    env_var, home_default, fallback_sub = _DIR_LAYOUT[kind]
    if _is_xdg_platform():
        base = os.environ.get(env_var) or str(Path.home().joinpath(*home_default))
        path = Path(base) / _APP_NAME
    else:
        path = Path.home() / f".{_APP_NAME}"
        if fallback_sub:
            path = path / fallback_sub
    path.mkdir(parents=True, exist_ok=True)
    return path


def get_config_dir() -> Path:
    """Directory holding ``config.json``; created on first use.

    ``$XDG_CONFIG_HOME/sitewatch`` on Linux/BSD, ``~/.sitewatch`` otherwise.
    """
    return _app_dir("config")


def get_data_dir() -> Path:
    """Directory for crash logs and file-backed credentials; created on first use.

    ``$XDG_DATA_HOME/sitewatch`` on Linux/BSD, ``~/.sitewatch/data`` otherwise.
    """
    return _app_dir("data")


def _atomic_write(path: Path, data: str, mode: Optional[int] = None) -> None:
    """Replace *path* with *data* through a sibling temp file and ``os.replace``.

    With *mode* set, the temp file gets its permissions before the first
    byte is written, so a credential file is never briefly world-readable.
    The temp file is removed if anything goes wrong.
    """
    path.parent.mkdir(parents=True, exist_ok=True)
    tmp = tempfile.NamedTemporaryFile(
        mode="w",
        encoding="utf-8",
        dir=path.parent,
        prefix=f".{path.name}.",
        suffix=".tmp",
        delete=False,
    )
    try:
        with tmp:
            if mode is not None:
                os.chmod(tmp.name, mode)
            tmp.write(data)
            tmp.flush()
            os.fsync(tmp.fileno())
        os.replace(tmp.name, path)
    except BaseException:
        try:
            os.unlink(tmp.name)
        except OSError:
            pass
        raise


def _read_json(path: Path, label: str) -> Any:
    try:
        return json.loads(path.read_text(encoding="utf-8"))
    except ValueError as exc:
        raise ConfigError(f"Invalid {label} at {path}: {exc}") from exc


# --- User config ---


def _user_config_path() -> Path:
    return get_config_dir() / _USER_CONFIG_FILE


def load_global_config() -> GlobalConfig:
    """Read the user config, or return defaults if none has been saved.

    Raises:
        ConfigError: If the file is not valid JSON or does not validate.
    """
    path = _user_config_path()
    if not path.is_file():
        return GlobalConfig()
    data = _read_json(path, "global config")
    try:
        return GlobalConfig.model_validate(data)
    except ValueError as exc:
        raise ConfigError(f"Invalid global config at {path}: {exc}") from exc


def save_global_config(config: GlobalConfig) -> None:
    """Write the user config atomically."""
    _atomic_write(_user_config_path(), json.dumps(config.model_dump(mode="json"), indent=2) + "\n")


def _find_site(sites: list[str], url: str) -> Optional[int]:
    wanted = url.lower()
    for index, existing in enumerate(sites):
        if existing.lower() == wanted:
            return index
    return None


def add_site(url: str) -> bool:
    """Append *url* to the user's monitored sites.

    Returns:
        ``False`` if the URL is already present (compared case-insensitively).
    """
    config = load_global_config()
    if _find_site(config.monitor.sites, url) is not None:
        return False
    config.monitor.sites.append(url)
    save_global_config(config)
    return True


def remove_site(url: str) -> bool:
    """Drop *url* from the user's monitored sites.

    Returns:
        ``False`` if the URL was not monitored.
    """
    config = load_global_config()
    index = _find_site(config.monitor.sites, url)
    if index is None:
        return False
    del config.monitor.sites[index]
    save_global_config(config)
    return True


# --- Project config ---


def load_project_config() -> Optional[dict[str, Any]]:
    """Read ``./sitewatch.json``, a partial config layered over the user's.

    Returns:
        The parsed object, or ``None`` when the file is absent.

    Raises:
        ConfigError: If the file is not a JSON object.
    """
    path = Path.cwd() / _PROJECT_CONFIG_FILE
    if not path.is_file():
        return None
    data = _read_json(path, "project config")
    if not isinstance(data, dict):
        raise ConfigError(f"Invalid project config at {path}: expected a JSON object")
    return data


def _deep_merge(base: dict[str, Any], override: dict[str, Any]) -> dict[str, Any]:
    """Overlay *override* on *base*; nested dicts merge, everything else replaces."""
    merged = dict(base)
    for key, value in override.items():
        if isinstance(value, dict) and isinstance(merged.get(key), dict):
            merged[key] = _deep_merge(merged[key], value)
        else:
            merged[key] = value
    return merged


def resolve_config(
    cli_client_id: Optional[str] = None,
    cli_tenant_id: Optional[str] = None,
    cli_format: Optional[str] = None,
) -> GlobalConfig:
    """Merge all layers into the effective configuration.

    Args:
        cli_client_id: ``--client-id`` value, if given.
        cli_tenant_id: ``--tenant`` value, if given.
        cli_format: ``json`` or ``plain`` when the matching root flag was
            given; ``None`` leaves ``output.format`` to the lower layers.

    Raises:
        ConfigError: If a layer cannot be read or the merge does not validate.
    """
    data = load_global_config().model_dump(mode="json")

    project = load_project_config()
    if project is not None:
        data = _deep_merge(data, project)

    auth = data["auth"]
    for key, env_var in (
        ("client_id", ENV_CLIENT_ID),
        ("tenant_id", ENV_TENANT_ID),
        ("store", ENV_STORE),
    ):
        value = os.environ.get(env_var)
        if value:
            auth[key] = value

    if cli_client_id is not None:
        auth["client_id"] = cli_client_id
    if cli_tenant_id is not None:
        auth["tenant_id"] = cli_tenant_id
    if cli_format is not None:
        data["output"]["format"] = cli_format

    try:
        return GlobalConfig.model_validate(data)
    except ValueError as exc:
        raise ConfigError(f"Invalid configuration: {exc}") from exc
