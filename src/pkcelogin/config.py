"""Configuration loading: env files, credential sources, and precedence resolution.

This module is the only place that reads ambient state (environment
variables, files, the terminal). Everything it gathers ends up in a
:class:`~pkcelogin.models.ClientConfig`, which is what the login flow sees.

* **Env files** -- ``KEY=value`` files as written by deployment tooling.
  See :func:`parse_env_file` and :func:`parse_env_files`.
* **Environment mapping** -- the Azure app registration variables
  (``AZURE_APP_CLIENT_ID`` and friends) are mapped onto config fields by
  :func:`client_config_from_env`.
* **Project config** -- an optional ``./pkcelogin.json`` holding defaults
  such as scopes or a fixed redirect port (:func:`load_project_config`).
* **Precedence resolution** -- :func:`resolve_client_config` merges CLI
  flags, the process environment, env files, project config, and defaults.
* **Credential resolution** -- :func:`resolve_credential` reads secrets
  from env vars, files, or an interactive prompt.
* **Directory layout** -- :func:`get_data_dir` for crash logs, XDG compliant
  on Linux/BSD.
"""

from __future__ import annotations

import getpass
import json
import os
import platform
import sys
from pathlib import Path
from typing import Any, Iterable, Mapping, Optional

from pydantic import ValidationError

from pkcelogin.exceptions import ConfigurationError
from pkcelogin.models import ClientConfig

_APP_NAME = "pkcelogin"
_PROJECT_CONFIG_FILENAME = "pkcelogin.json"

ENV_CLIENT_ID = "AZURE_APP_CLIENT_ID"
ENV_CLIENT_SECRET = "AZURE_APP_CLIENT_SECRET"
ENV_TENANT_ID = "AZURE_APP_TENANT_ID"
ENV_TOKEN_ENDPOINT = "AZURE_OPENID_CONFIG_TOKEN_ENDPOINT"
ENV_REDIRECT_URI = "AZURE_APP_REDIRECT_URI"

AUTHORITY_TEMPLATE = "https://login.microsoftonline.com/{tenant}/oauth2/v2.0"


# --- XDG path resolution ---


def _is_xdg_platform() -> bool:
    """Return True if the platform supports XDG Base Directory spec (Linux/FreeBSD)."""
    return platform.system() == "Linux" or platform.system().endswith("BSD")


def _xdg_base(env_var: str, default_segments: tuple[str, ...]) -> Path:
    """Resolve an XDG base directory from an env var with fallback segments under $HOME."""
    env_value = os.environ.get(env_var, "")
    if env_value:
        return Path(env_value)
    base = Path.home()
    for seg in default_segments:
        base = base / seg
    return base


def get_data_dir() -> Path:
    """Return the data directory (crash logs), creating it if necessary.

    On Linux/BSD: ``$XDG_DATA_HOME/pkcelogin/`` (default
    ``~/.local/share/pkcelogin/``). On macOS/Windows: ``~/.pkcelogin/``.

    Returns:
        Absolute path to the data directory (guaranteed to exist).
    """
    if _is_xdg_platform():
        path = _xdg_base("XDG_DATA_HOME", (".local", "share")) / _APP_NAME
    else:
        path = Path.home() / f".{_APP_NAME}"
    path.mkdir(parents=True, exist_ok=True)
    return path


# --- Env files ---


def parse_env_file(path: str | Path) -> dict[str, str]:
    """Parse a ``KEY=value`` env file.

    Blank lines and ``#`` comments are skipped. Each line is split on the
    first ``=``; key and value are trimmed and surrounding quotes are
    removed from the value. Lines without ``=`` or with an empty key are
    ignored.

    Raises:
        ConfigurationError: If the file cannot be read or is not UTF-8.
    """
    path = Path(path).expanduser()
    try:
        text = path.read_text(encoding="utf-8")
    except (OSError, UnicodeDecodeError) as exc:
        raise ConfigurationError(f"Cannot read env file {path}: {exc}") from exc

    env: dict[str, str] = {}
    for line in text.splitlines():
        line = line.strip()
        if not line or line.startswith("#") or "=" not in line:
            continue
        key, _, value = line.partition("=")
        key = key.strip()
        if key:
            env[key] = value.strip().strip("'\"")
    return env


def parse_env_files(paths: Iterable[str | Path]) -> dict[str, str]:
    """Parse several env files into one mapping; later files win on conflicts."""
    combined: dict[str, str] = {}
    for path in paths:
        combined.update(parse_env_file(path))
    return combined


# --- Project-local config ---


def load_project_config() -> Optional[dict[str, Any]]:
    """Load project-local configuration from ``./pkcelogin.json``.

    The file holds :class:`~pkcelogin.models.ClientConfig` field defaults
    (``scopes``, ``redirect_port``, ``authority``, ...) and optionally an
    ``env_files`` list. ``client_secret`` is refused; keep it in an env file.

    Returns:
        The parsed JSON object, or ``None`` if the file does not exist.

    Raises:
        ConfigurationError: If the file is not a valid JSON object, has a
            key that is not a config field, or holds ``client_secret``.
    """
    path = Path.cwd() / _PROJECT_CONFIG_FILENAME
    if not path.is_file():
        return None
    try:
        data = json.loads(path.read_text(encoding="utf-8"))
    except (OSError, ValueError) as exc:
        raise ConfigurationError(f"Invalid project config at {path}: {exc}") from exc
    if not isinstance(data, dict):
        raise ConfigurationError(f"Invalid project config at {path}: expected a JSON object")
    if "client_secret" in data:
        raise ConfigurationError(
            f"{path} must not contain client_secret; put {ENV_CLIENT_SECRET} in an env file"
        )
    unknown = sorted(set(data) - set(ClientConfig.model_fields) - {"env_files"})
    if unknown:
        raise ConfigurationError(
            f"Invalid project config at {path}: unknown keys {', '.join(unknown)}"
        )
    return data


# --- Environment mapping ---


def authority_for_tenant(tenant: Optional[str]) -> str:
    """Return the Microsoft identity platform v2.0 base URL for *tenant*."""
    return AUTHORITY_TEMPLATE.format(tenant=tenant or "common")


def env_to_fields(env: Mapping[str, str]) -> dict[str, Any]:
    """Map Azure app registration variables onto ClientConfig fields.

    Only variables that are present (and non-empty) produce fields.
    ``AZURE_OPENID_CONFIG_TOKEN_ENDPOINT`` wins over ``AZURE_APP_TENANT_ID``;
    the authority is derived from it by dropping the trailing ``/token``.
    """
    fields: dict[str, Any] = {}
    if env.get(ENV_CLIENT_ID):
        fields["client_id"] = env[ENV_CLIENT_ID]
    if env.get(ENV_CLIENT_SECRET):
        fields["client_secret"] = env[ENV_CLIENT_SECRET]

    token_endpoint = env.get(ENV_TOKEN_ENDPOINT)
    if token_endpoint:
        fields["token_endpoint"] = token_endpoint
        base = token_endpoint.rstrip("/")
        if base.endswith("/token"):
            fields["authority"] = base[: -len("/token")]
    elif env.get(ENV_TENANT_ID):
        fields["authority"] = authority_for_tenant(env[ENV_TENANT_ID])

    if env.get(ENV_REDIRECT_URI):
        fields["redirect_uri"] = env[ENV_REDIRECT_URI]
    return fields


def build_client_config(fields: Mapping[str, Any]) -> ClientConfig:
    """Validate *fields* into a ClientConfig.

    Raises:
        ConfigurationError: With every validation problem listed.
    """
    try:
        return ClientConfig.model_validate(dict(fields))
    except ValidationError as exc:
        problems = "; ".join(
            f"{'.'.join(str(p) for p in err['loc']) or 'config'}: {err['msg']}"
            for err in exc.errors()
        )
        raise ConfigurationError(f"Invalid client configuration: {problems}") from exc


def _require_credentials(fields: Mapping[str, Any], require_secret: bool) -> None:
    if not fields.get("client_id"):
        raise ConfigurationError(f"Missing {ENV_CLIENT_ID}")
    if require_secret and not fields.get("client_secret"):
        raise ConfigurationError(f"Missing {ENV_CLIENT_SECRET}")


def client_config_from_env(
    env: Mapping[str, str],
    require_secret: bool = True,
    **overrides: Any,
) -> ClientConfig:
    """Build a ClientConfig from an environment-style mapping.

    Args:
        env: Name/value pairs, e.g. ``os.environ`` or the result of
            :func:`parse_env_files`.
        require_secret: Reject a missing ``AZURE_APP_CLIENT_SECRET``. Pass
            ``False`` for public clients.
        **overrides: ClientConfig fields that take precedence over *env*.

    Raises:
        ConfigurationError: If the client id (or secret) is missing or any
            value is invalid.
    """
    fields = env_to_fields(env)
    fields.update({k: v for k, v in overrides.items() if v is not None})
    _require_credentials(fields, require_secret)
    return build_client_config(fields)


# --- Precedence resolution ---


def resolve_client_config(
    overrides: Optional[Mapping[str, Any]] = None,
    env_files: Iterable[str | Path] = (),
    environ: Optional[Mapping[str, str]] = None,
    require_secret: bool = True,
) -> ClientConfig:
    """Resolve the client configuration with the full precedence chain.

    Precedence (high to low):
        1. *overrides* (CLI flags; ``None`` values are ignored)
        2. Process environment (*environ*, default ``os.environ``)
        3. Env files (project ``env_files`` first, then *env_files*; later
           files win)
        4. Project config (``./pkcelogin.json``)
        5. Defaults

    A ``tenant`` key in *overrides* is turned into an ``authority``, unless
    an ``authority`` override is also given.

    Raises:
        ConfigurationError: On missing credentials, unreadable files, or
            invalid values.
    """
    fields: dict[str, Any] = {}
    files: list[str | Path] = []

    project = load_project_config()
    if project is not None:
        project = dict(project)
        project_files = project.pop("env_files", [])
        if not isinstance(project_files, list):
            raise ConfigurationError("'env_files' in project config must be a list")
        files.extend(project_files)
        fields.update(project)
    files.extend(env_files)

    env = parse_env_files(files)
    env.update(os.environ if environ is None else environ)
    fields.update(env_to_fields(env))

    cli = {k: v for k, v in (overrides or {}).items() if v is not None}
    tenant = cli.pop("tenant", None)
    if tenant and "authority" not in cli:
        cli["authority"] = authority_for_tenant(tenant)
        fields.pop("token_endpoint", None)
    if "redirect_uri" not in cli and cli.keys() & {"redirect_port", "callback_path"}:
        # An explicit port or path replaces a registered redirect URI from env.
        fields.pop("redirect_uri", None)
    fields.update(cli)

    _require_credentials(fields, require_secret)
    return build_client_config(fields)


# --- Credential source resolution ---


def resolve_credential(source: str, env: Optional[Mapping[str, str]] = None) -> str:
    """Resolve a credential from its source descriptor.

    Supported formats:
        - ``"env:VAR_NAME"`` -- reads ``VAR_NAME`` from *env* (default
          ``os.environ``)
        - ``"file:/path/to/file"`` -- reads file content, stripped of whitespace
        - ``"prompt"`` -- prompts user interactively (requires a TTY)

    Args:
        source: The source descriptor string.
        env: Mapping to look ``env:`` variables up in.

    Returns:
        The resolved credential string.

    Raises:
        ConfigurationError: If the source can't be resolved.
    """
    if source.startswith("env:"):
        var_name = source[4:]
        value = (os.environ if env is None else env).get(var_name)
        if value is None:
            raise ConfigurationError(
                f"Environment variable '{var_name}' is not set (source: {source})"
            )
        return value

    if source.startswith("file:"):
        path = Path(source[5:]).expanduser()
        if not path.is_file():
            raise ConfigurationError(f"Credential file not found: {path} (source: {source})")
        try:
            return path.read_text(encoding="utf-8").strip()
        except (OSError, UnicodeDecodeError) as exc:
            raise ConfigurationError(f"Cannot read credential file {path}: {exc}") from exc

    if source == "prompt":
        if not sys.stdin.isatty():
            raise ConfigurationError(
                "Cannot prompt for credentials: stdin is not a TTY (source: prompt)"
            )
        return getpass.getpass("Enter credential: ")

    raise ConfigurationError(f"Unknown credential source format: {source}")
