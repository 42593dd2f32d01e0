"""Login command -- run the loopback PKCE flow and print the token.

Provides ``pkcelogin login``. Client credentials come from the environment
and ``--env-file`` files (``AZURE_APP_CLIENT_ID``, ``AZURE_APP_CLIENT_SECRET``,
``AZURE_APP_TENANT_ID``, ...) or from explicit ``--client-id-source`` /
``--client-secret-source`` descriptors. The authorization URL is printed
to stderr and opened in the browser; the token goes to stdout.

Typical workflow::

    pkcelogin login --env-file .env --scope api://my-api/.default
    TOKEN=$(pkcelogin login --token-only --no-browser)
"""

from __future__ import annotations

import os
import threading
import webbrowser
from pathlib import Path
from typing import Any, Optional

import typer

from pkcelogin.exceptions import (
    BindError,
    ConfigurationError,
    FlowTimeout,
    PkceLoginError,
    ProviderError,
)
from pkcelogin.models import ClientConfig
from pkcelogin.output import error, format_response, info, print_data, success, suggest, url


def collect_config(
    env_file: Optional[list[Path]] = None,
    client_id_source: Optional[str] = None,
    client_secret_source: Optional[str] = None,
    public_client: bool = False,
    overrides: Optional[dict[str, Any]] = None,
) -> ClientConfig:
    """Resolve a ClientConfig from CLI inputs, env files, and the environment.

    Credential source descriptors are resolved against the env files layered
    under the process environment, so ``--client-secret-source env:MY_SECRET``
    finds ``MY_SECRET`` in either.

    Raises:
        ConfigurationError: If the configuration is incomplete or invalid.
    """
    from pkcelogin.config import parse_env_files, resolve_client_config, resolve_credential

    files = list(env_file or [])
    fields: dict[str, Any] = dict(overrides or {})
    if client_id_source or client_secret_source:
        env = parse_env_files(files)
        env.update(os.environ)
        if client_id_source:
            fields["client_id"] = resolve_credential(client_id_source, env)
        if client_secret_source:
            fields["client_secret"] = resolve_credential(client_secret_source, env)

    return resolve_client_config(
        overrides=fields,
        env_files=files,
        require_secret=not public_client,
    )


def login_command(
    env_file: Optional[list[Path]] = typer.Option(
        None, "--env-file", "-e", help="KEY=value file with client settings (repeatable)."
    ),
    client_id_source: Optional[str] = typer.Option(
        None, "--client-id-source", help="Client id source: env:VAR, file:/path, or prompt."
    ),
    client_secret_source: Optional[str] = typer.Option(
        None,
        "--client-secret-source",
        help="Client secret source: env:VAR, file:/path, or prompt.",
    ),
    public_client: bool = typer.Option(
        False, "--public-client", help="Do not require a client secret."
    ),
    tenant: Optional[str] = typer.Option(None, "--tenant", help="Azure AD tenant id or domain."),
    authority: Optional[str] = typer.Option(
        None, "--authority", help="Base URL of the authorize/token endpoints."
    ),
    scope: Optional[list[str]] = typer.Option(
        None, "--scope", "-s", help="Scope to request (repeatable)."
    ),
    port: Optional[int] = typer.Option(
        None, "--port", help="Loopback redirect port (0 picks a free port)."
    ),
    callback_path: Optional[str] = typer.Option(
        None, "--callback-path", help="Redirect path served on the loopback port."
    ),
    redirect_uri: Optional[str] = typer.Option(
        None, "--redirect-uri", help="Full registered redirect URI (overrides --port/--callback-path)."
    ),
    timeout: Optional[float] = typer.Option(
        None, "--timeout", help="Seconds to wait for the browser (0 waits forever)."
    ),
    prompt: Optional[str] = typer.Option(
        None, "--prompt", help="Provider 'prompt' parameter, e.g. select_account."
    ),
    login_hint: Optional[str] = typer.Option(
        None, "--login-hint", help="Pre-fill the account to sign in with."
    ),
    no_browser: bool = typer.Option(
        False, "--no-browser", help="Only print the authorization URL."
    ),
    token_only: bool = typer.Option(
        False, "--token-only", help="Print just the access token."
    ),
) -> None:
    """Log in through the browser and print the resulting token.

    Binds the loopback redirect port first, then prints (and, unless
    ``--no-browser``, opens) the authorization URL and waits for the
    provider to redirect back. The authorization code is exchanged for
    tokens together with the PKCE verifier.

    Raises:
        typer.Exit: With the error's exit code on any login failure.

    Example::

        pkcelogin login -e .env -s openid -s offline_access
        pkcelogin --json login --tenant contoso.onmicrosoft.com
    """
    from pkcelogin.oauth import FlowCoordinator

    overrides: dict[str, Any] = {
        "tenant": tenant,
        "authority": authority,
        "scopes": scope or None,
        "redirect_port": port,
        "callback_path": callback_path,
        "redirect_uri": redirect_uri,
        "callback_timeout": timeout if timeout else None,
    }
    extra_params = {
        key: value
        for key, value in (("prompt", prompt), ("login_hint", login_hint))
        if value
    }

    try:
        config = collect_config(
            env_file, client_id_source, client_secret_source, public_client, overrides
        )
        if timeout == 0:
            config = config.model_copy(update={"callback_timeout": None})

        def open_url(authorization_url: str) -> None:
            info("Open this URL in your browser to sign in:")
            url(authorization_url)
            if not no_browser:
                threading.Thread(
                    target=webbrowser.open, args=(authorization_url,), daemon=True
                ).start()
            info("Waiting for the redirect...")

        coordinator = FlowCoordinator(config, extra_auth_params=extra_params)
        token = coordinator.run(open_url)
    except PkceLoginError as exc:
        error(str(exc))
        _suggest_fix(exc)
        raise typer.Exit(code=exc.exit_code) from None

    lifetime = f"expires in {token.expires_in}s" if token.expires_in is not None else "no declared expiry"
    success(f"Logged in ({lifetime}).")
    if token_only:
        print_data(token.access_token)
    else:
        format_response(token.model_dump(mode="json", exclude_none=True))


def _suggest_fix(exc: PkceLoginError) -> None:
    if isinstance(exc, ConfigurationError):
        suggest("Set AZURE_APP_CLIENT_ID / AZURE_APP_CLIENT_SECRET or pass --env-file.")
    elif isinstance(exc, BindError):
        suggest("Free the port or pick another with --port (it must match the registered redirect URI).")
    elif isinstance(exc, FlowTimeout):
        suggest("Run the command again and finish the sign-in sooner, or raise --timeout.")
    elif isinstance(exc, ProviderError) and exc.error == "invalid_grant":
        suggest("Authorization codes are single-use; start a new login.")
