"""Config commands -- inspect the resolved client configuration.

Provides the ``pkcelogin config`` sub-command group. ``show`` runs the same
precedence resolution as ``login`` (CLI flags, environment, env files,
``./pkcelogin.json``) without touching the network, and prints the result
with the client secret masked.
"""

from __future__ import annotations

from pathlib import Path
from typing import Optional

import typer

from pkcelogin.exceptions import ConfigurationError
from pkcelogin.output import error, format_response, info


config_app = typer.Typer(no_args_is_help=True)


@config_app.command("show")
def config_show(
    env_file: Optional[list[Path]] = typer.Option(
        None, "--env-file", "-e", help="KEY=value file with client settings (repeatable)."
    ),
    public_client: bool = typer.Option(
        False, "--public-client", help="Do not require a client secret."
    ),
    tenant: Optional[str] = typer.Option(None, "--tenant", help="Azure AD tenant id or domain."),
) -> None:
    """Show the client configuration ``login`` would use.

    Raises:
        typer.Exit: With code 2 if the configuration is incomplete or invalid.

    Example::

        pkcelogin config show --env-file .env
        pkcelogin --json config show
    """
    from pkcelogin.commands.login import collect_config

    try:
        config = collect_config(
            env_file, public_client=public_client, overrides={"tenant": tenant}
        )
    except ConfigurationError as exc:
        error(str(exc))
        raise typer.Exit(code=exc.exit_code) from None

    data = config.model_dump(mode="json")
    if data.get("client_secret"):
        data["client_secret"] = "********"
    data["authorization_url"] = config.authorization_url
    data["token_url"] = config.token_url
    info("Resolved client configuration:")
    format_response(data)
