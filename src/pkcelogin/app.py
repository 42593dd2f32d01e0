"""The ``pkcelogin`` command line.

``pkcelogin login`` runs the browser login and prints a token;
``pkcelogin config show`` prints the client settings a login would use.

:func:`main` is the console script. Ctrl-C exits with 130 after the
loopback port is released, a :class:`~pkcelogin.exceptions.PkceLoginError`
exits with its own code, and any other exception leaves a traceback in
``<data dir>/logs/crash-*.log``.
"""

from __future__ import annotations

import signal
import sys
import traceback
from datetime import datetime
from typing import Any, Optional

import typer

from pkcelogin import __version__
from pkcelogin.commands.config import config_app
from pkcelogin.commands.login import login_command
from pkcelogin.exit_codes import EXIT_CANCELLED, EXIT_GENERIC_FAILURE


app = typer.Typer(
    name="pkcelogin",
    help="Get OAuth 2.0 access tokens through a browser login with PKCE.",
    no_args_is_help=True,
    add_completion=False,
    rich_markup_mode="rich",
)

app.command("login")(login_command)
app.add_typer(config_app, name="config", help="Inspect the resolved client settings.")


def _version_callback(value: bool) -> None:
    """Eager ``--version`` handler."""
    if value:
        typer.echo(f"pkcelogin {__version__}")
        raise typer.Exit()


@app.callback()
def main_callback(
    version: bool = typer.Option(
        False,
        "--version",
        callback=_version_callback,
        is_eager=True,
        help="Show version and exit.",
    ),
    json_output: bool = typer.Option(
        False, "--json", help="Print the token response as JSON."
    ),
    plain_output: bool = typer.Option(
        False, "--plain", help="Print the token response as tab-separated text."
    ),
    no_color: bool = typer.Option(
        False, "--no-color", help="No colour on stderr or stdout."
    ),
    quiet: bool = typer.Option(
        False, "--quiet", "-q", help="Hide progress messages and suggestions."
    ),
    verbose: bool = typer.Option(
        False, "--verbose", "-v", help="Show debug logs of the login flow."
    ),
    output_file: Optional[str] = typer.Option(
        None, "-o", "--output", help="Write the token to this file instead of stdout."
    ),
) -> None:
    """Apply the output flags before any sub-command runs."""
    from pkcelogin.output import OutputFormat, OutputManager, set_output, setup_logging

    fmt = OutputFormat.AUTO
    if json_output:
        fmt = OutputFormat.JSON
    elif plain_output:
        fmt = OutputFormat.PLAIN

    output = OutputManager(
        format=fmt,
        no_color=no_color,
        quiet=quiet,
        verbose=verbose,
        output_file=output_file,
    )
    set_output(output)
    setup_logging(output)


def _setup_signal_handlers() -> None:
    """Turn SIGINT into ``SystemExit(130)`` in the main thread.

    Unwinding through :meth:`~pkcelogin.oauth.coordinator.FlowCoordinator.run`
    closes the loopback listener.
    """

    def _handler(signum: int, frame: Any) -> None:  # noqa: ANN401
        sys.stderr.write("\nCancelled.\n")
        sys.exit(EXIT_CANCELLED)

    signal.signal(signal.SIGINT, _handler)


def _write_crash_log(exc: Exception) -> str:
    """Save the current traceback under the data directory; return its path."""
    from pkcelogin.config import get_data_dir

    logs_dir = get_data_dir() / "logs"
    logs_dir.mkdir(parents=True, exist_ok=True)
    timestamp = datetime.now().strftime("%Y%m%d-%H%M%S")
    log_path = logs_dir / f"crash-{timestamp}.log"
    log_path.write_text(traceback.format_exc())
    return str(log_path)


def main() -> None:
    """Run the CLI and map whatever escapes it to an exit code.

    Raises:
        SystemExit: On every path.
    """
    _setup_signal_handlers()
    try:
        app()
    except SystemExit:
        raise
    except KeyboardInterrupt:
        sys.stderr.write("\nCancelled.\n")
        sys.exit(EXIT_CANCELLED)
    except Exception as exc:
        from pkcelogin.exceptions import PkceLoginError
        from pkcelogin.output import error

        if isinstance(exc, PkceLoginError):
            error(str(exc))
            sys.exit(exc.exit_code)
        else:
            log_path = _write_crash_log(exc)
            error(f"Unexpected error. Debug log: {log_path}")
            sys.exit(EXIT_GENERIC_FAILURE)
