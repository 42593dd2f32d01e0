"""Built-in CLI sub-commands for pkcelogin.

* :mod:`~pkcelogin.commands.login` -- run the browser login and print the token.
* :mod:`~pkcelogin.commands.config` -- show the resolved client configuration.

Each module either exports a :class:`typer.Typer` sub-application (for
multi-command groups like ``config``) or a plain callback function
registered directly on the root app (for single commands like ``login``).
"""
