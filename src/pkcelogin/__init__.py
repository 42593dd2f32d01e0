"""pkcelogin -- Obtain OAuth 2.0 access tokens via a loopback PKCE login.

This package runs the OAuth 2.0 Authorization Code grant with PKCE
(:rfc:`6749`, :rfc:`7636`) from a terminal: it builds the authorization URL,
catches the browser's redirect on a short-lived ``127.0.0.1`` listener, and
exchanges the authorization code for tokens.

Typical workflow::

    pkcelogin login --env-file .env --scope openid --scope offline_access

or, from Python::

    from pkcelogin.config import client_config_from_env
    from pkcelogin.oauth import login

    token = login(client_config_from_env(env), open_url=print)

Modules:
    app: Typer application factory and CLI entry point.
    models: Pydantic models shared across the entire package.
    config: Env-file parsing, credential sources, and client configuration.
    exceptions: Exception hierarchy with exit-code mapping.
    exit_codes: Numeric exit codes following clig.dev conventions.
    output: stdout/stderr formatting system with Rich support.
    oauth: PKCE generation, loopback listener, flow coordinator, token exchange.
"""

__version__ = "0.1.0"
