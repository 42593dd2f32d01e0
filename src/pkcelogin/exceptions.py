"""Exception hierarchy for pkcelogin.

All exceptions inherit from :class:`PkceLoginError`, which carries an
``exit_code`` attribute mapped to a constant from :mod:`pkcelogin.exit_codes`.
The top-level error handler in :func:`pkcelogin.app.main` catches
``PkceLoginError`` and exits with the appropriate code, while unexpected
exceptions produce a crash log and exit with :data:`EXIT_GENERIC_FAILURE`.

Subclass hierarchy::

    PkceLoginError            (exit 1)
    +-- ConfigurationError    (exit 2)
    +-- FlowError             (exit 1)
    |   +-- BindError         (exit 8)
    |   +-- RedirectRejected  (exit 3)
    |   +-- FlowTimeout       (exit 9)
    |   +-- FlowCancelled     (exit 130)
    +-- ExchangeError         (exit 3)
        +-- TransportError        (exit 6)
        +-- ProviderError         (exit 3)
        +-- MalformedResponse     (exit 5)
        +-- CodeAlreadyUsedError  (exit 3)
"""

from __future__ import annotations

from typing import Optional

from pkcelogin.exit_codes import (
    EXIT_AUTH_FAILURE,
    EXIT_BIND_FAILURE,
    EXIT_CANCELLED,
    EXIT_CONNECTION_ERROR,
    EXIT_GENERIC_FAILURE,
    EXIT_INVALID_USAGE,
    EXIT_MALFORMED_RESPONSE,
    EXIT_TIMEOUT,
)


class PkceLoginError(Exception):
    """Base exception for all pkcelogin errors.

    Every subclass sets a class-level ``exit_code`` corresponding to one of
    the constants in :mod:`pkcelogin.exit_codes`. The entry point catches
    this exception type and calls ``sys.exit(exc.exit_code)``.

    Args:
        message: Human-readable error description printed to stderr.
        exit_code: Optional override for the class-level exit code.
    """

    exit_code: int = EXIT_GENERIC_FAILURE

    def __init__(self, message: str, exit_code: int | None = None):
        super().__init__(message)
        if exit_code is not None:
            self.exit_code = exit_code


class ConfigurationError(PkceLoginError):
    """Raised for missing or invalid client id, secret, base URL, or redirect URI.

    Always raised before any socket is bound or request is sent.
    """

    exit_code = EXIT_INVALID_USAGE


# --- Flow errors ---


class FlowError(PkceLoginError):
    """Raised when the login flow cannot complete, or is driven incorrectly."""


class BindError(FlowError):
    """Raised when the loopback redirect port cannot be bound.

    Surfaces before the authorization URL is shown to the user, since the
    provider would redirect to an endpoint nobody is listening on.
    """

    exit_code = EXIT_BIND_FAILURE

    def __init__(self, message: str, port: int | None = None):
        super().__init__(message)
        self.port = port


class RedirectRejected(FlowError):
    """Raised when the provider redirected back with an OAuth error.

    Only callbacks carrying the correct ``state`` end the flow this way.
    Callbacks with a missing or mismatched state are answered with a 400
    and otherwise ignored by the listener.
    """

    exit_code = EXIT_AUTH_FAILURE

    def __init__(self, reason: str):
        super().__init__(f"Authorization was rejected: {reason}")
        self.reason = reason


class FlowTimeout(FlowError):
    """Raised when no valid redirect arrived before the callback deadline."""

    exit_code = EXIT_TIMEOUT

    def __init__(self, timeout: float):
        super().__init__(
            f"No authorization callback received within {timeout:g} seconds"
        )
        self.timeout = timeout


class FlowCancelled(FlowError):
    """Raised when the flow is cancelled while waiting for the redirect."""

    exit_code = EXIT_CANCELLED


# --- Token exchange errors ---


class ExchangeError(PkceLoginError):
    """Base class for failures while redeeming a code or refresh token."""

    exit_code = EXIT_AUTH_FAILURE


class TransportError(ExchangeError):
    """Raised on network-level failures talking to the token endpoint."""

    exit_code = EXIT_CONNECTION_ERROR


class ProviderError(ExchangeError):
    """Raised when the token endpoint answers with a non-success status.

    Args:
        status_code: HTTP status returned by the token endpoint.
        error: The OAuth ``error`` code (e.g. ``"invalid_grant"``), or
            ``None`` when the body was not an OAuth error document.
        error_description: The provider's ``error_description``, if any.
    """

    def __init__(
        self,
        status_code: int,
        error: Optional[str] = None,
        error_description: Optional[str] = None,
    ):
        message = f"Token endpoint returned HTTP {status_code}"
        if error:
            message += f": {error}"
            if error_description:
                message += f" - {error_description}"
        elif error_description:
            message += f": {error_description}"
        super().__init__(message)
        self.status_code = status_code
        self.error = error
        self.error_description = error_description


class MalformedResponse(ExchangeError):
    """Raised when a successful token response cannot be parsed."""

    exit_code = EXIT_MALFORMED_RESPONSE


class CodeAlreadyUsedError(ExchangeError):
    """Raised when an authorization code is redeemed a second time locally."""
