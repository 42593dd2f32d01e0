"""Canonical Pydantic models shared across all pkcelogin modules.

This is the single source of truth for data shapes in the project. The
models fall into two groups:

**Configuration** -- built by :mod:`pkcelogin.config` from CLI flags,
environment variables, and env files, then handed to the coordinator:
    :class:`ClientConfig`.

**Flow data** -- created during a login and never mutated afterwards:
    :class:`AuthorizationSession` and :class:`TokenResponse`.

All models use Pydantic v2. Flow data models are ``frozen``; secret-bearing
fields are excluded from ``repr`` so that tracebacks and debug output never
show them.
"""

from __future__ import annotations

from typing import Any, Optional
from urllib.parse import urlparse

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

DEFAULT_AUTHORITY = "https://login.microsoftonline.com/common/oauth2/v2.0"
"""Authority used when neither a tenant nor an explicit base URL is configured."""

DEFAULT_CALLBACK_PATH = "/auth/callback"
"""Path the loopback listener serves the redirect on."""

DEFAULT_CALLBACK_TIMEOUT = 300.0
"""Seconds to wait for the browser redirect before giving up."""

LOOPBACK_HOSTS = ("127.0.0.1", "localhost", "::1")
"""Hosts the redirect listener is allowed to bind to."""


def _check_http_url(value: str, field_name: str) -> str:
    parsed = urlparse(value)
    if parsed.scheme not in ("http", "https") or not parsed.netloc:
        raise ValueError(f"{field_name} must be an absolute http(s) URL, got {value!r}")
    return value


# --- Configuration ---


class ClientConfig(BaseModel):
    """Everything the coordinator needs to run one login.

    The coordinator never reads environment variables itself; callers build
    this struct (usually through :func:`pkcelogin.config.client_config_from_env`)
    and pass it in.

    Endpoints default to ``<authority>/authorize`` and ``<authority>/token``,
    matching the Microsoft identity platform v2.0 layout. Either can be
    overridden for providers with a different layout.

    Example::

        ClientConfig(
            client_id="0f1e...",
            client_secret="s3cr3t",
            authority="https://login.microsoftonline.com/my-tenant/oauth2/v2.0",
            scopes=["openid", "offline_access"],
            redirect_port=8400,
        )
    """

    client_id: str = Field(min_length=1, description="OAuth client identifier")
    client_secret: Optional[str] = Field(
        default=None,
        repr=False,
        description="Client secret; None for public clients",
    )
    authority: str = Field(
        default=DEFAULT_AUTHORITY,
        description="Base URL the authorize and token endpoints hang off",
    )
    authorization_endpoint: Optional[str] = Field(
        default=None, description="Explicit authorization endpoint override"
    )
    token_endpoint: Optional[str] = Field(
        default=None, description="Explicit token endpoint override"
    )
    scopes: list[str] = Field(default_factory=list)
    redirect_uri: Optional[str] = Field(
        default=None,
        description="Registered redirect URI; sets host, port and path when given",
    )
    redirect_host: str = Field(
        default="127.0.0.1", description="Loopback host for the redirect listener"
    )
    redirect_port: int = Field(
        default=0, ge=0, le=65535, description="Redirect port; 0 picks a free one"
    )
    callback_path: str = Field(default=DEFAULT_CALLBACK_PATH)
    callback_timeout: Optional[float] = Field(
        default=DEFAULT_CALLBACK_TIMEOUT,
        gt=0,
        description="Seconds to wait for the redirect; None waits forever",
    )
    http_timeout: float = Field(
        default=30.0, gt=0, description="Token request timeout in seconds"
    )
    verify_ssl: bool = Field(default=True, description="Verify TLS certificates")

    @model_validator(mode="before")
    @classmethod
    def _split_redirect_uri(cls, data: Any) -> Any:
        if not isinstance(data, dict) or not data.get("redirect_uri"):
            return data
        uri = data["redirect_uri"]
        parsed = urlparse(uri)
        if parsed.scheme != "http" or not parsed.hostname:
            raise ValueError(f"redirect_uri must be an http:// loopback URI, got {uri!r}")
        if parsed.query or parsed.fragment:
            raise ValueError("redirect_uri must not carry a query or fragment")
        port = 80 if parsed.port is None else parsed.port
        if port == 0:
            raise ValueError("redirect_uri must name a concrete port")
        return {
            **data,
            "redirect_host": parsed.hostname,
            "redirect_port": port,
            "callback_path": parsed.path or "/",
        }

    @field_validator("client_id")
    @classmethod
    def _strip_client_id(cls, value: str) -> str:
        value = value.strip()
        if not value:
            raise ValueError("client_id must not be blank")
        return value

    @field_validator("client_secret")
    @classmethod
    def _reject_blank_secret(cls, value: Optional[str]) -> Optional[str]:
        if value is not None and not value.strip():
            raise ValueError("client_secret must not be blank when provided")
        return value

    @field_validator("authority")
    @classmethod
    def _check_authority(cls, value: str) -> str:
        return _check_http_url(value, "authority").rstrip("/")

    @field_validator("authorization_endpoint", "token_endpoint")
    @classmethod
    def _check_endpoint(cls, value: Optional[str]) -> Optional[str]:
        if value is None:
            return None
        return _check_http_url(value, "endpoint")

    @field_validator("redirect_host")
    @classmethod
    def _check_loopback(cls, value: str) -> str:
        host = value.strip("[]")
        if host not in LOOPBACK_HOSTS:
            raise ValueError(
                f"redirect_host must be a loopback address "
                f"({', '.join(LOOPBACK_HOSTS)}), got {value!r}"
            )
        return host

    @field_validator("callback_path")
    @classmethod
    def _normalize_path(cls, value: str) -> str:
        value = value.strip()
        if not value or any(c in value for c in "?# "):
            raise ValueError(f"callback_path must be a plain URL path, got {value!r}")
        if not value.startswith("/"):
            value = "/" + value
        return value

    @property
    def authorization_url(self) -> str:
        """The provider's authorization endpoint."""
        return self.authorization_endpoint or f"{self.authority}/authorize"

    @property
    def token_url(self) -> str:
        """The provider's token endpoint."""
        return self.token_endpoint or f"{self.authority}/token"

    def redirect_uri_for(self, port: int) -> str:
        """Return the redirect URI for a listener bound on *port*.

        A configured ``redirect_uri`` is returned verbatim, because
        providers compare redirect URIs as exact strings.
        """
        if self.redirect_uri:
            return self.redirect_uri
        host = f"[{self.redirect_host}]" if ":" in self.redirect_host else self.redirect_host
        return f"http://{host}:{port}{self.callback_path}"


# --- Flow data ---


class AuthorizationSession(BaseModel):
    """Per-login protocol state, created once and never mutated.

    ``code_challenge`` is derived from ``code_verifier`` when the session is
    created (see :func:`pkcelogin.oauth.authorize.new_session`); the verifier
    itself is only sent to the token endpoint.
    """

    model_config = ConfigDict(frozen=True)

    client_id: str
    client_secret: Optional[str] = Field(default=None, repr=False)
    redirect_uri: str
    authorization_endpoint: str
    token_endpoint: str
    scopes: tuple[str, ...] = ()
    state: str = Field(repr=False)
    code_verifier: str = Field(repr=False)
    code_challenge: str


class TokenResponse(BaseModel):
    """Normalized token endpoint response.

    ``expires_in`` is ``None`` when the provider did not declare a lifetime.
    Provider-specific fields (``id_token``, ``ext_expires_in``, ...) are kept
    and reachable through ``model_extra``.
    """

    model_config = ConfigDict(frozen=True, extra="allow")

    access_token: str = Field(min_length=1, repr=False)
    token_type: str = "Bearer"
    expires_in: Optional[int] = Field(default=None, ge=0)
    refresh_token: Optional[str] = Field(default=None, repr=False)
    scope: Optional[str] = None

    @property
    def granted_scopes(self) -> list[str]:
        """The granted scope string split into individual scopes."""
        return self.scope.split() if self.scope else []

    def summary(self) -> dict[str, object]:
        """Return the non-secret fields, for display."""
        return {
            "token_type": self.token_type,
            "expires_in": self.expires_in,
            "scope": self.scope,
            "has_refresh_token": self.refresh_token is not None,
        }
