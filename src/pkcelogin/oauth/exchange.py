"""Token endpoint client: authorization-code redemption and refresh grant.

:class:`TokenExchanger` performs the form-encoded POST to the provider's
token endpoint and turns the result into a
:class:`~pkcelogin.models.TokenResponse` or one of the typed errors from
:mod:`pkcelogin.exceptions`:

* non-2xx status -> :class:`~pkcelogin.exceptions.ProviderError`
  (carrying the OAuth ``error`` / ``error_description`` when present)
* connect/read failures -> :class:`~pkcelogin.exceptions.TransportError`
* 2xx with an unusable body -> :class:`~pkcelogin.exceptions.MalformedResponse`

Requests are never retried: authorization codes are single-use, so a second
attempt with the same code fails at the provider regardless of what went
wrong locally. The exchanger also remembers which codes it has redeemed and
refuses to send one twice.
"""

from __future__ import annotations

import json
import logging
import threading
from typing import Any, Optional

import httpx
from pydantic import ValidationError

from pkcelogin.exceptions import (
    CodeAlreadyUsedError,
    MalformedResponse,
    ProviderError,
    TransportError,
)
from pkcelogin.models import AuthorizationSession, TokenResponse
from pkcelogin.oauth.authorize import join_scopes

logger = logging.getLogger(__name__)

_BODY_PREVIEW_CHARS = 200


class TokenExchanger:
    """Redeem authorization codes (and refresh tokens) at a token endpoint.

    Args:
        timeout: Request timeout in seconds.
        verify_ssl: Whether to verify the token endpoint's TLS certificate.
    """

    def __init__(self, timeout: float = 30.0, verify_ssl: bool = True) -> None:
        self._timeout = timeout
        self._verify_ssl = verify_ssl
        self._redeemed: set[str] = set()
        self._lock = threading.Lock()

    def exchange_code(self, session: AuthorizationSession, code: str) -> TokenResponse:
        """Exchange an authorization code for tokens, proving PKCE possession.

        Args:
            session: The session the code was issued for. Supplies the
                token endpoint, client credentials, the exact redirect URI,
                and the ``code_verifier``.
            code: The authorization code from the redirect.

        Returns:
            The normalized :class:`~pkcelogin.models.TokenResponse`.

        Raises:
            CodeAlreadyUsedError: If this exchanger already sent *code*.
            ProviderError: If the token endpoint answered with an error status.
            TransportError: On network failures.
            MalformedResponse: If a successful response cannot be parsed.
        """
        with self._lock:
            if code in self._redeemed:
                raise CodeAlreadyUsedError(
                    "Authorization code was already redeemed; start a new login"
                )
            self._redeemed.add(code)

        data: dict[str, str] = {
            "grant_type": "authorization_code",
            "code": code,
            "redirect_uri": session.redirect_uri,
            "client_id": session.client_id,
            "code_verifier": session.code_verifier,
        }
        if session.client_secret:
            data["client_secret"] = session.client_secret

        logger.debug("Exchanging authorization code at %s", session.token_endpoint)
        return self._post(session.token_endpoint, data)

    def refresh(
        self,
        token_endpoint: str,
        refresh_token: str,
        client_id: str,
        client_secret: Optional[str] = None,
        scopes: Optional[list[str]] = None,
    ) -> TokenResponse:
        """Run the ``refresh_token`` grant once, on explicit request.

        When the provider does not rotate the refresh token, the one passed
        in is carried over into the returned response.

        Raises:
            ProviderError: If the token endpoint answered with an error status.
            TransportError: On network failures.
            MalformedResponse: If a successful response cannot be parsed.
        """
        data: dict[str, str] = {
            "grant_type": "refresh_token",
            "refresh_token": refresh_token,
            "client_id": client_id,
        }
        if client_secret:
            data["client_secret"] = client_secret
        scope = join_scopes(scopes or [])
        if scope:
            data["scope"] = scope

        logger.debug("Refreshing access token at %s", token_endpoint)
        token = self._post(token_endpoint, data)
        if token.refresh_token is None:
            token = token.model_copy(update={"refresh_token": refresh_token})
        return token

    def _post(self, url: str, data: dict[str, str]) -> TokenResponse:
        try:
            response = httpx.post(
                url,
                data=data,
                headers={"Accept": "application/json"},
                timeout=self._timeout,
                verify=self._verify_ssl,
            )
            response.raise_for_status()
        except httpx.HTTPStatusError as exc:
            raise _provider_error(exc.response) from exc
        except httpx.HTTPError as exc:
            raise TransportError(f"Token request to {url} failed: {exc}") from exc

        return parse_token_response(response)


def parse_token_response(response: httpx.Response) -> TokenResponse:
    """Validate a 2xx token endpoint response.

    Raises:
        MalformedResponse: If the body is not a JSON object, or lacks a
            usable ``access_token``, or has an invalid ``expires_in``.
    """
    try:
        payload: Any = response.json()
    except (json.JSONDecodeError, UnicodeDecodeError, ValueError) as exc:
        raise MalformedResponse(
            f"Token endpoint returned a non-JSON body: {_preview(response)}"
        ) from exc

    if not isinstance(payload, dict):
        raise MalformedResponse(
            f"Token endpoint returned JSON {type(payload).__name__}, expected an object"
        )

    try:
        return TokenResponse.model_validate(payload)
    except ValidationError as exc:
        fields = sorted({".".join(str(p) for p in err["loc"]) for err in exc.errors()})
        raise MalformedResponse(
            f"Token response has missing or invalid fields: {', '.join(fields)}"
        ) from exc


def _provider_error(response: httpx.Response) -> ProviderError:
    """Build a :class:`ProviderError` from an error response, OAuth body or not."""
    error: Optional[str] = None
    description: Optional[str] = None
    try:
        payload = response.json()
    except (json.JSONDecodeError, UnicodeDecodeError, ValueError):
        payload = None

    if isinstance(payload, dict):
        raw_error = payload.get("error")
        raw_description = payload.get("error_description")
        if isinstance(raw_error, str):
            error = raw_error
        if isinstance(raw_description, str):
            description = raw_description
    if error is None and description is None:
        description = _preview(response) or None

    return ProviderError(response.status_code, error, description)


def _preview(response: httpx.Response) -> str:
    try:
        text = response.text
    except (UnicodeDecodeError, ValueError):
        return "<undecodable body>"
    text = text.strip()
    if len(text) > _BODY_PREVIEW_CHARS:
        text = text[:_BODY_PREVIEW_CHARS] + "..."
    return text
