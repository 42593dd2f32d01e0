"""Authorization session creation and authorization URL construction.

:func:`new_session` binds a :class:`~pkcelogin.models.ClientConfig` to a
concrete redirect URI and fresh PKCE/state secrets. :func:`build_authorization_url`
turns that session into the URL the user opens in their browser. Both are
pure: nothing here touches the network.
"""

from __future__ import annotations

from typing import Mapping, Optional, Sequence
from urllib.parse import parse_qsl, urlencode, urlparse, urlunparse

from pkcelogin.models import AuthorizationSession, ClientConfig
from pkcelogin.oauth.pkce import CHALLENGE_METHOD, generate_pkce_pair, generate_state

_PROTOCOL_PARAMS = frozenset(
    {
        "response_type",
        "client_id",
        "redirect_uri",
        "scope",
        "state",
        "code_challenge",
        "code_challenge_method",
    }
)


def new_session(config: ClientConfig, redirect_uri: str) -> AuthorizationSession:
    """Create the immutable session for one login.

    Args:
        config: Validated client configuration.
        redirect_uri: The exact redirect URI the listener serves. Must be
            the same string later sent to the token endpoint.

    Returns:
        A new :class:`~pkcelogin.models.AuthorizationSession` with a fresh
        verifier, its derived challenge, and an independent state token.
    """
    code_verifier, code_challenge = generate_pkce_pair()
    return AuthorizationSession(
        client_id=config.client_id,
        client_secret=config.client_secret,
        redirect_uri=redirect_uri,
        authorization_endpoint=config.authorization_url,
        token_endpoint=config.token_url,
        scopes=tuple(config.scopes),
        state=generate_state(),
        code_verifier=code_verifier,
        code_challenge=code_challenge,
    )


def join_scopes(scopes: Sequence[str]) -> str:
    """Space-join *scopes*, dropping blanks and repeats but keeping order."""
    seen: dict[str, None] = {}
    for scope in scopes:
        scope = scope.strip()
        if scope:
            seen.setdefault(scope, None)
    return " ".join(seen)


def build_authorization_url(
    session: AuthorizationSession,
    extra_params: Optional[Mapping[str, str]] = None,
) -> str:
    """Build the provider authorization URL for *session*.

    Query parameters already present on the authorization endpoint are
    kept. *extra_params* (``prompt``, ``login_hint``, ``domain_hint``, ...)
    are appended, but cannot replace any of the protocol parameters.

    Args:
        session: The session whose state and challenge go into the URL.
        extra_params: Optional provider-specific parameters.

    Returns:
        The fully-formed authorization URL.

    Raises:
        ValueError: If *extra_params* tries to set a protocol parameter.
    """
    params: dict[str, str] = {
        "response_type": "code",
        "client_id": session.client_id,
        "redirect_uri": session.redirect_uri,
    }
    scope = join_scopes(session.scopes)
    if scope:
        params["scope"] = scope
    params["state"] = session.state
    params["code_challenge"] = session.code_challenge
    params["code_challenge_method"] = CHALLENGE_METHOD

    if extra_params:
        clashing = sorted(_PROTOCOL_PARAMS.intersection(extra_params))
        if clashing:
            raise ValueError(
                f"Cannot override protocol parameters: {', '.join(clashing)}"
            )
        params.update(extra_params)

    parsed = urlparse(session.authorization_endpoint)
    existing = [
        (key, value)
        for key, value in parse_qsl(parsed.query, keep_blank_values=True)
        if key not in params
    ]
    query = urlencode(existing + list(params.items()))
    return urlunparse(parsed._replace(query=query))
