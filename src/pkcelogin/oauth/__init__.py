"""Loopback OAuth 2.0 Authorization Code + PKCE flow.

Implements the client side of :rfc:`6749` section 4.1 with :rfc:`7636`
PKCE and an :rfc:`8252` loopback redirect:

- :mod:`~pkcelogin.oauth.pkce` -- verifier, S256 challenge, and state tokens.
- :mod:`~pkcelogin.oauth.authorize` -- session creation and the authorization URL.
- :mod:`~pkcelogin.oauth.outcome` -- write-once slot shared between threads.
- :mod:`~pkcelogin.oauth.listener` -- the ``127.0.0.1`` redirect endpoint.
- :mod:`~pkcelogin.oauth.exchange` -- token endpoint client.
- :mod:`~pkcelogin.oauth.coordinator` -- the state machine tying them together.

Typical usage::

    from pkcelogin.oauth import login

    token = login(config, open_url=print)
    print(token.access_token)
"""

from pkcelogin.oauth.authorize import build_authorization_url, new_session
from pkcelogin.oauth.coordinator import FlowCoordinator, FlowState, login
from pkcelogin.oauth.exchange import TokenExchanger
from pkcelogin.oauth.listener import RedirectListener
from pkcelogin.oauth.outcome import OutcomeKind, RedirectOutcome
from pkcelogin.oauth.pkce import compute_challenge, generate_pkce_pair, generate_state

__all__ = [
    "FlowCoordinator",
    "FlowState",
    "OutcomeKind",
    "RedirectListener",
    "RedirectOutcome",
    "TokenExchanger",
    "build_authorization_url",
    "compute_challenge",
    "generate_pkce_pair",
    "generate_state",
    "login",
    "new_session",
]
