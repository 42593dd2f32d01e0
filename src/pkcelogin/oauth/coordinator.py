"""Flow coordinator for the loopback Authorization Code + PKCE login.

:class:`FlowCoordinator` sequences one login::

    Idle -> UrlIssued -> AwaitingRedirect -> CodeReceived -> Exchanging -> Authenticated
                                          -> Rejected     -> Failed
                                          -> TimedOut     -> Failed
                                          -> Cancelled    -> Failed
         -> ListenerBindFailed -> Failed

The redirect listener is bound before the authorization URL is built, so a
taken port is reported before the user is sent to the browser. The caller's
thread then blocks on the shared :class:`~pkcelogin.oauth.outcome.RedirectOutcome`
until the listener thread publishes, the deadline passes, or :meth:`cancel`
is called from another thread.

:func:`login` is the one-call entry point most callers want.
"""

from __future__ import annotations

import enum
import logging
import threading
from typing import Callable, Mapping, Optional

from pkcelogin.exceptions import (
    BindError,
    FlowCancelled,
    FlowError,
    FlowTimeout,
    RedirectRejected,
)
from pkcelogin.models import AuthorizationSession, ClientConfig, TokenResponse
from pkcelogin.oauth.authorize import build_authorization_url, new_session
from pkcelogin.oauth.exchange import TokenExchanger
from pkcelogin.oauth.listener import RedirectListener
from pkcelogin.oauth.outcome import OutcomeKind, RedirectOutcome

logger = logging.getLogger(__name__)

UrlHandler = Callable[[str], object]
"""Callback that presents the authorization URL to the user."""


class FlowState(str, enum.Enum):
    """States of a :class:`FlowCoordinator`."""

    IDLE = "idle"
    URL_ISSUED = "url_issued"
    AWAITING_REDIRECT = "awaiting_redirect"
    CODE_RECEIVED = "code_received"
    EXCHANGING = "exchanging"
    AUTHENTICATED = "authenticated"
    REJECTED = "rejected"
    LISTENER_BIND_FAILED = "listener_bind_failed"
    TIMED_OUT = "timed_out"
    CANCELLED = "cancelled"
    FAILED = "failed"


TERMINAL_STATES = frozenset({FlowState.AUTHENTICATED, FlowState.FAILED})


class FlowCoordinator:
    """Run exactly one Authorization Code + PKCE login.

    Args:
        config: Validated client configuration.
        exchanger: Token endpoint client. Defaults to one built from the
            config's HTTP settings.
        extra_auth_params: Provider-specific authorization parameters
            (``prompt``, ``login_hint``, ...).
        poll_interval: How often the listener thread checks for
            cancellation while idle.
    """

    def __init__(
        self,
        config: ClientConfig,
        exchanger: Optional[TokenExchanger] = None,
        extra_auth_params: Optional[Mapping[str, str]] = None,
        poll_interval: float = 0.25,
    ) -> None:
        self._config = config
        self._exchanger = exchanger or TokenExchanger(
            timeout=config.http_timeout, verify_ssl=config.verify_ssl
        )
        self._extra_auth_params = dict(extra_auth_params or {})
        self._outcome = RedirectOutcome()
        self._listener = RedirectListener(
            host=config.redirect_host,
            port=config.redirect_port,
            callback_path=config.callback_path,
            outcome=self._outcome,
            poll_interval=poll_interval,
        )
        self._state = FlowState.IDLE
        self._history: list[FlowState] = [FlowState.IDLE]
        self._state_lock = threading.Lock()
        self._started = False
        self._cancelled = threading.Event()
        self._session: Optional[AuthorizationSession] = None
        self._authorization_url: Optional[str] = None

    @property
    def state(self) -> FlowState:
        with self._state_lock:
            return self._state

    @property
    def history(self) -> list[FlowState]:
        """Every state the flow has passed through, in order."""
        with self._state_lock:
            return list(self._history)

    @property
    def outcome(self) -> RedirectOutcome:
        return self._outcome

    @property
    def session(self) -> Optional[AuthorizationSession]:
        """The session, once the URL has been issued."""
        return self._session

    @property
    def authorization_url(self) -> Optional[str]:
        return self._authorization_url

    def run(self, open_url: UrlHandler) -> TokenResponse:
        """Drive the flow to completion.

        The wait for the redirect is bounded by ``config.callback_timeout``
        (``None`` waits until :meth:`cancel`).

        Args:
            open_url: Called once with the authorization URL (print it, open
                a browser, ...). Runs on the caller's thread after the
                listener is already accepting connections.

        Returns:
            The token response from the provider.

        Raises:
            BindError: If the redirect port cannot be bound. ``open_url`` is
                not called in that case.
            RedirectRejected: If the provider redirected back with an error.
            FlowTimeout: If no authentic redirect arrived in time.
            FlowCancelled: If :meth:`cancel` was called while waiting.
            ExchangeError: If redeeming the code failed (see
                :mod:`pkcelogin.oauth.exchange`).
            FlowError: If this coordinator has already been run.
        """
        with self._state_lock:
            if self._started:
                raise FlowError("A FlowCoordinator runs a single login; create a new one")
            self._started = True

        try:
            if self._cancelled.is_set():
                raise FlowCancelled("Login was cancelled before it started")
            try:
                port = self._listener.bind()
            except BindError:
                self._transition(FlowState.LISTENER_BIND_FAILED)
                raise

            session = new_session(self._config, self._config.redirect_uri_for(port))
            self._session = session
            self._authorization_url = build_authorization_url(
                session, self._extra_auth_params
            )
            self._transition(FlowState.URL_ISSUED)
            self._listener.start(expected_state=session.state)

            self._transition(FlowState.AWAITING_REDIRECT)
            open_url(self._authorization_url)
            code = self._await_code(self._config.callback_timeout)

            self._transition(FlowState.EXCHANGING)
            token = self._exchanger.exchange_code(session, code)
        except BaseException:
            self._transition(FlowState.FAILED)
            raise
        finally:
            self._listener.stop()

        self._transition(FlowState.AUTHENTICATED)
        logger.debug("Login complete (expires_in=%s)", token.expires_in)
        return token

    def cancel(self) -> None:
        """Abort the flow from another thread.

        A blocked :meth:`run` raises :class:`~pkcelogin.exceptions.FlowCancelled`.
        Has no effect once the redirect has been received.
        """
        self._cancelled.set()
        self._outcome.close()
        self._listener.stop(timeout=0)

    def _await_code(self, timeout: Optional[float]) -> str:
        published = self._outcome.wait(timeout)
        if not published:
            if self._cancelled.is_set():
                self._transition(FlowState.CANCELLED)
                raise FlowCancelled("Login was cancelled while waiting for the redirect")
            # Refuse a redirect that lands between the deadline and shutdown.
            self._outcome.close()
            if self._outcome.is_pending:
                self._transition(FlowState.TIMED_OUT)
                assert timeout is not None
                raise FlowTimeout(timeout)

        if self._outcome.kind is OutcomeKind.REJECTED:
            self._transition(FlowState.REJECTED)
            raise RedirectRejected(self._outcome.reason or "unknown error")

        self._transition(FlowState.CODE_RECEIVED)
        code = self._outcome.code
        assert code is not None
        return code

    def _transition(self, new_state: FlowState) -> None:
        with self._state_lock:
            if self._state in TERMINAL_STATES:
                return
            logger.debug("Flow state %s -> %s", self._state.value, new_state.value)
            self._state = new_state
            self._history.append(new_state)


def login(
    config: ClientConfig,
    open_url: Optional[UrlHandler] = None,
    extra_auth_params: Optional[Mapping[str, str]] = None,
    exchanger: Optional[TokenExchanger] = None,
) -> TokenResponse:
    """Run a full loopback login and return the provider's token response.

    Args:
        config: Validated client configuration. ``callback_timeout`` bounds
            the wait for the browser redirect.
        open_url: Presents the authorization URL. Defaults to opening the
            system browser.
        extra_auth_params: Provider-specific authorization parameters.
        exchanger: Optional pre-built token exchanger.

    Raises:
        PkceLoginError: Any of the typed errors documented on
            :meth:`FlowCoordinator.run`.
    """
    if open_url is None:
        import webbrowser

        open_url = webbrowser.open
    coordinator = FlowCoordinator(
        config, exchanger=exchanger, extra_auth_params=extra_auth_params
    )
    return coordinator.run(open_url)
