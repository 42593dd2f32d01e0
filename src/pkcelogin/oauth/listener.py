"""Loopback HTTP listener that captures the authorization redirect.

:class:`RedirectListener` binds ``127.0.0.1:<port>`` (or another loopback
address), serves the registered callback path on a background thread, and
publishes the first authentic callback into a
:class:`~pkcelogin.oauth.outcome.RedirectOutcome`.

Nothing received on the socket is trusted until its ``state`` matches the
session's. Callbacks with a missing or wrong state get a 400 and the listener
keeps going, so a stray or forged redirect cannot end the login. Unrelated
paths (``/favicon.ico``, port scanners) get a 404. Response bodies are static
and never contain the code, the state, or any token.

Lifecycle::

    listener = RedirectListener(port=0, callback_path="/auth/callback")
    port = listener.bind()              # BindError if the port is taken
    listener.start(expected_state=session.state)
    outcome.wait(timeout)               # in the coordinator
    listener.stop()
"""

from __future__ import annotations

import enum
import hmac
import logging
import socket
import socketserver
import threading
from http.server import BaseHTTPRequestHandler, ThreadingHTTPServer
from typing import Any, Optional
from urllib.parse import parse_qs, urlsplit

from pkcelogin.exceptions import BindError, FlowError
from pkcelogin.models import DEFAULT_CALLBACK_PATH
from pkcelogin.oauth.outcome import RedirectOutcome

logger = logging.getLogger(__name__)

_PAGE = "<html><head><title>{title}</title></head><body><h2>{title}</h2><p>{text}</p></body></html>"

SUCCESS_PAGE = _PAGE.format(
    title="Authorization successful",
    text="You can close this window and return to the terminal.",
)
STATE_MISMATCH_PAGE = _PAGE.format(
    title="Invalid callback",
    text="The state parameter is missing or does not match this login. "
    "Start the login again from the terminal if this keeps happening.",
)
MISSING_CODE_PAGE = _PAGE.format(
    title="Invalid callback",
    text="No authorization code was received.",
)
DENIED_PAGE = _PAGE.format(
    title="Authorization failed",
    text="The identity provider reported an error. Details are shown in the terminal.",
)
NOT_FOUND_PAGE = _PAGE.format(title="Not found", text="")
GONE_PAGE = _PAGE.format(
    title="Login no longer in progress",
    text="This login has already finished or was cancelled.",
)


class ListenerState(str, enum.Enum):
    """Lifecycle of a :class:`RedirectListener`."""

    IDLE = "idle"
    BOUND = "bound"
    LISTENING = "listening"
    DONE = "done"


class _CallbackServer(ThreadingHTTPServer):
    """HTTP server carrying a back-reference to its listener.

    Each connection is served on its own daemon thread, so an idle socket
    (a browser preconnect, a port scanner) cannot hold up the redirect.
    """

    listener: "RedirectListener"
    # Another process must not be able to share the redirect port.
    allow_reuse_port = False

    def server_bind(self) -> None:
        # Skip HTTPServer's reverse DNS lookup of the bind address.
        socketserver.TCPServer.server_bind(self)
        host, port = self.server_address[:2]
        self.server_name = str(host)
        self.server_port = port

    def handle_error(self, request: Any, client_address: Any) -> None:
        logger.exception("Unhandled error while serving a loopback request")


class _CallbackServer6(_CallbackServer):
    address_family = socket.AF_INET6


class _CallbackHandler(BaseHTTPRequestHandler):
    """Routes each request to :meth:`RedirectListener._handle_get`."""

    server: _CallbackServer
    server_version = "pkcelogin"
    sys_version = ""
    # Drop connections that never send a request line.
    timeout = 5
    error_message_format = _PAGE.format(title="Error %(code)d", text="")
    error_content_type = "text/html; charset=utf-8"

    def do_GET(self) -> None:
        self.server.listener._handle_get(self)

    def _method_not_allowed(self) -> None:
        self.send_error(405)

    do_POST = do_PUT = do_PATCH = do_DELETE = do_HEAD = do_OPTIONS = _method_not_allowed

    def respond(self, status: int, body: str) -> None:
        payload = body.encode("utf-8")
        self.send_response(status)
        self.send_header("Content-Type", "text/html; charset=utf-8")
        self.send_header("Content-Length", str(len(payload)))
        self.send_header("Cache-Control", "no-store")
        self.send_header("Connection", "close")
        self.end_headers()
        self.wfile.write(payload)

    def log_request(self, code: Any = "-", size: Any = "-") -> None:
        # The request line carries the code and state; log the path only.
        path = urlsplit(getattr(self, "path", "")).path
        logger.debug("%s %s -> %s", getattr(self, "command", "-"), path, code)

    def log_message(self, format: str, *args: Any) -> None:
        # Suppress default logging
        pass


class RedirectListener:
    """Serve the OAuth callback on a loopback port until one outcome is published.

    Args:
        host: Loopback address to bind.
        port: Port to bind; ``0`` lets the OS choose (see :attr:`port`).
        callback_path: Path the provider redirects to.
        outcome: Slot to publish into. A fresh one is created if omitted.
        poll_interval: Seconds between checks of the stop flag while no
            connection is pending.
    """

    def __init__(
        self,
        host: str = "127.0.0.1",
        port: int = 0,
        callback_path: str = DEFAULT_CALLBACK_PATH,
        outcome: Optional[RedirectOutcome] = None,
        poll_interval: float = 0.25,
    ) -> None:
        self.host = host
        self.callback_path = callback_path
        self.outcome = outcome if outcome is not None else RedirectOutcome()
        self._requested_port = port
        self._poll_interval = poll_interval
        self._server: Optional[_CallbackServer] = None
        self._thread: Optional[threading.Thread] = None
        self._expected_state: Optional[bytes] = None
        self._stop = threading.Event()
        self._done = threading.Event()
        self._state = ListenerState.IDLE

    def __enter__(self) -> "RedirectListener":
        self.bind()
        return self

    def __exit__(self, *exc_info: Any) -> None:
        self.stop()

    @property
    def state(self) -> ListenerState:
        return self._state

    @property
    def port(self) -> int:
        """The bound port. Only meaningful after :meth:`bind`."""
        if self._server is None:
            return self._requested_port
        return self._server.server_port

    def bind(self) -> int:
        """Bind the loopback socket.

        Returns:
            The bound port (the OS-assigned one when ``port=0`` was given).

        Raises:
            BindError: If the address is in use, not permitted, or cannot
                be resolved.
            FlowError: If the listener is already bound.
        """
        if self._state is not ListenerState.IDLE:
            raise FlowError("Redirect listener is already bound")
        server_cls = _CallbackServer6 if ":" in self.host else _CallbackServer
        try:
            server = server_cls((self.host, self._requested_port), _CallbackHandler)
        except OSError as exc:
            raise BindError(
                f"Cannot listen on {self.host}:{self._requested_port} for the "
                f"OAuth redirect: {exc.strerror or exc}",
                port=self._requested_port,
            ) from exc
        server.timeout = self._poll_interval
        server.listener = self
        self._server = server
        self._state = ListenerState.BOUND
        logger.debug("Redirect listener bound on %s:%d", self.host, self.port)
        return self.port

    def start(self, expected_state: str) -> None:
        """Start the accept loop on a daemon thread.

        Args:
            expected_state: The session's CSRF state; only callbacks
                carrying exactly this value are accepted.

        Raises:
            FlowError: If the listener is not bound or already started.
        """
        if self._stop.is_set():
            # Stopped between bind() and start(); the caller sees the closed outcome.
            return
        if self._state is not ListenerState.BOUND or self._server is None:
            raise FlowError("Redirect listener must be bound before it is started")
        self._expected_state = expected_state.encode("utf-8")
        self._state = ListenerState.LISTENING
        self._thread = threading.Thread(
            target=self._serve, name="pkcelogin-redirect-listener", daemon=True
        )
        self._thread.start()

    def stop(self, timeout: Optional[float] = 5.0) -> None:
        """Stop accepting connections and release the socket.

        Safe to call from any thread, more than once, and before
        :meth:`start`.
        """
        self._stop.set()
        thread = self._thread
        if thread is not None and thread is not threading.current_thread():
            thread.join(timeout)
        elif thread is None and self._server is not None:
            self._server.server_close()
            self._state = ListenerState.DONE
            self._done.set()

    def wait_done(self, timeout: Optional[float] = None) -> bool:
        """Block until the accept loop has exited."""
        return self._done.wait(timeout)

    # ------------------------------------------------------------------
    # Accept loop
    # ------------------------------------------------------------------

    def _serve(self) -> None:
        assert self._server is not None
        try:
            while (
                not self._stop.is_set()
                and self.outcome.is_pending
                and not self.outcome.is_closed
            ):
                self._server.handle_request()
        finally:
            self._server.server_close()
            self._state = ListenerState.DONE
            self._done.set()
            logger.debug("Redirect listener stopped (outcome: %s)", self.outcome.kind.value)

    def _handle_get(self, handler: _CallbackHandler) -> None:
        parsed = urlsplit(handler.path)
        if parsed.path != self.callback_path:
            handler.respond(404, NOT_FOUND_PAGE)
            return

        params = parse_qs(parsed.query, keep_blank_values=True)
        state = _single(params, "state")
        if state is None or not self._state_matches(state):
            logger.warning(
                "Ignored a callback with a %s state parameter",
                "missing" if state is None else "mismatched",
            )
            handler.respond(400, STATE_MISMATCH_PAGE)
            return

        code = _single(params, "code")
        error = _single(params, "error")
        if code:
            if self.outcome.set_code(code):
                logger.debug("Authorization code received")
                handler.respond(200, SUCCESS_PAGE)
            else:
                handler.respond(410, GONE_PAGE)
        elif error:
            description = _single(params, "error_description")
            if description:
                logger.debug("Provider error description: %s", description)
            if self.outcome.reject(error):
                handler.respond(400, DENIED_PAGE)
            else:
                handler.respond(410, GONE_PAGE)
        else:
            logger.warning("Ignored a callback without an authorization code")
            handler.respond(400, MISSING_CODE_PAGE)

    def _state_matches(self, received: str) -> bool:
        assert self._expected_state is not None
        return hmac.compare_digest(received.encode("utf-8"), self._expected_state)


def _single(params: dict[str, list[str]], name: str) -> Optional[str]:
    """Return the only value of *name*, or ``None`` if absent or repeated."""
    values = params.get(name)
    if not values or len(values) != 1:
        return None
    return values[0]
