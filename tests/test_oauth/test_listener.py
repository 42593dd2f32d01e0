"""Tests for the loopback redirect listener, against real sockets."""

from __future__ import annotations

import socket
import time
from http.client import HTTPConnection
from typing import Iterator

import pytest

from pkcelogin.exceptions import BindError, FlowError
from pkcelogin.oauth.listener import ListenerState, RedirectListener
from pkcelogin.oauth.outcome import OutcomeKind


def _request(port: int, path: str, method: str = "GET") -> tuple[int, str]:
    """Send a request to the listener and return (status, body)."""
    conn = HTTPConnection("127.0.0.1", port, timeout=5)
    try:
        conn.request(method, path)
        response = conn.getresponse()
        return response.status, response.read().decode("utf-8")
    finally:
        conn.close()


@pytest.fixture()
def listener() -> Iterator[RedirectListener]:
    rl = RedirectListener(port=0, callback_path="/auth/callback", poll_interval=0.05)
    rl.bind()
    rl.start(expected_state="S1")
    yield rl
    rl.stop()


class TestBind:
    def test_ephemeral_port(self) -> None:
        rl = RedirectListener(port=0)
        try:
            port = rl.bind()
            assert port > 0
            assert rl.port == port
            assert rl.state is ListenerState.BOUND
        finally:
            rl.stop()

    def test_port_in_use_raises_bind_error(self) -> None:
        blocker = socket.socket(socket.AF_INET, socket.SOCK_STREAM)
        blocker.bind(("127.0.0.1", 0))
        blocker.listen(1)
        taken = blocker.getsockname()[1]
        try:
            rl = RedirectListener(port=taken)
            with pytest.raises(BindError) as exc_info:
                rl.bind()
            assert exc_info.value.port == taken
            assert exc_info.value.exit_code == 8
            assert rl.state is ListenerState.IDLE
        finally:
            blocker.close()

    def test_double_bind_rejected(self) -> None:
        rl = RedirectListener(port=0)
        rl.bind()
        try:
            with pytest.raises(FlowError, match="already bound"):
                rl.bind()
        finally:
            rl.stop()

    def test_start_before_bind_rejected(self) -> None:
        with pytest.raises(FlowError, match="must be bound"):
            RedirectListener(port=0).start(expected_state="S1")

    def test_stop_before_start_releases_port(self) -> None:
        rl = RedirectListener(port=0)
        port = rl.bind()
        rl.stop()
        assert rl.state is ListenerState.DONE

        again = RedirectListener(port=port)
        try:
            assert again.bind() == port
        finally:
            again.stop()

    def test_context_manager(self) -> None:
        with RedirectListener(port=0) as rl:
            assert rl.state is ListenerState.BOUND
        assert rl.state is ListenerState.DONE


class TestCallbackHandling:
    def test_valid_callback_publishes_code(self, listener: RedirectListener) -> None:
        status, body = _request(listener.port, "/auth/callback?code=ABC123&state=S1")
        assert status == 200
        assert "Authorization successful" in body
        assert listener.outcome.kind is OutcomeKind.CODE_RECEIVED
        assert listener.outcome.code == "ABC123"

    def test_listener_stops_after_code(self, listener: RedirectListener) -> None:
        _request(listener.port, "/auth/callback?code=ABC123&state=S1")
        assert listener.wait_done(timeout=5)
        assert listener.state is ListenerState.DONE

    def test_body_never_echoes_secrets(self, listener: RedirectListener) -> None:
        status, body = _request(listener.port, "/auth/callback?code=ABC123&state=S1")
        assert status == 200
        assert "ABC123" not in body
        assert "S1" not in body

    def test_wrong_state_rejected_and_ignored(self, listener: RedirectListener) -> None:
        status, body = _request(listener.port, "/auth/callback?code=EVIL&state=WRONG")
        assert status == 400
        assert "EVIL" not in body
        assert listener.outcome.is_pending

        # The genuine redirect still goes through afterwards.
        status, _ = _request(listener.port, "/auth/callback?code=ABC123&state=S1")
        assert status == 200
        assert listener.outcome.code == "ABC123"

    def test_missing_state_rejected(self, listener: RedirectListener) -> None:
        status, _ = _request(listener.port, "/auth/callback?code=ABC123")
        assert status == 400
        assert listener.outcome.is_pending

    def test_repeated_state_rejected(self, listener: RedirectListener) -> None:
        status, _ = _request(listener.port, "/auth/callback?code=ABC123&state=S1&state=S1")
        assert status == 400
        assert listener.outcome.is_pending

    def test_missing_code_keeps_listening(self, listener: RedirectListener) -> None:
        status, body = _request(listener.port, "/auth/callback?state=S1")
        assert status == 400
        assert "No authorization code" in body
        assert listener.outcome.is_pending
        assert listener.state is ListenerState.LISTENING

    def test_provider_error_rejects(self, listener: RedirectListener) -> None:
        status, body = _request(
            listener.port,
            "/auth/callback?error=access_denied&error_description=User+said+no&state=S1",
        )
        assert status == 400
        assert "User said no" not in body
        assert listener.outcome.kind is OutcomeKind.REJECTED
        assert listener.outcome.reason == "access_denied"

    def test_unknown_path_is_404(self, listener: RedirectListener) -> None:
        status, _ = _request(listener.port, "/favicon.ico")
        assert status == 404
        assert listener.outcome.is_pending

    def test_non_get_is_405(self, listener: RedirectListener) -> None:
        status, _ = _request(listener.port, "/auth/callback?code=ABC123&state=S1", method="POST")
        assert status == 405
        assert listener.outcome.is_pending

    def test_malformed_request_line_is_400(self, listener: RedirectListener) -> None:
        with socket.create_connection(("127.0.0.1", listener.port), timeout=5) as sock:
            sock.sendall(b"garbage\r\n\r\n")
            reply = sock.recv(1024)
        assert b"400" in reply
        assert listener.outcome.is_pending

        status, _ = _request(listener.port, "/auth/callback?code=ABC123&state=S1")
        assert status == 200

    def test_idle_connection_does_not_block_callback(self, listener: RedirectListener) -> None:
        with socket.create_connection(("127.0.0.1", listener.port), timeout=5):
            started = time.monotonic()
            status, _ = _request(listener.port, "/auth/callback?code=ABC123&state=S1")
            elapsed = time.monotonic() - started
        assert status == 200
        assert elapsed < 2
        assert listener.outcome.code == "ABC123"

    def test_closing_outcome_ends_accept_loop(self) -> None:
        rl = RedirectListener(port=0, poll_interval=0.05)
        rl.bind()
        rl.start(expected_state="S1")
        try:
            rl.outcome.close()
            assert rl.wait_done(timeout=5)
        finally:
            rl.stop()
        assert rl.outcome.is_pending

    def test_stop_unblocks_accept_loop(self, listener: RedirectListener) -> None:
        listener.stop()
        assert listener.wait_done(timeout=5)
        assert listener.outcome.is_pending
