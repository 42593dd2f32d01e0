"""Tests for the token endpoint client."""

from __future__ import annotations

import json
from unittest.mock import MagicMock, patch

import httpx
import pytest

from pkcelogin.exceptions import (
    CodeAlreadyUsedError,
    MalformedResponse,
    ProviderError,
    TransportError,
)
from pkcelogin.models import AuthorizationSession
from pkcelogin.oauth.exchange import TokenExchanger

TOKEN_URL = "https://login.example.com/token"


def _session(client_secret: str | None = "s3cret") -> AuthorizationSession:
    return AuthorizationSession(
        client_id="app-1",
        client_secret=client_secret,
        redirect_uri="http://127.0.0.1:8400/auth/callback",
        authorization_endpoint="https://login.example.com/authorize",
        token_endpoint=TOKEN_URL,
        scopes=("openid",),
        state="S1",
        code_verifier="V" * 43,
        code_challenge="C" * 43,
    )


def _mock_response(
    payload: object = None,
    status_code: int = 200,
    text: str | None = None,
) -> MagicMock:
    """Create a mock httpx.Response; ``payload=None`` means a non-JSON body."""
    mock_response = MagicMock(spec=httpx.Response)
    mock_response.status_code = status_code
    if payload is None:
        mock_response.json.side_effect = json.JSONDecodeError("Expecting value", "", 0)
        mock_response.text = text if text is not None else "<html>oops</html>"
    else:
        mock_response.json.return_value = payload
        mock_response.text = text if text is not None else json.dumps(payload)

    if status_code >= 400:
        mock_response.raise_for_status.side_effect = httpx.HTTPStatusError(
            message=f"HTTP {status_code}",
            request=MagicMock(),
            response=mock_response,
        )
    else:
        mock_response.raise_for_status.return_value = None
    return mock_response


class TestExchangeCode:
    def test_success(self) -> None:
        response = _mock_response(
            {"access_token": "tok", "token_type": "Bearer", "expires_in": 3600}
        )
        with patch("pkcelogin.oauth.exchange.httpx.post", return_value=response):
            token = TokenExchanger().exchange_code(_session(), "ABC123")

        assert token.access_token == "tok"
        assert token.token_type == "Bearer"
        assert token.expires_in == 3600
        assert token.refresh_token is None

    def test_request_carries_pkce_and_redirect(self) -> None:
        response = _mock_response({"access_token": "tok"})
        with patch("pkcelogin.oauth.exchange.httpx.post", return_value=response) as mock_post:
            TokenExchanger(timeout=12.0, verify_ssl=False).exchange_code(_session(), "ABC123")

        mock_post.assert_called_once()
        args, kwargs = mock_post.call_args
        assert args[0] == TOKEN_URL
        assert kwargs["data"] == {
            "grant_type": "authorization_code",
            "code": "ABC123",
            "redirect_uri": "http://127.0.0.1:8400/auth/callback",
            "client_id": "app-1",
            "code_verifier": "V" * 43,
            "client_secret": "s3cret",
        }
        assert kwargs["timeout"] == 12.0
        assert kwargs["verify"] is False

    def test_public_client_sends_no_secret(self) -> None:
        response = _mock_response({"access_token": "tok"})
        with patch("pkcelogin.oauth.exchange.httpx.post", return_value=response) as mock_post:
            TokenExchanger().exchange_code(_session(client_secret=None), "ABC123")
        assert "client_secret" not in mock_post.call_args.kwargs["data"]

    def test_optional_fields_and_extras(self) -> None:
        response = _mock_response(
            {
                "access_token": "tok",
                "token_type": "Bearer",
                "expires_in": "3599",
                "refresh_token": "rt",
                "scope": "openid offline_access",
                "id_token": "idt",
            }
        )
        with patch("pkcelogin.oauth.exchange.httpx.post", return_value=response):
            token = TokenExchanger().exchange_code(_session(), "ABC123")

        assert token.expires_in == 3599
        assert token.refresh_token == "rt"
        assert token.granted_scopes == ["openid", "offline_access"]
        assert token.model_extra == {"id_token": "idt"}

    def test_invalid_grant(self) -> None:
        response = _mock_response(
            {"error": "invalid_grant", "error_description": "AADSTS70008: code expired"},
            status_code=400,
        )
        with patch("pkcelogin.oauth.exchange.httpx.post", return_value=response):
            with pytest.raises(ProviderError) as exc_info:
                TokenExchanger().exchange_code(_session(), "ABC123")

        exc = exc_info.value
        assert exc.status_code == 400
        assert exc.error == "invalid_grant"
        assert exc.error_description == "AADSTS70008: code expired"
        assert "invalid_grant" in str(exc)
        assert exc.exit_code == 3

    def test_error_status_with_non_oauth_body(self) -> None:
        response = _mock_response(None, status_code=502, text="Bad Gateway")
        with patch("pkcelogin.oauth.exchange.httpx.post", return_value=response):
            with pytest.raises(ProviderError) as exc_info:
                TokenExchanger().exchange_code(_session(), "ABC123")

        assert exc_info.value.status_code == 502
        assert exc_info.value.error is None
        assert exc_info.value.error_description == "Bad Gateway"

    def test_connect_error_is_transport_error(self) -> None:
        with patch(
            "pkcelogin.oauth.exchange.httpx.post",
            side_effect=httpx.ConnectError("Connection refused"),
        ):
            with pytest.raises(TransportError, match="Connection refused") as exc_info:
                TokenExchanger().exchange_code(_session(), "ABC123")
        assert exc_info.value.exit_code == 6

    def test_timeout_is_transport_error(self) -> None:
        with patch(
            "pkcelogin.oauth.exchange.httpx.post",
            side_effect=httpx.ReadTimeout("timed out"),
        ):
            with pytest.raises(TransportError):
                TokenExchanger().exchange_code(_session(), "ABC123")

    def test_non_json_success_is_malformed(self) -> None:
        response = _mock_response(None, status_code=200, text="<html>login</html>")
        with patch("pkcelogin.oauth.exchange.httpx.post", return_value=response):
            with pytest.raises(MalformedResponse, match="non-JSON") as exc_info:
                TokenExchanger().exchange_code(_session(), "ABC123")
        assert exc_info.value.exit_code == 5

    def test_json_array_is_malformed(self) -> None:
        response = _mock_response(["tok"])
        with patch("pkcelogin.oauth.exchange.httpx.post", return_value=response):
            with pytest.raises(MalformedResponse, match="expected an object"):
                TokenExchanger().exchange_code(_session(), "ABC123")

    def test_missing_access_token_is_malformed(self) -> None:
        response = _mock_response({"token_type": "Bearer"})
        with patch("pkcelogin.oauth.exchange.httpx.post", return_value=response):
            with pytest.raises(MalformedResponse, match="access_token"):
                TokenExchanger().exchange_code(_session(), "ABC123")

    def test_negative_expiry_is_malformed(self) -> None:
        response = _mock_response({"access_token": "tok", "expires_in": -5})
        with patch("pkcelogin.oauth.exchange.httpx.post", return_value=response):
            with pytest.raises(MalformedResponse, match="expires_in"):
                TokenExchanger().exchange_code(_session(), "ABC123")

    def test_code_redeemed_once(self) -> None:
        response = _mock_response({"access_token": "tok"})
        exchanger = TokenExchanger()
        with patch("pkcelogin.oauth.exchange.httpx.post", return_value=response) as mock_post:
            exchanger.exchange_code(_session(), "ABC123")
            with pytest.raises(CodeAlreadyUsedError):
                exchanger.exchange_code(_session(), "ABC123")
        assert mock_post.call_count == 1

    def test_code_not_resent_after_transport_failure(self) -> None:
        exchanger = TokenExchanger()
        with patch(
            "pkcelogin.oauth.exchange.httpx.post",
            side_effect=httpx.ConnectError("Connection refused"),
        ) as mock_post:
            with pytest.raises(TransportError):
                exchanger.exchange_code(_session(), "ABC123")
            with pytest.raises(CodeAlreadyUsedError):
                exchanger.exchange_code(_session(), "ABC123")
        assert mock_post.call_count == 1

    def test_token_repr_hides_secrets(self) -> None:
        response = _mock_response({"access_token": "tok-secret", "refresh_token": "rt-secret"})
        with patch("pkcelogin.oauth.exchange.httpx.post", return_value=response):
            token = TokenExchanger().exchange_code(_session(), "ABC123")
        assert "tok-secret" not in repr(token)
        assert "rt-secret" not in repr(token)


class TestRefresh:
    def test_refresh_grant(self) -> None:
        response = _mock_response({"access_token": "new", "refresh_token": "rt2"})
        with patch("pkcelogin.oauth.exchange.httpx.post", return_value=response) as mock_post:
            token = TokenExchanger().refresh(
                TOKEN_URL, "rt1", "app-1", client_secret="s3cret", scopes=["openid", "email"]
            )

        assert token.access_token == "new"
        assert token.refresh_token == "rt2"
        assert mock_post.call_args.kwargs["data"] == {
            "grant_type": "refresh_token",
            "refresh_token": "rt1",
            "client_id": "app-1",
            "client_secret": "s3cret",
            "scope": "openid email",
        }

    def test_refresh_token_carried_over(self) -> None:
        response = _mock_response({"access_token": "new"})
        with patch("pkcelogin.oauth.exchange.httpx.post", return_value=response):
            token = TokenExchanger().refresh(TOKEN_URL, "rt1", "app-1")
        assert token.refresh_token == "rt1"

    def test_refresh_rejected(self) -> None:
        response = _mock_response({"error": "invalid_grant"}, status_code=400)
        with patch("pkcelogin.oauth.exchange.httpx.post", return_value=response):
            with pytest.raises(ProviderError) as exc_info:
                TokenExchanger().refresh(TOKEN_URL, "rt1", "app-1")
        assert exc_info.value.error == "invalid_grant"

    def test_refresh_scopes_normalized(self) -> None:
        response = _mock_response({"access_token": "new"})
        with patch("pkcelogin.oauth.exchange.httpx.post", return_value=response) as mock_post:
            TokenExchanger().refresh(
                TOKEN_URL, "rt1", "app-1", scopes=["openid", " ", "openid", "email"]
            )
        assert mock_post.call_args.kwargs["data"]["scope"] == "openid email"

    def test_refresh_without_scopes_omits_scope(self) -> None:
        response = _mock_response({"access_token": "new"})
        with patch("pkcelogin.oauth.exchange.httpx.post", return_value=response) as mock_post:
            TokenExchanger().refresh(TOKEN_URL, "rt1", "app-1", scopes=["", "  "])
        assert "scope" not in mock_post.call_args.kwargs["data"]
