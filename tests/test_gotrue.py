"""
tests/test_gotrue.py -- Unit tests for the GoTrue adapter (auth/gotrue.py).

The requests.Session is a MagicMock; no network traffic. Each test checks
the request the adapter would send and how it maps the answer.
"""

from __future__ import annotations

from unittest.mock import MagicMock

import pytest
import requests

from auth.errors import ProviderError
from auth.gotrue import GoTrueBackend
from auth.models import SessionEventType

USER = {"id": "7c1a", "email": "ann@example.com", "email_confirmed_at": "2024-01-01T00:00:00Z"}
TOKEN_BODY = {
    "access_token": "at-1",
    "refresh_token": "rt-1",
    "expires_in": 3600,
    "expires_at": 1_900_000_000,
    "user": USER,
}


def _resp(status: int, body: dict | None = None) -> MagicMock:
    resp = MagicMock()
    resp.status_code = status
    resp.content = b"{}" if body is not None else b""
    resp.json.return_value = body
    return resp


@pytest.fixture
def http() -> MagicMock:
    return MagicMock(spec=requests.Session)


@pytest.fixture
def backend(http) -> GoTrueBackend:
    return GoTrueBackend("https://project.example.co/", "anon-key", http=http)


def _last_call(http: MagicMock):
    args, kwargs = http.request.call_args
    return args[0], args[1], kwargs


def test_base_url_and_api_key_header(backend, http) -> None:
    http.request.return_value = _resp(200, USER)
    backend.client().sign_up("ann@example.com", "hunter22")
    method, url, kwargs = _last_call(http)
    assert method == "POST"
    assert url == "https://project.example.co/auth/v1/signup"
    assert kwargs["headers"]["apikey"] == "anon-key"
    assert "Authorization" not in kwargs["headers"]


def test_sign_up_with_confirmation_pending(backend, http) -> None:
    http.request.return_value = _resp(200, {"id": "7c1a", "email": "ann@example.com"})
    user = backend.client().sign_up("ann@example.com", "hunter22")
    assert user.subject_id == "7c1a"
    assert user.email_verified is False


def test_sign_up_with_autoconfirm_returns_token_body(backend, http) -> None:
    http.request.return_value = _resp(200, TOKEN_BODY)
    user = backend.client().sign_up("ann@example.com", "hunter22")
    assert user.subject_id == "7c1a"
    assert user.email_verified is True


def test_sign_in_maps_session_and_emits(backend, http) -> None:
    http.request.return_value = _resp(200, TOKEN_BODY)
    client = backend.client()
    events = []
    client.on_session_change(events.append)

    session = client.sign_in_with_password("ann@example.com", "hunter22")

    _, url, kwargs = _last_call(http)
    assert url.endswith("/auth/v1/token")
    assert kwargs["params"] == {"grant_type": "password"}
    assert session.access_token == "at-1"
    assert session.refresh_token == "rt-1"
    assert session.expires_at == 1_900_000_000
    assert [e.type for e in events] == [SessionEventType.SIGNED_IN]


@pytest.mark.parametrize(
    "body, expected",
    [
        ({"error": "invalid_grant", "error_description": "Invalid login credentials"}, "Invalid login credentials"),
        ({"code": 422, "msg": "User already registered"}, "User already registered"),
        ({"message": "Token has expired or is invalid"}, "Token has expired or is invalid"),
    ],
)
def test_error_body_message_passes_through(backend, http, body, expected) -> None:
    http.request.return_value = _resp(400, body)
    with pytest.raises(ProviderError) as exc_info:
        backend.client().sign_in_with_password("ann@example.com", "hunter22")
    assert exc_info.value.message == expected
    assert exc_info.value.status == 400


def test_transport_failure_is_generic_503(backend, http) -> None:
    http.request.side_effect = requests.ConnectionError("refused")
    with pytest.raises(ProviderError) as exc_info:
        backend.client().sign_in_with_password("ann@example.com", "hunter22")
    assert exc_info.value.status == 503
    assert "refused" not in exc_info.value.message


def test_get_session_without_token_makes_no_request(backend, http) -> None:
    assert backend.client().get_session() is None
    http.request.assert_not_called()


def test_get_session_verifies_token(backend, http) -> None:
    http.request.return_value = _resp(200, USER)
    session = backend.client("at-1").get_session()
    method, url, kwargs = _last_call(http)
    assert (method, url) == ("GET", "https://project.example.co/auth/v1/user")
    assert kwargs["headers"]["Authorization"] == "Bearer at-1"
    assert session.subject_id == "7c1a"


def test_get_session_with_dead_token_is_none(backend, http) -> None:
    http.request.return_value = _resp(401, {"msg": "invalid JWT"})
    assert backend.client("expired").get_session() is None


def test_reset_sends_redirect(backend, http) -> None:
    http.request.return_value = _resp(200, {})
    backend.client().reset_password_for_email("ann@example.com", "http://localhost:3000/reset-password")
    _, url, kwargs = _last_call(http)
    assert url.endswith("/recover")
    assert kwargs["params"] == {"redirect_to": "http://localhost:3000/reset-password"}
    assert kwargs["json"] == {"email": "ann@example.com"}


def test_verify_recovery(backend, http) -> None:
    http.request.return_value = _resp(200, TOKEN_BODY)
    client = backend.client()
    events = []
    client.on_session_change(events.append)
    session = client.verify_recovery("hash-abc")
    _, url, kwargs = _last_call(http)
    assert url.endswith("/verify")
    assert kwargs["json"] == {"type": "recovery", "token_hash": "hash-abc"}
    assert session.subject_id == "7c1a"
    assert events[0].type is SessionEventType.PASSWORD_RECOVERY


def test_update_user_without_session(backend, http) -> None:
    with pytest.raises(ProviderError) as exc_info:
        backend.client().update_user(password="new-pass-123")
    assert exc_info.value.status == 401
    http.request.assert_not_called()


def test_update_user_puts_password(backend, http) -> None:
    http.request.return_value = _resp(200, USER)
    backend.client("at-1").update_user(password="new-pass-123")
    method, url, kwargs = _last_call(http)
    assert (method, url) == ("PUT", "https://project.example.co/auth/v1/user")
    assert kwargs["json"] == {"password": "new-pass-123"}


def test_sign_out_posts_logout_and_emits(backend, http) -> None:
    http.request.return_value = _resp(204)
    client = backend.client("at-1")
    events = []
    client.on_session_change(events.append)
    client.sign_out()
    method, url, kwargs = _last_call(http)
    assert (method, url) == ("POST", "https://project.example.co/auth/v1/logout")
    assert kwargs["headers"]["Authorization"] == "Bearer at-1"
    assert events[0].type is SessionEventType.SIGNED_OUT
    assert client.get_session() is None


def test_refresh_uses_refresh_token(backend, http) -> None:
    http.request.return_value = _resp(200, TOKEN_BODY)
    client = backend.client()
    client.sign_in_with_password("ann@example.com", "hunter22")
    client.refresh_session()
    _, _, kwargs = _last_call(http)
    assert kwargs["params"] == {"grant_type": "refresh_token"}
    assert kwargs["json"] == {"refresh_token": "rt-1"}


def test_close_closes_http_session(backend, http) -> None:
    backend.close()
    http.close.assert_called_once()
