"""Unit tests for the auth service client."""

from unittest.mock import Mock

import pytest
import requests

from auth_client import AuthClient, AuthError, AuthSession
from errors import TransientStoreError


def response(status_code=200, body=None):
    resp = Mock()
    resp.status_code = status_code
    resp.content = b"{}" if body is None else b"..."
    resp.json.return_value = body or {}
    return resp


@pytest.fixture
def http():
    return Mock(spec=requests.Session)


@pytest.fixture
def client(http):
    return AuthClient("https://auth.example.com/", "anon-key", timeout=5, session=http)


class TestAuthClient:
    def test_requires_configuration(self):
        with pytest.raises(ValueError):
            AuthClient("", "key")

    def test_sign_in(self, client, http):
        http.request.return_value = response(body={
            "access_token": "jwt",
            "refresh_token": "r",
            "expires_in": 3600,
            "user": {"id": "u-1", "email": "ana@example.com"},
        })

        result = client.sign_in("ana@example.com", "secret123")

        assert result == AuthSession(access_token="jwt", refresh_token="r", user_id="u-1",
                                     email="ana@example.com", expires_in=3600)
        method, url = http.request.call_args.args
        kwargs = http.request.call_args.kwargs
        assert method == "POST"
        assert url == "https://auth.example.com/auth/v1/token"
        assert kwargs["params"] == {"grant_type": "password"}
        assert kwargs["headers"]["apikey"] == "anon-key"
        assert kwargs["timeout"] == 5

    def test_bad_credentials(self, client, http):
        http.request.return_value = response(400, {"error_description": "Invalid login credentials"})
        with pytest.raises(AuthError) as exc_info:
            client.sign_in("ana@example.com", "wrong")
        assert exc_info.value.status_code == 401
        assert exc_info.value.message == "Invalid login credentials"

    def test_sign_up_error_is_bad_request(self, client, http):
        http.request.return_value = response(422, {"msg": "User already registered"})
        with pytest.raises(AuthError) as exc_info:
            client.sign_up("ana@example.com", "secret123")
        assert exc_info.value.status_code == 400

    def test_sign_up(self, client, http):
        http.request.return_value = response(body={"id": "u-2", "email": "luis@example.com"})
        user = client.sign_up("luis@example.com", "secret123")
        assert user.id == "u-2"

    def test_server_error_maps_to_unavailable(self, client, http):
        http.request.return_value = response(502, {"message": "bad gateway"})
        with pytest.raises(AuthError) as exc_info:
            client.sign_in("ana@example.com", "secret123")
        assert exc_info.value.status_code == 503

    def test_network_error_is_transient(self, client, http):
        http.request.side_effect = requests.ConnectionError("refused")
        with pytest.raises(TransientStoreError):
            client.sign_in("ana@example.com", "secret123")

    def test_get_user_with_user_token(self, client, http):
        http.request.return_value = response(body={"id": "u-1", "email": "ana@example.com"})
        user = client.get_user("jwt")
        assert user.id == "u-1"
        assert http.request.call_args.kwargs["headers"]["Authorization"] == "Bearer jwt"

    def test_get_user_invalid_token(self, client, http):
        http.request.return_value = response(401, {"msg": "invalid JWT"})
        assert client.get_user("expired") is None

    def test_sign_out_ignores_rejected_token(self, client, http):
        http.request.return_value = response(401, {"msg": "invalid JWT"})
        client.sign_out("expired")
        assert http.request.call_count == 1
