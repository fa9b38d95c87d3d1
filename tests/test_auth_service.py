"""Unit tests for AuthService and TokenStore."""
import sys
from pathlib import Path

# Add backend to path
sys.path.insert(0, str(Path(__file__).parent.parent / "backend"))

import json
import stat
from unittest.mock import AsyncMock, Mock

import pytest

from models.auth import User
from services.api_client import APIClientError, APIError
from services.auth_service import AuthService, AuthenticationError, TokenStore

USER_JSON = {
    "id": "owner-local",
    "name": "Sam Rivera",
    "email": "sam@example.com",
    "phone_number": "555-0100",
    "photos": ["avatar_1"],
    "created_at": "2025-01-01T00:00:00Z",
    "updated_at": "2025-01-02T00:00:00Z",
}


@pytest.fixture
def token_store(tmp_path):
    return TokenStore(path=str(tmp_path / "auth.json"))


@pytest.fixture
def api_client():
    client = Mock()
    client.request = AsyncMock()
    return client


@pytest.fixture
def auth(api_client, token_store):
    return AuthService(api_client, token_store)


class TestTokenStore:
    """Local session cache."""

    def test_empty_when_no_file(self, token_store):
        assert token_store.token is None
        assert token_store.user is None

    def test_save_and_reload(self, tmp_path):
        path = tmp_path / "nested" / "auth.json"
        store = TokenStore(path=str(path))
        store.save("tok-1", User.from_dict(USER_JSON))

        reloaded = TokenStore(path=str(path))

        assert reloaded.token == "tok-1"
        assert reloaded.user.email == "sam@example.com"
        assert stat.S_IMODE(path.stat().st_mode) == 0o600

    def test_save_without_token_keeps_existing(self, token_store):
        token_store.save("tok-1", User.from_dict(USER_JSON))
        token_store.save(None, User.from_dict({**USER_JSON, "name": "Sam R."}))

        assert token_store.token == "tok-1"
        assert token_store.user.name == "Sam R."

    def test_clear_removes_file(self, token_store):
        token_store.save("tok-1", User.from_dict(USER_JSON))

        token_store.clear()

        assert token_store.token is None
        assert not token_store.path.exists()

    def test_unreadable_cache_is_ignored(self, tmp_path):
        path = tmp_path / "auth.json"
        path.write_text("{not json")

        store = TokenStore(path=str(path))

        assert store.token is None
        assert store.user is None


class TestAuthService:
    """Auth flows against a mocked API client."""

    def test_restores_saved_session(self, api_client, token_store):
        token_store.save("tok-1", User.from_dict(USER_JSON))

        service = AuthService(api_client, token_store)

        assert service.is_authenticated is True
        assert service.current_user.first_name == "Sam"

    @pytest.mark.asyncio
    async def test_sign_in_success(self, auth, api_client, token_store):
        api_client.request.return_value = {"success": True, "user": USER_JSON, "token": "tok-1"}

        user = await auth.sign_in("sam@example.com", "secret")

        api_client.request.assert_awaited_once_with(
            "/user/login",
            method="POST",
            body={"email": "sam@example.com", "password": "secret"}
        )
        assert user.id == "owner-local"
        assert auth.is_authenticated is True
        assert token_store.token == "tok-1"

    @pytest.mark.asyncio
    async def test_sign_in_rejected(self, auth, api_client):
        api_client.request.return_value = {"success": False, "message": "Wrong password"}

        with pytest.raises(AuthenticationError) as exc_info:
            await auth.sign_in("sam@example.com", "nope")

        assert exc_info.value.kind == AuthenticationError.LOGIN_FAILED
        assert str(exc_info.value) == "Wrong password"
        assert auth.is_authenticated is False

    @pytest.mark.asyncio
    async def test_sign_in_propagates_api_errors(self, auth, api_client):
        api_client.request.side_effect = APIClientError(APIError(
            code="NETWORK_ERROR", message="Network error: refused", details={}
        ))

        with pytest.raises(APIClientError):
            await auth.sign_in("sam@example.com", "secret")

    @pytest.mark.asyncio
    async def test_sign_in_malformed_user_is_decoding_error(self, auth, api_client):
        api_client.request.return_value = {"success": True, "user": {"id": "owner-local"}, "token": "tok-1"}

        with pytest.raises(APIClientError) as exc_info:
            await auth.sign_in("sam@example.com", "secret")

        assert exc_info.value.code == "DECODING_ERROR"
        assert exc_info.value.error.details["endpoint"] == "/user/login"
        assert auth.is_authenticated is False

    @pytest.mark.asyncio
    async def test_sign_up_sends_profile_fields(self, auth, api_client):
        api_client.request.return_value = {"success": True, "user": USER_JSON, "token": "tok-2"}

        await auth.sign_up("sam@example.com", "secret", "Sam Rivera", "555-0100")

        body = api_client.request.call_args.kwargs["body"]
        assert api_client.request.call_args.args == ("/user/register",)
        assert body["name"] == "Sam Rivera"
        assert body["phone_number"] == "555-0100"

    @pytest.mark.asyncio
    async def test_sign_up_rejected(self, auth, api_client):
        api_client.request.return_value = {"success": False}

        with pytest.raises(AuthenticationError) as exc_info:
            await auth.sign_up("sam@example.com", "secret", "Sam", "555")

        assert exc_info.value.kind == AuthenticationError.REGISTRATION_FAILED

    @pytest.mark.asyncio
    async def test_update_profile_requires_session(self, auth):
        with pytest.raises(AuthenticationError) as exc_info:
            await auth.update_profile("Sam", "555")

        assert exc_info.value.kind == AuthenticationError.NOT_AUTHENTICATED

    @pytest.mark.asyncio
    async def test_update_profile_keeps_token(self, auth, api_client, token_store):
        token_store.save("tok-1", User.from_dict(USER_JSON))
        api_client.request.return_value = {"success": True, "user": {**USER_JSON, "name": "Samantha Rivera"}}

        user = await auth.update_profile("Samantha Rivera", "555-0100")

        assert user.name == "Samantha Rivera"
        assert token_store.token == "tok-1"
        assert api_client.request.call_args.kwargs["method"] == "PUT"

    @pytest.mark.asyncio
    async def test_refresh_token_replaces_token(self, auth, api_client, token_store):
        token_store.save("tok-old", User.from_dict(USER_JSON))
        api_client.request.return_value = {"success": True, "user": USER_JSON, "token": "tok-new"}

        await auth.refresh_token()

        assert token_store.token == "tok-new"

    @pytest.mark.asyncio
    async def test_refused_refresh_signs_out(self, auth, api_client, token_store):
        token_store.save("tok-old", User.from_dict(USER_JSON))
        api_client.request.return_value = {"success": False, "message": "expired"}

        with pytest.raises(AuthenticationError) as exc_info:
            await auth.refresh_token()

        assert exc_info.value.kind == AuthenticationError.TOKEN_REFRESH_FAILED
        assert auth.is_authenticated is False
        assert not token_store.path.exists()

    def test_sign_out(self, auth, token_store):
        token_store.save("tok-1", User.from_dict(USER_JSON))

        auth.sign_out()

        assert auth.is_authenticated is False
        assert auth.current_user is None

    def test_cache_file_layout(self, auth, token_store):
        token_store.save("tok-1", User.from_dict(USER_JSON))

        data = json.loads(token_store.path.read_text())

        assert data["token"] == "tok-1"
        assert data["user"]["email"] == "sam@example.com"
