"""Account authentication and the locally cached session."""
import json
import logging
import os
from pathlib import Path
from typing import List, Optional

from config import AUTH_CACHE_PATH
from models.auth import AuthResponse, User
from services.api_client import APIClient, decode_response

logger = logging.getLogger(__name__)


class AuthenticationError(Exception):
    """Raised when an auth flow is rejected or the user is not signed in."""

    LOGIN_FAILED = "login_failed"
    REGISTRATION_FAILED = "registration_failed"
    PROFILE_UPDATE_FAILED = "profile_update_failed"
    TOKEN_REFRESH_FAILED = "token_refresh_failed"
    NOT_AUTHENTICATED = "not_authenticated"

    def __init__(self, kind: str, message: str = "Not authenticated"):
        self.kind = kind
        super().__init__(message)


class TokenStore:
    """Persists the auth token and the signed-in user as a small JSON file."""

    def __init__(self, path: str = AUTH_CACHE_PATH):
        self.path = Path(path)
        self._token: Optional[str] = None
        self._user: Optional[User] = None
        self._load()

    @property
    def token(self) -> Optional[str]:
        return self._token

    @property
    def user(self) -> Optional[User]:
        return self._user

    def save(self, token: Optional[str], user: User) -> None:
        if token is not None:
            self._token = token
        self._user = user
        self.path.parent.mkdir(parents=True, exist_ok=True)
        with open(self.path, "w", encoding="utf-8") as f:
            json.dump({"token": self._token, "user": user.to_dict()}, f)
        # Token file is private to the account
        os.chmod(self.path, 0o600)

    def clear(self) -> None:
        self._token = None
        self._user = None
        if self.path.exists():
            self.path.unlink()

    def _load(self) -> None:
        if not self.path.exists():
            return
        try:
            with open(self.path, "r", encoding="utf-8") as f:
                data = json.load(f)
            token = data["token"]
            user = User.from_dict(data["user"])
        except (OSError, ValueError, KeyError, TypeError) as e:
            logger.warning(f"Ignoring unreadable auth cache {self.path}: {e}")
            return
        self._token = token
        self._user = user


class AuthService:
    """Sign-in, sign-up, profile update and token refresh against /user."""

    def __init__(self, api_client: APIClient, token_store: TokenStore):
        self.api_client = api_client
        self.token_store = token_store
        if self.is_authenticated:
            logger.info(f"Restored saved session for user {self.current_user.id}")

    @property
    def current_user(self) -> Optional[User]:
        return self.token_store.user

    @property
    def is_authenticated(self) -> bool:
        return self.token_store.token is not None and self.token_store.user is not None

    async def sign_in(self, email: str, password: str) -> User:
        data = await self.api_client.request(
            "/user/login",
            method="POST",
            body={"email": email, "password": password}
        )
        response = decode_response(data, AuthResponse.from_dict, "/user/login")
        if not response.success or response.user is None or response.token is None:
            raise AuthenticationError(AuthenticationError.LOGIN_FAILED, response.message or "Login failed")

        self._handle_successful_auth(response.user, response.token)
        return response.user

    async def sign_up(self, email: str, password: str, name: str, phone_number: str) -> User:
        data = await self.api_client.request(
            "/user/register",
            method="POST",
            body={
                "email": email,
                "password": password,
                "name": name,
                "phone_number": phone_number,
            }
        )
        response = decode_response(data, AuthResponse.from_dict, "/user/register")
        if not response.success or response.user is None or response.token is None:
            raise AuthenticationError(
                AuthenticationError.REGISTRATION_FAILED, response.message or "Registration failed"
            )

        self._handle_successful_auth(response.user, response.token)
        return response.user

    async def update_profile(self, name: str, phone_number: str, photos: Optional[List[str]] = None) -> User:
        if not self.is_authenticated:
            raise AuthenticationError(AuthenticationError.NOT_AUTHENTICATED)

        data = await self.api_client.request(
            "/user/profile",
            method="PUT",
            body={"name": name, "phone_number": phone_number, "photos": photos}
        )
        response = decode_response(data, AuthResponse.from_dict, "/user/profile")
        if not response.success or response.user is None:
            raise AuthenticationError(
                AuthenticationError.PROFILE_UPDATE_FAILED, response.message or "Profile update failed"
            )

        self.token_store.save(None, response.user)
        return response.user

    async def refresh_token(self) -> User:
        """Exchange the cached token for a fresh one; signs out if refused."""
        if self.token_store.token is None:
            raise AuthenticationError(AuthenticationError.NOT_AUTHENTICATED)

        data = await self.api_client.request("/user/refresh", method="POST")
        response = decode_response(data, AuthResponse.from_dict, "/user/refresh")
        if not response.success or response.user is None or response.token is None:
            self.sign_out()
            raise AuthenticationError(
                AuthenticationError.TOKEN_REFRESH_FAILED, response.message or "Token refresh failed"
            )

        self._handle_successful_auth(response.user, response.token)
        return response.user

    def sign_out(self) -> None:
        self.token_store.clear()
        logger.info("Signed out")

    def _handle_successful_auth(self, user: User, token: str) -> None:
        self.token_store.save(token, user)
        logger.info(f"Authentication successful: {user.name} ({user.id})")
