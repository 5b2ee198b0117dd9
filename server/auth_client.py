"""
Client for the hosted authentication service (GoTrue-compatible REST API).

Only the handful of calls the site needs: sign up, password sign in,
user lookup from an access token, and sign out.
"""
import logging
from dataclasses import dataclass
from typing import Optional

import requests

from errors import AppError, TransientStoreError

logger = logging.getLogger(__name__)


class AuthError(AppError):
    status_code = 401
    default_message = "Authentication failed"


@dataclass
class AuthUser:
    id: str
    email: Optional[str] = None


@dataclass
class AuthSession:
    access_token: str
    refresh_token: Optional[str]
    user_id: str
    email: Optional[str] = None
    expires_in: Optional[int] = None


class AuthClient:
    def __init__(self, base_url: str, api_key: str, timeout: float = 10, session: Optional[requests.Session] = None):
        if not base_url or not api_key:
            raise ValueError("AUTH_URL and AUTH_API_KEY are required for the auth client")
        self.base_url = base_url.rstrip('/')
        self.api_key = api_key
        self.timeout = timeout
        self.session = session or requests.Session()

    def _headers(self, access_token: Optional[str] = None) -> dict:
        headers = {
            "apikey": self.api_key,
            "Content-Type": "application/json",
        }
        headers["Authorization"] = f"Bearer {access_token or self.api_key}"
        return headers

    def _request(self, method: str, path: str, access_token: Optional[str] = None,
                 json: Optional[dict] = None, params: Optional[dict] = None) -> dict:
        url = f"{self.base_url}/auth/v1/{path}"
        try:
            resp = self.session.request(method, url, headers=self._headers(access_token), json=json,
                                        params=params, timeout=self.timeout)
        except (requests.ConnectionError, requests.Timeout) as e:
            logger.error(f"❌ Auth service unreachable ({method} {path}): {e}")
            raise TransientStoreError("The authentication service is temporarily unavailable") from e

        if resp.status_code >= 400:
            try:
                body = resp.json()
            except ValueError:
                body = {}
            message = body.get('msg') or body.get('error_description') or body.get('message') \
                or body.get('error') or f"Auth request failed with status {resp.status_code}"
            if resp.status_code >= 500:
                status = 503
            elif path == 'signup':
                status = 400
            else:
                status = 401
            logger.warning(f"⚠ Auth {method} {path} rejected: {resp.status_code} {message}")
            raise AuthError(message, status_code=status)

        if not resp.content:
            return {}
        return resp.json()

    def sign_up(self, email: str, password: str) -> AuthUser:
        data = self._request("POST", "signup", json={"email": email, "password": password})
        user = data.get('user') or data
        return AuthUser(id=user['id'], email=user.get('email', email))

    def sign_in(self, email: str, password: str) -> AuthSession:
        data = self._request("POST", "token", params={"grant_type": "password"},
                             json={"email": email, "password": password})
        user = data.get('user') or {}
        return AuthSession(
            access_token=data['access_token'],
            refresh_token=data.get('refresh_token'),
            user_id=user['id'],
            email=user.get('email', email),
            expires_in=data.get('expires_in'),
        )

    def get_user(self, access_token: str) -> Optional[AuthUser]:
        """Resolve an access token to its user, or None if the token is not valid"""
        if not access_token:
            return None
        try:
            data = self._request("GET", "user", access_token=access_token)
        except AuthError:
            return None
        if not data.get('id'):
            return None
        return AuthUser(id=data['id'], email=data.get('email'))

    def sign_out(self, access_token: str) -> None:
        try:
            self._request("POST", "logout", access_token=access_token)
        except AuthError as e:
            # Token already expired or revoked
            logger.info(f"Sign out ignored by auth service: {e.message}")
