# Identity providers - anonymous or custom-token sessions
from __future__ import annotations

import logging
import time
import uuid
from dataclasses import dataclass
from threading import Lock
from typing import Callable, List, Optional

import requests

from errors import IdentityError

logger = logging.getLogger(__name__)

AuthCallback = Callable[[Optional["User"]], None]

IDENTITY_TOOLKIT_URL = "https://identitytoolkit.googleapis.com/v1"
SECURE_TOKEN_URL = "https://securetoken.googleapis.com/v1/token"
DEFAULT_TOKEN_LIFETIME = 3600.0
TOKEN_REFRESH_MARGIN = 300.0


@dataclass(frozen=True)
class User:
    uid: str
    is_anonymous: bool = True


class InMemoryIdentityProvider:
    """
    Local identity provider for development and tests.
    Subscribers are called once immediately and again on every sign-in/sign-out.
    """

    def __init__(self) -> None:
        self._user: Optional[User] = None
        self._listeners: List[AuthCallback] = []
        self._lock = Lock()

    @property
    def current_user(self) -> Optional[User]:
        return self._user

    def sign_in_anonymously(self) -> User:
        return self._set_user(User(uid=uuid.uuid4().hex, is_anonymous=True))

    def sign_in_with_custom_token(self, token: str) -> User:
        if not token:
            raise IdentityError("Custom token must not be empty")
        return self._set_user(User(uid=f"token-{uuid.uuid4().hex}", is_anonymous=False))

    def sign_out(self) -> None:
        self._set_user(None)

    def on_auth_state_changed(self, callback: AuthCallback) -> Callable[[], None]:
        with self._lock:
            self._listeners.append(callback)
        callback(self._user)

        def unsubscribe() -> None:
            with self._lock:
                if callback in self._listeners:
                    self._listeners.remove(callback)

        return unsubscribe

    def _set_user(self, user: Optional[User]) -> Optional[User]:
        with self._lock:
            self._user = user
            listeners = list(self._listeners)
        for listener in listeners:
            listener(user)
        return user


class FirebaseIdentityProvider(InMemoryIdentityProvider):
    """
    Firebase Auth over its REST API.
    ID tokens last about an hour; get_id_token() trades the refresh token for a new one
    shortly before expiry so store writes keep authenticating.
    """

    def __init__(
        self,
        api_key: str,
        session: Optional[requests.Session] = None,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        super().__init__()
        self.api_key = api_key
        self.id_token: Optional[str] = None
        self._refresh_token: Optional[str] = None
        self._expires_at = 0.0
        self._session = session or requests.Session()
        self._clock = clock
        self._token_lock = Lock()

    def sign_in_anonymously(self) -> User:
        payload = self._post(f"{IDENTITY_TOOLKIT_URL}/accounts:signUp", json={"returnSecureToken": True})
        return self._accept(payload, is_anonymous=True)

    def sign_in_with_custom_token(self, token: str) -> User:
        if not token:
            raise IdentityError("Custom token must not be empty")
        payload = self._post(
            f"{IDENTITY_TOOLKIT_URL}/accounts:signInWithCustomToken",
            json={"token": token, "returnSecureToken": True},
        )
        return self._accept(payload, is_anonymous=False)

    def sign_out(self) -> None:
        with self._token_lock:
            self.id_token = None
            self._refresh_token = None
            self._expires_at = 0.0
        super().sign_out()

    def get_id_token(self) -> Optional[str]:
        """Current ID token, refreshed first when it is expired or about to be. None without a session."""
        with self._token_lock:
            if self.id_token is None:
                return None
            if self._clock() < self._expires_at - TOKEN_REFRESH_MARGIN:
                return self.id_token
            if not self._refresh_token:
                raise IdentityError("ID token expired and no refresh token is available")
            payload = self._post(
                SECURE_TOKEN_URL,
                data={"grant_type": "refresh_token", "refresh_token": self._refresh_token},
            )
            if not payload.get("id_token"):
                raise IdentityError("Token refresh response did not include an id_token")
            self.id_token = payload["id_token"]
            self._refresh_token = payload.get("refresh_token") or self._refresh_token
            self._expires_at = self._clock() + _expires_in(payload.get("expires_in"))
            logger.debug("ID token refreshed")
            return self.id_token

    def _post(self, url: str, **body) -> dict:
        try:
            response = self._session.post(url, params={"key": self.api_key}, **body)
            response.raise_for_status()
            return response.json()
        except requests.RequestException as exc:
            raise IdentityError(f"{url} failed: {exc}") from exc
        except ValueError as exc:
            raise IdentityError(f"{url} returned a non-JSON body") from exc

    def _accept(self, payload: dict, is_anonymous: bool) -> User:
        uid = payload.get("localId")
        if not uid:
            raise IdentityError("Sign-in response did not include a localId")
        with self._token_lock:
            self.id_token = payload.get("idToken")
            self._refresh_token = payload.get("refreshToken")
            self._expires_at = self._clock() + _expires_in(payload.get("expiresIn"))
        return self._set_user(User(uid=uid, is_anonymous=is_anonymous))


def _expires_in(raw) -> float:
    """Firebase sends lifetimes as strings of seconds"""
    try:
        return float(raw)
    except (TypeError, ValueError):
        return DEFAULT_TOKEN_LIFETIME


def bootstrap_identity(provider, token: Optional[str] = None) -> Optional[User]:
    """
    Establish the session used to gate submissions.
    Uses the custom token when one was provided, otherwise signs in anonymously.
    A failed sign-in is logged and leaves the app without a session.
    """
    try:
        if token:
            user = provider.sign_in_with_custom_token(token)
        else:
            user = provider.sign_in_anonymously()
    except IdentityError:
        logger.exception("Identity bootstrap failed; submissions stay disabled")
        return None
    logger.info("Session established (anonymous=%s)", user.is_anonymous)
    return user
