"""Bearer credential lifecycle for the file storage API."""

import logging
import threading
from datetime import datetime, timedelta
from typing import Callable, Dict, Optional, Protocol

import httpx

from .errors import (
    AuthFailedError,
    FileStoreError,
    NoTokenError,
    RefreshExpiredError,
    status_error,
)
from .models import Credential
from .timeutil import now_utc
from .transport import HttpxTransport, Transport

logger = logging.getLogger(__name__)

DEFAULT_USERNAME = "default"

# Access tokens are refreshed when they expire within this window.
GRACE_WINDOW = timedelta(minutes=5)

API_AUTHENTICATE = "api/v1/auth/authenticate-user"
API_REFRESH = "api/v1/auth/refresh-token"


def join_url(base: str, sub_path: str) -> str:
    return base.rstrip("/") + "/" + sub_path.lstrip("/")


class CredentialStore(Protocol):
    """Storage for per-user credentials.

    `get` MUST return None when nothing is stored for the user.
    """

    def get(self, username: str) -> Optional[Credential]:
        ...

    def set(self, username: str, credential: Credential) -> None:
        ...


class MemoryCredentialStore:
    """In-process credential store."""

    def __init__(self) -> None:
        self._credentials: Dict[str, Credential] = {}

    def get(self, username: str) -> Optional[Credential]:
        return self._credentials.get(username)

    def set(self, username: str, credential: Credential) -> None:
        self._credentials[username] = credential


class TokenManager:
    """
    Hands out a bearer token that is valid for at least GRACE_WINDOW.

    All reads and writes of the stored credentials happen under one lock, so
    concurrent callers never refresh the same credential twice.
    """

    def __init__(
        self,
        api_url: str,
        *,
        transport: Optional[Transport] = None,
        store: Optional[CredentialStore] = None,
        clock: Callable[[], datetime] = now_utc,
    ):
        self.api_url = api_url
        self.transport = transport or HttpxTransport()
        self.store = store if store is not None else MemoryCredentialStore()
        self.clock = clock
        self._lock = threading.Lock()
        self._active_user: Optional[str] = None

    def __repr__(self) -> str:
        return f"TokenManager(api_url={self.api_url!r})"

    def authenticate(
        self,
        username: str,
        password: str,
        two_factor_code: str = "",
        *,
        timeout: Optional[float] = None,
    ) -> None:
        """Obtain a new credential for `username`, replacing any stored one."""
        logger.debug(f"Authenticating user {username}")
        with self._lock:
            payload = {
                "username": username,
                "password": password,
                "twoFactorCode": two_factor_code,
            }
            response = self._post(API_AUTHENTICATE, payload, timeout)
            if response.status_code != 200:
                raise AuthFailedError(
                    f"authenticate failed with status {response.status_code}",
                    details={"username": username, "status_code": response.status_code},
                )
            credential = self._decode(response, "authenticate")
            self.store.set(username, credential)
            self._active_user = username
        logger.info(f"Authenticated user {username}")

    def refresh(self, user: Optional[str] = None, *, timeout: Optional[float] = None) -> None:
        """Exchange the stored refresh token for a new credential.

        Not idempotent: a consumed refresh token cannot be reused, so failures
        are raised to the caller without retrying.
        """
        with self._lock:
            username = self._user_key(user)
            credential = self.store.get(username)
            if credential is None:
                raise NoTokenError("no credential to refresh", details={"username": username})
            self._refresh_locked(username, credential, timeout)

    def get_token(self, user: Optional[str] = None, *, timeout: Optional[float] = None) -> str:
        """Return a valid access token, refreshing it first when it expires soon."""
        with self._lock:
            username = self._user_key(user)
            credential = self.store.get(username)

            if credential is None or not credential.access_token:
                logger.debug("No token stored")
                raise NoTokenError(
                    "could not find access token", details={"username": username}
                )

            now = self.clock()
            if credential.refresh_expired(now):
                logger.debug(f"Refresh token expired for {username}")
                raise RefreshExpiredError(
                    "refresh token expired; authenticate again",
                    details={"username": username},
                )

            if credential.access_expires_within(now, GRACE_WINDOW):
                logger.debug("Access token expires soon, refreshing")
                credential = self._refresh_locked(username, credential, timeout)

            return credential.access_token

    def _user_key(self, user: Optional[str]) -> str:
        if user:
            return user
        return self._active_user or DEFAULT_USERNAME

    def _refresh_locked(
        self, username: str, credential: Credential, timeout: Optional[float]
    ) -> Credential:
        response = self._post(API_REFRESH, {"token": credential.refresh_token}, timeout)
        if response.status_code != 200:
            raise status_error("refresh token", response.status_code, username=username)
        refreshed = self._decode(response, "refresh token")
        self.store.set(username, refreshed)
        logger.info(f"Refreshed access token for {username}")
        return refreshed

    def _post(self, endpoint: str, payload: dict, timeout: Optional[float]) -> httpx.Response:
        url = join_url(self.api_url, endpoint)
        return self.transport.request("POST", url, json=payload, timeout=timeout)

    def _decode(self, response: httpx.Response, operation: str) -> Credential:
        try:
            return Credential.from_dict(response.json())
        except ValueError as e:
            raise FileStoreError(f"failed to decode {operation} response", cause=e) from e
