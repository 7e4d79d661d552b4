"""GitHub App authentication: app JWTs and installation tokens."""

from __future__ import annotations

import threading
import time
from dataclasses import dataclass
from datetime import datetime
from typing import Callable, Dict

import jwt

from ..errors import StatusServiceError
from ..logging import get_logger
from .http import ApiRequest, Transport, send, urllib_transport

logger = get_logger("github.auth")

# GitHub rejects app JWTs valid for more than ten minutes.
_JWT_LIFETIME = 540
_CLOCK_SKEW = 60
_REFRESH_MARGIN = 60


@dataclass(frozen=True)
class InstallationToken:
    token: str
    expires_at: float


class AppAuthenticator:
    """Mints installation tokens for one GitHub App.

    One authenticator is shared for the process lifetime; tokens are cached
    per installation until shortly before they expire.
    """

    def __init__(
        self,
        app_id: int,
        private_key: str,
        *,
        api_url: str = "https://api.github.com",
        transport: Transport | None = None,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self.app_id = app_id
        self._private_key = private_key
        self.api_url = api_url.rstrip("/")
        self._transport = transport or urllib_transport
        self._clock = clock
        self._tokens: Dict[int, InstallationToken] = {}
        self._lock = threading.Lock()

    def app_jwt(self) -> str:
        now = int(self._clock())
        claims = {"iat": now - _CLOCK_SKEW, "exp": now + _JWT_LIFETIME, "iss": str(self.app_id)}
        return jwt.encode(claims, self._private_key, algorithm="RS256")

    def installation_token(self, installation_id: int) -> str:
        with self._lock:
            cached = self._tokens.get(installation_id)
            if cached is not None and cached.expires_at - _REFRESH_MARGIN > self._clock():
                return cached.token
            token = self._exchange(installation_id)
            self._tokens[installation_id] = token
            return token.token

    def _exchange(self, installation_id: int) -> InstallationToken:
        logger.debug("Requesting installation token for %s", installation_id)
        response = send(
            self._transport,
            ApiRequest(
                method="POST",
                url=f"{self.api_url}/app/installations/{installation_id}/access_tokens",
                headers={"Authorization": f"Bearer {self.app_jwt()}"},
            ),
        )
        payload = response.json()
        token = payload.get("token") if isinstance(payload, dict) else None
        if not isinstance(token, str) or not token:
            raise StatusServiceError("installation token response did not contain a token", status=response.status)
        return InstallationToken(token=token, expires_at=_parse_expiry(payload.get("expires_at"), self._clock()))


def _parse_expiry(value: object, now: float) -> float:
    if isinstance(value, str) and value:
        try:
            return datetime.fromisoformat(value.replace("Z", "+00:00")).timestamp()
        except ValueError:
            logger.warning("Unparseable token expiry %r; assuming one hour", value)
    # Installation tokens live for an hour when GitHub omits the timestamp.
    return now + 3600


__all__ = ["AppAuthenticator", "InstallationToken"]
