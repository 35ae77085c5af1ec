"""Credential manager: GitHub App installation tokens and user-scoped clients."""

import logging
import threading
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Callable, Optional

import httpx

from ghpolicies.core.config import settings
from ghpolicies.core.exceptions import AuthenticationError
from ghpolicies.core.security import create_app_jwt

logger = logging.getLogger("ghpolicies.credentials")

GITHUB_HEADERS = {
    "Accept": "application/vnd.github+json",
    "X-GitHub-Api-Version": "2022-11-28",
    "User-Agent": "ghpolicies",
}


@dataclass(frozen=True)
class CachedToken:
    token: str
    expires_at: datetime


def _parse_expiry(value: str) -> datetime:
    expires_at = datetime.fromisoformat(value.replace("Z", "+00:00"))
    if expires_at.tzinfo is None:
        expires_at = expires_at.replace(tzinfo=timezone.utc)
    return expires_at


class CredentialManager:
    """Produces installation tokens for the backend identity.

    The installation token is cached in memory until ``refresh_margin`` before
    the expiry GitHub reports. Refreshes are single-flight: callers that find
    the cache stale queue on ``_refresh_lock`` and re-check the cache once they
    hold it, while callers holding a still-valid token never wait on a refresh.
    """

    def __init__(
        self,
        app_id: int,
        private_key: str,
        installation_id: int,
        api_url: str = "https://api.github.com",
        refresh_margin: timedelta = timedelta(minutes=5),
        timeout: float = 30.0,
        transport: Optional[httpx.BaseTransport] = None,
        clock: Optional[Callable[[], datetime]] = None,
    ):
        self.app_id = app_id
        self.installation_id = installation_id
        self.api_url = api_url.rstrip("/")
        self.refresh_margin = refresh_margin
        self.timeout = timeout
        self._private_key = private_key
        self._transport = transport
        self._clock = clock or (lambda: datetime.now(timezone.utc))
        self._cached: Optional[CachedToken] = None
        self._lock = threading.Lock()
        self._refresh_lock = threading.Lock()

    @classmethod
    def from_settings(cls) -> "CredentialManager":
        return cls(
            app_id=settings.GITHUB_APP_ID,
            private_key=settings.github_private_key,
            installation_id=settings.GITHUB_APP_INSTALLATION_ID,
            api_url=settings.GITHUB_API_URL,
            refresh_margin=timedelta(minutes=settings.TOKEN_REFRESH_MARGIN_MINUTES),
            timeout=settings.GITHUB_HTTP_TIMEOUT_SECONDS,
        )

    def get_service_token(self) -> str:
        """Return a valid installation token, exchanging a new one if needed.

        Raises:
            AuthenticationError: If signing or the exchange fails.
        """
        cached = self._valid_cached_token()
        if cached:
            return cached

        with self._refresh_lock:
            cached = self._valid_cached_token()
            if cached:
                return cached

            logger.info("Installation token not cached or near expiry, requesting a new one")
            fresh = self._exchange()
            with self._lock:
                self._cached = fresh
            logger.info("Obtained installation token expiring at %s", fresh.expires_at.isoformat())
            return fresh.token

    def invalidate(self) -> None:
        """Forget the cached installation token."""
        with self._lock:
            self._cached = None

    def get_user_client(self, user_token: str) -> httpx.Client:
        """Client acting as a user. Never cached, never sees the service token."""
        return httpx.Client(
            base_url=self.api_url,
            headers={**GITHUB_HEADERS, "Authorization": f"Bearer {user_token}"},
            timeout=self.timeout,
            transport=self._transport,
        )

    def _valid_cached_token(self) -> Optional[str]:
        with self._lock:
            cached = self._cached
        if cached and self._clock() < cached.expires_at - self.refresh_margin:
            return cached.token
        return None

    def _exchange(self) -> CachedToken:
        assertion = create_app_jwt(self.app_id, self._private_key, now=self._clock())
        url = f"{self.api_url}/app/installations/{self.installation_id}/access_tokens"
        try:
            with httpx.Client(timeout=self.timeout, transport=self._transport) as client:
                resp = client.post(url, headers={**GITHUB_HEADERS, "Authorization": f"Bearer {assertion}"})
        except httpx.HTTPError as e:
            raise AuthenticationError(f"Installation token exchange failed: {e}") from e

        if resp.status_code not in (200, 201):
            raise AuthenticationError(
                f"Installation token exchange rejected with HTTP {resp.status_code}: {resp.text[:200]}"
            )
        try:
            payload = resp.json()
            return CachedToken(token=payload["token"], expires_at=_parse_expiry(payload["expires_at"]))
        except (ValueError, KeyError, TypeError) as e:
            raise AuthenticationError(f"Malformed installation token response: {e}") from e
