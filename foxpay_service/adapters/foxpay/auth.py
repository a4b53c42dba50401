"""Bearer token acquisition and caching for the FoxPay API."""

import asyncio
import logging
import time
from dataclasses import dataclass
from typing import Callable, Optional

import httpx

from ..exceptions import AuthenticationError

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Credential:
    access_token: str
    expires_at: float

    def is_valid(self, now: float) -> bool:
        return now < self.expires_at


class TokenManager:
    """Caches one project access token and refreshes it once it expires.

    Only one authentication call is in flight at a time; callers that arrive
    while a refresh is running wait for it and reuse its credential.
    """

    def __init__(
        self,
        http_client: httpx.AsyncClient,
        auth_url: str,
        access_key: str,
        secret_key: str,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self._http = http_client
        self._token_url = f"{auth_url.rstrip('/')}/token"
        self._access_key = access_key
        self._secret_key = secret_key
        self._clock = clock
        self._credential: Optional[Credential] = None
        self._lock = asyncio.Lock()

    @property
    def credential(self) -> Optional[Credential]:
        return self._credential

    def invalidate(self) -> None:
        self._credential = None

    async def ensure_valid_token(self) -> Credential:
        credential = self._credential
        if credential is not None and credential.is_valid(self._clock()):
            return credential

        async with self._lock:
            # Another caller may have refreshed while we waited.
            credential = self._credential
            if credential is not None and credential.is_valid(self._clock()):
                return credential
            self._credential = await self._authenticate()
            return self._credential

    async def _authenticate(self) -> Credential:
        try:
            response = await self._http.post(
                self._token_url,
                json={
                    "projectAccessKey": self._access_key,
                    "projectSecretKey": self._secret_key,
                },
            )
        except httpx.HTTPError as exc:
            logger.error("FoxPay authentication request failed: %s", exc)
            raise AuthenticationError(f"Authentication failed: {exc}") from exc

        if not response.is_success:
            logger.error(
                "FoxPay authentication rejected: HTTP %s", response.status_code
            )
            raise AuthenticationError(
                f"Authentication failed: HTTP {response.status_code} {response.text}"
            )

        try:
            data = response.json()
            access_token = data["accessToken"]
            expires_in = float(data["expiresIn"])
        except (ValueError, KeyError, TypeError) as exc:
            raise AuthenticationError(
                "Authentication failed: malformed token response"
            ) from exc
        if not isinstance(access_token, str) or not access_token:
            raise AuthenticationError("Authentication failed: empty access token")

        logger.info("Obtained FoxPay access token valid for %ss", expires_in)
        return Credential(access_token, self._clock() + expires_in)
