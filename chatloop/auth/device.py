"""
GitHub device-code authorization.

The flow has two network calls:

1. ``authorize()`` asks for a device code.  The user opens the verification
   URI in a browser and types the user code.
2. ``poll(device_code)`` asks whether the user has finished.

``login()`` drives them: sleep the session's interval, poll, repeat while
pending, give up after a fixed number of attempts.  The interval is never
adapted.  Only a completed login writes to the credential store.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from enum import Enum
from typing import Awaitable, Callable

import httpx

from chatloop.auth.store import CredentialStore, OAuthCredential
from chatloop.config import AuthConfig

logger = logging.getLogger(__name__)

DEVICE_GRANT_TYPE = "urn:ietf:params:oauth:grant-type:device_code"


class AuthError(Exception):
    """The login operation failed.  Stored credentials are left untouched."""


@dataclass
class DeviceAuthSession:
    device_code: str
    user_code: str
    verification_uri: str
    interval: int
    expires_in: int = 0


class PollStatus(Enum):
    PENDING = "pending"
    COMPLETE = "complete"
    ERROR = "error"


@dataclass
class PollResult:
    status: PollStatus
    token: str | None = None
    error: str | None = None


class DeviceAuthFlow:
    """
    Device-code login against GitHub.

    Parameters
    ----------
    store:
        Where a successful login is persisted.
    config:
        The ``auth`` config section (endpoints, client id and poll limit).
    transport:
        Optional ``httpx`` transport, used by tests to stub the network.
    sleep:
        Coroutine used between polls; injectable so tests need not wait.
    """

    def __init__(
        self,
        store: CredentialStore,
        config: AuthConfig | None = None,
        *,
        transport: httpx.AsyncBaseTransport | None = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        self.store = store
        self.config = config or AuthConfig()
        self._transport = transport
        self._sleep = sleep

    # ------------------------------------------------------------------
    # Network calls
    # ------------------------------------------------------------------

    async def authorize(self) -> DeviceAuthSession:
        """Start a device-code session.  Raises ``AuthError`` on any failure."""
        data = await self._post(
            self.config.device_code_url,
            {"client_id": self.config.client_id, "scope": self.config.scope},
        )
        try:
            return DeviceAuthSession(
                device_code=str(data["device_code"]),
                user_code=str(data["user_code"]),
                verification_uri=str(data["verification_uri"]),
                interval=max(1, int(data.get("interval") or 5)),
                expires_in=int(data.get("expires_in") or 0),
            )
        except (KeyError, TypeError, ValueError) as exc:
            raise AuthError(f"Malformed device-code response: {exc!r}") from exc

    async def poll(self, device_code: str) -> PollResult:
        """Ask once whether the user has approved *device_code*."""
        data = await self._post(
            self.config.access_token_url,
            {
                "client_id": self.config.client_id,
                "device_code": device_code,
                "grant_type": DEVICE_GRANT_TYPE,
            },
        )

        token = data.get("access_token")
        if token:
            return PollResult(PollStatus.COMPLETE, token=str(token))

        error = data.get("error") or "unknown_error"
        if error in ("authorization_pending", "slow_down"):
            return PollResult(PollStatus.PENDING, error=error)
        return PollResult(
            PollStatus.ERROR,
            error=str(data.get("error_description") or error),
        )

    # ------------------------------------------------------------------
    # Login loop
    # ------------------------------------------------------------------

    async def login(
        self,
        on_session: Callable[[DeviceAuthSession], None] | None = None,
        on_pending: Callable[[int], None] | None = None,
    ) -> OAuthCredential:
        """
        Run the full device flow and persist the resulting credential.

        *on_session* is called once with the new session so the caller can
        show the verification URI and user code.  *on_pending* is called with
        the attempt number after every poll that is still pending.
        """
        session = await self.authorize()
        if on_session is not None:
            on_session(session)

        for attempt in range(1, self.config.max_poll_attempts + 1):
            await self._sleep(session.interval)
            result = await self.poll(session.device_code)

            if result.status is PollStatus.COMPLETE:
                credential = OAuthCredential(refresh=result.token or "")
                self.store.set(self.config.provider_key, credential)
                logger.info("Device login complete after %d poll(s)", attempt)
                return credential

            if result.status is PollStatus.ERROR:
                raise AuthError(f"Authorization failed: {result.error}")

            if on_pending is not None:
                on_pending(attempt)

        raise AuthError(
            f"Authorization timed out after {self.config.max_poll_attempts} attempts"
        )

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    async def _post(self, url: str, payload: dict) -> dict:
        headers = {
            "Accept": "application/json",
            "Content-Type": "application/json",
            "User-Agent": self.config.user_agent,
        }
        try:
            async with httpx.AsyncClient(
                timeout=self.config.timeout_seconds, transport=self._transport
            ) as client:
                resp = await client.post(url, json=payload, headers=headers)
        except httpx.HTTPError as exc:
            raise AuthError(f"Request to {url} failed: {exc}") from exc

        if resp.is_error:
            raise AuthError(f"{url} returned {resp.status_code}: {resp.text}")

        try:
            data = resp.json()
        except ValueError as exc:
            raise AuthError(f"{url} returned invalid JSON") from exc
        if not isinstance(data, dict):
            raise AuthError(f"{url} returned an unexpected payload")
        return data
