"""Exchange the stored GitHub token for a short-lived Copilot token."""

from __future__ import annotations

import logging
import time

import httpx

from chatloop.auth.store import ApiCredential, CredentialStore, OAuthCredential
from chatloop.config import AuthConfig, LLMConfig

logger = logging.getLogger(__name__)


class CopilotTokenSource:
    """
    Hands out a bearer token for the chat endpoint.

    The credential is read from the store on every call and the refreshed
    token is written straight back, so nothing is cached on this object.
    """

    def __init__(
        self,
        store: CredentialStore,
        config: AuthConfig | None = None,
        llm_config: LLMConfig | None = None,
        *,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self.store = store
        self.config = config or AuthConfig()
        self.llm_config = llm_config or LLMConfig()
        self._transport = transport

    async def access(self) -> str | None:
        """
        Return a usable token, refreshing it if it has expired.

        Returns ``None`` when the user is not logged in or the GitHub token
        was rejected.
        """
        credential = self.store.get(self.config.provider_key)
        if credential is None:
            return None
        if isinstance(credential, ApiCredential):
            return credential.key or None
        if not credential.refresh:
            return None
        if credential.access_valid():
            return credential.access

        return await self._refresh(credential)

    async def _refresh(self, credential: OAuthCredential) -> str | None:
        headers = {
            "Accept": "application/json",
            "Authorization": f"Bearer {credential.refresh}",
            "User-Agent": self.config.user_agent,
            "Editor-Version": self.llm_config.editor_version,
            "Editor-Plugin-Version": self.llm_config.editor_plugin_version,
        }
        try:
            async with httpx.AsyncClient(
                timeout=self.config.timeout_seconds, transport=self._transport
            ) as client:
                resp = await client.get(self.config.token_url, headers=headers)
        except httpx.HTTPError as exc:
            logger.warning("Token exchange failed: %s", exc)
            return None

        if resp.is_error:
            logger.warning("Token exchange rejected: HTTP %d", resp.status_code)
            return None

        try:
            data = resp.json()
            token = str(data["token"])
            expires_ms = int(data["expires_at"]) * 1000
        except (ValueError, KeyError, TypeError) as exc:
            logger.warning("Malformed token exchange response: %r", exc)
            return None

        self.store.set(
            self.config.provider_key,
            OAuthCredential(refresh=credential.refresh, access=token, expires=expires_ms),
        )
        logger.info(
            "Refreshed Copilot token, valid for %ds",
            max(0, expires_ms // 1000 - int(time.time())),
        )
        return token
