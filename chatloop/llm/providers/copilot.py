"""
Chat-completion provider for the GitHub Copilot endpoint.

Speaks the OpenAI ``/chat/completions`` wire protocol over ``httpx``.  The
bearer token is fetched from a token source for every request and never
kept on the provider.
"""

from __future__ import annotations

import logging
from typing import AsyncIterator, Awaitable, Callable

import httpx

from chatloop.config import LLMConfig
from chatloop.llm.providers.base import CompletionError, Provider
from chatloop.llm.stream_decoder import StreamDecoder, fragments_from_wire
from chatloop.llm.types import DeltaEvent, Message

logger = logging.getLogger(__name__)

AccessTokenGetter = Callable[[], Awaitable["str | None"]]


class CopilotProvider(Provider):
    """
    Stream-capable provider for the Copilot chat endpoint.

    Parameters
    ----------
    access_token:
        Async callable returning the current service token, or ``None`` when
        the user is not logged in (see ``CopilotTokenSource.access``).
    config:
        The ``llm`` config section (URL, model, sampling, timeout, headers).
    transport:
        Optional ``httpx`` transport, used by tests to stub the network.
    """

    def __init__(
        self,
        access_token: AccessTokenGetter,
        config: LLMConfig | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self._access_token = access_token
        self._config = config or LLMConfig()
        self._transport = transport

    @property
    def name(self) -> str:
        return "copilot"

    @property
    def model(self) -> str:
        return self._config.model

    async def chat(
        self,
        messages: list[Message],
        tools: list[dict] | None = None,
        stream: bool = True,
    ) -> AsyncIterator[DeltaEvent]:
        body = self._build_body(messages, tools, stream)
        headers = await self._build_headers()

        if stream:
            async for event in self._stream_request(body, headers):
                yield event
        else:
            event = await self._sync_request(body, headers)
            if event:
                yield event

    # ------------------------------------------------------------------
    # Request building
    # ------------------------------------------------------------------

    @property
    def _url(self) -> str:
        return f"{self._config.api_base.rstrip('/')}/chat/completions"

    async def _build_headers(self) -> dict[str, str]:
        token = await self._access_token()
        if not token:
            raise CompletionError("No valid Copilot token. Please run login first.")
        return {
            "Content-Type": "application/json",
            "Authorization": f"Bearer {token}",
            "Editor-Version": self._config.editor_version,
            "Editor-Plugin-Version": self._config.editor_plugin_version,
        }

    def _build_body(
        self,
        messages: list[Message],
        tools: list[dict] | None,
        stream: bool,
    ) -> dict:
        body: dict = {
            "model": self._config.model,
            "messages": [m.to_wire() for m in messages],
            "temperature": self._config.temperature,
            "max_tokens": self._config.max_tokens,
            "stream": stream,
        }
        if tools:
            body["tools"] = tools
        logger.info(
            "REQUEST: model=%s tools=%d messages=%d stream=%s",
            self._config.model,
            len(tools) if tools else 0,
            len(body["messages"]),
            stream,
        )
        return body

    def _client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(
            timeout=self._config.timeout_seconds, transport=self._transport
        )

    # ------------------------------------------------------------------
    # Streaming request
    # ------------------------------------------------------------------

    async def _stream_request(
        self, body: dict, headers: dict[str, str]
    ) -> AsyncIterator[DeltaEvent]:
        try:
            async with self._client() as client:
                async with client.stream(
                    "POST", self._url, json=body, headers=headers
                ) as response:
                    if response.is_error:
                        await response.aread()
                        raise _status_error(response)

                    decoder = StreamDecoder()
                    async for event in decoder.decode(response.aiter_bytes()):
                        yield event
        except httpx.HTTPError as exc:
            raise CompletionError(f"Copilot API request failed: {exc}") from exc

    # ------------------------------------------------------------------
    # Non-streaming request
    # ------------------------------------------------------------------

    async def _sync_request(self, body: dict, headers: dict[str, str]) -> DeltaEvent:
        try:
            async with self._client() as client:
                resp = await client.post(self._url, json=body, headers=headers)
        except httpx.HTTPError as exc:
            raise CompletionError(f"Copilot API request failed: {exc}") from exc

        if resp.is_error:
            raise _status_error(resp)

        try:
            data = resp.json()
        except ValueError as exc:
            raise CompletionError(
                f"Copilot API returned invalid JSON: {exc}", status_code=resp.status_code
            ) from exc
        return _parse_non_stream(data)


def _status_error(response: httpx.Response) -> CompletionError:
    return CompletionError(
        f"Copilot API error: {response.status_code} {response.text}",
        status_code=response.status_code,
    )


def _parse_non_stream(data: dict) -> DeltaEvent:
    """Convert a non-streaming response into a single ``DeltaEvent``."""
    choices = data.get("choices") if isinstance(data, dict) else None
    if not isinstance(choices, list) or not choices or not isinstance(choices[0], dict):
        return DeltaEvent()

    message = choices[0].get("message") or {}
    if not isinstance(message, dict):
        return DeltaEvent()
    content = message.get("content")
    if not isinstance(content, str):
        content = ""
    return DeltaEvent(
        text=content,
        tool_fragments=fragments_from_wire(message.get("tool_calls")),
    )
