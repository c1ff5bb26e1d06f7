"""Completion service abstraction with Anthropic API and HTTP relay backends.

Both backends produce the same framed byte stream (see ``ai.stream``): the
relay forwards the bytes a chat endpoint sends, the Anthropic backend frames
the SDK's streaming events itself.
"""

from __future__ import annotations

import asyncio
import json
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any, AsyncIterator

import httpx

from forge_agent.ai.stream import (
    ContentBlockStop,
    StreamError,
    StreamEvent,
    TextDelta,
    ThinkingDelta,
    ThinkingStart,
    ToolInputDelta,
    ToolStart,
    TurnComplete,
    Usage,
    encode_frame,
)
from forge_agent.config import AnthropicConfig, RelayConfig
from forge_agent.core.errors import CompletionError
from forge_agent.core.types import StopReason
from forge_agent.log import get_logger

logger = get_logger(__name__)


@dataclass
class CompletionRequest:
    """Everything one round sends to the completion service."""

    messages: list[dict[str, Any]]
    model: str
    context: str = ""
    thinking: bool = False
    system_prompt: str = ""
    max_tokens: int = 4096
    tools: list[dict[str, Any]] = field(default_factory=list)


class CompletionService(ABC):
    """Abstract base class for completion backends."""

    @abstractmethod
    def stream(
        self, request: CompletionRequest, cancel_event: asyncio.Event | None = None
    ) -> AsyncIterator[bytes]:
        """Start a completion and yield raw frame bytes as they arrive.

        Closing the returned iterator aborts the request.
        """
        ...

    async def close(self) -> None:
        return None


def translate_sdk_event(event: Any) -> list[StreamEvent]:
    """Map one raw Anthropic streaming event onto wire events."""
    match event.type:
        case "message_start":
            usage = getattr(event.message, "usage", None)
            if usage is None:
                return []
            # Output tokens are reported cumulatively by message_delta
            return [Usage(input_tokens=usage.input_tokens or 0)]
        case "content_block_start":
            block = event.content_block
            if block.type == "tool_use":
                return [ToolStart(id=block.id, name=block.name)]
            if block.type == "thinking":
                return [ThinkingStart()]
            return []
        case "content_block_delta":
            delta = event.delta
            if delta.type == "text_delta":
                return [TextDelta(text=delta.text)]
            if delta.type == "thinking_delta":
                return [ThinkingDelta(text=delta.thinking)]
            if delta.type == "input_json_delta":
                return [ToolInputDelta(json=delta.partial_json)]
            return []
        case "content_block_stop":
            return [ContentBlockStop(index=event.index)]
        case "message_delta":
            events: list[StreamEvent] = []
            if event.usage is not None:
                events.append(Usage(output_tokens=event.usage.output_tokens or 0))
            events.append(TurnComplete(stop_reason=event.delta.stop_reason or StopReason.END_TURN))
            return events
        case _:
            return []


class AnthropicCompletionService(CompletionService):
    """Anthropic API backend using the official SDK."""

    def __init__(self, config: AnthropicConfig, thinking_budget: int = 2048):
        import anthropic

        self._anthropic = anthropic
        self._client = anthropic.AsyncAnthropic(
            api_key=config.api_key,
            base_url=config.base_url,
            max_retries=config.max_retries,
            timeout=config.timeout,
        )
        self._thinking_budget = thinking_budget

    def _build_kwargs(self, request: CompletionRequest) -> dict[str, Any]:
        system = request.system_prompt
        if request.context:
            system = f"{system}\n\n{request.context}" if system else request.context

        kwargs: dict[str, Any] = {
            "model": request.model,
            "max_tokens": request.max_tokens,
            "messages": request.messages,
            "stream": True,
        }
        if system:
            kwargs["system"] = system
        if request.tools:
            kwargs["tools"] = request.tools
        if request.thinking:
            kwargs["thinking"] = {"type": "enabled", "budget_tokens": self._thinking_budget}
            kwargs["max_tokens"] = max(request.max_tokens, self._thinking_budget + 1024)
        return kwargs

    async def stream(
        self, request: CompletionRequest, cancel_event: asyncio.Event | None = None
    ) -> AsyncIterator[bytes]:
        logger.debug("api_request", model=request.model, message_count=len(request.messages))
        try:
            response = await self._client.messages.create(**self._build_kwargs(request))
        except self._anthropic.APIError as e:
            logger.error("api_request_failed", model=request.model, error=str(e))
            yield encode_frame(StreamError(message=str(e)))
            return

        try:
            async for raw_event in response:
                if cancel_event is not None and cancel_event.is_set():
                    return
                for event in translate_sdk_event(raw_event):
                    yield encode_frame(event)
        except self._anthropic.APIError as e:
            logger.error("api_stream_failed", model=request.model, error=str(e))
            yield encode_frame(StreamError(message=str(e)))
        finally:
            await response.close()

    async def close(self) -> None:
        await self._client.close()


class RelayCompletionService(CompletionService):
    """Streams frames from an HTTP chat endpoint that speaks the wire format."""

    def __init__(self, config: RelayConfig, client: httpx.AsyncClient | None = None):
        self._url = config.url
        headers = {"Authorization": f"Bearer {config.api_key}"} if config.api_key else None
        self._client = client or httpx.AsyncClient(timeout=config.timeout, headers=headers)
        self._owns_client = client is None

    async def stream(
        self, request: CompletionRequest, cancel_event: asyncio.Event | None = None
    ) -> AsyncIterator[bytes]:
        body = {
            "messages": request.messages,
            "model": request.model,
            "sceneContext": request.context,
            "thinking": request.thinking,
        }
        logger.debug("relay_request", url=self._url, message_count=len(request.messages))

        try:
            async with self._client.stream("POST", self._url, json=body) as response:
                if response.status_code >= 400:
                    raise CompletionError(
                        await _error_detail(response), status_code=response.status_code
                    )
                async for chunk in response.aiter_bytes():
                    if cancel_event is not None and cancel_event.is_set():
                        return
                    yield chunk
        except httpx.TimeoutException as e:
            raise CompletionError(f"Chat request timed out: {e}") from e
        except httpx.TransportError as e:
            raise CompletionError(f"Chat request failed: {e}") from e

    async def close(self) -> None:
        if self._owns_client:
            await self._client.aclose()


async def _error_detail(response: httpx.Response) -> str:
    raw = await response.aread()
    try:
        data = json.loads(raw)
    except ValueError:
        data = None
    if isinstance(data, dict) and data.get("error"):
        return str(data["error"])
    return response.reason_phrase or f"Chat request failed: {response.status_code}"
