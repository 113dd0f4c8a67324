"""Streaming Relay — one SSE format for every vendor.

Frames are ``data: {"chunk": "..."}\\n\\n`` followed by exactly one
``data: [DONE]\\n\\n`` on success, or a single ``data: {"error": "..."}\\n\\n``
frame on failure. Vendors with ``supports_native_streaming`` are relayed
delta by delta; the rest are synthesized by slicing the complete reply into
fixed-size pieces with a short pause between them.
"""

from __future__ import annotations

import asyncio
import json
import logging
import time
from collections.abc import AsyncIterator, Awaitable, Callable, Sequence
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any

from app.core.config import settings
from app.gateway.errors import GatewayError
from app.gateway.types import ConversationTurn, TokenUsage, UniformResult

if TYPE_CHECKING:
    from app.gateway.vendor_adapters import BaseVendorAdapter

logger = logging.getLogger(__name__)

DONE_FRAME = "data: [DONE]\n\n"

DisconnectCheck = Callable[[], Awaitable[bool]]
CompletionCallback = Callable[[UniformResult], Awaitable[None]]


def sse_frame(payload: dict[str, Any]) -> str:
    return f"data: {json.dumps(payload, ensure_ascii=False)}\n\n"


def chunk_frame(text: str) -> str:
    return sse_frame({"chunk": text})


def error_frame(message: str) -> str:
    return sse_frame({"error": message})


@dataclass
class StreamState:
    """What is known about a stream once it has finished."""

    provider: str
    model_used: str
    started_at: float = field(default_factory=time.perf_counter)
    token_usage: TokenUsage = field(default_factory=TokenUsage)
    finish_reason: str = ""
    text: list[str] = field(default_factory=list)

    def elapsed_ms(self) -> float:
        return (time.perf_counter() - self.started_at) * 1000


@dataclass
class PrimedStream:
    """A stream whose first delta has already arrived (or that is empty)."""

    state: StreamState
    first: str | None
    rest: AsyncIterator[str]


class StreamingRelay:
    def __init__(
        self,
        chunk_size: int | None = None,
        chunk_delay: float | None = None,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ):
        self.chunk_size = chunk_size or settings.stream_chunk_size
        self.chunk_delay = settings.stream_chunk_delay_seconds if chunk_delay is None else chunk_delay
        self._sleep = sleep

    async def _synthesized(
        self, adapter: BaseVendorAdapter, message: str, context: Sequence[ConversationTurn], state: StreamState
    ) -> AsyncIterator[str]:
        result = await adapter.generate_response(message, context)
        result.raise_for_error()
        state.model_used = result.model_used
        state.token_usage = result.token_usage
        state.finish_reason = result.finish_reason
        text = result.content or ""
        for offset in range(0, len(text), self.chunk_size):
            if offset:
                await self._sleep(self.chunk_delay)
            yield text[offset : offset + self.chunk_size]

    def deltas(
        self, adapter: BaseVendorAdapter, message: str, context: Sequence[ConversationTurn], state: StreamState
    ) -> AsyncIterator[str]:
        if adapter.supports_native_streaming:
            return adapter.stream_native(message, context)
        return self._synthesized(adapter, message, context, state)

    async def open(
        self, adapter: BaseVendorAdapter, message: str, context: Sequence[ConversationTurn] = ()
    ) -> PrimedStream:
        """Start the vendor stream and wait for its first delta.

        Raises GatewayError if the vendor fails before producing anything,
        which is the last point at which a fallback is still possible.
        """
        state = StreamState(provider=adapter.provider.value, model_used=adapter.model)
        rest = self.deltas(adapter, message, context, state)
        try:
            first = await rest.__anext__()
        except StopAsyncIteration:
            first = None
        except GatewayError:
            await rest.aclose()
            raise
        return PrimedStream(state=state, first=first, rest=rest)

    async def frames(
        self,
        primed: PrimedStream,
        *,
        is_disconnected: DisconnectCheck | None = None,
        on_complete: CompletionCallback | None = None,
        fallback_from: str | None = None,
    ) -> AsyncIterator[str]:
        """SSE frames for an opened stream. Closes the vendor stream on exit."""
        state = primed.state
        try:
            if primed.first is not None:
                state.text.append(primed.first)
                yield chunk_frame(primed.first)
                async for delta in primed.rest:
                    if is_disconnected is not None and await is_disconnected():
                        logger.info("Client disconnected, stopping %s stream", state.provider)
                        return
                    state.text.append(delta)
                    yield chunk_frame(delta)
        except GatewayError as e:
            logger.error("%s stream failed after %d chunks: %s", state.provider, len(state.text), e.message)
            yield error_frame(e.message)
            if on_complete is not None:
                failed = UniformResult.failure(state.provider, e, state.model_used, state.elapsed_ms())
                failed.fallback_from = fallback_from
                await on_complete(failed)
            return
        finally:
            await primed.rest.aclose()

        yield DONE_FRAME
        if on_complete is not None:
            result = UniformResult.ok(
                provider=state.provider,
                content="".join(state.text),
                model_used=state.model_used,
                response_time_ms=state.elapsed_ms(),
                token_usage=state.token_usage,
                finish_reason=state.finish_reason or "stop",
            )
            result.fallback_from = fallback_from
            await on_complete(result)

    async def relay(
        self,
        adapter: BaseVendorAdapter,
        message: str,
        context: Sequence[ConversationTurn] = (),
        *,
        is_disconnected: DisconnectCheck | None = None,
        on_complete: CompletionCallback | None = None,
    ) -> AsyncIterator[str]:
        """Open and relay in one go, with no fallback."""
        try:
            primed = await self.open(adapter, message, context)
        except GatewayError as e:
            yield error_frame(e.message)
            return
        async for frame in self.frames(primed, is_disconnected=is_disconnected, on_complete=on_complete):
            yield frame
