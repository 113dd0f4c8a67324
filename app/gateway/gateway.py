"""AI Provider Gateway: orchestrator integrating all gateway components.

Main entry point for the chat endpoint:
  1. Resolves the adapter via the ProviderRegistry (failures are terminal)
  2. Dispatches a blocking call, or opens a stream through the StreamingRelay
  3. Normalizes the result and logs a redacted summary
  4. On upstream, timeout or response-format failures, tries the single
     configured fallback provider once; a fallback's own failure is final

Usage:
    registry = ProviderRegistry(vault)
    gateway = ProviderGateway(registry)

    result = await gateway.process("openai", "Hello", config, context=turns)

    frames = await gateway.process("claude", "Hello", config, stream=True)
    async for frame in frames:
        ...
"""

from __future__ import annotations

import logging
from collections.abc import AsyncIterator, Awaitable, Callable, Sequence

from app.core.metrics import GATEWAY_FALLBACKS, GATEWAY_REQUESTS, PROVIDER_LATENCY
from app.gateway.errors import FALLBACK_ELIGIBLE, ErrorKind, GatewayError
from app.gateway.normalizer import normalize_result
from app.gateway.registry import ProviderRegistry
from app.gateway.streaming import CompletionCallback, DisconnectCheck, StreamingRelay, error_frame
from app.gateway.types import (
    ConnectionTestResult,
    ConversationTurn,
    ProviderConfig,
    ProviderType,
    UniformRequest,
    UniformResult,
)
from app.gateway.vendor_adapters import DEFAULT_SYSTEM_PROMPT, DYNAMIC_MODEL, BaseVendorAdapter

logger = logging.getLogger(__name__)

LOG_MESSAGE_PREFIX = 50

GatewayOutput = UniformResult | AsyncIterator[str]


def _provider_key(provider_type: ProviderType | str | None) -> str:
    if provider_type is None:
        return ""
    if isinstance(provider_type, ProviderType):
        return provider_type.value
    return str(provider_type).strip().lower()


class ProviderGateway:
    """Single public entry point for sending a message to a provider."""

    def __init__(self, registry: ProviderRegistry, relay: StreamingRelay | None = None):
        self.registry = registry
        self.relay = relay or StreamingRelay()

    # -- fallback -----------------------------------------------------------

    @staticmethod
    def _fallback_target(
        provider: str,
        fallback_provider_type: ProviderType | str | None,
        kind: ErrorKind | None,
        allow_fallback: bool,
    ) -> str | None:
        fallback = _provider_key(fallback_provider_type)
        if not allow_fallback or not fallback or fallback == provider:
            return None
        if kind not in FALLBACK_ELIGIBLE:
            return None
        return fallback

    @staticmethod
    def _fallback_config(primary: ProviderConfig, fallback_provider: str) -> ProviderConfig:
        """Environment-keyed config that keeps the primary's generation settings."""
        return ProviderConfig.from_environment(
            fallback_provider,
            temperature=primary.temperature,
            max_tokens=primary.max_tokens,
            system_prompt=primary.system_prompt,
        )

    # -- bookkeeping --------------------------------------------------------

    def _record(self, result: UniformResult, message: str, context: Sequence[ConversationTurn]) -> None:
        outcome = "success" if result.success else "failure"
        GATEWAY_REQUESTS.labels(provider=result.provider or "unknown", outcome=outcome).inc()
        if result.response_time_ms:
            PROVIDER_LATENCY.labels(provider=result.provider or "unknown").observe(result.response_time_ms / 1000)

        if result.success:
            logger.info(
                "AI response generated: provider=%s model=%s message=%r turns=%d tokens=%s time_ms=%.0f%s",
                result.provider,
                result.model_used,
                message[:LOG_MESSAGE_PREFIX],
                len(context),
                result.token_usage.to_dict(),
                result.response_time_ms,
                f" fallback_from={result.fallback_from}" if result.fallback_from else "",
            )
        else:
            logger.error(
                "AI provider %s failed (%s): %s",
                result.provider,
                result.error_kind.value if result.error_kind else "unknown",
                result.error_message,
            )

    async def _error_stream(
        self, result: UniformResult, on_complete: CompletionCallback | None
    ) -> AsyncIterator[str]:
        yield error_frame(result.error_message)
        if on_complete is not None:
            await on_complete(result)

    # -- public API ---------------------------------------------------------

    async def process(
        self,
        provider_type: ProviderType | str,
        message: str,
        config: ProviderConfig,
        *,
        stream: bool = False,
        context: Sequence[ConversationTurn] = (),
        fallback_provider_type: ProviderType | str | None = None,
        fallback_config: ProviderConfig | None = None,
        is_disconnected: DisconnectCheck | None = None,
        on_complete: CompletionCallback | None = None,
    ) -> GatewayOutput:
        """Send one message.

        Returns a ``UniformResult`` for blocking calls, or an async iterator of
        SSE frames when ``stream`` is set. Vendor failures never raise; they
        come back as failed results or as an error frame.
        """
        return await self._dispatch(
            provider_type,
            message,
            config,
            stream=stream,
            context=tuple(context),
            fallback_provider_type=fallback_provider_type,
            fallback_config=fallback_config,
            is_disconnected=is_disconnected,
            on_complete=on_complete,
            allow_fallback=True,
            fallback_from=None,
        )

    async def process_request(self, request: UniformRequest, **kwargs) -> GatewayOutput:
        return await self.process(
            request.config.provider_type,
            request.message,
            request.config,
            stream=request.stream_requested,
            context=request.context,
            fallback_provider_type=request.fallback_provider_type,
            **kwargs,
        )

    async def _dispatch(
        self,
        provider_type: ProviderType | str,
        message: str,
        config: ProviderConfig,
        *,
        stream: bool,
        context: tuple[ConversationTurn, ...],
        fallback_provider_type: ProviderType | str | None,
        fallback_config: ProviderConfig | None,
        is_disconnected: DisconnectCheck | None,
        on_complete: CompletionCallback | None,
        allow_fallback: bool,
        fallback_from: str | None,
    ) -> GatewayOutput:
        provider = _provider_key(provider_type)

        try:
            adapter = self.registry.resolve(provider_type, config)
        except GatewayError as e:
            failed = UniformResult.failure(provider, e)
            failed.fallback_from = fallback_from
            self._record(failed, message, context)
            return self._error_stream(failed, on_complete) if stream else failed

        async def fallback(target: str) -> GatewayOutput:
            GATEWAY_FALLBACKS.labels(primary=provider, fallback=target).inc()
            logger.warning("Falling back from %s to %s", provider, target)
            return await self._dispatch(
                target,
                message,
                fallback_config or self._fallback_config(config, target),
                stream=stream,
                context=context,
                fallback_provider_type=None,
                fallback_config=None,
                is_disconnected=is_disconnected,
                on_complete=on_complete,
                allow_fallback=False,
                fallback_from=provider,
            )

        if stream:
            return self._stream(
                adapter,
                provider,
                message,
                context,
                fallback=fallback,
                fallback_provider_type=fallback_provider_type,
                allow_fallback=allow_fallback,
                fallback_from=fallback_from,
                is_disconnected=is_disconnected,
                on_complete=on_complete,
            )

        result = normalize_result(await adapter.generate_response(message, context))
        result.fallback_from = fallback_from
        self._record(result, message, context)
        if result.success:
            return result

        target = self._fallback_target(provider, fallback_provider_type, result.error_kind, allow_fallback)
        if target is None:
            return result
        return await fallback(target)

    async def _stream(
        self,
        adapter: BaseVendorAdapter,
        provider: str,
        message: str,
        context: tuple[ConversationTurn, ...],
        *,
        fallback: Callable[[str], Awaitable[GatewayOutput]],
        fallback_provider_type: ProviderType | str | None,
        allow_fallback: bool,
        fallback_from: str | None,
        is_disconnected: DisconnectCheck | None,
        on_complete: CompletionCallback | None,
    ) -> AsyncIterator[str]:
        """Frames for one streamed call; the vendor is contacted on first iteration."""
        try:
            primed = await self.relay.open(adapter, message, context)
        except GatewayError as e:
            failed = UniformResult.failure(provider, e, model_used=adapter.model)
            failed.fallback_from = fallback_from
            self._record(failed, message, context)
            target = self._fallback_target(provider, fallback_provider_type, e.kind, allow_fallback)
            if target is not None:
                frames = await fallback(target)
            else:
                frames = self._error_stream(failed, on_complete)
        else:

            async def finished(result: UniformResult) -> None:
                self._record(result, message, context)
                if on_complete is not None:
                    await on_complete(result)

            frames = self.relay.frames(
                primed, is_disconnected=is_disconnected, on_complete=finished, fallback_from=fallback_from
            )

        try:
            async for frame in frames:
                yield frame
        finally:
            await frames.aclose()

    async def test_connection(
        self, provider_type: ProviderType | str, api_key: str, model: str | None = None
    ) -> ConnectionTestResult:
        """Check reachability and key validity with a minimal request."""
        provider = _provider_key(provider_type)
        if not api_key:
            return ConnectionTestResult(False, "API key is required", provider, model)
        try:
            config = ProviderConfig(
                provider_type=provider,
                encrypted_key=self.registry.vault.encrypt(api_key),
                model=model or DYNAMIC_MODEL,
                temperature=0.7,
                max_tokens=100,
                system_prompt=DEFAULT_SYSTEM_PROMPT,
            )
            adapter = self.registry.resolve(provider_type, config)
        except GatewayError as e:
            return ConnectionTestResult(False, e.message, provider, model)

        result = await adapter.test_connection()
        log = logger.info if result.success else logger.warning
        log("Connection test for %s: %s", provider, "ok" if result.success else result.message)
        return result
