"""Vendor-Specific Adapters — protocol-level handling for each chat vendor.

Each adapter translates a message plus conversation context into the
vendor's HTTP protocol, sends it through the shared ``HttpTransport`` and
returns a ``UniformResult`` with normalized fields.

Vendor-specific behaviors:
  - OpenAI, Mistral, Grok, Groq, OpenRouter, DeepSeek: chat-completions
    shape (role-tagged messages, bearer auth)
  - Claude: Anthropic Messages API, ``x-api-key`` header, separate system field
  - Gemini: generateContent with a single formatted prompt, key as query param,
    finishReason SAFETY → response-format failure
  - HuggingFace: Inference API text generation, prompt template per model family,
    estimated token usage

Native token streaming: OpenAI, Claude, Mistral, Groq. Every other vendor is
streamed by the relay chunking a complete reply.
"""

from __future__ import annotations

import json
import logging
import time
from abc import ABC, abstractmethod
from collections.abc import AsyncIterator, Sequence
from dataclasses import dataclass, field
from typing import Any

import httpx

from app.core.config import settings
from app.core.encryption import CredentialVault
from app.core.logging import redact
from app.gateway.errors import (
    AUTH_FAILED_MESSAGE,
    ConfigurationError,
    GatewayError,
    ResponseFormatError,
    UpstreamError,
)
from app.gateway.streaming import StreamingRelay
from app.gateway.transport import DEFAULT_RETRY_STATUSES, HttpTransport
from app.gateway.types import (
    ConnectionTestResult,
    ConversationTurn,
    ModelInfo,
    ProviderConfig,
    ProviderType,
    TokenUsage,
    UniformResult,
    USER_ROLE,
)

logger = logging.getLogger(__name__)

DYNAMIC_MODEL = "dynamic"
DEFAULT_SYSTEM_PROMPT = "You are a helpful assistant."
TEST_MESSAGE = "Hello, this is a test message."

Context = Sequence[ConversationTurn]


@dataclass
class ParsedReply:
    content: str
    model: str
    usage: TokenUsage = field(default_factory=TokenUsage)
    finish_reason: str = ""


@dataclass
class VendorCall:
    url: str
    headers: dict[str, str]
    payload: dict[str, Any]
    params: dict[str, str] | None = None


class _StreamEnd(Exception):
    """Raised by a stream-line parser when the vendor signals completion."""


def _int_or_none(value: Any) -> int | None:
    try:
        return int(value) if value is not None else None
    except (TypeError, ValueError):
        return None


class BaseVendorAdapter(ABC):
    """Base class for all vendor adapters.

    An adapter is built per request by the registry and holds no state
    that outlives it. The API key is decrypted inside each outbound call.
    """

    provider: ProviderType
    display_name: str
    default_model: str
    api_url: str
    models_url: str | None = None
    env_key_setting: str
    supports_native_streaming: bool = False
    default_timeout: float = 60.0
    retry_statuses: frozenset[int] = DEFAULT_RETRY_STATUSES
    static_models: tuple[ModelInfo, ...] = ()

    def __init__(self, config: ProviderConfig, vault: CredentialVault, transport: HttpTransport | None = None):
        self.config = config
        self.vault = vault
        self.transport = transport or HttpTransport()
        self._model_override: str | None = None

    # -- configuration ------------------------------------------------------

    @property
    def model(self) -> str:
        if self._model_override:
            return self._model_override
        if self.config.model and self.config.model != DYNAMIC_MODEL:
            return self.config.model
        return self.default_model

    @property
    def system_prompt(self) -> str:
        return self.config.system_prompt

    def _resolve_api_key(self) -> str:
        if self.config.encrypted_key:
            return self.vault.decrypt(self.config.encrypted_key)
        if self.config.use_environment_key:
            key = getattr(settings, self.env_key_setting, "")
            if key:
                return key
        raise ConfigurationError(f"{self.display_name} API key is not configured")

    def _messages(self, message: str, context: Context) -> list[dict[str, str]]:
        messages: list[dict[str, str]] = []
        if self.system_prompt:
            messages.append({"role": "system", "content": self.system_prompt})
        messages.extend(turn.to_message() for turn in context)
        messages.append({"role": USER_ROLE, "content": message})
        return messages

    # -- vendor hooks -------------------------------------------------------

    @abstractmethod
    def _build_call(self, api_key: str, message: str, context: Context, stream: bool = False) -> VendorCall:
        """Translate the uniform request into the vendor's wire format."""
        ...

    @abstractmethod
    def _parse_reply(self, data: Any) -> ParsedReply:
        """Extract content, model and usage; raise ResponseFormatError if absent."""
        ...

    def _parse_stream_line(self, line: str) -> str | None:
        """Return the text delta carried by one streamed line, if any."""
        raise NotImplementedError(f"{self.display_name} does not stream natively")

    def _auth_headers(self, api_key: str) -> dict[str, str]:
        return {"Authorization": f"Bearer {api_key}", "Content-Type": "application/json"}

    def _models_call(self, api_key: str) -> VendorCall:
        if not self.models_url:
            raise ConfigurationError(f"{self.display_name} has no model listing endpoint")
        return VendorCall(url=self.models_url, headers=self._auth_headers(api_key), payload={})

    def _parse_models(self, data: Any) -> list[ModelInfo]:
        items = data.get("data", []) if isinstance(data, dict) else []
        return [
            ModelInfo(id=item["id"], name=item["id"], description=self._describe_model(item))
            for item in items
            if isinstance(item, dict) and item.get("id")
        ]

    def _describe_model(self, item: dict) -> str:
        return f"{self.display_name} model"

    @property
    def format_error_message(self) -> str:
        return f"Invalid response format from {self.display_name} API"

    def _is_auth_failure(self, response: httpx.Response) -> bool:
        return response.status_code in (401, 403)

    def _error_detail(self, response: httpx.Response) -> str:
        try:
            body = response.json()
        except ValueError:
            return redact(response.text[:200]) or response.reason_phrase
        error = body.get("error") if isinstance(body, dict) else None
        if isinstance(error, dict):
            detail = error.get("message") or error.get("type") or ""
        elif isinstance(error, str):
            detail = error
        else:
            detail = body.get("message", "") if isinstance(body, dict) else ""
        return redact(str(detail)[:200]) or response.reason_phrase

    def _raise_for_status(self, response: httpx.Response) -> None:
        if response.is_success:
            return
        status = response.status_code
        logger.error("%s API error %d: %s", self.display_name, status, redact(response.text[:500]))
        if self._is_auth_failure(response):
            raise UpstreamError(AUTH_FAILED_MESSAGE, status_code=status)
        raise UpstreamError(f"{self.display_name} API error ({status}): {self._error_detail(response)}", status_code=status)

    def _decode_json(self, response: httpx.Response) -> Any:
        try:
            return response.json()
        except ValueError as e:
            raise ResponseFormatError(self.format_error_message) from e

    # -- public contract ----------------------------------------------------

    async def _complete(self, message: str, context: Context) -> tuple[ParsedReply, float]:
        api_key = self._resolve_api_key()
        call = self._build_call(api_key, message, context)
        start = time.perf_counter()
        response = await self.transport.post_json(
            call.url,
            call.payload,
            headers=call.headers,
            params=call.params,
            timeout=self.default_timeout,
            retry_statuses=self.retry_statuses,
        )
        elapsed_ms = (time.perf_counter() - start) * 1000
        self._raise_for_status(response)
        reply = self._parse_reply(self._decode_json(response))
        return reply, elapsed_ms

    async def generate_response(self, message: str, context: Context = ()) -> UniformResult:
        """Blocking call. Never raises for vendor or configuration failures."""
        start = time.perf_counter()
        try:
            reply, elapsed_ms = await self._complete(message, context)
        except GatewayError as e:
            elapsed_ms = (time.perf_counter() - start) * 1000
            logger.warning("%s request failed (%s): %s", self.display_name, e.kind.value, e.message)
            return UniformResult.failure(self.provider.value, e, model_used=self.model, response_time_ms=elapsed_ms)

        return UniformResult.ok(
            provider=self.provider.value,
            content=reply.content,
            model_used=reply.model or self.model,
            response_time_ms=elapsed_ms,
            token_usage=reply.usage,
            finish_reason=reply.finish_reason,
        )

    async def stream_native(self, message: str, context: Context = ()) -> AsyncIterator[str]:
        """Yield text deltas from the vendor's own incremental stream.

        Raises GatewayError subclasses; the relay decides how to surface them.
        """
        if not self.supports_native_streaming:
            raise NotImplementedError(f"{self.display_name} does not stream natively")
        api_key = self._resolve_api_key()
        call = self._build_call(api_key, message, context, stream=True)
        async with self.transport.stream(
            "POST", call.url, json=call.payload, headers=call.headers, params=call.params, timeout=self.default_timeout
        ) as response:
            if not response.is_success:
                await response.aread()
                self._raise_for_status(response)
            async for line in response.aiter_lines():
                try:
                    delta = self._parse_stream_line(line)
                except _StreamEnd:
                    return
                if delta:
                    yield delta

    def stream_response(
        self, message: str, context: Context = (), relay: StreamingRelay | None = None
    ) -> AsyncIterator[str]:
        """SSE frames for this adapter, native or synthesized."""
        relay = relay or StreamingRelay()
        return relay.relay(self, message, context)

    async def test_connection(self) -> ConnectionTestResult:
        result = await self.generate_response(TEST_MESSAGE, ())
        if result.success:
            return ConnectionTestResult(
                success=True,
                message="Connection successful!",
                provider=self.provider.value,
                model=result.model_used,
            )
        return ConnectionTestResult(
            success=False,
            message=f"Connection failed: {result.error_message}",
            provider=self.provider.value,
            model=self.model,
        )

    async def list_available_models(self) -> list[ModelInfo]:
        """Models from the vendor's listing endpoint, or the static catalogue."""
        if not self.models_url:
            return list(self.static_models)

        api_key = self._resolve_api_key()
        call = self._models_call(api_key)
        try:
            response = await self.transport.get_json(
                call.url, headers=call.headers, params=call.params, timeout=30.0, retry_statuses=self.retry_statuses
            )
            self._raise_for_status(response)
            models = self._parse_models(self._decode_json(response))
        except UpstreamError as e:
            if e.auth_failed or not self.static_models:
                raise
            logger.warning("%s model listing failed, using static catalogue: %s", self.display_name, e.message)
            return list(self.static_models)
        except ResponseFormatError:
            if not self.static_models:
                raise
            return list(self.static_models)

        if not models and self.static_models:
            return list(self.static_models)
        return sorted(models, key=lambda m: m.id)


# ---------------------------------------------------------------------------
# Chat-completions family (OpenAI wire format)
# ---------------------------------------------------------------------------


class ChatCompletionsAdapter(BaseVendorAdapter):
    """Shared implementation for vendors speaking the OpenAI chat-completions shape."""

    def _extra_headers(self) -> dict[str, str]:
        return {}

    def _extra_payload(self) -> dict[str, Any]:
        return {}

    def _build_call(self, api_key: str, message: str, context: Context, stream: bool = False) -> VendorCall:
        payload: dict[str, Any] = {
            "model": self.model,
            "messages": self._messages(message, context),
            "temperature": self.config.temperature,
            "max_tokens": self.config.max_tokens,
        }
        top_p = self.config.setting("top_p")
        if top_p is not None:
            payload["top_p"] = top_p
        payload.update(self._extra_payload())
        if stream:
            payload["stream"] = True
        headers = self._auth_headers(api_key)
        headers.update(self._extra_headers())
        return VendorCall(url=self.api_url, headers=headers, payload=payload)

    def _parse_reply(self, data: Any) -> ParsedReply:
        try:
            choice = data["choices"][0]
            content = choice["message"]["content"]
        except (KeyError, IndexError, TypeError) as e:
            raise ResponseFormatError(self.format_error_message) from e
        if not isinstance(content, str):
            raise ResponseFormatError(self.format_error_message)

        usage = data.get("usage") or {}
        return ParsedReply(
            content=content,
            model=data.get("model") or self.model,
            usage=TokenUsage(
                prompt_tokens=_int_or_none(usage.get("prompt_tokens")),
                completion_tokens=_int_or_none(usage.get("completion_tokens")),
                total_tokens=_int_or_none(usage.get("total_tokens")),
            ),
            finish_reason=choice.get("finish_reason") or "",
        )

    def _parse_stream_line(self, line: str) -> str | None:
        if not line.startswith("data:"):
            return None
        data = line[len("data:") :].strip()
        if data == "[DONE]":
            raise _StreamEnd
        try:
            chunk = json.loads(data)
        except ValueError:
            logger.debug("%s: skipping malformed stream line", self.display_name)
            return None
        if not isinstance(chunk, dict):
            return None
        choices = chunk.get("choices") or []
        if not choices or not isinstance(choices[0], dict):
            return None
        delta = choices[0].get("delta")
        return delta.get("content") if isinstance(delta, dict) else None


class OpenAIAdapter(ChatCompletionsAdapter):
    """OpenAI Chat Completions adapter."""

    provider = ProviderType.OPENAI
    display_name = "OpenAI"
    default_model = "gpt-4o-mini"
    api_url = "https://api.openai.com/v1/chat/completions"
    models_url = "https://api.openai.com/v1/models"
    env_key_setting = "openai_api_key"
    supports_native_streaming = True
    default_timeout = 60.0

    def _extra_payload(self) -> dict[str, Any]:
        extra: dict[str, Any] = {}
        for name in ("frequency_penalty", "presence_penalty"):
            value = self.config.setting(name)
            if value is not None:
                extra[name] = value
        return extra

    def _parse_models(self, data: Any) -> list[ModelInfo]:
        # the listing also carries embeddings, audio and image models
        return [m for m in super()._parse_models(data) if m.id.startswith(("gpt-", "o1", "o3", "o4", "chatgpt-"))]

    def _describe_model(self, item: dict) -> str:
        owner = item.get("owned_by")
        return f"OpenAI model ({owner})" if owner else "OpenAI model"


_MISTRAL_MODELS = (
    ModelInfo("mistral-small-latest", "Mistral Small", "Cost-efficient model for simple tasks"),
    ModelInfo("mistral-medium-latest", "Mistral Medium", "Balanced model for most tasks"),
    ModelInfo("mistral-large-latest", "Mistral Large", "Flagship model for complex reasoning"),
    ModelInfo("open-mistral-7b", "Mistral 7B", "Open-weight 7B model"),
    ModelInfo("open-mixtral-8x7b", "Mixtral 8x7B", "Open-weight sparse mixture of experts"),
    ModelInfo("open-mixtral-8x22b", "Mixtral 8x22B", "Larger open-weight mixture of experts"),
)


class MistralAdapter(ChatCompletionsAdapter):
    provider = ProviderType.MISTRAL
    display_name = "Mistral"
    default_model = "mistral-small-latest"
    api_url = "https://api.mistral.ai/v1/chat/completions"
    models_url = "https://api.mistral.ai/v1/models"
    env_key_setting = "mistral_api_key"
    supports_native_streaming = True
    static_models = _MISTRAL_MODELS

    @property
    def system_prompt(self) -> str:
        return self.config.system_prompt or DEFAULT_SYSTEM_PROMPT

    def _describe_model(self, item: dict) -> str:
        return item.get("description") or "Mistral model"


class GrokAdapter(ChatCompletionsAdapter):
    provider = ProviderType.GROK
    display_name = "Grok"
    default_model = "grok-beta"
    api_url = "https://api.x.ai/v1/chat/completions"
    models_url = "https://api.x.ai/v1/models"
    env_key_setting = "grok_api_key"
    static_models = (
        ModelInfo("grok-beta", "Grok Beta", "X.AI Grok model"),
        ModelInfo("grok-1", "Grok-1", "X.AI Grok model"),
        ModelInfo("grok-1.5", "Grok-1.5", "X.AI Grok model"),
    )


class GroqAdapter(ChatCompletionsAdapter):
    """Groq LPU inference — short timeout, native streaming."""

    provider = ProviderType.GROQ
    display_name = "Groq"
    default_model = "llama3-8b-8192"
    api_url = "https://api.groq.com/openai/v1/chat/completions"
    models_url = "https://api.groq.com/openai/v1/models"
    env_key_setting = "groq_api_key"
    supports_native_streaming = True
    default_timeout = 30.0
    static_models = (
        ModelInfo("llama3-70b-8192", "Llama 3 70B", "Context: 8192 tokens"),
        ModelInfo("llama3-8b-8192", "Llama 3 8B", "Context: 8192 tokens"),
        ModelInfo("mixtral-8x7b-32768", "Mixtral 8x7B", "Context: 32768 tokens"),
    )

    def _describe_model(self, item: dict) -> str:
        window = item.get("context_window")
        return f"Context: {window} tokens" if window else "Groq model"


class OpenRouterAdapter(ChatCompletionsAdapter):
    """OpenRouter — one key, many upstream models; ``dynamic`` picks the first listed."""

    provider = ProviderType.OPENROUTER
    display_name = "OpenRouter"
    default_model = "openai/gpt-4o-mini"
    api_url = "https://openrouter.ai/api/v1/chat/completions"
    models_url = "https://openrouter.ai/api/v1/models"
    env_key_setting = "openrouter_api_key"

    def _extra_headers(self) -> dict[str, str]:
        return {"HTTP-Referer": settings.app_url, "X-Title": settings.app_name}

    def _models_call(self, api_key: str) -> VendorCall:
        call = super()._models_call(api_key)
        call.headers.update(self._extra_headers())
        return call

    def _describe_model(self, item: dict) -> str:
        context_length = item.get("context_length")
        return f"Context: {context_length} tokens" if context_length else "OpenRouter model"

    async def test_connection(self) -> ConnectionTestResult:
        if self.config.model == DYNAMIC_MODEL:
            try:
                models = await self.list_available_models()
            except GatewayError as e:
                return ConnectionTestResult(False, f"Connection failed: {e.message}", self.provider.value)
            if not models:
                return ConnectionTestResult(False, "Could not fetch available models", self.provider.value)
            self._model_override = models[0].id
        return await super().test_connection()


class DeepSeekAdapter(ChatCompletionsAdapter):
    """DeepSeek adapter with "Server Busy" handling."""

    provider = ProviderType.DEEPSEEK
    display_name = "DeepSeek"
    default_model = "deepseek-chat"
    api_url = "https://api.deepseek.com/v1/chat/completions"
    models_url = "https://api.deepseek.com/v1/models"
    env_key_setting = "deepseek_api_key"
    static_models = (
        ModelInfo("deepseek-chat", "DeepSeek Chat", "DeepSeek model"),
        ModelInfo("deepseek-coder", "DeepSeek Coder", "DeepSeek model"),
    )

    def _raise_for_status(self, response: httpx.Response) -> None:
        # 503 is retried by the transport first; this is what is left after that
        if response.status_code == 503 and "busy" in response.text.lower():
            logger.error("DeepSeek server busy after retries")
            raise UpstreamError("DeepSeek server busy — please retry later", status_code=503)
        super()._raise_for_status(response)


# ---------------------------------------------------------------------------
# Claude Adapter (Anthropic Messages API)
# ---------------------------------------------------------------------------


class ClaudeAdapter(BaseVendorAdapter):
    """Anthropic Claude adapter: ``x-api-key`` auth, system prompt outside messages."""

    provider = ProviderType.CLAUDE
    display_name = "Claude"
    default_model = "claude-3-haiku-20240307"
    api_url = "https://api.anthropic.com/v1/messages"
    api_version = "2023-06-01"
    env_key_setting = "anthropic_api_key"
    supports_native_streaming = True
    # 529 = Anthropic "overloaded"
    retry_statuses = DEFAULT_RETRY_STATUSES | {529}
    static_models = (
        ModelInfo("claude-3-haiku-20240307", "Claude 3 Haiku", "Fastest Claude 3 model"),
        ModelInfo("claude-3-sonnet-20240229", "Claude 3 Sonnet", "Balanced Claude 3 model"),
        ModelInfo("claude-3-opus-20240229", "Claude 3 Opus", "Most capable Claude 3 model"),
        ModelInfo("claude-3-5-sonnet-20241022", "Claude 3.5 Sonnet", "Latest Claude 3.5 model"),
    )

    def _auth_headers(self, api_key: str) -> dict[str, str]:
        return {
            "x-api-key": api_key,
            "anthropic-version": self.api_version,
            "Content-Type": "application/json",
        }

    def _build_call(self, api_key: str, message: str, context: Context, stream: bool = False) -> VendorCall:
        messages = [turn.to_message() for turn in context]
        messages.append({"role": USER_ROLE, "content": message})
        payload: dict[str, Any] = {
            "model": self.model,
            "max_tokens": self.config.max_tokens,
            "temperature": self.config.temperature,
            "messages": messages,
        }
        if self.system_prompt:
            payload["system"] = self.system_prompt
        for name in ("top_p", "top_k"):
            value = self.config.setting(name)
            if value is not None:
                payload[name] = value
        if stream:
            payload["stream"] = True
        return VendorCall(url=self.api_url, headers=self._auth_headers(api_key), payload=payload)

    def _parse_reply(self, data: Any) -> ParsedReply:
        try:
            content = data["content"][0]["text"]
        except (KeyError, IndexError, TypeError) as e:
            raise ResponseFormatError(self.format_error_message) from e
        if not isinstance(content, str):
            raise ResponseFormatError(self.format_error_message)

        usage = data.get("usage") or {}
        return ParsedReply(
            content=content,
            model=data.get("model") or self.model,
            usage=TokenUsage(
                prompt_tokens=_int_or_none(usage.get("input_tokens")),
                completion_tokens=_int_or_none(usage.get("output_tokens")),
            ),
            finish_reason=data.get("stop_reason") or "",
        )

    def _parse_stream_line(self, line: str) -> str | None:
        if not line.startswith("data:"):
            return None
        try:
            event = json.loads(line[len("data:") :].strip())
        except ValueError:
            return None
        if not isinstance(event, dict):
            return None
        event_type = event.get("type")
        if event_type == "message_stop":
            raise _StreamEnd
        if event_type == "error":
            error = event.get("error")
            detail = error.get("message", "stream error") if isinstance(error, dict) else "stream error"
            raise UpstreamError(f"Claude API error: {redact(detail)}")
        if event_type == "content_block_delta":
            delta = event.get("delta")
            return delta.get("text") if isinstance(delta, dict) else None
        return None


# ---------------------------------------------------------------------------
# Gemini Adapter (Google AI)
# ---------------------------------------------------------------------------


class GeminiAdapter(BaseVendorAdapter):
    """Google Gemini adapter with SAFETY filter detection."""

    provider = ProviderType.GEMINI
    display_name = "Gemini"
    default_model = "gemini-1.5-flash"
    api_url_template = "https://generativelanguage.googleapis.com/v1beta/models/{model}:generateContent"
    api_url = "https://generativelanguage.googleapis.com/v1beta"
    models_url = "https://generativelanguage.googleapis.com/v1beta/models"
    env_key_setting = "gemini_api_key"
    static_models = (
        ModelInfo("gemini-1.5-flash", "Gemini 1.5 Flash", "Fast multimodal model"),
        ModelInfo("gemini-1.5-pro", "Gemini 1.5 Pro", "Long-context multimodal model"),
        ModelInfo("gemini-1.0-pro", "Gemini 1.0 Pro", "First generation Gemini model"),
    )

    def build_prompt(self, message: str, context: Context) -> str:
        """Gemini receives one prompt string with the history inlined."""
        prompt = ""
        if self.system_prompt:
            prompt += f"{self.system_prompt}\n\n"
        for turn in context:
            speaker = "User" if turn.role == USER_ROLE else "Assistant"
            prompt += f"{speaker}: {turn.content}\n"
        prompt += f"User: {message}\n\nAssistant:"
        return prompt

    def _build_call(self, api_key: str, message: str, context: Context, stream: bool = False) -> VendorCall:
        payload = {
            "contents": [{"parts": [{"text": self.build_prompt(message, context)}]}],
            "generationConfig": {
                "temperature": self.config.temperature,
                "maxOutputTokens": self.config.max_tokens,
                "topP": self.config.setting("top_p", 0.9),
                "topK": self.config.setting("top_k", 40),
            },
        }
        return VendorCall(
            url=self.api_url_template.format(model=self.model),
            headers={"Content-Type": "application/json"},
            payload=payload,
            params={"key": api_key},
        )

    def _is_auth_failure(self, response: httpx.Response) -> bool:
        # invalid keys come back as 400 with reason API_KEY_INVALID
        return super()._is_auth_failure(response) or (
            response.status_code == 400 and "API_KEY_INVALID" in response.text
        )

    def _parse_reply(self, data: Any) -> ParsedReply:
        if not isinstance(data, dict):
            raise ResponseFormatError(self.format_error_message)

        candidates = data.get("candidates") or []
        if not candidates:
            block_reason = (data.get("promptFeedback") or {}).get("blockReason")
            if block_reason:
                raise ResponseFormatError(f"Gemini blocked the prompt ({block_reason})")
            raise ResponseFormatError(self.format_error_message)

        candidate = candidates[0]
        finish_reason = candidate.get("finishReason", "")
        parts = (candidate.get("content") or {}).get("parts") or []
        text_parts = [p["text"] for p in parts if isinstance(p, dict) and isinstance(p.get("text"), str)]

        if not text_parts:
            if finish_reason == "SAFETY":
                raise ResponseFormatError("Gemini safety filter blocked the response")
            raise ResponseFormatError(self.format_error_message)

        usage = data.get("usageMetadata") or {}
        return ParsedReply(
            content="".join(text_parts),
            model=data.get("modelVersion") or self.model,
            usage=TokenUsage(
                prompt_tokens=_int_or_none(usage.get("promptTokenCount")),
                completion_tokens=_int_or_none(usage.get("candidatesTokenCount")),
                total_tokens=_int_or_none(usage.get("totalTokenCount")),
            ),
            finish_reason=finish_reason,
        )

    def _models_call(self, api_key: str) -> VendorCall:
        return VendorCall(url=self.models_url or "", headers={}, payload={}, params={"key": api_key})

    def _parse_models(self, data: Any) -> list[ModelInfo]:
        models = []
        for item in (data or {}).get("models", []):
            if "generateContent" not in item.get("supportedGenerationMethods", []):
                continue
            model_id = item.get("name", "").removeprefix("models/")
            if model_id:
                models.append(
                    ModelInfo(id=model_id, name=item.get("displayName") or model_id, description=item.get("description", ""))
                )
        return models


# ---------------------------------------------------------------------------
# HuggingFace Adapter (Inference API)
# ---------------------------------------------------------------------------


def format_hf_prompt(message: str, system_prompt: str, model: str, context: Context) -> str:
    """Single prompt string in the template the model family was tuned on."""
    family = model.lower()
    if "llama" in family or "mistral" in family:
        if "llama" in family:
            prompt = f"<s>[INST] <<SYS>>\n{system_prompt}\n<</SYS>>\n\n"
        else:
            prompt = f"<s>[INST] {system_prompt}\n\n"
        for turn in context:
            if turn.role == USER_ROLE:
                prompt += f"{turn.content} [/INST] "
            else:
                prompt += f"{turn.content} </s><s>[INST] "
        return prompt + f"{message} [/INST]"

    prompt = f"System: {system_prompt}\n" if "falcon" in family else f"{system_prompt}\n\n"
    for turn in context:
        speaker = "User" if turn.role == USER_ROLE else "Assistant"
        prompt += f"{speaker}: {turn.content}\n"
    return prompt + f"User: {message}\nAssistant:"


def estimate_tokens(text: str) -> int:
    return len(text) // 4


class HuggingFaceAdapter(BaseVendorAdapter):
    """HuggingFace Inference API — text generation with estimated usage."""

    provider = ProviderType.HUGGINGFACE
    display_name = "HuggingFace"
    default_model = "mistralai/Mixtral-8x7B-Instruct-v0.1"
    api_url = "https://api-inference.huggingface.co/models"
    env_key_setting = "huggingface_api_key"
    static_models = (
        ModelInfo("meta-llama/Llama-2-70b-chat-hf", "Llama 2 70B Chat", "Open source model"),
        ModelInfo("mistralai/Mixtral-8x7B-Instruct-v0.1", "Mixtral 8x7B Instruct", "Open source model"),
        ModelInfo("tiiuae/falcon-7b-instruct", "Falcon 7B Instruct", "Open source model"),
    )

    def __init__(self, *args: Any, **kwargs: Any):
        super().__init__(*args, **kwargs)
        self._prompt = ""

    @property
    def system_prompt(self) -> str:
        return self.config.system_prompt or DEFAULT_SYSTEM_PROMPT

    def _build_call(self, api_key: str, message: str, context: Context, stream: bool = False) -> VendorCall:
        prompt = format_hf_prompt(message, self.system_prompt, self.model, context)
        self._prompt = prompt
        payload = {
            "inputs": prompt,
            "parameters": {
                "temperature": self.config.temperature,
                "max_new_tokens": self.config.max_tokens,
                "return_full_text": False,
            },
        }
        return VendorCall(url=f"{self.api_url}/{self.model}", headers=self._auth_headers(api_key), payload=payload)

    def _parse_reply(self, data: Any) -> ParsedReply:
        if isinstance(data, list) and data and isinstance(data[0], dict):
            text = data[0].get("generated_text")
        elif isinstance(data, dict):
            text = data.get("generated_text")
        else:
            text = None
        if not isinstance(text, str):
            raise ResponseFormatError(self.format_error_message)

        content = text.strip()
        prompt_tokens = estimate_tokens(self._prompt)
        completion_tokens = estimate_tokens(content)
        return ParsedReply(
            content=content,
            model=self.model,
            usage=TokenUsage(
                prompt_tokens=prompt_tokens,
                completion_tokens=completion_tokens,
                total_tokens=prompt_tokens + completion_tokens,
            ),
            finish_reason="stop",
        )


# ---------------------------------------------------------------------------
# Adapter registry
# ---------------------------------------------------------------------------

ADAPTER_REGISTRY: dict[ProviderType, type[BaseVendorAdapter]] = {
    ProviderType.OPENAI: OpenAIAdapter,
    ProviderType.CLAUDE: ClaudeAdapter,
    ProviderType.GEMINI: GeminiAdapter,
    ProviderType.MISTRAL: MistralAdapter,
    ProviderType.GROK: GrokAdapter,
    ProviderType.GROQ: GroqAdapter,
    ProviderType.OPENROUTER: OpenRouterAdapter,
    ProviderType.DEEPSEEK: DeepSeekAdapter,
    ProviderType.HUGGINGFACE: HuggingFaceAdapter,
}

_missing = set(ProviderType) - set(ADAPTER_REGISTRY)
if _missing:
    raise RuntimeError(f"No adapter registered for: {sorted(p.value for p in _missing)}")
