"""Core types and DTOs for the AI provider gateway."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any

from app.gateway.errors import ConfigurationError, ErrorKind, GatewayError, error_from_kind


# ---------------------------------------------------------------------------
# Enums
# ---------------------------------------------------------------------------


class ProviderType(str, Enum):
    """Supported chat-completion vendors."""

    OPENAI = "openai"
    CLAUDE = "claude"
    GEMINI = "gemini"
    MISTRAL = "mistral"
    GROK = "grok"
    GROQ = "groq"
    OPENROUTER = "openrouter"
    DEEPSEEK = "deepseek"
    HUGGINGFACE = "huggingface"


USER_ROLE = "user"
ASSISTANT_ROLE = "assistant"

TEMPERATURE_RANGE = (0.0, 2.0)
MAX_TOKENS_RANGE = (1, 32000)


# ---------------------------------------------------------------------------
# Provider configuration (read-only to the gateway)
# ---------------------------------------------------------------------------


@dataclass
class ProviderConfig:
    """One configured vendor connection.

    ``encrypted_key`` is vault ciphertext; the adapter decrypts it only for
    the duration of one outbound call. ``use_environment_key`` marks ad-hoc
    configs whose key comes from process settings instead.
    """

    provider_type: str
    encrypted_key: str = field(default="", repr=False)
    model: str = ""
    temperature: float = 0.7
    max_tokens: int = 1000
    system_prompt: str = ""
    advanced_settings: dict[str, Any] = field(default_factory=dict)
    is_active: bool = True
    use_environment_key: bool = False

    def __post_init__(self) -> None:
        if isinstance(self.provider_type, ProviderType):
            self.provider_type = self.provider_type.value
        low, high = TEMPERATURE_RANGE
        if not low <= self.temperature <= high:
            raise ConfigurationError(f"temperature must be within [{low}, {high}], got {self.temperature}")
        low, high = MAX_TOKENS_RANGE
        if not low <= self.max_tokens <= high:
            raise ConfigurationError(f"max_tokens must be within [{low}, {high}], got {self.max_tokens}")
        if self.advanced_settings is None:
            self.advanced_settings = {}

    @classmethod
    def from_environment(cls, provider_type: ProviderType | str, model: str = "", **overrides: Any) -> ProviderConfig:
        """Ad-hoc config whose API key is read from settings at call time."""
        return cls(provider_type=provider_type, model=model, use_environment_key=True, **overrides)

    def setting(self, name: str, default: Any = None) -> Any:
        """Look up an advanced setting, treating None as missing."""
        value = self.advanced_settings.get(name)
        return default if value is None else value

    @property
    def context_window(self) -> int | None:
        value = self.setting("context_window")
        return int(value) if value else None


# ---------------------------------------------------------------------------
# Conversation context
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class ConversationTurn:
    role: str
    content: str

    def __post_init__(self) -> None:
        if self.role not in (USER_ROLE, ASSISTANT_ROLE):
            raise ValueError(f"role must be '{USER_ROLE}' or '{ASSISTANT_ROLE}', got {self.role!r}")

    def to_message(self) -> dict[str, str]:
        return {"role": self.role, "content": self.content}


# ---------------------------------------------------------------------------
# Uniform request / result
# ---------------------------------------------------------------------------


@dataclass
class UniformRequest:
    message: str
    config: ProviderConfig
    context: tuple[ConversationTurn, ...] = ()
    stream_requested: bool = False
    fallback_provider_type: str | None = None


@dataclass
class TokenUsage:
    """Token counts; vendors report any subset of the three."""

    prompt_tokens: int | None = None
    completion_tokens: int | None = None
    total_tokens: int | None = None

    @property
    def is_empty(self) -> bool:
        return self.prompt_tokens is None and self.completion_tokens is None and self.total_tokens is None

    def to_dict(self) -> dict[str, int | None]:
        return {
            "prompt_tokens": self.prompt_tokens,
            "completion_tokens": self.completion_tokens,
            "total_tokens": self.total_tokens,
        }


@dataclass
class UniformResult:
    """Normalized outcome of one generate call, whatever the vendor.

    Exactly one of ``content`` (success) or ``error_kind`` (failure) is set.
    """

    success: bool
    provider: str = ""
    content: str | None = None
    model_used: str = ""
    response_time_ms: float = 0.0
    token_usage: TokenUsage = field(default_factory=TokenUsage)
    finish_reason: str = ""
    error_kind: ErrorKind | None = None
    error_message: str = ""
    fallback_from: str | None = None

    def __post_init__(self) -> None:
        if self.success and (self.content is None or self.error_kind is not None):
            raise ValueError("successful result needs content and no error kind")
        if not self.success and (self.error_kind is None or self.content is not None):
            raise ValueError("failed result needs an error kind and no content")

    @classmethod
    def ok(
        cls,
        provider: str,
        content: str,
        model_used: str,
        response_time_ms: float,
        token_usage: TokenUsage | None = None,
        finish_reason: str = "",
    ) -> UniformResult:
        return cls(
            success=True,
            provider=provider,
            content=content,
            model_used=model_used,
            response_time_ms=response_time_ms,
            token_usage=token_usage or TokenUsage(),
            finish_reason=finish_reason,
        )

    @classmethod
    def failure(
        cls,
        provider: str,
        error: GatewayError,
        model_used: str = "",
        response_time_ms: float = 0.0,
    ) -> UniformResult:
        return cls(
            success=False,
            provider=provider,
            model_used=model_used,
            response_time_ms=response_time_ms,
            error_kind=error.kind,
            error_message=error.message,
        )

    def raise_for_error(self) -> UniformResult:
        """Return self on success, raise the matching GatewayError otherwise."""
        if self.success:
            return self
        raise error_from_kind(self.error_kind or ErrorKind.UPSTREAM, self.error_message)

    def to_dict(self) -> dict:
        """Serialize to JSON-compatible dict for the API layer."""
        return {
            "success": self.success,
            "provider": self.provider,
            "content": self.content,
            "model_used": self.model_used,
            "response_time_ms": round(self.response_time_ms, 2),
            "token_usage": self.token_usage.to_dict(),
            "finish_reason": self.finish_reason,
            "error_kind": self.error_kind.value if self.error_kind else None,
            "error_message": self.error_message or None,
            "fallback_from": self.fallback_from,
        }


# ---------------------------------------------------------------------------
# Discovery / connection test DTOs
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class ModelInfo:
    id: str
    name: str = ""
    description: str = ""

    def to_dict(self) -> dict[str, str]:
        return {"id": self.id, "name": self.name or self.id, "description": self.description}


@dataclass
class ConnectionTestResult:
    success: bool
    message: str
    provider: str
    model: str | None = None

    def to_dict(self) -> dict:
        return {"success": self.success, "message": self.message, "provider": self.provider, "model": self.model}
