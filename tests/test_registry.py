"""Tests for the provider registry and core gateway types."""

import pytest

from app.gateway.errors import (
    ConfigurationError,
    ErrorKind,
    ProviderInactive,
    ProviderNotSupported,
    UpstreamError,
    error_from_kind,
)
from app.gateway.normalizer import normalize_result
from app.gateway.registry import ProviderRegistry, parse_provider_type
from app.gateway.types import ProviderConfig, ProviderType, TokenUsage, UniformResult
from app.gateway.vendor_adapters import ClaudeAdapter, OpenAIAdapter


class TestProviderRegistry:
    def test_resolve_builds_matching_adapter(self, registry):
        adapter = registry.resolve("claude", ProviderConfig(provider_type="claude"))
        assert isinstance(adapter, ClaudeAdapter)

    def test_resolve_is_case_insensitive(self, registry):
        adapter = registry.resolve(" OpenAI ", ProviderConfig(provider_type="openai"))
        assert isinstance(adapter, OpenAIAdapter)

    def test_fresh_adapter_per_call(self, registry):
        config = ProviderConfig(provider_type="openai")
        assert registry.resolve("openai", config) is not registry.resolve("openai", config)

    def test_unknown_provider(self, registry):
        with pytest.raises(ProviderNotSupported, match="Unsupported AI provider: cohere"):
            registry.resolve("cohere", ProviderConfig(provider_type="cohere"))

    def test_inactive_provider(self, registry):
        with pytest.raises(ProviderInactive):
            registry.resolve("openai", ProviderConfig(provider_type="openai", is_active=False))

    def test_all_nine_registered(self, registry):
        assert set(registry.provider_types) == set(ProviderType)
        assert len(registry.provider_types) == 9

    def test_restricted_table(self, vault):
        registry = ProviderRegistry(vault, adapters={ProviderType.OPENAI: OpenAIAdapter})
        with pytest.raises(ProviderNotSupported):
            registry.adapter_class("claude")

    def test_adapters_share_transport(self, registry, transport):
        adapter = registry.resolve("groq", ProviderConfig(provider_type="groq"))
        assert adapter.transport is transport

    def test_parse_provider_type(self):
        assert parse_provider_type(ProviderType.GROK) is ProviderType.GROK
        assert parse_provider_type("HuggingFace") is ProviderType.HUGGINGFACE
        with pytest.raises(ProviderNotSupported):
            parse_provider_type("")


class TestProviderConfig:
    def test_defaults(self):
        config = ProviderConfig(provider_type=ProviderType.OPENAI)
        assert config.provider_type == "openai"
        assert config.temperature == 0.7
        assert config.max_tokens == 1000
        assert config.advanced_settings == {}

    @pytest.mark.parametrize("temperature", [-0.1, 2.1])
    def test_temperature_bounds(self, temperature):
        with pytest.raises(ConfigurationError):
            ProviderConfig(provider_type="openai", temperature=temperature)

    @pytest.mark.parametrize("max_tokens", [0, 32001])
    def test_max_tokens_bounds(self, max_tokens):
        with pytest.raises(ConfigurationError):
            ProviderConfig(provider_type="openai", max_tokens=max_tokens)

    def test_key_hidden_from_repr(self):
        assert "enc:v1:secret" not in repr(ProviderConfig(provider_type="openai", encrypted_key="enc:v1:secret"))

    def test_from_environment(self):
        config = ProviderConfig.from_environment("groq", temperature=0.3)
        assert config.use_environment_key is True
        assert config.encrypted_key == ""
        assert config.temperature == 0.3

    def test_context_window_setting(self):
        assert ProviderConfig(provider_type="openai").context_window is None
        assert ProviderConfig(provider_type="openai", advanced_settings={"context_window": "4"}).context_window == 4


class TestUniformResult:
    def test_success_requires_content(self):
        with pytest.raises(ValueError):
            UniformResult(success=True)

    def test_failure_requires_kind(self):
        with pytest.raises(ValueError):
            UniformResult(success=False, error_message="boom")

    def test_failure_rejects_content(self):
        with pytest.raises(ValueError):
            UniformResult(success=False, content="partial", error_kind=ErrorKind.UPSTREAM)

    def test_raise_for_error(self):
        result = UniformResult.failure("openai", UpstreamError("OpenAI API error (500): boom", status_code=500))
        with pytest.raises(UpstreamError, match="boom"):
            result.raise_for_error()

    def test_raise_for_error_without_kind_is_upstream(self):
        result = UniformResult.failure("openai", UpstreamError("boom"))
        result.error_kind = None
        with pytest.raises(UpstreamError, match="boom"):
            result.raise_for_error()

    def test_to_dict(self):
        result = UniformResult.ok("openai", "Hi", "gpt-4o-mini", 12.3456, TokenUsage(1, 2, 3), "stop")
        data = result.to_dict()
        assert data["success"] is True
        assert data["response_time_ms"] == 12.35
        assert data["token_usage"] == {"prompt_tokens": 1, "completion_tokens": 2, "total_tokens": 3}
        assert data["error_kind"] is None

    def test_error_from_kind_round_trip(self):
        for kind in ErrorKind:
            err = error_from_kind(kind, "msg")
            assert err.kind == kind
            assert err.message == "msg"


class TestNormalizer:
    def test_fills_total_and_trims(self):
        result = UniformResult.ok("claude", "  Hello \n", "claude-3", 10.0, TokenUsage(5, 7))
        normalized = normalize_result(result)
        assert normalized.content == "Hello"
        assert normalized.token_usage.total_tokens == 12
        assert normalized.finish_reason == "stop"

    def test_idempotent(self):
        result = UniformResult.ok("claude", " Hello ", "claude-3", 10.0, TokenUsage(5, 7), "end_turn")
        once = normalize_result(result).to_dict()
        assert normalize_result(result).to_dict() == once
        assert once["finish_reason"] == "end_turn"

    def test_failure_untouched(self):
        result = UniformResult.failure("openai", ConfigurationError("no key"))
        assert normalize_result(result).error_message == "no key"

    def test_blank_reply_becomes_format_failure(self):
        result = UniformResult.ok("groq", "  \n ", "llama-3", 42.0, TokenUsage(3, 0))
        result.fallback_from = "openai"
        normalized = normalize_result(result)
        assert normalized.success is False
        assert normalized.error_kind == ErrorKind.RESPONSE_FORMAT
        assert normalized.content is None
        assert normalized.model_used == "llama-3"
        assert normalized.fallback_from == "openai"
        assert normalized.token_usage.total_tokens == 3
        assert normalize_result(normalized).to_dict() == normalized.to_dict()
