"""Model discovery with a TTL cache, plus the provider template catalogue.

Discovery results are cached per (provider type, API key) under a SHA-256
digest so keys never appear in cache keys. Failed lookups are not cached.
"""

from __future__ import annotations

import asyncio
import hashlib
import json
import logging
import math
import time
from collections.abc import Callable
from typing import Any, Protocol

from app.core.encryption import CredentialVault
from app.gateway.errors import GatewayError
from app.gateway.registry import ProviderRegistry, parse_provider_type
from app.gateway.types import ProviderConfig, ProviderType

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Cache stores
# ---------------------------------------------------------------------------


class CacheStore(Protocol):
    async def get(self, key: str) -> Any | None: ...

    async def set(self, key: str, value: Any, ttl_seconds: int) -> None: ...


class InMemoryTTLCache:
    """Dict-backed cache.

    Expired entries are evicted when read, and all of them are swept on the
    first write after the earliest expiry has passed.
    """

    def __init__(self, clock: Callable[[], float] = time.monotonic):
        self._clock = clock
        self._entries: dict[str, tuple[float, Any]] = {}
        self._next_expiry = math.inf

    async def get(self, key: str) -> Any | None:
        entry = self._entries.get(key)
        if entry is None:
            return None
        expires_at, value = entry
        if self._clock() >= expires_at:
            del self._entries[key]
            return None
        return value

    async def set(self, key: str, value: Any, ttl_seconds: int) -> None:
        now = self._clock()
        if now >= self._next_expiry:
            self._sweep(now)
        expires_at = now + ttl_seconds
        self._entries[key] = (expires_at, value)
        self._next_expiry = min(self._next_expiry, expires_at)

    def _sweep(self, now: float) -> None:
        self._entries = {key: entry for key, entry in self._entries.items() if entry[0] > now}
        self._next_expiry = min((expires_at for expires_at, _ in self._entries.values()), default=math.inf)

    def __len__(self) -> int:
        return len(self._entries)


class RedisTTLCache:
    """JSON values in Redis with ``SET ... EX``."""

    def __init__(self, redis_client):
        self._redis = redis_client

    async def get(self, key: str) -> Any | None:
        raw = await self._redis.get(key)
        if raw is None:
            return None
        try:
            return json.loads(raw)
        except ValueError:
            logger.warning("Dropping unreadable cache entry %s", key)
            await self._redis.delete(key)
            return None

    async def set(self, key: str, value: Any, ttl_seconds: int) -> None:
        await self._redis.set(key, json.dumps(value, ensure_ascii=False), ex=ttl_seconds)


# ---------------------------------------------------------------------------
# Model catalogue
# ---------------------------------------------------------------------------


class ModelCatalog:
    """Cached-or-fresh model discovery for a provider and API key."""

    def __init__(self, registry: ProviderRegistry, store: CacheStore | None = None, ttl_seconds: int = 3600):
        self.registry = registry
        self.store = store if store is not None else InMemoryTTLCache()
        self.ttl_seconds = ttl_seconds
        self._locks: dict[str, asyncio.Lock] = {}
        self._lock_users: dict[str, int] = {}

    @property
    def vault(self) -> CredentialVault:
        return self.registry.vault

    @staticmethod
    def cache_key(provider_type: str, api_key: str) -> str:
        digest = hashlib.sha256(f"{provider_type}:{api_key}".encode("utf-8")).hexdigest()
        return f"models:{provider_type}:{digest}"

    async def discover(self, provider_type: ProviderType | str, api_key: str) -> dict:
        try:
            ptype = parse_provider_type(provider_type)
        except GatewayError as e:
            return {"success": False, "provider": str(provider_type), "message": e.message, "models": []}
        provider = ptype.value
        if not api_key:
            return {"success": False, "provider": provider, "message": "API key is required", "models": []}

        key = self.cache_key(provider, api_key)
        cached = await self.store.get(key)
        if cached is not None:
            return cached

        # one vendor lookup per key at a time; waiters reuse the stored result
        lock = self._locks.setdefault(key, asyncio.Lock())
        self._lock_users[key] = self._lock_users.get(key, 0) + 1
        try:
            async with lock:
                cached = await self.store.get(key)
                if cached is not None:
                    return cached

                config = ProviderConfig(provider_type=provider, encrypted_key=self.vault.encrypt(api_key))
                try:
                    adapter = self.registry.resolve(ptype, config)
                    models = await adapter.list_available_models()
                except GatewayError as e:
                    logger.warning("Model discovery failed for %s: %s", provider, e.message)
                    return {"success": False, "provider": provider, "message": e.message, "models": []}

                payload = {"success": True, "provider": provider, "models": [m.to_dict() for m in models]}
                await self.store.set(key, payload, self.ttl_seconds)
                logger.info("Discovered %d models for %s", len(models), provider)
        finally:
            self._lock_users[key] -= 1
            if not self._lock_users[key]:
                del self._lock_users[key]
                self._locks.pop(key, None)
        return payload


# ---------------------------------------------------------------------------
# Provider templates (dashboard setup screen)
# ---------------------------------------------------------------------------

PROVIDER_TEMPLATES: dict[ProviderType, dict[str, Any]] = {
    ProviderType.OPENAI: {
        "name": "OpenAI",
        "description": "GPT models with dynamic model discovery",
        "supported_features": ["chat", "streaming", "function_calling"],
        "api_endpoint": "https://api.openai.com/v1",
        "documentation_url": "https://platform.openai.com/docs",
        "pricing_info": "Pay per token usage",
    },
    ProviderType.CLAUDE: {
        "name": "Anthropic Claude",
        "description": "Claude models with dynamic model discovery",
        "supported_features": ["chat", "streaming", "long_context"],
        "api_endpoint": "https://api.anthropic.com/v1",
        "documentation_url": "https://docs.anthropic.com",
        "pricing_info": "Pay per token usage",
    },
    ProviderType.GEMINI: {
        "name": "Google Gemini",
        "description": "Gemini models with dynamic model discovery",
        "supported_features": ["chat", "streaming", "multimodal"],
        "api_endpoint": "https://generativelanguage.googleapis.com/v1beta",
        "documentation_url": "https://ai.google.dev/docs",
        "pricing_info": "Free tier available",
    },
    ProviderType.MISTRAL: {
        "name": "Mistral AI",
        "description": "Mistral Large, Medium, Small",
        "supported_features": ["chat", "streaming"],
        "api_endpoint": "https://api.mistral.ai/v1",
        "documentation_url": "https://docs.mistral.ai",
        "pricing_info": "Pay per token usage",
    },
    ProviderType.GROQ: {
        "name": "Groq",
        "description": "Ultra-fast inference",
        "supported_features": ["chat", "streaming", "fast_inference"],
        "api_endpoint": "https://api.groq.com/openai/v1",
        "documentation_url": "https://console.groq.com/docs",
        "pricing_info": "Free tier available",
    },
    ProviderType.DEEPSEEK: {
        "name": "DeepSeek",
        "description": "DeepSeek Chat, Coder",
        "supported_features": ["chat", "coding"],
        "api_endpoint": "https://api.deepseek.com/v1",
        "documentation_url": "https://platform.deepseek.com/docs",
        "pricing_info": "Competitive pricing",
    },
    ProviderType.HUGGINGFACE: {
        "name": "HuggingFace",
        "description": "Open source models",
        "supported_features": ["chat", "open_source"],
        "api_endpoint": "https://api-inference.huggingface.co",
        "documentation_url": "https://huggingface.co/docs",
        "pricing_info": "Free tier available",
    },
    ProviderType.GROK: {
        "name": "Grok (X.AI)",
        "description": "Grok models from X.AI",
        "supported_features": ["chat"],
        "api_endpoint": "https://api.x.ai/v1",
        "documentation_url": "https://docs.x.ai",
        "pricing_info": "Premium pricing",
    },
    ProviderType.OPENROUTER: {
        "name": "OpenRouter",
        "description": "Multiple model access",
        "supported_features": ["chat", "multi_provider"],
        "api_endpoint": "https://openrouter.ai/api/v1",
        "documentation_url": "https://openrouter.ai/docs",
        "pricing_info": "Unified pricing across providers",
    },
}


def provider_templates(registry: ProviderRegistry) -> dict[str, dict[str, Any]]:
    """Templates enriched with each adapter's capabilities."""
    templates: dict[str, dict[str, Any]] = {}
    for ptype in registry.provider_types:
        cls = registry.adapter_class(ptype)
        template = dict(PROVIDER_TEMPLATES.get(ptype, {"name": cls.display_name, "description": ""}))
        template["default_model"] = cls.default_model
        template["native_streaming"] = cls.supports_native_streaming
        template["models"] = [m.id for m in cls.static_models]
        templates[ptype.value] = template
    return templates
