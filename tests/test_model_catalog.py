"""Tests for cached model discovery and provider templates."""

import asyncio
import hashlib
import json

import pytest

from app.gateway.catalog import InMemoryTTLCache, ModelCatalog, RedisTTLCache, provider_templates
from app.gateway.errors import UpstreamError
from app.gateway.types import ProviderType


class FakeClock:
    def __init__(self):
        self.now = 0.0

    def __call__(self):
        return self.now


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def catalog(registry, clock):
    return ModelCatalog(registry, InMemoryTTLCache(clock=clock), ttl_seconds=3600)


def _openai_models(*ids: str) -> dict:
    return {"data": [{"id": model_id, "owned_by": "openai"} for model_id in ids]}


class GatedAdapter:
    """Fails every listing; the first one blocks until the gate opens."""

    def __init__(self):
        self.gate = asyncio.Event()
        self.calls = 0
        self.active = 0
        self.peak = 0

    async def list_available_models(self):
        self.calls += 1
        self.active += 1
        self.peak = max(self.peak, self.active)
        try:
            await self.gate.wait()
            await asyncio.sleep(0)
            raise UpstreamError("Provider unavailable", status_code=503)
        finally:
            self.active -= 1


class TestModelCatalog:
    @pytest.mark.asyncio
    async def test_discover(self, catalog, vendor):
        vendor.json("api.openai.com/v1/models", _openai_models("gpt-4o", "gpt-4o-mini"))
        payload = await catalog.discover("openai", "sk-key-one-123456")
        assert payload["success"] is True
        assert payload["provider"] == "openai"
        assert [m["id"] for m in payload["models"]] == ["gpt-4o", "gpt-4o-mini"]
        assert set(payload["models"][0]) == {"id", "name", "description"}

    @pytest.mark.asyncio
    async def test_second_call_is_served_from_cache(self, catalog, vendor):
        vendor.json("api.openai.com/v1/models", _openai_models("gpt-4o"))
        first = await catalog.discover("openai", "sk-key-one-123456")
        second = await catalog.discover("openai", "sk-key-one-123456")
        assert first == second
        assert len(vendor.calls) == 1

    @pytest.mark.asyncio
    async def test_cache_expires_after_ttl(self, catalog, vendor, clock):
        vendor.json("api.openai.com/v1/models", _openai_models("gpt-4o"))
        await catalog.discover("openai", "sk-key-one-123456")
        clock.now = 3599
        await catalog.discover("openai", "sk-key-one-123456")
        assert len(vendor.calls) == 1
        clock.now = 3600
        await catalog.discover("openai", "sk-key-one-123456")
        assert len(vendor.calls) == 2

    @pytest.mark.asyncio
    async def test_cache_is_per_key(self, catalog, vendor):
        vendor.json("api.openai.com/v1/models", _openai_models("gpt-4o"))
        await catalog.discover("openai", "sk-key-one-123456")
        await catalog.discover("openai", "sk-key-two-123456")
        assert len(vendor.calls) == 2

    @pytest.mark.asyncio
    async def test_failures_are_not_cached(self, catalog, vendor):
        vendor.json("api.openai.com/v1/models", {"error": "unauthorized"}, status_code=401)
        failed = await catalog.discover("openai", "sk-key-one-123456")
        assert failed["success"] is False
        assert failed["models"] == []
        assert "Authentication failed" in failed["message"]

        vendor.json("api.openai.com/v1/models", _openai_models("gpt-4o"))
        recovered = await catalog.discover("openai", "sk-key-one-123456")
        assert recovered["success"] is True
        assert len(vendor.calls) == 2

    @pytest.mark.asyncio
    async def test_concurrent_lookups_share_one_vendor_call(self, catalog, vendor):
        vendor.json("api.openai.com/v1/models", _openai_models("gpt-4o"))
        results = await asyncio.gather(*(catalog.discover("openai", "sk-key-one-123456") for _ in range(5)))
        assert all(r["success"] for r in results)
        assert len(vendor.calls) == 1

    @pytest.mark.asyncio
    async def test_static_catalogue_vendor(self, catalog, vendor):
        payload = await catalog.discover("claude", "sk-ant-key")
        assert payload["success"] is True
        assert payload["models"]
        assert vendor.calls == []

    @pytest.mark.asyncio
    async def test_unknown_provider(self, catalog):
        payload = await catalog.discover("cohere", "key")
        assert payload == {"success": False, "provider": "cohere", "message": "Unsupported AI provider: cohere", "models": []}

    @pytest.mark.asyncio
    async def test_missing_key(self, catalog, vendor):
        payload = await catalog.discover("openai", "")
        assert payload["success"] is False
        assert payload["message"] == "API key is required"

    def test_injected_store_is_used(self, registry, clock):
        store = InMemoryTTLCache(clock=clock)
        assert ModelCatalog(registry, store).store is store

    @pytest.mark.asyncio
    async def test_expired_entries_for_other_keys_are_evicted(self, catalog, vendor, clock):
        vendor.json("api.openai.com/v1/models", _openai_models("gpt-4o"))
        for i in range(50):
            await catalog.discover("openai", f"sk-key-{i:02d}-123456")
        assert len(catalog.store) == 50

        clock.now = 3600
        await catalog.discover("openai", "sk-key-fresh-123456")
        assert len(catalog.store) == 1

    @pytest.mark.asyncio
    async def test_lock_kept_while_lookups_wait(self, catalog, monkeypatch):
        adapter = GatedAdapter()
        monkeypatch.setattr(catalog.registry, "resolve", lambda ptype, config: adapter)
        key = ModelCatalog.cache_key("openai", "sk-key-one-123456")

        first = asyncio.create_task(catalog.discover("openai", "sk-key-one-123456"))
        await asyncio.sleep(0)
        second = asyncio.create_task(catalog.discover("openai", "sk-key-one-123456"))
        await asyncio.sleep(0)

        adapter.gate.set()
        assert (await first)["success"] is False
        assert key in catalog._locks

        third = asyncio.create_task(catalog.discover("openai", "sk-key-one-123456"))
        results = await asyncio.gather(second, third)
        assert all(r["success"] is False for r in results)
        assert adapter.calls == 3
        assert adapter.peak == 1
        assert catalog._locks == {}

    def test_cache_key_hides_api_key(self):
        key = ModelCatalog.cache_key("openai", "sk-secret-123456")
        assert "sk-secret-123456" not in key
        assert key == "models:openai:" + hashlib.sha256(b"openai:sk-secret-123456").hexdigest()


class TestInMemoryTTLCache:
    @pytest.mark.asyncio
    async def test_get_evicts_expired_entry(self, clock):
        cache = InMemoryTTLCache(clock=clock)
        await cache.set("a", 1, 10)
        clock.now = 10
        assert await cache.get("a") is None
        assert len(cache) == 0

    @pytest.mark.asyncio
    async def test_set_sweeps_expired_entries(self, clock):
        cache = InMemoryTTLCache(clock=clock)
        await cache.set("a", 1, 10)
        await cache.set("b", 2, 100)
        clock.now = 50
        await cache.set("c", 3, 10)
        assert len(cache) == 2
        assert await cache.get("b") == 2
        assert await cache.get("c") == 3

    @pytest.mark.asyncio
    async def test_no_sweep_before_earliest_expiry(self, clock):
        cache = InMemoryTTLCache(clock=clock)
        await cache.set("a", 1, 10)
        clock.now = 9
        await cache.set("b", 2, 10)
        assert len(cache) == 2


class FakeRedis:
    def __init__(self):
        self.values = {}
        self.expiry = {}

    async def get(self, key):
        return self.values.get(key)

    async def set(self, key, value, ex=None):
        self.values[key] = value
        self.expiry[key] = ex

    async def delete(self, key):
        self.values.pop(key, None)


class TestRedisTTLCache:
    @pytest.mark.asyncio
    async def test_round_trip_with_expiry(self):
        redis = FakeRedis()
        cache = RedisTTLCache(redis)
        await cache.set("models:x", {"success": True}, 3600)
        assert json.loads(redis.values["models:x"]) == {"success": True}
        assert redis.expiry["models:x"] == 3600
        assert await cache.get("models:x") == {"success": True}

    @pytest.mark.asyncio
    async def test_missing(self):
        assert await RedisTTLCache(FakeRedis()).get("nope") is None

    @pytest.mark.asyncio
    async def test_unreadable_entry_dropped(self):
        redis = FakeRedis()
        redis.values["models:x"] = "{not json"
        assert await RedisTTLCache(redis).get("models:x") is None
        assert "models:x" not in redis.values


class TestProviderTemplates:
    def test_all_providers_listed(self, registry):
        templates = provider_templates(registry)
        assert set(templates) == {p.value for p in ProviderType}

    def test_capabilities_included(self, registry):
        templates = provider_templates(registry)
        assert templates["openai"]["native_streaming"] is True
        assert templates["deepseek"]["native_streaming"] is False
        assert templates["claude"]["default_model"] == "claude-3-haiku-20240307"
        assert "deepseek-chat" in templates["deepseek"]["models"]
