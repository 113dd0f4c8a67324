"""Tests for the AI provider administration endpoints."""

import httpx
import pytest


class TestConnectionTestEndpoint:
    @pytest.mark.asyncio
    async def test_success(self, client, vendor):
        vendor.json(
            "api.openai.com/v1/chat/completions",
            {"model": "gpt-4o-mini", "choices": [{"message": {"content": "Hello!"}}]},
        )
        response = await client.post(
            "/api/v1/ai-providers/test-connection",
            json={"provider_type": "openai", "api_key": "sk-test-123456789"},
        )
        assert response.status_code == 200
        data = response.json()
        assert data == {"success": True, "message": "Connection successful!", "provider": "openai", "model": "gpt-4o-mini"}

    @pytest.mark.asyncio
    async def test_auth_failure(self, client, vendor):
        vendor.json("api.anthropic.com", {"error": {"type": "authentication_error"}}, status_code=401)
        response = await client.post(
            "/api/v1/ai-providers/test-connection",
            json={"provider_type": "claude", "api_key": "sk-ant-wrong"},
        )
        data = response.json()
        assert data["success"] is False
        assert data["message"] == "Connection failed: Authentication failed — check your API key"

    @pytest.mark.asyncio
    async def test_unknown_provider(self, client):
        response = await client.post(
            "/api/v1/ai-providers/test-connection",
            json={"provider_type": "cohere", "api_key": "key"},
        )
        assert response.json()["message"] == "Unsupported AI provider: cohere"

    @pytest.mark.asyncio
    async def test_key_required(self, client):
        response = await client.post("/api/v1/ai-providers/test-connection", json={"provider_type": "openai"})
        assert response.status_code == 422


class TestModelDiscoveryEndpoint:
    @pytest.mark.asyncio
    async def test_models_cached(self, client, vendor):
        vendor.json("api.groq.com/openai/v1/models", {"data": [{"id": "llama3-8b-8192", "context_window": 8192}]})
        body = {"provider_type": "groq", "api_key": "gsk_test_123456789"}

        first = await client.post("/api/v1/ai-providers/models", json=body)
        second = await client.post("/api/v1/ai-providers/models", json=body)

        assert first.status_code == 200
        assert first.json()["models"] == [
            {"id": "llama3-8b-8192", "name": "llama3-8b-8192", "description": "Context: 8192 tokens"}
        ]
        assert second.json() == first.json()
        assert len(vendor.calls) == 1

    @pytest.mark.asyncio
    async def test_failure(self, client, vendor):
        vendor.on("api.openai.com", lambda request: httpx.Response(401, json={"error": "bad key"}))
        response = await client.post("/api/v1/ai-providers/models", json={"provider_type": "openai", "api_key": "sk-bad"})
        data = response.json()
        assert data["success"] is False
        assert data["models"] == []


class TestTemplatesEndpoint:
    @pytest.mark.asyncio
    async def test_lists_all_providers(self, client):
        response = await client.get("/api/v1/ai-providers/templates")
        assert response.status_code == 200
        templates = response.json()["templates"]
        assert len(templates) == 9
        assert templates["openrouter"]["name"] == "OpenRouter"


class TestServiceEndpoints:
    @pytest.mark.asyncio
    async def test_health(self, client):
        response = await client.get("/api/v1/health")
        assert response.status_code == 200
        assert response.json()["status"] == "ok"
        assert len(response.json()["providers"]) == 9

    @pytest.mark.asyncio
    async def test_metrics(self, client):
        response = await client.get("/metrics")
        assert response.status_code == 200
        assert "gateway_requests_total" in response.text
        assert "gateway_rate_limited_total" in response.text

