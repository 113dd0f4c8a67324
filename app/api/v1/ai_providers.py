"""AI provider administration — connection tests, model discovery, templates."""

from fastapi import APIRouter, Depends, Request

from app.core.dependencies import GatewayServices, get_services
from app.core.rate_limit import admin_limit, limiter
from app.gateway.catalog import provider_templates
from app.schemas.provider import (
    ConnectionTestRequest,
    ConnectionTestResponse,
    ModelDiscoveryRequest,
    ModelDiscoveryResponse,
)

router = APIRouter(prefix="/ai-providers", tags=["ai-providers"])


@router.post("/test-connection", response_model=ConnectionTestResponse)
@limiter.limit(admin_limit)
async def test_connection(
    request: Request,
    body: ConnectionTestRequest,
    services: GatewayServices = Depends(get_services),
):
    """Send a minimal request with the given key. Vendor auth errors are normalized."""
    result = await services.gateway.test_connection(body.provider_type, body.api_key, body.model)
    return result.to_dict()


@router.post("/models", response_model=ModelDiscoveryResponse)
@limiter.limit(admin_limit)
async def discover_models(
    request: Request,
    body: ModelDiscoveryRequest,
    services: GatewayServices = Depends(get_services),
):
    """List models for a provider and key, served from cache for an hour."""
    return await services.catalog.discover(body.provider_type, body.api_key)


@router.get("/templates")
async def list_templates(services: GatewayServices = Depends(get_services)):
    return {"success": True, "templates": provider_templates(services.registry)}
