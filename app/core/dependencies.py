"""FastAPI dependencies wiring the gateway's collaborators.

The registry, limiter and catalogue are process-wide and built once; the
SQL-backed message log and provider lookup are per request.
"""

import logging
from dataclasses import dataclass

import redis.asyncio as aioredis
from fastapi import Depends
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.config import settings
from app.core.encryption import get_vault
from app.db.postgres import async_session_factory, get_db
from app.gateway.catalog import InMemoryTTLCache, ModelCatalog, RedisTTLCache
from app.gateway.context import ContextBuilder
from app.gateway.gateway import ProviderGateway
from app.gateway.rate_limiter import InMemoryWindowStore, RedisWindowStore, SlidingWindowRateLimiter
from app.gateway.registry import ProviderRegistry
from app.gateway.streaming import StreamingRelay
from app.services.chat_store import SessionScopedTurnLog, SqlProviderConfigSource, SqlTurnLog

logger = logging.getLogger(__name__)


@dataclass
class GatewayServices:
    registry: ProviderRegistry
    gateway: ProviderGateway
    rate_limiter: SlidingWindowRateLimiter
    catalog: ModelCatalog
    redis: aioredis.Redis | None = None

    async def close(self) -> None:
        if self.redis is not None:
            await self.redis.aclose()


def build_services() -> GatewayServices:
    redis_client = aioredis.from_url(settings.redis_url, decode_responses=True) if settings.redis_url else None

    registry = ProviderRegistry(get_vault())
    relay = StreamingRelay(settings.stream_chunk_size, settings.stream_chunk_delay_seconds)
    window_store = RedisWindowStore(redis_client) if redis_client is not None else InMemoryWindowStore()
    cache_store = RedisTTLCache(redis_client) if redis_client is not None else InMemoryTTLCache()

    logger.info("Gateway state backend: %s", "redis" if redis_client is not None else "in-process")
    return GatewayServices(
        registry=registry,
        gateway=ProviderGateway(registry, relay),
        rate_limiter=SlidingWindowRateLimiter(
            limit=settings.chat_rate_limit,
            window_seconds=settings.chat_rate_window_seconds,
            store=window_store,
        ),
        catalog=ModelCatalog(registry, cache_store, ttl_seconds=settings.model_catalog_ttl_seconds),
        redis=redis_client,
    )


_services: GatewayServices | None = None


def get_services() -> GatewayServices:
    global _services
    if _services is None:
        _services = build_services()
    return _services


async def shutdown_services() -> None:
    global _services
    if _services is not None:
        await _services.close()
        _services = None


async def get_turn_log(db: AsyncSession = Depends(get_db)) -> SqlTurnLog:
    return SqlTurnLog(db)


async def get_provider_source(db: AsyncSession = Depends(get_db)) -> SqlProviderConfigSource:
    return SqlProviderConfigSource(db)


async def get_context_builder(turn_log: SqlTurnLog = Depends(get_turn_log)) -> ContextBuilder:
    return ContextBuilder(turn_log, default_max_turns=settings.context_max_turns)


def get_turn_sink() -> SessionScopedTurnLog:
    return SessionScopedTurnLog(async_session_factory)
