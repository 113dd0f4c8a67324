"""SQL-backed collaborators for the gateway: message log and provider lookup."""

from __future__ import annotations

import logging
import uuid
from collections.abc import Sequence
from datetime import datetime, timedelta, timezone

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from app.gateway.context import AI_SENDER, USER_SENDER, StoredTurn
from app.gateway.types import ProviderConfig, UniformResult
from app.models.ai_provider import AIProvider
from app.models.message import Message

logger = logging.getLogger(__name__)


class SqlTurnLog:
    """TurnSource + TurnSink over the ``messages`` table."""

    def __init__(self, db: AsyncSession):
        self.db = db

    async def recent_turns(self, session_id: str, limit: int) -> Sequence[StoredTurn]:
        result = await self.db.execute(
            select(Message)
            .where(Message.session_id == session_id)
            .order_by(Message.created_at.desc())
            .limit(limit)
        )
        rows = result.scalars().all()
        return [StoredTurn(sender_type=row.sender_type, message=row.message, created_at=row.created_at) for row in rows]

    async def record_exchange(
        self,
        session_id: str,
        user_message: str,
        result: UniformResult,
        client_address: str | None = None,
    ) -> None:
        replied_at = datetime.now(timezone.utc)
        # the user turn is dated when the request arrived so it sorts before the reply
        asked_at = replied_at - timedelta(milliseconds=max(result.response_time_ms, 1.0))
        self.db.add(
            Message(
                session_id=session_id,
                sender_type=USER_SENDER,
                message=user_message,
                ip_address=client_address,
                created_at=asked_at,
            )
        )
        if result.success and result.content is not None:
            self.db.add(
                Message(
                    session_id=session_id,
                    sender_type=AI_SENDER,
                    message=result.content,
                    response_time=result.response_time_ms,
                    token_usage=result.token_usage.to_dict(),
                    model_used=result.model_used,
                    provider=result.provider,
                    ip_address=client_address,
                    created_at=replied_at,
                )
            )
        await self.db.flush()


class SqlProviderConfigSource:
    """Loads ProviderConfig records by id."""

    def __init__(self, db: AsyncSession):
        self.db = db

    async def get(self, provider_id: uuid.UUID | str) -> ProviderConfig | None:
        try:
            pid = provider_id if isinstance(provider_id, uuid.UUID) else uuid.UUID(str(provider_id))
        except ValueError:
            return None
        provider = await self.db.get(AIProvider, pid)
        if provider is None:
            return None
        return provider.to_config()


class SessionScopedTurnLog:
    """TurnSink that opens its own session per write.

    Streamed replies finish after the request-scoped session is gone, so
    their exchange is persisted through a fresh session.
    """

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]):
        self.session_factory = session_factory

    async def record_exchange(
        self,
        session_id: str,
        user_message: str,
        result: UniformResult,
        client_address: str | None = None,
    ) -> None:
        async with self.session_factory() as db:
            await SqlTurnLog(db).record_exchange(session_id, user_message, result, client_address)
            await db.commit()
