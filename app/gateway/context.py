"""Context Builder — bounded, oldest-first conversation history.

The message log is an external collaborator; the builder only needs a
``TurnSource``. ``InMemoryTurnLog`` is both a source and a sink and backs
tests and single-process development runs.
"""

from __future__ import annotations

import logging
from collections import defaultdict
from collections.abc import Sequence
from dataclasses import dataclass, field
from datetime import datetime, timezone
from itertools import count
from typing import Protocol

from app.gateway.types import ASSISTANT_ROLE, USER_ROLE, ConversationTurn, UniformResult

logger = logging.getLogger(__name__)

USER_SENDER = "user"
AI_SENDER = "ai"


@dataclass(frozen=True)
class StoredTurn:
    """A persisted message as the log sees it."""

    sender_type: str
    message: str
    created_at: datetime
    sequence: int = 0


class TurnSource(Protocol):
    async def recent_turns(self, session_id: str, limit: int) -> Sequence[StoredTurn]:
        """Up to ``limit`` most recent turns for the session, any order."""
        ...


class TurnSink(Protocol):
    async def record_exchange(
        self,
        session_id: str,
        user_message: str,
        result: UniformResult,
        client_address: str | None = None,
    ) -> None: ...


def to_conversation_turn(stored: StoredTurn) -> ConversationTurn:
    role = USER_ROLE if stored.sender_type == USER_SENDER else ASSISTANT_ROLE
    return ConversationTurn(role=role, content=stored.message)


class ContextBuilder:
    def __init__(self, source: TurnSource, default_max_turns: int = 10):
        self.source = source
        self.default_max_turns = default_max_turns

    async def build(self, session_id: str, max_turns: int | None = None) -> list[ConversationTurn]:
        limit = self.default_max_turns if max_turns is None else max_turns
        if limit <= 0 or not session_id:
            return []
        stored = await self.source.recent_turns(session_id, limit)
        newest_first = sorted(stored, key=lambda t: (t.created_at, t.sequence), reverse=True)[:limit]
        turns = [to_conversation_turn(t) for t in reversed(newest_first)]
        logger.debug("Built context for session %s: %d turns", session_id, len(turns))
        return turns


@dataclass
class InMemoryTurnLog:
    """Message log kept in process memory."""

    _turns: dict[str, list[StoredTurn]] = field(default_factory=lambda: defaultdict(list))
    _sequence: count = field(default_factory=lambda: count(1))

    def append(self, session_id: str, sender_type: str, message: str, created_at: datetime | None = None) -> StoredTurn:
        turn = StoredTurn(
            sender_type=sender_type,
            message=message,
            created_at=created_at or datetime.now(timezone.utc),
            sequence=next(self._sequence),
        )
        self._turns[session_id].append(turn)
        return turn

    async def recent_turns(self, session_id: str, limit: int) -> Sequence[StoredTurn]:
        turns = sorted(self._turns.get(session_id, []), key=lambda t: (t.created_at, t.sequence), reverse=True)
        return turns[:limit]

    async def record_exchange(
        self,
        session_id: str,
        user_message: str,
        result: UniformResult,
        client_address: str | None = None,
    ) -> None:
        self.append(session_id, USER_SENDER, user_message)
        if result.success and result.content is not None:
            self.append(session_id, AI_SENDER, result.content)

    def turns_for(self, session_id: str) -> list[StoredTurn]:
        return list(self._turns.get(session_id, []))
