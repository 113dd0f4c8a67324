"""Tests for the conversation context builder."""

from datetime import datetime, timedelta, timezone

import pytest

from app.gateway.context import AI_SENDER, USER_SENDER, ContextBuilder, InMemoryTurnLog, StoredTurn
from app.gateway.errors import UpstreamError
from app.gateway.types import UniformResult

T0 = datetime(2024, 5, 1, 12, 0, tzinfo=timezone.utc)


def _log_with_turns(count: int, session_id: str = "s1") -> InMemoryTurnLog:
    log = InMemoryTurnLog()
    for i in range(count):
        sender = USER_SENDER if i % 2 == 0 else AI_SENDER
        log.append(session_id, sender, f"turn {i}", created_at=T0 + timedelta(seconds=i))
    return log


class TestContextBuilder:
    @pytest.mark.asyncio
    async def test_most_recent_ten_oldest_first(self):
        builder = ContextBuilder(_log_with_turns(25))
        turns = await builder.build("s1")
        assert len(turns) == 10
        assert [t.content for t in turns] == [f"turn {i}" for i in range(15, 25)]

    @pytest.mark.asyncio
    async def test_roles_mapped(self):
        turns = await ContextBuilder(_log_with_turns(2)).build("s1")
        assert [t.role for t in turns] == ["user", "assistant"]

    @pytest.mark.asyncio
    async def test_shorter_history_returned_whole(self):
        turns = await ContextBuilder(_log_with_turns(3)).build("s1")
        assert [t.content for t in turns] == ["turn 0", "turn 1", "turn 2"]

    @pytest.mark.asyncio
    async def test_custom_limit(self):
        turns = await ContextBuilder(_log_with_turns(25)).build("s1", max_turns=4)
        assert [t.content for t in turns] == ["turn 21", "turn 22", "turn 23", "turn 24"]

    @pytest.mark.asyncio
    async def test_zero_limit_returns_empty(self):
        assert await ContextBuilder(_log_with_turns(5)).build("s1", max_turns=0) == []

    @pytest.mark.asyncio
    async def test_unknown_session_returns_empty(self):
        assert await ContextBuilder(_log_with_turns(5)).build("other") == []

    @pytest.mark.asyncio
    async def test_equal_timestamps_keep_insertion_order(self):
        log = InMemoryTurnLog()
        log.append("s1", USER_SENDER, "question", created_at=T0)
        log.append("s1", AI_SENDER, "answer", created_at=T0)
        turns = await ContextBuilder(log).build("s1")
        assert [t.content for t in turns] == ["question", "answer"]

    @pytest.mark.asyncio
    async def test_source_order_does_not_matter(self):
        class ShuffledSource:
            async def recent_turns(self, session_id, limit):
                return [
                    StoredTurn(USER_SENDER, "b", T0 + timedelta(seconds=2)),
                    StoredTurn(AI_SENDER, "c", T0 + timedelta(seconds=3)),
                    StoredTurn(USER_SENDER, "a", T0 + timedelta(seconds=1)),
                ]

        turns = await ContextBuilder(ShuffledSource()).build("s1", max_turns=2)
        assert [t.content for t in turns] == ["b", "c"]


class TestInMemoryTurnLog:
    @pytest.mark.asyncio
    async def test_record_success(self):
        log = InMemoryTurnLog()
        result = UniformResult.ok("openai", "Hi!", "gpt-4o-mini", 5.0)
        await log.record_exchange("s1", "Hello", result)
        assert [(t.sender_type, t.message) for t in log.turns_for("s1")] == [(USER_SENDER, "Hello"), (AI_SENDER, "Hi!")]

    @pytest.mark.asyncio
    async def test_record_failure_keeps_user_turn_only(self):
        log = InMemoryTurnLog()
        await log.record_exchange("s1", "Hello", UniformResult.failure("openai", UpstreamError("boom")))
        assert [t.sender_type for t in log.turns_for("s1")] == [USER_SENDER]
