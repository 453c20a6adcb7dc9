"""Queue contract tests, run against both implementations.

The Redis queue runs over ``fakeredis`` with a fresh server per test, so the
list, sorted-set and MULTI/EXEC paths are exercised without a Redis server.
"""

from datetime import datetime, timedelta, timezone
from unittest.mock import AsyncMock

import pytest
import redis.asyncio as redis
from fakeredis import FakeServer
from fakeredis.aioredis import FakeRedis

from formchat_engine.queue import InMemoryMessageQueue, RedisMessageQueue


def _fake_client():
    return FakeRedis(server=FakeServer(), decode_responses=True)


@pytest.fixture(params=["memory", "redis"])
def q(request):
    if request.param == "memory":
        return InMemoryMessageQueue()
    return RedisMessageQueue(_fake_client())


NOW = datetime(2026, 1, 1, 12, 0, tzinfo=timezone.utc)


class TestMainList:

    @pytest.mark.asyncio
    async def test_fifo(self, q):
        for raw in ("a", "b", "c"):
            await q.push(raw)
        assert await q.length() == 3
        assert [await q.pop(), await q.pop(), await q.pop()] == ["a", "b", "c"]

    @pytest.mark.asyncio
    async def test_pop_empty(self, q):
        assert await q.pop() is None


class TestRetrySet:

    @pytest.mark.asyncio
    async def test_not_promoted_before_due(self, q):
        await q.schedule_retry("r1", NOW + timedelta(seconds=5))

        assert await q.promote_due(NOW) == 0
        assert await q.retry_length() == 1
        assert await q.length() == 0

    @pytest.mark.asyncio
    async def test_promoted_once_due(self, q):
        await q.schedule_retry("r1", NOW + timedelta(seconds=5))

        assert await q.promote_due(NOW + timedelta(seconds=5)) == 1
        assert await q.retry_length() == 0
        assert await q.pop() == "r1"

    @pytest.mark.asyncio
    async def test_promotes_in_eligibility_order(self, q):
        await q.schedule_retry("late", NOW + timedelta(seconds=20))
        await q.schedule_retry("early", NOW + timedelta(seconds=10))
        await q.schedule_retry("not-yet", NOW + timedelta(seconds=60))

        assert await q.promote_due(NOW + timedelta(seconds=30)) == 2
        assert await q.pop() == "early"
        assert await q.pop() == "late"
        assert await q.retry_length() == 1

    @pytest.mark.asyncio
    async def test_promoted_records_queue_behind_fresh_ones(self, q):
        await q.push("fresh")
        await q.schedule_retry("retry", NOW)
        await q.promote_due(NOW)
        assert await q.pop() == "fresh"
        assert await q.pop() == "retry"


class TestDeadLetters:

    @pytest.mark.asyncio
    async def test_listing_is_newest_first(self, q):
        for raw in ("d1", "d2", "d3"):
            await q.dead_letter(raw)
        assert await q.dead_letters() == ["d3", "d2", "d1"]
        assert await q.dead_letters(limit=2) == ["d3", "d2"]
        assert await q.dead_letters(limit=0) == []

    @pytest.mark.asyncio
    async def test_pop_takes_oldest(self, q):
        for raw in ("d1", "d2"):
            await q.dead_letter(raw)
        assert await q.pop_dead_letter() == "d1"
        assert await q.dead_letter_length() == 1

    @pytest.mark.asyncio
    async def test_clear_returns_count(self, q):
        await q.dead_letter("d1")
        await q.dead_letter("d2")
        assert await q.clear_dead_letters() == 2
        assert await q.dead_letter_length() == 0
        assert await q.clear_dead_letters() == 0

    @pytest.mark.asyncio
    async def test_ping(self, q):
        assert await q.ping() is True


class TestRedisKeys:
    """Redis-only behaviour: key layout and failure handling."""

    @pytest.fixture
    def client(self):
        return _fake_client()

    @pytest.fixture
    def rq(self, client):
        return RedisMessageQueue(
            client, queue_name="t:in", retry_name="t:retry", dead_letter_name="t:dead"
        )

    @pytest.mark.asyncio
    async def test_configured_key_names(self, rq, client):
        await rq.push("m")
        await rq.schedule_retry("r", NOW)
        await rq.dead_letter("d")

        assert await client.lrange("t:in", 0, -1) == ["m"]
        assert await client.zrange("t:retry", 0, -1, withscores=True) == [("r", NOW.timestamp())]
        assert await client.lrange("t:dead", 0, -1) == ["d"]

    @pytest.mark.asyncio
    async def test_promote_moves_record_out_of_retry_set(self, rq, client):
        await rq.schedule_retry("r1", NOW)
        await rq.schedule_retry("r2", NOW + timedelta(hours=1))

        assert await rq.promote_due(NOW) == 1

        assert await client.zrange("t:retry", 0, -1) == ["r2"]
        assert await client.lrange("t:in", 0, -1) == ["r1"]

    @pytest.mark.asyncio
    async def test_clear_deletes_key(self, rq, client):
        await rq.dead_letter("d1")
        await rq.dead_letter("d2")

        assert await rq.clear_dead_letters() == 2
        assert await client.exists("t:dead") == 0

    @pytest.mark.asyncio
    async def test_ping_reports_connection_errors(self):
        client = AsyncMock()
        client.ping.side_effect = redis.ConnectionError("refused")

        assert await RedisMessageQueue(client).ping() is False

    @pytest.mark.asyncio
    async def test_close(self, rq, client):
        client.aclose = AsyncMock()
        await rq.close()
        client.aclose.assert_awaited_once()
