"""Inbound queue implementations.

``RedisMessageQueue`` is the durable production queue; it survives process
restarts because all state lives in Redis:

  - main list        ``whatsapp:incoming:queue``   LPUSH head / RPOP tail
  - retry sorted set ``whatsapp:retry_queue``      score = eligible-at epoch
  - dead-letter list ``whatsapp:dead_letter_queue`` LPUSH head, newest first

``InMemoryMessageQueue`` implements the same contract over deques for tests
and single-process local development.
"""

from __future__ import annotations

import bisect
import logging
from collections import deque
from datetime import datetime

import redis.asyncio as redis

from formchat_engine.constants import (
    DEAD_LETTER_QUEUE_NAME,
    QUEUE_NAME,
    RETRY_QUEUE_NAME,
)
from formchat_engine.interfaces import MessageQueue

logger = logging.getLogger(__name__)


class RedisMessageQueue(MessageQueue):
    """Redis-backed queue (``redis.asyncio``).

    Args:
        client: a ``redis.asyncio.Redis`` created with
            ``decode_responses=True``
        queue_name / retry_name / dead_letter_name: key overrides
    """

    def __init__(
        self,
        client: redis.Redis,
        *,
        queue_name: str = QUEUE_NAME,
        retry_name: str = RETRY_QUEUE_NAME,
        dead_letter_name: str = DEAD_LETTER_QUEUE_NAME,
    ) -> None:
        self._redis = client
        self.queue_name = queue_name
        self.retry_name = retry_name
        self.dead_letter_name = dead_letter_name

    @classmethod
    def from_url(cls, url: str, **kwargs) -> "RedisMessageQueue":
        """Build a queue over a pooled client for ``url``."""
        client = redis.Redis.from_url(
            url,
            decode_responses=True,
            health_check_interval=30,
            retry_on_timeout=True,
        )
        logger.info("Redis queue client created for %s", url)
        return cls(client, **kwargs)

    # --- Main list ---

    async def push(self, raw: str) -> None:
        await self._redis.lpush(self.queue_name, raw)

    async def pop(self) -> str | None:
        return await self._redis.rpop(self.queue_name)

    async def length(self) -> int:
        return int(await self._redis.llen(self.queue_name))

    # --- Retry set ---

    async def schedule_retry(self, raw: str, eligible_at: datetime) -> None:
        await self._redis.zadd(self.retry_name, {raw: eligible_at.timestamp()})

    async def promote_due(self, now: datetime) -> int:
        due = await self._redis.zrangebyscore(self.retry_name, "-inf", now.timestamp())
        promoted = 0
        for raw in due:
            # MULTI/EXEC so a record is never in both the retry set and the list
            async with self._redis.pipeline(transaction=True) as pipe:
                pipe.zrem(self.retry_name, raw)
                pipe.lpush(self.queue_name, raw)
                await pipe.execute()
            promoted += 1
        if promoted:
            logger.debug("Promoted %d due retries to %s", promoted, self.queue_name)
        return promoted

    async def retry_length(self) -> int:
        return int(await self._redis.zcard(self.retry_name))

    # --- Dead-letter sink ---

    async def dead_letter(self, raw: str) -> None:
        await self._redis.lpush(self.dead_letter_name, raw)

    async def dead_letters(self, limit: int = 50) -> list[str]:
        if limit <= 0:
            return []
        return list(await self._redis.lrange(self.dead_letter_name, 0, limit - 1))

    async def pop_dead_letter(self) -> str | None:
        return await self._redis.rpop(self.dead_letter_name)

    async def dead_letter_length(self) -> int:
        return int(await self._redis.llen(self.dead_letter_name))

    async def clear_dead_letters(self) -> int:
        async with self._redis.pipeline(transaction=True) as pipe:
            pipe.llen(self.dead_letter_name)
            pipe.delete(self.dead_letter_name)
            count, _ = await pipe.execute()
        return int(count)

    # --- Lifecycle ---

    async def ping(self) -> bool:
        try:
            return bool(await self._redis.ping())
        except redis.RedisError as exc:
            logger.error("Redis ping failed: %s", exc)
            return False

    async def close(self) -> None:
        await self._redis.aclose()
        logger.info("Redis queue connection closed")


class InMemoryMessageQueue(MessageQueue):
    """Process-local queue with the same ordering rules as the Redis one.

    Left end of each deque is the head.  Not durable.
    """

    def __init__(self) -> None:
        self._main: deque[str] = deque()
        # (eligible_at epoch, insertion seq, raw) kept sorted
        self._retry: list[tuple[float, int, str]] = []
        self._dead: deque[str] = deque()
        self._seq = 0

    # --- Main list ---

    async def push(self, raw: str) -> None:
        self._main.appendleft(raw)

    async def pop(self) -> str | None:
        return self._main.pop() if self._main else None

    async def length(self) -> int:
        return len(self._main)

    # --- Retry set ---

    async def schedule_retry(self, raw: str, eligible_at: datetime) -> None:
        self._seq += 1
        bisect.insort(self._retry, (eligible_at.timestamp(), self._seq, raw))

    async def promote_due(self, now: datetime) -> int:
        cutoff = now.timestamp()
        promoted = 0
        while self._retry and self._retry[0][0] <= cutoff:
            _, _, raw = self._retry.pop(0)
            self._main.appendleft(raw)
            promoted += 1
        return promoted

    async def retry_length(self) -> int:
        return len(self._retry)

    # --- Dead-letter sink ---

    async def dead_letter(self, raw: str) -> None:
        self._dead.appendleft(raw)

    async def dead_letters(self, limit: int = 50) -> list[str]:
        return list(self._dead)[: max(limit, 0)]

    async def pop_dead_letter(self) -> str | None:
        return self._dead.pop() if self._dead else None

    async def dead_letter_length(self) -> int:
        return len(self._dead)

    async def clear_dead_letters(self) -> int:
        count = len(self._dead)
        self._dead.clear()
        return count
