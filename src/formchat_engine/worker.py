"""QueueWorker — drains the inbound queue into the session engine.

A single cooperative poll loop: one message is fully processed (validated,
persisted, next prompt sent, transaction committed) before the next one is
popped.  Because nothing runs concurrently, sessions need no locking.

Per message:
  1. decode the record; undecodable payloads go straight to the dead-letter
     sink
  2. open a DB session, run ``SessionEngine.process`` bounded by
     ``message_timeout_seconds``, commit on success, roll back on failure
  3. on failure:
       - non-retryable error (``retryable = False``) → dead-letter now
       - ``retry_count < max_retries`` → park in the retry set until
         ``retry_delay_seconds * (retry_count + 1)`` from now
       - otherwise → dead-letter with ``failed_at`` and ``error``

Retried records are promoted back to the head of the main list at the start
of each poll once their delay has passed.

The worker is an explicit lifecycle object owned by the process entry point
(the FastAPI lifespan or the ``formchat-worker`` command).
"""

from __future__ import annotations

import asyncio
import json
import logging
from datetime import datetime, timedelta, timezone
from typing import Any, Callable

from pydantic import ValidationError
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from formchat_engine.constants import (
    MAX_RETRIES,
    MESSAGE_TIMEOUT_SECONDS,
    POLL_INTERVAL_SECONDS,
    RETRY_DELAY_SECONDS,
)
from formchat_engine.engine import SessionEngine
from formchat_engine.errors import InfrastructureError, MalformedRecordError
from formchat_engine.interfaces import MessageQueue
from formchat_engine.models.message import DeadLetterRecord, QueuedMessage
from formchat_engine.models.outcome import Outcome

logger = logging.getLogger(__name__)


def _describe(exc: BaseException) -> str:
    text = str(exc)
    return f"{type(exc).__name__}: {text}" if text else type(exc).__name__


class QueueWorker:
    """Single-consumer poll loop with bounded retry and dead-lettering.

    Args:
        queue: the inbound queue to drain
        engine: the session engine that processes each message
        session_factory: callable returning a new ``AsyncSession`` context
            manager (``async_sessionmaker``)
        max_retries: retries after the first failed attempt
        poll_interval: sleep between polls when the queue is empty
        retry_delay: base delay; a record's n-th retry waits ``n * retry_delay``
        message_timeout: upper bound on processing one message
    """

    def __init__(
        self,
        queue: MessageQueue,
        engine: SessionEngine,
        session_factory: Callable[[], AsyncSession],
        *,
        max_retries: int = MAX_RETRIES,
        poll_interval: float = POLL_INTERVAL_SECONDS,
        retry_delay: float = RETRY_DELAY_SECONDS,
        message_timeout: float = MESSAGE_TIMEOUT_SECONDS,
    ) -> None:
        self._queue = queue
        self._engine = engine
        self._session_factory = session_factory
        self.max_retries = max_retries
        self.poll_interval = poll_interval
        self.retry_delay = retry_delay
        self.message_timeout = message_timeout

        self._task: asyncio.Task | None = None
        self._stop_event = asyncio.Event()

        # Counters since start-up
        self.processed = 0
        self.failed = 0
        self.dead_lettered = 0

    # ==================================================================
    # Lifecycle
    # ==================================================================

    @property
    def is_running(self) -> bool:
        return self._task is not None and not self._task.done()

    async def start(self) -> None:
        """Start the poll loop as a background task.  Idempotent."""
        if self.is_running:
            logger.info("Queue worker already running")
            return
        self._stop_event.clear()
        self._task = asyncio.create_task(self._run(), name="formchat-queue-worker")
        logger.info(
            "Queue worker started (poll=%.1fs, max_retries=%d, timeout=%.1fs)",
            self.poll_interval, self.max_retries, self.message_timeout,
        )

    async def stop(self) -> None:
        """Stop the loop after the in-flight message (if any) finishes."""
        if self._task is None:
            return
        self._stop_event.set()
        try:
            await asyncio.wait_for(self._task, timeout=self.message_timeout + 5)
        except asyncio.TimeoutError:
            logger.warning("Queue worker did not stop in time; cancelling")
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
        self._task = None
        logger.info("Queue worker stopped")

    async def _run(self) -> None:
        while not self._stop_event.is_set():
            try:
                handled = await self.run_once()
            except Exception:
                # Queue unreachable: keep polling at the normal interval
                logger.exception("Queue poll failed")
                handled = False
            if handled:
                continue
            try:
                await asyncio.wait_for(self._stop_event.wait(), timeout=self.poll_interval)
            except asyncio.TimeoutError:
                pass

    # ==================================================================
    # One poll
    # ==================================================================

    async def run_once(self) -> bool:
        """Promote due retries, then pop and handle at most one record.

        Returns ``True`` if a record was handled, ``False`` if the queue
        was empty.
        """
        await self._queue.promote_due(datetime.now(timezone.utc))
        raw = await self._queue.pop()
        if raw is None:
            return False
        await self._handle(raw)
        return True

    @staticmethod
    def _decode(raw: str) -> QueuedMessage:
        try:
            return QueuedMessage.model_validate_json(raw)
        except (ValidationError, ValueError) as exc:
            raise MalformedRecordError(f"Malformed record: {exc}") from exc

    async def _handle(self, raw: str) -> None:
        try:
            message = self._decode(raw)
        except MalformedRecordError as exc:
            self.failed += 1
            logger.error("Undecodable queue record: %s", exc)
            await self._on_failure(None, exc, retryable=exc.retryable, raw=raw)
            return

        logger.info(
            "Processing message %s from %s (attempt %d)",
            message.message_id, message.sender, message.retry_count + 1,
        )
        try:
            outcome = await asyncio.wait_for(
                self._process(message), timeout=self.message_timeout
            )
        except asyncio.TimeoutError as exc:
            self.failed += 1
            logger.warning(
                "Message %s timed out after %.1fs", message.message_id, self.message_timeout
            )
            await self._on_failure(message, exc, retryable=True)
        except Exception as exc:
            self.failed += 1
            retryable = getattr(exc, "retryable", True)
            logger.warning(
                "Message %s failed (%s): %s",
                message.message_id,
                "retryable" if retryable else "not retryable",
                _describe(exc),
            )
            await self._on_failure(message, exc, retryable=retryable)
        else:
            self.processed += 1
            logger.info("Message %s processed: %s", message.message_id, outcome.type)

    async def _process(self, message: QueuedMessage) -> Outcome:
        """Run the engine in its own transaction."""
        async with self._session_factory() as db:
            try:
                outcome = await self._engine.process(db, message)
                await db.commit()
            except SQLAlchemyError as exc:
                await db.rollback()
                raise InfrastructureError(f"Session store error: {exc}") from exc
            except Exception:
                await db.rollback()
                raise
        return outcome

    async def _on_failure(
        self,
        message: QueuedMessage | None,
        exc: BaseException,
        *,
        retryable: bool,
        raw: str | None = None,
    ) -> None:
        """Schedule a retry or dead-letter.  ``message`` is None for undecodable ``raw``."""
        if message is None:
            record = DeadLetterRecord(raw=raw, error=str(exc))
            await self._queue.dead_letter(record.to_json())
            self.dead_lettered += 1
            return

        if retryable and message.retry_count < self.max_retries:
            retry_count = message.retry_count + 1
            eligible_at = datetime.now(timezone.utc) + timedelta(
                seconds=self.retry_delay * retry_count
            )
            retry = message.model_copy(
                update={"retry_count": retry_count, "status": "retry", "retry_at": eligible_at}
            )
            await self._queue.schedule_retry(retry.to_json(), eligible_at)
            logger.info(
                "Message %s queued for retry (%d/%d) at %s",
                message.message_id, retry_count, self.max_retries, eligible_at.isoformat(),
            )
            return

        record = DeadLetterRecord(message=message, error=_describe(exc))
        await self._queue.dead_letter(record.to_json())
        self.dead_lettered += 1
        logger.error(
            "Message %s moved to dead-letter queue after %d attempt(s): %s",
            message.message_id, message.retry_count + 1, record.error,
        )

    # ==================================================================
    # Operator actions
    # ==================================================================

    async def stats(self) -> dict[str, Any]:
        return {
            "is_running": self.is_running,
            "queue_length": await self._queue.length(),
            "retry_length": await self._queue.retry_length(),
            "dead_letter_length": await self._queue.dead_letter_length(),
            "processed": self.processed,
            "failed": self.failed,
            "dead_lettered": self.dead_lettered,
        }

    async def replay_dead_letters(self, limit: int = 50) -> int:
        """Move up to ``limit`` dead-lettered records back to the main queue.

        Oldest first, with the retry counter reset.  Records kept only as
        undecodable ``raw`` payloads cannot be replayed and stay in the sink.
        Returns the number of records replayed.
        """
        budget = min(limit, await self._queue.dead_letter_length())
        replayed = 0
        for _ in range(budget):
            raw = await self._queue.pop_dead_letter()
            if raw is None:
                break
            try:
                record = DeadLetterRecord.from_json(raw)
            except (ValidationError, ValueError, json.JSONDecodeError) as exc:
                logger.warning("Unreadable dead-letter entry kept: %s", exc)
                await self._queue.dead_letter(raw)
                continue
            if record.message is None:
                await self._queue.dead_letter(raw)
                continue
            message = record.message.model_copy(
                update={"retry_count": 0, "status": "pending", "retry_at": None}
            )
            await self._queue.push(message.to_json())
            replayed += 1
        logger.info("Replayed %d dead-lettered message(s)", replayed)
        return replayed
