"""QueueWorker tests — retry bookkeeping, dead-lettering and replay.

Runs the worker one poll at a time (``run_once``) against the in-memory
queue, a stub engine that fails on demand, and AsyncMock DB sessions.
"""

import asyncio
import json
from datetime import datetime, timedelta, timezone

import pytest
from sqlalchemy.exc import OperationalError

from formchat_engine.errors import InfrastructureError, SessionStateError
from formchat_engine.models.message import DeadLetterRecord, InboundMessage, QueuedMessage
from formchat_engine.models.outcome import NoSession
from formchat_engine.worker import QueueWorker

from helpers.fakes import MockSessionFactory


class StubEngine:
    """Fails the first ``fail_times`` calls with ``error``, then succeeds."""

    def __init__(self, fail_times=0, error=None, delay=0.0):
        self.fail_times = fail_times
        self.error = error or InfrastructureError("database unavailable")
        self.delay = delay
        self.calls = []

    async def process(self, db, message):
        self.calls.append(message.message_id)
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.fail_times > 0:
            self.fail_times -= 1
            raise self.error
        return NoSession()


def _record(message_id="wamid.1", **kwargs) -> str:
    inbound = InboundMessage(
        message_id=message_id, from_="15550001111", timestamp="1700000000", text="hi"
    )
    return QueuedMessage.from_inbound(inbound).model_copy(update=kwargs).to_json()


def _worker(queue, engine, factory=None, **kwargs):
    kwargs.setdefault("retry_delay", 0.0)
    kwargs.setdefault("poll_interval", 0.01)
    kwargs.setdefault("message_timeout", 5.0)
    return QueueWorker(queue, engine, factory or MockSessionFactory(), **kwargs)


class TestProcessing:

    @pytest.mark.asyncio
    async def test_empty_queue(self, queue):
        worker = _worker(queue, StubEngine())
        assert await worker.run_once() is False

    @pytest.mark.asyncio
    async def test_success_commits(self, queue):
        factory = MockSessionFactory()
        engine = StubEngine()
        worker = _worker(queue, engine, factory)
        await queue.push(_record("wamid.ok"))

        assert await worker.run_once() is True

        assert engine.calls == ["wamid.ok"]
        assert factory.commits == 1
        assert factory.rollbacks == 0
        assert worker.processed == 1
        assert await queue.length() == 0

    @pytest.mark.asyncio
    async def test_failure_rolls_back(self, queue):
        factory = MockSessionFactory()
        worker = _worker(queue, StubEngine(fail_times=1), factory)
        await queue.push(_record())

        await worker.run_once()

        assert factory.commits == 0
        assert factory.rollbacks == 1
        assert worker.failed == 1


class TestRetryAndDeadLetter:

    @pytest.mark.asyncio
    async def test_dead_lettered_after_four_failed_attempts(self, queue):
        engine = StubEngine(fail_times=100)
        worker = _worker(queue, engine)
        await queue.push(_record("wamid.bad"))

        for attempt in range(1, 4):
            await worker.run_once()
            # Parked for retry, never in two places at once
            assert await queue.retry_length() == 1
            assert await queue.length() == 0
            assert await queue.dead_letter_length() == 0

        await worker.run_once()

        assert len(engine.calls) == 4
        assert await queue.retry_length() == 0
        assert await queue.length() == 0
        assert await queue.dead_letter_length() == 1
        assert worker.dead_lettered == 1

        record = DeadLetterRecord.from_json((await queue.dead_letters())[0])
        assert record.message.message_id == "wamid.bad"
        assert record.message.retry_count == 3
        assert "InfrastructureError" in record.error
        assert record.failed_at is not None

    @pytest.mark.asyncio
    async def test_dead_letter_wire_format_is_flat(self, queue):
        worker = _worker(queue, StubEngine(fail_times=1, error=SessionStateError("dangling")))
        await queue.push(_record("wamid.flat"))

        await worker.run_once()

        data = json.loads((await queue.dead_letters())[0])
        assert data["message_id"] == "wamid.flat"
        assert data["from"] == "15550001111"
        assert data["error"] == "SessionStateError: dangling"
        assert "failed_at" in data

    @pytest.mark.asyncio
    async def test_retry_waits_for_delay(self, queue):
        worker = _worker(queue, StubEngine(fail_times=1), retry_delay=5.0)
        await queue.push(_record())

        before = datetime.now(timezone.utc)
        await worker.run_once()

        # Not due yet: the next poll finds nothing
        assert await worker.run_once() is False
        assert await queue.promote_due(before + timedelta(seconds=4)) == 0
        assert await queue.promote_due(before + timedelta(seconds=6)) == 1

        retried = QueuedMessage.model_validate_json(await queue.pop())
        assert retried.retry_count == 1
        assert retried.status == "retry"
        assert retried.retry_at >= before + timedelta(seconds=5)

    @pytest.mark.asyncio
    async def test_recovers_on_retry(self, queue):
        engine = StubEngine(fail_times=1)
        worker = _worker(queue, engine)
        await queue.push(_record())

        await worker.run_once()
        await worker.run_once()

        assert worker.failed == 1
        assert worker.processed == 1
        assert await queue.dead_letter_length() == 0

    @pytest.mark.asyncio
    async def test_non_retryable_error_dead_letters_at_once(self, queue):
        engine = StubEngine(fail_times=1, error=SessionStateError("dangling pointer"))
        worker = _worker(queue, engine)
        await queue.push(_record())

        await worker.run_once()

        assert await queue.retry_length() == 0
        assert await queue.dead_letter_length() == 1

    @pytest.mark.asyncio
    async def test_timeout_counts_as_retryable_failure(self, queue):
        worker = _worker(queue, StubEngine(delay=1.0), message_timeout=0.05)
        await queue.push(_record())

        await worker.run_once()

        assert worker.failed == 1
        assert await queue.retry_length() == 1

    @pytest.mark.asyncio
    async def test_malformed_record_dead_lettered_without_processing(self, queue):
        engine = StubEngine()
        worker = _worker(queue, engine)
        await queue.push("{not json")

        await worker.run_once()

        assert engine.calls == []
        assert await queue.retry_length() == 0
        record = DeadLetterRecord.from_json((await queue.dead_letters())[0])
        assert record.message is None
        assert record.raw == "{not json"
        assert record.error.startswith("Malformed record")
        assert worker.failed == 1
        assert worker.dead_lettered == 1

    @pytest.mark.asyncio
    async def test_store_error_is_retried_as_infrastructure_failure(self, queue):
        error = OperationalError("SELECT 1", {}, ConnectionRefusedError("refused"))
        factory = MockSessionFactory()
        worker = _worker(queue, StubEngine(fail_times=4, error=error), factory, max_retries=3)
        await queue.push(_record("wamid.db"))

        for _ in range(4):
            await worker.run_once()

        assert factory.rollbacks == 4
        assert await queue.retry_length() == 0
        record = DeadLetterRecord.from_json((await queue.dead_letters())[0])
        assert record.message.message_id == "wamid.db"
        assert record.error.startswith("InfrastructureError: Session store error")


class TestOperatorActions:

    @pytest.mark.asyncio
    async def test_replay_resets_retry_count(self, queue):
        worker = _worker(queue, StubEngine())
        message = QueuedMessage.model_validate_json(_record("wamid.dead", retry_count=3))
        await queue.dead_letter(DeadLetterRecord(message=message, error="boom").to_json())
        await queue.dead_letter(DeadLetterRecord(raw="garbage", error="Malformed record").to_json())

        replayed = await worker.replay_dead_letters(limit=10)

        assert replayed == 1
        assert await queue.dead_letter_length() == 1
        requeued = QueuedMessage.model_validate_json(await queue.pop())
        assert requeued.message_id == "wamid.dead"
        assert requeued.retry_count == 0
        assert requeued.status == "pending"
        assert requeued.retry_at is None

    @pytest.mark.asyncio
    async def test_replay_respects_limit_oldest_first(self, queue):
        worker = _worker(queue, StubEngine())
        for i in range(3):
            message = QueuedMessage.model_validate_json(_record(f"wamid.{i}"))
            await queue.dead_letter(DeadLetterRecord(message=message, error="x").to_json())

        assert await worker.replay_dead_letters(limit=2) == 2

        first = QueuedMessage.model_validate_json(await queue.pop())
        assert first.message_id == "wamid.0"
        assert await queue.dead_letter_length() == 1

    @pytest.mark.asyncio
    async def test_stats(self, queue):
        worker = _worker(queue, StubEngine())
        await queue.push(_record())
        await queue.dead_letter("x")

        stats = await worker.stats()

        assert stats == {
            "is_running": False,
            "queue_length": 1,
            "retry_length": 0,
            "dead_letter_length": 1,
            "processed": 0,
            "failed": 0,
            "dead_lettered": 0,
        }


class TestLifecycle:

    @pytest.mark.asyncio
    async def test_start_drains_and_stop(self, queue):
        engine = StubEngine()
        worker = _worker(queue, engine)
        await queue.push(_record("wamid.bg"))

        await worker.start()
        assert worker.is_running
        for _ in range(100):
            if worker.processed:
                break
            await asyncio.sleep(0.01)
        await worker.stop()

        assert not worker.is_running
        assert engine.calls == ["wamid.bg"]
