"""Abstract interfaces for the engine's two outward-facing collaborators.

These ABCs let the worker, the engine and the tests share one contract
while substituting implementations:

  - ``MessageGateway``: outbound delivery of prompts to the chat provider
    (``WhatsAppClient`` in production, a recording fake in tests)
  - ``MessageQueue``: the durable inbound FIFO plus its retry set and
    dead-letter sink (``RedisMessageQueue`` in production,
    ``InMemoryMessageQueue`` for tests and local development)

Typical wiring::

    queue: MessageQueue = RedisMessageQueue.from_url(settings.redis_url)
    gateway: MessageGateway = WhatsAppClient(settings.whatsapp)
    engine = SessionEngine(gateway)
    worker = QueueWorker(queue, engine, session_factory)
    await worker.start()
"""

from abc import ABC, abstractmethod
from datetime import datetime

from formchat_engine.models.prompt import OutboundPrompt


class MessageGateway(ABC):
    """Interface for sending prompts to a respondent's chat address."""

    @abstractmethod
    async def send(self, to: str, prompt: OutboundPrompt) -> str:
        """Deliver ``prompt`` to ``to``.

        Returns
        -------
        str
            The provider's message id (or a synthetic one in dry-run mode).

        Raises
        ------
        GatewayError
            When delivery failed; ``retryable`` tells the worker whether
            to try the inbound message again.
        """
        ...

    async def close(self) -> None:
        """Release network resources.  Default: nothing to release."""
        return None


class MessageQueue(ABC):
    """Interface for the inbound message queue.

    Records are opaque JSON strings at this level; encoding and decoding
    belong to the producer (webhook) and the consumer (worker).

    Three stores back the contract:
      - main list: ``push`` adds at the head, ``pop`` takes from the tail
      - retry set: records waiting out their retry delay, keyed by the
        time they become eligible; ``promote_due`` moves them to the head
        of the main list
      - dead-letter sink: records that will not be retried again
    """

    # --- Main list ---

    @abstractmethod
    async def push(self, raw: str) -> None:
        """Add a record at the head of the main list."""
        ...

    @abstractmethod
    async def pop(self) -> str | None:
        """Remove and return the oldest record, or ``None`` if empty."""
        ...

    @abstractmethod
    async def length(self) -> int:
        ...

    # --- Retry set ---

    @abstractmethod
    async def schedule_retry(self, raw: str, eligible_at: datetime) -> None:
        """Park a record until ``eligible_at``; it is invisible to ``pop``."""
        ...

    @abstractmethod
    async def promote_due(self, now: datetime) -> int:
        """Move every record eligible at ``now`` to the main list head.

        Returns the number of records promoted.
        """
        ...

    @abstractmethod
    async def retry_length(self) -> int:
        ...

    # --- Dead-letter sink ---

    @abstractmethod
    async def dead_letter(self, raw: str) -> None:
        """Append a record to the dead-letter sink."""
        ...

    @abstractmethod
    async def dead_letters(self, limit: int = 50) -> list[str]:
        """Return up to ``limit`` dead-lettered records, newest first."""
        ...

    @abstractmethod
    async def pop_dead_letter(self) -> str | None:
        """Remove and return the oldest dead-lettered record, if any."""
        ...

    @abstractmethod
    async def dead_letter_length(self) -> int:
        ...

    @abstractmethod
    async def clear_dead_letters(self) -> int:
        """Drop every dead-lettered record; returns how many were dropped."""
        ...

    # --- Lifecycle ---

    async def ping(self) -> bool:
        """Connectivity check for /health.  Default: always healthy."""
        return True

    async def close(self) -> None:
        """Release connections.  Default: nothing to release."""
        return None
