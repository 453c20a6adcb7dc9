"""Queue administration — stats, dead-letter inspection, replay and purge.

Protected by ``X-Admin-Key``.  Replay is the operator action that moves
dead-lettered records back to the main queue once the underlying fault
(store outage, provider rejection) has been fixed.
"""

import logging

from fastapi import APIRouter, Depends, Query
from pydantic import BaseModel

from formchat_engine.interfaces import MessageQueue
from formchat_engine.models.message import DeadLetterRecord
from formchat_engine.worker import QueueWorker

from formchat_server.config import DEFAULT_DEAD_LETTER_LIMIT, MAX_DEAD_LETTER_LIMIT
from formchat_server.dependencies import get_queue, get_worker, require_admin_key

logger = logging.getLogger(__name__)

router = APIRouter(
    prefix="/queue",
    tags=["queue"],
    dependencies=[Depends(require_admin_key)],
)


# ------------------------------------------------------------------
# Response models
# ------------------------------------------------------------------

class QueueStats(BaseModel):
    is_running: bool
    queue_length: int
    retry_length: int
    dead_letter_length: int
    processed: int
    failed: int
    dead_lettered: int


class DeadLetterList(BaseModel):
    total: int
    items: list[dict]


class QueueActionResult(BaseModel):
    affected: int
    action: str


# ------------------------------------------------------------------
# Endpoints
# ------------------------------------------------------------------

@router.get("/stats")
async def queue_stats(worker: QueueWorker = Depends(get_worker)) -> QueueStats:
    """Worker state, queue depths and processing counters."""
    return QueueStats(**await worker.stats())


@router.get("/dead-letters")
async def list_dead_letters(
    limit: int = Query(DEFAULT_DEAD_LETTER_LIMIT, ge=1, le=MAX_DEAD_LETTER_LIMIT),
    queue: MessageQueue = Depends(get_queue),
) -> DeadLetterList:
    """Newest dead-lettered records first."""
    items: list[dict] = []
    for raw in await queue.dead_letters(limit):
        try:
            items.append(DeadLetterRecord.from_json(raw).as_dict())
        except ValueError:
            items.append({"raw": raw, "error": "unreadable dead-letter entry"})
    return DeadLetterList(total=await queue.dead_letter_length(), items=items)


@router.post("/dead-letters/replay")
async def replay_dead_letters(
    limit: int = Query(DEFAULT_DEAD_LETTER_LIMIT, ge=1, le=MAX_DEAD_LETTER_LIMIT),
    worker: QueueWorker = Depends(get_worker),
) -> QueueActionResult:
    """Move up to ``limit`` dead-lettered records back to the main queue."""
    replayed = await worker.replay_dead_letters(limit)
    logger.info("Admin replayed %d dead-lettered message(s)", replayed)
    return QueueActionResult(affected=replayed, action="replay")


@router.delete("/dead-letters")
async def clear_dead_letters(
    queue: MessageQueue = Depends(get_queue),
) -> QueueActionResult:
    """Drop every dead-lettered record."""
    dropped = await queue.clear_dead_letters()
    logger.warning("Admin cleared %d dead-lettered message(s)", dropped)
    return QueueActionResult(affected=dropped, action="clear")
