"""Message simulation — enqueue a synthetic inbound message.

Lets developers drive a conversation without a WhatsApp number.  Disabled
when ``SERVER_ENV=production``.
"""

import logging
import re
import time
import uuid

from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel, Field

from formchat_engine.interfaces import MessageQueue
from formchat_engine.models.message import InboundMessage, QueuedMessage

from formchat_server.config import ServerSettings
from formchat_server.dependencies import get_queue, get_settings

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/test", tags=["test"])

# E.164 without the plus sign, e.g. 2348012345678
_PHONE_RE = re.compile(r"^\d{10,15}$")


class SimulateMessageRequest(BaseModel):
    """Body for POST /test/simulate-message."""

    from_: str = Field(alias="from")
    text: str = ""
    contact_name: str | None = None
    message_id: str | None = None
    # Simulates tapping a button or list row
    interactive_reply_id: str | None = None


class SimulateMessageResult(BaseModel):
    queued: bool
    message_id: str


@router.post("/simulate-message", status_code=202)
async def simulate_message(
    body: SimulateMessageRequest,
    settings: ServerSettings = Depends(get_settings),
    queue: MessageQueue = Depends(get_queue),
) -> SimulateMessageResult:
    """Enqueue a message exactly as the webhook would."""
    if settings.is_production:
        raise HTTPException(status_code=403, detail="Test endpoints disabled in production")

    phone = re.sub(r"\D", "", body.from_)
    if not _PHONE_RE.match(phone):
        raise HTTPException(
            status_code=400,
            detail="Invalid phone number format. Use E.164 digits, e.g. 2348012345678",
        )
    if not body.text and not body.interactive_reply_id:
        raise HTTPException(status_code=400, detail="Either text or interactive_reply_id is required")

    message = InboundMessage(
        message_id=body.message_id or f"sim-{uuid.uuid4().hex}",
        from_=phone,
        timestamp=str(int(time.time())),
        type="interactive" if body.interactive_reply_id else "text",
        text=body.text,
        interactive_reply_id=body.interactive_reply_id,
        contact_name=body.contact_name,
    )
    await queue.push(QueuedMessage.from_inbound(message).to_json())
    logger.info("Simulated message %s from %s queued", message.message_id, phone)
    return SimulateMessageResult(queued=True, message_id=message.message_id)
