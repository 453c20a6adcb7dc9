"""WhatsApp webhook endpoints — subscription handshake and message ingestion.

``POST`` verifies ``X-Hub-Signature-256`` over the raw body, then enqueues
every extracted message.  Once the signature passes the provider always
gets a 200: internal failures are handled by the queue's retry and
dead-letter path, never by provider redelivery.
"""

import hmac
import json
import logging

from fastapi import APIRouter, Depends, Header, HTTPException, Query, Request
from fastapi.responses import PlainTextResponse

from formchat_engine.interfaces import MessageQueue
from formchat_engine.models.message import QueuedMessage

from formchat_server.config import ServerSettings
from formchat_server.dependencies import get_queue, get_settings
from formchat_server.whatsapp import SIGNATURE_HEADER, extract_messages, verify_signature

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/webhook", tags=["webhook"])


@router.get("/whatsapp", response_class=PlainTextResponse)
async def verify_subscription(
    hub_mode: str | None = Query(None, alias="hub.mode"),
    hub_verify_token: str | None = Query(None, alias="hub.verify_token"),
    hub_challenge: str | None = Query(None, alias="hub.challenge"),
    settings: ServerSettings = Depends(get_settings),
) -> str:
    """Meta subscription handshake: echo ``hub.challenge`` on a token match."""
    expected = settings.webhook_verify_token
    if not expected:
        logger.error("WHATSAPP_WEBHOOK_TOKEN not configured")
        raise HTTPException(status_code=403, detail="Webhook verification disabled")
    if hub_verify_token is None or not _tokens_match(hub_verify_token, expected):
        logger.warning("Webhook verification with an invalid token")
        raise HTTPException(status_code=403, detail="Invalid verification token")
    if hub_mode != "subscribe":
        raise HTTPException(status_code=400, detail="hub.mode must be 'subscribe'")
    if not hub_challenge:
        raise HTTPException(status_code=400, detail="Missing hub.challenge")
    logger.info("Webhook subscription verified")
    return hub_challenge


def _tokens_match(given: str, expected: str) -> bool:
    return hmac.compare_digest(given.encode("utf-8"), expected.encode("utf-8"))


@router.post("/whatsapp")
async def receive_messages(
    request: Request,
    signature: str | None = Header(None, alias=SIGNATURE_HEADER),
    settings: ServerSettings = Depends(get_settings),
    queue: MessageQueue = Depends(get_queue),
) -> dict:
    """Verify the signature and enqueue every inbound message."""
    body = await request.body()
    if not verify_signature(body, signature, settings.webhook_secret):
        logger.warning("Rejected webhook with invalid signature")
        raise HTTPException(status_code=403, detail="Invalid webhook signature")

    queued = 0
    try:
        payload = json.loads(body or b"{}")
        for message in extract_messages(payload):
            await queue.push(QueuedMessage.from_inbound(message).to_json())
            queued += 1
            logger.info("Queued message %s from %s", message.message_id, message.sender)
    except Exception:
        # Acknowledge anyway so the provider does not start a retry storm
        logger.exception("Webhook ingestion failed after %d message(s)", queued)
    return {"status": "ok", "queued": queued}
