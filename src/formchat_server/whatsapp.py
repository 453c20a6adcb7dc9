"""WhatsApp Cloud API webhook helpers — signature check and message extraction.

Kept free of FastAPI types so the route stays thin and the parsing can be
tested on plain dicts.
"""

from __future__ import annotations

import hashlib
import hmac
import logging
from typing import Any

from formchat_engine.models.message import InboundMessage

logger = logging.getLogger(__name__)

SIGNATURE_HEADER = "X-Hub-Signature-256"
_SIGNATURE_PREFIX = "sha256="


def compute_signature(body: bytes, secret: str) -> str:
    """Return the ``sha256=<hex>`` signature Meta sends for ``body``."""
    digest = hmac.new(secret.encode("utf-8"), body, hashlib.sha256).hexdigest()
    return _SIGNATURE_PREFIX + digest


def verify_signature(body: bytes, signature: str | None, secret: str | None) -> bool:
    """Check ``X-Hub-Signature-256`` over the raw request body.

    Fails closed: a missing header or an unconfigured secret never passes.
    """
    if not signature or not secret:
        if not secret:
            logger.warning("WHATSAPP_WEBHOOK_SECRET not set; rejecting webhook")
        return False
    expected = compute_signature(body, secret)
    # Bytes: compare_digest rejects non-ASCII str with TypeError
    return hmac.compare_digest(signature.strip().encode("utf-8"), expected.encode("utf-8"))


def _extract_one(message: dict[str, Any], contact_name: str | None) -> InboundMessage:
    msg_type = message.get("type", "text")
    text = ""
    reply_id = None
    reply_title = None
    media_id = None
    media_type = None
    media_size = None
    filename = None

    if msg_type == "text":
        text = (message.get("text") or {}).get("body", "")
    elif msg_type == "interactive":
        interactive = message.get("interactive") or {}
        reply = interactive.get("button_reply") or interactive.get("list_reply") or {}
        reply_id = reply.get("id")
        reply_title = reply.get("title")
        text = reply_title or ""
    elif msg_type == "button":
        # Quick-reply buttons on template messages
        button = message.get("button") or {}
        reply_id = button.get("payload")
        reply_title = button.get("text")
        text = reply_title or ""
    elif msg_type in ("image", "document"):
        media = message.get(msg_type) or {}
        media_id = media.get("id")
        media_type = media.get("mime_type")
        filename = media.get("filename")
        # Only some senders include the size in bytes
        media_size = media.get("file_size")
        text = media.get("caption", "")

    return InboundMessage(
        message_id=str(message.get("id", "")),
        from_=str(message.get("from", "")),
        timestamp=str(message.get("timestamp", "")),
        type=msg_type,
        text=text,
        interactive_reply_id=reply_id,
        interactive_reply_title=reply_title,
        contact_name=contact_name,
        media_id=media_id,
        media_type=media_type,
        media_size=media_size,
        filename=filename,
    )


def extract_messages(payload: dict[str, Any]) -> list[InboundMessage]:
    """Flatten ``entry[].changes[].value.messages[]`` into inbound messages.

    Status callbacks (delivered/read receipts) carry no ``messages`` and
    yield nothing.  Entries without an id or sender are skipped.
    """
    messages: list[InboundMessage] = []
    for entry in payload.get("entry") or []:
        for change in entry.get("changes") or []:
            value = change.get("value") or {}
            contacts = value.get("contacts") or []
            names = {
                c.get("wa_id"): (c.get("profile") or {}).get("name") for c in contacts
            }
            fallback_name = next(iter(names.values()), None)
            for raw in value.get("messages") or []:
                if not raw.get("id") or not raw.get("from"):
                    logger.warning("Skipping webhook message without id/from: %s", raw)
                    continue
                name = names.get(raw.get("from"), fallback_name)
                messages.append(_extract_one(raw, name))
    return messages
