"""Inbound message records — what the webhook enqueues and the worker pops.

Three shapes travel through the queue:
  - InboundMessage: a normalized provider message, as extracted by the webhook
  - QueuedMessage: an InboundMessage plus queue bookkeeping (retry counter)
  - DeadLetterRecord: a QueuedMessage (or an undecodable payload) plus the
    failure that sent it to the dead-letter sink

All three serialize to JSON with ``from`` (not ``from_``) as the sender key,
matching the provider's own field name.
"""

from __future__ import annotations

import json
from datetime import datetime, timezone
from typing import Any, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class InboundMessage(BaseModel):
    """A normalized inbound chat message.

    ``text`` holds the typed text, or the title of an interactive reply,
    or a file caption.  ``interactive_reply_id`` is set when the respondent
    tapped a button or list row.
    """

    model_config = ConfigDict(populate_by_name=True)

    message_id: str
    from_: str = Field(alias="from")
    timestamp: str
    type: str = "text"
    text: str = ""
    interactive_reply_id: Optional[str] = None
    interactive_reply_title: Optional[str] = None
    contact_name: Optional[str] = None
    # Media (image/document) messages
    media_id: Optional[str] = None
    media_type: Optional[str] = None
    media_size: Optional[int] = None
    filename: Optional[str] = None

    @property
    def sender(self) -> str:
        return self.from_

    @property
    def sent_at(self) -> Optional[datetime]:
        """Provider send time; ``timestamp`` is epoch seconds as a string."""
        try:
            return datetime.fromtimestamp(int(self.timestamp), tz=timezone.utc)
        except (TypeError, ValueError, OverflowError, OSError):
            return None

    def reply_value(self) -> str:
        """The value to validate: a tapped option id wins over typed text."""
        if self.interactive_reply_id:
            return self.interactive_reply_id
        return self.text


class QueuedMessage(InboundMessage):
    """An inbound message as stored on the queue."""

    queued_at: datetime = Field(default_factory=_utcnow)
    status: Literal["pending", "retry"] = "pending"
    retry_count: int = 0
    # When the record becomes eligible for redelivery (retries only)
    retry_at: Optional[datetime] = None

    @classmethod
    def from_inbound(cls, message: InboundMessage) -> "QueuedMessage":
        return cls.model_validate(message.model_dump(by_alias=True))

    def to_json(self) -> str:
        return self.model_dump_json(by_alias=True)


class DeadLetterRecord(BaseModel):
    """A record that exhausted its retries or could not be processed at all.

    On the wire the record is flat: the queued record's own keys verbatim
    plus ``failed_at`` and ``error``.  A payload that could not be decoded
    is kept as a string under ``raw`` instead.
    """

    message: Optional[QueuedMessage] = None
    raw: Optional[str] = None
    failed_at: datetime = Field(default_factory=_utcnow)
    error: str

    def as_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {}
        if self.message is not None:
            data.update(self.message.model_dump(mode="json", by_alias=True))
        else:
            data["raw"] = self.raw
        data["failed_at"] = self.failed_at.isoformat()
        data["error"] = self.error
        return data

    def to_json(self) -> str:
        return json.dumps(self.as_dict(), ensure_ascii=False)

    @classmethod
    def from_json(cls, payload: str) -> "DeadLetterRecord":
        data = json.loads(payload)
        failed_at = data.pop("failed_at", None) or _utcnow()
        error = data.pop("error", "")
        if "raw" in data:
            return cls(raw=data["raw"], failed_at=failed_at, error=error)
        return cls(
            message=QueuedMessage.model_validate(data),
            failed_at=failed_at,
            error=error,
        )
