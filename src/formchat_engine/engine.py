"""SessionEngine — the conversational form state machine.

Stateless engine pattern: each call loads session state from the database,
decides the transition, persists changes, sends the resulting prompts, and
returns a typed outcome.  No in-memory state is kept between calls.

The engine accepts an ``AsyncSession`` from the caller so that the caller
(the queue worker) controls transaction boundaries.  Prompts are sent
inside that transaction: a gateway failure propagates, the worker rolls the
session change back, and the whole message is retried.

Per-session states:
    NotStarted        — no in-progress session for (form, respondent)
    AwaitingField(f)  — ``current_field_id`` points at f
    Completed         — terminal; a new start command opens a new session

Dispatch for one inbound message:
    1. ``START:<form_key>`` → start (or resume) a session for that form,
       regardless of any other session the respondent has open
    2. otherwise → the respondent's most recently active in-progress
       session, whatever its form
    3. no such session → "use the link" notice, no state change
"""

from __future__ import annotations

import logging
import math
from datetime import datetime, timezone
from typing import Any

from sqlalchemy.ext.asyncio import AsyncSession

from formchat_db.models.form import Form, FormField
from formchat_db.models.session import FormSession
from formchat_db.repository import FormRepository, SessionRepository

from formchat_engine.constants import SKIP_KEYWORDS, START_COMMAND_PATTERN
from formchat_engine.errors import SessionStateError
from formchat_engine.interfaces import MessageGateway
from formchat_engine.models.field import BaseField, FileField, field_from_row
from formchat_engine.models.message import InboundMessage
from formchat_engine.models.outcome import (
    Advanced,
    Completed,
    Duplicate,
    NoSession,
    Outcome,
    Rejected,
    StartRejected,
    Started,
)
from formchat_engine.models.prompt import OutboundPrompt
from formchat_engine.prompt import PromptManager
from formchat_engine.validator import Accepted, ValidationResult, Validator

logger = logging.getLogger(__name__)


def parse_start_command(text: str) -> str | None:
    """Return the form key of a ``START:<key>`` command, else ``None``.

    An empty key (``"START:"``) is returned as ``""`` so the caller can
    reject it as an unknown form.
    """
    match = START_COMMAND_PATTERN.match((text or "").strip())
    if match is None:
        return None
    return match.group(1)


class SessionEngine:
    """Processes one inbound message at a time against the right session.

    Args:
        gateway: outbound delivery for prompts and notices
        prompts: prompt renderer (default: packaged templates)
        validator: reply validator (default: ``Validator()``)
        form_repo / session_repo: repository overrides, used by tests
    """

    def __init__(
        self,
        gateway: MessageGateway,
        *,
        prompts: PromptManager | None = None,
        validator: Validator | None = None,
        form_repo: FormRepository | None = None,
        session_repo: SessionRepository | None = None,
    ) -> None:
        self._gateway = gateway
        self._prompts = prompts or PromptManager()
        self._validator = validator or Validator()
        self._forms = form_repo or FormRepository()
        self._sessions = session_repo or SessionRepository()

    # ==================================================================
    # Entry point
    # ==================================================================

    async def process(self, db: AsyncSession, message: InboundMessage) -> Outcome:
        """Process one inbound message and return its outcome.

        The caller must ``await db.commit()`` on return and roll back if
        this raises.

        Raises:
            SessionStateError: the session points at a field that is no
                longer on its form (not retryable).
            FieldDefinitionError: a stored field cannot be interpreted
                (not retryable).
            GatewayError / SQLAlchemyError: infrastructure failures,
                retryable unless flagged otherwise.
        """
        form_key = parse_start_command(message.text)
        if form_key is not None:
            return await self._handle_start(db, message, form_key)

        session = await self._sessions.get_latest_active(db, message.sender)
        if session is None:
            # Redeliveries of a closed session's replies land here
            latest = await self._sessions.get_latest_for_respondent(db, message.sender)
            if latest is not None and self._predates_close(latest, message):
                logger.info(
                    "Duplicate delivery of %s for closed session %s",
                    message.message_id, latest.id,
                )
                return Duplicate(message_id=message.message_id, session_id=str(latest.id))

            logger.info("No active session for %s", message.sender)
            await self._send(message.sender, self._prompts.no_session())
            return NoSession()

        if session.last_message_id == message.message_id:
            logger.info(
                "Duplicate delivery of %s for session %s", message.message_id, session.id
            )
            return Duplicate(message_id=message.message_id, session_id=str(session.id))

        return await self._handle_reply(db, session, message)

    # ==================================================================
    # Start / resume
    # ==================================================================

    async def _handle_start(
        self, db: AsyncSession, message: InboundMessage, form_key: str
    ) -> Outcome:
        """NotStarted → AwaitingField(field₀), or resume an open session."""
        form = None
        if form_key:
            form = await self._forms.get_published_by_key(db, form_key)
        if form is None:
            logger.info("Start rejected: unknown or unpublished form %r", form_key)
            await self._send(message.sender, self._prompts.unknown_form(form_key))
            return StartRejected(form_key=form_key, reason="unknown_form")

        rows = await self._forms.list_fields(db, form.id)
        if not rows:
            logger.warning("Start rejected: form %r has no fields", form_key)
            await self._send(message.sender, self._prompts.empty_form(form.title))
            return StartRejected(form_key=form_key, reason="empty_form")

        existing = await self._sessions.get_active_for_form(db, form.id, message.sender)
        if existing is not None:
            if existing.last_message_id == message.message_id:
                logger.info(
                    "Duplicate delivery of start %s for session %s",
                    message.message_id, existing.id,
                )
                return Duplicate(
                    message_id=message.message_id, session_id=str(existing.id)
                )
            idx = self._field_index(existing, rows)
            field = field_from_row(rows[idx])
            await self._sessions.touch(db, existing, message_id=message.message_id)
            logger.info(
                "Resumed session %s for %s at field %s",
                existing.id, message.sender, field.key,
            )
            await self._send(message.sender, self._prompts.resumed(form.title))
            await self._send(
                message.sender, self._prompts.field_prompt(field, idx + 1, len(rows))
            )
            return Started(
                session_id=str(existing.id),
                form_key=form.form_key,
                field_key=field.key,
                resumed=True,
            )

        first = field_from_row(rows[0])
        session = await self._sessions.create_session(
            db,
            form_id=form.id,
            respondent_phone=message.sender,
            respondent_name=message.contact_name,
            current_field_id=rows[0].id,
            message_id=message.message_id,
        )
        logger.info(
            "Created session %s for %s on form %s", session.id, message.sender, form_key
        )
        await self._send(message.sender, self._prompts.field_prompt(first, 1, len(rows)))
        return Started(session_id=str(session.id), form_key=form.form_key, field_key=first.key)

    # ==================================================================
    # Continuation
    # ==================================================================

    async def _handle_reply(
        self, db: AsyncSession, session: FormSession, message: InboundMessage
    ) -> Outcome:
        """AwaitingField(fᵢ) → AwaitingField(fᵢ₊₁) | Completed | self-loop."""
        form = await self._forms.get_by_id(db, session.form_id)
        if form is None:
            raise SessionStateError(f"Session {session.id} refers to a missing form")
        rows = await self._forms.list_fields(db, form.id)
        idx = self._field_index(session, rows)
        field = field_from_row(rows[idx])
        total = len(rows)

        result = self._validate(field, message)
        if not isinstance(result, Accepted):
            logger.info(
                "Session %s: rejected reply for field %s: %s",
                session.id, field.key, result.error,
            )
            await self._send(message.sender, self._prompts.validation_error(result.error))
            await self._send(message.sender, self._prompts.field_prompt(field, idx + 1, total))
            return Rejected(
                session_id=str(session.id),
                form_key=form.form_key,
                field_key=field.key,
                error=result.error,
            )

        # Skipped optional fields leave no answer row
        if result.value is not None:
            await self._sessions.upsert_answer(db, session, rows[idx].id, result.value)

        if idx + 1 >= total:
            return await self._complete(db, form, session, field, result.value, message)

        next_row = rows[idx + 1]
        next_field = field_from_row(next_row)
        await self._sessions.set_current_field(
            db, session, next_row.id, message_id=message.message_id
        )
        logger.info(
            "Session %s: %s accepted, now awaiting %s",
            session.id, field.key, next_field.key,
        )
        await self._send(
            message.sender, self._prompts.field_prompt(next_field, idx + 2, total)
        )
        return Advanced(
            session_id=str(session.id),
            form_key=form.form_key,
            answered_field_key=field.key,
            field_key=next_field.key,
            value=result.value,
        )

    async def _complete(
        self,
        db: AsyncSession,
        form: Form,
        session: FormSession,
        field: BaseField,
        value: Any,
        message: InboundMessage,
    ) -> Completed:
        """AwaitingField(fₗₐₛₜ) → Completed; elapsed time is written once."""
        completed_at = datetime.now(timezone.utc)
        elapsed = completed_at - session.created_at
        completion_seconds = max(0, math.floor(elapsed.total_seconds()))

        await self._sessions.complete_session(
            db,
            session,
            completed_at=completed_at,
            completion_time_seconds=completion_seconds,
            message_id=message.message_id,
        )
        logger.info(
            "Session %s completed in %ds", session.id, completion_seconds
        )
        await self._send(message.sender, self._prompts.completion(form.title))
        return Completed(
            session_id=str(session.id),
            form_key=form.form_key,
            answered_field_key=field.key,
            value=value,
            completion_time_seconds=completion_seconds,
        )

    # ==================================================================
    # Helpers
    # ==================================================================

    @staticmethod
    def _predates_close(session: FormSession, message: InboundMessage) -> bool:
        """True when ``message`` was already handled by the closed ``session``.

        The final answer is matched by id; earlier replies by a provider
        send time before completion.
        """
        if session.last_message_id == message.message_id:
            return True
        sent_at = message.sent_at
        return (
            session.completed_at is not None
            and sent_at is not None
            and sent_at < session.completed_at
        )

    def _validate(self, field: BaseField, message: InboundMessage) -> ValidationResult:
        if isinstance(field, FileField):
            return self._validator.validate(
                message.media_id,
                field,
                media_type=message.media_type,
                media_size=message.media_size,
            )
        raw = message.reply_value()
        if not field.required and raw.strip().casefold() in SKIP_KEYWORDS:
            raw = None
        return self._validator.validate(raw, field)

    @staticmethod
    def _field_index(session: FormSession, rows: list[FormField]) -> int:
        """Position of the session's current field within the ordered rows."""
        for idx, row in enumerate(rows):
            if row.id == session.current_field_id:
                return idx
        raise SessionStateError(
            f"Session {session.id} points at field {session.current_field_id} "
            f"which is not on its form"
        )

    async def _send(self, to: str, prompt: OutboundPrompt) -> None:
        await self._gateway.send(to, prompt)
