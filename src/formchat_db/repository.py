"""Async repositories for forms (read side) and respondent sessions.

All public methods accept an ``AsyncSession`` so the caller controls
transaction boundaries: the worker wraps one inbound message in one
transaction, commits on success and rolls back on failure.

The repositories deliberately avoid business-logic validation — that belongs
in the session engine.  They *do* enforce structural invariants (one
in-progress session per form/respondent, one answer per session/field) via
DB constraints.
"""

import uuid
from datetime import datetime, timedelta, timezone
from typing import Any

from sqlalchemy import select, update
from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.ext.asyncio import AsyncSession

from formchat_db.models.enums import SessionSource, SessionStatus
from formchat_db.models.form import Form, FormField
from formchat_db.models.session import Answer, FormSession


class FormRepository:
    """Read operations on ``forms`` / ``form_fields`` plus a seeding helper."""

    async def get_published_by_key(
        self, db: AsyncSession, form_key: str
    ) -> Form | None:
        """Fetch a published form by its public key (case-sensitive)."""
        stmt = select(Form).where(
            Form.form_key == form_key,
            Form.is_published.is_(True),
        )
        result = await db.execute(stmt)
        return result.scalar_one_or_none()

    async def get_by_id(self, db: AsyncSession, form_id: uuid.UUID) -> Form | None:
        """Fetch a form by primary key regardless of its published flag."""
        return await db.get(Form, form_id)

    async def get_by_key(self, db: AsyncSession, form_key: str) -> Form | None:
        """Fetch a form by key regardless of its published flag."""
        result = await db.execute(select(Form).where(Form.form_key == form_key))
        return result.scalar_one_or_none()

    async def list_fields(
        self, db: AsyncSession, form_id: uuid.UUID
    ) -> list[FormField]:
        """List a form's fields ordered by ``order_idx`` (entry point first)."""
        stmt = (
            select(FormField)
            .where(FormField.form_id == form_id)
            .order_by(FormField.order_idx.asc())
        )
        result = await db.execute(stmt)
        return list(result.scalars().all())

    async def replace_form(
        self,
        db: AsyncSession,
        *,
        form_key: str,
        title: str,
        is_published: bool,
        fields: list[dict[str, Any]],
        description: str | None = None,
    ) -> Form:
        """Create or overwrite a form definition and its fields.

        Each entry in ``fields`` carries ``field_key``, ``label``, ``type``
        and optionally ``is_required``, ``placeholder`` and ``meta``; the
        list order becomes ``order_idx``.  Used by the seeding CLI only.
        """
        form = await self.get_by_key(db, form_key)
        if form is None:
            form = Form(form_key=form_key)
            db.add(form)
        form.title = title
        form.description = description
        form.is_published = is_published
        await db.flush()

        existing = await self.list_fields(db, form.id)
        for row in existing:
            await db.delete(row)
        await db.flush()

        for idx, spec in enumerate(fields):
            db.add(
                FormField(
                    form_id=form.id,
                    field_key=spec["field_key"],
                    label=spec["label"],
                    type=spec["type"],
                    is_required=bool(spec.get("is_required", False)),
                    placeholder=spec.get("placeholder"),
                    order_idx=idx,
                    meta=dict(spec.get("meta") or {}),
                )
            )
        await db.flush()
        return form


class SessionRepository:
    """Async read/write operations on ``form_responses`` and answers."""

    # ------------------------------------------------------------------
    # Create
    # ------------------------------------------------------------------

    async def create_session(
        self,
        db: AsyncSession,
        *,
        form_id: uuid.UUID,
        respondent_phone: str,
        current_field_id: uuid.UUID,
        respondent_name: str | None = None,
        source: SessionSource = SessionSource.WHATSAPP,
        message_id: str | None = None,
    ) -> FormSession:
        """Insert a new in-progress session pointing at its first field.

        The caller must ``await db.commit()`` to persist.
        """
        now = datetime.now(timezone.utc)
        session = FormSession(
            form_id=form_id,
            respondent_phone=respondent_phone,
            respondent_name=respondent_name,
            source=source.value,
            status=SessionStatus.IN_PROGRESS.value,
            current_field_id=current_field_id,
            last_message_id=message_id,
            created_at=now,
            updated_at=now,
            last_activity_at=now,
        )
        db.add(session)
        await db.flush()  # Populate server-side defaults (id)
        return session

    # ------------------------------------------------------------------
    # Read: single row
    # ------------------------------------------------------------------

    async def get_by_id(
        self, db: AsyncSession, session_pk: uuid.UUID
    ) -> FormSession | None:
        """Fetch a session by its primary-key UUID."""
        return await db.get(FormSession, session_pk)

    async def get_active_for_form(
        self, db: AsyncSession, form_id: uuid.UUID, respondent_phone: str
    ) -> FormSession | None:
        """Return the in-progress session for (form, respondent), if any."""
        stmt = (
            select(FormSession)
            .where(
                FormSession.form_id == form_id,
                FormSession.respondent_phone == respondent_phone,
                FormSession.status == SessionStatus.IN_PROGRESS,
            )
            .order_by(FormSession.created_at.desc())
            .limit(1)
        )
        result = await db.execute(stmt)
        return result.scalar_one_or_none()

    async def get_latest_active(
        self, db: AsyncSession, respondent_phone: str
    ) -> FormSession | None:
        """Return the respondent's most recently active in-progress session.

        Ignores the form: a non-start message is routed to whichever
        in-progress session the respondent touched last.
        """
        stmt = (
            select(FormSession)
            .where(
                FormSession.respondent_phone == respondent_phone,
                FormSession.status == SessionStatus.IN_PROGRESS,
            )
            .order_by(FormSession.last_activity_at.desc())
            .limit(1)
        )
        result = await db.execute(stmt)
        return result.scalar_one_or_none()

    async def get_latest_for_respondent(
        self, db: AsyncSession, respondent_phone: str
    ) -> FormSession | None:
        """Return the respondent's most recently active session of any status.

        Ordered by ``last_activity_at``, which an abandon sweep leaves alone.
        """
        stmt = (
            select(FormSession)
            .where(FormSession.respondent_phone == respondent_phone)
            .order_by(FormSession.last_activity_at.desc())
            .limit(1)
        )
        result = await db.execute(stmt)
        return result.scalar_one_or_none()

    # ------------------------------------------------------------------
    # Read: multiple rows
    # ------------------------------------------------------------------

    async def list_answers(
        self, db: AsyncSession, session_pk: uuid.UUID
    ) -> list[Answer]:
        """List all answers recorded for a session, oldest first."""
        stmt = (
            select(Answer)
            .where(Answer.response_id == session_pk)
            .order_by(Answer.created_at.asc())
        )
        result = await db.execute(stmt)
        return list(result.scalars().all())

    # ------------------------------------------------------------------
    # Update: progress
    # ------------------------------------------------------------------

    async def upsert_answer(
        self,
        db: AsyncSession,
        session: FormSession,
        field_id: uuid.UUID,
        value: Any,
    ) -> None:
        """Insert or overwrite the answer for (session, field).

        Uses ``INSERT ... ON CONFLICT DO UPDATE`` on the
        ``uq_answer_session_field`` constraint so a redelivered or corrected
        answer never produces a second row.
        """
        now = datetime.now(timezone.utc)
        stmt = pg_insert(Answer).values(
            id=uuid.uuid4(),
            response_id=session.id,
            field_id=field_id,
            value=value,
            created_at=now,
            updated_at=now,
        )
        stmt = stmt.on_conflict_do_update(
            constraint="uq_answer_session_field",
            set_={"value": stmt.excluded.value, "updated_at": now},
        )
        await db.execute(stmt)

    async def set_current_field(
        self,
        db: AsyncSession,
        session: FormSession,
        field_id: uuid.UUID,
        *,
        message_id: str | None = None,
    ) -> FormSession:
        """Point the session at ``field_id`` and refresh its activity time."""
        now = datetime.now(timezone.utc)
        session.current_field_id = field_id
        session.last_message_id = message_id
        session.last_activity_at = now
        session.updated_at = now
        await db.flush()
        return session

    async def touch(
        self,
        db: AsyncSession,
        session: FormSession,
        *,
        message_id: str | None = None,
    ) -> FormSession:
        """Refresh activity time without moving the field pointer."""
        now = datetime.now(timezone.utc)
        session.last_message_id = message_id
        session.last_activity_at = now
        session.updated_at = now
        await db.flush()
        return session

    # ------------------------------------------------------------------
    # Update: terminal states
    # ------------------------------------------------------------------

    async def complete_session(
        self,
        db: AsyncSession,
        session: FormSession,
        *,
        completed_at: datetime,
        completion_time_seconds: int,
        message_id: str | None = None,
    ) -> FormSession:
        """Mark a session completed with its elapsed time.

        The CHECK constraint ``ck_completed_has_timing`` enforces that both
        timing columns are non-null whenever status is completed.
        """
        session.status = SessionStatus.COMPLETED.value
        session.current_field_id = None
        session.completed_at = completed_at
        session.completion_time_seconds = completion_time_seconds
        session.last_message_id = message_id
        session.last_activity_at = completed_at
        session.updated_at = completed_at
        await db.flush()
        return session

    async def abandon_stale_sessions(
        self,
        db: AsyncSession,
        *,
        older_than_days: int,
    ) -> int:
        """Mark in-progress sessions idle for ``older_than_days`` as abandoned.

        Returns the number of affected rows.
        """
        now = datetime.now(timezone.utc)
        cutoff = now - timedelta(days=older_than_days)
        stmt = (
            update(FormSession)
            .where(
                FormSession.status == SessionStatus.IN_PROGRESS,
                FormSession.last_activity_at < cutoff,
            )
            .values(status=SessionStatus.ABANDONED.value, updated_at=now)
        )
        result = await db.execute(stmt)
        return result.rowcount or 0
