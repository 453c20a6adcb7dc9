"""FormSession and Answer ORM models — the state owned by the session engine.

A ``FormSession`` row is one respondent's pass through one form.  Answers
live in their own table keyed by (session, field) so that a correction
overwrites the earlier value instead of appending a second row.
"""

import uuid
from datetime import datetime, timezone
from typing import Any

from sqlalchemy import (
    CheckConstraint,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    UniqueConstraint,
    text,
)
from sqlalchemy.dialects.postgresql import JSONB, TIMESTAMP, UUID
from sqlalchemy.orm import Mapped, mapped_column

from formchat_db.models.base import Base
from formchat_db.models.enums import SessionSource, SessionStatus


class FormSession(Base):
    """One row per respondent session.

    At most one ``in_progress`` row may exist per (form, respondent phone);
    the partial unique index below backs the resume-or-create lookup.
    """

    __tablename__ = "form_responses"

    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        primary_key=True,
        default=uuid.uuid4,
    )
    form_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        ForeignKey("forms.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )

    # --- Respondent ---
    respondent_phone: Mapped[str] = mapped_column(Text, nullable=False, index=True)
    respondent_name: Mapped[str | None] = mapped_column(Text, nullable=True)
    source: Mapped[str] = mapped_column(
        String(20),
        nullable=False,
        default=SessionSource.WHATSAPP,
        server_default=text("'whatsapp'"),
    )

    # --- Lifecycle ---
    status: Mapped[SessionStatus] = mapped_column(
        # Store as the lowercase string value, not the Python name
        String(20),
        nullable=False,
        default=SessionStatus.IN_PROGRESS,
        index=True,
    )
    # Field awaiting an answer; null once the session is completed
    current_field_id: Mapped[uuid.UUID | None] = mapped_column(
        UUID(as_uuid=True),
        ForeignKey("form_fields.id", ondelete="SET NULL"),
        nullable=True,
    )
    # Inbound message id that last changed this session (redelivery guard)
    last_message_id: Mapped[str | None] = mapped_column(Text, nullable=True)

    # --- Timestamps ---
    created_at: Mapped[datetime] = mapped_column(
        TIMESTAMP(timezone=True),
        nullable=False,
        default=lambda: datetime.now(timezone.utc),
    )
    updated_at: Mapped[datetime] = mapped_column(
        TIMESTAMP(timezone=True),
        nullable=False,
        default=lambda: datetime.now(timezone.utc),
        onupdate=lambda: datetime.now(timezone.utc),
    )
    last_activity_at: Mapped[datetime] = mapped_column(
        TIMESTAMP(timezone=True),
        nullable=False,
        default=lambda: datetime.now(timezone.utc),
    )
    completed_at: Mapped[datetime | None] = mapped_column(
        TIMESTAMP(timezone=True), nullable=True
    )
    # Written once, together with completed_at
    completion_time_seconds: Mapped[int | None] = mapped_column(
        Integer, nullable=True
    )

    __table_args__ = (
        CheckConstraint(
            "status IN ('in_progress', 'completed', 'abandoned')",
            name="ck_session_status",
        ),
        CheckConstraint(
            "status != 'completed' OR "
            "(completed_at IS NOT NULL AND completion_time_seconds IS NOT NULL)",
            name="ck_completed_has_timing",
        ),
        CheckConstraint(
            "completion_time_seconds IS NULL OR completion_time_seconds >= 0",
            name="ck_completion_time_non_negative",
        ),
        # One in-progress session per (form, respondent)
        Index(
            "ux_active_form_respondent",
            "form_id",
            "respondent_phone",
            unique=True,
            postgresql_where=text("status = 'in_progress'"),
        ),
        # Continuation lookup: most recently active session for a phone
        Index(
            "ix_respondent_activity",
            "respondent_phone",
            "last_activity_at",
        ),
    )

    def __repr__(self) -> str:
        return (
            f"<FormSession(id={self.id!s}, form={self.form_id!s}, "
            f"phone={self.respondent_phone!r}, status={self.status!r})>"
        )


class Answer(Base):
    """Normalized value recorded for one (session, field) pair."""

    __tablename__ = "form_response_values"

    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        primary_key=True,
        default=uuid.uuid4,
    )
    response_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        ForeignKey("form_responses.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    field_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        ForeignKey("form_fields.id", ondelete="CASCADE"),
        nullable=False,
    )
    # JSON so that lists (multi-select) and objects (file) round-trip
    value: Mapped[Any] = mapped_column(JSONB, nullable=True)

    created_at: Mapped[datetime] = mapped_column(
        TIMESTAMP(timezone=True),
        nullable=False,
        default=lambda: datetime.now(timezone.utc),
    )
    updated_at: Mapped[datetime] = mapped_column(
        TIMESTAMP(timezone=True),
        nullable=False,
        default=lambda: datetime.now(timezone.utc),
        onupdate=lambda: datetime.now(timezone.utc),
    )

    __table_args__ = (
        UniqueConstraint("response_id", "field_id", name="uq_answer_session_field"),
    )

    def __repr__(self) -> str:
        return (
            f"<Answer(session={self.response_id!s}, field={self.field_id!s}, "
            f"value={self.value!r})>"
        )
