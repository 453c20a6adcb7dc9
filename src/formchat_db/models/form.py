"""Form and FormField ORM models — read-only inputs to the session engine.

Forms and their fields are authored by the form-management side of the
product.  The engine only ever reads them: a form must be published before
a respondent can start it, and its fields are walked in ``order_idx`` order.
"""

import uuid
from datetime import datetime, timezone

from sqlalchemy import (
    Boolean,
    ForeignKey,
    Integer,
    String,
    Text,
    UniqueConstraint,
    text,
)
from sqlalchemy.dialects.postgresql import JSONB, TIMESTAMP, UUID
from sqlalchemy.orm import Mapped, mapped_column, relationship

from formchat_db.models.base import Base


class Form(Base):
    """One row per form.  ``form_key`` is the public key used in start links."""

    __tablename__ = "forms"

    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        primary_key=True,
        default=uuid.uuid4,
    )
    # Case-sensitive public key, referenced by ``START:<form_key>``
    form_key: Mapped[str] = mapped_column(Text, nullable=False, unique=True)
    title: Mapped[str] = mapped_column(Text, nullable=False, default="")
    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    is_published: Mapped[bool] = mapped_column(
        Boolean,
        nullable=False,
        default=False,
        server_default=text("false"),
    )

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

    fields: Mapped[list["FormField"]] = relationship(
        back_populates="form",
        order_by="FormField.order_idx",
        cascade="all, delete-orphan",
    )

    def __repr__(self) -> str:
        return (
            f"<Form(id={self.id!s}, key={self.form_key!r}, "
            f"published={self.is_published})>"
        )


class FormField(Base):
    """One question slot in a form's ordered sequence."""

    __tablename__ = "form_fields"

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
    field_key: Mapped[str] = mapped_column(Text, nullable=False)
    label: Mapped[str] = mapped_column(Text, nullable=False)
    # Field kind as authored by the form builder (e.g. "email", "select")
    type: Mapped[str] = mapped_column(String(32), nullable=False)
    is_required: Mapped[bool] = mapped_column(
        Boolean,
        nullable=False,
        default=False,
        server_default=text("false"),
    )
    # Sequence position; the lowest value is the entry point
    order_idx: Mapped[int] = mapped_column(Integer, nullable=False)
    placeholder: Mapped[str | None] = mapped_column(Text, nullable=True)
    # Type-specific metadata: options, numeric bounds, validations, ...
    meta: Mapped[dict] = mapped_column(
        JSONB,
        nullable=False,
        default=dict,
        server_default=text("'{}'::jsonb"),
    )

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

    form: Mapped[Form] = relationship(back_populates="fields")

    __table_args__ = (
        # Order indices are a total order within a form
        UniqueConstraint("form_id", "order_idx", name="uq_form_field_order"),
        UniqueConstraint("form_id", "field_key", name="uq_form_field_key"),
    )

    def __repr__(self) -> str:
        return (
            f"<FormField(id={self.id!s}, key={self.field_key!r}, "
            f"type={self.type!r}, order={self.order_idx})>"
        )
