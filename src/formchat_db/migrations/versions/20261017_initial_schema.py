"""Create forms, form_fields, form_responses and form_response_values.

Initial schema for the conversational session engine.  ``forms`` and
``form_fields`` are owned by the form builder; the engine only reads them.
``form_responses`` (sessions) and ``form_response_values`` (answers) are
written by the engine.

Revision ID: 20261017_initial
Revises:
Create Date: 2026-10-17
"""

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects.postgresql import JSONB, TIMESTAMP, UUID

# revision identifiers, used by Alembic.
revision = "20261017_initial"
down_revision = None
branch_labels = None
depends_on = None


def _timestamps() -> list[sa.Column]:
    return [
        sa.Column(
            "created_at",
            TIMESTAMP(timezone=True),
            nullable=False,
            server_default=sa.text("now()"),
        ),
        sa.Column(
            "updated_at",
            TIMESTAMP(timezone=True),
            nullable=False,
            server_default=sa.text("now()"),
        ),
    ]


def upgrade() -> None:
    # --- forms ---
    op.create_table(
        "forms",
        sa.Column("id", UUID(as_uuid=True), primary_key=True),
        sa.Column("form_key", sa.Text, nullable=False, unique=True),
        sa.Column("title", sa.Text, nullable=False, server_default=sa.text("''")),
        sa.Column("description", sa.Text, nullable=True),
        sa.Column(
            "is_published",
            sa.Boolean,
            nullable=False,
            server_default=sa.text("false"),
        ),
        *_timestamps(),
    )

    # --- form_fields ---
    op.create_table(
        "form_fields",
        sa.Column("id", UUID(as_uuid=True), primary_key=True),
        sa.Column(
            "form_id",
            UUID(as_uuid=True),
            sa.ForeignKey("forms.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("field_key", sa.Text, nullable=False),
        sa.Column("label", sa.Text, nullable=False),
        sa.Column("type", sa.String(32), nullable=False),
        sa.Column(
            "is_required",
            sa.Boolean,
            nullable=False,
            server_default=sa.text("false"),
        ),
        sa.Column("order_idx", sa.Integer, nullable=False),
        sa.Column("placeholder", sa.Text, nullable=True),
        sa.Column(
            "meta",
            JSONB,
            nullable=False,
            server_default=sa.text("'{}'::jsonb"),
        ),
        *_timestamps(),
        sa.UniqueConstraint("form_id", "order_idx", name="uq_form_field_order"),
        sa.UniqueConstraint("form_id", "field_key", name="uq_form_field_key"),
    )
    op.create_index("ix_form_fields_form_id", "form_fields", ["form_id"])

    # --- form_responses (sessions) ---
    op.create_table(
        "form_responses",
        sa.Column("id", UUID(as_uuid=True), primary_key=True),
        sa.Column(
            "form_id",
            UUID(as_uuid=True),
            sa.ForeignKey("forms.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("respondent_phone", sa.Text, nullable=False),
        sa.Column("respondent_name", sa.Text, nullable=True),
        sa.Column(
            "source",
            sa.String(20),
            nullable=False,
            server_default=sa.text("'whatsapp'"),
        ),
        sa.Column(
            "status",
            sa.String(20),
            nullable=False,
            server_default=sa.text("'in_progress'"),
        ),
        sa.Column(
            "current_field_id",
            UUID(as_uuid=True),
            sa.ForeignKey("form_fields.id", ondelete="SET NULL"),
            nullable=True,
        ),
        sa.Column("last_message_id", sa.Text, nullable=True),
        *_timestamps(),
        sa.Column(
            "last_activity_at",
            TIMESTAMP(timezone=True),
            nullable=False,
            server_default=sa.text("now()"),
        ),
        sa.Column("completed_at", TIMESTAMP(timezone=True), nullable=True),
        sa.Column("completion_time_seconds", sa.Integer, nullable=True),
        sa.CheckConstraint(
            "status IN ('in_progress', 'completed', 'abandoned')",
            name="ck_session_status",
        ),
        sa.CheckConstraint(
            "status != 'completed' OR "
            "(completed_at IS NOT NULL AND completion_time_seconds IS NOT NULL)",
            name="ck_completed_has_timing",
        ),
        sa.CheckConstraint(
            "completion_time_seconds IS NULL OR completion_time_seconds >= 0",
            name="ck_completion_time_non_negative",
        ),
    )
    op.create_index("ix_form_responses_form_id", "form_responses", ["form_id"])
    op.create_index(
        "ix_form_responses_respondent_phone", "form_responses", ["respondent_phone"]
    )
    op.create_index("ix_form_responses_status", "form_responses", ["status"])
    op.create_index(
        "ix_respondent_activity",
        "form_responses",
        ["respondent_phone", "last_activity_at"],
    )
    # Partial unique index: at most one in-progress session per (form, phone)
    op.create_index(
        "ux_active_form_respondent",
        "form_responses",
        ["form_id", "respondent_phone"],
        unique=True,
        postgresql_where=sa.text("status = 'in_progress'"),
    )

    # --- form_response_values (answers) ---
    op.create_table(
        "form_response_values",
        sa.Column("id", UUID(as_uuid=True), primary_key=True),
        sa.Column(
            "response_id",
            UUID(as_uuid=True),
            sa.ForeignKey("form_responses.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column(
            "field_id",
            UUID(as_uuid=True),
            sa.ForeignKey("form_fields.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("value", JSONB, nullable=True),
        *_timestamps(),
        sa.UniqueConstraint(
            "response_id", "field_id", name="uq_answer_session_field"
        ),
    )
    op.create_index(
        "ix_form_response_values_response_id",
        "form_response_values",
        ["response_id"],
    )


def downgrade() -> None:
    op.drop_table("form_response_values")
    op.drop_index("ux_active_form_respondent", table_name="form_responses")
    op.drop_index("ix_respondent_activity", table_name="form_responses")
    op.drop_table("form_responses")
    op.drop_table("form_fields")
    op.drop_table("forms")
