"""Session inspection endpoint — one session with its recorded answers.

Protected by ``X-Admin-Key``: answers are respondent data.
"""

import uuid
from datetime import datetime
from typing import Any

from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel
from sqlalchemy.ext.asyncio import AsyncSession

from formchat_db.repository import FormRepository, SessionRepository

from formchat_server.dependencies import get_db, require_admin_key

router = APIRouter(tags=["sessions"], dependencies=[Depends(require_admin_key)])

_forms = FormRepository()
_sessions = SessionRepository()


# ------------------------------------------------------------------
# Response models
# ------------------------------------------------------------------

class AnswerView(BaseModel):
    field_key: str | None
    label: str | None
    value: Any
    answered_at: datetime


class SessionDetail(BaseModel):
    id: str
    form_key: str | None
    respondent_phone: str
    respondent_name: str | None
    status: str
    current_field_key: str | None
    created_at: datetime
    last_activity_at: datetime
    completed_at: datetime | None
    completion_time_seconds: int | None
    answers: list[AnswerView]


# ------------------------------------------------------------------
# Endpoints
# ------------------------------------------------------------------

@router.get("/sessions/{session_id}")
async def get_session(
    session_id: uuid.UUID,
    db: AsyncSession = Depends(get_db),
) -> SessionDetail:
    """Return one session, its current position and its answers."""
    session = await _sessions.get_by_id(db, session_id)
    if session is None:
        raise HTTPException(status_code=404, detail="Session not found")

    form = await _forms.get_by_id(db, session.form_id)
    fields = {f.id: f for f in await _forms.list_fields(db, session.form_id)}
    current = fields.get(session.current_field_id) if session.current_field_id else None

    answers = []
    for answer in await _sessions.list_answers(db, session.id):
        field = fields.get(answer.field_id)
        answers.append(
            AnswerView(
                field_key=field.field_key if field else None,
                label=field.label if field else None,
                value=answer.value,
                answered_at=answer.updated_at,
            )
        )

    return SessionDetail(
        id=str(session.id),
        form_key=form.form_key if form else None,
        respondent_phone=session.respondent_phone,
        respondent_name=session.respondent_name,
        status=getattr(session.status, "value", session.status),
        current_field_key=current.field_key if current else None,
        created_at=session.created_at,
        last_activity_at=session.last_activity_at,
        completed_at=session.completed_at,
        completion_time_seconds=session.completion_time_seconds,
        answers=answers,
    )
