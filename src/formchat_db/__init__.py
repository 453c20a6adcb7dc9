"""formchat_db — PostgreSQL persistence layer for conversational form sessions.

This package provides the ORM models, async engine factory, and repositories
for reading published forms and for creating, advancing, and completing
respondent sessions.  It is consumed by the session engine and the FastAPI
server.
"""

from formchat_db.engine import get_engine, get_session_factory
from formchat_db.models.enums import SessionStatus
from formchat_db.models.form import Form, FormField
from formchat_db.models.session import Answer, FormSession
from formchat_db.repository import FormRepository, SessionRepository

__all__ = [
    "Answer",
    "Form",
    "FormField",
    "FormSession",
    "SessionStatus",
    "get_engine",
    "get_session_factory",
    "FormRepository",
    "SessionRepository",
]
