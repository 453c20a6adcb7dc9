"""ORM models for formchat_db."""

from formchat_db.models.base import Base
from formchat_db.models.enums import SessionSource, SessionStatus
from formchat_db.models.form import Form, FormField
from formchat_db.models.session import Answer, FormSession

__all__ = [
    "Base",
    "SessionSource",
    "SessionStatus",
    "Form",
    "FormField",
    "FormSession",
    "Answer",
]
