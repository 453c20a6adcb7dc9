"""Session engine outcomes — the typed result of processing one message.

Expected branches are returned, never raised:
  - started: a new session was created (or an in-progress one resumed)
  - advanced: an answer was accepted and the pointer moved to the next field
  - completed: the last answer was accepted and the session closed
  - rejected: validation failed, the field is re-prompted (self-loop)
  - start_rejected: the start command named an unknown, unpublished or
    empty form; terminal for the message
  - no_session: a non-start message arrived with no in-progress session
  - duplicate: a redelivery of the message that last changed the session

Only infrastructure failures propagate to the worker, as exceptions.
"""

from typing import Annotated, Any, Literal, Optional, Union

from pydantic import BaseModel, Field


class _SessionOutcome(BaseModel):
    session_id: str
    form_key: str


class Started(_SessionOutcome):
    type: Literal["started"] = "started"
    field_key: str
    resumed: bool = False


class Advanced(_SessionOutcome):
    type: Literal["advanced"] = "advanced"
    answered_field_key: str
    field_key: str
    value: Any = None


class Completed(_SessionOutcome):
    type: Literal["completed"] = "completed"
    answered_field_key: str
    value: Any = None
    completion_time_seconds: int


class Rejected(_SessionOutcome):
    type: Literal["rejected"] = "rejected"
    field_key: str
    error: str


class StartRejected(BaseModel):
    type: Literal["start_rejected"] = "start_rejected"
    form_key: str
    reason: Literal["unknown_form", "empty_form"]


class NoSession(BaseModel):
    type: Literal["no_session"] = "no_session"


class Duplicate(BaseModel):
    type: Literal["duplicate"] = "duplicate"
    message_id: str
    session_id: Optional[str] = None


Outcome = Annotated[
    Union[Started, Advanced, Completed, Rejected, StartRejected, NoSession, Duplicate],
    Field(discriminator="type"),
]
