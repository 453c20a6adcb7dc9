"""Database-level enumerations for respondent sessions."""

import enum


class SessionStatus(str, enum.Enum):
    """Lifecycle states for a respondent session.

    Transitions:
        in_progress -> completed  (last field answered)
        in_progress -> abandoned  (idle past the abandonment threshold)
    """

    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"
    ABANDONED = "abandoned"


class SessionSource(str, enum.Enum):
    """Channel the session was started from."""

    WHATSAPP = "whatsapp"
    WEB = "web"
