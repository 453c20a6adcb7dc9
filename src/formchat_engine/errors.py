"""Error taxonomy for the conversation engine.

Expected branches (validation failure, unknown form, no active session) are
returned as typed outcomes and never raised.  Exceptions are reserved for
conditions the worker has to act on; ``retryable`` tells it whether another
attempt can succeed or the record should be dead-lettered at once.
"""


class FormchatError(Exception):
    """Base class for all engine errors."""

    retryable: bool = True


class InfrastructureError(FormchatError):
    """A downstream dependency (store, queue, gateway) failed transiently."""

    retryable = True


class GatewayError(InfrastructureError):
    """The chat provider rejected or failed to accept an outbound message.

    Args:
        message: human-readable description
        status_code: HTTP status returned by the provider, if any
        retryable: whether the failure is transient (429/5xx, transport)
    """

    def __init__(
        self,
        message: str,
        *,
        status_code: int | None = None,
        retryable: bool = True,
    ) -> None:
        super().__init__(message)
        self.status_code = status_code
        self.retryable = retryable


class MalformedRecordError(FormchatError):
    """A queue record could not be decoded into a message."""

    retryable = False


class FieldDefinitionError(FormchatError):
    """A stored field definition cannot be turned into a field model."""

    retryable = False


class UnknownFieldTypeError(FieldDefinitionError):
    """A stored field carries a type the engine does not know."""


class SessionStateError(FormchatError):
    """Session data is inconsistent with its form (e.g. dangling field pointer)."""

    retryable = False
