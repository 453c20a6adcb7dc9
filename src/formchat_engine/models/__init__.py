"""Public model re-exports for formchat_engine.

Consumers should import from ``formchat_engine.models`` rather than
reaching into sub-modules directly.
"""

# --- Fields ---
from formchat_engine.models.field import (
    BaseField,
    DateField,
    EmailField,
    FIELD_TYPE_ALIASES,
    FieldSpec,
    FieldType,
    FileField,
    LongTextField,
    MultiSelectField,
    NumberField,
    Option,
    PhoneField,
    RatingField,
    ShortTextField,
    SingleSelectField,
    UrlField,
    field_from_row,
    field_mapper,
    resolve_field_type,
)

# --- Queue records ---
from formchat_engine.models.message import (
    DeadLetterRecord,
    InboundMessage,
    QueuedMessage,
)

# --- Engine outcomes ---
from formchat_engine.models.outcome import (
    Advanced,
    Completed,
    Duplicate,
    NoSession,
    Outcome,
    Rejected,
    StartRejected,
    Started,
)

# --- Outbound prompts ---
from formchat_engine.models.prompt import (
    ButtonsPrompt,
    Choice,
    ListPrompt,
    ListSection,
    OutboundPrompt,
    TextPrompt,
)

__all__ = [
    # Fields
    "BaseField",
    "DateField",
    "EmailField",
    "FIELD_TYPE_ALIASES",
    "FieldSpec",
    "FieldType",
    "FileField",
    "LongTextField",
    "MultiSelectField",
    "NumberField",
    "Option",
    "PhoneField",
    "RatingField",
    "ShortTextField",
    "SingleSelectField",
    "UrlField",
    "field_from_row",
    "field_mapper",
    "resolve_field_type",
    # Queue records
    "DeadLetterRecord",
    "InboundMessage",
    "QueuedMessage",
    # Outcomes
    "Advanced",
    "Completed",
    "Duplicate",
    "NoSession",
    "Outcome",
    "Rejected",
    "StartRejected",
    "Started",
    # Prompts
    "ButtonsPrompt",
    "Choice",
    "ListPrompt",
    "ListSection",
    "OutboundPrompt",
    "TextPrompt",
]
