"""formchat_engine — conversational form session SDK.

Public API:
    SessionEngine      — state machine: one inbound message → one outcome
    QueueWorker        — poll loop with retry and dead-lettering
    Validator          — pure reply validation against typed field models
    PromptManager      — Jinja2 renderer for field prompts and notices

Collaborator interfaces and implementations:
    MessageGateway     — ABC for outbound delivery
    WhatsAppClient     — Cloud API gateway (httpx) with dry-run mode
    MessageQueue       — ABC for the inbound queue / retry set / dead letters
    RedisMessageQueue  — durable queue over redis.asyncio
    InMemoryMessageQueue — same contract over deques, for tests

Records and outcomes:
    InboundMessage     — normalized provider message
    QueuedMessage      — queue record with retry bookkeeping
    DeadLetterRecord   — record that will not be retried
    Outcome            — union of Started / Advanced / Completed / Rejected /
                         StartRejected / NoSession / Duplicate
"""

from formchat_engine.engine import SessionEngine, parse_start_command
from formchat_engine.errors import (
    FieldDefinitionError,
    FormchatError,
    GatewayError,
    InfrastructureError,
    MalformedRecordError,
    SessionStateError,
    UnknownFieldTypeError,
)
from formchat_engine.gateway import WhatsAppClient, WhatsAppSettings, load_whatsapp_settings
from formchat_engine.interfaces import MessageGateway, MessageQueue
from formchat_engine.models.message import DeadLetterRecord, InboundMessage, QueuedMessage
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
from formchat_engine.prompt import PromptManager
from formchat_engine.queue import InMemoryMessageQueue, RedisMessageQueue
from formchat_engine.validator import Accepted, Validator, validate
from formchat_engine.worker import QueueWorker

__all__ = [
    # Engine & worker
    "SessionEngine",
    "QueueWorker",
    "parse_start_command",
    # Validation & prompts
    "Validator",
    "validate",
    "Accepted",
    "PromptManager",
    # Collaborators
    "MessageGateway",
    "MessageQueue",
    "WhatsAppClient",
    "WhatsAppSettings",
    "load_whatsapp_settings",
    "RedisMessageQueue",
    "InMemoryMessageQueue",
    # Records
    "InboundMessage",
    "QueuedMessage",
    "DeadLetterRecord",
    # Outcomes
    "Outcome",
    "Started",
    "Advanced",
    "Completed",
    "Rejected",
    "StartRejected",
    "NoSession",
    "Duplicate",
    # Errors
    "FormchatError",
    "InfrastructureError",
    "GatewayError",
    "MalformedRecordError",
    "FieldDefinitionError",
    "UnknownFieldTypeError",
    "SessionStateError",
]
