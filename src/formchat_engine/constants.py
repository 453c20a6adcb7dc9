"""Conversation-engine constants shared across the SDK.

Several constants can be overridden via environment variables so that
deployments can tune retry and polling behaviour without code changes.
"""

import os
import re

# Inbound text of the exact form ``START:<form_key>`` begins a session.
# The key is case-sensitive; an empty key is treated as an unknown form.
START_COMMAND_PATTERN = re.compile(r"^START:(\S*)$")

# --- Worker / queue ---
# Retries after the first failed attempt before a record is dead-lettered.
MAX_RETRIES = int(os.getenv("WORKER_MAX_RETRIES", "3"))
# Sleep between polls when the queue is empty.
POLL_INTERVAL_SECONDS = float(os.getenv("WORKER_POLL_INTERVAL", "2.0"))
# A retried record becomes eligible after ``RETRY_DELAY_SECONDS * retry_count``.
RETRY_DELAY_SECONDS = float(os.getenv("WORKER_RETRY_DELAY", "5.0"))
# Upper bound on processing one message (store + gateway calls included).
MESSAGE_TIMEOUT_SECONDS = float(os.getenv("WORKER_MESSAGE_TIMEOUT", "30.0"))

QUEUE_NAME = os.getenv("QUEUE_NAME", "whatsapp:incoming:queue")
RETRY_QUEUE_NAME = os.getenv("RETRY_QUEUE_NAME", "whatsapp:retry_queue")
DEAD_LETTER_QUEUE_NAME = os.getenv("DEAD_LETTER_QUEUE_NAME", "whatsapp:dead_letter_queue")

# --- Gateway ---
# Additional send attempts after the first one, with linear backoff.
GATEWAY_MAX_RETRIES = int(os.getenv("GATEWAY_MAX_RETRIES", "2"))
GATEWAY_BACKOFF_SECONDS = float(os.getenv("GATEWAY_BACKOFF_SECONDS", "1.0"))
GATEWAY_TIMEOUT_SECONDS = float(os.getenv("GATEWAY_TIMEOUT_SECONDS", "10.0"))
# HTTP statuses worth another attempt (rate limit and server-side errors).
RETRYABLE_HTTP_STATUSES: frozenset[int] = frozenset({429, 500, 502, 503, 504})

# --- Provider presentation limits (WhatsApp Cloud API) ---
MAX_REPLY_BUTTONS = 3
MAX_BUTTON_TITLE_LENGTH = 20
MAX_LIST_ROWS = 10
MAX_LIST_ROW_TITLE_LENGTH = 24
LIST_BUTTON_LABEL = "Choose"
LIST_SECTION_TITLE = "Options"

# --- Validation ---
DEFAULT_RATING_SCALE = 5
MIN_PHONE_DIGITS = 10

# Typed replies that leave an optional field blank (compared case-insensitively)
SKIP_KEYWORDS: frozenset[str] = frozenset({"skip"})
