"""WhatsApp Cloud API client — outbound delivery of prompts.

Converts ``OutboundPrompt`` shapes into Graph API message payloads and POSTs
them to ``{api_url}/{phone_number_id}/messages``.

Retry policy: transport errors, timeouts and HTTP 429/5xx are retried
``max_retries`` additional times with linear backoff
(``backoff_seconds * attempt``).  Any other non-2xx response raises a
non-retryable ``GatewayError`` at once, so the worker dead-letters the
inbound message instead of hammering the provider with a request it will
keep refusing.

Dry-run mode (no access token configured, or ``dry_run=True``) logs the
payload and returns a synthetic ``dev-<ms>`` id without any network I/O.
"""

from __future__ import annotations

import asyncio
import logging
import os
import time
from dataclasses import dataclass
from typing import Any

import httpx

from formchat_engine.constants import (
    GATEWAY_BACKOFF_SECONDS,
    GATEWAY_MAX_RETRIES,
    GATEWAY_TIMEOUT_SECONDS,
    RETRYABLE_HTTP_STATUSES,
)
from formchat_engine.errors import GatewayError
from formchat_engine.interfaces import MessageGateway
from formchat_engine.models.prompt import (
    ButtonsPrompt,
    ListPrompt,
    OutboundPrompt,
    TextPrompt,
)

logger = logging.getLogger(__name__)

DEFAULT_API_URL = "https://graph.facebook.com/v18.0"


@dataclass(frozen=True)
class WhatsAppSettings:
    """Credentials and tuning for the Cloud API client."""

    api_url: str = DEFAULT_API_URL
    api_token: str | None = None
    phone_number_id: str | None = None
    # Force dry-run even when credentials are present
    dry_run: bool = False
    max_retries: int = GATEWAY_MAX_RETRIES
    backoff_seconds: float = GATEWAY_BACKOFF_SECONDS
    timeout_seconds: float = GATEWAY_TIMEOUT_SECONDS


def load_whatsapp_settings() -> WhatsAppSettings:
    """Build gateway settings from ``WHATSAPP_*`` environment variables."""
    return WhatsAppSettings(
        api_url=os.getenv("WHATSAPP_API_URL", DEFAULT_API_URL).rstrip("/"),
        api_token=os.getenv("WHATSAPP_API_TOKEN") or None,
        phone_number_id=os.getenv("WHATSAPP_PHONE_NUMBER_ID") or None,
        dry_run=os.getenv("WHATSAPP_DRY_RUN", "0") == "1",
    )


def build_payload(to: str, prompt: OutboundPrompt) -> dict[str, Any]:
    """Translate a prompt shape into a Cloud API ``messages`` payload."""
    payload: dict[str, Any] = {
        "messaging_product": "whatsapp",
        "recipient_type": "individual",
        "to": to,
    }
    if isinstance(prompt, TextPrompt):
        payload["type"] = "text"
        payload["text"] = {"body": prompt.body}
    elif isinstance(prompt, ButtonsPrompt):
        payload["type"] = "interactive"
        payload["interactive"] = {
            "type": "button",
            "body": {"text": prompt.body},
            "action": {
                "buttons": [
                    {"type": "reply", "reply": {"id": b.id, "title": b.title}}
                    for b in prompt.buttons
                ]
            },
        }
    elif isinstance(prompt, ListPrompt):
        payload["type"] = "interactive"
        payload["interactive"] = {
            "type": "list",
            "body": {"text": prompt.body},
            "action": {
                "button": prompt.button,
                "sections": [
                    {
                        "title": s.title,
                        "rows": [{"id": r.id, "title": r.title} for r in s.rows],
                    }
                    for s in prompt.sections
                ],
            },
        }
    else:
        raise TypeError(f"Unsupported prompt shape: {type(prompt).__name__}")
    return payload


class WhatsAppClient(MessageGateway):
    """Async Cloud API client with bounded retry.

    Args:
        settings: credentials and retry tuning
        client: optional pre-built ``httpx.AsyncClient`` (tests pass one
            wired to an ``httpx.MockTransport``)
    """

    def __init__(
        self,
        settings: WhatsAppSettings,
        client: httpx.AsyncClient | None = None,
    ) -> None:
        self._settings = settings
        self._client = client or httpx.AsyncClient(timeout=settings.timeout_seconds)
        self._owns_client = client is None

    @property
    def dry_run(self) -> bool:
        s = self._settings
        return s.dry_run or not (s.api_token and s.phone_number_id)

    async def send(self, to: str, prompt: OutboundPrompt) -> str:
        payload = build_payload(to, prompt)

        if self.dry_run:
            dev_id = f"dev-{int(time.time() * 1000)}"
            logger.info("[DRY_RUN SEND] to=%s kind=%s payload=%s", to, prompt.kind, payload)
            return dev_id

        url = f"{self._settings.api_url}/{self._settings.phone_number_id}/messages"
        headers = {
            "Authorization": f"Bearer {self._settings.api_token}",
            "Content-Type": "application/json",
        }

        # At least one attempt even if GATEWAY_MAX_RETRIES is negative
        attempts = max(1, self._settings.max_retries + 1)
        last_error = GatewayError(f"No send attempt completed for {to}")
        for attempt in range(1, attempts + 1):
            try:
                resp = await self._client.post(url, json=payload, headers=headers)
            except httpx.TransportError as exc:  # includes timeouts
                last_error = GatewayError(f"Transport error sending to {to}: {exc}")
                logger.warning(
                    "Send attempt %d/%d to %s failed: %s", attempt, attempts, to, exc
                )
            else:
                if resp.is_success:
                    return self._message_id(resp)
                if resp.status_code not in RETRYABLE_HTTP_STATUSES:
                    logger.error(
                        "Provider rejected message to %s: status=%d body=%s",
                        to, resp.status_code, resp.text,
                    )
                    raise GatewayError(
                        f"Provider rejected message with status {resp.status_code}",
                        status_code=resp.status_code,
                        retryable=False,
                    )
                last_error = GatewayError(
                    f"Provider returned status {resp.status_code}",
                    status_code=resp.status_code,
                )
                logger.warning(
                    "Send attempt %d/%d to %s got status %d",
                    attempt, attempts, to, resp.status_code,
                )

            if attempt < attempts:
                await asyncio.sleep(self._settings.backoff_seconds * attempt)

        raise last_error

    @staticmethod
    def _message_id(resp: httpx.Response) -> str:
        try:
            data = resp.json()
        except ValueError:
            return ""
        messages = data.get("messages") or []
        if messages and isinstance(messages, list):
            return str(messages[0].get("id", ""))
        return ""

    async def close(self) -> None:
        if self._owns_client:
            await self._client.aclose()
