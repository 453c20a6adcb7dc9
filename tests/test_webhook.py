"""Webhook tests — signature check, handshake, extraction and enqueueing.

The app runs with an in-memory queue and a recording gateway placed on
``app.state`` before start-up, and with the worker disabled, so nothing
here needs Redis, PostgreSQL or the WhatsApp API.
"""

import asyncio
import json

import pytest
from fastapi.testclient import TestClient

from formchat_engine.models.message import QueuedMessage
from formchat_engine.queue import InMemoryMessageQueue
from formchat_server.app import create_app
from formchat_server.config import ServerSettings
from formchat_server.whatsapp import (
    SIGNATURE_HEADER,
    compute_signature,
    extract_messages,
    verify_signature,
)

from helpers.fakes import RecordingGateway

SECRET = "webhook-secret"
VERIFY_TOKEN = "verify-me"
URL = "/api/v1/webhook/whatsapp"

run = asyncio.run


def _payload(*messages, contacts=None):
    return {
        "object": "whatsapp_business_account",
        "entry": [
            {
                "id": "WABA1",
                "changes": [
                    {
                        "field": "messages",
                        "value": {
                            "messaging_product": "whatsapp",
                            "contacts": contacts or [],
                            "messages": list(messages),
                        },
                    }
                ],
            }
        ],
    }


def _text(message_id, sender, body):
    return {
        "id": message_id,
        "from": sender,
        "timestamp": "1700000000",
        "type": "text",
        "text": {"body": body},
    }


@pytest.fixture
def queue():
    return InMemoryMessageQueue()


@pytest.fixture
def client(queue):
    settings = ServerSettings(
        webhook_secret=SECRET,
        webhook_verify_token=VERIFY_TOKEN,
        redis_url=None,
        run_worker=False,
    )
    app = create_app(settings)
    app.state.queue = queue
    app.state.gateway = RecordingGateway()
    with TestClient(app) as c:
        yield c


def _post_signed(client, payload, secret=SECRET):
    body = json.dumps(payload).encode()
    return client.post(
        URL,
        content=body,
        headers={
            SIGNATURE_HEADER: compute_signature(body, secret),
            "Content-Type": "application/json",
        },
    )


# =====================================================================
# Subscription handshake
# =====================================================================


class TestVerifySubscription:

    def test_echoes_challenge(self, client):
        resp = client.get(
            URL,
            params={"hub.mode": "subscribe", "hub.verify_token": VERIFY_TOKEN, "hub.challenge": "1158201444"},
        )
        assert resp.status_code == 200
        assert resp.text == "1158201444"

    def test_wrong_token(self, client):
        resp = client.get(
            URL,
            params={"hub.mode": "subscribe", "hub.verify_token": "nope", "hub.challenge": "1"},
        )
        assert resp.status_code == 403

    def test_non_ascii_token(self, client):
        resp = client.get(
            URL,
            params={"hub.mode": "subscribe", "hub.verify_token": "v\u00e9rify", "hub.challenge": "1"},
        )
        assert resp.status_code == 403

    def test_wrong_mode(self, client):
        resp = client.get(
            URL,
            params={"hub.mode": "unsubscribe", "hub.verify_token": VERIFY_TOKEN, "hub.challenge": "1"},
        )
        assert resp.status_code == 400


# =====================================================================
# Message ingestion
# =====================================================================


class TestReceiveMessages:

    def test_enqueues_each_message(self, client, queue):
        payload = _payload(
            _text("wamid.1", "15550001111", "START:FX1"),
            _text("wamid.2", "15550002222", "hello"),
            contacts=[{"wa_id": "15550001111", "profile": {"name": "Ann"}}],
        )

        resp = _post_signed(client, payload)

        assert resp.status_code == 200
        assert resp.json() == {"status": "ok", "queued": 2}
        assert run(queue.length()) == 2

        first = QueuedMessage.model_validate_json(run(queue.pop()))
        assert first.message_id == "wamid.1"
        assert first.sender == "15550001111"
        assert first.text == "START:FX1"
        assert first.contact_name == "Ann"
        assert first.retry_count == 0
        assert first.status == "pending"

    def test_bad_signature_rejected(self, client, queue):
        resp = _post_signed(client, _payload(_text("wamid.1", "1555", "hi")), secret="other")
        assert resp.status_code == 403
        assert run(queue.length()) == 0

    def test_non_ascii_signature_rejected(self, client, queue):
        resp = client.post(
            URL,
            content=json.dumps(_payload(_text("wamid.1", "1555", "hi"))).encode(),
            headers={SIGNATURE_HEADER: "sha256=\u00e9".encode("latin-1")},
        )
        assert resp.status_code == 403
        assert run(queue.length()) == 0

    def test_missing_signature_rejected(self, client, queue):
        resp = client.post(URL, json=_payload(_text("wamid.1", "1555", "hi")))
        assert resp.status_code == 403
        assert run(queue.length()) == 0

    def test_status_callback_queues_nothing(self, client):
        payload = {
            "entry": [
                {"changes": [{"value": {"statuses": [{"id": "wamid.x", "status": "read"}]}}]}
            ]
        }
        resp = _post_signed(client, payload)
        assert resp.json() == {"status": "ok", "queued": 0}

    def test_unparseable_body_still_acknowledged(self, client):
        body = b"{definitely not json"
        resp = client.post(
            URL, content=body, headers={SIGNATURE_HEADER: compute_signature(body, SECRET)}
        )
        assert resp.status_code == 200
        assert resp.json()["queued"] == 0


# =====================================================================
# Pure helpers
# =====================================================================


class TestSignature:

    def test_round_trip(self):
        body = b'{"a": 1}'
        assert verify_signature(body, compute_signature(body, SECRET), SECRET)

    def test_fails_closed_without_secret(self):
        body = b"{}"
        assert not verify_signature(body, compute_signature(body, SECRET), None)

    def test_tampered_body(self):
        sig = compute_signature(b'{"a": 1}', SECRET)
        assert not verify_signature(b'{"a": 2}', sig, SECRET)

    def test_non_ascii_signature_is_a_mismatch(self):
        assert not verify_signature(b"{}", "sha256=\u00e9", SECRET)


class TestExtractMessages:

    def test_button_reply(self):
        raw = {
            "id": "wamid.b",
            "from": "1555",
            "timestamp": "1",
            "type": "interactive",
            "interactive": {"type": "button_reply", "button_reply": {"id": "pro", "title": "Pro"}},
        }
        [message] = extract_messages(_payload(raw))
        assert message.interactive_reply_id == "pro"
        assert message.interactive_reply_title == "Pro"
        assert message.text == "Pro"
        assert message.reply_value() == "pro"

    def test_list_reply(self):
        raw = {
            "id": "wamid.l",
            "from": "1555",
            "timestamp": "1",
            "type": "interactive",
            "interactive": {"type": "list_reply", "list_reply": {"id": "o7", "title": "Seven"}},
        }
        [message] = extract_messages(_payload(raw))
        assert message.reply_value() == "o7"

    def test_document(self):
        raw = {
            "id": "wamid.d",
            "from": "1555",
            "timestamp": "1",
            "type": "document",
            "document": {
                "id": "media-9",
                "mime_type": "application/pdf",
                "filename": "cv.pdf",
                "file_size": 2048,
            },
        }
        [message] = extract_messages(_payload(raw))
        assert message.media_id == "media-9"
        assert message.media_type == "application/pdf"
        assert message.filename == "cv.pdf"
        assert message.media_size == 2048

    def test_skips_entries_without_sender(self):
        raw = {"id": "wamid.x", "timestamp": "1", "type": "text", "text": {"body": "hi"}}
        assert extract_messages(_payload(raw)) == []
