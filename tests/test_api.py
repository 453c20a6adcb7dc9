"""Admin and simulation endpoint tests.

Same setup as the webhook tests: in-memory queue and recording gateway on
``app.state``, worker not started.
"""

import asyncio
from unittest.mock import AsyncMock

import pytest
from fastapi.testclient import TestClient

from formchat_engine.models.message import DeadLetterRecord, InboundMessage, QueuedMessage
from formchat_engine.queue import InMemoryMessageQueue
from formchat_server.app import create_app
from formchat_server.config import ServerSettings

from helpers.fakes import RecordingGateway

ADMIN_KEY = "admin-secret"
ADMIN = {"X-Admin-Key": ADMIN_KEY}

run = asyncio.run


@pytest.fixture
def queue():
    return InMemoryMessageQueue()


def _client(queue, **overrides):
    kwargs = {"admin_api_key": ADMIN_KEY, "redis_url": None, "run_worker": False}
    kwargs.update(overrides)
    settings = ServerSettings(**kwargs)
    app = create_app(settings)
    app.state.queue = queue
    app.state.gateway = RecordingGateway()
    return TestClient(app)


@pytest.fixture
def client(queue):
    with _client(queue) as c:
        yield c


def _dead(message_id: str) -> str:
    message = QueuedMessage.from_inbound(
        InboundMessage(message_id=message_id, from_="15550001111", timestamp="1", text="x")
    ).model_copy(update={"retry_count": 3, "status": "retry"})
    return DeadLetterRecord(message=message, error="GatewayError: down").to_json()


# =====================================================================
# Simulation
# =====================================================================


class TestSimulateMessage:

    def test_enqueues_normalized_message(self, client, queue):
        resp = client.post(
            "/api/v1/test/simulate-message",
            json={"from": "+1 555 000 1111", "text": "START:FX1", "contact_name": "Ann"},
        )

        assert resp.status_code == 202
        data = resp.json()
        assert data["queued"] is True
        assert data["message_id"].startswith("sim-")

        queued = QueuedMessage.model_validate_json(run(queue.pop()))
        assert queued.sender == "15550001111"
        assert queued.text == "START:FX1"
        assert queued.contact_name == "Ann"
        assert queued.message_id == data["message_id"]

    def test_interactive_reply(self, client, queue):
        resp = client.post(
            "/api/v1/test/simulate-message",
            json={"from": "15550001111", "interactive_reply_id": "pro", "message_id": "m-1"},
        )
        assert resp.status_code == 202
        queued = QueuedMessage.model_validate_json(run(queue.pop()))
        assert queued.type == "interactive"
        assert queued.reply_value() == "pro"
        assert queued.message_id == "m-1"

    @pytest.mark.parametrize("phone", ["12345", "not-a-phone"])
    def test_rejects_bad_phone(self, client, phone):
        resp = client.post("/api/v1/test/simulate-message", json={"from": phone, "text": "hi"})
        assert resp.status_code == 400

    def test_requires_text_or_reply(self, client):
        resp = client.post("/api/v1/test/simulate-message", json={"from": "15550001111"})
        assert resp.status_code == 400

    def test_disabled_in_production(self, queue):
        with _client(queue, env="production") as c:
            resp = c.post(
                "/api/v1/test/simulate-message", json={"from": "15550001111", "text": "hi"}
            )
        assert resp.status_code == 403
        assert run(queue.length()) == 0


# =====================================================================
# Admin guard
# =====================================================================


class TestAdminKey:

    def test_missing_header(self, client):
        assert client.get("/api/v1/queue/stats").status_code == 401

    def test_wrong_key(self, client):
        resp = client.get("/api/v1/queue/stats", headers={"X-Admin-Key": "nope"})
        assert resp.status_code == 403

    def test_non_ascii_key(self, client):
        resp = client.get(
            "/api/v1/queue/stats", headers={"X-Admin-Key": "cl\u00e9".encode("latin-1")}
        )
        assert resp.status_code == 403

    def test_not_configured(self, queue):
        with _client(queue, admin_api_key=None) as c:
            resp = c.get("/api/v1/queue/stats", headers=ADMIN)
        assert resp.status_code == 403


# =====================================================================
# Queue administration
# =====================================================================


class TestQueueAdmin:

    def test_stats(self, client, queue):
        run(queue.push("{}"))
        run(queue.dead_letter(_dead("wamid.1")))

        resp = client.get("/api/v1/queue/stats", headers=ADMIN)

        assert resp.status_code == 200
        data = resp.json()
        assert data["is_running"] is False
        assert data["queue_length"] == 1
        assert data["dead_letter_length"] == 1
        assert data["processed"] == 0

    def test_list_dead_letters_newest_first(self, client, queue):
        run(queue.dead_letter(_dead("wamid.old")))
        run(queue.dead_letter(_dead("wamid.new")))

        resp = client.get("/api/v1/queue/dead-letters", params={"limit": 1}, headers=ADMIN)

        data = resp.json()
        assert data["total"] == 2
        assert len(data["items"]) == 1
        item = data["items"][0]
        assert item["message_id"] == "wamid.new"
        assert item["error"] == "GatewayError: down"
        assert item["retry_count"] == 3

    def test_replay(self, client, queue):
        run(queue.dead_letter(_dead("wamid.1")))
        run(queue.dead_letter(_dead("wamid.2")))

        resp = client.post("/api/v1/queue/dead-letters/replay", headers=ADMIN)

        assert resp.json() == {"affected": 2, "action": "replay"}
        assert run(queue.dead_letter_length()) == 0
        replayed = QueuedMessage.model_validate_json(run(queue.pop()))
        assert replayed.message_id == "wamid.1"
        assert replayed.retry_count == 0

    def test_clear(self, client, queue):
        run(queue.dead_letter(_dead("wamid.1")))

        resp = client.delete("/api/v1/queue/dead-letters", headers=ADMIN)

        assert resp.json() == {"affected": 1, "action": "clear"}
        assert run(queue.dead_letter_length()) == 0

    def test_limit_bounds(self, client):
        resp = client.get("/api/v1/queue/dead-letters", params={"limit": 0}, headers=ADMIN)
        assert resp.status_code == 422


# =====================================================================
# Session inspection
# =====================================================================


class TestSessionDetail:

    @pytest.fixture
    def inspect_client(self, queue, form_repo, session_repo, monkeypatch):
        from formchat_server.dependencies import get_db
        from formchat_server.routes import sessions as sessions_route

        monkeypatch.setattr(sessions_route, "_forms", form_repo)
        monkeypatch.setattr(sessions_route, "_sessions", session_repo)
        with _client(queue) as c:
            c.app.dependency_overrides[get_db] = lambda: AsyncMock()
            yield c

    def test_returns_position_and_answers(self, inspect_client, engine, session_repo):
        def send(message_id, text):
            run(engine.process(AsyncMock(), InboundMessage(
                message_id=message_id, from_="15550001111", timestamp="1", text=text,
            )))

        send("m1", "START:FX1")
        send("m2", "ann@example.com")
        [session] = session_repo.sessions

        resp = inspect_client.get(f"/api/v1/sessions/{session.id}", headers=ADMIN)

        assert resp.status_code == 200
        data = resp.json()
        assert data["form_key"] == "FX1"
        assert data["status"] == "in_progress"
        assert data["current_field_key"] == "rating"
        assert data["answers"] == [
            {
                "field_key": "email",
                "label": data["answers"][0]["label"],
                "value": "ann@example.com",
                "answered_at": data["answers"][0]["answered_at"],
            }
        ]

    def test_unknown_session(self, inspect_client):
        resp = inspect_client.get(
            "/api/v1/sessions/00000000-0000-0000-0000-000000000000", headers=ADMIN
        )
        assert resp.status_code == 404

    def test_requires_admin_key(self, inspect_client):
        resp = inspect_client.get("/api/v1/sessions/00000000-0000-0000-0000-000000000000")
        assert resp.status_code == 401
