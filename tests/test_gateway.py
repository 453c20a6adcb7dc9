"""WhatsAppClient tests — payload shapes, retry policy and dry-run mode.

HTTP is served by ``httpx.MockTransport`` so no request leaves the process.
"""

import httpx
import pytest

from formchat_engine.errors import GatewayError
from formchat_engine.gateway import WhatsAppClient, WhatsAppSettings, build_payload
from formchat_engine.models.prompt import (
    ButtonsPrompt,
    Choice,
    ListPrompt,
    ListSection,
    TextPrompt,
)

SETTINGS = WhatsAppSettings(
    api_url="https://graph.example.test/v18.0",
    api_token="token-123",
    phone_number_id="PN1",
    max_retries=2,
    backoff_seconds=0.0,
)


def _client(handler, settings=SETTINGS):
    http = httpx.AsyncClient(transport=httpx.MockTransport(handler))
    return WhatsAppClient(settings, client=http)


def _ok(request):
    return httpx.Response(200, json={"messages": [{"id": "wamid.sent"}]})


class TestBuildPayload:

    def test_text(self):
        payload = build_payload("15550001111", TextPrompt(body="Hi"))
        assert payload == {
            "messaging_product": "whatsapp",
            "recipient_type": "individual",
            "to": "15550001111",
            "type": "text",
            "text": {"body": "Hi"},
        }

    def test_buttons(self):
        prompt = ButtonsPrompt(body="Pick", buttons=[Choice(id="a", title="A")])
        interactive = build_payload("1", prompt)["interactive"]
        assert interactive["type"] == "button"
        assert interactive["body"] == {"text": "Pick"}
        assert interactive["action"]["buttons"] == [
            {"type": "reply", "reply": {"id": "a", "title": "A"}}
        ]

    def test_list(self):
        prompt = ListPrompt(
            body="Pick",
            button="Choose",
            sections=[ListSection(title="Options", rows=[Choice(id="a", title="A")])],
        )
        interactive = build_payload("1", prompt)["interactive"]
        assert interactive["type"] == "list"
        assert interactive["action"]["button"] == "Choose"
        assert interactive["action"]["sections"][0]["rows"] == [{"id": "a", "title": "A"}]


class TestSend:

    @pytest.mark.asyncio
    async def test_posts_with_bearer_token(self):
        seen = []

        def handler(request):
            seen.append(request)
            return _ok(request)

        client = _client(handler)
        message_id = await client.send("15550001111", TextPrompt(body="Hi"))

        assert message_id == "wamid.sent"
        assert len(seen) == 1
        assert str(seen[0].url) == "https://graph.example.test/v18.0/PN1/messages"
        assert seen[0].headers["Authorization"] == "Bearer token-123"

    @pytest.mark.asyncio
    async def test_retries_server_errors(self):
        statuses = iter([503, 429, 200])

        def handler(request):
            status = next(statuses)
            if status == 200:
                return _ok(request)
            return httpx.Response(status)

        assert await _client(handler).send("1", TextPrompt(body="Hi")) == "wamid.sent"

    @pytest.mark.asyncio
    async def test_gives_up_after_max_retries(self):
        calls = []

        def handler(request):
            calls.append(request)
            return httpx.Response(500)

        with pytest.raises(GatewayError) as excinfo:
            await _client(handler).send("1", TextPrompt(body="Hi"))
        assert len(calls) == 3
        assert excinfo.value.retryable is True
        assert excinfo.value.status_code == 500

    @pytest.mark.asyncio
    async def test_negative_retry_setting_still_attempts_once(self):
        calls = []

        def handler(request):
            calls.append(request)
            return httpx.Response(503)

        settings = WhatsAppSettings(
            api_url=SETTINGS.api_url,
            api_token="token-123",
            phone_number_id="PN1",
            max_retries=-1,
            backoff_seconds=0.0,
        )
        with pytest.raises(GatewayError) as excinfo:
            await _client(handler, settings).send("1", TextPrompt(body="Hi"))
        assert len(calls) == 1
        assert excinfo.value.status_code == 503

    @pytest.mark.asyncio
    async def test_transport_error_is_retryable(self):
        def handler(request):
            raise httpx.ConnectError("connection refused", request=request)

        with pytest.raises(GatewayError) as excinfo:
            await _client(handler).send("1", TextPrompt(body="Hi"))
        assert excinfo.value.retryable is True

    @pytest.mark.asyncio
    async def test_client_error_is_not_retried(self):
        calls = []

        def handler(request):
            calls.append(request)
            return httpx.Response(400, json={"error": {"message": "bad recipient"}})

        with pytest.raises(GatewayError) as excinfo:
            await _client(handler).send("1", TextPrompt(body="Hi"))
        assert len(calls) == 1
        assert excinfo.value.retryable is False
        assert excinfo.value.status_code == 400


class TestDryRun:

    @pytest.mark.asyncio
    async def test_missing_token_means_dry_run(self):
        def handler(request):
            raise AssertionError("no request expected in dry-run mode")

        client = _client(handler, WhatsAppSettings(api_token=None, phone_number_id="PN1"))
        assert client.dry_run
        message_id = await client.send("1", TextPrompt(body="Hi"))
        assert message_id.startswith("dev-")

    def test_forced_dry_run(self):
        settings = WhatsAppSettings(api_token="t", phone_number_id="PN1", dry_run=True)
        assert WhatsAppClient(settings).dry_run
