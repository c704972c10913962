"""Tests for HttpBackend against mocked HTTP responses."""

import json

import httpx
import pytest

from leaddesk.cli.config import ApiConfig
from leaddesk.cli.http_client import HttpBackend
from leaddesk.sync.envelope import TOKEN_EXPIRED, ErrorKind

API = "https://api.example.com"


class FakeTransport(httpx.AsyncBaseTransport):
    """Mock transport that returns canned responses and records requests."""

    def __init__(self, responses: dict[str, tuple[int, object]]):
        self._responses = responses
        self.requests: list[httpx.Request] = []

    async def handle_async_request(self, request):
        self.requests.append(request)
        path = request.url.path
        for pattern, (status, body) in self._responses.items():
            if pattern in path:
                if body is None:
                    return httpx.Response(status, request=request)
                if isinstance(body, str):
                    return httpx.Response(status, text=body, request=request)
                return httpx.Response(status, json=body, request=request)
        return httpx.Response(404, json={"message": "not found"}, request=request)


class FailingTransport(httpx.AsyncBaseTransport):
    """Transport that cannot reach the server."""

    async def handle_async_request(self, request):
        raise httpx.ConnectError("connection refused", request=request)


def _api_config(**overrides) -> ApiConfig:
    values = {
        "recent_leads_url": f"{API}/recent",
        "next_conversations_url": f"{API}/next",
        "conversation_url": f"{API}/conversation",
        "recent_messages_url": f"{API}/messages",
        "conversation_mode_url": f"{API}/mode",
        "send_message_url": f"{API}/send",
        "access_token": "tok-abc",
    }
    values.update(overrides)
    return ApiConfig(**values)


def _body(request: httpx.Request) -> dict:
    return json.loads(request.content)


class TestContactPages:
    """Tests for fetch_contact_page."""

    @pytest.mark.asyncio
    async def test_first_page_is_get(self):
        transport = FakeTransport({"/recent": (200, [{"conversation_id": "c1"}])})
        async with HttpBackend(_api_config(), transport=transport) as backend:
            result = await backend.fetch_contact_page()

        assert result.success is True
        assert result.data == [{"conversation_id": "c1"}]
        assert transport.requests[0].method == "GET"
        assert transport.requests[0].headers["Authorization"] == "Bearer tok-abc"

    @pytest.mark.asyncio
    async def test_next_page_posts_known_ids(self):
        transport = FakeTransport({"/next": (200, {"conversations": [], "has_more": False})})
        async with HttpBackend(_api_config(), transport=transport) as backend:
            result = await backend.fetch_contact_page(["c1", "c2"])

        assert result.success is True
        assert result.data == {"conversations": [], "has_more": False}
        request = transport.requests[0]
        assert request.method == "POST"
        assert _body(request) == {"conversation_ids": ["c1", "c2"]}


class TestRequestBodies:
    """Tests for the JSON bodies sent to each endpoint."""

    @pytest.mark.asyncio
    async def test_delta_includes_last_message_id(self):
        transport = FakeTransport({"/messages": (200, {"messages": []})})
        async with HttpBackend(_api_config(), transport=transport) as backend:
            await backend.fetch_recent_messages_delta("c1", "m9")

        assert _body(transport.requests[0]) == {"wa_id": "c1", "last_message_id": "m9"}

    @pytest.mark.asyncio
    async def test_delta_omits_missing_last_message_id(self):
        transport = FakeTransport({"/messages": (200, {"messages": []})})
        async with HttpBackend(_api_config(), transport=transport) as backend:
            await backend.fetch_recent_messages_delta("c1", None)

        assert _body(transport.requests[0]) == {"wa_id": "c1"}

    @pytest.mark.asyncio
    async def test_conversation_mode_and_send(self):
        transport = FakeTransport({
            "/conversation": (200, {"messages": []}),
            "/mode": (200, {"status": "ok"}),
            "/send": (200, {"message_id": "out-1"}),
        })
        async with HttpBackend(_api_config(), transport=transport) as backend:
            await backend.fetch_conversation("c1")
            await backend.mutate_conversation_mode("c1", "agent")
            sent = await backend.send_agent_message("c1", "Hola")

        assert [_body(r) for r in transport.requests] == [
            {"wa_id": "c1"},
            {"wa_id": "c1", "mode": "agent"},
            {"wa_id": "c1", "message": "Hola"},
        ]
        assert sent.data == {"message_id": "out-1"}

    @pytest.mark.asyncio
    async def test_no_authorization_without_token(self):
        transport = FakeTransport({"/conversation": (200, {"messages": []})})
        async with HttpBackend(_api_config(access_token=""), transport=transport) as backend:
            await backend.fetch_conversation("c1")

        assert "Authorization" not in transport.requests[0].headers


class TestErrorHandling:
    """Tests for folding HTTP failures into envelopes."""

    @pytest.mark.asyncio
    async def test_401_is_auth_expired(self):
        transport = FakeTransport({"/messages": (401, {"message": "expired"})})
        async with HttpBackend(_api_config(), transport=transport) as backend:
            result = await backend.fetch_recent_messages_delta("c1")

        assert result.success is False
        assert result.error == TOKEN_EXPIRED
        assert result.kind == ErrorKind.AUTH_EXPIRED
        assert result.auth_expired is True

    @pytest.mark.asyncio
    async def test_server_message_is_used(self):
        transport = FakeTransport({"/send": (500, {"message": "WhatsApp rechazó el mensaje"})})
        async with HttpBackend(_api_config(), transport=transport) as backend:
            result = await backend.send_agent_message("c1", "Hola")

        assert result.success is False
        assert result.error == "WhatsApp rechazó el mensaje"
        assert result.kind == ErrorKind.TRANSIENT

    @pytest.mark.asyncio
    async def test_status_line_without_body(self):
        transport = FakeTransport({"/mode": (502, None)})
        async with HttpBackend(_api_config(), transport=transport) as backend:
            result = await backend.mutate_conversation_mode("c1", "bot")

        assert result.error == "HTTP 502: Bad Gateway"

    @pytest.mark.asyncio
    async def test_non_json_success_uses_fallback(self):
        transport = FakeTransport({"/conversation": (200, "<html>oops</html>")})
        async with HttpBackend(_api_config(), transport=transport) as backend:
            result = await backend.fetch_conversation("c1")

        assert result.success is False
        assert result.error == "Error al obtener la conversación"

    @pytest.mark.asyncio
    async def test_connection_error_uses_fallback(self):
        async with HttpBackend(_api_config(), transport=FailingTransport()) as backend:
            result = await backend.fetch_contact_page()

        assert result.success is False
        assert result.error == "Error al obtener contactos"

    @pytest.mark.asyncio
    async def test_unconfigured_endpoint(self):
        transport = FakeTransport({})
        async with HttpBackend(_api_config(send_message_url=""), transport=transport) as backend:
            result = await backend.send_agent_message("c1", "Hola")

        assert result.success is False
        assert "send_agent_message endpoint is not configured" in result.error
        assert transport.requests == []

    @pytest.mark.asyncio
    async def test_not_opened(self):
        backend = HttpBackend(_api_config(), transport=FakeTransport({}))
        result = await backend.fetch_conversation("c1")
        assert result.success is False
        assert result.error == "HTTP backend is not open"
