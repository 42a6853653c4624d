"""Tests for HTTP client factory and HTTP logging hooks."""

from __future__ import annotations

import base64

from unittest.mock import patch

import httpx
import pytest

from agent_bridge.utils.client_factory import basic_auth_header, create_http_client
from agent_bridge.utils.http_logger import HTTPLogger, create_logging_client


class TestBasicAuthHeader:
    """Tests for basic_auth_header function."""

    def test_encoding(self) -> None:
        header = basic_auth_header("passepartout", "p4ss")

        assert header.startswith("Basic ")
        assert base64.b64decode(header.removeprefix("Basic ")) == b"passepartout:p4ss"


class TestCreateHttpClient:
    """Tests for create_http_client function."""

    def test_default_timeouts(self) -> None:
        client = create_http_client()

        assert isinstance(client, httpx.AsyncClient)
        assert client.timeout.connect == 10.0
        assert client.timeout.read == 300.0
        assert client.timeout.write == 30.0
        assert client.timeout.pool == 30.0

    def test_custom_timeouts_and_base_url(self) -> None:
        client = create_http_client(base_url="http://127.0.0.1:4096", read_timeout=42.0, connect_timeout=1.5)

        assert str(client.base_url).rstrip("/") == "http://127.0.0.1:4096"
        assert client.timeout.read == 42.0
        assert client.timeout.connect == 1.5

    def test_logging_client(self) -> None:
        with patch("agent_bridge.utils.client_factory.create_logging_client") as mock_create:
            create_http_client(enable_logging=True)

        mock_create.assert_called_once()
        assert mock_create.call_args.kwargs["enabled"] is True
        assert isinstance(mock_create.call_args.kwargs["timeout"], httpx.Timeout)

    @pytest.mark.asyncio
    async def test_transport_override(self) -> None:
        transport = httpx.MockTransport(lambda request: httpx.Response(204))

        async with create_http_client(base_url="http://agent", transport=transport) as client:
            response = await client.get("/global/health")

        assert response.status_code == 204


class TestHTTPLogger:
    """Tests for HTTPLogger."""

    def test_sanitize_headers(self) -> None:
        sanitized = HTTPLogger()._sanitize_headers(
            {"Authorization": "Basic abcdefgh1234", "X-Opencode-Directory": "/ws", "api-key": "abc"}
        )

        assert sanitized["Authorization"] == "***1234"
        assert sanitized["api-key"] == "***"
        assert sanitized["X-Opencode-Directory"] == "/ws"

    @pytest.mark.asyncio
    async def test_logs_request_and_response(self) -> None:
        transport = httpx.MockTransport(lambda request: httpx.Response(200, json={"id": "s1"}))
        client = create_logging_client(enabled=True, base_url="http://agent", transport=transport)

        with patch("agent_bridge.utils.http_logger.logger") as mock_logger:
            async with client:
                await client.post("/session", json={"title": "Chat Session"}, headers={"Authorization": "Basic secret-value"})

        messages = [call.args[0] for call in mock_logger.debug.call_args_list]
        assert messages == ["HTTP Request: POST http://agent/session", "HTTP Response: 200 POST http://agent/session"]
        request_kwargs = mock_logger.debug.call_args_list[0].kwargs
        assert request_kwargs["payload"] == {"title": "Chat Session"}
        assert request_kwargs["headers"]["authorization"] == "***alue"

    @pytest.mark.asyncio
    async def test_failed_requests_leave_no_state(self) -> None:
        """Test health polls refused before the server is up don't accumulate per-request data."""

        def refuse(request: httpx.Request) -> httpx.Response:
            raise httpx.ConnectError("connection refused", request=request)

        http_logger = HTTPLogger()
        client = httpx.AsyncClient(
            base_url="http://agent",
            transport=httpx.MockTransport(refuse),
            event_hooks={"request": [http_logger.log_request], "response": [http_logger.log_response]},
        )

        with patch("agent_bridge.utils.http_logger.logger"):
            async with client:
                for _ in range(3):
                    with pytest.raises(httpx.ConnectError):
                        await client.get("/global/health")

        assert vars(http_logger) == {"enabled": True}

    @pytest.mark.asyncio
    async def test_response_names_its_own_request(self) -> None:
        response = httpx.Response(503, request=httpx.Request("GET", "http://agent/global/health"))

        with patch("agent_bridge.utils.http_logger.logger") as mock_logger:
            await HTTPLogger().log_response(response)

        assert mock_logger.debug.call_args.args[0] == "HTTP Response: 503 GET http://agent/global/health"

    @pytest.mark.asyncio
    async def test_disabled_logger_is_silent(self) -> None:
        transport = httpx.MockTransport(lambda request: httpx.Response(200))
        client = create_logging_client(enabled=False, base_url="http://agent", transport=transport)

        with patch("agent_bridge.utils.http_logger.logger") as mock_logger:
            async with client:
                await client.get("/event")

        mock_logger.debug.assert_not_called()
