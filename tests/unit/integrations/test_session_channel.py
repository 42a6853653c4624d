"""Tests for session channels.

HttpSessionChannel runs against httpx.MockTransport; CliSessionChannel
runs a fake ``opencode`` script that replays canned NDJSON records.
"""

from __future__ import annotations

import json

from collections.abc import Callable
from typing import Any
from unittest.mock import patch

import httpx
import pytest


from agent_bridge.core.exceptions import (
    AgentRunError,
    NonZeroExit,
    ProtocolError,
    ResponseParseError,
    TransportError,
)
from agent_bridge.integrations.process_supervisor import RunSupervisor
from agent_bridge.integrations.session_channel import (
    CliSessionChannel,
    HttpSessionChannel,
    SessionIdCell,
    join_answer,
)
from agent_bridge.integrations.tool_locator import ToolPaths
from agent_bridge.models.event_models import RunEvent

AUTH = "Basic dGVzdDp0ZXN0"


def _channel(handler: Callable[[httpx.Request], httpx.Response]) -> HttpSessionChannel:
    client = httpx.AsyncClient(base_url="http://127.0.0.1:4096", transport=httpx.MockTransport(handler))
    return HttpSessionChannel(client, AUTH, "/work/space")


def _text(part_id: str, text: str, session_id: str = "ses_1") -> dict[str, Any]:
    return {
        "type": "text",
        "sessionID": session_id,
        "part": {"id": part_id, "type": "text", "text": text, "sessionID": session_id},
    }


class TestJoinAnswer:
    """Tests for join_answer function."""

    def test_joins_with_newlines(self) -> None:
        assert join_answer(["Hello", "World"]) == "Hello\nWorld"

    def test_placeholder(self) -> None:
        assert join_answer([]) == "No response received."


class TestSessionIdCell:
    """Tests for SessionIdCell."""

    @pytest.mark.asyncio
    async def test_first_writer_wins(self) -> None:
        cell = SessionIdCell()

        assert await cell.set_once("ses_1") == "ses_1"
        assert await cell.set_once("ses_2") == "ses_1"
        assert cell.value == "ses_1"


class TestHttpSessionChannel:
    """Tests for HttpSessionChannel."""

    @pytest.mark.asyncio
    async def test_create_session(self) -> None:
        requests: list[httpx.Request] = []

        def handler(request: httpx.Request) -> httpx.Response:
            requests.append(request)
            return httpx.Response(200, json={"id": "ses_abc", "title": "Chat Session"})

        channel = _channel(handler)

        assert await channel.create_session() == "ses_abc"
        request = requests[0]
        assert request.method == "POST"
        assert request.url.path == "/session"
        assert request.headers["authorization"] == AUTH
        assert request.headers["x-opencode-directory"] == "/work/space"
        assert json.loads(request.content) == {"title": "Chat Session"}

    @pytest.mark.asyncio
    async def test_create_session_rejected(self) -> None:
        channel = _channel(lambda request: httpx.Response(500, text="boom"))

        with pytest.raises(ProtocolError) as exc_info:
            await channel.create_session()

        assert exc_info.value.status == 500
        assert exc_info.value.message == "Failed to create session (500): boom"

    @pytest.mark.asyncio
    async def test_create_session_without_id(self) -> None:
        channel = _channel(lambda request: httpx.Response(200, json={"title": "x"}))

        with pytest.raises(ResponseParseError):
            await channel.create_session()

    @pytest.mark.asyncio
    async def test_send_message_payload(self) -> None:
        requests: list[httpx.Request] = []

        def handler(request: httpx.Request) -> httpx.Response:
            requests.append(request)
            return httpx.Response(200, json={"info": {}, "parts": [{"type": "text", "text": "Hi"}]})

        await _channel(handler).send_message("ses_1", "hello", "anthropic", "claude-sonnet-4-5")

        assert requests[0].url.path == "/session/ses_1/message"
        assert json.loads(requests[0].content) == {
            "parts": [{"type": "text", "text": "hello"}],
            "model": {"providerID": "anthropic", "modelID": "claude-sonnet-4-5"},
        }

    @pytest.mark.asyncio
    async def test_text_parts_joined(self) -> None:
        """Test two text parts are joined with a newline, other parts ignored."""
        body = {
            "info": {"id": "msg_1"},
            "parts": [
                {"type": "step-start"},
                {"type": "text", "text": "Hello"},
                {"type": "tool", "tool": "read"},
                {"type": "text", "text": "World"},
            ],
        }
        channel = _channel(lambda request: httpx.Response(200, json=body))

        assert await channel.send_message("ses_1", "hi", "p", "m") == "Hello\nWorld"

    @pytest.mark.asyncio
    @pytest.mark.parametrize("body", [{"parts": []}, {"parts": [{"type": "reasoning", "text": "hm"}]}, {}])
    async def test_no_text_parts_placeholder(self, body: dict[str, Any]) -> None:
        channel = _channel(lambda request: httpx.Response(200, json=body))

        assert await channel.send_message("ses_1", "hi", "p", "m") == "No response received."

    @pytest.mark.asyncio
    async def test_error_status(self) -> None:
        channel = _channel(lambda request: httpx.Response(400, text='{"error":"bad model"}'))

        with pytest.raises(ProtocolError) as exc_info:
            await channel.send_message("ses_1", "hi", "p", "m")

        assert exc_info.value.status == 400
        assert exc_info.value.body == '{"error":"bad model"}'

    @pytest.mark.asyncio
    async def test_unparseable_body_snippet_capped(self) -> None:
        body = "<html>" + "x" * 1000
        channel = _channel(lambda request: httpx.Response(200, text=body))

        with pytest.raises(ResponseParseError) as exc_info:
            await channel.send_message("ses_1", "hi", "p", "m")

        assert exc_info.value.snippet == body[:200]
        assert "x" * 300 not in exc_info.value.message

    @pytest.mark.asyncio
    async def test_transport_failure(self) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            raise httpx.ReadTimeout("timed out", request=request)

        with pytest.raises(TransportError, match="Failed to send message"):
            await _channel(handler).send_message("ses_1", "hi", "p", "m")


@pytest.mark.posix_only
class TestCliSessionChannel:
    """Tests for CliSessionChannel against a fake run agent."""

    @pytest.mark.asyncio
    async def test_answer_and_session_capture(
        self, fake_run_agent: Callable[..., ToolPaths], read_args: Callable[[ToolPaths], list[str]]
    ) -> None:
        paths = fake_run_agent(
            [
                {"type": "step_start", "sessionID": "ses_1"},
                _text("p1", "Hel"),
                _text("p1", "Hello"),
                _text("p2", "World"),
                {"type": "step_finish", "sessionID": "ses_1", "part": {"type": "step-finish", "reason": "stop"}},
            ]
        )
        channel = CliSessionChannel(RunSupervisor(paths))
        seen: list[str] = []

        answer = await channel.send_message("hi", "anthropic", "claude", on_event=lambda e: seen.append(e.type))

        assert answer == "Hello\nWorld"
        assert channel.session.value == "ses_1"
        assert seen == ["step_start", "text", "text", "text", "step_finish"]
        assert read_args(paths) == ["run", "-m", "anthropic/claude", "--format", "json", "--", "hi"]

        await channel.send_message("again", "anthropic", "claude")
        assert read_args(paths)[-4:] == ["--session", "ses_1", "--", "again"]

    @pytest.mark.asyncio
    async def test_foreign_session_records_dropped(self, fake_run_agent: Callable[..., ToolPaths]) -> None:
        paths = fake_run_agent([_text("p1", "mine"), _text("p2", "theirs", session_id="ses_other")])
        seen: list[RunEvent] = []

        answer = await CliSessionChannel(RunSupervisor(paths), SessionIdCell("ses_1")).send_message(
            "hi", "p", "m", on_event=seen.append
        )

        assert answer == "mine"
        assert [e.session_id for e in seen] == ["ses_1"]

    @pytest.mark.asyncio
    async def test_over_long_record_skipped(self, fake_run_agent: Callable[..., ToolPaths]) -> None:
        """Test a record past the stdout line limit is dropped and the run still answers."""
        paths = fake_run_agent([_text("p1", "x" * 5000), _text("p2", "done")])

        with patch("agent_bridge.integrations.process_supervisor.STDOUT_LINE_LIMIT", 1024):
            answer = await CliSessionChannel(RunSupervisor(paths)).send_message("hi", "p", "m")

        assert answer == "done"

    @pytest.mark.asyncio
    async def test_no_text_placeholder(self, fake_run_agent: Callable[..., ToolPaths]) -> None:
        paths = fake_run_agent([{"type": "step_start", "sessionID": "ses_1"}])

        assert await CliSessionChannel(RunSupervisor(paths)).send_message("hi", "p", "m") == "No response received."

    @pytest.mark.asyncio
    async def test_error_record_fails_send(self, fake_run_agent: Callable[..., ToolPaths]) -> None:
        paths = fake_run_agent(
            [
                {"type": "step_start", "sessionID": "ses_1"},
                {"type": "error", "sessionID": "ses_1", "error": {"name": "APIError", "data": {"message": "rate limited"}}},
            ]
        )

        with pytest.raises(AgentRunError, match="Agent error: rate limited"):
            await CliSessionChannel(RunSupervisor(paths)).send_message("hi", "p", "m")

    @pytest.mark.asyncio
    async def test_non_zero_exit(self, fake_run_agent: Callable[..., ToolPaths]) -> None:
        paths = fake_run_agent([{"type": "step_start", "sessionID": "ses_1"}], exit_code=2, stderr="bad flag")

        with pytest.raises(NonZeroExit) as exc_info:
            await CliSessionChannel(RunSupervisor(paths)).send_message("hi", "p", "m")

        assert exc_info.value.exit_code == 2
        assert "bad flag" in exc_info.value.message

    @pytest.mark.asyncio
    async def test_non_zero_exit_uses_error_records(self, fake_run_agent: Callable[..., ToolPaths]) -> None:
        paths = fake_run_agent([{"type": "error", "error": "provider unavailable"}], exit_code=1)

        with pytest.raises(NonZeroExit, match="provider unavailable"):
            await CliSessionChannel(RunSupervisor(paths)).send_message("hi", "p", "m")
