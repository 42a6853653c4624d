"""Tests for event, status, API and error models."""

from __future__ import annotations

import pytest

from agent_bridge.models.api_models import PromptRequest, PromptResponse, SessionCreateResponse
from agent_bridge.models.error_models import ErrorCode, ErrorResponse
from agent_bridge.models.event_models import RunEvent, ServerEvent, ToolState, ToolTime
from agent_bridge.models.status_models import StatusUpdate, StatusUpdateDetails


class TestToolTime:
    """Tests for tool duration computation."""

    def test_duration(self) -> None:
        assert ToolTime(start=1_700_000_000_000, end=1_700_000_000_450).duration == 450

    @pytest.mark.parametrize("start,end", [(None, None), (100, None), (None, 100)])
    def test_duration_unknown(self, start: int | None, end: int | None) -> None:
        assert ToolTime(start=start, end=end).duration is None

    def test_state_without_time(self) -> None:
        assert ToolState(status="completed").duration is None


class TestServerEvent:
    """Tests for ServerEvent parsing."""

    def test_aliases_and_extras(self) -> None:
        event = ServerEvent.model_validate(
            {
                "type": "message.part.updated",
                "properties": {
                    "part": {
                        "id": "prt_1",
                        "sessionID": "s1",
                        "messageID": "msg_1",
                        "type": "tool",
                        "tool": "bash",
                        "state": {"status": "running", "input": {"command": "ls"}, "metadata": {}},
                    }
                },
            }
        )

        part = event.properties.part
        assert part.session_id == "s1"
        assert part.state.input == {"command": "ls"}
        assert part.model_extra["messageID"] == "msg_1"


class TestRunEvent:
    """Tests for RunEvent error messages."""

    @pytest.mark.parametrize(
        "error,expected",
        [
            ({"name": "APIError", "data": {"message": "rate limited"}}, "rate limited"),
            ({"name": "ProviderAuthError"}, "ProviderAuthError"),
            ({"message": "boom"}, "boom"),
            ("plain text", "plain text"),
            (None, None),
        ],
    )
    def test_error_message(self, error: object, expected: str | None) -> None:
        assert RunEvent(type="error", error=error).error_message == expected


class TestStatusUpdate:
    """Tests for StatusUpdate serialization."""

    def test_camel_case_dict(self) -> None:
        update = StatusUpdate(
            kind="tool",
            message="Running command: ls",
            details=StatusUpdateDetails(full_message="Running command: ls -la", tool_name="bash", input={"command": "ls"}),
        )

        data = update.to_dict()

        assert data["type"] == "tool"
        assert data["details"]["fullMessage"] == "Running command: ls -la"
        assert data["details"]["toolName"] == "bash"
        assert "duration" not in data["details"]
        assert "output" not in data["details"]

    def test_idle_has_timestamp_only(self) -> None:
        data = StatusUpdate(kind="idle").to_dict()

        assert data["type"] == "idle"
        assert "message" not in data
        assert list(data["details"]) == ["timestamp"]

    def test_timestamps_are_capture_time(self) -> None:
        first = StatusUpdate(kind="busy").details.timestamp
        second = StatusUpdate(kind="busy").details.timestamp

        assert 0 < first <= second

    def test_rejects_unknown_kind(self) -> None:
        with pytest.raises(ValueError):
            StatusUpdate(kind="exploded")


class TestApiModels:
    """Tests for session and prompt payloads."""

    def test_prompt_payload(self) -> None:
        payload = PromptRequest.for_text("hi", "anthropic", "claude").to_payload()

        assert payload == {
            "parts": [{"type": "text", "text": "hi"}],
            "model": {"providerID": "anthropic", "modelID": "claude"},
        }

    def test_text_parts(self) -> None:
        response = PromptResponse.model_validate(
            {"parts": [{"type": "text", "text": "a"}, {"type": "file"}, {"type": "text"}, {"type": "text", "text": "b"}]}
        )
        assert response.text_parts() == ["a", "b"]

    def test_session_response_requires_id(self) -> None:
        assert SessionCreateResponse.model_validate({"id": "ses_1", "version": "1"}).id == "ses_1"
        with pytest.raises(ValueError):
            SessionCreateResponse.model_validate({})


class TestErrorResponse:
    """Tests for ErrorResponse."""

    def test_to_dict(self) -> None:
        data = ErrorResponse(code=ErrorCode.STARTUP_TIMEOUT, message="timed out", details={"attempts": 60}).to_dict()

        assert data["code"] == "START_1003"
        assert data["details"] == {"attempts": 60}
        assert "timestamp" in data

    def test_to_dict_without_details(self) -> None:
        assert "details" not in ErrorResponse(code=ErrorCode.INTERNAL_ERROR, message="x").to_dict()
