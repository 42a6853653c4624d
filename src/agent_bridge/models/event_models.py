"""
Raw agent event models.

Events arrive either as server-sent events from ``opencode serve`` or as
NDJSON records on the stdout of ``opencode run --format json``. Both shapes
are open-ended, so every model keeps unknown fields and treats every field
as optional; interpreting them is the normalizer's job.
"""

from __future__ import annotations

from typing import Any

from pydantic import BaseModel, ConfigDict, Field

# Server topology event types
EVENT_SESSION_STATUS = "session.status"
EVENT_SESSION_IDLE = "session.idle"
EVENT_PART_UPDATED = "message.part.updated"

# Run topology record types
RUN_STEP_START = "step_start"
RUN_STEP_FINISH = "step_finish"
RUN_TOOL_USE = "tool_use"
RUN_TEXT = "text"
RUN_REASONING = "reasoning"
RUN_ERROR = "error"

# Part types
PART_TOOL = "tool"
PART_REASONING = "reasoning"
PART_TEXT = "text"

# Session status types
STATUS_BUSY = "busy"
STATUS_IDLE = "idle"
STATUS_RETRY = "retry"

# Tool states
TOOL_RUNNING = "running"
TOOL_COMPLETED = "completed"
TOOL_ERROR = "error"


class _EventModel(BaseModel):
    model_config = ConfigDict(extra="allow", populate_by_name=True)


class ToolTime(_EventModel):
    """Start/end timestamps (milliseconds) of a tool invocation."""

    start: int | float | None = None
    end: int | float | None = None

    @property
    def duration(self) -> int | float | None:
        """Elapsed time, or None unless both ends are known."""
        if self.start is None or self.end is None:
            return None
        return self.end - self.start


class ToolState(_EventModel):
    """State of one tool call as reported by the agent."""

    status: str | None = None
    title: str | None = None
    input: Any | None = None
    output: str | None = None
    error: str | None = None
    time: ToolTime | None = None

    @property
    def duration(self) -> int | float | None:
        return self.time.duration if self.time else None


class EventPart(_EventModel):
    """A typed fragment of an agent message (tool, reasoning, text, ...)."""

    type: str
    session_id: str | None = Field(default=None, alias="sessionID")
    tool: str | None = None
    state: ToolState | None = None
    text: str | None = None
    reason: str | None = None


class SessionStatus(_EventModel):
    type: str
    attempt: int | None = None


class EventProperties(_EventModel):
    session_id: str | None = Field(default=None, alias="sessionID")
    status: SessionStatus | None = None
    part: EventPart | None = None


class ServerEvent(_EventModel):
    """One event from the server's ``/event`` stream."""

    type: str
    properties: EventProperties | None = None


class RunEvent(_EventModel):
    """One NDJSON record from ``opencode run --format json``."""

    type: str
    session_id: str | None = Field(default=None, alias="sessionID")
    timestamp: int | float | None = None
    part: EventPart | None = None
    error: Any | None = None

    @property
    def error_message(self) -> str | None:
        """Best-effort text for an ``error`` record."""
        if self.error is None:
            return None
        if isinstance(self.error, dict):
            data = self.error.get("data")
            if isinstance(data, dict) and isinstance(data.get("message"), str):
                return str(data["message"])
            for key in ("message", "name"):
                if isinstance(self.error.get(key), str):
                    return str(self.error[key])
        return str(self.error)
