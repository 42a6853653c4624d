"""
Status normalization for agent progress events.

Maps raw agent events to the small vocabulary of UI-facing status updates:
- Session status changes (busy, idle, retry)
- Tool lifecycle (running, completed, error) with input summaries
- Reasoning and text generation

Everything here is pure: no I/O, no state. Events that belong to another
session, or that the UI has no use for, map to None.
"""

from __future__ import annotations

from collections.abc import Callable
from typing import Any
from urllib.parse import urlsplit

from agent_bridge.core.constants import (
    COMMAND_SUMMARY_LENGTH,
    FILE_PATH_KEYS,
    GLOB_SUMMARY_LENGTH,
    GREP_SUMMARY_LENGTH,
    QUERY_SUMMARY_LENGTH,
    STATUS_GENERATING,
    STATUS_REASONING,
    STATUS_RETRY_TEMPLATE,
    STATUS_THINKING,
    STATUS_UNKNOWN_ERROR,
    TOOL_DESCRIPTIONS,
    URL_SUMMARY_LENGTH,
)
from agent_bridge.models.event_models import (
    EVENT_PART_UPDATED,
    EVENT_SESSION_IDLE,
    EVENT_SESSION_STATUS,
    PART_REASONING,
    PART_TEXT,
    PART_TOOL,
    RUN_REASONING,
    RUN_STEP_FINISH,
    RUN_STEP_START,
    RUN_TEXT,
    RUN_TOOL_USE,
    STATUS_BUSY,
    STATUS_IDLE,
    STATUS_RETRY,
    TOOL_COMPLETED,
    TOOL_ERROR,
    TOOL_RUNNING,
    EventPart,
    RunEvent,
    ServerEvent,
)
from agent_bridge.models.status_models import StatusUpdate, StatusUpdateDetails

#: ``step_finish`` reason marking the end of a run
FINISH_REASON_STOP = "stop"

# -----------------------------------------------------------------------------
# Text Helpers
# -----------------------------------------------------------------------------


def truncate(text: str, limit: int) -> str:
    """Shorten text to at most ``limit`` characters, marking the cut with "..."."""
    if len(text) <= limit:
        return text
    return f"{text[: limit - 3]}..."


def describe_tool(tool_name: str, title: str | None = None) -> str:
    """Human-readable label for a tool call.

    The agent's own title wins; otherwise well-known tools get a fixed
    description and anything else becomes "Running <tool>".
    """
    if title is not None:
        return title
    return TOOL_DESCRIPTIONS.get(tool_name.lower(), f"Running {tool_name}")


def _string_field(tool_input: Any, *keys: str) -> str | None:
    """First string value among ``keys`` in a dict-shaped input."""
    if not isinstance(tool_input, dict):
        return None
    for key in keys:
        value = tool_input.get(key)
        if value is not None:
            return value if isinstance(value, str) else None
    return None


def _url_host(url: str) -> str:
    try:
        host = urlsplit(url).hostname
    except ValueError:
        host = None
    return host or truncate(url, URL_SUMMARY_LENGTH)


# -----------------------------------------------------------------------------
# Tool Input Summaries
# -----------------------------------------------------------------------------


def summarize_tool_input(tool_name: str, tool_input: Any) -> str:
    """Short, single-line summary of a tool's input for the status line.

    Returns "" for unknown tools or missing fields.
    """
    tool = tool_name.lower()

    if tool in ("read", "write", "edit"):
        path = _string_field(tool_input, *FILE_PATH_KEYS)
        return path.rsplit("/", 1)[-1] if path is not None else ""
    if tool == "bash":
        command = _string_field(tool_input, "command")
        return truncate(command, COMMAND_SUMMARY_LENGTH) if command is not None else ""
    if tool == "glob":
        pattern = _string_field(tool_input, "pattern")
        return truncate(pattern, GLOB_SUMMARY_LENGTH) if pattern is not None else ""
    if tool == "grep":
        pattern = _string_field(tool_input, "pattern")
        return f'"{truncate(pattern, GREP_SUMMARY_LENGTH)}"' if pattern is not None else ""
    if tool == "web_search":
        query = _string_field(tool_input, "query")
        return f'"{truncate(query, QUERY_SUMMARY_LENGTH)}"' if query is not None else ""
    if tool == "web_fetch":
        url = _string_field(tool_input, "url")
        return _url_host(url) if url is not None else ""
    return ""


def describe_tool_input(tool_name: str, tool_input: Any) -> str:
    """Untruncated counterpart of summarize_tool_input, for logs and tooltips."""
    tool = tool_name.lower()

    if tool in ("read", "write", "edit"):
        return _string_field(tool_input, *FILE_PATH_KEYS) or ""
    if tool == "bash":
        return _string_field(tool_input, "command") or ""
    if tool == "glob":
        return _string_field(tool_input, "pattern") or ""
    if tool == "grep":
        pattern = _string_field(tool_input, "pattern")
        return f'"{pattern}"' if pattern is not None else ""
    if tool == "web_search":
        query = _string_field(tool_input, "query")
        return f'"{query}"' if query is not None else ""
    if tool == "web_fetch":
        return _string_field(tool_input, "url") or ""
    return ""


def _with_summary(description: str, summary: str) -> str:
    return f"{description}: {summary}" if summary else description


# -----------------------------------------------------------------------------
# Part Handlers
# -----------------------------------------------------------------------------


def handle_tool_part(part: EventPart) -> StatusUpdate | None:
    """Map a tool part to tool / tool-completed / tool-error."""
    tool_name = part.tool
    state = part.state
    if tool_name is None or state is None or state.status is None:
        return None

    if state.status == TOOL_RUNNING:
        description = describe_tool(tool_name, state.title)
        return StatusUpdate(
            kind="tool",
            message=_with_summary(description, summarize_tool_input(tool_name, state.input)),
            details=StatusUpdateDetails(
                full_message=_with_summary(description, describe_tool_input(tool_name, state.input)),
                tool_name=tool_name,
                input=state.input,
            ),
        )
    if state.status == TOOL_COMPLETED:
        return StatusUpdate(
            kind="tool-completed",
            message=f"{describe_tool(tool_name, state.title)} completed",
            details=StatusUpdateDetails(
                tool_name=tool_name,
                output=state.output,
                duration=state.duration,
            ),
        )
    if state.status == TOOL_ERROR:
        return StatusUpdate(
            kind="tool-error",
            message=f"Error: {state.error or STATUS_UNKNOWN_ERROR}",
            details=StatusUpdateDetails(
                tool_name=tool_name,
                error=state.error,
                duration=state.duration,
            ),
        )
    return None


def handle_reasoning_part(part: EventPart) -> StatusUpdate:
    return StatusUpdate(kind="reasoning", message=STATUS_REASONING)


def handle_text_part(part: EventPart) -> StatusUpdate:
    return StatusUpdate(kind="generating", message=STATUS_GENERATING)


PART_TYPE_HANDLERS: dict[str, Callable[[EventPart], StatusUpdate | None]] = {
    PART_TOOL: handle_tool_part,
    PART_REASONING: handle_reasoning_part,
    PART_TEXT: handle_text_part,
}


def _busy() -> StatusUpdate:
    return StatusUpdate(kind="busy", message=STATUS_THINKING)


def _idle() -> StatusUpdate:
    return StatusUpdate(kind="idle")


# -----------------------------------------------------------------------------
# Server Topology
# -----------------------------------------------------------------------------


def normalize_server_event(event: ServerEvent, session_id: str) -> StatusUpdate | None:
    """Normalize one ``/event`` stream event for the given session.

    Events without a session id, or for a different session, yield None.
    """
    props = event.properties
    if props is None:
        return None

    if event.type == EVENT_SESSION_STATUS:
        if props.session_id != session_id or props.status is None:
            return None
        status = props.status
        if status.type == STATUS_BUSY:
            return _busy()
        if status.type == STATUS_IDLE:
            return _idle()
        if status.type == STATUS_RETRY:
            attempt = status.attempt if status.attempt is not None else 1
            return StatusUpdate(kind="retry", message=STATUS_RETRY_TEMPLATE.format(attempt=attempt))
        return None

    if event.type == EVENT_PART_UPDATED:
        part = props.part
        if part is None or part.session_id != session_id:
            return None
        handler = PART_TYPE_HANDLERS.get(part.type)
        return handler(part) if handler else None

    if event.type == EVENT_SESSION_IDLE:
        if props.session_id != session_id:
            return None
        return _idle()

    return None


# -----------------------------------------------------------------------------
# Run Topology
# -----------------------------------------------------------------------------


def run_event_session_id(event: RunEvent) -> str | None:
    """Session id carried by a run record, on the record or on its part."""
    if event.session_id is not None:
        return event.session_id
    if event.part is not None:
        return event.part.session_id
    return None


def normalize_run_event(event: RunEvent, session_id: str | None) -> StatusUpdate | None:
    """Normalize one ``opencode run --format json`` record.

    ``session_id`` is the session this call belongs to; records carrying a
    different id are dropped. Records without any id are accepted only
    while no session is known yet.
    """
    event_session = run_event_session_id(event)
    if session_id is not None and event_session != session_id:
        return None
    if session_id is None and event_session is None:
        return None

    if event.type == RUN_STEP_START:
        return _busy()
    if event.type == RUN_STEP_FINISH:
        if event.part is not None and event.part.reason == FINISH_REASON_STOP:
            return _idle()
        return None
    if event.part is None:
        return None
    if event.type == RUN_TOOL_USE:
        return handle_tool_part(event.part)
    if event.type == RUN_REASONING:
        return handle_reasoning_part(event.part)
    if event.type == RUN_TEXT:
        return handle_text_part(event.part)
    return None
