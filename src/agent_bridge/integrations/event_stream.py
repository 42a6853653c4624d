"""
Agent event stream consumption.

Two sources, one contract: an async iterator of parsed events, in arrival
order, that never fails because of a malformed record.

- Server topology: ``GET /event`` server-sent events over a long-lived
  httpx streaming response. Frames may be split across chunks and are
  reassembled by SseFrameBuffer.
- Run topology: NDJSON records on the stdout of a per-call child process.

Subscriptions are single-use; issue a fresh one per message.
"""

from __future__ import annotations

import asyncio
import json

from collections.abc import AsyncIterator
from typing import TypeVar

import httpx

from pydantic import BaseModel, ValidationError

from agent_bridge.core.constants import EVENT_ENDPOINT, SSE_DATA_PREFIX, SSE_FRAME_SEPARATOR
from agent_bridge.models.event_models import RunEvent, ServerEvent
from agent_bridge.utils.logger import logger

EventT = TypeVar("EventT", bound=BaseModel)


class SseFrameBuffer:
    """Reassembles server-sent event frames from arbitrary text chunks."""

    def __init__(self) -> None:
        self._buffer = ""

    @property
    def pending(self) -> str:
        """Text received after the last complete frame."""
        return self._buffer

    def feed(self, chunk: str) -> list[str]:
        """Append a chunk and return the data payloads of completed frames.

        Frames without a ``data: `` prefix are dropped. An incomplete
        trailing frame stays buffered until the next chunk.
        """
        self._buffer += chunk
        payloads: list[str] = []

        while (pos := self._buffer.find(SSE_FRAME_SEPARATOR)) != -1:
            frame = self._buffer[:pos]
            self._buffer = self._buffer[pos + len(SSE_FRAME_SEPARATOR) :]
            if frame.startswith(SSE_DATA_PREFIX):
                payloads.append(frame[len(SSE_DATA_PREFIX) :])

        return payloads


def parse_event(payload: str | bytes, model: type[EventT]) -> EventT | None:
    """Decode one JSON event, returning None if it is malformed."""
    try:
        return model.model_validate(json.loads(payload))
    except (json.JSONDecodeError, UnicodeDecodeError, ValidationError) as e:
        logger.debug(f"Dropping malformed {model.__name__} frame: {e}")
        return None


async def subscribe_events(
    client: httpx.AsyncClient,
    auth_header: str,
) -> AsyncIterator[ServerEvent]:
    """Yield events from the agent server's event stream.

    Transport errors end the iteration quietly: progress events are
    best-effort and must never fail the message they accompany. Cancelling
    the consuming task closes the underlying connection.

    Args:
        client: Client whose base_url points at the agent server
        auth_header: Basic auth header value
    """
    buffer = SseFrameBuffer()
    headers = {"Authorization": auth_header, "Accept": "text/event-stream"}

    try:
        async with client.stream("GET", EVENT_ENDPOINT, headers=headers, timeout=None) as response:
            if not response.is_success:
                logger.warning(f"Event subscription rejected with status {response.status_code}")
                return

            async for chunk in response.aiter_text():
                for payload in buffer.feed(chunk):
                    event = parse_event(payload, ServerEvent)
                    if event is not None:
                        yield event
    except httpx.HTTPError as e:
        logger.warning(f"Event stream error: {e}")


async def iter_ndjson_events(stream: asyncio.StreamReader) -> AsyncIterator[RunEvent]:
    """Yield run records from a child's stdout, one JSON object per line.

    Blank, unparseable and over-long lines are skipped.
    """
    while True:
        try:
            line = await stream.readline()
        except ValueError as e:
            # The reader has already dropped the oversized chunk
            logger.debug(f"Skipping over-long run output line: {e}")
            continue
        if not line:
            return
        text = line.decode("utf-8", errors="replace").strip()
        if not text:
            continue
        event = parse_event(text, RunEvent)
        if event is not None:
            yield event
