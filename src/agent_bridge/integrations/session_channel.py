"""
Conversation sessions with the agent.

HttpSessionChannel talks to a running ``opencode serve``: it creates one
session up front and posts each prompt to it. CliSessionChannel has no
server; the session id arrives in the first run's output and is replayed
with ``--session`` on every later run.

Both return the final answer as the message's text parts joined with
newlines, or a fixed placeholder when the agent produced no text.
"""

from __future__ import annotations

import asyncio
import contextlib

from collections.abc import Callable

import httpx

from pydantic import ValidationError

from agent_bridge.core.constants import (
    DEFAULT_SESSION_TITLE,
    DIRECTORY_HEADER,
    LOG_BODY_PREVIEW_LENGTH,
    MESSAGE_ENDPOINT_TEMPLATE,
    NO_RESPONSE_PLACEHOLDER,
    SESSION_ENDPOINT,
)
from agent_bridge.core.exceptions import (
    AgentRunError,
    NonZeroExit,
    ProtocolError,
    ResponseParseError,
    TransportError,
)
from agent_bridge.integrations.event_stream import iter_ndjson_events
from agent_bridge.integrations.process_supervisor import RunSupervisor
from agent_bridge.integrations.status_normalizer import run_event_session_id
from agent_bridge.models.api_models import (
    PromptRequest,
    PromptResponse,
    SessionCreateRequest,
    SessionCreateResponse,
)
from agent_bridge.models.event_models import PART_TEXT, RUN_ERROR, RUN_TEXT, RunEvent
from agent_bridge.utils.logger import logger


def join_answer(texts: list[str]) -> str:
    """Final answer text, or the placeholder when there is none."""
    return "\n".join(texts) if texts else NO_RESPONSE_PLACEHOLDER


class SessionIdCell:
    """Holds a session id that can be written once and read many times."""

    def __init__(self, value: str | None = None):
        self._value = value
        self._lock = asyncio.Lock()

    @property
    def value(self) -> str | None:
        return self._value

    async def set_once(self, value: str) -> str:
        """Store ``value`` unless an id is already set; return the stored id."""
        async with self._lock:
            if self._value is None:
                self._value = value
                logger.bind_session(value)
                logger.info(f"Agent session established: {value}")
            return self._value


class HttpSessionChannel:
    """Session API of the agent server."""

    def __init__(self, client: httpx.AsyncClient, auth_header: str, workspace_dir: str):
        """
        Args:
            client: Client whose base_url points at the agent server
            auth_header: Basic auth header value
            workspace_dir: Absolute workspace path the agent scopes file operations to
        """
        self.client = client
        self.auth_header = auth_header
        self.workspace_dir = workspace_dir

    def _headers(self) -> dict[str, str]:
        return {
            "Authorization": self.auth_header,
            "Content-Type": "application/json",
            DIRECTORY_HEADER: self.workspace_dir,
        }

    async def _post(self, path: str, payload: dict[str, object], action: str) -> httpx.Response:
        try:
            return await self.client.post(path, json=payload, headers=self._headers())
        except httpx.HTTPError as e:
            raise TransportError(f"Failed to {action}: {e}", cause=e) from e

    async def create_session(self, title: str = DEFAULT_SESSION_TITLE) -> str:
        """Create a session scoped to the workspace directory.

        Raises:
            ProtocolError: On a non-success status.
            ResponseParseError: If the body has no session id.
            TransportError: If the server is unreachable.
        """
        response = await self._post(
            SESSION_ENDPOINT, SessionCreateRequest(title=title).model_dump(), "create session"
        )
        body = response.text
        logger.debug(f"Session create response ({response.status_code}): {body[:LOG_BODY_PREVIEW_LENGTH]}")

        if not response.is_success:
            raise ProtocolError(response.status_code, body, context="Failed to create session")

        try:
            session = SessionCreateResponse.model_validate_json(body)
        except ValidationError as e:
            raise ResponseParseError("session response", body, cause=e) from e
        return session.id

    async def send_message(self, session_id: str, text: str, provider_id: str, model_id: str) -> str:
        """Post a prompt and wait for the agent's complete answer.

        Raises:
            ProtocolError: On a non-success status.
            ResponseParseError: If the answer body is not a valid response.
            TransportError: If the request fails or times out.
        """
        request = PromptRequest.for_text(text, provider_id, model_id)
        response = await self._post(
            MESSAGE_ENDPOINT_TEMPLATE.format(session_id=session_id), request.to_payload(), "send message"
        )
        body = response.text

        if not response.is_success:
            raise ProtocolError(response.status_code, body)

        logger.debug(f"Response body: {body[:LOG_BODY_PREVIEW_LENGTH]}")
        try:
            prompt_response = PromptResponse.model_validate_json(body)
        except ValidationError as e:
            raise ResponseParseError("response", body, cause=e) from e

        return join_answer(prompt_response.text_parts())


class _RunTranscript:
    """Text parts and errors collected from one run, in arrival order."""

    def __init__(self) -> None:
        self._texts: dict[str, str] = {}
        self.errors: list[str] = []

    def record(self, event: RunEvent) -> None:
        if event.type == RUN_ERROR:
            self.errors.append(event.error_message or "Unknown error")
            return
        part = event.part
        if event.type != RUN_TEXT or part is None or part.type != PART_TEXT or part.text is None:
            return
        # Parts can be re-sent as they grow; keep the latest text per part
        extra = part.model_extra or {}
        key = str(extra.get("id", len(self._texts)))
        self._texts[key] = part.text

    @property
    def texts(self) -> list[str]:
        return list(self._texts.values())


class CliSessionChannel:
    """Session over per-call ``opencode run`` processes."""

    def __init__(self, supervisor: RunSupervisor, session: SessionIdCell | None = None):
        self.supervisor = supervisor
        self.session = session or SessionIdCell()

    async def send_message(
        self,
        text: str,
        provider_id: str,
        model_id: str,
        on_event: Callable[[RunEvent], None] | None = None,
    ) -> str:
        """Run the agent on one message and return its answer.

        ``on_event`` sees every parsed record, in order, while the run is
        in progress and never after this coroutine returns.

        Raises:
            SpawnFailed: If the binary cannot be executed.
            NonZeroExit: If the run fails.
            AgentRunError: If the run reports an error without failing.
        """
        model = f"{provider_id}/{model_id}"
        process = await self.supervisor.spawn(text, model, self.session.value)
        transcript = _RunTranscript()

        try:
            if process.stdout is not None:
                async for event in iter_ndjson_events(process.stdout):
                    event_session = run_event_session_id(event)
                    if event_session is not None and self.session.value is None:
                        await self.session.set_once(event_session)
                    if event_session is not None and event_session != self.session.value:
                        continue
                    transcript.record(event)
                    if on_event is not None:
                        on_event(event)
            await self.supervisor.wait(process)
        except NonZeroExit as e:
            if transcript.errors and not e.stderr:
                raise NonZeroExit(e.exit_code, "\n".join(transcript.errors)) from None
            raise
        except BaseException:
            # Abandoned (cancelled or failed) runs must not outlive the send
            with contextlib.suppress(Exception):
                await self.supervisor.terminate(process)
            raise

        if transcript.errors:
            raise AgentRunError("\n".join(transcript.errors))
        return join_answer(transcript.texts)

