"""
Agent manager - composition root of the session orchestrator.

Locates the agent, supervises its process, holds the session, and turns
each user message into a final answer while streaming normalized status
updates to the UI notifier.

Lifecycle:
    UNINITIALIZED -> STARTING -> READY | INIT_FAILED
    READY -> SHUT_DOWN

Per message (READY only, one at a time):
    Idle -> Sending (event subscription active) -> Answered | Failed

The event subscription is cancelled whichever way a message ends, so no
update from one message can reach the notifier after ``send`` returns.
"""

from __future__ import annotations

import asyncio
import time

from collections.abc import Callable
from enum import Enum
from pathlib import Path
from typing import Any

import httpx

from agent_bridge.core.constants import Settings, get_settings
from agent_bridge.core.exceptions import AgentBridgeError, NotInitialized
from agent_bridge.integrations.credentials import SecretStore, credentials_as_env
from agent_bridge.integrations.event_stream import subscribe_events
from agent_bridge.integrations.process_supervisor import RunSupervisor, ServerSupervisor
from agent_bridge.integrations.session_channel import (
    CliSessionChannel,
    HttpSessionChannel,
    SessionIdCell,
)
from agent_bridge.integrations.status_normalizer import normalize_run_event, normalize_server_event
from agent_bridge.integrations.tool_locator import BrowserCheckResult, ToolPaths, ensure_browser, locate
from agent_bridge.models.event_models import RunEvent
from agent_bridge.models.status_models import StatusUpdate
from agent_bridge.utils.client_factory import create_http_client
from agent_bridge.utils.logger import logger

Notifier = Callable[[StatusUpdate], None]


class ManagerState(str, Enum):
    UNINITIALIZED = "uninitialized"
    STARTING = "starting"
    READY = "ready"
    INIT_FAILED = "init_failed"
    SHUT_DOWN = "shut_down"


class _StatusSink:
    """Delivers updates for one message and remembers which tools ran.

    Notifier failures are logged and dropped.
    """

    def __init__(self, notifier: Notifier | None):
        self.notifier = notifier
        self.tool_calls: list[str] = []
        self.closed = False

    def __call__(self, update: StatusUpdate) -> None:
        if self.closed:
            return
        if update.kind == "tool" and update.details.tool_name:
            self.tool_calls.append(update.details.tool_name)
        if self.notifier is None:
            return
        try:
            self.notifier(update)
        except Exception as e:
            logger.warning(f"Status notifier failed on {update.kind}: {e}")


class AgentManager:
    """Drives one agent process and one conversation session.

    Example:
        async with AgentManager(notifier=print) as manager:
            answer = await manager.send("List the files here", "anthropic", "claude-sonnet-4-5")
    """

    def __init__(
        self,
        notifier: Notifier | None = None,
        settings: Settings | None = None,
        resource_root: Path | None = None,
        dev_root: Path | None = None,
        secret_store: SecretStore | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        """
        Args:
            notifier: Default status callback for every send
            settings: Configuration (defaults to get_settings())
            resource_root: Bundled resource root (overrides settings)
            dev_root: Development project root (overrides settings, defaults to cwd)
            secret_store: Source of provider API keys injected into the agent
            transport: httpx transport override for the agent server client
        """
        self.settings = settings or get_settings()
        self.notifier = notifier
        self.resource_root = resource_root or self.settings.resource_root
        self.dev_root = dev_root or self.settings.dev_root or Path.cwd()
        self.secret_store = secret_store
        self._transport = transport

        self._state = ManagerState.UNINITIALIZED
        self._session = SessionIdCell()
        self._send_lock = asyncio.Lock()

        self.paths: ToolPaths | None = None
        self._client: httpx.AsyncClient | None = None
        self._server: ServerSupervisor | None = None
        self._http_channel: HttpSessionChannel | None = None
        self._runner: RunSupervisor | None = None
        self._run_channel: CliSessionChannel | None = None

    @property
    def state(self) -> ManagerState:
        return self._state

    @property
    def session_id(self) -> str | None:
        return self._session.value

    @property
    def is_ready(self) -> bool:
        return self._state == ManagerState.READY

    # ------------------------------------------------------------------
    # Startup / shutdown
    # ------------------------------------------------------------------

    async def start(self) -> None:
        """Locate tools, start the agent and establish the session.

        On failure the agent process is torn down and the error re-raised.

        Raises:
            SpawnFailed: If tools cannot be located or the binary cannot run.
            StartupTimeout: If the server never becomes healthy.
            ProtocolError / ResponseParseError / TransportError: If the
                session cannot be created.
        """
        if self._state != ManagerState.UNINITIALIZED:
            raise RuntimeError(f"Agent manager cannot start from state {self._state.value}")

        self._state = ManagerState.STARTING
        logger.info(f"Starting agent manager ({self.settings.topology} topology)")
        try:
            self.paths = locate(self.resource_root, self.dev_root, self.settings.binary_name)
            credentials = credentials_as_env(self.secret_store)

            if self.settings.topology == "server":
                await self._start_server(self.paths, credentials)
            else:
                self._start_runner(self.paths, credentials)
        except BaseException as e:
            self._state = ManagerState.INIT_FAILED
            logger.error(f"Failed to initialize agent manager: {e}")
            await self._teardown()
            raise

        self._state = ManagerState.READY
        logger.info("Agent manager initialized successfully")

    async def _start_server(self, paths: ToolPaths, credentials: dict[str, str]) -> None:
        self._server = ServerSupervisor(
            paths,
            credentials,
            health_max_attempts=self.settings.health_max_attempts,
            health_interval=self.settings.health_interval,
        )
        self._client = create_http_client(
            base_url=self._server.base_url,
            enable_logging=self.settings.http_request_logging,
            read_timeout=self.settings.request_timeout,
            connect_timeout=self.settings.connect_timeout,
            transport=self._transport,
        )

        await self._server.start()
        await self._server.wait_until_healthy(self._client)

        workspace = str(paths.workspace_dir.resolve())
        logger.info(f"Using workspace path: {workspace}")
        self._http_channel = HttpSessionChannel(self._client, self._server.auth_header, workspace)
        await self._session.set_once(await self._http_channel.create_session())

    def _start_runner(self, paths: ToolPaths, credentials: dict[str, str]) -> None:
        # No process until the first message; the session id comes from its output
        self._runner = RunSupervisor(paths, credentials)
        self._run_channel = CliSessionChannel(self._runner, self._session)

    async def _teardown(self) -> None:
        if self._server is not None:
            await self._server.shutdown()
        if self._runner is not None:
            await self._runner.shutdown()
        if self._client is not None:
            await self._client.aclose()
            self._client = None

    async def shutdown(self) -> None:
        """Stop the agent process. Further sends fail with NotInitialized."""
        if self._state == ManagerState.SHUT_DOWN:
            return
        self._state = ManagerState.SHUT_DOWN
        async with self._send_lock:
            await self._teardown()
        logger.info("Agent manager shut down")

    async def __aenter__(self) -> AgentManager:
        await self.start()
        return self

    async def __aexit__(self, exc_type: Any, exc_val: Any, exc_tb: Any) -> None:
        await self.shutdown()

    # ------------------------------------------------------------------
    # Messages
    # ------------------------------------------------------------------

    async def send(
        self,
        message: str,
        provider_id: str | None = None,
        model_id: str | None = None,
        notifier: Notifier | None = None,
    ) -> str:
        """Send one user message and return the agent's final answer.

        Status updates go to ``notifier`` (or the manager's default) in
        the order the agent reported them, and only while this call runs.

        Raises:
            NotInitialized: If the manager is not ready.
            AgentBridgeError: Any protocol, transport or process failure.
        """
        if self._state != ManagerState.READY:
            raise NotInitialized()

        provider_id = provider_id or self.settings.default_provider
        model_id = model_id or self.settings.default_model
        sink = _StatusSink(notifier or self.notifier)

        async with self._send_lock:
            if self._state != ManagerState.READY:
                raise NotInitialized()

            started = time.monotonic()
            try:
                if self._http_channel is not None:
                    answer = await self._send_via_server(message, provider_id, model_id, sink)
                elif self._run_channel is not None:
                    answer = await self._send_via_run(message, provider_id, model_id, sink)
                else:
                    raise NotInitialized()
            finally:
                sink.closed = True

        logger.log_conversation_turn(
            user_input=message,
            response=answer,
            tool_calls=sink.tool_calls,
            duration_ms=(time.monotonic() - started) * 1000,
            provider_id=provider_id,
            model_id=model_id,
        )
        return answer

    async def send_safe(
        self,
        message: str,
        provider_id: str | None = None,
        model_id: str | None = None,
        notifier: Notifier | None = None,
    ) -> str:
        """Like send, but failures come back as a single "Error: ..." string."""
        try:
            return await self.send(message, provider_id, model_id, notifier)
        except AgentBridgeError as e:
            logger.error(f"Message failed ({e.code.value}): {e.message}")
            return f"Error: {e.message}"

    async def _send_via_server(self, message: str, provider_id: str, model_id: str, sink: _StatusSink) -> str:
        assert self._http_channel is not None and self._client is not None and self._server is not None
        session_id = self._session.value
        if session_id is None:
            raise NotInitialized()

        event_task = asyncio.create_task(self._consume_events(session_id, sink))
        try:
            return await self._http_channel.send_message(session_id, message, provider_id, model_id)
        finally:
            await _cancel_task(event_task)

    async def _consume_events(self, session_id: str, sink: _StatusSink) -> None:
        assert self._client is not None and self._server is not None
        async for event in subscribe_events(self._client, self._server.auth_header):
            update = normalize_server_event(event, session_id)
            if update is not None:
                sink(update)

    async def _send_via_run(self, message: str, provider_id: str, model_id: str, sink: _StatusSink) -> str:
        assert self._run_channel is not None

        def on_event(event: RunEvent) -> None:
            update = normalize_run_event(event, self._session.value)
            if update is not None:
                sink(update)

        return await self._run_channel.send_message(message, provider_id, model_id, on_event=on_event)

    # ------------------------------------------------------------------
    # Tools
    # ------------------------------------------------------------------

    async def ensure_browser(self) -> BrowserCheckResult:
        """Provision the automation browser used by the agent's web tools."""
        paths = self.paths or locate(self.resource_root, self.dev_root, self.settings.binary_name)
        return await ensure_browser(paths)


async def _cancel_task(task: asyncio.Task[None]) -> None:
    """Cancel a background task and wait for it.

    Only the task's own cancellation is absorbed; if the caller is cancelled
    while waiting, that cancellation propagates.
    """
    task.cancel()
    try:
        await task
    except asyncio.CancelledError:
        current = asyncio.current_task()
        if current is not None and current.cancelling():
            raise
    except Exception as e:
        logger.warning(f"Event subscription ended with error: {e}")
