"""
Agent process supervision.

Two topologies, never mixed:
- ServerSupervisor: one long-lived ``opencode serve`` child on a loopback
  port, protected by a per-launch basic-auth password and gated by a
  bounded health check.
- RunSupervisor: a fresh ``opencode run`` child per message, streaming
  NDJSON on stdout.

Supervisors own their children. ``shutdown()`` (or leaving the ``async
with`` block) kills them exactly once; a weakref finalizer covers a
supervisor that is dropped without shutting down. Kill failures are
swallowed because the owner is already going away.
"""

from __future__ import annotations

import asyncio
import contextlib
import os
import secrets
import signal
import socket
import string
import weakref

from collections.abc import Mapping
from dataclasses import dataclass
from typing import Any

import httpx

from agent_bridge.core.constants import (
    ENV_BROWSERS_PATH,
    ENV_PATH,
    ENV_SERVER_PASSWORD,
    ENV_SERVER_USERNAME,
    HEALTH_ENDPOINT,
    HEALTH_INTERVAL_SECONDS,
    HEALTH_LOG_EVERY,
    HEALTH_MAX_ATTEMPTS,
    LOOPBACK_HOST,
    PROCESS_KILL_WAIT_SECONDS,
    RUN_OUTPUT_FORMAT,
    SERVER_PASSWORD_LENGTH,
    SERVER_USERNAME,
)
from agent_bridge.core.exceptions import NonZeroExit, SpawnFailed, StartupTimeout
from agent_bridge.integrations.tool_locator import ToolPaths
from agent_bridge.utils.client_factory import basic_auth_header
from agent_bridge.utils.logger import logger

#: StreamReader line limit; tool outputs inside NDJSON records can be large
STDOUT_LINE_LIMIT = 16 * 1024 * 1024

_PASSWORD_ALPHABET = string.ascii_letters + string.digits
_KILL_SIGNAL = getattr(signal, "SIGKILL", signal.SIGTERM)


def build_environment(
    paths: ToolPaths,
    credentials: Mapping[str, str] | None = None,
    base_env: Mapping[str, str] | None = None,
) -> dict[str, str]:
    """Environment for an agent child process.

    Args:
        paths: Located tool layout
        credentials: Provider API keys keyed by environment variable name
        base_env: Inherited environment (defaults to os.environ)
    """
    env = dict(os.environ if base_env is None else base_env)
    env[ENV_PATH] = paths.path_env(env.get(ENV_PATH, ""))
    env[ENV_BROWSERS_PATH] = str(paths.browsers_path)
    env.update(credentials or {})
    return env


def pick_unused_port(host: str = LOOPBACK_HOST) -> int:
    """Ask the OS for a free ephemeral port on the loopback interface."""
    with socket.socket(socket.AF_INET, socket.SOCK_STREAM) as sock:
        sock.bind((host, 0))
        port: int = sock.getsockname()[1]
        return port


def generate_password(length: int = SERVER_PASSWORD_LENGTH) -> str:
    return "".join(secrets.choice(_PASSWORD_ALPHABET) for _ in range(length))


def _kill_pid(pid: int) -> None:
    """Finalizer fallback: kill by pid when no event loop is available."""
    with contextlib.suppress(OSError):
        os.kill(pid, _KILL_SIGNAL)


async def _terminate(process: asyncio.subprocess.Process) -> None:
    """Kill a child and reap it, ignoring a child that is already gone."""
    if process.returncode is None:
        try:
            process.kill()
        except ProcessLookupError:
            pass
        except OSError as e:
            logger.debug(f"Kill of pid {process.pid} failed: {e}")
    with contextlib.suppress(asyncio.TimeoutError, ProcessLookupError):
        await asyncio.wait_for(process.wait(), timeout=PROCESS_KILL_WAIT_SECONDS)


async def _drain(stream: asyncio.StreamReader | None, label: str) -> None:
    """Forward a child's output to the debug log so its pipe never fills."""
    if stream is None:
        return
    while line := await stream.readline():
        logger.debug(f"[{label}] {line.decode('utf-8', errors='replace').rstrip()}")


@dataclass(frozen=True)
class ServerAuth:
    """Loopback-only basic auth credentials for one server launch."""

    username: str
    password: str

    @classmethod
    def generate(cls) -> ServerAuth:
        return cls(username=SERVER_USERNAME, password=generate_password())

    @property
    def header(self) -> str:
        return basic_auth_header(self.username, self.password)


class ServerSupervisor:
    """Runs ``<binary> serve --port <P>`` and waits for it to become healthy."""

    def __init__(
        self,
        paths: ToolPaths,
        credentials: Mapping[str, str] | None = None,
        health_max_attempts: int = HEALTH_MAX_ATTEMPTS,
        health_interval: float = HEALTH_INTERVAL_SECONDS,
        port: int | None = None,
        auth: ServerAuth | None = None,
    ):
        self.paths = paths
        self.credentials = dict(credentials or {})
        self.health_max_attempts = health_max_attempts
        self.health_interval = health_interval
        self.port = port if port is not None else pick_unused_port()
        self.auth = auth or ServerAuth.generate()

        self._process: asyncio.subprocess.Process | None = None
        self._drain_tasks: list[asyncio.Task[None]] = []
        self._finalizer: weakref.finalize | None = None
        self._shutdown_lock = asyncio.Lock()

    @property
    def base_url(self) -> str:
        return f"http://{LOOPBACK_HOST}:{self.port}"

    @property
    def auth_header(self) -> str:
        return self.auth.header

    @property
    def process(self) -> asyncio.subprocess.Process | None:
        return self._process

    @property
    def is_running(self) -> bool:
        return self._process is not None and self._process.returncode is None

    def command(self) -> list[str]:
        return [str(self.paths.binary_path), "serve", "--port", str(self.port)]

    async def start(self) -> None:
        """Spawn the server child.

        The working directory is left alone; the workspace reaches the
        agent through the session routing header instead.

        Raises:
            SpawnFailed: If the binary cannot be executed.
        """
        if self._process is not None:
            raise RuntimeError("Agent server already started")

        env = build_environment(self.paths, self.credentials)
        env[ENV_SERVER_USERNAME] = self.auth.username
        env[ENV_SERVER_PASSWORD] = self.auth.password

        cmd = self.command()
        logger.info(f"Starting agent server: {' '.join(cmd[1:])}")
        try:
            self._process = await asyncio.create_subprocess_exec(
                *cmd,
                env=env,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
            )
        except OSError as e:
            raise SpawnFailed(f"Failed to start agent server ({cmd[0]}): {e}", cause=e) from e

        self._finalizer = weakref.finalize(self, _kill_pid, self._process.pid)
        self._drain_tasks = [
            asyncio.create_task(_drain(self._process.stdout, "agent stdout")),
            asyncio.create_task(_drain(self._process.stderr, "agent stderr")),
        ]
        logger.info(f"Agent server spawned with pid {self._process.pid} on {self.base_url}")

    async def wait_until_healthy(self, client: httpx.AsyncClient) -> None:
        """Poll the health endpoint until it answers with success.

        Both error statuses and transport failures count as failed attempts.

        Raises:
            SpawnFailed: If the child exits while we wait.
            StartupTimeout: If no attempt succeeds.
        """
        headers = {"Authorization": self.auth_header}
        url = f"{self.base_url}{HEALTH_ENDPOINT}"

        for attempt in range(self.health_max_attempts):
            if self._process is not None and self._process.returncode is not None:
                raise SpawnFailed(
                    f"Agent server exited during startup with code {self._process.returncode}",
                    details={"exit_code": self._process.returncode},
                )

            try:
                response = await client.get(url, headers=headers)
            except httpx.HTTPError as e:
                if attempt % HEALTH_LOG_EVERY == 0:
                    logger.debug(f"Health check attempt {attempt}/{self.health_max_attempts}: {e}")
            else:
                if response.is_success:
                    logger.info(f"Health check passed after {attempt} retries")
                    return
                logger.debug(f"Health check returned status: {response.status_code}")

            if attempt + 1 < self.health_max_attempts:
                await asyncio.sleep(self.health_interval)

        raise StartupTimeout(self.health_max_attempts)

    async def shutdown(self) -> None:
        """Kill the server child. Safe to call more than once."""
        async with self._shutdown_lock:
            process, self._process = self._process, None
            if process is None:
                return

            await _terminate(process)
            if self._finalizer is not None:
                self._finalizer.detach()
                self._finalizer = None

            for task in self._drain_tasks:
                task.cancel()
            for task in self._drain_tasks:
                with contextlib.suppress(asyncio.CancelledError):
                    await task
            self._drain_tasks = []
            logger.info("Agent server stopped")

    async def __aenter__(self) -> ServerSupervisor:
        await self.start()
        return self

    async def __aexit__(self, exc_type: Any, exc_val: Any, exc_tb: Any) -> None:
        await self.shutdown()


class RunSupervisor:
    """Spawns one ``<binary> run`` child per message."""

    def __init__(self, paths: ToolPaths, credentials: Mapping[str, str] | None = None):
        self.paths = paths
        self.credentials = dict(credentials or {})
        self._active: set[asyncio.subprocess.Process] = set()
        self._stderr_tasks: dict[int, asyncio.Task[bytes]] = {}

    def command(self, message: str, model: str, session_id: str | None = None) -> list[str]:
        cmd = [str(self.paths.binary_path), "run", "-m", model, "--format", RUN_OUTPUT_FORMAT]
        if session_id:
            cmd.extend(["--session", session_id])
        # "--" keeps a message starting with "-" from being read as a flag
        cmd.extend(["--", message])
        return cmd

    async def spawn(self, message: str, model: str, session_id: str | None = None) -> asyncio.subprocess.Process:
        """Start a run child with stdout piped for NDJSON events.

        Raises:
            SpawnFailed: If the binary cannot be executed.
        """
        cmd = self.command(message, model, session_id)
        try:
            process = await asyncio.create_subprocess_exec(
                *cmd,
                env=build_environment(self.paths, self.credentials),
                cwd=self.paths.workspace_dir if self.paths.workspace_dir.is_dir() else None,
                stdin=asyncio.subprocess.DEVNULL,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
                limit=STDOUT_LINE_LIMIT,
            )
        except OSError as e:
            raise SpawnFailed(f"Failed to start agent ({cmd[0]}): {e}", cause=e) from e

        self._active.add(process)
        if process.stderr is not None:
            self._stderr_tasks[process.pid] = asyncio.create_task(process.stderr.read())
        logger.debug(f"Agent run spawned with pid {process.pid} (session: {session_id or 'new'})")
        return process

    async def wait(self, process: asyncio.subprocess.Process) -> None:
        """Wait for a run child to exit.

        Raises:
            NonZeroExit: If the child reports failure.
        """
        try:
            returncode = await process.wait()
            stderr_task = self._stderr_tasks.pop(process.pid, None)
            stderr = (await stderr_task).decode("utf-8", errors="replace") if stderr_task else ""
        finally:
            self._active.discard(process)

        if returncode != 0:
            raise NonZeroExit(returncode, stderr)

    async def terminate(self, process: asyncio.subprocess.Process) -> None:
        """Kill one run child (used when its send is abandoned)."""
        await _terminate(process)
        self._active.discard(process)
        task = self._stderr_tasks.pop(process.pid, None)
        if task is not None:
            task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await task

    async def shutdown(self) -> None:
        for process in list(self._active):
            await self.terminate(process)

    async def __aenter__(self) -> RunSupervisor:
        return self

    async def __aexit__(self, exc_type: Any, exc_val: Any, exc_tb: Any) -> None:
        await self.shutdown()
