"""Shared test fixtures for the Agent Bridge test suite.

Provides settings isolation, temporary tool layouts and fake agent
executables (small shell scripts standing in for ``opencode``).
"""

from __future__ import annotations

import json
import stat
import sys

from collections.abc import Callable, Generator
from pathlib import Path
from typing import Any
from unittest.mock import patch

import pytest

from agent_bridge.core.constants import (
    NATIVE_TOOLS_DIRNAME,
    WORKSPACE_DIRNAME,
    Settings,
    clear_settings_cache,
)
from agent_bridge.integrations.tool_locator import ToolPaths, locate
from agent_bridge.utils.logger import logger

# ============================================================================
# Test Isolation
# ============================================================================


@pytest.fixture(autouse=True, scope="session")
def isolated_log_dir(tmp_path_factory: pytest.TempPathFactory) -> None:
    """Keep JSONL logs out of the working tree."""
    logger.configure(debug=True, log_dir=tmp_path_factory.mktemp("logs"))


@pytest.fixture(autouse=True)
def isolated_settings() -> Generator[None, None, None]:
    """Ignore developer dotenv files and reset the cached settings."""
    with patch("agent_bridge.core.constants._get_env_files", return_value=[]):
        clear_settings_cache()
        yield
        clear_settings_cache()


@pytest.fixture
def test_settings(tmp_path: Path) -> Settings:
    """Settings tuned for fast tests."""
    return Settings(
        app_env="test",
        health_max_attempts=3,
        health_interval=0.0,
        request_timeout=5.0,
        connect_timeout=1.0,
        log_dir=tmp_path / "logs",
    )


# ============================================================================
# Tool Layouts & Fake Agents
# ============================================================================


@pytest.fixture
def tool_root(tmp_path: Path) -> Path:
    """A root containing native_tools/ and opencode_workspace/."""
    root = tmp_path / "app"
    (root / NATIVE_TOOLS_DIRNAME).mkdir(parents=True)
    (root / WORKSPACE_DIRNAME).mkdir()
    return root


@pytest.fixture
def write_tool(tool_root: Path) -> Callable[[str, str], Path]:
    """Write an executable shell script into the tools directory."""

    def _write(name: str, body: str) -> Path:
        path = tool_root / NATIVE_TOOLS_DIRNAME / name
        path.write_text(f"#!/bin/sh\n{body}\n")
        path.chmod(path.stat().st_mode | stat.S_IXUSR | stat.S_IXGRP | stat.S_IXOTH)
        return path

    return _write


@pytest.fixture
def fake_run_agent(tool_root: Path, write_tool: Callable[[str, str], Path]) -> Callable[..., ToolPaths]:
    """Install a fake ``opencode`` that prints NDJSON records and exits.

    The script records its arguments (one per line) in ``args.txt`` next to it.
    """

    def _install(records: list[dict[str, Any]], exit_code: int = 0, stderr: str = "") -> ToolPaths:
        tools_dir = tool_root / NATIVE_TOOLS_DIRNAME
        (tools_dir / "output.ndjson").write_text("".join(json.dumps(r) + "\n" for r in records))
        body = [
            'dir="$(dirname "$0")"',
            'printf "%s\\n" "$@" > "$dir/args.txt"',
            'cat "$dir/output.ndjson"',
        ]
        if stderr:
            body.append(f"echo '{stderr}' >&2")
        body.append(f"exit {exit_code}")
        write_tool("opencode", "\n".join(body))
        return locate(tool_root, None)

    return _install



@pytest.fixture
def read_args() -> Callable[[ToolPaths], list[str]]:
    """Arguments the fake run agent was last invoked with."""

    def _read(paths: ToolPaths) -> list[str]:
        return (paths.tools_dir / "args.txt").read_text().splitlines()

    return _read


def pytest_runtest_setup(item: pytest.Item) -> None:
    if item.get_closest_marker("posix_only") and sys.platform == "win32":
        pytest.skip("fake agent binaries are shell scripts")


# ============================================================================
# Agent Events
# ============================================================================


class AgentEventFactory:
    """Builds raw agent server events as the event endpoint sends them."""

    def status(self, session_id: str, status_type: str, **status: Any) -> dict[str, Any]:
        return {
            "type": "session.status",
            "properties": {"sessionID": session_id, "status": {"type": status_type, **status}},
        }

    def part(self, session_id: str, part: dict[str, Any]) -> dict[str, Any]:
        return {"type": "message.part.updated", "properties": {"part": {"sessionID": session_id, **part}}}

    def tool(self, tool: str, status: str, **state: Any) -> dict[str, Any]:
        return {"type": "tool", "tool": tool, "state": {"status": status, **state}}

    def sse(self, event: dict[str, Any]) -> str:
        return f"data: {json.dumps(event)}\n\n"


@pytest.fixture
def agent_events() -> AgentEventFactory:
    return AgentEventFactory()
