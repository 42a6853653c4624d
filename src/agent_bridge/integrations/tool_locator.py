"""
Location of the agent binary and its bundled tools.

Packaged builds ship a ``native_tools`` directory (agent binary, helper
binaries, browser cache) and an ``opencode_workspace`` directory under the
resource root. Development checkouts keep the same two directories at the
project root. Nothing here spawns processes or touches the network, apart
from ensure_browser which runs the browser helper on request.
"""

from __future__ import annotations

import asyncio
import os

from dataclasses import dataclass
from pathlib import Path

from agent_bridge.core.constants import (
    AGENT_BINARY_NAME,
    BROWSER_HELPER_BINARY_NAME,
    BROWSERS_DIRNAME,
    ENV_BROWSERS_PATH,
    ENV_PATH,
    NATIVE_TOOLS_DIRNAME,
    WORKSPACE_DIRNAME,
)
from agent_bridge.core.exceptions import ToolLocationError
from agent_bridge.utils.logger import logger


@dataclass(frozen=True)
class ToolPaths:
    """Resolved filesystem layout for one agent installation."""

    tools_dir: Path
    workspace_dir: Path
    binary_path: Path

    @property
    def browsers_path(self) -> Path:
        """Isolated browser-automation cache under the tools directory."""
        return self.tools_dir / BROWSERS_DIRNAME

    def binary(self, name: str) -> Path:
        """Bundled binary if present, else the bare name for PATH lookup."""
        candidate = self.tools_dir / name
        return candidate if candidate.exists() else Path(name)

    def path_env(self, inherited: str | None = None) -> str:
        """Search path with the tools directory prepended (when it exists)."""
        if inherited is None:
            inherited = os.environ.get(ENV_PATH, "")
        if not self.tools_dir.exists():
            return inherited
        if not inherited:
            return str(self.tools_dir)
        return f"{self.tools_dir}{os.pathsep}{inherited}"


def locate(
    resource_root: Path | None,
    dev_root: Path | None,
    binary_name: str = AGENT_BINARY_NAME,
) -> ToolPaths:
    """Resolve tools, workspace and binary paths.

    The bundled layout under ``resource_root`` wins when its tools
    directory exists; otherwise both directories come from ``dev_root``.

    Raises:
        ToolLocationError: If neither root is usable.
    """
    root: Path | None = None
    if resource_root is not None and (resource_root / NATIVE_TOOLS_DIRNAME).exists():
        root = resource_root
        logger.debug(f"Production layout under {resource_root}")
    elif dev_root is not None:
        root = dev_root
        logger.debug(f"Development layout under {dev_root}")

    if root is None:
        raise ToolLocationError(
            f"No usable tools directory (resource root: {resource_root}, development root: {dev_root})"
        )

    tools_dir = root / NATIVE_TOOLS_DIRNAME
    workspace_dir = root / WORKSPACE_DIRNAME
    bundled = tools_dir / binary_name
    binary_path = bundled if bundled.exists() else Path(binary_name)

    logger.debug(
        f"Tools dir: {tools_dir} (exists: {tools_dir.exists()}), "
        f"workspace: {workspace_dir} (exists: {workspace_dir.exists()}), binary: {binary_path}"
    )
    return ToolPaths(tools_dir=tools_dir, workspace_dir=workspace_dir, binary_path=binary_path)


@dataclass(frozen=True)
class BrowserCheckResult:
    success: bool
    output: str


def _combine_output(stdout: str, stderr: str) -> str:
    if not stderr:
        return stdout
    if not stdout:
        return stderr
    return f"{stdout}\n{stderr}"


async def ensure_browser(paths: ToolPaths) -> BrowserCheckResult:
    """Run ``latchkey ensure-browser`` so web tools have a browser to drive.

    Failures are reported in the result rather than raised; the UI shows
    the output either way.
    """
    helper = paths.binary(BROWSER_HELPER_BINARY_NAME)
    env = {**os.environ, ENV_PATH: paths.path_env(), ENV_BROWSERS_PATH: str(paths.browsers_path)}
    logger.info(f"Running {helper} ensure-browser")

    try:
        process = await asyncio.create_subprocess_exec(
            str(helper),
            "ensure-browser",
            env=env,
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.PIPE,
        )
        stdout, stderr = await process.communicate()
    except OSError as e:
        error_msg = f"Failed to run {BROWSER_HELPER_BINARY_NAME}: {e}"
        logger.error(error_msg)
        return BrowserCheckResult(success=False, output=error_msg)

    output = _combine_output(
        stdout.decode("utf-8", errors="replace"),
        stderr.decode("utf-8", errors="replace"),
    )
    success = process.returncode == 0
    logger.info(f"ensure-browser completed with success={success}")
    return BrowserCheckResult(success=success, output=output)
