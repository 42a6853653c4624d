"""
HTTP client factory for talking to the local agent server.
Centralizes httpx.AsyncClient creation with consistent configuration.
"""

from __future__ import annotations

import base64

from typing import Any

import httpx

from agent_bridge.core.constants import CONNECT_TIMEOUT_SECONDS, REQUEST_TIMEOUT_SECONDS
from agent_bridge.utils.http_logger import create_logging_client

# Agent prompts block until every tool call has finished, so reads need
# the full request timeout; connecting to loopback should be instant.
DEFAULT_WRITE_TIMEOUT = 30.0
DEFAULT_POOL_TIMEOUT = 30.0


def basic_auth_header(username: str, password: str) -> str:
    """Build an HTTP basic ``Authorization`` header value."""
    token = base64.b64encode(f"{username}:{password}".encode()).decode("ascii")
    return f"Basic {token}"


def create_http_client(
    base_url: str = "",
    enable_logging: bool = False,
    read_timeout: float | None = None,
    connect_timeout: float | None = None,
    transport: httpx.AsyncBaseTransport | None = None,
) -> httpx.AsyncClient:
    """Create HTTP client with timeouts suited to long-running agent prompts.

    Args:
        base_url: Agent server base URL (e.g. "http://127.0.0.1:4096")
        enable_logging: Enable HTTP request/response logging
        read_timeout: Read timeout in seconds (default: REQUEST_TIMEOUT_SECONDS)
        connect_timeout: Connect timeout in seconds
        transport: Optional transport override (used by tests)

    Returns:
        Configured httpx.AsyncClient
    """
    timeout = httpx.Timeout(
        connect=connect_timeout if connect_timeout is not None else CONNECT_TIMEOUT_SECONDS,
        read=read_timeout if read_timeout is not None else REQUEST_TIMEOUT_SECONDS,
        write=DEFAULT_WRITE_TIMEOUT,
        pool=DEFAULT_POOL_TIMEOUT,
    )

    kwargs: dict[str, Any] = {"base_url": base_url, "timeout": timeout}
    if transport is not None:
        kwargs["transport"] = transport

    if enable_logging:
        return create_logging_client(enabled=True, **kwargs)

    return httpx.AsyncClient(**kwargs)
