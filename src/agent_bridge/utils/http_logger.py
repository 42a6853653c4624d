"""
HTTP request/response logging for debugging the agent server protocol.

Captures request payloads and responses using httpx event hooks.
"""

from __future__ import annotations

import json

from typing import Any

import httpx

from agent_bridge.core.constants import LOG_BODY_PREVIEW_LENGTH
from agent_bridge.utils.logger import logger

SENSITIVE_HEADERS = ("authorization", "api-key", "x-api-key")


class HTTPLogger:
    """Logs HTTP requests and responses for debugging."""

    def __init__(self, enabled: bool = True):
        """Initialize HTTP logger.

        Args:
            enabled: Whether to enable HTTP logging (default: True)
        """
        self.enabled = enabled

    async def log_request(self, request: httpx.Request) -> None:
        """Log outgoing HTTP request.

        Args:
            request: The httpx request object
        """
        if not self.enabled:
            return

        body_str = request.content.decode("utf-8", errors="replace") if request.content else ""
        try:
            body: Any = json.loads(body_str) if body_str else {}
        except json.JSONDecodeError:
            body = body_str[:LOG_BODY_PREVIEW_LENGTH]

        logger.debug(
            f"HTTP Request: {request.method} {request.url}",
            http_request=True,
            headers=self._sanitize_headers(dict(request.headers)),
            payload=body,
        )

    async def log_response(self, response: httpx.Response) -> None:
        """Log HTTP response.

        Streaming responses (the event endpoint) are logged without a body,
        since reading it here would consume the stream.

        Args:
            response: The httpx response object
        """
        if not self.enabled:
            return

        request = response.request
        logger.debug(
            f"HTTP Response: {response.status_code} {request.method} {request.url}",
            http_response=True,
            status_code=response.status_code,
        )

    def _sanitize_headers(self, headers: dict[str, str]) -> dict[str, str]:
        """Remove sensitive data from headers.

        Args:
            headers: Original headers dictionary

        Returns:
            Sanitized headers with sensitive values redacted
        """
        sanitized = headers.copy()
        for actual_key, value in headers.items():
            if actual_key.lower() in SENSITIVE_HEADERS:
                # Show last 4 chars only
                sanitized[actual_key] = f"***{value[-4:]}" if len(value) > 4 else "***"
        return sanitized


def create_logging_client(
    enabled: bool = True,
    **client_kwargs: Any,
) -> httpx.AsyncClient:
    """Create an httpx client with request/response logging.

    Args:
        enabled: Whether to enable HTTP logging
        **client_kwargs: Passed through to httpx.AsyncClient

    Returns:
        Configured httpx.AsyncClient with event hooks
    """
    http_logger = HTTPLogger(enabled=enabled)
    event_hooks: dict[str, list[Any]] = {
        "request": [http_logger.log_request],
        "response": [http_logger.log_response],
    }
    return httpx.AsyncClient(event_hooks=event_hooks, **client_kwargs)
