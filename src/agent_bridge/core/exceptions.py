"""
Exception hierarchy for the agent session orchestrator.

Every failure of ``AgentManager.send`` surfaces as exactly one of these,
so the UI receives either an answer or a single descriptive error.
"""

from __future__ import annotations

from typing import Any

from agent_bridge.core.constants import ERROR_SNIPPET_LENGTH
from agent_bridge.models.error_models import ErrorCode, ErrorResponse


def snippet(text: str, limit: int = ERROR_SNIPPET_LENGTH) -> str:
    """Cap a response body so error messages stay bounded."""
    return text[:limit]


class AgentBridgeError(Exception):
    """Base exception with error code support.

    Example:
        raise AgentBridgeError(
            code=ErrorCode.INTERNAL_ERROR,
            message="Unexpected agent state",
            details={"state": state},
        )
    """

    def __init__(
        self,
        code: ErrorCode,
        message: str,
        details: dict[str, Any] | None = None,
        cause: Exception | None = None,
    ):
        self.code = code
        self.message = message
        self.details = details
        self.cause = cause
        super().__init__(message)

    def to_response(self) -> ErrorResponse:
        return ErrorResponse(code=self.code, message=self.message, details=self.details)


class SpawnFailed(AgentBridgeError):
    """The agent binary is missing, unexecutable, or exited during startup."""

    def __init__(
        self,
        message: str,
        code: ErrorCode = ErrorCode.SPAWN_FAILED,
        details: dict[str, Any] | None = None,
        cause: Exception | None = None,
    ):
        super().__init__(code=code, message=message, details=details, cause=cause)


class ToolLocationError(SpawnFailed):
    """Neither the resource root nor the development root is usable."""

    def __init__(self, message: str):
        super().__init__(message=message, code=ErrorCode.TOOLS_NOT_FOUND)


class StartupTimeout(AgentBridgeError):
    """The agent server never passed its health check."""

    def __init__(self, attempts: int):
        self.attempts = attempts
        super().__init__(
            code=ErrorCode.STARTUP_TIMEOUT,
            message=f"Agent server failed to start after {attempts} attempts",
            details={"attempts": attempts},
        )


class ProtocolError(AgentBridgeError):
    """The agent answered with a non-success status code."""

    def __init__(self, status: int, body: str, context: str = "API error"):
        self.status = status
        self.body = body
        super().__init__(
            code=ErrorCode.PROTOCOL_ERROR,
            message=f"{context} ({status}): {body}",
            details={"status": status},
        )


class ResponseParseError(AgentBridgeError):
    """A response body could not be decoded.

    The snippet is capped so a huge or binary body never floods the UI.
    """

    def __init__(self, context: str, body: str, cause: Exception | None = None):
        self.context = context
        self.snippet = snippet(body)
        reason = f": {cause}" if cause else ""
        super().__init__(
            code=ErrorCode.RESPONSE_PARSE_ERROR,
            message=f"Failed to parse {context}{reason}. Body: {self.snippet}",
            details={"context": context},
            cause=cause,
        )


class TransportError(AgentBridgeError):
    """The request never produced a response (connection refused, timeout, ...)."""

    def __init__(self, message: str, cause: Exception | None = None):
        super().__init__(code=ErrorCode.TRANSPORT_ERROR, message=message, cause=cause)


class NonZeroExit(AgentBridgeError):
    """A per-call agent process exited with a failure code."""

    def __init__(self, code: int, stderr: str = ""):
        self.exit_code = code
        self.stderr = snippet(stderr.strip())
        message = f"Agent exited with code {code}"
        if self.stderr:
            message = f"{message}: {self.stderr}"
        super().__init__(code=ErrorCode.NON_ZERO_EXIT, message=message, details={"exit_code": code})


class AgentRunError(AgentBridgeError):
    """A per-call agent process reported an error but exited cleanly."""

    def __init__(self, message: str):
        super().__init__(code=ErrorCode.AGENT_RUN_ERROR, message=f"Agent error: {message}")


class NotInitialized(AgentBridgeError):
    """A message was sent before the manager finished starting."""

    def __init__(self, message: str = "Agent not initialized. Please restart the app."):
        super().__init__(code=ErrorCode.NOT_INITIALIZED, message=message)


class CredentialError(AgentBridgeError):
    """The secret store rejected an operation."""

    def __init__(self, message: str, cause: Exception | None = None):
        super().__init__(code=ErrorCode.CREDENTIAL_STORE_ERROR, message=message, cause=cause)
