"""
Standardized error models for Agent Bridge.

Provides consistent error formatting for the UI shell, with error
categorization and optional debugging context.
"""

from __future__ import annotations

from datetime import UTC, datetime
from enum import Enum
from typing import Any

from pydantic import BaseModel, Field


class ErrorCode(str, Enum):
    """Application-specific error codes for categorization."""

    # Startup errors (1xxx)
    SPAWN_FAILED = "START_1001"
    TOOLS_NOT_FOUND = "START_1002"
    STARTUP_TIMEOUT = "START_1003"
    NOT_INITIALIZED = "START_1004"

    # Agent protocol errors (2xxx)
    PROTOCOL_ERROR = "PROTO_2001"
    RESPONSE_PARSE_ERROR = "PROTO_2002"
    TRANSPORT_ERROR = "PROTO_2003"

    # Child process errors (3xxx)
    NON_ZERO_EXIT = "PROC_3001"
    AGENT_RUN_ERROR = "PROC_3002"

    # Credential errors (4xxx)
    CREDENTIAL_STORE_ERROR = "CRED_4001"

    # Internal errors (9xxx)
    INTERNAL_ERROR = "INT_9001"


class ErrorResponse(BaseModel):
    """Error payload delivered to the UI shell.

    Example:
    {
        "code": "START_1003",
        "message": "Agent server failed to start after 60 attempts",
        "timestamp": "2025-01-15T10:30:00+00:00",
        "details": {"attempts": 60}
    }
    """

    code: ErrorCode
    message: str
    timestamp: str = Field(default_factory=lambda: datetime.now(UTC).isoformat())
    details: dict[str, Any] | None = None

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for the UI."""
        return self.model_dump(mode="json", exclude_none=True)
