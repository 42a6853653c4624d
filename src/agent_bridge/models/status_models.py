"""
UI-facing status update models.

These are the only progress values that leave the orchestrator; the UI
shell receives them through the notifier callback.
"""

from __future__ import annotations

import time

from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field

StatusKind = Literal[
    "busy",
    "idle",
    "retry",
    "tool",
    "tool-completed",
    "tool-error",
    "reasoning",
    "generating",
]


def now_millis() -> int:
    """Current wall-clock time in milliseconds since the epoch."""
    return time.time_ns() // 1_000_000


class StatusUpdateDetails(BaseModel):
    """Extra context for a status update.

    ``timestamp`` is always taken when the update is built, never copied
    from the raw event.
    """

    model_config = ConfigDict(populate_by_name=True)

    full_message: str | None = Field(default=None, alias="fullMessage")
    tool_name: str | None = Field(default=None, alias="toolName")
    timestamp: int = Field(default_factory=now_millis)
    input: Any | None = None
    output: str | None = None
    error: str | None = None
    duration: int | float | None = None


class StatusUpdate(BaseModel):
    """Normalized progress update sent to the UI notifier."""

    model_config = ConfigDict(populate_by_name=True)

    kind: StatusKind = Field(alias="type")
    message: str | None = None
    details: StatusUpdateDetails = Field(default_factory=StatusUpdateDetails)

    def to_dict(self) -> dict[str, Any]:
        """Convert to the camelCase shape the UI expects."""
        return self.model_dump(mode="json", by_alias=True, exclude_none=True)
