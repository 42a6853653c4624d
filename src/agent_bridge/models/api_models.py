"""
Request/response bodies for the agent server HTTP API.
"""

from __future__ import annotations

from typing import Any

from pydantic import BaseModel, ConfigDict, Field

from agent_bridge.models.event_models import PART_TEXT


class SessionCreateRequest(BaseModel):
    title: str


class SessionCreateResponse(BaseModel):
    model_config = ConfigDict(extra="allow")

    id: str


class PromptPart(BaseModel):
    type: str = PART_TEXT
    text: str


class ModelSelector(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    provider_id: str = Field(alias="providerID")
    model_id: str = Field(alias="modelID")


class PromptRequest(BaseModel):
    """Body of ``POST /session/{id}/message``."""

    parts: list[PromptPart]
    model: ModelSelector

    @classmethod
    def for_text(cls, text: str, provider_id: str, model_id: str) -> PromptRequest:
        return cls(
            parts=[PromptPart(text=text)],
            model=ModelSelector(provider_id=provider_id, model_id=model_id),
        )

    def to_payload(self) -> dict[str, Any]:
        return self.model_dump(by_alias=True)


class PromptResponsePart(BaseModel):
    model_config = ConfigDict(extra="allow")

    type: str
    text: str | None = None


class PromptResponse(BaseModel):
    """Final answer returned once the agent finishes a prompt."""

    model_config = ConfigDict(extra="allow")

    info: Any | None = None
    parts: list[PromptResponsePart] | None = None

    def text_parts(self) -> list[str]:
        """Text of every ``text`` part, in order."""
        return [p.text for p in self.parts or [] if p.type == PART_TEXT and p.text is not None]
