"""Pydantic schemas for API request/response validation.

This module defines the data contracts for the AgentDock REST API:
session lifecycle, agent control, message history and usage.
"""

from typing import Any

from pydantic import BaseModel, ConfigDict, Field, field_validator

MAX_PROMPT_LENGTH = 100_000


# Session schemas


class SessionCreate(BaseModel):
    """Request schema for creating a session."""

    name: str = Field(..., min_length=1, max_length=255)
    repo_url: str = Field(..., min_length=1)
    branch: str = Field(default="main", min_length=1, max_length=255)

    @field_validator("name", "repo_url", "branch")
    @classmethod
    def _strip(cls, v: str) -> str:
        v = v.strip()
        if not v:
            raise ValueError("must not be blank")
        return v


class SessionResponse(BaseModel):
    """Response schema for a session."""

    id: str
    name: str
    repo_url: str
    branch: str
    status: str
    container_id: str | None
    status_message: str | None
    created_at: str
    updated_at: str

    model_config = ConfigDict(from_attributes=True)


class SessionListResponse(BaseModel):
    """Response schema for the session list."""

    sessions: list[SessionResponse]
    total: int


# Agent schemas


class SendPromptRequest(BaseModel):
    """Request schema for sending a prompt to a session's agent.

    Length (1 to MAX_PROMPT_LENGTH) is checked by the route so violations
    surface as E-2001 rather than a generic validation error.
    """

    prompt: str = Field(..., description="Prompt text written to the agent's stdin")


class SuccessResponse(BaseModel):
    """Generic operation outcome."""

    success: bool


class RunningResponse(BaseModel):
    """Whether an agent is running for a session."""

    running: bool


class MessageResponse(BaseModel):
    """One message from a session's log."""

    id: str
    type: str
    content: Any
    sequence: int
    created_at: str


class HistoryResponse(BaseModel):
    """One page of backward-paginated history, oldest first."""

    messages: list[MessageResponse]
    next_cursor: int | None = None
    has_more: bool = False


class TokenUsageResponse(BaseModel):
    """Estimated token usage for a session."""

    input_tokens: int
    output_tokens: int
    cache_read_tokens: int
    cache_creation_tokens: int
    total_tokens: int
    context_window: int
    percent_used: float
    model: str | None = None
    display_total: str
    display_percent: str


class ModelSuggestionsResponse(BaseModel):
    """Model names to offer for the agent's model option."""

    models: list[str]
