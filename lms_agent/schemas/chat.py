"""Schemas for the chat endpoint."""

from typing import Any

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel


class _CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class ChatRequest(_CamelModel):
    """Request body for POST /ai/chat. History is stored server-side per conversation."""

    agent_name: str = Field(..., min_length=1, description="Name of the agent to talk to, e.g. content_helper.")
    message: str = Field(..., min_length=1, description="The user's message for this turn.")
    course_id: str | None = Field(None, description="Course the user is looking at, if any.")
    page_id: str | None = Field(None, description="Page the user has open, if any.")
    module_id: str | None = Field(None, description="Module the user has open, if any.")
    conversation_id: str | None = Field(
        None, description="Existing conversation to continue; omit to start a new one."
    )


class ToolCallSummary(_CamelModel):
    name: str
    arguments: dict[str, Any]
    result: Any


class ChatResponse(_CamelModel):
    """Response for POST /ai/chat. tool_calls is only present when a tool actually ran."""

    conversation_id: str = Field(..., description="Conversation this turn was stored in.")
    reply: str = Field(..., description="The agent's final reply.")
    tool_calls: list[ToolCallSummary] | None = Field(None, description="The tool that ran this turn, with its result.")


class ToolInvokeResponse(_CamelModel):
    tool: str
    result: Any
