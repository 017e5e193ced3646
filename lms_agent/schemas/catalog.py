"""Schemas for the agent and tool listing endpoints (client-safe fields only)."""

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel


class _CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class AgentSummary(_CamelModel):
    name: str
    description: str
    ui_surfaces: list[str] = Field(default_factory=list)
    target_roles: list[str] = Field(default_factory=list)


class AgentListResponse(_CamelModel):
    agents: list[AgentSummary]

    model_config = {
        "json_schema_extra": {
            "examples": [
                {
                    "agents": [
                        {
                            "name": "content_helper",
                            "description": "Helps students and instructors understand course pages...",
                            "uiSurfaces": ["side_panel"],
                            "targetRoles": ["instructor", "student"],
                        }
                    ]
                }
            ]
        }
    }


class ToolSummary(_CamelModel):
    name: str
    display_name: str
    description: str
    context_types: list[str] = Field(default_factory=list)
    latency_class: str


class ToolListResponse(_CamelModel):
    tools: list[ToolSummary]
