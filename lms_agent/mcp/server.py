"""
MCP-style tool server: exposes the agent tools as a standardized tool interface
so external agents (or the UI) can invoke them directly under the caller's
identity. Same permission gating and validation as the chat path; failures are
returned as errors instead of being turned into a reply.
"""

import logging
from typing import Any

from fastapi import APIRouter, Body, Depends

from lms_agent.agent.tools import ToolExecutionContext, execute_tool, list_tools, role_allowed
from lms_agent.api.deps import get_caller
from lms_agent.core.store import SQLiteStore, get_store
from lms_agent.schemas.chat import ToolInvokeResponse

logger = logging.getLogger(__name__)

mcp_router = APIRouter(tags=["mcp"])


@mcp_router.get(
    "/tools",
    summary="MCP tool discovery",
    description="Tools the caller's role may invoke, with their input schemas.",
)
def mcp_list_tools(caller: ToolExecutionContext = Depends(get_caller)) -> dict[str, list[dict[str, Any]]]:
    return {
        "tools": [
            {"name": t.name, "description": t.description, "input_schema": t.input_schema}
            for t in list_tools()
            if role_allowed(t, caller.role)
        ]
    }


@mcp_router.post(
    "/tools/{tool_name}",
    response_model=ToolInvokeResponse,
    summary="MCP tool: invoke",
    description="Run one tool with the given JSON arguments. 403 role not allowed, 404 unknown tool or inaccessible resource, 400 invalid arguments.",
)
def mcp_invoke_tool(
    tool_name: str,
    arguments: dict[str, Any] | None = Body(None),
    caller: ToolExecutionContext = Depends(get_caller),
    store: SQLiteStore = Depends(get_store),
) -> ToolInvokeResponse:
    logger.info("MCP tool called: %s", tool_name)
    result = execute_tool(tool_name, arguments or {}, caller, store)
    return ToolInvokeResponse(tool=tool_name, result=result)
