"""
API handlers: call services and map results/errors to HTTP.

Responsibility: Bridge HTTP types and services. Marshalling and exception-to-HTTP mapping.
Lives in the API layer so services stay free of FastAPI/HTTP types.
"""

import logging

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse

from lms_agent.agent.catalog import list_agents
from lms_agent.agent.graph import TurnOrchestrator, TurnRequest
from lms_agent.agent.tools import ToolDefinition, ToolExecutionContext, contextual_tools, tools_for_role
from lms_agent.core.errors import AgentServiceError
from lms_agent.schemas.catalog import AgentListResponse, AgentSummary, ToolListResponse, ToolSummary
from lms_agent.schemas.chat import ChatRequest, ChatResponse, ToolCallSummary

logger = logging.getLogger(__name__)


def register_exception_handlers(app: FastAPI) -> None:
    """Render every error as {"error": message} with the status from the error taxonomy."""

    @app.exception_handler(AgentServiceError)
    async def _agent_error(request: Request, exc: AgentServiceError) -> JSONResponse:
        if exc.status_code >= 500:
            logger.warning("[api] %s %s -> %d %s", request.method, request.url.path, exc.status_code, exc.code)
        return JSONResponse(status_code=exc.status_code, content={"error": exc.message})

    @app.exception_handler(RequestValidationError)
    async def _validation_error(request: Request, exc: RequestValidationError) -> JSONResponse:
        first = exc.errors()[0] if exc.errors() else {}
        loc = [str(p) for p in first.get("loc", ()) if p != "body"]
        field = ".".join(loc) or "request"
        return JSONResponse(status_code=400, content={"error": f"{field}: {first.get('msg', 'invalid value')}"})

    @app.exception_handler(Exception)
    async def _unexpected_error(request: Request, exc: Exception) -> JSONResponse:
        logger.exception("[api] unhandled error on %s %s", request.method, request.url.path)
        return JSONResponse(status_code=500, content={"error": "Internal server error"})


def handle_chat(body: ChatRequest, caller: ToolExecutionContext, orchestrator: TurnOrchestrator) -> ChatResponse:
    request = TurnRequest(
        agent_name=body.agent_name.strip(),
        message=body.message,
        course_id=body.course_id or None,
        page_id=body.page_id or None,
        module_id=body.module_id or None,
        conversation_id=body.conversation_id or None,
    )
    result = orchestrator.run_turn(request, caller)
    tool_calls = [ToolCallSummary(**tc) for tc in result.tool_calls] if result.tool_calls else None
    return ChatResponse(conversation_id=result.conversation_id, reply=result.reply, tool_calls=tool_calls)


def handle_list_agents() -> AgentListResponse:
    return AgentListResponse(
        agents=[
            AgentSummary(
                name=a.name,
                description=a.description,
                ui_surfaces=sorted(a.ui_surfaces),
                target_roles=sorted(r.value for r in a.target_roles),
            )
            for a in list_agents()
        ]
    )


def _tool_summary(tool: ToolDefinition) -> ToolSummary:
    return ToolSummary(
        name=tool.name,
        display_name=tool.display_name,
        description=tool.description,
        context_types=sorted(c.value for c in tool.context_types),
        latency_class=tool.latency_class.value,
    )


def handle_list_tools(
    caller: ToolExecutionContext,
    agent_name: str | None = None,
    context_type: str | None = None,
) -> ToolListResponse:
    if agent_name:
        tools = contextual_tools(agent_name, caller.role, context_type or None)
    else:
        tools = tools_for_role(caller.role)
    return ToolListResponse(tools=[_tool_summary(t) for t in tools])
