"""
API route aggregator: register endpoints; no logic, only delegate to handlers.
"""

import logging

from fastapi import APIRouter, Depends, Query

from lms_agent.agent.graph import TurnOrchestrator
from lms_agent.agent.tools import ToolExecutionContext
from lms_agent.api.deps import get_caller, get_orchestrator
from lms_agent.api.handlers import handle_chat, handle_list_agents, handle_list_tools
from lms_agent.schemas.catalog import AgentListResponse, ToolListResponse
from lms_agent.schemas.chat import ChatRequest, ChatResponse

logger = logging.getLogger(__name__)
router = APIRouter()


# --- System ---

@router.get("/", tags=["system"])
def root():
    return {"status": "Course agent backend running"}


@router.get("/health", tags=["system"])
def health():
    return {"ok": True}


# --- AI ---

@router.post(
    "/ai/chat",
    response_model=ChatResponse,
    response_model_exclude_none=True,
    tags=["ai"],
    summary="Send one chat turn to an agent",
    description=(
        "Runs one turn: retrieves course content, calls the model, runs at most one tool, "
        "and stores the user message and the reply. 400 unknown agent or invalid input, "
        "404 conversation not found, 409 turn already in flight, 503 model unavailable."
    ),
)
def post_chat(
    body: ChatRequest,
    caller: ToolExecutionContext = Depends(get_caller),
    orchestrator: TurnOrchestrator = Depends(get_orchestrator),
) -> ChatResponse:
    logger.info("[api:post_chat] IN  agent=%s user=%s conversation=%s", body.agent_name, caller.user_id, body.conversation_id)
    response = handle_chat(body, caller, orchestrator)
    logger.info("[api:post_chat] OUT conversation=%s tool_used=%s", response.conversation_id, bool(response.tool_calls))
    return response


@router.get(
    "/ai/agents",
    response_model=AgentListResponse,
    tags=["ai"],
    summary="List available agents",
)
def get_agents(caller: ToolExecutionContext = Depends(get_caller)) -> AgentListResponse:
    return handle_list_agents()


@router.get(
    "/ai/tools",
    response_model=ToolListResponse,
    tags=["ai"],
    summary="List tools the caller may use",
    description="With agentName: the agent's tools filtered by role and optional contextType. Without: all tools the role may use.",
)
def get_tools(
    agent_name: str | None = Query(None, alias="agentName"),
    context_type: str | None = Query(None, alias="contextType"),
    caller: ToolExecutionContext = Depends(get_caller),
) -> ToolListResponse:
    return handle_list_tools(caller, agent_name=agent_name, context_type=context_type)
