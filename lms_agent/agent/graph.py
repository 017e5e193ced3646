"""
LangGraph turn orchestrator: resolve agent → conversation → history → context →
model call → (one tool call → second model call) → persist.

Exactly one tool call is executed per turn and the follow-up model call never
advertises tools, so a turn cannot recurse. Tool failures become a
conversational reply instead of failing the request.
"""

import json
import logging
from dataclasses import dataclass
from typing import Any, Literal, TypedDict

from langgraph.graph import END, StateGraph

from lms_agent.agent.catalog import AgentDefinition, get_agent
from lms_agent.agent.llm import ChatResponse, ChatTurn, ToolCall, call_chat_model
from lms_agent.agent.tools import ToolExecutionContext, definitions_for, execute_tool
from lms_agent.core.config import HISTORY_WINDOW
from lms_agent.core.errors import AgentServiceError, InvalidArgumentsError, NotFoundError, UnknownAgentError
from lms_agent.core.store import SQLiteStore
from lms_agent.core.turn_guard import conversation_turn
from lms_agent.services.context_service import BuiltContext, ContextService

logger = logging.getLogger(__name__)

_SENDER_TO_ROLE = {"user": "user", "agent": "assistant"}


@dataclass(frozen=True)
class TurnRequest:
    agent_name: str
    message: str
    course_id: str | None = None
    page_id: str | None = None
    module_id: str | None = None
    conversation_id: str | None = None


@dataclass
class TurnResult:
    conversation_id: str
    reply: str
    tool_calls: list[dict[str, Any]] | None = None
    model_version: str = ""


class TurnState(TypedDict, total=False):
    request: TurnRequest
    caller: ToolExecutionContext
    agent: AgentDefinition
    conversation: dict
    history: list[ChatTurn]
    built_context: BuiltContext
    messages: list[ChatTurn]
    tool_call: ToolCall | None
    tool_result: Any
    tool_ran: bool
    tool_calls_summary: list[dict]
    reply: str
    model_version: str


def tool_failure_reply(exc: Exception) -> str:
    detail = exc.message if isinstance(exc, AgentServiceError) else "an unexpected error occurred."
    return f"I encountered an error while using a tool: {detail}"


def _turn_log_context(state: TurnState) -> str:
    caller = state.get("caller")
    conversation = state.get("conversation") or {}
    request = state.get("request")
    return "user=%s tenant=%s agent=%s conversation=%s" % (
        caller.user_id if caller else None,
        caller.tenant_id if caller else None,
        request.agent_name if request else None,
        conversation.get("id") or (request.conversation_id if request else None),
    )


class TurnOrchestrator:
    """Runs one user turn against an agent. Stateless between turns."""

    def __init__(self, store: SQLiteStore, context_service: ContextService | None = None) -> None:
        self.store = store
        self.context_service = context_service or ContextService(store)
        self.graph = self.build_graph()

    # --- Nodes ---

    def _resolve_agent(self, state: TurnState) -> dict:
        name = state["request"].agent_name
        agent = get_agent(name)
        if agent is None:
            logger.info("[graph:resolve_agent] unknown agent=%r", name)
            raise UnknownAgentError(f"Unknown agent: {name}")
        return {"agent": agent}

    def _load_conversation(self, state: TurnState) -> dict:
        request = state["request"]
        caller = state["caller"]
        agent = state["agent"]
        if request.conversation_id:
            conversation = self.store.get_conversation(request.conversation_id, caller.user_id)
            # A conversation stays bound to the agent it was created with
            if conversation is None or conversation["agent_id"] != self.store.get_agent_id(agent.name):
                raise NotFoundError("Conversation not found.")
            return {"conversation": conversation}

        agent_row = self.store.get_or_create_agent(
            name=agent.name,
            description=agent.description,
            default_model=agent.default_model,
            context_policy={
                "maxContextTokens": agent.context_policy.max_context_tokens,
                "retrievalTopK": agent.context_policy.retrieval_top_k,
            },
            ui_surfaces=",".join(sorted(agent.ui_surfaces)),
            target_roles=",".join(sorted(r.value for r in agent.target_roles)),
        )
        conversation = self.store.create_conversation(
            user_id=caller.user_id,
            agent_id=agent_row["id"],
            model_version=agent.default_model,
            context_snapshot={
                "courseId": request.course_id,
                "pageId": request.page_id,
                "moduleId": request.module_id,
            },
        )
        return {"conversation": conversation}

    def _load_history(self, state: TurnState) -> dict:
        rows = self.store.list_recent_messages(state["conversation"]["id"], HISTORY_WINDOW)
        history = [ChatTurn(role=_SENDER_TO_ROLE.get(r["sender"], "assistant"), content=r["content"]) for r in rows]
        logger.info("[graph:load_history] conversation=%s history_len=%d", state["conversation"]["id"], len(history))
        return {"history": history}

    def _build_context(self, state: TurnState) -> dict:
        request = state["request"]
        context = self.context_service.build_context(
            agent_name=state["agent"].name,
            tenant_id=state["caller"].tenant_id,
            user_question=request.message,
            course_id=request.course_id,
            page_id=request.page_id,
            module_id=request.module_id,
        )
        messages = [*state["history"], ChatTurn(role="user", content=request.message)]
        return {"built_context": context, "messages": messages}

    def _first_model_call(self, state: TurnState) -> dict:
        tools = definitions_for(state["agent"].name)
        try:
            response: ChatResponse = call_chat_model(
                state["built_context"].system_prompt,
                state["messages"],
                tools=tools or None,
            )
        except InvalidArgumentsError as e:
            # Model asked for a tool with an unparseable payload; nothing to execute
            logger.warning("[graph:first_model_call] malformed tool call %s", _turn_log_context(state))
            return {"reply": tool_failure_reply(e), "tool_call": None, "model_version": ""}

        tool_call = response.tool_calls[0] if response.tool_calls else None
        if len(response.tool_calls) > 1:
            logger.info(
                "[graph:first_model_call] executing first of %d tool calls, ignoring %s",
                len(response.tool_calls), [t.name for t in response.tool_calls[1:]],
            )
        return {"reply": response.content, "tool_call": tool_call, "model_version": response.model_version}

    def _execute_tool(self, state: TurnState) -> dict:
        tool_call = state["tool_call"]
        try:
            result = execute_tool(tool_call.name, tool_call.arguments, state["caller"], self.store)
        except Exception as e:
            if isinstance(e, AgentServiceError):
                logger.warning(
                    "[graph:execute_tool] tool=%s failed code=%s %s", tool_call.name, e.code, _turn_log_context(state)
                )
            else:
                logger.exception("[graph:execute_tool] tool=%s crashed %s", tool_call.name, _turn_log_context(state))
            return {"tool_ran": False, "reply": tool_failure_reply(e)}
        summary = [{"name": tool_call.name, "arguments": tool_call.arguments, "result": result}]
        return {"tool_ran": True, "tool_result": result, "tool_calls_summary": summary}

    def _second_model_call(self, state: TurnState) -> dict:
        tool_call = state["tool_call"]
        messages = [
            *state["messages"],
            ChatTurn(role="assistant", content=f"[Tool call: {tool_call.name}]"),
            ChatTurn(role="user", content=f"Tool result: {json.dumps(state['tool_result'], default=str)}"),
        ]
        try:
            # No tools on the follow-up call
            response = call_chat_model(state["built_context"].system_prompt, messages, tools=None)
        except Exception as e:
            if isinstance(e, AgentServiceError):
                logger.warning("[graph:second_model_call] failed code=%s %s", e.code, _turn_log_context(state))
            else:
                logger.exception("[graph:second_model_call] crashed %s", _turn_log_context(state))
            return {"reply": tool_failure_reply(e)}
        return {"reply": response.content, "model_version": response.model_version}

    def _persist(self, state: TurnState) -> dict:
        conversation = state["conversation"]
        model_version = state.get("model_version") or conversation["model_version"]
        try:
            self.store.append_turn(conversation["id"], state["request"].message, state.get("reply") or "")
            self.store.update_model_version(conversation["id"], model_version)
        except Exception:
            logger.exception("[graph:persist] turn persistence incomplete %s", _turn_log_context(state))
            raise
        return {"model_version": model_version}

    # --- Routing ---

    def _route_after_first_call(self, state: TurnState) -> Literal["execute_tool", "persist"]:
        return "execute_tool" if state.get("tool_call") else "persist"

    def _route_after_tool(self, state: TurnState) -> Literal["second_model_call", "persist"]:
        return "second_model_call" if state.get("tool_ran") else "persist"

    def build_graph(self):
        graph = StateGraph(TurnState)

        graph.add_node("resolve_agent", self._resolve_agent)
        graph.add_node("load_conversation", self._load_conversation)
        graph.add_node("load_history", self._load_history)
        graph.add_node("build_context", self._build_context)
        graph.add_node("first_model_call", self._first_model_call)
        graph.add_node("execute_tool", self._execute_tool)
        graph.add_node("second_model_call", self._second_model_call)
        graph.add_node("persist", self._persist)

        graph.set_entry_point("resolve_agent")
        graph.add_edge("resolve_agent", "load_conversation")
        graph.add_edge("load_conversation", "load_history")
        graph.add_edge("load_history", "build_context")
        graph.add_edge("build_context", "first_model_call")
        graph.add_conditional_edges("first_model_call", self._route_after_first_call, ["execute_tool", "persist"])
        graph.add_conditional_edges("execute_tool", self._route_after_tool, ["second_model_call", "persist"])
        graph.add_edge("second_model_call", "persist")
        graph.add_edge("persist", END)

        return graph.compile()

    def run_turn(self, request: TurnRequest, caller: ToolExecutionContext) -> TurnResult:
        """Run one turn. Raises AgentServiceError subclasses for client-visible failures."""
        logger.info(
            "[graph:run_turn] START user=%s tenant=%s agent=%s conversation=%s message_len=%d",
            caller.user_id, caller.tenant_id, request.agent_name, request.conversation_id, len(request.message),
        )
        initial: TurnState = {"request": request, "caller": caller, "tool_ran": False}
        final: TurnState = initial
        with conversation_turn(request.conversation_id):
            try:
                # Full state after each step, so a failure can name the conversation it hit
                for final in self.graph.stream(initial, stream_mode="values"):
                    pass
            except AgentServiceError as e:
                logger.warning("[graph:run_turn] failed code=%s %s", e.code, _turn_log_context({**initial, **final}))
                raise
            except Exception:
                logger.exception("[graph:run_turn] crashed %s", _turn_log_context({**initial, **final}))
                raise

        summary = final.get("tool_calls_summary") or None
        conversation_id = final["conversation"]["id"]
        logger.info(
            "[graph:run_turn] ai_chat user=%s tenant=%s agent=%s conversation=%s used_tool=%s model_version=%s",
            caller.user_id, caller.tenant_id, request.agent_name, conversation_id, bool(summary), final["model_version"],
        )
        return TurnResult(
            conversation_id=conversation_id,
            reply=final.get("reply") or "",
            tool_calls=summary,
            model_version=final["model_version"],
        )
