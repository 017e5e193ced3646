"""
Tests for the turn orchestrator: tool-call handling, persistence, ownership,
and failure downgrades. The chat model is mocked at the orchestrator seam.
"""

import logging
from unittest.mock import patch

import pytest

from lms_agent.agent.graph import TurnOrchestrator, TurnRequest, tool_failure_reply
from lms_agent.agent.llm import ChatResponse, ToolCall
from lms_agent.core.errors import (
    ConversationBusyError,
    InvalidArgumentsError,
    ModelUnavailableError,
    NotFoundError,
    UnknownAgentError,
)
from lms_agent.core.turn_guard import conversation_turn, in_flight_count

MODEL = "gpt-4-turbo-2024-04-09"


def _text(content: str, model: str = MODEL) -> ChatResponse:
    return ChatResponse(content=content, model_version=model)


def _calls(*calls: ToolCall) -> ChatResponse:
    return ChatResponse(content="", model_version=MODEL, tool_calls=list(calls))


SEARCH = ToolCall(id="c1", name="search_course_content", arguments={"courseId": "C1", "query": "machine"})
SUMMARIZE = ToolCall(id="c2", name="summarize_module", arguments={"moduleId": "M1"})


def _count(store, table: str) -> int:
    return store._fetch_one(f"SELECT COUNT(*) AS n FROM {table}")["n"]


@pytest.fixture
def orchestrator(store) -> TurnOrchestrator:
    return TurnOrchestrator(store)


class TestPlainTurn:
    def test_reply_persisted_as_two_messages(self, orchestrator, store, student) -> None:
        with patch("lms_agent.agent.graph.call_chat_model", return_value=_text("ML is fun.")) as mock_llm:
            result = orchestrator.run_turn(
                TurnRequest(agent_name="content_helper", message="Tell me about machine learning", course_id="C1"),
                student,
            )
        assert result.reply == "ML is fun."
        assert result.tool_calls is None
        assert result.model_version == MODEL
        messages = store.list_messages(result.conversation_id)
        assert [(m["sender"], m["content"]) for m in messages] == [
            ("user", "Tell me about machine learning"),
            ("agent", "ML is fun."),
        ]
        system_prompt = mock_llm.call_args.args[0]
        assert "--- Page 1: Intro ---" in system_prompt
        assert len(mock_llm.call_args.kwargs["tools"]) == 3

    def test_new_conversation_snapshot_and_model_version(self, orchestrator, store, student) -> None:
        with patch("lms_agent.agent.graph.call_chat_model", return_value=_text("ok", model="gpt-4-turbo-2024-04-09")):
            result = orchestrator.run_turn(
                TurnRequest(agent_name="content_helper", message="hi", course_id="C1", page_id="P1"), student
            )
        conversation = store.get_conversation(result.conversation_id, "u-student")
        assert conversation["context_snapshot"] == {"courseId": "C1", "pageId": "P1", "moduleId": None}
        assert conversation["model_version"] == "gpt-4-turbo-2024-04-09"

    def test_history_is_sent_on_next_turn(self, orchestrator, store, student) -> None:
        with patch("lms_agent.agent.graph.call_chat_model", return_value=_text("first reply")):
            first = orchestrator.run_turn(TurnRequest(agent_name="content_helper", message="first"), student)
        with patch("lms_agent.agent.graph.call_chat_model", return_value=_text("second reply")) as mock_llm:
            second = orchestrator.run_turn(
                TurnRequest(agent_name="content_helper", message="second", conversation_id=first.conversation_id),
                student,
            )
        assert second.conversation_id == first.conversation_id
        sent = mock_llm.call_args.args[1]
        assert [(m.role, m.content) for m in sent] == [
            ("user", "first"),
            ("assistant", "first reply"),
            ("user", "second"),
        ]
        assert len(store.list_messages(first.conversation_id)) == 4

    def test_model_version_is_superseded(self, orchestrator, store, student) -> None:
        with patch("lms_agent.agent.graph.call_chat_model", return_value=_text("a", model="model-a")):
            first = orchestrator.run_turn(TurnRequest(agent_name="content_helper", message="one"), student)
        with patch("lms_agent.agent.graph.call_chat_model", return_value=_text("b", model="model-b")):
            orchestrator.run_turn(
                TurnRequest(agent_name="content_helper", message="two", conversation_id=first.conversation_id), student
            )
        assert store.get_conversation(first.conversation_id, "u-student")["model_version"] == "model-b"


class TestToolTurn:
    def test_executes_first_tool_call_only(self, orchestrator, store, student) -> None:
        with patch(
            "lms_agent.agent.graph.call_chat_model", side_effect=[_calls(SEARCH, SUMMARIZE), _text("Found Intro.")]
        ) as mock_llm, patch("lms_agent.agent.tools.call_chat_model") as tool_llm:
            result = orchestrator.run_turn(
                TurnRequest(agent_name="content_helper", message="find machine", course_id="C1"), student
            )
        tool_llm.assert_not_called()
        assert result.reply == "Found Intro."
        assert result.tool_calls == [
            {
                "name": "search_course_content",
                "arguments": {"courseId": "C1", "query": "machine"},
                "result": [{"pageId": "P1", "title": "Intro", "snippet": "Welcome to machine learning basics."}],
            }
        ]
        assert mock_llm.call_count == 2

        # Follow-up call carries the tool exchange and offers no tools
        follow_up = mock_llm.call_args_list[1]
        assert follow_up.kwargs["tools"] is None
        sent = follow_up.args[1]
        assert sent[-2].role == "assistant" and sent[-2].content == "[Tool call: search_course_content]"
        assert sent[-1].role == "user" and sent[-1].content.startswith("Tool result: ")
        assert '"pageId": "P1"' in sent[-1].content

        messages = store.list_messages(result.conversation_id)
        assert [m["sender"] for m in messages] == ["user", "agent"]
        assert messages[1]["content"] == "Found Intro."

    def test_forbidden_tool_becomes_apology(self, orchestrator, store, student) -> None:
        gen = ToolCall(id="c3", name="generate_practice_questions", arguments={"courseId": "C1", "moduleId": "M1"})
        with patch("lms_agent.agent.graph.call_chat_model", return_value=_calls(gen)) as mock_llm:
            result = orchestrator.run_turn(TurnRequest(agent_name="content_helper", message="quiz me"), student)
        assert mock_llm.call_count == 1
        assert result.reply.startswith("I encountered an error while using a tool: ")
        assert "not allowed" in result.reply
        assert result.tool_calls is None
        assert store.list_messages(result.conversation_id)[1]["content"] == result.reply

    def test_invalid_tool_output_becomes_apology(self, orchestrator, store, instructor) -> None:
        gen = ToolCall(id="c5", name="generate_practice_questions", arguments={"courseId": "C1", "moduleId": "M1"})
        fenced = _text('```json\n{"questions": [{"prompt": "Q", "answer": "A"},]}\n```')
        with patch("lms_agent.agent.graph.call_chat_model", return_value=_calls(gen)) as mock_llm, patch(
            "lms_agent.agent.tools.call_chat_model", return_value=fenced
        ):
            result = orchestrator.run_turn(TurnRequest(agent_name="content_helper", message="quiz me"), instructor)
        assert mock_llm.call_count == 1
        assert result.reply == (
            "I encountered an error while using a tool: "
            "The assistant produced output in an unexpected format. Please try again."
        )
        assert len(store.list_messages(result.conversation_id)) == 2

    def test_unknown_tool_becomes_apology(self, orchestrator, student) -> None:
        bogus = ToolCall(id="c4", name="drop_tables", arguments={})
        with patch("lms_agent.agent.graph.call_chat_model", return_value=_calls(bogus)):
            result = orchestrator.run_turn(TurnRequest(agent_name="content_helper", message="x"), student)
        assert result.reply == "I encountered an error while using a tool: Unknown tool: drop_tables"

    def test_unexpected_tool_crash_becomes_generic_apology(self, orchestrator, student) -> None:
        with patch("lms_agent.agent.graph.call_chat_model", return_value=_calls(SEARCH)), patch(
            "lms_agent.agent.graph.execute_tool", side_effect=RuntimeError("db exploded")
        ):
            result = orchestrator.run_turn(TurnRequest(agent_name="content_helper", message="x"), student)
        assert result.reply == "I encountered an error while using a tool: an unexpected error occurred."
        assert "exploded" not in result.reply

    def test_malformed_tool_arguments_become_apology(self, orchestrator, store, student) -> None:
        with patch(
            "lms_agent.agent.graph.call_chat_model",
            side_effect=InvalidArgumentsError("The model sent malformed arguments for tool 'search_course_content'."),
        ):
            result = orchestrator.run_turn(TurnRequest(agent_name="content_helper", message="x"), student)
        assert result.reply.startswith("I encountered an error while using a tool: ")
        assert len(store.list_messages(result.conversation_id)) == 2

    def test_second_call_failure_becomes_apology(self, orchestrator, student) -> None:
        with patch(
            "lms_agent.agent.graph.call_chat_model",
            side_effect=[_calls(SEARCH), ModelUnavailableError("The language model is currently unavailable.")],
        ):
            result = orchestrator.run_turn(TurnRequest(agent_name="content_helper", message="x"), student)
        assert result.reply == "I encountered an error while using a tool: The language model is currently unavailable."


class TestFailures:
    def test_unknown_agent_persists_nothing(self, orchestrator, store, student) -> None:
        with patch("lms_agent.agent.graph.call_chat_model") as mock_llm:
            with pytest.raises(UnknownAgentError):
                orchestrator.run_turn(TurnRequest(agent_name="ghost", message="hi"), student)
        mock_llm.assert_not_called()
        assert _count(store, "conversations") == 0
        assert _count(store, "messages") == 0

    def test_foreign_conversation_is_not_found(self, orchestrator, store, student, outsider) -> None:
        with patch("lms_agent.agent.graph.call_chat_model", return_value=_text("mine")):
            mine = orchestrator.run_turn(TurnRequest(agent_name="content_helper", message="hi"), student)
        with patch("lms_agent.agent.graph.call_chat_model") as mock_llm:
            with pytest.raises(NotFoundError):
                orchestrator.run_turn(
                    TurnRequest(agent_name="content_helper", message="peek", conversation_id=mine.conversation_id),
                    outsider,
                )
        mock_llm.assert_not_called()
        assert len(store.list_messages(mine.conversation_id)) == 2

    def test_conversation_of_another_agent_is_not_found(self, orchestrator, store, student) -> None:
        other = store.get_or_create_agent(
            name="legacy_helper",
            description="Retired agent.",
            default_model="gpt-4-turbo",
            context_policy={"maxContextTokens": 1000, "retrievalTopK": 1},
            ui_surfaces="side_panel",
            target_roles="student",
        )
        conversation = store.create_conversation("u-student", other["id"], "gpt-4-turbo", {"courseId": None})
        with patch("lms_agent.agent.graph.call_chat_model") as mock_llm:
            with pytest.raises(NotFoundError):
                orchestrator.run_turn(
                    TurnRequest(agent_name="content_helper", message="hi", conversation_id=conversation["id"]), student
                )
        mock_llm.assert_not_called()
        assert store.list_messages(conversation["id"]) == []

    def test_failure_is_logged_with_turn_context(self, orchestrator, store, student, caplog) -> None:
        with patch("lms_agent.agent.graph.call_chat_model", side_effect=ModelUnavailableError("down")):
            with caplog.at_level(logging.WARNING, logger="lms_agent.agent.graph"):
                with pytest.raises(ModelUnavailableError):
                    orchestrator.run_turn(TurnRequest(agent_name="content_helper", message="hi"), student)
        conversation_id = store._fetch_one("SELECT id FROM conversations")["id"]
        failures = [r.getMessage() for r in caplog.records if "[graph:run_turn] failed" in r.getMessage()]
        assert len(failures) == 1
        line = failures[0]
        assert "code=model_unavailable" in line
        assert "user=u-student" in line and "tenant=t1" in line and "agent=content_helper" in line
        assert f"conversation={conversation_id}" in line

    def test_unexpected_store_error_is_logged_and_raised(self, orchestrator, store, student, caplog) -> None:
        with patch.object(store, "list_recent_messages", side_effect=RuntimeError("disk gone")):
            with caplog.at_level(logging.ERROR, logger="lms_agent.agent.graph"):
                with pytest.raises(RuntimeError):
                    orchestrator.run_turn(TurnRequest(agent_name="content_helper", message="hi"), student)
        crashed = [r for r in caplog.records if "[graph:run_turn] crashed" in r.getMessage()]
        assert len(crashed) == 1
        assert "user=u-student" in crashed[0].getMessage()
        assert crashed[0].exc_info is not None

    def test_missing_conversation_is_not_found(self, orchestrator, student) -> None:
        with pytest.raises(NotFoundError):
            orchestrator.run_turn(
                TurnRequest(agent_name="content_helper", message="hi", conversation_id="does-not-exist"), student
            )

    def test_model_unavailable_leaves_no_messages(self, orchestrator, store, student) -> None:
        with patch(
            "lms_agent.agent.graph.call_chat_model",
            side_effect=ModelUnavailableError("The language model timed out. Please try again."),
        ):
            with pytest.raises(ModelUnavailableError):
                orchestrator.run_turn(TurnRequest(agent_name="content_helper", message="hi"), student)
        assert _count(store, "messages") == 0

    def test_overlapping_turn_is_rejected(self, orchestrator, store, student) -> None:
        with patch("lms_agent.agent.graph.call_chat_model", return_value=_text("ok")):
            first = orchestrator.run_turn(TurnRequest(agent_name="content_helper", message="hi"), student)
            with conversation_turn(first.conversation_id):
                with pytest.raises(ConversationBusyError):
                    orchestrator.run_turn(
                        TurnRequest(agent_name="content_helper", message="again", conversation_id=first.conversation_id),
                        student,
                    )
        assert in_flight_count() == 0
        assert len(store.list_messages(first.conversation_id)) == 2


def test_tool_failure_reply_hides_unexpected_detail() -> None:
    assert tool_failure_reply(NotFoundError("Module not found or access denied.")) == (
        "I encountered an error while using a tool: Module not found or access denied."
    )
    assert tool_failure_reply(ValueError("secret")).endswith("an unexpected error occurred.")
