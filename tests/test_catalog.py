"""
Tests for the agent catalog and the tool catalog lookups.
"""

import pytest

from lms_agent.agent.catalog import AGENTS, ContextType, Role, get_agent, list_agents, parse_roles
from lms_agent.agent.tools import (
    TOOLS,
    ToolExecutionContext,
    ToolName,
    contextual_tools,
    definitions_for,
    get_tool,
    list_tools,
    role_allowed,
    tools_for_role,
)


class TestAgentCatalog:
    def test_content_helper_definition(self) -> None:
        agent = get_agent("content_helper")
        assert agent is not None
        assert agent.default_model == "gpt-4-turbo"
        assert agent.context_policy.max_context_tokens == 8000
        assert agent.context_policy.retrieval_top_k == 3
        assert agent.ui_surfaces == frozenset({"side_panel"})
        assert agent.target_roles == frozenset({Role.STUDENT, Role.INSTRUCTOR})

    def test_unknown_agent_is_none(self) -> None:
        assert get_agent("nope") is None
        assert get_agent("") is None

    def test_catalog_is_read_only(self) -> None:
        with pytest.raises(TypeError):
            AGENTS["rogue"] = AGENTS["content_helper"]  # type: ignore[index]

    def test_list_agents(self) -> None:
        assert [a.name for a in list_agents()] == ["content_helper"]

    def test_parse_roles(self) -> None:
        assert parse_roles(" student , instructor ") == frozenset({Role.STUDENT, Role.INSTRUCTOR})
        assert parse_roles("") == frozenset()


class TestToolCatalog:
    def test_every_tool_name_has_a_definition(self) -> None:
        assert set(TOOLS) == {n.value for n in ToolName}
        assert [t.name for t in list_tools()] == [n.value for n in ToolName]

    def test_unknown_tool_is_none(self) -> None:
        assert get_tool("delete_everything") is None

    def test_input_schema_uses_wire_names(self) -> None:
        schema = get_tool("generate_practice_questions").input_schema
        assert set(schema["properties"]) == {"courseId", "moduleId", "questionCount"}
        assert set(schema["required"]) == {"courseId", "moduleId"}
        count = schema["properties"]["questionCount"]
        assert count["minimum"] == 1 and count["maximum"] == 20 and count["default"] == 5

    def test_permissions(self) -> None:
        gen = get_tool("generate_practice_questions")
        assert role_allowed(gen, Role.INSTRUCTOR)
        assert not role_allowed(gen, Role.STUDENT)
        assert not role_allowed(gen, "janitor")
        assert role_allowed(get_tool("summarize_module"), "student")

    def test_tools_for_role(self) -> None:
        assert {t.name for t in tools_for_role(Role.STUDENT)} == {"search_course_content", "summarize_module"}
        assert len(tools_for_role(Role.INSTRUCTOR)) == 3
        assert tools_for_role(Role.ADMIN) == []

    def test_definitions_for_agent(self) -> None:
        assert len(definitions_for("content_helper")) == 3
        assert definitions_for("unknown_agent") == []

    def test_contextual_tools_filters_by_context(self) -> None:
        student_module = contextual_tools("content_helper", Role.STUDENT, ContextType.MODULE_PAGE)
        assert [t.name for t in student_module] == ["summarize_module"]
        instructor_module = contextual_tools("content_helper", Role.INSTRUCTOR, "module_page")
        assert [t.name for t in instructor_module] == ["generate_practice_questions", "summarize_module"]
        assert contextual_tools("content_helper", Role.STUDENT, "no_such_context") == []

    def test_execution_context_coerces_role(self) -> None:
        ctx = ToolExecutionContext(user_id="u", tenant_id="t", role="instructor")
        assert ctx.role is Role.INSTRUCTOR
        with pytest.raises(ValueError):
            ToolExecutionContext(user_id="u", tenant_id="t", role="janitor")
