"""
Agent tools: catalog, permission checks, and execution.

Tools: search_course_content, generate_practice_questions, summarize_module.

Each tool declares a strict pydantic input model (its JSON schema is what the
model sees), the roles allowed to run it, and the UI contexts it applies to.
execute_tool() resolves, gates by role, validates arguments, and dispatches
through a closed ToolName -> implementation table.
"""

import logging
from dataclasses import dataclass
from enum import Enum
from types import MappingProxyType
from typing import Any, Callable, TypeVar

from pydantic import BaseModel, ConfigDict, Field, TypeAdapter, ValidationError

from lms_agent.agent.catalog import ContextType, Role, parse_context_types, parse_roles
from lms_agent.agent.llm import ChatTurn, call_chat_model
from lms_agent.core.config import SEARCH_RESULT_LIMIT
from lms_agent.core.errors import (
    ForbiddenError,
    InvalidArgumentsError,
    InvalidToolOutputError,
    NotFoundError,
    UnknownToolError,
)
from lms_agent.core.store import SQLiteStore
from lms_agent.services.text_processing import make_snippet, strip_code_fence

logger = logging.getLogger(__name__)

T = TypeVar("T", bound=BaseModel)


class ToolName(str, Enum):
    SEARCH_COURSE_CONTENT = "search_course_content"
    GENERATE_PRACTICE_QUESTIONS = "generate_practice_questions"
    SUMMARIZE_MODULE = "summarize_module"


class LatencyClass(str, Enum):
    SYNC = "sync"
    ASYNC = "async"


@dataclass(frozen=True)
class ToolExecutionContext:
    """Who is calling. Built per request from the authenticated identity; never persisted."""

    user_id: str
    tenant_id: str
    role: Role

    def __post_init__(self) -> None:
        object.__setattr__(self, "role", Role(self.role))


# --- Input / output shapes ---

class _StrictModel(BaseModel):
    model_config = ConfigDict(strict=True, populate_by_name=True, extra="ignore")


class SearchCourseContentInput(_StrictModel):
    course_id: str = Field(..., alias="courseId", min_length=1, description="The ID of the course to search within")
    query: str = Field(..., min_length=1, description="The search query to find relevant pages")


class SearchResult(_StrictModel):
    page_id: str = Field(..., alias="pageId")
    title: str
    snippet: str


class GeneratePracticeQuestionsInput(_StrictModel):
    course_id: str = Field(..., alias="courseId", min_length=1, description="The ID of the course")
    module_id: str = Field(..., alias="moduleId", min_length=1, description="The ID of the module to generate questions for")
    question_count: int = Field(
        5, alias="questionCount", ge=1, le=20, description="Number of practice questions to generate"
    )


class PracticeQuestion(_StrictModel):
    prompt: str = Field(..., min_length=1)
    answer: str = Field(..., min_length=1)


class PracticeQuestions(_StrictModel):
    questions: list[PracticeQuestion]


class SummarizeModuleInput(_StrictModel):
    module_id: str = Field(..., alias="moduleId", min_length=1, description="The ID of the module to summarize")


class ModuleSummary(_StrictModel):
    summary: str = Field(..., min_length=1, description="The generated study guide summary")


@dataclass(frozen=True)
class ToolDefinition:
    id: str
    name: str
    display_name: str
    description: str
    input_model: type[BaseModel]
    output_schema: dict[str, Any]
    permissions_required: frozenset[Role]
    context_types: frozenset[ContextType]
    latency_class: LatencyClass

    @property
    def input_schema(self) -> dict[str, Any]:
        return self.input_model.model_json_schema(by_alias=True)


def _definition(
    name: ToolName,
    display_name: str,
    description: str,
    input_model: type[BaseModel],
    output_schema: dict[str, Any],
    permissions: str,
    contexts: str,
) -> ToolDefinition:
    return ToolDefinition(
        id=name.value,
        name=name.value,
        display_name=display_name,
        description=description,
        input_model=input_model,
        output_schema=output_schema,
        permissions_required=parse_roles(permissions),
        context_types=parse_context_types(contexts),
        latency_class=LatencyClass.SYNC,
    )


TOOLS: MappingProxyType = MappingProxyType({
    t.name: t
    for t in (
        _definition(
            ToolName.SEARCH_COURSE_CONTENT,
            "Search course content",
            "Searches pages in the current course by query and returns snippets.",
            SearchCourseContentInput,
            TypeAdapter(list[SearchResult]).json_schema(by_alias=True),
            "student,instructor",
            "course_page",
        ),
        _definition(
            ToolName.GENERATE_PRACTICE_QUESTIONS,
            "Generate practice questions",
            "Generate practice questions based on pages in a module.",
            GeneratePracticeQuestionsInput,
            PracticeQuestions.model_json_schema(by_alias=True),
            "instructor",
            "course_page,module_page",
        ),
        _definition(
            ToolName.SUMMARIZE_MODULE,
            "Summarize Module",
            "Summarize the pages and assignments in a module into a study guide.",
            SummarizeModuleInput,
            ModuleSummary.model_json_schema(by_alias=True),
            "student,instructor",
            "module_page",
        ),
    )
})

# Agents not listed here offer no tools
AGENT_TOOLS: MappingProxyType = MappingProxyType({
    "content_helper": (
        ToolName.SEARCH_COURSE_CONTENT,
        ToolName.GENERATE_PRACTICE_QUESTIONS,
        ToolName.SUMMARIZE_MODULE,
    ),
})


def get_tool(name: str) -> ToolDefinition | None:
    return TOOLS.get(name)


def list_tools() -> list[ToolDefinition]:
    return list(TOOLS.values())


def definitions_for(agent_name: str) -> list[ToolDefinition]:
    return [TOOLS[n.value] for n in AGENT_TOOLS.get(agent_name, ())]


def role_allowed(tool: ToolDefinition, role: Role | str) -> bool:
    """Empty permissions_required means unrestricted."""
    if not tool.permissions_required:
        return True
    try:
        return Role(role) in tool.permissions_required
    except ValueError:
        return False


def _context_allowed(tool: ToolDefinition, context_type: ContextType | str) -> bool:
    try:
        return ContextType(context_type) in tool.context_types
    except ValueError:
        return False


def tools_for_role(role: Role | str) -> list[ToolDefinition]:
    return [t for t in list_tools() if role_allowed(t, role)]


def contextual_tools(
    agent_name: str,
    role: Role | str,
    context_type: ContextType | str | None = None,
) -> list[ToolDefinition]:
    """Agent's tools the role may run, narrowed to a UI context when one is given."""
    tools = [t for t in definitions_for(agent_name) if role_allowed(t, role)]
    if context_type:
        tools = [t for t in tools if _context_allowed(t, context_type)]
    return tools


# --- Output decoding ---

def decode_tool_output(raw: str, model: type[T]) -> T:
    """Parse model text (optionally fenced) as JSON matching `model`."""
    text = strip_code_fence(raw)
    try:
        return model.model_validate_json(text)
    except ValidationError as e:
        logger.warning("[tools:decode_tool_output] %s rejected: %d errors", model.__name__, e.error_count())
        raise InvalidToolOutputError(
            "The assistant produced output in an unexpected format. Please try again."
        ) from e


def _validate_arguments(tool: ToolDefinition, arguments: Any) -> BaseModel:
    if not isinstance(arguments, dict):
        raise InvalidArgumentsError(f"Arguments for {tool.name} must be an object.")
    try:
        return tool.input_model.model_validate(arguments)
    except ValidationError as e:
        first = e.errors()[0]
        field = ".".join(str(p) for p in first.get("loc", ())) or None
        raise InvalidArgumentsError(
            f"Invalid argument {field or 'payload'} for {tool.name}: {first.get('msg', 'invalid value')}",
            field=field,
        ) from e


# --- Implementations ---

def _require_course(store: SQLiteStore, course_id: str, ctx: ToolExecutionContext) -> dict[str, Any]:
    course = store.get_course(course_id, ctx.tenant_id)
    if course is None:
        raise NotFoundError("Course not found or access denied.")
    return course


def _pages_block(pages: list[dict[str, Any]]) -> str:
    out = ""
    for page in pages:
        out += f"Page Title: {page['title']}\n"
        out += f"Content:\n{page['body_markdown']}\n\n"
        out += "---\n\n"
    return out


def _search_course_content(args: SearchCourseContentInput, ctx: ToolExecutionContext, store: SQLiteStore) -> list[dict]:
    _require_course(store, args.course_id, ctx)
    needle = args.query.lower()
    results: list[dict] = []
    for page in store.list_pages(ctx.tenant_id, course_id=args.course_id):
        body = page["body_markdown"] or ""
        if needle not in body.lower():
            continue
        result = SearchResult(page_id=page["id"], title=page["title"], snippet=make_snippet(body, args.query))
        results.append(result.model_dump(by_alias=True))
        if len(results) >= SEARCH_RESULT_LIMIT:
            break
    logger.info("[tools:search_course_content] course=%s results=%d", args.course_id, len(results))
    return results


def _generate_practice_questions(
    args: GeneratePracticeQuestionsInput, ctx: ToolExecutionContext, store: SQLiteStore
) -> dict:
    _require_course(store, args.course_id, ctx)
    module = store.get_module(args.module_id, course_id=args.course_id)
    if module is None:
        raise NotFoundError("Module not found or does not belong to the specified course.")
    pages = store.list_module_pages(args.module_id)
    if not pages:
        raise NotFoundError("No pages found in this module.")

    content = f"Module: {module['name']}\n\n" + _pages_block(pages)
    system_prompt = (
        "You are an assistant that generates practice questions for a course module.\n"
        f"Given the module content below, generate {args.question_count} question-answer pairs "
        "that help a student practice the material.\n"
        'Return ONLY JSON of the form { "questions": [ { "prompt": "...", "answer": "..." }, ... ] }.\n'
        "Make the questions specific, relevant, and educational. The answers should be clear and concise."
    )
    response = call_chat_model(system_prompt, [ChatTurn(role="user", content=content)])
    parsed = decode_tool_output(response.content, PracticeQuestions)
    logger.info("[tools:generate_practice_questions] module=%s questions=%d", args.module_id, len(parsed.questions))
    return parsed.model_dump(by_alias=True)


def _summarize_module(args: SummarizeModuleInput, ctx: ToolExecutionContext, store: SQLiteStore) -> dict:
    module = store.get_module(args.module_id)
    if module is None or module["course_tenant_id"] != ctx.tenant_id:
        raise NotFoundError("Module not found or access denied.")
    if store.get_membership(module["course_id"], ctx.user_id) is None:
        raise NotFoundError("Module not found or access denied.")

    pages = store.list_module_pages(args.module_id)
    assignments = store.list_module_assignments(args.module_id)
    content = f"Module: {module['name']}\nCourse: {module['course_title']}\n\n"
    if pages:
        content += "=== PAGES ===\n\n" + _pages_block(pages)
    else:
        content += "No pages in this module.\n\n"
    if assignments:
        content += "=== ASSIGNMENTS ===\n\n"
        for a in assignments:
            content += f"Assignment: {a['name']}\n"
            content += f"Description: {a['description']}\n"
            content += f"Due Date: {a['due_at']}\n\n"
            content += "---\n\n"
    else:
        content += "No assignments in this module.\n\n"

    system_prompt = (
        "You are an assistant summarizing a course module. Create a concise study guide covering "
        "the key points and assignments. Use clear paragraphs and bullet points where appropriate.\n"
        'Return ONLY JSON of the form { "summary": "..." }.'
    )
    response = call_chat_model(system_prompt, [ChatTurn(role="user", content=content)])
    parsed = decode_tool_output(response.content, ModuleSummary)
    logger.info("[tools:summarize_module] module=%s summary_len=%d", args.module_id, len(parsed.summary))
    return parsed.model_dump(by_alias=True)


_IMPLEMENTATIONS: MappingProxyType = MappingProxyType({
    ToolName.SEARCH_COURSE_CONTENT: _search_course_content,
    ToolName.GENERATE_PRACTICE_QUESTIONS: _generate_practice_questions,
    ToolName.SUMMARIZE_MODULE: _summarize_module,
})

if set(_IMPLEMENTATIONS) != set(ToolName) or set(TOOLS) != {n.value for n in ToolName}:
    raise RuntimeError("every ToolName needs exactly one definition and one implementation")


def execute_tool(
    name: str,
    arguments: Any,
    ctx: ToolExecutionContext,
    store: SQLiteStore,
) -> Any:
    """
    Run a tool for the caller. Returns JSON-serializable data.
    Raises UnknownToolError, ForbiddenError, InvalidArgumentsError, NotFoundError,
    InvalidToolOutputError, or ModelUnavailableError.
    """
    logger.info("[tools:execute_tool] IN  name=%r user=%s tenant=%s role=%s", name, ctx.user_id, ctx.tenant_id, ctx.role.value)
    tool = get_tool(name)
    if tool is None:
        raise UnknownToolError(f"Unknown tool: {name}")
    if not role_allowed(tool, ctx.role):
        logger.info("[tools:execute_tool] forbidden name=%s role=%s", name, ctx.role.value)
        raise ForbiddenError(f"Your role is not allowed to use {tool.display_name}.")
    args = _validate_arguments(tool, arguments)
    impl: Callable[..., Any] = _IMPLEMENTATIONS[ToolName(tool.name)]
    result = impl(args, ctx, store)
    logger.info("[tools:execute_tool] OUT name=%s", name)
    return result
