"""
Agent catalog: the fixed table of agents users can talk to.

Built once at import into a read-only mapping. Lookups return None for unknown
names so callers pick the error shape.
"""

from dataclasses import dataclass
from enum import Enum
from types import MappingProxyType


class Role(str, Enum):
    STUDENT = "student"
    INSTRUCTOR = "instructor"
    ADMIN = "admin"


class ContextType(str, Enum):
    """Where in the UI a tool makes sense."""

    COURSE_PAGE = "course_page"
    MODULE_PAGE = "module_page"


def parse_roles(value: str) -> frozenset[Role]:
    """Parse a comma-separated role list ("student,instructor") into a set."""
    return frozenset(Role(part.strip()) for part in value.split(",") if part.strip())


def parse_context_types(value: str) -> frozenset[ContextType]:
    return frozenset(ContextType(part.strip()) for part in value.split(",") if part.strip())


@dataclass(frozen=True)
class ContextPolicy:
    max_context_tokens: int
    retrieval_top_k: int


@dataclass(frozen=True)
class AgentDefinition:
    name: str
    description: str
    default_model: str
    context_policy: ContextPolicy
    ui_surfaces: frozenset[str] = frozenset()
    target_roles: frozenset[Role] = frozenset()


_AGENT_TABLE = [
    {
        "name": "content_helper",
        "description": (
            "Helps students and instructors understand course pages, answer questions using "
            "course content, generate practice questions, and summarize modules."
        ),
        "default_model": "gpt-4-turbo",
        "max_context_tokens": 8000,
        "retrieval_top_k": 3,
        "ui_surfaces": "side_panel",
        "target_roles": "student,instructor",
    },
]


def _build_catalog() -> MappingProxyType:
    agents = {}
    for row in _AGENT_TABLE:
        agents[row["name"]] = AgentDefinition(
            name=row["name"],
            description=row["description"],
            default_model=row["default_model"],
            context_policy=ContextPolicy(
                max_context_tokens=row["max_context_tokens"],
                retrieval_top_k=row["retrieval_top_k"],
            ),
            ui_surfaces=frozenset(s.strip() for s in row["ui_surfaces"].split(",") if s.strip()),
            target_roles=parse_roles(row["target_roles"]),
        )
    return MappingProxyType(agents)


AGENTS = _build_catalog()


def get_agent(name: str) -> AgentDefinition | None:
    return AGENTS.get(name)


def list_agents() -> list[AgentDefinition]:
    return list(AGENTS.values())
