"""
Context assembly: system prompt plus a bounded block of course content.

Responsibility: Resolve the pages an agent may see for this question (an
explicitly opened page and keyword matches in the current course), scoped to
the caller's tenant, and render them into the agent's prompt template.
"""

import logging
from dataclasses import dataclass, field

from lms_agent.agent.catalog import get_agent
from lms_agent.core.config import CHARS_PER_TOKEN, NO_CONTENT_SENTINEL
from lms_agent.core.errors import UnknownAgentError
from lms_agent.core.store import SQLiteStore
from lms_agent.services.retrieval_service import KeywordRetriever, RetrievedChunk, Retriever
from lms_agent.services.text_processing import truncate

logger = logging.getLogger(__name__)

_INSTRUCTIONS = """Instructions:
- Use ONLY the provided course content below to answer the user's questions.
- Do not make up information or use external knowledge.
- When answering, cite the page titles (not IDs or URLs) where you found the information.
- If the provided content does not contain the answer, say so clearly.
- Be concise and helpful."""


@dataclass(frozen=True)
class BuiltContext:
    system_prompt: str
    context_text: str
    chunks: list[RetrievedChunk] = field(default_factory=list)


def format_context(chunks: list[RetrievedChunk], max_chars: int) -> str:
    """
    Render chunks as numbered blocks separated by blank lines, within max_chars.
    Units that do not fit are dropped; an oversized first unit is truncated.
    """
    if not chunks:
        return NO_CONTENT_SENTINEL
    blocks: list[str] = []
    used = 0
    for idx, chunk in enumerate(chunks, start=1):
        source_type = chunk.metadata.get("source_type", "Page")
        header = f"--- {source_type} {idx}: {chunk.title} ---\n"
        block = header + chunk.content
        sep = 2 if blocks else 0
        if used + sep + len(block) > max_chars:
            if not blocks:
                blocks.append(truncate(block, max_chars))
            break
        blocks.append(block)
        used += sep + len(block)
    return "\n\n".join(blocks)


def render_system_prompt(agent_name: str, description: str, context_text: str) -> str:
    return (
        f"You are the {agent_name} agent for a learning management system.\n\n"
        f"Your role: {description}\n\n"
        f"{_INSTRUCTIONS}\n\n"
        f"Course Content:\n{context_text}\n"
    )


class ContextService:
    def __init__(self, store: SQLiteStore, retriever: Retriever | None = None) -> None:
        self.store = store
        self.retriever = retriever or KeywordRetriever(store)

    def _explicit_page(self, page_id: str, course_id: str | None, tenant_id: str) -> RetrievedChunk | None:
        page = self.store.get_page(page_id, course_id=course_id)
        if page is None:
            return None
        # An explicit id never bypasses tenant scoping
        if self.store.get_course(page["course_id"], tenant_id) is None:
            logger.info("[context:explicit_page] page=%s outside tenant=%s; skipped", page_id, tenant_id)
            return None
        return RetrievedChunk(
            id=page["id"],
            content=page["body_markdown"],
            score=1.0,
            metadata={
                "title": page["title"],
                "source_type": "Page",
                "course_id": page["course_id"],
                "module_id": page["module_id"],
            },
        )

    def build_context(
        self,
        agent_name: str,
        tenant_id: str,
        user_question: str,
        course_id: str | None = None,
        page_id: str | None = None,
        module_id: str | None = None,
    ) -> BuiltContext:
        agent = get_agent(agent_name)
        if agent is None:
            raise UnknownAgentError(f"Unknown agent: {agent_name}")
        logger.info(
            "[context:build_context] IN  agent=%s tenant=%s course=%s page=%s module=%s",
            agent_name, tenant_id, course_id, page_id, module_id,
        )

        chunks: list[RetrievedChunk] = []
        if page_id:
            explicit = self._explicit_page(page_id, course_id, tenant_id)
            if explicit is not None:
                chunks.append(explicit)

        if course_id and self.store.get_course(course_id, tenant_id) is not None:
            chunks.extend(
                self.retriever.search(
                    user_question,
                    tenant_id=tenant_id,
                    course_id=course_id,
                    exclude_ids=[c.id for c in chunks],
                    top_k=agent.context_policy.retrieval_top_k,
                )
            )

        max_chars = agent.context_policy.max_context_tokens * CHARS_PER_TOKEN
        context_text = format_context(chunks, max_chars)
        system_prompt = render_system_prompt(agent.name, agent.description, context_text)
        logger.info(
            "[context:build_context] OUT units=%d context_len=%d prompt_len=%d",
            len(chunks), len(context_text), len(system_prompt),
        )
        return BuiltContext(system_prompt=system_prompt, context_text=context_text, chunks=chunks)
