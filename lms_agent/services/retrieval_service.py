"""
Retrieval: lexical keyword matching over course pages.

Responsibility: Turn a free-text query into a ranked list of page chunks scoped
to the caller's tenant (and optionally one course). This is a placeholder for
semantic search; anything implementing `Retriever` can replace it without
changing the context service.
"""

import logging
from dataclasses import dataclass, field
from typing import Any, Iterable, Protocol

from lms_agent.core.config import MATCH_SCORE, MIN_KEYWORD_LENGTH
from lms_agent.core.store import SQLiteStore
from lms_agent.services.text_processing import extract_keywords

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class RetrievedChunk:
    id: str
    content: str
    score: float
    metadata: dict[str, Any] = field(default_factory=dict)

    @property
    def title(self) -> str:
        return self.metadata.get("title", "")


class Retriever(Protocol):
    def search(
        self,
        query: str,
        *,
        tenant_id: str,
        course_id: str | None = None,
        exclude_ids: Iterable[str] = (),
        top_k: int,
    ) -> list[RetrievedChunk]: ...


def rank_chunks(chunks: list[RetrievedChunk]) -> list[RetrievedChunk]:
    """Descending score; sorted() is stable so ties keep input order."""
    return sorted(chunks, key=lambda c: -c.score)


class KeywordRetriever:
    """Case-insensitive "contains any keyword" match against page bodies."""

    def __init__(self, store: SQLiteStore, min_keyword_length: int = MIN_KEYWORD_LENGTH) -> None:
        self.store = store
        self.min_keyword_length = min_keyword_length

    def search(
        self,
        query: str,
        *,
        tenant_id: str,
        course_id: str | None = None,
        exclude_ids: Iterable[str] = (),
        top_k: int,
    ) -> list[RetrievedChunk]:
        keywords = extract_keywords(query, self.min_keyword_length)
        logger.info(
            "[retrieval:search] IN  tenant=%s course=%s keywords=%d top_k=%d",
            tenant_id, course_id, len(keywords), top_k,
        )
        if not keywords or top_k <= 0:
            logger.info("[retrieval:search] OUT no keywords survived filtering")
            return []

        excluded = set(exclude_ids)
        candidates: list[RetrievedChunk] = []
        for page in self.store.list_pages(tenant_id, course_id=course_id):
            if page["id"] in excluded:
                continue
            body = page["body_markdown"] or ""
            lowered = body.lower()
            matched = [kw for kw in keywords if kw in lowered]
            if not matched:
                continue
            candidates.append(
                RetrievedChunk(
                    id=page["id"],
                    content=body,
                    score=MATCH_SCORE,
                    metadata={
                        "title": page["title"],
                        "source_type": "Page",
                        "course_id": page["course_id"],
                        "module_id": page["module_id"],
                        "matched_keywords": matched,
                    },
                )
            )
            if len(candidates) >= top_k:
                break

        ranked = rank_chunks(candidates)
        logger.info("[retrieval:search] OUT chunks=%d ids=%s", len(ranked), [c.id for c in ranked])
        return ranked
