"""
In-process guard against overlapping turns on one conversation.

Message ordering within a conversation is whatever order the writes land in,
so only one turn per conversation may be in flight. This registry enforces it
per process; across processes it remains a client-side constraint.
"""

import logging
import threading
from contextlib import contextmanager
from typing import Iterator

from lms_agent.core.errors import ConversationBusyError

logger = logging.getLogger(__name__)

_in_flight: set[str] = set()
_lock = threading.Lock()


@contextmanager
def conversation_turn(conversation_id: str | None) -> Iterator[None]:
    """Hold the conversation for one turn. New conversations (no id) are never contended."""
    if not conversation_id:
        yield
        return
    with _lock:
        if conversation_id in _in_flight:
            logger.info("[turn_guard] reject overlapping turn conversation=%s", conversation_id)
            raise ConversationBusyError("A reply is already being generated for this conversation.")
        _in_flight.add(conversation_id)
    try:
        yield
    finally:
        with _lock:
            _in_flight.discard(conversation_id)


def in_flight_count() -> int:
    with _lock:
        return len(_in_flight)
