"""
Dependency helpers for the FastAPI app: caller identity and shared services.

Authentication happens upstream; the auth gateway forwards the verified caller
as X-User-Id / X-Tenant-Id / X-User-Role headers.
"""

from functools import lru_cache

from fastapi import Depends, Header

from lms_agent.agent.catalog import Role
from lms_agent.agent.graph import TurnOrchestrator
from lms_agent.agent.tools import ToolExecutionContext
from lms_agent.core.errors import UnauthenticatedError
from lms_agent.core.store import SQLiteStore, get_store


def get_caller(
    user_id: str | None = Header(None, alias="X-User-Id"),
    tenant_id: str | None = Header(None, alias="X-Tenant-Id"),
    role: str | None = Header(None, alias="X-User-Role"),
) -> ToolExecutionContext:
    if not user_id or not tenant_id or not role:
        raise UnauthenticatedError("Missing authenticated identity.")
    try:
        parsed_role = Role(role.strip().lower())
    except ValueError as e:
        raise UnauthenticatedError("Unrecognized role.") from e
    return ToolExecutionContext(user_id=user_id.strip(), tenant_id=tenant_id.strip(), role=parsed_role)


@lru_cache(maxsize=8)
def _orchestrator_for(store: SQLiteStore) -> TurnOrchestrator:
    return TurnOrchestrator(store)


def get_orchestrator(store: SQLiteStore = Depends(get_store)) -> TurnOrchestrator:
    """One compiled turn graph per store."""
    return _orchestrator_for(store)
