"""
SQLite persistence for courses, conversations, and messages.

Stands in for the relational persistence service the agent layer talks to.
Every read that can leak content across tenants takes the tenant id and joins
through the owning course. Rows are returned as plain dicts.
"""

import json
import logging
import sqlite3
import threading
import uuid
from datetime import datetime, timezone
from pathlib import Path
from typing import Any

from lms_agent.core.config import DB_PATH

logger = logging.getLogger(__name__)

# Project root (where data/ lives)
_ROOT = Path(__file__).resolve().parent.parent.parent

_SCHEMA = """
CREATE TABLE IF NOT EXISTS courses (
    id TEXT PRIMARY KEY,
    tenant_id TEXT NOT NULL,
    title TEXT NOT NULL
);
CREATE TABLE IF NOT EXISTS modules (
    id TEXT PRIMARY KEY,
    course_id TEXT NOT NULL REFERENCES courses(id),
    name TEXT NOT NULL
);
CREATE TABLE IF NOT EXISTS pages (
    id TEXT PRIMARY KEY,
    course_id TEXT NOT NULL REFERENCES courses(id),
    module_id TEXT REFERENCES modules(id),
    title TEXT NOT NULL,
    body_markdown TEXT NOT NULL
);
CREATE TABLE IF NOT EXISTS assignments (
    id TEXT PRIMARY KEY,
    module_id TEXT NOT NULL REFERENCES modules(id),
    name TEXT NOT NULL,
    description TEXT NOT NULL,
    due_at TEXT NOT NULL
);
CREATE TABLE IF NOT EXISTS course_memberships (
    course_id TEXT NOT NULL REFERENCES courses(id),
    user_id TEXT NOT NULL,
    role TEXT NOT NULL,
    PRIMARY KEY (course_id, user_id)
);
CREATE TABLE IF NOT EXISTS agents (
    id TEXT PRIMARY KEY,
    name TEXT NOT NULL UNIQUE,
    description TEXT NOT NULL,
    default_model TEXT NOT NULL,
    context_policy TEXT NOT NULL,
    ui_surfaces TEXT NOT NULL,
    target_roles TEXT NOT NULL
);
CREATE TABLE IF NOT EXISTS conversations (
    id TEXT PRIMARY KEY,
    user_id TEXT NOT NULL,
    agent_id TEXT NOT NULL REFERENCES agents(id),
    model_version TEXT NOT NULL,
    context_snapshot TEXT NOT NULL,
    created_at TEXT NOT NULL
);
CREATE TABLE IF NOT EXISTS messages (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    conversation_id TEXT NOT NULL REFERENCES conversations(id),
    sender TEXT NOT NULL CHECK (sender IN ('user', 'agent')),
    content TEXT NOT NULL,
    created_at TEXT NOT NULL
);
CREATE INDEX IF NOT EXISTS idx_pages_course ON pages(course_id);
CREATE INDEX IF NOT EXISTS idx_messages_conversation ON messages(conversation_id, id);
"""


def _now() -> str:
    return datetime.now(timezone.utc).isoformat()


def _new_id() -> str:
    return uuid.uuid4().hex


def _row(row: sqlite3.Row | None) -> dict[str, Any] | None:
    return dict(row) if row is not None else None


class SQLiteStore:
    """Tenant-scoped lookups and append-only conversation storage."""

    def __init__(self, db_path: str | Path) -> None:
        path = Path(db_path)
        self.db_path = path if path.is_absolute() else _ROOT / path
        self.init_db()

    def _get_conn(self) -> sqlite3.Connection:
        self.db_path.parent.mkdir(parents=True, exist_ok=True)
        conn = sqlite3.connect(str(self.db_path))
        conn.row_factory = sqlite3.Row
        conn.execute("PRAGMA foreign_keys = ON")
        return conn

    def init_db(self) -> None:
        """Create tables if they do not exist."""
        conn = self._get_conn()
        try:
            conn.executescript(_SCHEMA)
            conn.commit()
        finally:
            conn.close()

    def _fetch_one(self, sql: str, params: tuple = ()) -> dict[str, Any] | None:
        conn = self._get_conn()
        try:
            return _row(conn.execute(sql, params).fetchone())
        finally:
            conn.close()

    def _fetch_all(self, sql: str, params: tuple = ()) -> list[dict[str, Any]]:
        conn = self._get_conn()
        try:
            return [dict(r) for r in conn.execute(sql, params).fetchall()]
        finally:
            conn.close()

    def _execute(self, sql: str, params: tuple = ()) -> None:
        conn = self._get_conn()
        try:
            conn.execute(sql, params)
            conn.commit()
        finally:
            conn.close()

    # --- Course content ---

    def create_course(self, tenant_id: str, title: str, course_id: str | None = None) -> dict[str, Any]:
        course = {"id": course_id or _new_id(), "tenant_id": tenant_id, "title": title}
        self._execute(
            "INSERT INTO courses (id, tenant_id, title) VALUES (?, ?, ?)",
            (course["id"], tenant_id, title),
        )
        return course

    def create_module(self, course_id: str, name: str, module_id: str | None = None) -> dict[str, Any]:
        module = {"id": module_id or _new_id(), "course_id": course_id, "name": name}
        self._execute(
            "INSERT INTO modules (id, course_id, name) VALUES (?, ?, ?)",
            (module["id"], course_id, name),
        )
        return module

    def create_page(
        self,
        course_id: str,
        title: str,
        body_markdown: str,
        module_id: str | None = None,
        page_id: str | None = None,
    ) -> dict[str, Any]:
        page = {
            "id": page_id or _new_id(),
            "course_id": course_id,
            "module_id": module_id,
            "title": title,
            "body_markdown": body_markdown,
        }
        self._execute(
            "INSERT INTO pages (id, course_id, module_id, title, body_markdown) VALUES (?, ?, ?, ?, ?)",
            (page["id"], course_id, module_id, title, body_markdown),
        )
        return page

    def create_assignment(
        self,
        module_id: str,
        name: str,
        description: str,
        due_at: str,
        assignment_id: str | None = None,
    ) -> dict[str, Any]:
        assignment = {
            "id": assignment_id or _new_id(),
            "module_id": module_id,
            "name": name,
            "description": description,
            "due_at": due_at,
        }
        self._execute(
            "INSERT INTO assignments (id, module_id, name, description, due_at) VALUES (?, ?, ?, ?, ?)",
            (assignment["id"], module_id, name, description, due_at),
        )
        return assignment

    def add_membership(self, course_id: str, user_id: str, role: str) -> None:
        self._execute(
            "INSERT OR REPLACE INTO course_memberships (course_id, user_id, role) VALUES (?, ?, ?)",
            (course_id, user_id, role),
        )

    def get_course(self, course_id: str, tenant_id: str) -> dict[str, Any] | None:
        """Return the course only if it belongs to the tenant."""
        return self._fetch_one(
            "SELECT id, tenant_id, title FROM courses WHERE id = ? AND tenant_id = ?",
            (course_id, tenant_id),
        )

    def get_page(self, page_id: str, course_id: str | None = None) -> dict[str, Any] | None:
        """Return a page by id (optionally restricted to a course). Caller checks tenant."""
        if course_id:
            return self._fetch_one(
                "SELECT id, course_id, module_id, title, body_markdown FROM pages WHERE id = ? AND course_id = ?",
                (page_id, course_id),
            )
        return self._fetch_one(
            "SELECT id, course_id, module_id, title, body_markdown FROM pages WHERE id = ?",
            (page_id,),
        )

    def list_pages(self, tenant_id: str, course_id: str | None = None) -> list[dict[str, Any]]:
        """Pages of the tenant's courses (optionally one course), in insertion order."""
        sql = (
            "SELECT p.id, p.course_id, p.module_id, p.title, p.body_markdown "
            "FROM pages p JOIN courses c ON c.id = p.course_id "
            "WHERE c.tenant_id = ?"
        )
        params: tuple = (tenant_id,)
        if course_id:
            sql += " AND p.course_id = ?"
            params = (tenant_id, course_id)
        return self._fetch_all(sql + " ORDER BY p.rowid ASC", params)

    def get_module(self, module_id: str, course_id: str | None = None) -> dict[str, Any] | None:
        """Return a module with its course's tenant and title. Caller checks tenant."""
        sql = (
            "SELECT m.id, m.course_id, m.name, c.tenant_id AS course_tenant_id, c.title AS course_title "
            "FROM modules m JOIN courses c ON c.id = m.course_id WHERE m.id = ?"
        )
        if course_id:
            return self._fetch_one(sql + " AND m.course_id = ?", (module_id, course_id))
        return self._fetch_one(sql, (module_id,))

    def list_module_pages(self, module_id: str) -> list[dict[str, Any]]:
        return self._fetch_all(
            "SELECT id, title, body_markdown FROM pages WHERE module_id = ? ORDER BY id ASC",
            (module_id,),
        )

    def list_module_assignments(self, module_id: str) -> list[dict[str, Any]]:
        return self._fetch_all(
            "SELECT id, name, description, due_at FROM assignments WHERE module_id = ? ORDER BY due_at ASC, id ASC",
            (module_id,),
        )

    def get_membership(self, course_id: str, user_id: str) -> dict[str, Any] | None:
        return self._fetch_one(
            "SELECT course_id, user_id, role FROM course_memberships WHERE course_id = ? AND user_id = ?",
            (course_id, user_id),
        )

    # --- Agents and conversations ---

    def get_or_create_agent(
        self,
        name: str,
        description: str,
        default_model: str,
        context_policy: dict[str, Any],
        ui_surfaces: str,
        target_roles: str,
    ) -> dict[str, Any]:
        """Materialize the agent row the first time a conversation references it."""
        conn = self._get_conn()
        try:
            conn.execute(
                "INSERT OR IGNORE INTO agents "
                "(id, name, description, default_model, context_policy, ui_surfaces, target_roles) "
                "VALUES (?, ?, ?, ?, ?, ?, ?)",
                (_new_id(), name, description, default_model, json.dumps(context_policy), ui_surfaces, target_roles),
            )
            conn.commit()
            row = conn.execute("SELECT id, name FROM agents WHERE name = ?", (name,)).fetchone()
        finally:
            conn.close()
        return dict(row)

    def get_agent_id(self, name: str) -> str | None:
        row = self._fetch_one("SELECT id FROM agents WHERE name = ?", (name,))
        return row["id"] if row else None

    def get_conversation(self, conversation_id: str, user_id: str) -> dict[str, Any] | None:
        """Return the conversation only if it belongs to the user."""
        row = self._fetch_one(
            "SELECT id, user_id, agent_id, model_version, context_snapshot, created_at "
            "FROM conversations WHERE id = ? AND user_id = ?",
            (conversation_id, user_id),
        )
        if row is not None:
            row["context_snapshot"] = json.loads(row["context_snapshot"])
        return row

    def create_conversation(
        self,
        user_id: str,
        agent_id: str,
        model_version: str,
        context_snapshot: dict[str, Any],
    ) -> dict[str, Any]:
        conversation = {
            "id": _new_id(),
            "user_id": user_id,
            "agent_id": agent_id,
            "model_version": model_version,
            "context_snapshot": dict(context_snapshot),
            "created_at": _now(),
        }
        self._execute(
            "INSERT INTO conversations (id, user_id, agent_id, model_version, context_snapshot, created_at) "
            "VALUES (?, ?, ?, ?, ?, ?)",
            (
                conversation["id"],
                user_id,
                agent_id,
                model_version,
                json.dumps(conversation["context_snapshot"]),
                conversation["created_at"],
            ),
        )
        logger.info("[store] created conversation=%s agent_id=%s", conversation["id"], agent_id)
        return conversation

    def list_recent_messages(self, conversation_id: str, limit: int) -> list[dict[str, Any]]:
        """Latest `limit` messages of the conversation, oldest first."""
        rows = self._fetch_all(
            "SELECT id, conversation_id, sender, content, created_at FROM messages "
            "WHERE conversation_id = ? ORDER BY id DESC LIMIT ?",
            (conversation_id, limit),
        )
        rows.reverse()
        return rows

    def list_messages(self, conversation_id: str) -> list[dict[str, Any]]:
        return self._fetch_all(
            "SELECT id, conversation_id, sender, content, created_at FROM messages "
            "WHERE conversation_id = ? ORDER BY id ASC",
            (conversation_id,),
        )

    def append_turn(self, conversation_id: str, user_content: str, agent_content: str) -> None:
        """Write the user message and the agent reply in one transaction."""
        conn = self._get_conn()
        try:
            with conn:
                created_at = _now()
                conn.execute(
                    "INSERT INTO messages (conversation_id, sender, content, created_at) VALUES (?, 'user', ?, ?)",
                    (conversation_id, user_content, created_at),
                )
                conn.execute(
                    "INSERT INTO messages (conversation_id, sender, content, created_at) VALUES (?, 'agent', ?, ?)",
                    (conversation_id, agent_content, created_at),
                )
        finally:
            conn.close()
        logger.info("[store] appended turn conversation=%s", conversation_id)

    def update_model_version(self, conversation_id: str, model_version: str) -> None:
        self._execute(
            "UPDATE conversations SET model_version = ? WHERE id = ?",
            (model_version, conversation_id),
        )

    def clear_all(self) -> None:
        """Delete all rows. Used by the seed script's --reset."""
        conn = self._get_conn()
        try:
            with conn:
                for table in (
                    "messages",
                    "conversations",
                    "agents",
                    "course_memberships",
                    "assignments",
                    "pages",
                    "modules",
                    "courses",
                ):
                    conn.execute(f"DELETE FROM {table}")
        finally:
            conn.close()
        logger.info("[store] cleared all rows")


_store: SQLiteStore | None = None
_store_lock = threading.Lock()


def get_store() -> SQLiteStore:
    """Process-wide store at DB_PATH (FastAPI dependency; override in tests)."""
    global _store
    with _store_lock:
        if _store is None:
            _store = SQLiteStore(DB_PATH)
        return _store
