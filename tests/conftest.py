"""
Shared fixtures: a throwaway SQLite store seeded with two tenants, and callers.

Tenant t1 owns course C1 (module M1 with pages P1, P2 and an assignment, plus a
loose page P3). Tenant t2 owns course C2 with page P9, which also mentions
machine learning so cross-tenant leaks are visible.
"""

import pytest

from lms_agent.agent.catalog import Role
from lms_agent.agent.tools import ToolExecutionContext
from lms_agent.core.store import SQLiteStore


@pytest.fixture
def store(tmp_path) -> SQLiteStore:
    s = SQLiteStore(tmp_path / "test.db")
    s.create_course("t1", "Machine Learning 101", course_id="C1")
    s.create_module("C1", "Week 1", module_id="M1")
    s.create_page("C1", "Intro", "Welcome to machine learning basics.", module_id="M1", page_id="P1")
    s.create_page(
        "C1",
        "Regression",
        "Linear regression fits a line by minimizing squared error.",
        module_id="M1",
        page_id="P2",
    )
    s.create_page("C1", "Syllabus", "Grading is based on weekly problem sets.", page_id="P3")
    s.create_assignment("M1", "Problem Set 1", "Fit a regression model.", "2026-11-01T23:59:00+00:00", assignment_id="A1")
    s.add_membership("C1", "u-student", "student")
    s.add_membership("C1", "u-instructor", "instructor")

    s.create_course("t2", "Other Tenant Course", course_id="C2")
    s.create_module("C2", "Other Module", module_id="M9")
    s.create_page("C2", "Secret", "Private machine learning notes for tenant two.", module_id="M9", page_id="P9")
    s.add_membership("C2", "u-other", "student")
    return s


@pytest.fixture
def student() -> ToolExecutionContext:
    return ToolExecutionContext(user_id="u-student", tenant_id="t1", role=Role.STUDENT)


@pytest.fixture
def instructor() -> ToolExecutionContext:
    return ToolExecutionContext(user_id="u-instructor", tenant_id="t1", role=Role.INSTRUCTOR)


@pytest.fixture
def outsider() -> ToolExecutionContext:
    """Student in tenant t2; must never see t1 content."""
    return ToolExecutionContext(user_id="u-other", tenant_id="t2", role=Role.STUDENT)
