#!/usr/bin/env python3
"""
Seed the SQLite DB with a demo tenant for local runs.

Creates the DB at LMS_AGENT_DB_PATH (default data/lms_agent.db) if missing and
inserts one tenant with a course, a module, pages, an assignment, and
memberships for a student and an instructor. Use --reset to clear existing
rows first.

Run from project root:

    python scripts/seed_demo_db.py
    python scripts/seed_demo_db.py --reset

Then call the API with headers X-User-Id: u-student (or u-instructor),
X-Tenant-Id: t-demo, X-User-Role: student (or instructor).
"""

import argparse
import sys
from pathlib import Path

# Project root on path so "lms_agent" resolves
_ROOT = Path(__file__).resolve().parent.parent
if str(_ROOT) not in sys.path:
    sys.path.insert(0, str(_ROOT))

from lms_agent.core.config import DB_PATH
from lms_agent.core.store import SQLiteStore

TENANT_ID = "t-demo"

SEED_PAGES = [
    ("Intro", "Welcome to machine learning basics. This course covers supervised and unsupervised learning."),
    ("Linear Regression", "Linear regression fits a line to data by minimizing squared error."),
    ("Gradient Descent", "Gradient descent updates parameters in the direction that reduces the loss."),
]


def main() -> None:
    parser = argparse.ArgumentParser(description="Seed the demo tenant.")
    parser.add_argument(
        "--reset",
        action="store_true",
        help="Clear all existing rows before inserting seed data.",
    )
    args = parser.parse_args()

    store = SQLiteStore(DB_PATH)
    if args.reset:
        store.clear_all()
        print("Cleared existing rows.")

    course = store.create_course(TENANT_ID, "Machine Learning 101", course_id="C1")
    module = store.create_module(course["id"], "Week 1: Foundations", module_id="M1")
    for i, (title, body) in enumerate(SEED_PAGES, start=1):
        store.create_page(course["id"], title, body, module_id=module["id"], page_id=f"P{i}")
        print(f"  added page: {title}")
    store.create_assignment(
        module["id"],
        "Problem Set 1",
        "Fit a linear regression model to the housing dataset.",
        "2026-11-01T23:59:00+00:00",
        assignment_id="A1",
    )
    store.add_membership(course["id"], "u-student", "student")
    store.add_membership(course["id"], "u-instructor", "instructor")

    print(f"Done. Seeded tenant {TENANT_ID} with course {course['id']} at {store.db_path}.")


if __name__ == "__main__":
    main()
