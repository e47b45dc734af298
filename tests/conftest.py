"""Shared pytest fixtures for the test suite.

Provides common fixtures (crm_database, db_session, encryption_key) used
across multiple test modules.  Schemas are always created through
``crm_db.init_db`` so the tests exercise the same bootstrap as callers.
"""

import sys
from pathlib import Path

import pytest

# Ensure project root is on sys.path for imports
PROJECT_ROOT = Path(__file__).resolve().parents[1]
if str(PROJECT_ROOT) not in sys.path:
    sys.path.insert(0, str(PROJECT_ROOT))

from leaddesk.helpers import crm_db  # noqa: E402

TEST_ENCRYPTION_KEY = "test-master-secret"


@pytest.fixture
def encryption_key(monkeypatch):
    """Set a test ENCRYPTION_KEY for the duration of one test."""
    monkeypatch.setenv("ENCRYPTION_KEY", TEST_ENCRYPTION_KEY)
    return TEST_ENCRYPTION_KEY


@pytest.fixture
def crm_database(monkeypatch):
    """Restore the module-level session factory after each test."""
    monkeypatch.setattr(crm_db, "_SessionLocal", None)
    yield crm_db


@pytest.fixture
def db_session(crm_database):
    """Provide a session on a fresh in-memory database built by init_db()."""
    crm_database.init_db("sqlite://")
    session = crm_database._SessionLocal()

    yield session

    session.close()
    session.get_bind().dispose()
