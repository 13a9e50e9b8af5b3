"""Pytest configuration and fixtures."""

import os
from contextlib import ExitStack
from unittest.mock import patch

import pytest

from tests.fakes.fake_supabase import FakeSupabase

DB_MODULES = [
    "appeals",
    "audit_log",
    "complaints",
    "conversations",
    "documents",
    "job_queue",
    "kb_staging",
    "knowledge_base",
    "letters",
    "precedents",
    "subscriptions",
    "time_logs",
]


@pytest.fixture(scope="session", autouse=True)
def setup_test_env():
    """Set up test environment variables."""
    os.environ["SUPABASE_URL"] = "https://test.supabase.co"
    os.environ["SUPABASE_SERVICE_ROLE_KEY"] = "test-key"
    os.environ["OPENAI_API_KEY"] = "test-openai-key"
    os.environ["OPENROUTER_API_KEY"] = "test-openrouter-key"
    os.environ["LIGHTPOINT_ENV"] = "test"


@pytest.fixture
def fake_supabase() -> FakeSupabase:
    """Empty in-memory Supabase client."""
    return FakeSupabase()


@pytest.fixture
def db(fake_supabase):
    """Route every db module's client to the in-memory fake."""
    with ExitStack() as stack:
        for module in DB_MODULES:
            stack.enter_context(
                patch(f"app.db.{module}.get_supabase", return_value=fake_supabase)
            )
        yield fake_supabase
