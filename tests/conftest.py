"""Pytest configuration for repository test runs."""

from __future__ import annotations

import pytest

from pixind.adapters.sql_store import SqlStore
from pixind.logging_config import configure_logging


def pytest_sessionstart() -> None:
    """Keep structured logs quiet unless a test fails."""
    configure_logging("WARNING")


@pytest.fixture
def store(tmp_path):
    """Fresh SQLite-backed view with schema and the global_stats row."""
    sql_store = SqlStore(f"sqlite:///{tmp_path / 'view.db'}")
    sql_store.create_schema()
    yield sql_store
    sql_store.dispose()
