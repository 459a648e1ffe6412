"""Pytest collection helpers for backend test runs.

Kept at the backend/ root so pytest loads it before collecting anything:
it pins the test environment before `app` is imported and keeps runtime
artefact directories (`uploads`) out of collection.
"""
import os
from pathlib import Path

import pytest

# Settings are read at import time
os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite:///:memory:")
os.environ.setdefault("TESTING", "true")
os.environ.setdefault("REDIS_ENABLED", "false")

from app.core.config import settings  # noqa: E402


@pytest.fixture(scope="session", autouse=True)
def force_testing_mode():
    """Force TESTING=True early in the test session so imports can read it."""
    settings.TESTING = True
    settings.REDIS_ENABLED = False


def pytest_collection_modifyitems(items):
    """Treat legacy pytest.mark.asyncio as anyio so the tests run without pytest-asyncio."""
    for item in items:
        if "asyncio" in getattr(item, "keywords", {}):
            item.add_marker(pytest.mark.anyio)


def pytest_ignore_collect(collection_path, config):
    """Skip anything inside an `uploads` directory."""
    if "uploads" in Path(str(collection_path)).parts:
        return True
    return None


@pytest.fixture(scope="session")
def anyio_backend():
    return "asyncio"
