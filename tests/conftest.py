"""
Shared pytest fixtures.

Every test gets a clean temporary DATA_DIR via the `tmp_data_dir` fixture
so tests are fully isolated from each other and from the real analyzer.db.
Cached singletons (inference provider, search backend) are reset too.
"""
from __future__ import annotations

import asyncio
import sys
from pathlib import Path

import pytest

# ── Make the project root importable without installing the package ────────────
PROJECT_ROOT = Path(__file__).parent.parent
sys.path.insert(0, str(PROJECT_ROOT))


@pytest.fixture(autouse=True)
def tmp_data_dir(tmp_path, monkeypatch):
    """
    Redirect DATA_DIR to a fresh tmp directory for every test.
    This gives each test a clean SQLite file and prevents cross-test pollution.
    """
    data = tmp_path / "data"
    data.mkdir()
    monkeypatch.setenv("DATA_DIR", str(data))

    # Patch the module-level DB_PATH that was already computed at import time
    import database
    monkeypatch.setattr(database, "DB_PATH", str(data / "analyzer.db"))
    monkeypatch.setattr(database, "_DATA_DIR", data)
    monkeypatch.setattr(database, "_lock", asyncio.Lock())

    # Lazily-built globals must not leak between tests
    import pricing
    from providers import manager
    monkeypatch.setattr(pricing, "_backend", None)
    monkeypatch.setattr(manager, "_provider", None)

    yield data
