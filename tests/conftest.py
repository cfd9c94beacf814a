"""Shared test fixtures for the itemkb test suite.

Design:
- Every test gets its own SQLite file via ITEMKB_DB_PATH in tmp_path
- LLM API keys are stripped so enrichment always takes the keyword-frequency
  path unless a test patches the client in
- Async tests use pytest-asyncio with function scope
"""

import logging
from pathlib import Path

import pytest
from click.testing import CliRunner

from itemkb import core
from itemkb.ai.metadata_store import MetadataStore
from itemkb.db import Database
from itemkb.store import ItemStore

_ENV_VARS = (
    "ANTHROPIC_API_KEY",
    "OPENROUTER_API_KEY",
    "ITEMKB_LLM_PROVIDER",
    "ITEMKB_LLM_MODEL",
    "ITEMKB_ENRICHMENT",
    "ITEMKB_ENRICHMENT_TIMEOUT",
    "ITEMKB_LOG_LEVEL",
    "ITEMKB_QUIET",
)


# ─────────────────────────────────────────────────────────────────────────────
# Isolation
# ─────────────────────────────────────────────────────────────────────────────


@pytest.fixture(autouse=True)
def isolated_env(tmp_path: Path, monkeypatch):
    """Point itemkb at a throwaway database and away from real LLM keys."""
    for name in _ENV_VARS:
        monkeypatch.delenv(name, raising=False)
    monkeypatch.setenv("ITEMKB_DB_PATH", str(tmp_path / "items.db"))
    # Keep .kbconfig discovery inside tmp_path
    workdir = tmp_path / "work"
    workdir.mkdir()
    monkeypatch.chdir(workdir)

    core.reset_state()
    yield
    core.reset_state()


@pytest.fixture(autouse=True)
def reset_package_logger():
    """Undo configure_logging() so handlers don't leak between CliRunner runs."""
    yield
    package_logger = logging.getLogger("itemkb")
    for handler in list(package_logger.handlers):
        package_logger.removeHandler(handler)
    package_logger.propagate = True
    package_logger.setLevel(logging.NOTSET)


# ─────────────────────────────────────────────────────────────────────────────
# Core Fixtures
# ─────────────────────────────────────────────────────────────────────────────


@pytest.fixture
def database(tmp_path: Path) -> Database:
    return Database(tmp_path / "items.db")


@pytest.fixture
def store(database: Database) -> ItemStore:
    return ItemStore(database)


@pytest.fixture
def metadata_store(database: Database) -> MetadataStore:
    return MetadataStore(database)


@pytest.fixture
def runner() -> CliRunner:
    return CliRunner()


# ─────────────────────────────────────────────────────────────────────────────
# Helper Functions (for test code, not fixtures)
# ─────────────────────────────────────────────────────────────────────────────


def make_item(store: ItemStore, title: str = "Item", item_type: str = "knowledge", **fields):
    """Insert an item directly through the store (no enrichment).

    Usage in tests:
        from conftest import make_item
        item = make_item(store, "Graph notes", content="graph database")
    """
    return store.create({"type": item_type, "title": title, **fields})
