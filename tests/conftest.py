"""
Shared test configuration and fixtures.

Provides member stores (in-memory and real in-memory SQLite), a fact
source and a wired AudienceService. The ``store`` fixture is parametrized
over both backends so behavior tests run against each of them.
"""

import logging

import pytest

from audience_members.members import AudienceService
from audience_members.sources import InMemoryFactSource
from audience_members.storage import InMemoryMemberStore, SQLiteConfig, SQLiteMemberStore

logger = logging.getLogger(__name__)


@pytest.fixture
def memory_store() -> InMemoryMemberStore:
    """Fixture providing an empty in-memory store."""
    return InMemoryMemberStore()


@pytest.fixture
async def sqlite_store():
    """Fixture providing an initialized in-memory SQLite store."""
    store = await SQLiteMemberStore.create(SQLiteConfig(db_path=":memory:"))
    yield store
    await store.close()


@pytest.fixture(params=["memory", "sqlite"])
async def store(request):
    """Fixture providing each store backend in turn."""
    if request.param == "memory":
        member_store = InMemoryMemberStore()
    else:
        member_store = await SQLiteMemberStore.create(SQLiteConfig(db_path=":memory:"))
    yield member_store
    await member_store.close()


@pytest.fixture
def fact_source() -> InMemoryFactSource:
    """Fixture providing an empty ground-truth fact source."""
    return InMemoryFactSource()


@pytest.fixture
def service(store, fact_source) -> AudienceService:
    """Fixture providing a service over the parametrized store."""
    return AudienceService(store, fact_source)
