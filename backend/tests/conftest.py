"""
Pytest configuration and fixtures for programme tests.
"""

from datetime import date

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient

from programme.config import Settings
from programme.main import app
from programme.registry import get_registry
from programme.sample import build_site_establishment
from programme.services.baseline_store import BaselineStore, QuotaPolicy
from programme.services.commands import ScheduleCommandProcessor
from programme.services.engine import EngineRegistry
from programme.services.graph import DependencyEngine
from programme.services.repository import InMemoryBaselineRepository
from programme.services.task_store import TaskStore


@pytest.fixture
def settings():
    """Defaults only: no environment or .env file."""
    return Settings(_env_file=None)


@pytest.fixture
def store():
    return TaskStore()


@pytest.fixture
def deps(store):
    return DependencyEngine(store)


@pytest.fixture
def processor(store):
    return ScheduleCommandProcessor(store)


@pytest.fixture
def sample(store):
    """The site-establishment programme; returns its task ids by short name."""
    return build_site_establishment(store)


@pytest.fixture
def make_task(store):
    """Create a root (or child) task with day offsets from 2025-01-01."""
    def _make(name, start_day=1, end_day=2, **fields):
        return store.create_task(name, date(2025, 1, start_day), date(2025, 1, end_day), **fields)
    return _make


@pytest.fixture
def repository():
    return InMemoryBaselineRepository()


@pytest.fixture
def baseline_store(repository):
    return BaselineStore(repository)


@pytest.fixture
def registry(settings):
    return EngineRegistry(BaselineStore(InMemoryBaselineRepository(), QuotaPolicy()), settings)


@pytest_asyncio.fixture(scope="function")
async def client(registry):
    """Create an async test client backed by a fresh in-memory registry."""
    app.dependency_overrides[get_registry] = lambda: registry

    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac

    app.dependency_overrides.clear()
