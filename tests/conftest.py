"""Shared fixtures for sync tests.

Provides:
- Fast-retry settings (short timeout, zero backoff)
- A registered SyncEngine over in-memory collaborators, with CRM
  notifications looped back into it
- Accessors for each in-memory collaborator
- A linked Contact (7 <-> Content record 100) and Activity (40 <-> 200)
- Async HTTP client for API tests
"""

from __future__ import annotations

from collections.abc import AsyncGenerator

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient

from src.crmsync.config import Settings
from src.crmsync.content.memory import (
    InMemoryContentStore,
    InMemoryEntityResolver,
    InMemoryFileStore,
    InMemoryMetadataStore,
)
from src.crmsync.core.context import SyncContext
from src.crmsync.crm.memory import InMemoryRecordAPI
from src.crmsync.records.engine import SyncEngine
from src.crmsync.records.schemas import ParentType

CONTACT_ID = 7
CONTACT_RECORD = 100
ACTIVITY_ID = 40
ACTIVITY_RECORD = 200


@pytest.fixture
def settings() -> Settings:
    return Settings(
        CRM_CALL_TIMEOUT_SECONDS=0.5,
        CRM_MAX_ATTEMPTS=2,
        CRM_RETRY_MIN_WAIT=0,
        CRM_RETRY_MAX_WAIT=0,
    )


@pytest.fixture
def engine(settings) -> SyncEngine:
    sync_engine = SyncEngine.in_memory(settings)
    sync_engine.register_all()
    return sync_engine


@pytest.fixture
def api(engine) -> InMemoryRecordAPI:
    return engine.caller.api


@pytest.fixture
def content(engine) -> InMemoryContentStore:
    return engine.content


@pytest.fixture
def resolver(engine) -> InMemoryEntityResolver:
    return engine.resolver


@pytest.fixture
def files(engine) -> InMemoryFileStore:
    return engine.services.files


@pytest.fixture
def metadata(engine) -> InMemoryMetadataStore:
    return engine.services.metadata


@pytest.fixture
def linked(resolver) -> None:
    """Contact 7 mirrors Content record 100; Activity 40 mirrors record 200."""
    resolver.link(ParentType.CONTACT, CONTACT_ID, CONTACT_RECORD)
    resolver.link(ParentType.ACTIVITY, ACTIVITY_ID, ACTIVITY_RECORD)


@pytest.fixture
def ctx() -> SyncContext:
    return SyncContext()


@pytest_asyncio.fixture
async def client(engine) -> AsyncGenerator[AsyncClient, None]:
    """Async HTTP client for testing the API."""
    from src.crmsync.main import create_app

    application = create_app(engine)
    transport = ASGITransport(app=application)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac
