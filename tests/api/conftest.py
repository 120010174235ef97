"""API test fixtures — HTTP client wired to per-test policy engine instances.

Builds on root conftest fixtures (master_store, sink, master_evaluator).

Overrides: get_current_subject, get_policy_store, get_audit_sink,
get_evaluator, get_resource_service, get_db. The app lifespan does not run
under ASGITransport, so the live singletons are never loaded or flushed.
"""

from __future__ import annotations

from unittest.mock import AsyncMock, MagicMock

import pytest
from httpx import ASGITransport, AsyncClient

from rowguard.domain.resource_store import GuardedResourceService, InMemoryResourceStore
from rowguard.services.policy.types import Subject


class SubjectSwitch:
    """Holds the subject the next request resolves to."""

    def __init__(self) -> None:
        self.subject = Subject.anonymous()


@pytest.fixture
def auth() -> SubjectSwitch:
    return SubjectSwitch()


@pytest.fixture
def rows() -> InMemoryResourceStore:
    """Resource rows behind the API, seeded with a few providers and job posts."""
    store = InMemoryResourceStore()
    store.seed(
        "providers",
        [
            {"id": "p1", "owner_user_id": "u1", "name": "Acme Plumbing"},
            {"id": "p2", "owner_user_id": "u2", "name": "Bright Electric"},
        ],
    )
    store.seed(
        "provider_job_posts",
        [
            {"id": "j1", "owner_user_id": "u2", "status": "approved", "title": "Apprentice"},
            {"id": "j2", "owner_user_id": "u2", "status": "pending", "title": "Foreman"},
        ],
    )
    return store


@pytest.fixture
def db_session() -> AsyncMock:
    session = AsyncMock()
    session.add = MagicMock()
    return session


@pytest.fixture
async def api_client(auth, rows, master_store, sink, master_evaluator, db_session):
    """HTTP client with auth, engine singletons and the DB session overridden."""
    from rowguard.api.deps import (
        get_audit_sink,
        get_current_subject,
        get_evaluator,
        get_policy_store,
        get_resource_service,
    )
    from rowguard.core.database import get_db
    from rowguard.main import app

    service = GuardedResourceService(rows, master_evaluator)

    async def override_db():
        yield db_session

    app.dependency_overrides[get_current_subject] = lambda: auth.subject
    app.dependency_overrides[get_policy_store] = lambda: master_store
    app.dependency_overrides[get_audit_sink] = lambda: sink
    app.dependency_overrides[get_evaluator] = lambda: master_evaluator
    app.dependency_overrides[get_resource_service] = lambda: service
    app.dependency_overrides[get_db] = override_db

    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as client:
        yield client

    app.dependency_overrides.clear()
