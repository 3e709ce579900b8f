"""
Integration test configuration
"""
import pytest
from fastapi.testclient import TestClient

from autopay.api import deps
from autopay.app.main import create_application
from tests.conftest import INTERNAL_TOKEN


@pytest.fixture
def app(session_factory, provider, clock, config, locks):
    """Application wired to the in-memory database, fake provider and fixed clock."""
    application = create_application()

    def override_get_db():
        db = session_factory()
        try:
            yield db
        finally:
            db.close()

    application.dependency_overrides[deps.get_db] = override_get_db
    application.dependency_overrides[deps.get_provider] = lambda: provider
    application.dependency_overrides[deps.get_clock] = lambda: clock
    application.dependency_overrides[deps.get_config] = lambda: config
    application.dependency_overrides[deps.get_locks] = lambda: locks
    return application


@pytest.fixture
def client(app):
    """FastAPI test client with dependency overrides."""
    return TestClient(app)


@pytest.fixture
def internal_headers():
    return {"X-Internal-Token": INTERNAL_TOKEN}
