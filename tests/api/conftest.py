"""API test fixtures: TestClient over in-process services with a fixed clock."""

import pytest
from starlette.testclient import TestClient

from api.app import create_app


# =============================================================================
# SERVICES DICT
# =============================================================================


@pytest.fixture
def services(client_directory, invoice_service):
    return {
        "client": client_directory,
        "invoice": invoice_service,
    }


# =============================================================================
# APP & CLIENT FIXTURES
# =============================================================================


@pytest.fixture
def app(services):
    """FastAPI app with middleware, error handlers, and data/actions routes."""
    return create_app(services)


@pytest.fixture
def client(app, test_user_id):
    """Test client acting as the primary test user."""
    c = TestClient(app, raise_server_exceptions=False)
    c.headers["X-User-ID"] = str(test_user_id)
    return c


@pytest.fixture
def anonymous_client(app):
    """Test client without a user header."""
    return TestClient(app, raise_server_exceptions=False)


@pytest.fixture
def act(client):
    """POST one action and return the response."""

    def _act(domain, action, **data):
        return client.post("/api/actions", json={"domain": domain, "action": action, "data": data})

    return _act
