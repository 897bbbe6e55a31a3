"""API test fixtures - authenticated TestClient over mocked services."""

from datetime import timedelta
from unittest.mock import Mock

import pytest
from fastapi import FastAPI
from starlette.testclient import TestClient

from api.credits import create_credits_router
from api.errors import register_error_handlers
from api.health import create_health_router
from api.middleware import RequestIDMiddleware
from auth.security_middleware import AuthMiddleware
from auth.session import SessionManager
from auth.types import Session
from clients.postgres_client import PostgresClient
from clients.valkey_client import ValkeyClient
from core.services.credit_service import CreditService
from utils.timezone import now_utc


# =============================================================================
# SERVICE FIXTURES
# =============================================================================


@pytest.fixture
def credit_service():
    return Mock(spec=CreditService)


@pytest.fixture
def postgres():
    mock = Mock(spec=PostgresClient)
    mock.execute_scalar.return_value = 1
    return mock


@pytest.fixture
def valkey_mock():
    mock = Mock(spec=ValkeyClient)
    mock.ping.return_value = True
    return mock


# =============================================================================
# AUTH FIXTURES
# =============================================================================


@pytest.fixture
def mock_session_manager(test_user_id):
    now = now_utc()
    mock = Mock(spec=SessionManager)
    mock.touch.return_value = Session(
        token="test-token",
        user_id=test_user_id,
        created_at=now,
        expires_at=now + timedelta(days=7),
        last_activity_at=now,
    )
    return mock


# =============================================================================
# APP & CLIENT FIXTURES
# =============================================================================


@pytest.fixture
def app(mock_session_manager, credit_service, postgres, valkey_mock):
    """FastAPI app with auth middleware, error handlers, credits and health routes."""
    app = FastAPI()
    app.add_middleware(RequestIDMiddleware)
    app.add_middleware(AuthMiddleware, session_manager=mock_session_manager)
    register_error_handlers(app)

    app.include_router(create_credits_router(credit_service), prefix="/credits")
    app.include_router(create_health_router(postgres, valkey_mock))

    return app


@pytest.fixture
def client(app):
    """Authenticated test client."""
    c = TestClient(app, raise_server_exceptions=False)
    c.cookies.set("session_token", "test-token")
    return c


@pytest.fixture
def unauthed_client(app):
    """Unauthenticated test client (no session cookie)."""
    return TestClient(app, raise_server_exceptions=False)
