"""Tests for RequestIDMiddleware."""

import pytest
from uuid import UUID
from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse
from starlette.testclient import TestClient

from api.middleware import RequestIDMiddleware


@pytest.fixture
def app():
    """Minimal FastAPI app with RequestIDMiddleware."""
    app = FastAPI()
    app.add_middleware(RequestIDMiddleware)

    @app.get("/probe")
    async def probe(request: Request):
        return JSONResponse({"request_id": request.state.request_id})

    return app


@pytest.fixture
def client(app):
    return TestClient(app)


class TestRequestIDMiddleware:
    """Tests for RequestIDMiddleware."""

    def test_response_has_request_id_header(self, client):
        """Response includes X-Request-ID header."""
        response = client.get("/probe")

        assert "X-Request-ID" in response.headers
        UUID(response.headers["X-Request-ID"])

    def test_request_state_has_request_id(self, client):
        """request.state.request_id is set and matches header."""
        response = client.get("/probe")

        assert response.headers["X-Request-ID"] == response.json()["request_id"]

    def test_each_request_gets_unique_id(self, client):
        r1 = client.get("/probe")
        r2 = client.get("/probe")

        assert r1.headers["X-Request-ID"] != r2.headers["X-Request-ID"]

    def test_upstream_id_reused(self, client):
        response = client.get("/probe", headers={"X-Request-ID": "edge-4f2a9c01"})

        assert response.headers["X-Request-ID"] == "edge-4f2a9c01"
        assert response.json()["request_id"] == "edge-4f2a9c01"

    @pytest.mark.parametrize("incoming", ["short", "has spaces in it", "x" * 65, "semi;colon-1234"])
    def test_malformed_upstream_id_replaced(self, client, incoming):
        response = client.get("/probe", headers={"X-Request-ID": incoming})

        assert response.headers["X-Request-ID"] != incoming
        UUID(response.headers["X-Request-ID"])
