"""Tests for health endpoint."""

import pytest
from fastapi.testclient import TestClient

from exam_trainer import __version__
from exam_trainer.web.api import create_app


@pytest.fixture
def client():
    """Create test client."""
    app = create_app()
    return TestClient(app)


class TestHealthEndpoint:
    """Tests for GET /health."""

    def test_health_returns_ok(self, client):
        response = client.get("/health")
        assert response.status_code == 200
        data = response.json()
        assert data["status"] == "ok"
        assert data["version"] == __version__
        assert "timestamp" in data

    def test_docs_available(self, client):
        assert client.get("/docs").status_code == 200
        assert client.get("/openapi.json").status_code == 200
