"""Smoke test for the liveness endpoint used by the dashboard."""
import pytest
from fastapi.testclient import TestClient

from backend.app.main import app


@pytest.fixture
def client():
    """Plain client; /health touches neither the DB nor live sessions."""
    return TestClient(app)


def test_health_reports_ok(client):
    """The dashboard treats {"status": "ok"} as a connected backend."""
    response = client.get("/health")

    assert response.status_code == 200
    assert response.json() == {"status": "ok"}
