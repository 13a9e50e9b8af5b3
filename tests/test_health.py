"""Tests for the application shell: health check and routing."""

from unittest.mock import patch

from fastapi.testclient import TestClient

from app.main import app

client = TestClient(app)


def test_health_check():
    """Test that /health returns 200 with status ok."""
    response = client.get("/health")
    assert response.status_code == 200
    assert response.json() == {"status": "ok"}


def test_routes_are_versioned():
    paths = {route.path for route in app.routes}
    assert "/v1/complaints" in paths
    assert "/v1/letters/generate/stream" in paths
    assert "/v1/knowledge/chat" in paths
    assert "/complaints" not in paths


def test_subscription_tiers_are_public():
    with patch("app.api.subscriptions.subscriptions.list_tiers", return_value=[{"name": "starter"}]):
        response = client.get("/v1/subscriptions/tiers")
    assert response.status_code == 200
    assert response.json() == {"tiers": [{"name": "starter"}]}
