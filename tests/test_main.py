"""Tests for main application."""

from fastapi.testclient import TestClient

from smartfolio import __version__
from smartfolio.main import app

client = TestClient(app)


def test_root_endpoint():
    """Test the root endpoint."""
    response = client.get("/")
    assert response.status_code == 200
    data = response.json()
    assert data["message"] == "SmartFolio API"
    assert data["version"] == __version__
    assert data["status"] == "operational"


def test_health_check():
    """Test health check endpoint."""
    response = client.get("/health/")
    assert response.status_code == 200
    data = response.json()
    assert data["status"] == "healthy"
    assert "timestamp" in data


def test_routes_registered():
    assert app.url_path_for("share_portfolio", portfolio_id="p1") == "/portfolios/p1/share"
    assert app.url_path_for("view_shared_portfolio", token="abc") == "/share/abc"
    assert app.url_path_for("share_analytics", token="abc") == "/share/abc/analytics"
