"""Tests for the health router."""

from unittest.mock import AsyncMock, patch

from fastapi.testclient import TestClient

from food_catalog import __version__
from food_catalog.main import app

client = TestClient(app)


def test_health():
    response = client.get("/health")
    assert response.status_code == 200
    assert response.json() == {"status": "ok", "version": __version__}


def test_ready_when_database_reachable():
    with patch("food_catalog.routers.health.check_db_connectivity", AsyncMock(return_value=True)):
        response = client.get("/ready")
    assert response.status_code == 200
    assert response.json() == {"db": "ok"}


def test_not_ready_when_database_down():
    with patch("food_catalog.routers.health.check_db_connectivity", AsyncMock(return_value=False)):
        response = client.get("/ready")
    assert response.status_code == 503
    assert response.json() == {"db": "error"}
