import pytest

from conftest import _expect_status
from services.health_service import HealthService


def test_alive(client):
    r = client.get("/alive")
    _expect_status(r, 200, "/alive")
    assert r.get_json()["message"] == "alive"


def test_unknown_route_is_json_404(client):
    r = client.get("/api/v1/does-not-exist")
    _expect_status(r, 404)
    body = r.get_json()
    assert body["status"] == 404
    assert body["path"] == "/api/v1/does-not-exist"


class _FailingRepo:
    def ping(self):
        raise RuntimeError("db down")


def test_alive_reports_database_failure(app, client):
    app.extensions["plantlog"].health = HealthService(_FailingRepo())
    r = client.get("/alive")
    _expect_status(r, 503, "db down")


def test_cache_health(app):
    health = app.extensions["plantlog"].health
    assert health.check_cache_health() is None
    assert HealthService(_FailingRepo(), cache=None).check_cache_health() is None


def test_db_health_propagates_errors():
    with pytest.raises(RuntimeError):
        HealthService(_FailingRepo()).check_db_health()
