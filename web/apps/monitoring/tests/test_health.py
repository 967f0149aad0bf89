import pytest
from django.db import DatabaseError


@pytest.mark.django_db
def test_health_ok(client):
    r = client.get("/api/health/")
    assert r.status_code == 200
    assert r.json() == {"ok": True, "components": {"db": {"ok": True}}}


@pytest.mark.django_db
def test_health_reports_database_down(client, monkeypatch):
    def broken_cursor(*args, **kwargs):
        raise DatabaseError("connection refused")
    monkeypatch.setattr("apps.monitoring.api.connection.cursor", broken_cursor)

    r = client.get("/api/health/")
    assert r.status_code == 503
    assert r.json()["components"]["db"]["ok"] is False
