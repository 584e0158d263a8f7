"""
tests/test_health.py -- Health endpoint and error envelope tests.

GET /api/v1/health must answer without authentication and report the
database component; a store that cannot answer turns the response into 503.
"""

from __future__ import annotations

import pytest
from fastapi.testclient import TestClient
from sqlalchemy.exc import OperationalError

from auth.store import AuthStore


class TestHealth:
    def test_health_ok(self, api_client: tuple[TestClient, AuthStore]) -> None:
        client, _store = api_client
        resp = client.get("/api/v1/health")
        assert resp.status_code == 200
        data = resp.json()
        assert data["status"] == "healthy"
        assert data["version"]
        assert data["components"] == {"app": "ok", "database": "ok"}

    def test_health_degraded_when_store_fails(
        self,
        api_client: tuple[TestClient, AuthStore],
        monkeypatch: pytest.MonkeyPatch,
    ) -> None:
        client, store = api_client

        def broken_ping() -> bool:
            raise OperationalError("SELECT 1", {}, Exception("unable to open database file"))

        monkeypatch.setattr(store, "ping", broken_ping)
        resp = client.get("/api/v1/health")
        assert resp.status_code == 503
        data = resp.json()
        assert data["status"] == "degraded"
        assert data["components"]["database"] == "error"
        assert "unable to open" not in resp.text


class TestErrorEnvelope:
    def test_unknown_route_uses_envelope(self, api_client: tuple[TestClient, AuthStore]) -> None:
        client, _store = api_client
        resp = client.get("/api/v1/does-not-exist")
        assert resp.status_code == 404
        assert resp.json()["error"]["code"] == "http_404"

    def test_validation_error_envelope(self, api_client: tuple[TestClient, AuthStore]) -> None:
        client, _store = api_client
        resp = client.post("/api/v1/auth/login", json={"email": "a@x.com"})
        assert resp.status_code == 422
        error = resp.json()["error"]
        assert error["code"] == "validation_error"
        assert error["message"] == "Request validation failed."

    def test_docs_hidden_outside_debug(self, api_client: tuple[TestClient, AuthStore]) -> None:
        client, _store = api_client
        assert client.get("/docs").status_code == 404
