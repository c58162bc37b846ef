"""Tests for the application factory wiring."""

from unittest.mock import Mock

import pytest
from fastapi.testclient import TestClient

from auth.cleanup import CleanupScheduler
from auth.resolver import SessionResolver
from clients.email_client import EmailGatewayClient
from clients.firebase_client import FirebaseTokenVerifier
from clients.postgres_client import PostgresClient
from clients.valkey_client import ValkeyClient
from main import create_app


@pytest.fixture
def clients():
    return {
        "postgres": Mock(spec=PostgresClient),
        "valkey": Mock(spec=ValkeyClient),
        "email_client": Mock(spec=EmailGatewayClient),
        "token_verifier": Mock(spec=FirebaseTokenVerifier),
    }


@pytest.fixture
def app(config, clients):
    return create_app(config=config, run_cleanup=False, **clients)


class TestCreateApp:

    def test_state_wiring(self, app, config):
        assert app.state.auth_config is config
        assert isinstance(app.state.resolver, SessionResolver)
        assert isinstance(app.state.cleanup_scheduler, CleanupScheduler)

    def test_health_is_public(self, app):
        with TestClient(app) as client:
            response = client.get("/health")

        assert response.status_code == 200
        assert response.json()["data"] == {"status": "ok"}
        assert response.headers["X-Request-ID"]

    def test_protected_route_rejects_anonymous(self, app):
        with TestClient(app) as client:
            response = client.get("/api/auth/me")

        assert response.status_code == 401
        assert response.json()["success"] is False

    def test_caller_request_id_echoed(self, app):
        with TestClient(app) as client:
            response = client.get("/health", headers={"X-Request-ID": "trace-123"})

        assert response.headers["X-Request-ID"] == "trace-123"


class TestLifespan:

    def test_clients_closed_on_shutdown(self, app, clients):
        with TestClient(app):
            clients["valkey"].close.assert_not_called()

        clients["valkey"].close.assert_called_once()
        clients["postgres"].close.assert_called_once()
        clients["email_client"].close.assert_called_once()

    def test_cleanup_not_started_when_disabled(self, app):
        with TestClient(app):
            assert app.state.cleanup_scheduler.is_running is False
