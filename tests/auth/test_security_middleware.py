"""Tests for AuthMiddleware - identity resolution and user context."""

from unittest.mock import Mock
from uuid import UUID

import pytest
from fastapi import FastAPI, Request
from fastapi.testclient import TestClient
from starlette.middleware.authentication import AuthenticationMiddleware

from auth.config import AuthConfig
from auth.database import AuthDatabase
from auth.resolver import SessionResolver
from auth.security_middleware import AuthMiddleware, PlatformHeaderBackend
from auth.session import SessionManager
from auth.types import FederatedClaims
from utils.user_context import get_current_user_id

USER_ID = UUID("00000000-0000-0000-0000-000000000001")


@pytest.fixture
def user(make_user):
    return make_user(id=USER_ID, federated_uid="known-uid")


@pytest.fixture
def mock_auth_db(user):
    db = Mock(spec=AuthDatabase)
    db.get_user_by_id.side_effect = lambda user_id: user if user_id == USER_ID else None
    db.get_user_by_federated_uid.side_effect = lambda uid: user if uid == "known-uid" else None
    return db


@pytest.fixture
def session_manager(valkey, config):
    return SessionManager(valkey, config)


def build_app(resolver: SessionResolver, config: AuthConfig) -> FastAPI:
    app = FastAPI()
    app.add_middleware(AuthMiddleware, resolver=resolver, config=config)
    app.add_middleware(AuthenticationMiddleware, backend=PlatformHeaderBackend(config))

    @app.get("/api/protected")
    async def protected_route(request: Request):
        return {
            "user_id": str(request.state.user_id),
            "context_user_id": str(get_current_user_id()),
            "identity": request.state.identity.kind,
            "mechanism": request.state.identity.mechanism.value,
        }

    @app.post("/api/auth/email-login")
    async def public_login():
        return {"public": True}

    @app.get("/api/auth/verify-email/{token}")
    async def public_verify(token: str):
        return {"public": True}

    @app.patch("/api/users/me/role")
    async def public_role():
        return {"public": True}

    @app.get("/health")
    async def health():
        return {"status": "ok"}

    return app


@pytest.fixture
def client(mock_auth_db, session_manager, config):
    return TestClient(build_app(SessionResolver(mock_auth_db, session_manager), config))


class TestPublicPaths:
    """Public paths skip authentication."""

    @pytest.mark.parametrize("method,path", [
        ("post", "/api/auth/email-login"),
        ("get", "/api/auth/verify-email/abc123"),
        ("patch", "/api/users/me/role"),
        ("get", "/health"),
    ])
    def test_no_credentials_succeeds(self, client, method, path):
        response = getattr(client, method)(path)

        assert response.status_code == 200

    def test_prefix_lookalike_is_not_public(self, client):
        """'/healthz' must not ride on '/health'."""
        response = client.get("/healthz")

        assert response.status_code == 401


class TestRejection:
    """Only identities backed by a local row get through."""

    def test_no_credentials_returns_401(self, client):
        response = client.get("/api/protected")

        assert response.status_code == 401
        body = response.json()
        assert body["success"] is False
        assert body["error"]["code"] == "NOT_AUTHENTICATED"

    def test_unknown_session_token_returns_401(self, client):
        response = client.get("/api/protected", headers={"Authorization": "Bearer nope"})

        assert response.status_code == 401

    def test_federated_pending_returns_401(self, client, session_manager):
        """Gate is binary: pending onboarding is still rejected."""
        fed = session_manager.create_federated_session(FederatedClaims(uid="unknown-uid"))

        response = client.get("/api/protected", headers={"X-Federated-Session": fed.token})

        assert response.status_code == 401

    def test_logout_then_request_returns_401(self, client, session_manager):
        session = session_manager.create_session(USER_ID)
        headers = {"Authorization": f"Bearer {session.token}"}
        assert client.get("/api/protected", headers=headers).status_code == 200

        session_manager.revoke_session(session.token)

        assert client.get("/api/protected", headers=headers).status_code == 401


class TestAdmission:
    """Admitted requests carry user id and identity."""

    def test_bearer_session(self, client, session_manager):
        session = session_manager.create_session(USER_ID)

        response = client.get("/api/protected", headers={"Authorization": f"Bearer {session.token}"})

        assert response.status_code == 200
        data = response.json()
        assert data["user_id"] == str(USER_ID)
        assert data["mechanism"] == "email_password"
        assert data["identity"] == "local_complete"

    def test_session_cookie(self, client, session_manager, config):
        session = session_manager.create_session(USER_ID)
        client.cookies.set(config.session_cookie_name, session.token)

        response = client.get("/api/protected")

        assert response.status_code == 200

    def test_user_context_set_for_handler(self, client, session_manager):
        session = session_manager.create_session(USER_ID)

        response = client.get("/api/protected", headers={"Authorization": f"Bearer {session.token}"})

        assert response.json()["context_user_id"] == str(USER_ID)

    def test_federated_session_with_row(self, client, session_manager):
        fed = session_manager.create_federated_session(FederatedClaims(uid="known-uid"))

        response = client.get("/api/protected", headers={"X-Federated-Session": fed.token})

        assert response.status_code == 200
        assert response.json()["mechanism"] == "federated"

    def test_roleless_user_admitted(self, client, session_manager, mock_auth_db, user):
        """Gate admits LocalIncomplete; role checks live on the routes."""
        roleless = user.model_copy(update={"role": None})
        mock_auth_db.get_user_by_id.side_effect = lambda user_id: roleless

        session = session_manager.create_session(USER_ID)
        response = client.get("/api/protected", headers={"Authorization": f"Bearer {session.token}"})

        assert response.status_code == 200
        assert response.json()["identity"] == "local_incomplete"


class TestPlatformPrincipal:
    """Trusted platform header."""

    def test_header_ignored_unless_trusted(self, client):
        response = client.get("/api/protected", headers={"X-Platform-User-Id": str(USER_ID)})

        assert response.status_code == 401

    def test_trusted_header_admits(self, mock_auth_db, session_manager):
        config = AuthConfig(trust_platform_header=True)
        client = TestClient(build_app(SessionResolver(mock_auth_db, session_manager), config))

        response = client.get("/api/protected", headers={"X-Platform-User-Id": str(USER_ID)})

        assert response.status_code == 200
        assert response.json()["mechanism"] == "platform"

    def test_stale_platform_principal_falls_through(self, mock_auth_db, session_manager):
        config = AuthConfig(trust_platform_header=True)
        client = TestClient(build_app(SessionResolver(mock_auth_db, session_manager), config))
        session = session_manager.create_session(USER_ID)

        response = client.get(
            "/api/protected",
            headers={
                "X-Platform-User-Id": "00000000-0000-0000-0000-0000000000ff",
                "Authorization": f"Bearer {session.token}",
            },
        )

        assert response.status_code == 200
        assert response.json()["mechanism"] == "email_password"
