"""Tests for the users router - role onboarding and role-gated routes."""

import inspect
from unittest.mock import Mock

import pytest
from fastapi import Depends, FastAPI
from fastapi.testclient import TestClient

from api.deps import require_role, require_user
from api.errors import register_error_handlers
from api.users import create_users_router, dashboard_path
from auth.exceptions import NotAuthenticatedError, UserAlreadyExistsError, UserNotFoundError
from auth.identity import (
    AuthMechanism,
    FederatedPending,
    LocalComplete,
    LocalIncomplete,
    Unauthenticated,
)
from auth.resolver import SessionResolver
from auth.security_middleware import AuthMiddleware
from auth.service import AuthService
from auth.types import Role


@pytest.fixture
def mock_auth_service():
    return Mock(spec=AuthService)


@pytest.fixture
def mock_resolver():
    resolver = Mock(spec=SessionResolver)
    resolver.resolve_credentials.return_value = Unauthenticated()
    return resolver


@pytest.fixture
def client(mock_auth_service, mock_resolver, config):
    app = FastAPI()
    app.state.resolver = mock_resolver
    app.state.auth_config = config
    register_error_handlers(app)
    app.add_middleware(AuthMiddleware, resolver=mock_resolver, config=config)
    app.include_router(create_users_router(mock_auth_service), prefix="/api/users")

    @app.get("/api/parents-only")
    async def parents_only(identity=Depends(require_role(Role.PARENT))):
        return {"ok": True}

    @app.get("/api/any-user")
    async def any_user(identity=Depends(require_user)):
        return {"kind": identity.kind}

    return TestClient(app)


class TestDashboardPath:

    @pytest.mark.parametrize("role", list(Role))
    def test_one_path_per_role(self, role):
        assert dashboard_path(role) == f"/dashboard/{role.value}"


class TestUpdateRole:
    """PATCH /api/users/me/role."""

    def test_federated_pending_onboards(self, client, mock_auth_service, mock_resolver, make_user):
        pending = FederatedPending(uid="fb-new", email="new@example.com")
        mock_resolver.resolve_credentials.return_value = pending
        mock_auth_service.assign_role.return_value = make_user(role=Role.PARENT, federated_uid="fb-new")

        response = client.patch(
            "/api/users/me/role",
            json={"role": "parent", "uid": "fb-new", "displayName": "Pat Parent"},
            headers={"X-Federated-Session": "fed-abc"},
        )

        assert response.status_code == 200
        assert response.json()["data"]["redirectTo"] == "/dashboard/parent"
        args, kwargs = mock_auth_service.assign_role.call_args
        assert args == (pending, Role.PARENT)
        assert kwargs["uid"] == "fb-new"
        assert kwargs["display_name"] == "Pat Parent"

    def test_tutor_alias_accepted(self, client, mock_auth_service, mock_resolver, make_user):
        user = make_user(role=None)
        mock_resolver.resolve_credentials.return_value = LocalIncomplete(user, AuthMechanism.EMAIL_PASSWORD)
        mock_auth_service.assign_role.return_value = make_user(role=Role.TEACHER)

        response = client.patch("/api/users/me/role", json={"role": "tutor"})

        assert response.status_code == 200
        assert mock_auth_service.assign_role.call_args.args[1] == Role.TEACHER
        assert response.json()["data"]["redirectTo"] == "/dashboard/teacher"

    def test_invalid_role_is_422(self, client, mock_auth_service):
        response = client.patch("/api/users/me/role", json={"role": "principal"})

        assert response.status_code == 422
        assert "teacher, parent, student" in response.json()["error"]["message"]
        mock_auth_service.assign_role.assert_not_called()

    def test_unauthenticated_is_401(self, client, mock_auth_service):
        mock_auth_service.assign_role.side_effect = NotAuthenticatedError("Authentication required")

        response = client.patch("/api/users/me/role", json={"role": "parent"})

        assert response.status_code == 401

    def test_uid_mismatch_is_400(self, client, mock_auth_service, mock_resolver):
        mock_resolver.resolve_credentials.return_value = FederatedPending(uid="fb-real", email="a@example.com")
        mock_auth_service.assign_role.side_effect = ValueError("uid does not match the signed-in account")

        response = client.patch("/api/users/me/role", json={"role": "parent", "uid": "fb-other"})

        assert response.status_code == 400

    def test_email_taken_is_409(self, client, mock_auth_service, mock_resolver):
        mock_resolver.resolve_credentials.return_value = FederatedPending(uid="fb-dup", email="taken@example.com")
        mock_auth_service.assign_role.side_effect = UserAlreadyExistsError("An account with this email already exists")

        response = client.patch("/api/users/me/role", json={"role": "parent"})

        assert response.status_code == 409
        assert response.json()["error"]["code"] == "ALREADY_EXISTS"

    def test_vanished_user_is_404(self, client, mock_auth_service, mock_resolver, make_user):
        mock_resolver.resolve_credentials.return_value = LocalIncomplete(make_user(role=None), AuthMechanism.EMAIL_PASSWORD)
        mock_auth_service.assign_role.side_effect = UserNotFoundError("User not found")

        response = client.patch("/api/users/me/role", json={"role": "teacher"})

        assert response.status_code == 404
        assert response.json()["error"]["code"] == "NOT_FOUND"


class TestRoleGates:
    """require_user / require_role."""

    def test_dashboard_for_complete_user(self, client, mock_resolver, make_user):
        mock_resolver.resolve_credentials.return_value = LocalComplete(
            make_user(role=Role.STUDENT), AuthMechanism.PLATFORM
        )

        response = client.get("/api/users/me/dashboard")

        assert response.status_code == 200
        assert response.json()["data"] == {"role": "student", "path": "/dashboard/student"}

    def test_roleless_user_gets_role_required(self, client, mock_resolver, make_user):
        mock_resolver.resolve_credentials.return_value = LocalIncomplete(
            make_user(role=None), AuthMechanism.EMAIL_PASSWORD
        )

        response = client.get("/api/users/me/dashboard")

        assert response.status_code == 403
        error = response.json()["error"]
        assert error["code"] == "ROLE_REQUIRED"
        assert error["details"] == {"needsRole": True}

    def test_wrong_role_is_forbidden(self, client, mock_resolver, make_user):
        mock_resolver.resolve_credentials.return_value = LocalComplete(
            make_user(role=Role.TEACHER), AuthMechanism.EMAIL_PASSWORD
        )

        response = client.get("/api/parents-only")

        assert response.status_code == 403
        assert response.json()["error"]["code"] == "FORBIDDEN"

    def test_right_role_admitted(self, client, mock_resolver, make_user):
        mock_resolver.resolve_credentials.return_value = LocalComplete(
            make_user(role=Role.PARENT), AuthMechanism.EMAIL_PASSWORD
        )

        assert client.get("/api/parents-only").status_code == 200

    def test_require_user_admits_incomplete(self, client, mock_resolver, make_user):
        mock_resolver.resolve_credentials.return_value = LocalIncomplete(
            make_user(role=None), AuthMechanism.FEDERATED
        )

        response = client.get("/api/any-user")

        assert response.json() == {"kind": "local_incomplete"}

    def test_gate_resolves_once(self, client, mock_resolver, make_user):
        """Dependencies reuse the identity the gate resolved."""
        mock_resolver.resolve_credentials.return_value = LocalComplete(make_user(), AuthMechanism.EMAIL_PASSWORD)

        client.get("/api/any-user")

        assert mock_resolver.resolve_credentials.call_count == 1


def test_users_handlers_are_sync(mock_auth_service):
    for route in create_users_router(mock_auth_service).routes:
        assert not inspect.iscoroutinefunction(route.endpoint), route.path
