"""HTTP routes for the current user: onboarding and dashboard routing."""

from fastapi import APIRouter, Depends, Request
from fastapi.responses import JSONResponse

from api.base import success_response, error_response, ErrorCodes
from api.deps import get_identity, require_role
from auth.api import client_context
from auth.exceptions import UserAlreadyExistsError, UserNotFoundError
from auth.identity import Identity, LocalComplete
from auth.service import AuthService
from auth.types import RoleUpdateRequest, UserProfile


def dashboard_path(role) -> str:
    """Where a user with this role lands."""
    return f"/dashboard/{role.value}"


def create_users_router(auth_service: AuthService) -> APIRouter:
    """Create users router with injected service."""
    router = APIRouter(tags=["users"])

    @router.patch("/me/role")
    def update_role(
        request: Request,
        body: RoleUpdateRequest,
        identity: Identity = Depends(get_identity),
    ):
        """Set the caller's role.

        Served on a public path: a federated-pending caller has no local row
        for the gate to admit, and this is where that row gets created.
        """
        try:
            user = auth_service.assign_role(
                identity,
                body.role,
                uid=body.uid,
                email=body.email,
                display_name=body.display_name,
                photo_url=body.photo_url,
                ctx=client_context(request),
            )
        except UserAlreadyExistsError as e:
            return JSONResponse(
                status_code=409,
                content=error_response(ErrorCodes.ALREADY_EXISTS, str(e)).model_dump(mode="json"),
            )
        except UserNotFoundError:
            return JSONResponse(
                status_code=404,
                content=error_response(ErrorCodes.NOT_FOUND, "User not found").model_dump(mode="json"),
            )

        return success_response({
            "user": UserProfile.from_user(user).model_dump(mode="json"),
            "redirectTo": dashboard_path(user.role),
        })

    @router.get("/me/dashboard")
    def get_dashboard(identity: LocalComplete = Depends(require_role())):
        """Dashboard route for the caller's role. Role-less callers get ROLE_REQUIRED."""
        return success_response({
            "role": identity.user.role.value,
            "path": dashboard_path(identity.user.role),
        })

    return router
