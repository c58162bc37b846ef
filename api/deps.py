"""FastAPI dependencies for identity and role checks."""

from fastapi import Depends, Request

from auth.exceptions import ForbiddenError, NotAuthenticatedError, RoleRequiredError
from auth.identity import Identity, LocalComplete, LocalIncomplete
from auth.security_middleware import extract_credentials
from auth.types import Role


def get_identity(request: Request) -> Identity:
    """Resolved identity of the request.

    Gated routes reuse what AuthMiddleware resolved. Public routes that
    still care who is calling (role onboarding) resolve here.
    """
    identity = getattr(request.state, "identity", None)
    if identity is None:
        resolver = request.app.state.resolver
        config = request.app.state.auth_config
        identity = resolver.resolve_credentials(extract_credentials(request, config))
        request.state.identity = identity
    return identity


def require_user(identity: Identity = Depends(get_identity)) -> LocalIncomplete | LocalComplete:
    """Any identity backed by a local user row."""
    if not isinstance(identity, (LocalIncomplete, LocalComplete)):
        raise NotAuthenticatedError("Authentication required")
    return identity


def require_role(*allowed: Role):
    """Dependency factory for role-scoped routes.

    A role-less user gets RoleRequiredError so the client routes to
    onboarding. With roles given, any other role gets ForbiddenError.
    """

    def dependency(identity: LocalIncomplete | LocalComplete = Depends(require_user)) -> LocalComplete:
        if isinstance(identity, LocalIncomplete):
            raise RoleRequiredError("Select a role to continue")
        if allowed and identity.user.role not in allowed:
            raise ForbiddenError(f"Not available for role '{identity.user.role.value}'")
        return identity

    return dependency
