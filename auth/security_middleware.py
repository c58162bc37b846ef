"""Security middleware for FastAPI - identity resolution and user context."""

import logging
from uuid import UUID

from starlette.authentication import AuthCredentials, AuthenticationBackend, BaseUser
from starlette.concurrency import run_in_threadpool
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import HTTPConnection, Request
from starlette.responses import JSONResponse

from auth.config import AuthConfig
from auth.identity import RequestCredentials, is_local
from auth.resolver import SessionResolver
from api.base import error_response, ErrorCodes
from utils.user_context import set_current_user_id, clear_current_user_id

logger = logging.getLogger(__name__)


# =============================================================================
# PLATFORM PRINCIPAL
# =============================================================================


class PlatformUser(BaseUser):
    """Principal attached by the hosting platform's auth layer."""

    def __init__(self, user_id: str):
        self.user_id = user_id

    @property
    def is_authenticated(self) -> bool:
        return True

    @property
    def display_name(self) -> str:
        return self.user_id

    @property
    def identity(self) -> str:
        return self.user_id


class PlatformHeaderBackend(AuthenticationBackend):
    """Reads the platform principal from a trusted header.

    Only enabled when the app runs behind the platform proxy, which strips
    the header from incoming traffic and sets it itself.
    """

    def __init__(self, config: AuthConfig):
        self._config = config

    async def authenticate(self, conn: HTTPConnection):
        if not self._config.trust_platform_header:
            return None
        user_id = conn.headers.get(self._config.platform_user_header, "").strip()
        if not user_id:
            return None
        return AuthCredentials(["platform"]), PlatformUser(user_id)


# =============================================================================
# CREDENTIAL EXTRACTION
# =============================================================================


def _bearer_token(request: Request) -> str | None:
    header = request.headers.get("Authorization", "")
    scheme, _, token = header.partition(" ")
    if scheme.lower() != "bearer" or not token.strip():
        return None
    return token.strip()


def extract_credentials(request: Request, config: AuthConfig) -> RequestCredentials:
    """Pull the three raw credentials off a request. Nothing is validated."""
    platform_user = request.scope.get("user")
    platform_user_id = platform_user.identity if isinstance(platform_user, PlatformUser) else None

    federated_token = (
        request.cookies.get(config.federated_cookie_name)
        or request.headers.get(config.federated_header_name)
    )
    session_token = _bearer_token(request) or request.cookies.get(config.session_cookie_name)

    return RequestCredentials(
        platform_user_id=platform_user_id,
        federated_token=federated_token or None,
        session_token=session_token or None,
    )


# =============================================================================
# AUTH GATE
# =============================================================================


class AuthMiddleware(BaseHTTPMiddleware):
    """Middleware that resolves the request identity and sets user context.

    For protected routes:
    1. Extracts platform principal, federated session and bearer session
    2. Resolves them to one Identity via SessionResolver
    3. Admits only identities backed by a local user row
    4. Sets user_id and identity in request.state and the user context (for RLS)
    5. Clears context after request completes

    Federated-pending and unauthenticated requests both get 401.
    Public paths bypass authentication entirely.
    """

    PUBLIC_PATHS = [
        "/api/auth/email-signup",
        "/api/auth/email-login",
        "/api/auth/logout",
        "/api/auth/email-logout",
        "/api/auth/firebase-login",
        "/api/auth/firebase-logout",
        "/api/auth/firebase-user",
        "/api/auth/verify-email",
        "/api/auth/resend-verification",
        "/api/auth/forgot-password",
        "/api/auth/reset-password",
        # Onboarding: a federated-pending identity creates its row here
        "/api/users/me/role",
        "/health",
        "/docs",
        "/openapi.json",
    ]

    def __init__(self, app, resolver: SessionResolver, config: AuthConfig):
        super().__init__(app)
        self._resolver = resolver
        self._config = config

    def _is_public_path(self, path: str) -> bool:
        """Check if path is in public paths list."""
        for public_path in self.PUBLIC_PATHS:
            if path == public_path or path.startswith(public_path + "/"):
                return True
        return False

    def authorize(self, request: Request) -> UUID | None:
        """Resolve the request identity. Returns the user id, or None to reject.

        Only touches request.state. Session records are read, never written,
        so expiry and last activity stay as the last explicit action left them.
        Blocking; dispatch runs it in the threadpool.
        """
        identity = self._resolver.resolve_credentials(extract_credentials(request, self._config))
        request.state.identity = identity

        if not is_local(identity):
            return None

        request.state.user_id = identity.user_id
        return identity.user_id

    async def dispatch(self, request: Request, call_next):
        """Process request through middleware."""
        if self._is_public_path(request.url.path):
            return await call_next(request)

        user_id = await run_in_threadpool(self.authorize, request)
        if user_id is None:
            return JSONResponse(
                status_code=401,
                content=error_response(
                    ErrorCodes.NOT_AUTHENTICATED,
                    "Authentication required",
                ).model_dump(mode="json"),
            )

        # Set user context for RLS
        set_current_user_id(user_id)
        try:
            return await call_next(request)
        finally:
            clear_current_user_id()
