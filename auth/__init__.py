"""Authentication and authorization modules."""

from auth.exceptions import (
    AuthError,
    NotAuthenticatedError,
    RoleRequiredError,
    ForbiddenError,
    InvalidTokenError,
    TokenExpiredError,
    TokenAlreadyUsedError,
    UpstreamUnavailableError,
    InvalidCredentialsError,
    EmailNotVerifiedError,
    UserAlreadyExistsError,
    RateLimitedError,
    UserNotFoundError,
    SessionExpiredError,
)
from auth.types import (
    Role,
    User,
    UserProfile,
    Session,
    FederatedClaims,
    FederatedSession,
    AuthenticatedUser,
)
from auth.config import AuthConfig
from auth.identity import (
    AuthMechanism,
    Identity,
    Unauthenticated,
    FederatedPending,
    LocalIncomplete,
    LocalComplete,
    RequestCredentials,
    RequestSignals,
)
from auth.database import AuthDatabase
from auth.rate_limiter import RateLimiter
from auth.security_logger import SecurityLogger, SecurityEvent
from auth.session import SessionManager
from auth.resolver import SessionResolver
from auth.service import AuthService, FederatedLoginResult
from auth.cleanup import CleanupScheduler, CleanupResult
from auth.security_middleware import AuthMiddleware
from auth.api import create_auth_router
