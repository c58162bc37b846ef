"""Typed exceptions for auth failures."""


class AuthError(Exception):
    """Base class for authentication/authorization errors."""


class NotAuthenticatedError(AuthError):
    """No credential of any kind resolved to a local user."""


class RoleRequiredError(AuthError):
    """
    Credential is valid but the user has not picked a role yet.

    Not a generic 403: clients route to onboarding on this.
    """


class InvalidTokenError(AuthError):
    """
    Token is invalid or never existed.

    Used for verification tokens, password reset tokens, federated ID tokens.
    """


class TokenExpiredError(InvalidTokenError):
    """Token existed but is past its expiry. Caller should request a new one."""


class TokenAlreadyUsedError(InvalidTokenError):
    """Single-use token was already consumed."""


class UpstreamUnavailableError(AuthError):
    """
    Identity provider or datastore unreachable.

    Never conflated with "not authenticated": the credential may be fine.
    """


class InvalidCredentialsError(AuthError):
    """Email/password combination did not match."""


class EmailNotVerifiedError(AuthError):
    """Password matched but the email address is not verified yet."""

    def __init__(self, email: str):
        self.email = email
        super().__init__("Please verify your email before logging in")


class UserAlreadyExistsError(AuthError):
    """Signup attempted for an email that already has an account."""


class RateLimitedError(AuthError):
    """Too many attempts. Client should wait before retrying."""

    def __init__(self, retry_after_seconds: int):
        self.retry_after_seconds = retry_after_seconds
        super().__init__(f"Rate limited. Retry after {retry_after_seconds} seconds.")


class UserNotFoundError(AuthError):
    """
    No user row for the given lookup.

    Note: In user-facing responses, don't reveal whether an email exists
    unless the flow already does (resend verification).
    """


class SessionExpiredError(AuthError):
    """Session not found, revoked, or past its expiry."""


class ForbiddenError(AuthError):
    """User has a role, but not one this route serves."""
