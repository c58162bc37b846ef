"""HTTP routes for authentication."""

import ipaddress
from typing import Any

from fastapi import APIRouter, Request, Response
from fastapi.responses import JSONResponse

from auth.config import AuthConfig
from auth.exceptions import (
    EmailNotVerifiedError,
    InvalidCredentialsError,
    InvalidTokenError,
    NotAuthenticatedError,
    RateLimitedError,
    TokenAlreadyUsedError,
    TokenExpiredError,
    UserAlreadyExistsError,
    UserNotFoundError,
)
from auth.identity import AuthMechanism, is_local
from auth.security_middleware import extract_credentials
from auth.service import AuthService, RequestContext
from auth.types import (
    EmailLoginRequest,
    EmailRequest,
    FirebaseLoginRequest,
    ResetPasswordRequest,
    SignupRequest,
    UserProfile,
    VerifyEmailRequest,
)
from api.base import success_response, error_response, ErrorCodes


def _get_client_ip(request: Request) -> str | None:
    """Extract valid IP address from request, or None if invalid."""
    if not request.client:
        return None
    host = request.client.host
    try:
        ipaddress.ip_address(host)
        return host
    except ValueError:
        return None


def client_context(request: Request) -> RequestContext:
    return RequestContext(
        ip_address=_get_client_ip(request),
        user_agent=request.headers.get("User-Agent"),
    )


def _error(
    status_code: int,
    code: str,
    message: str,
    details: dict[str, Any] | None = None,
    headers: dict[str, str] | None = None,
) -> JSONResponse:
    return JSONResponse(
        status_code=status_code,
        headers=headers,
        content=error_response(code, message, details).model_dump(mode="json"),
    )


def _rate_limited(e: RateLimitedError) -> JSONResponse:
    return _error(
        429,
        ErrorCodes.RATE_LIMITED,
        f"Too many requests. Please wait {e.retry_after_seconds} seconds.",
        headers={"Retry-After": str(e.retry_after_seconds)},
    )


def _profile(user) -> dict:
    return UserProfile.from_user(user).model_dump(mode="json")


def create_auth_router(auth_service: AuthService, config: AuthConfig) -> APIRouter:
    """Create auth router with injected service."""
    router = APIRouter(tags=["auth"])

    cookie_max_age = config.session_expiry_hours * 3600 if config.session_expiry_hours else None

    def _set_cookie(response: Response, key: str, value: str) -> None:
        response.set_cookie(
            key=key,
            value=value,
            httponly=True,
            secure=True,
            samesite="lax",
            max_age=cookie_max_age,
        )

    # -------------------------------------------------------------------------
    # Email/password
    # -------------------------------------------------------------------------

    @router.post("/email-signup", status_code=201)
    def email_signup(request: Request, body: SignupRequest):
        """Create an account and send the verification email."""
        try:
            user = auth_service.signup(
                email=body.email,
                password=body.password,
                first_name=body.first_name,
                last_name=body.last_name,
                ctx=client_context(request),
            )
        except UserAlreadyExistsError as e:
            return _error(409, ErrorCodes.ALREADY_EXISTS, str(e))

        return success_response({
            "user": _profile(user),
            "message": "Account created. Please check your email to verify your account.",
        })

    @router.post("/email-login")
    def email_login(request: Request, response: Response, body: EmailLoginRequest):
        """Log in with email and password.

        Returns the session id for the client to send as a bearer token.
        Also sets the session cookie.
        """
        try:
            result = auth_service.email_login(
                email=body.email,
                password=body.password,
                ctx=client_context(request),
            )
        except RateLimitedError as e:
            return _rate_limited(e)
        except InvalidCredentialsError:
            return _error(401, ErrorCodes.INVALID_CREDENTIALS, "Invalid email or password")
        except EmailNotVerifiedError as e:
            return _error(
                401,
                ErrorCodes.EMAIL_NOT_VERIFIED,
                str(e),
                details={"needsVerification": True, "email": e.email},
            )

        _set_cookie(response, config.session_cookie_name, result.session.token)
        return success_response({
            "user": _profile(result.user),
            "sessionId": result.session.token,
        })

    @router.post("/logout")
    @router.post("/email-logout")
    def logout(request: Request, response: Response):
        """Revoke the email/password session and clear its cookie. Idempotent."""
        credentials = extract_credentials(request, config)
        auth_service.logout(credentials.session_token, ctx=client_context(request))
        response.delete_cookie(key=config.session_cookie_name)
        return success_response({"message": "Logged out successfully"})

    # -------------------------------------------------------------------------
    # Federated
    # -------------------------------------------------------------------------

    @router.post("/firebase-login")
    def firebase_login(request: Request, response: Response, body: FirebaseLoginRequest):
        """Exchange a provider ID token for a federated session.

        Never creates a local row; a first-time user comes back with
        isExistingUser=false and onboards through PATCH /api/users/me/role.
        """
        scheme, _, id_token = request.headers.get("Authorization", "").partition(" ")
        if scheme.lower() != "bearer" or not id_token.strip():
            return _error(401, ErrorCodes.INVALID_TOKEN, "ID token is required")

        try:
            result = auth_service.federated_login(
                id_token=id_token.strip(),
                uid=body.uid,
                ctx=client_context(request),
            )
        except InvalidTokenError:
            return _error(401, ErrorCodes.INVALID_TOKEN, "Invalid ID token")

        _set_cookie(response, config.federated_cookie_name, result.session.token)
        return success_response({
            "user": _profile(result.user) if result.user else None,
            "isExistingUser": result.is_existing_user,
            "role": result.user.role.value if result.user and result.user.role else None,
            "federatedSessionId": result.session.token,
            "federatedUser": {
                "uid": result.session.uid,
                "email": result.session.email or body.email,
                "display_name": result.session.display_name or body.display_name,
                "photo_url": result.session.photo_url or body.photo_url,
            },
        })

    @router.post("/firebase-logout")
    def firebase_logout(request: Request, response: Response):
        """Revoke the federated session and clear its cookie. Idempotent."""
        credentials = extract_credentials(request, config)
        auth_service.federated_logout(credentials.federated_token, ctx=client_context(request))
        response.delete_cookie(key=config.federated_cookie_name)
        return success_response({"message": "Logged out successfully"})

    @router.get("/firebase-user")
    def firebase_user(request: Request):
        """Local user behind the current federated session."""
        credentials = extract_credentials(request, config)
        try:
            user = auth_service.get_federated_user(credentials.federated_token)
        except NotAuthenticatedError:
            return _error(401, ErrorCodes.NOT_AUTHENTICATED, "Authentication required")
        except UserNotFoundError:
            return _error(404, ErrorCodes.NOT_FOUND, "No account for this sign-in yet")

        return success_response({"user": _profile(user)})

    # -------------------------------------------------------------------------
    # Current user
    # -------------------------------------------------------------------------

    @router.get("/me")
    @router.get("/email-user")
    def get_current_user(request: Request):
        """Get current authenticated user.

        Requires authentication (middleware sets identity and user context).
        """
        identity = getattr(request.state, "identity", None)
        if identity is None or not is_local(identity):
            return _error(401, ErrorCodes.NOT_AUTHENTICATED, "Authentication required")

        if identity.mechanism == AuthMechanism.EMAIL_PASSWORD:
            auth_service.record_activity(extract_credentials(request, config).session_token)

        return success_response({
            "user": _profile(identity.user),
            "identity": identity.kind,
            "mechanism": identity.mechanism.value,
        })

    # -------------------------------------------------------------------------
    # Verification
    # -------------------------------------------------------------------------

    def _verify(request: Request, token: str):
        try:
            user = auth_service.verify_email(token, ctx=client_context(request))
        except TokenExpiredError:
            return _error(
                410,
                ErrorCodes.TOKEN_EXPIRED,
                "This verification link has expired. Request a new one.",
                details={"canResend": True},
            )
        except TokenAlreadyUsedError:
            return _error(
                409,
                ErrorCodes.TOKEN_ALREADY_USED,
                "This verification link has already been used. You can log in.",
            )
        except InvalidTokenError:
            return _error(
                400,
                ErrorCodes.INVALID_TOKEN,
                "Invalid verification link. Check the link or request a new one.",
                details={"canResend": True},
            )

        return success_response({
            "message": "Email verified successfully",
            "user": _profile(user),
        })

    @router.get("/verify-email/{token}")
    def verify_email_link(request: Request, token: str):
        """Consume a verification token from the emailed link."""
        return _verify(request, token)

    @router.post("/verify-email")
    def verify_email(request: Request, body: VerifyEmailRequest):
        """Consume a verification token."""
        return _verify(request, body.token)

    @router.post("/resend-verification")
    def resend_verification(request: Request, body: EmailRequest):
        """Send a fresh verification link."""
        try:
            auth_service.resend_verification(body.email, ctx=client_context(request))
        except RateLimitedError as e:
            return _rate_limited(e)
        except UserNotFoundError:
            return _error(404, ErrorCodes.NOT_FOUND, "User not found")
        except ValueError as e:
            return _error(400, ErrorCodes.ALREADY_VERIFIED, str(e))

        return success_response({"message": "Verification email sent. Please check your inbox."})

    # -------------------------------------------------------------------------
    # Password reset
    # -------------------------------------------------------------------------

    @router.post("/forgot-password")
    def forgot_password(request: Request, body: EmailRequest):
        """Request a reset link. Same answer whether or not the account exists."""
        try:
            auth_service.forgot_password(body.email, ctx=client_context(request))
        except RateLimitedError as e:
            return _rate_limited(e)

        return success_response({
            "message": "If an account exists for this email, a reset link has been sent.",
        })

    @router.post("/reset-password")
    def reset_password(request: Request, body: ResetPasswordRequest):
        """Set a new password with a single-use reset token."""
        try:
            auth_service.reset_password(
                token=body.token,
                new_password=body.new_password,
                ctx=client_context(request),
            )
        except TokenExpiredError:
            return _error(
                410,
                ErrorCodes.TOKEN_EXPIRED,
                "This reset link has expired. Request a new one.",
            )
        except InvalidTokenError:
            return _error(
                400,
                ErrorCodes.INVALID_TOKEN,
                "Invalid or already used reset link. Request a new one.",
            )
        except UserNotFoundError:
            return _error(404, ErrorCodes.NOT_FOUND, "User not found")

        return success_response({"message": "Password updated. You can now log in."})

    return router
