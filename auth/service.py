"""Authentication service - orchestrates email/password and federated flows."""

import logging
import secrets
from dataclasses import dataclass
from typing import TYPE_CHECKING

import psycopg2.errors
from tenacity import Retrying, retry_if_exception_type, stop_after_attempt, wait_exponential

from auth.config import AuthConfig
from auth.database import AuthDatabase
from auth.session import SessionManager
from auth.rate_limiter import RateLimiter
from auth.security_logger import SecurityLogger, SecurityEvent
from auth.identity import FederatedPending, Identity, LocalComplete, LocalIncomplete
from auth.passwords import hash_password, verify_password
from auth.types import AuthenticatedUser, FederatedSession, Role, User
from auth.exceptions import (
    EmailNotVerifiedError,
    InvalidCredentialsError,
    InvalidTokenError,
    NotAuthenticatedError,
    RateLimitedError,
    SessionExpiredError,
    TokenAlreadyUsedError,
    TokenExpiredError,
    UpstreamUnavailableError,
    UserAlreadyExistsError,
    UserNotFoundError,
)
from clients.email_client import EmailGatewayClient, EmailGatewayError
from utils.timezone import expires_in, is_expired
from utils.user_context import user_context

if TYPE_CHECKING:
    from clients.firebase_client import FirebaseTokenVerifier

logger = logging.getLogger(__name__)


@dataclass
class FederatedLoginResult:
    """Result of a verified federated sign-in."""

    session: FederatedSession
    user: User | None
    is_existing_user: bool


@dataclass
class RequestContext:
    """Client details recorded with security events."""

    ip_address: str | None = None
    user_agent: str | None = None


def _split_display_name(display_name: str | None) -> tuple[str | None, str | None]:
    if not display_name or not display_name.strip():
        return None, None
    first, _, last = display_name.strip().partition(" ")
    return first, (last.strip() or None)


class AuthService:
    """Orchestrates authentication flows.

    Handles:
    - Email/password signup, verification and login
    - Password reset
    - Federated sign-in (ID token to server-side federated session)
    - Role assignment, including onboarding of federated-pending users
    - Logout for both session kinds
    """

    def __init__(
        self,
        config: AuthConfig,
        auth_db: AuthDatabase,
        session_manager: SessionManager,
        rate_limiter: RateLimiter,
        email_client: EmailGatewayClient,
        security_logger: SecurityLogger,
        token_verifier: "FirebaseTokenVerifier",
        verify_attempts: int = 3,
        verify_backoff_seconds: float = 0.5,
    ):
        self._config = config
        self._auth_db = auth_db
        self._session_manager = session_manager
        self._rate_limiter = rate_limiter
        self._email_client = email_client
        self._security_logger = security_logger
        self._token_verifier = token_verifier
        self._verify_attempts = verify_attempts
        self._verify_backoff_seconds = verify_backoff_seconds

    def _check_rate_limit(self, action: str, email: str, ctx: RequestContext) -> None:
        try:
            self._rate_limiter.check_rate_limit(action, email)
        except RateLimitedError:
            self._security_logger.log(
                SecurityEvent.RATE_LIMITED,
                email=email,
                ip_address=ctx.ip_address,
                user_agent=ctx.user_agent,
                details={"action": action},
            )
            raise

    def _validate_password(self, password: str) -> None:
        if len(password) < self._config.password_min_length:
            raise ValueError(
                f"Password must be at least {self._config.password_min_length} characters long"
            )

    # -------------------------------------------------------------------------
    # Email/password
    # -------------------------------------------------------------------------

    def signup(
        self,
        email: str,
        password: str,
        first_name: str | None = None,
        last_name: str | None = None,
        ctx: RequestContext | None = None,
    ) -> User:
        """Create an unverified account and send the verification link.

        A failed email send is logged; the account still exists and the user
        can ask for a resend.

        Raises:
            ValueError: Password too short.
            UserAlreadyExistsError: Email already registered.
        """
        ctx = ctx or RequestContext()
        email = email.lower().strip()
        self._validate_password(password)

        if self._auth_db.get_user_by_email(email) is not None:
            raise UserAlreadyExistsError("User with this email already exists")

        token = secrets.token_urlsafe(32)
        try:
            user = self._auth_db.create_user(
                email=email,
                password_hash=hash_password(password),
                verification_token=token,
                verification_token_expiry=expires_in(
                    hours=self._config.verification_token_expiry_hours
                ),
                first_name=first_name,
                last_name=last_name,
            )
        except psycopg2.errors.UniqueViolation:
            # Lost a race with a concurrent signup for the same address
            raise UserAlreadyExistsError("User with this email already exists")

        self._security_logger.log(
            SecurityEvent.SIGNUP,
            email=email,
            user_id=user.id,
            ip_address=ctx.ip_address,
            user_agent=ctx.user_agent,
        )

        try:
            self._email_client.send_verification_email(
                email, token, self._config.app_base_url, first_name=first_name
            )
        except EmailGatewayError as e:
            logger.error(f"Verification email failed for new user {user.id}: {e}")

        return user

    def email_login(self, email: str, password: str, ctx: RequestContext | None = None) -> AuthenticatedUser:
        """Check credentials and open an email/password session.

        Raises:
            RateLimitedError: Too many attempts for this email.
            InvalidCredentialsError: Unknown email or wrong password.
            EmailNotVerifiedError: Password matched, email not verified.
        """
        ctx = ctx or RequestContext()
        email = email.lower().strip()
        self._check_rate_limit("login", email, ctx)

        user = self._auth_db.get_user_by_email(email)
        if user is None or not verify_password(password, user.password_hash):
            self._security_logger.log(
                SecurityEvent.LOGIN_FAILED,
                email=email,
                user_id=user.id if user else None,
                ip_address=ctx.ip_address,
                user_agent=ctx.user_agent,
                details={"reason": "invalid_credentials"},
            )
            raise InvalidCredentialsError("Invalid email or password")

        if not user.email_verified:
            self._security_logger.log(
                SecurityEvent.LOGIN_FAILED,
                email=email,
                user_id=user.id,
                ip_address=ctx.ip_address,
                user_agent=ctx.user_agent,
                details={"reason": "email_not_verified"},
            )
            raise EmailNotVerifiedError(email)

        self._rate_limiter.reset_rate_limit("login", email)
        session = self._session_manager.create_session(user.id)
        self._security_logger.log(
            SecurityEvent.SESSION_CREATED,
            email=email,
            user_id=user.id,
            ip_address=ctx.ip_address,
            user_agent=ctx.user_agent,
            details={"kind": "email_password"},
        )

        self._security_logger.log(
            SecurityEvent.LOGIN_SUCCEEDED,
            email=email,
            user_id=user.id,
            ip_address=ctx.ip_address,
            user_agent=ctx.user_agent,
        )
        return AuthenticatedUser(user=user, session=session)

    def logout(self, session_token: str | None, ctx: RequestContext | None = None) -> None:
        """Revoke an email/password session. Safe with a missing or unknown token."""
        if not session_token:
            return
        ctx = ctx or RequestContext()
        self._session_manager.revoke_session(session_token)
        self._security_logger.log(
            SecurityEvent.SESSION_REVOKED,
            ip_address=ctx.ip_address,
            user_agent=ctx.user_agent,
        )

    def record_activity(self, session_token: str | None) -> None:
        """Slide an email/password session's expiry forward, if it has one."""
        if not session_token:
            return
        try:
            self._session_manager.validate_session(session_token)
        except SessionExpiredError:
            logger.debug("Session expired before activity was recorded")

    # -------------------------------------------------------------------------
    # Verification
    # -------------------------------------------------------------------------

    def verify_email(self, token: str, ctx: RequestContext | None = None) -> User:
        """Consume a verification token.

        Expiry is checked here, at use time, so a token the cleanup sweep
        has not reached yet still reads as expired. Once the sweep deletes
        the unverified row the token is simply unknown.

        Raises:
            InvalidTokenError: Token never existed, or its row was swept.
            TokenAlreadyUsedError: Email already verified with this token.
            TokenExpiredError: Token past its expiry.
        """
        ctx = ctx or RequestContext()
        user = self._auth_db.get_user_by_verification_token(token)

        if user is None:
            self._log_verification_failure(None, "invalid", ctx)
            raise InvalidTokenError("Invalid verification link")

        if user.email_verified:
            self._log_verification_failure(user, "already_used", ctx)
            raise TokenAlreadyUsedError("This verification link has already been used")

        if is_expired(user.verification_token_expiry):
            self._log_verification_failure(user, "expired", ctx)
            raise TokenExpiredError("This verification link has expired")

        if not self._auth_db.mark_email_verified(user.id):
            # Verified concurrently by another click on the same link
            raise TokenAlreadyUsedError("This verification link has already been used")

        self._security_logger.log(
            SecurityEvent.EMAIL_VERIFIED,
            email=user.email,
            user_id=user.id,
            ip_address=ctx.ip_address,
            user_agent=ctx.user_agent,
        )
        return user.model_copy(update={"email_verified": True, "verification_token_expiry": None})

    def _log_verification_failure(self, user: User | None, reason: str, ctx: RequestContext) -> None:
        self._security_logger.log(
            SecurityEvent.VERIFICATION_FAILED,
            email=user.email if user else None,
            user_id=user.id if user else None,
            ip_address=ctx.ip_address,
            user_agent=ctx.user_agent,
            details={"reason": reason},
        )

    def resend_verification(self, email: str, ctx: RequestContext | None = None) -> None:
        """Issue a fresh verification token and email it.

        Raises:
            RateLimitedError: Too many resends for this email.
            UserNotFoundError: No account for this email.
            ValueError: Email already verified.
            UpstreamUnavailableError: Email gateway failed.
        """
        ctx = ctx or RequestContext()
        email = email.lower().strip()
        self._check_rate_limit("resend", email, ctx)

        user = self._auth_db.get_user_by_email(email)
        if user is None:
            raise UserNotFoundError("User not found")
        if user.email_verified:
            raise ValueError("Email is already verified")

        token = secrets.token_urlsafe(32)
        self._auth_db.set_verification_token(
            user.id,
            token,
            expires_in(hours=self._config.verification_token_expiry_hours),
        )

        try:
            self._email_client.send_verification_email(
                email, token, self._config.app_base_url, first_name=user.first_name
            )
        except EmailGatewayError as e:
            raise UpstreamUnavailableError(f"Failed to send verification email: {e}")

        self._security_logger.log(
            SecurityEvent.VERIFICATION_RESENT,
            email=email,
            user_id=user.id,
            ip_address=ctx.ip_address,
            user_agent=ctx.user_agent,
        )

    # -------------------------------------------------------------------------
    # Password reset
    # -------------------------------------------------------------------------

    def forgot_password(self, email: str, ctx: RequestContext | None = None) -> None:
        """Email a reset link if a password account exists.

        Returns the same way whether or not the account exists.

        Raises:
            RateLimitedError: Too many requests for this email.
        """
        ctx = ctx or RequestContext()
        email = email.lower().strip()
        self._check_rate_limit("reset", email, ctx)

        user = self._auth_db.get_user_by_email(email)
        if user is None or not user.password_hash:
            logger.info("Password reset requested for unknown or passwordless account")
            return

        token = secrets.token_urlsafe(32)
        self._auth_db.set_password_reset_token(
            user.id,
            token,
            expires_in(minutes=self._config.password_reset_expiry_minutes),
        )
        self._security_logger.log(
            SecurityEvent.PASSWORD_RESET_REQUESTED,
            email=email,
            user_id=user.id,
            ip_address=ctx.ip_address,
            user_agent=ctx.user_agent,
        )

        try:
            self._email_client.send_password_reset_email(
                email, token, self._config.app_base_url, first_name=user.first_name
            )
        except EmailGatewayError as e:
            logger.error(f"Password reset email failed for user {user.id}: {e}")

    def reset_password(self, token: str, new_password: str, ctx: RequestContext | None = None) -> None:
        """Set a new password using a reset token.

        The token is claimed (nulled) in its own committed statement before
        the password is written, so it cannot be replayed even if the
        password update fails.

        Raises:
            ValueError: New password too short.
            InvalidTokenError: Token unknown or already used.
            TokenExpiredError: Token past its expiry.
            UserNotFoundError: Account removed after the token was claimed.
        """
        ctx = ctx or RequestContext()
        self._validate_password(new_password)

        claimed = self._auth_db.claim_password_reset_token(token)
        if claimed is None:
            self._log_reset_failure(None, "invalid", ctx)
            raise InvalidTokenError("Invalid or already used reset link")

        user_id, expiry = claimed
        if is_expired(expiry):
            self._log_reset_failure(user_id, "expired", ctx)
            raise TokenExpiredError("This reset link has expired")

        if not self._auth_db.update_password(user_id, hash_password(new_password)):
            raise UserNotFoundError("User not found")

        self._security_logger.log(
            SecurityEvent.PASSWORD_RESET_COMPLETED,
            user_id=user_id,
            ip_address=ctx.ip_address,
            user_agent=ctx.user_agent,
        )

    def _log_reset_failure(self, user_id, reason: str, ctx: RequestContext) -> None:
        self._security_logger.log(
            SecurityEvent.PASSWORD_RESET_FAILED,
            user_id=user_id,
            ip_address=ctx.ip_address,
            user_agent=ctx.user_agent,
            details={"reason": reason},
        )

    # -------------------------------------------------------------------------
    # Federated sign-in
    # -------------------------------------------------------------------------

    def _verify_id_token(self, id_token: str):
        """Verify with retries on provider outages. Bad tokens fail at once."""
        retrying = Retrying(
            stop=stop_after_attempt(self._verify_attempts),
            wait=wait_exponential(multiplier=self._verify_backoff_seconds, max=5),
            retry=retry_if_exception_type(UpstreamUnavailableError),
            reraise=True,
        )
        return retrying(self._token_verifier.verify, id_token)

    def federated_login(
        self,
        id_token: str,
        uid: str,
        ctx: RequestContext | None = None,
    ) -> FederatedLoginResult:
        """Verify a provider ID token and record a federated session.

        No local row is created here. An existing password account with the
        same address is linked only when the provider asserts the address is
        verified.

        Raises:
            InvalidTokenError: Token invalid or issued for a different uid.
            UpstreamUnavailableError: Provider keys unreachable after retries.
        """
        ctx = ctx or RequestContext()
        claims = self._verify_id_token(id_token)

        if claims.uid != uid:
            raise InvalidTokenError("ID token does not match the signed-in account")

        user = self._auth_db.get_user_by_federated_uid(claims.uid)

        if user is None and claims.email and claims.email_verified:
            existing = self._auth_db.get_user_by_email(claims.email)
            if existing is not None and existing.federated_uid is None:
                user = self._auth_db.link_federated_uid(existing.id, claims.uid)
                self._security_logger.log(
                    SecurityEvent.FEDERATED_LINKED,
                    email=claims.email,
                    user_id=existing.id,
                    ip_address=ctx.ip_address,
                    user_agent=ctx.user_agent,
                )

        session = self._session_manager.create_federated_session(claims)
        self._security_logger.log(
            SecurityEvent.SESSION_CREATED,
            email=claims.email,
            user_id=user.id if user else None,
            ip_address=ctx.ip_address,
            user_agent=ctx.user_agent,
            details={"kind": "federated"},
        )
        self._security_logger.log(
            SecurityEvent.FEDERATED_LOGIN,
            email=claims.email,
            user_id=user.id if user else None,
            ip_address=ctx.ip_address,
            user_agent=ctx.user_agent,
            details={"existing_user": user is not None},
        )
        return FederatedLoginResult(session=session, user=user, is_existing_user=user is not None)

    def federated_logout(self, federated_token: str | None, ctx: RequestContext | None = None) -> None:
        """Revoke a federated session. Safe with a missing or unknown token."""
        if not federated_token:
            return
        ctx = ctx or RequestContext()
        self._session_manager.revoke_federated_session(federated_token)
        self._security_logger.log(
            SecurityEvent.FEDERATED_LOGOUT,
            ip_address=ctx.ip_address,
            user_agent=ctx.user_agent,
        )

    def get_federated_user(self, federated_token: str | None) -> User:
        """Local user behind a federated session.

        Raises:
            NotAuthenticatedError: No valid federated session.
            UserNotFoundError: Session valid, no local row yet.
        """
        if not federated_token:
            raise NotAuthenticatedError("No federated session")
        try:
            federated = self._session_manager.get_federated_session(federated_token)
        except SessionExpiredError:
            raise NotAuthenticatedError("Federated session not found")

        user = self._auth_db.get_user_by_federated_uid(federated.uid)
        if user is None:
            raise UserNotFoundError("User not found")
        return user

    # -------------------------------------------------------------------------
    # Onboarding
    # -------------------------------------------------------------------------

    def assign_role(
        self,
        identity: Identity,
        role: Role,
        uid: str | None = None,
        email: str | None = None,
        display_name: str | None = None,
        photo_url: str | None = None,
        ctx: RequestContext | None = None,
    ) -> User:
        """Set the caller's role.

        For a federated-pending caller this is the explicit onboarding step
        that creates the local row.

        Raises:
            NotAuthenticatedError: Caller is unauthenticated.
            UserNotFoundError: Local row vanished before the update.
            ValueError: Body uid disagrees with the session, or no email known.
        """
        ctx = ctx or RequestContext()

        if isinstance(identity, (LocalIncomplete, LocalComplete)):
            with user_context(identity.user_id):
                user = self._auth_db.update_role(identity.user_id, role)
            if user is None:
                raise UserNotFoundError("User not found")

        elif isinstance(identity, FederatedPending):
            if uid is not None and uid != identity.uid:
                raise ValueError("uid does not match the signed-in account")
            user_email = identity.email or email
            if not user_email:
                raise ValueError("email is required to complete registration")

            first_name, last_name = _split_display_name(display_name or identity.display_name)
            try:
                user = self._auth_db.create_federated_user(
                    uid=identity.uid,
                    email=user_email,
                    role=role,
                    first_name=first_name,
                    last_name=last_name,
                    profile_image_url=photo_url or identity.photo_url,
                )
            except psycopg2.errors.UniqueViolation:
                raise UserAlreadyExistsError("An account with this email already exists")

            self._security_logger.log(
                SecurityEvent.USER_CREATED,
                email=user.email,
                user_id=user.id,
                ip_address=ctx.ip_address,
                user_agent=ctx.user_agent,
                details={"mechanism": "federated"},
            )

        else:
            raise NotAuthenticatedError("Authentication required")

        self._security_logger.log(
            SecurityEvent.ROLE_ASSIGNED,
            email=user.email,
            user_id=user.id,
            ip_address=ctx.ip_address,
            user_agent=ctx.user_agent,
            details={"role": role.value},
        )
        return user
