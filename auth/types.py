"""Pydantic models for auth domain."""

from datetime import datetime
from enum import Enum
from uuid import UUID

from pydantic import BaseModel, ConfigDict, EmailStr, Field, field_validator


class Role(str, Enum):
    """User roles. Unset role means onboarding is incomplete."""

    TEACHER = "teacher"
    PARENT = "parent"
    STUDENT = "student"

    @classmethod
    def parse(cls, value: "str | Role") -> "Role":
        """Parse wire value; 'tutor' is the legacy name for teacher."""
        if isinstance(value, Role):
            return value
        normalized = value.strip().lower()
        if normalized == "tutor":
            return cls.TEACHER
        return cls(normalized)


class User(BaseModel):
    """A row in the credential store."""

    id: UUID
    email: EmailStr
    password_hash: str | None = Field(default=None, repr=False)
    federated_uid: str | None = None
    email_verified: bool = False
    role: Role | None = None
    first_name: str | None = None
    last_name: str | None = None
    profile_image_url: str | None = None
    verification_token: str | None = Field(default=None, repr=False)
    verification_token_expiry: datetime | None = None
    password_reset_token: str | None = Field(default=None, repr=False)
    password_reset_token_expiry: datetime | None = None
    created_at: datetime
    updated_at: datetime | None = None

    model_config = {"from_attributes": True}

    @property
    def has_role(self) -> bool:
        return self.role is not None


class UserProfile(BaseModel):
    """User as returned over the wire. Never carries secrets."""

    id: UUID
    email: EmailStr
    email_verified: bool
    role: Role | None
    first_name: str | None = None
    last_name: str | None = None
    profile_image_url: str | None = None
    created_at: datetime

    @classmethod
    def from_user(cls, user: User) -> "UserProfile":
        return cls(
            id=user.id,
            email=user.email,
            email_verified=user.email_verified,
            role=user.role,
            first_name=user.first_name,
            last_name=user.last_name,
            profile_image_url=user.profile_image_url,
            created_at=user.created_at,
        )


class Session(BaseModel):
    """An email/password session."""

    token: str = Field(..., description="Session token (opaque string)")
    user_id: UUID
    created_at: datetime
    last_activity_at: datetime
    expires_at: datetime | None = None  # None: valid until logout


class FederatedClaims(BaseModel):
    """Verified claims from a federated identity provider ID token."""

    uid: str = Field(..., min_length=1)
    email: EmailStr | None = None
    email_verified: bool = False
    display_name: str | None = None
    photo_url: str | None = None


class FederatedSession(BaseModel):
    """A server-side record of a verified federated sign-in."""

    token: str
    uid: str
    email: EmailStr | None = None
    display_name: str | None = None
    photo_url: str | None = None
    created_at: datetime


class AuthenticatedUser(BaseModel):
    """User info returned after successful email/password login."""

    user: User
    session: Session


# =============================================================================
# REQUEST BODIES
# =============================================================================


class _CamelRequest(BaseModel):
    """Request bodies accept the camelCase names the web client sends."""

    model_config = ConfigDict(populate_by_name=True)


class SignupRequest(_CamelRequest):
    email: EmailStr
    password: str
    first_name: str | None = Field(default=None, alias="firstName")
    last_name: str | None = Field(default=None, alias="lastName")


class EmailLoginRequest(_CamelRequest):
    email: EmailStr
    password: str = Field(..., min_length=1)


class EmailRequest(_CamelRequest):
    """Body for resend-verification and forgot-password."""

    email: EmailStr


class VerifyEmailRequest(_CamelRequest):
    token: str = Field(..., min_length=1)


class ResetPasswordRequest(_CamelRequest):
    token: str = Field(..., min_length=1)
    new_password: str = Field(..., alias="newPassword")


class FirebaseLoginRequest(_CamelRequest):
    uid: str = Field(..., min_length=1)
    email: EmailStr
    display_name: str | None = Field(default=None, alias="displayName")
    photo_url: str | None = Field(default=None, alias="photoURL")


class RoleUpdateRequest(_CamelRequest):
    role: Role
    uid: str | None = None
    email: EmailStr | None = None
    display_name: str | None = Field(default=None, alias="displayName")
    photo_url: str | None = Field(default=None, alias="photoURL")

    @field_validator("role", mode="before")
    @classmethod
    def _parse_role(cls, value):
        if isinstance(value, str):
            try:
                return Role.parse(value)
            except ValueError:
                raise ValueError("role must be one of: teacher, parent, student")
        return value
