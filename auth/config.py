"""Authentication configuration."""

from pydantic import BaseModel, Field


class AuthConfig(BaseModel):
    """
    Authentication configuration.

    All durations are in their natural units (minutes for short durations,
    hours for longer ones) to make configuration intuitive.
    """

    # Session settings
    session_expiry_hours: int | None = Field(
        default=None,
        description="Sliding session lifetime in hours. None keeps sessions until logout",
        ge=1,
        le=2160,
    )
    session_cookie_name: str = Field(
        default="session_token",
        description="Cookie carrying the email/password session token",
    )
    federated_cookie_name: str = Field(
        default="federated_session",
        description="Cookie carrying the federated session token",
    )
    federated_header_name: str = Field(
        default="X-Federated-Session",
        description="Header alternative to the federated session cookie",
    )

    # Platform-native principal
    trust_platform_header: bool = Field(
        default=False,
        description="Accept the platform user header. Only enable behind the platform proxy",
    )
    platform_user_header: str = Field(
        default="X-Platform-User-Id",
        description="Header set by the hosting platform's auth layer",
    )

    # Single-use tokens
    verification_token_expiry_hours: int = Field(
        default=24,
        description="How long email verification links remain valid",
        ge=1,
        le=168,
    )
    password_reset_expiry_minutes: int = Field(
        default=60,
        description="How long password reset links remain valid",
        ge=5,
        le=1440,
    )

    # Passwords
    password_min_length: int = Field(
        default=8,
        description="Minimum password length at signup and reset",
        ge=8,
        le=128,
    )

    # Rate limiting
    rate_limit_attempts: int = Field(
        default=5,
        description="Max login/resend/reset requests per email per window",
        ge=1,
        le=20,
    )
    rate_limit_window_minutes: int = Field(
        default=15,
        description="Rate limit window duration",
        ge=5,
        le=60,
    )

    # Cleanup sweep
    cleanup_interval_hours: float = Field(
        default=6,
        description="Interval between credential store sweeps",
        gt=0,
        le=168,
    )

    # Application
    app_base_url: str = Field(
        default="http://localhost:5000",
        description="Base URL for verification and reset links",
    )
    app_name: str = Field(
        default="HomeschoolSync",
        description="Application name for emails",
    )
