"""Resolved identity of a request.

An Identity is exactly one of four variants. The resolver produces one for
every combination of incoming signals; nothing downstream ever has to deal
with "maybe authenticated".
"""

from dataclasses import dataclass
from enum import Enum
from uuid import UUID

from auth.types import FederatedSession, Session, User


class AuthMechanism(Enum):
    """Which credential produced a local identity."""

    PLATFORM = "platform"
    FEDERATED = "federated"
    EMAIL_PASSWORD = "email_password"


@dataclass(frozen=True)
class RequestCredentials:
    """Raw credentials as they arrived on the request. Nothing validated yet."""

    platform_user_id: str | None = None
    federated_token: str | None = None
    session_token: str | None = None


@dataclass(frozen=True)
class RequestSignals:
    """Validated signals. A field is None when that mechanism is absent."""

    platform_user_id: str | None = None
    federated_session: FederatedSession | None = None
    email_password_session: Session | None = None


@dataclass(frozen=True)
class Unauthenticated:
    """No valid credential of any kind."""

    kind = "unauthenticated"


@dataclass(frozen=True)
class FederatedPending:
    """Valid federated session, but no local user row for the subject yet."""

    uid: str
    email: str | None = None
    display_name: str | None = None
    photo_url: str | None = None

    kind = "federated_pending"


@dataclass(frozen=True)
class LocalIncomplete:
    """Local user exists, onboarding (role selection) not finished."""

    user: User
    mechanism: AuthMechanism

    kind = "local_incomplete"

    @property
    def user_id(self) -> UUID:
        return self.user.id


@dataclass(frozen=True)
class LocalComplete:
    """Local user exists with a role assigned."""

    user: User
    mechanism: AuthMechanism

    kind = "local_complete"

    @property
    def user_id(self) -> UUID:
        return self.user.id


Identity = Unauthenticated | FederatedPending | LocalIncomplete | LocalComplete


def local_identity(user: User, mechanism: AuthMechanism) -> LocalIncomplete | LocalComplete:
    """Classify a found user row by role presence."""
    if user.has_role:
        return LocalComplete(user=user, mechanism=mechanism)
    return LocalIncomplete(user=user, mechanism=mechanism)


def is_local(identity: Identity) -> bool:
    """True if some local user row backs the identity."""
    return isinstance(identity, (LocalIncomplete, LocalComplete))
