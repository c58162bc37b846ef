"""Session token lifecycle management.

Two kinds of server-side sessions live in Valkey:
- email/password sessions (``session:<token>``) bound to a local user id
- federated sessions (``federated_session:<token>``) holding verified
  provider claims, which may or may not map to a local user yet

Token format is cryptographically random (secrets.token_urlsafe).
Sessions are valid until logout unless a sliding expiry is configured.
"""

import secrets
from datetime import timedelta
from uuid import UUID

from clients.valkey_client import ValkeyClient
from auth.config import AuthConfig
from auth.types import FederatedClaims, FederatedSession, Session
from auth.exceptions import SessionExpiredError
from utils.timezone import now_utc, parse_iso


class SessionManager:
    """Session token lifecycle management.

    With ``session_expiry_hours`` set, sessions carry a Valkey TTL that is
    reset on every validation (sliding window). Without it they are kept
    until revoked.
    """

    KEY_PREFIX = "session:"
    FEDERATED_KEY_PREFIX = "federated_session:"

    def __init__(self, valkey: ValkeyClient, config: AuthConfig):
        self._valkey = valkey
        self._config = config

    def _key(self, token: str) -> str:
        """Generate Valkey key for session token."""
        return f"{self.KEY_PREFIX}{token}"

    def _federated_key(self, token: str) -> str:
        return f"{self.FEDERATED_KEY_PREFIX}{token}"

    def _ttl_seconds(self) -> int | None:
        if self._config.session_expiry_hours is None:
            return None
        return self._config.session_expiry_hours * 3600

    def _store(self, session: Session) -> None:
        self._valkey.set_json(
            self._key(session.token),
            {
                "user_id": str(session.user_id),
                "created_at": session.created_at.isoformat(),
                "last_activity_at": session.last_activity_at.isoformat(),
                "expires_at": session.expires_at.isoformat() if session.expires_at else None,
            },
            expire_seconds=self._ttl_seconds(),
        )

    def create_session(self, user_id: UUID) -> Session:
        """Create new email/password session for user."""
        now = now_utc()
        ttl = self._ttl_seconds()

        session = Session(
            token=secrets.token_urlsafe(32),
            user_id=user_id,
            created_at=now,
            last_activity_at=now,
            expires_at=now + timedelta(seconds=ttl) if ttl else None,
        )
        self._store(session)
        return session

    def get_session(self, token: str) -> Session:
        """Look up a session without touching it.

        Raises SessionExpiredError if token unknown, revoked or expired.
        Never writes to Valkey; the request gate calls this on every request.
        """
        data = self._valkey.get_json(self._key(token))

        if data is None:
            raise SessionExpiredError("Session not found or expired")

        session = Session(
            token=token,
            user_id=UUID(data["user_id"]),
            created_at=parse_iso(data["created_at"]),
            last_activity_at=parse_iso(data["last_activity_at"]),
            expires_at=parse_iso(data["expires_at"]) if data.get("expires_at") else None,
        )

        # Valkey TTL should already have dropped it
        if session.expires_at is not None and now_utc() > session.expires_at:
            raise SessionExpiredError("Session expired")

        return session

    def validate_session(self, token: str) -> Session:
        """Validate session token and record activity on it.

        Raises SessionExpiredError if token unknown, revoked or expired.
        Extends the session when a sliding expiry is configured.
        """
        try:
            session = self.get_session(token)
        except SessionExpiredError:
            self._valkey.delete(self._key(token))
            raise

        if session.expires_at is None:
            return session

        return self._extend_session(session)

    def _extend_session(self, session: Session) -> Session:
        """Extend session expiry and update last_activity_at."""
        now = now_utc()
        updated = session.model_copy(
            update={
                "last_activity_at": now,
                "expires_at": now + timedelta(seconds=self._ttl_seconds()),
            }
        )
        self._store(updated)
        return updated

    def revoke_session(self, token: str) -> None:
        """Revoke session (logout).

        Safe to call with nonexistent token.
        """
        self._valkey.delete(self._key(token))

    def create_federated_session(self, claims: FederatedClaims) -> FederatedSession:
        """Record a verified federated sign-in."""
        session = FederatedSession(
            token=secrets.token_urlsafe(32),
            uid=claims.uid,
            email=claims.email,
            display_name=claims.display_name,
            photo_url=claims.photo_url,
            created_at=now_utc(),
        )
        self._valkey.set_json(
            self._federated_key(session.token),
            {
                "uid": session.uid,
                "email": session.email,
                "display_name": session.display_name,
                "photo_url": session.photo_url,
                "created_at": session.created_at.isoformat(),
            },
            expire_seconds=self._ttl_seconds(),
        )
        return session

    def get_federated_session(self, token: str) -> FederatedSession:
        """Look up a federated session.

        Raises SessionExpiredError if token unknown or revoked.
        """
        data = self._valkey.get_json(self._federated_key(token))
        if data is None:
            raise SessionExpiredError("Federated session not found")

        return FederatedSession(
            token=token,
            uid=data["uid"],
            email=data.get("email"),
            display_name=data.get("display_name"),
            photo_url=data.get("photo_url"),
            created_at=parse_iso(data["created_at"]),
        )

    def revoke_federated_session(self, token: str) -> None:
        """Revoke federated session. Safe to call with nonexistent token."""
        self._valkey.delete(self._federated_key(token))
