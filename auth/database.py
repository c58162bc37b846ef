"""Credential store: database operations on the users table.

The users table has no RLS. It is read during authentication, before any
user context is established.
"""

from datetime import datetime
from typing import Any
from uuid import UUID

from clients.postgres_client import PostgresClient
from auth.types import Role, User
from utils.timezone import now_utc

_USER_COLUMNS = """id, email, password_hash, federated_uid, email_verified, role,
    first_name, last_name, profile_image_url,
    verification_token, verification_token_expiry,
    password_reset_token, password_reset_token_expiry,
    created_at, updated_at"""


def _row_to_user(row: dict[str, Any]) -> User:
    return User(
        id=UUID(row["id"]) if isinstance(row["id"], str) else row["id"],
        email=row["email"],
        password_hash=row["password_hash"],
        federated_uid=row["federated_uid"],
        email_verified=row["email_verified"],
        role=Role(row["role"]) if row["role"] else None,
        first_name=row["first_name"],
        last_name=row["last_name"],
        profile_image_url=row["profile_image_url"],
        verification_token=row["verification_token"],
        verification_token_expiry=row["verification_token_expiry"],
        password_reset_token=row["password_reset_token"],
        password_reset_token_expiry=row["password_reset_token_expiry"],
        created_at=row["created_at"],
        updated_at=row["updated_at"],
    )


class AuthDatabase:
    """Database operations for authentication."""

    def __init__(self, postgres: PostgresClient):
        self._db = postgres

    def _single_user(self, query: str, params: tuple) -> User | None:
        row = self._db.execute_single(query, params)
        return _row_to_user(row) if row else None

    def _returning_user(self, query: str, params: tuple) -> User | None:
        rows = self._db.execute_returning(query, params)
        return _row_to_user(rows[0]) if rows else None

    # -------------------------------------------------------------------------
    # Lookups
    # -------------------------------------------------------------------------

    def get_user_by_id(self, user_id: UUID) -> User | None:
        """Find user by ID."""
        return self._single_user(
            f"SELECT {_USER_COLUMNS} FROM users WHERE id = %s",
            (str(user_id),),
        )

    def get_user_by_email(self, email: str) -> User | None:
        """Find user by email (case-insensitive)."""
        return self._single_user(
            f"SELECT {_USER_COLUMNS} FROM users WHERE email = lower(%s)",
            (email,),
        )

    def get_user_by_federated_uid(self, uid: str) -> User | None:
        """Find the local user linked to a federated subject id."""
        return self._single_user(
            f"SELECT {_USER_COLUMNS} FROM users WHERE federated_uid = %s",
            (uid,),
        )

    def get_user_by_verification_token(self, token: str) -> User | None:
        """Find user by verification token. Expiry is the caller's check."""
        return self._single_user(
            f"SELECT {_USER_COLUMNS} FROM users WHERE verification_token = %s",
            (token,),
        )

    # -------------------------------------------------------------------------
    # Creation
    # -------------------------------------------------------------------------

    def create_user(
        self,
        email: str,
        password_hash: str,
        verification_token: str,
        verification_token_expiry: datetime,
        first_name: str | None = None,
        last_name: str | None = None,
    ) -> User:
        """Create an unverified email/password user (email lowercased)."""
        return self._returning_user(
            f"""INSERT INTO users
                   (email, password_hash, first_name, last_name,
                    verification_token, verification_token_expiry)
               VALUES (lower(%s), %s, %s, %s, %s, %s)
               RETURNING {_USER_COLUMNS}""",
            (
                email,
                password_hash,
                first_name,
                last_name,
                verification_token,
                verification_token_expiry,
            ),
        )

    def create_federated_user(
        self,
        uid: str,
        email: str,
        role: Role,
        first_name: str | None = None,
        last_name: str | None = None,
        profile_image_url: str | None = None,
    ) -> User:
        """Create the local row for a federated sign-in at onboarding.

        The provider already verified the address, so the row starts verified
        and is never a candidate for the unverified-account sweep.
        """
        return self._returning_user(
            f"""INSERT INTO users
                   (email, federated_uid, email_verified, role,
                    first_name, last_name, profile_image_url)
               VALUES (lower(%s), %s, true, %s, %s, %s, %s)
               RETURNING {_USER_COLUMNS}""",
            (email, uid, role.value, first_name, last_name, profile_image_url),
        )

    # -------------------------------------------------------------------------
    # Updates
    # -------------------------------------------------------------------------

    def link_federated_uid(self, user_id: UUID, uid: str) -> User | None:
        """Attach a federated subject id to an existing user."""
        return self._returning_user(
            f"""UPDATE users SET federated_uid = %s, updated_at = %s
               WHERE id = %s
               RETURNING {_USER_COLUMNS}""",
            (uid, now_utc(), str(user_id)),
        )

    def update_role(self, user_id: UUID, role: Role) -> User | None:
        """Set the user's role. None if the user doesn't exist."""
        return self._returning_user(
            f"""UPDATE users SET role = %s, updated_at = %s
               WHERE id = %s
               RETURNING {_USER_COLUMNS}""",
            (role.value, now_utc(), str(user_id)),
        )

    def set_verification_token(self, user_id: UUID, token: str, expires_at: datetime) -> None:
        """Replace the user's verification token (resend)."""
        self._db.execute_returning(
            """UPDATE users
               SET verification_token = %s, verification_token_expiry = %s, updated_at = %s
               WHERE id = %s
               RETURNING id""",
            (token, expires_at, now_utc(), str(user_id)),
        )

    def mark_email_verified(self, user_id: UUID) -> bool:
        """Flip email_verified. False if already verified or user gone.

        The token value is kept so a second use of the same link can be
        told apart from a link that never existed.
        """
        rows = self._db.execute_returning(
            """UPDATE users
               SET email_verified = true, verification_token_expiry = NULL, updated_at = %s
               WHERE id = %s AND email_verified = false
               RETURNING id""",
            (now_utc(), str(user_id)),
        )
        return len(rows) > 0

    def set_password_reset_token(self, user_id: UUID, token: str, expires_at: datetime) -> None:
        """Issue a password reset token, replacing any previous one."""
        self._db.execute_returning(
            """UPDATE users
               SET password_reset_token = %s, password_reset_token_expiry = %s, updated_at = %s
               WHERE id = %s
               RETURNING id""",
            (token, expires_at, now_utc(), str(user_id)),
        )

    def claim_password_reset_token(self, token: str) -> tuple[UUID, datetime | None] | None:
        """Atomically invalidate a reset token and return what it pointed at.

        Committed on its own, before any password write, so the token is
        gone even if the rest of the reset fails.

        Returns:
            (user_id, expiry the token had) or None if no such token.
        """
        rows = self._db.execute_returning(
            """WITH claimed AS (
                   SELECT id, password_reset_token_expiry
                   FROM users
                   WHERE password_reset_token = %s
                   FOR UPDATE
               )
               UPDATE users u
               SET password_reset_token = NULL,
                   password_reset_token_expiry = NULL,
                   updated_at = %s
               FROM claimed
               WHERE u.id = claimed.id
               RETURNING u.id, claimed.password_reset_token_expiry AS expiry""",
            (token, now_utc()),
        )
        if not rows:
            return None
        row = rows[0]
        user_id = UUID(row["id"]) if isinstance(row["id"], str) else row["id"]
        return user_id, row["expiry"]

    def update_password(self, user_id: UUID, password_hash: str) -> bool:
        """Set a new password hash. False if user not found."""
        rows = self._db.execute_returning(
            "UPDATE users SET password_hash = %s, updated_at = %s WHERE id = %s RETURNING id",
            (password_hash, now_utc(), str(user_id)),
        )
        return len(rows) > 0

    # -------------------------------------------------------------------------
    # Sweep operations
    # -------------------------------------------------------------------------

    def delete_expired_unverified_users(self, now: datetime) -> int:
        """Delete unverified users whose verification token expired. Returns count."""
        rows = self._db.execute_returning(
            """DELETE FROM users
               WHERE email_verified = false
                 AND verification_token_expiry IS NOT NULL
                 AND verification_token_expiry < %s
               RETURNING id""",
            (now,),
        )
        return len(rows)

    def clear_expired_password_reset_tokens(self, now: datetime) -> int:
        """Null out expired reset tokens, keeping the users. Returns count."""
        rows = self._db.execute_returning(
            """UPDATE users
               SET password_reset_token = NULL, password_reset_token_expiry = NULL
               WHERE password_reset_token_expiry IS NOT NULL
                 AND password_reset_token_expiry < %s
               RETURNING id""",
            (now,),
        )
        return len(rows)
