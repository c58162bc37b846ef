"""Audit trail of auth events in the security_events table.

Rows are only ever inserted. The table has no RLS because most events
(failed logins, unknown emails) have no user to scope them to.
"""

import logging
from enum import Enum
from typing import Any
from uuid import UUID

from psycopg2.extras import Json

from clients.postgres_client import PostgresClient

logger = logging.getLogger(__name__)


class SecurityEvent(Enum):
    SIGNUP = "signup"
    LOGIN_SUCCEEDED = "login_succeeded"
    LOGIN_FAILED = "login_failed"
    SESSION_CREATED = "session_created"
    SESSION_REVOKED = "session_revoked"
    FEDERATED_LOGIN = "federated_login"
    FEDERATED_LOGOUT = "federated_logout"
    FEDERATED_LINKED = "federated_linked"
    EMAIL_VERIFIED = "email_verified"
    VERIFICATION_FAILED = "verification_failed"
    VERIFICATION_RESENT = "verification_resent"
    PASSWORD_RESET_REQUESTED = "password_reset_requested"
    PASSWORD_RESET_COMPLETED = "password_reset_completed"
    PASSWORD_RESET_FAILED = "password_reset_failed"
    ROLE_ASSIGNED = "role_assigned"
    USER_CREATED = "user_created"
    RATE_LIMITED = "rate_limited"
    CLEANUP_SWEEP = "cleanup_sweep"


# Also surfaced at WARNING in the application log
_FAILURE_EVENTS = frozenset({
    SecurityEvent.LOGIN_FAILED,
    SecurityEvent.VERIFICATION_FAILED,
    SecurityEvent.PASSWORD_RESET_FAILED,
    SecurityEvent.RATE_LIMITED,
})


class SecurityLogger:
    """Writes and queries auth audit events."""

    def __init__(self, postgres: PostgresClient):
        self._db = postgres

    def log(
        self,
        event: SecurityEvent,
        email: str | None = None,
        user_id: UUID | None = None,
        ip_address: str | None = None,
        user_agent: str | None = None,
        details: dict[str, Any] | None = None,
    ) -> None:
        level = logging.WARNING if event in _FAILURE_EVENTS else logging.INFO
        logger.log(level, f"Security event {event.value} (user={user_id}, ip={ip_address})")

        self._db.execute(
            """INSERT INTO security_events
               (event_type, email, user_id, ip_address, user_agent, details)
               VALUES (%(event_type)s, %(email)s, %(user_id)s, %(ip_address)s,
                       %(user_agent)s, %(details)s)""",
            {
                "event_type": event.value,
                "email": email,
                "user_id": user_id,
                "ip_address": ip_address,
                "user_agent": user_agent,
                "details": Json(details) if details else None,
            },
        )
