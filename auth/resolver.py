"""Session resolver: raw request credentials to exactly one Identity.

Three mechanisms can authenticate a request. They are checked in a fixed
priority order and the first one that yields a local row (or, for the
federated mechanism, a pending sign-in) wins:

1. platform principal (trusted header from the hosting platform)
2. federated session (verified provider claims stored server-side)
3. email/password session

A mechanism whose lookup fails for any reason (unknown token, stale user id,
datastore error) counts as absent and resolution moves on to the next one.
Nothing here raises across a mechanism boundary.
"""

import logging
from uuid import UUID

from auth.database import AuthDatabase
from auth.exceptions import SessionExpiredError
from auth.identity import (
    AuthMechanism,
    FederatedPending,
    Identity,
    RequestCredentials,
    RequestSignals,
    Unauthenticated,
    local_identity,
)
from auth.session import SessionManager
from auth.types import FederatedSession, Session

logger = logging.getLogger(__name__)


class SessionResolver:
    """Resolves request credentials to an Identity."""

    def __init__(self, auth_db: AuthDatabase, session_manager: SessionManager):
        self._auth_db = auth_db
        self._session_manager = session_manager

    # -------------------------------------------------------------------------
    # Signal collection
    # -------------------------------------------------------------------------

    def collect_signals(self, credentials: RequestCredentials) -> RequestSignals:
        """Validate raw tokens against the session store.

        An invalid or unreachable session yields None for that mechanism.
        """
        return RequestSignals(
            platform_user_id=credentials.platform_user_id or None,
            federated_session=self._load_federated_session(credentials.federated_token),
            email_password_session=self._load_session(credentials.session_token),
        )

    def _load_federated_session(self, token: str | None) -> FederatedSession | None:
        if not token:
            return None
        try:
            return self._session_manager.get_federated_session(token)
        except SessionExpiredError:
            return None
        except Exception:
            logger.warning("Federated session lookup failed, treating as absent", exc_info=True)
            return None

    def _load_session(self, token: str | None) -> Session | None:
        if not token:
            return None
        try:
            return self._session_manager.get_session(token)
        except SessionExpiredError:
            return None
        except Exception:
            logger.warning("Session lookup failed, treating as absent", exc_info=True)
            return None

    # -------------------------------------------------------------------------
    # Resolution
    # -------------------------------------------------------------------------

    def resolve(self, signals: RequestSignals) -> Identity:
        """Map validated signals to exactly one Identity variant."""
        if signals.platform_user_id is not None:
            identity = self._resolve_platform(signals.platform_user_id)
            if identity is not None:
                return identity

        if signals.federated_session is not None:
            identity = self._resolve_federated(signals.federated_session)
            if identity is not None:
                return identity

        if signals.email_password_session is not None:
            identity = self._resolve_email_password(signals.email_password_session)
            if identity is not None:
                return identity

        return Unauthenticated()

    def resolve_credentials(self, credentials: RequestCredentials) -> Identity:
        """collect_signals then resolve."""
        return self.resolve(self.collect_signals(credentials))

    def _resolve_platform(self, platform_user_id: str) -> Identity | None:
        try:
            user_id = UUID(platform_user_id)
        except ValueError:
            logger.info("Unparsable platform user id, falling through")
            return None

        try:
            user = self._auth_db.get_user_by_id(user_id)
        except Exception:
            logger.warning("Platform user lookup failed, falling through", exc_info=True)
            return None

        if user is None:
            logger.info("Platform principal %s has no user row, falling through", user_id)
            return None
        return local_identity(user, AuthMechanism.PLATFORM)

    def _resolve_federated(self, federated: FederatedSession) -> Identity | None:
        try:
            user = self._auth_db.get_user_by_federated_uid(federated.uid)
        except Exception:
            logger.warning("Federated user lookup failed, falling through", exc_info=True)
            return None

        if user is None:
            # First-time sign-in: the row is created at onboarding, not here
            return FederatedPending(
                uid=federated.uid,
                email=federated.email,
                display_name=federated.display_name,
                photo_url=federated.photo_url,
            )
        return local_identity(user, AuthMechanism.FEDERATED)

    def _resolve_email_password(self, session: Session) -> Identity | None:
        try:
            user = self._auth_db.get_user_by_id(session.user_id)
        except Exception:
            logger.warning("Session user lookup failed, falling through", exc_info=True)
            return None

        if user is None:
            logger.info("Session bound to missing user %s, falling through", session.user_id)
            return None
        return local_identity(user, AuthMechanism.EMAIL_PASSWORD)
