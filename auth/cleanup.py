"""Periodic sweep of the credential store.

Each sweep runs two bulk statements, one after the other:
1. delete unverified users whose verification token has expired
2. null expired password reset tokens (users are kept)

Both are conditioned on expiry timestamps, so they are safe next to live
traffic: a user verified mid-sweep no longer matches the delete. Token
checks never depend on the sweep having run; it only keeps the table tidy.

A failed sweep is logged and retried on the next tick only.
"""

import logging
import threading
from dataclasses import dataclass
from datetime import datetime

from auth.database import AuthDatabase
from auth.security_logger import SecurityLogger, SecurityEvent
from utils.timezone import now_utc

logger = logging.getLogger(__name__)


@dataclass
class CleanupResult:
    """Counts from one sweep."""

    deleted_unverified_users: int
    cleared_reset_tokens: int
    ran_at: datetime


class CleanupScheduler:
    """Runs the sweep once at start, then every interval, on a daemon thread."""

    def __init__(
        self,
        auth_db: AuthDatabase,
        interval_hours: float = 6,
        security_logger: SecurityLogger | None = None,
    ):
        if interval_hours <= 0:
            raise ValueError("interval_hours must be positive")
        self._auth_db = auth_db
        self._interval_seconds = interval_hours * 3600
        self._security_logger = security_logger
        self._stop = threading.Event()
        self._thread: threading.Thread | None = None

    @property
    def is_running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    def run_sweep(self, now: datetime | None = None) -> CleanupResult:
        """Run one sweep. Raises on datastore failure."""
        now = now or now_utc()

        deleted = self._auth_db.delete_expired_unverified_users(now)
        if deleted:
            logger.info(f"Deleted {deleted} unverified user(s) with expired tokens")

        cleared = self._auth_db.clear_expired_password_reset_tokens(now)
        if cleared:
            logger.info(f"Cleared {cleared} expired password reset token(s)")

        result = CleanupResult(
            deleted_unverified_users=deleted,
            cleared_reset_tokens=cleared,
            ran_at=now,
        )

        if self._security_logger is not None and (deleted or cleared):
            self._security_logger.log(
                SecurityEvent.CLEANUP_SWEEP,
                details={
                    "deleted_unverified_users": deleted,
                    "cleared_reset_tokens": cleared,
                },
            )
        return result

    def _tick(self) -> CleanupResult | None:
        """One scheduled sweep. Failures are logged, never raised."""
        try:
            return self.run_sweep()
        except Exception:
            logger.exception("Cleanup sweep failed, will retry on next tick")
            return None

    def _loop(self) -> None:
        logger.info(f"Cleanup sweep scheduled every {self._interval_seconds / 3600:g} hours")
        self._tick()
        while not self._stop.wait(self._interval_seconds):
            self._tick()
        logger.info("Cleanup scheduler stopped")

    def start(self) -> None:
        """Start the background sweep. Idempotent."""
        if self.is_running:
            return
        self._stop.clear()
        self._thread = threading.Thread(target=self._loop, daemon=True, name="credential-cleanup")
        self._thread.start()

    def stop(self, timeout: float = 2.0) -> None:
        """Stop the background sweep."""
        self._stop.set()
        if self._thread is not None:
            self._thread.join(timeout=timeout)
            if self._thread.is_alive():
                logger.warning("Cleanup thread still alive after timeout, continuing shutdown")
            self._thread = None
