"""Rate limiting for credential-guessing surfaces.

Login attempts, verification resends and password reset requests are
counted per (action, email) in Valkey. The window slides: each attempt
resets the expiry, so hammering extends the lockout.
"""

from clients.valkey_client import ValkeyClient
from auth.config import AuthConfig
from auth.exceptions import RateLimitedError


class RateLimiter:
    """Per-email attempt counters using Valkey."""

    KEY_PREFIX = "ratelimit:"

    def __init__(self, valkey: ValkeyClient, config: AuthConfig):
        self._valkey = valkey
        self._config = config
        self._window_seconds = config.rate_limit_window_minutes * 60

    def _key(self, action: str, email: str) -> str:
        return f"{self.KEY_PREFIX}{action}:{email.lower()}"

    def check_rate_limit(self, action: str, email: str) -> None:
        """Count an attempt and raise if over the limit.

        Raises:
            RateLimitedError: If rate limit exceeded.
        """
        key = self._key(action, email)
        count = self._valkey.incr_window(key, self._window_seconds)

        if count > self._config.rate_limit_attempts:
            ttl = self._valkey.ttl(key)
            raise RateLimitedError(retry_after_seconds=max(ttl, 1))

    def reset_rate_limit(self, action: str, email: str) -> None:
        """Reset counter after a successful attempt."""
        self._valkey.delete(self._key(action, email))
