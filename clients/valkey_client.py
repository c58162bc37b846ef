"""
Valkey (Redis-compatible) store for session records and attempt counters.

Wraps redis-py with string responses. Connection failures propagate:
an unreachable store must fail the request, never look like "no session".
"""

import json
import logging

import redis

logger = logging.getLogger(__name__)


class ValkeyClient:
    """
    Usage:
        store = ValkeyClient("redis://localhost:6379/0")
        store.set_json("session:abc", {"user_id": "..."}, expire_seconds=3600)
        record = store.get_json("session:abc")  # None when absent
        attempts = store.incr_window("ratelimit:email-login:a@b.c", 900)
    """

    def __init__(self, url: str):
        """Connect and ping. Raises redis.ConnectionError when unreachable."""
        self._client = redis.from_url(url, decode_responses=True)
        self._client.ping()
        logger.info("Connected to Valkey")

    def ping(self) -> bool:
        self._client.ping()
        return True

    def get(self, key: str) -> str | None:
        return self._client.get(key)

    def set(self, key: str, value: str, expire_seconds: int | None = None) -> None:
        # ex=None stores without expiry
        self._client.set(key, value, ex=expire_seconds)

    def delete(self, key: str) -> bool:
        """True when the key existed."""
        return bool(self._client.delete(key))

    def ttl(self, key: str) -> int:
        """Seconds left; -1 for a key without expiry, -2 for a missing key."""
        return self._client.ttl(key)

    def expire(self, key: str, seconds: int) -> None:
        self._client.expire(key, seconds)

    def incr(self, key: str) -> int:
        return self._client.incr(key)

    def incr_window(self, key: str, window_seconds: int) -> int:
        """Count one more hit and restart the key's window, in one transaction.

        Returns the count including this hit.
        """
        with self._client.pipeline(transaction=True) as pipe:
            pipe.incr(key)
            pipe.expire(key, window_seconds)
            count, _ = pipe.execute()
        return count

    def set_json(self, key: str, value: dict | list, expire_seconds: int | None = None) -> None:
        self.set(key, json.dumps(value), expire_seconds)

    def get_json(self, key: str) -> dict | list | None:
        """Decoded value, or None if absent. A corrupt value raises ValueError."""
        raw = self.get(key)
        if raw is None:
            return None
        try:
            return json.loads(raw)
        except json.JSONDecodeError as e:
            raise ValueError(f"Invalid JSON in key '{key}': {e}") from e

    def close(self) -> None:
        self._client.close()
        logger.info("Valkey connection closed")
