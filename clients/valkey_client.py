"""
Valkey (Redis-compatible) client for reader sessions.

Simple wrapper around redis-py. Connection URL comes from TALEPICK_VALKEY_URL.
Fail-fast: raises on connection failure, never returns fallback values.
"""

import json
import logging

import redis

logger = logging.getLogger(__name__)


class ValkeyClient:
    """
    Redis-compatible client for Valkey.

    Usage:
        client = ValkeyClient("redis://localhost:6379/0")
        client.set_json("session:abc", {...}, expire_seconds=604800)
        client.sadd("user_sessions:<uuid>", "abc")
    """

    def __init__(self, url: str | None = None, client: redis.Redis | None = None):
        """
        Connect to Valkey.

        Args:
            url: Redis-compatible connection URL (e.g., redis://localhost:6379/0)
            client: Pre-built redis client; takes precedence over url

        Raises:
            ValueError: If neither url nor client is given
            redis.ConnectionError: If the server is unreachable
        """
        if client is None:
            if not url:
                raise ValueError("url or client is required")
            client = redis.from_url(url, decode_responses=True)

        self._client = client
        self._client.ping()
        logger.info("ValkeyClient connected")

    def ping(self) -> bool:
        """Health check. Raises redis.ConnectionError if unreachable."""
        self._client.ping()
        return True

    def get(self, key: str) -> str | None:
        """Value for key, or None when the key is missing or expired."""
        return self._client.get(key)

    def set(self, key: str, value: str, expire_seconds: int | None = None) -> None:
        if expire_seconds is not None:
            self._client.setex(key, expire_seconds, value)
        else:
            self._client.set(key, value)

    def delete(self, key: str) -> bool:
        """True if the key existed."""
        return self._client.delete(key) > 0

    def exists(self, key: str) -> bool:
        return self._client.exists(key) > 0

    def ttl(self, key: str) -> int:
        """
        Remaining TTL in seconds.

        Returns:
            -2 if key doesn't exist
            -1 if key has no expiration
            Positive int: remaining seconds
        """
        return self._client.ttl(key)

    def expire(self, key: str, seconds: int) -> bool:
        """Set a TTL on an existing key. False if the key doesn't exist."""
        return bool(self._client.expire(key, seconds))

    def sadd(self, key: str, *members: str) -> int:
        """Add members to a set. Returns how many were new."""
        return self._client.sadd(key, *members)

    def srem(self, key: str, *members: str) -> int:
        """Remove members from a set. Returns how many were present."""
        return self._client.srem(key, *members)

    # Quoted: inside the class body `set` is the method above
    def smembers(self, key: str) -> "set[str]":
        """All members of a set; empty set when the key is missing."""
        return set(self._client.smembers(key))

    def set_json(self, key: str, value: dict | list, expire_seconds: int | None = None) -> None:
        self.set(key, json.dumps(value), expire_seconds)

    def get_json(self, key: str) -> dict | list | None:
        """
        Get and deserialize a JSON value.

        Returns None if key doesn't exist.
        Raises ValueError if the stored value is not valid JSON.
        """
        value = self.get(key)
        if value is None:
            return None
        try:
            return json.loads(value)
        except json.JSONDecodeError as e:
            raise ValueError(f"Invalid JSON in key '{key}': {e}")

    def replace_json_if_unchanged(
        self,
        key: str,
        expected: dict | list,
        value: dict | list,
        expire_seconds: int | None = None,
    ) -> bool:
        """
        Write `value` only if the key still holds `expected`.

        WATCH + MULTI/EXEC: a write to the key by anyone else between the
        check and the EXEC aborts the transaction.

        Returns:
            False if the key is missing, holds something else, or changed
            before the write landed.
        """
        with self._client.pipeline() as pipe:
            try:
                pipe.watch(key)
                current = pipe.get(key)
                if current is None or json.loads(current) != expected:
                    pipe.unwatch()
                    return False
                pipe.multi()
                if expire_seconds is not None:
                    pipe.setex(key, expire_seconds, json.dumps(value))
                else:
                    pipe.set(key, json.dumps(value))
                pipe.execute()
                return True
            except redis.WatchError:
                return False

    def close(self) -> None:
        self._client.close()
        logger.info("ValkeyClient closed")
