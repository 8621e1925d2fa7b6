"""
Redis connection for sessions, login throttling and event publishing
"""

import json
from typing import Optional, Tuple
from redis import Redis, ConnectionPool
from secure_credentials.core.config import settings

SESSION_KEY = "session:{}"


class RedisClient:
    """
    Thin wrapper over redis-py

    Pass `client` to run against an existing connection (tests hand in an
    in-memory server); otherwise a pool is built from REDIS_URL.
    """

    def __init__(self, client: Optional[Redis] = None):
        self.pool = None
        if client is None:
            self.pool = ConnectionPool.from_url(
                settings.REDIS_URL,
                max_connections=settings.REDIS_POOL_SIZE,
                decode_responses=True
            )
            client = Redis(connection_pool=self.pool)
        self.client = client

    def ping(self) -> bool:
        return bool(self.client.ping())

    def publish_json(self, channel: str, data: dict) -> int:
        """Publish a JSON-encoded message; returns the number of subscribers reached"""
        return self.client.publish(channel, json.dumps(data))

    # Sessions are hashes so single fields stay readable with HGET
    def get_session(self, session_id: str) -> Optional[dict]:
        data = self.client.hgetall(SESSION_KEY.format(session_id))
        return data or None

    def set_session(self, session_id: str, session_data: dict, ttl: int) -> bool:
        key = SESSION_KEY.format(session_id)
        self.client.hset(key, mapping=session_data)
        return self.client.expire(key, ttl)

    def delete_session(self, session_id: str) -> int:
        return self.client.delete(SESSION_KEY.format(session_id))

    def check_rate_limit(self, key: str, limit: int, window_seconds: int) -> Tuple[bool, int]:
        """
        Count one hit against a fixed window

        INCR runs first so concurrent hits are never lost; the window starts
        with the first hit.

        Returns:
            (allowed, remaining)
        """
        count = self.client.incr(key)
        if count == 1:
            self.client.expire(key, window_seconds)
        if count > limit:
            return False, 0
        return True, limit - count

    def close(self):
        """Close Redis connection"""
        self.client.close()
        if self.pool is not None:
            self.pool.disconnect()


# Global Redis client instance
redis_client = RedisClient()


def get_redis() -> RedisClient:
    """Dependency function to get Redis client"""
    return redis_client
