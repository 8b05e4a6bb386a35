"""
Redis caching utilities
Holds the per-user authorization view so role checks don't hit the database on every request
"""
import json
import logging
import os
from typing import Any, Optional

import redis

from .config import ROLE_CACHE_TTL_SECONDS

logger = logging.getLogger(__name__)


def create_redis_client() -> redis.Redis:
    """
    Create a Redis client
    Supports both a REDIS_URL (managed Redis) and individual host/port settings
    """
    redis_url = os.getenv("REDIS_URL")

    if redis_url:
        # Mask password in URL for logging
        if "@" in redis_url:
            url_parts = redis_url.split("@")
            protocol = url_parts[0].split(":")[0]
            masked_url = f"{protocol}:****@{url_parts[1]}"
        else:
            masked_url = "****"
        logger.info(f"📡 Using Redis URL connection: {masked_url}")

        client = redis.from_url(
            redis_url,
            decode_responses=True,
            socket_connect_timeout=5,
            socket_timeout=5,
            retry_on_timeout=True,
            health_check_interval=30,
        )
    else:
        redis_host = os.getenv("REDIS_HOST", "localhost")
        redis_port = int(os.getenv("REDIS_PORT", "6379"))
        redis_password = os.getenv("REDIS_PASSWORD", None)
        redis_db = int(os.getenv("REDIS_DB", "0"))
        redis_ssl = os.getenv("REDIS_SSL", "false").lower() == "true"

        logger.info(f"📡 Using Redis at {redis_host}:{redis_port} (db={redis_db}, ssl={redis_ssl})")

        client = redis.Redis(
            host=redis_host,
            port=redis_port,
            password=redis_password,
            db=redis_db,
            ssl=redis_ssl,
            decode_responses=True,
            socket_connect_timeout=5,
            socket_timeout=5,
            retry_on_timeout=True,
            health_check_interval=30,
        )

    # Test connection
    client.ping()
    logger.info("Redis connected successfully")
    return client


class Cache:
    """Redis cache wrapper with JSON serialization; fails open when Redis is unavailable"""

    def __init__(self, client: Optional[redis.Redis] = None):
        self.redis_client = client

    def _get_client(self):
        """Lazy load Redis client"""
        if self.redis_client is None:
            try:
                self.redis_client = create_redis_client()
            except Exception as e:
                logger.warning(f"⚠️ Redis cache unavailable: {e}")
                return None
        return self.redis_client

    def get(self, key: str) -> Optional[Any]:
        """Get value from cache"""
        client = self._get_client()
        if not client:
            return None

        try:
            value = client.get(key)
            if value:
                logger.debug(f"✅ Cache HIT: {key}")
                return json.loads(value)
            logger.debug(f"❌ Cache MISS: {key}")
            return None
        except Exception as e:
            logger.error(f"❌ Cache get error for {key}: {e}")
            return None

    def set(self, key: str, value: Any, ttl: int = 3600) -> bool:
        """Set value in cache with TTL (default 1 hour)"""
        client = self._get_client()
        if not client:
            return False

        try:
            client.setex(key, ttl, json.dumps(value))
            logger.debug(f"✅ Cache SET: {key} (TTL: {ttl}s)")
            return True
        except Exception as e:
            logger.error(f"❌ Cache set error for {key}: {e}")
            return False

    def delete(self, key: str) -> bool:
        """Delete value from cache"""
        client = self._get_client()
        if not client:
            return False

        try:
            client.delete(key)
            logger.debug(f"✅ Cache DELETE: {key}")
            return True
        except Exception as e:
            logger.error(f"❌ Cache delete error for {key}: {e}")
            return False


class AuthorizationCache:
    """
    Cached authorization view: the set of active role names per user.

    Lifecycle:
        - populated on the first role check for a user (read-through, TTL bounded)
        - invalidated after every committed role-affecting mutation for that user
    An unreachable Redis degrades to always reading roles from the database.
    """

    KEY_PREFIX = "user_roles"

    def __init__(self, cache: Optional[Cache] = None, ttl: int = ROLE_CACHE_TTL_SECONDS):
        self.cache = cache or Cache()
        self.ttl = ttl

    def _key(self, user_id: str) -> str:
        return f"{self.KEY_PREFIX}:{user_id}"

    def get_roles(self, user_id: str) -> Optional[set[str]]:
        cached = self.cache.get(self._key(user_id))
        if cached is None:
            return None
        return set(cached)

    def set_roles(self, user_id: str, roles: set[str]) -> None:
        self.cache.set(self._key(user_id), sorted(roles), self.ttl)

    def invalidate(self, user_id: str) -> None:
        """Drop the cached view so the next check observes the committed roles"""
        self.cache.delete(self._key(user_id))
        logger.info(f"🔄 Authorization cache invalidated for user {user_id}")
