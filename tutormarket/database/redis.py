from starlette.concurrency import run_in_threadpool
from tutormarket.config import get_settings
from tutormarket.errors import RemoteCallFailed
from tutormarket.logger import logger
from tutormarket.realtime import ALL_TABLES, change_feed, changes
from typing import Any, Optional
import json
import redis

class RedisClient:
    """
    Redis client wrapper for caching read-mostly data.

    This class provides a simplified interface for the Redis operations used in the application:
    user profiles, tutor profiles, subject lists and the admin dashboard. Cache failures are logged
    and treated as a cache miss, never as a failed request.

    Attributes:
        redis_host (str): Redis server hostname/IP
        redis_port (int): Redis server port
        redis_password (str): Redis server password
        client (redis.StrictRedis): Redis client instance
    """

    def __init__(self):
        self.redis_host = get_settings().redis_host
        self.redis_port = get_settings().redis_port
        self.redis_password = get_settings().redis_password

        # decode_responses=True so that cached JSON comes back as str
        self.client = redis.StrictRedis(
            host=self.redis_host,
            port=self.redis_port,
            password=self.redis_password,
            decode_responses=True
        )

    def set_cache(self, key: str, value: str, expiration: int):
        """
        Set a cached value with expiration time.

        Args:
            key (str): Cache key
            value (str): Value to cache
            expiration (int): Time in seconds until the cache expires
        """
        try:
            self.client.setex(key, expiration, value)
        except redis.RedisError as e:
            logger.warning(f"Could not write cache key {key}: {str(e)}")

    def get_cache(self, key: str) -> Optional[str]:
        """
        Retrieve a cached value.

        Args:
            key (str): Cache key to retrieve

        Returns:
            str: The cached value if found, None otherwise
        """
        try:
            return self.client.get(key)
        except redis.RedisError as e:
            logger.warning(f"Could not read cache key {key}: {str(e)}")
            return None

    def delete_cache(self, key: str):
        """
        Delete a cached value.

        Args:
            key (str): Cache key to delete
        """
        try:
            self.client.delete(key)
        except redis.RedisError as e:
            logger.warning(f"Could not delete cache key {key}: {str(e)}")

    def delete_prefix(self, prefix: str):
        """Delete every key starting with prefix."""
        try:
            for key in self.client.scan_iter(match=f"{prefix}*"):
                self.client.delete(key)
        except redis.RedisError as e:
            logger.warning(f"Could not delete cache prefix {prefix}: {str(e)}")

    def get_json(self, key: str) -> Optional[Any]:
        cached = self.get_cache(key)
        if cached is None:
            return None
        return json.loads(cached)

    def set_json(self, key: str, value: Any, expiration: Optional[int] = None):
        self.set_cache(key, json.dumps(value, default=str), expiration or get_settings().cache_expire_seconds)

# Global Redis client instance
redis_client = RedisClient()

# Cached keys derived from each table
CACHE_PREFIXES_BY_TABLE = {
    "users": ["profile_", "admin_dashboard_data"],
    "tutors": ["tutor_", "admin_dashboard_data"],
    "subjects": ["subjects_all"],
    "reviews": ["tutor_", "admin_dashboard_data"],
    "certificate_approvals": ["tutor_", "admin_dashboard_data"],
    "tutor_resources": ["tutor_"],
    "bookings": ["admin_dashboard_data"],
}

def invalidate_for_change(change):
    """Change feed subscriber dropping the cache entries a committed change makes stale."""
    for prefix in CACHE_PREFIXES_BY_TABLE.get(change.table, []):
        redis_client.delete_prefix(prefix)

async def keep_cache_fresh():
    """Drop stale cache entries for every committed change, until cancelled."""
    try:
        async with change_feed.subscribe(ALL_TABLES) as pubsub:
            async for change in changes(pubsub):
                await run_in_threadpool(invalidate_for_change, change)
    except (RemoteCallFailed, redis.RedisError) as e:
        logger.error(f"Cache invalidation stopped, cached entries expire on their own: {str(e)}")
