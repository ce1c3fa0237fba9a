"""
Redis connection and distributed lock used to elect a single sweeper run
"""

from typing import Optional
import logging
import uuid

import redis.asyncio as redis

from ticket_holds.config import settings

logger = logging.getLogger(__name__)

# Global Redis client
redis_client: Optional[redis.Redis] = None

RELEASE_SCRIPT = """
local lock_key = KEYS[1]
local identifier = ARGV[1]

if redis.call("get", lock_key) == identifier then
    return redis.call("del", lock_key)
else
    return 0
end
"""


async def init_redis() -> Optional[redis.Redis]:
    """
    Initialize Redis connection when REDIS_URL is configured
    """
    global redis_client
    if not settings.REDIS_URL:
        logger.info("REDIS_URL not set, sweeper runs without a leader lock")
        return None
    try:
        redis_client = redis.from_url(
            settings.REDIS_URL,
            max_connections=settings.REDIS_MAX_CONNECTIONS,
            decode_responses=True
        )
        await redis_client.ping()
        logger.info("Redis connection established")
    except Exception as e:
        logger.error(f"Failed to connect to Redis: {e}")
        raise
    return redis_client


async def close_redis():
    """
    Close Redis connection
    """
    global redis_client
    if redis_client:
        await redis_client.aclose()
        redis_client = None
        logger.info("Redis connection closed")


class RedisLock:
    """
    SET NX lock with an owner token; only the owner may release it
    """

    def __init__(self, client: redis.Redis, resource: str, ttl: int):
        self.client = client
        self.key = f"lock:{resource}"
        self.ttl = ttl
        self.identifier: Optional[str] = None

    async def acquire(self) -> bool:
        identifier = str(uuid.uuid4())
        acquired = await self.client.set(self.key, identifier, nx=True, ex=self.ttl)
        if acquired:
            self.identifier = identifier
            logger.debug(f"Lock acquired: {self.key}")
            return True
        logger.debug(f"Lock busy: {self.key}")
        return False

    async def release(self) -> bool:
        if self.identifier is None:
            return False
        result = await self.client.eval(RELEASE_SCRIPT, 1, self.key, self.identifier)
        self.identifier = None
        return result == 1
