"""
Redis connection used for the leader election lease.
"""
from typing import Optional

import redis.asyncio as redis
from tenacity import (
    AsyncRetrying,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)

from vdb_controller.config.logging import get_logger
from vdb_controller.config.settings import settings

logger = get_logger(__name__)


class RedisConnection:
    """Redis connection manager with retry logic."""

    client: Optional[redis.Redis] = None

    @classmethod
    async def connect(cls, url: Optional[str] = None) -> None:
        """
        Connect to Redis with retry logic.

        Retries up to 10 times with exponential backoff (2s doubling, 30s max).
        """
        url = url or settings.redis_url
        if not url:
            raise RuntimeError("redis_url must be set when leader election is enabled")

        async for attempt in AsyncRetrying(
            stop=stop_after_attempt(10),
            wait=wait_exponential(multiplier=2, min=2, max=30),
            retry=retry_if_exception_type((redis.ConnectionError, redis.TimeoutError)),
            reraise=True,
        ):
            with attempt:
                logger.info(
                    "connecting_to_redis",
                    attempt=attempt.retry_state.attempt_number,
                    url=url.split("@")[-1],  # Log without credentials
                )
                cls.client = redis.Redis.from_url(
                    url,
                    decode_responses=True,
                    socket_connect_timeout=5,
                    socket_timeout=5,
                    socket_keepalive=True,
                    retry_on_timeout=True,
                    health_check_interval=30,
                )
                await cls.client.ping()

        logger.info("redis_connected")

    @classmethod
    async def close(cls) -> None:
        """Close Redis connection."""
        if cls.client:
            logger.info("closing_redis_connection")
            await cls.client.aclose()
            cls.client = None
            logger.info("redis_connection_closed")

    @classmethod
    async def get_client(cls) -> redis.Redis:
        """
        Get Redis client instance.

        Raises:
            RuntimeError: If Redis is not connected
        """
        if cls.client is None:
            raise RuntimeError("Redis is not connected. Call connect() first.")
        return cls.client

