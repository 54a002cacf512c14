"""
Redis Connection Management

Redis connection with retry/backoff and reminder claims shared between
overlapping reminder passes. Redis is optional: every operation degrades
gracefully when it is unavailable.
"""

import asyncio
import logging
from typing import Optional

import redis.asyncio as redis
from redis.asyncio import Redis
from redis.asyncio.retry import Retry
from redis.backoff import ExponentialBackoff
from redis.exceptions import ConnectionError, TimeoutError, RedisError

from app.core.scheduling.reminders import ClaimRegistry

# Logger
logger = logging.getLogger(__name__)

# App prefix for namespacing (allows multiple apps/versions on same Redis)
APP_PREFIX = "appointments:v1:"


class RedisClient:
    """
    Manages one Redis connection.

    Features:
    - Connection pooling
    - Automatic retries
    - Timeouts
    - Graceful failure handling
    """

    def __init__(self, url: Optional[str]):
        self.url = url
        self._client: Optional[Redis] = None
        self._connected: bool = False
        self._connect_lock = asyncio.Lock()

    async def get_client(self) -> Optional[Redis]:
        """
        Get or create the Redis client.

        Concurrent callers share one connection attempt, so at most one
        client exists at a time.

        Returns:
            Redis client or None if not configured or connection fails
        """
        client = self._client
        if client is not None and self._connected:
            return client
        if not self.url:
            return None

        async with self._connect_lock:
            client = self._client
            if client is not None and self._connected:
                return client

            # Retry configuration: 3 retries with exponential backoff
            retry = Retry(ExponentialBackoff(), retries=3)
            client = redis.from_url(
                self.url,
                encoding="utf-8",
                decode_responses=True,
                socket_connect_timeout=5.0,
                socket_timeout=5.0,
                retry_on_timeout=True,
                retry=retry,
            )

            try:
                # Test connection
                await client.ping()
            except (ConnectionError, TimeoutError, RedisError) as e:
                logger.error(f"Failed to connect to Redis: {e}")
                await client.aclose()
                return None

            self._client = client
            self._connected = True
            logger.info("Redis connection established successfully")
            return client

    async def close(self) -> None:
        """Close Redis connection."""
        if self._client is not None:
            try:
                await self._client.aclose()
                logger.info("Redis connection closed")
            except RedisError as e:
                logger.error(f"Error closing Redis connection: {e}")
            finally:
                self._client = None
                self._connected = False

    @property
    def is_connected(self) -> bool:
        """Check if Redis is connected."""
        return self._connected

    async def check_health(self) -> bool:
        """
        Check Redis connectivity for health checks.

        Returns:
            True if Redis is accessible and responding, False otherwise
        """
        try:
            client = await self.get_client()
            if client is None:
                return False

            await client.ping()
            return True

        except RedisError as e:
            logger.error(f"Redis health check failed: {e}")
            return False


class RedisReminderClaims(ClaimRegistry):
    """
    Reminder claims backed by Redis SET NX EX.

    Key: appointments:v1:reminder:claim:{booking_id}

    Fails OPEN: if Redis is unavailable the claim is granted, and
    delivery degrades to at-least-once.
    """

    CLAIM_PREFIX = f"{APP_PREFIX}reminder:claim:"

    def __init__(self, client: RedisClient, ttl_seconds: int = 600):
        self.client = client
        self.ttl_seconds = ttl_seconds

    def _key(self, booking_id: str) -> str:
        """Generate claim key with namespace."""
        return f"{self.CLAIM_PREFIX}{booking_id}"

    async def claim(self, booking_id: str) -> bool:
        redis_client = await self.client.get_client()
        if redis_client is None:
            logger.debug(f"Redis unavailable - reminder claim granted for {booking_id}")
            return True

        try:
            acquired = await redis_client.set(
                self._key(booking_id), "1", nx=True, ex=self.ttl_seconds
            )
            return bool(acquired)
        except RedisError as e:
            # FAIL OPEN on error
            logger.warning(f"Reminder claim failed for {booking_id}: {e} - proceeding")
            return True

    async def release(self, booking_id: str) -> None:
        redis_client = await self.client.get_client()
        if redis_client is None:
            return

        try:
            await redis_client.delete(self._key(booking_id))
        except RedisError as e:
            logger.warning(f"Failed to release reminder claim for {booking_id}: {e}")
