"""
Redis Pub/Sub publisher with connection pooling and retries.

Extraction workers run on dispatcher threads, so this wrapper uses the
blocking client; one publisher (and its pool) is shared by all workers.
"""

import logging
import threading
from typing import Any, Optional

import orjson
import redis
from tenacity import retry, retry_if_exception_type, stop_after_attempt, wait_exponential

logger = logging.getLogger(__name__)


class RedisPublisher:
    """Redis publisher for Pub/Sub events with connection pooling and retries."""

    def __init__(self, redis_url: str, max_connections: int = 10) -> None:
        """Initialize Redis publisher.

        Args:
            redis_url: Redis connection URL
            max_connections: Size of the shared connection pool
        """
        self.redis_url = redis_url
        self.max_connections = max_connections
        self.client: Optional[redis.Redis] = None
        self._lock = threading.Lock()

    def connect(self) -> None:
        """Establish Redis connection with connection pooling."""
        with self._lock:
            if self.client is None:
                self.client = redis.Redis.from_url(
                    self.redis_url,
                    max_connections=self.max_connections,
                    decode_responses=False,  # Handle bytes for orjson
                )

    @retry(
        retry=retry_if_exception_type((redis.ConnectionError, redis.TimeoutError)),
        stop=stop_after_attempt(3),
        wait=wait_exponential(multiplier=1, min=1, max=5),
        reraise=True,
    )
    def publish(self, channel: str, message: dict[str, Any]) -> None:
        """Publish message to Redis channel with retry logic.

        Args:
            channel: Redis channel name
            message: Message payload dict (will be JSON-serialized)

        Raises:
            redis.RedisError: If publishing fails after retries
        """
        if self.client is None:
            self.connect()

        message_bytes = orjson.dumps(message)

        self.client.publish(channel, message_bytes)

    def close(self) -> None:
        """Close Redis connection and cleanup resources."""
        with self._lock:
            if self.client:
                self.client.close()
                self.client = None
