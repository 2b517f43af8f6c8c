"""
Redis connection and stream names.

Celery tasks publish batch-completion events and data quality alerts to
Redis streams so that chart clients can refresh cached timeframes.
"""

from typing import Optional
from redis import Redis
from kabuchart.core.config import settings

# Synchronous Redis client (for Celery tasks)
redis_client: Optional[Redis] = None


def get_redis() -> Redis:
    """Get synchronous Redis client."""
    global redis_client
    if redis_client is None:
        redis_client = Redis.from_url(
            settings.REDIS_URL,
            decode_responses=True,
            max_connections=settings.REDIS_MAX_CONNECTIONS,
        )
    return redis_client


def close_redis() -> None:
    """Close Redis connection."""
    global redis_client

    if redis_client is not None:
        redis_client.close()
        redis_client = None


# Redis Stream Names
class StreamNames:
    """Redis Stream names for the event bus."""

    MARKET_BARS = "market-bars"
    TIMEFRAMES = "timeframes"
    ALERTS = "alerts"
