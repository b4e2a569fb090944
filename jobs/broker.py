"""
Dramatiq broker configuration.

Redis-based message broker for the sync task queue.
"""

import dramatiq
from dramatiq.brokers.redis import RedisBroker
from dramatiq.middleware import CurrentMessage, Retries, ShutdownNotifications
from loguru import logger

from nftsync.config.settings import get_settings
from nftsync.utils.exceptions import ConfigurationError

settings = get_settings()


def should_retry(retries_so_far: int, exception: Exception) -> bool:
    """Retry halted cycles with backoff; a bad configuration never heals."""
    if isinstance(exception, ConfigurationError):
        return False
    return retries_so_far < settings.max_retries


redis_broker = RedisBroker(
    host=settings.redis_host,
    port=settings.redis_port,
    password=settings.redis_password or None,
    db=settings.redis_db,
)

# ShutdownNotifications: worker shutdown interrupts a long cycle
# CurrentMessage: actors can read the message being processed
redis_broker.add_middleware(ShutdownNotifications())
redis_broker.add_middleware(CurrentMessage())
redis_broker.add_middleware(
    Retries(
        min_backoff=settings.retry_delay_ms,
        max_backoff=60_000,  # 1 minute
        retry_when=should_retry,
    )
)

dramatiq.set_broker(redis_broker)

broker = redis_broker

logger.info(
    f"[Tasks] Broker ready: redis://{settings.redis_host}:{settings.redis_port}"
    f"/{settings.redis_db} (max {settings.max_retries} retries)"
)
