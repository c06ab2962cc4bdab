"""
Dramatiq broker configuration.

Worker tasks share the Redis instance the listener uses for invoice locks
and notification fan-out.
"""

import dramatiq
from dramatiq.brokers.redis import RedisBroker
from dramatiq.middleware import CurrentMessage, ShutdownNotifications
from loguru import logger

from xmrpay.config.settings import Settings, get_settings


def create_broker(settings: Settings) -> RedisBroker:
    """
    Build the Redis broker for worker tasks.

    Rescans are not retried by the broker; the listener's own periodic
    pass picks up whatever a failed rescan missed.
    """
    redis_broker = RedisBroker(
        host=settings.redis_host,
        port=settings.redis_port,
        password=settings.redis_password or None,
        db=settings.redis_db,
    )
    # Long rescans must observe worker shutdown
    redis_broker.add_middleware(ShutdownNotifications())
    redis_broker.add_middleware(CurrentMessage())
    return redis_broker


settings = get_settings()
broker = create_broker(settings)
dramatiq.set_broker(broker)

logger.info(
    f"Dramatiq broker ready: "
    f"redis://{settings.redis_host}:{settings.redis_port}/{settings.redis_db}"
)
