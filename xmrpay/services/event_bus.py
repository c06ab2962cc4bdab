"""
Notification publishing.

EventAggregator dispatches notifications to in-process subscribers;
RedisNotificationPublisher forwards them to a Redis pub/sub channel for
other processes.
"""

import json
from collections import defaultdict
from collections.abc import Awaitable, Callable
from typing import Any

import redis.asyncio as redis
from loguru import logger
from redis.exceptions import RedisError

from xmrpay.config.constants import NOTIFICATION_CHANNEL
from xmrpay.services.events import Notification
from xmrpay.services.interfaces import NotificationPublisher

Handler = Callable[[Any], Awaitable[None]]


class EventAggregator:
    """
    In-process publish/subscribe keyed by notification type.

    Handlers run in subscription order. A failing handler is logged and does
    not stop the others.
    """

    def __init__(self) -> None:
        self._handlers: dict[type, list[Handler]] = defaultdict(list)
        self.published: int = 0

    def subscribe(self, notification_type: type, handler: Handler) -> None:
        """
        Register a handler.

        Args:
            notification_type: Notification class to receive
            handler: Async callable taking the notification
        """
        self._handlers[notification_type].append(handler)

    def unsubscribe(self, notification_type: type, handler: Handler) -> None:
        handlers = self._handlers.get(notification_type, [])
        if handler in handlers:
            handlers.remove(handler)

    async def publish(self, notification: Notification) -> None:
        self.published += 1
        for handler in list(self._handlers.get(type(notification), [])):
            try:
                await handler(notification)
            except Exception as e:
                logger.exception(
                    f"Handler {getattr(handler, '__name__', handler)!s} failed for "
                    f"{type(notification).__name__}: {e}"
                )


class RedisNotificationPublisher:
    """Publishes notifications as JSON envelopes on a Redis channel."""

    def __init__(
        self, redis_client: redis.Redis, channel: str = NOTIFICATION_CHANNEL
    ) -> None:
        self.redis_client = redis_client
        self.channel = channel

    @staticmethod
    def encode(notification: Notification) -> str:
        """Serialize a notification as {"type": ..., "payload": {...}}."""
        return json.dumps(
            {
                "type": type(notification).__name__,
                "payload": notification.to_payload(),
            }
        )

    async def publish(self, notification: Notification) -> None:
        try:
            await self.redis_client.publish(self.channel, self.encode(notification))
        except RedisError as e:
            logger.warning(
                f"Failed to publish {type(notification).__name__} to {self.channel}: {e}"
            )


class CompositePublisher:
    """Fans a notification out to several publishers in order."""

    def __init__(self, *publishers: NotificationPublisher) -> None:
        self.publishers = list(publishers)

    async def publish(self, notification: Notification) -> None:
        for publisher in self.publishers:
            await publisher.publish(notification)
