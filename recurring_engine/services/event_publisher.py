"""
Redis Pub/Sub publisher for subscription change signals.
Clients listening on the owner's channel refresh their subscription views and
planned-payment calendars when a signal arrives.
"""
import json
import os
import logging
from datetime import datetime, timezone
from typing import Optional

import redis

logger = logging.getLogger(__name__)

SUBSCRIPTIONS_CHANGED = "subscriptions_changed"
STATE_TTL_SECONDS = 300


class EventPublisher:
    """
    Publishes subscription change events to Redis Pub/Sub channels.

    Channel format: subscriptions:{user_id}

    Publishing is best effort: a Redis outage is logged and never fails the
    mutation that triggered the signal.
    """

    def __init__(self, redis_url: Optional[str] = None):
        """
        Initialize the event publisher.

        Args:
            redis_url: Redis connection URL. If not provided, uses REDIS_URL env var.
        """
        self.redis_url = redis_url or os.getenv("REDIS_URL", "redis://localhost:6379/0")
        self._redis: Optional[redis.Redis] = None

    @property
    def redis(self) -> redis.Redis:
        """Lazy-load Redis connection."""
        if self._redis is None:
            self._redis = redis.from_url(self.redis_url, decode_responses=True)
        return self._redis

    def _channel(self, user_id: str) -> str:
        return f"subscriptions:{user_id}"

    def _state_key(self, user_id: str) -> str:
        """Last signal per owner, kept briefly for clients that subscribe late."""
        return f"subscriptions_state:{user_id}"

    def _publish(self, user_id: str, event_data: dict) -> bool:
        try:
            channel = self._channel(user_id)
            message = json.dumps(event_data)

            self.redis.publish(channel, message)

            pipe = self.redis.pipeline()
            pipe.set(self._state_key(user_id), message, ex=STATE_TTL_SECONDS)
            pipe.execute()

            logger.debug(f"Published event to {channel}: {event_data.get('type', '')}")
            return True
        except Exception as e:
            logger.error(f"Failed to publish event: {e}")
            return False

    def publish_subscriptions_changed(
        self,
        user_id: str,
        action: str,
        subscription_id: Optional[str] = None,
    ) -> bool:
        """
        Signal that the owner's subscriptions or planned payments changed.

        Args:
            user_id: The owner
            action: created, updated, paused, resumed, deleted or refreshed
            subscription_id: The affected subscription, if a single one

        Returns:
            True if the signal reached Redis
        """
        return self._publish(user_id, {
            "type": SUBSCRIPTIONS_CHANGED,
            "action": action,
            "subscription_id": subscription_id,
            "timestamp": datetime.now(timezone.utc).isoformat(),
        })

    def close(self) -> None:
        """Close the Redis connection."""
        if self._redis:
            self._redis.close()
            self._redis = None


_default_publisher: Optional[EventPublisher] = None


def get_event_publisher() -> EventPublisher:
    global _default_publisher
    if _default_publisher is None:
        _default_publisher = EventPublisher()
    return _default_publisher
