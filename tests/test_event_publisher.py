"""
Unit tests for the subscription change publisher (no Redis server needed).
"""
import json
import os
import sys

# Add parent directory to path
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

import redis  # noqa: E402

from recurring_engine.services.event_publisher import (  # noqa: E402
    STATE_TTL_SECONDS,
    SUBSCRIPTIONS_CHANGED,
    EventPublisher,
)


class FakePipeline:
    def __init__(self, store):
        self.store = store
        self.ops = []

    def set(self, key, value, ex=None):
        self.ops.append((key, value, ex))
        return self

    def execute(self):
        for key, value, ex in self.ops:
            self.store[key] = (value, ex)


class FakeRedis:
    def __init__(self):
        self.published = []
        self.store = {}

    def publish(self, channel, message):
        self.published.append((channel, message))
        return 1

    def pipeline(self):
        return FakePipeline(self.store)

    def close(self):
        pass


class DownRedis(FakeRedis):
    def publish(self, channel, message):
        raise redis.ConnectionError("connection refused")


def test_publish_subscriptions_changed() -> None:
    publisher = EventPublisher(redis_url="redis://unused:6379/0")
    fake = FakeRedis()
    publisher._redis = fake

    assert publisher.publish_subscriptions_changed("user-1", "paused", "sub-1") is True

    channel, message = fake.published[0]
    event = json.loads(message)
    assert channel == "subscriptions:user-1"
    assert event["type"] == SUBSCRIPTIONS_CHANGED
    assert event["action"] == "paused"
    assert event["subscription_id"] == "sub-1"
    assert "timestamp" in event
    assert fake.store["subscriptions_state:user-1"] == (message, STATE_TTL_SECONDS)
    print("✓ publish subscriptions_changed")


def test_publish_failure_is_logged_not_raised() -> None:
    publisher = EventPublisher(redis_url="redis://unused:6379/0")
    publisher._redis = DownRedis()

    assert publisher.publish_subscriptions_changed("user-1", "created") is False
    publisher.close()
    assert publisher._redis is None
    print("✓ publish failure swallowed")


if __name__ == "__main__":
    test_publish_subscriptions_changed()
    test_publish_failure_is_logged_not_raised()
    print("All event publisher tests passed.")
