"""Real-time event publishing.

Redis pub/sub carries no event name of its own, so each message is a JSON
envelope ``{"event": ..., "data": ...}`` published on the recipient channel.
"""
import json
import threading
from functools import lru_cache
from typing import Any, NamedTuple

import redis

from laundry.core_settings import get_settings
from laundry.domain.errors import PublishError


class EventPublisher:
    def publish(self, channel: str, event: str, payload: dict[str, Any]) -> None:
        raise NotImplementedError

    def ping(self) -> bool:
        raise NotImplementedError


def encode_message(event: str, payload: dict[str, Any]) -> str:
    return json.dumps({"event": event, "data": payload}, default=str)


class RedisEventPublisher(EventPublisher):
    def __init__(self, client: redis.Redis):
        self.client = client

    @classmethod
    def from_url(cls, url: str, timeout: float = 1.0) -> "RedisEventPublisher":
        return cls(redis.from_url(url, decode_responses=True, socket_connect_timeout=timeout))

    def publish(self, channel, event, payload):
        try:
            self.client.publish(channel, encode_message(event, payload))
        except redis.RedisError as e:
            raise PublishError(f"publish {event} on {channel} failed: {e}") from e

    def ping(self):
        try:
            return bool(self.client.ping())
        except redis.RedisError as e:
            raise PublishError(f"pub/sub ping failed: {e}") from e


class PublishedEvent(NamedTuple):
    channel: str
    event: str
    payload: dict[str, Any]


class InMemoryEventPublisher(EventPublisher):
    """Keeps every published event in order; used by tests and local runs."""

    def __init__(self):
        self.events: list[PublishedEvent] = []
        self._lock = threading.Lock()

    def publish(self, channel, event, payload):
        # round-trip through JSON so payloads behave like the wire format
        decoded = json.loads(encode_message(event, payload))
        with self._lock:
            self.events.append(PublishedEvent(channel, event, decoded["data"]))

    def ping(self):
        return True

    def on_channel(self, channel: str) -> list[PublishedEvent]:
        return [e for e in self.events if e.channel == channel]

    def named(self, event: str) -> list[PublishedEvent]:
        return [e for e in self.events if e.event == event]


@lru_cache
def get_publisher() -> EventPublisher:
    settings = get_settings()
    if settings.PUBSUB_BACKEND == "memory":
        return InMemoryEventPublisher()
    return RedisEventPublisher.from_url(settings.REDIS_URL)
