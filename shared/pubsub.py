import logging
from typing import Optional

import redis

from .events import Event

logger = logging.getLogger(__name__)

GLOBAL_CHANNEL = "global:announcements"


class EventPublisher:
    """
    Fire-and-forget publisher for outbound notification events.

    Events go out after the owning transaction has committed. A missing client
    (local development, tests) turns publishing into a no-op and a redis
    failure is logged; neither affects the committed operation.
    """

    def __init__(self, redis_client: Optional[redis.Redis] = None):
        self.redis = redis_client

    @classmethod
    def from_url(cls, redis_url: str = None) -> "EventPublisher":
        if not redis_url:
            logger.info("EventPublisher running without redis (events are not published)")
            return cls(None)
        client = redis.from_url(
            redis_url,
            decode_responses=True,
            socket_connect_timeout=5,
            socket_timeout=5
        )
        return cls(client)

    @property
    def enabled(self) -> bool:
        return self.redis is not None

    def publish(self, channel: str, event: Event) -> bool:
        if self.redis is None:
            logger.debug(f"Local mode: {event.type} on {channel} (not published)")
            return False
        try:
            self.redis.publish(channel, event.to_json())
            return True
        except redis.RedisError as e:
            logger.warning(f"Failed to publish {event.type} on {channel}: {e}")
            return False

    def publish_global(self, event: Event) -> bool:
        return self.publish(GLOBAL_CHANNEL, event)

    def publish_tournament_event(self, tournament_id: str, event: Event) -> bool:
        return self.publish(f"tournament:{tournament_id}:events", event)

    def publish_user_notification(self, user_id, event: Event) -> bool:
        return self.publish(f"user:{user_id}:notifications", event)

    def ping(self) -> bool:
        if self.redis is None:
            return False
        try:
            return bool(self.redis.ping())
        except redis.RedisError:
            return False
