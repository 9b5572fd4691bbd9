"""Redis event publisher for user lifecycle and session change events."""
import json
import logging
from datetime import datetime
from typing import Optional

import redis

from tabletop.core.config import settings
from tabletop.services.events import ChangeEvent

logger = logging.getLogger(__name__)

SESSION_EVENTS_CHANNEL = "session.events"
USER_EVENTS_CHANNEL = "user.events"

_redis_client: Optional[redis.Redis] = None


def get_redis_client() -> redis.Redis:
    """Lazy initialization of Redis client with connection pooling."""
    global _redis_client
    if _redis_client is None:
        _redis_client = redis.Redis.from_url(
            settings.REDIS_URL,
            decode_responses=True,
            socket_connect_timeout=5,
            socket_timeout=5,
            health_check_interval=30,
        )
    return _redis_client


def publish_user_registered(user_id: int, username: str) -> bool:
    """Publish user.registered event.

    Fire-and-forget: Registration succeeds even if Redis is unavailable.
    """
    if not settings.REDIS_EVENTS_ENABLED:
        return False
    try:
        client = get_redis_client()
        event = {
            "event_type": "user.registered",
            "user_id": user_id,
            "username": username,
            "timestamp": datetime.utcnow().isoformat(),
        }
        client.publish(USER_EVENTS_CHANNEL, json.dumps(event))
        return True
    except redis.RedisError as e:
        logger.warning(f"Failed to publish user.registered event: {e}")
        return False


def publish_session_change(event: ChangeEvent) -> bool:
    """Mirror a session change event for out-of-process consumers.

    Fire-and-forget, like user events: the mutation already succeeded.
    """
    if not settings.REDIS_EVENTS_ENABLED:
        return False
    try:
        client = get_redis_client()
        body = {
            "event_type": f"{event.table}.{event.action}",
            "session_id": event.session_id,
            "table": event.table,
            "action": event.action,
            "record": event.record,
            "timestamp": datetime.utcnow().isoformat(),
        }
        client.publish(SESSION_EVENTS_CHANNEL, json.dumps(body, default=str))
        return True
    except redis.RedisError as e:
        logger.warning(f"Failed to publish {event.table}.{event.action} event: {e}")
        return False
