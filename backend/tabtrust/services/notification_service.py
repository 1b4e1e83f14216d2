"""
Notification publisher over Redis pub/sub.

Delivery to devices happens downstream; publishing is fire-and-forget and
a failure never propagates to the caller.
"""
import enum
import json
import logging
from typing import Any, Dict, Optional

from redis import Redis, RedisError

logger = logging.getLogger(__name__)

CHANNEL_PREFIX = "notifications:"


class NotificationType(str, enum.Enum):
    """Notification type enumeration."""
    TAB_CREATED = "TAB_CREATED"
    TAB_UPDATED = "TAB_UPDATED"
    PAYMENT_RECEIVED = "PAYMENT_RECEIVED"
    PAYMENT_REMINDER = "PAYMENT_REMINDER"
    TAB_SETTLED = "TAB_SETTLED"


def notification_channel(user_id: int) -> str:
    return f"{CHANNEL_PREFIX}{user_id}"


class NotificationPublisher:
    """Publishes JSON notifications on a per-user channel."""

    def __init__(self, redis_client: Redis):
        self.redis = redis_client

    def publish(
        self,
        user_id: int,
        type: NotificationType,
        title: str,
        body: str,
        data: Optional[Dict[str, Any]] = None
    ) -> bool:
        """Publish a notification. Returns False if it could not be sent."""
        payload = {
            "type": type.value,
            "title": title,
            "body": body,
            "data": data or {},
            "userId": user_id,
        }
        channel = notification_channel(user_id)
        try:
            self.redis.publish(channel, json.dumps(payload, default=str))
        except RedisError as e:
            logger.error(f"Failed to publish {type.value} notification to user {user_id}: {e}")
            return False

        logger.debug(f"Notification {type.value} published on {channel}")
        return True
