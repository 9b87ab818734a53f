"""User event broadcaster via Redis pub/sub.

Publishes per-user events to Redis channels so that any frontend-facing pod
holding a live connection for that user can forward the event.
"""

import json
import logging

logger = logging.getLogger(__name__)


async def broadcast_user_event(user_id: str, event_type: str, data: dict) -> None:
    """Publish an event to the per-user Redis channel.

    Args:
        user_id: Target user.
        event_type: Event name, e.g. "entitlement_granted".
        data: JSON-serialisable payload.
    """
    try:
        from billing.infra.redis import get_redis_client

        redis = await get_redis_client()
        channel = f"user:{user_id}:events"
        message = json.dumps({"type": event_type, "data": data}, default=str)
        await redis.publish(channel, message)
        logger.debug(f"Published {event_type} to {channel}")
    except Exception:
        logger.warning(f"Failed to publish user event {event_type} for {user_id}", exc_info=True)
