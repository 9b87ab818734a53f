"""Audit event emission.

Audit persistence lives outside this service. Events are logged locally and
published to a Redis channel as background tasks; a failed publish is logged
and never propagates into the request that caused it.
"""

import asyncio
import json
import logging
from datetime import datetime, timezone
from enum import StrEnum
from typing import Any

from billing.configs import configs

logger = logging.getLogger(__name__)


class AuditAction(StrEnum):
    PAYMENT_REFUND = "payment_refund"
    PAYMENT_AMOUNT_MISMATCH = "payment_amount_mismatch"
    SUBSCRIPTION_EXTEND = "subscription_extend"
    SUBSCRIPTION_CANCEL = "subscription_cancel"
    ENTITLEMENT_GRANT_FAILED = "entitlement_grant_failed"


class AuditEntity(StrEnum):
    PAYMENT = "payment"
    PURCHASE = "purchase"
    SUBSCRIPTION = "subscription"


# Strong references so pending publishes are not garbage collected mid-flight
_pending: set[asyncio.Task] = set()


async def _publish(payload: dict[str, Any]) -> None:
    try:
        from billing.infra.redis import get_redis_client

        redis = await get_redis_client()
        await redis.publish(configs.Audit.Channel, json.dumps(payload, default=str))
    except Exception:
        logger.warning(f"Failed to publish audit event {payload.get('action')}", exc_info=True)


def emit_audit_event(
    action: AuditAction | str,
    entity: AuditEntity | str,
    entity_id: str | None = None,
    actor_id: str | None = None,
    details: dict[str, Any] | None = None,
) -> None:
    """Record an audit event without blocking the caller."""
    payload = {
        "action": str(action),
        "entity": str(entity),
        "entity_id": entity_id,
        "actor_id": actor_id,
        "details": details or {},
        "created_at": datetime.now(timezone.utc).isoformat(),
    }
    logger.info(f"Audit {payload['action']} on {payload['entity']} {entity_id}")

    if not configs.Audit.Enabled:
        return
    try:
        loop = asyncio.get_running_loop()
    except RuntimeError:
        logger.debug("No running event loop; audit event only logged")
        return
    task = loop.create_task(_publish(payload))
    _pending.add(task)
    task.add_done_callback(_pending.discard)
