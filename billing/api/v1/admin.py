"""Admin endpoints for refunds and subscription lifecycle.

Guarded by the ``X-Admin-Secret`` header.
"""

import logging
from uuid import UUID

from fastapi import APIRouter, Depends, HTTPException, status
from sqlmodel.ext.asyncio.session import AsyncSession

from billing.common.code import ErrCodeError, handle_auth_error
from billing.core.payment.service import PaymentService
from billing.core.subscription import SubscriptionService
from billing.infra.database import get_session as get_db_session
from billing.middleware.auth import get_optional_user, require_admin
from billing.schemas.payment import (
    ExtendSubscriptionRequest,
    RefundRequest,
    RefundResponse,
    SubscriptionAdminResponse,
)

logger = logging.getLogger(__name__)

router = APIRouter(tags=["admin"], dependencies=[Depends(require_admin)])


@router.post("/payments/{order_id}/refund", response_model=RefundResponse)
async def refund_payment(
    order_id: UUID,
    body: RefundRequest | None = None,
    admin_id: str | None = Depends(get_optional_user),
    db: AsyncSession = Depends(get_db_session),
) -> RefundResponse:
    """Refund a completed subscription payment or purchase."""
    try:
        order = await PaymentService(db).refund(order_id, reason=body.reason if body else None, actor_id=admin_id)
        await db.commit()
        return RefundResponse(order_id=order.id, status=order.status, amount=order.amount, currency=order.currency)

    except ErrCodeError as e:
        await db.rollback()
        raise handle_auth_error(e)
    except Exception as e:
        await db.rollback()
        logger.error(f"Refund failed for order {order_id}: {e}", exc_info=True)
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Failed to refund payment",
        )


@router.post("/subscriptions/{subscription_id}/extend", response_model=SubscriptionAdminResponse)
async def extend_subscription(
    subscription_id: UUID,
    body: ExtendSubscriptionRequest,
    admin_id: str | None = Depends(get_optional_user),
    db: AsyncSession = Depends(get_db_session),
) -> SubscriptionAdminResponse:
    try:
        sub = await SubscriptionService(db).extend(subscription_id, body.days, actor_id=admin_id)
        await db.commit()
        return SubscriptionAdminResponse.model_validate(sub, from_attributes=True)

    except ErrCodeError as e:
        await db.rollback()
        raise handle_auth_error(e)
    except Exception as e:
        await db.rollback()
        logger.error(f"Extend failed for subscription {subscription_id}: {e}", exc_info=True)
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Failed to extend subscription",
        )


@router.post("/subscriptions/{subscription_id}/cancel", response_model=SubscriptionAdminResponse)
async def cancel_subscription(
    subscription_id: UUID,
    admin_id: str | None = Depends(get_optional_user),
    db: AsyncSession = Depends(get_db_session),
) -> SubscriptionAdminResponse:
    try:
        sub = await SubscriptionService(db).cancel(subscription_id, actor_id=admin_id)
        await db.commit()
        return SubscriptionAdminResponse.model_validate(sub, from_attributes=True)

    except ErrCodeError as e:
        await db.rollback()
        raise handle_auth_error(e)
    except Exception as e:
        await db.rollback()
        logger.error(f"Cancel failed for subscription {subscription_id}: {e}", exc_info=True)
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Failed to cancel subscription",
        )
