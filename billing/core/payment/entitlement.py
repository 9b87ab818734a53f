"""Turns a settled order into access rights.

Grants run after the ledger transition has been committed, in their own
transaction. A failed grant is logged and audited; the order stays
``completed`` and a reconciliation pass can re-grant later.
"""

import asyncio
import logging
from datetime import datetime, timezone
from uuid import UUID

from sqlmodel.ext.asyncio.session import AsyncSession

from billing.configs.pricing import PricingConfig
from billing.core.audit import AuditAction, AuditEntity, emit_audit_event
from billing.core.subscription import calculate_end_date
from billing.core.user_events import broadcast_user_event
from billing.models.payment import OrderKind, Payment, Purchase, PurchaseType
from billing.models.subscription import PlanType
from billing.repos.course_access import CourseAccessRepository
from billing.repos.payment import PaymentRepository
from billing.repos.subscription import SubscriptionRepository
from billing.utils.time import ensure_utc

logger = logging.getLogger(__name__)

_notifications: set[asyncio.Task] = set()


def _notify(user_id: str, data: dict) -> None:
    task = asyncio.get_running_loop().create_task(broadcast_user_event(user_id, "entitlement_granted", data))
    _notifications.add(task)
    task.add_done_callback(_notifications.discard)


class EntitlementGranter:
    def __init__(self, db: AsyncSession, config: PricingConfig):
        self.db = db
        self.config = config
        self.orders = PaymentRepository(db)
        self.subscriptions = SubscriptionRepository(db)
        self.access = CourseAccessRepository(db)

    async def grant(self, order_id: UUID, kind: OrderKind) -> bool:
        """Grant the entitlements of a completed order and commit.

        Returns False (after rolling back, logging and auditing) if the grant failed.
        """
        try:
            if kind == OrderKind.SUBSCRIPTION:
                payment = await self.orders.get_payment(order_id)
                if payment is None:
                    raise LookupError(f"Payment {order_id} not found")
                user_id, data = await self._grant_subscription(payment)
            else:
                purchase = await self.orders.get_purchase(order_id)
                if purchase is None:
                    raise LookupError(f"Purchase {order_id} not found")
                user_id, data = await self._grant_purchase(purchase)
            await self.db.commit()
        except Exception as e:
            await self.db.rollback()
            logger.error(f"Entitlement grant failed for {kind} {order_id}: {e}", exc_info=True)
            emit_audit_event(
                AuditAction.ENTITLEMENT_GRANT_FAILED,
                AuditEntity.PAYMENT if kind == OrderKind.SUBSCRIPTION else AuditEntity.PURCHASE,
                str(order_id),
                details={"error": str(e)},
            )
            return False

        _notify(user_id, data)
        return True

    async def _grant_subscription(self, payment: Payment) -> tuple[str, dict]:
        sub = await self.subscriptions.get_subscription(payment.subscription_id)
        if sub is None:
            raise LookupError(f"Subscription {payment.subscription_id} not found")
        now = datetime.now(timezone.utc)
        sub = await self.subscriptions.activate(sub.id, start_date=now, end_date=calculate_end_date(now))
        assert sub is not None
        logger.info(f"Activated subscription {sub.id} for user {sub.user_id} until {sub.end_date}")
        return sub.user_id, {"kind": "subscription", "subscription_id": str(sub.id), "plan_id": sub.plan_id}

    async def _grant_purchase(self, purchase: Purchase) -> tuple[str, dict]:
        data: dict = {"kind": purchase.type, "purchase_id": str(purchase.id)}
        if purchase.type == PurchaseType.COURSE_ACCESS:
            course_id = (purchase.meta or {}).get("course_id")
            if not course_id:
                raise ValueError(f"Purchase {purchase.id} has no course_id in metadata")
            await self.grant_course_access(purchase.user_id, course_id, purchase.id)
            data["course_id"] = course_id
        elif purchase.type == PurchaseType.ROADMAP_GENERATION:
            balance = await self.access.increment_balance(purchase.user_id, roadmap_generations=purchase.quantity)
            logger.info(f"Added {purchase.quantity} roadmap generations for user {purchase.user_id}")
            data["roadmap_generations"] = balance.roadmap_generations
        elif purchase.type == PurchaseType.AI_CREDITS:
            credits = purchase.quantity * self.config.AiCreditsPerUnit
            balance = await self.access.increment_balance(purchase.user_id, ai_credits=credits)
            logger.info(f"Added {credits} AI credits for user {purchase.user_id}")
            data["ai_credits"] = balance.ai_credits
        else:
            raise ValueError(f"Unknown purchase type {purchase.type}")
        return purchase.user_id, data

    async def grant_course_access(self, user_id: str, course_id: str, purchase_id: UUID | None) -> None:
        """Upsert lifetime access. Re-granting only refreshes the purchase reference."""
        await self.access.upsert_access(user_id, course_id, purchase_id)


async def user_has_course_access(db: AsyncSession, user_id: str, course_id: str) -> bool:
    """Unexpired CourseAccess first, then an active subscription covering the course."""
    access_repo = CourseAccessRepository(db)
    now = datetime.now(timezone.utc)

    access = await access_repo.get_access(user_id, course_id)
    if access is not None and (access.expires_at is None or ensure_utc(access.expires_at) >= now):
        return True

    sub_repo = SubscriptionRepository(db)
    for sub in await sub_repo.list_active_user_subscriptions(user_id, now):
        plan = await sub_repo.get_plan(sub.plan_id)
        if plan is None:
            continue
        if plan.type == PlanType.GLOBAL or (plan.type == PlanType.COURSE and plan.course_id == course_id):
            return True
    return False
