"""Payment business logic: checkout, refunds, pricing and history queries."""

import logging
from uuid import UUID

from sqlmodel.ext.asyncio.session import AsyncSession

from billing.common.code import ErrCode
from billing.configs import configs
from billing.configs.pricing import PricingConfig
from billing.core.audit import AuditAction, AuditEntity, emit_audit_event
from billing.core.payment.entitlement import user_has_course_access
from billing.core.payment.ledger import OrderLedger, OrderStatusView, TransitionRejected
from billing.core.payment.pricing import PricingResolver, format_price
from billing.core.payment.provider import get_payment_provider, list_payment_providers
from billing.core.subscription import calculate_end_date
from billing.models.payment import Order, OrderKind, OrderStatus, PurchaseType
from billing.repos.course_access import CourseAccessRepository
from billing.repos.payment import PaymentRepository
from billing.repos.subscription import SubscriptionRepository
from billing.utils.time import utcnow

logger = logging.getLogger(__name__)

HISTORY_STATUSES = [OrderStatus.COMPLETED, OrderStatus.FAILED, OrderStatus.REFUNDED]
HISTORY_LIMIT = 50


class PaymentService:
    """Orchestrates checkout creation, refunds and read-side payment queries.

    Nothing here commits; the API layer owns the transaction boundary.
    """

    def __init__(self, db: AsyncSession, pricing: PricingConfig | None = None):
        self.db = db
        self.pricing_config = pricing or configs.Pricing
        self.pricing = PricingResolver(db, self.pricing_config)
        self.ledger = OrderLedger(db)
        self.payments = PaymentRepository(db)
        self.subscriptions = SubscriptionRepository(db)
        self.courses = CourseAccessRepository(db)

    # ==================== Catalog ====================

    def get_available_providers(self) -> list[dict]:
        return [
            {"id": str(provider.name), "name": provider.display_name, "configured": provider.is_configured()}
            for provider in list_payment_providers()
        ]

    def get_purchase_pricing(self) -> list[dict]:
        return [
            {
                "type": str(purchase_type),
                "price": item.Price,
                "name": item.Name,
                "name_ru": item.NameRu,
                "price_formatted": format_price(item.Price, self.pricing_config.Currency),
            }
            for purchase_type, item in self.pricing.catalog().items()
        ]

    # ==================== Checkout ====================

    async def create_checkout(
        self,
        user_id: str,
        order_type: OrderKind,
        provider: str,
        plan_id: str | None = None,
        purchase_type: PurchaseType | None = None,
        course_id: str | None = None,
        quantity: int | None = None,
        return_url: str | None = None,
    ) -> dict:
        """Validate, price, open one pending order and build the provider redirect URL.

        Returns:
            Dict with order_id, payment_url, amount, currency, provider.
        """
        gateway = get_payment_provider(provider)

        if order_type == OrderKind.SUBSCRIPTION:
            plan = await self.pricing.subscription_plan(plan_id)
            quote = await self.pricing.resolve_price(order_type, plan_id=plan.id)
            self._require_configured(gateway)

            subscription = await self.subscriptions.upsert_pending(user_id, plan.id, calculate_end_date())
            order: Order = await self.ledger.create_pending_payment(subscription.id, quote.amount, quote.currency)
        else:
            if not purchase_type:
                raise ErrCode.INVALID_REQUEST.with_messages("purchaseType is required for purchase")

            if purchase_type == PurchaseType.COURSE_ACCESS:
                course_price = await self.pricing.course_price(course_id)
                course = course_price.course
                if await user_has_course_access(self.db, user_id, course.id):
                    raise ErrCode.COURSE_ALREADY_OWNED.with_messages("User already has access to this course")
                quote = await self.pricing.resolve_price(order_type, purchase_type=purchase_type, course_id=course.id)
                self._require_configured(gateway)
                order = await self.ledger.create_pending_purchase(
                    user_id,
                    PurchaseType.COURSE_ACCESS,
                    1,
                    quote.amount,
                    quote.currency,
                    metadata={"course_id": course.id, "course_slug": course.slug, "course_name": course.title},
                )
            else:
                quote = await self.pricing.resolve_price(order_type, purchase_type=purchase_type, quantity=quantity)
                self._require_configured(gateway)
                order = await self.ledger.create_pending_purchase(
                    user_id, PurchaseType(purchase_type), quantity or 1, quote.amount, quote.currency
                )

        payment_url = gateway.generate_payment_link(order.id, order.amount, return_url)
        logger.info(f"Checkout created: {order.id}, amount: {order.amount}, provider: {gateway.name} ({quote.description})")
        return {
            "order_id": order.id,
            "payment_url": payment_url,
            "amount": order.amount,
            "currency": order.currency,
            "provider": str(gateway.name),
        }

    @staticmethod
    def _require_configured(gateway) -> None:
        if not gateway.is_configured():
            raise ErrCode.PROVIDER_NOT_CONFIGURED.with_messages(f"{gateway.display_name} is not configured")

    # ==================== Orders ====================

    async def get_payment_status(self, order_id: UUID | str) -> OrderStatusView:
        return await self.ledger.get_status(order_id)

    async def refund(self, order_id: UUID, reason: str | None = None, actor_id: str | None = None) -> Order:
        """Move a completed order of either kind to refunded.

        Already refunded, pending and failed orders are rejected.
        """
        found = await self.ledger.find_order(order_id)
        if found is None:
            raise ErrCode.ORDER_NOT_FOUND.with_messages("Order not found")
        kind, order = found
        if order.status != OrderStatus.COMPLETED:
            logger.warning(f"Refund rejected for order {order_id}: status is {order.status}")
            raise TransitionRejected(order.id, order.status, "not_completed")

        result = await self.ledger.transition(order.id, kind, OrderStatus.COMPLETED, OrderStatus.REFUNDED)
        if not result.applied:
            raise TransitionRejected(order.id, result.order.status, "already_refunded")

        emit_audit_event(
            AuditAction.PAYMENT_REFUND,
            AuditEntity.PAYMENT if kind == OrderKind.SUBSCRIPTION else AuditEntity.PURCHASE,
            str(order.id),
            actor_id=actor_id,
            details={"amount": order.amount, "currency": order.currency, "reason": reason},
        )
        return result.order

    async def get_payment_history(self, user_id: str) -> list[dict]:
        """Settled subscription payments and purchases of a user, newest first."""
        history: list[dict] = []

        for payment in await self.payments.list_user_payments(user_id, HISTORY_STATUSES, HISTORY_LIMIT):
            description = "Subscription"
            sub = await self.subscriptions.get_subscription(payment.subscription_id)
            plan = await self.subscriptions.get_plan(sub.plan_id) if sub else None
            if plan is not None:
                course = await self.courses.get_course(plan.course_id) if plan.course_id else None
                description = f"{course.title if course else plan.name} - Monthly"
            history.append(self._history_item(payment, OrderKind.SUBSCRIPTION, description))

        for purchase in await self.payments.list_user_purchases(user_id, HISTORY_STATUSES, HISTORY_LIMIT):
            item = self.pricing.catalog_item(purchase.type)
            if item is not None:
                description = item.Name
            elif purchase.type == PurchaseType.COURSE_ACCESS and (purchase.meta or {}).get("course_name"):
                description = f"{purchase.meta['course_name']} - Lifetime Access"
            else:
                description = purchase.type
            history.append(self._history_item(purchase, OrderKind.PURCHASE, description))

        history.sort(key=lambda entry: entry["created_at"], reverse=True)
        return history

    @staticmethod
    def _history_item(order: Order, kind: OrderKind, description: str) -> dict:
        return {
            "id": order.id,
            "type": str(kind),
            "description": description,
            "amount": order.amount,
            "currency": order.currency,
            "status": order.status,
            "provider": order.provider,
            "created_at": order.created_at,
        }

    # ==================== Courses ====================

    async def get_course_pricing(self, course_id: str, user_id: str | None = None) -> dict:
        price = await self.pricing.course_price(course_id)
        has_access = await user_has_course_access(self.db, user_id, course_id) if user_id else False
        return {
            "course_id": price.course.id,
            "course_slug": price.course.slug,
            "course_name": price.course.title,
            "price": price.amount,
            "currency": price.currency,
            "price_formatted": format_price(price.amount, price.currency),
            "has_access": has_access,
        }

    async def get_all_courses_pricing(self, user_id: str | None = None) -> list[dict]:
        """Catalog pricing. Courses without an active course plan are skipped."""
        plans = {plan.course_id: plan for plan in await self.subscriptions.list_active_course_plans()}
        result: list[dict] = []
        for course in await self.courses.list_courses():
            plan = plans.get(course.id)
            if plan is None:
                continue
            amount = plan.price_monthly * self.pricing_config.CourseAccessMultiplier
            result.append(
                {
                    "course_id": course.id,
                    "course_slug": course.slug,
                    "course_name": course.title,
                    "price": amount,
                    "currency": plan.currency,
                    "price_formatted": format_price(amount, plan.currency),
                    "has_access": await user_has_course_access(self.db, user_id, course.id) if user_id else False,
                }
            )
        return result

    async def get_user_course_accesses(self, user_id: str) -> list[dict]:
        return [
            {
                "course_id": course.id,
                "course_slug": course.slug,
                "course_name": course.title,
                "purchased_at": access.created_at,
                "expires_at": access.expires_at,
            }
            for access, course in await self.courses.list_active_accesses(user_id, utcnow())
        ]

    async def user_has_course_access(self, user_id: str, course_id: str) -> bool:
        return await user_has_course_access(self.db, user_id, course_id)

    # ==================== Balances ====================

    async def get_roadmap_credits(self, user_id: str) -> dict:
        """First generation is free; purchased generations add to it."""
        balance = await self.courses.get_balance(user_id)
        purchased = balance.roadmap_generations if balance else 0
        used = balance.roadmap_generations_used if balance else 0
        available = self.pricing_config.FreeRoadmapGenerations + purchased
        return {"used": used, "available": available, "can_generate": used < available}
