"""Integration tests for PaymentService: checkout, refunds and read-side queries."""

from unittest.mock import patch
from uuid import uuid4

import pytest
from sqlmodel.ext.asyncio.session import AsyncSession

from billing.common.code import ErrCode, ErrCodeError
from billing.configs.pricing import PricingConfig
from billing.core.payment.entitlement import EntitlementGranter
from billing.core.payment.ledger import TransitionRejected
from billing.core.payment.service import PaymentService
from billing.models.payment import OrderKind, OrderStatus, PurchaseType
from billing.models.subscription import Subscription, SubscriptionStatus
from billing.repos.course_access import CourseAccessRepository
from billing.repos.payment import PaymentRepository


@pytest.mark.integration
class TestCheckout:
    @pytest.fixture
    def service(self, db_session: AsyncSession) -> PaymentService:
        return PaymentService(db_session, PricingConfig())

    async def test_subscription_checkout(self, service: PaymentService, make_plan, db_session: AsyncSession) -> None:
        plan = await make_plan(price_monthly=150_000)

        result = await service.create_checkout("u1", OrderKind.SUBSCRIPTION, "payme", plan_id=plan.id)

        assert result["amount"] == 150_000
        assert result["provider"] == "payme"
        assert result["payment_url"].startswith("https://checkout.paycom.uz/")
        payment = await PaymentRepository(db_session).get_payment(result["order_id"])
        assert payment is not None
        sub = await db_session.get(Subscription, payment.subscription_id)
        assert sub is not None
        assert sub.status == SubscriptionStatus.PENDING
        assert sub.user_id == "u1"

    async def test_unknown_plan(self, service: PaymentService) -> None:
        with pytest.raises(ErrCodeError) as exc_info:
            await service.create_checkout("u1", OrderKind.SUBSCRIPTION, "click", plan_id="missing")
        assert exc_info.value.code == ErrCode.PLAN_NOT_FOUND

    async def test_inactive_plan_is_not_sold(self, service: PaymentService, make_plan) -> None:
        plan = await make_plan(is_active=False)
        with pytest.raises(ErrCodeError) as exc_info:
            await service.create_checkout("u1", OrderKind.SUBSCRIPTION, "click", plan_id=plan.id)
        assert exc_info.value.code == ErrCode.PLAN_NOT_FOUND

    async def test_unsupported_provider(self, service: PaymentService) -> None:
        with pytest.raises(ErrCodeError) as exc_info:
            await service.create_checkout("u1", OrderKind.PURCHASE, "stripe", purchase_type=PurchaseType.AI_CREDITS)
        assert exc_info.value.code == ErrCode.UNSUPPORTED_PROVIDER

    async def test_unconfigured_provider_creates_no_order(self, service: PaymentService, db_session: AsyncSession) -> None:
        with patch("billing.core.payment.click.ClickProvider.is_configured", return_value=False):
            with pytest.raises(ErrCodeError) as exc_info:
                await service.create_checkout("u-none", OrderKind.PURCHASE, "click", purchase_type=PurchaseType.AI_CREDITS)
        assert exc_info.value.code == ErrCode.PROVIDER_NOT_CONFIGURED
        assert await PaymentRepository(db_session).list_user_purchases("u-none", [OrderStatus.PENDING]) == []

    async def test_consumable_checkout_uses_server_price(self, service: PaymentService) -> None:
        result = await service.create_checkout(
            "u1", OrderKind.PURCHASE, "click", purchase_type=PurchaseType.ROADMAP_GENERATION, quantity=2
        )
        assert result["amount"] == 2 * 1_500_000
        assert "amount=30000.00" in result["payment_url"]

    async def test_course_checkout_and_pricing(self, service: PaymentService, make_course, db_session: AsyncSession) -> None:
        course = await make_course(price_monthly=150_000)

        pricing = await service.get_course_pricing(course.id, "buyer")
        assert pricing["price"] == 450_000
        assert pricing["price_formatted"] == "4 500 UZS"
        assert pricing["has_access"] is False

        result = await service.create_checkout(
            "buyer", OrderKind.PURCHASE, "payme", purchase_type=PurchaseType.COURSE_ACCESS, course_id=course.id
        )
        assert result["amount"] == 450_000
        purchase = await PaymentRepository(db_session).get_purchase(result["order_id"])
        assert purchase is not None
        assert purchase.meta == {"course_id": course.id, "course_slug": course.slug, "course_name": course.title}
        await db_session.commit()

        await service.ledger.transition(purchase.id, OrderKind.PURCHASE, OrderStatus.PENDING, OrderStatus.COMPLETED)
        await db_session.commit()
        assert await EntitlementGranter(db_session, PricingConfig()).grant(purchase.id, OrderKind.PURCHASE)

        pricing = await service.get_course_pricing(course.id, "buyer")
        assert pricing["has_access"] is True
        accesses = await service.get_user_course_accesses("buyer")
        assert [item["course_id"] for item in accesses] == [course.id]

    async def test_owned_course_cannot_be_bought_again(self, service: PaymentService, make_course, grant_access) -> None:
        course = await make_course()
        await grant_access("owner", course.id)

        with pytest.raises(ErrCodeError) as exc_info:
            await service.create_checkout(
                "owner", OrderKind.PURCHASE, "payme", purchase_type=PurchaseType.COURSE_ACCESS, course_id=course.id
            )
        assert exc_info.value.code == ErrCode.COURSE_ALREADY_OWNED

    async def test_course_without_plan_has_no_price(self, service: PaymentService, make_course) -> None:
        course = await make_course(slug="free", title="Free", price_monthly=None)
        with pytest.raises(ErrCodeError) as exc_info:
            await service.create_checkout(
                "u1", OrderKind.PURCHASE, "payme", purchase_type=PurchaseType.COURSE_ACCESS, course_id=course.id
            )
        assert exc_info.value.code == ErrCode.PRICING_UNAVAILABLE

        assert await service.get_all_courses_pricing() == []

    async def test_unknown_course(self, service: PaymentService) -> None:
        with pytest.raises(ErrCodeError) as exc_info:
            await service.get_course_pricing("nope")
        assert exc_info.value.code == ErrCode.COURSE_NOT_FOUND


@pytest.mark.integration
class TestRefund:
    @pytest.fixture
    def service(self, db_session: AsyncSession) -> PaymentService:
        return PaymentService(db_session, PricingConfig())

    async def test_refund_completed_order(self, service: PaymentService, make_purchase) -> None:
        purchase = await make_purchase()
        await service.ledger.transition(purchase.id, OrderKind.PURCHASE, OrderStatus.PENDING, OrderStatus.COMPLETED)

        with patch("billing.core.payment.service.emit_audit_event") as audit:
            order = await service.refund(purchase.id, reason="duplicate", actor_id="admin-1")

        assert order.status == OrderStatus.REFUNDED
        audit.assert_called_once()
        assert audit.call_args.kwargs["actor_id"] == "admin-1"
        assert audit.call_args.kwargs["details"]["reason"] == "duplicate"

    @pytest.mark.parametrize("final_status", [None, OrderStatus.FAILED])
    async def test_refund_requires_completed(self, service: PaymentService, make_purchase, final_status) -> None:
        purchase = await make_purchase()
        if final_status is not None:
            await service.ledger.transition(purchase.id, OrderKind.PURCHASE, OrderStatus.PENDING, final_status)

        with pytest.raises(TransitionRejected) as exc_info:
            await service.refund(purchase.id)
        assert exc_info.value.reason == "not_completed"

    async def test_second_refund_rejected(self, service: PaymentService, make_subscription_payment) -> None:
        payment = await make_subscription_payment()
        await service.ledger.transition(payment.id, OrderKind.SUBSCRIPTION, OrderStatus.PENDING, OrderStatus.COMPLETED)
        await service.refund(payment.id)

        with pytest.raises(TransitionRejected):
            await service.refund(payment.id)

    async def test_refund_unknown_order(self, service: PaymentService) -> None:
        with pytest.raises(ErrCodeError) as exc_info:
            await service.refund(uuid4())
        assert exc_info.value.code == ErrCode.ORDER_NOT_FOUND


@pytest.mark.integration
class TestReadSide:
    @pytest.fixture
    def service(self, db_session: AsyncSession) -> PaymentService:
        return PaymentService(db_session, PricingConfig())

    async def test_history_excludes_pending(self, service: PaymentService, make_purchase, make_subscription_payment) -> None:
        pending = await make_purchase(user_id="hist")
        done = await make_purchase(user_id="hist", purchase_type=PurchaseType.AI_CREDITS, amount=1_000_000)
        payment = await make_subscription_payment(user_id="hist")
        await service.ledger.transition(done.id, OrderKind.PURCHASE, OrderStatus.PENDING, OrderStatus.COMPLETED)
        await service.ledger.transition(payment.id, OrderKind.SUBSCRIPTION, OrderStatus.PENDING, OrderStatus.FAILED)

        history = await service.get_payment_history("hist")

        ids = {item["id"] for item in history}
        assert ids == {done.id, payment.id}
        assert pending.id not in ids
        by_id = {item["id"]: item for item in history}
        assert by_id[done.id]["description"] == "AI Credits (50)"
        assert by_id[payment.id]["description"] == "Global Premium - Monthly"

    async def test_roadmap_credits(self, service: PaymentService, db_session: AsyncSession) -> None:
        assert await service.get_roadmap_credits("fresh") == {"used": 0, "available": 1, "can_generate": True}

        await CourseAccessRepository(db_session).increment_balance("fresh", roadmap_generations=2)
        assert await service.get_roadmap_credits("fresh") == {"used": 0, "available": 3, "can_generate": True}

    def test_providers_listed(self, service: PaymentService) -> None:
        providers = {item["id"]: item for item in service.get_available_providers()}
        assert set(providers) == {"payme", "click"}
        assert providers["payme"]["configured"] is True
