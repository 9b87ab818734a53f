"""Authoritative pricing for checkout requests.

Amounts are integer tiyin (1 UZS = 100 tiyin). Client-supplied amounts are
never read: every price comes from an active plan or the static catalog.
"""

import logging
from dataclasses import dataclass

from sqlmodel.ext.asyncio.session import AsyncSession

from billing.common.code import ErrCode
from billing.configs.pricing import CatalogItem, PricingConfig
from billing.models.course import Course
from billing.models.payment import OrderKind, PurchaseType
from billing.models.subscription import SubscriptionPlan
from billing.repos.course_access import CourseAccessRepository
from billing.repos.subscription import SubscriptionRepository

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class PriceQuote:
    amount: int
    currency: str
    description: str


@dataclass(frozen=True)
class CoursePrice:
    course: Course
    plan: SubscriptionPlan
    amount: int
    currency: str


def format_price(amount: int, currency: str = "UZS") -> str:
    """Whole currency units with space-grouped thousands: ``150000000 -> "1 500 000 UZS"``."""
    units = amount // 100
    return f"{units:,}".replace(",", " ") + f" {currency}"


class PricingResolver:
    """Resolves the amount the user owes for an order request."""

    def __init__(self, db: AsyncSession, config: PricingConfig):
        self.config = config
        self.plans = SubscriptionRepository(db)
        self.courses = CourseAccessRepository(db)

    def catalog_item(self, purchase_type: PurchaseType | str) -> CatalogItem | None:
        if purchase_type == PurchaseType.ROADMAP_GENERATION:
            return self.config.RoadmapGeneration
        if purchase_type == PurchaseType.AI_CREDITS:
            return self.config.AiCredits
        return None

    def catalog(self) -> dict[PurchaseType, CatalogItem]:
        return {
            PurchaseType.ROADMAP_GENERATION: self.config.RoadmapGeneration,
            PurchaseType.AI_CREDITS: self.config.AiCredits,
        }

    async def subscription_plan(self, plan_id: str | None) -> SubscriptionPlan:
        if not plan_id:
            raise ErrCode.INVALID_REQUEST.with_messages("planId is required for subscription")
        plan = await self.plans.get_active_plan(plan_id)
        if plan is None:
            raise ErrCode.PLAN_NOT_FOUND.with_messages("Subscription plan not found")
        return plan

    async def course_price(self, course_id: str | None) -> CoursePrice:
        """Lifetime access price: the course plan's monthly price times the multiplier."""
        if not course_id:
            raise ErrCode.INVALID_REQUEST.with_messages("courseId is required for course_access purchase")
        course = await self.courses.get_course(course_id)
        if course is None:
            raise ErrCode.COURSE_NOT_FOUND.with_messages("Course not found")
        plan = await self.plans.get_active_course_plan(course_id)
        if plan is None:
            raise ErrCode.PRICING_UNAVAILABLE.with_messages("Course does not have an active subscription plan")
        return CoursePrice(
            course=course,
            plan=plan,
            amount=plan.price_monthly * self.config.CourseAccessMultiplier,
            currency=plan.currency,
        )

    async def resolve_price(
        self,
        order_type: OrderKind | str,
        purchase_type: PurchaseType | str | None = None,
        plan_id: str | None = None,
        course_id: str | None = None,
        quantity: int | None = None,
    ) -> PriceQuote:
        if order_type == OrderKind.SUBSCRIPTION:
            plan = await self.subscription_plan(plan_id)
            label = plan.name
            if plan.course_id:
                course = await self.courses.get_course(plan.course_id)
                if course is not None:
                    label = course.title
            return PriceQuote(amount=plan.price_monthly, currency=plan.currency, description=f"{label} - Monthly")

        if not purchase_type:
            raise ErrCode.INVALID_REQUEST.with_messages("purchaseType is required for purchase")

        if purchase_type == PurchaseType.COURSE_ACCESS:
            price = await self.course_price(course_id)
            return PriceQuote(
                amount=price.amount,
                currency=price.currency,
                description=f"{price.course.title} - Lifetime Access",
            )

        item = self.catalog_item(purchase_type)
        if item is None:
            raise ErrCode.INVALID_REQUEST.with_messages(f"Invalid purchase type: {purchase_type}")
        quantity = quantity or 1
        if quantity < 1:
            raise ErrCode.INVALID_REQUEST.with_messages("quantity must be at least 1")
        return PriceQuote(
            amount=item.Price * quantity,
            currency=self.config.Currency,
            description=f"{item.Name} x{quantity}",
        )
