import logging
from datetime import datetime, timezone
from uuid import UUID

from sqlmodel import col, select, update
from sqlmodel.ext.asyncio.session import AsyncSession

from billing.models.subscription import PlanType, Subscription, SubscriptionPlan, SubscriptionStatus

logger = logging.getLogger(__name__)


class SubscriptionRepository:
    """Data access layer for subscription plans and user subscriptions."""

    def __init__(self, db: AsyncSession):
        self.db = db

    # ==================== SubscriptionPlan ====================

    async def get_plan(self, plan_id: str) -> SubscriptionPlan | None:
        return await self.db.get(SubscriptionPlan, plan_id)

    async def get_active_plan(self, plan_id: str) -> SubscriptionPlan | None:
        plan = await self.get_plan(plan_id)
        if plan is None or not plan.is_active:
            return None
        return plan

    async def get_active_course_plan(self, course_id: str) -> SubscriptionPlan | None:
        """The course's own active ``type=course`` plan, if any."""
        stmt = (
            select(SubscriptionPlan)
            .where(
                SubscriptionPlan.course_id == course_id,
                SubscriptionPlan.type == PlanType.COURSE,
                col(SubscriptionPlan.is_active).is_(True),
            )
            .order_by(col(SubscriptionPlan.created_at))
        )
        result = await self.db.exec(stmt)
        return result.first()

    async def list_active_course_plans(self) -> list[SubscriptionPlan]:
        stmt = select(SubscriptionPlan).where(
            SubscriptionPlan.type == PlanType.COURSE,
            col(SubscriptionPlan.is_active).is_(True),
        )
        result = await self.db.exec(stmt)
        return list(result.all())

    async def create_plan(self, plan: SubscriptionPlan) -> SubscriptionPlan:
        self.db.add(plan)
        await self.db.flush()
        await self.db.refresh(plan)
        return plan

    # ==================== Subscription ====================

    async def get_subscription(self, subscription_id: UUID) -> Subscription | None:
        return await self.db.get(Subscription, subscription_id)

    async def get_user_plan_subscription(self, user_id: str, plan_id: str) -> Subscription | None:
        stmt = select(Subscription).where(Subscription.user_id == user_id, Subscription.plan_id == plan_id)
        result = await self.db.exec(stmt)
        return result.first()

    async def upsert_pending(self, user_id: str, plan_id: str, end_date: datetime) -> Subscription:
        """Reset the (user, plan) subscription to pending, creating it if absent.

        This function does NOT commit the transaction, but it does flush the session.
        """
        now = datetime.now(timezone.utc)
        sub = await self.get_user_plan_subscription(user_id, plan_id)
        if sub is None:
            sub = Subscription(user_id=user_id, plan_id=plan_id, start_date=now, end_date=end_date)
        else:
            sub.status = SubscriptionStatus.PENDING
            sub.start_date = now
            sub.end_date = end_date
            sub.updated_at = now
        self.db.add(sub)
        await self.db.flush()
        await self.db.refresh(sub)
        return sub

    async def activate(self, subscription_id: UUID, start_date: datetime, end_date: datetime) -> Subscription | None:
        """Mark a subscription active for ``[start_date, end_date]``."""
        sub = await self.get_subscription(subscription_id)
        if sub is None:
            return None
        sub.status = SubscriptionStatus.ACTIVE
        sub.start_date = start_date
        sub.end_date = end_date
        sub.updated_at = datetime.now(timezone.utc)
        self.db.add(sub)
        await self.db.flush()
        await self.db.refresh(sub)
        return sub

    async def compare_and_set(
        self,
        subscription_id: UUID,
        expected_statuses: list[str],
        **values,
    ) -> bool:
        """Conditionally update a subscription still in one of ``expected_statuses``.

        Returns True if a row was updated.
        """
        stmt = (
            update(Subscription)
            .where(col(Subscription.id) == subscription_id, col(Subscription.status).in_(expected_statuses))
            .values(**values, updated_at=datetime.now(timezone.utc))
            .execution_options(synchronize_session=False)
        )
        result = await self.db.exec(stmt)  # type: ignore[call-overload]
        return result.rowcount > 0

    async def reload(self, subscription_id: UUID) -> Subscription | None:
        return await self.db.get(Subscription, subscription_id, populate_existing=True)

    async def list_active_user_subscriptions(self, user_id: str, now: datetime) -> list[Subscription]:
        """Active subscriptions of a user whose period has not ended."""
        stmt = select(Subscription).where(
            Subscription.user_id == user_id,
            Subscription.status == SubscriptionStatus.ACTIVE,
            col(Subscription.end_date) >= now,
        )
        result = await self.db.exec(stmt)
        return list(result.all())
